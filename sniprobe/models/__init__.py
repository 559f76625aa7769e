"""Outcome and result value types."""

from sniprobe.models.outcomes import Disposition, FailureKind, Outcome, OutcomeCode, Stage
from sniprobe.models.records import ResultRecord

__all__ = [
    "Disposition",
    "FailureKind",
    "Outcome",
    "OutcomeCode",
    "ResultRecord",
    "Stage",
]
