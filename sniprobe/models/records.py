"""Result record emitted for every decisive probe."""

from __future__ import annotations

from dataclasses import dataclass

from sniprobe.models.outcomes import OutcomeCode, Stage


@dataclass(frozen=True)
class ResultRecord:
    """One row of output.

    ``start_ms`` is the wall-clock time (ms since epoch) of the first TCP
    attempt for the domain, and ``duration_ms`` runs from that same
    instant to the end of the decisive attempt.
    """

    start_ms: int
    domain: str
    stage: Stage
    code: OutcomeCode
    endpoint: str
    duration_ms: int

    def as_row(self) -> list[str]:
        return [
            str(self.start_ms),
            self.domain,
            self.stage.value,
            self.code.value,
            self.endpoint,
            str(self.duration_ms),
        ]
