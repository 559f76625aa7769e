"""Outcome value types shared by the classifier, the worker and the sink."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class Stage(str, Enum):
    """Connection stage at which an outcome was observed."""

    TCP = "TCP"
    TLS = "TLS"


class OutcomeCode(str, Enum):
    """Closed set of outcome codes written to the result stream."""

    TIMEOUT = "Timeout"
    REFUSED = "Refused"
    UNREACHABLE = "Unreachable"
    RST = "RST"
    EOF = "EOF"
    SUCCESS = "Success"
    TLS_RECORD_HEADER_ERROR = "TLSRecordHeaderError"
    X509_HOSTNAME_ERROR = "X509HostnameError"
    UNEXPECTED = "Unexpected"
    TOO_MANY_FILES = "TOOMANYFILES"


class FailureKind(str, Enum):
    """Semantic failure categories, independent of any networking library."""

    TIMEOUT = "timeout"
    REFUSED = "connection_refused"
    RESET = "connection_reset"
    UNREACHABLE = "unreachable"
    PROTOCOL_MISMATCH = "protocol_mismatch"
    CERT_MISMATCH = "certificate_mismatch"
    END_OF_STREAM = "end_of_stream"
    RESOURCE_EXHAUSTED = "resource_exhausted"
    OTHER = "other"


class Disposition(str, Enum):
    """What happens to the endpoint once an attempt concludes.

    - ``RELEASE``: back to the pool with no delay
    - ``COOLDOWN``: back to the pool after the TCP-timeout cooldown
    - ``RESIDUAL``: back to the pool after the residual-censorship delay
    - ``EVICT``: never used again in this run
    """

    RELEASE = "release"
    COOLDOWN = "cooldown"
    RESIDUAL = "residual"
    EVICT = "evict"


@dataclass(frozen=True)
class Outcome:
    """Classified result of a single attempt.

    A terminal outcome ends the domain and is written to the result
    stream; a non-terminal one moves the domain to the next endpoint.
    """

    stage: Stage
    code: OutcomeCode
    terminal: bool
    disposition: Disposition

    def __str__(self) -> str:
        return f"{self.stage.value},{self.code.value}"
