"""Global error hierarchy for the probe.

All probe-specific errors extend ProbeError. Per-attempt network and TLS
failures never appear here: those are classified into outcome codes by
``sniprobe.probe.classifier`` and recovered inside the worker. The errors
below are the ones that stop a run (or, for pool exhaustion, stop a
single domain).
"""

from __future__ import annotations


# ---------------------------------------------------------------------------
# Error hierarchy
# ---------------------------------------------------------------------------


class ProbeError(Exception):
    """Base error for all probe-specific errors."""

    exit_code: int = 1
    message: str = "Probe error"

    def __init__(self, message: str | None = None, **kwargs: object) -> None:
        self.message = message or self.__class__.message
        self.details = kwargs
        super().__init__(self.message)


class ConfigurationError(ProbeError):
    """Malformed IP, port, settings value or input path. Raised before probing."""

    exit_code = 2
    message = "Invalid configuration"


class OutputSetupError(ProbeError):
    """Output, log or profile destination could not be opened."""

    exit_code = 2
    message = "Cannot open output destination"


class ResourceExhaustedError(ProbeError):
    """The process ran out of file descriptors. Aborts the whole run."""

    exit_code = 3
    message = "Too many open files"


class EndpointPoolExhaustedError(ProbeError):
    """Every endpoint in the pool has been evicted."""

    message = "No usable endpoints left in the pool"
