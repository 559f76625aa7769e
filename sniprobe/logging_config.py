"""Logging configuration.

Two formats are supported: a plain text line per record (the default, easy
to tail next to the CSV output) and JSON lines for log shippers. JSON
entries always carry timestamp, level, logger and message; probe fields are
added when passed through ``extra`` (worker_id, domain, endpoint, stage,
code, duration_ms).
"""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone

from sniprobe.errors import OutputSetupError

TEXT_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"

# Optional structured fields copied from ``extra`` into JSON entries
_EXTRA_FIELDS = ("worker_id", "domain", "endpoint", "stage", "code", "duration_ms")


class JsonFormatter(logging.Formatter):
    """Formats log records as JSON with structured fields."""

    def format(self, record: logging.LogRecord) -> str:
        entry: dict = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        for name in _EXTRA_FIELDS:
            if hasattr(record, name):
                entry[name] = getattr(record, name)

        # Exception info
        if record.exc_info and record.exc_info[1]:
            entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(entry, default=str)


def configure_logging(
    level: str = "INFO",
    log_path: str | None = None,
    fmt: str = "text",
) -> None:
    """Configure the root logger.

    Parameters
    ----------
    level:
        Log level string (DEBUG, INFO, WARNING, ERROR, CRITICAL).
    log_path:
        File to log to. ``None`` logs to stderr.
    fmt:
        ``"text"`` or ``"json"``.

    Raises
    ------
    OutputSetupError
        If *log_path* cannot be opened for writing.
    """
    if log_path:
        try:
            handler: logging.Handler = logging.FileHandler(log_path, mode="w", encoding="utf-8")
        except OSError as exc:
            raise OutputSetupError(f"Failed to open log file {log_path}: {exc}") from exc
    else:
        handler = logging.StreamHandler()

    if fmt == "json":
        handler.setFormatter(JsonFormatter())
    else:
        handler.setFormatter(logging.Formatter(TEXT_FORMAT))

    root = logging.getLogger()
    root.setLevel(getattr(logging, level.upper(), logging.INFO))

    # Remove existing handlers to avoid duplicates
    root.handlers.clear()
    root.addHandler(handler)
