"""CSV result sink.

Rows are ``start_ms, domain, stage, code, endpoint, duration_ms`` with no
header line and ``\n`` line endings, written with the ``csv`` module. The
sink is written by a single task; it does no locking of its own.
"""

from __future__ import annotations

import csv
import logging
import sys
from typing import TextIO

from sniprobe.errors import OutputSetupError
from sniprobe.models.records import ResultRecord

logger = logging.getLogger(__name__)


class CsvResultSink:
    """Writes result records as CSV rows to a text stream.

    Parameters
    ----------
    stream:
        Destination stream.
    flush:
        Flush after every row.
    close_stream:
        Close *stream* on ``close()`` (False for stdout).
    """

    def __init__(self, stream: TextIO, *, flush: bool = True, close_stream: bool = False) -> None:
        self._stream = stream
        self._writer = csv.writer(stream, lineterminator="\n")
        self._flush = flush
        self._close_stream = close_stream
        self._written = 0
        self._closed = False

    @property
    def written(self) -> int:
        return self._written

    def write(self, record: ResultRecord) -> None:
        self._writer.writerow(record.as_row())
        self._written += 1
        if self._flush:
            self._stream.flush()

    def close(self) -> None:
        """Flush and, when owned, close the stream. Safe to call twice."""
        if self._closed:
            return
        self._closed = True
        self._stream.flush()
        if self._close_stream:
            self._stream.close()
        logger.info("Result sink closed after %d records", self._written)


def open_result_sink(path: str | None, *, flush: bool = True) -> CsvResultSink:
    """Open a CSV sink on *path*, or on stdout when *path* is empty.

    Raises ``OutputSetupError`` if the file cannot be created.
    """
    if not path or path == "-":
        return CsvResultSink(sys.stdout, flush=flush)

    try:
        stream = open(path, "w", newline="", encoding="utf-8")
    except OSError as exc:
        raise OutputSetupError(f"Failed to open output file {path}: {exc}") from exc
    return CsvResultSink(stream, flush=flush, close_stream=True)
