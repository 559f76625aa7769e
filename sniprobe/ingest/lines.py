"""Domain ingestion from files, glob patterns and standard input.

``read_domains(paths)`` yields one stripped line per input line, file after
file. No paths, or ``-``, reads standard input. Empty lines are passed
through; the worker treats them as no-op jobs.
"""

from __future__ import annotations

import glob
import logging
import sys
from collections.abc import Iterator, Sequence
from typing import TextIO

from sniprobe.errors import ConfigurationError

logger = logging.getLogger(__name__)

STDIN_MARKER = "-"


def resolve_inputs(paths: Sequence[str]) -> list[str]:
    """Expand *paths* into concrete input names, in order.

    ``-`` stays as the stdin marker. Patterns are expanded with ``glob`` and
    sorted. The home directory is never expanded: ``~`` paths are rejected
    so behaviour does not depend on which user runs the probe.
    """
    if not paths:
        return [STDIN_MARKER]

    resolved: list[str] = []
    for path in paths:
        if path == STDIN_MARKER:
            resolved.append(STDIN_MARKER)
            continue
        if path.startswith("~"):
            raise ConfigurationError(
                "Use an absolute path instead of ~ for input files", path=path
            )
        matches = sorted(glob.glob(path))
        if not matches:
            logger.warning("Input %s matched no files", path)
        resolved.extend(matches)
    return resolved


def _lines(stream: TextIO) -> Iterator[str]:
    for line in stream:
        yield line.strip()


def read_domains(paths: Sequence[str], stdin: TextIO | None = None) -> Iterator[str]:
    """Yield domain lines from every input in *paths*.

    Inputs are resolved up front, so a bad path fails before any line is
    produced.

    Raises
    ------
    ConfigurationError
        If a path uses ``~`` or a matched file cannot be opened.
    """
    inputs = resolve_inputs(paths)

    def _generate() -> Iterator[str]:
        for name in inputs:
            if name == STDIN_MARKER:
                yield from _lines(stdin or sys.stdin)
                continue
            try:
                handle = open(name, encoding="utf-8", errors="replace")
            except OSError as exc:
                raise ConfigurationError(f"Cannot open input {name}: {exc}") from exc
            with handle:
                logger.info("Reading domains from %s", name)
                yield from _lines(handle)

    return _generate()
