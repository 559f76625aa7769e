"""Command-line entrypoint for the SNI probe.

Test whether SNI values in FILE(s) are censored. With no FILE, or when FILE
is -, read standard input. Results go to stdout as CSV and logs to stderr
unless --out / --log say otherwise.

Examples::

    echo www.youtube.com | sniprobe -dip 1.1.1.1 -p 1000
    sniprobe -dip 1.1.1.1,2.2.2.2 -p 1000,2000-2002 domains_1.txt domains_2.txt
    sniprobe --no-flush -dip 1.1.1.1 -p 2000-2999 'lists/*.txt' > results.csv
"""

from __future__ import annotations

import argparse
import asyncio
import cProfile
import logging
import os
import re
import sys
from collections.abc import Iterable, Sequence

from sniprobe.config.settings import ProbeSettings, load_settings
from sniprobe.errors import OutputSetupError, ProbeError, ResourceExhaustedError
from sniprobe.ingest.lines import read_domains
from sniprobe.logging_config import configure_logging
from sniprobe.output.sink import CsvResultSink, open_result_sink
from sniprobe.pool.endpoints import EndpointPool
from sniprobe.pool.types import Endpoint
from sniprobe.probe.connector import TlsConnector
from sniprobe.probe.worker import ProbeWorker
from sniprobe.services.scheduler import ProbeScheduler

logger = logging.getLogger(__name__)

EXIT_INTERRUPTED = 130

_DURATION_RE = re.compile(r"^\s*(\d+(?:\.\d+)?)\s*(ms|s|m|h)?\s*$")
_DURATION_UNITS = {"ms": 0.001, "s": 1.0, "m": 60.0, "h": 3600.0, None: 1.0}


def parse_duration(text: str) -> float:
    """Parse ``3``, ``3s``, ``500ms``, ``2m`` or ``1h`` into seconds."""
    match = _DURATION_RE.match(text)
    if not match:
        raise argparse.ArgumentTypeError(f"invalid duration: {text!r}")
    return float(match.group(1)) * _DURATION_UNITS[match.group(2)]


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="sniprobe",
        description=(
            "Test if SNI values in FILE(s) are censored. With no FILE, or when "
            "FILE is -, read standard input."
        ),
    )
    parser.add_argument("files", nargs="*", metavar="FILE", help="Domain list(s), globs allowed.")
    parser.add_argument(
        "-dip",
        "--dip",
        dest="destination_ips",
        default=None,
        help="Comma-separated destination IPs, e.g. 1.1.1.1,2.2.2.2 (default: 127.0.0.1).",
    )
    parser.add_argument(
        "-p",
        "--ports",
        dest="destination_ports",
        default=None,
        help="Comma-separated destination ports and ranges, e.g. 3000,4000-4002 "
        "(default: 10000-65000).",
    )
    parser.add_argument(
        "-worker",
        "--worker",
        dest="workers",
        type=int,
        default=None,
        help="Number of workers in parallel (default: 1000).",
    )
    parser.add_argument(
        "-timeout",
        "--timeout",
        dest="timeout_seconds",
        type=parse_duration,
        default=None,
        help="TCP connect and TLS handshake timeout, e.g. 3s (default: 3s).",
    )
    parser.add_argument(
        "-residual",
        "--residual",
        dest="residual_seconds",
        type=parse_duration,
        default=None,
        help="Residual censorship duration applied to an endpoint after a reset "
        "(default: 180s).",
    )
    parser.add_argument(
        "--tcp-timeout-cooldown",
        dest="tcp_timeout_cooldown_seconds",
        type=parse_duration,
        default=None,
        help="Cooldown for an endpoint whose TCP connect timed out (default: 30s).",
    )
    parser.add_argument(
        "-out", "--out", dest="output_path", default=None, help="Output CSV file (default: stdout)."
    )
    parser.add_argument(
        "-log", "--log", dest="log_path", default=None, help="Log file (default: stderr)."
    )
    parser.add_argument("--log-level", dest="log_level", default=None, help="Default: INFO.")
    parser.add_argument(
        "--log-format", dest="log_format", choices=["text", "json"], default=None
    )
    parser.add_argument(
        "--flush",
        dest="flush",
        action=argparse.BooleanOptionalAction,
        default=None,
        help="Flush after every output row (default: on).",
    )
    parser.add_argument(
        "-cpuprofile",
        "--cpuprofile",
        dest="cpuprofile",
        default=None,
        help="Write a cProfile dump of the run to this file.",
    )
    parser.add_argument(
        "--config", dest="config", default=None, help="YAML profile with default settings."
    )
    return parser


_SETTINGS_ARGS = (
    "destination_ips",
    "destination_ports",
    "workers",
    "timeout_seconds",
    "residual_seconds",
    "tcp_timeout_cooldown_seconds",
    "output_path",
    "log_path",
    "log_level",
    "log_format",
    "flush",
    "cpuprofile",
)


def _check_profile_path(path: str) -> None:
    try:
        with open(path, "wb"):
            pass
    except OSError as exc:
        raise OutputSetupError(f"Failed to open cpu profile file {path}: {exc}") from exc


async def _probe(
    settings: ProbeSettings,
    endpoints: list[Endpoint],
    domains: Iterable[str],
    sink: CsvResultSink,
) -> dict:
    pool = EndpointPool(endpoints)
    connector = TlsConnector(
        timeout_seconds=settings.timeout_seconds,
        read_buffer_bytes=settings.read_buffer_bytes,
    )
    worker = ProbeWorker(pool=pool, connector=connector, settings=settings)
    scheduler = ProbeScheduler(
        worker=worker,
        sink=sink,
        workers=settings.workers,
        job_queue_size=settings.job_queue_size,
        result_queue_size=settings.result_queue_size,
    )
    try:
        return await scheduler.run(domains)
    finally:
        pool.close()


def main(argv: Sequence[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    overrides = {name: getattr(args, name) for name in _SETTINGS_ARGS}

    try:
        settings = load_settings(args.config, overrides)
        configure_logging(settings.log_level, settings.log_path, settings.log_format)
        if settings.cpuprofile:
            _check_profile_path(settings.cpuprofile)
        endpoints = settings.endpoints()
        domains = read_domains(args.files)
        sink = open_result_sink(settings.output_path, flush=settings.flush)
    except ProbeError as exc:
        logger.error("%s %s", exc.message, exc.details or "")
        return exc.exit_code

    logger.info(
        "Probing %s ports %s with %d workers (timeout=%.1fs, residual=%.0fs)",
        settings.destination_ips,
        settings.destination_ports,
        settings.workers,
        settings.timeout_seconds,
        settings.residual_seconds,
    )

    profiler = cProfile.Profile() if settings.cpuprofile else None
    if profiler is not None:
        profiler.enable()

    try:
        asyncio.run(_probe(settings, endpoints, domains, sink))
    except ResourceExhaustedError as exc:
        logger.critical("Fail fast: %s (lower --worker or raise the open files limit)", exc.message)
        return exc.exit_code
    except ProbeError as exc:
        logger.error("%s %s", exc.message, exc.details or "")
        return exc.exit_code
    except KeyboardInterrupt:
        logger.warning("Interrupted")
        return EXIT_INTERRUPTED
    finally:
        if profiler is not None:
            profiler.disable()
            profiler.dump_stats(settings.cpuprofile)
            logger.info("CPU profile written to %s", settings.cpuprofile)

    return 0


def entrypoint() -> None:
    """Console-script entry: run ``main`` and exit with its status.

    After a resource-exhaustion abort the input reader thread may still be
    blocked on standard input, so the process exits without joining it.
    """
    code = main()
    if code == ResourceExhaustedError.exit_code:
        logging.shutdown()
        sys.stdout.flush()
        sys.stderr.flush()
        os._exit(code)
    sys.exit(code)


if __name__ == "__main__":  # pragma: no cover
    entrypoint()
