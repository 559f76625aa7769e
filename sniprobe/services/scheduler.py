"""Asyncio worker pool that feeds domains to probe workers.

One feeder task moves domains from the ingestion iterator into a bounded
job queue. ``workers`` worker tasks loop pulling domains and running the
probe worker; decisive results go into a bounded result queue drained by a
single writer task, so rows are never interleaved.

Shutdown is by sentinel: the feeder puts one stop marker per worker after
the last domain, and the last worker to stop puts a stop marker for the
writer. A worker failing with ``ResourceExhaustedError`` (or any other
exception) cancels everything and the error propagates out of ``run``.
"""

from __future__ import annotations

import asyncio
import itertools
import logging
import time
from collections.abc import Iterable, Iterator
from concurrent.futures import ThreadPoolExecutor

from sniprobe.models.records import ResultRecord
from sniprobe.output.sink import CsvResultSink
from sniprobe.probe.worker import ProbeWorker

logger = logging.getLogger(__name__)

# Domains read from the ingestion iterator per hop off the event loop
_FEED_CHUNK = 1000


class _Stop:
    """Queue marker telling a worker or the writer to stop."""


_STOP = _Stop()


def _take(iterator: Iterator[str], count: int) -> list[str]:
    return list(itertools.islice(iterator, count))


class ProbeScheduler:
    """Runs a fixed number of concurrent probe workers over a stream of domains.

    Parameters
    ----------
    worker:
        Probe worker shared by every worker task.
    sink:
        Destination of result records. Closed when ``run`` ends.
    workers:
        Number of concurrent worker tasks.
    job_queue_size:
        Capacity of the job queue between the feeder and the workers.
    result_queue_size:
        Capacity of the result queue between the workers and the writer.
    """

    def __init__(
        self,
        *,
        worker: ProbeWorker,
        sink: CsvResultSink,
        workers: int = 1000,
        job_queue_size: int = 100,
        result_queue_size: int = 100,
    ) -> None:
        self._worker = worker
        self._sink = sink
        self._max_workers = workers
        self._jobs: asyncio.Queue[str | _Stop] = asyncio.Queue(maxsize=job_queue_size)
        self._results: asyncio.Queue[ResultRecord | _Stop] = asyncio.Queue(
            maxsize=result_queue_size
        )

        # Worker tasks still looping
        self._running_workers = 0

        # Active worker count (currently probing a domain)
        self._active_workers = 0

        # Stats tracking
        self._received_count = 0
        self._skipped_count = 0
        self._emitted_count = 0
        self._dropped_count = 0

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def run(self, domains: Iterable[str]) -> dict:
        """Probe every domain and write results to the sink.

        Returns the final stats once all jobs are drained, all workers have
        finished and the sink is closed.
        """
        started = time.monotonic()
        self._running_workers = self._max_workers

        # Private reader thread: asyncio.run() does not wait for it on an abort,
        # so a read blocked on a quiet stdin pipe cannot hold the exit
        reader = ThreadPoolExecutor(max_workers=1, thread_name_prefix="probe-reader")

        tasks: list[asyncio.Task[None]] = [
            asyncio.create_task(self._feed(iter(domains), reader), name="probe-feeder"),
            asyncio.create_task(self._write_results(), name="probe-writer"),
        ]
        for i in range(self._max_workers):
            tasks.append(
                asyncio.create_task(self._worker_loop(i), name=f"probe-worker-{i}")
            )
        logger.info("Started %d probe workers", self._max_workers)

        try:
            done, pending = await asyncio.wait(tasks, return_when=asyncio.FIRST_EXCEPTION)
            for task in done:
                exc = task.exception()
                if exc is not None:
                    logger.critical("Aborting run: %s failed: %r", task.get_name(), exc)
                    raise exc
        finally:
            for task in tasks:
                if not task.done():
                    task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            reader.shutdown(wait=False, cancel_futures=True)
            self._sink.close()

        stats = self.get_stats()
        logger.info(
            "Run finished in %.1fs: %d domains, %d results, %d dropped, %d empty",
            time.monotonic() - started,
            stats["received_count"],
            stats["emitted_count"],
            stats["dropped_count"],
            stats["skipped_count"],
        )
        return stats

    def get_stats(self) -> dict:
        """Return current scheduler statistics."""
        return {
            "queue_depth": self._jobs.qsize(),
            "active_workers": self._active_workers,
            "received_count": self._received_count,
            "skipped_count": self._skipped_count,
            "emitted_count": self._emitted_count,
            "dropped_count": self._dropped_count,
        }

    # ------------------------------------------------------------------
    # Tasks
    # ------------------------------------------------------------------

    async def _feed(self, domains: Iterator[str], reader: ThreadPoolExecutor) -> None:
        """Move domains into the job queue, then stop every worker."""
        loop = asyncio.get_running_loop()
        while True:
            # Input may be a pipe on stdin; read it off the loop thread
            chunk = await loop.run_in_executor(reader, _take, domains, _FEED_CHUNK)
            if not chunk:
                break
            for domain in chunk:
                await self._jobs.put(domain)
                self._received_count += 1

        logger.debug("Feeder done after %d domains", self._received_count)
        for _ in range(self._max_workers):
            await self._jobs.put(_STOP)

    async def _worker_loop(self, worker_id: int) -> None:
        """Worker coroutine: pulls domains and probes them."""
        logger.debug("Worker %d started", worker_id)

        while True:
            domain = await self._jobs.get()
            if isinstance(domain, _Stop):
                break

            # Skip empty domain names
            if not domain:
                self._skipped_count += 1
                continue

            logger.debug("Worker %d got %s", worker_id, domain)
            self._active_workers += 1
            try:
                record = await self._worker.execute(domain, worker_id)
            finally:
                self._active_workers -= 1

            if record is None:
                self._dropped_count += 1
                continue

            await self._results.put(record)
            logger.debug("Worker %d finished %s via %s", worker_id, domain, record.endpoint)

        logger.debug("Worker %d stopped", worker_id)
        self._running_workers -= 1
        if self._running_workers == 0:
            await self._results.put(_STOP)

    async def _write_results(self) -> None:
        """Single writer: drains the result queue into the sink."""
        while True:
            item = await self._results.get()
            if isinstance(item, _Stop):
                break
            self._sink.write(item)
            self._emitted_count += 1
