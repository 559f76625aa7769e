"""Probe worker: the per-domain attempt loop.

For one domain: borrow an endpoint, TCP connect, send a ClientHello with
the domain as SNI, classify what happened, hand the endpoint back (or evict
it), then either stop with a result record or try the next endpoint.

There is no retry cap. The loop ends on a terminal outcome or when the pool
has no endpoints left, in which case the domain is dropped without a record.
"""

from __future__ import annotations

import logging
import time

from sniprobe.config.settings import ProbeSettings
from sniprobe.errors import EndpointPoolExhaustedError
from sniprobe.models.outcomes import Disposition, Outcome, OutcomeCode, Stage
from sniprobe.models.records import ResultRecord
from sniprobe.pool.endpoints import EndpointPool
from sniprobe.pool.types import Endpoint
from sniprobe.probe.classifier import classify, classify_error
from sniprobe.probe.connector import Connector

logger = logging.getLogger(__name__)


class ProbeWorker:
    """Runs the attempt loop for single domains.

    Dependencies are injected via the constructor so the loop is testable
    without real sockets. One instance is shared by all worker tasks; it
    holds no per-domain state.
    """

    def __init__(
        self,
        *,
        pool: EndpointPool,
        connector: Connector,
        settings: ProbeSettings,
    ) -> None:
        self._pool = pool
        self._connector = connector
        self._settings = settings

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def execute(self, domain: str, worker_id: int = 0) -> ResultRecord | None:
        """Probe *domain* until a decisive outcome or pool exhaustion.

        Returns the result record, or ``None`` when the domain is empty or
        every endpoint was evicted before a decisive outcome.

        Raises
        ------
        ResourceExhaustedError
            When the process runs out of file descriptors.
        """
        if not domain:
            return None

        endpoint = await self._borrow(domain, worker_id, attempts=0)
        if endpoint is None:
            return None

        # Timing starts at the first TCP attempt, not while waiting for the pool
        started_wall = time.time()
        started = time.monotonic()
        attempts = 0

        while True:
            attempts += 1
            outcome = await self._attempt(endpoint, domain)
            self._dispose(endpoint, outcome)

            logger.debug(
                "%s %s %s",
                domain,
                endpoint,
                outcome,
                extra={
                    "worker_id": worker_id,
                    "domain": domain,
                    "endpoint": endpoint.address,
                    "stage": outcome.stage.value,
                    "code": outcome.code.value,
                },
            )

            if outcome.terminal:
                break

            endpoint = await self._borrow(domain, worker_id, attempts)
            if endpoint is None:
                return None

        return ResultRecord(
            start_ms=int(started_wall * 1000),
            domain=domain,
            stage=outcome.stage,
            code=outcome.code,
            endpoint=endpoint.address,
            duration_ms=int((time.monotonic() - started) * 1000),
        )

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    async def _borrow(self, domain: str, worker_id: int, attempts: int) -> Endpoint | None:
        """Borrow the next endpoint, or ``None`` once the pool is exhausted."""
        try:
            return await self._pool.borrow()
        except EndpointPoolExhaustedError:
            logger.info(
                "Dropping %s after %d attempts: no endpoints left",
                domain,
                attempts,
                extra={"worker_id": worker_id, "domain": domain},
            )
            return None

    async def _attempt(self, endpoint: Endpoint, domain: str) -> Outcome:
        """One (domain, endpoint) attempt. Always yields exactly one outcome."""
        try:
            conn = await self._connector.connect(endpoint)
        except Exception as exc:
            return self._classify(Stage.TCP, exc, endpoint, domain)

        try:
            await self._connector.hello(conn, domain)
        except Exception as exc:
            return self._classify(Stage.TLS, exc, endpoint, domain)
        finally:
            await self._connector.close(conn)

        logger.warning(
            "TLS handshake with %s completed for %s; %s is not a sink",
            endpoint,
            domain,
            endpoint,
            extra={"domain": domain, "endpoint": endpoint.address},
        )
        return classify(Stage.TLS, None)

    def _classify(
        self, stage: Stage, exc: Exception, endpoint: Endpoint, domain: str
    ) -> Outcome:
        outcome = classify_error(stage, exc)
        if outcome.code is OutcomeCode.UNEXPECTED:
            logger.error(
                "Unexpected %s error from %s for %s: %r",
                stage.value,
                endpoint,
                domain,
                exc,
                exc_info=exc,
                extra={"domain": domain, "endpoint": endpoint.address, "stage": stage.value},
            )
        return outcome

    def _dispose(self, endpoint: Endpoint, outcome: Outcome) -> None:
        """Evict the endpoint or release it with the outcome's delay."""
        if outcome.disposition is Disposition.EVICT:
            logger.info(
                "%s answered %s; not using it again",
                endpoint,
                outcome,
                extra={"endpoint": endpoint.address, "code": outcome.code.value},
            )
            self._pool.evict(endpoint)
            return

        self._pool.release(endpoint, self._settings.release_delay(outcome.disposition))
