"""Endpoint pool with borrow, delayed re-insertion and permanent eviction.

The pool owns the authoritative state of every endpoint. Workers ``borrow``
an endpoint for one attempt and hand it back with ``release`` (optionally
after a cooldown) or drop it for good with ``evict``.

Available endpoints sit in an ``asyncio.Queue``; delayed releases are
event-loop timers (``loop.call_later``) so a cooling endpoint never holds a
worker. Every re-insertion consults the state map first, which is what
makes an eviction win over a release that was already scheduled.

All transitions run synchronously between awaits, so they are atomic with
respect to the other tasks on the loop.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterable, Sequence
from ipaddress import IPv4Address, IPv6Address

from sniprobe.errors import EndpointPoolExhaustedError
from sniprobe.pool.types import Endpoint, EndpointState

logger = logging.getLogger(__name__)


class _Exhausted:
    """Queue marker meaning no non-evicted endpoint is left.

    Every borrower that picks it up puts it back before raising, so all
    blocked borrowers wake up.
    """


_EXHAUSTED = _Exhausted()


def build_endpoints(
    ips: Sequence[IPv4Address | IPv6Address | str],
    ports: Sequence[int],
) -> list[Endpoint]:
    """Cross product of *ports* and *ips*, port-major.

    Iterating ports outside and IPs inside means consecutive borrows hit
    different servers before any server sees the next port.
    """
    return [Endpoint(host=str(ip), port=port) for port in ports for ip in ips]


class EndpointPool:
    """Concurrency-safe pool of destination endpoints.

    Lifecycle of an endpoint
    ------------------------
    ``available -> in_use`` on ``borrow()``;
    ``in_use -> cooling -> available`` on ``release(endpoint, delay)``;
    ``any -> evicted`` on ``evict(endpoint)``, never reversed.
    """

    def __init__(self, endpoints: Iterable[Endpoint]) -> None:
        self._available: asyncio.Queue[Endpoint | _Exhausted] = asyncio.Queue()
        self._states: dict[Endpoint, EndpointState] = {}
        self._timers: dict[Endpoint, asyncio.TimerHandle] = {}
        self._live = 0

        # Counters for get_stats()
        self._borrowed_count = 0
        self._released_count = 0
        self._evicted_count = 0

        duplicates = 0
        for endpoint in endpoints:
            if endpoint in self._states:
                duplicates += 1
                continue
            self._states[endpoint] = EndpointState.AVAILABLE
            self._available.put_nowait(endpoint)
            self._live += 1

        if duplicates:
            logger.debug("Ignored %d duplicate endpoints", duplicates)
        if self._live == 0:
            self._available.put_nowait(_EXHAUSTED)

        logger.info("Endpoint pool initialized with %d endpoints", self._live)

    @classmethod
    def from_targets(
        cls,
        ips: Sequence[IPv4Address | IPv6Address | str],
        ports: Sequence[int],
    ) -> EndpointPool:
        """Build a pool from destination IPs and ports (port-major order)."""
        return cls(build_endpoints(ips, ports))

    # ------------------------------------------------------------------
    # Borrow
    # ------------------------------------------------------------------

    async def borrow(self) -> Endpoint:
        """Wait for an available endpoint and mark it in use.

        Raises ``EndpointPoolExhaustedError`` once every endpoint has been
        evicted, including for borrowers that were already waiting.
        """
        while True:
            if self._live == 0:
                raise EndpointPoolExhaustedError()

            item = await self._available.get()

            if isinstance(item, _Exhausted):
                self._available.put_nowait(item)
                raise EndpointPoolExhaustedError()

            # Guard against entries evicted while they sat in the queue
            if self._states.get(item) is not EndpointState.AVAILABLE:
                continue

            self._states[item] = EndpointState.IN_USE
            self._borrowed_count += 1
            return item

    # ------------------------------------------------------------------
    # Release / evict
    # ------------------------------------------------------------------

    def release(self, endpoint: Endpoint, delay: float = 0.0) -> None:
        """Return *endpoint* to the pool after *delay* seconds.

        The endpoint is ``cooling`` until the delay elapses and only then
        becomes visible to ``borrow()``. Releasing an evicted endpoint does
        nothing.
        """
        state = self._states.get(endpoint)
        if state is None:
            raise KeyError(f"Unknown endpoint {endpoint}")
        if state is EndpointState.EVICTED:
            return

        self._cancel_timer(endpoint)
        self._states[endpoint] = EndpointState.COOLING
        self._released_count += 1

        if delay <= 0:
            self._make_available(endpoint)
            return

        loop = asyncio.get_running_loop()
        self._timers[endpoint] = loop.call_later(delay, self._make_available, endpoint)
        logger.debug("Endpoint %s cooling for %.1fs", endpoint, delay)

    def evict(self, endpoint: Endpoint) -> None:
        """Remove *endpoint* for the rest of the run, cancelling any pending release."""
        state = self._states.get(endpoint)
        if state is None:
            raise KeyError(f"Unknown endpoint {endpoint}")
        if state is EndpointState.EVICTED:
            return

        self._cancel_timer(endpoint)
        self._states[endpoint] = EndpointState.EVICTED
        self._evicted_count += 1
        self._live -= 1
        logger.warning(
            "Endpoint evicted: %s (%d endpoints left)", endpoint, self._live
        )

        if self._live == 0:
            logger.warning("Endpoint pool exhausted, all endpoints evicted")
            self._available.put_nowait(_EXHAUSTED)

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    def state_of(self, endpoint: Endpoint) -> EndpointState:
        """Current state of *endpoint*. Raises ``KeyError`` for unknown endpoints."""
        return self._states[endpoint]

    @property
    def live_count(self) -> int:
        """Number of endpoints that are not evicted."""
        return self._live

    def get_stats(self) -> dict:
        """Return pool statistics."""
        counts = {state: 0 for state in EndpointState}
        for state in self._states.values():
            counts[state] += 1

        return {
            "total": len(self._states),
            "available": counts[EndpointState.AVAILABLE],
            "in_use": counts[EndpointState.IN_USE],
            "cooling": counts[EndpointState.COOLING],
            "evicted": counts[EndpointState.EVICTED],
            "borrowed_count": self._borrowed_count,
            "released_count": self._released_count,
            "evicted_count": self._evicted_count,
        }

    def close(self) -> None:
        """Cancel all pending release timers."""
        for handle in self._timers.values():
            handle.cancel()
        self._timers.clear()

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _make_available(self, endpoint: Endpoint) -> None:
        self._timers.pop(endpoint, None)
        if self._states.get(endpoint) is not EndpointState.COOLING:
            return
        self._states[endpoint] = EndpointState.AVAILABLE
        self._available.put_nowait(endpoint)

    def _cancel_timer(self, endpoint: Endpoint) -> None:
        handle = self._timers.pop(endpoint, None)
        if handle is not None:
            handle.cancel()
