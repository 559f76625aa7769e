"""Shared test fixtures, fakes and hypothesis strategies for the probe test suite."""

from __future__ import annotations

import asyncio
import logging
import os
import ssl
from collections.abc import Callable
from dataclasses import dataclass

import pytest
from hypothesis import strategies as st

from sniprobe.config.settings import ProbeSettings
from sniprobe.models.outcomes import FailureKind, Stage
from sniprobe.pool.endpoints import EndpointPool
from sniprobe.pool.types import Endpoint
from sniprobe.probe.connector import Connection


# ---------------------------------------------------------------------------
# Keep SNIPROBE_* variables from the outer environment out of the tests
# ---------------------------------------------------------------------------

@pytest.fixture(autouse=True)
def _clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for key in list(os.environ):
        if key.startswith("SNIPROBE_"):
            monkeypatch.delenv(key)


@pytest.fixture
def restore_root_logging():
    """Put the root logger back after a test reconfigures it."""
    root = logging.getLogger()
    handlers = list(root.handlers)
    level = root.level
    yield root
    for handler in root.handlers:
        if handler not in handlers:
            handler.close()
    root.handlers[:] = handlers
    root.setLevel(level)


# ---------------------------------------------------------------------------
# Settings fixture
# ---------------------------------------------------------------------------

@pytest.fixture
def settings() -> ProbeSettings:
    """Test settings with short, distinguishable delays."""
    return ProbeSettings(
        destination_ips="127.0.0.1",
        destination_ports="20000",
        workers=4,
        timeout_seconds=0.5,
        tcp_timeout_cooldown_seconds=30.0,
        residual_seconds=120.0,
    )


def make_endpoints(count: int, port: int = 20000) -> list[Endpoint]:
    return [Endpoint(host=f"192.0.2.{i + 1}", port=port) for i in range(count)]


def make_pool(count: int) -> EndpointPool:
    return EndpointPool(make_endpoints(count))


# ---------------------------------------------------------------------------
# Exception builders
# ---------------------------------------------------------------------------

def ssl_error(reason: str) -> ssl.SSLError:
    exc = ssl.SSLError(1, f"[SSL: {reason}] {reason.lower().replace('_', ' ')}")
    exc.reason = reason  # type: ignore[attr-defined]
    return exc


def cert_error(verify_code: int) -> ssl.SSLCertVerificationError:
    exc = ssl.SSLCertVerificationError(1, "certificate verify failed")
    exc.verify_code = verify_code  # type: ignore[attr-defined]
    return exc


# ---------------------------------------------------------------------------
# Fake connector
# ---------------------------------------------------------------------------

ErrorFactory = Callable[[], BaseException]


@dataclass
class Behaviour:
    """How a fake endpoint reacts. ``None`` errors mean the step succeeds."""

    connect_error: ErrorFactory | None = None
    hello_error: ErrorFactory | None = None
    connect_delay: float = 0.0
    hello_delay: float = 0.0


class FakeConnector:
    """Scripted stand-in for ``TlsConnector``, keyed by endpoint address."""

    def __init__(
        self,
        behaviours: dict[str, Behaviour] | None = None,
        default: Behaviour | None = None,
    ) -> None:
        self.behaviours = behaviours or {}
        self.default = default or Behaviour(hello_error=EOFError)
        self.connects: list[str] = []
        self.hellos: list[tuple[str, str]] = []
        self.closed = 0

    def _behaviour(self, endpoint: Endpoint) -> Behaviour:
        return self.behaviours.get(endpoint.address, self.default)

    async def connect(self, endpoint: Endpoint) -> Connection:
        behaviour = self._behaviour(endpoint)
        self.connects.append(endpoint.address)
        await asyncio.sleep(behaviour.connect_delay)
        if behaviour.connect_error is not None:
            raise behaviour.connect_error()
        return Connection(endpoint=endpoint, reader=None, writer=None)  # type: ignore[arg-type]

    async def hello(self, conn: Connection, sni: str) -> bytes:
        behaviour = self._behaviour(conn.endpoint)
        self.hellos.append((conn.endpoint.address, sni))
        await asyncio.sleep(behaviour.hello_delay)
        if behaviour.hello_error is not None:
            raise behaviour.hello_error()
        return b""

    async def close(self, conn: Connection) -> None:
        self.closed += 1


# ---------------------------------------------------------------------------
# Hypothesis strategies (reusable across property tests)
# ---------------------------------------------------------------------------

stages = st.sampled_from(list(Stage))
failure_kinds = st.sampled_from(
    [kind for kind in FailureKind if kind is not FailureKind.RESOURCE_EXHAUSTED]
)
domain_names = st.from_regex(r"[a-z]{1,12}(\.[a-z]{2,8}){1,2}", fullmatch=True)
ports = st.integers(min_value=1, max_value=65535)
ipv4_addresses = st.ip_addresses(v=4).map(str)
