"""Unit tests for the per-domain attempt loop."""

import asyncio
import errno
import logging
import time

import pytest

from conftest import Behaviour, FakeConnector, cert_error, make_endpoints, ssl_error
from sniprobe.errors import ResourceExhaustedError
from sniprobe.models.outcomes import OutcomeCode, Stage
from sniprobe.pool.endpoints import EndpointPool
from sniprobe.pool.types import EndpointState
from sniprobe.probe.classifier import HOSTNAME_MISMATCH_VERIFY_CODE
from sniprobe.probe.worker import ProbeWorker


def _worker(pool, connector, settings) -> ProbeWorker:
    return ProbeWorker(pool=pool, connector=connector, settings=settings)


class TestSingleEndpointScenarios:
    @pytest.mark.asyncio
    async def test_refused_evicts_and_drops_domain(self, settings):
        endpoints = make_endpoints(1)
        pool = EndpointPool(endpoints)
        connector = FakeConnector(default=Behaviour(connect_error=ConnectionRefusedError))

        record = await _worker(pool, connector, settings).execute("example.com")

        assert record is None
        assert pool.state_of(endpoints[0]) is EndpointState.EVICTED
        assert pool.live_count == 0
        assert connector.hellos == []

    @pytest.mark.asyncio
    async def test_unreachable_evicts(self, settings):
        endpoints = make_endpoints(1)
        pool = EndpointPool(endpoints)
        connector = FakeConnector(
            default=Behaviour(connect_error=lambda: OSError(errno.ENETUNREACH, "unreachable"))
        )

        assert await _worker(pool, connector, settings).execute("example.com") is None
        assert pool.state_of(endpoints[0]) is EndpointState.EVICTED

    @pytest.mark.asyncio
    async def test_tls_reset_reports_and_applies_residual_delay(self, settings):
        endpoints = make_endpoints(1)
        pool = EndpointPool(endpoints)
        connector = FakeConnector(default=Behaviour(hello_error=ConnectionResetError))

        record = await _worker(pool, connector, settings).execute("example.com")

        assert record is not None
        assert (record.stage, record.code) == (Stage.TLS, OutcomeCode.RST)
        assert record.domain == "example.com"
        assert record.endpoint == endpoints[0].address
        assert pool.state_of(endpoints[0]) is EndpointState.COOLING
        with pytest.raises(asyncio.TimeoutError):
            await asyncio.wait_for(pool.borrow(), timeout=0.05)
        pool.close()

    @pytest.mark.asyncio
    async def test_tls_timeout_is_reported_and_released(self, settings):
        endpoints = make_endpoints(1)
        pool = EndpointPool(endpoints)
        connector = FakeConnector(default=Behaviour(hello_error=TimeoutError))

        record = await _worker(pool, connector, settings).execute("example.com")

        assert record.code is OutcomeCode.TIMEOUT
        assert record.stage is Stage.TLS
        assert pool.state_of(endpoints[0]) is EndpointState.AVAILABLE

    @pytest.mark.asyncio
    async def test_completed_handshake_is_reported_as_success(self, settings, caplog):
        pool = EndpointPool(make_endpoints(1))
        connector = FakeConnector(default=Behaviour())

        with caplog.at_level(logging.WARNING, logger="sniprobe.probe.worker"):
            record = await _worker(pool, connector, settings).execute("example.com")

        assert record.code is OutcomeCode.SUCCESS
        assert "completed" in caplog.text
        assert connector.closed == 1

    @pytest.mark.asyncio
    async def test_hostname_mismatch_is_reported_and_evicted(self, settings):
        endpoints = make_endpoints(1)
        pool = EndpointPool(endpoints)
        connector = FakeConnector(
            default=Behaviour(hello_error=lambda: cert_error(HOSTNAME_MISMATCH_VERIFY_CODE))
        )

        record = await _worker(pool, connector, settings).execute("example.com")

        assert record.code is OutcomeCode.X509_HOSTNAME_ERROR
        assert pool.state_of(endpoints[0]) is EndpointState.EVICTED

    @pytest.mark.asyncio
    async def test_unexpected_error_is_reported_and_logged(self, settings, caplog):
        pool = EndpointPool(make_endpoints(1))
        connector = FakeConnector(default=Behaviour(hello_error=lambda: RuntimeError("boom")))

        with caplog.at_level(logging.ERROR, logger="sniprobe.probe.worker"):
            record = await _worker(pool, connector, settings).execute("example.com")

        assert record.code is OutcomeCode.UNEXPECTED
        assert record.stage is Stage.TLS
        assert "boom" in caplog.text

    @pytest.mark.asyncio
    async def test_tcp_eof_is_terminal(self, settings):
        pool = EndpointPool(make_endpoints(1))
        connector = FakeConnector(default=Behaviour(connect_error=EOFError))

        record = await _worker(pool, connector, settings).execute("example.com")

        assert (record.stage, record.code) == (Stage.TCP, OutcomeCode.EOF)


class TestRetries:
    @pytest.mark.asyncio
    async def test_tcp_timeout_then_tls_eof(self, settings):
        endpoints = make_endpoints(2)
        pool = EndpointPool(endpoints)
        connector = FakeConnector(
            behaviours={
                endpoints[0].address: Behaviour(connect_error=TimeoutError, connect_delay=0.05),
                endpoints[1].address: Behaviour(hello_error=EOFError),
            }
        )

        record = await _worker(pool, connector, settings).execute("example.com")

        assert (record.stage, record.code) == (Stage.TLS, OutcomeCode.EOF)
        assert record.endpoint == endpoints[1].address
        assert pool.state_of(endpoints[0]) is EndpointState.COOLING
        assert pool.state_of(endpoints[1]) is EndpointState.AVAILABLE
        pool.close()

    @pytest.mark.asyncio
    async def test_duration_counts_from_first_tcp_attempt(self, settings):
        endpoints = make_endpoints(2)
        pool = EndpointPool(endpoints)
        connector = FakeConnector(
            behaviours={
                endpoints[0].address: Behaviour(connect_error=TimeoutError, connect_delay=0.1),
                endpoints[1].address: Behaviour(hello_error=ConnectionResetError, hello_delay=0.02),
            }
        )

        before_ms = int(time.time() * 1000)
        record = await _worker(pool, connector, settings).execute("example.com")
        after_ms = int(time.time() * 1000)

        assert record.duration_ms >= 100
        assert before_ms <= record.start_ms <= before_ms + 50
        assert record.start_ms + record.duration_ms <= after_ms + 5
        pool.close()

    @pytest.mark.asyncio
    async def test_record_header_error_evicts_and_tries_next(self, settings):
        endpoints = make_endpoints(2)
        pool = EndpointPool(endpoints)
        connector = FakeConnector(
            behaviours={
                endpoints[0].address: Behaviour(
                    hello_error=lambda: ssl_error("WRONG_VERSION_NUMBER")
                ),
                endpoints[1].address: Behaviour(hello_error=TimeoutError),
            }
        )

        record = await _worker(pool, connector, settings).execute("example.com")

        assert record.code is OutcomeCode.TIMEOUT
        assert record.endpoint == endpoints[1].address
        assert pool.state_of(endpoints[0]) is EndpointState.EVICTED

    @pytest.mark.asyncio
    async def test_reset_during_connect_retries_immediately(self, settings):
        endpoints = make_endpoints(2)
        pool = EndpointPool(endpoints)
        connector = FakeConnector(
            behaviours={endpoints[0].address: Behaviour(connect_error=ConnectionResetError)}
        )

        record = await _worker(pool, connector, settings).execute("example.com")

        assert record.code is OutcomeCode.EOF
        assert connector.connects == [endpoints[0].address, endpoints[1].address]
        assert pool.state_of(endpoints[0]) is EndpointState.AVAILABLE

    @pytest.mark.asyncio
    async def test_unclassified_connect_error_moves_to_next_endpoint(self, settings, caplog):
        endpoints = make_endpoints(2)
        pool = EndpointPool(endpoints)
        connector = FakeConnector(
            behaviours={
                endpoints[0].address: Behaviour(
                    connect_error=lambda: OSError(errno.EADDRNOTAVAIL, "Cannot assign requested address")
                ),
                endpoints[1].address: Behaviour(hello_error=EOFError),
            }
        )

        with caplog.at_level(logging.ERROR, logger="sniprobe.probe.worker"):
            record = await _worker(pool, connector, settings).execute("example.com")

        assert (record.stage, record.code) == (Stage.TLS, OutcomeCode.EOF)
        assert record.endpoint == endpoints[1].address
        assert connector.connects == [endpoints[0].address, endpoints[1].address]
        assert pool.state_of(endpoints[0]) is EndpointState.AVAILABLE
        assert "Unexpected TCP error" in caplog.text

    @pytest.mark.asyncio
    async def test_timing_starts_after_first_borrow(self, settings):
        endpoints = make_endpoints(1)
        pool = EndpointPool(endpoints)
        held = await pool.borrow()
        worker = _worker(pool, FakeConnector(), settings)

        task = asyncio.create_task(worker.execute("example.com"))
        await asyncio.sleep(0.1)
        before_ms = int(time.time() * 1000)
        pool.release(held)
        record = await asyncio.wait_for(task, timeout=1.0)

        assert record.start_ms >= before_ms
        assert record.duration_ms < 100

    @pytest.mark.asyncio
    async def test_all_endpoints_refused_drops_domain(self, settings):
        endpoints = make_endpoints(5)
        pool = EndpointPool(endpoints)
        connector = FakeConnector(default=Behaviour(connect_error=ConnectionRefusedError))

        assert await _worker(pool, connector, settings).execute("example.com") is None
        assert sorted(connector.connects) == sorted(e.address for e in endpoints)
        assert pool.live_count == 0

    @pytest.mark.asyncio
    async def test_sni_is_the_domain(self, settings):
        pool = EndpointPool(make_endpoints(1))
        connector = FakeConnector()
        await _worker(pool, connector, settings).execute("www.example.org")
        assert connector.hellos == [("192.0.2.1:20000", "www.example.org")]


class TestEdgeCases:
    @pytest.mark.asyncio
    async def test_empty_domain_is_noop(self, settings):
        pool = EndpointPool(make_endpoints(1))
        connector = FakeConnector()
        assert await _worker(pool, connector, settings).execute("") is None
        assert connector.connects == []
        assert pool.get_stats()["borrowed_count"] == 0

    @pytest.mark.asyncio
    async def test_file_descriptor_exhaustion_is_fatal(self, settings):
        pool = EndpointPool(make_endpoints(1))
        connector = FakeConnector(
            default=Behaviour(connect_error=lambda: OSError(errno.EMFILE, "Too many open files"))
        )
        with pytest.raises(ResourceExhaustedError):
            await _worker(pool, connector, settings).execute("example.com")
