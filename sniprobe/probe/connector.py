"""TCP connect and minimal TLS ClientHello exchange.

The TLS leg drives an ``ssl.SSLObject`` over memory BIOs on top of plain
asyncio streams instead of ``start_tls``. Reading the raw stream ourselves
keeps the distinction the classifier needs: a peer FIN shows up as an empty
read (EOF) and a peer RST as ``ConnectionResetError``, while asyncio's
TLS transport reports both as a reset during the handshake.

Certificates are verified with the default context, so a TLS-terminating
server with a certificate for another name surfaces as a hostname mismatch.
"""

from __future__ import annotations

import asyncio
import logging
import ssl
from dataclasses import dataclass
from typing import Protocol

from sniprobe.pool.types import Endpoint

logger = logging.getLogger(__name__)

# Bytes requested per read while the handshake is in progress
_HANDSHAKE_CHUNK = 16384


@dataclass
class Connection:
    """An open TCP connection to an endpoint."""

    endpoint: Endpoint
    reader: asyncio.StreamReader
    writer: asyncio.StreamWriter


class Connector(Protocol):
    """What the probe worker needs from the network.

    ``connect`` and ``hello`` raise whatever the network raised; the worker
    hands those exceptions to the classifier.
    """

    async def connect(self, endpoint: Endpoint) -> Connection: ...

    async def hello(self, conn: Connection, sni: str) -> bytes: ...

    async def close(self, conn: Connection) -> None: ...


class TlsConnector:
    """Opens TCP connections and sends a ClientHello carrying an SNI value.

    Parameters
    ----------
    timeout_seconds:
        TCP connect timeout, and the deadline for the TLS exchange plus the
        trailing read.
    read_buffer_bytes:
        Size of the buffer read after a completed handshake.
    ssl_context:
        Context used to build the ClientHello. Defaults to
        ``ssl.create_default_context()``.
    """

    def __init__(
        self,
        *,
        timeout_seconds: float = 3.0,
        read_buffer_bytes: int = 10,
        ssl_context: ssl.SSLContext | None = None,
    ) -> None:
        self._timeout = timeout_seconds
        self._read_buffer_bytes = read_buffer_bytes
        self._ssl_context = ssl_context or ssl.create_default_context()

    async def connect(self, endpoint: Endpoint) -> Connection:
        """Open a TCP connection within the timeout."""
        reader, writer = await asyncio.wait_for(
            asyncio.open_connection(endpoint.host, endpoint.port),
            timeout=self._timeout,
        )
        return Connection(endpoint=endpoint, reader=reader, writer=writer)

    async def hello(self, conn: Connection, sni: str) -> bytes:
        """Run the TLS handshake with *sni*, then read a small buffer.

        Returns whatever the peer sent after a completed handshake (possibly
        nothing). Failures of the handshake itself propagate.
        """
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self._timeout

        incoming = ssl.MemoryBIO()
        outgoing = ssl.MemoryBIO()
        tls = self._ssl_context.wrap_bio(incoming, outgoing, server_hostname=sni)

        await asyncio.wait_for(
            self._handshake(conn, tls, incoming, outgoing),
            timeout=self._timeout,
        )

        remaining = deadline - loop.time()
        if remaining <= 0:
            return b""

        try:
            data = await asyncio.wait_for(
                conn.reader.read(self._read_buffer_bytes), timeout=remaining
            )
        except (asyncio.TimeoutError, OSError) as exc:
            logger.debug("Nothing read after handshake with %s: %r", conn.endpoint, exc)
            return b""

        if data:
            logger.debug("Recv from %s: %r (%d bytes)", conn.endpoint, data, len(data))
        return data

    async def close(self, conn: Connection) -> None:
        """Close the connection, ignoring errors from an already-dead socket."""
        conn.writer.close()
        try:
            await conn.writer.wait_closed()
        except OSError:
            logger.debug("Error closing connection to %s", conn.endpoint, exc_info=True)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    async def _handshake(
        self,
        conn: Connection,
        tls: ssl.SSLObject,
        incoming: ssl.MemoryBIO,
        outgoing: ssl.MemoryBIO,
    ) -> None:
        while True:
            try:
                tls.do_handshake()
            except ssl.SSLWantReadError:
                await self._flush(conn, outgoing)
                chunk = await conn.reader.read(_HANDSHAKE_CHUNK)
                if not chunk:
                    raise EOFError("Connection closed during TLS handshake")
                incoming.write(chunk)
                continue
            await self._flush(conn, outgoing)
            return

    @staticmethod
    async def _flush(conn: Connection, outgoing: ssl.MemoryBIO) -> None:
        data = outgoing.read()
        if data:
            conn.writer.write(data)
            await conn.writer.drain()
