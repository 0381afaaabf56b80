"""
The listen side of the proxy.

Example:

    listener = Listener(Transport.ENCRYPTED, ("127.0.0.1", 9000), handle, trust)
    await listener.start()
    # TCP server is running now, every accepted connection is passed to handle().
"""

from __future__ import annotations

import asyncio
import errno
import logging
import time
from collections.abc import Awaitable
from collections.abc import Callable

from rproxy import connection
from rproxy import exceptions
from rproxy.net.server_spec import Address
from rproxy.net.tls import TrustContext
from rproxy.proxy.config import Transport
from rproxy.proxy.streams import PlainStream
from rproxy.proxy.streams import Stream
from rproxy.proxy.streams import TlsStream
from rproxy.utils import asyncio_utils
from rproxy.utils import human

logger = logging.getLogger(__name__)

ConnectionHandler = Callable[[Stream], Awaitable[None]]
Reporter = Callable[[connection.Connection, exceptions.RProxyException], None]


def log_report(conn: connection.Connection, error: exceptions.RProxyException) -> None:
    """Default reporting sink: log per-connection errors and move on."""
    logger.warning(f"{type(error).__name__}: {error}", extra={"client": conn.peername})


class Listener:
    """
    Accepts connections on one address and hands them to `handler` as ready-to-use streams.

    Every connection is served in its own task. If the listen side is encrypted,
    the TLS handshake (including client certificate verification) runs in that task,
    so a slow or failing handshake never delays other connections.
    """

    _server: asyncio.Server | None = None

    def __init__(
        self,
        transport: Transport,
        address: Address,
        handler: ConnectionHandler,
        trust: TrustContext | None = None,
        report: Reporter = log_report,
    ) -> None:
        if transport is Transport.ENCRYPTED:
            if trust is None or not trust.is_server:
                raise exceptions.StartupConfigError(
                    "An encrypted listener requires a server trust context."
                )
        self.transport = transport
        self.address = address
        self.handler = handler
        self.trust = trust
        self.report = report
        self.connections: set[asyncio.Task] = set()

    @property
    def description(self) -> str:
        return f"{self.transport.value} listener"

    @property
    def is_running(self) -> bool:
        return self._server is not None

    @property
    def listen_addrs(self) -> tuple[Address, ...]:
        if self._server is None:
            return ()
        try:
            return tuple(sock.getsockname() for sock in self._server.sockets)
        except OSError:  # pragma: no cover
            return ()

    async def start(self) -> None:
        assert self._server is None
        host, port = self.address
        try:
            self._server = await asyncio.start_server(self.handle_stream, host, port)
        except OSError as e:
            message = f"{self.description} failed to listen on {host or '*'}:{port} with {e}"
            if e.errno == errno.EADDRINUSE:
                message += "\nTry specifying a different listen port."
            raise OSError(e.errno, message) from e
        addrs = " and ".join({human.format_address(a) for a in self.listen_addrs})
        logger.info(f"{self.description} listening at {addrs}.")

    async def stop(self) -> None:
        assert self._server is not None
        listen_addrs = self.listen_addrs
        try:
            self._server.close()
            for t in list(self.connections):
                t.cancel("listener stopped")
            if self.connections:
                await asyncio.wait(list(self.connections))
            await self._server.wait_closed()
        finally:
            self._server = None
        addrs = " and ".join({human.format_address(a) for a in listen_addrs})
        logger.info(f"{self.description} at {addrs} stopped.")

    async def handle_stream(
        self,
        reader: asyncio.StreamReader,
        writer: asyncio.StreamWriter,
    ) -> None:
        client = connection.Client(
            peername=writer.get_extra_info("peername"),
            sockname=writer.get_extra_info("sockname"),
            timestamp_start=time.time(),
        )
        task = asyncio.current_task()
        assert task
        asyncio_utils.set_task_debug_info(
            task, name="client connection handler", client=client.peername
        )
        self.connections.add(task)
        try:
            stream = await self.accept(reader, writer, client)
            if stream is not None:
                await self.handler(stream)
        finally:
            # no-op if the session has already closed the connection.
            writer.close()
            self.connections.discard(task)

    async def accept(
        self,
        reader: asyncio.StreamReader,
        writer: asyncio.StreamWriter,
        client: connection.Client,
    ) -> Stream | None:
        """
        Turn a freshly accepted socket into a stream.
        Returns None if the connection could not be accepted, after reporting why.
        """
        stream: Stream
        if self.transport is Transport.PLAIN:
            stream = PlainStream(reader, writer, client)
            logger.debug("client connect", extra={"client": client.peername})
            return stream

        assert self.trust
        stream = TlsStream(reader, writer, client, self.trust.new_connection())

        try:
            await stream.handshake()
        except (exceptions.TlsError, OSError) as e:
            client.error = str(e)
            stream.close()
            self.report(
                client, exceptions.AcceptError(f"Client TLS handshake failed: {e}")
            )
            return None
        logger.debug(
            f"client connect ({client.tls_version}, {client.cipher})",
            extra={"client": client.peername},
        )
        return stream
