"""
The proxy supervisor ties everything together:

    - Build the TLS trust contexts once, at startup. Bad certificates are fatal here.
    - Run the listener. Each accepted connection gets its own session:
      dial the backend, then relay bytes until either side closes.
    - Route per-session errors to a reporting sink. They never stop the accept loop.
"""

from __future__ import annotations

import asyncio
import logging

from rproxy import connection
from rproxy import exceptions
from rproxy.net import tls
from rproxy.net.server_spec import Address
from rproxy.proxy import dialer
from rproxy.proxy import relay
from rproxy.proxy.config import ProxyConfig
from rproxy.proxy.config import Transport
from rproxy.proxy.listener import Listener
from rproxy.proxy.listener import log_report
from rproxy.proxy.listener import Reporter
from rproxy.proxy.streams import Stream
from rproxy.utils import asyncio_utils
from rproxy.utils import human

logger = logging.getLogger(__name__)


def make_trust_contexts(
    config: ProxyConfig,
) -> tuple[tls.TrustContext | None, tls.TrustContext | None]:
    """
    Build the (server, client) trust contexts the configuration asks for.

    *Raises:*
     - TrustLoadError, IdentityLoadError
    """
    server_trust = client_trust = None
    if config.listen_transport is Transport.ENCRYPTED:
        assert config.root_cert and config.server_cert and config.server_key
        server_trust = tls.create_server_context(
            config.root_cert, config.server_cert, config.server_key
        )
    if config.backend_transport is Transport.ENCRYPTED:
        assert config.root_cert and config.client_cert and config.client_key
        client_trust = tls.create_client_context(
            config.root_cert,
            config.client_cert,
            config.client_key,
            config.server_name,
        )
    return server_trust, client_trust


class Proxy:
    """
    A reverse proxy relay from `config.listen_address` to `config.backend_address`.

    Constructing a Proxy loads all certificates, so configuration errors surface
    before anything is bound.
    """

    def __init__(self, config: ProxyConfig, report: Reporter | None = None) -> None:
        self.config = config
        self.report: Reporter = log_report if report is None else report
        self.server_trust, self.client_trust = make_trust_contexts(config)
        self.listener = Listener(
            config.listen_transport,
            config.listen_address,
            self.handle_session,
            self.server_trust,
            report=self.report,
        )
        # We expect an active event loop here already, shutdown() may be called from other threads.
        self.event_loop = asyncio.get_running_loop()
        self.should_exit = asyncio.Event()

    @property
    def listen_addrs(self) -> tuple[Address, ...]:
        return self.listener.listen_addrs

    @property
    def is_running(self) -> bool:
        return self.listener.is_running

    async def start(self) -> None:
        await self.listener.start()
        logger.info(
            f"Relaying to {self.config.backend_transport.value}://"
            f"{human.format_address(self.config.backend_address)}."
        )

    async def stop(self) -> None:
        if self.listener.is_running:
            await self.listener.stop()

    async def run(self) -> None:
        """
        Serve until `shutdown()` is called.
        Only startup errors (such as failing to bind) are raised from here.
        """
        with asyncio_utils.install_exception_handler(self._asyncio_exception_handler):
            self.should_exit.clear()
            await self.start()
            try:
                await self.should_exit.wait()
            finally:
                await self.stop()

    def shutdown(self) -> None:
        """
        Shut down the proxy. This method is thread-safe.
        """
        self.event_loop.call_soon_threadsafe(self.should_exit.set)

    async def handle_session(self, front: Stream) -> None:
        """Serve one accepted connection for its entire lifetime."""
        client = front.conn
        try:
            try:
                back = await dialer.dial(
                    self.config.backend_transport,
                    self.config.backend_address,
                    self.client_trust,
                    self.config.connect_timeout,
                )
            except exceptions.BackendError as e:
                client.error = str(e)
                front.close()
                self.report(client, e)
                return

            self.log(client, f"server connect {back.conn}")
            r = await relay.pipe(front, back, lambda e: self.report(client, e))
            self.log(
                client,
                f"client disconnect ({human.pretty_size(r.bytes_sent)} sent, "
                f"{human.pretty_size(r.bytes_received)} received)",
            )
        finally:
            front.close()

    def log(
        self, conn: connection.Connection, message: str, level: int = logging.INFO
    ) -> None:
        logger.log(level, message, extra={"client": conn.peername})

    def _asyncio_exception_handler(self, loop, context) -> None:
        try:
            exc: Exception = context["exception"]
        except KeyError:
            logger.error(f"Unhandled asyncio error: {context}")
        else:
            # This includes accept() failures of the listening socket, which asyncio retries.
            logger.error(
                context.get("message") or "Unhandled error in task.",
                exc_info=(type(exc), exc, exc.__traceback__),
            )
