"""
The backend side of the proxy: open one connection to the fixed backend address.
"""

import asyncio
import logging
import time

from rproxy import connection
from rproxy import exceptions
from rproxy.net.server_spec import Address
from rproxy.net.tls import TrustContext
from rproxy.proxy.config import DEFAULT_CONNECT_TIMEOUT
from rproxy.proxy.config import Transport
from rproxy.proxy.streams import PlainStream
from rproxy.proxy.streams import Stream
from rproxy.proxy.streams import TlsStream
from rproxy.utils import human

logger = logging.getLogger(__name__)


async def dial(
    transport: Transport,
    address: Address,
    trust: TrustContext | None = None,
    timeout: float = DEFAULT_CONNECT_TIMEOUT,
) -> Stream:
    """
    Connect to `address`, and for encrypted transport complete the TLS handshake,
    verifying the backend's identity. The whole operation is bounded by `timeout`.

    *Raises:*
     - BackendUnreachableError, if the connection is refused or times out.
     - BackendAuthError, if the TLS handshake fails.
    """
    if transport is Transport.ENCRYPTED and (trust is None or trust.is_server):
        raise exceptions.StartupConfigError(
            "An encrypted backend requires a client trust context."
        )
    server = connection.Server(address=address, timestamp_start=time.time())
    try:
        return await asyncio.wait_for(_dial(transport, server, trust), timeout)
    except asyncio.TimeoutError as e:
        server.error = f"timed out after {timeout:g}s"
        raise exceptions.BackendUnreachableError(
            f"Cannot connect to {human.format_address(address)}: {server.error}"
        ) from e


async def _dial(
    transport: Transport,
    server: connection.Server,
    trust: TrustContext | None,
) -> Stream:
    try:
        reader, writer = await asyncio.open_connection(*server.address)
    except OSError as e:
        server.error = str(e) or repr(e)
        raise exceptions.BackendUnreachableError(
            f"Cannot connect to {human.format_address(server.address)}: {server.error}"
        ) from e
    server.timestamp_tcp_setup = time.time()

    stream: Stream
    if transport is Transport.PLAIN:
        stream = PlainStream(reader, writer, server)
        logger.debug(f"server connect {server}")
        return stream

    assert trust
    stream = TlsStream(reader, writer, server, trust.new_connection())
    try:
        await stream.handshake()
    except (exceptions.TlsError, OSError) as e:
        server.error = str(e)
        stream.close()
        raise exceptions.BackendAuthError(
            f"TLS handshake with {human.format_address(server.address)} failed: {e}"
        ) from e
    except asyncio.CancelledError:
        stream.close()
        raise
    logger.debug(f"server connect {server} ({server.tls_version}, {server.cipher})")
    return stream
