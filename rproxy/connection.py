import time
import uuid
from collections.abc import Sequence
from dataclasses import dataclass
from dataclasses import field
from enum import Flag

from rproxy import certs
from rproxy.net.server_spec import Address
from rproxy.utils import human


class ConnectionState(Flag):
    """The current state of the underlying socket."""

    CLOSED = 0
    CAN_READ = 1
    CAN_WRITE = 2
    OPEN = CAN_READ | CAN_WRITE


kw_only = {"kw_only": True}


@dataclass(**kw_only)
class Connection:
    """
    Base class for front (client) and backend (server) connections.

    The connection object only exposes metadata about the connection, but not the underlying socket object.
    All I/O goes through the streams in `rproxy.proxy.streams`.
    """

    peername: Address | None = None
    """The remote's `(ip, port)` tuple for this connection."""
    sockname: Address | None = None
    """Our local `(ip, port)` tuple for this connection."""

    state: ConnectionState = ConnectionState.CLOSED
    """The current connection state."""

    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    """A unique UUID to identify the connection."""
    error: str | None = None
    """A string describing why this connection failed, if it did."""

    tls: bool = False
    """`True` if TLS should be established, `False` otherwise."""
    certificate_list: Sequence[certs.Cert] = ()
    """
    The TLS certificate list as sent by the peer.
    The first certificate is the end-entity certificate.
    """
    cipher: str | None = None
    """The active cipher name as returned by OpenSSL's `SSL_CIPHER_get_name`."""
    tls_version: str | None = None
    """The active TLS version."""

    timestamp_start: float | None = None
    timestamp_end: float | None = None
    """*Timestamp:* Connection has been closed."""
    timestamp_tls_setup: float | None = None
    """*Timestamp:* TLS handshake has been completed successfully."""

    @property
    def connected(self) -> bool:
        """*Read-only:* `True` if Connection.state is ConnectionState.OPEN, `False` otherwise."""
        return self.state is ConnectionState.OPEN

    @property
    def tls_established(self) -> bool:
        """*Read-only:* `True` if TLS has been established, `False` otherwise."""
        return self.timestamp_tls_setup is not None

    def __eq__(self, other):
        if isinstance(other, Connection):
            return self.id == other.id
        return False

    def __hash__(self):
        return hash(self.id)

    def _tls_state(self) -> str:
        if self.tls_established:
            return f", {self.tls_version}"
        return ""


@dataclass(eq=False, **kw_only)
class Client(Connection):
    """A connection between a front peer and rproxy."""

    peername: Address
    """The client's address."""
    sockname: Address
    """The local address we received this connection on."""

    timestamp_start: float = field(default_factory=time.time)
    """*Timestamp:* TCP SYN received"""

    def __str__(self):
        return f"Client({human.format_address(self.peername)}, state={self.state.name.lower()}{self._tls_state()})"


@dataclass(eq=False, **kw_only)
class Server(Connection):
    """A connection between rproxy and the backend."""

    address: Address
    """The address we connect to."""

    timestamp_tcp_setup: float | None = None
    """*Timestamp:* TCP ACK received."""

    def __str__(self):
        if self.peername and self.address[0] != self.peername[0]:
            addr = f"{human.format_address(self.address)} ({human.format_address(self.peername)})"
        else:
            addr = human.format_address(self.address)
        return f"Server({addr}, state={self.state.name.lower()}{self._tls_state()})"
