import ipaddress
import os
import threading
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import BinaryIO

from OpenSSL import SSL

from rproxy import certs
from rproxy import exceptions


class Method(Enum):
    TLS_SERVER_METHOD = SSL.TLS_SERVER_METHOD
    TLS_CLIENT_METHOD = SSL.TLS_CLIENT_METHOD


class Version(Enum):
    UNBOUNDED = 0
    TLS1_2 = SSL.TLS1_2_VERSION
    TLS1_3 = SSL.TLS1_3_VERSION


DEFAULT_MIN_VERSION = Version.TLS1_2
DEFAULT_MAX_VERSION = Version.UNBOUNDED
DEFAULT_OPTIONS = SSL.OP_CIPHER_SERVER_PREFERENCE | SSL.OP_NO_COMPRESSION

# Matching on the CN is disabled, peers must carry a subjectAltName.
DEFAULT_HOSTFLAGS = (
    SSL._lib.X509_CHECK_FLAG_NO_PARTIAL_WILDCARDS  # type: ignore
    | getattr(SSL._lib, "X509_CHECK_FLAG_NEVER_CHECK_SUBJECT", 0)  # type: ignore
)

# A verified peer must present a certificate; "no certificate" is not "trusted".
VERIFY_MUTUAL = SSL.VERIFY_PEER | SSL.VERIFY_FAIL_IF_NO_PEER_CERT


class MasterSecretLogger:
    def __init__(self, filename: Path):
        self.filename = filename.expanduser()
        self.f: BinaryIO | None = None
        self.lock = threading.Lock()

    # required for functools.wraps, which pyOpenSSL uses.
    __name__ = "MasterSecretLogger"

    def __call__(self, connection: SSL.Connection, keymaterial: bytes) -> None:
        with self.lock:
            if self.f is None:
                self.filename.parent.mkdir(parents=True, exist_ok=True)
                self.f = self.filename.open("ab")
                self.f.write(b"\n")
            self.f.write(keymaterial + b"\n")
            self.f.flush()

    def close(self):
        with self.lock:
            if self.f is not None:
                self.f.close()


def make_master_secret_logger(filename: str | None) -> MasterSecretLogger | None:
    if filename:
        return MasterSecretLogger(Path(filename))
    return None


log_master_secret = make_master_secret_logger(
    os.getenv("RPROXY_SSLKEYLOGFILE") or os.getenv("SSLKEYLOGFILE")
)


@dataclass(frozen=True)
class TrustContext:
    """
    A ready-to-use TLS configuration for one role (server or client).

    Built once at startup and shared by all connections of that role.
    Instances are never mutated, every connection gets its own `SSL.Connection`.
    """

    ssl_context: SSL.Context
    method: Method
    server_name: str | None = None
    """Client role only: the identity the remote server must prove."""

    @property
    def is_server(self) -> bool:
        return self.method is Method.TLS_SERVER_METHOD

    def new_connection(self) -> SSL.Connection:
        conn = SSL.Connection(self.ssl_context)
        if self.is_server:
            conn.set_accept_state()
            return conn

        if self.server_name:
            # Manually enable hostname verification on the connection object.
            # https://wiki.openssl.org/index.php/Hostname_validation
            param = SSL._lib.SSL_get0_param(conn._ssl)  # type: ignore
            SSL._lib.X509_VERIFY_PARAM_set_hostflags(param, DEFAULT_HOSTFLAGS)  # type: ignore
            try:
                ip: bytes = ipaddress.ip_address(self.server_name).packed
            except ValueError:
                host_name = self.server_name.encode("idna")
                conn.set_tlsext_host_name(host_name)
                ok = SSL._lib.X509_VERIFY_PARAM_set1_host(  # type: ignore
                    param, host_name, len(host_name)
                )
                SSL._openssl_assert(ok == 1)  # type: ignore
            else:
                # RFC 6066: Literal IPv4 and IPv6 addresses are not permitted in "HostName",
                # so we don't call set_tlsext_host_name.
                ok = SSL._lib.X509_VERIFY_PARAM_set1_ip(param, ip, len(ip))  # type: ignore
                SSL._openssl_assert(ok == 1)  # type: ignore
        conn.set_connect_state()
        return conn


def _create_ssl_context(
    *,
    method: Method,
    min_version: Version,
    max_version: Version,
) -> SSL.Context:
    context = SSL.Context(method.value)

    context.set_min_proto_version(min_version.value)
    context.set_max_proto_version(max_version.value)

    context.set_options(DEFAULT_OPTIONS)

    if log_master_secret:
        context.set_keylog_callback(log_master_secret)

    return context


def _load_trust(context: SSL.Context, root_cert: Path) -> None:
    # Parse first, OpenSSL's own error for a garbage file is not very helpful.
    certs.load_certs(root_cert)
    try:
        context.load_verify_locations(str(root_cert.expanduser()), None)
    except SSL.Error as e:
        raise exceptions.TrustLoadError(
            f"Cannot load trusted certificates ({root_cert}): {e}"
        ) from e


def _load_identity(context: SSL.Context, cert: Path, key: Path) -> None:
    certs.load_identity(cert, key)
    try:
        context.use_certificate_chain_file(str(cert.expanduser()))
        context.use_privatekey_file(str(key.expanduser()))
        context.check_privatekey()
    except SSL.Error as e:
        raise exceptions.IdentityLoadError(
            f"Cannot load TLS certificate ({cert}, {key}): {e}"
        ) from e


def create_server_context(
    root_cert: Path | str,
    cert: Path | str,
    key: Path | str,
    *,
    min_version: Version = DEFAULT_MIN_VERSION,
    max_version: Version = DEFAULT_MAX_VERSION,
) -> TrustContext:
    """
    Create a context to accept TLS connections with mutual authentication:
    every peer must present a certificate chaining to `root_cert`.

    *Raises:*
     - TrustLoadError, IdentityLoadError
    """
    context = _create_ssl_context(
        method=Method.TLS_SERVER_METHOD,
        min_version=min_version,
        max_version=max_version,
    )
    _load_trust(context, Path(root_cert))
    _load_identity(context, Path(cert), Path(key))
    context.set_verify(VERIFY_MUTUAL, None)
    return TrustContext(context, Method.TLS_SERVER_METHOD)


def create_client_context(
    root_cert: Path | str,
    cert: Path | str,
    key: Path | str,
    server_name: str | None,
    *,
    min_version: Version = DEFAULT_MIN_VERSION,
    max_version: Version = DEFAULT_MAX_VERSION,
) -> TrustContext:
    """
    Create a context to originate TLS connections: we present our own identity
    and verify the remote server against `root_cert` and `server_name`.

    *Raises:*
     - TrustLoadError, IdentityLoadError
    """
    context = _create_ssl_context(
        method=Method.TLS_CLIENT_METHOD,
        min_version=min_version,
        max_version=max_version,
    )
    _load_trust(context, Path(root_cert))
    _load_identity(context, Path(cert), Path(key))
    context.set_verify(SSL.VERIFY_PEER, None)
    return TrustContext(context, Method.TLS_CLIENT_METHOD, server_name)
