from __future__ import annotations

import asyncio
import datetime
import ssl
from dataclasses import dataclass
from pathlib import Path

import pytest

from rproxy import certs
from rproxy import connection
from rproxy.proxy.streams import PlainStream

SERVER_NAMES = ["localhost", "127.0.0.1", "rproxy.test"]


@dataclass
class Identity:
    cert: Path
    key: Path


@dataclass
class Pki:
    root_cert: Path
    server: Identity
    """Valid for SERVER_NAMES, signed by the root."""
    client: Identity
    """Signed by the root."""
    expired: Identity
    """Signed by the root, but no longer valid."""
    foreign: Identity
    """Valid for SERVER_NAMES, but signed by an unrelated root."""
    foreign_root_cert: Path
    mismatched: Identity
    """The client certificate paired with the server key."""

    def client_ssl_context(self, identity: Identity | None = None) -> ssl.SSLContext:
        ctx = ssl.create_default_context(ssl.Purpose.SERVER_AUTH, cafile=str(self.root_cert))
        if identity:
            ctx.load_cert_chain(str(identity.cert), str(identity.key))
        return ctx

    def server_ssl_context(
        self, identity: Identity | None = None, cafile: Path | None = None
    ) -> ssl.SSLContext:
        identity = identity or self.server
        ctx = ssl.create_default_context(
            ssl.Purpose.CLIENT_AUTH, cafile=str(cafile or self.root_cert)
        )
        ctx.load_cert_chain(str(identity.cert), str(identity.key))
        ctx.verify_mode = ssl.CERT_REQUIRED
        return ctx


def _write_identity(directory: Path, name: str, key, cert: certs.Cert) -> Identity:
    identity = Identity(directory / f"{name}_cert.pem", directory / f"{name}_key.pem")
    identity.cert.write_bytes(cert.to_pem())
    identity.key.write_bytes(certs.private_key_to_pem(key))
    return identity


@pytest.fixture(scope="session")
def pki(tmp_path_factory) -> Pki:
    d = tmp_path_factory.mktemp("certs")
    ca_key, ca_cert = certs.create_ca("rproxy", "rproxy test root")
    root_cert = d / "root_cert.pem"
    root_cert.write_bytes(ca_cert.to_pem())

    server = _write_identity(
        d, "server", *certs.create_cert(ca_key, ca_cert, "rproxy.test", SERVER_NAMES)
    )
    client = _write_identity(
        d, "client", *certs.create_cert(ca_key, ca_cert, "client", ["client.rproxy.test"])
    )
    now = datetime.datetime.now(datetime.timezone.utc)
    expired = _write_identity(
        d,
        "expired",
        *certs.create_cert(
            ca_key,
            ca_cert,
            "expired",
            ["expired.rproxy.test"],
            not_before=now - datetime.timedelta(days=30),
            not_after=now - datetime.timedelta(days=1),
        ),
    )

    foreign_key, foreign_ca = certs.create_ca("elsewhere", "unrelated root")
    foreign_root_cert = d / "foreign_root_cert.pem"
    foreign_root_cert.write_bytes(foreign_ca.to_pem())
    foreign = _write_identity(
        d, "foreign", *certs.create_cert(foreign_key, foreign_ca, "rproxy.test", SERVER_NAMES)
    )

    mismatched = Identity(client.cert, server.key)
    return Pki(
        root_cert=root_cert,
        server=server,
        client=client,
        expired=expired,
        foreign=foreign,
        foreign_root_cert=foreign_root_cert,
        mismatched=mismatched,
    )


@pytest.fixture
def tcp_pair():
    """
    Returns a factory for connected TCP socket pairs:
    `(reader, writer)` of the connecting side and `(reader, writer)` of the accepting side.
    """
    servers = []

    async def make():
        accepted: asyncio.Future = asyncio.get_running_loop().create_future()

        def on_connect(reader, writer):
            accepted.set_result((reader, writer))

        server = await asyncio.start_server(on_connect, "127.0.0.1", 0)
        servers.append(server)
        outer = await asyncio.open_connection(*server.sockets[0].getsockname()[:2])
        inner = await accepted
        return outer, inner

    yield make
    for s in servers:
        s.close()


@pytest.fixture
def plain_stream_pair(tcp_pair):
    """
    Returns a factory for a PlainStream wrapping the accepting side of a TCP pair,
    together with `(reader, writer)` of the remote peer.
    """

    async def make():
        (r, w), (sr, sw) = await tcp_pair()
        client = connection.Client(
            peername=sw.get_extra_info("peername"),
            sockname=sw.get_extra_info("sockname"),
        )
        return PlainStream(sr, sw, client), (r, w)

    return make


class AsyncLogCaptureFixture:
    def __init__(self, caplog: pytest.LogCaptureFixture):
        self.caplog = caplog

    def set_level(self, level: int | str, logger: str | None = None) -> None:
        self.caplog.set_level(level, logger)

    async def await_log(self, text, timeout=2):
        await asyncio.sleep(0)
        for i in range(int(timeout / 0.01)):
            if text in self.caplog.text:
                return True
            else:
                await asyncio.sleep(0.01)
        raise AssertionError(f"Did not find {text!r} in log:\n{self.caplog.text}")

    def clear(self) -> None:
        self.caplog.clear()


@pytest.fixture
def caplog_async(caplog):
    return AsyncLogCaptureFixture(caplog)
