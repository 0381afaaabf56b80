import asyncio

import pytest
from OpenSSL import SSL

from rproxy import connection
from rproxy import exceptions
from rproxy.net import tls
from rproxy.proxy.streams import TlsStream


class TestPlainStream:
    async def test_read_write(self, plain_stream_pair):
        stream, (r, w) = await plain_stream_pair()
        assert stream.conn.connected
        assert "PlainStream(Client(127.0.0.1:" in repr(stream)

        w.write(b"ping")
        await w.drain()
        assert await stream.read() == b"ping"

        await stream.write(b"pong")
        assert await r.readexactly(4) == b"pong"

        w.close()
        assert await stream.read() == b""
        assert stream.conn.state is connection.ConnectionState.CAN_WRITE

    async def test_close(self, plain_stream_pair):
        stream, (r, w) = await plain_stream_pair()
        stream.close()
        assert stream.closed
        assert stream.conn.timestamp_end
        # idempotent
        stream.close()
        assert await r.read() == b""
        assert await stream.read() == b""
        with pytest.raises(ConnectionResetError):
            await stream.write(b"foo")


async def tls_stream_pair(tcp_pair, server_trust, client_trust):
    (r, w), (sr, sw) = await tcp_pair()
    server_side = TlsStream(
        sr,
        sw,
        connection.Client(
            peername=sw.get_extra_info("peername"),
            sockname=sw.get_extra_info("sockname"),
        ),
        server_trust.new_connection(),
    )
    client_side = TlsStream(
        r,
        w,
        connection.Server(address=w.get_extra_info("peername")),
        client_trust.new_connection(),
    )
    return server_side, client_side


class TestTlsStream:
    async def test_handshake(self, pki, tcp_pair):
        server_trust = tls.create_server_context(pki.root_cert, pki.server.cert, pki.server.key)
        client_trust = tls.create_client_context(
            pki.root_cert, pki.client.cert, pki.client.key, "rproxy.test"
        )
        server, client = await tls_stream_pair(tcp_pair, server_trust, client_trust)
        await asyncio.gather(server.handshake(), client.handshake())

        assert server.conn.tls_established
        assert client.conn.tls_established
        assert server.conn.tls_version and server.conn.cipher
        assert server.conn.certificate_list[0].cn == "client"
        assert client.conn.certificate_list[0].cn == "rproxy.test"

        await client.write(b"ping")
        assert await server.read() == b"ping"
        await server.write(b"x" * 100_000)
        data = b""
        while len(data) < 100_000:
            data += await client.read()
        assert data == b"x" * 100_000

        # close_notify
        client.close()
        assert await server.read() == b""
        server.close()

    async def test_peer_without_certificate(self, pki, tcp_pair):
        server_trust = tls.create_server_context(pki.root_cert, pki.server.cert, pki.server.key)
        client_trust = tls.create_client_context(
            pki.root_cert, pki.client.cert, pki.client.key, "rproxy.test"
        )
        server, client = await tls_stream_pair(tcp_pair, server_trust, client_trust)
        # Do not present a certificate at all.
        client.tls = SSL.Connection(_client_context_without_identity(pki))
        client.tls.set_connect_state()

        server_result, _ = await asyncio.gather(
            server.handshake(), client.handshake(), return_exceptions=True
        )
        assert isinstance(server_result, exceptions.TlsError)
        assert "certificate" in str(server_result)
        client.close()
        server.close()

    @pytest.mark.parametrize("identity", ["foreign", "expired"])
    async def test_untrusted_peer(self, pki, tcp_pair, identity):
        ident = getattr(pki, identity)
        server_trust = tls.create_server_context(pki.root_cert, pki.server.cert, pki.server.key)
        client_trust = tls.create_client_context(
            pki.root_cert, ident.cert, ident.key, "rproxy.test"
        )
        server, client = await tls_stream_pair(tcp_pair, server_trust, client_trust)
        server_result, _ = await asyncio.gather(
            server.handshake(), client.handshake(), return_exceptions=True
        )
        assert isinstance(server_result, exceptions.TlsError)
        assert "Certificate verify failed" in str(server_result)
        assert not server.conn.tls_established
        client.close()
        server.close()

    async def test_wrong_server_name(self, pki, tcp_pair):
        server_trust = tls.create_server_context(pki.root_cert, pki.server.cert, pki.server.key)
        client_trust = tls.create_client_context(
            pki.root_cert, pki.client.cert, pki.client.key, "wrong.example"
        )
        server, client = await tls_stream_pair(tcp_pair, server_trust, client_trust)
        _, client_result = await asyncio.gather(
            server.handshake(), client.handshake(), return_exceptions=True
        )
        assert isinstance(client_result, exceptions.TlsError)
        assert "hostname mismatch" in str(client_result)
        client.close()
        server.close()

    async def test_not_tls(self, pki, tcp_pair):
        (r, w), (sr, sw) = await tcp_pair()
        server_trust = tls.create_server_context(pki.root_cert, pki.server.cert, pki.server.key)
        server = TlsStream(
            sr,
            sw,
            connection.Client(
                peername=sw.get_extra_info("peername"),
                sockname=sw.get_extra_info("sockname"),
            ),
            server_trust.new_connection(),
        )
        w.write(b"GET / HTTP/1.1\r\n\r\n")
        with pytest.raises(exceptions.TlsError, match="does not speak TLS"):
            await server.handshake()
        server.close()

    async def test_eof_during_handshake(self, pki, tcp_pair):
        (r, w), (sr, sw) = await tcp_pair()
        server_trust = tls.create_server_context(pki.root_cert, pki.server.cert, pki.server.key)
        server = TlsStream(
            sr,
            sw,
            connection.Client(
                peername=sw.get_extra_info("peername"),
                sockname=sw.get_extra_info("sockname"),
            ),
            server_trust.new_connection(),
        )
        w.close()
        with pytest.raises(exceptions.TlsError, match="Connection closed during TLS handshake"):
            await server.handshake()
        server.close()


def _client_context_without_identity(pki):
    ctx = SSL.Context(SSL.TLS_CLIENT_METHOD)
    ctx.load_verify_locations(str(pki.root_cert))
    ctx.set_verify(SSL.VERIFY_PEER, None)
    return ctx


async def test_tls_eof_without_close_notify(pki, tcp_pair):
    server_trust = tls.create_server_context(pki.root_cert, pki.server.cert, pki.server.key)
    client_trust = tls.create_client_context(
        pki.root_cert, pki.client.cert, pki.client.key, "rproxy.test"
    )
    server, client = await tls_stream_pair(tcp_pair, server_trust, client_trust)
    await asyncio.gather(server.handshake(), client.handshake())

    # Drop the socket without a TLS shutdown.
    client.writer.close()
    with pytest.raises(exceptions.TlsError, match="without TLS close_notify"):
        await server.read()
    assert not server.closed

    # Once we closed the stream ourselves, end of stream is expected.
    server.close()
    assert await server.read() == b""
