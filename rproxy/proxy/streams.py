"""
Byte streams over asyncio transports.

A stream is what the relay sees of a connection: `read()` returns the next chunk
(or `b""` at end of stream), `write()` sends bytes and waits for buffer space,
`close()` tears the connection down and may be called any number of times.

`TlsStream` drives a pyOpenSSL connection over memory BIOs: ciphertext read from
the socket is fed into OpenSSL, and whatever OpenSSL wants to send is flushed to
the socket writer.
"""

import abc
import asyncio
import logging
import time

from OpenSSL import SSL

from rproxy import certs
from rproxy import connection
from rproxy.exceptions import TlsError

logger = logging.getLogger(__name__)

CHUNK_SIZE = 65535


class Stream(metaclass=abc.ABCMeta):
    conn: connection.Connection
    reader: asyncio.StreamReader
    writer: asyncio.StreamWriter

    def __init__(
        self,
        reader: asyncio.StreamReader,
        writer: asyncio.StreamWriter,
        conn: connection.Connection,
    ) -> None:
        self.reader = reader
        self.writer = writer
        self.conn = conn
        conn.peername = writer.get_extra_info("peername")
        conn.sockname = writer.get_extra_info("sockname")
        conn.state = connection.ConnectionState.OPEN

    def __repr__(self):
        return f"{type(self).__name__}({self.conn})"

    @property
    def closed(self) -> bool:
        return self.conn.state is connection.ConnectionState.CLOSED

    @abc.abstractmethod
    async def read(self) -> bytes:
        """Read the next chunk of data, `b""` signals end of stream."""

    @abc.abstractmethod
    async def write(self, data: bytes) -> None:
        pass

    def close(self) -> None:
        if self.closed:
            return
        self.conn.state = connection.ConnectionState.CLOSED
        self.conn.timestamp_end = time.time()
        self._send_close()
        try:
            self.writer.close()
        except OSError:
            pass

    def _send_close(self) -> None:
        pass

    async def _send_raw(self, data: bytes) -> None:
        if self.writer.is_closing():
            raise ConnectionResetError("Connection closed.")
        self.writer.write(data)
        await self.writer.drain()


class PlainStream(Stream):
    async def read(self) -> bytes:
        if self.closed:
            return b""
        data = await self.reader.read(CHUNK_SIZE)
        if not data:
            self.conn.state &= ~connection.ConnectionState.CAN_READ
        return data

    async def write(self, data: bytes) -> None:
        await self._send_raw(data)


class TlsStream(Stream):
    tls: SSL.Connection
    """The OpenSSL connection object"""

    def __init__(
        self,
        reader: asyncio.StreamReader,
        writer: asyncio.StreamWriter,
        conn: connection.Connection,
        tls: SSL.Connection,
    ) -> None:
        super().__init__(reader, writer, conn)
        self.tls = tls
        conn.tls = True

    def tls_interact(self) -> bytes:
        """Collect everything OpenSSL wants to send to the peer."""
        out = bytearray()
        while True:
            try:
                out.extend(self.tls.bio_read(CHUNK_SIZE))
            except SSL.WantReadError:
                return bytes(out)

    async def _flush(self) -> None:
        if data := self.tls_interact():
            await self._send_raw(data)

    async def _receive_ciphertext(self) -> bool:
        """Feed the next chunk from the socket into OpenSSL. Returns False on EOF."""
        data = await self.reader.read(CHUNK_SIZE)
        if not data:
            return False
        self.tls.bio_write(data)
        return True

    async def handshake(self) -> None:
        """
        Complete the TLS handshake, including peer certificate verification.

        *Raises:*
         - TlsError, if the handshake fails or the peer disconnects.
         - OSError, on socket errors.
        """
        while True:
            try:
                self.tls.do_handshake()
            except SSL.WantReadError:
                await self._flush()
                if not await self._receive_ciphertext():
                    raise TlsError(
                        "Connection closed during TLS handshake."
                        f"{self._verify_error()}"
                    )
            except SSL.Error as e:
                # Send our alert (if any) before we give up.
                try:
                    await self._flush()
                except OSError:
                    pass
                raise TlsError(self._describe_error(e)) from e
            else:
                break
        await self._flush()

        # If called on the client side, the chain also contains the peer's certificate; if called on the server
        # side, the peer's certificate must be obtained separately.
        all_certs = self.tls.get_peer_cert_chain() or []
        if isinstance(self.conn, connection.Client):
            if cert := self.tls.get_peer_certificate():
                all_certs.insert(0, cert)
        self.conn.certificate_list = [certs.Cert.from_pyopenssl(x) for x in all_certs]
        self.conn.cipher = self.tls.get_cipher_name()
        self.conn.tls_version = self.tls.get_protocol_version_name()
        self.conn.timestamp_tls_setup = time.time()

    def _verify_error(self) -> str:
        verify_result = SSL._lib.SSL_get_verify_result(self.tls._ssl)  # type: ignore
        if verify_result == 0:
            return ""
        error = SSL._ffi.string(  # type: ignore
            SSL._lib.X509_verify_cert_error_string(verify_result)  # type: ignore
        ).decode()
        return f" Certificate verify failed: {error}"

    def _describe_error(self, e: SSL.Error) -> str:
        last_err = e.args and isinstance(e.args[0], list) and e.args[0] and e.args[0][-1]
        if isinstance(last_err, tuple) and last_err[2] == "certificate verify failed":
            return self._verify_error().strip()
        if isinstance(last_err, tuple) and last_err[2] in (
            "peer did not return a certificate",
            "tlsv13 alert certificate required",
            "tlsv1 alert unknown ca",
            "sslv3 alert bad certificate",
            "ssl/tls alert bad certificate",
            "sslv3 alert certificate expired",
            "ssl/tls alert certificate expired",
        ):
            return last_err[2]
        if isinstance(last_err, tuple) and last_err[2] in (
            "wrong version number",
            "packet length too long",
            "record layer failure",
            "http request",
        ):
            return "The remote peer does not speak TLS."
        return f"OpenSSL {e!r}"

    async def read(self) -> bytes:
        while not self.closed:
            try:
                data = self.tls.recv(CHUNK_SIZE)
            except SSL.WantReadError:
                # TLS 1.3 session tickets and key updates may require an answer.
                await self._flush()
                if not await self._receive_ciphertext():
                    if self.closed:
                        break
                    raise TlsError(
                        "Connection closed without TLS close_notify."
                        f"{self._verify_error()}"
                    )
            except SSL.ZeroReturnError:
                # close_notify
                break
            except SSL.SysCallError as e:
                raise ConnectionResetError(f"TLS connection lost: {e}") from e
            except SSL.Error as e:
                # This may be happening because the other side sent an alert.
                raise TlsError(self._describe_error(e)) from e
            else:
                return data
        self.conn.state &= ~connection.ConnectionState.CAN_READ
        return b""

    async def write(self, data: bytes) -> None:
        try:
            self.tls.sendall(data)
        except (SSL.ZeroReturnError, SSL.SysCallError) as e:
            raise ConnectionResetError(f"TLS connection lost: {e}") from e
        except SSL.Error as e:
            raise TlsError(self._describe_error(e)) from e
        await self._flush()

    def _send_close(self) -> None:
        if not self.conn.tls_established or self.writer.is_closing():
            return
        try:
            self.tls.shutdown()
        except SSL.Error:
            return
        if data := self.tls_interact():
            self.writer.write(data)
