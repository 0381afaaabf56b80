"""
The byte relay between one front and one backend stream.

Both directions are copied by their own task. The first direction to end,
whether by end of stream or by an error, closes both streams, which in turn
ends the other direction: its pending read returns end of stream, or its
pending write fails. Bytes are passed on unmodified and in order per direction.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable

from rproxy import exceptions
from rproxy.proxy.streams import Stream
from rproxy.proxy.streams import TlsStream
from rproxy.utils import asyncio_utils
from rproxy.utils import human


class Relay:
    front: Stream
    back: Stream
    closing: bool
    """Set as soon as the first direction has ended. Errors after that are expected."""

    def __init__(
        self,
        front: Stream,
        back: Stream,
        report: Callable[[exceptions.RProxyException], None] | None = None,
    ) -> None:
        self.front = front
        self.back = back
        self.report = report
        self.closing = False
        self.bytes_sent = 0
        """front -> back"""
        self.bytes_received = 0
        """back -> front"""

    def close(self) -> None:
        self.closing = True
        self.front.close()
        self.back.close()

    async def copy(self, src: Stream, dst: Stream) -> None:
        try:
            while data := await src.read():
                await dst.write(data)
                if src is self.front:
                    self.bytes_sent += len(data)
                else:
                    self.bytes_received += len(data)
        except (OSError, exceptions.TlsError) as e:
            if not self.closing and self.report is not None:
                self.report(self.classify(src, dst, e))
        finally:
            self.close()

    def classify(
        self, src: Stream, dst: Stream, error: Exception
    ) -> exceptions.RProxyException:
        """
        With TLS 1.3, a backend verifies our client certificate only after our side
        of the handshake has completed. A rejection then surfaces as the first
        failure on the backend stream, before it has sent us anything.
        """
        if (
            isinstance(self.back, TlsStream)
            and self.back in (src, dst)
            and self.bytes_received == 0
        ):
            return exceptions.BackendAuthError(
                f"TLS session with {human.format_address(self.back.conn.peername)} "
                f"failed before any data was received: {error}"
            )
        return exceptions.RelayIOError(f"{src.conn} -> {dst.conn}: {error}")

    async def run(self) -> None:
        client = self.front.conn.peername
        up = asyncio_utils.create_task(
            self.copy(self.front, self.back),
            name="relay front -> back",
            client=client,
        )
        down = asyncio_utils.create_task(
            self.copy(self.back, self.front),
            name="relay back -> front",
            client=client,
        )
        try:
            await asyncio.wait([up, down])
        except asyncio.CancelledError:
            up.cancel()
            down.cancel()
            self.close()
            await asyncio.wait([up, down])
            raise


async def pipe(
    front: Stream,
    back: Stream,
    report: Callable[[exceptions.RProxyException], None] | None = None,
) -> Relay:
    """
    Relay bytes between `front` and `back` until either side closes.
    Both streams are closed when this returns.
    """
    relay = Relay(front, back, report)
    await relay.run()
    return relay
