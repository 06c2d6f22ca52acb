"""
Transfer Listener

Receives the packets of one transfer and rebuilds the destination file.

Packet handling:
1. Decode and validate (magic, flags, version, size, expected sequence)
2. Create the destination on the first packet, never at subscription time,
   so a transfer that never starts leaves no empty file behind. Creation is
   exclusive: an existing file is never overwritten
3. Data packet: append exactly `size` bytes
4. Size-0 packet: flush, close, drop the registry entry, unsubscribe

Any failure while handling a packet tears the transfer down: the stream is
closed, the subscription dropped and the partial file deleted, if this
listener created it. The failure
is recorded on the session and reported through wait(), so the caller
learns the transfer did not complete.
"""

import asyncio
import logging
from typing import Optional

from ..channel.base import Channel, ChannelEvent
from ..errors import PacketError
from ..protocol.packet import Packet
from ..protocol.version import PROTOCOL_VERSION
from .manager import TransferManager, remove_partial_file
from .session import TransferSession

logger = logging.getLogger(__name__)


class TransferListener:
    """
    Subscriber for exactly one Transfer ID.

    Several listeners may run on one channel at once; each owns only its
    own registry entry and subscription.
    """

    def __init__(self, channel: Channel, manager: TransferManager,
                 session: TransferSession):
        self.channel = channel
        self.manager = manager
        self.session = session
        self._lock = asyncio.Lock()
        self._done: Optional[asyncio.Future] = None
        self._created = False

    @property
    def transfer_id(self) -> str:
        return self.session.transfer_id

    def start(self):
        """Subscribe to the transfer's events."""
        if self._done is not None:
            raise RuntimeError(f"Listener for {self.transfer_id} already started")

        self._done = asyncio.get_running_loop().create_future()
        self.channel.subscribe(self.transfer_id, self._on_event)
        logger.debug(f"Listening for transfer {self.transfer_id}")

    async def wait(self, timeout: Optional[float] = None) -> TransferSession:
        """
        Wait until the transfer completes or fails.

        Raises:
            asyncio.TimeoutError: neither happened within `timeout`
        """
        if self._done is None:
            raise RuntimeError("Listener was not started")
        return await asyncio.wait_for(asyncio.shield(self._done), timeout)

    async def _on_event(self, event: ChannelEvent):
        async with self._lock:
            if self.session.is_finished:
                logger.debug(f"Ignoring packet for finished transfer {self.transfer_id}")
                return

            try:
                packet = Packet.from_bytes(event.data)
                self._check_packet(packet)

                if not self.manager.is_open(self.transfer_id):
                    await self.manager.open(self.transfer_id, self.session.local_path)
                    self._created = True
                    self.session.mark_active()

                if packet.is_sentinel:
                    await self._complete()
                    return

                await self.manager.write(self.transfer_id, packet.data)
                self.session.next_sequence += 1
                self.session.bytes_received += packet.size
                logger.debug(f"{self.transfer_id}: {packet!r}")

            except Exception as e:
                await self._fail(e)

    def _check_packet(self, packet: Packet):
        if packet.protocol_version != PROTOCOL_VERSION:
            raise PacketError(
                f"Packet version {packet.protocol_version}, expected {PROTOCOL_VERSION}"
            )
        if packet.sequence != self.session.next_sequence:
            raise PacketError(
                f"Out of sequence packet: got {packet.sequence}, "
                f"expected {self.session.next_sequence}"
            )

    async def complete(self) -> bool:
        """
        Finish the transfer as if its completion packet arrived.

        A second call for the same transfer is a no-op.

        Returns:
            True if this call closed the stream
        """
        async with self._lock:
            return await self._complete()

    async def _complete(self) -> bool:
        closed = await self.manager.complete(self.transfer_id)
        self.channel.unsubscribe(self.transfer_id)

        if not closed or self.session.is_finished:
            return False

        self.session.mark_completed()
        logger.info(f"Received {self.session.local_path.name}: "
                    f"{self.session.bytes_received:,} bytes in "
                    f"{self.session.next_sequence} packets")
        self._resolve()
        return True

    async def _fail(self, error: Exception, report: bool = True):
        """Tear down after a failure and delete the partial destination."""
        reason = str(error) or type(error).__name__
        try:
            await self.manager.abort(self.transfer_id)
        except Exception as e:
            logger.debug(f"Abort of {self.transfer_id} failed: {e}")
        self.channel.unsubscribe(self.transfer_id)
        if self._created:
            await remove_partial_file(self.session.local_path)

        self.session.mark_failed(reason)
        if report:
            logger.warning(f"Transfer of {self.session.remote_path} failed: {reason}")
        self._resolve()

    async def close(self, reason: str = "Transfer did not complete"):
        """
        Stop listening.

        A transfer that has not finished is failed with `reason`, which
        removes any partial destination.
        """
        async with self._lock:
            if self.session.is_finished:
                self.channel.unsubscribe(self.transfer_id)
                return
            await self._fail(RuntimeError(reason), report=False)

    def _resolve(self):
        if self._done is not None and not self._done.done():
            self._done.set_result(self.session)
