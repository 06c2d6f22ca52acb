"""
Sender Engine

Runs on the remote host. Reads a file sequentially, one packet-size chunk at
a time, and publishes each chunk as a Packet under the transfer's ID. A
size-0 packet follows the last chunk.

Design Decision: Publication Model
==================================

Options Considered:
1. Acknowledge every packet
   - Receiver can throttle the sender
   - One round trip per chunk over a channel that was never built for it

2. Sliding window with acknowledgements
   - Better throughput than per-packet acks
   - Window state on both sides, retransmission logic

3. Fire-and-forget publication in order
   - Relies on the channel for ordering and delivery
   - Sender only waits for the channel to accept the event

Decision: Fire-and-forget
- The channel delivers events in order over one connection
- The only backpressure is the channel itself: a bounded event queue on
  the loopback channel, TCP flow control on the stream channel
- No retries: a read or publish fault ends the call after cleanup
"""

import logging
import ntpath
from typing import Optional

import aiofiles
import aiofiles.os

from ..channel.remote import OperationRegistry, RemoteContext
from ..errors import NotRemoteContextError
from ..protocol.packet import Packet
from ..protocol.version import VERSION_OPERATION, get_protocol_version
from .session import TransferProgress

logger = logging.getLogger(__name__)

# Packet size: 512KB default, 1KB..1MB allowed
DEFAULT_PACKET_SIZE = 512 * 1024
MIN_PACKET_SIZE = 1024
MAX_PACKET_SIZE = 1024 * 1024

SEND_FILE_OPERATION = 'send_file'


class SenderEngine:
    """
    Publishes a remote file as a sequence of packets.

    Statistics are kept across calls for the agent's status output.
    """

    def __init__(self):
        self.files_sent = 0
        self.packets_sent = 0
        self.bytes_sent = 0

    async def send_file(self, context: Optional[RemoteContext], file_path: str,
                        save_path: str, transfer_id: str,
                        packet_size: int = DEFAULT_PACKET_SIZE,
                        as_job: bool = False) -> bool:
        """
        Send `file_path` as packets published under `transfer_id`.

        Args:
            context: Remote session the call runs in
            file_path: Source file on this host
            save_path: Destination on the receiving host (informational)
            transfer_id: Source identifier for every published packet
            packet_size: Maximum payload bytes per packet
            as_job: Run in the background (not implemented)

        Returns:
            True once the completion packet was published, False if the
            transfer was refused (missing file, background mode)

        Raises:
            NotRemoteContextError: not running inside a remote,
                non-interactive session
        """
        if context is None or not getattr(context, 'is_remote', False) or context.interactive:
            raise NotRemoteContextError(
                "send_file can only run inside a remote, non-interactive session"
            )

        if as_job:
            logger.warning("Sending a file as a background job is not implemented")
            return False

        if packet_size <= 0:
            raise ValueError(f"Invalid packet size: {packet_size}")

        source = context.resolve_path(file_path)
        if not await aiofiles.os.path.isfile(source):
            logger.warning(f"Cannot send {file_path}: file not found")
            return False

        total_bytes = (await aiofiles.os.stat(source)).st_size
        file_name = ntpath.basename(str(file_path))
        metadata = {'transfer_id': transfer_id, 'save_path': save_path}

        logger.info(f"Sending {source} ({total_bytes:,} bytes) as {transfer_id}")

        sequence = 0
        bytes_sent = 0

        async with context.event_forwarder(transfer_id) as forwarder:
            async with aiofiles.open(source, 'rb') as f:
                while True:
                    chunk = await f.read(packet_size)
                    if not chunk:
                        break

                    packet = Packet.data_packet(sequence, chunk)
                    await forwarder.publish(packet.to_bytes(), metadata)

                    sequence += 1
                    bytes_sent += len(chunk)
                    self.packets_sent += 1
                    self.bytes_sent += len(chunk)

                    progress = TransferProgress.for_chunk(
                        file_name, bytes_sent, max(total_bytes, bytes_sent)
                    )
                    await context.report_progress(progress.to_dict())

            await forwarder.publish(Packet.sentinel(sequence).to_bytes(), metadata)
            self.packets_sent += 1

        await context.report_progress(
            TransferProgress.finished(file_name, bytes_sent).to_dict()
        )

        self.files_sent += 1
        logger.info(f"Sent {file_name}: {sequence} data packets, {bytes_sent:,} bytes")
        return True

    def get_stats(self) -> dict:
        """Get sender statistics."""
        return {
            'files_sent': self.files_sent,
            'packets_sent': self.packets_sent,
            'bytes_sent': self.bytes_sent,
        }


async def _protocol_version(context: RemoteContext) -> int:
    return get_protocol_version()


def install_protocol_module(registry: OperationRegistry,
                            engine: SenderEngine = None) -> SenderEngine:
    """
    Install the remote operations a receiver needs.

    Installs the version query and the sender engine's send_file.

    Returns:
        The SenderEngine backing send_file
    """
    engine = engine or SenderEngine()
    registry.install(VERSION_OPERATION, _protocol_version)
    registry.install(SEND_FILE_OPERATION, engine.send_file)
    return engine
