"""
Transfer Orchestrator

Entry point for pulling a file from the remote host.

Retrieve Flow:
1. Check the request (packet size range, background mode)
2. Check the channel is open and answering
3. Work out the destination; refuse to overwrite an existing file
4. Negotiate the protocol version
5. Bind the remote send_file operation
6. Allocate a Transfer ID and start the listener
7. Invoke send_file remotely; blocks until the remote side returns
8. Wait for the listener to process the completion packet

Every failure ends in one warning and an early return; nothing is raised
to the caller. The remote binding and the listener are released on every
path.
"""

import asyncio
import logging
import ntpath
from pathlib import Path
from typing import Optional

from ..channel.base import Channel
from ..errors import (
    ChannelCopyError, OperationNotFoundError, RemoteModuleNotFoundError,
    VersionMismatchError
)
from ..protocol.version import check_protocol_version
from .listener import TransferListener
from .manager import TransferManager
from .sender import (
    DEFAULT_PACKET_SIZE, MAX_PACKET_SIZE, MIN_PACKET_SIZE, SEND_FILE_OPERATION
)
from .session import ProgressCallback, TransferProgress, TransferSession

logger = logging.getLogger(__name__)

DEFAULT_COMPLETION_TIMEOUT = 30.0


def destination_path(remote_file_path: str, local_directory='.') -> Optional[Path]:
    """
    Compute where a retrieved file will be written.

    The file name is the last component of the remote path; both `/` and
    `\\` count as separators since the remote host may be Windows.

    Returns:
        Absolute destination path, or None (with a warning) if the name is
        unusable, the directory is missing, or the file already exists
    """
    name = ntpath.basename(remote_file_path.rstrip('/\\')) if remote_file_path else ''
    if name in ('', '.', '..'):
        logger.warning(f"Cannot determine a file name from {remote_file_path!r}")
        return None

    directory = Path(local_directory).expanduser()
    if not directory.is_dir():
        logger.warning(f"Destination directory does not exist: {directory}")
        return None

    destination = directory.resolve() / name
    if destination.exists():
        logger.warning(f"Destination already exists, not overwriting: {destination}")
        return None

    return destination


class FileRetriever:
    """
    Runs synchronous file retrievals over one channel.

    Listeners share the retriever's TransferManager, so several retrievals
    may run concurrently on the same channel.
    """

    def __init__(self, channel: Channel, manager: TransferManager = None,
                 completion_timeout: float = DEFAULT_COMPLETION_TIMEOUT):
        self.channel = channel
        self.manager = manager or TransferManager()
        self.completion_timeout = completion_timeout

        # Statistics
        self.files_received = 0
        self.files_failed = 0

    async def retrieve(self, remote_file_path: str, local_directory='.',
                       packet_size: int = DEFAULT_PACKET_SIZE,
                       as_job: bool = False,
                       progress_callback: ProgressCallback = None
                       ) -> Optional[TransferSession]:
        """
        Pull `remote_file_path` into `local_directory`.

        Returns:
            The transfer session (COMPLETED or FAILED), or None if the
            transfer never started
        """
        if as_job:
            logger.warning("Retrieving a file as a background job is not implemented")
            return None

        if not MIN_PACKET_SIZE <= packet_size <= MAX_PACKET_SIZE:
            logger.warning(f"Packet size must be between {MIN_PACKET_SIZE} and "
                           f"{MAX_PACKET_SIZE} bytes, got {packet_size}")
            return None

        if not self.channel.is_open or not await self.channel.is_available():
            logger.warning("Channel is not open and available")
            return None

        destination = destination_path(remote_file_path, local_directory)
        if destination is None:
            return None

        try:
            await check_protocol_version(self.channel)
        except RemoteModuleNotFoundError:
            logger.warning("Protocol module not found on the remote host")
            return None
        except VersionMismatchError as e:
            logger.warning(f"Cannot transfer: local protocol version {e.local_version} "
                           f"does not match remote version {e.remote_version}")
            return None
        except ChannelCopyError as e:
            logger.warning(f"Could not query the remote protocol version: {e}")
            return None

        session = TransferSession(
            remote_path=remote_file_path,
            local_path=destination,
            packet_size=packet_size,
        )

        try:
            async with self.channel.bind(SEND_FILE_OPERATION) as send_file:
                await self._run(send_file, session, progress_callback)
        except OperationNotFoundError:
            logger.warning("Protocol module on the remote host has no send_file operation")
            return None
        except ChannelCopyError as e:
            logger.warning(f"Transfer of {remote_file_path} failed: {e}")
            if not session.is_finished:
                session.mark_failed(str(e))

        if session.succeeded:
            self.files_received += 1
        else:
            self.files_failed += 1
        return session

    async def _run(self, send_file, session: TransferSession,
                   progress_callback: ProgressCallback = None):
        """Listen for the transfer while the remote side sends it."""
        listener = TransferListener(self.channel, self.manager, session)
        listener.start()

        def on_progress(record):
            progress_callback(TransferProgress.from_dict(record))

        logger.info(f"Retrieving {session.remote_path} -> {session.local_path} "
                    f"(transfer {session.transfer_id})")

        try:
            try:
                sent = await send_file(
                    file_path=session.remote_path,
                    save_path=str(session.local_path),
                    transfer_id=session.transfer_id,
                    packet_size=session.packet_size,
                    progress_callback=on_progress if progress_callback else None,
                )
            except ChannelCopyError as e:
                await listener.close(str(e))
                logger.warning(f"Remote side failed to send {session.remote_path}: {e}")
                return

            if not sent:
                await listener.close("Remote side refused to send the file")
                logger.warning(f"Remote side did not send {session.remote_path}")
                return

            try:
                await listener.wait(self.completion_timeout)
            except asyncio.TimeoutError:
                await listener.close("Timed out waiting for the completion packet")
                logger.warning(f"Transfer of {session.remote_path} did not complete "
                               f"within {self.completion_timeout}s")
        finally:
            if not session.is_finished:
                await listener.close("Transfer interrupted")

    def get_stats(self) -> dict:
        """Get retriever statistics."""
        return {
            'files_received': self.files_received,
            'files_failed': self.files_failed,
            'registry': self.manager.get_stats(),
        }


async def retrieve_file(channel: Channel, remote_file_path: str,
                        local_directory='.',
                        packet_size: int = DEFAULT_PACKET_SIZE,
                        pass_thru: bool = False,
                        as_job: bool = False,
                        progress_callback: ProgressCallback = None,
                        completion_timeout: float = DEFAULT_COMPLETION_TIMEOUT
                        ) -> Optional[Path]:
    """
    Pull a file from the remote host into `local_directory`.

    The destination is `local_directory/<basename of remote path>` and must
    not exist yet. Failures are logged as warnings and return None.

    Returns:
        Path of the retrieved file if `pass_thru` is set and the transfer
        succeeded, otherwise None
    """
    retriever = FileRetriever(channel, completion_timeout=completion_timeout)
    session = await retriever.retrieve(
        remote_file_path,
        local_directory=local_directory,
        packet_size=packet_size,
        as_job=as_job,
        progress_callback=progress_callback,
    )

    if session is None or not session.succeeded:
        return None
    return session.local_path if pass_thru else None


async def send_local_file(channel: Channel, local_file_path, remote_directory=None,
                          **kwargs) -> None:
    """Push a local file to the remote host. Not implemented."""
    logger.warning("Sending a local file to the remote host is not implemented")
    return None
