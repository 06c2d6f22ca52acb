"""
Transfer Manager

Owns the Transfer Registry: Transfer ID -> open output stream. All access
goes through an asyncio.Lock, so concurrent listeners never see a
half-updated registry.

Invariants:
- At most one open output stream per Transfer ID
- An entry exists only between the first packet and completion/abort
"""

import asyncio
import logging
from pathlib import Path
from typing import Dict

import aiofiles
import aiofiles.os

logger = logging.getLogger(__name__)


class TransferManager:
    """Registry of destination streams for in-flight transfers."""

    def __init__(self):
        self._streams: Dict[str, object] = {}
        self._paths: Dict[str, Path] = {}
        self._lock = asyncio.Lock()

        # Statistics
        self.transfers_completed = 0
        self.transfers_aborted = 0

    async def open(self, transfer_id: str, path: Path):
        """
        Open the destination stream for `transfer_id`.

        Raises:
            ValueError: a stream is already open for this ID
            FileExistsError: the destination already exists
            OSError: the file could not be created
        """
        async with self._lock:
            if transfer_id in self._streams:
                raise ValueError(f"Transfer {transfer_id} already has an open stream")

            stream = await aiofiles.open(path, 'xb')
            self._streams[transfer_id] = stream
            self._paths[transfer_id] = Path(path)
            logger.debug(f"Opened {path} for transfer {transfer_id}")

    async def write(self, transfer_id: str, data: bytes) -> int:
        """
        Append `data` to the transfer's stream.

        Raises:
            KeyError: no stream is open for this ID
        """
        async with self._lock:
            stream = self._streams[transfer_id]
            written = await stream.write(data)

        if written is not None and written != len(data):
            raise OSError(f"Short write: {written} of {len(data)} bytes")
        return len(data)

    async def complete(self, transfer_id: str) -> bool:
        """
        Flush and close the transfer's stream and drop its entry.

        Returns:
            False if there was no entry (already completed or aborted)
        """
        async with self._lock:
            stream = self._streams.pop(transfer_id, None)
            path = self._paths.pop(transfer_id, None)
            if stream is None:
                return False

            try:
                await stream.flush()
            finally:
                await stream.close()

        self.transfers_completed += 1
        logger.debug(f"Closed {path} for transfer {transfer_id}")
        return True

    async def abort(self, transfer_id: str) -> bool:
        """
        Close the transfer's stream without flushing guarantees.

        Returns:
            False if there was no entry
        """
        async with self._lock:
            stream = self._streams.pop(transfer_id, None)
            self._paths.pop(transfer_id, None)
            if stream is None:
                return False

            try:
                await stream.close()
            except OSError as e:
                logger.debug(f"Error closing stream for {transfer_id}: {e}")

        self.transfers_aborted += 1
        return True

    def is_open(self, transfer_id: str) -> bool:
        return transfer_id in self._streams

    @property
    def active_transfers(self):
        return sorted(self._streams)

    def get_stats(self) -> dict:
        """Get registry statistics."""
        return {
            'active_transfers': len(self._streams),
            'transfers_completed': self.transfers_completed,
            'transfers_aborted': self.transfers_aborted,
        }


async def remove_partial_file(path: Path) -> bool:
    """
    Best-effort deletion of a partially written destination.

    Returns:
        True if the file is gone afterwards
    """
    try:
        if await aiofiles.os.path.exists(path):
            await aiofiles.os.remove(path)
            logger.debug(f"Removed partial file {path}")
        return True
    except OSError as e:
        logger.warning(f"Could not remove partial file {path}: {e}")
        return False
