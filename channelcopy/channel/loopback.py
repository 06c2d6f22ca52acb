"""
Loopback Channel

A channel whose "remote" side runs in the same process and event loop.
Operations execute in a non-interactive RemoteContext exactly as they would
behind a ChannelServer, and their events go straight into the local event
bus. Used for same-host copies and as the channel in tests.
"""

import logging
from pathlib import Path
from typing import Any, Dict, Optional

from ..errors import OperationNotFoundError, RemoteInvocationError
from .base import Channel, DEFAULT_MAX_PENDING_EVENTS, ProgressHandler
from .remote import OperationRegistry, RemoteContext

logger = logging.getLogger(__name__)


class LoopbackChannel(Channel):
    """In-process channel backed by an OperationRegistry."""

    def __init__(self, registry: OperationRegistry = None,
                 working_directory: Optional[Path] = None,
                 interactive: bool = False,
                 max_pending_events: int = DEFAULT_MAX_PENDING_EVENTS):
        super().__init__(max_pending_events=max_pending_events)
        self.registry = registry if registry is not None else OperationRegistry()
        self.working_directory = working_directory
        self.interactive = interactive
        self.available = True
        self.invocations = 0
        self._open = True

    @property
    def is_open(self) -> bool:
        return self._open

    async def is_available(self) -> bool:
        return self._open and self.available

    async def describe(self, operation: str) -> Dict[str, Any]:
        self._ensure_open()
        return self.registry.describe(operation)

    async def invoke(self, operation: str,
                     progress_callback: ProgressHandler = None,
                     **arguments) -> Any:
        self._ensure_open()
        remote_op = self.registry.get(operation)

        context = RemoteContext(
            publish=self.events.publish,
            progress=progress_callback,
            interactive=self.interactive,
            working_directory=self.working_directory,
        )
        self.invocations += 1

        try:
            return await remote_op.func(context, **arguments)
        except OperationNotFoundError:
            raise
        except Exception as e:
            raise RemoteInvocationError(operation, type(e).__name__, str(e)) from e

    async def close(self):
        if self._open:
            self._open = False
            await self.events.close()
            logger.debug("Loopback channel closed")
