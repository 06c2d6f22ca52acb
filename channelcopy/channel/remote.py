"""
Remote Execution Side

What runs on the far end of a channel:
- OperationRegistry: the named operations a remote host exposes
- RemoteContext: the non-interactive session an operation executes in,
  through which it publishes events and reports progress
"""

import inspect
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, Optional, Set

from ..errors import ChannelError, OperationNotFoundError
from ..protocol.version import PROTOCOL_VERSION
from .base import ChannelEvent, ProgressHandler

logger = logging.getLogger(__name__)

# async def operation(context: RemoteContext, **arguments) -> Any
OperationFunc = Callable[..., Awaitable[Any]]
Publisher = Callable[[ChannelEvent], Awaitable[Any]]


@dataclass
class RemoteOperation:
    """An operation installed on the remote host."""
    name: str
    func: OperationFunc
    version: int = PROTOCOL_VERSION

    def describe(self) -> Dict[str, Any]:
        return {'name': self.name, 'version': self.version}


class OperationRegistry:
    """Operations a remote host exposes over its channels."""

    def __init__(self):
        self._operations: Dict[str, RemoteOperation] = {}

    def install(self, name: str, func: OperationFunc,
                version: int = PROTOCOL_VERSION):
        """Install (or replace) an operation."""
        self._operations[name] = RemoteOperation(name, func, version)
        logger.debug(f"Installed remote operation {name} v{version}")

    def remove(self, name: str) -> bool:
        return self._operations.pop(name, None) is not None

    def get(self, name: str) -> RemoteOperation:
        operation = self._operations.get(name)
        if operation is None:
            raise OperationNotFoundError(name)
        return operation

    def describe(self, name: str) -> Dict[str, Any]:
        return self.get(name).describe()

    def __contains__(self, name: str) -> bool:
        return name in self._operations

    def names(self):
        return sorted(self._operations)


class EventForwarder:
    """
    Publication handle for one source identifier.

    Only valid while registered with its RemoteContext.
    """

    def __init__(self, context: 'RemoteContext', source_id: str):
        self.context = context
        self.source_id = source_id
        self.closed = False
        self.events_published = 0

    async def publish(self, data: bytes, metadata: Dict[str, Any] = None):
        """Publish `data` tagged with this forwarder's source identifier."""
        if self.closed:
            raise ChannelError(f"Event forwarder for {self.source_id} is closed")

        event = ChannelEvent(
            source_id=self.source_id,
            data=data,
            metadata=dict(metadata or {}),
        )
        await self.context._publish(event)
        self.events_published += 1


class RemoteContext:
    """
    The session a remote operation runs in.

    Channels create one per invocation. Operations that must only run on
    the remote side check `is_remote` and `interactive`.
    """

    is_remote = True

    def __init__(self, publish: Publisher,
                 progress: ProgressHandler = None,
                 interactive: bool = False,
                 working_directory: Optional[Path] = None):
        self._publish = publish
        self._progress = progress
        self.interactive = interactive
        self.working_directory = Path(working_directory) if working_directory else None
        self._forwarders: Set[str] = set()

    def resolve_path(self, path: str) -> Path:
        """Resolve `path` against the session's working directory."""
        resolved = Path(path).expanduser()
        if not resolved.is_absolute() and self.working_directory:
            resolved = self.working_directory / resolved
        return resolved

    @asynccontextmanager
    async def event_forwarder(self, source_id: str) -> AsyncIterator[EventForwarder]:
        """
        Register a publication channel for `source_id`.

        The registration is released when the block exits, normally or not.
        """
        if source_id in self._forwarders:
            raise ChannelError(f"Event forwarder already registered for {source_id}")

        forwarder = EventForwarder(self, source_id)
        self._forwarders.add(source_id)
        logger.debug(f"Registered event forwarder {source_id}")
        try:
            yield forwarder
        finally:
            forwarder.closed = True
            self._forwarders.discard(source_id)
            logger.debug(f"Released event forwarder {source_id} "
                         f"after {forwarder.events_published} events")

    @property
    def active_forwarders(self) -> Set[str]:
        return set(self._forwarders)

    async def report_progress(self, record: Dict[str, Any]):
        """Send a progress record to the invoking side (observational only)."""
        if self._progress is None:
            return
        try:
            result = self._progress(record)
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            logger.debug(f"Progress handler failed: {e}")
