"""
Channel Abstraction

Design Decision: Event Delivery
===============================

Options Considered:
1. Invoke subscriber callbacks directly from the channel's reader
   - No extra tasks
   - Ordering depends on whoever calls publish; a slow handler stalls
     every other transfer on the same channel

2. One shared dispatcher for all subscriptions
   - Ordered, but transfers wait on each other

3. One FIFO queue + one consumer task per source identifier
   - Strict per-transfer ordering, exactly one callback in flight per ID
   - Transfers with different IDs progress independently

Decision: Per-identifier queue with a dedicated consumer
- Packets for one Transfer ID are handled in publish order, one at a time
- Queues are bounded; a full queue makes the publisher wait
- Events for an identifier nobody subscribed to are dropped

A channel offers two things:
- invoke(): run a named operation on the remote side and wait for its result
- events: a publish/subscribe bus carrying payloads from remote to local
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, Optional, AsyncIterator

from ..errors import ChannelNotReadyError

logger = logging.getLogger(__name__)

DEFAULT_MAX_PENDING_EVENTS = 64


@dataclass
class ChannelEvent:
    """One published payload, routed by its source identifier."""
    source_id: str
    data: bytes
    metadata: Dict[str, Any] = field(default_factory=dict)


EventHandler = Callable[[ChannelEvent], Awaitable[None]]

# Progress records are plain dicts so they cross any channel unchanged
ProgressHandler = Callable[[Dict[str, Any]], None]


class _Subscription:
    """Queue and consumer task for one source identifier."""

    def __init__(self, source_id: str, handler: EventHandler, max_pending: int):
        self.source_id = source_id
        self.handler = handler
        self.queue: asyncio.Queue = asyncio.Queue(maxsize=max_pending)
        self.active = True
        self.task: Optional[asyncio.Task] = None


class EventBus:
    """
    Subscription table for channel events.

    Each subscription owns a bounded FIFO queue drained by a single
    consumer task, so handlers for one source identifier never overlap.
    """

    def __init__(self, max_pending: int = DEFAULT_MAX_PENDING_EVENTS):
        self.max_pending = max_pending
        self._subscriptions: Dict[str, _Subscription] = {}
        self.events_delivered = 0
        self.events_dropped = 0

    def subscribe(self, source_id: str, handler: EventHandler):
        """
        Register `handler` for events published under `source_id`.

        Must be called from a running event loop.
        """
        if source_id in self._subscriptions:
            raise ValueError(f"Already subscribed to {source_id}")

        sub = _Subscription(source_id, handler, self.max_pending)
        sub.task = asyncio.get_running_loop().create_task(self._consume(sub))
        self._subscriptions[source_id] = sub
        logger.debug(f"Subscribed to events for {source_id}")

    def unsubscribe(self, source_id: str) -> bool:
        """
        Drop the subscription for `source_id`.

        Safe to call from inside the subscription's own handler and safe to
        call twice. Events still queued are discarded.

        Returns:
            True if a subscription was removed
        """
        sub = self._subscriptions.pop(source_id, None)
        if sub is None:
            return False

        sub.active = False
        # Free the queue so a waiting publisher can resume
        while not sub.queue.empty():
            sub.queue.get_nowait()
        sub.queue.put_nowait(None)

        logger.debug(f"Unsubscribed from events for {source_id}")
        return True

    def is_subscribed(self, source_id: str) -> bool:
        return source_id in self._subscriptions

    @property
    def subscription_count(self) -> int:
        return len(self._subscriptions)

    async def publish(self, event: ChannelEvent) -> bool:
        """
        Queue an event for its subscriber.

        Waits while the subscriber's queue is full.

        Returns:
            True if the event was queued, False if nobody is subscribed
        """
        sub = self._subscriptions.get(event.source_id)
        if sub is None or not sub.active:
            self.events_dropped += 1
            logger.debug(f"Dropping event for unknown source {event.source_id}")
            return False

        await sub.queue.put(event)
        return True

    async def _consume(self, sub: _Subscription):
        """Deliver queued events to the handler, one at a time."""
        while sub.active:
            event = await sub.queue.get()
            if event is None or not sub.active:
                break

            try:
                await sub.handler(event)
                self.events_delivered += 1
            except Exception as e:
                logger.error(f"Event handler for {sub.source_id} failed: {e}")

    async def close(self):
        """Drop all subscriptions and wait for their consumers to exit."""
        tasks = []
        for source_id in list(self._subscriptions):
            tasks.append(self._subscriptions[source_id].task)
            self.unsubscribe(source_id)

        current = asyncio.current_task()
        tasks = [t for t in tasks if t is not None and t is not current]
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)


class OperationBinding:
    """
    Local handle on a remote operation.

    Obtained from Channel.bind(); calling it invokes the operation.
    """

    def __init__(self, channel: 'Channel', name: str, version: Optional[int]):
        self.channel = channel
        self.name = name
        self.version = version
        self.released = False

    async def __call__(self, progress_callback: ProgressHandler = None,
                       **arguments) -> Any:
        if self.released:
            raise ChannelNotReadyError(f"Binding for {self.name} was released")
        return await self.channel.invoke(
            self.name, progress_callback=progress_callback, **arguments
        )

    def release(self):
        if not self.released:
            self.released = True
            self.channel._release_binding(self)


class Channel(ABC):
    """
    A pre-established link to a remote host.

    Subclasses implement the transport; the event bus and operation
    bindings are shared.
    """

    def __init__(self, max_pending_events: int = DEFAULT_MAX_PENDING_EVENTS):
        self.events = EventBus(max_pending=max_pending_events)
        self._bindings: Dict[str, int] = {}

    @property
    @abstractmethod
    def is_open(self) -> bool:
        """True until the channel is closed."""

    @abstractmethod
    async def is_available(self) -> bool:
        """True if the remote side currently answers."""

    @abstractmethod
    async def invoke(self, operation: str,
                     progress_callback: ProgressHandler = None,
                     **arguments) -> Any:
        """
        Run `operation` remotely and return its result.

        Raises:
            OperationNotFoundError: the remote side has no such operation
            RemoteInvocationError: the operation raised remotely
            ChannelError: the channel failed during the call
        """

    @abstractmethod
    async def describe(self, operation: str) -> Dict[str, Any]:
        """Return {'name', 'version'} for a remote operation."""

    @abstractmethod
    async def close(self):
        """Close the channel."""

    # === Events ===

    def subscribe(self, source_id: str, handler: EventHandler):
        self.events.subscribe(source_id, handler)

    def unsubscribe(self, source_id: str) -> bool:
        return self.events.unsubscribe(source_id)

    def is_subscribed(self, source_id: str) -> bool:
        return self.events.is_subscribed(source_id)

    # === Operation bindings ===

    @asynccontextmanager
    async def bind(self, operation: str) -> AsyncIterator[OperationBinding]:
        """
        Bind a remote operation for the duration of the block.

        The binding is released on exit, whether the block succeeds or not.

        Raises:
            OperationNotFoundError: the remote side has no such operation
        """
        info = await self.describe(operation)
        binding = OperationBinding(self, operation, info.get('version'))
        self._bindings[operation] = self._bindings.get(operation, 0) + 1
        logger.debug(f"Bound remote operation {operation} (v{binding.version})")
        try:
            yield binding
        finally:
            binding.release()

    def _release_binding(self, binding: OperationBinding):
        count = self._bindings.get(binding.name, 0) - 1
        if count > 0:
            self._bindings[binding.name] = count
        else:
            self._bindings.pop(binding.name, None)
        logger.debug(f"Released remote operation {binding.name}")

    @property
    def active_bindings(self) -> Dict[str, int]:
        return dict(self._bindings)

    def _ensure_open(self):
        if not self.is_open:
            raise ChannelNotReadyError("Channel is closed")

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.close()
