"""
Stream Channel

A channel over a single TCP connection:
- ChannelServer runs on the remote host and exposes an OperationRegistry
- StreamChannel is the local end; it multiplexes invocations, progress
  records and published events over the one connection

Every request carries a call_id; a reader task routes RESULT/ERROR/PONG to
the waiting caller, PROGRESS to the caller's progress callback, and EVENT
into the local event bus. Events and the final RESULT of an invocation
travel the same ordered stream, so all events an operation published are
queued locally before its call returns.
"""

import asyncio
import itertools
import logging
from pathlib import Path
from typing import Any, Dict, Optional, Set, Tuple

from ..errors import (
    ChannelError, ChannelNotReadyError, OperationNotFoundError,
    RemoteInvocationError
)
from .base import (
    Channel, ChannelEvent, DEFAULT_MAX_PENDING_EVENTS, ProgressHandler
)
from .framing import ChannelMessage, ChannelMessageType
from .remote import OperationRegistry, RemoteContext

logger = logging.getLogger(__name__)

DEFAULT_CHANNEL_PORT = 8470


def _error_from_headers(headers: Dict[str, Any]) -> Exception:
    """Rebuild the local exception for an ERROR message."""
    operation = headers.get('operation', '')
    error_type = headers.get('error_type', 'Error')
    if error_type == 'OperationNotFoundError':
        return OperationNotFoundError(operation)
    return RemoteInvocationError(operation, error_type, headers.get('message', ''))


class StreamChannel(Channel):
    """
    Local end of a channel over asyncio streams.

    Thread-safe within one event loop: writes are serialized with a lock.
    """

    def __init__(self, reader: asyncio.StreamReader,
                 writer: asyncio.StreamWriter,
                 max_pending_events: int = DEFAULT_MAX_PENDING_EVENTS,
                 ping_timeout: float = 5.0):
        super().__init__(max_pending_events=max_pending_events)
        self.reader = reader
        self.writer = writer
        self.ping_timeout = ping_timeout
        self._closed = False
        self._lock = asyncio.Lock()
        self._call_ids = itertools.count(1)
        self._pending: Dict[int, asyncio.Future] = {}
        self._progress: Dict[int, ProgressHandler] = {}
        self._reader_task = asyncio.get_running_loop().create_task(self._read_loop())

    @classmethod
    async def connect(cls, host: str, port: int = DEFAULT_CHANNEL_PORT,
                      timeout: float = 10.0, **kwargs) -> 'StreamChannel':
        """
        Open a channel to a ChannelServer.

        Raises:
            ChannelError: the connection could not be established
        """
        try:
            reader, writer = await asyncio.wait_for(
                asyncio.open_connection(host, port),
                timeout=timeout
            )
        except (OSError, asyncio.TimeoutError) as e:
            raise ChannelError(f"Failed to connect to {host}:{port}: {e}") from e

        logger.debug(f"Channel connected to {host}:{port}")
        return cls(reader, writer, **kwargs)

    @property
    def remote_address(self) -> Tuple[str, int]:
        return self.writer.get_extra_info('peername')

    @property
    def is_open(self) -> bool:
        return not self._closed

    async def is_available(self) -> bool:
        if self._closed:
            return False
        try:
            await asyncio.wait_for(
                self._request(ChannelMessageType.PING, {}),
                timeout=self.ping_timeout
            )
            return True
        except (ChannelError, asyncio.TimeoutError):
            return False

    async def describe(self, operation: str) -> Dict[str, Any]:
        return await self._request(
            ChannelMessageType.DESCRIBE, {'operation': operation}
        )

    async def invoke(self, operation: str,
                     progress_callback: ProgressHandler = None,
                     **arguments) -> Any:
        return await self._request(
            ChannelMessageType.INVOKE,
            {'operation': operation, 'arguments': arguments},
            progress_callback=progress_callback,
        )

    async def _send(self, message: ChannelMessage):
        if self._closed:
            raise ChannelNotReadyError("Channel is closed")
        async with self._lock:
            self.writer.write(message.to_bytes())
            await self.writer.drain()

    async def _request(self, msg_type: ChannelMessageType, headers: Dict[str, Any],
                       progress_callback: ProgressHandler = None) -> Any:
        self._ensure_open()
        call_id = next(self._call_ids)
        future = asyncio.get_running_loop().create_future()
        self._pending[call_id] = future
        if progress_callback is not None:
            self._progress[call_id] = progress_callback

        try:
            await self._send(ChannelMessage(
                type=msg_type,
                headers={'call_id': call_id, **headers}
            ))
            return await future
        except (ConnectionError, OSError) as e:
            raise ChannelError(f"Channel failed: {e}") from e
        finally:
            self._pending.pop(call_id, None)
            self._progress.pop(call_id, None)

    async def _read_loop(self):
        """Route incoming messages until the connection closes."""
        try:
            while True:
                message = await ChannelMessage.from_reader(self.reader)
                if message is None:
                    break
                await self._dispatch(message)
        except (ConnectionError, OSError) as e:
            logger.error(f"Channel read failed: {e}")
        finally:
            self._closed = True
            for future in self._pending.values():
                if not future.done():
                    future.set_exception(ChannelError("Channel closed"))
            logger.debug("Channel reader stopped")

    async def _dispatch(self, message: ChannelMessage):
        headers = message.headers
        call_id = headers.get('call_id')

        if message.type == ChannelMessageType.EVENT:
            await self.events.publish(ChannelEvent(
                source_id=headers.get('source_id', ''),
                data=message.data,
                metadata=headers.get('metadata') or {},
            ))
            return

        if message.type == ChannelMessageType.PROGRESS:
            callback = self._progress.get(call_id)
            if callback is not None:
                try:
                    callback(headers.get('progress') or {})
                except Exception as e:
                    logger.debug(f"Progress callback failed: {e}")
            return

        future = self._pending.get(call_id)
        if future is None or future.done():
            logger.debug(f"Unexpected {message.type.value} for call {call_id}")
            return

        if message.type == ChannelMessageType.RESULT:
            future.set_result(headers.get('value'))
        elif message.type == ChannelMessageType.PONG:
            future.set_result(True)
        elif message.type == ChannelMessageType.ERROR:
            future.set_exception(_error_from_headers(headers))
        else:
            logger.warning(f"Unexpected message type from server: {message.type.value}")

    async def close(self):
        """Close the connection."""
        if not self._closed:
            self._closed = True
            self.writer.close()
            try:
                await self.writer.wait_closed()
            except (ConnectionError, OSError):
                pass
        if self._reader_task is not asyncio.current_task():
            self._reader_task.cancel()
            try:
                await self._reader_task
            except asyncio.CancelledError:
                pass
        await self.events.close()


class ChannelServer:
    """
    Remote agent serving an OperationRegistry over TCP.

    Each connection gets its own non-interactive RemoteContext per
    invocation; events published by an operation are written back on the
    connection that invoked it.
    """

    def __init__(self, registry: OperationRegistry, host: str = '127.0.0.1',
                 port: int = DEFAULT_CHANNEL_PORT,
                 working_directory: Optional[Path] = None):
        self.registry = registry
        self.host = host
        self.port = port
        self.working_directory = working_directory
        self.server: Optional[asyncio.AbstractServer] = None
        self._running = False
        self._connections: Set[asyncio.Task] = set()

        # Statistics
        self.invocations = 0
        self.events_sent = 0

    @property
    def bound_port(self) -> Optional[int]:
        """Port actually listened on (useful with port=0)."""
        if self.server and self.server.sockets:
            return self.server.sockets[0].getsockname()[1]
        return None

    async def start(self):
        """Start the channel server."""
        self.server = await asyncio.start_server(
            self._handle_connection,
            self.host,
            self.port
        )
        self._running = True

        addr = self.server.sockets[0].getsockname()
        logger.info(f"Channel server listening on {addr}")

    async def stop(self):
        """Stop the channel server."""
        self._running = False
        if self.server:
            self.server.close()
            for task in list(self._connections):
                task.cancel()
            await self.server.wait_closed()
            logger.info("Channel server stopped")

    async def serve_forever(self):
        if self.server is None:
            await self.start()
        async with self.server:
            await self.server.serve_forever()

    async def _handle_connection(self, reader: asyncio.StreamReader,
                                 writer: asyncio.StreamWriter):
        """Handle an incoming connection."""
        peer = writer.get_extra_info('peername')
        lock = asyncio.Lock()
        invocations: Set[asyncio.Task] = set()
        self._connections.add(asyncio.current_task())
        logger.debug(f"New channel connection from {peer}")

        async def send(message: ChannelMessage):
            async with lock:
                writer.write(message.to_bytes())
                await writer.drain()

        try:
            while self._running:
                message = await ChannelMessage.from_reader(reader)
                if message is None:
                    break

                call_id = message.headers.get('call_id')

                if message.type == ChannelMessageType.PING:
                    await send(ChannelMessage(
                        ChannelMessageType.PONG, {'call_id': call_id}
                    ))
                elif message.type == ChannelMessageType.DESCRIBE:
                    await self._handle_describe(message, send)
                elif message.type == ChannelMessageType.INVOKE:
                    task = asyncio.create_task(self._handle_invoke(message, send))
                    invocations.add(task)
                    task.add_done_callback(invocations.discard)
                else:
                    logger.warning(f"No handler for {message.type}")

        except (ConnectionError, OSError) as e:
            logger.error(f"Error handling connection from {peer}: {e}")
        finally:
            for task in list(invocations):
                task.cancel()
            self._connections.discard(asyncio.current_task())
            writer.close()
            try:
                await writer.wait_closed()
            except (ConnectionError, OSError):
                pass
            logger.debug(f"Connection closed: {peer}")

    async def _handle_describe(self, message: ChannelMessage, send):
        call_id = message.headers.get('call_id')
        operation = message.headers.get('operation', '')
        try:
            info = self.registry.describe(operation)
        except OperationNotFoundError:
            await send(ChannelMessage(ChannelMessageType.ERROR, {
                'call_id': call_id,
                'operation': operation,
                'error_type': 'OperationNotFoundError',
                'message': f"Remote operation not found: {operation}",
            }))
            return
        await send(ChannelMessage(
            ChannelMessageType.RESULT, {'call_id': call_id, 'value': info}
        ))

    async def _handle_invoke(self, message: ChannelMessage, send):
        call_id = message.headers.get('call_id')
        operation = message.headers.get('operation', '')
        arguments = message.headers.get('arguments') or {}

        async def publish(event: ChannelEvent):
            await send(ChannelMessage(
                ChannelMessageType.EVENT,
                {'source_id': event.source_id, 'metadata': event.metadata},
                data=event.data,
            ))
            self.events_sent += 1

        async def progress(record: Dict[str, Any]):
            await send(ChannelMessage(
                ChannelMessageType.PROGRESS,
                {'call_id': call_id, 'progress': record},
            ))

        context = RemoteContext(
            publish=publish,
            progress=progress,
            interactive=False,
            working_directory=self.working_directory,
        )
        self.invocations += 1

        try:
            remote_op = self.registry.get(operation)
            value = await remote_op.func(context, **arguments)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.warning(f"Operation {operation} failed: {e}")
            try:
                await send(ChannelMessage(ChannelMessageType.ERROR, {
                    'call_id': call_id,
                    'operation': operation,
                    'error_type': type(e).__name__,
                    'message': str(e),
                }))
            except (ConnectionError, OSError):
                logger.debug(f"Could not report failure of {operation}: connection gone")
            return

        try:
            await send(ChannelMessage(
                ChannelMessageType.RESULT, {'call_id': call_id, 'value': value}
            ))
        except (ConnectionError, OSError) as e:
            logger.error(f"Could not return result of {operation}: {e}")

    def get_stats(self) -> dict:
        """Get server statistics."""
        return {
            'invocations': self.invocations,
            'events_sent': self.events_sent,
            'port': self.bound_port or self.port,
            'operations': self.registry.names(),
        }
