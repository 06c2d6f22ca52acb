"""
Channel Module - Remote Invocation and Event Delivery

Provides the channel abstraction the transfer engines run on, plus an
in-process loopback channel and a TCP stream channel with its server.
"""

from .base import Channel, ChannelEvent, EventBus, OperationBinding
from .remote import OperationRegistry, RemoteContext, EventForwarder, RemoteOperation
from .loopback import LoopbackChannel
from .framing import ChannelMessage, ChannelMessageType
from .stream import StreamChannel, ChannelServer, DEFAULT_CHANNEL_PORT

__all__ = [
    'Channel',
    'ChannelEvent',
    'EventBus',
    'OperationBinding',
    'OperationRegistry',
    'RemoteContext',
    'EventForwarder',
    'RemoteOperation',
    'LoopbackChannel',
    'ChannelMessage',
    'ChannelMessageType',
    'StreamChannel',
    'ChannelServer',
    'DEFAULT_CHANNEL_PORT',
]
