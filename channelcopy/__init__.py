"""
channelcopy - File retrieval over an existing remote-execution channel

Pulls a file from a remote host through a channel that is already open
(remote invocation plus an event bus), without opening extra ports or
shares.
"""

from .protocol import PROTOCOL_VERSION, get_protocol_version
from .channel import (
    Channel, LoopbackChannel, StreamChannel, ChannelServer, OperationRegistry
)
from .transfer import (
    FileRetriever, TransferSession, TransferState, install_protocol_module,
    retrieve_file, send_local_file
)

__version__ = '1.0.0'

__all__ = [
    'PROTOCOL_VERSION',
    'get_protocol_version',
    'Channel',
    'LoopbackChannel',
    'StreamChannel',
    'ChannelServer',
    'OperationRegistry',
    'FileRetriever',
    'TransferSession',
    'TransferState',
    'install_protocol_module',
    'retrieve_file',
    'send_local_file',
]
