"""
Transfer Module - Sender Engine, Listener and Orchestrator

Moves one file from the remote host to this host as a sequence of packets
published on the channel's event bus.
"""

from .session import TransferSession, TransferState, TransferProgress, new_transfer_id
from .manager import TransferManager
from .sender import (
    SenderEngine, install_protocol_module, DEFAULT_PACKET_SIZE,
    MIN_PACKET_SIZE, MAX_PACKET_SIZE, SEND_FILE_OPERATION
)
from .listener import TransferListener
from .orchestrator import FileRetriever, retrieve_file, send_local_file, destination_path

__all__ = [
    'TransferSession',
    'TransferState',
    'TransferProgress',
    'new_transfer_id',
    'TransferManager',
    'SenderEngine',
    'install_protocol_module',
    'DEFAULT_PACKET_SIZE',
    'MIN_PACKET_SIZE',
    'MAX_PACKET_SIZE',
    'SEND_FILE_OPERATION',
    'TransferListener',
    'FileRetriever',
    'retrieve_file',
    'send_local_file',
    'destination_path',
]
