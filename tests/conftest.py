import asyncio
import os
from pathlib import Path

import pytest

from channelcopy.channel import LoopbackChannel, OperationRegistry
from channelcopy.protocol import Packet
from channelcopy.transfer import install_protocol_module


def make_channel(**kwargs):
    """Loopback channel with the protocol module installed."""
    registry = OperationRegistry()
    engine = install_protocol_module(registry)
    channel = LoopbackChannel(registry, **kwargs)
    return channel, engine


def write_file(path: Path, size: int) -> bytes:
    data = os.urandom(size)
    path.write_bytes(data)
    return data


class PacketRecorder:
    """Event handler that decodes and keeps every packet it receives."""

    def __init__(self):
        self.packets = []
        self.metadata = []
        self.finished = asyncio.Event()

    async def __call__(self, event):
        packet = Packet.from_bytes(event.data)
        self.packets.append(packet)
        self.metadata.append(event.metadata)
        if packet.is_sentinel:
            self.finished.set()

    @property
    def data_packets(self):
        return [p for p in self.packets if not p.is_sentinel]


@pytest.fixture
def dirs(tmp_path):
    remote = tmp_path / 'remote'
    local = tmp_path / 'local'
    remote.mkdir()
    local.mkdir()
    return remote, local
