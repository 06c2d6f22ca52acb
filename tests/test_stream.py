import asyncio
import json
import struct

import pytest

from channelcopy.channel import (
    ChannelMessage, ChannelMessageType, ChannelServer, OperationRegistry, StreamChannel
)
from channelcopy.errors import ChannelError, OperationNotFoundError, RemoteInvocationError
from channelcopy.protocol import PROTOCOL_VERSION, VERSION_OPERATION
from channelcopy.transfer import FileRetriever, TransferState, install_protocol_module

from conftest import write_file

P = 4096


async def start_server(**kwargs):
    registry = OperationRegistry()
    engine = install_protocol_module(registry)
    server = ChannelServer(registry, host='127.0.0.1', port=0, **kwargs)
    await server.start()
    return server, engine


def test_retrieve_over_stream(dirs):
    remote, local = dirs
    data = write_file(remote / 'big.bin', 50 * P + 123)

    async def run():
        server, engine = await start_server()
        progress = []
        try:
            async with await StreamChannel.connect('127.0.0.1', server.bound_port) as channel:
                retriever = FileRetriever(channel)
                session = await retriever.retrieve(
                    str(remote / 'big.bin'), local,
                    packet_size=P, progress_callback=progress.append,
                )
        finally:
            await server.stop()
        return session, progress, engine

    session, progress, engine = asyncio.run(run())
    assert session.state == TransferState.COMPLETED
    assert (local / 'big.bin').read_bytes() == data
    assert engine.packets_sent == 52
    assert len(progress) == 52
    assert progress[-1].completed
    assert progress[-1].percent == 100.0


def test_relative_path_resolved_on_server(dirs):
    remote, local = dirs
    data = write_file(remote / 'rel.bin', 10)

    async def run():
        server, _ = await start_server(working_directory=remote)
        try:
            async with await StreamChannel.connect('127.0.0.1', server.bound_port) as channel:
                return await FileRetriever(channel).retrieve('rel.bin', local)
        finally:
            await server.stop()

    session = asyncio.run(run())
    assert session.succeeded
    assert (local / 'rel.bin').read_bytes() == data


def test_invoke_and_describe():
    async def run():
        server, _ = await start_server()
        try:
            async with await StreamChannel.connect('127.0.0.1', server.bound_port) as channel:
                available = await channel.is_available()
                version = await channel.invoke(VERSION_OPERATION)
                info = await channel.describe('send_file')
                with pytest.raises(OperationNotFoundError):
                    await channel.describe('format_disk')
                with pytest.raises(OperationNotFoundError):
                    await channel.invoke('format_disk')
                with pytest.raises(RemoteInvocationError) as failure:
                    await channel.invoke('send_file', bogus=True)
            closed_available = await channel.is_available()
            return available, version, info, failure.value, closed_available
        finally:
            await server.stop()

    available, version, info, failure, closed_available = asyncio.run(run())
    assert available is True
    assert version == PROTOCOL_VERSION
    assert info == {'name': 'send_file', 'version': PROTOCOL_VERSION}
    assert failure.error_type == 'TypeError'
    assert closed_available is False


def test_pending_call_fails_when_server_goes_away():
    async def run():
        registry = OperationRegistry()
        started = asyncio.Event()

        async def hang(context):
            started.set()
            await asyncio.sleep(60)

        registry.install('hang', hang)
        server = ChannelServer(registry, host='127.0.0.1', port=0)
        await server.start()
        channel = await StreamChannel.connect('127.0.0.1', server.bound_port)
        call = asyncio.ensure_future(channel.invoke('hang'))
        await asyncio.wait_for(started.wait(), 5)
        await server.stop()
        try:
            with pytest.raises(ChannelError):
                await asyncio.wait_for(call, 5)
        finally:
            await channel.close()
        return channel.is_open

    assert asyncio.run(run()) is False


def test_connect_refused():
    async def run():
        server, _ = await start_server()
        port = server.bound_port
        await server.stop()
        await StreamChannel.connect('127.0.0.1', port, timeout=2)

    with pytest.raises(ChannelError):
        asyncio.run(run())


def read_frame(raw: bytes):
    async def run():
        reader = asyncio.StreamReader()
        reader.feed_data(raw)
        reader.feed_eof()
        return await ChannelMessage.from_reader(reader)

    return asyncio.run(run())


def test_frame_round_trip():
    message = ChannelMessage(ChannelMessageType.EVENT, {'source_id': 't1'}, b'payload')
    decoded = read_frame(message.to_bytes())
    assert decoded.type == ChannelMessageType.EVENT
    assert decoded.headers == {'source_id': 't1'}
    assert decoded.data == b'payload'


@pytest.mark.parametrize('header', [[], 'text', 7, {'no_type': True}, {'type': 'bogus'}])
def test_malformed_frame_header(header):
    header_bytes = json.dumps(header).encode('utf-8')
    raw = struct.pack('>I', len(header_bytes)) + struct.pack('>I', len(header_bytes)) + header_bytes
    assert read_frame(raw) is None
