import asyncio
import math

import pytest

from channelcopy.channel import ChannelEvent, RemoteContext
from channelcopy.errors import NotRemoteContextError, RemoteInvocationError
from channelcopy.protocol import PROTOCOL_VERSION
from channelcopy.transfer import SEND_FILE_OPERATION, SenderEngine

from conftest import PacketRecorder, make_channel, write_file

P = 1024


async def send(channel, path, transfer_id='t-1', packet_size=P, recorder=None, **kwargs):
    recorder = recorder or PacketRecorder()
    channel.subscribe(transfer_id, recorder)
    result = await channel.invoke(
        SEND_FILE_OPERATION,
        file_path=str(path),
        save_path='/local/out.bin',
        transfer_id=transfer_id,
        packet_size=packet_size,
        **kwargs
    )
    if result:
        await asyncio.wait_for(recorder.finished.wait(), 5)
    return result, recorder


@pytest.mark.parametrize('size', [1, P - 1, P, P + 1, 5 * P, 5 * P + 17])
def test_packet_count_and_sizes(tmp_path, size):
    source = tmp_path / 'f.bin'
    data = write_file(source, size)

    async def run():
        channel, _ = make_channel()
        return await send(channel, source)

    result, recorder = asyncio.run(run())
    assert result is True

    data_packets = recorder.data_packets
    assert len(data_packets) == math.ceil(size / P)
    for p in data_packets[:-1]:
        assert p.size == P
    assert data_packets[-1].size == (size % P or P)

    # Exactly one trailing sentinel
    assert recorder.packets[-1].is_sentinel
    assert sum(1 for p in recorder.packets if p.is_sentinel) == 1

    assert [p.sequence for p in recorder.packets] == list(range(len(recorder.packets)))
    assert all(p.flags == 1 and p.protocol_version == PROTOCOL_VERSION
               for p in recorder.packets)
    assert b''.join(p.data for p in data_packets) == data


def test_zero_length_source(tmp_path):
    source = tmp_path / 'empty.bin'
    source.write_bytes(b'')

    async def run():
        channel, _ = make_channel()
        return await send(channel, source)

    result, recorder = asyncio.run(run())
    assert result is True
    assert len(recorder.packets) == 1
    assert recorder.packets[0].is_sentinel
    assert recorder.packets[0].sequence == 0


def test_routing_metadata(tmp_path):
    source = tmp_path / 'f.bin'
    write_file(source, 10)

    async def run():
        channel, _ = make_channel()
        return await send(channel, source, transfer_id='abc')

    _, recorder = asyncio.run(run())
    assert recorder.metadata[0] == {'transfer_id': 'abc', 'save_path': '/local/out.bin'}
    # The Transfer ID never appears in the payload
    assert all(b'abc' not in (p.data or b'') for p in recorder.packets)


def test_progress_reported(tmp_path):
    source = tmp_path / 'f.bin'
    write_file(source, 3 * P)
    records = []

    async def run():
        channel, _ = make_channel()
        return await send(channel, source, progress_callback=records.append)

    asyncio.run(run())
    assert len(records) == 4
    assert [round(r['percent']) for r in records[:3]] == [33, 67, 100]
    assert records[-1]['completed'] is True


def test_missing_file_is_refused(tmp_path):
    async def run():
        channel, engine = make_channel()
        result, recorder = await send(channel, tmp_path / 'nope.bin')
        return result, recorder, engine

    result, recorder, engine = asyncio.run(run())
    assert result is False
    assert recorder.packets == []
    assert engine.packets_sent == 0


def test_background_mode_is_refused(tmp_path):
    source = tmp_path / 'f.bin'
    write_file(source, 10)

    async def run():
        channel, _ = make_channel()
        return await send(channel, source, as_job=True)

    result, recorder = asyncio.run(run())
    assert result is False
    assert recorder.packets == []


def test_interactive_session_refused(tmp_path):
    source = tmp_path / 'f.bin'
    write_file(source, 10)

    async def run():
        channel, _ = make_channel(interactive=True)
        await send(channel, source)

    with pytest.raises(RemoteInvocationError) as info:
        asyncio.run(run())
    assert info.value.error_type == 'NotRemoteContextError'


def test_no_context_refused(tmp_path):
    async def run():
        await SenderEngine().send_file(None, str(tmp_path), 'x', 't')

    with pytest.raises(NotRemoteContextError):
        asyncio.run(run())


def test_forwarder_released_on_publish_fault(tmp_path):
    source = tmp_path / 'f.bin'
    write_file(source, 4 * P)
    published = []

    async def failing_publish(event: ChannelEvent):
        if len(published) == 2:
            raise OSError("channel broke")
        published.append(event)

    async def run():
        context = RemoteContext(publish=failing_publish)
        with pytest.raises(OSError):
            await SenderEngine().send_file(context, str(source), 'x', 't-9', packet_size=P)
        return context

    context = asyncio.run(run())
    assert len(published) == 2
    assert context.active_forwarders == set()


def test_relative_path_uses_working_directory(tmp_path):
    write_file(tmp_path / 'rel.bin', 100)

    async def run():
        channel, _ = make_channel(working_directory=tmp_path)
        return await send(channel, 'rel.bin')

    result, recorder = asyncio.run(run())
    assert result is True
    assert len(recorder.data_packets) == 1
