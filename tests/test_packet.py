import struct

import pytest

from channelcopy.errors import PacketError
from channelcopy.protocol import FLAG_DEFAULT, PACKET_MAGIC, PROTOCOL_VERSION, Packet


def test_data_packet_fields():
    p = Packet.data_packet(sequence=3, data=b"hello")
    assert p.flags == FLAG_DEFAULT
    assert p.protocol_version == PROTOCOL_VERSION
    assert p.sequence == 3
    assert p.size == 5
    assert not p.is_sentinel


def test_roundtrip_data():
    raw = Packet.data_packet(sequence=7, data=b"\x00\x01payload").to_bytes()
    p = Packet.from_bytes(raw)
    assert p.sequence == 7
    assert p.data == b"\x00\x01payload"
    assert p.size == len(p.data)


def test_sentinel_has_no_data():
    p = Packet.from_bytes(Packet.sentinel(sequence=4).to_bytes())
    assert p.is_sentinel
    assert p.size == 0
    assert p.data is None
    assert p.sequence == 4


def test_empty_data_packet_rejected():
    with pytest.raises(PacketError):
        Packet.data_packet(sequence=0, data=b"")


def test_truncated_packet():
    raw = Packet.data_packet(sequence=0, data=b"abc").to_bytes()
    with pytest.raises(PacketError):
        Packet.from_bytes(raw[:10])


def test_payload_shorter_than_declared():
    raw = Packet.data_packet(sequence=0, data=b"abcdef").to_bytes()
    with pytest.raises(PacketError):
        Packet.from_bytes(raw[:-2])


def test_bad_magic():
    raw = bytearray(Packet.data_packet(sequence=0, data=b"abc").to_bytes())
    raw[0:4] = b"XXXX"
    with pytest.raises(PacketError):
        Packet.from_bytes(bytes(raw))


def test_unknown_flags():
    raw = struct.pack('!4sBHQI', PACKET_MAGIC, 2, PROTOCOL_VERSION, 0, 1) + b"x"
    with pytest.raises(PacketError):
        Packet.from_bytes(raw)


def test_sentinel_with_trailing_data():
    raw = Packet.sentinel(sequence=0).to_bytes() + b"junk"
    with pytest.raises(PacketError):
        Packet.from_bytes(raw)


def test_non_bytes_input():
    with pytest.raises(PacketError):
        Packet.from_bytes("not bytes")
