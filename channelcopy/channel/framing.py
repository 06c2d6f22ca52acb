"""
Channel Stream Framing

Design Decision: Framing
========================

Options Considered:
1. Newline-delimited JSON
   - Simple, but binary payloads need base64

2. Length-prefixed JSON header + raw binary data
   - Packets travel without re-encoding
   - Header stays human readable for debugging

3. msgpack / protobuf
   - Compact, but another dependency for a handful of fields

Decision: Length-prefixed messages
- 4-byte total length + 4-byte header length + JSON header + binary data
- Frames larger than MAX_FRAME_SIZE are rejected before reading

Message Format:
```
+----------------+----------------+----------------+----------------+
| Total (4B)     | Header len (4B)| Header (JSON)  | Data (binary)  |
+----------------+----------------+----------------+----------------+
```

Header JSON always carries "type"; requests carry "call_id", which the
matching RESULT/ERROR/PROGRESS/PONG echoes back.
"""

import asyncio
import json
import logging
import struct
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)

MAX_FRAME_SIZE = 100 * 1024 * 1024  # 100MB


class ChannelMessageType(Enum):
    """Channel stream message types."""
    # Invocation
    INVOKE = "INVOKE"
    DESCRIBE = "DESCRIBE"
    RESULT = "RESULT"
    ERROR = "ERROR"
    PROGRESS = "PROGRESS"

    # Remote -> local events
    EVENT = "EVENT"

    # Control
    PING = "PING"
    PONG = "PONG"


@dataclass
class ChannelMessage:
    """A framed channel message."""
    type: ChannelMessageType
    headers: Dict[str, Any] = field(default_factory=dict)
    data: bytes = b''

    def to_bytes(self) -> bytes:
        """Serialize message to bytes."""
        header_dict = {
            'type': self.type.value,
            'data_length': len(self.data),
            **self.headers
        }
        header_bytes = json.dumps(header_dict).encode('utf-8')

        total_length = len(header_bytes) + len(self.data)
        if total_length > MAX_FRAME_SIZE:
            raise ValueError(f"Message too large: {total_length}")

        return (
            struct.pack('>I', total_length) +
            struct.pack('>I', len(header_bytes)) +
            header_bytes +
            self.data
        )

    @classmethod
    async def from_reader(cls, reader: asyncio.StreamReader) -> Optional['ChannelMessage']:
        """
        Read a message from a stream.

        Returns:
            The message, or None at end of stream or on a malformed frame
        """
        try:
            length_bytes = await reader.readexactly(4)
            total_length = struct.unpack('>I', length_bytes)[0]

            if total_length > MAX_FRAME_SIZE:
                raise ValueError(f"Message too large: {total_length}")

            header_length_bytes = await reader.readexactly(4)
            header_length = struct.unpack('>I', header_length_bytes)[0]
            if header_length > total_length:
                raise ValueError(f"Header length {header_length} exceeds frame")

            header_bytes = await reader.readexactly(header_length)
            header_dict = json.loads(header_bytes.decode('utf-8'))
            if not isinstance(header_dict, dict):
                raise ValueError(f"Header is not an object: {type(header_dict).__name__}")

            data_length = total_length - header_length
            data = await reader.readexactly(data_length) if data_length > 0 else b''

            msg_type = ChannelMessageType(header_dict.pop('type'))
            declared = header_dict.pop('data_length', data_length)
            if declared != data_length:
                raise ValueError(f"Data length mismatch: {declared} != {data_length}")

            return cls(type=msg_type, headers=header_dict, data=data)

        except asyncio.IncompleteReadError:
            return None
        except (ValueError, KeyError, UnicodeDecodeError) as e:
            logger.error(f"Error reading message: {e}")
            return None
