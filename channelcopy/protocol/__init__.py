"""
Protocol Module - Packets and Version Negotiation
"""

from .packet import Packet, PACKET_MAGIC, FLAG_DEFAULT
from .version import (
    PROTOCOL_VERSION, VERSION_OPERATION, get_protocol_version,
    check_protocol_version, versions_match
)

__all__ = [
    'Packet',
    'PACKET_MAGIC',
    'FLAG_DEFAULT',
    'PROTOCOL_VERSION',
    'VERSION_OPERATION',
    'get_protocol_version',
    'check_protocol_version',
    'versions_match',
]
