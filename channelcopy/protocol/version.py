"""
Protocol Version Negotiation

Both sides hold a single integer version. Negotiation is a plain equality
check: there are no capability flags and no compatibility ranges, so any
difference aborts the attempt before a packet is sent.
"""

import logging

from ..errors import (
    OperationNotFoundError, RemoteModuleNotFoundError, VersionMismatchError
)

logger = logging.getLogger(__name__)

PROTOCOL_VERSION = 1

# Remote operation name of the version query
VERSION_OPERATION = 'get_protocol_version'


def get_protocol_version() -> int:
    """Return the protocol version spoken by this side."""
    return PROTOCOL_VERSION


def versions_match(local_version: int, remote_version) -> bool:
    """True if both versions are identical integers."""
    return (isinstance(remote_version, int)
            and not isinstance(remote_version, bool)
            and remote_version == local_version)


async def check_protocol_version(channel, local_version: int = None) -> int:
    """
    Query the remote protocol version and compare it with ours.

    Returns:
        The negotiated version

    Raises:
        RemoteModuleNotFoundError: the remote side has no protocol module
        VersionMismatchError: the versions differ
    """
    if local_version is None:
        local_version = get_protocol_version()

    try:
        remote_version = await channel.invoke(VERSION_OPERATION)
    except OperationNotFoundError as e:
        raise RemoteModuleNotFoundError(
            "Protocol module not found on the remote host"
        ) from e

    if not versions_match(local_version, remote_version):
        raise VersionMismatchError(local_version, remote_version)

    logger.debug(f"Negotiated protocol version {local_version}")
    return local_version
