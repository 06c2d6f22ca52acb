"""
Exception hierarchy shared by the channel, protocol and transfer layers.
"""

from typing import Optional


class ChannelCopyError(Exception):
    """Base class for all channelcopy errors."""


class ChannelError(ChannelCopyError):
    """The channel failed (connection dropped, malformed frame, ...)."""


class ChannelNotReadyError(ChannelError):
    """The channel is closed or not available for invocations."""


class OperationNotFoundError(ChannelError):
    """The remote side does not expose the requested operation."""

    def __init__(self, operation: str):
        super().__init__(f"Remote operation not found: {operation}")
        self.operation = operation


class RemoteInvocationError(ChannelCopyError):
    """A remote operation raised while executing."""

    def __init__(self, operation: str, error_type: str, message: str):
        super().__init__(f"{operation} failed remotely: {error_type}: {message}")
        self.operation = operation
        self.error_type = error_type
        self.remote_message = message


class RemoteModuleNotFoundError(ChannelCopyError):
    """The protocol module is not installed on the remote side."""


class VersionMismatchError(ChannelCopyError):
    """Local and remote protocol versions differ."""

    def __init__(self, local_version: int, remote_version: Optional[int]):
        super().__init__(
            f"Protocol version mismatch: local={local_version}, remote={remote_version}"
        )
        self.local_version = local_version
        self.remote_version = remote_version


class PacketError(ChannelCopyError):
    """A packet could not be decoded or failed validation."""


class NotRemoteContextError(ChannelCopyError):
    """A remote-only operation was called outside a remote session."""
