"""
Transfer Session and Progress Models
"""

import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, Optional


class TransferState(Enum):
    """Lifecycle of a transfer session."""
    PENDING = 'pending'
    ACTIVE = 'active'
    COMPLETED = 'completed'
    FAILED = 'failed'


def new_transfer_id() -> str:
    """Allocate a fresh Transfer ID."""
    return str(uuid.uuid4())


@dataclass
class TransferSession:
    """One file retrieval, identified by its Transfer ID."""
    remote_path: str
    local_path: Path
    packet_size: int
    transfer_id: str = field(default_factory=new_transfer_id)
    state: TransferState = TransferState.PENDING

    # Next sequence number the receiver expects
    next_sequence: int = 0
    bytes_received: int = 0
    error: Optional[str] = None
    started_at: float = field(default_factory=time.time)
    finished_at: Optional[float] = None

    @property
    def is_finished(self) -> bool:
        return self.state in (TransferState.COMPLETED, TransferState.FAILED)

    @property
    def succeeded(self) -> bool:
        return self.state == TransferState.COMPLETED

    @property
    def elapsed_seconds(self) -> float:
        end = self.finished_at or time.time()
        return end - self.started_at

    def mark_active(self):
        if self.state == TransferState.PENDING:
            self.state = TransferState.ACTIVE

    def mark_completed(self):
        self.state = TransferState.COMPLETED
        self.finished_at = time.time()

    def mark_failed(self, reason: str):
        self.state = TransferState.FAILED
        self.error = reason
        self.finished_at = time.time()

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            'transfer_id': self.transfer_id,
            'remote_path': self.remote_path,
            'local_path': str(self.local_path),
            'packet_size': self.packet_size,
            'state': self.state.value,
            'packets_received': self.next_sequence,
            'bytes_received': self.bytes_received,
            'elapsed_seconds': self.elapsed_seconds,
            'error': self.error,
        }


@dataclass
class TransferProgress:
    """Progress record reported by the sending side, per chunk and at the end."""
    activity: str
    status: str
    percent: float
    bytes_sent: int = 0
    total_bytes: int = 0
    completed: bool = False

    @classmethod
    def for_chunk(cls, file_name: str, bytes_sent: int,
                  total_bytes: int) -> 'TransferProgress':
        percent = 100.0 if total_bytes == 0 else bytes_sent / total_bytes * 100
        return cls(
            activity=f"Sending {file_name}",
            status=f"{bytes_sent:,} of {total_bytes:,} bytes sent",
            percent=percent,
            bytes_sent=bytes_sent,
            total_bytes=total_bytes,
        )

    @classmethod
    def finished(cls, file_name: str, total_bytes: int) -> 'TransferProgress':
        return cls(
            activity=f"Sending {file_name}",
            status="Transfer complete",
            percent=100.0,
            bytes_sent=total_bytes,
            total_bytes=total_bytes,
            completed=True,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            'activity': self.activity,
            'status': self.status,
            'percent': self.percent,
            'bytes_sent': self.bytes_sent,
            'total_bytes': self.total_bytes,
            'completed': self.completed,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'TransferProgress':
        return cls(
            activity=data.get('activity', ''),
            status=data.get('status', ''),
            percent=float(data.get('percent', 0.0)),
            bytes_sent=int(data.get('bytes_sent', 0)),
            total_bytes=int(data.get('total_bytes', 0)),
            completed=bool(data.get('completed', False)),
        )


# Progress callback type
ProgressCallback = Callable[[TransferProgress], None]
