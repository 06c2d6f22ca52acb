"""
Configuration Management

Handles loading configuration from environment variables and config files.
"""

import os
from pathlib import Path
from dataclasses import dataclass, field
from typing import Optional
import json

from dotenv import load_dotenv

from .channel.stream import DEFAULT_CHANNEL_PORT
from .channel.base import DEFAULT_MAX_PENDING_EVENTS
from .transfer.sender import DEFAULT_PACKET_SIZE
from .transfer.orchestrator import DEFAULT_COMPLETION_TIMEOUT


@dataclass
class Config:
    """
    channelcopy configuration.

    Configuration priority (highest to lowest):
    1. Environment variables (CHANNELCOPY_*)
    2. Config file (config.json)
    3. Default values
    """
    # Channel
    host: str = '127.0.0.1'
    port: int = DEFAULT_CHANNEL_PORT
    connect_timeout: float = 10.0

    # Transfer
    packet_size: int = DEFAULT_PACKET_SIZE  # 512KB
    local_directory: Path = field(default_factory=lambda: Path('.'))
    completion_timeout: float = DEFAULT_COMPLETION_TIMEOUT
    max_pending_events: int = DEFAULT_MAX_PENDING_EVENTS

    # Logging
    log_level: str = 'INFO'

    @classmethod
    def from_env(cls) -> 'Config':
        """Load configuration from environment variables."""
        load_dotenv()

        config = cls()

        # Channel
        config.host = os.getenv('CHANNELCOPY_HOST', config.host)
        config.port = int(os.getenv('CHANNELCOPY_PORT', config.port))
        config.connect_timeout = float(
            os.getenv('CHANNELCOPY_CONNECT_TIMEOUT', config.connect_timeout)
        )

        # Transfer
        config.packet_size = int(os.getenv('CHANNELCOPY_PACKET_SIZE', config.packet_size))
        local_directory = os.getenv('CHANNELCOPY_LOCAL_DIRECTORY')
        if local_directory:
            config.local_directory = Path(local_directory)
        config.completion_timeout = float(
            os.getenv('CHANNELCOPY_COMPLETION_TIMEOUT', config.completion_timeout)
        )
        config.max_pending_events = int(
            os.getenv('CHANNELCOPY_MAX_PENDING_EVENTS', config.max_pending_events)
        )

        # Logging
        config.log_level = os.getenv('CHANNELCOPY_LOG_LEVEL', config.log_level)

        return config

    @classmethod
    def from_file(cls, path: Path) -> 'Config':
        """Load configuration from a JSON file."""
        if not path.exists():
            return cls()

        with open(path) as f:
            data = json.load(f)

        config = cls()

        # Channel
        config.host = data.get('host', config.host)
        config.port = data.get('port', config.port)
        config.connect_timeout = data.get('connect_timeout', config.connect_timeout)

        # Transfer
        config.packet_size = data.get('packet_size', config.packet_size)
        if 'local_directory' in data:
            config.local_directory = Path(data['local_directory'])
        config.completion_timeout = data.get('completion_timeout', config.completion_timeout)
        config.max_pending_events = data.get('max_pending_events', config.max_pending_events)

        # Logging
        config.log_level = data.get('log_level', config.log_level)

        return config

    def to_dict(self) -> dict:
        """Convert to dictionary."""
        return {
            'host': self.host,
            'port': self.port,
            'connect_timeout': self.connect_timeout,
            'packet_size': self.packet_size,
            'local_directory': str(self.local_directory),
            'completion_timeout': self.completion_timeout,
            'max_pending_events': self.max_pending_events,
            'log_level': self.log_level,
        }

    def save(self, path: Path):
        """Save configuration to a JSON file."""
        with open(path, 'w') as f:
            json.dump(self.to_dict(), f, indent=2)


def load_config(config_path: Optional[Path] = None) -> Config:
    """
    Load configuration from file and environment.

    Environment variables override file settings.
    """
    # Start with defaults
    config = Config()

    # Load from file if provided
    if config_path and config_path.exists():
        config = Config.from_file(config_path)

    # Override with environment variables
    env_config = Config.from_env()

    # Merge (env takes precedence for non-default values)
    defaults = Config()
    for key in ['host', 'port', 'connect_timeout', 'packet_size', 'local_directory',
                'completion_timeout', 'max_pending_events', 'log_level']:
        env_val = getattr(env_config, key)
        if env_val != getattr(defaults, key):
            setattr(config, key, env_val)

    return config
