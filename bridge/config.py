"""
Configuration Management

Handles loading configuration from environment variables and config files.
"""

import os
import json
from pathlib import Path
from dataclasses import dataclass, field, fields, replace
from typing import Optional

from dotenv import load_dotenv

from .transfer.protocol import DEFAULT_PORT, CHUNK_SIZE


ENV_PREFIX = 'BRIDGE_'


def _parse_bool(value: str) -> bool:
    return value.strip().lower() in ('1', 'true', 'yes', 'on')


@dataclass
class Config:
    """
    Bridge configuration.

    Configuration priority (highest to lowest):
    1. Environment variables (BRIDGE_*, .env is loaded too)
    2. Config file (config.json)
    3. Default values
    """
    # Network
    host: str = '0.0.0.0'
    port: int = DEFAULT_PORT

    # Storage
    dest_dir: Path = field(default_factory=lambda: Path('./received'))
    overwrite: bool = False
    keep_partial: bool = True

    # Performance
    chunk_size: int = CHUNK_SIZE

    # Timeouts (seconds)
    connect_timeout: float = 10.0
    header_timeout: float = 10.0
    transfer_timeout: float = 30.0

    # Control API
    api_host: str = '127.0.0.1'
    api_port: int = 8080

    # Logging
    log_level: str = 'INFO'

    def __post_init__(self):
        self.dest_dir = Path(self.dest_dir)
        if not 0 <= self.port < 65536:
            raise ValueError(f"port out of range: {self.port}")
        if self.chunk_size <= 0:
            raise ValueError(f"chunk_size must be positive: {self.chunk_size}")

    @classmethod
    def from_env(cls, base: Optional['Config'] = None) -> 'Config':
        """
        Load configuration from environment variables.

        Args:
            base: Values to start from (defaults if not given)
        """
        load_dotenv()

        overrides = {}
        for f in fields(cls):
            raw = os.getenv(ENV_PREFIX + f.name.upper())
            if raw is None or raw == '':
                continue
            overrides[f.name] = _coerce(f.name, raw)

        return replace(base or cls(), **overrides)

    @classmethod
    def from_file(cls, path: Path) -> 'Config':
        """Load configuration from a JSON file."""
        path = Path(path)
        if not path.exists():
            return cls()

        with open(path) as f:
            data = json.load(f)

        known = {f.name for f in fields(cls)}
        unknown = set(data) - known
        if unknown:
            raise ValueError(f"Unknown config keys in {path}: {', '.join(sorted(unknown))}")

        return cls(**{key: _coerce(key, value) for key, value in data.items()})

    def to_dict(self) -> dict:
        """Convert to dictionary."""
        return {
            'host': self.host,
            'port': self.port,
            'dest_dir': str(self.dest_dir),
            'overwrite': self.overwrite,
            'keep_partial': self.keep_partial,
            'chunk_size': self.chunk_size,
            'connect_timeout': self.connect_timeout,
            'header_timeout': self.header_timeout,
            'transfer_timeout': self.transfer_timeout,
            'api_host': self.api_host,
            'api_port': self.api_port,
            'log_level': self.log_level,
        }

    def save(self, path: Path):
        """Save configuration to a JSON file."""
        with open(path, 'w') as f:
            json.dump(self.to_dict(), f, indent=2)


_TYPES = {f.name: f.type for f in fields(Config)}


def _coerce(key: str, value):
    """Convert a raw env/JSON value to the type of field `key`."""
    kind = _TYPES[key]
    if kind in (bool, 'bool'):
        return _parse_bool(value) if isinstance(value, str) else bool(value)
    if kind in (int, 'int'):
        return int(value)
    if kind in (float, 'float'):
        return float(value)
    if kind in (Path, 'Path'):
        return Path(value)
    return str(value)


def load_config(config_path: Optional[Path] = None) -> Config:
    """
    Load configuration from file and environment.

    Environment variables override file settings.
    """
    # Start with defaults
    config = Config()

    # Load from file if provided
    if config_path and Path(config_path).exists():
        config = Config.from_file(config_path)

    # Override with environment variables
    return Config.from_env(base=config)


# Example config file template
EXAMPLE_CONFIG = """
{
  "host": "0.0.0.0",
  "port": 12345,
  "dest_dir": "./received",
  "overwrite": false,
  "keep_partial": true,
  "chunk_size": 81920,
  "connect_timeout": 10.0,
  "header_timeout": 10.0,
  "transfer_timeout": 30.0,
  "api_host": "127.0.0.1",
  "api_port": 8080,
  "log_level": "INFO"
}
"""
