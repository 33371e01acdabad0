"""
Configuration Management

Handles loading configuration from environment variables and config files.
"""

import os
import json
from dataclasses import dataclass, field
from ipaddress import IPv4Address
from pathlib import Path
from typing import List, Optional, Tuple

from dotenv import find_dotenv, load_dotenv

from .discovery.dns import DNS_CHECK_INTERVAL, DNS_QUERY_TIMEOUT
from .discovery.lan import BROADCAST_PORT
from .discovery.registry import BROADCAST_INTERVAL, MAX_SILENT_INTERVALS

ENV_PREFIX = 'PEERFINDER_'


def parse_socket_addr(value: str) -> Tuple[str, int]:
    """
    Parse "HOST:PORT" where HOST is an IPv4 literal.

    Raises:
        ValueError: Malformed address or port out of range
    """
    host, sep, port = value.strip().rpartition(':')
    if not sep or not host:
        raise ValueError(f"expected HOST:PORT, got {value!r}")

    ip = IPv4Address(host)
    port_num = int(port)
    if not 0 < port_num < 65536:
        raise ValueError(f"port out of range: {port_num}")

    return str(ip), port_num


def parse_tags(value: str) -> List[str]:
    """Split a comma separated tag list, dropping blanks."""
    return [tag.strip() for tag in value.split(',') if tag.strip()]


def _as_list(value) -> List[str]:
    """Accept either a JSON list or a comma separated string."""
    if isinstance(value, str):
        return parse_tags(value)
    return [str(item) for item in value]


def _env_number(name: str, default, cast):
    """
    Read a numeric PEERFINDER_* variable.

    Raises:
        ValueError: The variable is set but not a number, naming the variable
    """
    raw = os.getenv(f'{ENV_PREFIX}{name}')
    if raw is None:
        return default
    try:
        return cast(raw)
    except ValueError:
        raise ValueError(f"{ENV_PREFIX}{name} must be a number, got {raw!r}") from None


@dataclass
class Config:
    """
    Discovery configuration.

    Configuration priority (highest to lowest):
    1. Environment variables (PEERFINDER_*)
    2. Config file (JSON)
    3. Default values
    """
    # DNS enumeration
    dns_server: str = '8.8.8.8:53'
    domain: str = ''
    prefix: str = ''
    tags: List[str] = field(default_factory=list)

    # Interfaces whose addresses are never peers
    interfaces: List[str] = field(default_factory=list)

    # Timing (seconds)
    dns_check_interval: float = DNS_CHECK_INTERVAL
    dns_timeout: float = DNS_QUERY_TIMEOUT
    broadcast_interval: float = BROADCAST_INTERVAL
    max_silent_intervals: int = MAX_SILENT_INTERVALS

    # LAN
    broadcast_port: int = BROADCAST_PORT

    # Logging
    log_level: str = 'INFO'

    @property
    def max_age(self) -> float:
        """Seconds of silence before a node is reaped."""
        return self.max_silent_intervals * self.broadcast_interval

    @property
    def dns_address(self) -> Tuple[str, int]:
        return parse_socket_addr(self.dns_server)

    @classmethod
    def from_env(cls) -> 'Config':
        """Load configuration from environment variables (and .env in the working directory)."""
        load_dotenv(find_dotenv(usecwd=True))

        config = cls()

        config.dns_server = os.getenv(f'{ENV_PREFIX}DNS_SERVER', config.dns_server)
        config.domain = os.getenv(f'{ENV_PREFIX}DOMAIN', config.domain)
        config.prefix = os.getenv(f'{ENV_PREFIX}PREFIX', config.prefix)

        tags = os.getenv(f'{ENV_PREFIX}TAGS')
        if tags:
            config.tags = parse_tags(tags)

        interfaces = os.getenv(f'{ENV_PREFIX}INTERFACES')
        if interfaces:
            config.interfaces = parse_tags(interfaces)

        config.dns_check_interval = _env_number('DNS_CHECK_INTERVAL', config.dns_check_interval, float)
        config.dns_timeout = _env_number('DNS_TIMEOUT', config.dns_timeout, float)
        config.broadcast_interval = _env_number('BROADCAST_INTERVAL', config.broadcast_interval, float)
        config.max_silent_intervals = _env_number('MAX_SILENT_INTERVALS', config.max_silent_intervals, int)
        config.broadcast_port = _env_number('BROADCAST_PORT', config.broadcast_port, int)

        config.log_level = os.getenv(f'{ENV_PREFIX}LOG_LEVEL', config.log_level)

        return config

    @classmethod
    def from_file(cls, path: Path) -> 'Config':
        """Load configuration from a JSON file."""
        if not path.exists():
            return cls()

        with open(path) as f:
            data = json.load(f)

        config = cls()

        config.dns_server = data.get('dns_server', config.dns_server)
        config.domain = data.get('domain', config.domain)
        config.prefix = data.get('prefix', config.prefix)
        config.tags = _as_list(data.get('tags', config.tags))
        config.interfaces = _as_list(data.get('interfaces', config.interfaces))

        config.dns_check_interval = data.get('dns_check_interval', config.dns_check_interval)
        config.dns_timeout = data.get('dns_timeout', config.dns_timeout)
        config.broadcast_interval = data.get('broadcast_interval', config.broadcast_interval)
        config.max_silent_intervals = data.get('max_silent_intervals', config.max_silent_intervals)
        config.broadcast_port = data.get('broadcast_port', config.broadcast_port)

        config.log_level = data.get('log_level', config.log_level)

        return config

    def to_dict(self) -> dict:
        """Convert to dictionary."""
        return {
            'dns_server': self.dns_server,
            'domain': self.domain,
            'prefix': self.prefix,
            'tags': list(self.tags),
            'interfaces': list(self.interfaces),
            'dns_check_interval': self.dns_check_interval,
            'dns_timeout': self.dns_timeout,
            'broadcast_interval': self.broadcast_interval,
            'max_silent_intervals': self.max_silent_intervals,
            'broadcast_port': self.broadcast_port,
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
    config = Config()

    if config_path and config_path.exists():
        config = Config.from_file(config_path)

    env_config = Config.from_env()
    defaults = Config()

    # Env takes precedence where it differs from the defaults
    for key in defaults.to_dict():
        env_val = getattr(env_config, key)
        if env_val != getattr(defaults, key):
            setattr(config, key, env_val)

    return config
