"""Key share configuration.

Defaults can be overridden by a YAML file and then by command-line values.

Config file resolution order:
1. Explicit path (--config)
2. $KEYSHARE_CONFIG environment variable
3. ~/.config/keyshare/config.yaml
4. Built-in defaults (no file)

Example config.yaml:

    key_name: deploy_key
    port: 8080
    timeout: 120
    bind: 0.0.0.0
    key_type: ed25519
    lookup_public_ip: false
"""

import dataclasses
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

import yaml

from netinfo import DEFAULT_PUBLIC_IP_URL
from provisioner import DEFAULT_KEY_BITS, DEFAULT_KEY_TYPE, DEFAULT_SSH_DIR, DEFAULT_SSH_SERVICE
from server.httpd import DEFAULT_BIND, DEFAULT_PORT
from server.shutdown import DEFAULT_TIMEOUT

CONFIG_ENV_VAR = 'KEYSHARE_CONFIG'
DEFAULT_CONFIG_FILE = Path.home() / '.config' / 'keyshare' / 'config.yaml'


class ConfigError(Exception):
    """Configuration error."""


@dataclass
class KeyShareConfig:
    """Settings for one key share invocation."""
    key_name: str = 'id_rsa'
    port: int = DEFAULT_PORT
    timeout: int = DEFAULT_TIMEOUT
    bind: str = DEFAULT_BIND
    ssh_dir: Path = field(default_factory=lambda: DEFAULT_SSH_DIR)
    key_type: str = DEFAULT_KEY_TYPE
    key_bits: int = DEFAULT_KEY_BITS
    ssh_service: str = DEFAULT_SSH_SERVICE
    public_ip_url: str = DEFAULT_PUBLIC_IP_URL
    lookup_public_ip: bool = True

    # Where the values came from (None = defaults only)
    config_file: Optional[Path] = field(default=None, compare=False)

    def __post_init__(self):
        if isinstance(self.ssh_dir, str):
            self.ssh_dir = Path(self.ssh_dir).expanduser()

    def validate(self) -> 'KeyShareConfig':
        """Check value ranges.

        Raises:
            ConfigError: On an invalid value
        """
        if not self.key_name or '/' in self.key_name or self.key_name.startswith('.'):
            raise ConfigError(f"Invalid key name: {self.key_name!r}")
        if not 0 <= self.port <= 65535:
            raise ConfigError(f"Port out of range: {self.port}")
        if self.timeout < 0:
            raise ConfigError(f"Timeout must not be negative: {self.timeout}")
        if self.key_bits <= 0:
            raise ConfigError(f"Key bits must be positive: {self.key_bits}")
        return self

    def merged(self, **overrides) -> 'KeyShareConfig':
        """Return a copy with non-None overrides applied."""
        values = {k: v for k, v in overrides.items() if v is not None}
        return dataclasses.replace(self, **values)


# Fields settable from YAML, with their expected types
_FIELD_TYPES = {
    'key_name': str,
    'port': int,
    'timeout': int,
    'bind': str,
    'ssh_dir': str,
    'key_type': str,
    'key_bits': int,
    'ssh_service': str,
    'public_ip_url': str,
    'lookup_public_ip': bool,
}


def _parse_yaml(path: Path) -> dict:
    """Parse a YAML file and return contents."""
    try:
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {path}: {e}") from e
    except OSError as e:
        raise ConfigError(f"Cannot read {path}: {e}") from e
    if not isinstance(data, dict):
        raise ConfigError(f"{path}: expected a mapping at top level")
    return data


def find_config_file(path: Optional[Path] = None) -> Optional[Path]:
    """Locate the config file following the resolution order."""
    if path is not None:
        path = Path(path).expanduser()
        if not path.exists():
            raise ConfigError(f"Config file not found: {path}")
        return path

    if env_path := os.environ.get(CONFIG_ENV_VAR):
        path = Path(env_path).expanduser()
        if path.exists():
            return path
        raise ConfigError(f"{CONFIG_ENV_VAR}={env_path} does not exist")

    if DEFAULT_CONFIG_FILE.exists():
        return DEFAULT_CONFIG_FILE
    return None


def load_config(path: Optional[Path] = None) -> KeyShareConfig:
    """Load configuration, falling back to defaults when no file exists.

    Raises:
        ConfigError: On unreadable files, unknown keys or bad values
    """
    config_file = find_config_file(path)
    if config_file is None:
        return KeyShareConfig().validate()

    data = _parse_yaml(config_file)

    unknown = sorted(set(data) - set(_FIELD_TYPES))
    if unknown:
        raise ConfigError(f"{config_file}: unknown setting(s): {', '.join(unknown)}")

    for key, value in data.items():
        expected = _FIELD_TYPES[key]
        # bool is an int subclass; reject it for numeric fields
        if not isinstance(value, expected) or (expected is int and isinstance(value, bool)):
            raise ConfigError(
                f"{config_file}: {key} must be {expected.__name__}, got {type(value).__name__}"
            )

    return KeyShareConfig(config_file=config_file, **data).validate()
