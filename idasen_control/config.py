"""
Configuration for the desk daemon and its clients.

The config is loaded once at process start and handed to each component
explicitly. It lives in ``~/.idasen-control.json`` with camelCase keys.
"""

import json
import logging
import os
from dataclasses import asdict, dataclass, fields, replace
from pathlib import Path

_LOGGER = logging.getLogger(__name__)

CONFIG_ENV = "IDASEN_CONFIG"

# Python attribute name -> key in the JSON file
_FILE_KEYS = {
    "socket_path": "socketPath",
    "pid_file_path": "pidFilePath",
    "stand_threshold": "standThreshold",
    "sitting_break_time": "sittingBreakTime",
    "desk_address": "deskAddress",
    "desk_max_position": "deskMaxPosition",
    "connect_timeout": "connectTimeout",
    "standing_prompt": "standingPrompt",
    "sitting_prompt": "sittingPrompt",
}


@dataclass(frozen=True)
class Config:
    """Runtime settings shared by the daemon and the CLI."""

    socket_path: str = "/tmp/idasen-control.sock"
    pid_file_path: str = "/tmp/idasen-control.pid"
    stand_threshold: float = 30
    sitting_break_time: float = 2 * 60
    desk_address: str | None = None
    desk_max_position: float = 58
    connect_timeout: float = 5.0
    standing_prompt: str = "🧍"
    sitting_prompt: str = "🪑 {sitting_minutes}m"

    def to_dict(self) -> dict:
        """Return the config keyed the way it is stored on disk."""
        return {_FILE_KEYS[key]: value for key, value in asdict(self).items()}

    @classmethod
    def from_dict(cls, data: dict) -> "Config":
        """Build a config from on-disk keys, ignoring anything unknown."""
        by_file_key = {file_key: attr for attr, file_key in _FILE_KEYS.items()}
        known = {f.name for f in fields(cls)}
        values = {}
        for key, value in data.items():
            attr = by_file_key.get(key, key)
            if attr in known:
                values[attr] = value
        return cls(**values)

    def with_desk_address(self, address: str | None) -> "Config":
        return replace(self, desk_address=address)


def get_config_path() -> Path:
    """Config file location, overridable through ``IDASEN_CONFIG``."""
    override = os.environ.get(CONFIG_ENV)
    if override:
        return Path(override).expanduser()
    return Path.home() / ".idasen-control.json"


def load_config(path: Path | None = None) -> Config:
    """
    Load the config file merged over the defaults.

    A missing or unreadable file is not an error; the defaults are used.
    """
    path = path or get_config_path()
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except FileNotFoundError:
        return Config()
    except (OSError, ValueError) as e:
        _LOGGER.warning("Ignoring unreadable config %s: %s", path, e)
        return Config()

    if not isinstance(data, dict):
        _LOGGER.warning("Ignoring config %s: expected a JSON object", path)
        return Config()
    return Config.from_dict(data)


def save_config(config: Config, path: Path | None = None) -> Path:
    """Write the config as pretty-printed JSON and return the path used."""
    path = path or get_config_path()
    path.write_text(json.dumps(config.to_dict(), indent=2) + "\n", encoding="utf-8")
    return path
