import os
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Optional

import toml

from .errors import CorruptConfig

STORE_PATH_ENV = "CCODE_CONFIG"
ROUTER_PATH_ENV = "CCODE_ROUTER_CONFIG"


def default_store_path() -> Path:
    config_home = os.environ.get("XDG_CONFIG_HOME") or str(Path.home() / ".config")
    return Path(config_home) / "ccode" / "config.json"


def default_router_config_path() -> Path:
    return Path.home() / ".claude-code-router" / "config.json"


@dataclass
class Settings:
    """Tool settings; empty paths fall back to the platform defaults."""

    store_path: str = ""
    router_config_path: str = ""
    backup_dir: str = ""
    backup: bool = True
    debug: bool = False
    claude_command: str = "claude"
    ccr_command: str = "ccr"

    @classmethod
    def from_dict(cls, data: dict) -> "Settings":
        """Create Settings instance from dictionary."""
        return cls(**{key: value for key, value in data.items() if key in cls.__annotations__})

    def to_dict(self) -> dict:
        return {key: value for key, value in asdict(self).items()}

    @property
    def store_file(self) -> Path:
        override = os.environ.get(STORE_PATH_ENV) or self.store_path
        return Path(override).expanduser() if override else default_store_path()

    @property
    def router_config_file(self) -> Path:
        override = os.environ.get(ROUTER_PATH_ENV) or self.router_config_path
        return Path(override).expanduser() if override else default_router_config_path()

    @property
    def backup_path(self) -> Path:
        if self.backup_dir:
            return Path(self.backup_dir).expanduser()
        return self.router_config_file.parent / "backups"


class SettingsManager:
    """Manages settings storage and retrieval (TOML)."""

    def __init__(self, config_file: Optional[Path] = None):
        self.config_file = config_file or Path.home() / ".ccode_config.toml"

    def load_settings(self) -> Settings:
        if not self.config_file.exists():
            return Settings()
        try:
            with open(self.config_file, "r", encoding="utf-8") as file_obj:
                data = toml.load(file_obj)
        except toml.TomlDecodeError as exc:
            raise CorruptConfig(f"Failed to parse settings: {exc}", path=str(self.config_file)) from exc
        return Settings.from_dict(data)

    def save_settings(self, **kwargs) -> Settings:
        """Merge non-None values into the saved settings."""
        settings_dict = self.load_settings().to_dict()
        for key, value in kwargs.items():
            if value is not None and key in settings_dict:
                settings_dict[key] = value

        self.config_file.parent.mkdir(parents=True, exist_ok=True)
        with open(self.config_file, "w", encoding="utf-8") as file_obj:
            toml.dump(settings_dict, file_obj)
        self.config_file.chmod(0o600)
        return Settings.from_dict(settings_dict)
