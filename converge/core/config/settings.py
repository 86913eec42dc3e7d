"""
Runtime settings — reads converge.yml and CONVERGE_* overrides.

Settings control where run records live, the default throttle, which
platform key to read from app refs, which driver to use, and extra
denylist patterns. Precedence, highest first:

    CLI flag  >  CONVERGE_* env var  >  converge.yml  >  built-in default
"""

from __future__ import annotations

import logging
import os
import platform as _platform
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator

from converge.core.errors import ConfigError

logger = logging.getLogger(__name__)

# Default config filename
SETTINGS_FILE = "converge.yml"

DEFAULT_STATE_DIR = "~/.converge/state"
DEFAULT_THROTTLE = 4

_ENV_MAP = {
    "CONVERGE_STATE_DIR": "state_dir",
    "CONVERGE_THROTTLE": "throttle",
    "CONVERGE_PLATFORM": "platform",
    "CONVERGE_DRIVER": "driver",
}


def current_platform() -> str:
    """Platform key used to pick an app's ref: windows, macos or linux."""
    system = _platform.system().lower()
    if system.startswith("win"):
        return "windows"
    if system == "darwin":
        return "macos"
    return "linux"


class Settings(BaseModel):
    """Effective runtime settings."""

    state_dir: str = DEFAULT_STATE_DIR
    throttle: int = DEFAULT_THROTTLE
    platform: str = Field(default_factory=current_platform)
    driver: str = ""                       # empty = platform default
    denylist_extra: list[str] = Field(default_factory=list)

    @field_validator("platform")
    @classmethod
    def _lower_platform(cls, v: str) -> str:
        return v.strip().lower()

    @property
    def state_path(self) -> Path:
        return Path(os.path.expandvars(self.state_dir)).expanduser()


def find_settings_file(start_dir: Path | None = None) -> Path | None:
    """Search for converge.yml starting from the given directory, walking up."""
    current = (start_dir or Path.cwd()).resolve()

    for _ in range(20):  # safety limit
        candidate = current / SETTINGS_FILE
        if candidate.is_file():
            return candidate
        parent = current.parent
        if parent == current:
            break  # filesystem root
        current = parent

    return None


def _read_file(path: Path) -> dict[str, Any]:
    try:
        raw = path.read_text(encoding="utf-8")
    except OSError as e:
        raise ConfigError(f"Cannot read {path}: {e}") from e

    try:
        data = yaml.safe_load(raw)
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {path}: {e}") from e

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError(f"Expected a YAML mapping in {path}, got {type(data).__name__}")
    return data


def load_settings(
    path: Path | None = None,
    env: dict[str, str] | None = None,
    search: bool = True,
) -> Settings:
    """Load settings from file and environment.

    Args:
        path: Explicit converge.yml. If None and ``search``, searches upward.
        env: Environment mapping (default: ``os.environ``).
        search: Whether to look for converge.yml when no path is given.

    Raises:
        ConfigError: If the file is unreadable or values are invalid.
    """
    env = os.environ if env is None else env
    data: dict[str, Any] = {}

    if path is None and search:
        path = find_settings_file()

    if path is not None:
        if not path.is_file():
            raise ConfigError(f"Config file not found: {path}")
        logger.debug("Loading settings from %s", path)
        data.update(_read_file(path))

    for var, key in _ENV_MAP.items():
        value = env.get(var)
        if value:
            data[key] = value

    try:
        settings = Settings.model_validate(data)
    except ValidationError as e:
        raise ConfigError(f"Invalid settings: {e}") from e

    if settings.throttle < 1:
        logger.warning("Throttle %d is below 1; the engine will use 1", settings.throttle)
    return settings
