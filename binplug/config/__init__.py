"""
binplug Configuration - explicit, immutable settings.

Settings are loaded once per invocation and passed to every operation;
nothing in binplug reads configuration from module globals.

Sources, lowest to highest precedence:
    1. Schema defaults (binplug.config.schema.SETTINGS_SCHEMA)
    2. The [plugins] table of <config-root>/config.toml
    3. Environment variables (PLUGINS_PATH, BINPLUG_API_KEY, BINPLUG_API_BASE)

Example usage:
    from binplug.config import load_settings

    settings = load_settings()
    print(settings.install_root)
"""

import logging
import os
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path

from binplug.config.schema import SETTINGS_SCHEMA, ValidationError, validate_config
from binplug.config.toml_handler import read_toml, set_toml_value
from binplug.errors import ConfigError

logger = logging.getLogger(__name__)

APP_NAME = "binplug"
CONFIG_FILE_NAME = "config.toml"
MANIFEST_FILE_NAME = "plugins.toml"
CONFIG_SECTION = "plugins"

# Version directory used when PLUGINS_PATH points at a development build tree
DEV_VERSION = "master"


@dataclass(frozen=True)
class Settings:
    """
    Resolved settings for one invocation.

    Attributes:
        config_root: Directory holding config.toml, plugins.toml and plugins/
        plugins_path: Development override for the install root (PLUGINS_PATH)
        api_base_url: Base URL of the plugin metadata API
        api_key: Credential for the metadata API
        handshake_timeout: Seconds to wait for a plugin handshake line
        http_timeout: Seconds before an HTTP request is abandoned
        kill_grace: Seconds between SIGTERM and SIGKILL on shutdown
    """

    config_root: Path
    plugins_path: Path | None = None
    api_base_url: str = ""
    api_key: str = ""
    handshake_timeout: float = 10.0
    http_timeout: float = 30.0
    kill_grace: float = 2.0

    @property
    def dev_mode(self) -> bool:
        return self.plugins_path is not None

    @property
    def install_root(self) -> Path:
        if self.plugins_path is not None:
            return self.plugins_path
        return self.config_root / "plugins"

    @property
    def manifest_path(self) -> Path:
        return self.config_root / MANIFEST_FILE_NAME

    @property
    def config_file(self) -> Path:
        return self.config_root / CONFIG_FILE_NAME


def config_root_for(environ: Mapping[str, str]) -> Path:
    """
    Compute the configuration root directory.

    Args:
        environ: Environment mapping

    Returns:
        $XDG_CONFIG_HOME/binplug, or ~/.config/binplug when unset
    """
    xdg = environ.get("XDG_CONFIG_HOME", "")
    if xdg:
        return Path(xdg) / APP_NAME
    return Path.home() / ".config" / APP_NAME


def load_settings(environ: Mapping[str, str] | None = None) -> Settings:
    """
    Load settings from config.toml and the environment.

    Args:
        environ: Environment mapping (defaults to os.environ)

    Returns:
        Settings instance

    Raises:
        ConfigError: If config.toml is unreadable or invalid
    """
    if environ is None:
        environ = os.environ

    config_root = config_root_for(environ)
    config_file = config_root / CONFIG_FILE_NAME

    raw: dict = {}
    if config_file.exists():
        data = read_toml(config_file)
        section = data.get(CONFIG_SECTION, {})
        if not isinstance(section, dict):
            raise ConfigError(f"[{CONFIG_SECTION}] in {config_file} must be a table")
        raw = section

    values = validate_config(raw, SETTINGS_SCHEMA)

    plugins_path = environ.get("PLUGINS_PATH", "")
    settings = Settings(
        config_root=config_root,
        plugins_path=Path(plugins_path) if plugins_path else None,
        api_base_url=environ.get("BINPLUG_API_BASE", "") or values["api_base"],
        api_key=environ.get("BINPLUG_API_KEY", "") or values["api_key"],
        handshake_timeout=values["handshake_timeout"],
        http_timeout=values["http_timeout"],
        kill_grace=values["kill_grace"],
    )
    logger.debug(
        "Loaded settings: config_root=%s install_root=%s dev_mode=%s",
        settings.config_root,
        settings.install_root,
        settings.dev_mode,
    )
    return settings


def set_option(config_root: Path, key: str, raw_value: str) -> None:
    """
    Validate and persist one option into config.toml.

    Args:
        config_root: Configuration root directory
        key: Field name from SETTINGS_SCHEMA
        raw_value: String value to coerce and store

    Raises:
        ConfigError: If the key is unknown or the value invalid
    """
    if key not in SETTINGS_SCHEMA:
        raise ValidationError(f"Unknown configuration field: {key}")

    field = SETTINGS_SCHEMA[key]
    value = field.coerce(raw_value)
    try:
        field.validate(value)
    except ValidationError as e:
        raise ValidationError(f"Field '{key}': {e}") from e

    set_toml_value(
        config_root / CONFIG_FILE_NAME,
        CONFIG_SECTION,
        key,
        value,
        description=field.description or None,
    )


__all__ = [
    "DEV_VERSION",
    "Settings",
    "config_root_for",
    "load_settings",
    "set_option",
]
