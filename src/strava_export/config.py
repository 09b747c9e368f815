"""Configuration management for strava-export.

Handles loading configuration from TOML files, environment variables,
and command-line options with proper precedence.
"""

from __future__ import annotations

import os
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

if sys.version_info >= (3, 11):
    import tomllib
else:
    import tomli as tomllib


DEFAULT_CONFIG_PATH = Path.home() / ".config" / "strava-export" / "config.toml"
LOCAL_CONFIG_NAME = ".strava-export.toml"
DEFAULT_DATA_DIR = Path("./data")
DEFAULT_SEGMENTS_CACHE = Path.home() / ".strava" / "user.segments.json"
DEFAULT_BATCH_SIZE = 10


@dataclass
class StravaConfig:
    """Strava API configuration."""

    client_id: str = ""
    client_secret: str = ""
    access_token: str = ""
    refresh_token: str = ""
    token_expires_at: int = 0


@dataclass
class DataConfig:
    """Data storage configuration."""

    directory: Path = field(default_factory=lambda: DEFAULT_DATA_DIR)


@dataclass
class ExportConfig:
    """Track export configuration.

    ``line_styles``, ``bikes`` and ``blackout_zones`` are kept in their raw
    TOML form; they are validated where they are consumed so that one bad
    entry can be reported and skipped.
    """

    segments_cache: Path = field(default_factory=lambda: DEFAULT_SEGMENTS_CACHE)
    batch_size: int = DEFAULT_BATCH_SIZE
    dedup: bool = True
    blackout_zones: list[Any] = field(default_factory=list)
    aliases: dict[str, str] = field(default_factory=dict)
    line_styles: dict[str, Any] = field(default_factory=dict)
    bikes: list[dict[str, str]] = field(default_factory=list)


@dataclass
class Config:
    """Main configuration container."""

    strava: StravaConfig = field(default_factory=StravaConfig)
    data: DataConfig = field(default_factory=DataConfig)
    export: ExportConfig = field(default_factory=ExportConfig)
    config_path: Path | None = None


def _get_env_value(key: str, default: str = "") -> str:
    """Get environment variable value."""
    return os.environ.get(key, default)


def _get_env_bool(key: str, default: bool = True) -> bool:
    """Get environment variable as boolean."""
    value = os.environ.get(key, "")
    if not value:
        return default
    return value.lower() in ("true", "1", "yes", "on")


def find_config_path() -> Path:
    """Locate the configuration file.

    Order: ``$STRAVA_EXPORT_CONFIG``, ``./.strava-export.toml``, then the
    per-user default location.
    """
    env_config = _get_env_value("STRAVA_EXPORT_CONFIG")
    if env_config:
        return Path(env_config)
    local = Path(LOCAL_CONFIG_NAME)
    if local.exists():
        return local
    return DEFAULT_CONFIG_PATH


def load_config(config_path: Path | None = None) -> Config:
    """Load configuration from file and environment variables.

    Configuration is loaded with the following precedence (highest to lowest):
    1. Environment variables
    2. Configuration file
    3. Default values

    Args:
        config_path: Path to configuration file. If None, it is located with
            find_config_path().

    Returns:
        Populated Config object.
    """
    config = Config()

    if config_path is None:
        config_path = find_config_path()

    config.config_path = config_path

    if config_path.exists():
        config = _load_from_file(config_path, config)

    return _apply_env_overrides(config)


def _load_from_file(path: Path, config: Config) -> Config:
    """Load configuration from TOML file.

    Args:
        path: Path to TOML file.
        config: Existing config to update.

    Returns:
        Updated Config object.
    """
    with open(path, "rb") as f:
        data = tomllib.load(f)

    if "strava" in data:
        strava = data["strava"]
        config.strava.client_id = str(strava.get("client_id", config.strava.client_id))
        config.strava.client_secret = strava.get("client_secret", config.strava.client_secret)
        config.strava.access_token = strava.get("access_token", config.strava.access_token)
        config.strava.refresh_token = strava.get("refresh_token", config.strava.refresh_token)
        config.strava.token_expires_at = strava.get(
            "token_expires_at", config.strava.token_expires_at
        )

    if "data" in data:
        data_section = data["data"]
        if "directory" in data_section:
            config.data.directory = Path(data_section["directory"])

    if "export" in data:
        export = data["export"]
        if "segments_cache" in export:
            config.export.segments_cache = Path(export["segments_cache"]).expanduser()
        config.export.batch_size = int(export.get("batch_size", config.export.batch_size))
        config.export.dedup = export.get("dedup", config.export.dedup)
        config.export.blackout_zones = export.get("blackout_zones", config.export.blackout_zones)
        config.export.aliases = dict(export.get("aliases", config.export.aliases))
        config.export.line_styles = dict(export.get("line_styles", config.export.line_styles))
        config.export.bikes = list(export.get("bikes", config.export.bikes))

    return config


def _apply_env_overrides(config: Config) -> Config:
    """Apply environment variable overrides to configuration.

    Args:
        config: Config to update.

    Returns:
        Updated Config object.
    """
    if client_id := _get_env_value("STRAVA_CLIENT_ID"):
        config.strava.client_id = client_id
    if client_secret := _get_env_value("STRAVA_CLIENT_SECRET"):
        config.strava.client_secret = client_secret

    if data_dir := _get_env_value("STRAVA_EXPORT_DATA_DIR"):
        config.data.directory = Path(data_dir)

    config.export.dedup = _get_env_bool("STRAVA_EXPORT_DEDUP", config.export.dedup)

    return config


def save_tokens(config: Config, access_token: str, refresh_token: str, expires_at: int) -> None:
    """Save OAuth tokens to configuration file.

    Args:
        config: Current configuration.
        access_token: OAuth access token.
        refresh_token: OAuth refresh token.
        expires_at: Token expiration timestamp.
    """
    if config.config_path is None:
        config.config_path = DEFAULT_CONFIG_PATH

    config.config_path.parent.mkdir(parents=True, exist_ok=True)

    existing_data: dict[str, Any] = {}
    if config.config_path.exists():
        with open(config.config_path, "rb") as f:
            existing_data = tomllib.load(f)

    strava = existing_data.setdefault("strava", {})
    strava["access_token"] = access_token
    strava["refresh_token"] = refresh_token
    strava["token_expires_at"] = expires_at

    _write_toml(config.config_path, existing_data)

    config.strava.access_token = access_token
    config.strava.refresh_token = refresh_token
    config.strava.token_expires_at = expires_at


def _write_toml(path: Path, data: dict[str, Any]) -> None:
    """Write data to TOML file.

    Args:
        path: Path to write to.
        data: Data to write.
    """
    lines: list[str] = []
    for section, values in data.items():
        if isinstance(values, dict):
            _write_table(lines, section, values)

    with open(path, "w") as f:
        f.write("\n".join(lines))


def _write_table(lines: list[str], name: str, values: dict[str, Any]) -> None:
    """Append a table, then its sub-tables and arrays of tables."""
    lines.append(f"[{name}]")
    nested: list[tuple[str, dict[str, Any]]] = []
    arrays: list[tuple[str, list[dict[str, Any]]]] = []
    for key, value in values.items():
        qualified = f"{name}.{_format_toml_key(key)}"
        if isinstance(value, dict):
            nested.append((qualified, value))
        elif isinstance(value, list) and value and all(isinstance(v, dict) for v in value):
            arrays.append((qualified, value))
        else:
            lines.append(f"{_format_toml_key(key)} = {_format_toml_value(value)}")
    lines.append("")

    for qualified, value in nested:
        _write_table(lines, qualified, value)
    for qualified, items in arrays:
        for item in items:
            lines.append(f"[[{qualified}]]")
            for key, value in item.items():
                lines.append(f"{_format_toml_key(key)} = {_format_toml_value(value)}")
            lines.append("")


def _format_toml_key(key: str) -> str:
    """Quote a key unless it is a bare TOML key."""
    if key and all(c.isalnum() or c in "_-" for c in key):
        return key
    return _format_toml_value(key)


def _format_toml_value(value: Any) -> str:
    """Format a Python value as TOML.

    Args:
        value: Value to format.

    Returns:
        TOML-formatted string.
    """
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, str):
        escaped = value.replace("\\", "\\\\").replace('"', '\\"')
        return f'"{escaped}"'
    if isinstance(value, int | float):
        return str(value)
    if isinstance(value, list):
        formatted = ", ".join(_format_toml_value(v) for v in value)
        return f"[{formatted}]"
    return str(value)

