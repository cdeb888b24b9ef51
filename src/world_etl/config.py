"""world_etl.config

YAML-based server and import configuration.

Responsibilities:
  - Load the server config file (YAML, or JSON written for the legacy importer)
  - Validate the members / worlds sections and normalize legacy key names
  - Resolve the store password from the environment

Usage:
    from pathlib import Path
    from world_etl.config import load_import_config

    config = load_import_config(Path("config/server.yml"))
    canonical = config.members.role_maps["course"]["Student"]
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from world_etl.shared import ConfigurationError

log = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

DEFAULT_SERVER_URL = "http://localhost:8080"
DEFAULT_TIMEOUT_SECONDS = 30.0

# Legacy (camelCase) spellings accepted alongside the snake_case keys.
SECTION_ALIASES = {
    "members": ("members", "members.csv"),
    "worlds": ("worlds", "worlds.csv"),
}
KEY_ALIASES = {
    "role_maps": ("role_maps", "roleMaps"),
    "world_template_map": ("world_template_map", "worldTemplateMap"),
    "custom_properties": ("custom_properties", "customProperties"),
    "global_grouping": ("global_grouping", "globalGrouping"),
    "skip_first_row": ("skip_first_row", "skipFirstRow"),
}

GROUPING_PROPERTY = "grouping"


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------

class ConfigValidationError(ConfigurationError, ValueError):
    """Raised when a config file fails schema validation."""


# ---------------------------------------------------------------------------
# Config dataclasses
# ---------------------------------------------------------------------------

@dataclass
class ServerConfig:
    url: str = DEFAULT_SERVER_URL
    username: str | None = None
    password_env: str | None = None
    timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS

    def password(self) -> str | None:
        if not self.password_env:
            return None
        return os.environ.get(self.password_env) or None


@dataclass
class MembersConfig:
    role_maps: dict[str, dict[str, str]] = field(default_factory=dict)
    skip_first_row: bool = False


@dataclass
class WorldsConfig:
    world_template_map: dict[str, str] = field(default_factory=dict)
    custom_properties: list[str] = field(default_factory=list)
    global_grouping: str | None = None
    skip_first_row: bool = False

    @property
    def expected_columns(self) -> int:
        return 11 + len(self.custom_properties)


@dataclass
class ImportConfig:
    server: ServerConfig
    members: MembersConfig
    worlds: WorldsConfig


# ---------------------------------------------------------------------------
# Loader + validator
# ---------------------------------------------------------------------------

def load_import_config(config_path: Path) -> ImportConfig:
    """Load, validate, and return an ImportConfig from a YAML or JSON file.

    Raises:
        ConfigValidationError: If any section is malformed.
        FileNotFoundError: If the config file does not exist.
    """
    raw = config_path.read_text(encoding="utf-8")
    try:
        data = yaml.safe_load(raw)
    except yaml.YAMLError as exc:
        raise ConfigValidationError(f"{config_path}: not valid YAML/JSON: {exc}") from exc
    return parse_import_config(data)


def parse_import_config(data: Any) -> ImportConfig:
    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ConfigValidationError("Config root must be a mapping.")
    return ImportConfig(
        server=_parse_server(data.get("server") or {}),
        members=_parse_members(_section(data, "members")),
        worlds=_parse_worlds(_section(data, "worlds")),
    )


def _section(data: dict[str, Any], name: str) -> dict[str, Any]:
    for key in SECTION_ALIASES[name]:
        if key in data:
            section = data[key] or {}
            if not isinstance(section, dict):
                raise ConfigValidationError(f"Section '{key}' must be a mapping.")
            return section
    return {}


def _get(section: dict[str, Any], key: str, default: Any = None) -> Any:
    for alias in KEY_ALIASES[key]:
        if alias in section:
            return section[alias]
    return default


def _parse_server(section: Any) -> ServerConfig:
    if not isinstance(section, dict):
        raise ConfigValidationError("Section 'server' must be a mapping.")
    timeout = section.get("timeout_seconds", DEFAULT_TIMEOUT_SECONDS)
    try:
        timeout = float(timeout)
    except (TypeError, ValueError):
        raise ConfigValidationError(f"server.timeout_seconds '{timeout}' is not numeric.")
    if timeout <= 0:
        raise ConfigValidationError(f"server.timeout_seconds {timeout} must be > 0.")
    return ServerConfig(
        url=str(section.get("url") or DEFAULT_SERVER_URL).rstrip("/"),
        username=section.get("username"),
        password_env=section.get("password_env"),
        timeout_seconds=timeout,
    )


def _parse_members(section: dict[str, Any]) -> MembersConfig:
    raw_maps = _get(section, "role_maps", {}) or {}
    if not isinstance(raw_maps, dict):
        raise ConfigValidationError("members.role_maps must be a mapping.")
    role_maps: dict[str, dict[str, str]] = {}
    for world_type, labels in raw_maps.items():
        if not isinstance(labels, dict):
            raise ConfigValidationError(
                f"members.role_maps.{world_type} must map role labels to role ids."
            )
        role_maps[str(world_type)] = {str(k): str(v) for k, v in labels.items()}
    return MembersConfig(
        role_maps=role_maps,
        skip_first_row=bool(_get(section, "skip_first_row", False)),
    )


def _parse_worlds(section: dict[str, Any]) -> WorldsConfig:
    template_map = _get(section, "world_template_map", {}) or {}
    if not isinstance(template_map, dict):
        raise ConfigValidationError("worlds.world_template_map must be a mapping.")

    custom = _get(section, "custom_properties", []) or []
    if not isinstance(custom, list):
        raise ConfigValidationError("worlds.custom_properties must be a list.")
    custom = [str(name) for name in custom]
    # Column 11 always carries the grouping; the name in slot 0 is not used.
    if custom and custom[0] != GROUPING_PROPERTY:
        log.warning(
            "worlds.custom_properties[0] is %r; column 11 is still read as %r",
            custom[0], GROUPING_PROPERTY,
        )
    if len(set(custom)) != len(custom):
        raise ConfigValidationError("worlds.custom_properties contains duplicate names.")

    global_grouping = _get(section, "global_grouping")
    return WorldsConfig(
        world_template_map={str(k): str(v) for k, v in template_map.items()},
        custom_properties=custom,
        global_grouping=None if global_grouping is None else str(global_grouping),
        skip_first_row=bool(_get(section, "skip_first_row", False)),
    )
