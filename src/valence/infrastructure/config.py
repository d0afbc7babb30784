"""Project configuration: ``valence.yml`` (or legacy ``.valencerc``) at the project root."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any

import yaml

from valence.engine.confidence import Severity
from valence.engine.resolver import DEFAULT_IGNORE
from valence.errors import ConfigError
from valence.infrastructure.overrides import DEFAULT_OVERRIDE_FILE

logger = logging.getLogger(__name__)

CONFIG_FILENAME = "valence.yml"
LEGACY_CONFIG_FILENAME = ".valencerc"


@dataclass(frozen=True)
class ValenceConfig:
    """Resolved project settings. Paths are relative to the project root."""

    definitions_dir: str = "."
    validators_dir: str = "validators"
    profiles_dir: str = "profiles"
    plugin_dirs: tuple[str, ...] = ("plugins",)
    confidence_threshold: float = 0.0
    override_file: str = DEFAULT_OVERRIDE_FILE
    ignore: tuple[str, ...] = DEFAULT_IGNORE
    fail_on: Severity = Severity.ERROR
    source: str | None = field(default=None, compare=False)

    def definitions_root(self, project_root: Path) -> Path:
        return project_root / self.definitions_dir

    def plugin_paths(self, project_root: Path) -> list[Path]:
        return [project_root / d for d in self.plugin_dirs]

    def override_path(self, project_root: Path) -> Path:
        return project_root / self.override_file


# Config keys (snake_case in valence.yml, camelCase in .valencerc) -> field name.
_KEY_MAP: dict[str, str] = {
    "definitions_dir": "definitions_dir",
    "definitionsDir": "definitions_dir",
    "validators_dir": "validators_dir",
    "validatorsDir": "validators_dir",
    "profiles_dir": "profiles_dir",
    "profilesDir": "profiles_dir",
    "plugin_dirs": "plugin_dirs",
    "pluginDirs": "plugin_dirs",
    "confidence_threshold": "confidence_threshold",
    "confidenceThreshold": "confidence_threshold",
    "override_file": "override_file",
    "overrideFile": "override_file",
    "ignore": "ignore",
    "fail_on": "fail_on",
    "failOn": "fail_on",
}


def validate_threshold(value: object, source: str) -> float:
    """Return *value* as a float in [0, 1] or raise :class:`ConfigError`."""
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        msg = f"{source}: confidence threshold must be a number, got {value!r}"
        raise ConfigError(msg)
    threshold = float(value)
    if not 0.0 <= threshold <= 1.0:
        msg = f"{source}: confidence threshold must be between 0 and 1, got {threshold}"
        raise ConfigError(msg)
    return threshold


def _coerce(name: str, value: Any, source: str) -> Any:
    if name == "confidence_threshold":
        return validate_threshold(value, source)
    if name in {"plugin_dirs", "ignore"}:
        if isinstance(value, str):
            return (value,)
        if isinstance(value, list):
            return tuple(str(item) for item in value)
        msg = f"{source}: '{name}' must be a string or a list of strings"
        raise ConfigError(msg)
    if name == "fail_on":
        label = str(value).lower()
        if label not in {s.value for s in Severity}:
            msg = f"{source}: 'fail_on' must be one of {[s.value for s in Severity]}"
            raise ConfigError(msg)
        return Severity(label)
    if not isinstance(value, str):
        msg = f"{source}: '{name}' must be a string"
        raise ConfigError(msg)
    return value


def _read_mapping(path: Path) -> dict[str, Any] | None:
    try:
        with path.open("r", encoding="utf-8") as fh:
            if path.name == LEGACY_CONFIG_FILENAME:
                data = json.load(fh)
            else:
                data = yaml.safe_load(fh)
    except (OSError, UnicodeDecodeError, yaml.YAMLError, json.JSONDecodeError):
        logger.warning("Failed to read %s, using default configuration", path.name)
        return None
    if data is None:
        return {}
    if not isinstance(data, dict):
        logger.warning("%s is not a mapping, using default configuration", path.name)
        return None
    return data


def load_config(project_root: Path) -> ValenceConfig:
    """Load project configuration from *project_root*.

    ``valence.yml`` wins over the legacy JSON ``.valencerc``. A missing or
    unreadable file yields the defaults; a readable file with invalid
    values raises :class:`ConfigError`. Unknown keys are ignored.
    """
    for filename in (CONFIG_FILENAME, LEGACY_CONFIG_FILENAME):
        path = project_root / filename
        if path.is_file():
            break
    else:
        return ValenceConfig()

    data = _read_mapping(path)
    if data is None:
        return ValenceConfig()

    known = {f.name for f in fields(ValenceConfig)}
    kwargs: dict[str, Any] = {}
    for key, value in data.items():
        name = _KEY_MAP.get(str(key))
        if name is None or name not in known:
            logger.debug("%s: ignoring unknown key %r", path.name, key)
            continue
        if value is None:
            continue
        kwargs[name] = _coerce(name, value, path.name)

    return ValenceConfig(source=path.name, **kwargs)
