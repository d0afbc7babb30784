"""Definition store: parse validator and profile files, validate schema, cache by identifier."""

from __future__ import annotations

import enum
import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from valence.engine.confidence import VALID_RULE_SEVERITIES, Severity
from valence.errors import (
    DefinitionError,
    LoadError,
    UnknownProfileError,
    UnknownValidatorError,
)

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

DEFINITION_SUFFIXES: tuple[str, ...] = (".json", ".yml", ".yaml")

BUILTIN_OPERATORS: frozenset[str] = frozenset(
    {"mustContain", "matchesPattern", "fileExists", "hasExtension"}
)
PATTERN_OPERATORS: frozenset[str] = frozenset({"mustContain", "matchesPattern"})
LIST_OPERATORS: frozenset[str] = frozenset({"fileExists", "hasExtension"})

VALIDATION_LEVELS: tuple[str, ...] = ("critical", "important", "recommended")

# Keys consumed by the engine itself; everything else is plugin configuration.
_RULE_RESERVED_KEYS: frozenset[str] = frozenset(
    {"id", "operator", "plugin", "value", "message", "severity"}
)


class ValidatorKind(enum.Enum):
    """How a validator hands candidate files to its rules."""

    CONTENT = "content"
    STRUCTURE = "structure"
    NAMING = "naming"


# ---------------------------------------------------------------------------
# Data classes
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class BuiltinRule:
    """Rule evaluated by one of the four built-in operators."""

    operator: str
    value: str | tuple[str, ...]
    message: str = ""
    severity: Severity = Severity.ERROR
    id: str | None = None

    @property
    def rule_id(self) -> str:
        return self.id or self.operator

    @property
    def operator_name(self) -> str:
        return self.operator

    @property
    def default_message(self) -> str:
        return self.message or f"Failed {self.operator} check"

    def as_config(self) -> dict[str, Any]:
        """Rule configuration mapping handed to the evaluator."""
        value: Any = list(self.value) if isinstance(self.value, tuple) else self.value
        config: dict[str, Any] = {
            "operator": self.operator,
            "value": value,
            "message": self.message,
            "severity": self.severity.value,
        }
        if self.id is not None:
            config["id"] = self.id
        return config


@dataclass(frozen=True)
class PluginRule:
    """Rule evaluated by an externally loaded plugin operator.

    *config* is the raw rule mapping, passed to the plugin verbatim.
    """

    plugin: str
    config: dict[str, Any] = field(default_factory=dict, hash=False, compare=False)
    message: str = ""
    severity: Severity = Severity.ERROR
    id: str | None = None

    @property
    def rule_id(self) -> str:
        return self.id or self.plugin

    @property
    def operator_name(self) -> str:
        return self.plugin

    @property
    def default_message(self) -> str:
        return self.message or f"Failed plugin {self.plugin} check"

    def as_config(self) -> dict[str, Any]:
        return dict(self.config)


Rule = BuiltinRule | PluginRule


@dataclass(frozen=True)
class Validator:
    """A named set of rules targeting files selected by ``file_pattern``."""

    name: str
    kind: ValidatorKind
    rules: tuple[Rule, ...]
    description: str = ""
    file_pattern: str | None = None
    confidence_threshold: float | None = None
    identifier: str = ""  # name the definition was loaded under, e.g. "CIA/x"

    @property
    def key(self) -> str:
        """Load identifier, falling back to the declared name."""
        return self.identifier or self.name

    def matches(self, path: str) -> bool:
        """Return True if *path* is selected by this validator's file pattern."""
        if self.file_pattern is None:
            return True
        return re.search(self.file_pattern, path) is not None


@dataclass(frozen=True)
class ValidationLevels:
    """Reporting buckets for a profile's validators (metadata only)."""

    critical: tuple[str, ...] = ()
    important: tuple[str, ...] = ()
    recommended: tuple[str, ...] = ()

    def level_of(self, validator: str) -> str | None:
        """Return the first level listing *validator*, or None."""
        for level in VALIDATION_LEVELS:
            if validator in getattr(self, level):
                return level
        return None

    def as_dict(self) -> dict[str, tuple[str, ...]]:
        return {level: getattr(self, level) for level in VALIDATION_LEVELS}


@dataclass(frozen=True)
class ProfileConfiguration:
    """Run settings carried by a profile."""

    fail_fast: bool = False
    verbose: bool = False
    generate_report: bool = False
    report_format: tuple[str, ...] = ()


@dataclass(frozen=True)
class Profile:
    """An ordered bundle of validators run together."""

    name: str
    validators: tuple[Validator, ...]
    description: str = ""
    levels: ValidationLevels = field(default_factory=ValidationLevels)
    configuration: ProfileConfiguration = field(default_factory=ProfileConfiguration)

    @property
    def validator_names(self) -> list[str]:
        return [v.name for v in self.validators]


# ---------------------------------------------------------------------------
# Schema parsing
# ---------------------------------------------------------------------------


def _parse_string_list(value: object, context: str) -> tuple[str, ...]:
    """Accept a string or a list of strings, normalized to a tuple."""
    if isinstance(value, str):
        return (value,)
    if isinstance(value, list) and all(isinstance(item, str) for item in value):
        return tuple(value)
    msg = f"{context}: expected a string or a list of strings"
    raise DefinitionError(msg)


def _parse_severity(value: object, context: str) -> Severity:
    if value is None:
        return Severity.ERROR
    label = str(value).lower()
    if label not in VALID_RULE_SEVERITIES:
        msg = (
            f"{context}: invalid severity '{value}', "
            f"must be one of {sorted(VALID_RULE_SEVERITIES)}"
        )
        raise DefinitionError(msg)
    return Severity.parse(label)


def parse_rule(data: object, context: str) -> Rule:
    """Parse and validate one rule mapping.

    Exactly one of ``operator`` (a built-in name) or ``plugin`` must be set.
    """
    if not isinstance(data, dict):
        msg = f"{context}: rule must be a mapping"
        raise DefinitionError(msg)

    operator = data.get("operator")
    plugin = data.get("plugin")
    if operator is not None and plugin is not None:
        msg = f"{context}: rule must not define both 'operator' and 'plugin'"
        raise DefinitionError(msg)
    if operator is None and plugin is None:
        msg = f"{context}: rule must define one of 'operator' or 'plugin'"
        raise DefinitionError(msg)

    rule_id = data.get("id")
    if rule_id is not None and (not isinstance(rule_id, str) or not rule_id.strip()):
        msg = f"{context}: 'id' must be a non-empty string"
        raise DefinitionError(msg)

    message = data.get("message", "")
    if not isinstance(message, str):
        msg = f"{context}: 'message' must be a string"
        raise DefinitionError(msg)

    severity = _parse_severity(data.get("severity"), context)

    if plugin is not None:
        if not isinstance(plugin, str) or not plugin.strip():
            msg = f"{context}: 'plugin' must be a non-empty string"
            raise DefinitionError(msg)
        return PluginRule(
            plugin=plugin,
            config=dict(data),
            message=message,
            severity=severity,
            id=rule_id,
        )

    if not isinstance(operator, str) or operator not in BUILTIN_OPERATORS:
        msg = (
            f"{context}: unknown operator '{operator}', "
            f"must be one of {sorted(BUILTIN_OPERATORS)} (use 'plugin' for custom operators)"
        )
        raise DefinitionError(msg)

    extra = sorted(set(data) - _RULE_RESERVED_KEYS)
    if extra:
        logger.debug("%s: ignoring unknown keys for built-in rule: %s", context, extra)

    raw_value = data.get("value")
    if raw_value is None:
        msg = f"{context}: operator '{operator}' requires a 'value'"
        raise DefinitionError(msg)

    value: str | tuple[str, ...]
    if operator in PATTERN_OPERATORS:
        if not isinstance(raw_value, str):
            msg = f"{context}: operator '{operator}' requires a string pattern"
            raise DefinitionError(msg)
        try:
            re.compile(raw_value)
        except re.error as exc:
            msg = f"{context}: invalid pattern {raw_value!r}: {exc}"
            raise DefinitionError(msg) from exc
        value = raw_value
    else:
        value = _parse_string_list(raw_value, f"{context} '{operator}' value")

    return BuiltinRule(
        operator=operator,
        value=value,
        message=message,
        severity=severity,
        id=rule_id,
    )


def parse_validator(name: str, data: object) -> Validator:
    """Validate a raw validator mapping and build a :class:`Validator`.

    Raises :class:`DefinitionError` on schema errors.
    """
    context = f"Validator '{name}'"
    if not isinstance(data, dict):
        msg = f"{context}: definition must be a mapping"
        raise DefinitionError(msg)

    declared = data.get("name")
    if declared is None or not isinstance(declared, str) or not declared.strip():
        msg = f"{context}: missing required 'name' field"
        raise DefinitionError(msg)

    kind_raw = data.get("type")
    if kind_raw is None:
        msg = f"{context}: missing required 'type' field"
        raise DefinitionError(msg)
    try:
        kind = ValidatorKind(str(kind_raw))
    except ValueError as exc:
        valid = [k.value for k in ValidatorKind]
        msg = f"{context}: invalid type '{kind_raw}', must be one of {valid}"
        raise DefinitionError(msg) from exc

    rules_data = data.get("rules")
    if rules_data is None:
        msg = f"{context}: missing required 'rules' field"
        raise DefinitionError(msg)
    if not isinstance(rules_data, list) or not rules_data:
        msg = f"{context}: 'rules' must be a non-empty list"
        raise DefinitionError(msg)

    file_pattern = data.get("filePattern")
    if file_pattern is not None:
        if not isinstance(file_pattern, str):
            msg = f"{context}: 'filePattern' must be a string"
            raise DefinitionError(msg)
        try:
            re.compile(file_pattern)
        except re.error as exc:
            msg = f"{context}: invalid filePattern {file_pattern!r}: {exc}"
            raise DefinitionError(msg) from exc

    threshold_raw = data.get("confidenceThreshold")
    threshold: float | None = None
    if threshold_raw is not None:
        if isinstance(threshold_raw, bool) or not isinstance(threshold_raw, (int, float)):
            msg = f"{context}: 'confidenceThreshold' must be a number"
            raise DefinitionError(msg)
        threshold = float(threshold_raw)
        if not 0.0 <= threshold <= 1.0:
            msg = f"{context}: 'confidenceThreshold' must be between 0 and 1"
            raise DefinitionError(msg)

    rules = tuple(
        parse_rule(rule_data, f"{context} rule #{idx}") for idx, rule_data in enumerate(rules_data)
    )

    seen: set[str] = set()
    for rule in rules:
        if rule.id is not None:
            if rule.id in seen:
                msg = f"{context}: duplicate rule id '{rule.id}'"
                raise DefinitionError(msg)
            seen.add(rule.id)

    return Validator(
        name=declared,
        kind=kind,
        rules=rules,
        description=str(data.get("description", "")),
        file_pattern=file_pattern,
        confidence_threshold=threshold,
        identifier=name,
    )


def _parse_levels(data: object, context: str) -> ValidationLevels:
    if data is None:
        return ValidationLevels()
    if not isinstance(data, dict):
        msg = f"{context}: 'validationLevels' must be a mapping"
        raise DefinitionError(msg)
    kwargs = {
        level: _parse_string_list(data.get(level, []), f"{context} validationLevels.{level}")
        for level in VALIDATION_LEVELS
    }
    return ValidationLevels(**kwargs)


def _parse_configuration(data: object, context: str) -> ProfileConfiguration:
    if data is None:
        return ProfileConfiguration()
    if not isinstance(data, dict):
        msg = f"{context}: 'configuration' must be a mapping"
        raise DefinitionError(msg)
    report_format = data.get("reportFormat", [])
    return ProfileConfiguration(
        fail_fast=bool(data.get("failFast", False)),
        verbose=bool(data.get("verbose", False)),
        generate_report=bool(data.get("generateReport", False)),
        report_format=_parse_string_list(report_format, f"{context} reportFormat"),
    )


# ---------------------------------------------------------------------------
# Store
# ---------------------------------------------------------------------------


class DefinitionStore:
    """Reads validator and profile definitions from a directory tree.

    Layout::

        <root>/validators/<name>.json   (or .yml / .yaml)
        <root>/profiles/<name>.json

    Namespaced identifiers such as ``CIA/mount-call-safety`` map onto
    subdirectories. Loaded records are cached for the lifetime of the store.
    """

    def __init__(
        self,
        root: Path,
        *,
        validators_dir: str = "validators",
        profiles_dir: str = "profiles",
    ) -> None:
        self.root = root
        self.validators_path = root / validators_dir
        self.profiles_path = root / profiles_dir
        self._validators: dict[str, Validator] = {}
        self._profiles: dict[str, Profile] = {}

    # -- discovery ---------------------------------------------------------

    @staticmethod
    def _find(base: Path, name: str) -> Path | None:
        if not name or name.startswith("/") or ".." in Path(name).parts:
            return None
        for suffix in DEFINITION_SUFFIXES:
            candidate = base / f"{name}{suffix}"
            if candidate.is_file():
                return candidate
        return None

    @staticmethod
    def _list(base: Path) -> list[str]:
        if not base.is_dir():
            return []
        names: set[str] = set()
        for path in base.rglob("*"):
            if path.is_file() and path.suffix in DEFINITION_SUFFIXES:
                names.add(path.relative_to(base).with_suffix("").as_posix())
        return sorted(names)

    def list_validators(self) -> list[str]:
        """Identifiers of every validator definition on disk, sorted."""
        return self._list(self.validators_path)

    def list_profiles(self) -> list[str]:
        """Identifiers of every profile definition on disk, sorted."""
        return self._list(self.profiles_path)

    @staticmethod
    def _read(path: Path, kind: str, name: str) -> object:
        try:
            with path.open("r", encoding="utf-8") as fh:
                return yaml.safe_load(fh)
        except (OSError, UnicodeDecodeError) as exc:
            msg = f"Failed to load {kind} {name}: {exc}"
            raise LoadError(msg) from exc
        except yaml.YAMLError as exc:
            msg = f"Failed to load {kind} {name}: malformed definition in {path.name}: {exc}"
            raise DefinitionError(msg) from exc

    # -- loading -----------------------------------------------------------

    def load_validator(self, name: str) -> Validator:
        """Load (or return the cached) validator *name*.

        Raises :class:`UnknownValidatorError` when no definition file exists
        and :class:`DefinitionError` when the definition is malformed.
        """
        cached = self._validators.get(name)
        if cached is not None:
            return cached

        path = self._find(self.validators_path, name)
        if path is None:
            raise UnknownValidatorError(name)

        data = self._read(path, "validator", name)
        validator = parse_validator(name, data)
        self._validators[name] = validator
        logger.debug("Loaded validator %s (%d rules) from %s", name, len(validator.rules), path)
        return validator

    def load_validators(self, names: list[str]) -> list[Validator]:
        """Load several validators in order; the first failure aborts."""
        return [self.load_validator(name) for name in names]

    def load_profile(self, name: str) -> Profile:
        """Load (or return the cached) profile *name* with all its validators.

        A reference to a missing validator aborts the whole profile load.
        """
        cached = self._profiles.get(name)
        if cached is not None:
            return cached

        path = self._find(self.profiles_path, name)
        if path is None:
            raise UnknownProfileError(name)

        data = self._read(path, "profile", name)
        context = f"Profile '{name}'"
        if not isinstance(data, dict):
            msg = f"{context}: definition must be a mapping"
            raise DefinitionError(msg)

        names = data.get("validators")
        if names is None:
            msg = f"{context}: missing required 'validators' field"
            raise DefinitionError(msg)
        if not isinstance(names, list) or not all(isinstance(n, str) for n in names):
            msg = f"{context}: 'validators' must be a list of identifiers"
            raise DefinitionError(msg)

        validators: list[Validator] = []
        for validator_name in names:
            try:
                validators.append(self.load_validator(validator_name))
            except UnknownValidatorError as exc:
                raise UnknownValidatorError(validator_name, profile=name) from exc

        profile = Profile(
            name=str(data.get("name", name)),
            validators=tuple(validators),
            description=str(data.get("description", "")),
            levels=_parse_levels(data.get("validationLevels"), context),
            configuration=_parse_configuration(data.get("configuration"), context),
        )
        self._profiles[name] = profile
        logger.debug("Loaded profile %s (%d validators)", name, len(validators))
        return profile
