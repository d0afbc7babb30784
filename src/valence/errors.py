"""Exception hierarchy shared by the engine, the infrastructure layer, and the CLI."""

from __future__ import annotations


class ValenceError(Exception):
    """Base class for every error raised by valence."""


# ---------------------------------------------------------------------------
# Load-time errors (fatal: abort the run before evaluation)
# ---------------------------------------------------------------------------


class LoadError(ValenceError):
    """A validator, profile, or file selection could not be loaded."""


class DefinitionError(LoadError):
    """A definition file exists but is malformed or fails schema validation."""


class UnknownValidatorError(LoadError):
    """A validator identifier does not resolve to a definition file."""

    def __init__(self, name: str, *, profile: str | None = None) -> None:
        self.name = name
        self.profile = profile
        if profile is not None:
            msg = f"Profile '{profile}' references unknown validator '{name}'"
        else:
            msg = f"Unknown validator '{name}'"
        super().__init__(msg)


class UnknownProfileError(LoadError):
    """A profile identifier does not resolve to a definition file."""

    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(f"Unknown profile '{name}'")


class ResolveError(LoadError):
    """A file glob could not be expanded."""


# ---------------------------------------------------------------------------
# Run-time errors (localized to a single rule)
# ---------------------------------------------------------------------------


class ResolutionError(ValenceError):
    """An operator name could not be resolved to an evaluator."""


class PluginNotFoundError(ResolutionError):
    """No plugin module exports the requested operator."""

    def __init__(self, name: str, reason: str | None = None) -> None:
        self.name = name
        self.reason = reason
        msg = f"Plugin '{name}' not found"
        if reason:
            msg += f": {reason}"
        super().__init__(msg)


# ---------------------------------------------------------------------------
# Configuration and persistence
# ---------------------------------------------------------------------------


class ConfigError(ValenceError):
    """Project configuration contains invalid values."""


class OverrideFileError(ValenceError):
    """The override file exists but cannot be parsed."""
