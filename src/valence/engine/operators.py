"""Operator registry: built-in pattern/path operators and lazily loaded plugin operators.

A plugin is a Python module that exports an operator identifier and an
evaluation function::

    OPERATOR = "validateMountCallSafety"

    def evaluate(content, rule, context):
        return {"passed": True, "message": "ok"}

``content`` is the file text (content validators), the file name (naming
validators) or the list of candidate paths (structure validators). ``rule``
is the rule's configuration mapping and ``context`` a :class:`RuleContext`.
The return value may be an :class:`Outcome`, a mapping with the same keys,
a bare bool, or an awaitable producing one of those. A module may instead
export an ``OPERATORS`` mapping of several identifiers to callables.
"""

from __future__ import annotations

import importlib
import importlib.util
import logging
import math
import re
import sys
from dataclasses import dataclass, field
from pathlib import Path, PurePath, PurePosixPath
from typing import TYPE_CHECKING, Any

from valence.errors import PluginNotFoundError, ResolutionError

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable, Mapping
    from types import ModuleType

    Evaluator = Callable[[Any, Mapping[str, Any], "RuleContext"], Any]

logger = logging.getLogger(__name__)

_PLUGIN_MODULE_PREFIX = "_valence_plugin_"


# ---------------------------------------------------------------------------
# Data classes
# ---------------------------------------------------------------------------


def _is_number(value: object) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _as_line(value: object) -> int | None:
    if _is_number(value) and math.isfinite(value):  # type: ignore[arg-type]
        return int(value)  # type: ignore[call-overload]
    return None


def _as_lines(value: object) -> tuple[int, ...]:
    if not isinstance(value, (list, tuple)):
        return ()
    lines = (_as_line(item) for item in value)
    return tuple(line for line in lines if line is not None)


def _optional_str(value: object) -> str | None:
    """Plugin-supplied text fields; paths and other objects become their ``str()``."""
    if value is None:
        return None
    if isinstance(value, PurePath):
        return value.as_posix()
    return str(value)


@dataclass(frozen=True)
class Finding:
    """One located problem reported inside a single operator outcome."""

    message: str
    line: int | None = None
    severity: str | None = None
    confidence: float | None = None
    file_path: str | None = None
    code: str | None = None
    auto_fix: str | None = None

    @classmethod
    def from_raw(cls, raw: Mapping[str, Any]) -> Finding:
        confidence = raw.get("confidence")
        return cls(
            message=str(raw.get("message", raw.get("description", ""))),
            line=_as_line(raw.get("line", raw.get("lineNumber"))),
            severity=str(raw["severity"]) if raw.get("severity") is not None else None,
            confidence=confidence if _is_number(confidence) else None,
            file_path=_optional_str(raw.get("filePath", raw.get("file_path"))),
            code=_optional_str(raw.get("code", raw.get("codeSnippet"))),
            auto_fix=_optional_str(
                raw.get("autoFix", raw.get("autoFixSuggestion", raw.get("auto_fix")))
            ),
        )


@dataclass(frozen=True)
class Outcome:
    """Result of a single operator invocation."""

    passed: bool
    message: str = ""
    warnings: tuple[str, ...] = ()
    confidence: float | None = None
    line: int | None = None
    auto_fix: str | None = None
    findings: tuple[Finding, ...] = ()
    lines: tuple[int, ...] = ()

    @classmethod
    def from_raw(cls, raw: object) -> Outcome:
        """Normalize a plugin return value.

        Raises ``TypeError`` for values that are neither an Outcome, a
        mapping, nor a bool.
        """
        if isinstance(raw, Outcome):
            return raw
        if isinstance(raw, bool):
            return cls(passed=raw)
        if not isinstance(raw, dict):
            msg = f"operator returned {type(raw).__name__}, expected a mapping or bool"
            raise TypeError(msg)

        warnings_raw = raw.get("warnings") or ()
        if isinstance(warnings_raw, str):
            warnings_raw = (warnings_raw,)
        findings_raw = raw.get("violations") or ()
        confidence = raw.get("confidence")
        return cls(
            passed=bool(raw.get("passed", False)),
            message=str(raw.get("message") or ""),
            warnings=tuple(str(w) for w in warnings_raw),
            confidence=confidence if _is_number(confidence) else None,
            line=_as_line(raw.get("line")),
            auto_fix=_optional_str(raw.get("autoFix", raw.get("auto_fix"))),
            findings=tuple(Finding.from_raw(f) for f in findings_raw if isinstance(f, dict)),
            lines=_as_lines(raw.get("lines")),
        )


@dataclass(frozen=True)
class RuleContext:
    """Per-invocation context handed to every operator."""

    validator: str
    kind: str
    root: Path
    file_path: str | None = None
    verbose: bool = False
    extra: dict[str, Any] = field(default_factory=dict, hash=False, compare=False)

    @property
    def directory(self) -> Path:
        """Absolute directory of the current file (the root for structure rules)."""
        if self.file_path is None:
            return self.root
        return self.root / PurePosixPath(self.file_path).parent


# ---------------------------------------------------------------------------
# Built-in operators
# ---------------------------------------------------------------------------


def _as_text(content: object) -> str:
    if isinstance(content, str):
        return content
    if isinstance(content, (list, tuple)):
        return "\n".join(str(item) for item in content)
    return str(content)


def _as_list(value: object) -> list[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [value]
    return [str(item) for item in value]  # type: ignore[union-attr]


def find_matches(content: str, pattern: str) -> list[tuple[int, str]]:
    """Return ``(line_number, matched_text)`` for every multiline match of *pattern*."""
    regex = re.compile(pattern, re.MULTILINE)
    matches: list[tuple[int, str]] = []
    for match in regex.finditer(content):
        line = content.count("\n", 0, match.start()) + 1
        matches.append((line, match.group(0)))
    return matches


def must_contain(content: object, rule: Mapping[str, Any], context: RuleContext) -> Outcome:
    """Pass iff the pattern matches anywhere in the content (case-insensitive)."""
    pattern = str(rule.get("value", ""))
    if re.search(pattern, _as_text(content), re.IGNORECASE):
        return Outcome(passed=True)
    return Outcome(passed=False, message=str(rule.get("message") or f"Missing pattern: {pattern}"))


def matches_pattern(content: object, rule: Mapping[str, Any], context: RuleContext) -> Outcome:
    """Pass iff a multiline, global match succeeds at least once; records matched lines."""
    pattern = str(rule.get("value", ""))
    matches = find_matches(_as_text(content), pattern)
    if matches:
        return Outcome(passed=True, lines=tuple(line for line, _text in matches))
    return Outcome(
        passed=False, message=str(rule.get("message") or f"No match for pattern: {pattern}")
    )


def file_exists(content: object, rule: Mapping[str, Any], context: RuleContext) -> Outcome:
    """Pass iff every expected relative name exists next to the current file.

    For structure rules (*content* is the candidate path list) every distinct
    directory is checked and each directory missing files yields one finding.
    """
    expected = _as_list(rule.get("value"))
    message = str(rule.get("message") or "")

    if context.file_path is None and isinstance(content, (list, tuple)):
        directories = sorted({PurePosixPath(str(p)).parent.as_posix() for p in content})
        findings: list[Finding] = []
        for directory in directories:
            base = context.root / directory
            missing = [name for name in expected if not (base / name).exists()]
            if missing:
                findings.append(
                    Finding(
                        message=message or f"{directory}: missing {', '.join(missing)}",
                        file_path=directory,
                    )
                )
        if findings:
            return Outcome(
                passed=False,
                message=f"{len(findings)} director{'y' if len(findings) == 1 else 'ies'} "
                "missing required files",
                findings=tuple(findings),
            )
        return Outcome(passed=True)

    base = context.directory
    missing = [name for name in expected if not (base / name).exists()]
    if missing:
        return Outcome(passed=False, message=message or f"Missing files: {', '.join(missing)}")
    return Outcome(passed=True)


def _normalize_extension(ext: str) -> str:
    ext = ext.strip().lower()
    return ext if ext.startswith(".") else f".{ext}"


def has_extension(content: object, rule: Mapping[str, Any], context: RuleContext) -> Outcome:
    """Pass iff the current file's extension is in the allowed set."""
    allowed = {_normalize_extension(ext) for ext in _as_list(rule.get("value"))}
    message = str(rule.get("message") or "")

    if context.file_path is None and isinstance(content, (list, tuple)):
        findings = tuple(
            Finding(
                message=message or f"Extension not allowed: {path}",
                file_path=str(path),
            )
            for path in content
            if PurePosixPath(str(path)).suffix.lower() not in allowed
        )
        if findings:
            return Outcome(passed=False, message=message, findings=findings)
        return Outcome(passed=True)

    suffix = PurePosixPath(context.file_path or "").suffix.lower()
    if suffix in allowed:
        return Outcome(passed=True)
    return Outcome(
        passed=False,
        message=message or f"Extension '{suffix}' not in {sorted(allowed)}",
    )


BUILTIN_EVALUATORS: dict[str, Evaluator] = {
    "mustContain": must_contain,
    "matchesPattern": matches_pattern,
    "fileExists": file_exists,
    "hasExtension": has_extension,
}


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------


class OperatorRegistry:
    """Maps operator identifiers to evaluation functions.

    Built-ins are registered at construction. Plugin operators are located
    on first reference, first by file name under *plugin_dirs*
    (``<dir>/**/<name>.py``), then by the ``OPERATOR``/``OPERATORS`` exports
    of every module under *plugin_dirs*, then as an importable dotted
    module path. Both successes and failures are cached for the lifetime of the registry.
    """

    def __init__(
        self,
        plugin_dirs: Iterable[Path] = (),
        *,
        register_builtins: bool = True,
    ) -> None:
        self.plugin_dirs: tuple[Path, ...] = tuple(plugin_dirs)
        self._operators: dict[str, Evaluator] = {}
        self._builtins: set[str] = set()
        self._failures: dict[str, str] = {}
        self._modules: dict[Path, ModuleType] = {}
        self._indexed = False
        if register_builtins:
            for name, evaluator in BUILTIN_EVALUATORS.items():
                self.register(name, evaluator)
                self._builtins.add(name)

    def register(self, name: str, evaluator: Evaluator) -> None:
        """Register *evaluator* under *name*; duplicates are rejected."""
        if not callable(evaluator):
            msg = f"Evaluator for operator '{name}' is not callable"
            raise TypeError(msg)
        if name in self._operators:
            msg = f"Operator '{name}' is already registered"
            raise ValueError(msg)
        self._operators[name] = evaluator

    def is_builtin(self, name: str) -> bool:
        return name in self._builtins

    def names(self) -> list[str]:
        """Identifiers currently registered (built-ins plus loaded plugins)."""
        return sorted(self._operators)

    def resolve(self, name: str) -> Evaluator:
        """Return the evaluator for *name*, loading a plugin on first use.

        Raises :class:`PluginNotFoundError` when no plugin provides *name*;
        the failure is remembered so the search runs once per registry.
        """
        evaluator = self._operators.get(name)
        if evaluator is not None:
            return evaluator

        if name in self._failures:
            raise PluginNotFoundError(name, self._failures[name])

        try:
            self._load_plugin(name)
        except ResolutionError as exc:
            reason = exc.reason if isinstance(exc, PluginNotFoundError) else str(exc)
            self._failures[name] = reason or str(exc)
            raise

        evaluator = self._operators.get(name)
        if evaluator is None:
            reason = "module does not export this operator"
            self._failures[name] = reason
            raise PluginNotFoundError(name, reason)
        return evaluator

    # -- plugin loading ------------------------------------------------------

    def _find_plugin_file(self, name: str) -> Path | None:
        filename = f"{name}.py"
        for plugin_dir in self.plugin_dirs:
            if not plugin_dir.is_dir():
                continue
            direct = plugin_dir / filename
            if direct.is_file():
                return direct
            nested = sorted(plugin_dir.rglob(filename))
            if nested:
                return nested[0]
        return None

    def _load_plugin(self, name: str) -> None:
        plugin_file = self._find_plugin_file(name)
        if plugin_file is not None:
            module = self._modules.get(plugin_file) or self._import_file(name, plugin_file)
            self._register_module(name, module, str(plugin_file))
            return

        self._index_plugin_dirs()
        if name in self._operators:
            return

        if _looks_like_module_path(name):
            try:
                module = importlib.import_module(name)
            except ImportError as exc:
                raise PluginNotFoundError(name, f"cannot import module: {exc}") from exc
            self._register_module(name, module, name)
            return

        searched = ", ".join(str(d) for d in self.plugin_dirs) or "<no plugin directories>"
        raise PluginNotFoundError(name, f"no {name}.py in {searched}")

    def _import_file(self, name: str, path: Path) -> ModuleType:
        module_name = _PLUGIN_MODULE_PREFIX + re.sub(r"\W", "_", name)
        spec = importlib.util.spec_from_file_location(module_name, path)
        if spec is None or spec.loader is None:
            raise PluginNotFoundError(name, f"cannot load {path}")
        module = importlib.util.module_from_spec(spec)
        sys.modules[module_name] = module
        try:
            spec.loader.exec_module(module)
        except Exception as exc:
            sys.modules.pop(module_name, None)
            logger.warning("Failed to load plugin %s: %s", path, exc)
            msg = f"Plugin '{name}' failed to load from {path}: {exc}"
            raise ResolutionError(msg) from exc
        self._modules[path] = module
        logger.debug("Loaded plugin module %s from %s", module_name, path)
        return module

    def _index_plugin_dirs(self) -> None:
        """Import every plugin file once and register its declared exports.

        Operators whose identifier differs from their file name (``OPERATOR``
        or ``OPERATORS`` exports) become resolvable regardless of which rule
        asks first. Files that fail to import are skipped here and reported
        when requested by name.
        """
        if self._indexed:
            return
        self._indexed = True
        for plugin_dir in self.plugin_dirs:
            if not plugin_dir.is_dir():
                continue
            for path in sorted(plugin_dir.rglob("*.py")):
                if path in self._modules or path.name.startswith("_"):
                    continue
                try:
                    module = self._import_file(path.stem, path)
                except ResolutionError:
                    continue
                self._register_exports(module)

    def _register_exports(self, module: ModuleType) -> None:
        operators = getattr(module, "OPERATORS", None)
        if isinstance(operators, dict):
            for op_name, evaluator in operators.items():
                if str(op_name) not in self._operators and callable(evaluator):
                    self._operators[str(op_name)] = evaluator

        declared = getattr(module, "OPERATOR", None)
        evaluate = getattr(module, "evaluate", None)
        if declared is not None and callable(evaluate) and str(declared) not in self._operators:
            self._operators[str(declared)] = evaluate

    def _register_module(self, name: str, module: ModuleType, origin: str) -> None:
        operators = getattr(module, "OPERATORS", None)
        if isinstance(operators, dict):
            for op_name, evaluator in operators.items():
                if str(op_name) not in self._operators and callable(evaluator):
                    self._operators[str(op_name)] = evaluator

        evaluate = getattr(module, "evaluate", None)
        declared = getattr(module, "OPERATOR", None)
        if evaluate is not None and not callable(evaluate):
            msg = f"Plugin '{name}' ({origin}): 'evaluate' is not callable"
            raise ResolutionError(msg)
        if evaluate is None and name not in self._operators:
            msg = f"Plugin '{name}' ({origin}) must export an 'evaluate' function"
            raise ResolutionError(msg)
        if evaluate is None:
            return

        if declared is not None and declared != name:
            logger.warning(
                "Plugin %s declares operator %r but was requested as %r", origin, declared, name
            )
            if str(declared) not in self._operators:
                self._operators[str(declared)] = evaluate
        if name not in self._operators:
            self._operators[name] = evaluate


def _looks_like_module_path(name: str) -> bool:
    return "." in name and all(part.isidentifier() for part in name.split("."))
