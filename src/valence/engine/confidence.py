"""Violation records: severity tiers, confidence scoring, fingerprints, threshold filtering."""

from __future__ import annotations

import enum
import hashlib
import math
from dataclasses import dataclass, replace
from typing import TYPE_CHECKING

from valence.engine.resolver import normalize_path

if TYPE_CHECKING:
    from valence.engine.evaluator import RuleOutcome
    from valence.engine.operators import Finding

DEFAULT_CONFIDENCE = 1.0
FINGERPRINT_LENGTH = 16

# Confidence bands used by the aggregator breakdown.
HIGH_CONFIDENCE = 0.9
MEDIUM_CONFIDENCE = 0.7


# ---------------------------------------------------------------------------
# Severity
# ---------------------------------------------------------------------------


class Severity(enum.Enum):
    """Severity tier of a violation, ordered info < warning < error."""

    INFO = "info"
    WARNING = "warning"
    ERROR = "error"

    @property
    def rank(self) -> int:
        return _SEVERITY_RANKS[self]

    @classmethod
    def parse(cls, value: object, *, default: Severity | None = None) -> Severity:
        """Map loose severity labels (``critical``, ``warn``, ``low``...) onto a tier.

        Unknown labels fall back to *default*, which itself defaults to ``ERROR``.
        """
        if isinstance(value, Severity):
            return value
        if value is None:
            return default or cls.ERROR
        label = str(value).strip().lower()
        return _SEVERITY_ALIASES.get(label, default or cls.ERROR)


_SEVERITY_RANKS: dict[Severity, int] = {
    Severity.INFO: 0,
    Severity.WARNING: 1,
    Severity.ERROR: 2,
}

_SEVERITY_ALIASES: dict[str, Severity] = {
    "critical": Severity.ERROR,
    "high": Severity.ERROR,
    "error": Severity.ERROR,
    "warning": Severity.WARNING,
    "warn": Severity.WARNING,
    "medium": Severity.WARNING,
    "info": Severity.INFO,
    "low": Severity.INFO,
}

# Labels accepted verbatim in definition files.
VALID_RULE_SEVERITIES: frozenset[str] = frozenset({"error", "warning", "warn", "info"})


# ---------------------------------------------------------------------------
# Violation
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Violation:
    """A failing (or, in verbose mode, warned) rule outcome."""

    validator: str
    rule: str
    file_path: str | None
    message: str
    fingerprint: str
    confidence: float = DEFAULT_CONFIDENCE
    severity: Severity = Severity.ERROR
    line: int | None = None
    auto_fix: str | None = None
    code: str | None = None
    suppressed: bool = False
    override_status: str | None = None
    override_reason: str | None = None

    @property
    def band(self) -> str:
        """Confidence band: ``high``, ``medium`` or ``low``."""
        if self.confidence >= HIGH_CONFIDENCE:
            return "high"
        if self.confidence >= MEDIUM_CONFIDENCE:
            return "medium"
        return "low"

    def with_override(self, status: str, reason: str) -> Violation:
        """Return a suppressed copy carrying the override disposition."""
        return replace(self, suppressed=True, override_status=status, override_reason=reason)

    def to_dict(self) -> dict[str, object]:
        return {
            "validator": self.validator,
            "rule": self.rule,
            "file_path": self.file_path,
            "line": self.line,
            "message": self.message,
            "severity": self.severity.value,
            "confidence": self.confidence,
            "fingerprint": self.fingerprint,
            "auto_fix": self.auto_fix,
            "code": self.code,
            "suppressed": self.suppressed,
            "override_status": self.override_status,
            "override_reason": self.override_reason,
        }


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def clamp_confidence(value: object) -> float:
    """Coerce *value* into [0, 1]; missing or non-numeric values become 1.0."""
    if value is None or isinstance(value, bool):
        return DEFAULT_CONFIDENCE
    try:
        number = float(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        return DEFAULT_CONFIDENCE
    if math.isnan(number):
        return DEFAULT_CONFIDENCE
    return max(0.0, min(1.0, number))


def compute_fingerprint(validator: str, rule: str, file_path: str | None) -> str:
    """Stable identity of a violation for override matching.

    Only the validator, rule and normalized path participate, so message
    text, confidence and line numbers may change without invalidating an
    override.
    """
    path = normalize_path(file_path) if file_path else ""
    payload = f"{validator}|{rule}|{path}".encode()
    return hashlib.sha256(payload).hexdigest()[:FINGERPRINT_LENGTH]


def violations_from_outcome(outcome: RuleOutcome, *, verbose: bool = False) -> list[Violation]:
    """Lift one rule outcome into zero or more violation records.

    A failed outcome with per-location findings yields one violation per
    finding; otherwise it yields a single violation. Outcome warnings become
    ``warning`` violations only when *verbose* is set.
    """
    rule = outcome.rule
    result = outcome.outcome
    default_severity = rule.severity
    violations: list[Violation] = []

    if not result.passed:
        if result.findings:
            for finding in result.findings:
                violations.append(
                    _from_finding(outcome, finding, default_severity, result.confidence)
                )
        else:
            file_path = outcome.file_path
            violations.append(
                Violation(
                    validator=outcome.validator,
                    rule=outcome.rule_id,
                    file_path=file_path,
                    message=result.message or rule.default_message,
                    fingerprint=compute_fingerprint(outcome.validator, outcome.rule_id, file_path),
                    confidence=clamp_confidence(result.confidence),
                    severity=Severity.ERROR if outcome.errored else default_severity,
                    line=result.line if result.line is not None else next(iter(result.lines), None),
                    auto_fix=result.auto_fix,
                )
            )

    if verbose:
        for warning in result.warnings:
            violations.append(
                Violation(
                    validator=outcome.validator,
                    rule=outcome.rule_id,
                    file_path=outcome.file_path,
                    message=warning,
                    fingerprint=compute_fingerprint(
                        outcome.validator, outcome.rule_id, outcome.file_path
                    ),
                    confidence=clamp_confidence(result.confidence),
                    severity=Severity.WARNING,
                )
            )

    return violations


def _from_finding(
    outcome: RuleOutcome,
    finding: Finding,
    default_severity: Severity,
    outcome_confidence: float | None,
) -> Violation:
    file_path = finding.file_path if finding.file_path is not None else outcome.file_path
    confidence = finding.confidence if finding.confidence is not None else outcome_confidence
    severity = (
        Severity.parse(finding.severity, default=default_severity)
        if finding.severity is not None
        else default_severity
    )
    return Violation(
        validator=outcome.validator,
        rule=outcome.rule_id,
        file_path=file_path,
        message=finding.message,
        fingerprint=compute_fingerprint(outcome.validator, outcome.rule_id, file_path),
        confidence=clamp_confidence(confidence),
        severity=severity,
        line=finding.line,
        auto_fix=finding.auto_fix,
        code=finding.code,
    )


def filter_by_confidence(
    violations: list[Violation], threshold: float
) -> tuple[list[Violation], int]:
    """Drop violations whose confidence is strictly below *threshold*.

    Returns ``(kept, filtered_count)``.
    """
    if threshold <= 0:
        return list(violations), 0
    kept = [v for v in violations if v.confidence >= threshold]
    return kept, len(violations) - len(kept)
