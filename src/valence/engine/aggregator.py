"""Aggregator: fold per-validator outcomes into reports and a run-level summary."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from valence.engine.confidence import Severity
from valence.engine.definitions import VALIDATION_LEVELS

if TYPE_CHECKING:
    from valence.engine.confidence import Violation
    from valence.engine.definitions import ValidationLevels, Validator
    from valence.engine.evaluator import RuleOutcome

NO_FILES_MESSAGE = "No files matched"
PASSED_MESSAGE = "All checks passed"


# ---------------------------------------------------------------------------
# Data classes
# ---------------------------------------------------------------------------


@dataclass
class ValidatorRun:
    """Everything produced while evaluating one validator."""

    validator: Validator
    files: list[str]
    outcomes: list[RuleOutcome] = field(default_factory=list)
    violations: list[Violation] = field(default_factory=list)  # filtered, overrides applied
    filtered_count: int = 0
    overrides_applied: int = 0


@dataclass
class ValidatorReport:
    """Per-validator result line."""

    name: str
    kind: str
    passed: bool
    violation_count: int
    message: str
    files_checked: int = 0
    rules_evaluated: int = 0
    errored_count: int = 0
    level: str | None = None
    matches: list[MatchRecord] = field(default_factory=list)

    def to_dict(self) -> dict[str, object]:
        return {
            "name": self.name,
            "kind": self.kind,
            "passed": self.passed,
            "violation_count": self.violation_count,
            "message": self.message,
            "files_checked": self.files_checked,
            "rules_evaluated": self.rules_evaluated,
            "errored_count": self.errored_count,
            "level": self.level,
            "matches": [m.to_dict() for m in self.matches],
        }


@dataclass(frozen=True)
class MatchRecord:
    """Line numbers an operator matched for one rule in one file."""

    rule: str
    file_path: str | None
    lines: tuple[int, ...]

    def to_dict(self) -> dict[str, object]:
        return {"rule": self.rule, "file_path": self.file_path, "lines": list(self.lines)}


@dataclass
class RunSummary:
    """Run-level counters."""

    total_validators: int = 0
    total_files: int = 0
    total_rules: int = 0
    passed_count: int = 0  # validators that passed
    validators_failed: int = 0
    failed_count: int = 0  # non-suppressed violations at or above the fail severity
    warning_count: int = 0
    override_applied_count: int = 0
    filtered_by_confidence_count: int = 0
    by_confidence: dict[str, int] = field(
        default_factory=lambda: {"high": 0, "medium": 0, "low": 0}
    )

    def to_dict(self) -> dict[str, object]:
        return {
            "total_validators": self.total_validators,
            "total_files": self.total_files,
            "total_rules": self.total_rules,
            "passed_count": self.passed_count,
            "validators_failed": self.validators_failed,
            "failed_count": self.failed_count,
            "warning_count": self.warning_count,
            "override_applied_count": self.override_applied_count,
            "filtered_by_confidence_count": self.filtered_by_confidence_count,
            "by_confidence": dict(self.by_confidence),
        }


@dataclass
class ValidationResult:
    """Aggregate of one run. Suppressed violations stay in ``violations``."""

    reports: list[ValidatorReport] = field(default_factory=list)
    violations: list[Violation] = field(default_factory=list)
    summary: RunSummary = field(default_factory=RunSummary)
    levels: dict[str, dict[str, object]] = field(default_factory=dict)
    stopped_early: bool = False
    fail_on: Severity = Severity.ERROR

    @property
    def success(self) -> bool:
        """True iff no non-suppressed violation reaches the fail severity."""
        return self.summary.failed_count == 0

    @property
    def passed(self) -> bool:
        return self.success

    def to_dict(self) -> dict[str, object]:
        return {
            "success": self.success,
            "fail_on": self.fail_on.value,
            "stopped_early": self.stopped_early,
            "summary": self.summary.to_dict(),
            "validators": [r.to_dict() for r in self.reports],
            "levels": self.levels,
            "violations": [v.to_dict() for v in self.violations],
        }


# ---------------------------------------------------------------------------
# Aggregation
# ---------------------------------------------------------------------------


def is_failing(violation: Violation, fail_on: Severity = Severity.ERROR) -> bool:
    """A violation fails the run when not suppressed and at or above *fail_on*."""
    return not violation.suppressed and violation.severity.rank >= fail_on.rank


def summarize_validator(
    run: ValidatorRun,
    *,
    fail_on: Severity = Severity.ERROR,
    level: str | None = None,
) -> ValidatorReport:
    """Build the report line for one validator run."""
    validator = run.validator
    active = [v for v in run.violations if not v.suppressed]
    failing = [v for v in active if is_failing(v, fail_on)]
    errored = sum(1 for o in run.outcomes if o.errored)

    if not run.files:
        message = NO_FILES_MESSAGE
    elif failing:
        message = f"{len(failing)} violation(s) found"
    else:
        message = PASSED_MESSAGE

    return ValidatorReport(
        name=validator.name,
        kind=validator.kind.value,
        passed=not failing,
        violation_count=len(active),
        message=message,
        files_checked=len(run.files),
        rules_evaluated=len(run.outcomes),
        errored_count=errored,
        level=level,
        matches=[
            MatchRecord(rule=o.rule_id, file_path=o.file_path, lines=o.outcome.lines)
            for o in run.outcomes
            if o.outcome.lines
        ],
    )


def aggregate(
    runs: list[ValidatorRun],
    *,
    total_files: int,
    levels: ValidationLevels | None = None,
    fail_on: Severity = Severity.ERROR,
    stopped_early: bool = False,
) -> ValidationResult:
    """Combine validator runs into a :class:`ValidationResult`."""
    summary = RunSummary(total_validators=len(runs), total_files=total_files)
    reports: list[ValidatorReport] = []
    violations: list[Violation] = []

    for run in runs:
        level = None
        if levels is not None:
            level = levels.level_of(run.validator.key) or levels.level_of(run.validator.name)
        report = summarize_validator(run, fail_on=fail_on, level=level)
        reports.append(report)
        violations.extend(run.violations)

        summary.total_rules += report.rules_evaluated
        summary.override_applied_count += run.overrides_applied
        summary.filtered_by_confidence_count += run.filtered_count
        if report.passed:
            summary.passed_count += 1
        else:
            summary.validators_failed += 1

    for violation in violations:
        if violation.suppressed:
            continue
        summary.by_confidence[violation.band] += 1
        if is_failing(violation, fail_on):
            summary.failed_count += 1
        elif violation.severity is Severity.WARNING:
            summary.warning_count += 1

    return ValidationResult(
        reports=reports,
        violations=violations,
        summary=summary,
        levels=_bucket_levels(reports, levels),
        stopped_early=stopped_early,
        fail_on=fail_on,
    )


def _bucket_levels(
    reports: list[ValidatorReport], levels: ValidationLevels | None
) -> dict[str, dict[str, object]]:
    if levels is None:
        return {}
    buckets: dict[str, dict[str, object]] = {}
    for level in VALIDATION_LEVELS:
        members = [r for r in reports if r.level == level]
        if not members and not getattr(levels, level):
            continue
        buckets[level] = {
            "validators": [r.name for r in members],
            "passed": sum(1 for r in members if r.passed),
            "failed": sum(1 for r in members if not r.passed),
        }
    return buckets
