"""Run orchestrator: select validators, resolve files, evaluate, filter, suppress, aggregate."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from io import StringIO
from typing import TYPE_CHECKING

from valence.engine.aggregator import ValidatorRun, aggregate, is_failing
from valence.engine.confidence import Severity, filter_by_confidence, violations_from_outcome
from valence.engine.evaluator import RuleEvaluator
from valence.engine.resolver import DEFAULT_IGNORE, filter_for, resolve_files

if TYPE_CHECKING:
    from pathlib import Path

    from rich.console import Console

    from valence.engine.aggregator import ValidationResult
    from valence.engine.confidence import Violation
    from valence.engine.definitions import DefinitionStore, Profile, ValidationLevels, Validator
    from valence.engine.operators import OperatorRegistry
    from valence.infrastructure.overrides import OverrideRegistry, OverrideStatistics

logger = logging.getLogger(__name__)

_STATUS_MARKS: dict[bool, tuple[str, str]] = {
    True: ("✓ PASS", "green"),
    False: ("✗ FAIL", "red"),
}

_SEVERITY_STYLES: dict[Severity, str] = {
    Severity.ERROR: "red",
    Severity.WARNING: "yellow",
    Severity.INFO: "blue",
}


# ---------------------------------------------------------------------------
# Options and selection
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class RunOptions:
    """Knobs for a single run."""

    globs: tuple[str, ...] = ("**/*",)
    confidence_threshold: float = 0.0
    apply_overrides: bool = True
    verbose: bool = False
    fail_fast: bool = False
    fail_on: Severity = Severity.ERROR
    ignore: tuple[str, ...] = DEFAULT_IGNORE


@dataclass
class Selection:
    """Validators chosen for a run, plus the profile they came from (if any)."""

    validators: list[Validator]
    profile: Profile | None = None

    @property
    def levels(self) -> ValidationLevels | None:
        return self.profile.levels if self.profile is not None else None


def select_validators(
    store: DefinitionStore,
    *,
    profile: str | None = None,
    validators: tuple[str, ...] | list[str] = (),
) -> Selection:
    """Load a profile or an explicit validator list (fail-fast on load errors).

    Raises ``ValueError`` when neither or both are given.
    """
    if profile and validators:
        msg = "Specify either a profile or validators, not both"
        raise ValueError(msg)
    if profile:
        loaded = store.load_profile(profile)
        return Selection(validators=list(loaded.validators), profile=loaded)
    if validators:
        return Selection(validators=store.load_validators(list(validators)))
    msg = "Specify a profile or at least one validator"
    raise ValueError(msg)


def effective_threshold(run_threshold: float, validator: Validator) -> float:
    """The stricter of the run-level and the validator's own confidence cutoff."""
    if validator.confidence_threshold is None:
        return run_threshold
    return max(run_threshold, validator.confidence_threshold)


# ---------------------------------------------------------------------------
# Run
# ---------------------------------------------------------------------------


def run_validation(
    validators: list[Validator],
    *,
    root: Path,
    registry: OperatorRegistry,
    options: RunOptions | None = None,
    overrides: OverrideRegistry | None = None,
    levels: ValidationLevels | None = None,
) -> ValidationResult:
    """Evaluate *validators* against the files matched by ``options.globs``.

    Validators run in the given order. Confidence filtering happens before
    override suppression, and both happen before aggregation.

    Raises
    ------
    ResolveError
        When a glob pattern is invalid; nothing is evaluated.
    """
    options = options or RunOptions()
    paths = resolve_files(options.globs, root, ignore=options.ignore)
    logger.debug("Resolved %d candidate files from %s", len(paths), list(options.globs))

    evaluator = RuleEvaluator(registry, root=root, verbose=options.verbose)
    runs: list[ValidatorRun] = []
    stopped_early = False

    for index, validator in enumerate(validators):
        files = filter_for(validator, paths)
        run = ValidatorRun(validator=validator, files=files)
        if files:
            run.outcomes = evaluator.evaluate_validator(validator, files)
            raw: list[Violation] = []
            for outcome in run.outcomes:
                raw.extend(violations_from_outcome(outcome, verbose=options.verbose))
            kept, run.filtered_count = filter_by_confidence(
                raw, effective_threshold(options.confidence_threshold, validator)
            )
            if overrides is not None and options.apply_overrides:
                kept, run.overrides_applied = overrides.apply(kept)
            run.violations = kept
        else:
            logger.debug("Validator %s matched no files", validator.name)
        runs.append(run)

        if options.fail_fast and any(is_failing(v, options.fail_on) for v in run.violations):
            stopped_early = index < len(validators) - 1
            if stopped_early:
                logger.info("Stopping after %s (fail-fast)", validator.name)
            break

    return aggregate(
        runs,
        total_files=len(paths),
        levels=levels,
        fail_on=options.fail_on,
        stopped_early=stopped_early,
    )


# ---------------------------------------------------------------------------
# Dry run
# ---------------------------------------------------------------------------


@dataclass
class ValidatorPlan:
    """What a validator would evaluate."""

    name: str
    kind: str
    files: list[str]
    rules: list[str]
    operators: list[str]


@dataclass
class RunPlan:
    """Result of a dry run: files and rules resolved, nothing evaluated."""

    files: list[str]
    validators: list[ValidatorPlan] = field(default_factory=list)
    options: RunOptions = field(default_factory=RunOptions)

    def to_dict(self) -> dict[str, object]:
        return {
            "files": self.files,
            "validators": [
                {
                    "name": p.name,
                    "kind": p.kind,
                    "files": p.files,
                    "rules": p.rules,
                    "operators": p.operators,
                }
                for p in self.validators
            ],
            "configuration": {
                "globs": list(self.options.globs),
                "confidence_threshold": self.options.confidence_threshold,
                "apply_overrides": self.options.apply_overrides,
                "verbose": self.options.verbose,
                "fail_fast": self.options.fail_fast,
                "fail_on": self.options.fail_on.value,
            },
        }


def plan_run(
    validators: list[Validator],
    *,
    root: Path,
    options: RunOptions | None = None,
) -> RunPlan:
    """Resolve files and rules for *validators* without evaluating anything."""
    options = options or RunOptions()
    paths = resolve_files(options.globs, root, ignore=options.ignore)
    plan = RunPlan(files=paths, options=options)
    for validator in validators:
        plan.validators.append(
            ValidatorPlan(
                name=validator.name,
                kind=validator.kind.value,
                files=filter_for(validator, paths),
                rules=[rule.rule_id for rule in validator.rules],
                operators=[rule.operator_name for rule in validator.rules],
            )
        )
    return plan


# ---------------------------------------------------------------------------
# Formatters
# ---------------------------------------------------------------------------


def _console(buf: StringIO, *, color: bool) -> Console:
    from rich.console import Console

    return Console(file=buf, force_terminal=color, no_color=not color, width=120, highlight=False)


def _location(violation: Violation) -> str:
    loc = violation.file_path or "<structure>"
    if violation.line is not None:
        loc += f":{violation.line}"
    return loc


def format_table(result: ValidationResult, *, color: bool = False) -> str:
    """Render a ValidationResult as a human-readable table plus violation detail.

    Example::

        Validation results
        Status   Validator                  Files  Violations  Message
        ✗ FAIL   sequence-required-fields       1           1  1 violation(s) found

        sequence-required-fields
          ✗ [error] mustContain  src/bad.js  (confidence 100%)
            Sequence must define a name

        1 validator: 0 passed, 1 failed | 1 failing violation(s), 0 warning(s),
        0 suppressed, 0 filtered by confidence
    """
    from rich.markup import escape
    from rich.table import Table

    buf = StringIO()
    console = _console(buf, color=color)

    table = Table(title="Validation results", box=None, padding=(0, 2), title_justify="left")
    table.add_column("Status")
    table.add_column("Validator", style="cyan")
    table.add_column("Files", justify="right")
    table.add_column("Violations", justify="right")
    table.add_column("Message")
    for report in result.reports:
        mark, style = _STATUS_MARKS[report.passed]
        table.add_row(
            f"[{style}]{mark}[/]",
            escape(report.name),
            str(report.files_checked),
            str(report.violation_count),
            escape(report.message),
        )
    console.print(table)

    by_validator: dict[str, list[Violation]] = {}
    for violation in result.violations:
        by_validator.setdefault(violation.validator, []).append(violation)

    for name, violations in by_validator.items():
        console.print()
        console.print(f"[bold]{escape(name)}[/bold]")
        for v in violations:
            style = _SEVERITY_STYLES[v.severity]
            mark = "–" if v.suppressed else "✗"
            console.print(
                f"  {mark} [{style}]\\[{v.severity.value}][/] {escape(v.rule)}  "
                f"{escape(_location(v))}  (confidence {v.confidence:.0%})"
            )
            console.print(f"    {escape(v.message)}")
            if v.code:
                console.print(f"    Code: {escape(v.code)}")
            if v.auto_fix:
                console.print(f"    Suggested fix: {escape(v.auto_fix)}")
            if v.suppressed:
                console.print(
                    f"    Suppressed ({v.override_status}): {escape(v.override_reason or '')}"
                )
            if v.band == "low" and not v.suppressed:
                console.print("    Low confidence: may require manual verification.")

    s = result.summary
    suppressed = sum(1 for v in result.violations if v.suppressed)
    noun = "validator" if s.total_validators == 1 else "validators"
    console.print()
    console.print(
        f"{s.total_validators} {noun}: {s.passed_count} passed, {s.validators_failed} failed | "
        f"{s.failed_count} failing violation(s), {s.warning_count} warning(s), "
        f"{suppressed} suppressed, {s.filtered_by_confidence_count} filtered by confidence",
        soft_wrap=True,
    )
    if result.stopped_early:
        console.print("Stopped early: fail-fast is enabled.")
    status = "[green]PASSED[/]" if result.success else "[red]FAILED[/]"
    console.print(f"Result: {status}")

    return buf.getvalue().rstrip("\n")


def format_json(result: ValidationResult) -> str:
    """Format a ValidationResult as indented JSON (stable key order)."""
    return json.dumps(result.to_dict(), indent=2)


def format_plan(plan: RunPlan) -> str:
    """Render a dry-run plan as plain text."""
    lines: list[str] = ["=== DRY RUN ===", "Validators to run:"]
    for idx, vp in enumerate(plan.validators, start=1):
        lines.append(f"  {idx}. {vp.name} ({vp.kind}) - {len(vp.files)} file(s)")
        for rule, operator in zip(vp.rules, vp.operators):
            suffix = "" if rule == operator else f" [{operator}]"
            lines.append(f"       - {rule}{suffix}")
    lines.append("")
    lines.append(f"Files to validate: {len(plan.files)}")
    lines.append("")
    lines.append("Configuration:")
    lines.append(f"  File patterns: {', '.join(plan.options.globs)}")
    lines.append(f"  Confidence threshold: {plan.options.confidence_threshold}")
    lines.append(f"  Apply overrides: {plan.options.apply_overrides}")
    lines.append(f"  Fail fast: {plan.options.fail_fast}")
    lines.append(f"  Fail on: {plan.options.fail_on.value}")
    return "\n".join(lines)


def format_override_stats(stats: OverrideStatistics, registry: OverrideRegistry) -> str:
    """Render override statistics and the most recent entries."""
    lines: list[str] = [
        "Override statistics",
        f"Total overrides: {stats.total}",
        f"Recent additions (last 7 days): {stats.recent}",
    ]
    if stats.by_rule:
        lines.append("By rule:")
        lines.extend(f"  - {rule}: {count}" for rule, count in stats.by_rule.items())
    if stats.by_status:
        lines.append("By status:")
        lines.extend(f"  - {status}: {count}" for status, count in stats.by_status.items())
    recent = registry.entries()[-3:]
    if recent:
        lines.append("Recent overrides:")
        for override in recent:
            lines.append(
                f"  - {override.rule} in {override.file_path} ({override.status.value})"
            )
            lines.append(f"    Reason: {override.reason}")
    return "\n".join(lines)
