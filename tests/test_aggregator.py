"""Tests for valence.engine.aggregator: report lines and run summary counters."""

from __future__ import annotations

from dataclasses import replace

from valence.engine.aggregator import (
    NO_FILES_MESSAGE,
    PASSED_MESSAGE,
    ValidatorRun,
    aggregate,
    is_failing,
    summarize_validator,
)
from valence.engine.confidence import Severity, Violation, compute_fingerprint
from valence.engine.definitions import BuiltinRule, ValidationLevels, Validator, ValidatorKind
from valence.engine.evaluator import OutcomeStatus, RuleOutcome
from valence.engine.operators import Outcome


def _validator(name: str = "v") -> Validator:
    return Validator(
        name=name,
        kind=ValidatorKind.CONTENT,
        rules=(BuiltinRule(operator="mustContain", value="x"),),
    )


def _violation(
    validator: str = "v",
    *,
    severity: Severity = Severity.ERROR,
    confidence: float = 1.0,
    suppressed: bool = False,
    file_path: str = "a.js",
) -> Violation:
    violation = Violation(
        validator=validator,
        rule="mustContain",
        file_path=file_path,
        message="m",
        fingerprint=compute_fingerprint(validator, "mustContain", file_path),
        confidence=confidence,
        severity=severity,
    )
    if suppressed:
        violation = violation.with_override("false_positive", "ok")
    return violation


def _run(
    name: str = "v",
    *,
    files: list[str] | None = None,
    violations: list[Violation] | None = None,
    errored: int = 0,
) -> ValidatorRun:
    validator = _validator(name)
    files = ["a.js"] if files is None else files
    outcomes = [
        RuleOutcome(
            validator=name,
            rule=validator.rules[0],
            file_path="a.js",
            status=OutcomeStatus.ERRORED,
            outcome=Outcome(passed=False, message="Evaluation error"),
        )
        for _ in range(errored)
    ]
    return ValidatorRun(
        validator=validator, files=files, outcomes=outcomes, violations=violations or []
    )


class TestIsFailing:
    def test_default_error_threshold(self) -> None:
        assert is_failing(_violation())
        assert not is_failing(_violation(severity=Severity.WARNING))
        assert not is_failing(_violation(suppressed=True))

    def test_fail_on_warning(self) -> None:
        assert is_failing(_violation(severity=Severity.WARNING), Severity.WARNING)
        assert not is_failing(_violation(severity=Severity.INFO), Severity.WARNING)


class TestSummarizeValidator:
    def test_no_files_matched_passes(self) -> None:
        report = summarize_validator(_run(files=[]))
        assert report.passed is True
        assert report.message == NO_FILES_MESSAGE
        assert report.files_checked == 0

    def test_clean_run(self) -> None:
        report = summarize_validator(_run())
        assert report.passed is True
        assert report.message == PASSED_MESSAGE

    def test_failing_run(self) -> None:
        report = summarize_validator(_run(violations=[_violation(), _violation(file_path="b.js")]))
        assert report.passed is False
        assert report.violation_count == 2
        assert report.message == "2 violation(s) found"

    def test_warnings_alone_do_not_fail(self) -> None:
        report = summarize_validator(_run(violations=[_violation(severity=Severity.WARNING)]))
        assert report.passed is True
        assert report.violation_count == 1

    def test_suppressed_not_counted(self) -> None:
        report = summarize_validator(_run(violations=[_violation(suppressed=True)]))
        assert report.passed is True
        assert report.violation_count == 0

    def test_errored_outcomes_counted(self) -> None:
        assert summarize_validator(_run(errored=2)).errored_count == 2


class TestAggregate:
    def test_summary_counters(self) -> None:
        first = _run("a", violations=[_violation("a"), _violation("a", suppressed=True)])
        first.overrides_applied = 1
        first.filtered_count = 2
        second = _run(
            "b", violations=[_violation("b", severity=Severity.WARNING, confidence=0.75)]
        )
        third = _run("c", files=[])

        result = aggregate([first, second, third], total_files=5)
        s = result.summary
        assert s.total_validators == 3
        assert s.total_files == 5
        assert s.passed_count == 2
        assert s.validators_failed == 1
        assert s.failed_count == 1
        assert s.warning_count == 1
        assert s.override_applied_count == 1
        assert s.filtered_by_confidence_count == 2
        assert s.by_confidence == {"high": 1, "medium": 1, "low": 0}
        assert result.success is False
        assert len(result.violations) == 3  # suppressed kept

    def test_success_when_only_suppressed(self) -> None:
        result = aggregate([_run(violations=[_violation(suppressed=True)])], total_files=1)
        assert result.success is True
        assert result.passed is True
        assert result.violations[0].suppressed is True

    def test_fail_on_warning(self) -> None:
        run = _run(violations=[_violation(severity=Severity.WARNING)])
        result = aggregate([run], total_files=1, fail_on=Severity.WARNING)
        assert result.summary.failed_count == 1
        assert result.success is False

    def test_levels_bucketing(self) -> None:
        levels = ValidationLevels(critical=("a",), recommended=("b",))
        result = aggregate(
            [_run("a", violations=[_violation("a")]), _run("b")],
            total_files=1,
            levels=levels,
        )
        assert result.reports[0].level == "critical"
        assert result.levels == {
            "critical": {"validators": ["a"], "passed": 0, "failed": 1},
            "recommended": {"validators": ["b"], "passed": 1, "failed": 0},
        }

    def test_levels_keyed_on_load_identifier(self) -> None:
        run = _run("Mount call safety")
        run.validator = replace(run.validator, identifier="CIA/mount-call-safety")
        levels = ValidationLevels(important=("CIA/mount-call-safety",))
        result = aggregate([run], total_files=1, levels=levels)
        assert result.reports[0].level == "important"
        assert result.levels["important"]["validators"] == ["Mount call safety"]

    def test_matched_lines_reported(self) -> None:
        run = _run()
        run.outcomes = [
            RuleOutcome(
                validator="v",
                rule=run.validator.rules[0],
                file_path="a.js",
                status=OutcomeStatus.PASSED,
                outcome=Outcome(passed=True, lines=(3, 8)),
            )
        ]
        report = summarize_validator(run)
        assert report.to_dict()["matches"] == [
            {"rule": "mustContain", "file_path": "a.js", "lines": [3, 8]}
        ]

    def test_to_dict_has_no_timestamps(self) -> None:
        data = aggregate([_run()], total_files=1).to_dict()
        assert set(data) == {
            "success",
            "fail_on",
            "stopped_early",
            "summary",
            "validators",
            "levels",
            "violations",
        }
