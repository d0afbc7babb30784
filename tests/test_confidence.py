"""Tests for valence.engine.confidence: severity, fingerprints, confidence filtering."""

from __future__ import annotations

import hashlib

import pytest

from valence.engine.confidence import (
    Severity,
    Violation,
    clamp_confidence,
    compute_fingerprint,
    filter_by_confidence,
    violations_from_outcome,
)
from valence.engine.definitions import BuiltinRule, PluginRule
from valence.engine.evaluator import OutcomeStatus, RuleOutcome
from valence.engine.operators import Finding, Outcome


def _violation(confidence: float = 1.0, **kwargs: object) -> Violation:
    defaults: dict[str, object] = {
        "validator": "v",
        "rule": "r",
        "file_path": "src/a.js",
        "message": "boom",
        "fingerprint": compute_fingerprint("v", "r", "src/a.js"),
        "confidence": confidence,
    }
    defaults.update(kwargs)
    return Violation(**defaults)  # type: ignore[arg-type]


def _outcome(
    outcome: Outcome,
    *,
    rule: BuiltinRule | PluginRule | None = None,
    status: OutcomeStatus | None = None,
    file_path: str | None = "src/a.js",
) -> RuleOutcome:
    rule = rule or BuiltinRule(operator="mustContain", value="x", message="needs x")
    if status is None:
        status = OutcomeStatus.PASSED if outcome.passed else OutcomeStatus.FAILED
    return RuleOutcome(
        validator="v", rule=rule, file_path=file_path, status=status, outcome=outcome
    )


# ---------------------------------------------------------------------------
# Severity
# ---------------------------------------------------------------------------


class TestSeverity:
    def test_rank_order(self) -> None:
        assert Severity.INFO.rank < Severity.WARNING.rank < Severity.ERROR.rank

    @pytest.mark.parametrize(
        ("label", "expected"),
        [
            ("critical", Severity.ERROR),
            ("HIGH", Severity.ERROR),
            ("warn", Severity.WARNING),
            ("medium", Severity.WARNING),
            ("low", Severity.INFO),
            ("info", Severity.INFO),
        ],
    )
    def test_parse_aliases(self, label: str, expected: Severity) -> None:
        assert Severity.parse(label) is expected

    def test_parse_unknown_uses_default(self) -> None:
        assert Severity.parse("bogus") is Severity.ERROR
        assert Severity.parse("bogus", default=Severity.INFO) is Severity.INFO
        assert Severity.parse(None, default=Severity.WARNING) is Severity.WARNING


# ---------------------------------------------------------------------------
# clamp_confidence
# ---------------------------------------------------------------------------


class TestClampConfidence:
    @pytest.mark.parametrize(
        ("raw", "expected"),
        [
            (None, 1.0),
            (0.85, 0.85),
            (1.7, 1.0),
            (-0.3, 0.0),
            ("0.5", 0.5),
            ("high", 1.0),
            (True, 1.0),
            (float("nan"), 1.0),
        ],
    )
    def test_clamp(self, raw: object, expected: float) -> None:
        assert clamp_confidence(raw) == expected


# ---------------------------------------------------------------------------
# Fingerprints
# ---------------------------------------------------------------------------


class TestFingerprint:
    def test_matches_sha256_prefix(self) -> None:
        expected = hashlib.sha256(b"v|r|src/a.js").hexdigest()[:16]
        assert compute_fingerprint("v", "r", "src/a.js") == expected

    def test_path_is_normalized(self) -> None:
        fp = compute_fingerprint("v", "r", "src/a.js")
        assert compute_fingerprint("v", "r", "./src/a.js") == fp
        assert compute_fingerprint("v", "r", "src\\a.js") == fp

    def test_differs_by_rule_and_file(self) -> None:
        fp = compute_fingerprint("v", "r", "src/a.js")
        assert compute_fingerprint("v", "other", "src/a.js") != fp
        assert compute_fingerprint("v", "r", "src/b.js") != fp

    def test_message_and_line_do_not_participate(self) -> None:
        first = violations_from_outcome(
            _outcome(Outcome(passed=False, message="one", line=3))
        )[0]
        second = violations_from_outcome(
            _outcome(Outcome(passed=False, message="two", line=9))
        )[0]
        assert first.fingerprint == second.fingerprint

    def test_structure_rule_without_path(self) -> None:
        assert compute_fingerprint("v", "r", None) == compute_fingerprint("v", "r", "")


# ---------------------------------------------------------------------------
# violations_from_outcome
# ---------------------------------------------------------------------------


class TestViolationsFromOutcome:
    def test_passed_outcome_yields_nothing(self) -> None:
        assert violations_from_outcome(_outcome(Outcome(passed=True))) == []

    def test_failed_outcome_uses_rule_message_fallback(self) -> None:
        violations = violations_from_outcome(_outcome(Outcome(passed=False)))
        assert len(violations) == 1
        v = violations[0]
        assert v.message == "needs x"
        assert v.rule == "mustContain"
        assert v.severity is Severity.ERROR
        assert v.confidence == 1.0

    def test_rule_severity_and_id_carry_over(self) -> None:
        rule = BuiltinRule(
            operator="mustContain", value="x", severity=Severity.WARNING, id="needs-x"
        )
        v = violations_from_outcome(_outcome(Outcome(passed=False), rule=rule))[0]
        assert v.severity is Severity.WARNING
        assert v.rule == "needs-x"

    def test_errored_outcome_is_error_severity(self) -> None:
        rule = BuiltinRule(operator="mustContain", value="x", severity=Severity.INFO)
        v = violations_from_outcome(
            _outcome(
                Outcome(passed=False, message="Evaluation error"),
                rule=rule,
                status=OutcomeStatus.ERRORED,
            )
        )[0]
        assert v.severity is Severity.ERROR

    def test_out_of_range_confidence_is_clamped(self) -> None:
        v = violations_from_outcome(_outcome(Outcome(passed=False, confidence=4.2)))[0]
        assert v.confidence == 1.0

    def test_one_violation_per_finding(self) -> None:
        rule = PluginRule(plugin="checkMounts", config={"plugin": "checkMounts"})
        outcome = Outcome(
            passed=False,
            confidence=0.8,
            findings=(
                Finding(message="first", line=2, code="mount()"),
                Finding(message="second", line=7, severity="warning", confidence=0.4),
            ),
        )
        violations = violations_from_outcome(_outcome(outcome, rule=rule))
        assert [v.message for v in violations] == ["first", "second"]
        assert [v.line for v in violations] == [2, 7]
        assert violations[0].confidence == 0.8
        assert violations[0].code == "mount()"
        assert violations[1].confidence == 0.4
        assert violations[1].severity is Severity.WARNING

    def test_finding_file_path_overrides_outcome_path(self) -> None:
        outcome = Outcome(passed=False, findings=(Finding(message="m", file_path="pkg"),))
        v = violations_from_outcome(_outcome(outcome, file_path=None))[0]
        assert v.file_path == "pkg"
        assert v.fingerprint == compute_fingerprint("v", "mustContain", "pkg")

    def test_warnings_only_in_verbose_mode(self) -> None:
        outcome = _outcome(Outcome(passed=True, warnings=("deprecated api",)))
        assert violations_from_outcome(outcome) == []
        verbose = violations_from_outcome(outcome, verbose=True)
        assert len(verbose) == 1
        assert verbose[0].severity is Severity.WARNING
        assert verbose[0].message == "deprecated api"


# ---------------------------------------------------------------------------
# Violation / filtering
# ---------------------------------------------------------------------------


class TestViolation:
    @pytest.mark.parametrize(
        ("confidence", "band"),
        [(1.0, "high"), (0.9, "high"), (0.75, "medium"), (0.7, "medium"), (0.2, "low")],
    )
    def test_band(self, confidence: float, band: str) -> None:
        assert _violation(confidence).band == band

    def test_with_override_returns_suppressed_copy(self) -> None:
        original = _violation()
        flagged = original.with_override("false_positive", "generated file")
        assert flagged.suppressed is True
        assert flagged.override_status == "false_positive"
        assert original.suppressed is False
        assert flagged.fingerprint == original.fingerprint

    def test_to_dict(self) -> None:
        data = _violation(0.5, line=4).to_dict()
        assert data["severity"] == "error"
        assert data["confidence"] == 0.5
        assert data["line"] == 4
        assert data["suppressed"] is False


class TestFilterByConfidence:
    def test_strictly_below_threshold_is_dropped(self) -> None:
        violations = [_violation(0.85), _violation(0.9), _violation(0.95)]
        kept, filtered = filter_by_confidence(violations, 0.9)
        assert [v.confidence for v in kept] == [0.9, 0.95]
        assert filtered == 1

    def test_zero_threshold_keeps_everything(self) -> None:
        violations = [_violation(0.0), _violation(0.3)]
        kept, filtered = filter_by_confidence(violations, 0.0)
        assert kept == violations
        assert filtered == 0
