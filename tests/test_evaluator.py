"""Tests for valence.engine.evaluator: per-rule evaluation and failure localization."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

import pytest

from valence.engine.definitions import BuiltinRule, PluginRule, Validator, ValidatorKind
from valence.engine.evaluator import OutcomeStatus, RuleEvaluator
from valence.engine.operators import OperatorRegistry, RuleContext

if TYPE_CHECKING:
    from collections.abc import Callable
    from pathlib import Path


def _plugin(name: str, **config: Any) -> PluginRule:
    return PluginRule(plugin=name, config={"plugin": name, **config})


def _validator(
    *rules: BuiltinRule | PluginRule, kind: ValidatorKind = ValidatorKind.CONTENT
) -> Validator:
    return Validator(name="v", kind=kind, rules=rules)


@pytest.fixture()
def calls() -> list[tuple[Any, str | None]]:
    return []


@pytest.fixture()
def registry(calls: list[tuple[Any, str | None]]) -> OperatorRegistry:
    """Registry with recording, exploding and async operators."""
    registry = OperatorRegistry()

    def record(content: Any, rule: dict[str, Any], context: RuleContext) -> dict[str, Any]:
        calls.append((content, context.file_path))
        return {"passed": True}

    def explode(content: Any, rule: dict[str, Any], context: RuleContext) -> bool:
        msg = "kaput"
        raise RuntimeError(msg)

    async def slow(content: Any, rule: dict[str, Any], context: RuleContext) -> dict[str, Any]:
        return {"passed": False, "message": "async says no", "confidence": 0.5}

    def garbage(content: Any, rule: dict[str, Any], context: RuleContext) -> int:
        return 42

    registry.register("record", record)
    registry.register("explode", explode)
    registry.register("slow", slow)
    registry.register("garbage", garbage)
    return registry


class TestContentValidators:
    def test_reads_each_file_once_and_orders_output(
        self,
        tmp_project: Path,
        write_file: Callable[[str, str], Path],
        registry: OperatorRegistry,
        calls: list[tuple[Any, str | None]],
    ) -> None:
        write_file("b.js", "B")
        write_file("a.js", "A")
        evaluator = RuleEvaluator(registry, root=tmp_project)
        outcomes = evaluator.evaluate_validator(
            _validator(_plugin("record"), _plugin("record", id="again")), ["b.js", "a.js"]
        )
        assert [(o.file_path, o.rule_id) for o in outcomes] == [
            ("a.js", "record"),
            ("a.js", "again"),
            ("b.js", "record"),
            ("b.js", "again"),
        ]
        assert calls == [("A", "a.js"), ("A", "a.js"), ("B", "b.js"), ("B", "b.js")]
        assert all(o.status is OutcomeStatus.PASSED for o in outcomes)

    def test_builtin_failure(
        self, tmp_project: Path, write_file: Callable[[str, str], Path], registry: OperatorRegistry
    ) -> None:
        write_file("a.js", "nothing here")
        rule = BuiltinRule(operator="mustContain", value="name", message="needs name")
        outcome = RuleEvaluator(registry, root=tmp_project).evaluate_validator(
            _validator(rule), ["a.js"]
        )[0]
        assert outcome.status is OutcomeStatus.FAILED
        assert outcome.outcome.message == "needs name"

    def test_unreadable_file_errors_every_rule(
        self, tmp_project: Path, write_file: Callable[[str, str], Path], registry: OperatorRegistry
    ) -> None:
        (tmp_project / "bin.dat").write_bytes(b"\xff\xfe\x00\x81")
        write_file("ok.js", "fine")
        outcomes = RuleEvaluator(registry, root=tmp_project).evaluate_validator(
            _validator(_plugin("record"), _plugin("record", id="second")),
            ["bin.dat", "ok.js"],
        )
        errored = [o for o in outcomes if o.errored]
        assert [(o.file_path, o.rule_id) for o in errored] == [
            ("bin.dat", "record"),
            ("bin.dat", "second"),
        ]
        assert errored[0].outcome.message.startswith("Error reading file:")
        assert [o.status for o in outcomes if o.file_path == "ok.js"] == [
            OutcomeStatus.PASSED,
            OutcomeStatus.PASSED,
        ]

    def test_missing_file_is_errored(self, tmp_project: Path, registry: OperatorRegistry) -> None:
        outcomes = RuleEvaluator(registry, root=tmp_project).evaluate_validator(
            _validator(_plugin("record")), ["gone.js"]
        )
        assert outcomes[0].status is OutcomeStatus.ERRORED


class TestOtherKinds:
    def test_naming_passes_base_name(
        self,
        tmp_project: Path,
        registry: OperatorRegistry,
        calls: list[tuple[Any, str | None]],
    ) -> None:
        # Naming validators never read content, so the file need not exist.
        RuleEvaluator(registry, root=tmp_project).evaluate_validator(
            _validator(_plugin("record"), kind=ValidatorKind.NAMING), ["src/deep/Widget.tsx"]
        )
        assert calls == [("Widget.tsx", "src/deep/Widget.tsx")]

    def test_structure_gets_whole_list_once_per_rule(
        self,
        tmp_project: Path,
        registry: OperatorRegistry,
        calls: list[tuple[Any, str | None]],
    ) -> None:
        outcomes = RuleEvaluator(registry, root=tmp_project).evaluate_validator(
            _validator(_plugin("record"), kind=ValidatorKind.STRUCTURE), ["b/x.js", "a/y.js"]
        )
        assert len(outcomes) == 1
        assert outcomes[0].file_path is None
        assert calls == [(["a/y.js", "b/x.js"], None)]


class TestFailureLocalization:
    def test_unknown_plugin_is_failed_not_raised(
        self, tmp_project: Path, write_file: Callable[[str, str], Path], registry: OperatorRegistry
    ) -> None:
        write_file("a.js", "x")
        outcomes = RuleEvaluator(registry, root=tmp_project).evaluate_validator(
            _validator(_plugin("doesNotExist"), _plugin("record")), ["a.js"]
        )
        assert outcomes[0].status is OutcomeStatus.FAILED
        assert "Plugin 'doesNotExist' not found" in outcomes[0].outcome.message
        assert outcomes[1].status is OutcomeStatus.PASSED

    def test_operator_exception_is_errored(
        self, tmp_project: Path, write_file: Callable[[str, str], Path], registry: OperatorRegistry
    ) -> None:
        write_file("a.js", "x")
        outcomes = RuleEvaluator(registry, root=tmp_project).evaluate_validator(
            _validator(_plugin("explode"), _plugin("record")), ["a.js"]
        )
        assert outcomes[0].errored
        assert outcomes[0].outcome.message == "Evaluation error in explode: RuntimeError: kaput"
        assert outcomes[1].passed

    def test_bad_return_type_is_errored(
        self, tmp_project: Path, write_file: Callable[[str, str], Path], registry: OperatorRegistry
    ) -> None:
        write_file("a.js", "x")
        outcome = RuleEvaluator(registry, root=tmp_project).evaluate_validator(
            _validator(_plugin("garbage")), ["a.js"]
        )[0]
        assert outcome.errored
        assert "TypeError" in outcome.outcome.message

    def test_async_operator_is_awaited(
        self, tmp_project: Path, write_file: Callable[[str, str], Path], registry: OperatorRegistry
    ) -> None:
        write_file("a.js", "x")
        outcome = RuleEvaluator(registry, root=tmp_project).evaluate_validator(
            _validator(_plugin("slow")), ["a.js"]
        )[0]
        assert outcome.status is OutcomeStatus.FAILED
        assert outcome.outcome.message == "async says no"
        assert outcome.outcome.confidence == 0.5
