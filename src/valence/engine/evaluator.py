"""Rule evaluator: run every rule of a validator against its candidate files."""

from __future__ import annotations

import asyncio
import enum
import inspect
import logging
from dataclasses import dataclass
from pathlib import Path, PurePosixPath
from typing import TYPE_CHECKING, Any

from valence.engine.definitions import ValidatorKind
from valence.engine.operators import Outcome, RuleContext
from valence.errors import ResolutionError

if TYPE_CHECKING:
    from collections.abc import Awaitable, Iterable

    from valence.engine.definitions import Rule, Validator
    from valence.engine.operators import OperatorRegistry

logger = logging.getLogger(__name__)


class OutcomeStatus(enum.Enum):
    """Lifecycle of one (validator, file, rule) evaluation.

    ``PENDING -> EVALUATING -> {PASSED, FAILED, ERRORED}``
    """

    PENDING = "pending"
    EVALUATING = "evaluating"
    PASSED = "passed"
    FAILED = "failed"
    ERRORED = "errored"


@dataclass(frozen=True)
class RuleOutcome:
    """Terminal state of one rule evaluation."""

    validator: str
    rule: Rule
    file_path: str | None  # None for structure rules
    status: OutcomeStatus
    outcome: Outcome

    @property
    def rule_id(self) -> str:
        return self.rule.rule_id

    @property
    def passed(self) -> bool:
        return self.status is OutcomeStatus.PASSED

    @property
    def errored(self) -> bool:
        return self.status is OutcomeStatus.ERRORED


def _drive(awaitable: Awaitable[Any]) -> Any:
    """Run an awaitable returned by an async operator to completion."""

    async def _await() -> Any:
        return await awaitable

    return asyncio.run(_await())


class RuleEvaluator:
    """Evaluates validators sequentially in deterministic order.

    Files are visited in sorted path order and rules in definition order.
    Content is read once per file and shared by all of the validator's
    rules. Any failure that concerns a single rule or file (unknown plugin,
    operator exception, unreadable file) is converted into an outcome and
    never stops sibling rules or files.
    """

    def __init__(
        self,
        registry: OperatorRegistry,
        *,
        root: Path,
        verbose: bool = False,
    ) -> None:
        self.registry = registry
        self.root = root
        self.verbose = verbose

    def evaluate_validator(self, validator: Validator, paths: Iterable[str]) -> list[RuleOutcome]:
        """Evaluate every rule of *validator* against *paths* (already filtered)."""
        ordered = sorted(paths)
        outcomes: list[RuleOutcome] = []

        if validator.kind is ValidatorKind.STRUCTURE:
            for rule in validator.rules:
                outcomes.append(self.evaluate_rule(validator, rule, list(ordered), None))
            return outcomes

        for path in ordered:
            if validator.kind is ValidatorKind.NAMING:
                content: str = PurePosixPath(path).name
            else:
                try:
                    content = (self.root / path).read_text(encoding="utf-8")
                except (OSError, UnicodeDecodeError) as exc:
                    logger.warning("Cannot read file: %s (%s)", path, exc)
                    message = f"Error reading file: {exc}"
                    outcomes.extend(
                        RuleOutcome(
                            validator=validator.name,
                            rule=rule,
                            file_path=path,
                            status=OutcomeStatus.ERRORED,
                            outcome=Outcome(passed=False, message=message),
                        )
                        for rule in validator.rules
                    )
                    continue

            for rule in validator.rules:
                outcomes.append(self.evaluate_rule(validator, rule, content, path))

        return outcomes

    def evaluate_rule(
        self,
        validator: Validator,
        rule: Rule,
        content: str | list[str],
        file_path: str | None,
    ) -> RuleOutcome:
        """Resolve the rule's operator, invoke it, and capture the outcome."""
        context = RuleContext(
            validator=validator.name,
            kind=validator.kind.value,
            root=self.root,
            file_path=file_path,
            verbose=self.verbose,
        )

        try:
            evaluator = self.registry.resolve(rule.operator_name)
        except ResolutionError as exc:
            return RuleOutcome(
                validator=validator.name,
                rule=rule,
                file_path=file_path,
                status=OutcomeStatus.FAILED,
                outcome=Outcome(passed=False, message=str(exc)),
            )

        try:
            raw = evaluator(content, rule.as_config(), context)
            if inspect.isawaitable(raw):
                raw = _drive(raw)
            outcome = Outcome.from_raw(raw)
        except Exception as exc:  # operator boundary: localize to this rule
            logger.debug(
                "Operator %s raised on %s: %s",
                rule.operator_name,
                file_path or validator.name,
                exc,
                exc_info=True,
            )
            return RuleOutcome(
                validator=validator.name,
                rule=rule,
                file_path=file_path,
                status=OutcomeStatus.ERRORED,
                outcome=Outcome(
                    passed=False,
                    message=f"Evaluation error in {rule.operator_name}: "
                    f"{type(exc).__name__}: {exc}",
                ),
            )

        return RuleOutcome(
            validator=validator.name,
            rule=rule,
            file_path=file_path,
            status=OutcomeStatus.PASSED if outcome.passed else OutcomeStatus.FAILED,
            outcome=outcome,
        )
