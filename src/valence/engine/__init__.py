"""Rule evaluation engine: definitions, operators, file resolution, evaluation and aggregation."""

from valence.engine.aggregator import (
    RunSummary,
    ValidationResult,
    ValidatorReport,
    ValidatorRun,
    aggregate,
)
from valence.engine.confidence import (
    Severity,
    Violation,
    clamp_confidence,
    compute_fingerprint,
    filter_by_confidence,
    violations_from_outcome,
)
from valence.engine.definitions import (
    BuiltinRule,
    DefinitionStore,
    PluginRule,
    Profile,
    Rule,
    ValidationLevels,
    Validator,
    ValidatorKind,
    parse_validator,
)
from valence.engine.evaluator import OutcomeStatus, RuleEvaluator, RuleOutcome
from valence.engine.operators import Finding, OperatorRegistry, Outcome, RuleContext
from valence.engine.resolver import filter_for, resolve_files
from valence.engine.runner import (
    RunOptions,
    RunPlan,
    format_json,
    format_plan,
    format_table,
    plan_run,
    run_validation,
    select_validators,
)

__all__ = [
    "BuiltinRule",
    "DefinitionStore",
    "Finding",
    "OperatorRegistry",
    "Outcome",
    "OutcomeStatus",
    "PluginRule",
    "Profile",
    "Rule",
    "RuleContext",
    "RuleEvaluator",
    "RuleOutcome",
    "RunOptions",
    "RunPlan",
    "RunSummary",
    "Severity",
    "ValidationLevels",
    "ValidationResult",
    "Validator",
    "ValidatorKind",
    "ValidatorReport",
    "ValidatorRun",
    "Violation",
    "aggregate",
    "clamp_confidence",
    "compute_fingerprint",
    "filter_by_confidence",
    "filter_for",
    "format_json",
    "format_plan",
    "format_table",
    "parse_validator",
    "plan_run",
    "resolve_files",
    "run_validation",
    "select_validators",
    "violations_from_outcome",
]
