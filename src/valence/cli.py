"""Valence CLI entry point."""

from __future__ import annotations

import getpass
import json
import logging
import sys
from pathlib import Path
from typing import TYPE_CHECKING

import click

from valence import __version__
from valence.errors import ConfigError, LoadError, OverrideFileError

if TYPE_CHECKING:
    from valence.infrastructure.config import ValenceConfig
    from valence.infrastructure.overrides import OverrideRegistry

_LOG_FORMAT = "%(levelname)s %(name)s: %(message)s"


@click.group()
@click.version_option(version=__version__, prog_name="valence")
@click.option("--verbose", "-v", is_flag=True, help="Verbose output (debug logging, warnings).")
@click.option("--quiet", "-q", is_flag=True, help="Minimal output (errors only).")
@click.pass_context
def main(ctx: click.Context, *, verbose: bool, quiet: bool) -> None:
    """Valence - declarative, pluggable architecture validation."""
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose
    ctx.obj["quiet"] = quiet
    level = logging.DEBUG if verbose else logging.ERROR if quiet else logging.WARNING
    logging.basicConfig(level=level, format=_LOG_FORMAT)


_project_option = click.option(
    "--project",
    type=click.Path(exists=True, file_okay=False, path_type=Path),
    default=None,
    help="Project root (default: current directory).",
)


def _load_config_or_exit(project_root: Path) -> ValenceConfig:
    from valence.infrastructure.config import load_config

    try:
        return load_config(project_root)
    except ConfigError as exc:
        click.echo(f"Error: {exc}", err=True)
        sys.exit(2)


# ---------------------------------------------------------------------------
# validate
# ---------------------------------------------------------------------------


@main.command()
@click.option("--profile", "-p", default=None, help="Run the validators of a profile.")
@click.option(
    "--validator",
    "-V",
    "validator_names",
    multiple=True,
    help="Validator to run (repeatable).",
)
@click.option(
    "--files",
    "-f",
    "globs",
    multiple=True,
    help="Glob pattern of files to validate (repeatable, default: **/*).",
)
@click.option("--dry-run", is_flag=True, help="Resolve files and rules without evaluating.")
@click.option(
    "--format",
    "fmt",
    type=click.Choice(["table", "json"]),
    default="table",
    help="Output format.",
)
@click.option(
    "--confidence-threshold",
    type=click.FloatRange(0.0, 1.0),
    default=None,
    help="Drop violations below this confidence (0.0-1.0).",
)
@click.option(
    "--apply-overrides/--no-apply-overrides",
    default=True,
    help="Suppress violations recorded in the override file.",
)
@click.option("--show-overrides", is_flag=True, help="Print override statistics.")
@click.option("--fail-fast", is_flag=True, help="Stop after the first failing validator.")
@click.option(
    "--warnings",
    "show_warnings",
    is_flag=True,
    help="Report operator warnings as warning-severity violations.",
)
@_project_option
@click.pass_context
def validate(
    ctx: click.Context,
    *,
    profile: str | None,
    validator_names: tuple[str, ...],
    globs: tuple[str, ...],
    dry_run: bool,
    fmt: str,
    confidence_threshold: float | None,
    apply_overrides: bool,
    show_overrides: bool,
    fail_fast: bool,
    show_warnings: bool,
    project: Path | None,
) -> None:
    """Run validators against project files.

    Exit codes: 0 = passed, 1 = failing violations,
    2 = load or configuration error.
    """
    from valence.engine.definitions import DefinitionStore
    from valence.engine.operators import OperatorRegistry
    from valence.engine.runner import (
        RunOptions,
        format_json,
        format_override_stats,
        format_plan,
        format_table,
        plan_run,
        run_validation,
        select_validators,
    )
    from valence.infrastructure.overrides import OverrideRegistry

    project_root = project or Path.cwd()
    config = _load_config_or_exit(project_root)

    if not profile and not validator_names:
        click.echo("Error: specify --profile or --validator", err=True)
        sys.exit(2)

    store = DefinitionStore(
        config.definitions_root(project_root),
        validators_dir=config.validators_dir,
        profiles_dir=config.profiles_dir,
    )
    overrides = OverrideRegistry(config.override_path(project_root))

    try:
        selection = select_validators(store, profile=profile, validators=validator_names)
        overrides.load()
    except (LoadError, OverrideFileError, ValueError) as exc:
        click.echo(f"Error: {exc}", err=True)
        sys.exit(2)

    profile_config = selection.profile.configuration if selection.profile else None
    options = RunOptions(
        globs=globs or ("**/*",),
        confidence_threshold=(
            confidence_threshold
            if confidence_threshold is not None
            else config.confidence_threshold
        ),
        apply_overrides=apply_overrides,
        verbose=show_warnings
        or bool(ctx.obj.get("verbose"))
        or bool(profile_config and profile_config.verbose),
        fail_fast=fail_fast or bool(profile_config and profile_config.fail_fast),
        fail_on=config.fail_on,
        ignore=config.ignore,
    )

    if not ctx.obj.get("quiet") and fmt == "table":
        if selection.profile is not None:
            click.echo(
                f"Loaded profile: {selection.profile.name} "
                f"({len(selection.validators)} validators)"
            )
        else:
            click.echo(f"Loaded {len(selection.validators)} validator(s)")

    try:
        if dry_run:
            plan = plan_run(selection.validators, root=project_root, options=options)
            if fmt == "json":
                click.echo(json.dumps(plan.to_dict(), indent=2))
            else:
                click.echo(format_plan(plan))
            return

        registry = OperatorRegistry(config.plugin_paths(project_root))
        result = run_validation(
            selection.validators,
            root=project_root,
            registry=registry,
            options=options,
            overrides=overrides,
            levels=selection.levels,
        )
    except LoadError as exc:
        click.echo(f"Error: {exc}", err=True)
        sys.exit(2)

    if fmt == "json":
        click.echo(format_json(result))
    else:
        click.echo(format_table(result, color=sys.stdout.isatty()))

    if show_overrides:
        click.echo("")
        click.echo(format_override_stats(overrides.statistics(), overrides))

    if not result.success:
        sys.exit(1)


# ---------------------------------------------------------------------------
# list
# ---------------------------------------------------------------------------


@main.command("list")
@click.option("--json", "output_json", is_flag=True, help="Output as JSON.")
@_project_option
def list_cmd(*, output_json: bool, project: Path | None) -> None:
    """List available validators and profiles."""
    from valence.engine.definitions import DefinitionStore

    project_root = project or Path.cwd()
    config = _load_config_or_exit(project_root)
    store = DefinitionStore(
        config.definitions_root(project_root),
        validators_dir=config.validators_dir,
        profiles_dir=config.profiles_dir,
    )
    validators = store.list_validators()
    profiles = store.list_profiles()

    if output_json:
        click.echo(json.dumps({"validators": validators, "profiles": profiles}, indent=2))
        return

    click.echo(f"Validators ({len(validators)}):")
    for name in validators:
        click.echo(f"  {name}")
    click.echo(f"Profiles ({len(profiles)}):")
    for name in profiles:
        click.echo(f"  {name}")


# ---------------------------------------------------------------------------
# override
# ---------------------------------------------------------------------------


@main.group()
def override() -> None:
    """Manage false-positive / accepted violation overrides."""


def _open_overrides(project: Path | None) -> OverrideRegistry:
    from valence.infrastructure.overrides import OverrideRegistry

    project_root = project or Path.cwd()
    config = _load_config_or_exit(project_root)
    registry = OverrideRegistry(config.override_path(project_root))
    try:
        registry.load()
    except OverrideFileError as exc:
        click.echo(f"Error: {exc}", err=True)
        sys.exit(2)
    return registry


@override.command("add")
@click.option("--validator", "validator_name", required=True, help="Validator identifier.")
@click.option("--rule", required=True, help="Rule id (or operator/plugin name).")
@click.option("--file", "file_path", required=True, help="File path as reported.")
@click.option("--reason", required=True, help="Why the violation is overridden.")
@click.option(
    "--status",
    type=click.Choice(["false_positive", "accepted"]),
    default="false_positive",
    help="Override status.",
)
@click.option("--author", default=None, help="Who adds the override (default: current user).")
@_project_option
def override_add(
    *,
    validator_name: str,
    rule: str,
    file_path: str,
    reason: str,
    status: str,
    author: str | None,
    project: Path | None,
) -> None:
    """Record an override for a (validator, rule, file) fingerprint."""
    from valence.infrastructure.overrides import OverrideStatus

    registry = _open_overrides(project)
    entry = registry.add(
        validator_name,
        rule,
        file_path,
        reason=reason,
        added_by=author or getpass.getuser(),
        status=OverrideStatus(status),
    )
    click.echo(f"Override created with key: {entry.fingerprint}")
    click.echo(f"  Rule: {entry.rule}")
    click.echo(f"  File: {entry.file_path}")
    click.echo(f"  Reason: {entry.reason}")


@override.command("remove")
@click.argument("fingerprint")
@_project_option
def override_remove(*, fingerprint: str, project: Path | None) -> None:
    """Delete the override stored under FINGERPRINT."""
    registry = _open_overrides(project)
    if not registry.remove(fingerprint):
        click.echo(f"Error: no override with key {fingerprint}", err=True)
        sys.exit(1)
    click.echo(f"Removed override {fingerprint}")


@override.command("list")
@click.option("--json", "output_json", is_flag=True, help="Output as JSON.")
@_project_option
def override_list(*, output_json: bool, project: Path | None) -> None:
    """Show stored overrides."""
    registry = _open_overrides(project)
    entries = registry.entries()

    if output_json:
        data = {e.fingerprint: e.to_dict() for e in entries}
        click.echo(json.dumps(data, indent=2))
        return

    if not entries:
        click.echo("No overrides.")
        return
    for entry in entries:
        status = entry.status.value
        click.echo(f"{entry.fingerprint}  {status:<14}  {entry.rule}  {entry.file_path}")
        click.echo(f"    {entry.reason} ({entry.added_by}, {entry.timestamp})")


@override.command("export")
@click.option(
    "--output",
    "-o",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="Write the snapshot to a file instead of stdout.",
)
@_project_option
def override_export(*, output: Path | None, project: Path | None) -> None:
    """Export all overrides as a JSON snapshot."""
    registry = _open_overrides(project)
    text = json.dumps(registry.export(), indent=2)
    if output is None:
        click.echo(text)
        return
    output.write_text(text + "\n", encoding="utf-8")
    click.echo(f"Exported {len(registry)} override(s) to {output}")


@override.command("import")
@click.argument("source", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option(
    "--replace",
    "replace_all",
    is_flag=True,
    help="Clear existing overrides before importing.",
)
@_project_option
def override_import(*, source: Path, replace_all: bool, project: Path | None) -> None:
    """Import overrides from a snapshot written by ``override export``."""
    registry = _open_overrides(project)
    try:
        data = json.loads(source.read_text(encoding="utf-8"))
        total = registry.import_(data, merge=not replace_all)
    except (OSError, UnicodeDecodeError, json.JSONDecodeError, OverrideFileError) as exc:
        click.echo(f"Error: {exc}", err=True)
        sys.exit(2)
    click.echo(f"Imported overrides from {source}; {total} override(s) stored.")
