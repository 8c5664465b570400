"""CLI entrypoint for forge."""

from __future__ import annotations

import asyncio
import functools
import json
from pathlib import Path
from typing import Any, Callable

import click
from pydantic import ValidationError as PydanticValidationError
from rich.console import Console
from rich.markup import escape

from forge_cli import __version__
from forge_cli.cli.render import (
    render_confirmation,
    render_execution,
    render_key_checks,
    render_plan,
    render_report,
    render_settings,
    render_validation,
)
from forge_cli.config import ForgeSettings, SettingsValidationError, load_settings, validate_settings
from forge_cli.errors import ForgeError
from forge_cli.llm.backend import GeminiBackend, GenerativeBackend
from forge_cli.logging import Loggers, configure_logging
from forge_cli.pipeline import ExecutionPolicy, Pipeline, StepOutcome
from forge_cli.planning.plan import Step
from forge_cli.planning.plan_store import PlanStore
from forge_cli.safety.models import ValidationResult
from forge_cli.safety.validator import Validator
from forge_cli.settings_persistence import SettingsPersistence

logger = Loggers.cli()

console = Console()
err_console = Console(stderr=True)

BackendFactory = Callable[[ForgeSettings], GenerativeBackend]


def handle_errors(func: Callable[..., Any]) -> Callable[..., Any]:
    """Report project errors as a red message and exit code 1."""

    @functools.wraps(func)
    def wrapper(*args: Any, **kwargs: Any) -> Any:
        try:
            return func(*args, **kwargs)
        except ForgeError as e:
            logger.debug("command_failed", error_type=type(e).__name__, error=str(e))
            err_console.print(f"[bold red]Error:[/bold red] {escape(str(e))}")
            raise SystemExit(1) from e

    return wrapper


def _settings(ctx: click.Context) -> ForgeSettings:
    try:
        settings = load_settings()
    except PydanticValidationError as e:
        raise SettingsValidationError(f"Invalid configuration: {e}") from e
    configure_logging(settings, level="DEBUG" if ctx.obj.get("debug") else None)
    return settings


def _backend(ctx: click.Context, settings: ForgeSettings) -> GenerativeBackend:
    factory: BackendFactory | None = ctx.obj.get("backend_factory")
    if factory is not None:
        return factory(settings)
    validate_settings(settings)
    return GeminiBackend.from_settings(settings)


def _prompt_confirmation(step: Step, result: ValidationResult) -> bool:
    render_confirmation(console, step, result)
    return click.confirm("Run this step?", default=False)


async def _confirm_step(step: Step, result: ValidationResult) -> bool:
    return await asyncio.to_thread(_prompt_confirmation, step, result)


@click.group()
@click.option("--debug", is_flag=True, help="Enable debug logging")
@click.version_option(__version__, prog_name="forge")
@click.pass_context
def main(ctx: click.Context, debug: bool) -> None:
    """Forge: turn requests into validated, sandboxed shell plans."""
    ctx.ensure_object(dict)
    ctx.obj["debug"] = debug


@main.command("plan")
@click.argument("query", nargs=-1, required=True)
@click.option(
    "--output", "-o",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="Save the validated plan to this file",
)
@click.option("--json", "as_json", is_flag=True, help="Print plan and verdicts as JSON")
@click.pass_context
@handle_errors
def plan_command(ctx: click.Context, query: tuple[str, ...], output: Path | None, as_json: bool) -> None:
    """Create and validate a plan for QUERY."""
    settings = _settings(ctx)
    pipeline = Pipeline.from_settings(settings, backend=_backend(ctx, settings))

    plan = asyncio.run(pipeline.plan(" ".join(query)))
    plan, validation = pipeline.validate(plan)

    if as_json:
        click.echo(json.dumps({"plan": plan.to_dict(), "validation": validation.to_dict()}, indent=2))
    else:
        render_plan(console, plan, validation)
    if output is not None:
        path = PlanStore(output).save(plan)
        err_console.print(f"Plan saved to [bold]{escape(str(path))}[/bold]")


@main.command("refine")
@click.argument("plan_file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.argument("feedback", nargs=-1, required=True)
@click.option(
    "--output", "-o",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="Where to save the refined plan (defaults to PLAN_FILE)",
)
@click.pass_context
@handle_errors
def refine_command(
    ctx: click.Context, plan_file: Path, feedback: tuple[str, ...], output: Path | None
) -> None:
    """Refine the plan in PLAN_FILE with FEEDBACK."""
    settings = _settings(ctx)
    pipeline = Pipeline.from_settings(settings, backend=_backend(ctx, settings))

    original = PlanStore(plan_file).load()
    refined = asyncio.run(pipeline.refine(original, " ".join(feedback)))
    refined, validation = pipeline.validate(refined)

    render_plan(console, refined, validation)
    path = PlanStore(output or plan_file).save(refined)
    err_console.print(f"Refined plan saved to [bold]{escape(str(path))}[/bold]")


@main.command("run")
@click.argument("query", nargs=-1)
@click.option(
    "--plan", "plan_file",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    default=None,
    help="Run a saved plan instead of planning QUERY",
)
@click.option("--yes", "-y", is_flag=True, help="Approve steps without asking (not high risk)")
@click.option("--dry-run", is_flag=True, help="Plan and validate only")
@click.option("--continue-on-block", is_flag=True, help="Run allowed steps of a plan with blocked steps")
@click.option("--keep-going", is_flag=True, help="Continue after a failed step")
@click.pass_context
@handle_errors
def run_command(
    ctx: click.Context,
    query: tuple[str, ...],
    plan_file: Path | None,
    yes: bool,
    dry_run: bool,
    continue_on_block: bool,
    keep_going: bool,
) -> None:
    """Plan, validate and execute QUERY (or a saved plan)."""
    if bool(query) == bool(plan_file):
        raise click.UsageError("Give either QUERY or --plan, not both or neither.")

    settings = _settings(ctx)
    policy = ExecutionPolicy.from_settings(
        settings,
        auto_approve=yes,
        halt_on_blocked_plan=not continue_on_block,
        stop_on_failure=not keep_going,
    )
    backend = _backend(ctx, settings) if query else None
    pipeline = Pipeline.from_settings(settings, backend=backend, confirm=_confirm_step, policy=policy)

    if plan_file is not None:
        plan = PlanStore(plan_file).load()
    else:
        plan = asyncio.run(pipeline.plan(" ".join(query)))
    plan, validation = pipeline.validate(plan)
    render_plan(console, plan, validation)

    if dry_run:
        return

    report = asyncio.run(pipeline.execute(plan, validation))
    for step_report in report.steps:
        if step_report.outcome is StepOutcome.EXECUTED and step_report.result is not None:
            render_execution(console, step_report.result)
    render_report(console, report)

    pipeline.executor.cleanup()
    if pipeline.audit is not None:
        pipeline.audit.cleanup_old_logs()

    if not report.success:
        raise SystemExit(1)


@main.command("check", context_settings={"ignore_unknown_options": True})
@click.argument("command", nargs=-1, required=True, type=click.UNPROCESSED)
@click.option("--json", "as_json", is_flag=True, help="Print the verdict as JSON")
@click.pass_context
@handle_errors
def check_command(ctx: click.Context, command: tuple[str, ...], as_json: bool) -> None:
    """Validate COMMAND without running it. Exits 1 when it is blocked."""
    settings = _settings(ctx)
    validator = Validator(
        settings.resolved_denylist_file,
        allow_shell_operators=settings.allow_shell_operators,
    )
    result = validator.validate_command(" ".join(command))

    if as_json:
        click.echo(json.dumps(result.to_dict(), indent=2))
    else:
        render_validation(console, result)
    if not result.allowed:
        raise SystemExit(1)


@main.group("config")
def config_group() -> None:
    """Show and change configuration."""


@config_group.command("show")
@click.pass_context
@handle_errors
def config_show(ctx: click.Context) -> None:
    """Show the effective settings (keys masked)."""
    render_settings(console, _settings(ctx))


@config_group.command("set")
@click.argument("key")
@click.argument("value")
@click.option("--user", "user_scope", is_flag=True, help="Write to ~/.forge_cli instead of ./.forge_cli")
@click.pass_context
@handle_errors
def config_set(ctx: click.Context, key: str, value: str, user_scope: bool) -> None:
    """Set KEY to VALUE in settings.json."""
    persistence = SettingsPersistence()
    path = persistence.user_config_path if user_scope else persistence.project_config_path
    persistence.set_value(key, value, path=path)
    console.print(f"[green]Set[/green] {escape(key)} in [bold]{escape(str(path))}[/bold]")


@config_group.command("add-key")
@click.argument("api_key")
@handle_errors
def config_add_key(api_key: str) -> None:
    """Store API_KEY in credentials.json."""
    keys = SettingsPersistence().add_api_key(api_key)
    console.print(f"[green]Stored[/green] {len(keys)} API key(s)")


@config_group.command("remove-key")
@click.argument("index", type=int)
@handle_errors
def config_remove_key(index: int) -> None:
    """Remove the stored API key at INDEX."""
    SettingsPersistence().remove_api_key(index)
    console.print(f"[green]Removed[/green] API key {index}")


@config_group.command("path")
@click.pass_context
@handle_errors
def config_path(ctx: click.Context) -> None:
    """Show where configuration and state live."""
    settings = _settings(ctx)
    persistence = SettingsPersistence()
    for label, path in (
        ("project settings", persistence.project_config_path),
        ("user settings", persistence.user_config_path),
        ("credentials", persistence.credentials_path),
        ("denylist", settings.resolved_denylist_file),
        ("audit", settings.audit_dir),
        ("sandbox", settings.sandbox_workdir),
    ):
        click.echo(f"{label}: {path}")


@config_group.command("check-keys")
@click.pass_context
@handle_errors
def config_check_keys(ctx: click.Context) -> None:
    """Send a tiny request with every configured key."""
    settings = _settings(ctx)
    validate_settings(settings)
    backend = GeminiBackend.from_settings(settings)
    checks = asyncio.run(backend.validate_keys())
    render_key_checks(console, checks, backend.keys.keys)
    if not all(check.valid for check in checks):
        raise SystemExit(1)
