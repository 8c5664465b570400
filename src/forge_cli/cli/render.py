"""Rich rendering of plans, verdicts and execution results."""

from rich.console import Console, Group
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from forge_cli.config import ForgeSettings
from forge_cli.llm.backend import KeyCheck
from forge_cli.llm.keys import mask_key
from forge_cli.pipeline import PipelineReport, StepOutcome
from forge_cli.planning.plan import Plan, Step
from forge_cli.safety.models import PlanValidation, RiskLevel, ValidationResult
from forge_cli.sandbox.executor import ExecutionResult
from forge_cli.settings_persistence import SECRET_FIELDS

RISK_STYLES = {
    RiskLevel.NONE: "green",
    RiskLevel.LOW: "cyan",
    RiskLevel.MEDIUM: "yellow",
    RiskLevel.HIGH: "bold red",
}

OUTCOME_STYLES = {
    StepOutcome.EXECUTED: "green",
    StepOutcome.BLOCKED: "bold red",
    StepOutcome.DECLINED: "yellow",
    StepOutcome.SKIPPED: "dim",
}


def risk_text(level: RiskLevel) -> Text:
    return Text(level.value.upper(), style=RISK_STYLES[level])


def render_plan(console: Console, plan: Plan, validation: PlanValidation | None = None) -> None:
    """Show a plan as a table of steps, with verdicts when available."""
    table = Table(show_lines=False, padding=(0, 1))
    table.add_column("Step", style="bold cyan", no_wrap=True)
    table.add_column("Description")
    table.add_column("Command", style="bold")
    table.add_column("Risk", no_wrap=True)
    table.add_column("Status", no_wrap=True)

    for step in plan.steps:
        result = validation.result_for(step.id) if validation else None
        level = result.risk_level if result else step.risk_level
        if result is None:
            status = Text("-", style="dim")
        elif not result.allowed:
            status = Text("blocked", style="bold red")
        elif result.requires_confirmation or step.requires_confirmation:
            status = Text("confirm", style="yellow")
        else:
            status = Text("ok", style="green")
        table.add_row(Text(step.id), Text(step.description), Text(step.command), risk_text(level), status)

    header = Table(show_header=False, box=None, padding=(0, 2, 0, 0))
    header.add_column("Key", style="bold cyan", no_wrap=True)
    header.add_column("Value")
    header.add_row("Intent", Text(plan.intent))
    header.add_row("Risk", risk_text(plan.risk_level))
    header.add_row("Estimated", Text(plan.estimated_duration))
    if plan.prerequisites:
        header.add_row("Prerequisites", Text(", ".join(plan.prerequisites)))
    header.add_row("Rollback", Text(plan.rollback))

    panel = Panel(
        Group(header, Text(""), table),
        title=f"[bold]Plan {escape(plan.id)}[/bold]",
        border_style="cyan",
    )
    console.print(panel)

    if validation is not None:
        for result in validation.step_results:
            if result.blocked_reasons or result.warnings:
                render_validation(console, result)


def render_validation(console: Console, result: ValidationResult) -> None:
    """Show the verdict for a single step or command."""
    table = Table(show_header=False, box=None, padding=(0, 2, 0, 0))
    table.add_column("Key", style="bold cyan", no_wrap=True)
    table.add_column("Value")
    table.add_row("Command", Text(result.command))
    table.add_row("Allowed", "[green]yes[/green]" if result.allowed else "[bold red]no[/bold red]")
    table.add_row("Risk", risk_text(result.risk_level))
    table.add_row("Confirmation", "required" if result.requires_confirmation else "not required")
    for reason in result.blocked_reasons:
        table.add_row("Blocked", Text(reason, style="red"))
    for warning in result.warnings:
        table.add_row("Warning", Text(warning, style="yellow"))
    for suggestion in result.suggestions:
        table.add_row("Suggestion", Text(suggestion, style="dim"))

    border = "red" if not result.allowed else RISK_STYLES[result.risk_level].split()[-1]
    console.print(Panel(table, title=f"[bold]{escape(result.step_id)}[/bold]", border_style=border))


def render_confirmation(console: Console, step: Step, result: ValidationResult) -> None:
    """Show what is about to run before asking for approval."""
    lines = Text()
    lines.append(f"{step.description}\n")
    lines.append("$ ", style="dim")
    lines.append(f"{step.command}\n", style="bold")
    lines.append("Risk: ")
    lines.append_text(risk_text(result.risk_level))
    for warning in result.warnings:
        lines.append(f"\n! {warning}", style="yellow")
    console.print(Panel(lines, title=f"[bold]Confirm {escape(step.id)}[/bold]", border_style="yellow"))


def render_execution(console: Console, result: ExecutionResult) -> None:
    status = "[green]ok[/green]" if result.success else f"[red]failed[/red] (exit {result.exit_code})"
    console.print(f"[bold cyan]{escape(result.step_id)}[/bold cyan] {status} [dim]{result.duration_ms}ms[/dim]")
    output = result.formatted_output()
    if output:
        console.print(Text(output, style="" if result.success else "red"))


def render_report(console: Console, report: PipelineReport) -> None:
    """Summarize a pipeline run."""
    table = Table(title="Run Summary", padding=(0, 1))
    table.add_column("Step", style="bold cyan", no_wrap=True)
    table.add_column("Outcome", no_wrap=True)
    table.add_column("Detail")

    for step_report in report.steps:
        if step_report.result is not None:
            detail = step_report.result.error or f"exit {step_report.result.exit_code}"
        else:
            detail = step_report.reason or ""
        table.add_row(
            Text(step_report.step.id),
            Text(step_report.outcome.value, style=OUTCOME_STYLES[step_report.outcome]),
            Text(detail),
        )
    console.print(table)


def render_settings(console: Console, settings: ForgeSettings) -> None:
    table = Table(show_header=False, box=None, padding=(0, 2, 0, 0))
    table.add_column("Key", style="bold cyan", no_wrap=True)
    table.add_column("Value")

    keys = settings.all_api_keys
    table.add_row(
        "api_keys",
        Text(", ".join(f"[{i}] {mask_key(key)}" for i, key in enumerate(keys)))
        if keys
        else Text("none", style="yellow"),
    )
    for name, value in settings.model_dump(exclude=set(SECRET_FIELDS)).items():
        table.add_row(name, Text("" if value is None else str(value)))

    console.print(Panel(table, title="[bold]Settings[/bold]", border_style="cyan"))


def render_key_checks(console: Console, checks: list[KeyCheck], keys: tuple[str, ...]) -> None:
    table = Table(padding=(0, 1))
    table.add_column("#", style="bold cyan", no_wrap=True)
    table.add_column("Key", no_wrap=True)
    table.add_column("Status", no_wrap=True)
    table.add_column("Detail")
    for check in checks:
        table.add_row(
            str(check.index),
            Text(mask_key(keys[check.index])),
            "[green]valid[/green]" if check.valid else "[red]invalid[/red]",
            Text(check.detail),
        )
    console.print(table)
