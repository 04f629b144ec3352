"""
Output rendering functions for homelab.
Handles formatting and displaying workflows, runs and state.
"""
import json

from rich.panel import Panel
from rich.syntax import Syntax
from rich.table import Table

from .config import console
from .workflow.models import RunState, StepStatus

STEP_ICONS = {
    StepStatus.SUCCEEDED: "[green]✓[/green]",
    StepStatus.DISABLED: "[dim]○[/dim]",
    StepStatus.SKIPPED: "[yellow]⊘[/yellow]",
    StepStatus.FAILED: "[red]✗[/red]",
}

STATUS_STYLES = {
    "success": "green",
    "warning": "yellow",
    "failure": "red",
}


def render_definition(definition, as_json=False):
    """
    Show a workflow definition.

    Args:
        definition: WorkflowDefinition to show
        as_json: Print the raw JSON document instead of a table
    """
    data = definition.to_dict()
    if as_json:
        console.print(Syntax(json.dumps(data, indent=2), "json", theme="monokai"))
        return

    header = [f"[bold]{definition.name}[/bold]"]
    if definition.description:
        header.append(definition.description)
    if definition.schedule:
        schedule = definition.schedule
        header.append(f"Schedule: {schedule.get('expression', '')} ({schedule.get('type', '')})"
                      + (f" - {schedule['comment']}" if schedule.get('comment') else ""))
    header.append(f"Source: {definition.source or 'built-in'}")
    if 'conditions' in data:
        header.append(f"Conditions: {json.dumps(data['conditions'])}")
    if definition.notifications:
        header.append(f"Notifications: {json.dumps(definition.notifications)}")
    console.print(Panel("\n".join(header), title="Workflow"))

    table = Table(title="Steps")
    table.add_column("#", justify="right")
    table.add_column("Name", style="cyan")
    table.add_column("Script")
    table.add_column("Args")
    table.add_column("On error")
    table.add_column("When")

    for i, step in enumerate(data['steps'], 1):
        table.add_row(
            str(i),
            step['name'] + (" [dim](disabled)[/dim]" if step.get('disabled') else ""),
            step['script'],
            " ".join(step['args']),
            "continue" if step['skip_on_error'] else "stop",
            ", ".join(step.get('when', {}).keys()),
        )
    console.print(table)


def render_workflow_list(entries):
    if not entries:
        console.print("No workflows found.")
        return

    table = Table(title="Workflows")
    table.add_column("Name", style="cyan")
    table.add_column("Type")
    table.add_column("Description")
    table.add_column("Schedule")

    for entry in entries:
        schedule = entry.get('schedule') or {}
        table.add_row(
            entry['name'],
            "built-in" if entry['builtin'] else "custom",
            entry.get('description') or "",
            schedule.get('expression', '') if isinstance(schedule, dict) else str(schedule),
        )
    console.print(table)


def render_run(run):
    """Display the summary of a finished run."""
    if run.state == RunState.SKIPPED:
        console.print(f"[yellow]⊘[/yellow] Workflow {run.name} skipped: {run.reason}")
        return
    if run.state == RunState.ABORTED:
        console.print(f"[red]✗[/red] Workflow {run.name} aborted: {run.reason}")
        return

    status = run.status.value
    summary = [
        f"Workflow: {run.name}",
        f"Status: [{STATUS_STYLES[status]}]{status}[/{STATUS_STYLES[status]}]",
        f"Steps: {run.completed}/{run.total} completed",
        f"Skipped: {len(run.skipped_steps)}",
        f"Failed: {len(run.failed_steps)}",
        f"Exit code: {run.exit_code}",
    ]
    if run.log_file:
        summary.append(f"Log: {run.log_file}")
    if run.dry_run:
        summary.append("\n[yellow]DRY RUN - No steps were actually executed[/yellow]")

    for outcome in run.outcomes:
        line = f"  {STEP_ICONS[outcome.status]} {outcome.name}"
        if outcome.reason:
            line += f" [dim]({outcome.reason})[/dim]"
        summary.append(line)

    console.print(Panel("\n".join(summary), title="Workflow Results",
                        border_style=STATUS_STYLES[status]))


def render_state(records):
    """
    Show stored run records.

    Args:
        records: Mapping of workflow name to StateRecord
    """
    if not records:
        console.print("No workflow runs recorded.")
        return

    table = Table(title="Workflow State")
    table.add_column("Workflow", style="cyan")
    table.add_column("Last run")
    table.add_column("Status")
    table.add_column("Exit")
    table.add_column("Steps")
    table.add_column("Duration")
    table.add_column("Failed")

    for name, record in sorted(records.items()):
        style = STATUS_STYLES.get(record.last_status, "white")
        table.add_row(
            name,
            record.last_run,
            f"[{style}]{record.last_status}[/{style}]",
            str(record.last_exit_code),
            f"{record.completed_steps}/{record.total_steps}",
            record.last_duration,
            ", ".join(record.failed_steps),
        )
    console.print(table)
