"""Status command: show how far a workflow got through the pipeline."""

import typer
from rich.console import Console
from rich.table import Table

from docflow.common.config import DocflowConfig
from docflow.common.factories import make_status_use_case
from docflow.common.dlq import DeadLetterRecord
from docflow.core.errors import DocflowError
from docflow.pipeline.correlation import WorkflowStatus

console = Console()


def render_status(status: WorkflowStatus, dead: list[DeadLetterRecord]) -> None:
    """Print a workflow status table."""
    console.print(f"\n[bold cyan]Workflow {status.workflow_id}[/bold cyan]\n")

    if not status.submitted and not status.stages:
        console.print("[yellow]No retained events for this workflow[/yellow]")
        return

    table = Table(title="Stage Progress")
    table.add_column("Subject", style="cyan")
    table.add_column("Pages", justify="right")
    table.add_column("Missing")
    table.add_column("Duplicates", justify="right")
    table.add_column("Status", style="bold")

    for subject, progress in status.stages.items():
        total = progress.total_pages or 0
        missing = ", ".join(str(n) for n in progress.missing) or "-"
        done = "[green]✓[/green]" if progress.complete else "[yellow]…[/yellow]"
        table.add_row(subject, f"{len(progress.pages_done)}/{total}", missing, str(progress.duplicates), done)

    console.print(table)

    if status.completed:
        console.print(f"[green]✓ Completed[/green] report: {status.report_key}")
    else:
        console.print("[yellow]In progress[/yellow]")

    for issue in status.inconsistencies:
        console.print(f"[red]✗ {issue}[/red]")

    if dead:
        console.print(f"[red]{len(dead)} dead-lettered event(s)[/red]")
        for record in dead:
            console.print(f"  {record.source_subject} {record.source_id}: {record.error}")


async def status_command(config: DocflowConfig, workflow_id: str, *, as_json: bool = False) -> None:
    """Display the reconstructed status of one workflow."""
    use_case, cleanup = await make_status_use_case(config)
    try:
        status, dead = await use_case.execute(workflow_id)
    except DocflowError as e:
        console.print(f"[red]Error retrieving status: {e}[/red]")
        raise typer.Exit(1) from e
    finally:
        await cleanup()

    if as_json:
        console.print_json(status.model_dump_json())
        return

    render_status(status, dead)
    if dead:
        raise typer.Exit(1)


__all__ = ["render_status", "status_command"]
