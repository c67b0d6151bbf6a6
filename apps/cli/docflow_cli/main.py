"""Docflow CLI - Typer command-line interface for operating the pipeline."""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path

import typer
from rich.console import Console

from apps.cli.docflow_cli.utils import async_command
from docflow.common.config import STAGE_NAMES, get_config
from docflow.common.logging import setup_logging

app = typer.Typer(
    name="docflow",
    help="Docflow CLI - staged document-to-audio pipeline",
    add_completion=False,
)
console = Console()
logger = logging.getLogger(__name__)


@app.callback()
def main(
    log_level: str | None = typer.Option(None, "--log-level", help="Override LOG_LEVEL"),
) -> None:
    """Configure logging for every command."""
    setup_logging(log_level or get_config().log_level)


@app.command()
@async_command
async def init() -> None:
    """
    Create subjects, consumer groups and buckets.

    Examples:
        docflow init
    """
    from apps.cli.docflow_cli.commands.init import init_command

    await init_command(get_config())


@app.command()
@async_command
async def submit(
    path: Path = typer.Argument(..., help="Source document to process"),
    workflow_id: str | None = typer.Option(None, "--workflow-id", "-w", help="Workflow ID to use"),
    user_id: str = typer.Option("anonymous", "--user", help="Submitting user"),
    tenant_id: str = typer.Option("default", "--tenant", help="Owning tenant"),
) -> None:
    """
    Store a source document and start its workflow.

    Examples:
        docflow submit report.pdf
        docflow submit report.pdf --workflow-id doc-42 --tenant acme
    """
    from apps.cli.docflow_cli.commands.submit import submit_command

    await submit_command(
        get_config(), path, workflow_id=workflow_id, user_id=user_id, tenant_id=tenant_id
    )


@app.command()
def worker(
    stage: str = typer.Argument(..., help=f"Stage to run: {', '.join(STAGE_NAMES)}"),
    consumer: str | None = typer.Option(None, "--consumer", "-c", help="Consumer name within the group"),
) -> None:
    """
    Run a stage worker until interrupted.

    Examples:
        docflow worker extract
        docflow worker assemble --consumer assemble-1
    """
    if stage not in STAGE_NAMES:
        console.print(f"[red]Unknown stage: {stage}[/red]")
        raise typer.Exit(1)

    from apps.worker.main import main as worker_main

    asyncio.run(worker_main(stage, get_config(), consumer=consumer))


@app.command()
@async_command
async def status(
    workflow_id: str = typer.Argument(..., help="Workflow to inspect"),
    as_json: bool = typer.Option(False, "--json", help="Print the status as JSON"),
) -> None:
    """
    Show how far a workflow got through the pipeline.

    Examples:
        docflow status doc-42
        docflow status doc-42 --json
    """
    from apps.cli.docflow_cli.commands.status import status_command

    await status_command(get_config(), workflow_id, as_json=as_json)


@app.command(name="dead-letters")
@async_command
async def dead_letters(
    subject: str | None = typer.Option(None, "--subject", "-s", help="Primary subject (all when omitted)"),
    limit: int = typer.Option(50, "--limit", "-l", help="Maximum entries to show"),
) -> None:
    """
    List events moved to dead-letter subjects.

    Examples:
        docflow dead-letters
        docflow dead-letters --subject stream:pages --limit 10
    """
    from apps.cli.docflow_cli.commands.dead_letters import dead_letters_command

    await dead_letters_command(get_config(), subject, limit=limit)


@app.command()
@async_command
async def health(
    stage: list[str] | None = typer.Option(None, "--stage", help="Only check tools of these stages"),
) -> None:
    """
    Check Redis and the external tools each stage needs.

    Examples:
        docflow health
        docflow health --stage extract --stage transcode
    """
    from apps.cli.docflow_cli.commands.health import health_command

    await health_command(get_config(), stage or None)


if __name__ == "__main__":
    app()
