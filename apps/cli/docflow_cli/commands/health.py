"""Health command: check Redis and the external tools of each stage."""

import typer
from rich.console import Console
from rich.table import Table

from docflow.common.config import STAGE_NAMES, DocflowConfig
from docflow.common.health import check_system_health

console = Console()


async def health_command(config: DocflowConfig, stages: list[str] | None = None) -> None:
    """Display health checks; exits with code 1 if any check fails."""
    health_status = await check_system_health(config, stages or list(STAGE_NAMES))

    table = Table(title="Service Health")
    table.add_column("Check", style="cyan")
    table.add_column("Status", style="bold")

    for name in sorted(health_status["services"]):
        healthy = health_status["services"][name]
        table.add_row(name, "[green]✓[/green]" if healthy else "[red]✗[/red]")

    console.print(table)

    if not health_status["healthy"]:
        raise typer.Exit(1)


__all__ = ["health_command"]
