"""Dead-letters command: list events the pipeline gave up on."""

import typer
from rich.console import Console
from rich.table import Table

from docflow.common.config import DocflowConfig
from docflow.common.factories import make_event_log
from docflow.core.errors import DocflowError
from docflow.streams import create_redis_client

console = Console()


async def dead_letters_command(config: DocflowConfig, subject: str | None = None, *, limit: int = 50) -> None:
    """Print dead-lettered entries of one subject or of every subject."""
    subjects = [subject] if subject else config.subjects.all()

    redis_client = await create_redis_client(config.redis_url, socket_timeout=config.redis_socket_timeout)
    try:
        event_log = make_event_log(config, redis_client)
        records = []
        for name in subjects:
            records.extend(await event_log.dead_letters(name, count=limit))
    except DocflowError as e:
        console.print(f"[red]Error reading dead letters: {e}[/red]")
        raise typer.Exit(1) from e
    finally:
        await redis_client.aclose()

    if not records:
        console.print("[green]No dead-lettered events[/green]")
        return

    table = Table(title="Dead-Lettered Events")
    table.add_column("Subject", style="cyan")
    table.add_column("Position")
    table.add_column("Workflow")
    table.add_column("Type")
    table.add_column("Deliveries", justify="right")
    table.add_column("Error", style="red")

    for record in records[:limit]:
        table.add_row(
            record.source_subject,
            record.source_id,
            record.fields.get("workflow_id", "-"),
            record.fields.get("event_type", "-"),
            str(record.delivery_count),
            record.error,
        )

    console.print(table)


__all__ = ["dead_letters_command"]
