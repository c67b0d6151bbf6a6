"""Submit command: store a source document and start its workflow."""

import mimetypes
from pathlib import Path

import typer
from rich.console import Console

from docflow.common.config import DocflowConfig
from docflow.common.factories import make_submit_use_case
from docflow.core.errors import DocflowError

console = Console()


async def submit_command(
    config: DocflowConfig,
    path: Path,
    *,
    workflow_id: str | None = None,
    user_id: str = "anonymous",
    tenant_id: str = "default",
) -> None:
    """Submit a file and print the workflow it started."""
    if not path.is_file():
        console.print(f"[red]File not found: {path}[/red]")
        raise typer.Exit(1)

    content_type = mimetypes.guess_type(path.name)[0] or "application/octet-stream"
    use_case, cleanup = await make_submit_use_case(config)
    try:
        with path.open("rb") as handle:
            result = await use_case.execute(
                handle,
                file_name=path.name,
                content_type=content_type,
                workflow_id=workflow_id,
                user_id=user_id,
                tenant_id=tenant_id,
            )
    except DocflowError as e:
        console.print(f"[red]Submission failed: {e}[/red]")
        raise typer.Exit(1) from e
    finally:
        await cleanup()

    console.print(f"[green]✓ Submitted {path.name}[/green]")
    console.print(f"  workflow_id: [bold]{result.workflow_id}[/bold]")
    console.print(f"  source_key:  {result.source_key}")
    console.print(f"  position:    {result.position}")


__all__ = ["submit_command"]
