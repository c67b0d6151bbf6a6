"""Init command for Docflow CLI.

Creates everything workers expect to exist:
1. Checks Redis health
2. Creates every subject and its consumer group
3. Creates every bucket with the configured size limit

Safe to run repeatedly; existing subjects, groups and buckets are kept.
"""

import typer
from rich.console import Console

from docflow.common.config import DocflowConfig
from docflow.common.factories import make_blob_store, make_event_log
from docflow.common.health import check_redis_health
from docflow.common.logging import get_logger
from docflow.core.ports.blob_store import BlobStore, BucketConfig
from docflow.core.ports.event_log import EventLog
from docflow.streams import create_redis_client

console = Console()
logger = get_logger(__name__)


def stage_subscriptions(config: DocflowConfig) -> list[tuple[str, str]]:
    """Return (subject, consumer group) pairs for every stage."""
    subjects = config.subjects
    groups = config.consumer_groups
    return [
        (subjects.sources, groups.render),
        (subjects.pages, groups.extract),
        (subjects.texts, groups.synthesize),
        (subjects.audio, groups.transcode),
        (subjects.containers, groups.assemble),
    ]


async def create_pipeline_resources(config: DocflowConfig, event_log: EventLog, blob_store: BlobStore) -> None:
    """Create subjects, consumer groups and buckets."""
    for subject, group in stage_subscriptions(config):
        await event_log.ensure_stream(subject, group)
    await event_log.ensure_stream(config.subjects.workflows)

    bucket_config = BucketConfig(max_bytes=config.bucket_max_bytes)
    for bucket in config.buckets.all():
        await blob_store.ensure_bucket(bucket, bucket_config)


async def init_command(config: DocflowConfig) -> None:
    """Initialize subjects, consumer groups and buckets.

    Exits with code 1 if Redis is unreachable or any step fails.

    Example:
        $ docflow init
    """
    console.print("[yellow]Checking Redis health...[/yellow]")
    if not await check_redis_health(config):
        console.print("[red]❌ Redis is unreachable[/red]")
        raise typer.Exit(1)
    console.print("[green]✓ Redis healthy[/green]")

    redis_client = await create_redis_client(config.redis_url, socket_timeout=config.redis_socket_timeout)
    try:
        console.print("[yellow]Creating subjects, groups and buckets...[/yellow]")
        await create_pipeline_resources(
            config, make_event_log(config, redis_client), make_blob_store(config, redis_client)
        )
    except Exception as e:
        console.print(f"[red]❌ Initialization failed: {e}[/red]")
        logger.exception("Initialization failed")
        raise typer.Exit(1) from e
    finally:
        await redis_client.aclose()

    console.print("[bold green]✅ Pipeline initialized successfully![/bold green]")


__all__ = ["create_pipeline_resources", "init_command", "stage_subscriptions"]
