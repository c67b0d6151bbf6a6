"""Factory functions for creating fully-wired adapters, workers and use cases.

Centralizes dependency injection to keep CLI commands and worker entry points
thin. Every factory takes the configuration explicitly.
"""

import os
import socket
from collections.abc import Awaitable, Callable

from redis.asyncio import Redis

from docflow.blobs import LocalBlobStore, RedisBlobStore
from docflow.common.config import DocflowConfig
from docflow.core.ports.blob_store import BlobStore
from docflow.core.ports.event_log import EventLog
from docflow.core.use_cases.get_workflow_status import GetWorkflowStatusUseCase
from docflow.core.use_cases.submit_document import SubmitDocumentUseCase
from docflow.pipeline.correlation import RedisFanInStore
from docflow.pipeline.dedup import RedisProcessedEventStore
from docflow.pipeline.stages import build_stage
from docflow.pipeline.worker import StageWorker
from docflow.streams import RedisStreamEventLog, create_redis_client

Cleanup = Callable[[], Awaitable[None]]


def default_consumer_name(config: DocflowConfig, stage: str) -> str:
    """Return a consumer name unique to this process."""
    return f"{config.consumer_prefix}-{stage}-{socket.gethostname()}-{os.getpid()}"


def make_event_log(config: DocflowConfig, redis_client: Redis) -> EventLog:
    return RedisStreamEventLog(
        redis_client,
        policy=config.delivery_policy,
        max_event_bytes=config.max_event_bytes,
        retention_seconds=config.stream_retention_seconds,
        block_ms=config.block_ms,
    )


def make_blob_store(config: DocflowConfig, redis_client: Redis) -> BlobStore:
    """Create the blob store selected by ``blob_backend``."""
    if config.blob_backend == "local":
        return LocalBlobStore(config.blob_root)
    return RedisBlobStore(redis_client, chunk_size=config.blob_chunk_size)


def make_stage_worker(
    stage_name: str,
    config: DocflowConfig,
    redis_client: Redis,
    *,
    consumer: str | None = None,
) -> StageWorker:
    """Create a StageWorker for one stage with Redis-backed state.

    Args:
        stage_name: Stage to run (render, extract, synthesize, transcode, assemble).
        config: Pipeline configuration.
        redis_client: Client shared by the log, blob store and stores.
        consumer: Consumer name (derived from host and PID when omitted).
    """
    blob_store = make_blob_store(config, redis_client)
    fan_in = RedisFanInStore(redis_client, ttl_seconds=config.dedup_ttl_seconds)
    stage = build_stage(stage_name, config, blob_store=blob_store, fan_in=fan_in)

    return StageWorker(
        stage,
        make_event_log(config, redis_client),
        RedisProcessedEventStore(redis_client, ttl_seconds=config.dedup_ttl_seconds),
        consumer=consumer or default_consumer_name(config, stage_name),
        max_in_flight=config.max_in_flight,
        processing_timeout=config.processing_timeout_seconds,
        shutdown_grace=config.shutdown_grace_seconds,
    )


async def make_submit_use_case(config: DocflowConfig) -> tuple[SubmitDocumentUseCase, Cleanup]:
    """Create a fully-wired SubmitDocumentUseCase with its dependencies.

    Returns:
        Tuple of (use_case, cleanup_fn) where cleanup_fn must be awaited
        after use to close the Redis connection.

    Example:
        use_case, cleanup = await make_submit_use_case(config)
        try:
            result = await use_case.execute(data, file_name="report.pdf")
        finally:
            await cleanup()
    """
    redis_client = await create_redis_client(config.redis_url, socket_timeout=config.redis_socket_timeout)
    blob_store = make_blob_store(config, redis_client)
    await blob_store.ensure_bucket(config.buckets.sources)

    use_case = SubmitDocumentUseCase(
        blob_store,
        make_event_log(config, redis_client),
        source_bucket=config.buckets.sources,
        source_subject=config.subjects.sources,
    )

    async def cleanup() -> None:
        await redis_client.aclose()

    return use_case, cleanup


async def make_status_use_case(config: DocflowConfig) -> tuple[GetWorkflowStatusUseCase, Cleanup]:
    """Create a fully-wired GetWorkflowStatusUseCase and its cleanup function."""
    redis_client = await create_redis_client(config.redis_url, socket_timeout=config.redis_socket_timeout)
    use_case = GetWorkflowStatusUseCase(make_event_log(config, redis_client), config.subjects)

    async def cleanup() -> None:
        await redis_client.aclose()

    return use_case, cleanup


__all__ = [
    "Cleanup",
    "default_consumer_name",
    "make_blob_store",
    "make_event_log",
    "make_stage_worker",
    "make_status_use_case",
    "make_submit_use_case",
]
