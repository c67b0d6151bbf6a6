"""Service health checks for the docflow pipeline.

The event log, blob store and coordination state all live in Redis; the
external tools must be installed on every worker host that runs their stage.
"""

import asyncio
import importlib.util
import shutil
from typing import TypedDict

from redis import asyncio as redis
from redis.exceptions import RedisError

from docflow.common.config import DocflowConfig
from docflow.common.logging import get_logger

logger = get_logger(__name__)

# External binary each transform stage shells out to
STAGE_BINARIES: dict[str, str] = {
    "extract": "tesseract",
    "synthesize": "espeak-ng",
    "transcode": "ffmpeg",
}


class SystemHealthStatus(TypedDict):
    """System health status dictionary.

    Attributes:
        healthy: True if all checks passed, False otherwise.
        services: Dictionary mapping check names to their result.
    """

    healthy: bool
    services: dict[str, bool]


async def check_redis_health(config: DocflowConfig) -> bool:
    """Check Redis health.

    Attempts to ping Redis with timeout.

    Returns:
        bool: True if Redis is healthy and responsive, False otherwise.
    """
    client = None
    try:
        client = redis.from_url(config.redis_url, socket_timeout=config.health_check_timeout)
        await asyncio.wait_for(client.ping(), timeout=config.health_check_timeout)
        logger.debug("Redis health check: OK")
        return True
    except (RedisError, OSError, TimeoutError) as e:
        logger.error("Redis health check failed", extra={"error": str(e)})
        return False
    finally:
        if client:
            await client.aclose()


def check_tool_health(stage: str) -> bool:
    """Check that the binary a stage depends on is on PATH."""
    if stage == "render":
        available = importlib.util.find_spec("fitz") is not None
        if not available:
            logger.error("PyMuPDF is not installed")
        return available

    binary = STAGE_BINARIES.get(stage)
    if binary is None:
        return True

    available = shutil.which(binary) is not None
    if not available:
        logger.error("Tool not found", extra={"tool": binary})
    return available


async def check_system_health(config: DocflowConfig, stages: list[str] | None = None) -> SystemHealthStatus:
    """Check Redis and the tools of the given stages.

    Args:
        config: Pipeline configuration.
        stages: Stages whose tools to check (none when omitted).

    Returns:
        SystemHealthStatus: Overall health and per-check results.
    """
    services: dict[str, bool] = {"redis": await check_redis_health(config)}
    for stage in stages or []:
        services[f"tool:{stage}"] = check_tool_health(stage)

    healthy = all(services.values())
    logger.info("System health check complete", extra={"healthy": healthy, "services": services})
    return SystemHealthStatus(healthy=healthy, services=services)


__all__ = ["STAGE_BINARIES", "SystemHealthStatus", "check_redis_health", "check_system_health", "check_tool_health"]
