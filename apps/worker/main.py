"""Stage worker process.

Runs one pipeline stage as a member of its consumer group. Start as many
processes per stage as needed; the consumer group spreads events across
them. Supports graceful shutdown on SIGINT/SIGTERM.

Usage:
    python -m apps.worker.main extract
"""

import asyncio
import logging
import signal
import sys
from types import FrameType

from docflow.common.config import STAGE_NAMES, DocflowConfig, get_config
from docflow.common.factories import make_stage_worker
from docflow.common.logging import setup_logging
from docflow.pipeline.worker import StageWorker
from docflow.streams import create_redis_client

logger = logging.getLogger(__name__)


def install_signal_handlers(worker: StageWorker) -> None:
    """Stop the worker gracefully on SIGINT and SIGTERM."""

    def handle_signal(sig: int, _frame: FrameType | None) -> None:
        logger.info("Received signal %s", sig)
        worker.signal_stop()

    signal.signal(signal.SIGINT, handle_signal)
    signal.signal(signal.SIGTERM, handle_signal)


async def main(stage: str, config: DocflowConfig | None = None, consumer: str | None = None) -> None:
    """Main entry point for a stage worker.

    Sets up Redis-backed dependencies for the stage and runs the worker
    until stopped.

    Args:
        stage: Stage to run.
        config: Pipeline configuration (loaded from the environment when omitted).
        consumer: Consumer name within the group (derived when omitted).
    """
    if stage not in STAGE_NAMES:
        raise ValueError(f"Unknown stage {stage!r}; expected one of {', '.join(STAGE_NAMES)}")

    config = config or get_config()
    setup_logging(config.log_level)

    logger.info("Starting stage worker initialization", extra={"stage": stage})

    redis_client = await create_redis_client(config.redis_url, socket_timeout=config.redis_socket_timeout)
    worker = make_stage_worker(stage, config, redis_client, consumer=consumer)

    install_signal_handlers(worker)

    try:
        await worker.run()
    finally:
        logger.info("Cleaning up resources")
        await redis_client.aclose()


if __name__ == "__main__":
    if len(sys.argv) != 2:
        print(f"usage: python -m apps.worker.main <{'|'.join(STAGE_NAMES)}>", file=sys.stderr)
        sys.exit(2)
    asyncio.run(main(sys.argv[1]))
