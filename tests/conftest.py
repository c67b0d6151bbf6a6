"""Shared pytest fixtures for the docflow test suite.

Provides a test configuration, fake transformation tools and an in-memory
pipeline harness wiring real stages and workers to the in-memory adapters.
"""

import asyncio
import time
from collections.abc import Callable
from pathlib import Path

import pytest

from docflow.blobs import InMemoryBlobStore
from docflow.common.config import DocflowConfig
from docflow.common.dlq import DeadLetterPolicy
from docflow.core.events import EventHeader
from docflow.pipeline.correlation import InMemoryFanInStore
from docflow.pipeline.dedup import InMemoryProcessedEventStore
from docflow.pipeline.stages import build_stage
from docflow.pipeline.worker import StageWorker
from docflow.streams import InMemoryEventLog

# ========== Configuration Fixtures ==========


@pytest.fixture
def test_config() -> DocflowConfig:
    """Provide a configuration with test-friendly delivery timings.

    Returns:
        DocflowConfig: Configuration instance for testing.
    """
    return DocflowConfig(
        _env_file=None,
        redis_url="redis://test-cache:6379/0",
        max_deliveries=3,
        ack_deadline_seconds=30.0,
        processing_timeout_seconds=5.0,
        retry_base_delay_seconds=0.0,
        retry_max_delay_seconds=0.0,
        blob_fetch_attempts=2,
        blob_fetch_min_wait=0.0,
        blob_fetch_max_wait=0.0,
        shutdown_grace_seconds=1.0,
        max_in_flight=2,
    )


@pytest.fixture
def fast_policy() -> DeadLetterPolicy:
    """Policy with a short ack deadline for redelivery tests."""
    return DeadLetterPolicy(
        max_deliveries=3,
        ack_deadline_seconds=0.2,
        base_delay_seconds=0.0,
        max_delay_seconds=0.0,
    )


# ========== Fake tools ==========


class FakeTool:
    """Transformer double writing ``<name>(<input>)`` outputs.

    With ``split=True`` the input is split on form feeds into one output per
    part, mimicking a renderer producing one image per page.
    """

    def __init__(self, name: str, output_suffix: str, *, split: bool = False) -> None:
        self.name = name
        self.output_suffix = output_suffix
        self.split = split
        self.calls = 0
        self.fail_times = 0
        self.error: BaseException | None = None
        self.gate: asyncio.Event | None = None

    def fail(self, error: BaseException, times: int = 10**6) -> None:
        self.error = error
        self.fail_times = times

    async def __call__(self, source: Path, workdir: Path) -> list[Path]:
        self.calls += 1
        if self.gate is not None:
            await self.gate.wait()
        if self.error is not None and self.fail_times > 0:
            self.fail_times -= 1
            raise self.error

        workdir.mkdir(parents=True, exist_ok=True)
        data = source.read_bytes()
        parts = data.split(b"\f") if self.split else [data]

        outputs = []
        for index, part in enumerate(parts, start=1):
            output = workdir / f"{self.name}-{index:04d}{self.output_suffix}"
            output.write_bytes(self.name.encode() + b"(" + part + b")")
            outputs.append(output)
        return outputs


@pytest.fixture
def fake_tools() -> dict[str, FakeTool]:
    return {
        "render": FakeTool("render", ".png", split=True),
        "extract": FakeTool("extract", ".txt"),
        "synthesize": FakeTool("synthesize", ".wav"),
        "transcode": FakeTool("transcode", ".mp3"),
    }


# ========== Pipeline harness ==========


class PipelineHarness:
    """Real stages and workers over in-memory adapters."""

    def __init__(self, config: DocflowConfig, tools: dict[str, FakeTool]) -> None:
        self.config = config
        self.tools = tools
        self.event_log = InMemoryEventLog(
            policy=config.delivery_policy,
            max_event_bytes=config.max_event_bytes,
            poll_interval=0.005,
        )
        self.blob_store = InMemoryBlobStore()
        self.processed = InMemoryProcessedEventStore()
        self.fan_in = InMemoryFanInStore()

    async def create_buckets(self) -> None:
        for bucket in self.config.buckets.all():
            await self.blob_store.ensure_bucket(bucket)

    def worker(
        self,
        stage_name: str,
        consumer: str | None = None,
        *,
        tool: object | None = None,
        **overrides: object,
    ) -> StageWorker:
        stage = build_stage(
            stage_name,
            self.config,
            blob_store=self.blob_store,
            fan_in=self.fan_in,
            transformer_factory=lambda name, _config: tool or self.tools[name],
        )
        options: dict[str, object] = {
            "max_in_flight": self.config.max_in_flight,
            "processing_timeout": self.config.processing_timeout_seconds,
            "shutdown_grace": self.config.shutdown_grace_seconds,
        }
        options.update(overrides)
        return StageWorker(
            stage,
            self.event_log,
            self.processed,
            consumer=consumer or f"{stage_name}-1",
            **options,  # type: ignore[arg-type]
        )

    async def events(self, subject: str) -> list[EventHeader]:
        return await self.event_log.events(subject)

    async def run_until(
        self,
        workers: list[StageWorker],
        condition: Callable[[], object],
        timeout: float = 5.0,
    ) -> bool:
        """Run workers until ``condition`` holds (awaitable or plain) or timeout.

        Returns:
            Whether the condition was met.
        """
        tasks = [asyncio.create_task(worker.run()) for worker in workers]
        deadline = time.monotonic() + timeout
        met = False
        try:
            while time.monotonic() < deadline:
                result = condition()
                if asyncio.iscoroutine(result):
                    result = await result
                if result:
                    met = True
                    break
                if any(task.done() for task in tasks):
                    break
                await asyncio.sleep(0.01)
        finally:
            for worker in workers:
                worker.signal_stop()
            await asyncio.gather(*tasks, return_exceptions=True)
        return met


@pytest.fixture
def harness(test_config: DocflowConfig, fake_tools: dict[str, FakeTool]) -> PipelineHarness:
    return PipelineHarness(test_config, fake_tools)


@pytest.fixture
def make_harness(
    test_config: DocflowConfig, fake_tools: dict[str, FakeTool]
) -> Callable[..., PipelineHarness]:
    """Build a harness with configuration overrides."""

    def _make(**overrides: object) -> PipelineHarness:
        config = DocflowConfig(_env_file=None, **{**test_config.model_dump(), **overrides})
        return PipelineHarness(config, fake_tools)

    return _make
