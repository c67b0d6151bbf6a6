"""Pipeline stages: what each worker consumes, runs and announces.

A stage only knows how to turn one input event into successor events. The
pull loop, acknowledgment, retries and deduplication live in ``StageWorker``.
Transform stages follow the same template:

    fetch input blob -> run external tool -> store each output -> build successors

Outputs are stored under fresh keys on every attempt, so a re-run after a
crash never collides with the write-once rule of the blob store.
"""

from __future__ import annotations

import asyncio
import json
import logging
import shutil
import tempfile
from abc import ABC, abstractmethod
from collections.abc import Callable
from datetime import UTC, datetime
from enum import Enum
from pathlib import Path
from typing import Any
from uuid import uuid4

from docflow.common.config import DocflowConfig
from docflow.common.resilience import call_with_retry
from docflow.core.errors import NotFoundError, TransformError
from docflow.core.events import (
    AudioCreated,
    ContainerCreated,
    EventHeader,
    PageCreated,
    SourceCreated,
    TextCreated,
    WorkflowCompleted,
)
from docflow.core.ports.blob_store import BlobStore
from docflow.core.ports.idempotency import FanInStore
from docflow.core.ports.transformer import Transformer

logger = logging.getLogger(__name__)


class EventState(str, Enum):
    """States one delivery moves through inside a worker."""

    RECEIVED = "received"
    FETCHING_BLOB = "fetching_blob"
    TRANSFORMING = "transforming"
    STORING_RESULT = "storing_result"
    PUBLISHING_SUCCESSOR = "publishing_successor"
    ACKNOWLEDGED = "acknowledged"
    SKIPPED_DUPLICATE = "skipped_duplicate"
    RETRY_SCHEDULED = "retry_scheduled"
    DEAD_LETTERED = "dead_lettered"


class EventAttempt:
    """Tracks the state transitions of one delivery."""

    def __init__(self, position: str, delivery_count: int) -> None:
        self.position = position
        self.delivery_count = delivery_count
        self.states: list[EventState] = [EventState.RECEIVED]

    @property
    def state(self) -> EventState:
        return self.states[-1]

    def advance(self, state: EventState) -> None:
        self.states.append(state)
        logger.debug(
            "Event state changed",
            extra={"position": self.position, "state": state.value},
        )


def blob_key(event: EventHeader, suffix: str, page_number: int | None = None) -> str:
    """Return a fresh content key grouped by workflow and page."""
    page = page_number if page_number is not None else getattr(event, "page_number", 0)
    return f"{event.workflow_id}/{page:04d}/{uuid4().hex}{suffix}"


class Stage(ABC):
    """One pipeline step."""

    name: str
    input_type: type[EventHeader]

    def __init__(self, *, input_subject: str, output_subject: str, group: str) -> None:
        self.input_subject = input_subject
        self.output_subject = output_subject
        self.group = group

    async def prepare(self) -> None:
        """Create the resources the stage writes to (idempotent)."""

    async def after_publish(self, event: EventHeader, successors: list[EventHeader]) -> None:
        """Hook run once successors are committed to the log."""

    @abstractmethod
    async def execute(self, event: EventHeader, attempt: EventAttempt) -> list[EventHeader]:
        """Run the stage for one event and return successor events."""


class TransformStage(Stage):
    """Fetch one blob, run a tool on it and store every output."""

    def __init__(
        self,
        *,
        input_subject: str,
        output_subject: str,
        group: str,
        blob_store: BlobStore,
        input_bucket: str,
        output_bucket: str,
        transformer: Transformer,
        fetch_attempts: int = 3,
        fetch_min_wait: float = 0.5,
        fetch_max_wait: float = 5.0,
    ) -> None:
        super().__init__(input_subject=input_subject, output_subject=output_subject, group=group)
        self.blob_store = blob_store
        self.input_bucket = input_bucket
        self.output_bucket = output_bucket
        self.transformer = transformer
        self.fetch_attempts = fetch_attempts
        self.fetch_min_wait = fetch_min_wait
        self.fetch_max_wait = fetch_max_wait

    async def prepare(self) -> None:
        await self.blob_store.ensure_bucket(self.output_bucket)

    @abstractmethod
    def input_key(self, event: Any) -> str:
        """Content key of the blob this stage consumes."""

    @abstractmethod
    def successors(self, event: Any, keys: list[str]) -> list[EventHeader]:
        """Build successor events for the stored output keys."""

    def input_suffix(self, event: Any) -> str:
        return Path(self.input_key(event)).suffix

    async def fetch(self, event: EventHeader) -> bytes:
        """Fetch the input blob, giving a just-published write time to show up.

        Raises:
            NotFoundError: If the blob is still absent after all attempts.
        """
        return await call_with_retry(
            self.blob_store.get,
            self.input_bucket,
            self.input_key(event),
            max_attempts=self.fetch_attempts,
            min_wait=self.fetch_min_wait,
            max_wait=self.fetch_max_wait,
            retry_on=(NotFoundError,),
        )

    async def execute(self, event: EventHeader, attempt: EventAttempt) -> list[EventHeader]:
        attempt.advance(EventState.FETCHING_BLOB)
        data = await self.fetch(event)

        workdir = Path(await asyncio.to_thread(tempfile.mkdtemp, prefix=f"docflow-{self.name}-"))
        try:
            source = workdir / f"input{self.input_suffix(event)}"
            await asyncio.to_thread(source.write_bytes, data)

            attempt.advance(EventState.TRANSFORMING)
            outputs = await self.transformer(source, workdir / "out")
            if not outputs:
                raise TransformError(f"{self.transformer.name} produced no output")

            attempt.advance(EventState.STORING_RESULT)
            keys: list[str] = []
            for index, output in enumerate(outputs, start=1):
                key = self.output_key(event, index, output)
                await self.blob_store.upload_file(self.output_bucket, key, output)
                keys.append(key)
        finally:
            await asyncio.to_thread(shutil.rmtree, workdir, ignore_errors=True)

        return self.successors(event, keys)

    def output_key(self, event: EventHeader, index: int, output: Path) -> str:
        return blob_key(event, output.suffix)


class RenderStage(TransformStage):
    """Fan out a source document into one image per page."""

    name = "render"
    input_type = SourceCreated

    def input_key(self, event: SourceCreated) -> str:
        return event.source_key

    def input_suffix(self, event: SourceCreated) -> str:
        return Path(event.file_name).suffix or ".pdf"

    def output_key(self, event: EventHeader, index: int, output: Path) -> str:
        return blob_key(event, output.suffix, page_number=index)

    def successors(self, event: SourceCreated, keys: list[str]) -> list[EventHeader]:
        total = len(keys)
        return [
            event.derive(PageCreated, page_number=number, total_pages=total, image_key=key)
            for number, key in enumerate(keys, start=1)
        ]


class _PageStage(TransformStage):
    """One page in, one page out; page position is carried unchanged."""

    output_type: type[EventHeader]
    output_field: str

    def successors(self, event: Any, keys: list[str]) -> list[EventHeader]:
        if len(keys) != 1:
            raise TransformError(f"{self.transformer.name} produced {len(keys)} outputs for one page")
        return [event.derive_page(self.output_type, **{self.output_field: keys[0]})]


class ExtractStage(_PageStage):
    """Extract text from a page image."""

    name = "extract"
    input_type = PageCreated
    output_type = TextCreated
    output_field = "text_key"

    def input_key(self, event: PageCreated) -> str:
        return event.image_key


class SynthesizeStage(_PageStage):
    """Synthesize raw audio for a page of text."""

    name = "synthesize"
    input_type = TextCreated
    output_type = AudioCreated
    output_field = "audio_key"

    def input_key(self, event: TextCreated) -> str:
        return event.text_key


class TranscodeStage(_PageStage):
    """Transcode raw page audio into its container format."""

    name = "transcode"
    input_type = AudioCreated
    output_type = ContainerCreated
    output_field = "container_key"

    def input_key(self, event: AudioCreated) -> str:
        return event.audio_key


class AssembleStage(Stage):
    """Converge every page's container into one workflow report.

    Completion is announced whenever a page arrives for a complete workflow
    that is not yet marked reported. A crash between announcing and marking
    republishes the report; ``WorkflowCompleted`` has a per-workflow
    idempotency key, so observers absorb the duplicate.
    """

    name = "assemble"
    input_type = ContainerCreated

    def __init__(
        self,
        *,
        input_subject: str,
        output_subject: str,
        group: str,
        blob_store: BlobStore,
        fan_in: FanInStore,
        report_bucket: str,
    ) -> None:
        super().__init__(input_subject=input_subject, output_subject=output_subject, group=group)
        self.blob_store = blob_store
        self.fan_in = fan_in
        self.report_bucket = report_bucket

    async def prepare(self) -> None:
        await self.blob_store.ensure_bucket(self.report_bucket)

    async def execute(self, event: EventHeader, attempt: EventAttempt) -> list[EventHeader]:
        progress = await self.fan_in.record(
            event.workflow_id, event.page_number, event.total_pages, event.container_key
        )
        logger.info(
            "Recorded page for fan-in",
            extra={
                "page_number": event.page_number,
                "received": len(progress.pages),
                "total_pages": progress.total_pages,
                "duplicate": not progress.is_new,
            },
        )

        if not progress.complete or await self.fan_in.is_reported(event.workflow_id):
            return []

        attempt.advance(EventState.STORING_RESULT)
        report = {
            "workflow_id": event.workflow_id,
            "user_id": event.user_id,
            "tenant_id": event.tenant_id,
            "total_pages": progress.total_pages,
            "pages": [
                {"page_number": number, "container_key": progress.pages[number]}
                for number in sorted(progress.pages)
            ],
            "assembled_at": datetime.now(UTC).isoformat(),
        }
        report_key = f"{event.workflow_id}/report-{uuid4().hex}.json"
        await self.blob_store.put(self.report_bucket, report_key, json.dumps(report).encode())

        return [
            event.derive(
                WorkflowCompleted,
                report_key=report_key,
                container_keys=progress.ordered_keys(),
                total_pages=progress.total_pages,
            )
        ]

    async def after_publish(self, event: EventHeader, successors: list[EventHeader]) -> None:
        if successors:
            await self.fan_in.mark_reported(event.workflow_id)


# ========== Factory ==========


def build_stage(
    name: str,
    config: DocflowConfig,
    *,
    blob_store: BlobStore,
    fan_in: FanInStore | None = None,
    transformer_factory: Callable[[str, DocflowConfig], Transformer] | None = None,
) -> Stage:
    """Instantiate a stage from configuration.

    Args:
        name: Stage name (render, extract, synthesize, transcode, assemble).
        config: Pipeline configuration.
        blob_store: Blob store shared by all stages.
        fan_in: Fan-in store, required by the assemble stage.
        transformer_factory: Builds the external tool adapter for a stage;
            defaults to ``default_transformer``.
    """
    subjects = config.subjects
    buckets = config.buckets
    groups = config.consumer_groups

    if name == "assemble":
        if fan_in is None:
            raise ValueError("assemble stage requires a fan-in store")
        return AssembleStage(
            input_subject=subjects.containers,
            output_subject=subjects.workflows,
            group=groups.assemble,
            blob_store=blob_store,
            fan_in=fan_in,
            report_bucket=buckets.reports,
        )

    wiring: dict[str, tuple[type[TransformStage], str, str, str, str]] = {
        "render": (RenderStage, subjects.sources, subjects.pages, buckets.sources, buckets.images),
        "extract": (ExtractStage, subjects.pages, subjects.texts, buckets.images, buckets.texts),
        "synthesize": (SynthesizeStage, subjects.texts, subjects.audio, buckets.texts, buckets.audio),
        "transcode": (TranscodeStage, subjects.audio, subjects.containers, buckets.audio, buckets.containers),
    }
    if name not in wiring:
        raise ValueError(f"Unknown stage: {name}")

    stage_cls, input_subject, output_subject, input_bucket, output_bucket = wiring[name]
    factory = transformer_factory or default_transformer

    return stage_cls(
        input_subject=input_subject,
        output_subject=output_subject,
        group=groups.for_stage(name),
        blob_store=blob_store,
        input_bucket=input_bucket,
        output_bucket=output_bucket,
        transformer=factory(name, config),
        fetch_attempts=config.blob_fetch_attempts,
        fetch_min_wait=config.blob_fetch_min_wait,
        fetch_max_wait=config.blob_fetch_max_wait,
    )


def default_transformer(name: str, config: DocflowConfig) -> Transformer:
    """Return the external tool adapter for a transform stage."""
    from docflow.tools import EspeakSynthesizer, FfmpegTranscoder, PdfRenderer, TesseractExtractor

    options = config.tool_options
    if name == "render":
        return PdfRenderer(dpi=options.render_dpi, image_format=options.image_format)
    if name == "extract":
        return TesseractExtractor(language=options.ocr_language, psm=options.ocr_psm)
    if name == "synthesize":
        return EspeakSynthesizer(
            voice=options.tts_voice,
            words_per_minute=options.tts_words_per_minute,
            sample_rate=options.sample_rate,
        )
    if name == "transcode":
        return FfmpegTranscoder(
            codec=options.audio_codec,
            bitrate=options.audio_bitrate,
            sample_rate=options.sample_rate,
            container=options.audio_format,
        )
    raise ValueError(f"Stage {name} has no transformer")


__all__ = [
    "AssembleStage",
    "EventAttempt",
    "EventState",
    "ExtractStage",
    "RenderStage",
    "Stage",
    "SynthesizeStage",
    "TranscodeStage",
    "TransformStage",
    "blob_key",
    "build_stage",
    "default_transformer",
]
