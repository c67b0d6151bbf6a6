"""Configuration management for the docflow pipeline.

Loads environment variables using pydantic-settings for type-safe configuration.
Subject names, bucket names, consumer groups, delivery policy and tool options
are defined here. The configuration is frozen once constructed; entry points
build it once and pass it explicitly into every component.
"""

import os
from functools import lru_cache
from pathlib import Path
from threading import Lock
from typing import Literal

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from docflow.common.dlq import DeadLetterPolicy

_ENV_LOADED = False
_ENV_LOCK = Lock()

StageName = Literal["render", "extract", "synthesize", "transcode", "assemble"]
STAGE_NAMES: tuple[str, ...] = ("render", "extract", "synthesize", "transcode", "assemble")


def _resolve_env_file() -> str | None:
    """Locate the .env file regardless of the current working directory.

    Preference order:
        1. DOCFLOW_ENV_FILE environment variable (explicit override)
        2. Current working directory (common for local runs)
    """
    override = os.getenv("DOCFLOW_ENV_FILE")
    if override:
        override_path = Path(override).expanduser()
        if override_path.is_file():
            return str(override_path)

    cwd_candidate = Path.cwd() / ".env"
    if cwd_candidate.is_file():
        return str(cwd_candidate)

    return None


_DEFAULT_ENV_FILE = _resolve_env_file()


def ensure_env_loaded() -> None:
    """Load environment variables from disk exactly once."""
    global _ENV_LOADED

    with _ENV_LOCK:
        if _ENV_LOADED:
            return

        env_path = _DEFAULT_ENV_FILE or _resolve_env_file()
        if env_path:
            load_dotenv(env_path, override=False)

        _ENV_LOADED = True


# ========== Typed blocks ==========


class Subjects(BaseModel):
    """Event subjects (Redis Stream keys) forming the wire contract between stages."""

    model_config = ConfigDict(frozen=True)

    sources: str
    pages: str
    texts: str
    audio: str
    containers: str
    workflows: str

    def all(self) -> list[str]:
        return [self.sources, self.pages, self.texts, self.audio, self.containers, self.workflows]


class Buckets(BaseModel):
    """Blob store bucket per artifact kind."""

    model_config = ConfigDict(frozen=True)

    sources: str
    images: str
    texts: str
    audio: str
    containers: str
    reports: str

    def all(self) -> list[str]:
        return [self.sources, self.images, self.texts, self.audio, self.containers, self.reports]


class ConsumerGroups(BaseModel):
    """Durable consumer group name per stage."""

    model_config = ConfigDict(frozen=True)

    render: str
    extract: str
    synthesize: str
    transcode: str
    assemble: str

    def for_stage(self, stage: str) -> str:
        return str(getattr(self, stage))


class ToolOptions(BaseModel):
    """Options handed to the external transformation tools."""

    model_config = ConfigDict(frozen=True)

    render_dpi: int = Field(default=150, ge=36, le=1200)
    image_format: Literal["png", "jpg"] = "png"
    ocr_language: str = "eng"
    ocr_psm: int = Field(default=3, ge=0, le=13)
    tts_voice: str = "en-us"
    tts_words_per_minute: int = Field(default=165, ge=80, le=450)
    sample_rate: int = Field(default=22050, ge=8000, le=96000)
    audio_codec: str = "libmp3lame"
    audio_bitrate: str = "128k"
    audio_format: str = "mp3"


class DocflowConfig(BaseSettings):
    """Main configuration class for the docflow pipeline.

    Loads connection endpoints, subject/bucket/consumer names, delivery policy
    and tool options from environment variables. Uses pydantic-settings for
    validation and type safety.
    """

    model_config = SettingsConfigDict(
        env_file=_DEFAULT_ENV_FILE,
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        frozen=True,
    )

    # ========== Connections ==========
    redis_url: str = "redis://localhost:6379/0"
    redis_socket_timeout: int = Field(default=10, ge=1, le=300)
    blob_backend: Literal["redis", "local"] = "redis"
    blob_root: Path = Path("./var/blobs")
    blob_chunk_size: int = Field(default=256 * 1024, ge=1024)

    # ========== Subjects ==========
    subject_sources: str = "stream:sources"
    subject_pages: str = "stream:pages"
    subject_texts: str = "stream:texts"
    subject_audio: str = "stream:audio"
    subject_containers: str = "stream:containers"
    subject_workflows: str = "stream:workflows"
    dead_letter_suffix: str = ":dead"

    # ========== Buckets ==========
    bucket_sources: str = "sources"
    bucket_images: str = "images"
    bucket_texts: str = "texts"
    bucket_audio: str = "audio"
    bucket_containers: str = "containers"
    bucket_reports: str = "reports"
    bucket_max_bytes: int | None = None

    # ========== Consumer groups ==========
    group_render: str = "render"
    group_extract: str = "extract"
    group_synthesize: str = "synthesize"
    group_transcode: str = "transcode"
    group_assemble: str = "assemble"
    consumer_prefix: str = "worker"

    # ========== Delivery & retries ==========
    max_deliveries: int = Field(default=5, ge=1)
    ack_deadline_seconds: float = Field(default=300.0, gt=0)
    retry_base_delay_seconds: float = Field(default=2.0, ge=0)
    retry_max_delay_seconds: float = Field(default=60.0, ge=0)
    max_event_bytes: int = Field(default=64 * 1024, ge=512)
    stream_retention_seconds: int = Field(default=7 * 24 * 3600, ge=60)
    dedup_ttl_seconds: int = Field(default=7 * 24 * 3600, ge=60)
    block_ms: int = Field(default=1000, ge=10)

    # ========== Worker tuning ==========
    max_in_flight: int = Field(default=4, ge=1, le=256)
    processing_timeout_seconds: float = Field(default=240.0, gt=0)
    shutdown_grace_seconds: float = Field(default=30.0, ge=0)
    blob_fetch_attempts: int = Field(default=3, ge=1)
    blob_fetch_min_wait: float = Field(default=0.5, ge=0)
    blob_fetch_max_wait: float = Field(default=5.0, ge=0)

    # ========== Tools ==========
    render_dpi: int = 150
    image_format: Literal["png", "jpg"] = "png"
    ocr_language: str = "eng"
    ocr_psm: int = 3
    tts_voice: str = "en-us"
    tts_words_per_minute: int = 165
    sample_rate: int = 22050
    audio_codec: str = "libmp3lame"
    audio_bitrate: str = "128k"
    audio_format: str = "mp3"

    # ========== Observability ==========
    log_level: str = "INFO"
    health_check_timeout: float = 5.0

    @field_validator("dead_letter_suffix")
    @classmethod
    def _validate_dead_letter_suffix(cls, value: str) -> str:
        if not value:
            raise ValueError("dead_letter_suffix must not be empty")
        return value

    @model_validator(mode="after")
    def _validate_timeouts(self) -> "DocflowConfig":
        if self.processing_timeout_seconds > self.ack_deadline_seconds:
            raise ValueError("processing_timeout_seconds must not exceed ack_deadline_seconds")
        return self

    @property
    def subjects(self) -> Subjects:
        """Return the subject block."""
        return Subjects(
            sources=self.subject_sources,
            pages=self.subject_pages,
            texts=self.subject_texts,
            audio=self.subject_audio,
            containers=self.subject_containers,
            workflows=self.subject_workflows,
        )

    @property
    def buckets(self) -> Buckets:
        """Return the bucket block."""
        return Buckets(
            sources=self.bucket_sources,
            images=self.bucket_images,
            texts=self.bucket_texts,
            audio=self.bucket_audio,
            containers=self.bucket_containers,
            reports=self.bucket_reports,
        )

    @property
    def consumer_groups(self) -> ConsumerGroups:
        """Return the consumer group block."""
        return ConsumerGroups(
            render=self.group_render,
            extract=self.group_extract,
            synthesize=self.group_synthesize,
            transcode=self.group_transcode,
            assemble=self.group_assemble,
        )

    @property
    def delivery_policy(self) -> DeadLetterPolicy:
        """Return the redelivery / dead-letter policy shared by every event log."""
        return DeadLetterPolicy(
            max_deliveries=self.max_deliveries,
            ack_deadline_seconds=self.ack_deadline_seconds,
            base_delay_seconds=self.retry_base_delay_seconds,
            max_delay_seconds=self.retry_max_delay_seconds,
            suffix=self.dead_letter_suffix,
        )

    @property
    def tool_options(self) -> ToolOptions:
        """Return validated tool options."""
        return ToolOptions(
            render_dpi=self.render_dpi,
            image_format=self.image_format,
            ocr_language=self.ocr_language,
            ocr_psm=self.ocr_psm,
            tts_voice=self.tts_voice,
            tts_words_per_minute=self.tts_words_per_minute,
            sample_rate=self.sample_rate,
            audio_codec=self.audio_codec,
            audio_bitrate=self.audio_bitrate,
            audio_format=self.audio_format,
        )


@lru_cache(maxsize=1)
def get_config() -> DocflowConfig:
    """Return cached settings instance for process entry points.

    Components never call this themselves; they receive the configuration
    through their constructors.

    Returns:
        DocflowConfig: The configuration instance loaded from environment variables.
    """
    ensure_env_loaded()
    return DocflowConfig()


__all__ = [
    "Buckets",
    "ConsumerGroups",
    "DocflowConfig",
    "STAGE_NAMES",
    "StageName",
    "Subjects",
    "ToolOptions",
    "ensure_env_loaded",
    "get_config",
]
