"""Pipeline events exchanged between stage workers.

Each subject carries exactly one concrete event type. Events are immutable
pydantic models sharing a common header; the ``event_type`` literal acts as
the tag of a discriminated union so decoding always yields the concrete
schema. Large data never travels in an event: payloads carry content keys
that point into the blob store.
"""

from __future__ import annotations

import json
from datetime import UTC, datetime
from typing import Annotated, Any, Literal, TypeVar
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError, model_validator

from docflow.core.errors import SchemaViolationError

E = TypeVar("E", bound="EventHeader")


def new_event_id() -> str:
    """Return a fresh unique event identifier."""
    return uuid4().hex


def _utcnow() -> datetime:
    return datetime.now(UTC)


# ========== Header ==========


class EventHeader(BaseModel):
    """Fields shared by every pipeline event.

    ``causation_id`` is the ``event_id`` of the event whose processing
    produced this one. It is absent on root events published by submission
    tooling.
    """

    model_config = ConfigDict(frozen=True, extra="ignore")

    event_id: str = Field(default_factory=new_event_id, min_length=1)
    timestamp: datetime = Field(default_factory=_utcnow)
    workflow_id: str = Field(..., min_length=1, description="Source document workflow")
    user_id: str = Field(default="anonymous", min_length=1)
    tenant_id: str = Field(default="default", min_length=1)
    causation_id: str | None = Field(default=None)

    @property
    def idempotency_key(self) -> str:
        """Key identifying the unit of work this event announces.

        Re-running a stage for the same trigger re-emits successors with the
        same key, so consumers can absorb duplicates even though every
        republished event gets a fresh ``event_id``.
        """
        if self.causation_id is None:
            return self.event_id
        page = getattr(self, "page_number", 0)
        return f"{self.event_type}:{self.causation_id}:{page}"

    def derive(self, event_cls: type[E], **payload: Any) -> E:
        """Create a successor event carrying this event's correlation header."""
        return event_cls(
            workflow_id=self.workflow_id,
            user_id=self.user_id,
            tenant_id=self.tenant_id,
            causation_id=self.event_id,
            **payload,
        )


class PagedEvent(EventHeader):
    """Header plus page position within a workflow fan-out."""

    page_number: int = Field(..., ge=1)
    total_pages: int = Field(..., ge=1)

    @model_validator(mode="after")
    def _page_within_total(self) -> PagedEvent:
        if self.page_number > self.total_pages:
            raise ValueError(
                f"page_number {self.page_number} exceeds total_pages {self.total_pages}"
            )
        return self

    def derive_page(self, event_cls: type[E], **payload: Any) -> E:
        """Create a successor for the same page, keeping the page position."""
        return self.derive(
            event_cls,
            page_number=self.page_number,
            total_pages=self.total_pages,
            **payload,
        )


# ========== Concrete events ==========


class SourceCreated(EventHeader):
    """A source document was uploaded to the source bucket."""

    event_type: Literal["source_created"] = "source_created"
    source_key: str = Field(..., min_length=1)
    file_name: str = Field(default="document.pdf")
    content_type: str = Field(default="application/pdf")


class PageCreated(PagedEvent):
    """One page of a source document was rendered to an image."""

    event_type: Literal["page_created"] = "page_created"
    image_key: str = Field(..., min_length=1)


class TextCreated(PagedEvent):
    """Text was extracted from a page image."""

    event_type: Literal["text_created"] = "text_created"
    text_key: str = Field(..., min_length=1)


class AudioCreated(PagedEvent):
    """Raw audio was synthesized for a page of text."""

    event_type: Literal["audio_created"] = "audio_created"
    audio_key: str = Field(..., min_length=1)


class ContainerCreated(PagedEvent):
    """Raw page audio was transcoded into its final container format."""

    event_type: Literal["container_created"] = "container_created"
    container_key: str = Field(..., min_length=1)


class WorkflowCompleted(EventHeader):
    """Every page of a workflow reached its final container."""

    event_type: Literal["workflow_completed"] = "workflow_completed"
    report_key: str = Field(..., min_length=1)
    container_keys: list[str] = Field(default_factory=list)
    total_pages: int = Field(..., ge=1)

    @property
    def idempotency_key(self) -> str:
        return f"{self.event_type}:{self.workflow_id}"


PipelineEvent = Annotated[
    SourceCreated | PageCreated | TextCreated | AudioCreated | ContainerCreated | WorkflowCompleted,
    Field(discriminator="event_type"),
]

_EVENT_ADAPTER: TypeAdapter[Any] = TypeAdapter(PipelineEvent)

EVENT_TYPES: dict[str, type[EventHeader]] = {
    "source_created": SourceCreated,
    "page_created": PageCreated,
    "text_created": TextCreated,
    "audio_created": AudioCreated,
    "container_created": ContainerCreated,
    "workflow_completed": WorkflowCompleted,
}


# ========== Wire encoding ==========


def encode_event(event: EventHeader) -> dict[str, str]:
    """Encode an event into stream entry fields.

    ``event_type``, ``event_id`` and ``workflow_id`` are duplicated outside
    the JSON payload so operators can filter entries without decoding them.
    """
    payload = event.model_dump(mode="json")
    payload["event_type"] = event.event_type
    return {
        "event_type": event.event_type,
        "event_id": event.event_id,
        "workflow_id": event.workflow_id,
        "payload": json.dumps(payload, separators=(",", ":")),
    }


def decode_event(fields: dict[str, str]) -> EventHeader:
    """Decode stream entry fields into the concrete event model.

    Raises:
        SchemaViolationError: If the entry has no payload, names an unknown
            event type, or does not validate against its schema.
    """
    raw = fields.get("payload")
    if raw is None:
        raise SchemaViolationError("Stream entry has no payload field")

    try:
        data = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise SchemaViolationError(f"Payload is not valid JSON: {exc}") from exc

    if not isinstance(data, dict):
        raise SchemaViolationError("Payload must be a JSON object")

    data.setdefault("event_type", fields.get("event_type"))
    if data["event_type"] not in EVENT_TYPES:
        raise SchemaViolationError(f"Unknown event type: {data['event_type']!r}")

    try:
        event: EventHeader = _EVENT_ADAPTER.validate_python(data)
    except ValidationError as exc:
        raise SchemaViolationError(
            f"Invalid {data['event_type']} payload: {exc.error_count()} error(s)"
        ) from exc

    return event


def encoded_size(fields: dict[str, str]) -> int:
    """Return the number of bytes an encoded entry occupies on the wire."""
    return sum(len(k.encode()) + len(v.encode()) for k, v in fields.items())


__all__ = [
    "AudioCreated",
    "ContainerCreated",
    "EVENT_TYPES",
    "EventHeader",
    "PageCreated",
    "PagedEvent",
    "PipelineEvent",
    "SourceCreated",
    "TextCreated",
    "WorkflowCompleted",
    "decode_event",
    "encode_event",
    "encoded_size",
    "new_event_id",
]
