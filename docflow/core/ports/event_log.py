"""Port for the durable, subject-partitioned event log."""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator
from dataclasses import dataclass, field
from functools import cached_property

from docflow.common.dlq import DeadLetterPolicy, DeadLetterRecord
from docflow.core.errors import PublishError, SchemaViolationError
from docflow.core.events import EventHeader, decode_event, encode_event, encoded_size


@dataclass(frozen=True, slots=True)
class AckHandle:
    """Identifies one delivery of one entry to one consumer group."""

    subject: str
    group: str
    consumer: str
    message_id: str
    delivery_count: int


@dataclass
class Delivery:
    """An entry handed to a consumer, together with its acknowledgment handle.

    The event is decoded lazily so a structurally invalid entry still reaches
    the worker, which dead-letters it instead of losing it.
    """

    handle: AckHandle
    fields: dict[str, str] = field(default_factory=dict)

    @cached_property
    def event(self) -> EventHeader:
        """Decoded event; raises ``SchemaViolationError`` for invalid entries."""
        return decode_event(self.fields)


class EventLog(ABC):
    """Publish events durably and deliver them to durable consumer groups.

    Delivery is at-least-once: an entry stays pending for its consumer group
    until acknowledged, and is redelivered once the policy's ack deadline
    elapses or a nack delay expires. Entries delivered more often than the
    policy allows are moved to the dead-letter subject by the log itself.
    """

    def __init__(self, *, policy: DeadLetterPolicy, max_event_bytes: int = 64 * 1024) -> None:
        self.policy = policy
        self.max_event_bytes = max_event_bytes

    def encode(self, subject: str, event: EventHeader) -> dict[str, str]:
        """Encode an event and enforce the size ceiling."""
        fields = encode_event(event)
        size = encoded_size(fields)
        if size > self.max_event_bytes:
            raise PublishError(
                f"Event {event.event_id} for {subject} is {size} bytes, "
                f"ceiling is {self.max_event_bytes}"
            )
        return fields

    @abstractmethod
    async def ensure_stream(self, subject: str, group: str | None = None) -> None:
        """Create the subject and, when given, its consumer group (idempotent)."""

    @abstractmethod
    async def publish(self, subject: str, event: EventHeader) -> str:
        """Commit an event to a subject and return its position.

        Raises:
            PublishError: If the log is unreachable or the event exceeds the
                size ceiling.
        """

    @abstractmethod
    def subscribe(
        self,
        subject: str,
        group: str,
        consumer: str,
        *,
        prefetch: int = 1,
        stop: asyncio.Event | None = None,
    ) -> AsyncIterator[Delivery]:
        """Yield deliveries for a consumer group member until ``stop`` is set.

        At most ``prefetch`` entries are pulled per poll, so a consumer that
        stops iterating stops pulling.
        """

    @abstractmethod
    async def ack(self, handle: AckHandle) -> None:
        """Mark a delivery processed; acknowledging twice is a no-op."""

    @abstractmethod
    async def nack(self, handle: AckHandle, delay: float = 0.0) -> None:
        """Release a delivery for redelivery once ``delay`` seconds passed."""

    @abstractmethod
    async def dead_letter(self, handle: AckHandle, fields: dict[str, str], error: str) -> str:
        """Move a delivery to the dead-letter subject and acknowledge it."""

    @abstractmethod
    async def history(self, subject: str, *, count: int | None = None) -> list[tuple[str, dict[str, str]]]:
        """Return retained entries of a subject as (position, fields) tuples."""

    async def events(self, subject: str, *, workflow_id: str | None = None) -> list[EventHeader]:
        """Decode the retained events of a subject, skipping invalid entries."""
        decoded: list[EventHeader] = []
        for _position, fields in await self.history(subject):
            if workflow_id is not None and fields.get("workflow_id") != workflow_id:
                continue
            try:
                decoded.append(decode_event(fields))
            except SchemaViolationError:
                continue
        return decoded

    async def dead_letters(self, subject: str, *, count: int | None = None) -> list[DeadLetterRecord]:
        """Return the dead-lettered entries of a primary subject."""
        entries = await self.history(self.policy.dead_letter_subject(subject), count=count)
        return [DeadLetterRecord.from_fields(position, fields) for position, fields in entries]


__all__ = ["AckHandle", "Delivery", "EventLog"]
