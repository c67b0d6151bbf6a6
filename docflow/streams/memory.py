"""In-process event log with the same delivery semantics as Redis Streams.

Used by tests and single-process runs. Consumer groups, pending entries,
ack deadlines, nack delays, delivery counts and dead-lettering behave like
the Redis adapter; nothing survives the process.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import AsyncIterator
from dataclasses import dataclass, field

from docflow.common.dlq import DeadLetterPolicy
from docflow.core.events import EventHeader
from docflow.core.ports.event_log import AckHandle, Delivery, EventLog
from docflow.streams.polling import sleep_until_stopped

logger = logging.getLogger(__name__)


@dataclass
class _Pending:
    consumer: str
    delivered_at: float
    delivery_count: int
    due_at: float | None = None


@dataclass
class _Group:
    cursor: int = 0
    pending: dict[str, _Pending] = field(default_factory=dict)


@dataclass
class _Stream:
    entries: list[tuple[str, dict[str, str]]] = field(default_factory=list)
    index: dict[str, dict[str, str]] = field(default_factory=dict)
    groups: dict[str, _Group] = field(default_factory=dict)
    last_ms: int = 0
    seq: int = 0


class InMemoryEventLog(EventLog):
    """Event log kept in process memory."""

    def __init__(
        self,
        *,
        policy: DeadLetterPolicy | None = None,
        max_event_bytes: int = 64 * 1024,
        poll_interval: float = 0.01,
    ) -> None:
        super().__init__(policy=policy or DeadLetterPolicy(), max_event_bytes=max_event_bytes)
        self.poll_interval = poll_interval
        self._streams: dict[str, _Stream] = {}

    def _stream(self, subject: str) -> _Stream:
        return self._streams.setdefault(subject, _Stream())

    def _group(self, subject: str, group: str) -> _Group:
        return self._stream(subject).groups.setdefault(group, _Group())

    # ========== Publishing ==========

    async def ensure_stream(self, subject: str, group: str | None = None) -> None:
        self._stream(subject)
        if group is not None:
            self._group(subject, group)

    async def publish(self, subject: str, event: EventHeader) -> str:
        return self._append(subject, self.encode(subject, event))

    def _append(self, subject: str, fields: dict[str, str]) -> str:
        stream = self._stream(subject)
        now_ms = int(time.time() * 1000)
        if now_ms > stream.last_ms:
            stream.last_ms, stream.seq = now_ms, 0
        else:
            stream.seq += 1
        message_id = f"{stream.last_ms}-{stream.seq}"

        stored = dict(fields)
        stream.entries.append((message_id, stored))
        stream.index[message_id] = stored
        return message_id

    # ========== Delivery ==========

    async def subscribe(
        self,
        subject: str,
        group: str,
        consumer: str,
        *,
        prefetch: int = 1,
        stop: asyncio.Event | None = None,
    ) -> AsyncIterator[Delivery]:
        await self.ensure_stream(subject, group)

        while stop is None or not stop.is_set():
            batch = self._claim(subject, group, consumer, prefetch)
            if not batch:
                await sleep_until_stopped(stop, self.poll_interval)
                continue
            for delivery in batch:
                yield delivery

    def _claim(self, subject: str, group: str, consumer: str, limit: int) -> list[Delivery]:
        stream = self._stream(subject)
        state = self._group(subject, group)
        now = time.monotonic()
        deliveries: list[Delivery] = []

        # Nacked entries whose delay elapsed, then entries past the ack deadline
        for message_id, pending in list(state.pending.items()):
            if len(deliveries) >= limit:
                break
            due = pending.due_at is not None and pending.due_at <= now
            expired = now - pending.delivered_at >= self.policy.ack_deadline_seconds
            if not (due or expired):
                continue

            pending.consumer = consumer
            pending.delivered_at = now
            pending.due_at = None
            pending.delivery_count += 1
            handle = AckHandle(subject, group, consumer, message_id, pending.delivery_count)
            fields = dict(stream.index[message_id])

            if self.policy.is_exhausted(pending.delivery_count):
                self._dead_letter(handle, fields, f"Exceeded {self.policy.max_deliveries} deliveries")
                continue

            deliveries.append(Delivery(handle=handle, fields=fields))

        while len(deliveries) < limit and state.cursor < len(stream.entries):
            message_id, fields = stream.entries[state.cursor]
            state.cursor += 1
            state.pending[message_id] = _Pending(consumer=consumer, delivered_at=now, delivery_count=1)
            handle = AckHandle(subject, group, consumer, message_id, 1)
            deliveries.append(Delivery(handle=handle, fields=dict(fields)))

        return deliveries

    # ========== Acknowledgment ==========

    async def ack(self, handle: AckHandle) -> None:
        self._group(handle.subject, handle.group).pending.pop(handle.message_id, None)

    async def nack(self, handle: AckHandle, delay: float = 0.0) -> None:
        pending = self._group(handle.subject, handle.group).pending.get(handle.message_id)
        if pending is None:
            return
        now = time.monotonic()
        pending.delivered_at = now
        pending.due_at = now + delay

    async def dead_letter(self, handle: AckHandle, fields: dict[str, str], error: str) -> str:
        return self._dead_letter(handle, fields, error)

    def _dead_letter(self, handle: AckHandle, fields: dict[str, str], error: str) -> str:
        entry = self.policy.build_entry(
            fields,
            error=error,
            source_subject=handle.subject,
            source_id=handle.message_id,
            delivery_count=handle.delivery_count,
        )
        position = self._append(self.policy.dead_letter_subject(handle.subject), entry)
        self._group(handle.subject, handle.group).pending.pop(handle.message_id, None)

        logger.warning(
            "Sent event to dead-letter subject",
            extra={
                "subject": handle.subject,
                "group": handle.group,
                "position": handle.message_id,
                "delivery_count": handle.delivery_count,
                "error": error,
            },
        )
        return position

    # ========== Inspection ==========

    async def history(self, subject: str, *, count: int | None = None) -> list[tuple[str, dict[str, str]]]:
        entries = self._streams.get(subject, _Stream()).entries
        selected = entries if count is None else entries[:count]
        return [(message_id, dict(fields)) for message_id, fields in selected]

    def pending_count(self, subject: str, group: str) -> int:
        """Number of delivered but unacknowledged entries for a group."""
        return len(self._group(subject, group).pending)


__all__ = ["InMemoryEventLog"]
