"""Redis Streams event log with consumer-group delivery and dead-lettering."""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import AsyncIterator
from typing import Any

from redis import asyncio as redis
from redis.asyncio import Redis
from redis.exceptions import RedisError, ResponseError

from docflow.common.dlq import DeadLetterPolicy
from docflow.core.errors import EventLogError, PublishError
from docflow.core.events import EventHeader
from docflow.core.ports.event_log import AckHandle, Delivery, EventLog
from docflow.streams.polling import decode_fields, sleep_until_stopped, text

logger = logging.getLogger(__name__)


class RedisStreamEventLog(EventLog):
    """Event log backed by Redis Streams.

    * ``publish`` appends with XADD and trims entries older than the
      retention window (stream IDs are millisecond timestamps, so MINID
      trimming is time based).
    * New entries are read with XREADGROUP; entries left unacknowledged past
      the ack deadline are taken over with XAUTOCLAIM; nacked entries are
      scheduled in a sorted set and taken over with XCLAIM once due.
    * Delivery counts come from XPENDING and drive dead-lettering.
    """

    def __init__(
        self,
        redis_client: Redis,
        *,
        policy: DeadLetterPolicy,
        max_event_bytes: int = 64 * 1024,
        retention_seconds: int | None = 7 * 24 * 3600,
        block_ms: int = 1000,
        error_backoff_seconds: float = 1.0,
    ) -> None:
        super().__init__(policy=policy, max_event_bytes=max_event_bytes)
        self.redis_client = redis_client
        self.retention_seconds = retention_seconds
        self.block_ms = block_ms
        self.error_backoff_seconds = error_backoff_seconds
        self._autoclaim_cursors: dict[tuple[str, str], str] = {}

    @staticmethod
    def retry_key(subject: str, group: str) -> str:
        """Sorted set holding nacked entries and the time they become due."""
        return f"{subject}:{group}:retry"

    # ========== Publishing ==========

    async def ensure_stream(self, subject: str, group: str | None = None) -> None:
        """Ensure a consumer group exists for the stream.

        Groups start at the beginning of the stream so entries published
        before the first worker started are still delivered. Subjects without
        a group are created lazily by their first XADD.
        """
        if group is None:
            return

        try:
            await self.redis_client.xgroup_create(
                name=subject,
                groupname=group,
                id="0-0",
                mkstream=True,
            )
        except ResponseError as exc:
            if "BUSYGROUP" in str(exc):
                return
            raise EventLogError(f"Could not create group {group} on {subject}: {exc}") from exc
        except RedisError as exc:
            raise EventLogError(f"Could not create group {group} on {subject}: {exc}") from exc

    async def publish(self, subject: str, event: EventHeader) -> str:
        fields = self.encode(subject, event)
        position = await self._append(subject, fields)

        logger.debug(
            "Published event",
            extra={
                "subject": subject,
                "position": position,
                "event_type": fields["event_type"],
                "workflow_id": event.workflow_id,
                "event_id": event.event_id,
            },
        )
        return position

    async def _append(self, subject: str, fields: dict[str, str]) -> str:
        kwargs: dict[str, Any] = {}
        if self.retention_seconds is not None:
            cutoff_ms = int((time.time() - self.retention_seconds) * 1000)
            kwargs["minid"] = f"{max(cutoff_ms, 0)}-0"
            kwargs["approximate"] = True

        try:
            message_id = await self.redis_client.xadd(name=subject, fields=fields, **kwargs)
        except RedisError as exc:
            raise PublishError(f"Could not publish to {subject}: {exc}") from exc

        return text(message_id)

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
            try:
                batch = await self._poll(subject, group, consumer, prefetch)
            except (RedisError, EventLogError) as exc:
                logger.warning(
                    "Event log poll failed, retrying",
                    extra={"subject": subject, "group": group, "error": str(exc)},
                )
                await sleep_until_stopped(stop, self.error_backoff_seconds)
                continue

            for delivery in batch:
                yield delivery

    async def _poll(self, subject: str, group: str, consumer: str, limit: int) -> list[Delivery]:
        deliveries = await self._claim_scheduled(subject, group, consumer, limit)

        if len(deliveries) < limit:
            deliveries += await self._claim_expired(subject, group, consumer, limit - len(deliveries))

        if len(deliveries) < limit:
            deliveries += await self._read_new(
                subject,
                group,
                consumer,
                limit - len(deliveries),
                block_ms=None if deliveries else self.block_ms,
            )

        return deliveries

    async def _read_new(
        self, subject: str, group: str, consumer: str, count: int, *, block_ms: int | None
    ) -> list[Delivery]:
        response = await self.redis_client.xreadgroup(
            groupname=group,
            consumername=consumer,
            streams={subject: ">"},
            count=count,
            block=block_ms,
        )

        deliveries: list[Delivery] = []
        for stream_name, messages in response or []:
            if text(stream_name) != subject:
                continue
            for message_id, payload in messages:
                handle = AckHandle(
                    subject=subject,
                    group=group,
                    consumer=consumer,
                    message_id=text(message_id),
                    delivery_count=1,
                )
                deliveries.append(Delivery(handle=handle, fields=decode_fields(payload)))

        return deliveries

    async def _claim_expired(
        self, subject: str, group: str, consumer: str, count: int
    ) -> list[Delivery]:
        cursor_key = (subject, group)
        start_id = self._autoclaim_cursors.get(cursor_key, "0-0")

        result = await self.redis_client.xautoclaim(
            subject,
            group,
            consumer,
            min_idle_time=int(self.policy.ack_deadline_seconds * 1000),
            start_id=start_id,
            count=count,
        )

        next_id = text(result[0]) if result else "0-0"
        self._autoclaim_cursors[cursor_key] = next_id
        messages = result[1] if result and len(result) > 1 else []

        return await self._to_redeliveries(subject, group, consumer, messages)

    async def _claim_scheduled(
        self, subject: str, group: str, consumer: str, count: int
    ) -> list[Delivery]:
        key = self.retry_key(subject, group)
        due = await self.redis_client.zrangebyscore(key, "-inf", time.time(), start=0, num=count)
        if not due:
            return []

        # ZREM decides ownership: only the consumer that removed an id claims it.
        # A crash after the removal leaves the entry pending for XAUTOCLAIM.
        message_ids = []
        for message_id in (text(raw) for raw in due):
            if await self.redis_client.zrem(key, message_id):
                message_ids.append(message_id)
        if not message_ids:
            return []

        messages = await self.redis_client.xclaim(
            subject,
            group,
            consumer,
            min_idle_time=0,
            message_ids=message_ids,
        )

        return await self._to_redeliveries(subject, group, consumer, messages)

    async def _to_redeliveries(
        self,
        subject: str,
        group: str,
        consumer: str,
        messages: list[Any],
    ) -> list[Delivery]:
        deliveries: list[Delivery] = []

        for message_id, payload in messages:
            if message_id is None:
                continue
            message_id = text(message_id)

            if payload is None:
                # Entry was trimmed by retention while pending
                await self.redis_client.xack(subject, group, message_id)
                continue

            handle = AckHandle(
                subject=subject,
                group=group,
                consumer=consumer,
                message_id=message_id,
                delivery_count=await self._delivery_count(subject, group, message_id),
            )
            fields = decode_fields(payload)

            if self.policy.is_exhausted(handle.delivery_count):
                await self.dead_letter(
                    handle,
                    fields,
                    f"Exceeded {self.policy.max_deliveries} deliveries",
                )
                continue

            logger.info(
                "Redelivering event",
                extra={
                    "subject": subject,
                    "group": group,
                    "position": message_id,
                    "delivery_count": handle.delivery_count,
                },
            )
            deliveries.append(Delivery(handle=handle, fields=fields))

        return deliveries

    async def _delivery_count(self, subject: str, group: str, message_id: str) -> int:
        pending = await self.redis_client.xpending_range(
            subject, group, min=message_id, max=message_id, count=1
        )
        if not pending:
            return 1
        return int(pending[0]["times_delivered"])

    # ========== Acknowledgment ==========

    async def ack(self, handle: AckHandle) -> None:
        try:
            await self.redis_client.xack(handle.subject, handle.group, handle.message_id)
            await self.redis_client.zrem(self.retry_key(handle.subject, handle.group), handle.message_id)
        except RedisError as exc:
            raise EventLogError(f"Could not acknowledge {handle.message_id}: {exc}") from exc

    async def nack(self, handle: AckHandle, delay: float = 0.0) -> None:
        try:
            # JUSTID resets the idle time without counting another delivery
            await self.redis_client.xclaim(
                handle.subject,
                handle.group,
                handle.consumer,
                min_idle_time=0,
                message_ids=[handle.message_id],
                justid=True,
            )
            await self.redis_client.zadd(
                self.retry_key(handle.subject, handle.group),
                {handle.message_id: time.time() + delay},
            )
        except RedisError as exc:
            raise EventLogError(f"Could not release {handle.message_id}: {exc}") from exc

    async def dead_letter(self, handle: AckHandle, fields: dict[str, str], error: str) -> str:
        entry = self.policy.build_entry(
            fields,
            error=error,
            source_subject=handle.subject,
            source_id=handle.message_id,
            delivery_count=handle.delivery_count,
        )
        position = await self._append(self.policy.dead_letter_subject(handle.subject), entry)
        await self.ack(handle)

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
        try:
            entries = await self.redis_client.xrange(subject, min="-", max="+", count=count)
        except RedisError as exc:
            raise EventLogError(f"Could not read {subject}: {exc}") from exc

        return [(text(message_id), decode_fields(payload)) for message_id, payload in entries]


async def create_redis_client(url: str, *, socket_timeout: int | None = None) -> Redis:
    """Helper to create a Redis client from URL.

    Responses are left undecoded because the same client also moves binary
    blob chunks; stream adapters decode text fields themselves.
    """
    return redis.from_url(url, decode_responses=False, socket_timeout=socket_timeout)


__all__ = ["RedisStreamEventLog", "create_redis_client"]
