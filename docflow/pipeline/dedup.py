"""Processed-event stores backing idempotent stage execution."""

from __future__ import annotations

import logging

from redis.asyncio import Redis
from redis.exceptions import RedisError

from docflow.core.errors import EventLogError
from docflow.core.ports.idempotency import ProcessedEventStore

logger = logging.getLogger(__name__)


class RedisProcessedEventStore(ProcessedEventStore):
    """Processed markers as expiring Redis keys.

    Markers live as long as stream retention, after which the events they
    guard can no longer be redelivered anyway.
    """

    def __init__(self, redis_client: Redis, *, ttl_seconds: int = 7 * 24 * 3600, prefix: str = "processed") -> None:
        self.redis_client = redis_client
        self.ttl_seconds = ttl_seconds
        self.prefix = prefix

    def _key(self, scope: str, key: str) -> str:
        return f"{self.prefix}:{scope}:{key}"

    async def is_processed(self, scope: str, key: str) -> bool:
        try:
            return bool(await self.redis_client.exists(self._key(scope, key)))
        except RedisError as exc:
            raise EventLogError(f"Could not check processed marker {key}: {exc}") from exc

    async def mark_processed(self, scope: str, key: str) -> None:
        try:
            await self.redis_client.set(self._key(scope, key), "1", ex=self.ttl_seconds)
        except RedisError as exc:
            raise EventLogError(f"Could not write processed marker {key}: {exc}") from exc

        logger.debug("Marked processed", extra={"scope": scope, "idempotency_key": key})


class InMemoryProcessedEventStore(ProcessedEventStore):
    """Processed markers kept in process memory."""

    def __init__(self) -> None:
        self._seen: set[tuple[str, str]] = set()

    async def is_processed(self, scope: str, key: str) -> bool:
        return (scope, key) in self._seen

    async def mark_processed(self, scope: str, key: str) -> None:
        self._seen.add((scope, key))


__all__ = ["InMemoryProcessedEventStore", "RedisProcessedEventStore"]
