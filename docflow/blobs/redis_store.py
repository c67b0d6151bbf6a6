"""Redis-backed blob store with chunked, write-once objects.

Layout for blob ``key`` in ``bucket``:

* ``{ns}:{bucket}:{key}:meta`` - JSON metadata (upload id, size, chunk count,
  sha256, created_at). Written last with ``SET NX``: its presence is what
  makes a blob visible, and ``NX`` makes keys write-once.
* ``{ns}:{bucket}:{key}:{upload_id}:{index}`` - data chunks. Every upload
  writes its own chunk keys, so concurrent writers never clobber each other.
* ``{ns}:buckets`` / ``{ns}:bucket:{bucket}`` - bucket registry and config.
"""

from __future__ import annotations

import hashlib
import json
import logging
from datetime import UTC, datetime
from uuid import uuid4

from redis.asyncio import Redis
from redis.exceptions import RedisError

from docflow.core.errors import BlobExistsError, NotFoundError, StoreReadError, StoreWriteError
from docflow.core.ports.blob_store import BlobData, BlobStore, BucketConfig, read_all
from docflow.streams.polling import text

logger = logging.getLogger(__name__)


class RedisBlobStore(BlobStore):
    """Blob store keeping chunked objects in Redis."""

    def __init__(
        self,
        redis_client: Redis,
        *,
        chunk_size: int = 256 * 1024,
        namespace: str = "blob",
    ) -> None:
        self.redis_client = redis_client
        self.chunk_size = chunk_size
        self.namespace = namespace
        self._bucket_cache: dict[str, BucketConfig] = {}

    def _meta_key(self, bucket: str, key: str) -> str:
        return f"{self.namespace}:{bucket}:{key}:meta"

    def _chunk_key(self, bucket: str, key: str, upload_id: str, index: int) -> str:
        return f"{self.namespace}:{bucket}:{key}:{upload_id}:{index}"

    def _bucket_key(self, bucket: str) -> str:
        return f"{self.namespace}:bucket:{bucket}"

    async def ensure_bucket(self, bucket: str, config: BucketConfig | None = None) -> None:
        # Without an explicit config an existing bucket keeps its settings
        explicit = config is not None
        config = config or BucketConfig()
        try:
            await self.redis_client.set(self._bucket_key(bucket), config.model_dump_json(), nx=not explicit)
            await self.redis_client.sadd(f"{self.namespace}:buckets", bucket)
        except RedisError as exc:
            raise StoreWriteError(f"Could not create bucket {bucket}: {exc}") from exc

        if explicit:
            self._bucket_cache[bucket] = config
        else:
            self._bucket_cache.pop(bucket, None)
        logger.info("Ensured bucket", extra={"bucket": bucket})

    async def _bucket_config(self, bucket: str) -> BucketConfig | None:
        cached = self._bucket_cache.get(bucket)
        if cached is not None:
            return cached

        raw = await self.redis_client.get(self._bucket_key(bucket))
        if raw is None:
            return None

        config = BucketConfig.model_validate_json(text(raw))
        self._bucket_cache[bucket] = config
        return config

    async def put(self, bucket: str, key: str, data: BlobData) -> str:
        payload = read_all(data)

        try:
            config = await self._bucket_config(bucket)
            if config is None:
                raise StoreWriteError(f"Unknown bucket: {bucket}")
            if config.max_bytes is not None and len(payload) > config.max_bytes:
                raise StoreWriteError(
                    f"Blob {bucket}/{key} is {len(payload)} bytes, bucket limit is {config.max_bytes}"
                )
            if await self.redis_client.exists(self._meta_key(bucket, key)):
                raise BlobExistsError(bucket, key)

            upload_id = uuid4().hex
            chunk_keys: list[str] = []
            async with self.redis_client.pipeline(transaction=False) as pipe:
                for index, offset in enumerate(range(0, max(len(payload), 1), self.chunk_size)):
                    chunk_key = self._chunk_key(bucket, key, upload_id, index)
                    chunk_keys.append(chunk_key)
                    pipe.set(chunk_key, payload[offset : offset + self.chunk_size], ex=config.ttl_seconds)
                await pipe.execute()

            meta = {
                "upload_id": upload_id,
                "size": len(payload),
                "chunks": len(chunk_keys),
                "sha256": hashlib.sha256(payload).hexdigest(),
                "created_at": datetime.now(UTC).isoformat(),
            }
            committed = await self.redis_client.set(
                self._meta_key(bucket, key), json.dumps(meta), nx=True, ex=config.ttl_seconds
            )
            if not committed:
                await self.redis_client.delete(*chunk_keys)
                raise BlobExistsError(bucket, key)
        except RedisError as exc:
            raise StoreWriteError(f"Could not write {bucket}/{key}: {exc}") from exc

        logger.debug(
            "Stored blob",
            extra={"bucket": bucket, "key": key, "size": len(payload), "chunks": len(chunk_keys)},
        )
        return key

    async def _meta(self, bucket: str, key: str) -> dict[str, object] | None:
        raw = await self.redis_client.get(self._meta_key(bucket, key))
        if raw is None:
            return None
        meta: dict[str, object] = json.loads(text(raw))
        return meta

    async def get(self, bucket: str, key: str) -> bytes:
        try:
            meta = await self._meta(bucket, key)
            if meta is None:
                raise NotFoundError(bucket, key)

            upload_id = str(meta["upload_id"])
            chunk_count = int(str(meta["chunks"]))
            chunk_keys = [self._chunk_key(bucket, key, upload_id, i) for i in range(chunk_count)]
            chunks = await self.redis_client.mget(chunk_keys)
        except RedisError as exc:
            raise StoreReadError(f"Could not read {bucket}/{key}: {exc}") from exc

        if any(chunk is None for chunk in chunks):
            raise StoreReadError(f"Blob {bucket}/{key} is missing chunks")

        data = b"".join(chunks)
        if hashlib.sha256(data).hexdigest() != meta["sha256"]:
            raise StoreReadError(f"Checksum mismatch for {bucket}/{key}")

        return data

    async def delete(self, bucket: str, key: str) -> None:
        try:
            meta = await self._meta(bucket, key)
            if meta is None:
                return
            chunk_keys = [
                self._chunk_key(bucket, key, str(meta["upload_id"]), i)
                for i in range(int(str(meta["chunks"])))
            ]
            await self.redis_client.delete(self._meta_key(bucket, key), *chunk_keys)
        except RedisError as exc:
            raise StoreWriteError(f"Could not delete {bucket}/{key}: {exc}") from exc

    async def exists(self, bucket: str, key: str) -> bool:
        try:
            return bool(await self.redis_client.exists(self._meta_key(bucket, key)))
        except RedisError as exc:
            raise StoreReadError(f"Could not check {bucket}/{key}: {exc}") from exc


__all__ = ["RedisBlobStore"]
