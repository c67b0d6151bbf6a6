"""In-memory blob store for tests and single-process runs."""

from __future__ import annotations

from docflow.core.errors import BlobExistsError, NotFoundError, StoreWriteError
from docflow.core.ports.blob_store import BlobData, BlobStore, BucketConfig, read_all


class InMemoryBlobStore(BlobStore):
    """Blob store kept in process memory; keys are write-once."""

    def __init__(self) -> None:
        self._buckets: dict[str, BucketConfig] = {}
        self._blobs: dict[str, dict[str, bytes]] = {}

    async def ensure_bucket(self, bucket: str, config: BucketConfig | None = None) -> None:
        if config is not None or bucket not in self._buckets:
            self._buckets[bucket] = config or BucketConfig()
        self._blobs.setdefault(bucket, {})

    async def put(self, bucket: str, key: str, data: BlobData) -> str:
        config = self._buckets.get(bucket)
        if config is None:
            raise StoreWriteError(f"Unknown bucket: {bucket}")

        payload = read_all(data)
        if config.max_bytes is not None and len(payload) > config.max_bytes:
            raise StoreWriteError(f"Blob {bucket}/{key} exceeds {config.max_bytes} bytes")
        if key in self._blobs[bucket]:
            raise BlobExistsError(bucket, key)

        self._blobs[bucket][key] = payload
        return key

    async def get(self, bucket: str, key: str) -> bytes:
        try:
            return self._blobs[bucket][key]
        except KeyError as exc:
            raise NotFoundError(bucket, key) from exc

    async def delete(self, bucket: str, key: str) -> None:
        self._blobs.get(bucket, {}).pop(key, None)

    async def exists(self, bucket: str, key: str) -> bool:
        return key in self._blobs.get(bucket, {})

    def keys(self, bucket: str) -> list[str]:
        """List stored keys of a bucket."""
        return sorted(self._blobs.get(bucket, {}))


__all__ = ["InMemoryBlobStore"]
