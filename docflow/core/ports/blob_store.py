"""Port for key-addressed binary storage."""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from pathlib import Path
from typing import BinaryIO

from pydantic import BaseModel, ConfigDict, Field

BlobData = bytes | bytearray | memoryview | BinaryIO

_READ_CHUNK = 1024 * 1024


class BucketConfig(BaseModel):
    """Per-bucket storage settings.

    Attributes:
        description: Human-readable purpose of the bucket.
        max_bytes: Largest blob accepted by the bucket (None for unlimited).
        ttl_seconds: Expiry applied to new blobs (None keeps them forever).
    """

    model_config = ConfigDict(frozen=True)

    description: str = ""
    max_bytes: int | None = Field(default=None, ge=1)
    ttl_seconds: int | None = Field(default=None, ge=1)


def read_all(data: BlobData) -> bytes:
    """Materialize bytes from a bytes-like object or a binary stream."""
    if isinstance(data, bytes | bytearray | memoryview):
        return bytes(data)

    parts: list[bytes] = []
    while True:
        chunk = data.read(_READ_CHUNK)
        if not chunk:
            break
        parts.append(chunk)
    return b"".join(parts)


class BlobStore(ABC):
    """Durable storage for large binaries, one logical bucket per artifact kind.

    Keys are write-once: ``put`` under an existing key raises
    ``BlobExistsError``. A stage redoing work writes under a new key.
    """

    @abstractmethod
    async def ensure_bucket(self, bucket: str, config: BucketConfig | None = None) -> None:
        """Create a bucket if missing; safe to call on every startup."""

    @abstractmethod
    async def put(self, bucket: str, key: str, data: BlobData) -> str:
        """Store a blob and return its key.

        Raises:
            StoreWriteError: On I/O failure, unknown bucket, size limit or an
                existing key (``BlobExistsError``).
        """

    @abstractmethod
    async def get(self, bucket: str, key: str) -> bytes:
        """Return a blob's bytes.

        Raises:
            NotFoundError: If the key (or bucket) is absent.
            StoreReadError: On transport or integrity failure.
        """

    @abstractmethod
    async def delete(self, bucket: str, key: str) -> None:
        """Remove a blob; removing an absent key is a no-op."""

    @abstractmethod
    async def exists(self, bucket: str, key: str) -> bool:
        """Check whether a blob is visible under ``key``."""

    async def upload_file(self, bucket: str, key: str, path: Path) -> str:
        """Store the contents of a local file."""
        data = await asyncio.to_thread(Path(path).read_bytes)
        return await self.put(bucket, key, data)

    async def download_file(self, bucket: str, key: str, path: Path) -> Path:
        """Write a blob to a local file and return its path."""
        data = await self.get(bucket, key)
        target = Path(path)
        await asyncio.to_thread(target.parent.mkdir, parents=True, exist_ok=True)
        await asyncio.to_thread(target.write_bytes, data)
        return target


__all__ = ["BlobData", "BlobStore", "BucketConfig", "read_all"]
