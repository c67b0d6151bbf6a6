"""Blob Store - Local filesystem implementation.

Provides write-once file storage with one directory per bucket. Blobs are
written to a temporary file and then hard-linked into place, so a blob is
either fully visible or absent and an existing key is never replaced.
"""

from __future__ import annotations

import asyncio
import os
import re
from pathlib import Path
from uuid import uuid4

from docflow.core.errors import BlobExistsError, NotFoundError, StoreReadError, StoreWriteError
from docflow.core.ports.blob_store import BlobData, BlobStore, BucketConfig, read_all

_SAFE_SEGMENT = re.compile(r"^[A-Za-z0-9._-]+$")
_CONFIG_FILE = ".bucket.json"


def _validate_segment(value: str, what: str) -> str:
    if not value or value in {".", ".."} or not _SAFE_SEGMENT.match(value):
        raise ValueError(f"Invalid {what}: {value!r}")
    return value


class LocalBlobStore(BlobStore):
    """Blob store rooted at a local directory."""

    def __init__(self, base_dir: Path) -> None:
        self.base_dir = Path(base_dir)

    def _bucket_dir(self, bucket: str) -> Path:
        return self.base_dir / _validate_segment(bucket, "bucket")

    def _path(self, bucket: str, key: str) -> Path:
        segments = [_validate_segment(part, "key") for part in key.split("/")]
        return self._bucket_dir(bucket).joinpath(*segments)

    async def ensure_bucket(self, bucket: str, config: BucketConfig | None = None) -> None:
        try:
            bucket_dir = self._bucket_dir(bucket)
        except ValueError as exc:
            raise StoreWriteError(str(exc)) from exc

        def _create() -> None:
            bucket_dir.mkdir(parents=True, exist_ok=True)
            config_path = bucket_dir / _CONFIG_FILE
            # Without an explicit config an existing bucket keeps its settings
            if config is not None or not config_path.exists():
                config_path.write_text((config or BucketConfig()).model_dump_json(), encoding="utf-8")

        try:
            await asyncio.to_thread(_create)
        except OSError as exc:
            raise StoreWriteError(f"Could not create bucket {bucket}: {exc}") from exc

    def _config(self, bucket: str) -> BucketConfig | None:
        config_path = self._bucket_dir(bucket) / _CONFIG_FILE
        if not config_path.is_file():
            return None
        return BucketConfig.model_validate_json(config_path.read_text(encoding="utf-8"))

    async def put(self, bucket: str, key: str, data: BlobData) -> str:
        try:
            target = self._path(bucket, key)
        except ValueError as exc:
            raise StoreWriteError(str(exc)) from exc
        payload = read_all(data)

        def _write() -> None:
            config = self._config(bucket)
            if config is None:
                raise StoreWriteError(f"Unknown bucket: {bucket}")
            if config.max_bytes is not None and len(payload) > config.max_bytes:
                raise StoreWriteError(
                    f"Blob {bucket}/{key} is {len(payload)} bytes, bucket limit is {config.max_bytes}"
                )

            target.parent.mkdir(parents=True, exist_ok=True)
            tmp = target.parent / f".{target.name}.{uuid4().hex}.tmp"
            try:
                with open(tmp, "wb") as fh:
                    fh.write(payload)
                    fh.flush()
                    os.fsync(fh.fileno())
                os.link(tmp, target)
            except FileExistsError as exc:
                raise BlobExistsError(bucket, key) from exc
            finally:
                tmp.unlink(missing_ok=True)

        try:
            await asyncio.to_thread(_write)
        except StoreWriteError:
            raise
        except OSError as exc:
            raise StoreWriteError(f"Could not write {bucket}/{key}: {exc}") from exc

        return key

    async def get(self, bucket: str, key: str) -> bytes:
        try:
            path = self._path(bucket, key)
        except ValueError as exc:
            # No blob can be stored under an invalid key
            raise NotFoundError(bucket, key) from exc
        try:
            return await asyncio.to_thread(path.read_bytes)
        except FileNotFoundError as exc:
            raise NotFoundError(bucket, key) from exc
        except OSError as exc:
            raise StoreReadError(f"Could not read {bucket}/{key}: {exc}") from exc

    async def delete(self, bucket: str, key: str) -> None:
        try:
            path = self._path(bucket, key)
        except ValueError as exc:
            raise StoreWriteError(str(exc)) from exc
        try:
            await asyncio.to_thread(path.unlink, missing_ok=True)
        except OSError as exc:
            raise StoreWriteError(f"Could not delete {bucket}/{key}: {exc}") from exc

    async def exists(self, bucket: str, key: str) -> bool:
        try:
            path = self._path(bucket, key)
        except ValueError:
            return False
        return await asyncio.to_thread(path.is_file)


__all__ = ["LocalBlobStore"]
