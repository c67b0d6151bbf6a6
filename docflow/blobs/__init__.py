"""Blob store adapters."""

from docflow.blobs.local_store import LocalBlobStore
from docflow.blobs.memory import InMemoryBlobStore
from docflow.blobs.redis_store import RedisBlobStore

__all__ = ["InMemoryBlobStore", "LocalBlobStore", "RedisBlobStore"]
