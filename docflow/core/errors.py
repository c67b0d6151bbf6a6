"""Exception hierarchy for the docflow coordination core.

Adapters translate transport-level failures (``redis.exceptions.RedisError``,
``OSError``) into these types so stage workers can classify failures without
knowing which backend produced them.
"""

from __future__ import annotations


class DocflowError(Exception):
    """Base class for all docflow errors."""


# ========== Event Log ==========


class EventLogError(DocflowError):
    """Event log is unreachable or rejected an operation."""


class PublishError(EventLogError):
    """An event could not be durably committed to its subject."""


# ========== Blob Store ==========


class BlobStoreError(DocflowError):
    """Base class for blob store failures."""


class StoreWriteError(BlobStoreError):
    """A blob could not be written."""


class BlobExistsError(StoreWriteError):
    """A blob already exists under the requested key (keys are write-once)."""

    def __init__(self, bucket: str, key: str) -> None:
        super().__init__(f"Blob already exists: {bucket}/{key}")
        self.bucket = bucket
        self.key = key


class StoreReadError(BlobStoreError):
    """A blob could not be read because of a transport or integrity failure."""


class NotFoundError(BlobStoreError):
    """The requested blob (or its bucket) does not exist."""

    def __init__(self, bucket: str, key: str | None = None) -> None:
        target = f"{bucket}/{key}" if key is not None else f"bucket {bucket}"
        super().__init__(f"Not found: {target}")
        self.bucket = bucket
        self.key = key


# ========== Event processing ==========


class SchemaViolationError(DocflowError):
    """An event does not match the schema of its subject.

    Retrying cannot fix a structurally invalid event, so workers dead-letter
    these immediately.
    """


class CorrelationError(SchemaViolationError):
    """Page metadata contradicts what was already recorded for a workflow."""


class TransformError(DocflowError):
    """The external transformation tool failed."""


class ToolNotFoundError(TransformError):
    """The external transformation tool is not installed."""

    def __init__(self, tool: str) -> None:
        super().__init__(f"{tool} not found in PATH")
        self.tool = tool


__all__ = [
    "BlobExistsError",
    "BlobStoreError",
    "CorrelationError",
    "DocflowError",
    "EventLogError",
    "NotFoundError",
    "PublishError",
    "SchemaViolationError",
    "StoreReadError",
    "StoreWriteError",
    "ToolNotFoundError",
    "TransformError",
]
