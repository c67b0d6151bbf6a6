"""Ports for the coordination core."""

from __future__ import annotations

from docflow.core.ports.blob_store import BlobData, BlobStore, BucketConfig
from docflow.core.ports.event_log import AckHandle, Delivery, EventLog
from docflow.core.ports.idempotency import FanInProgress, FanInStore, ProcessedEventStore
from docflow.core.ports.transformer import Transformer

__all__ = [
    "AckHandle",
    "BlobData",
    "BlobStore",
    "BucketConfig",
    "Delivery",
    "EventLog",
    "FanInProgress",
    "FanInStore",
    "ProcessedEventStore",
    "Transformer",
]
