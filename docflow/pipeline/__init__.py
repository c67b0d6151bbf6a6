"""Stage execution: stages, the stage worker, idempotency and correlation."""

from docflow.pipeline.correlation import InMemoryFanInStore, PageSet, RedisFanInStore, WorkflowTracker
from docflow.pipeline.dedup import InMemoryProcessedEventStore, RedisProcessedEventStore
from docflow.pipeline.stages import EventAttempt, EventState, Stage, build_stage
from docflow.pipeline.worker import StageWorker

__all__ = [
    "EventAttempt",
    "EventState",
    "InMemoryFanInStore",
    "InMemoryProcessedEventStore",
    "PageSet",
    "RedisFanInStore",
    "RedisProcessedEventStore",
    "Stage",
    "StageWorker",
    "WorkflowTracker",
    "build_stage",
]
