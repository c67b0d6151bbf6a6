"""Workflow correlation across fan-out and fan-in points.

Every event carries ``workflow_id`` and, once a document fans out into pages,
``page_number``/``total_pages``. Pages complete in any order, so all
bookkeeping here is keyed by page number and never assumes sequence.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from pydantic import BaseModel, Field
from redis.asyncio import Redis
from redis.exceptions import RedisError

from docflow.common.config import Subjects
from docflow.core.errors import CorrelationError, EventLogError
from docflow.core.events import EventHeader, PagedEvent, SourceCreated, WorkflowCompleted
from docflow.core.ports.idempotency import FanInProgress, FanInStore
from docflow.streams.polling import text

logger = logging.getLogger(__name__)


# ========== Page bookkeeping ==========


@dataclass
class PageSet:
    """Pages seen for one workflow at one stage.

    ``total_pages`` is fixed by the first page recorded; later pages must
    agree with it. The first key recorded for a page wins, so duplicate
    events for the same page are absorbed without double counting.
    """

    workflow_id: str
    total_pages: int | None = None
    pages: dict[int, str] = field(default_factory=dict)

    def add(self, page_number: int, total_pages: int, key: str) -> bool:
        """Record a page; return False when the page was already recorded.

        Raises:
            CorrelationError: If totals disagree or the page is out of range.
        """
        if self.total_pages is None:
            self.total_pages = total_pages
        elif self.total_pages != total_pages:
            raise CorrelationError(
                f"Workflow {self.workflow_id} has total_pages={self.total_pages}, "
                f"page {page_number} claims {total_pages}"
            )

        if not 1 <= page_number <= self.total_pages:
            raise CorrelationError(
                f"Page {page_number} outside [1, {self.total_pages}] for workflow {self.workflow_id}"
            )

        if page_number in self.pages:
            return False
        self.pages[page_number] = key
        return True

    @property
    def complete(self) -> bool:
        return self.total_pages is not None and len(self.pages) == self.total_pages

    @property
    def missing(self) -> list[int]:
        if self.total_pages is None:
            return []
        return [n for n in range(1, self.total_pages + 1) if n not in self.pages]


class InMemoryFanInStore(FanInStore):
    """Fan-in bookkeeping kept in process memory."""

    def __init__(self) -> None:
        self._workflows: dict[str, PageSet] = {}
        self._reported: set[str] = set()

    async def record(
        self, workflow_id: str, page_number: int, total_pages: int, key: str
    ) -> FanInProgress:
        page_set = self._workflows.setdefault(workflow_id, PageSet(workflow_id))
        is_new = page_set.add(page_number, total_pages, key)
        return FanInProgress(
            workflow_id=workflow_id,
            total_pages=total_pages,
            pages=dict(page_set.pages),
            is_new=is_new,
        )

    async def is_reported(self, workflow_id: str) -> bool:
        return workflow_id in self._reported

    async def mark_reported(self, workflow_id: str) -> None:
        self._reported.add(workflow_id)


class RedisFanInStore(FanInStore):
    """Fan-in bookkeeping in Redis.

    ``{prefix}:{workflow}:total`` holds the fixed page count (``SET NX``),
    ``{prefix}:{workflow}:pages`` maps page numbers to content keys
    (``HSETNX``), ``{prefix}:{workflow}:reported`` marks announced completion.
    """

    def __init__(self, redis_client: Redis, *, ttl_seconds: int = 7 * 24 * 3600, prefix: str = "fanin") -> None:
        self.redis_client = redis_client
        self.ttl_seconds = ttl_seconds
        self.prefix = prefix

    def _key(self, workflow_id: str, suffix: str) -> str:
        return f"{self.prefix}:{workflow_id}:{suffix}"

    async def record(
        self, workflow_id: str, page_number: int, total_pages: int, key: str
    ) -> FanInProgress:
        total_key = self._key(workflow_id, "total")
        pages_key = self._key(workflow_id, "pages")

        try:
            await self.redis_client.set(total_key, total_pages, nx=True, ex=self.ttl_seconds)
            recorded_total = int(text(await self.redis_client.get(total_key)))
            if recorded_total != total_pages:
                raise CorrelationError(
                    f"Workflow {workflow_id} has total_pages={recorded_total}, "
                    f"page {page_number} claims {total_pages}"
                )
            if not 1 <= page_number <= recorded_total:
                raise CorrelationError(
                    f"Page {page_number} outside [1, {recorded_total}] for workflow {workflow_id}"
                )

            is_new = bool(await self.redis_client.hsetnx(pages_key, str(page_number), key))
            await self.redis_client.expire(pages_key, self.ttl_seconds)
            raw_pages = await self.redis_client.hgetall(pages_key)
        except RedisError as exc:
            raise EventLogError(f"Could not record page {page_number} of {workflow_id}: {exc}") from exc

        pages = {int(text(k)): text(v) for k, v in raw_pages.items()}
        return FanInProgress(
            workflow_id=workflow_id,
            total_pages=recorded_total,
            pages=pages,
            is_new=is_new,
        )

    async def is_reported(self, workflow_id: str) -> bool:
        try:
            return bool(await self.redis_client.exists(self._key(workflow_id, "reported")))
        except RedisError as exc:
            raise EventLogError(f"Could not read report marker for {workflow_id}: {exc}") from exc

    async def mark_reported(self, workflow_id: str) -> None:
        try:
            await self.redis_client.set(self._key(workflow_id, "reported"), "1", ex=self.ttl_seconds)
        except RedisError as exc:
            raise EventLogError(f"Could not write report marker for {workflow_id}: {exc}") from exc


# ========== Observation from stream history ==========


class StageProgress(BaseModel):
    """Progress of one workflow through one stage's output subject."""

    subject: str
    total_pages: int | None = None
    pages_done: list[int] = Field(default_factory=list)
    missing: list[int] = Field(default_factory=list)
    duplicates: int = Field(default=0, ge=0)
    complete: bool = False


class WorkflowStatus(BaseModel):
    """Reconstructed state of one source document's processing."""

    workflow_id: str
    submitted: bool = False
    source_key: str | None = None
    stages: dict[str, StageProgress] = Field(default_factory=dict)
    completed: bool = False
    report_key: str | None = None
    inconsistencies: list[str] = Field(default_factory=list)


class WorkflowTracker:
    """Folds events into a ``WorkflowStatus`` without any extra database.

    Events can be observed in any order and more than once.
    """

    def __init__(self, workflow_id: str, subjects: Subjects) -> None:
        self.workflow_id = workflow_id
        self.subjects = subjects
        self._status = WorkflowStatus(workflow_id=workflow_id)
        self._pages: dict[str, PageSet] = {}
        self._duplicates: dict[str, int] = {}

    def observe(self, subject: str, event: EventHeader) -> None:
        if event.workflow_id != self.workflow_id:
            return

        if isinstance(event, SourceCreated):
            self._status.submitted = True
            self._status.source_key = event.source_key
        elif isinstance(event, WorkflowCompleted):
            self._status.completed = True
            self._status.report_key = event.report_key
        elif isinstance(event, PagedEvent):
            page_set = self._pages.setdefault(subject, PageSet(self.workflow_id))
            try:
                if not page_set.add(event.page_number, event.total_pages, event.event_id):
                    self._duplicates[subject] = self._duplicates.get(subject, 0) + 1
            except CorrelationError as exc:
                self._status.inconsistencies.append(str(exc))

    def status(self) -> WorkflowStatus:
        stages: dict[str, StageProgress] = {}
        for subject in self.subjects.all():
            page_set = self._pages.get(subject)
            if page_set is None:
                continue
            stages[subject] = StageProgress(
                subject=subject,
                total_pages=page_set.total_pages,
                pages_done=sorted(page_set.pages),
                missing=page_set.missing,
                duplicates=self._duplicates.get(subject, 0),
                complete=page_set.complete,
            )
        return self._status.model_copy(update={"stages": stages})


__all__ = [
    "InMemoryFanInStore",
    "PageSet",
    "RedisFanInStore",
    "StageProgress",
    "WorkflowStatus",
    "WorkflowTracker",
]
