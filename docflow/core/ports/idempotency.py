"""Ports backing idempotent stage execution and fan-in bookkeeping."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field


class ProcessedEventStore(ABC):
    """Durable record of work units a consumer group already completed.

    Keys are event idempotency keys; ``scope`` is the consumer group, so two
    stages consuming the same subject keep separate records.
    """

    @abstractmethod
    async def is_processed(self, scope: str, key: str) -> bool:
        """Check whether ``key`` was completed within ``scope``."""

    @abstractmethod
    async def mark_processed(self, scope: str, key: str) -> None:
        """Record ``key`` as completed within ``scope``."""


@dataclass(frozen=True, slots=True)
class FanInProgress:
    """Snapshot of one workflow's fan-in state."""

    workflow_id: str
    total_pages: int
    pages: dict[int, str] = field(default_factory=dict)
    is_new: bool = True

    @property
    def complete(self) -> bool:
        return len(self.pages) == self.total_pages

    @property
    def missing(self) -> list[int]:
        return [n for n in range(1, self.total_pages + 1) if n not in self.pages]

    def ordered_keys(self) -> list[str]:
        """Content keys in page order."""
        return [self.pages[n] for n in sorted(self.pages)]


class FanInStore(ABC):
    """Durable per-workflow page map for stages that converge many pages into one."""

    @abstractmethod
    async def record(
        self, workflow_id: str, page_number: int, total_pages: int, key: str
    ) -> FanInProgress:
        """Record a page result; the first key recorded for a page wins.

        Raises:
            CorrelationError: If ``total_pages`` differs from the value already
                recorded for the workflow, or the page is out of range.
        """

    @abstractmethod
    async def is_reported(self, workflow_id: str) -> bool:
        """Check whether completion was already announced."""

    @abstractmethod
    async def mark_reported(self, workflow_id: str) -> None:
        """Record that completion was announced."""


__all__ = ["FanInProgress", "FanInStore", "ProcessedEventStore"]
