"""Tests for fan-in bookkeeping and workflow reconstruction."""

from unittest.mock import AsyncMock

import pytest

from docflow.common.config import DocflowConfig
from docflow.core.errors import CorrelationError
from docflow.core.events import ContainerCreated, PageCreated, SourceCreated, WorkflowCompleted
from docflow.pipeline.correlation import InMemoryFanInStore, PageSet, RedisFanInStore, WorkflowTracker


@pytest.mark.unit
def test_page_set_completes_out_of_order() -> None:
    pages = PageSet("wf-1")

    assert pages.add(3, 3, "c")
    assert pages.add(1, 3, "a")
    assert pages.missing == [2]
    assert not pages.complete

    assert pages.add(2, 3, "b")
    assert pages.complete


@pytest.mark.unit
def test_page_set_absorbs_duplicates() -> None:
    pages = PageSet("wf-1")
    pages.add(1, 2, "first")

    assert not pages.add(1, 2, "second")
    assert pages.pages == {1: "first"}


@pytest.mark.unit
def test_page_set_rejects_inconsistent_totals() -> None:
    pages = PageSet("wf-1")
    pages.add(1, 3, "a")

    with pytest.raises(CorrelationError):
        pages.add(2, 4, "b")


@pytest.mark.unit
def test_page_set_rejects_out_of_range_pages() -> None:
    with pytest.raises(CorrelationError):
        PageSet("wf-1", total_pages=2).add(3, 2, "c")


@pytest.mark.asyncio
async def test_in_memory_fan_in_store_tracks_progress() -> None:
    store = InMemoryFanInStore()

    first = await store.record("wf-1", 2, 2, "k2")
    duplicate = await store.record("wf-1", 2, 2, "k2-again")
    done = await store.record("wf-1", 1, 2, "k1")

    assert first.is_new and not first.complete
    assert not duplicate.is_new
    assert done.complete
    assert done.ordered_keys() == ["k1", "k2"]

    assert not await store.is_reported("wf-1")
    await store.mark_reported("wf-1")
    assert await store.is_reported("wf-1")


@pytest.mark.asyncio
async def test_redis_fan_in_store_records_page() -> None:
    client = AsyncMock()
    client.get = AsyncMock(return_value=b"2")
    client.hsetnx = AsyncMock(return_value=1)
    client.hgetall = AsyncMock(return_value={b"2": b"k2"})
    store = RedisFanInStore(client, ttl_seconds=60)

    progress = await store.record("wf-1", 2, 2, "k2")

    client.set.assert_awaited_once_with("fanin:wf-1:total", 2, nx=True, ex=60)
    client.hsetnx.assert_awaited_once_with("fanin:wf-1:pages", "2", "k2")
    assert progress.is_new
    assert progress.pages == {2: "k2"}
    assert progress.missing == [1]


@pytest.mark.asyncio
async def test_redis_fan_in_store_rejects_total_mismatch() -> None:
    client = AsyncMock()
    client.get = AsyncMock(return_value=b"3")
    store = RedisFanInStore(client)

    with pytest.raises(CorrelationError):
        await store.record("wf-1", 1, 2, "k1")

    client.hsetnx.assert_not_awaited()


@pytest.mark.unit
def test_tracker_reconstructs_status_from_events() -> None:
    config = DocflowConfig(_env_file=None)
    subjects = config.subjects
    tracker = WorkflowTracker("wf-1", subjects)

    source = SourceCreated(workflow_id="wf-1", source_key="doc-42")
    pages = [source.derive(PageCreated, page_number=n, total_pages=2, image_key=f"i{n}") for n in (2, 1)]
    container = pages[0].derive_page(ContainerCreated, container_key="c2")
    other = SourceCreated(workflow_id="wf-2", source_key="other")

    tracker.observe(subjects.sources, source)
    tracker.observe(subjects.sources, other)
    for page in pages:
        tracker.observe(subjects.pages, page)
    tracker.observe(subjects.pages, pages[0])
    tracker.observe(subjects.containers, container)

    status = tracker.status()

    assert status.submitted
    assert status.source_key == "doc-42"
    assert status.stages[subjects.pages].complete
    assert status.stages[subjects.pages].duplicates == 1
    assert status.stages[subjects.containers].missing == [1]
    assert not status.completed

    tracker.observe(
        subjects.workflows,
        source.derive(WorkflowCompleted, report_key="r", container_keys=["c1", "c2"], total_pages=2),
    )
    assert tracker.status().completed
    assert tracker.status().report_key == "r"


@pytest.mark.unit
def test_tracker_records_inconsistent_totals() -> None:
    subjects = DocflowConfig(_env_file=None).subjects
    tracker = WorkflowTracker("wf-1", subjects)
    source = SourceCreated(workflow_id="wf-1", source_key="doc-42")

    tracker.observe(subjects.pages, source.derive(PageCreated, page_number=1, total_pages=2, image_key="a"))
    tracker.observe(subjects.pages, source.derive(PageCreated, page_number=2, total_pages=3, image_key="b"))

    assert len(tracker.status().inconsistencies) == 1
