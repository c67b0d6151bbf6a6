"""End-to-end flow of a document through every stage over in-memory adapters."""

import json

import pytest

from docflow.common.config import STAGE_NAMES
from docflow.core.errors import EventLogError
from docflow.core.events import ContainerCreated, WorkflowCompleted
from docflow.core.use_cases import GetWorkflowStatusUseCase, SubmitDocumentUseCase
from docflow.pipeline.dedup import InMemoryProcessedEventStore

DOCUMENT = b"first page\fsecond page\fthird page"


class CrashOnceProcessedStore(InMemoryProcessedEventStore):
    """Fails the first mark for one scope, as if the worker died right after publishing."""

    def __init__(self, scope: str) -> None:
        super().__init__()
        self.scope = scope
        self.crashed = False

    async def mark_processed(self, scope: str, key: str) -> None:
        if scope == self.scope and not self.crashed:
            self.crashed = True
            raise EventLogError("connection lost")
        await super().mark_processed(scope, key)


async def submit(harness, workflow_id: str = "wf-1"):
    use_case = SubmitDocumentUseCase(
        harness.blob_store,
        harness.event_log,
        source_bucket=harness.config.buckets.sources,
        source_subject=harness.config.subjects.sources,
    )
    return await use_case.execute(DOCUMENT, file_name="doc-42.pdf", workflow_id=workflow_id, user_id="alice")


@pytest.mark.asyncio
async def test_document_flows_through_every_stage(harness) -> None:
    await harness.create_buckets()
    subjects = harness.config.subjects
    result = await submit(harness)
    workers = [harness.worker(name) for name in STAGE_NAMES]

    async def completed() -> bool:
        return len(await harness.events(subjects.workflows)) == 1

    assert await harness.run_until(workers, completed)

    [done] = await harness.events(subjects.workflows)
    assert isinstance(done, WorkflowCompleted)
    assert done.workflow_id == "wf-1"
    assert done.user_id == "alice"
    assert done.total_pages == 3

    containers = [e for e in await harness.events(subjects.containers) if isinstance(e, ContainerCreated)]
    assert {e.page_number for e in containers} == {1, 2, 3}
    by_page = {e.page_number: e.container_key for e in containers}
    assert done.container_keys == [by_page[1], by_page[2], by_page[3]]

    final = await harness.blob_store.get(harness.config.buckets.containers, by_page[2])
    assert final == b"transcode(synthesize(extract(render(second page))))"

    report = json.loads(await harness.blob_store.get(harness.config.buckets.reports, done.report_key))
    assert report["workflow_id"] == "wf-1"
    assert [page["page_number"] for page in report["pages"]] == [1, 2, 3]

    status, dead = await GetWorkflowStatusUseCase(harness.event_log, subjects).execute(result.workflow_id)
    assert status.submitted
    assert status.completed
    assert status.report_key == done.report_key
    assert status.stages[subjects.texts].complete
    assert dead == []


@pytest.mark.asyncio
async def test_parallel_workflows_stay_separate(harness) -> None:
    await harness.create_buckets()
    subjects = harness.config.subjects
    await submit(harness, "wf-1")
    await submit(harness, "wf-2")
    workers = [harness.worker(name) for name in STAGE_NAMES]

    async def completed() -> bool:
        return len(await harness.events(subjects.workflows)) == 2

    assert await harness.run_until(workers, completed)

    done = await harness.events(subjects.workflows)
    assert sorted(e.workflow_id for e in done) == ["wf-1", "wf-2"]
    for event in done:
        assert all(key.startswith(f"{event.workflow_id}/") for key in event.container_keys)


@pytest.mark.asyncio
async def test_crash_after_publish_is_absorbed_downstream(harness, fake_tools) -> None:
    harness.processed = CrashOnceProcessedStore("render")
    await harness.create_buckets()
    subjects = harness.config.subjects
    await submit(harness)
    workers = {name: harness.worker(name, max_in_flight=1) for name in STAGE_NAMES}

    async def settled() -> bool:
        done = await harness.events(subjects.workflows)
        return len(done) == 1 and workers["extract"].stats["skipped_duplicate"] == 3

    assert await harness.run_until(list(workers.values()), settled)

    # Render ran twice and announced every page twice
    assert fake_tools["render"].calls == 2
    assert len(await harness.events(subjects.pages)) == 6
    # Downstream stages ran once per page
    assert fake_tools["extract"].calls == 3
    assert len(await harness.events(subjects.texts)) == 3
    assert len(await harness.events(subjects.workflows)) == 1


@pytest.mark.asyncio
async def test_failed_page_blocks_completion_and_is_reported(harness, fake_tools) -> None:
    await harness.create_buckets()
    subjects = harness.config.subjects
    result = await submit(harness)
    fake_tools["synthesize"].fail(RuntimeError("voice missing"))
    workers = [harness.worker(name) for name in STAGE_NAMES]

    async def all_dead() -> bool:
        return len(await harness.event_log.dead_letters(subjects.texts)) == 3

    assert await harness.run_until(workers, all_dead)

    status, dead = await GetWorkflowStatusUseCase(harness.event_log, subjects).execute(result.workflow_id)
    assert not status.completed
    assert status.stages[subjects.texts].complete
    assert subjects.audio not in status.stages
    assert len(dead) == 3
    assert all("voice missing" in record.error for record in dead)
