"""Tests for the Redis Streams event log adapter.

The Redis client is mocked; assertions pin the stream commands issued.
"""

import asyncio
from contextlib import aclosing
from unittest.mock import AsyncMock

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import ResponseError

from docflow.common.dlq import DeadLetterPolicy
from docflow.core.errors import EventLogError, PublishError
from docflow.core.events import SourceCreated, encode_event
from docflow.core.ports.event_log import AckHandle
from docflow.streams import RedisStreamEventLog

SUBJECT = "stream:sources"


@pytest.fixture
def mock_redis_client() -> AsyncMock:
    """Mock Redis client for stream operations."""
    client = AsyncMock()
    client.xadd = AsyncMock(return_value=b"1700000000000-0")
    client.xgroup_create = AsyncMock(return_value=True)
    client.xreadgroup = AsyncMock(return_value=[])
    client.xautoclaim = AsyncMock(return_value=[b"0-0", [], []])
    client.zrangebyscore = AsyncMock(return_value=[])
    client.xpending_range = AsyncMock(return_value=[])
    client.xack = AsyncMock(return_value=1)
    client.zrem = AsyncMock(return_value=0)
    client.xclaim = AsyncMock(return_value=[])
    client.zadd = AsyncMock(return_value=1)
    return client


@pytest.fixture
def event_log(mock_redis_client: AsyncMock) -> RedisStreamEventLog:
    policy = DeadLetterPolicy(max_deliveries=3, ack_deadline_seconds=30)
    return RedisStreamEventLog(mock_redis_client, policy=policy, block_ms=10, error_backoff_seconds=0.01)


def encoded_fields(event: SourceCreated) -> dict[bytes, bytes]:
    return {k.encode(): v.encode() for k, v in encode_event(event).items()}


async def first_delivery(event_log: RedisStreamEventLog, consumer: str = "w1"):
    stop = asyncio.Event()
    async with aclosing(event_log.subscribe(SUBJECT, "render", consumer, stop=stop)) as stream:
        return await asyncio.wait_for(anext(stream), 1.0)


@pytest.mark.asyncio
async def test_ensure_stream_creates_group_from_start(
    event_log: RedisStreamEventLog, mock_redis_client: AsyncMock
) -> None:
    await event_log.ensure_stream(SUBJECT, "render")

    mock_redis_client.xgroup_create.assert_awaited_once_with(
        name=SUBJECT, groupname="render", id="0-0", mkstream=True
    )


@pytest.mark.asyncio
async def test_ensure_stream_ignores_existing_group(
    event_log: RedisStreamEventLog, mock_redis_client: AsyncMock
) -> None:
    mock_redis_client.xgroup_create.side_effect = ResponseError("BUSYGROUP Consumer Group name already exists")

    await event_log.ensure_stream(SUBJECT, "render")


@pytest.mark.asyncio
async def test_ensure_stream_wraps_other_errors(
    event_log: RedisStreamEventLog, mock_redis_client: AsyncMock
) -> None:
    mock_redis_client.xgroup_create.side_effect = ResponseError("WRONGTYPE")

    with pytest.raises(EventLogError):
        await event_log.ensure_stream(SUBJECT, "render")


@pytest.mark.asyncio
async def test_publish_appends_with_time_based_retention(
    event_log: RedisStreamEventLog, mock_redis_client: AsyncMock
) -> None:
    event = SourceCreated(workflow_id="wf-1", source_key="doc-42")

    position = await event_log.publish(SUBJECT, event)

    assert position == "1700000000000-0"
    kwargs = mock_redis_client.xadd.await_args.kwargs
    assert kwargs["name"] == SUBJECT
    assert kwargs["fields"] == encode_event(event)
    assert kwargs["minid"].endswith("-0")
    assert kwargs["approximate"] is True


@pytest.mark.asyncio
async def test_publish_failure_raises_publish_error(
    event_log: RedisStreamEventLog, mock_redis_client: AsyncMock
) -> None:
    mock_redis_client.xadd.side_effect = RedisConnectionError("down")

    with pytest.raises(PublishError):
        await event_log.publish(SUBJECT, SourceCreated(workflow_id="wf-1", source_key="doc-42"))


@pytest.mark.asyncio
async def test_subscribe_reads_new_entries(
    event_log: RedisStreamEventLog, mock_redis_client: AsyncMock
) -> None:
    event = SourceCreated(workflow_id="wf-1", source_key="doc-42")
    mock_redis_client.xreadgroup.return_value = [
        [SUBJECT.encode(), [(b"1-0", encoded_fields(event))]]
    ]

    delivery = await first_delivery(event_log)

    assert delivery.handle == AckHandle(SUBJECT, "render", "w1", "1-0", 1)
    assert delivery.event == event
    kwargs = mock_redis_client.xreadgroup.await_args.kwargs
    assert kwargs["streams"] == {SUBJECT: ">"}
    assert kwargs["count"] == 1


@pytest.mark.asyncio
async def test_subscribe_claims_expired_entries_with_delivery_count(
    event_log: RedisStreamEventLog, mock_redis_client: AsyncMock
) -> None:
    event = SourceCreated(workflow_id="wf-1", source_key="doc-42")
    mock_redis_client.xautoclaim.return_value = [b"0-0", [(b"1-0", encoded_fields(event))], []]
    mock_redis_client.xpending_range.return_value = [{"message_id": b"1-0", "times_delivered": 2}]

    delivery = await first_delivery(event_log, consumer="w2")

    assert delivery.handle.delivery_count == 2
    assert delivery.handle.consumer == "w2"
    assert mock_redis_client.xautoclaim.await_args.kwargs["min_idle_time"] == 30_000
    mock_redis_client.xreadgroup.assert_not_awaited()


@pytest.mark.asyncio
async def test_exhausted_entry_is_dead_lettered_not_delivered(
    event_log: RedisStreamEventLog, mock_redis_client: AsyncMock
) -> None:
    exhausted = SourceCreated(workflow_id="wf-1", source_key="doc-1")
    fresh = SourceCreated(workflow_id="wf-2", source_key="doc-2")
    mock_redis_client.xautoclaim.return_value = [b"0-0", [(b"1-0", encoded_fields(exhausted))], []]
    mock_redis_client.xpending_range.return_value = [{"message_id": b"1-0", "times_delivered": 4}]
    mock_redis_client.xreadgroup.return_value = [[SUBJECT.encode(), [(b"2-0", encoded_fields(fresh))]]]

    delivery = await first_delivery(event_log)

    assert delivery.handle.message_id == "2-0"
    dead_call = mock_redis_client.xadd.await_args_list[0]
    assert dead_call.kwargs["name"] == f"{SUBJECT}:dead"
    assert dead_call.kwargs["fields"]["source_id"] == "1-0"
    mock_redis_client.xack.assert_any_await(SUBJECT, "render", "1-0")


@pytest.mark.asyncio
async def test_trimmed_pending_entry_is_acked_and_skipped(
    event_log: RedisStreamEventLog, mock_redis_client: AsyncMock
) -> None:
    fresh = SourceCreated(workflow_id="wf-2", source_key="doc-2")
    mock_redis_client.xautoclaim.return_value = [b"0-0", [(b"1-0", None)], []]
    mock_redis_client.xreadgroup.return_value = [[SUBJECT.encode(), [(b"2-0", encoded_fields(fresh))]]]

    delivery = await first_delivery(event_log)

    assert delivery.handle.message_id == "2-0"
    mock_redis_client.xack.assert_any_await(SUBJECT, "render", "1-0")


@pytest.mark.asyncio
async def test_scheduled_retry_is_claimed_when_due(
    event_log: RedisStreamEventLog, mock_redis_client: AsyncMock
) -> None:
    event = SourceCreated(workflow_id="wf-1", source_key="doc-42")
    mock_redis_client.zrangebyscore.return_value = [b"1-0"]
    mock_redis_client.zrem.return_value = 1
    mock_redis_client.xclaim.return_value = [(b"1-0", encoded_fields(event))]
    mock_redis_client.xpending_range.return_value = [{"message_id": b"1-0", "times_delivered": 2}]

    delivery = await first_delivery(event_log)

    assert delivery.handle.message_id == "1-0"
    assert delivery.handle.delivery_count == 2
    mock_redis_client.zrem.assert_awaited_with(RedisStreamEventLog.retry_key(SUBJECT, "render"), "1-0")


@pytest.mark.asyncio
async def test_scheduled_retry_is_claimed_by_one_consumer_only(mock_redis_client: AsyncMock) -> None:
    event = SourceCreated(workflow_id="wf-1", source_key="doc-42")
    retry_set = {"1-0"}
    both_read = asyncio.Event()
    readers = 0

    async def zrangebyscore(key, low, high, start=None, num=None):
        nonlocal readers
        due = [message_id.encode() for message_id in sorted(retry_set)]
        readers += 1
        if readers == 2:
            both_read.set()
        await both_read.wait()
        return due

    async def zrem(key, *message_ids):
        removed = [message_id for message_id in message_ids if message_id in retry_set]
        retry_set.difference_update(removed)
        return len(removed)

    mock_redis_client.zrangebyscore.side_effect = zrangebyscore
    mock_redis_client.zrem.side_effect = zrem
    mock_redis_client.xclaim.return_value = [(b"1-0", encoded_fields(event))]
    mock_redis_client.xpending_range.return_value = [{"message_id": b"1-0", "times_delivered": 2}]
    policy = DeadLetterPolicy(max_deliveries=3, ack_deadline_seconds=30)
    first = RedisStreamEventLog(mock_redis_client, policy=policy, block_ms=10)
    second = RedisStreamEventLog(mock_redis_client, policy=policy, block_ms=10)

    results = await asyncio.wait_for(
        asyncio.gather(
            first._poll(SUBJECT, "render", "w1", 1),
            second._poll(SUBJECT, "render", "w2", 1),
        ),
        1.0,
    )

    claimed = [delivery.handle.message_id for deliveries in results for delivery in deliveries]
    assert claimed == ["1-0"]
    mock_redis_client.xclaim.assert_awaited_once()
    assert retry_set == set()


@pytest.mark.asyncio
async def test_subscribe_survives_transport_errors(
    event_log: RedisStreamEventLog, mock_redis_client: AsyncMock
) -> None:
    event = SourceCreated(workflow_id="wf-1", source_key="doc-42")
    mock_redis_client.zrangebyscore.side_effect = [RedisConnectionError("down"), [], []]
    mock_redis_client.xreadgroup.return_value = [[SUBJECT.encode(), [(b"1-0", encoded_fields(event))]]]

    delivery = await first_delivery(event_log)

    assert delivery.handle.message_id == "1-0"


@pytest.mark.asyncio
async def test_ack_removes_pending_and_scheduled_retry(
    event_log: RedisStreamEventLog, mock_redis_client: AsyncMock
) -> None:
    handle = AckHandle(SUBJECT, "render", "w1", "1-0", 1)

    await event_log.ack(handle)

    mock_redis_client.xack.assert_awaited_once_with(SUBJECT, "render", "1-0")
    mock_redis_client.zrem.assert_awaited_once_with(f"{SUBJECT}:render:retry", "1-0")


@pytest.mark.asyncio
async def test_nack_resets_idle_time_and_schedules_retry(
    event_log: RedisStreamEventLog, mock_redis_client: AsyncMock
) -> None:
    handle = AckHandle(SUBJECT, "render", "w1", "1-0", 1)

    await event_log.nack(handle, delay=5.0)

    claim_kwargs = mock_redis_client.xclaim.await_args.kwargs
    assert claim_kwargs["justid"] is True
    assert claim_kwargs["message_ids"] == ["1-0"]
    key, mapping = mock_redis_client.zadd.await_args.args
    assert key == f"{SUBJECT}:render:retry"
    assert "1-0" in mapping


@pytest.mark.asyncio
async def test_history_decodes_entries(
    event_log: RedisStreamEventLog, mock_redis_client: AsyncMock
) -> None:
    event = SourceCreated(workflow_id="wf-1", source_key="doc-42")
    mock_redis_client.xrange = AsyncMock(return_value=[(b"1-0", encoded_fields(event))])

    [(position, fields)] = await event_log.history(SUBJECT)

    assert position == "1-0"
    assert fields == encode_event(event)
