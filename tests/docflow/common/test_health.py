"""Tests for health checks and the dependency factories."""

from typing import Any
from unittest.mock import AsyncMock, patch

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from docflow.blobs import LocalBlobStore, RedisBlobStore
from docflow.common.factories import default_consumer_name, make_blob_store, make_stage_worker
from docflow.common.health import check_redis_health, check_system_health, check_tool_health
from docflow.pipeline.stages import AssembleStage, ExtractStage
from docflow.streams import RedisStreamEventLog


@pytest.mark.unit
@pytest.mark.asyncio
async def test_redis_health_ok(test_config) -> None:
    client = AsyncMock()
    client.ping.return_value = True

    with patch("docflow.common.health.redis.from_url", return_value=client):
        assert await check_redis_health(test_config) is True

    client.aclose.assert_awaited_once()


@pytest.mark.unit
@pytest.mark.asyncio
async def test_redis_health_unreachable(test_config) -> None:
    client = AsyncMock()
    client.ping.side_effect = RedisConnectionError("refused")

    with patch("docflow.common.health.redis.from_url", return_value=client):
        assert await check_redis_health(test_config) is False

    client.aclose.assert_awaited_once()


@pytest.mark.unit
def test_tool_health_uses_path_lookup(mocker: Any) -> None:
    which = mocker.patch("docflow.common.health.shutil.which", return_value=None)
    assert check_tool_health("transcode") is False
    which.assert_called_once_with("ffmpeg")

    which.return_value = "/usr/bin/ffmpeg"
    assert check_tool_health("transcode") is True
    # Assemble needs no external tool
    assert check_tool_health("assemble") is True


@pytest.mark.unit
@pytest.mark.asyncio
async def test_system_health_combines_checks(test_config) -> None:
    with (
        patch("docflow.common.health.check_redis_health", AsyncMock(return_value=True)),
        patch("docflow.common.health.check_tool_health", side_effect=lambda stage: stage != "extract"),
    ):
        status = await check_system_health(test_config, ["extract", "synthesize"])

    assert status["services"] == {"redis": True, "tool:extract": False, "tool:synthesize": True}
    assert status["healthy"] is False


@pytest.mark.unit
def test_blob_backend_selection(test_config, tmp_path) -> None:
    redis_client = AsyncMock()
    local = test_config.model_copy(update={"blob_backend": "local", "blob_root": tmp_path})

    assert isinstance(make_blob_store(test_config, redis_client), RedisBlobStore)
    assert isinstance(make_blob_store(local, redis_client), LocalBlobStore)


@pytest.mark.unit
def test_make_stage_worker_wires_stage(test_config) -> None:
    worker = make_stage_worker("assemble", test_config, AsyncMock(), consumer="assemble-1")

    assert isinstance(worker.stage, AssembleStage)
    assert isinstance(worker.event_log, RedisStreamEventLog)
    assert worker.consumer == "assemble-1"
    assert worker.max_in_flight == test_config.max_in_flight
    assert worker.policy.max_deliveries == 3


@pytest.mark.unit
def test_make_stage_worker_derives_consumer_name(test_config) -> None:
    with patch("docflow.common.factories.socket.gethostname", return_value="host-a"):
        worker = make_stage_worker("extract", test_config, AsyncMock())
        expected = default_consumer_name(test_config, "extract")

    assert isinstance(worker.stage, ExtractStage)
    assert worker.consumer == expected
    assert expected.startswith("worker-extract-host-a-")
