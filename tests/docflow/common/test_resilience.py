"""Tests for tenacity-based retry helpers."""

import pytest

from docflow.common.resilience import call_with_retry, resilient_async_call
from docflow.core.errors import NotFoundError, StoreReadError


class FlakyStore:
    """Raises NotFoundError for the first ``misses`` reads."""

    def __init__(self, misses: int) -> None:
        self.misses = misses
        self.calls = 0

    async def get(self, bucket: str, key: str) -> bytes:
        self.calls += 1
        if self.calls <= self.misses:
            raise NotFoundError(bucket, key)
        return b"data"


@pytest.mark.asyncio
async def test_retries_until_success() -> None:
    store = FlakyStore(misses=1)

    result = await call_with_retry(
        store.get, "images", "k", max_attempts=3, min_wait=0, max_wait=0, retry_on=(NotFoundError,)
    )

    assert result == b"data"
    assert store.calls == 2


@pytest.mark.asyncio
async def test_reraises_last_error_when_exhausted() -> None:
    store = FlakyStore(misses=10)

    with pytest.raises(NotFoundError):
        await call_with_retry(
            store.get, "images", "k", max_attempts=2, min_wait=0, max_wait=0, retry_on=(NotFoundError,)
        )

    assert store.calls == 2


@pytest.mark.asyncio
async def test_does_not_retry_other_errors() -> None:
    calls = 0

    @resilient_async_call(max_attempts=5, min_wait=0, max_wait=0, retry_on=(NotFoundError,))
    async def fetch() -> bytes:
        nonlocal calls
        calls += 1
        raise StoreReadError("checksum mismatch")

    with pytest.raises(StoreReadError):
        await fetch()

    assert calls == 1
