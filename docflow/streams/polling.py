"""Helpers shared by event log adapters."""

from __future__ import annotations

import asyncio
from typing import Any


def text(value: Any) -> str:
    """Decode a Redis response value to ``str``."""
    return value.decode() if isinstance(value, bytes) else str(value)


def decode_fields(payload: dict[Any, Any]) -> dict[str, str]:
    """Decode stream entry fields returned by an undecoded Redis client."""
    return {text(k): text(v) for k, v in payload.items()}


async def sleep_until_stopped(stop: asyncio.Event | None, seconds: float) -> None:
    """Sleep for ``seconds`` or until ``stop`` is set, whichever comes first."""
    if stop is None:
        await asyncio.sleep(seconds)
        return

    try:
        await asyncio.wait_for(stop.wait(), timeout=seconds)
    except TimeoutError:
        pass


__all__ = ["decode_fields", "sleep_until_stopped", "text"]
