"""Event log adapters."""

from docflow.streams.memory import InMemoryEventLog
from docflow.streams.redis_streams import RedisStreamEventLog, create_redis_client

__all__ = ["InMemoryEventLog", "RedisStreamEventLog", "create_redis_client"]
