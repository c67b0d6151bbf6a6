"""Correlation context for event processing.

Stage workers bind the workflow and event being processed to context
variables so every log line emitted while handling an event carries them.
Each asyncio task runs with its own copy of the context, so concurrent
events processed by one worker do not leak identifiers into each other.
"""

import uuid
from contextvars import ContextVar
from types import TracebackType

_correlation_id_var: ContextVar[str | None] = ContextVar("correlation_id", default=None)
_workflow_id_var: ContextVar[str | None] = ContextVar("workflow_id", default=None)
_event_id_var: ContextVar[str | None] = ContextVar("event_id", default=None)


def generate_correlation_id() -> str:
    """Generate a new correlation ID.

    Returns:
        str: A new UUID4 correlation ID as a string.
    """
    return str(uuid.uuid4())


def set_correlation_id(correlation_id: str | None = None) -> str:
    """Set the correlation ID for the current context.

    If no correlation ID is provided, generates a new one.

    Args:
        correlation_id: Optional correlation ID to set. If None, generates a new one.

    Returns:
        str: The correlation ID that was set.
    """
    if correlation_id is None:
        correlation_id = generate_correlation_id()

    _correlation_id_var.set(correlation_id)
    return correlation_id


def get_correlation_id() -> str | None:
    """Get the correlation ID for the current context."""
    return _correlation_id_var.get()


def get_workflow_id() -> str | None:
    """Get the workflow being processed in the current context."""
    return _workflow_id_var.get()


def get_event_id() -> str | None:
    """Get the event being processed in the current context."""
    return _event_id_var.get()


def clear_correlation_id() -> None:
    """Clear all correlation identifiers for the current context."""
    _correlation_id_var.set(None)
    _workflow_id_var.set(None)
    _event_id_var.set(None)


class EventContext:
    """Context manager binding workflow and event identifiers.

    The correlation ID defaults to the workflow ID, so every log line of one
    source document's processing can be joined across stages.

    Example:
        >>> with EventContext(workflow_id="wf-1", event_id="abc"):
        ...     get_workflow_id()
        'wf-1'
    """

    def __init__(self, *, workflow_id: str | None, event_id: str | None) -> None:
        self.workflow_id = workflow_id
        self.event_id = event_id
        self._tokens: list[object] = []

    def __enter__(self) -> "EventContext":
        self._tokens = [
            _workflow_id_var.set(self.workflow_id),
            _event_id_var.set(self.event_id),
            _correlation_id_var.set(self.workflow_id),
        ]
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        workflow_token, event_token, correlation_token = self._tokens
        _workflow_id_var.reset(workflow_token)  # type: ignore[arg-type]
        _event_id_var.reset(event_token)  # type: ignore[arg-type]
        _correlation_id_var.reset(correlation_token)  # type: ignore[arg-type]


__all__ = [
    "EventContext",
    "clear_correlation_id",
    "generate_correlation_id",
    "get_correlation_id",
    "get_event_id",
    "get_workflow_id",
    "set_correlation_id",
]
