"""Tests for correlation context and JSON logging."""

import json
import logging

import pytest

from docflow.common.logging import CorrelationIdFilter, CustomJsonFormatter
from docflow.common.tracing import (
    EventContext,
    clear_correlation_id,
    get_correlation_id,
    get_event_id,
    get_workflow_id,
    set_correlation_id,
)


@pytest.fixture(autouse=True)
def reset_context() -> None:
    clear_correlation_id()


def _record(message: str = "hello") -> logging.LogRecord:
    return logging.LogRecord("docflow.test", logging.INFO, __file__, 10, message, None, None)


@pytest.mark.unit
def test_set_correlation_id_generates_when_missing() -> None:
    value = set_correlation_id()

    assert value
    assert get_correlation_id() == value


@pytest.mark.unit
def test_event_context_binds_and_restores() -> None:
    set_correlation_id("outer")

    with EventContext(workflow_id="wf-1", event_id="ev-1"):
        assert get_workflow_id() == "wf-1"
        assert get_event_id() == "ev-1"
        assert get_correlation_id() == "wf-1"

    assert get_workflow_id() is None
    assert get_event_id() is None
    assert get_correlation_id() == "outer"


@pytest.mark.unit
def test_filter_injects_context() -> None:
    record = _record()

    with EventContext(workflow_id="wf-1", event_id="ev-1"):
        assert CorrelationIdFilter().filter(record)

    assert record.correlation_id == "wf-1"  # type: ignore[attr-defined]
    assert record.workflow_id == "wf-1"  # type: ignore[attr-defined]
    assert record.event_id == "ev-1"  # type: ignore[attr-defined]


@pytest.mark.unit
def test_formatter_emits_json_with_correlation_fields() -> None:
    formatter = CustomJsonFormatter("%(message)s")
    record = _record("Processed event")

    with EventContext(workflow_id="wf-9", event_id="ev-9"):
        CorrelationIdFilter().filter(record)

    payload = json.loads(formatter.format(record))

    assert payload["message"] == "Processed event"
    assert payload["level"] == "INFO"
    assert payload["logger"] == "docflow.test"
    assert payload["workflow_id"] == "wf-9"
    assert payload["event_id"] == "ev-9"
