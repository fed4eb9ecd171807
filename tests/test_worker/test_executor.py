"""
Tests for ExecutionHandler: one delivery in, one HandlerResult out,
with the ledger updated along the way.
"""

import uuid
from datetime import datetime, timezone

import httpx
import pytest

from models.enums import ExecutionStatus
from tasks.base import TaskExecutionError
from tasks.registry import build_task_registry
from worker.executor import ExecutionHandler, HandlerOutcome
from workqueue.items import Delivery, WorkItem

UTC = timezone.utc
NIGHTLY = datetime(2024, 1, 2, 2, 0, 0, tzinfo=UTC)


def _registry(status: int = 200):
    return build_task_registry(transport=httpx.MockTransport(lambda r: httpx.Response(status, text="body")))


def _delivery(execution_id, payload, attempt=1, max_attempts=3) -> Delivery:
    return Delivery(
        item_id="1",
        item=WorkItem(execution_id=str(execution_id), job_id=1, job_name="nightly-report", task_payload=payload),
        attempt=attempt,
        max_attempts=max_attempts,
    )


@pytest.fixture
def queued(ledger, make_job, api_call_payload):
    return ledger.create_queued(make_job(), NIGHTLY, api_call_payload)


def test_success_marks_record_succeeded(ledger, queued, api_call_payload):
    handler = ExecutionHandler(ledger, _registry(200))

    result = handler.handle(_delivery(queued, api_call_payload))

    assert result.outcome == HandlerOutcome.SUCCEEDED
    assert result.acknowledged
    record = ledger.get(queued)
    assert record.status == ExecutionStatus.SUCCESS.value
    assert record.start_time is not None
    assert record.end_time is not None
    assert record.start_time <= record.end_time
    assert [e["type"] for e in record.log_details] == ["queued", "start", "success"]


def test_task_failure_is_recorded_and_retryable(ledger, queued, api_call_payload):
    handler = ExecutionHandler(ledger, _registry(500))

    result = handler.handle(_delivery(queued, api_call_payload, attempt=1))

    assert result.outcome == HandlerOutcome.RETRY
    assert not result.acknowledged
    assert "Status: 500" in result.message
    record = ledger.get(queued)
    assert record.status == ExecutionStatus.FAILED.value
    failure = record.log_details[-1]
    assert failure["type"] == "failure"
    assert failure["will_retry"] is True
    assert failure["error_type"] == "TaskExecutionError"


def test_last_attempt_failure_is_not_marked_for_retry(ledger, queued, api_call_payload):
    handler = ExecutionHandler(ledger, _registry(500))

    result = handler.handle(_delivery(queued, api_call_payload, attempt=3))

    assert result.outcome == HandlerOutcome.RETRY  # the queue decides it's dead
    assert ledger.get(queued).log_details[-1]["will_retry"] is False


def test_unsupported_task_type_is_fatal(ledger, make_job):
    payload = {"type": "SHELL", "config": {"cmd": "true"}}
    execution_id = ledger.create_queued(make_job(), NIGHTLY, payload)
    handler = ExecutionHandler(ledger, _registry())

    result = handler.handle(_delivery(execution_id, payload))

    assert result.outcome == HandlerOutcome.FATAL
    record = ledger.get(execution_id)
    assert record.status == ExecutionStatus.FAILED.value
    assert record.log_details[-1]["error_type"] == "UnsupportedTaskTypeError"
    assert record.log_details[-1]["will_retry"] is False


def test_missing_record_is_skipped(ledger, api_call_payload):
    """The job was deleted after the item was queued."""
    handler = ExecutionHandler(ledger, _registry())

    result = handler.handle(_delivery(uuid.uuid4(), api_call_payload))

    assert result.outcome == HandlerOutcome.SKIPPED
    assert result.acknowledged


def test_redelivery_after_success_is_skipped(ledger, queued, api_call_payload):
    calls = []

    def handler_fn(request):
        calls.append(request)
        return httpx.Response(200)

    handler = ExecutionHandler(ledger, build_task_registry(transport=httpx.MockTransport(handler_fn)))
    handler.handle(_delivery(queued, api_call_payload, attempt=1))

    result = handler.handle(_delivery(queued, api_call_payload, attempt=2))

    assert result.outcome == HandlerOutcome.SKIPPED
    assert len(calls) == 1
    assert ledger.get(queued).status == ExecutionStatus.SUCCESS.value


def test_failure_after_another_delivery_succeeded_is_skipped(ledger, queued, api_call_payload):
    """A slow attempt fails after a redelivered copy already recorded SUCCESS."""

    class OvertakenTasks:
        def dispatch(self, payload):
            ledger.mark_succeeded(queued, "finished by the other worker", attempt=2)
            raise TaskExecutionError("API Call execution FAILED. Timed out")

    handler = ExecutionHandler(ledger, OvertakenTasks())

    result = handler.handle(_delivery(queued, api_call_payload, attempt=1))

    assert result.outcome == HandlerOutcome.SKIPPED
    record = ledger.get(queued)
    assert record.status == ExecutionStatus.SUCCESS.value
    assert record.log_details[-1]["type"] == "success"
