"""Tests for the TaskRegistry dispatch by payload type tag."""

import httpx
import pytest

from tasks.base import InvalidTaskPayloadError, UnsupportedTaskTypeError
from tasks.registry import build_task_registry


def test_registry_knows_api_call():
    registry = build_task_registry()
    assert registry.task_types == ["API_CALL"]


def test_dispatch_runs_matching_handler():
    transport = httpx.MockTransport(lambda request: httpx.Response(200, text="done"))
    registry = build_task_registry(transport=transport)

    summary = registry.dispatch({"type": "API_CALL", "config": {"url": "https://example.com"}})

    assert "SUCCESS" in summary


def test_unknown_type_is_unsupported():
    registry = build_task_registry()

    with pytest.raises(UnsupportedTaskTypeError) as exc_info:
        registry.dispatch({"type": "SHELL", "config": {}})

    assert exc_info.value.task_type == "SHELL"
    assert not exc_info.value.retryable


def test_missing_type_is_unsupported():
    with pytest.raises(UnsupportedTaskTypeError):
        build_task_registry().validate({"config": {"url": "https://example.com"}})


def test_non_object_payload_is_invalid():
    with pytest.raises(InvalidTaskPayloadError):
        build_task_registry().validate(["API_CALL"])


def test_validate_checks_config():
    with pytest.raises(InvalidTaskPayloadError):
        build_task_registry().validate({"type": "API_CALL", "config": {"url": "nope"}})
