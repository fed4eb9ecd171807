"""
Task registry — maps task type tags to handler instances.

A job's task_payload looks like {"type": "API_CALL", "config": {...}}. The
registry reads the tag, finds the handler and runs it. The set of kinds is
closed (TaskType enum); an unknown tag raises UnsupportedTaskTypeError
instead of a generic exception so the worker can tell it apart.
"""

from typing import Optional

import httpx

from models.enums import TaskType
from tasks.api_call import ApiCallTask
from tasks.base import AbstractTaskHandler, InvalidTaskPayloadError, UnsupportedTaskTypeError


class TaskRegistry:

    def __init__(self, handlers: list[AbstractTaskHandler]):
        self._handlers: dict[str, AbstractTaskHandler] = {h.task_type: h for h in handlers}

    def get(self, task_type) -> AbstractTaskHandler:
        """Look up a handler by tag. Raises UnsupportedTaskTypeError if unknown."""
        handler = self._handlers.get(task_type)
        if handler is None:
            raise UnsupportedTaskTypeError(task_type)
        return handler

    @property
    def task_types(self) -> list[str]:
        return list(self._handlers)

    def _split(self, payload) -> tuple[AbstractTaskHandler, dict]:
        if not isinstance(payload, dict):
            raise InvalidTaskPayloadError("task_payload must be an object")
        handler = self.get(payload.get("type"))
        return handler, payload.get("config")

    def validate(self, payload: dict) -> None:
        """Raise UnsupportedTaskTypeError / InvalidTaskPayloadError for a bad payload."""
        handler, config = self._split(payload)
        handler.validate(config)

    def dispatch(self, payload: dict) -> str:
        """Run the task described by payload; returns its success summary."""
        handler, config = self._split(payload)
        return handler.run(config)


def build_task_registry(
    default_timeout: float = 30.0,
    transport: Optional[httpx.BaseTransport] = None,
) -> TaskRegistry:
    """One handler per TaskType member."""
    handlers = {
        TaskType.API_CALL: ApiCallTask(default_timeout=default_timeout, transport=transport),
    }
    return TaskRegistry(list(handlers.values()))
