"""
Abstract base class and error types for task handlers.

Each task kind (currently only API_CALL) implements this interface. The worker
never calls a handler directly; it goes through TaskRegistry.dispatch(), which
picks the handler from the payload's "type" tag.

Error kinds matter to the worker:
- TaskExecutionError      the task ran and failed → recorded, then retried by the queue
- UnsupportedTaskTypeError the payload names a kind we don't have → fatal, no retry
- InvalidTaskPayloadError  the config doesn't validate → fatal, no retry

Retrying the last two would fail the same way every time, so they go
straight to the failed list.
"""

from abc import ABC, abstractmethod
from typing import Optional


class TaskError(Exception):
    """Base class for everything a task dispatch can raise."""

    retryable = True


class TaskExecutionError(TaskError):
    """The task ran and did not succeed. Carries HTTP details when there are any."""

    def __init__(self, message: str, status_code: Optional[int] = None, body_excerpt: Optional[str] = None):
        super().__init__(message)
        self.status_code = status_code
        self.body_excerpt = body_excerpt


class UnsupportedTaskTypeError(TaskError):
    retryable = False

    def __init__(self, task_type):
        self.task_type = task_type
        super().__init__(f"Unsupported task type: {task_type!r}")


class InvalidTaskPayloadError(TaskError):
    retryable = False


class AbstractTaskHandler(ABC):

    @abstractmethod
    def validate(self, config: dict):
        """
        Check the payload config for this task kind.

        Returns the parsed config object. Raises InvalidTaskPayloadError.
        Also used by the management API so bad payloads are rejected at creation.
        """
        ...

    @abstractmethod
    def run(self, config: dict) -> str:
        """
        Execute the task.

        Returns:
            a short human-readable summary, stored in the ledger on success.

        Raises:
            TaskExecutionError → the worker records FAILED and the queue retries.
        """
        ...

    @property
    @abstractmethod
    def task_type(self) -> str:
        """Tag matching the TaskType enum (e.g., 'API_CALL')."""
        ...
