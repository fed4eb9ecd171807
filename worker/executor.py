"""
Execution handler — runs one work item inside a worker thread.

This is the code that actually DOES THE WORK. For each delivery:

    1. Mark the ExecutionRecord RUNNING (before anything else, so in-flight
       work is visible even if this process dies mid-task)
    2. Dispatch the task through the TaskRegistry
    3. On success: mark SUCCESS with the task's summary
    4. On failure: mark FAILED with the error

The handler never raises to signal "retry me". It returns a HandlerResult
and the pool turns that into complete() / fail() on the queue. Recording the
failure and deciding to retry are one event here.

    SUCCEEDED   ledger SUCCESS                → ack
    RETRY       ledger FAILED                 → fail(retryable=True)
    FATAL       ledger FAILED, unfixable item → fail(retryable=False)
    SKIPPED     nothing to do (record gone or already SUCCESS) → ack
                also when a failure arrives after another delivery succeeded

Thread safety:
- The ledger opens a fresh session per call
- Task handlers are stateless
So multiple threads can call handle() simultaneously without locks.
"""

import enum
import logging
import time
from dataclasses import dataclass
from typing import Optional

from ledger.executions import (
    ExecutionAlreadySucceededError,
    ExecutionLedger,
    ExecutionNotFoundError,
)
from tasks.base import TaskError
from tasks.registry import TaskRegistry
from workqueue.items import Delivery

logger = logging.getLogger(__name__)


class HandlerOutcome(str, enum.Enum):
    SUCCEEDED = "succeeded"
    RETRY = "retry"
    FATAL = "fatal"
    SKIPPED = "skipped"


@dataclass(frozen=True)
class HandlerResult:
    outcome: HandlerOutcome
    execution_id: str
    message: Optional[str] = None

    @property
    def acknowledged(self) -> bool:
        """True when the queue should drop the item instead of failing it."""
        return self.outcome in (HandlerOutcome.SUCCEEDED, HandlerOutcome.SKIPPED)


class ExecutionHandler:

    def __init__(self, ledger: ExecutionLedger, tasks: TaskRegistry):
        self._ledger = ledger
        self._tasks = tasks

    def handle(self, delivery: Delivery) -> HandlerResult:
        item = delivery.item
        execution_id = item.execution_id
        attempt = delivery.attempt

        logger.info(
            f"Starting job {item.job_id} ({item.job_name}) execution {execution_id} "
            f"attempt {attempt}/{delivery.max_attempts}"
        )

        # ── Step 1: Mark RUNNING ────────────────────────────────
        try:
            self._ledger.mark_running(execution_id, attempt=attempt)
        except ExecutionNotFoundError:
            logger.warning(f"Execution {execution_id} not found (job deleted?), skipping")
            return HandlerResult(HandlerOutcome.SKIPPED, execution_id, "execution record not found")
        except ExecutionAlreadySucceededError as e:
            logger.info(str(e))
            return HandlerResult(HandlerOutcome.SKIPPED, execution_id, "already succeeded")

        # ── Step 2: Execute ─────────────────────────────────────
        start = time.monotonic()
        try:
            summary = self._tasks.dispatch(item.task_payload)
        except Exception as e:
            # ── Step 4: Record failure, then tell the pool what to do ──
            retryable = not isinstance(e, TaskError) or e.retryable
            will_retry = retryable and not delivery.is_last_attempt
            message = str(e) or type(e).__name__
            try:
                self._ledger.mark_failed(
                    execution_id,
                    message,
                    attempt=attempt,
                    will_retry=will_retry,
                    error_type=type(e).__name__,
                )
            except ExecutionAlreadySucceededError as already:
                # Another delivery of this item finished first
                logger.warning(f"{already}; dropping attempt {attempt}")
                return HandlerResult(HandlerOutcome.SKIPPED, execution_id, "already succeeded")
            logger.error(
                f"Job {item.job_id} failed! Attempt {attempt}/{delivery.max_attempts}: {message}"
            )
            outcome = HandlerOutcome.RETRY if retryable else HandlerOutcome.FATAL
            return HandlerResult(outcome, execution_id, message)

        # ── Step 3: Mark SUCCESS ────────────────────────────────
        elapsed = time.monotonic() - start
        self._ledger.mark_succeeded(execution_id, summary, attempt=attempt)
        logger.info(f"Job {item.job_id} ({item.job_name}) completed in {elapsed:.3f}s")
        return HandlerResult(HandlerOutcome.SUCCEEDED, execution_id, summary)
