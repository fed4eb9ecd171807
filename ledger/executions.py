"""
Execution ledger — creates ExecutionRecords and moves them through their lifecycle.

    create_queued    scheduler, once per due occurrence       → QUEUED
    mark_running     worker, before the task starts           → RUNNING
    mark_succeeded   worker, task returned                    → SUCCESS
    mark_failed      worker, task raised                      → FAILED

Every transition appends an annotation to log_details and never rewrites
earlier ones, so a record that was retried shows every attempt even though
`status` only reflects the latest one.

Each call opens its OWN session from the injected factory and commits before
returning. Scheduler and worker threads can therefore call the ledger
concurrently without sharing sessions.
"""

import logging
import uuid as _uuid
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker

from models.enums import ExecutionStatus
from models.execution import UQ_JOB_SCHEDULED_TIME, ExecutionRecord

logger = logging.getLogger(__name__)


class DuplicateOccurrenceError(Exception):
    """An ExecutionRecord already exists for this (job_id, scheduled_time)."""

    def __init__(self, job_id: int, scheduled_time: datetime):
        self.job_id = job_id
        self.scheduled_time = scheduled_time
        super().__init__(f"Job {job_id} already has an execution for {scheduled_time.isoformat()}")


class ExecutionNotFoundError(LookupError):
    """The record is gone, usually because its job definition was deleted."""


class ExecutionAlreadySucceededError(Exception):
    """A redelivered work item points at a record that already reached SUCCESS."""


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def is_duplicate_occurrence(exc: IntegrityError) -> bool:
    """True when the IntegrityError came from the (job_id, scheduled_time) constraint."""
    diag = getattr(exc.orig, "diag", None)
    constraint = getattr(diag, "constraint_name", None)
    if constraint:
        return constraint == UQ_JOB_SCHEDULED_TIME

    # Drivers without diagnostics (sqlite3) only give us the message
    message = str(exc.orig)
    return UQ_JOB_SCHEDULED_TIME in message or (
        "job_executions.job_id" in message and "job_executions.scheduled_time" in message
    )


def _annotation(kind: str, message: str, at: datetime, attempt: Optional[int] = None, **extra) -> dict:
    entry = {"type": kind, "message": message, "attempt": attempt, "at": at.isoformat()}
    entry.update(extra)
    return entry


class ExecutionLedger:

    def __init__(self, session_factory: sessionmaker, clock: Callable[[], datetime] = utcnow):
        self._session_factory = session_factory
        self._clock = clock

    def create_queued(self, job_id: int, scheduled_time: datetime, task_payload: dict) -> _uuid.UUID:
        """
        Insert a QUEUED record for one occurrence and return its id.

        Raises DuplicateOccurrenceError when the occurrence is already claimed.
        Every other store error propagates to the caller.
        """
        record = ExecutionRecord(
            id=_uuid.uuid4(),
            job_id=job_id,
            scheduled_time=scheduled_time,
            status=ExecutionStatus.QUEUED.value,
            log_details=[
                _annotation(
                    "queued",
                    "Occurrence queued by scheduler.",
                    self._clock(),
                    cron_payload=task_payload,
                )
            ],
        )
        session: Session = self._session_factory()
        try:
            session.add(record)
            session.commit()
        except IntegrityError as e:
            session.rollback()
            if is_duplicate_occurrence(e):
                raise DuplicateOccurrenceError(job_id, scheduled_time) from e
            raise
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()
        return record.id

    def mark_running(self, execution_id, attempt: Optional[int] = None) -> datetime:
        """QUEUED/FAILED/RUNNING → RUNNING. Returns the recorded start_time."""
        started_at = self._clock()

        def apply(record: ExecutionRecord) -> None:
            if record.status == ExecutionStatus.SUCCESS.value:
                raise ExecutionAlreadySucceededError(
                    f"Execution {record.id} already succeeded, not running it again"
                )
            record.status = ExecutionStatus.RUNNING.value
            record.start_time = started_at
            record.end_time = None
            self._append(record, _annotation("start", "Job started by worker.", started_at, attempt))

        self._transition(execution_id, apply)
        return started_at

    def mark_succeeded(self, execution_id, summary: str, attempt: Optional[int] = None) -> datetime:
        """RUNNING → SUCCESS with end_time and the task's summary."""
        ended_at = self._clock()

        def apply(record: ExecutionRecord) -> None:
            record.status = ExecutionStatus.SUCCESS.value
            record.end_time = ended_at
            self._append(record, _annotation("success", summary, ended_at, attempt))

        self._transition(execution_id, apply)
        return ended_at

    def mark_failed(
        self,
        execution_id,
        error: str,
        attempt: Optional[int] = None,
        will_retry: bool = False,
        error_type: Optional[str] = None,
    ) -> datetime:
        """
        RUNNING → FAILED with end_time and the error description.

        A record that already reached SUCCESS is left as it is and
        ExecutionAlreadySucceededError is raised: a late failure from an
        overtaken attempt must not hide a success.
        """
        ended_at = self._clock()

        def apply(record: ExecutionRecord) -> None:
            if record.status == ExecutionStatus.SUCCESS.value:
                raise ExecutionAlreadySucceededError(
                    f"Execution {record.id} already succeeded, not recording failure: {error}"
                )
            record.status = ExecutionStatus.FAILED.value
            record.end_time = ended_at
            self._append(
                record,
                _annotation(
                    "failure", error, ended_at, attempt,
                    will_retry=will_retry, error_type=error_type,
                ),
            )

        self._transition(execution_id, apply)
        return ended_at

    def get(self, execution_id) -> Optional[ExecutionRecord]:
        session: Session = self._session_factory()
        try:
            return session.get(ExecutionRecord, _as_uuid(execution_id))
        finally:
            session.close()

    def find_stale_queued(self, older_than: timedelta) -> list[ExecutionRecord]:
        """
        QUEUED records whose occurrence is older than `older_than`.

        These are candidates for the "created but never enqueued" gap: the
        scheduler inserted the row but the enqueue failed. Nothing heals them
        automatically; this query exists so they can be monitored.
        """
        cutoff = self._clock() - older_than
        session: Session = self._session_factory()
        try:
            return list(
                session.scalars(
                    select(ExecutionRecord)
                    .where(
                        ExecutionRecord.status == ExecutionStatus.QUEUED.value,
                        ExecutionRecord.scheduled_time < cutoff,
                    )
                    .order_by(ExecutionRecord.scheduled_time)
                )
            )
        finally:
            session.close()

    # ── internals ──────────────────────────────────────────────

    def _transition(self, execution_id, apply: Callable[[ExecutionRecord], None]) -> None:
        session: Session = self._session_factory()
        try:
            record = session.scalars(
                select(ExecutionRecord)
                .where(ExecutionRecord.id == _as_uuid(execution_id))
                .with_for_update()
            ).first()
            if record is None:
                raise ExecutionNotFoundError(f"Execution {execution_id} not found")
            apply(record)
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    @staticmethod
    def _append(record: ExecutionRecord, entry: dict) -> None:
        # Reassign instead of mutating in place so the JSON column is flagged dirty
        record.log_details = [*(record.log_details or []), entry]


def _as_uuid(value) -> _uuid.UUID:
    return value if isinstance(value, _uuid.UUID) else _uuid.UUID(str(value))
