"""
Scheduler Engine — turns due cron occurrences into queued work.

A timer fires every SCHEDULER_INTERVAL_MS (5s by default). Each firing runs
one scheduling cycle:

    IDLE ──timer──> ACQUIRING ──denied──> IDLE
                        │
                     granted
                        ▼
                   EVALUATING ──> ENQUEUEING ──> RELEASING ──> IDLE

    1. Take the leader lock. If someone else holds it, do nothing.
    2. Load every active job definition.
    3. For each job, find occurrences inside the catch-up window [now - W, now].
       A broken cron expression skips that job only.
    4. Insert a QUEUED ExecutionRecord per occurrence. The (job_id,
       scheduled_time) UNIQUE constraint rejects occurrences that an earlier
       cycle already claimed; that is normal and skipped quietly.
    5. Enqueue a WorkItem for each new record.
    6. Release the lock, always.

The catch-up window lets a restarted scheduler pick up ticks it missed in the
last W seconds (10s by default) without replaying an unbounded backlog.
Anything older than that is dropped on purpose.

         Postgres                     Scheduler                   Redis
    ┌──────────────┐  active jobs ┌──────────────┐ WorkItem  ┌────────────┐
    │ jobs         │─────────────>│ due in window│──────────>│ work queue │
    │ job_executions│<─────────────│ insert QUEUED│           │            │
    └──────────────┘              └──────────────┘           └────────────┘

Timer model: fixed rate, independent of cycle duration. Each cycle runs on
its own thread, so a slow cycle never delays the timer. If a cycle is still
running when the timer fires again, this engine still holds its lock handle
and the new firing is a no-op.
"""

import logging
import threading
import time
from datetime import datetime, timedelta
from typing import Callable, Optional

from redis.exceptions import RedisError
from sqlalchemy import select
from sqlalchemy.exc import InterfaceError, OperationalError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from ledger.executions import DuplicateOccurrenceError, ExecutionLedger, utcnow
from models.job import JobDefinition
from scheduler.base import CycleReport, JobSnapshot, QueuedOccurrence
from scheduler.cron import InvalidCronExpression, iter_occurrences
from scheduler.lock import LeaderLock, LockHandle
from workqueue.items import WorkItem
from workqueue.redis_queue import RedisWorkQueue

logger = logging.getLogger(__name__)


class SchedulerEngine:

    def __init__(
        self,
        session_factory: sessionmaker,
        queue: RedisWorkQueue,
        leader_lock: LeaderLock,
        ledger: Optional[ExecutionLedger] = None,
        interval_ms: int = 5000,
        catch_up_window: float = 10.0,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._session_factory = session_factory
        self._queue = queue
        self._leader_lock = leader_lock
        self._clock = clock
        self._ledger = ledger or ExecutionLedger(session_factory, clock=clock)
        self._interval_ms = interval_ms
        self._catch_up_window = timedelta(seconds=catch_up_window)

        # Leadership currently held by this engine, if any
        self._lock_handle: Optional[LockHandle] = None
        self._handle_guard = threading.Lock()
        self._acquiring = False

        self._stop_event = threading.Event()
        self._timer_thread: Optional[threading.Thread] = None
        self._cycle_threads: list[threading.Thread] = []
        self._threads_guard = threading.Lock()

    @property
    def is_leader(self) -> bool:
        return self._lock_handle is not None

    # ── lifecycle ──────────────────────────────────────────────

    def start(self) -> None:
        """Run a cycle now, then every interval_ms, until stop()."""
        if self._timer_thread is not None:
            return
        self._stop_event.clear()
        self._timer_thread = threading.Thread(
            target=self._timer_loop, name="scheduler-timer", daemon=True
        )
        self._timer_thread.start()
        logger.info(f"Scheduler started, checking jobs every {self._interval_ms}ms")

    def stop(self, timeout: Optional[float] = None) -> None:
        """
        Stop the timer and let the in-flight cycle finish.

        Any leadership still held afterwards (cycle abandoned past `timeout`)
        is released here.
        """
        self._stop_event.set()
        if self._timer_thread is not None:
            self._timer_thread.join(timeout)
            self._timer_thread = None

        with self._threads_guard:
            pending = list(self._cycle_threads)
            self._cycle_threads.clear()
        for thread in pending:
            thread.join(timeout)

        with self._handle_guard:
            handle, self._lock_handle = self._lock_handle, None
        if handle is not None:
            handle.release()
        logger.info("Scheduler stopped")

    def _timer_loop(self) -> None:
        interval = self._interval_ms / 1000.0
        next_fire = time.monotonic()
        while not self._stop_event.is_set():
            self._launch_cycle()
            next_fire += interval
            if self._stop_event.wait(max(0.0, next_fire - time.monotonic())):
                break

    def _launch_cycle(self) -> None:
        with self._threads_guard:
            self._cycle_threads = [t for t in self._cycle_threads if t.is_alive()]
            if self._cycle_threads:
                # At most one cycle thread; a slow store must not pile them up
                logger.info("Previous scheduling cycle still running. Skipping this tick.")
                return
            thread = threading.Thread(
                target=self._run_cycle_safely, name="scheduler-cycle", daemon=True
            )
            self._cycle_threads.append(thread)
        thread.start()

    def _run_cycle_safely(self) -> None:
        try:
            self.run_cycle()
        except Exception as e:
            # Keep the timer alive; the next firing is the retry
            logger.error(f"Unexpected scheduler cycle error: {e}", exc_info=True)

    # ── the cycle ──────────────────────────────────────────────

    def run_cycle(self) -> Optional[CycleReport]:
        """
        Run one scheduling cycle.

        Returns None when leadership was not obtained (no ledger writes
        happened), otherwise a CycleReport.
        """
        handle = self._acquire_leadership()
        if handle is None:
            return None

        report = CycleReport(started_at=self._clock())
        try:
            for job in self._load_active_jobs():
                report.jobs_evaluated += 1
                self._schedule_job(job, report.started_at, report)
        except (SQLAlchemyError, RedisError) as e:
            report.aborted = True
            logger.error(f"Scheduling cycle aborted: {e}", exc_info=True)
        finally:
            self._release_leadership(handle)

        if report.queued or report.aborted or report.errors:
            logger.info(f"Scheduling cycle finished: {report.summary()}")
        else:
            logger.debug(f"Scheduling cycle finished: {report.summary()}")
        return report

    def _acquire_leadership(self) -> Optional[LockHandle]:
        with self._handle_guard:
            if self._lock_handle is not None or self._acquiring:
                logger.info("Previous scheduling cycle still running. Skipping this cycle.")
                return None
            self._acquiring = True

        # try_acquire may wait on the network, so it runs outside the guard
        handle = None
        try:
            handle = self._leader_lock.try_acquire()
        finally:
            with self._handle_guard:
                self._acquiring = False
                self._lock_handle = handle

        if handle is None:
            logger.info("Another scheduler instance is running. Skipping this cycle.")
        return handle

    def _release_leadership(self, handle: LockHandle) -> None:
        with self._handle_guard:
            if self._lock_handle is handle:
                self._lock_handle = None
        handle.release()

    def _load_active_jobs(self) -> list[JobSnapshot]:
        session: Session = self._session_factory()
        try:
            rows = session.scalars(
                select(JobDefinition)
                .where(JobDefinition.is_active.is_(True))
                .order_by(JobDefinition.id)
            ).all()
            return [
                JobSnapshot(
                    id=row.id,
                    name=row.name,
                    cron_expression=row.cron_expression,
                    task_payload=row.task_payload or {},
                )
                for row in rows
            ]
        finally:
            session.close()

    def due_occurrences(self, job: JobSnapshot, now: datetime) -> list[datetime]:
        """Occurrences of `job` inside [now - W, now]. Raises InvalidCronExpression."""
        return list(iter_occurrences(job.cron_expression, now - self._catch_up_window, now))

    def _schedule_job(self, job: JobSnapshot, now: datetime, report: CycleReport) -> None:
        try:
            due = self.due_occurrences(job, now)
        except InvalidCronExpression as e:
            logger.warning(f"Skipping job {job.id} ({job.name}): {e}")
            report.invalid += 1
            return

        for occurrence in due:
            try:
                execution_id = self._ledger.create_queued(job.id, occurrence, job.task_payload)
            except DuplicateOccurrenceError:
                logger.debug(f"Job {job.id} already queued for {occurrence.isoformat()}")
                report.duplicates += 1
                continue
            except (OperationalError, InterfaceError):
                raise  # store unreachable, nothing else will work this cycle
            except SQLAlchemyError as e:
                logger.error(f"Error processing job {job.id} ({job.name}): {e}")
                report.errors += 1
                continue

            item = WorkItem(
                execution_id=str(execution_id),
                job_id=job.id,
                job_name=job.name,
                task_payload=job.task_payload,
            )
            try:
                item_id = self._queue.enqueue(item)
            except RedisError:
                logger.error(
                    f"Execution {execution_id} for job {job.id} at {occurrence.isoformat()} "
                    f"was recorded but could not be enqueued; it stays QUEUED without a work item"
                )
                raise

            report.queued.append(
                QueuedOccurrence(
                    job_id=job.id,
                    job_name=job.name,
                    scheduled_time=occurrence,
                    execution_id=str(execution_id),
                    item_id=item_id,
                )
            )
            logger.info(f"Queued job {job.id} ({job.name}) for {occurrence.isoformat()}")
