"""
Lightweight data objects used by the scheduling cycle.

JobSnapshot is what the scheduler reads from the store: just the fields it
needs to decide whether a job is due and what to enqueue. It does NOT hold
the ORM object, so a cycle never touches a session after loading jobs.

CycleReport summarises one cycle. The engine logs it and tests assert on it.
"""

from dataclasses import dataclass, field
from datetime import datetime


@dataclass(frozen=True)
class JobSnapshot:
    """Read-only view of an active job definition at the start of a cycle."""
    id: int
    name: str
    cron_expression: str
    task_payload: dict = field(default_factory=dict)


@dataclass(frozen=True)
class QueuedOccurrence:
    job_id: int
    job_name: str
    scheduled_time: datetime
    execution_id: str
    item_id: str


@dataclass
class CycleReport:
    started_at: datetime
    jobs_evaluated: int = 0
    queued: list[QueuedOccurrence] = field(default_factory=list)
    duplicates: int = 0   # occurrences already claimed by an earlier cycle
    invalid: int = 0      # jobs skipped because their cron expression didn't parse
    errors: int = 0       # per-job failures that did not stop the cycle
    aborted: bool = False # an infrastructure error ended the cycle early

    def summary(self) -> str:
        return (
            f"evaluated={self.jobs_evaluated} queued={len(self.queued)} "
            f"duplicates={self.duplicates} invalid={self.invalid} errors={self.errors}"
            + (" ABORTED" if self.aborted else "")
        )
