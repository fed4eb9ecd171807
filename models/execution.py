"""
ExecutionRecord ORM model — maps to the "job_executions" table.

One row per concrete occurrence of a job definition. The scheduler inserts it
as QUEUED; a worker moves it to RUNNING and then SUCCESS or FAILED.

The UNIQUE constraint on (job_id, scheduled_time) is load-bearing: it is what
stops two scheduling cycles (or two scheduler processes) from queuing the
same occurrence twice. Its name is matched when classifying insert errors.

log_details is an append-only list of annotations, e.g.
    [{"type": "queued", ...}, {"type": "start", "attempt": 1, ...},
     {"type": "failure", "attempt": 1, ...}, {"type": "start", "attempt": 2, ...}]
"""

import uuid
from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, Integer, String, UniqueConstraint, Uuid, func
from sqlalchemy.orm import Mapped, mapped_column

from models.base import Base
from models.enums import ExecutionStatus
from models.job import JSONType

UQ_JOB_SCHEDULED_TIME = "uq_job_scheduled_time"


class ExecutionRecord(Base):
    __tablename__ = "job_executions"
    __table_args__ = (
        UniqueConstraint("job_id", "scheduled_time", name=UQ_JOB_SCHEDULED_TIME),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    job_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("jobs.id", ondelete="CASCADE"), nullable=False, index=True
    )
    scheduled_time: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    status: Mapped[str] = mapped_column(
        String(20), default=ExecutionStatus.QUEUED.value, nullable=False, index=True
    )
    start_time: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    end_time: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    log_details: Mapped[list] = mapped_column(JSONType, default=list, nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    def __repr__(self) -> str:
        return f"<ExecutionRecord {self.id} job={self.job_id} {self.status}>"
