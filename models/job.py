"""
JobDefinition ORM model — maps to the "jobs" table.

A job definition is a named recurring task: a cron expression plus the task
payload handed to a worker each time the expression fires. The scheduler only
ever reads these rows; the management API creates, toggles and deletes them.

Key design decisions:
- name is UNIQUE: it is the human key used by operators
- JSON for task_payload: each task type stores different config without schema changes
- is_active gates scheduling without losing the definition or its history
"""

from datetime import datetime

from sqlalchemy import JSON, Boolean, DateTime, Integer, String, UniqueConstraint, func
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from models.base import Base

# JSONB on PostgreSQL, plain JSON elsewhere (SQLite in tests)
JSONType = JSON().with_variant(JSONB(), "postgresql")


class JobDefinition(Base):
    __tablename__ = "jobs"
    __table_args__ = (UniqueConstraint("name", name="uq_jobs_name"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    cron_expression: Mapped[str] = mapped_column(String(255), nullable=False)

    # e.g. {"type": "API_CALL", "config": {"url": "https://x/y", "method": "GET"}}
    task_payload: Mapped[dict] = mapped_column(JSONType, default=dict, nullable=False)
    is_active: Mapped[bool] = mapped_column(
        Boolean, default=True, nullable=False, index=True
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    def __repr__(self) -> str:
        return f"<JobDefinition {self.id} {self.name!r} [{self.cron_expression}]>"
