"""
Pydantic schemas for the /jobs endpoints.

These are NOT database models — they define the HTTP API contract:
- JobCreate: what the user sends to define a recurring job (request body)
- JobUpdate: toggling a job on or off
- JobResponse: what we send back for a single job

Validation happens here, before any row is written:
- cron_expression must parse (croniter, UTC)
- task_payload must name a supported task type with a valid config
Either failure is a 422, so a job with a broken expression or payload can
never reach the scheduler.
"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field, field_validator

from scheduler.cron import validate_expression
from tasks.base import TaskError
from tasks.registry import build_task_registry

# Only used for validation; no requests are made through it
_TASKS = build_task_registry()


class JobCreate(BaseModel):
    """Request body for POST /jobs/."""

    name: str = Field(
        ...,
        min_length=1,
        max_length=255,
        examples=["nightly-report"],
    )
    cron_expression: str = Field(..., examples=["0 2 * * *"])
    task_payload: dict = Field(
        ...,
        examples=[{"type": "API_CALL", "config": {"url": "https://example.com/report", "method": "GET"}}],
    )
    is_active: bool = True

    @field_validator("cron_expression")
    @classmethod
    def _valid_cron(cls, value: str) -> str:
        return validate_expression(value)  # InvalidCronExpression is a ValueError → 422

    @field_validator("task_payload")
    @classmethod
    def _valid_payload(cls, value: dict) -> dict:
        try:
            _TASKS.validate(value)
        except TaskError as e:
            raise ValueError(str(e)) from e
        return value


class JobUpdate(BaseModel):
    """Request body for PATCH /jobs/{id}."""

    is_active: bool


class JobResponse(BaseModel):
    id: int
    name: str
    cron_expression: str
    task_payload: dict
    is_active: bool
    created_at: Optional[datetime] = None

    # from_attributes=True tells Pydantic to read from SQLAlchemy model attributes
    model_config = {"from_attributes": True}
