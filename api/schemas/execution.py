"""
Pydantic schemas for reading the execution ledger.

ExecutionResponse: one ExecutionRecord, annotations included.
ExecutionStats: counts per status plus the number of stale QUEUED records,
i.e. occurrences that were recorded but apparently never picked up.
"""

from datetime import datetime
from typing import Optional
from uuid import UUID

from pydantic import BaseModel


class ExecutionResponse(BaseModel):
    id: UUID
    job_id: int
    scheduled_time: datetime
    status: str
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    log_details: list[dict]
    created_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class ExecutionStats(BaseModel):
    total: int
    queued: int
    running: int
    success: int
    failed: int
    stale_queued: int        # QUEUED and scheduled longer ago than the threshold
    stale_after_seconds: int
