"""
Execution ledger endpoints.

GET /executions/stats           → Counts per status + stale QUEUED records
GET /executions/{execution_id}  → A single execution record

A QUEUED record that stays QUEUED long after its scheduled time usually
means the scheduler recorded the occurrence but failed to enqueue it. The
system does not repair these on its own; stale_queued is how you notice them.
"""

from datetime import datetime, timedelta, timezone
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from api.dependencies import get_db
from api.schemas.execution import ExecutionResponse, ExecutionStats
from models.enums import ExecutionStatus
from models.execution import ExecutionRecord

router = APIRouter(prefix="/executions", tags=["executions"])


@router.get("/stats", response_model=ExecutionStats)
async def get_execution_stats(
    stale_after_seconds: int = Query(
        300, ge=1, description="QUEUED records scheduled longer ago than this count as stale"
    ),
    db: AsyncSession = Depends(get_db),
) -> ExecutionStats:
    """
    Aggregate ledger statistics in one query using conditional aggregation
    (COUNT + FILTER) rather than one COUNT per status.
    """
    cutoff = datetime.now(timezone.utc) - timedelta(seconds=stale_after_seconds)
    queued = ExecutionRecord.status == ExecutionStatus.QUEUED.value

    query = select(
        func.count(ExecutionRecord.id).label("total"),
        func.count(ExecutionRecord.id).filter(queued).label("queued"),
        func.count(ExecutionRecord.id).filter(
            ExecutionRecord.status == ExecutionStatus.RUNNING.value
        ).label("running"),
        func.count(ExecutionRecord.id).filter(
            ExecutionRecord.status == ExecutionStatus.SUCCESS.value
        ).label("success"),
        func.count(ExecutionRecord.id).filter(
            ExecutionRecord.status == ExecutionStatus.FAILED.value
        ).label("failed"),
        func.count(ExecutionRecord.id).filter(
            queued, ExecutionRecord.scheduled_time < cutoff
        ).label("stale_queued"),
    )
    row = (await db.execute(query)).one()

    return ExecutionStats(
        total=row.total,
        queued=row.queued,
        running=row.running,
        success=row.success,
        failed=row.failed,
        stale_queued=row.stale_queued,
        stale_after_seconds=stale_after_seconds,
    )


@router.get("/{execution_id}", response_model=ExecutionResponse)
async def get_execution(
    execution_id: UUID,
    db: AsyncSession = Depends(get_db),
) -> ExecutionResponse:
    record = await db.get(ExecutionRecord, execution_id)
    if record is None:
        raise HTTPException(status_code=404, detail=f"Execution {execution_id} not found")
    return ExecutionResponse.model_validate(record)
