"""
Job definition endpoints.

POST   /jobs/                    → Define a new recurring job
GET    /jobs/                    → List jobs (optionally a single one via ?job_id=)
GET    /jobs/{job_id}            → Get a single job
PATCH  /jobs/{job_id}            → Activate / deactivate a job
DELETE /jobs/{job_id}            → Delete a job and its whole execution history
GET    /jobs/{job_id}/executions → Execution ledger for one job, newest first

The API layer is intentionally thin:
- Validate input (Pydantic does this, including cron + payload checks)
- Talk to the database
- Return the response

It does NOT schedule or execute jobs. The scheduler and worker do that.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from api.dependencies import get_db
from api.schemas.execution import ExecutionResponse
from api.schemas.job import JobCreate, JobResponse, JobUpdate
from models.enums import ExecutionStatus
from models.execution import ExecutionRecord
from models.job import JobDefinition

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/jobs", tags=["jobs"])


async def _get_job_or_404(db: AsyncSession, job_id: int) -> JobDefinition:
    job = await db.get(JobDefinition, job_id)
    if job is None:
        raise HTTPException(status_code=404, detail=f"Job with ID {job_id} not found.")
    return job


@router.post("/", response_model=JobResponse, status_code=201)
async def create_job(
    job_in: JobCreate,
    db: AsyncSession = Depends(get_db),
) -> JobResponse:
    """
    Define a new recurring job.

    The row is all the scheduler needs: on its next cycle it sees the active
    job and starts queuing occurrences as they come due.
    """
    job = JobDefinition(
        name=job_in.name,
        cron_expression=job_in.cron_expression,
        task_payload=job_in.task_payload,
        is_active=job_in.is_active,
    )
    db.add(job)
    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        raise HTTPException(
            status_code=409, detail=f"Job with name '{job_in.name}' already exists."
        )
    await db.refresh(job)  # reload to get server-generated fields (id, created_at)
    logger.info(f"Scheduled new job {job.id} ({job.name}) [{job.cron_expression}]")
    return JobResponse.model_validate(job)


@router.get("/", response_model=list[JobResponse])
async def list_jobs(
    job_id: Optional[int] = Query(None, description="Only return this job"),
    db: AsyncSession = Depends(get_db),
) -> list[JobResponse]:
    """List all jobs ordered by id. With ?job_id=, 404 if that job doesn't exist."""
    query = select(JobDefinition).order_by(JobDefinition.id)
    if job_id is not None:
        query = query.where(JobDefinition.id == job_id)

    jobs = (await db.execute(query)).scalars().all()
    if job_id is not None and not jobs:
        raise HTTPException(status_code=404, detail=f"Job with ID {job_id} not found.")
    return [JobResponse.model_validate(j) for j in jobs]


@router.get("/{job_id}", response_model=JobResponse)
async def get_job(
    job_id: int,
    db: AsyncSession = Depends(get_db),
) -> JobResponse:
    return JobResponse.model_validate(await _get_job_or_404(db, job_id))


@router.patch("/{job_id}", response_model=JobResponse)
async def update_job(
    job_id: int,
    update: JobUpdate,
    db: AsyncSession = Depends(get_db),
) -> JobResponse:
    """Deactivating stops new occurrences; queued ones still run."""
    job = await _get_job_or_404(db, job_id)
    job.is_active = update.is_active
    await db.commit()
    await db.refresh(job)
    return JobResponse.model_validate(job)


@router.delete("/{job_id}", status_code=204)
async def delete_job(
    job_id: int,
    db: AsyncSession = Depends(get_db),
) -> None:
    """
    Delete a job and all of its execution records.

    The foreign key cascades on PostgreSQL too; deleting the executions here
    keeps the behaviour identical on stores that don't enforce it. Work items
    already on the queue find no record and are skipped by the worker.
    """
    job = await _get_job_or_404(db, job_id)
    await db.execute(delete(ExecutionRecord).where(ExecutionRecord.job_id == job_id))
    await db.delete(job)
    await db.commit()
    logger.info(f"Deleted job {job_id} and its execution history")


@router.get("/{job_id}/executions", response_model=list[ExecutionResponse])
async def list_job_executions(
    job_id: int,
    status: Optional[ExecutionStatus] = Query(None, description="Filter by execution status"),
    limit: int = Query(50, ge=1, le=500),
    db: AsyncSession = Depends(get_db),
) -> list[ExecutionResponse]:
    await _get_job_or_404(db, job_id)

    query = select(ExecutionRecord).where(ExecutionRecord.job_id == job_id)
    if status:
        query = query.where(ExecutionRecord.status == status.value)
    query = query.order_by(ExecutionRecord.scheduled_time.desc()).limit(limit)

    records = (await db.execute(query)).scalars().all()
    return [ExecutionResponse.model_validate(r) for r in records]
