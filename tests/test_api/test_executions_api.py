"""API integration tests for /executions endpoints."""

import uuid
from datetime import datetime, timedelta, timezone

import pytest

from models.enums import ExecutionStatus
from models.execution import ExecutionRecord
from models.job import JobDefinition


async def _seed(session) -> list[ExecutionRecord]:
    job = JobDefinition(
        name="nightly-report",
        cron_expression="0 2 * * *",
        task_payload={"type": "API_CALL", "config": {"url": "https://example.com"}},
    )
    session.add(job)
    await session.flush()

    now = datetime.now(timezone.utc)
    records = [
        # recorded an hour ago and never picked up
        ExecutionRecord(id=uuid.uuid4(), job_id=job.id, scheduled_time=now - timedelta(hours=1),
                        status=ExecutionStatus.QUEUED.value, log_details=[]),
        ExecutionRecord(id=uuid.uuid4(), job_id=job.id, scheduled_time=now,
                        status=ExecutionStatus.QUEUED.value, log_details=[]),
        ExecutionRecord(id=uuid.uuid4(), job_id=job.id, scheduled_time=now - timedelta(days=1),
                        status=ExecutionStatus.SUCCESS.value, log_details=[]),
        ExecutionRecord(id=uuid.uuid4(), job_id=job.id, scheduled_time=now - timedelta(days=2),
                        status=ExecutionStatus.FAILED.value, log_details=[]),
    ]
    session.add_all(records)
    await session.commit()
    return records


@pytest.mark.asyncio
async def test_execution_stats(client, async_session):
    await _seed(async_session)

    response = await client.get("/executions/stats")
    assert response.status_code == 200
    assert response.json() == {
        "total": 4,
        "queued": 2,
        "running": 0,
        "success": 1,
        "failed": 1,
        "stale_queued": 1,
        "stale_after_seconds": 300,
    }


@pytest.mark.asyncio
async def test_execution_stats_threshold(client, async_session):
    await _seed(async_session)

    response = await client.get("/executions/stats?stale_after_seconds=7200")
    assert response.json()["stale_queued"] == 0


@pytest.mark.asyncio
async def test_execution_stats_empty(client):
    response = await client.get("/executions/stats")
    assert response.json()["total"] == 0


@pytest.mark.asyncio
async def test_get_execution(client, async_session):
    record = (await _seed(async_session))[2]

    response = await client.get(f"/executions/{record.id}")
    assert response.status_code == 200
    data = response.json()
    assert data["id"] == str(record.id)
    assert data["status"] == "SUCCESS"


@pytest.mark.asyncio
async def test_get_missing_execution(client):
    response = await client.get(f"/executions/{uuid.uuid4()}")
    assert response.status_code == 404
