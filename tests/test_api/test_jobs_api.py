"""
API integration tests for /jobs endpoints.

These use the test HTTP client from conftest.py, which talks to
the FastAPI app with an in-memory SQLite DB and fake Redis.
No Docker, no network, runs in milliseconds.
"""

import uuid
from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import func, select

from models.enums import ExecutionStatus
from models.execution import ExecutionRecord

NIGHTLY_JOB = {
    "name": "nightly-report",
    "cron_expression": "0 2 * * *",
    "task_payload": {
        "type": "API_CALL",
        "config": {"url": "https://reports.example.com/nightly", "method": "POST"},
    },
}


async def _create(client, **overrides) -> dict:
    response = await client.post("/jobs/", json={**NIGHTLY_JOB, **overrides})
    assert response.status_code == 201, response.text
    return response.json()


async def _add_execution(session, job_id, scheduled_time, status=ExecutionStatus.QUEUED) -> ExecutionRecord:
    record = ExecutionRecord(
        id=uuid.uuid4(),
        job_id=job_id,
        scheduled_time=scheduled_time,
        status=status.value,
        log_details=[{"type": "queued", "message": "Occurrence queued by scheduler."}],
    )
    session.add(record)
    await session.commit()
    return record


@pytest.mark.asyncio
async def test_create_job(client):
    """POST /jobs/ should create an active job and return it."""
    data = await _create(client)

    assert data["id"] is not None
    assert data["name"] == "nightly-report"
    assert data["cron_expression"] == "0 2 * * *"
    assert data["task_payload"]["type"] == "API_CALL"
    assert data["is_active"] is True


@pytest.mark.asyncio
async def test_create_job_normalises_cron_whitespace(client):
    data = await _create(client, cron_expression=" 0  2 * * * ")
    assert data["cron_expression"] == "0 2 * * *"


@pytest.mark.asyncio
async def test_create_job_invalid_cron(client):
    """A cron expression that doesn't parse should return 422."""
    response = await client.post("/jobs/", json={**NIGHTLY_JOB, "cron_expression": "every night"})
    assert response.status_code == 422


@pytest.mark.asyncio
async def test_create_job_cron_that_never_fires(client):
    """Feb 31st parses as cron but has no occurrence, so it's rejected up front."""
    response = await client.post("/jobs/", json={**NIGHTLY_JOB, "cron_expression": "0 0 31 2 *"})
    assert response.status_code == 422


@pytest.mark.asyncio
async def test_create_job_unsupported_task_type(client):
    response = await client.post(
        "/jobs/", json={**NIGHTLY_JOB, "task_payload": {"type": "SHELL", "config": {}}}
    )
    assert response.status_code == 422


@pytest.mark.asyncio
async def test_create_job_invalid_task_config(client):
    response = await client.post(
        "/jobs/",
        json={**NIGHTLY_JOB, "task_payload": {"type": "API_CALL", "config": {"url": "not-a-url"}}},
    )
    assert response.status_code == 422


@pytest.mark.asyncio
async def test_create_job_duplicate_name(client):
    await _create(client)
    response = await client.post("/jobs/", json=NIGHTLY_JOB)
    assert response.status_code == 409


@pytest.mark.asyncio
async def test_get_job_by_id(client):
    """GET /jobs/{id} should return the specific job."""
    job_id = (await _create(client))["id"]

    response = await client.get(f"/jobs/{job_id}")
    assert response.status_code == 200
    assert response.json()["id"] == job_id


@pytest.mark.asyncio
async def test_get_nonexistent_job(client):
    """GET /jobs/{bad_id} should return 404."""
    response = await client.get("/jobs/9999")
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_list_jobs(client):
    """GET /jobs/ returns every job ordered by id."""
    first = await _create(client, name="job1")
    second = await _create(client, name="job2")

    response = await client.get("/jobs/")
    assert response.status_code == 200
    assert [j["id"] for j in response.json()] == [first["id"], second["id"]]


@pytest.mark.asyncio
async def test_list_jobs_filtered_by_id(client):
    await _create(client, name="job1")
    second = await _create(client, name="job2")

    response = await client.get(f"/jobs/?job_id={second['id']}")
    assert response.status_code == 200
    assert [j["name"] for j in response.json()] == ["job2"]

    missing = await client.get("/jobs/?job_id=9999")
    assert missing.status_code == 404


@pytest.mark.asyncio
async def test_deactivate_job(client):
    job_id = (await _create(client))["id"]

    response = await client.patch(f"/jobs/{job_id}", json={"is_active": False})
    assert response.status_code == 200
    assert response.json()["is_active"] is False

    again = await client.get(f"/jobs/{job_id}")
    assert again.json()["is_active"] is False


@pytest.mark.asyncio
async def test_delete_job_removes_history(client, async_session):
    """DELETE /jobs/{id} removes the job and its execution records."""
    job_id = (await _create(client))["id"]
    await _add_execution(async_session, job_id, datetime(2024, 1, 2, 2, 0, tzinfo=timezone.utc))

    response = await client.delete(f"/jobs/{job_id}")
    assert response.status_code == 204

    assert (await client.get(f"/jobs/{job_id}")).status_code == 404
    remaining = await async_session.scalar(select(func.count(ExecutionRecord.id)))
    assert remaining == 0


@pytest.mark.asyncio
async def test_delete_nonexistent_job(client):
    response = await client.delete("/jobs/9999")
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_list_job_executions(client, async_session):
    """Newest first, filterable by status, bounded by limit."""
    job_id = (await _create(client))["id"]
    base = datetime(2024, 1, 2, 2, 0, tzinfo=timezone.utc)
    for day in range(3):
        status = ExecutionStatus.SUCCESS if day < 2 else ExecutionStatus.FAILED
        await _add_execution(async_session, job_id, base + timedelta(days=day), status)

    response = await client.get(f"/jobs/{job_id}/executions")
    assert response.status_code == 200
    data = response.json()
    assert [e["status"] for e in data] == ["FAILED", "SUCCESS", "SUCCESS"]
    assert data[0]["scheduled_time"].startswith("2024-01-04T02:00:00")

    successes = await client.get(f"/jobs/{job_id}/executions?status=SUCCESS&limit=1")
    assert [e["status"] for e in successes.json()] == ["SUCCESS"]
    assert successes.json()[0]["scheduled_time"].startswith("2024-01-03T02:00:00")


@pytest.mark.asyncio
async def test_list_executions_for_missing_job(client):
    response = await client.get("/jobs/9999/executions")
    assert response.status_code == 404
