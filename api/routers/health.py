"""
Health check endpoint.

Checks both stores the system depends on: the database holding job
definitions and the ledger, and Redis holding the work queue.
"""

from fastapi import APIRouter, Depends
from redis.asyncio import Redis
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from api.dependencies import get_db, get_redis

router = APIRouter(tags=["health"])


@router.get("/health")
async def health_check(
    db: AsyncSession = Depends(get_db),
    redis: Redis = Depends(get_redis),
) -> dict:
    """Check that the database and Redis are reachable."""
    await db.execute(text("SELECT 1"))
    await redis.ping()

    return {"status": "healthy", "database": "ok", "redis": "ok"}
