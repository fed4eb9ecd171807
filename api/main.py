"""
FastAPI application factory for the management API.

This file:
1. Creates the FastAPI app
2. Runs startup logic (build the DB engine, create tables, connect to Redis)
3. Registers all routers (jobs, executions, health)
4. Runs shutdown logic (close connections)

The API only manages job definitions and reads the execution ledger. It never
schedules or runs anything; the scheduler and worker processes do that.

To run:  uvicorn api.main:app --host 0.0.0.0 --port 8000 --reload
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from redis.asyncio import Redis as AsyncRedis

from config.settings import settings
from models.base import Base, build_async_engine, build_async_session_factory
from api.routers import executions, health, jobs

logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL),
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Runs on startup (before yield) and shutdown (after yield).

    Startup:
    - Builds the async engine and session factory for request handlers
    - Creates all DB tables if they don't exist (safe to run multiple times)
    - Connects to Redis (used by the health check)

    Shutdown:
    - Closes Redis connection
    - Disposes the DB engine (closes connection pool)
    """
    # ── Startup ─────────────────────────────────────────────────
    engine = build_async_engine(settings.database_url)
    logger.info("Creating database tables...")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    app.state.session_factory = build_async_session_factory(engine)
    app.state.redis = AsyncRedis.from_url(settings.redis_url)
    logger.info(f"API ready, work queue: {settings.QUEUE_NAME}")

    yield  # app is running and serving requests between startup and shutdown

    # ── Shutdown ────────────────────────────────────────────────
    await app.state.redis.close()
    await engine.dispose()
    logger.info("API shut down")


def create_app() -> FastAPI:
    """Factory function that builds and configures the FastAPI application."""
    app = FastAPI(
        title="Cron Scheduler",
        description="Manage recurring cron jobs and inspect their execution history",
        version="1.0.0",
        lifespan=lifespan,
    )

    app.include_router(health.router)
    app.include_router(jobs.router)
    app.include_router(executions.router)

    return app


# This is what uvicorn imports: `uvicorn api.main:app`
app = create_app()
