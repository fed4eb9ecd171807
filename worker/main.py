"""
Worker process entry point.

Runs a WorkerPool: WORKER_CONCURRENCY threads taking items off the work queue,
executing their task and recording the outcome in the execution ledger.

Scale out by starting more worker processes; they share the queue and the
store, nothing else.

To run:
    python -m worker.main

On SIGINT/SIGTERM the pool stops reserving new items and lets the ones in
flight finish. Anything cut short by a hard kill is redelivered once its
queue lease expires.
"""

import logging
import signal
import threading

from redis import Redis

from config.settings import settings
from ledger.executions import ExecutionLedger
from models.base import Base, build_sync_engine, build_sync_session_factory
from workqueue.redis_queue import RedisWorkQueue
from tasks.registry import build_task_registry
from worker.executor import ExecutionHandler
from worker.pool import WorkerPool

logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL),
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


def main():
    logger.info("--- Starting CRON WORKER SERVICE ---")
    # Pool sized for every handler thread plus a little headroom
    engine = build_sync_engine(
        settings.sync_database_url,
        pool_size=settings.WORKER_CONCURRENCY,
        max_overflow=2,
    )
    Base.metadata.create_all(engine)

    redis_client = Redis.from_url(settings.redis_url, decode_responses=True)
    handler = ExecutionHandler(
        ExecutionLedger(build_sync_session_factory(engine)),
        build_task_registry(default_timeout=settings.TASK_TIMEOUT_SECONDS),
    )
    pool = WorkerPool(
        RedisWorkQueue.from_settings(redis_client, settings),
        handler,
        concurrency=settings.WORKER_CONCURRENCY,
        poll_timeout=settings.WORKER_POLL_TIMEOUT,
    )
    pool.start()

    # ── Graceful shutdown on Ctrl+C or SIGTERM ──────────────────
    shutdown_event = threading.Event()

    def shutdown(signum, frame):
        logger.info("Shutdown signal received, stopping...")
        shutdown_event.set()

    signal.signal(signal.SIGTERM, shutdown)
    signal.signal(signal.SIGINT, shutdown)

    logger.info("Worker process running. Press Ctrl+C to stop.")

    # Block the main thread until shutdown signal
    # (using Event.wait() instead of signal.pause() for Windows compatibility)
    shutdown_event.wait()

    pool.stop()
    redis_client.close()
    engine.dispose()
    logger.info("Worker process exited")


if __name__ == "__main__":
    main()
