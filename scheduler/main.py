"""
Scheduler process entry point.

Runs the SchedulerEngine: a timer that, every SCHEDULER_INTERVAL_MS, takes the
leader lock, queues due occurrences and releases the lock.

Start as many scheduler processes as you like for redundancy. Only the one
holding the advisory lock does anything in a given cycle; if it dies, its
lock connection drops and another process takes over on its next tick.

To run:
    python -m scheduler.main
"""

import logging
import signal
import threading

from redis import Redis

from config.settings import settings
from ledger.executions import ExecutionLedger
from models.base import Base, build_sync_engine, build_sync_session_factory
from scheduler.engine import SchedulerEngine
from scheduler.lock import create_leader_lock
from workqueue.redis_queue import RedisWorkQueue

logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL),
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


def main():
    logger.info("--- Starting CRON SCHEDULER SERVICE ---")
    engine = build_sync_engine(settings.sync_database_url)

    # Safe to call repeatedly; the API or a worker may already have created them
    Base.metadata.create_all(engine)

    session_factory = build_sync_session_factory(engine)
    redis_client = Redis.from_url(settings.redis_url, decode_responses=True)
    leader_lock = create_leader_lock(engine, settings.SCHEDULER_LOCK_ID)

    scheduler = SchedulerEngine(
        session_factory,
        RedisWorkQueue.from_settings(redis_client, settings),
        leader_lock,
        ledger=ExecutionLedger(session_factory),
        interval_ms=settings.SCHEDULER_INTERVAL_MS,
        catch_up_window=settings.CATCH_UP_WINDOW_SECONDS,
    )
    scheduler.start()

    # ── Graceful shutdown on Ctrl+C or SIGTERM ──────────────────
    shutdown_event = threading.Event()

    def shutdown(signum, frame):
        logger.info("Shutdown signal received, stopping scheduler...")
        shutdown_event.set()

    signal.signal(signal.SIGTERM, shutdown)
    signal.signal(signal.SIGINT, shutdown)

    shutdown_event.wait()

    scheduler.stop()
    leader_lock.close()
    redis_client.close()
    engine.dispose()
    logger.info("Scheduler process exited")


if __name__ == "__main__":
    main()
