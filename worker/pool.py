"""
Worker pool — executes work items from the queue on a thread pool.

Architecture:
    ┌─────────────────────────────────────────────────────────┐
    │                    WorkerPool                            │
    │                                                         │
    │  Dispatcher Thread                                      │
    │  ┌───────────────────────┐                              │
    │  │ renew in-flight leases│  ← every visibility_timeout/3│
    │  │ wait for a free slot  │  ← bounded semaphore         │
    │  │ reserve() from queue  │  ← BLMOVE, blocks ≤ 1s       │
    │  └──────────┬────────────┘                              │
    │             │ submit()                                   │
    │             ▼                                            │
    │  ┌──────────────────────────────────────────┐           │
    │  │ ThreadPoolExecutor (5 threads)            │           │
    │  │  handle() → settle on queue → free slot   │           │
    │  └──────────────────────────────────────────┘           │
    └─────────────────────────────────────────────────────────┘

The dispatcher only reserves an item once a thread is free to run it. An
item reserved but left sitting in the executor's backlog would burn its
queue lease without being worked on.

While an item runs, the dispatcher keeps extending its lease, so a task
that takes longer than the visibility timeout is not handed to a second
worker. Only a worker that stops renewing (crashed, or stuck long enough
that the dispatcher itself stalled) loses the item to redelivery.

Settling turns the handler's result into a queue call: complete() for
SUCCEEDED/SKIPPED, fail() for RETRY/FATAL. If settling itself fails (Redis
down), the item's lease expires and the queue redelivers it. If the lease
was already lost, the queue ignores the settle.
"""

import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from typing import Optional

from workqueue.items import Delivery, FailureDisposition
from workqueue.redis_queue import RedisWorkQueue
from worker.executor import ExecutionHandler, HandlerOutcome, HandlerResult

logger = logging.getLogger(__name__)


class WorkerPool:

    def __init__(
        self,
        queue: RedisWorkQueue,
        handler: ExecutionHandler,
        concurrency: int = 5,
        poll_timeout: float = 1.0,
        lease_renewal_interval: Optional[float] = None,
    ):
        self._queue = queue
        self._handler = handler
        self._concurrency = concurrency
        self._poll_timeout = poll_timeout
        self._slots = threading.BoundedSemaphore(concurrency)
        self._executor: Optional[ThreadPoolExecutor] = None
        self._dispatcher: Optional[threading.Thread] = None
        self._running = threading.Event()

        # Renew well before the lease runs out
        if lease_renewal_interval is None:
            lease_renewal_interval = queue.options.visibility_timeout / 3
        self._lease_renewal_interval = lease_renewal_interval
        self._next_renewal = 0.0
        self._in_flight: dict[str, Delivery] = {}
        self._in_flight_guard = threading.Lock()

    @property
    def running(self) -> bool:
        return self._running.is_set()

    def start(self) -> None:
        """Start the dispatcher thread that feeds items to the thread pool."""
        if self._running.is_set():
            return
        self._executor = ThreadPoolExecutor(
            max_workers=self._concurrency, thread_name_prefix="job-worker"
        )
        self._running.set()
        self._dispatcher = threading.Thread(
            target=self._dispatch_loop, name="worker-dispatcher", daemon=True
        )
        self._dispatcher.start()
        logger.info(
            f"WorkerPool started, listening to queue '{self._queue.name}' "
            f"with {self._concurrency} threads"
        )

    def stop(self) -> None:
        """Stop taking new items and wait for in-flight ones to finish."""
        self._running.clear()
        if self._dispatcher is not None:
            self._dispatcher.join()
            self._dispatcher = None
        if self._executor is not None:
            self._executor.shutdown(wait=True)
            self._executor = None
        logger.info("WorkerPool stopped")

    def run_once(self, timeout: float = 0) -> Optional[HandlerResult]:
        """Reserve and process one item in the calling thread. None if the queue was empty."""
        delivery = self._queue.reserve(timeout=timeout)
        if delivery is None:
            return None
        return self._process(delivery)

    def _dispatch_loop(self) -> None:
        """
        Continuously reserve items and submit them to the thread pool.

        The poll timeout bounds both waits so the loop notices stop() quickly
        and gets back to renewing leases.
        """
        while self._running.is_set():
            self._renew_leases()
            if not self._slots.acquire(timeout=self._poll_timeout):
                continue  # every thread busy
            try:
                delivery = self._queue.reserve(timeout=self._poll_timeout)
            except Exception as e:
                self._slots.release()
                logger.error(f"Dispatch error: {e}", exc_info=True)
                time.sleep(self._poll_timeout)  # Redis down: back off before the next poll
                continue

            if delivery is None:
                self._slots.release()
                continue

            logger.debug(f"Dispatching item {delivery.item_id} to thread pool")
            with self._in_flight_guard:
                self._in_flight[delivery.item_id] = delivery
            self._executor.submit(self._run_in_slot, delivery)

        # Keep renewing while stop() waits for in-flight items to drain
        while self._has_in_flight():
            self._renew_leases()
            time.sleep(min(self._poll_timeout, self._lease_renewal_interval))

    def _run_in_slot(self, delivery: Delivery) -> None:
        try:
            self._process(delivery)
        finally:
            with self._in_flight_guard:
                self._in_flight.pop(delivery.item_id, None)
            self._slots.release()

    def _has_in_flight(self) -> bool:
        with self._in_flight_guard:
            return bool(self._in_flight)

    def _renew_leases(self) -> None:
        now = time.monotonic()
        if now < self._next_renewal:
            return
        self._next_renewal = now + self._lease_renewal_interval

        with self._in_flight_guard:
            deliveries = list(self._in_flight.values())
        for delivery in deliveries:
            try:
                if not self._queue.extend(delivery):
                    logger.warning(
                        f"Lease for item {delivery.item_id} was already lost; "
                        f"it may be running on another worker"
                    )
            except Exception as e:
                logger.error(f"Could not renew lease for item {delivery.item_id}: {e}")

    def _process(self, delivery: Delivery) -> HandlerResult:
        try:
            result = self._handler.handle(delivery)
        except Exception as e:
            # Ledger unreachable or similar. Nothing was recorded, so let the queue retry.
            logger.error(
                f"Unhandled error processing item {delivery.item_id}: {e}", exc_info=True
            )
            result = HandlerResult(HandlerOutcome.RETRY, delivery.item.execution_id, str(e))

        try:
            self._settle(delivery, result)
        except Exception as e:
            logger.error(
                f"Could not settle item {delivery.item_id} ({result.outcome.value}): {e}; "
                f"it will be redelivered when its lease expires"
            )
        return result

    def _settle(self, delivery: Delivery, result: HandlerResult) -> None:
        if result.acknowledged:
            self._queue.complete(delivery)
            return

        disposition = self._queue.fail(
            delivery,
            result.message or "task failed",
            retryable=result.outcome == HandlerOutcome.RETRY,
        )
        if disposition == FailureDisposition.DEAD:
            # Final state: the ledger already shows FAILED from the handler
            logger.error(
                f"Job {delivery.item.job_id} officially failed after "
                f"{delivery.attempt} attempt(s). Error: {result.message}"
            )
