"""
Redis-backed work queue with at-least-once delivery, bounded retries and backoff.

Key layout (all under "<prefix>:<queue name>:"):

    id          INCR counter used to mint item ids
    item:<id>   HASH  data (WorkItem JSON), state, attempts_made, last_error, timestamps
    wait        LIST  ids ready for delivery (FIFO)
    active      LIST  ids handed to a consumer and not yet acknowledged
    leases      ZSET  id → deadline (epoch seconds) for each active id
    delayed     ZSET  id → time the retry becomes eligible
    completed   LIST  acknowledged ids, newest first, trimmed to keep_completed
    failed      LIST  permanently failed ids, newest first, trimmed to keep_failed

Item lifecycle:

    enqueue ──> wait ──reserve──> active ──complete──> completed
                 ^                  │
                 │                  ├──fail (attempts left)──> delayed ──(due)──┐
                 │                  │                                           │
                 │                  └──fail (exhausted / fatal)──> failed       │
                 └──────────────────────────────────────────────────────────────┘
                 └──────── lease expired (consumer died) ─────── active

reserve() moves an id wait → active with a single LMOVE/BLMOVE, so an item
is never in limbo between the two lists. If the consumer never acknowledges
it (process crash), its lease runs out and requeue_expired() puts it back on
wait. That is the "at least once" half of the contract; duplicates are
possible, loss is not.

A consumer still working on an item keeps its lease alive with extend().
Every reservation gets a fresh token stored in the item hash; complete(),
fail() and extend() only act while the item is active under THAT token.
A consumer whose lease already expired therefore can't ack, fail or
re-lease an item that has since been handed to someone else.

Delayed retries and expired leases are moved by whichever consumer calls
reserve() next, under WATCH so two consumers can't both move the same ids.
"""

import logging
import time
import uuid
from typing import Callable, Optional

from redis import Redis
from redis.exceptions import WatchError

from workqueue.items import Delivery, FailureDisposition, QueueOptions, WorkItem

logger = logging.getLogger(__name__)


def _decode(value):
    return value.decode() if isinstance(value, bytes) else value


class RedisWorkQueue:

    def __init__(
        self,
        redis_client: Redis,
        name: str,
        options: Optional[QueueOptions] = None,
        key_prefix: str = "cronscheduler",
        clock: Callable[[], float] = time.time,
    ):
        self._redis = redis_client
        self._options = options or QueueOptions()
        self._clock = clock
        self.name = name

        base = f"{key_prefix}:{name}"
        self._base = base
        self._id_key = f"{base}:id"
        self._wait_key = f"{base}:wait"
        self._active_key = f"{base}:active"
        self._leases_key = f"{base}:leases"
        self._delayed_key = f"{base}:delayed"
        self._completed_key = f"{base}:completed"
        self._failed_key = f"{base}:failed"

    @classmethod
    def from_settings(cls, redis_client: Redis, settings) -> "RedisWorkQueue":
        """Build the queue described by a config.settings.Settings instance."""
        return cls(
            redis_client,
            settings.QUEUE_NAME,
            options=QueueOptions(
                max_attempts=settings.QUEUE_MAX_ATTEMPTS,
                backoff_ms=settings.QUEUE_BACKOFF_MS,
                keep_completed=settings.QUEUE_KEEP_COMPLETED,
                keep_failed=settings.QUEUE_KEEP_FAILED,
                visibility_timeout=settings.QUEUE_VISIBILITY_TIMEOUT,
            ),
            key_prefix=settings.QUEUE_KEY_PREFIX,
        )

    @property
    def options(self) -> QueueOptions:
        return self._options

    def _item_key(self, item_id: str) -> str:
        return f"{self._base}:item:{item_id}"

    # ── producer side ──────────────────────────────────────────

    def enqueue(self, item: WorkItem) -> str:
        """Store the item and make it immediately available. Returns its id."""
        item_id = str(self._redis.incr(self._id_key))
        pipe = self._redis.pipeline(transaction=True)
        pipe.hset(
            self._item_key(item_id),
            mapping={
                "data": item.to_json(),
                "state": "waiting",
                "attempts_made": 0,
                "enqueued_at": self._clock(),
            },
        )
        pipe.rpush(self._wait_key, item_id)
        pipe.execute()
        return item_id

    # ── consumer side ──────────────────────────────────────────

    def reserve(self, timeout: float = 0) -> Optional[Delivery]:
        """
        Hand the next ready item to the caller, or None if nothing is ready.

        timeout > 0 blocks up to that many seconds waiting for an item;
        timeout == 0 returns immediately.
        """
        self.promote_delayed()
        self.requeue_expired()

        if timeout > 0:
            raw_id = self._redis.blmove(
                self._wait_key, self._active_key, timeout, "LEFT", "RIGHT"
            )
        else:
            raw_id = self._redis.lmove(self._wait_key, self._active_key, "LEFT", "RIGHT")
        if raw_id is None:
            return None

        item_id = _decode(raw_id)
        item_key = self._item_key(item_id)
        now = self._clock()
        token = uuid.uuid4().hex

        pipe = self._redis.pipeline(transaction=True)
        pipe.hget(item_key, "data")
        pipe.hincrby(item_key, "attempts_made", 1)
        pipe.hset(item_key, mapping={"state": "active", "reserved_at": now, "token": token})
        pipe.zadd(self._leases_key, {item_id: now + self._options.visibility_timeout})
        raw_data, attempts, _, _ = pipe.execute()

        if raw_data is None:
            # Body pruned or deleted while the id was still queued
            logger.warning(f"Queue '{self.name}': item {item_id} has no body, dropping it")
            pipe = self._redis.pipeline(transaction=True)
            pipe.lrem(self._active_key, 1, item_id)
            pipe.zrem(self._leases_key, item_id)
            pipe.delete(item_key)
            pipe.execute()
            return None

        attempts = int(attempts)
        if attempts > self._options.max_attempts:
            # Only reachable through lease expiry: the consumer kept dying mid-item
            self._move_to_failed(item_id, "Exceeded max attempts after redelivery", now)
            logger.warning(
                f"Queue '{self.name}': item {item_id} exceeded "
                f"{self._options.max_attempts} attempts, moved to failed"
            )
            return None

        return Delivery(
            item_id=item_id,
            item=WorkItem.from_json(_decode(raw_data)),
            attempt=attempts,
            max_attempts=self._options.max_attempts,
            token=token,
        )

    def complete(self, delivery: Delivery) -> bool:
        """
        Acknowledge a delivery. The item will not be delivered again.

        Returns False (and changes nothing) when the reservation was lost.
        """
        item_id = delivery.item_id

        def ack(pipe) -> None:
            pipe.lrem(self._active_key, 1, item_id)
            pipe.zrem(self._leases_key, item_id)
            pipe.hset(
                self._item_key(item_id),
                mapping={"state": "completed", "finished_at": self._clock()},
            )
            pipe.lpush(self._completed_key, item_id)

        if not self._while_reserved(delivery, ack):
            self._log_stale(delivery, "complete")
            return False
        self._prune(self._completed_key, self._options.keep_completed)
        return True

    def fail(self, delivery: Delivery, error: str, retryable: bool = True) -> FailureDisposition:
        """
        Record a failed attempt.

        Retryable failures with attempts left go to `delayed` with exponential
        backoff; everything else is failed permanently and never redelivered.
        A lost reservation returns STALE and leaves the item alone.
        """
        item_id = delivery.item_id
        now = self._clock()

        if retryable and delivery.attempt < delivery.max_attempts:
            delay = self._options.backoff_for(delivery.attempt)

            def schedule_retry(pipe) -> None:
                pipe.lrem(self._active_key, 1, item_id)
                pipe.zrem(self._leases_key, item_id)
                pipe.hset(
                    self._item_key(item_id),
                    mapping={"state": "delayed", "last_error": error, "failed_at": now},
                )
                pipe.zadd(self._delayed_key, {item_id: now + delay})

            if not self._while_reserved(delivery, schedule_retry):
                self._log_stale(delivery, "fail")
                return FailureDisposition.STALE
            logger.info(
                f"Queue '{self.name}': item {item_id} attempt "
                f"{delivery.attempt}/{delivery.max_attempts} failed, retrying in {delay:.1f}s"
            )
            return FailureDisposition.RETRY_SCHEDULED

        if not self._while_reserved(
            delivery, lambda pipe: self._queue_move_to_failed(pipe, item_id, error, now)
        ):
            self._log_stale(delivery, "fail")
            return FailureDisposition.STALE
        self._prune(self._failed_key, self._options.keep_failed)
        return FailureDisposition.DEAD

    def extend(self, delivery: Delivery) -> bool:
        """
        Push the delivery's lease deadline out by another visibility_timeout.

        Consumers call this while a long task is still running. Returns False
        when the reservation was already lost; the item then belongs to
        whoever reserves it next.
        """
        deadline = self._clock() + self._options.visibility_timeout
        return self._while_reserved(
            delivery, lambda pipe: pipe.zadd(self._leases_key, {delivery.item_id: deadline})
        )

    # ── maintenance (run from reserve) ─────────────────────────

    def promote_delayed(self) -> int:
        """Move retries whose backoff has elapsed back onto the wait list."""
        now = self._clock()
        with self._redis.pipeline() as pipe:
            try:
                pipe.watch(self._delayed_key)
                due = [_decode(i) for i in pipe.zrangebyscore(self._delayed_key, "-inf", now)]
                if not due:
                    return 0
                pipe.multi()
                pipe.zrem(self._delayed_key, *due)
                for item_id in due:
                    pipe.hset(self._item_key(item_id), "state", "waiting")
                pipe.rpush(self._wait_key, *due)
                pipe.execute()
            except WatchError:
                return 0  # another consumer promoted them first
        return len(due)

    def requeue_expired(self) -> int:
        """Return items whose consumer lease ran out to the wait list."""
        now = self._clock()
        with self._redis.pipeline() as pipe:
            try:
                pipe.watch(self._leases_key)
                expired = [_decode(i) for i in pipe.zrangebyscore(self._leases_key, "-inf", now)]
                if not expired:
                    return 0
                pipe.multi()
                pipe.zrem(self._leases_key, *expired)
                for item_id in expired:
                    pipe.lrem(self._active_key, 1, item_id)
                    pipe.hset(self._item_key(item_id), "state", "waiting")
                pipe.rpush(self._wait_key, *expired)
                pipe.execute()
            except WatchError:
                return 0
        logger.warning(f"Queue '{self.name}': lease expired for {expired}, redelivering")
        return len(expired)

    # ── inspection ─────────────────────────────────────────────

    def counts(self) -> dict[str, int]:
        pipe = self._redis.pipeline(transaction=False)
        pipe.llen(self._wait_key)
        pipe.zcard(self._delayed_key)
        pipe.llen(self._active_key)
        pipe.llen(self._completed_key)
        pipe.llen(self._failed_key)
        waiting, delayed, active, completed, failed = pipe.execute()
        return {
            "waiting": waiting,
            "delayed": delayed,
            "active": active,
            "completed": completed,
            "failed": failed,
        }

    def get(self, item_id: str) -> Optional[dict]:
        raw = self._redis.hgetall(self._item_key(item_id))
        if not raw:
            return None
        return {_decode(k): _decode(v) for k, v in raw.items()}

    def next_retry_at(self, item_id: str) -> Optional[float]:
        return self._redis.zscore(self._delayed_key, item_id)

    # ── internals ──────────────────────────────────────────────

    def _while_reserved(self, delivery: Delivery, commands: Callable) -> bool:
        """
        Queue `commands` in a MULTI block only if the item is still active
        under this delivery's token. Returns whether they were applied.

        WATCH on the item hash catches a concurrent requeue or re-reservation
        (both rewrite the hash); on a conflict the check is simply redone.
        """
        item_key = self._item_key(delivery.item_id)
        with self._redis.pipeline() as pipe:
            while True:
                try:
                    pipe.watch(item_key)
                    state, token = (_decode(v) for v in pipe.hmget(item_key, "state", "token"))
                    if state != "active" or token != delivery.token:
                        return False
                    pipe.multi()
                    commands(pipe)
                    pipe.execute()
                    return True
                except WatchError:
                    continue

    def _log_stale(self, delivery: Delivery, action: str) -> None:
        logger.warning(
            f"Queue '{self.name}': ignoring {action} for item {delivery.item_id} "
            f"attempt {delivery.attempt}; its lease expired and it was handed out again"
        )

    def _queue_move_to_failed(self, pipe, item_id: str, error: str, now: float) -> None:
        pipe.lrem(self._active_key, 1, item_id)
        pipe.zrem(self._leases_key, item_id)
        pipe.hset(
            self._item_key(item_id),
            mapping={"state": "failed", "last_error": error, "finished_at": now},
        )
        pipe.lpush(self._failed_key, item_id)

    def _move_to_failed(self, item_id: str, error: str, now: float) -> None:
        pipe = self._redis.pipeline(transaction=True)
        self._queue_move_to_failed(pipe, item_id, error, now)
        pipe.execute()
        self._prune(self._failed_key, self._options.keep_failed)

    def _prune(self, list_key: str, keep: int) -> int:
        """Trim a history list to its newest `keep` ids and delete the dropped bodies."""
        overflow = [_decode(i) for i in self._redis.lrange(list_key, keep, -1)]
        if not overflow:
            return 0
        pipe = self._redis.pipeline(transaction=True)
        if keep > 0:
            pipe.ltrim(list_key, 0, keep - 1)
        else:
            pipe.delete(list_key)
        pipe.delete(*[self._item_key(i) for i in overflow])
        pipe.execute()
        return len(overflow)
