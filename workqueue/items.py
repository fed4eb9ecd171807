"""
Data carried through the work queue.

WorkItem is the message the scheduler produces. It holds a COPY of the task
payload so a worker can start executing without reading the job definition
back from the store.

Delivery wraps a WorkItem handed to a consumer together with the attempt
number and a reservation token; the consumer passes it back to complete(),
fail() or extend(). The token ties those calls to ONE reservation, so a
consumer whose lease already ran out can no longer settle the item.
"""

import enum
import json
from dataclasses import asdict, dataclass, field


@dataclass(frozen=True)
class WorkItem:
    execution_id: str
    job_id: int
    job_name: str
    task_payload: dict = field(default_factory=dict)

    def to_json(self) -> str:
        return json.dumps(asdict(self))

    @classmethod
    def from_json(cls, raw) -> "WorkItem":
        data = json.loads(raw)
        return cls(
            execution_id=str(data["execution_id"]),
            job_id=data["job_id"],
            job_name=data["job_name"],
            task_payload=data.get("task_payload") or {},
        )


@dataclass(frozen=True)
class QueueOptions:
    max_attempts: int = 3
    backoff_ms: int = 5000          # delay before the 2nd attempt; doubles after that
    keep_completed: int = 1000
    keep_failed: int = 5000
    visibility_timeout: float = 60.0  # seconds a consumer may hold an item before redelivery

    def backoff_for(self, attempt: int) -> float:
        """Seconds to wait after failed attempt number `attempt` (1-based)."""
        return self.backoff_ms * (2 ** max(attempt - 1, 0)) / 1000.0


@dataclass(frozen=True)
class Delivery:
    item_id: str
    item: WorkItem
    attempt: int       # 1 on first delivery
    max_attempts: int
    token: str = ""    # identifies this reservation; changes on every redelivery

    @property
    def is_last_attempt(self) -> bool:
        return self.attempt >= self.max_attempts


class FailureDisposition(str, enum.Enum):
    RETRY_SCHEDULED = "retry_scheduled"   # will be redelivered after backoff
    DEAD = "dead"                         # attempts exhausted or not retryable
    STALE = "stale"                       # reservation lost (lease expired), nothing changed
