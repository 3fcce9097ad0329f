"""
Job Queue Abstract Base Class

Every queue backend (in-process asyncio, ARQ/Redis) implements this
interface. The service and the processors only ever talk to JobQueue,
so the backend is picked by configuration (QUEUE_BACKEND) without
touching business logic.

Vocabulary:
-----------
- Queue: a named lane of work ("notification-dispatch", "email-dispatch", "cleanup")
- Job type: what a job does inside a queue ("push-fanout", "send-email", ...)
- Processor: the async handler registered for one (queue, job type) pair
- Attempt: one execution of a job; failed attempts are retried with backoff
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Optional, TYPE_CHECKING

if TYPE_CHECKING:
    from app.queue.schedule import Schedule


# Processor signature: async def handler(ctx, payload) -> dict
Handler = Callable[[Dict[str, Any], Dict[str, Any]], Awaitable[Dict[str, Any]]]


class QueueError(Exception):
    """Raised for unknown queues or job types and unusable queue state."""
    pass


class JobStatus(str, Enum):
    WAITING = "waiting"        # Eligible now, or delayed until run_at
    ACTIVE = "active"
    COMPLETED = "completed"
    FAILED = "failed"          # Out of attempts


@dataclass(frozen=True)
class BackoffPolicy:
    """
    Exponential retry policy.

    Delay after attempt n (1-based) is base_delay * multiplier ** (n - 1),
    capped at max_delay when one is set.

    Example:
        BackoffPolicy(base_delay=2, max_attempts=3)
        attempt 1 fails -> retry in 2s
        attempt 2 fails -> retry in 4s
        attempt 3 fails -> job FAILED
    """
    base_delay: float
    max_attempts: int = 3
    multiplier: float = 2.0
    max_delay: Optional[float] = None

    def delay_for(self, attempt: int) -> float:
        delay = self.base_delay * self.multiplier ** max(attempt - 1, 0)
        if self.max_delay is not None:
            delay = min(delay, self.max_delay)
        return delay

    def to_dict(self) -> Dict[str, Any]:
        return {
            "base_delay": self.base_delay,
            "max_attempts": self.max_attempts,
            "multiplier": self.multiplier,
            "max_delay": self.max_delay,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "BackoffPolicy":
        return cls(**data)


@dataclass
class JobOptions:
    """
    Per-enqueue options.

    Attributes:
        delay: Seconds before the job becomes eligible
        attempts: Overrides the queue's max attempts
        backoff: Overrides the queue's backoff policy
        job_id: Caller-chosen id; enqueueing an id that already
            exists is a no-op returning the existing job
    """
    delay: float = 0
    attempts: Optional[int] = None
    backoff: Optional[BackoffPolicy] = None
    job_id: Optional[str] = None


@dataclass
class Job:
    """A unit of work as the queue tracks it."""
    id: str
    queue_name: str
    job_type: str
    payload: Dict[str, Any]
    max_attempts: int
    backoff: BackoffPolicy
    run_at: datetime
    attempts_made: int = 0
    status: JobStatus = JobStatus.WAITING
    last_error: Optional[str] = None
    result: Optional[Dict[str, Any]] = None
    schedule: Optional["Schedule"] = None
    sequence: int = 0


@dataclass
class QueueStats:
    waiting: int = 0
    active: int = 0
    completed: int = 0
    failed: int = 0
    delayed: int = 0

    def to_dict(self) -> Dict[str, int]:
        return {
            "waiting": self.waiting,
            "active": self.active,
            "completed": self.completed,
            "failed": self.failed,
            "delayed": self.delayed,
        }


@dataclass
class ProcessorRegistration:
    queue_name: str
    job_type: str
    handler: Handler
    concurrency: int


class JobQueue(ABC):
    """
    Abstract job queue.

    Implementations:
        - InMemoryJobQueue: asyncio, single process (tests, QUEUE_BACKEND=memory)
        - ArqJobQueue: Redis + ARQ workers
    """

    @abstractmethod
    async def enqueue(
        self,
        queue_name: str,
        job_type: str,
        payload: Dict[str, Any],
        options: Optional[JobOptions] = None
    ) -> Job:
        """
        Add a job to a queue.

        Raises:
            QueueError: Unknown queue or job type, or backend unreachable
        """
        pass

    @abstractmethod
    def register_processor(
        self,
        queue_name: str,
        job_type: str,
        handler: Handler,
        concurrency: Optional[int] = None
    ) -> None:
        """
        Attach the handler for a job type.

        concurrency defaults to the queue table's value for the job type.
        """
        pass

    @abstractmethod
    async def get_stats(self, queue_name: str) -> QueueStats:
        pass

    @abstractmethod
    async def schedule_recurring(
        self,
        queue_name: str,
        job_type: str,
        payload: Dict[str, Any],
        schedule: "Schedule"
    ) -> Job:
        """
        Enqueue the next occurrence of a recurring job.

        After each occurrence reaches a terminal status (completed or
        failed) the following one is enqueued from the same schedule.
        """
        pass

    async def close(self) -> None:
        """Release backend resources. Optional."""
        pass
