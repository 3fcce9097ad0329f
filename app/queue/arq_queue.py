"""
ARQ Job Queue

Redis-backed JobQueue built on ARQ.

How it maps onto ARQ:
--------------------
- Each logical queue is its own ARQ queue (sorted set "arq:<name>"),
  served by its own worker class in app/worker.py
- Each job type is an ARQ function named after the job type
- delay      -> _defer_by
- job_id     -> _job_id (ARQ refuses duplicates while the job exists)
- retries    -> the wrapper raises arq.Retry(defer=backoff) until the
                job's attempts are used up
- stats      -> counters in the Redis hash "<queue>:stats", waiting and
                delayed read from the ARQ sorted set scores

The same instance is used on both sides: the API process only
enqueues, the worker process also registers processors and exposes
them through functions_for().
"""

import asyncio
import logging
import time
from datetime import timedelta
from typing import Any, Dict, List, Optional, Tuple

from arq import Retry
from arq.connections import ArqRedis
from arq.worker import Function, func

from app.queue.base import (
    BackoffPolicy,
    Handler,
    Job,
    JobOptions,
    JobQueue,
    JobStatus,
    ProcessorRegistration,
    QueueError,
    QueueStats,
)
from app.queue.config import QueueConfig, build_queue_configs, get_queue_config
from app.queue.schedule import Schedule
from app.utils.time_utils import Clock, utc_now

logger = logging.getLogger(__name__)

# ARQ's own retry ceiling; the wrapper enforces the real per-job limit
ARQ_MAX_TRIES = 25


class ArqJobQueue(JobQueue):
    """
    Args:
        pool: ARQ Redis pool; may be bound later with bind()
        configs: Queue table (defaults to build_queue_configs())
        clock: Source of "now" for recurring schedules
    """

    def __init__(
        self,
        pool: Optional[ArqRedis] = None,
        configs: Optional[Dict[str, QueueConfig]] = None,
        clock: Clock = utc_now
    ):
        self._pool = pool
        self.configs = configs or build_queue_configs()
        self.clock = clock
        self._processors: Dict[Tuple[str, str], ProcessorRegistration] = {}
        self._semaphores: Dict[Tuple[str, str], asyncio.Semaphore] = {}
        self._schedules: Dict[Tuple[str, str], Tuple[Dict[str, Any], Schedule]] = {}

    def bind(self, pool: ArqRedis) -> None:
        """Attach the Redis pool (worker startup hands over ctx['redis'])."""
        self._pool = pool

    @property
    def pool(self) -> ArqRedis:
        if self._pool is None:
            raise QueueError("ARQ queue is not connected to Redis")
        return self._pool

    # ============================================================
    # ENQUEUE
    # ============================================================

    async def enqueue(
        self,
        queue_name: str,
        job_type: str,
        payload: Dict[str, Any],
        options: Optional[JobOptions] = None
    ) -> Job:
        config = get_queue_config(self.configs, queue_name, job_type)
        options = options or JobOptions()

        backoff = options.backoff or config.backoff
        max_attempts = options.attempts or backoff.max_attempts
        meta = {
            "max_attempts": max_attempts,
            "backoff": backoff.to_dict(),
        }

        defer_by = timedelta(seconds=options.delay) if options.delay and options.delay > 0 else None

        try:
            arq_job = await self.pool.enqueue_job(
                job_type,
                payload,
                meta,
                _job_id=options.job_id,
                _queue_name=config.arq_queue_name,
                _defer_by=defer_by,
            )
        except QueueError:
            raise
        except Exception as e:
            raise QueueError(f"Failed to enqueue {queue_name}/{job_type}: {e}") from e

        if arq_job is None:
            logger.debug(f"Job {options.job_id} already queued, skipping")

        job_id = arq_job.job_id if arq_job is not None else options.job_id
        now = self.clock()
        return Job(
            id=job_id,
            queue_name=queue_name,
            job_type=job_type,
            payload=payload,
            max_attempts=max_attempts,
            backoff=backoff,
            run_at=now + (defer_by or timedelta(0)),
        )

    async def schedule_recurring(
        self,
        queue_name: str,
        job_type: str,
        payload: Dict[str, Any],
        schedule: Schedule
    ) -> Job:
        get_queue_config(self.configs, queue_name, job_type)
        self._schedules[(queue_name, job_type)] = (payload, schedule)

        now = self.clock()
        run_at = schedule.next_run(now)
        logger.info(f"Recurring {queue_name}/{job_type} next run at {run_at.isoformat()}")

        return await self.enqueue(
            queue_name,
            job_type,
            payload,
            JobOptions(
                delay=max((run_at - now).total_seconds(), 0),
                job_id=f"recurring:{job_type}:{run_at.isoformat()}",
            ),
        )

    # ============================================================
    # WORKER SIDE
    # ============================================================

    def register_processor(
        self,
        queue_name: str,
        job_type: str,
        handler: Handler,
        concurrency: Optional[int] = None
    ) -> None:
        config = get_queue_config(self.configs, queue_name, job_type)
        limit = concurrency or config.concurrency_for(job_type)

        key = (queue_name, job_type)
        self._processors[key] = ProcessorRegistration(
            queue_name=queue_name,
            job_type=job_type,
            handler=handler,
            concurrency=limit,
        )
        self._semaphores[key] = asyncio.Semaphore(limit)

    def functions_for(self, queue_name: str) -> List[Function]:
        """ARQ function list for the worker serving one queue."""
        get_queue_config(self.configs, queue_name)
        return [
            func(self._make_job_function(registration), name=registration.job_type, max_tries=ARQ_MAX_TRIES)
            for (name, _), registration in self._processors.items()
            if name == queue_name
        ]

    def max_jobs_for(self, queue_name: str) -> int:
        """Worker-wide job limit: the sum of the per-type limits."""
        config = get_queue_config(self.configs, queue_name)
        return sum(config.concurrency.values())

    def _make_job_function(self, registration: ProcessorRegistration):
        queue_name = registration.queue_name
        job_type = registration.job_type
        key = (queue_name, job_type)

        async def run_job(ctx: Dict[str, Any], payload: Dict[str, Any], meta: Dict[str, Any]) -> Dict[str, Any]:
            job_id = ctx.get("job_id", "unknown")
            job_try = ctx.get("job_try", 1)
            max_attempts = meta.get("max_attempts", 1)
            backoff = BackoffPolicy.from_dict(meta["backoff"])

            async with self._semaphores[key]:
                await self._count(queue_name, JobStatus.ACTIVE.value, 1)
                logger.info(f"Job {job_id} ({queue_name}/{job_type}) attempt {job_try}/{max_attempts}")

                try:
                    job_ctx = dict(ctx)
                    job_ctx["queue"] = self
                    result = await registration.handler(job_ctx, payload)
                except asyncio.CancelledError:
                    # ARQ cancels the coroutine when job_timeout expires and does not retry it
                    logger.error(
                        f"Job {job_id} ({queue_name}/{job_type}) cancelled on attempt {job_try} "
                        f"(timed out or worker shutting down)"
                    )
                    await self._count(queue_name, JobStatus.FAILED.value, 1)
                    await self._reschedule(key)
                    raise
                except Exception as e:
                    error = f"{type(e).__name__}: {e}"
                    if job_try < max_attempts:
                        delay = backoff.delay_for(job_try)
                        logger.warning(
                            f"Job {job_id} attempt {job_try} failed: {error}; retrying in {delay:.1f}s"
                        )
                        raise Retry(defer=delay) from e

                    logger.error(
                        f"Job {job_id} ({queue_name}/{job_type}) failed permanently "
                        f"after {job_try} attempts: {error}"
                    )
                    await self._count(queue_name, JobStatus.FAILED.value, 1)
                    await self._reschedule(key)
                    raise
                finally:
                    await self._count(queue_name, JobStatus.ACTIVE.value, -1)

            await self._count(queue_name, JobStatus.COMPLETED.value, 1)
            await self._reschedule(key)
            logger.info(f"Job {job_id} completed")
            return result

        run_job.__qualname__ = f"run_{job_type.replace('-', '_')}"
        return run_job

    async def _reschedule(self, key: Tuple[str, str]) -> None:
        if key not in self._schedules:
            return
        payload, schedule = self._schedules[key]
        await self.schedule_recurring(key[0], key[1], payload, schedule)

    # ============================================================
    # STATS
    # ============================================================

    def _stats_key(self, queue_name: str) -> str:
        return f"{queue_name}:stats"

    async def _count(self, queue_name: str, field: str, amount: int) -> None:
        await self.pool.hincrby(self._stats_key(queue_name), field, amount)

    async def get_stats(self, queue_name: str) -> QueueStats:
        config = get_queue_config(self.configs, queue_name)

        try:
            counters = await self.pool.hgetall(self._stats_key(queue_name))
            now_ms = int(time.time() * 1000)
            due = await self.pool.zcount(config.arq_queue_name, "-inf", now_ms)
            delayed = await self.pool.zcount(config.arq_queue_name, f"({now_ms}", "+inf")
        except Exception as e:
            raise QueueError(f"Failed to read stats for '{queue_name}': {e}") from e

        def counter(name: str) -> int:
            value = counters.get(name.encode()) or counters.get(name)
            return max(int(value), 0) if value is not None else 0

        active = counter(JobStatus.ACTIVE.value)
        return QueueStats(
            # Running jobs stay in the sorted set until they finish
            waiting=max(due - active, 0),
            active=active,
            completed=counter(JobStatus.COMPLETED.value),
            failed=counter(JobStatus.FAILED.value),
            delayed=delayed,
        )

    async def close(self) -> None:
        # The pool itself is owned by app.db.redis
        self._pool = None
