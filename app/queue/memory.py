"""
In-Memory Job Queue

asyncio implementation of JobQueue that runs processors inside the
current process. Used when QUEUE_BACKEND=memory (single-process
deployments, local development) and by the test suite.

Two ways to drive it:
---------------------
1. Deterministic (tests):
       await queue.run_pending()   # one pass over eligible jobs
       await queue.drain()         # repeat until nothing is eligible

2. Background loop (API process):
       await queue.start()
       ...
       await queue.stop()          # waits for in-flight jobs

Eligibility is decided by the injected clock, so delayed jobs and
retry backoff can be driven by a fake clock without sleeping.
"""

import asyncio
import logging
from collections import deque
from datetime import timedelta
from typing import Any, Deque, Dict, List, Optional, Set, Tuple
from uuid import uuid4

from app.queue.base import (
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


class InMemoryJobQueue(JobQueue):
    """
    Single-process job queue.

    Args:
        configs: Queue table (defaults to build_queue_configs())
        context: Base ctx handed to every processor (session_factory,
            transports, ...); job_id, job_try and queue are added per job
        clock: Source of "now"
        poll_interval: Seconds between passes of the background loop
        retain_finished: How many completed/failed jobs stay inspectable
            through get_job()/get_jobs(); older ones are dropped and only
            counted in get_stats()
    """

    def __init__(
        self,
        configs: Optional[Dict[str, QueueConfig]] = None,
        context: Optional[Dict[str, Any]] = None,
        clock: Clock = utc_now,
        poll_interval: float = 0.5,
        retain_finished: int = 1000
    ):
        self.configs = configs or build_queue_configs()
        self.context: Dict[str, Any] = dict(context or {})
        self.clock = clock
        self.poll_interval = poll_interval
        self.retain_finished = retain_finished

        self._jobs: Dict[str, Job] = {}
        self._finished: Deque[str] = deque()
        self._finished_counts: Dict[Tuple[str, JobStatus], int] = {}
        self._processors: Dict[Tuple[str, str], ProcessorRegistration] = {}
        self._semaphores: Dict[Tuple[str, str], asyncio.Semaphore] = {}
        self._claimed: Set[str] = set()
        self._in_flight: Set[asyncio.Task] = set()
        self._sequence = 0
        self._loop_task: Optional[asyncio.Task] = None
        self._running = False

    # ============================================================
    # JobQueue INTERFACE
    # ============================================================

    async def enqueue(
        self,
        queue_name: str,
        job_type: str,
        payload: Dict[str, Any],
        options: Optional[JobOptions] = None
    ) -> Job:
        return self._add_job(queue_name, job_type, payload, options or JobOptions())

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
        logger.debug(f"Registered processor {queue_name}/{job_type} (concurrency {limit})")

    async def get_stats(self, queue_name: str) -> QueueStats:
        get_queue_config(self.configs, queue_name)
        now = self.clock()
        stats = QueueStats(
            completed=self._finished_counts.get((queue_name, JobStatus.COMPLETED), 0),
            failed=self._finished_counts.get((queue_name, JobStatus.FAILED), 0),
        )

        for job in self._jobs.values():
            if job.queue_name != queue_name:
                continue
            if job.status == JobStatus.WAITING:
                if job.run_at > now:
                    stats.delayed += 1
                else:
                    stats.waiting += 1
            elif job.status == JobStatus.ACTIVE:
                stats.active += 1

        return stats

    async def schedule_recurring(
        self,
        queue_name: str,
        job_type: str,
        payload: Dict[str, Any],
        schedule: Schedule
    ) -> Job:
        now = self.clock()
        run_at = schedule.next_run(now)

        job = self._add_job(
            queue_name,
            job_type,
            payload,
            JobOptions(
                delay=max((run_at - now).total_seconds(), 0),
                job_id=f"recurring:{job_type}:{run_at.isoformat()}",
            ),
        )
        job.schedule = schedule
        logger.info(f"Recurring {queue_name}/{job_type} next run at {run_at.isoformat()}")
        return job

    async def close(self) -> None:
        await self.stop()

    # ============================================================
    # INSPECTION
    # ============================================================

    def get_job(self, job_id: str) -> Optional[Job]:
        return self._jobs.get(job_id)

    def get_jobs(
        self,
        queue_name: Optional[str] = None,
        job_type: Optional[str] = None,
        status: Optional[JobStatus] = None
    ) -> List[Job]:
        """Jobs in enqueue order, optionally filtered."""
        jobs = sorted(self._jobs.values(), key=lambda j: j.sequence)
        return [
            job for job in jobs
            if (queue_name is None or job.queue_name == queue_name)
            and (job_type is None or job.job_type == job_type)
            and (status is None or job.status == status)
        ]

    # ============================================================
    # PROCESSING
    # ============================================================

    async def run_pending(self) -> int:
        """
        Run every job that is eligible right now and wait for them.

        Jobs whose retry lands in the future are left for a later pass.

        Returns:
            Number of job attempts executed
        """
        tasks = self._dispatch_eligible()
        if tasks:
            await asyncio.gather(*tasks)
        return len(tasks)

    async def drain(self, max_passes: int = 100) -> int:
        """Call run_pending() until a pass finds nothing to do."""
        total = 0
        for _ in range(max_passes):
            executed = await self.run_pending()
            if executed == 0:
                break
            total += executed
        return total

    async def start(self) -> None:
        """Start the background polling loop."""
        if self._running:
            return
        self._running = True
        self._loop_task = asyncio.create_task(self._poll_loop())
        logger.info("In-memory job queue started")

    async def stop(self) -> None:
        """Stop polling and wait for jobs already running."""
        if not self._running:
            return
        self._running = False

        if self._loop_task is not None:
            self._loop_task.cancel()
            try:
                await self._loop_task
            except asyncio.CancelledError:
                pass
            self._loop_task = None

        if self._in_flight:
            await asyncio.gather(*self._in_flight, return_exceptions=True)
        logger.info("In-memory job queue stopped")

    async def _poll_loop(self) -> None:
        while self._running:
            self._dispatch_eligible()
            await asyncio.sleep(self.poll_interval)

    def _dispatch_eligible(self) -> List[asyncio.Task]:
        """Claim every eligible job that has a processor and start it."""
        now = self.clock()
        tasks = []

        for job in self.get_jobs(status=JobStatus.WAITING):
            if job.id in self._claimed or job.run_at > now:
                continue
            if (job.queue_name, job.job_type) not in self._processors:
                continue

            self._claimed.add(job.id)
            task = asyncio.create_task(self._execute(job))
            self._in_flight.add(task)
            task.add_done_callback(self._in_flight.discard)
            tasks.append(task)

        return tasks

    async def _execute(self, job: Job) -> None:
        key = (job.queue_name, job.job_type)
        registration = self._processors[key]

        try:
            async with self._semaphores[key]:
                job.status = JobStatus.ACTIVE
                job.attempts_made += 1

                ctx = dict(self.context)
                ctx.update(
                    job_id=job.id,
                    job_try=job.attempts_made,
                    queue=self,
                    clock=self.context.get("clock", self.clock),
                )

                logger.info(
                    f"Job {job.id} ({job.queue_name}/{job.job_type}) "
                    f"attempt {job.attempts_made}/{job.max_attempts}"
                )

                try:
                    job.result = await registration.handler(ctx, job.payload)
                except Exception as e:
                    await self._handle_failure(job, e)
                else:
                    job.status = JobStatus.COMPLETED
                    job.last_error = None
                    logger.info(f"Job {job.id} completed")
        finally:
            self._claimed.discard(job.id)

        if job.status in (JobStatus.COMPLETED, JobStatus.FAILED):
            self._record_finished(job)
            if job.schedule is not None:
                await self.schedule_recurring(job.queue_name, job.job_type, job.payload, job.schedule)

    async def _handle_failure(self, job: Job, error: Exception) -> None:
        job.last_error = f"{type(error).__name__}: {error}"

        if job.attempts_made < job.max_attempts:
            delay = job.backoff.delay_for(job.attempts_made)
            job.status = JobStatus.WAITING
            job.run_at = self.clock() + timedelta(seconds=delay)
            logger.warning(
                f"Job {job.id} attempt {job.attempts_made} failed: {job.last_error}; "
                f"retrying in {delay:.1f}s"
            )
            return

        job.status = JobStatus.FAILED
        logger.error(
            f"Job {job.id} ({job.queue_name}/{job.job_type}) failed permanently "
            f"after {job.attempts_made} attempts: {job.last_error}"
        )

    # ============================================================
    # HELPERS
    # ============================================================

    def _record_finished(self, job: Job) -> None:
        """Count a terminal job and drop the oldest ones past retain_finished."""
        key = (job.queue_name, job.status)
        self._finished_counts[key] = self._finished_counts.get(key, 0) + 1
        self._finished.append(job.id)

        while len(self._finished) > self.retain_finished:
            job_id = self._finished.popleft()
            evicted = self._jobs.get(job_id)
            if evicted is not None and evicted.status in (JobStatus.COMPLETED, JobStatus.FAILED):
                del self._jobs[job_id]

    def _add_job(
        self,
        queue_name: str,
        job_type: str,
        payload: Dict[str, Any],
        options: JobOptions
    ) -> Job:
        config = get_queue_config(self.configs, queue_name, job_type)

        if options.job_id and options.job_id in self._jobs:
            logger.debug(f"Job {options.job_id} already queued, skipping")
            return self._jobs[options.job_id]

        backoff = options.backoff or config.backoff
        max_attempts = options.attempts or backoff.max_attempts
        if max_attempts < 1:
            raise QueueError("A job needs at least one attempt")

        self._sequence += 1
        job = Job(
            id=options.job_id or str(uuid4()),
            queue_name=queue_name,
            job_type=job_type,
            payload=payload,
            max_attempts=max_attempts,
            backoff=backoff,
            run_at=self.clock() + timedelta(seconds=max(options.delay or 0, 0)),
            sequence=self._sequence,
        )
        self._jobs[job.id] = job
        return job
