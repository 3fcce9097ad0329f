"""
Tests for the ARQ adapter against a fake Redis pool.
"""

import asyncio
from datetime import timedelta

import pytest
from arq import Retry

from app.queue import (
    CLEANUP_QUEUE,
    EMAIL_QUEUE,
    NOTIFICATION_QUEUE,
    ArqJobQueue,
    DailyAt,
    InMemoryJobQueue,
    JobOptions,
    JobType,
    QueueError,
    create_job_queue,
)


class FakeArqJob:
    def __init__(self, job_id):
        self.job_id = job_id


class FakeArqPool:
    """Just enough of ArqRedis for enqueueing and stats."""

    def __init__(self):
        self.enqueued = []
        self.hashes = {}
        self.fail = False

    async def enqueue_job(self, function, *args, _job_id=None, _queue_name=None, _defer_by=None):
        if self.fail:
            raise ConnectionError("Redis connection refused")
        if _job_id and any(job["job_id"] == _job_id for job in self.enqueued):
            return None
        job_id = _job_id or f"arq-{len(self.enqueued) + 1}"
        self.enqueued.append({
            "function": function,
            "args": args,
            "job_id": job_id,
            "queue_name": _queue_name,
            "defer_by": _defer_by,
        })
        return FakeArqJob(job_id)

    async def hincrby(self, key, field, amount):
        bucket = self.hashes.setdefault(key, {})
        bucket[field] = bucket.get(field, 0) + amount

    async def hgetall(self, key):
        return {k.encode(): str(v).encode() for k, v in self.hashes.get(key, {}).items()}

    async def zcount(self, key, low, high):
        return 0


@pytest.fixture
def pool():
    return FakeArqPool()


@pytest.fixture
def queue(pool, clock):
    return ArqJobQueue(pool=pool, clock=clock)


class TestEnqueue:
    @pytest.mark.asyncio
    async def test_maps_options_onto_arq(self, queue, pool):
        job = await queue.enqueue(
            NOTIFICATION_QUEUE, JobType.PUSH_FANOUT, {"group_key": "g"}, JobOptions(delay=30, job_id="push:g")
        )

        sent = pool.enqueued[0]
        assert sent["function"] == JobType.PUSH_FANOUT
        assert sent["queue_name"] == "arq:notification-dispatch"
        assert sent["defer_by"] == timedelta(seconds=30)
        assert sent["job_id"] == "push:g"
        payload, meta = sent["args"]
        assert payload == {"group_key": "g"}
        assert meta["max_attempts"] == 3
        assert meta["backoff"]["base_delay"] == 2
        assert job.id == "push:g"

    @pytest.mark.asyncio
    async def test_duplicate_job_id(self, queue, pool):
        await queue.enqueue(NOTIFICATION_QUEUE, JobType.DIGEST_BUILD, {}, JobOptions(job_id="digest:u:1"))
        job = await queue.enqueue(NOTIFICATION_QUEUE, JobType.DIGEST_BUILD, {}, JobOptions(job_id="digest:u:1"))

        assert job.id == "digest:u:1"
        assert len(pool.enqueued) == 1

    @pytest.mark.asyncio
    async def test_backend_failure_is_queue_error(self, queue, pool):
        pool.fail = True

        with pytest.raises(QueueError):
            await queue.enqueue(EMAIL_QUEUE, JobType.SEND_EMAIL, {})

    @pytest.mark.asyncio
    async def test_unbound_queue(self):
        with pytest.raises(QueueError):
            await ArqJobQueue().enqueue(EMAIL_QUEUE, JobType.SEND_EMAIL, {})


class TestWorkerFunctions:
    @staticmethod
    def job_function(queue, queue_name, job_type):
        functions = {f.name: f for f in queue.functions_for(queue_name)}
        return functions[job_type].coroutine

    def test_functions_per_queue(self, queue):
        async def handler(ctx, payload):
            return {}

        queue.register_processor(NOTIFICATION_QUEUE, JobType.PUSH_FANOUT, handler)
        queue.register_processor(NOTIFICATION_QUEUE, JobType.BATCH_INGEST, handler)
        queue.register_processor(EMAIL_QUEUE, JobType.SEND_EMAIL, handler)

        assert {f.name for f in queue.functions_for(NOTIFICATION_QUEUE)} == {"push-fanout", "batch-ingest"}
        assert queue.max_jobs_for(NOTIFICATION_QUEUE) == 9

    @pytest.mark.asyncio
    async def test_success_counts_completed(self, queue, pool):
        async def handler(ctx, payload):
            assert ctx["queue"] is queue
            return {"sent": payload["n"]}

        queue.register_processor(EMAIL_QUEUE, JobType.SEND_EMAIL, handler)
        run = self.job_function(queue, EMAIL_QUEUE, JobType.SEND_EMAIL)

        result = await run({"job_id": "j1", "job_try": 1}, {"n": 2}, {"max_attempts": 5, "backoff": {"base_delay": 5}})

        assert result == {"sent": 2}
        stats = await queue.get_stats(EMAIL_QUEUE)
        assert (stats.active, stats.completed, stats.failed) == (0, 1, 0)

    @pytest.mark.asyncio
    async def test_failure_with_attempts_left_asks_arq_to_retry(self, queue):
        async def handler(ctx, payload):
            raise RuntimeError("smtp down")

        queue.register_processor(EMAIL_QUEUE, JobType.SEND_EMAIL, handler)
        run = self.job_function(queue, EMAIL_QUEUE, JobType.SEND_EMAIL)
        meta = {"max_attempts": 5, "backoff": {"base_delay": 5}}

        with pytest.raises(Retry) as exc_info:
            await run({"job_id": "j1", "job_try": 2}, {}, meta)

        # Attempt 2 of base 5s -> 10s
        assert exc_info.value.defer_score == 10_000

    @pytest.mark.asyncio
    async def test_last_attempt_fails_for_good(self, queue):
        async def handler(ctx, payload):
            raise RuntimeError("smtp down")

        queue.register_processor(EMAIL_QUEUE, JobType.SEND_EMAIL, handler)
        run = self.job_function(queue, EMAIL_QUEUE, JobType.SEND_EMAIL)

        with pytest.raises(RuntimeError):
            await run({"job_id": "j1", "job_try": 5}, {}, {"max_attempts": 5, "backoff": {"base_delay": 5}})

        stats = await queue.get_stats(EMAIL_QUEUE)
        assert (stats.active, stats.failed) == (0, 1)

    @pytest.mark.asyncio
    async def test_timed_out_job_counts_as_failed(self, queue, pool):
        started = asyncio.Event()

        async def handler(ctx, payload):
            started.set()
            await asyncio.sleep(60)
            return {}

        queue.register_processor(CLEANUP_QUEUE, JobType.SWEEP_ARCHIVED, handler)
        run = self.job_function(queue, CLEANUP_QUEUE, JobType.SWEEP_ARCHIVED)

        with pytest.raises(asyncio.TimeoutError):
            await asyncio.wait_for(
                run({"job_id": "sweep-1", "job_try": 1}, {}, {"max_attempts": 1, "backoff": {"base_delay": 60}}),
                timeout=0.05,
            )

        assert started.is_set()
        stats = await queue.get_stats(CLEANUP_QUEUE)
        assert (stats.active, stats.failed, stats.completed) == (0, 1, 0)

    @pytest.mark.asyncio
    async def test_timed_out_recurring_job_is_rescheduled(self, queue, pool, clock):
        async def handler(ctx, payload):
            await asyncio.sleep(60)
            return {}

        queue.register_processor(CLEANUP_QUEUE, JobType.SWEEP_ARCHIVED, handler)
        await queue.schedule_recurring(CLEANUP_QUEUE, JobType.SWEEP_ARCHIVED, {}, DailyAt(hour=2))
        run = self.job_function(queue, CLEANUP_QUEUE, JobType.SWEEP_ARCHIVED)

        # Next day's run
        clock.advance(days=1)
        with pytest.raises(asyncio.TimeoutError):
            await asyncio.wait_for(
                run({"job_id": pool.enqueued[0]["job_id"], "job_try": 1}, {}, {"max_attempts": 1, "backoff": {"base_delay": 60}}),
                timeout=0.05,
            )

        sweeps = [job for job in pool.enqueued if job["function"] == JobType.SWEEP_ARCHIVED]
        assert len(sweeps) == 2
        assert sweeps[1]["job_id"] != sweeps[0]["job_id"]
        assert sweeps[1]["queue_name"] == "arq:cleanup"


class TestCreateJobQueue:
    def test_backends(self):
        assert isinstance(create_job_queue("memory"), InMemoryJobQueue)
        assert isinstance(create_job_queue("arq"), ArqJobQueue)

    def test_unknown_backend(self):
        with pytest.raises(ValueError):
            create_job_queue("kafka")
