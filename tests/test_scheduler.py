"""Tests for the bounded-concurrency fetch scheduler."""

import asyncio
import random

import pytest

from layer_puller.core.scheduler import FetchScheduler
from layer_puller.exceptions import (
    BatchNotCompleteError,
    FetchError,
    JobNotFoundError,
    SchedulerError,
)
from tests.helpers import StaticJob, layer_metadata


@pytest.mark.parametrize("concurrency", [0, -1])
def test_rejects_invalid_concurrency(concurrency):
    """Concurrency below one is refused at construction."""
    with pytest.raises(ValueError):
        FetchScheduler(concurrency)


@pytest.mark.asyncio
@pytest.mark.parametrize("concurrency,jobs", [(1, 5), (2, 7), (3, 3), (7, 20)])
async def test_in_flight_never_exceeds_concurrency(concurrency, jobs):
    """At most K jobs run at any time, whatever the batch size."""
    rng = random.Random(concurrency * 100 + jobs)
    tracker = {"now": 0, "max": 0}

    async with FetchScheduler(concurrency) as scheduler:
        for n in range(jobs):
            await scheduler.enqueue(
                StaticJob(f"layer{n}", delay=rng.uniform(0, 0.01), tracker=tracker)
            )
        await scheduler.wait()

        assert scheduler.enqueued == jobs
        assert scheduler.completed == jobs

    assert 1 <= tracker["max"] <= concurrency


@pytest.mark.asyncio
async def test_result_returned_unchanged():
    """A retrieved job carries the exact stream and metadata the worker produced."""
    job = StaticJob("A", data=b"layer-bytes")

    async with FetchScheduler(2) as scheduler:
        await scheduler.enqueue(job)
        await scheduler.wait()
        completed = scheduler.completed_job_with_id("A")

    assert completed.ok
    assert completed.result.stream is job.stream
    assert completed.result.metadata == layer_metadata("A")
    assert completed.result.size == len(b"layer-bytes")
    assert completed.result.stream.read() == b"layer-bytes"
    # Claimed streams belong to the caller, the scheduler leaves them open.
    assert job.stream.close_count == 0


@pytest.mark.asyncio
async def test_failed_job_does_not_stop_siblings():
    """One failing job is recorded while the others still complete."""
    async with FetchScheduler(2) as scheduler:
        await scheduler.enqueue(StaticJob("A", data=b"a", delay=0.01))
        await scheduler.enqueue(StaticJob("B", error=FetchError("boom")))
        await scheduler.enqueue(StaticJob("C", data=b"c", delay=0.02))
        await scheduler.wait()

        failed = scheduler.completed_job_with_id("B")
        assert not failed.ok
        assert failed.result is None
        assert isinstance(failed.error, FetchError)

        assert scheduler.completed_job_with_id("A").ok
        assert scheduler.completed_job_with_id("C").ok


@pytest.mark.asyncio
async def test_unknown_id_is_reported_as_not_found():
    async with FetchScheduler(1) as scheduler:
        await scheduler.enqueue(StaticJob("A"))
        await scheduler.wait()

        with pytest.raises(JobNotFoundError):
            scheduler.completed_job_with_id("nope")


@pytest.mark.asyncio
async def test_claimed_job_cannot_be_claimed_twice():
    async with FetchScheduler(1) as scheduler:
        await scheduler.enqueue(StaticJob("A"))
        await scheduler.wait()
        scheduler.completed_job_with_id("A")

        with pytest.raises(JobNotFoundError):
            scheduler.completed_job_with_id("A")


@pytest.mark.asyncio
async def test_read_before_completion_is_refused():
    gate = asyncio.Event()
    async with FetchScheduler(1) as scheduler:
        await scheduler.enqueue(StaticJob("A", gate=gate))

        with pytest.raises(BatchNotCompleteError):
            scheduler.completed_job_with_id("A")

        gate.set()
        await scheduler.wait()
        assert scheduler.batch_complete
        assert scheduler.completed_job_with_id("A").ok


@pytest.mark.asyncio
async def test_duplicate_id_rejected():
    async with FetchScheduler(2) as scheduler:
        await scheduler.enqueue(StaticJob("A"))
        with pytest.raises(ValueError):
            await scheduler.enqueue(StaticJob("A"))
        await scheduler.wait()


@pytest.mark.asyncio
async def test_enqueue_after_completion_rejected():
    async with FetchScheduler(2) as scheduler:
        await scheduler.enqueue(StaticJob("A"))
        await scheduler.wait()
        with pytest.raises(SchedulerError):
            await scheduler.enqueue(StaticJob("B"))


@pytest.mark.asyncio
async def test_enqueue_applies_backpressure():
    """Enqueue suspends once every worker is busy and the intake is full."""
    gate = asyncio.Event()
    async with FetchScheduler(1) as scheduler:
        await scheduler.enqueue(StaticJob("A", gate=gate))
        await asyncio.sleep(0)  # worker picks up A
        await scheduler.enqueue(StaticJob("B", gate=gate))

        third = asyncio.create_task(scheduler.enqueue(StaticJob("C", gate=gate)))
        await asyncio.sleep(0.01)
        assert not third.done()

        gate.set()
        await third
        await scheduler.wait()
        assert scheduler.completed == 3


@pytest.mark.asyncio
async def test_close_releases_unclaimed_streams():
    """Results nobody claimed are closed when the scheduler shuts down."""
    jobs = [StaticJob(name, data=b"x") for name in "ABC"]
    async with FetchScheduler(3) as scheduler:
        for job in jobs:
            await scheduler.enqueue(job)
        await scheduler.wait()
        scheduler.completed_job_with_id("A")

    assert jobs[0].stream.close_count == 0
    assert jobs[1].stream.close_count == 1
    assert jobs[2].stream.close_count == 1


@pytest.mark.asyncio
async def test_empty_batch_completes():
    async with FetchScheduler(3) as scheduler:
        await scheduler.wait()
        assert scheduler.batch_complete
        assert scheduler.completed == 0
