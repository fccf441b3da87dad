"""Bounded-concurrency fetch scheduler."""

import asyncio
import logging
from typing import Optional, Protocol

from ..exceptions import BatchNotCompleteError, JobNotFoundError, SchedulerError
from .types import DEFAULT_CONCURRENCY, CompletedJob, FetchResult

logger = logging.getLogger(__name__)


class FetchJob(Protocol):
    """A unit of download work keyed by layer id."""

    id: str

    async def run(self) -> FetchResult: ...


class FetchScheduler:
    """Runs fetch jobs on a fixed pool of workers.

    Jobs are handed to at most ``concurrency`` workers through a bounded
    intake, so ``enqueue`` suspends while the intake is full. Results are
    recorded per job id and may only be read after ``wait`` returns.
    One scheduler serves exactly one batch.
    """

    def __init__(self, concurrency: int = DEFAULT_CONCURRENCY) -> None:
        """Initialize the scheduler.

        Args:
            concurrency: Maximum number of jobs running at once (>= 1)

        Raises:
            ValueError: If concurrency is lower than 1
        """
        if concurrency < 1:
            raise ValueError(f"Concurrency must be at least 1, got {concurrency}")

        self.concurrency = concurrency
        self._intake: asyncio.Queue = asyncio.Queue(maxsize=concurrency)
        self._workers: list[asyncio.Task] = []
        self._results: dict[str, CompletedJob] = {}
        self._ids: set[str] = set()
        self._enqueued = 0
        self._completed = 0
        self._batch_complete = False

    async def __aenter__(self) -> "FetchScheduler":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    @property
    def enqueued(self) -> int:
        return self._enqueued

    @property
    def completed(self) -> int:
        return self._completed

    @property
    def batch_complete(self) -> bool:
        return self._batch_complete

    async def enqueue(self, job: FetchJob) -> None:
        """Submit a job, waiting for room in the intake if necessary.

        Raises:
            ValueError: If a job with the same id was already enqueued
            SchedulerError: If the batch has already completed
        """
        if self._batch_complete:
            raise SchedulerError("Cannot enqueue into a completed batch")
        if job.id in self._ids:
            raise ValueError(f"Job {job.id} already enqueued in this batch")

        self._ids.add(job.id)
        self._enqueued += 1
        self._start_workers()
        await self._intake.put(job)

    async def wait(self) -> None:
        """Block until every enqueued job has a terminal state."""
        await self._intake.join()
        self._batch_complete = True
        await self._stop_workers()
        logger.debug(
            "Batch complete: %d/%d jobs finished", self._completed, self._enqueued
        )

    def completed_job_with_id(self, layer_id: str) -> CompletedJob:
        """Hand over the terminal state of a job.

        The entry leaves the batch; the caller owns the result stream.

        Raises:
            BatchNotCompleteError: If called before ``wait`` returned
            JobNotFoundError: If no job with this id is held by the batch
        """
        if not self._batch_complete:
            raise BatchNotCompleteError(
                f"Result for {layer_id} requested before the batch completed",
                layer_id=layer_id,
            )
        try:
            return self._results.pop(layer_id)
        except KeyError:
            raise JobNotFoundError(
                f"No completed job with id {layer_id}", layer_id=layer_id
            ) from None

    async def close(self) -> None:
        """Stop workers and close result streams nobody claimed."""
        await self._stop_workers()
        for job in self._results.values():
            if job.result is not None:
                job.result.stream.close()
        self._results.clear()

    def _start_workers(self) -> None:
        if self._workers:
            return
        self._workers = [
            asyncio.create_task(self._worker(n)) for n in range(self.concurrency)
        ]

    async def _stop_workers(self) -> None:
        workers, self._workers = self._workers, []
        for worker in workers:
            worker.cancel()
        if workers:
            await asyncio.gather(*workers, return_exceptions=True)

    async def _worker(self, number: int) -> None:
        while True:
            job = await self._intake.get()
            try:
                self._record(job.id, await job.run(), None)
            except Exception as e:
                logger.warning("Job %s failed on worker %d: %s", job.id, number, e)
                self._record(job.id, None, e)
            finally:
                self._completed += 1
                self._intake.task_done()

    def _record(
        self,
        layer_id: str,
        result: Optional[FetchResult],
        error: Optional[BaseException],
    ) -> None:
        self._results[layer_id] = CompletedJob(layer_id, result=result, error=error)
