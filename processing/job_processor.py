"""
Queue worker that runs takeoff jobs through the pipeline.
"""
import asyncio
import logging
from typing import Dict, List, Optional

from tqdm.asyncio import tqdm

from config.settings import MAX_CONCURRENT_JOBS
from processing.pipeline import PipelineOutcome, process_job
from processing.pipeline.services import PipelineServices
from schemas.job import Job, JobRequest

logger = logging.getLogger(__name__)


class JobProcessor:
    """
    In-process job queue.

    Jobs are processed in submission order by ``concurrency`` workers (one by
    default). Each running job gets a progress bar mirroring its stored progress.
    """

    def __init__(self, services: PipelineServices, concurrency: int = MAX_CONCURRENT_JOBS):
        self.services = services
        self.concurrency = max(1, concurrency)
        self.queue: "asyncio.Queue[str]" = asyncio.Queue()
        self.outcomes: Dict[str, PipelineOutcome] = {}
        self._workers: List[asyncio.Task] = []

    def start(self) -> None:
        if self._workers:
            return
        self._workers = [
            asyncio.create_task(self._worker(n), name=f"job-worker-{n}") for n in range(self.concurrency)
        ]
        logger.info(f"Started {self.concurrency} job worker(s)")

    async def stop(self) -> None:
        for worker in self._workers:
            worker.cancel()
        await asyncio.gather(*self._workers, return_exceptions=True)
        self._workers = []

    async def enqueue(self, job_id: str) -> None:
        await self.queue.put(job_id)
        logger.info(f"Queued job {job_id} ({self.queue.qsize()} waiting)")

    async def submit(self, request: JobRequest) -> Job:
        """Create a job for the request and queue it."""
        job = await self.services["jobs"].create_job(request)
        await self.enqueue(job.job_id)
        return job

    async def join(self) -> None:
        await self.queue.join()

    async def run_job(self, job_id: str) -> PipelineOutcome:
        with tqdm(total=100, desc=f"Job {job_id[:8]}", leave=False) as pbar:
            def on_progress(value: int) -> None:
                if value > pbar.n:
                    pbar.update(value - pbar.n)

            outcome = await process_job(job_id, self.services, on_progress=on_progress)
        self.outcomes[job_id] = outcome
        return outcome

    async def _worker(self, number: int) -> None:
        while True:
            job_id = await self.queue.get()
            try:
                outcome = await self.run_job(job_id)
                logger.info(f"Worker {number} finished job {job_id}: {outcome['status']}")
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(f"Worker {number} could not process job {job_id}: {str(e)}", exc_info=True)
            finally:
                self.queue.task_done()


async def process_requests(
    services: PipelineServices,
    requests: List[JobRequest],
    concurrency: Optional[int] = None,
) -> List[PipelineOutcome]:
    """Run a batch of job requests to completion and return their outcomes in order."""
    processor = JobProcessor(services, concurrency or MAX_CONCURRENT_JOBS)
    processor.start()
    try:
        job_ids = [(await processor.submit(request)).job_id for request in requests]
        await processor.join()
    finally:
        await processor.stop()
    return [processor.outcomes[job_id] for job_id in job_ids if job_id in processor.outcomes]
