"""
Job status and progress reporting for the processing pipeline.
"""
import logging
from typing import Callable, Optional

from schemas.job import JobStatus
from services.job_repository import JobRepository
from utils.exceptions import FileSystemError

logger = logging.getLogger(__name__)

# Progress checkpoints
PROGRESS_STARTED = 10
PROGRESS_INGESTED = 20
PROGRESS_SHEET_STAGES = 25
PROGRESS_ANALYSIS_SPAN = 35
PROGRESS_ANALYZED = 60
PROGRESS_FEATURES = 75
PROGRESS_SUMMARIES = 80
PROGRESS_MATERIALS = 95
PROGRESS_COMPLETE = 100


def analysis_progress(done: int, total: int) -> int:
    """Per-sheet checkpoint inside plan analysis: 25 + 35 * done / total."""
    if total <= 0:
        return PROGRESS_ANALYZED
    return PROGRESS_SHEET_STAGES + int(PROGRESS_ANALYSIS_SPAN * done / total)


class ProgressReporter:
    """
    Monotonic, clamped progress for one job.

    Values lower than what was already reported are ignored, so callers may
    report checkpoints out of order without moving progress backwards.
    """

    def __init__(
        self,
        repository: JobRepository,
        job_id: str,
        on_progress: Optional[Callable[[int], None]] = None,
        start: int = 0,
    ):
        self.repository = repository
        self.job_id = job_id
        self.on_progress = on_progress
        self.current = start

    async def update(self, value: int) -> int:
        value = min(PROGRESS_COMPLETE, max(0, int(value)))
        if value <= self.current:
            return self.current
        self.current = value
        await self.repository.set_progress(self.job_id, value)
        if self.on_progress is not None:
            self.on_progress(value)
        return self.current


async def save_job_status(
    repository: JobRepository,
    job_id: str,
    status: JobStatus,
    message: Optional[str] = None,
    progress: Optional[int] = None,
) -> None:
    """
    Persist a job status transition.

    Raises:
        FileSystemError: If the job document cannot be saved
    """
    try:
        await repository.set_status(job_id, status, progress=progress, error=message)
        logger.info(f"Job {job_id} -> {status.value}", extra={"job_id": job_id, "status": status.value})
    except FileSystemError as e:
        logger.error(
            "Failed to save job status",
            extra={"job_id": job_id, "status": status.value, "error": str(e)},
        )
        raise
