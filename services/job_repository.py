"""
JSON document repository for jobs, sheets, features, materials and rule sets.

Every document lives under one storage root:

    jobs/<job_id>/job.json
    jobs/<job_id>/sheets.json
    jobs/<job_id>/features.json
    jobs/<job_id>/materials.json
    rule_sets/<rule_set_id>.json
    artifacts/<job_id>/<name>.json
"""
import asyncio
import logging
import os
from typing import Any, Dict, List, Optional

from schemas.features import Feature
from schemas.job import Job, JobStatus
from schemas.rules import Material, StoredRuleSet
from schemas.sheets import Sheet
from services.storage_service import FileSystemStorage, StorageService
from utils.exceptions import FileSystemError, JobCancellationError, JobNotFoundError

logger = logging.getLogger(__name__)


class JobRepository:
    """Persistence collaborator keyed by job id."""

    def __init__(self, root: str, storage: Optional[StorageService] = None):
        self.root = root
        self.storage = storage or FileSystemStorage(logger)
        self._locks: Dict[str, asyncio.Lock] = {}

    # --- paths ---------------------------------------------------------------

    def _job_dir(self, job_id: str) -> str:
        return os.path.join(self.root, "jobs", job_id)

    def _job_path(self, job_id: str, name: str) -> str:
        return os.path.join(self._job_dir(job_id), f"{name}.json")

    def _rule_set_path(self, rule_set_id: str) -> str:
        return os.path.join(self.root, "rule_sets", f"{rule_set_id}.json")

    def artifact_path(self, job_id: str, name: str) -> str:
        return os.path.join(self.root, "artifacts", job_id, f"{name}.json")

    def _lock(self, job_id: str) -> asyncio.Lock:
        if job_id not in self._locks:
            self._locks[job_id] = asyncio.Lock()
        return self._locks[job_id]

    async def _write(self, data: Any, path: str) -> None:
        if not await self.storage.save_json(data, path):
            raise FileSystemError(f"Failed to write {path}")

    # --- jobs ----------------------------------------------------------------

    async def save_job(self, job: Job) -> Job:
        job.touch()
        await self._write(job.model_dump(mode="json"), self._job_path(job.job_id, "job"))
        return job

    async def get_job(self, job_id: str) -> Job:
        data = await self.storage.read_json(self._job_path(job_id, "job"))
        if data is None:
            raise JobNotFoundError(f"Job not found: {job_id}")
        return Job.model_validate(data)

    async def list_jobs(self) -> List[Job]:
        jobs_dir = os.path.join(self.root, "jobs")
        if not os.path.isdir(jobs_dir):
            return []
        jobs = []
        for job_id in sorted(os.listdir(jobs_dir)):
            try:
                jobs.append(await self.get_job(job_id))
            except JobNotFoundError:
                continue
        return jobs

    async def update_job(self, job_id: str, **changes) -> Job:
        """Apply field changes to a stored job under its lock."""
        async with self._lock(job_id):
            job = await self.get_job(job_id)
            for key, value in changes.items():
                setattr(job, key, value)
            return await self.save_job(job)

    async def set_status(
        self,
        job_id: str,
        status: JobStatus,
        progress: Optional[int] = None,
        error: Optional[str] = None,
    ) -> Job:
        """
        Move a job to ``status`` under its lock.

        Raises:
            JobCancellationError: the job is CANCELLED and ``status`` is not
        """
        async with self._lock(job_id):
            job = await self.get_job(job_id)
            if job.status == JobStatus.CANCELLED and status != JobStatus.CANCELLED:
                raise JobCancellationError(job_id)
            if status == JobStatus.PROCESSING:
                job.mark_processing()
            elif status == JobStatus.COMPLETED:
                job.mark_completed()
            elif status == JobStatus.FAILED:
                job.mark_failed(error or "Job failed")
            elif status == JobStatus.CANCELLED:
                job.mark_cancelled()
            else:
                job.status = status
            if progress is not None and status != JobStatus.COMPLETED:
                job.progress = max(job.progress, min(100, int(progress)))
            return await self.save_job(job)

    async def set_progress(self, job_id: str, progress: int) -> Job:
        """Raise a job's progress; lower values are ignored."""
        async with self._lock(job_id):
            job = await self.get_job(job_id)
            job.progress = max(job.progress, min(100, max(0, int(progress))))
            return await self.save_job(job)

    async def merge_job_options(self, job_id: str, patch: Dict[str, Any]) -> Job:
        """Shallow-merge ``patch`` into the job's options; last writer per key wins."""
        async with self._lock(job_id):
            job = await self.get_job(job_id)
            job.options = {**job.options, **patch}
            return await self.save_job(job)

    # --- sheets and features -------------------------------------------------

    async def save_sheets(self, job_id: str, sheets: List[Sheet]) -> None:
        await self._write([s.model_dump(mode="json") for s in sheets], self._job_path(job_id, "sheets"))

    async def get_sheets(self, job_id: str) -> List[Sheet]:
        data = await self.storage.read_json(self._job_path(job_id, "sheets")) or []
        return [Sheet.model_validate(item) for item in data]

    async def replace_features(self, job_id: str, features: List[Feature]) -> None:
        await self._write([f.model_dump(mode="json") for f in features], self._job_path(job_id, "features"))

    async def get_features(self, job_id: str) -> List[Feature]:
        data = await self.storage.read_json(self._job_path(job_id, "features")) or []
        return [Feature.model_validate(item) for item in data]

    # --- materials -----------------------------------------------------------

    async def replace_materials(self, job_id: str, materials: List[Material]) -> None:
        """Delete every material of the job, then insert the new rows."""
        path = self._job_path(job_id, "materials")
        async with self._lock(f"{job_id}:materials"):
            if not await self.storage.delete(path):
                raise FileSystemError(f"Failed to clear materials for job {job_id}")
            await self._write([m.model_dump(mode="json") for m in materials], path)

    async def get_materials(self, job_id: str) -> List[Material]:
        data = await self.storage.read_json(self._job_path(job_id, "materials")) or []
        return [Material.model_validate(item) for item in data]

    # --- rule sets -----------------------------------------------------------

    async def save_rule_set(self, rule_set: StoredRuleSet) -> StoredRuleSet:
        await self._write(rule_set.model_dump(mode="json"), self._rule_set_path(rule_set.id))
        return rule_set

    async def get_rule_set(self, rule_set_id: str) -> Optional[StoredRuleSet]:
        data = await self.storage.read_json(self._rule_set_path(rule_set_id))
        return StoredRuleSet.model_validate(data) if data else None

    async def find_rule_set(self, name: str, version: str) -> Optional[StoredRuleSet]:
        for path in await self.storage.list_json(os.path.join(self.root, "rule_sets")):
            data = await self.storage.read_json(path)
            if data and data.get("name") == name and str(data.get("version")) == str(version):
                return StoredRuleSet.model_validate(data)
        return None

    # --- artifacts -----------------------------------------------------------

    async def save_artifact(self, job_id: str, name: str, data: Any) -> str:
        path = self.artifact_path(job_id, name)
        await self._write(data, path)
        return path
