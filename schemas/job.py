"""
Pydantic schemas for jobs and their externally visible status.
"""
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class JobStatus(str, Enum):
    QUEUED = "QUEUED"
    PROCESSING = "PROCESSING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"


TERMINAL_STATUSES = {JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELLED}

DEFAULT_TARGETS = ["rooms", "walls", "doors", "windows", "pipes", "ducts", "fixtures"]


class JobRequest(BaseModel):
    """What a caller submits to create a job."""

    file_id: str
    disciplines: List[str] = Field(default_factory=lambda: ["A"])
    targets: List[str] = Field(default_factory=lambda: list(DEFAULT_TARGETS))
    rule_set_id: Optional[str] = None
    options: Dict[str, Any] = Field(default_factory=dict)


class Job(BaseModel):
    """A takeoff job and its options accumulator."""

    job_id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    file_id: str
    disciplines: List[str] = Field(default_factory=list)
    targets: List[str] = Field(default_factory=list)
    rule_set_id: Optional[str] = None
    status: JobStatus = JobStatus.QUEUED
    progress: int = 0
    error: Optional[str] = None
    options: Dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None

    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def touch(self) -> None:
        self.updated_at = _utcnow()

    def mark_processing(self) -> None:
        self.status = JobStatus.PROCESSING
        self.started_at = self.started_at or _utcnow()
        self.touch()

    def mark_completed(self) -> None:
        self.status = JobStatus.COMPLETED
        self.progress = 100
        self.finished_at = _utcnow()
        self.touch()

    def mark_failed(self, message: str) -> None:
        self.status = JobStatus.FAILED
        self.error = message
        self.finished_at = _utcnow()
        self.touch()

    def mark_cancelled(self) -> None:
        self.status = JobStatus.CANCELLED
        self.finished_at = _utcnow()
        self.touch()


class JobStatusView(BaseModel):
    """The externally meaningful part of a job."""

    job_id: str
    status: JobStatus
    progress: int
    error: Optional[str] = None
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_job(cls, job: Job) -> "JobStatusView":
        return cls(
            job_id=job.job_id,
            status=job.status,
            progress=job.progress,
            error=job.error,
            created_at=job.created_at,
            updated_at=job.updated_at,
        )
