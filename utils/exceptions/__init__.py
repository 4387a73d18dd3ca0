"""
Custom exception classes for the takeoff pipeline.
"""


class ExtractionError(Exception):
    """Raised when document ingestion fails."""

    pass


class AIProcessingError(Exception):
    """Raised when a model call fails or times out."""

    pass


class JSONValidationError(Exception):
    """Raised when model output does not match the expected schema."""

    pass


class FileSystemError(Exception):
    """Raised when file system operations fail."""

    pass


class StageError(Exception):
    """Raised when a pipeline stage cannot produce its output."""

    def __init__(self, stage: str, message: str):
        super().__init__(f"{stage}: {message}")
        self.stage = stage


class JobCancellationError(Exception):
    """Raised at a cancellation checkpoint once a job has been cancelled."""

    def __init__(self, job_id: str):
        super().__init__(f"Job {job_id} was cancelled")
        self.job_id = job_id


class JobNotFoundError(Exception):
    """Raised when a job id is unknown to the repository."""

    pass


class RuleSetValidationError(Exception):
    """Raised when a rule set document is malformed."""

    pass


class ExpressionError(Exception):
    """Raised when a quantity expression cannot be evaluated."""

    pass
