"""
Pipeline package for takeoff job processing.

Stages live in focused modules (extraction, analysis, estimation); the
orchestrator runs them from a single stage table.
"""

from processing.pipeline.orchestrator import STAGES, process_job
from processing.pipeline.types import JobOptions, PipelineOutcome, PipelineState, Stage

__all__ = [
    "STAGES",
    "process_job",
    "JobOptions",
    "PipelineOutcome",
    "PipelineState",
    "Stage",
]
