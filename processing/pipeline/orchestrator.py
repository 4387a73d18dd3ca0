"""
Pipeline orchestrator that runs the stage table for one job.

Every stage is a row of STAGES; a single generic runner executes them in
order with containment, timing, accumulator persistence and progress
checkpoints. Non-fatal stage failures are logged and skipped; a fatal failure
ends the job FAILED; a cancellation ends it CANCELLED.
"""
from typing import Any, Callable, Dict, List, Optional, Tuple

from pydantic import BaseModel

from processing.pipeline.analysis import (
    stage_consistency,
    stage_feature_extraction,
    stage_scope_diagnosis,
    stage_takeoff,
    stage_vision_analysis,
)
from processing.pipeline.estimation import stage_artifacts, stage_cost_labor, stage_rules
from processing.pipeline.extraction import (
    stage_ceiling_heights,
    stage_classification,
    stage_fusion,
    stage_ingestion,
    stage_partition_types,
    stage_room_mapping,
    stage_room_schedule,
    stage_scales,
    stage_space_extraction,
    stage_space_finishes,
    stage_wall_runs,
)
from processing.pipeline.services import PipelineServices
from processing.pipeline.status import (
    PROGRESS_ANALYZED,
    PROGRESS_COMPLETE,
    PROGRESS_FEATURES,
    PROGRESS_INGESTED,
    PROGRESS_MATERIALS,
    PROGRESS_SHEET_STAGES,
    PROGRESS_STARTED,
    PROGRESS_SUMMARIES,
    ProgressReporter,
    save_job_status,
)
from processing.pipeline.types import JobOptions, PipelineOutcome, PipelineState, Stage
from schemas.job import JobStatus
from utils.exceptions import JobCancellationError, StageError
from utils.performance import time_operation, time_operation_context

STAGES: Tuple[Stage, ...] = (
    Stage("ingestion", stage_ingestion, fatal=True, progress=PROGRESS_INGESTED),
    Stage("classification", stage_classification),
    Stage("space_extraction", stage_space_extraction),
    Stage("space_finishes", stage_space_finishes),
    Stage("room_schedule", stage_room_schedule),
    Stage("room_mapping", stage_room_mapping),
    Stage("partition_types", stage_partition_types),
    Stage("wall_runs", stage_wall_runs),
    Stage("ceiling_heights", stage_ceiling_heights),
    Stage("scale_annotations", stage_scales),
    Stage("final_fusion", stage_fusion, progress=PROGRESS_SHEET_STAGES),
    Stage("vision_analysis", stage_vision_analysis, fatal=True, progress=PROGRESS_ANALYZED),
    Stage("feature_extraction", stage_feature_extraction, fatal=True, progress=PROGRESS_FEATURES),
    Stage("consistency", stage_consistency),
    Stage("scope_diagnosis", stage_scope_diagnosis),
    Stage("takeoff", stage_takeoff, progress=PROGRESS_SUMMARIES),
    Stage("rules", stage_rules, progress=PROGRESS_MATERIALS),
    Stage("cost_labor", stage_cost_labor),
    Stage("artifacts", stage_artifacts),
)


def _jsonable(value: Any) -> Any:
    if isinstance(value, BaseModel):
        return value.model_dump(mode="json")
    if isinstance(value, (list, tuple)):
        return [_jsonable(item) for item in value]
    if isinstance(value, dict):
        return {key: _jsonable(item) for key, item in value.items()}
    return value


def serialize_option(key: str, value: Any) -> Any:
    """Stored form of an accumulator entry; sheets and features live in their own documents."""
    if key == "ingest":
        return {
            "file_id": value.file_id,
            "sheet_count": len(value.sheets),
            "metadata": value.metadata.model_dump(mode="json"),
        }
    if key == "features":
        return {"count": len(value)}
    return _jsonable(value)


async def run_stage(
    stage: Stage,
    state: PipelineState,
    services: PipelineServices,
    failed_stages: List[str],
) -> bool:
    """
    Run one stage with containment and merge its output into the accumulator.

    Returns:
        True when the stage completed and its output was persisted

    Raises:
        JobCancellationError: the job was cancelled while the stage ran
        StageError: a fatal stage failed
    """
    logger = services["logger"]
    job_id = state["job_id"]
    try:
        with time_operation_context("stage", job_id=job_id, stage=stage.name):
            output = await stage.fn(state, services) or {}
            patch: Dict[str, Any] = {}
            for key, value in output.items():
                state["options"][key] = value
                patch[key] = serialize_option(key, value)
            if patch:
                await services["jobs"].merge_job_options(job_id, patch)
    except JobCancellationError:
        raise
    except Exception as e:
        logger.error(
            f"Stage {stage.name} failed: {str(e)}",
            extra={"job_id": job_id, "stage": stage.name},
            exc_info=not isinstance(e, StageError),
        )
        if stage.fatal:
            if isinstance(e, StageError):
                raise
            raise StageError(stage.name, str(e)) from e
        failed_stages.append(stage.name)
        return False

    if stage.progress is not None:
        await state["reporter"].update(stage.progress)
    return True


@time_operation("total_processing")
async def process_job(
    job_id: str,
    services: PipelineServices,
    stages: Tuple[Stage, ...] = STAGES,
    on_progress: Optional[Callable[[int], None]] = None,
) -> PipelineOutcome:
    """
    Run every stage for a queued job and record its terminal state.

    Jobs that are already terminal are skipped. COMPLETED requires ingestion
    and primary plan analysis to succeed; anything fatal ends FAILED with the
    stage's message.
    """
    logger = services["logger"]
    repository = services["repository"]
    jobs = services["jobs"]
    failed_stages: List[str] = []

    job = await repository.get_job(job_id)
    if job.is_terminal():
        logger.info(f"Skipping job {job_id}: already {job.status.value}")
        return {"job_id": job_id, "status": job.status.value, "error": job.error, "failed_stages": []}

    logger.info(f"PIPELINE_START job={job_id} file={job.file_id}")

    options: JobOptions = {"request": dict(job.options.get("request") or {})}
    state: PipelineState = {
        "job_id": job_id,
        "file_id": job.file_id,
        "disciplines": list(job.disciplines),
        "targets": list(job.targets),
        "rule_set_id": job.rule_set_id,
        "request_options": dict(options["request"].get("options") or {}),
        "options": options,
        "reporter": ProgressReporter(repository, job_id, on_progress=on_progress, start=PROGRESS_STARTED),
    }

    try:
        await save_job_status(repository, job_id, JobStatus.PROCESSING, progress=PROGRESS_STARTED)
        await repository.replace_features(job_id, [])
        await repository.replace_materials(job_id, [])
        for stage in stages:
            await jobs.check_cancellation(job_id)
            await run_stage(stage, state, services, failed_stages)
        await jobs.check_cancellation(job_id)
        # refused under the job lock if a cancel landed after the last checkpoint
        await save_job_status(repository, job_id, JobStatus.COMPLETED, progress=PROGRESS_COMPLETE)
    except JobCancellationError:
        return await _finish_cancelled(repository, job_id, failed_stages, logger)
    except StageError as e:
        logger.info(f"PIPELINE_END job={job_id} status=FAILED")
        return await _finish_failed(repository, job_id, str(e), failed_stages, logger)
    except Exception as e:
        logger.error(f"Unexpected error in processing pipeline: {str(e)}", exc_info=True)
        return await _finish_failed(
            repository, job_id, f"Unexpected pipeline error: {str(e)}", failed_stages, logger, error=str(e)
        )

    if on_progress is not None:
        on_progress(PROGRESS_COMPLETE)
    if failed_stages:
        logger.warning(f"Job {job_id} completed with failed stages: {', '.join(failed_stages)}")
    logger.info(f"PIPELINE_END job={job_id} status=COMPLETED")
    return {"job_id": job_id, "status": JobStatus.COMPLETED.value, "error": None, "failed_stages": failed_stages}


async def _finish_cancelled(repository, job_id: str, failed_stages: List[str], logger) -> PipelineOutcome:
    logger.info(f"PIPELINE_CANCELLED job={job_id}")
    await save_job_status(repository, job_id, JobStatus.CANCELLED)
    return {"job_id": job_id, "status": JobStatus.CANCELLED.value, "error": None, "failed_stages": failed_stages}


async def _finish_failed(
    repository,
    job_id: str,
    message: str,
    failed_stages: List[str],
    logger,
    error: Optional[str] = None,
) -> PipelineOutcome:
    """Record FAILED unless the job was cancelled first; a cancellation wins."""
    try:
        await save_job_status(repository, job_id, JobStatus.FAILED, message=message)
    except JobCancellationError:
        return await _finish_cancelled(repository, job_id, failed_stages, logger)
    return {"job_id": job_id, "status": JobStatus.FAILED.value, "error": error or message, "failed_stages": failed_stages}
