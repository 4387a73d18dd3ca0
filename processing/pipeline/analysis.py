"""
Analysis stages of the processing pipeline.

Primary plan analysis, feature extraction, cross-sheet consistency, scope
diagnosis and the project takeoff.
"""
from typing import Any, Dict, List

from processing.pipeline.extraction import get_sheets
from processing.pipeline.pool import run_bounded
from processing.pipeline.services import PipelineServices
from processing.pipeline.status import analysis_progress
from processing.pipeline.types import PipelineState
from schemas.extraction import VisionResult
from schemas.sheets import Sheet
from services.consistency_checker import check_consistency
from services.feature_extraction import features_from_vision, summarize_vision
from services.scope_diagnosis import diagnose_scope
from utils.exceptions import StageError


def analysis_candidates(sheets: List[Sheet]) -> List[Sheet]:
    """Sheets that still hold a raster, primary plans first."""
    rendered = [sheet for sheet in sheets if sheet.has_raster()]
    return sorted(rendered, key=lambda sheet: (not sheet.is_primary_plan, sheet.index))


async def stage_vision_analysis(state: PipelineState, services: PipelineServices) -> Dict[str, Any]:
    """
    Analyze every rendered sheet; fatal when no sheet yields a result.

    Progress moves from 25 to 60 as sheets finish.
    """
    job_id = state["job_id"]
    sheets = analysis_candidates(get_sheets(state))
    if not sheets:
        raise StageError("vision_analysis", "no rendered plan sheets to analyze")

    capability = services["capability"]
    jobs = services["jobs"]
    reporter = state["reporter"]
    done = 0

    async def analyze(sheet: Sheet):
        nonlocal done
        await jobs.check_cancellation(job_id)
        result = await capability.analyze_plan_image(
            sheet, disciplines=state["disciplines"], targets=state["targets"], job_id=job_id
        )
        done += 1
        await reporter.update(analysis_progress(done, len(sheets)))
        return result

    results = await run_bounded(sheets, analyze, limit=services["sheet_concurrency"], label="plan analysis")
    analyzed: List[VisionResult] = sorted(
        (result for result in results if result is not None),
        key=lambda result: result.sheet_index if result.sheet_index is not None else -1,
    )
    if not analyzed:
        raise StageError("vision_analysis", f"plan analysis returned no result for {len(sheets)} sheets")

    services["logger"].info(f"Plan analysis succeeded on {len(analyzed)} of {len(sheets)} sheets")
    return {"vision_results": analyzed}


async def stage_feature_extraction(state: PipelineState, services: PipelineServices) -> Dict[str, Any]:
    """Turn analysis results into features, filtered by the job's targets, and store them."""
    job_id = state["job_id"]
    results = state["options"].get("vision_results") or []
    if not results:
        raise StageError("feature_extraction", "no plan analysis results to extract features from")

    features = []
    for result in results:
        features.extend(features_from_vision(result, job_id, state["targets"], sheet_id=result.sheet_name))
    await services["repository"].replace_features(job_id, features)

    summary = summarize_vision(results, features)
    services["logger"].info(
        f"Extracted {len(features)} features: {summary['features_by_type']}",
        extra={"job_id": job_id},
    )
    return {"features": features, "vision_summary": summary}


async def stage_consistency(state: PipelineState, services: PipelineServices) -> Dict[str, Any]:
    options = state["options"]
    issues = check_consistency(
        sheets=get_sheets(state),
        spaces=options.get("spaces") or [],
        room_schedules=options.get("room_schedules") or [],
        room_mappings=options.get("room_spatial_mappings") or [],
        ceiling_heights=options.get("ceiling_heights") or [],
        scale_annotations=options.get("scale_annotations") or [],
        features=options.get("features") or [],
    )
    return {"consistency": issues}


async def stage_scope_diagnosis(state: PipelineState, services: PipelineServices) -> Dict[str, Any]:
    options = state["options"]
    diagnosis = diagnose_scope(
        options.get("features") or [],
        targets=state["targets"],
        ingest=options.get("ingest"),
        analysis_summary=options.get("vision_summary"),
    )
    return {"scope_diagnosis": diagnosis}


async def stage_takeoff(state: PipelineState, services: PipelineServices) -> Dict[str, Any]:
    options = state["options"]
    takeoff = services["takeoff"].build(
        job_id=state["job_id"],
        file_id=state["file_id"],
        disciplines=state["disciplines"],
        targets=state["targets"],
        sheets=get_sheets(state),
        features=options.get("features") or [],
        fusion=options.get("fusion_data"),
        trust_reports=options.get("space_trust") or [],
        vision_summary=options.get("vision_summary"),
    )
    return {"takeoff": takeoff}
