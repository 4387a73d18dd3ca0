"""
Sheet-level stages of the processing pipeline.

Ingestion, classification and the specialised extractors. Every stage returns
the accumulator entries it produced; the orchestrator merges and persists them.
"""
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence

from processing.pipeline.pool import run_bounded
from processing.pipeline.services import PipelineServices
from processing.pipeline.types import PipelineState
from schemas.extraction import SheetTrustReport, Space
from schemas.sheets import Sheet, SheetCategory, SheetClassification
from services.trust_validator import validate_sheet_spaces

PLAN_CATEGORIES = {SheetCategory.FLOOR, SheetCategory.DEMO_FLOOR}
SCHEDULE_CATEGORIES = {SheetCategory.MATERIALS, SheetCategory.RR_DETAILS, SheetCategory.FIXTURE, SheetCategory.OTHER}
FINISH_CATEGORIES = {SheetCategory.MATERIALS, SheetCategory.RR_DETAILS}


def get_sheets(state: PipelineState) -> List[Sheet]:
    ingest = state["options"].get("ingest")
    return list(ingest.sheets) if ingest is not None else []


def is_plan_sheet(sheet: Sheet) -> bool:
    return sheet.category in PLAN_CATEGORIES or sheet.is_primary_plan


def mentions_partition_types(sheet: Sheet) -> bool:
    upper = sheet.text.upper()
    return "PARTITION" in upper and "TYPE" in upper


async def _per_sheet(
    services: PipelineServices,
    sheets: Sequence[Sheet],
    call: Callable[[Sheet], Awaitable[Optional[List[Any]]]],
    label: str,
) -> List[Any]:
    """Run ``call`` over the sheets on the bounded pool and flatten the results in sheet order."""
    if not sheets:
        services["logger"].info(f"{label}: no eligible sheets")
        return []
    results = await run_bounded(sheets, call, limit=services["sheet_concurrency"], label=label)
    merged: List[Any] = []
    for entries in results:
        if entries:
            merged.extend(entries)
    services["logger"].info(f"{label}: {len(merged)} entries from {len(sheets)} sheets")
    return merged


async def stage_ingestion(state: PipelineState, services: PipelineServices) -> Dict[str, Any]:
    """Read the drawing set; fatal when the file cannot be read."""
    result = await services["ingestor"].ingest(state["file_id"])
    await services["repository"].save_sheets(state["job_id"], result.sheets)
    services["logger"].info(
        f"Ingested {len(result.sheets)} sheets for job {state['job_id']}",
        extra={"job_id": state["job_id"]},
    )
    return {"ingest": result}


async def stage_classification(state: PipelineState, services: PipelineServices) -> Dict[str, Any]:
    """
    Classify every sheet, then release rasters later stages will never read.

    A sheet whose classification has no result gets the fallback classification
    (category other) so it is still routed consistently.
    """
    logger = services["logger"]
    sheets = get_sheets(state)
    capability = services["capability"]

    async def classify(sheet: Sheet) -> SheetClassification:
        classification = await capability.classify(sheet, job_id=state["job_id"])
        return classification or SheetClassification.fallback("no result from classifier")

    results = await run_bounded(sheets, classify, limit=services["sheet_concurrency"], label="classification")

    classifications = []
    freed = 0
    dropped = 0
    for sheet, classification in zip(sheets, results):
        classification = classification or SheetClassification.fallback("classification error")
        sheet.classification = classification
        classifications.append(classification)
        if sheet.has_raster() and not classification.needs_raster():
            freed += sheet.drop_raster()
            dropped += 1

    if dropped:
        logger.info(f"Dropped {dropped} rasters after classification ({freed / 1024 / 1024:.1f} MB released)")
    await services["repository"].save_sheets(state["job_id"], sheets)
    return {"sheet_classifications": classifications}


async def stage_space_extraction(state: PipelineState, services: PipelineServices) -> Dict[str, Any]:
    """Extract spaces from plan sheets and keep only what the sheet text supports."""
    capability = services["capability"]
    sheets = [sheet for sheet in get_sheets(state) if is_plan_sheet(sheet)]

    async def extract(sheet: Sheet):
        candidates = await capability.extract_spaces(sheet, job_id=state["job_id"])
        if candidates is None:
            return None
        return validate_sheet_spaces(candidates, sheet.text, sheet.index, sheet.label)

    results = await run_bounded(sheets, extract, limit=services["sheet_concurrency"], label="space extraction")
    spaces: List[Space] = []
    reports: List[SheetTrustReport] = []
    for result in results:
        if result is None:
            continue
        kept, report = result
        spaces.extend(kept)
        reports.append(report)

    flagged = sum(1 for report in reports if report.needs_review)
    services["logger"].info(
        f"Space extraction: {len(spaces)} trusted spaces on {len(reports)} sheets, {flagged} flagged for review"
    )
    return {"spaces": spaces, "space_trust": reports}


async def stage_space_finishes(state: PipelineState, services: PipelineServices) -> Dict[str, Any]:
    sheets = [sheet for sheet in get_sheets(state) if sheet.category in FINISH_CATEGORIES]
    capability = services["capability"]
    finishes = await _per_sheet(
        services, sheets, lambda sheet: capability.extract_finishes(sheet, job_id=state["job_id"]), "space finishes"
    )
    return {"space_finishes": finishes}


async def stage_room_schedule(state: PipelineState, services: PipelineServices) -> Dict[str, Any]:
    sheets = [
        sheet for sheet in get_sheets(state)
        if sheet.category in SCHEDULE_CATEGORIES and sheet.has_text()
    ]
    capability = services["capability"]
    rows = await _per_sheet(
        services, sheets, lambda sheet: capability.extract_room_schedule(sheet, job_id=state["job_id"]), "room schedule"
    )
    return {"room_schedules": rows}


async def stage_room_mapping(state: PipelineState, services: PipelineServices) -> Dict[str, Any]:
    """Locate scheduled rooms on plan sheets; needs a schedule to map against."""
    schedule = state["options"].get("room_schedules") or []
    if not schedule:
        services["logger"].info("room mapping: no room schedule, skipping")
        return {"room_spatial_mappings": []}
    sheets = [sheet for sheet in get_sheets(state) if is_plan_sheet(sheet) and sheet.has_raster()]
    capability = services["capability"]
    mappings = await _per_sheet(
        services, sheets, lambda sheet: capability.map_rooms(sheet, schedule, job_id=state["job_id"]), "room mapping"
    )
    return {"room_spatial_mappings": mappings}


async def stage_partition_types(state: PipelineState, services: PipelineServices) -> Dict[str, Any]:
    sheets = [sheet for sheet in get_sheets(state) if sheet.has_text() and mentions_partition_types(sheet)]
    capability = services["capability"]
    types = await _per_sheet(
        services, sheets, lambda sheet: capability.extract_partition_types(sheet, job_id=state["job_id"]),
        "partition types",
    )
    return {"partition_types": types}


async def stage_wall_runs(state: PipelineState, services: PipelineServices) -> Dict[str, Any]:
    options = state["options"]
    partition_types = options.get("partition_types") or []
    spaces = options.get("spaces") or []
    sheets = [sheet for sheet in get_sheets(state) if is_plan_sheet(sheet) and sheet.has_raster()]
    capability = services["capability"]

    async def extract(sheet: Sheet):
        sheet_spaces = [space for space in spaces if space.sheet_index == sheet.index]
        return await capability.extract_wall_runs(sheet, partition_types, sheet_spaces, job_id=state["job_id"])

    walls = await _per_sheet(services, sheets, extract, "wall runs")
    return {"wall_runs": walls}


async def stage_ceiling_heights(state: PipelineState, services: PipelineServices) -> Dict[str, Any]:
    """Read heights from reflected ceiling plans; needs rooms or spaces to attach them to."""
    options = state["options"]
    mappings = options.get("room_spatial_mappings") or []
    spaces = options.get("spaces") or []
    if not mappings and not spaces:
        services["logger"].info("ceiling heights: no rooms or spaces to attach heights to, skipping")
        return {"ceiling_heights": []}
    sheets = [sheet for sheet in get_sheets(state) if sheet.category == SheetCategory.RCP and sheet.has_raster()]
    capability = services["capability"]
    heights = await _per_sheet(
        services, sheets,
        lambda sheet: capability.extract_ceiling_heights(sheet, spaces, mappings, job_id=state["job_id"]),
        "ceiling heights",
    )
    return {"ceiling_heights": heights}


async def stage_scales(state: PipelineState, services: PipelineServices) -> Dict[str, Any]:
    sheets = [sheet for sheet in get_sheets(state) if sheet.has_text()]
    capability = services["capability"]
    scales = await _per_sheet(
        services, sheets, lambda sheet: capability.extract_scales(sheet, job_id=state["job_id"]), "scale annotations"
    )
    return {"scale_annotations": scales}


async def stage_fusion(state: PipelineState, services: PipelineServices) -> Dict[str, Any]:
    options = state["options"]
    fusion = services["fusion"].fuse(
        sheets=get_sheets(state),
        room_schedules=options.get("room_schedules") or [],
        room_mappings=options.get("room_spatial_mappings") or [],
        ceiling_heights=options.get("ceiling_heights") or [],
        wall_runs=options.get("wall_runs") or [],
        partition_types=options.get("partition_types") or [],
        scale_annotations=options.get("scale_annotations") or [],
        spaces=options.get("spaces") or [],
        space_finishes=options.get("space_finishes") or [],
    )
    return {"fusion_data": fusion}
