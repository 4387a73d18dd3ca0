"""
Type definitions for the processing pipeline.

Contains the stage descriptor and the TypedDicts shared by every stage.
"""
from typing import Any, Awaitable, Callable, Dict, List, NamedTuple, Optional, TypedDict

from processing.pipeline.status import ProgressReporter
from schemas.extraction import (
    CeilingHeight,
    ConsistencyIssue,
    PartitionType,
    RoomScheduleEntry,
    RoomSpatialMapping,
    ScaleAnnotation,
    SheetTrustReport,
    Space,
    SpaceFinish,
    VisionResult,
    WallSegment,
)
from schemas.estimates import CostSnapshot, LaborPlan
from schemas.features import Feature
from schemas.sheets import IngestResult, SheetClassification
from schemas.takeoff import FusionResult, ProjectTakeoff, ScopeDiagnosis


class JobOptions(TypedDict, total=False):
    """The job's options accumulator: one key per stage output.

    Only the orchestrator writes it, after a stage completes; each key is
    persisted as soon as it is written.
    """
    request: Dict[str, Any]
    ingest: IngestResult
    sheet_classifications: List[SheetClassification]
    spaces: List[Space]
    space_trust: List[SheetTrustReport]
    space_finishes: List[SpaceFinish]
    room_schedules: List[RoomScheduleEntry]
    room_spatial_mappings: List[RoomSpatialMapping]
    partition_types: List[PartitionType]
    wall_runs: List[WallSegment]
    ceiling_heights: List[CeilingHeight]
    scale_annotations: List[ScaleAnnotation]
    fusion_data: FusionResult
    vision_results: List[VisionResult]
    vision_summary: Dict[str, Any]
    features: List[Feature]
    consistency: List[ConsistencyIssue]
    scope_diagnosis: ScopeDiagnosis
    takeoff: ProjectTakeoff
    materials_summary: Dict[str, Any]
    cost_intelligence: CostSnapshot
    labor_model: LaborPlan
    artifacts: Dict[str, str]


class PipelineState(TypedDict):
    """Identity of the running job plus its accumulator."""
    job_id: str
    file_id: str
    disciplines: List[str]
    targets: List[str]
    rule_set_id: Optional[str]
    request_options: Dict[str, Any]
    options: JobOptions
    reporter: ProgressReporter


# A stage reads the state and returns {accumulator key: value} for what it produced.
StageFn = Callable[[PipelineState, Any], Awaitable[Optional[Dict[str, Any]]]]


class Stage(NamedTuple):
    """One row of the stage table."""
    name: str
    fn: StageFn
    fatal: bool = False
    progress: Optional[int] = None


class PipelineOutcome(TypedDict):
    """What the orchestrator returns to the job processor."""
    job_id: str
    status: str
    error: Optional[str]
    failed_stages: List[str]
