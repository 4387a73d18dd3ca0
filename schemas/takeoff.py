"""
Pydantic schemas for fused plan data, scope diagnosis and the project takeoff.
"""
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from pydantic import BaseModel, Field

from schemas.extraction import PartitionType, ScaleAnnotation, Space, SpaceFinish


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# --- fusion ------------------------------------------------------------------

class RoomFinishes(BaseModel):
    floor: Optional[str] = None
    walls: List[Optional[str]] = Field(default_factory=list)
    ceiling: Optional[str] = None
    base: Optional[str] = None


class FusedRoom(BaseModel):
    room_number: str
    room_name: Optional[str] = None
    floor_finish_code: Optional[str] = None
    wall_finish_code: Optional[str] = None
    ceiling_finish_code: Optional[str] = None
    base_code: Optional[str] = None
    space_id: Optional[str] = None
    category: Optional[str] = None
    area_sqft: Optional[float] = None
    bounding_box_px: Optional[List[float]] = None
    label_center_px: Optional[Tuple[float, float]] = None
    height_ft: Optional[float] = None
    finishes: Optional[RoomFinishes] = None
    notes: List[str] = Field(default_factory=list)
    sheet_refs: List[str] = Field(default_factory=list)


class FusedWall(BaseModel):
    id: str
    sheet_index: Optional[int] = None
    partition_type_id: Optional[str] = None
    new_or_existing: Optional[str] = None
    endpoints_px: List[Tuple[float, float]] = Field(default_factory=list)
    adjacent_rooms: List[Optional[str]] = Field(default_factory=list)
    adjacent_spaces: List[Optional[str]] = Field(default_factory=list)
    length_px: float = 0.0
    length_ft: Optional[float] = None
    notes: Optional[str] = None


class FusionMeta(BaseModel):
    sheet_count: int = 0
    partition_types: List[PartitionType] = Field(default_factory=list)
    scale_annotations: List[ScaleAnnotation] = Field(default_factory=list)
    spaces: List[Space] = Field(default_factory=list)
    space_finishes: List[SpaceFinish] = Field(default_factory=list)


class FusionResult(BaseModel):
    rooms: List[FusedRoom] = Field(default_factory=list)
    walls: List[FusedWall] = Field(default_factory=list)
    meta: FusionMeta = Field(default_factory=FusionMeta)


# --- scope diagnosis ---------------------------------------------------------

class CsiDivision(BaseModel):
    division: str
    title: str
    confidence: float
    assemblies: List[str] = Field(default_factory=list)
    drivers: List[str] = Field(default_factory=list)


class Assembly(BaseModel):
    name: str
    description: Optional[str] = None
    quantity: Optional[float] = None
    unit: Optional[str] = None
    drivers: List[str] = Field(default_factory=list)
    confidence: float
    csi_division: Optional[str] = None


class MaterialRequirement(BaseModel):
    name: str
    quantity: Optional[float] = None
    unit: Optional[str] = None
    confidence: float
    notes: Optional[str] = None
    source_feature_types: List[str] = Field(default_factory=list)


class LevelSummary(BaseModel):
    name: Optional[str] = None
    elevation_ft: Optional[float] = None
    height_ft: Optional[float] = None


class VerticalSystems(BaseModel):
    default_story_height_ft: Optional[float] = None
    levels: List[LevelSummary] = Field(default_factory=list)
    riser_count: int = 0
    total_riser_height_ft: Optional[float] = None
    notes: List[str] = Field(default_factory=list)


class FittingEstimate(BaseModel):
    system: str
    elbows: int = 0
    tees: int = 0
    couplings: int = 0
    reducers: int = 0
    confidence: float
    notes: List[str] = Field(default_factory=list)


class ScopeDiagnosis(BaseModel):
    summary: str
    feature_counts: Dict[str, int] = Field(default_factory=dict)
    csi_divisions: List[CsiDivision] = Field(default_factory=list)
    assemblies: List[Assembly] = Field(default_factory=list)
    materials: List[MaterialRequirement] = Field(default_factory=list)
    vertical_systems: Optional[VerticalSystems] = None
    fittings: List[FittingEstimate] = Field(default_factory=list)
    confidence: float = 0.55
    notes: List[str] = Field(default_factory=list)


# --- project takeoff ---------------------------------------------------------

class TakeoffProject(BaseModel):
    job_id: str
    file_id: str
    disciplines: List[str] = Field(default_factory=list)
    targets: List[str] = Field(default_factory=list)
    sheet_count: int = 0


class TakeoffSheet(BaseModel):
    index: int
    name: Optional[str] = None
    category: Optional[str] = None
    discipline: List[str] = Field(default_factory=list)
    scale: Optional[str] = None
    trust_score: Optional[float] = None
    needs_review: bool = False


class TakeoffRoom(BaseModel):
    room_number: str
    room_name: Optional[str] = None
    area_sqft: Optional[float] = None
    height_ft: Optional[float] = None
    height_source: str = "assumption"
    perimeter_wall_ft: Optional[float] = None
    finishes: Optional[RoomFinishes] = None
    sheet_refs: List[str] = Field(default_factory=list)
    confidence: float = 0.5


class TakeoffWall(BaseModel):
    id: str
    partition_type_id: Optional[str] = None
    length_ft: Optional[float] = None
    height_ft: Optional[float] = None
    area_sqft: Optional[float] = None
    source: str = "fusion"


class QuantitySummary(BaseModel):
    feature_type: str
    count: int = 0
    length: float = 0.0
    area: float = 0.0


class TakeoffMeta(BaseModel):
    generated_at: datetime = Field(default_factory=_utcnow)
    confidence: float = 0.5
    notes: List[str] = Field(default_factory=list)
    review_sheets: List[int] = Field(default_factory=list)


class ProjectTakeoff(BaseModel):
    project: TakeoffProject
    sheets: List[TakeoffSheet] = Field(default_factory=list)
    levels: List[LevelSummary] = Field(default_factory=list)
    rooms: List[TakeoffRoom] = Field(default_factory=list)
    walls: List[TakeoffWall] = Field(default_factory=list)
    quantities: List[QuantitySummary] = Field(default_factory=list)
    meta: TakeoffMeta = Field(default_factory=TakeoffMeta)


# --- job takeoff view --------------------------------------------------------

TAKEOFF_RESPONSE_VERSION = "2025-10-01"


class TakeoffUnits(BaseModel):
    linear: str = "ft"
    area: str = "ft2"
    volume: str = "ft3"


class TakeoffResponse(BaseModel):
    """Features of a finished job grouped by kind, plus the aggregated project takeoff."""

    version: str = TAKEOFF_RESPONSE_VERSION
    units: TakeoffUnits = Field(default_factory=TakeoffUnits)
    sheets: List[Dict[str, Any]] = Field(default_factory=list)
    rooms: List[Dict[str, Any]] = Field(default_factory=list)
    walls: List[Dict[str, Any]] = Field(default_factory=list)
    openings: List[Dict[str, Any]] = Field(default_factory=list)
    pipes: List[Dict[str, Any]] = Field(default_factory=list)
    ducts: List[Dict[str, Any]] = Field(default_factory=list)
    fixtures: List[Dict[str, Any]] = Field(default_factory=list)
    project_takeoff: Optional[ProjectTakeoff] = None
    meta: Dict[str, Any] = Field(default_factory=dict)
