"""
Pydantic schemas for extraction capability output.

Each ``*Response`` model is the wrapper object the model is asked to return;
anything that does not validate against it is treated as no result.
"""
from enum import Enum
from typing import Annotated, List, Optional, Tuple

from pydantic import BaseModel, Field, field_validator

from schemas.sheets import SheetClassification

BoundingBox = Annotated[List[float], Field(min_length=4, max_length=4)]


class SpaceCategory(str, Enum):
    CAFE = "cafe"
    SALES = "sales"
    BOH = "boh"
    RESTROOM = "restroom"
    PATIO = "patio"
    OTHER = "other"


def _coerce_space_category(value):
    if isinstance(value, SpaceCategory):
        return value
    try:
        return SpaceCategory(str(value or "").strip().lower())
    except ValueError:
        return SpaceCategory.OTHER


class SheetScoped(BaseModel):
    """Fields the adapter stamps onto every entry after validation."""

    sheet_index: Optional[int] = None
    sheet_name: Optional[str] = None


# --- spaces ------------------------------------------------------------------

class SpaceCandidate(SheetScoped):
    """A model-proposed space before trust validation."""

    space_id: str
    name: str
    category: SpaceCategory = SpaceCategory.OTHER
    bbox_px: Optional[BoundingBox] = None
    raw_label_text: Optional[str] = None
    raw_area_string: Optional[str] = None
    approx_area_sqft: Optional[float] = None
    confidence: Optional[float] = None
    notes: Optional[str] = None

    _category = field_validator("category", mode="before")(_coerce_space_category)


class Space(SpaceCandidate):
    """A space that survived label and text support filtering."""

    trust_score: float = 1.0
    issues: List[str] = Field(default_factory=list)
    needs_review: bool = False


class SpaceExtractionResponse(BaseModel):
    spaces: List[SpaceCandidate] = Field(default_factory=list)


class SheetTrustReport(BaseModel):
    """Per-sheet outcome of trust validation."""

    sheet_index: int
    sheet_name: Optional[str] = None
    trust_score: float
    needs_review: bool
    original_count: int
    retained_count: int
    invalid_label_count: int = 0
    unsupported_name_count: int = 0
    untrusted_area_count: int = 0
    computed_area_sqft: Optional[float] = None
    reference_area_sqft: Optional[float] = None
    areas_invalidated: bool = False
    issues: List[str] = Field(default_factory=list)


# --- partitions and walls ----------------------------------------------------

class PartitionType(SheetScoped):
    partition_type_id: str
    fire_rating: Optional[str] = None
    layer_description: List[str] = Field(default_factory=list)
    stud_size: Optional[str] = None
    stud_gauge: Optional[str] = None
    has_acoustical_insulation: Optional[bool] = None
    notes: Optional[str] = None


class PartitionTypeResponse(BaseModel):
    partition_types: List[PartitionType] = Field(default_factory=list)


class WallSegment(SheetScoped):
    id: str
    partition_type_id: Optional[str] = None
    new_or_existing: Optional[str] = None
    endpoints_px: List[Tuple[float, float]] = Field(default_factory=list)
    adjacent_rooms: List[Optional[str]] = Field(default_factory=list, max_length=2)
    space_ids: List[Optional[str]] = Field(default_factory=list, max_length=2)
    confidence: Optional[float] = None
    notes: Optional[str] = None

    @field_validator("new_or_existing", mode="before")
    @classmethod
    def _status(cls, value):
        if value is None:
            return None
        normalized = str(value).strip().lower()
        return normalized if normalized in ("new", "existing", "demo") else None


class WallRunResponse(BaseModel):
    segments: List[WallSegment] = Field(default_factory=list)


# --- ceilings and scales -----------------------------------------------------

class CeilingHeight(SheetScoped):
    space_id: Optional[str] = None
    room_number: Optional[str] = None
    height_ft: Optional[float] = None
    source_sheet: Optional[str] = None
    source_note: Optional[str] = None
    confidence: Optional[float] = None
    notes: Optional[str] = None


class CeilingHeightResponse(BaseModel):
    entries: List[CeilingHeight] = Field(default_factory=list)


class ScaleRatio(BaseModel):
    plan_units: Optional[str] = None
    plan_value: Optional[float] = None
    real_units: Optional[str] = None
    real_value: Optional[float] = None


class ScaleAnnotation(SheetScoped):
    sheet_id: Optional[str] = None
    viewport_label: Optional[str] = None
    scale_note: Optional[str] = None
    scale_ratio: Optional[ScaleRatio] = None
    confidence: Optional[float] = None
    notes: Optional[str] = None


class ScaleResponse(BaseModel):
    scales: List[ScaleAnnotation] = Field(default_factory=list)


# --- rooms and finishes ------------------------------------------------------

class RoomScheduleEntry(SheetScoped):
    room_number: str
    room_name: Optional[str] = None
    floor_finish_code: Optional[str] = None
    wall_finish_code: Optional[str] = None
    ceiling_finish_code: Optional[str] = None
    base_code: Optional[str] = None
    notes: Optional[str] = None


class RoomScheduleResponse(BaseModel):
    rows: List[RoomScheduleEntry] = Field(default_factory=list)


class RoomSpatialMapping(SheetScoped):
    room_number: str
    room_name: Optional[str] = None
    label_center_px: Optional[Tuple[float, float]] = None
    bounding_box_px: Optional[BoundingBox] = None
    confidence: Optional[float] = None
    notes: Optional[str] = None


class RoomSpatialMappingResponse(BaseModel):
    rooms: List[RoomSpatialMapping] = Field(default_factory=list)


class SpaceFinish(SheetScoped):
    category: SpaceCategory = SpaceCategory.OTHER
    floor: Optional[str] = None
    walls: List[Optional[str]] = Field(default_factory=list)
    ceiling: Optional[str] = None
    base: Optional[str] = None
    notes: Optional[str] = None

    _category = field_validator("category", mode="before")(_coerce_space_category)


class SpaceFinishResponse(BaseModel):
    entries: List[SpaceFinish] = Field(default_factory=list)


# --- primary plan analysis ---------------------------------------------------

class VisionRoom(BaseModel):
    number: Optional[str] = None
    name: Optional[str] = None
    program: Optional[str] = None
    area: Optional[float] = None


class VisionWall(BaseModel):
    id: Optional[str] = None
    partition_type: Optional[str] = None
    length: Optional[float] = None
    rooms: List[Optional[str]] = Field(default_factory=list)


class VisionOpening(BaseModel):
    type: Optional[str] = None
    width: Optional[float] = None
    height: Optional[float] = None


class VisionPipe(BaseModel):
    id: Optional[str] = None
    service: Optional[str] = None
    diameter: Optional[float] = None
    length: Optional[float] = None
    room: Optional[str] = None


class VisionDuct(BaseModel):
    id: Optional[str] = None
    size: Optional[str] = None
    length: Optional[float] = None
    room: Optional[str] = None


class VisionFixture(BaseModel):
    type: Optional[str] = None
    count: Optional[float] = 1
    room: Optional[str] = None


class VisionLevel(BaseModel):
    name: Optional[str] = None
    elevation_ft: Optional[float] = None
    height_ft: Optional[float] = None


class VisionView(BaseModel):
    """Elevation or section reference."""

    name: Optional[str] = None
    reference: Optional[str] = None


class VisionRiser(BaseModel):
    service: Optional[str] = None
    height_ft: Optional[float] = None


class VisionResult(SheetScoped):
    rooms: List[VisionRoom] = Field(default_factory=list)
    walls: List[VisionWall] = Field(default_factory=list)
    openings: List[VisionOpening] = Field(default_factory=list)
    pipes: List[VisionPipe] = Field(default_factory=list)
    ducts: List[VisionDuct] = Field(default_factory=list)
    fixtures: List[VisionFixture] = Field(default_factory=list)
    levels: List[VisionLevel] = Field(default_factory=list)
    elevations: List[VisionView] = Field(default_factory=list)
    sections: List[VisionView] = Field(default_factory=list)
    risers: List[VisionRiser] = Field(default_factory=list)
    scale: Optional[str] = None
    notes: Optional[str] = None


class ClassificationResponse(SheetClassification):
    """Classification as returned by the model (same shape as the stored one)."""
    pass


# --- cross-sheet consistency -------------------------------------------------

class ConsistencyIssue(BaseModel):
    code: str
    severity: str = "warning"
    message: str
    refs: List[str] = Field(default_factory=list)
