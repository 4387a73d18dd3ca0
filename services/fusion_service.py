"""
Final data fusion.

Merges the per-sheet extraction results into one room list keyed by room number
and one wall list with pixel and real-world lengths.
"""
import logging
import math
import re
from typing import Dict, List, Optional, Sequence, Tuple

from config.settings import PDF_RENDER_DPI
from schemas.extraction import (
    CeilingHeight,
    PartitionType,
    RoomScheduleEntry,
    RoomSpatialMapping,
    ScaleAnnotation,
    ScaleRatio,
    Space,
    SpaceFinish,
    WallSegment,
)
from schemas.sheets import Sheet
from schemas.takeoff import FusedRoom, FusedWall, FusionMeta, FusionResult, RoomFinishes

logger = logging.getLogger(__name__)

PLAN_UNITS_TO_INCHES = {
    "inch": 1.0, "in": 1.0, '"': 1.0,
    "foot": 12.0, "ft": 12.0, "'": 12.0,
    "mm": 1 / 25.4, "millimeter": 1 / 25.4, "millimetre": 1 / 25.4,
    "cm": 1 / 2.54, "centimeter": 1 / 2.54, "centimetre": 1 / 2.54,
    "m": 39.3700787, "meter": 39.3700787, "metre": 39.3700787,
}

REAL_UNITS_TO_FEET = {
    "foot": 1.0, "ft": 1.0, "'": 1.0,
    "inch": 1 / 12, "in": 1 / 12, '"': 1 / 12,
    "mm": 1 / 304.8, "millimeter": 1 / 304.8, "millimetre": 1 / 304.8,
    "cm": 1 / 30.48, "centimeter": 1 / 30.48, "centimetre": 1 / 30.48,
    "m": 3.28084, "meter": 3.28084, "metre": 3.28084,
}

IMPERIAL_SCALE_PATTERN = re.compile(r"(\d+)\s*/\s*(\d+)\"?\s*=\s*(\d+)'(?:-(\d+)\")?")
METRIC_SCALE_PATTERN = re.compile(r"1\s*:\s*(\d+)")


def polyline_length(points: Sequence[Tuple[float, float]]) -> float:
    if not points or len(points) < 2:
        return 0.0
    total = 0.0
    for (x1, y1), (x2, y2) in zip(points, points[1:]):
        total += math.hypot(x2 - x1, y2 - y1)
    return total


def _convert(value: Optional[float], units: Optional[str], table: Dict[str, float], default_unit: str) -> Optional[float]:
    if value is None or not math.isfinite(value) or value <= 0:
        return None
    factor = table.get((units or default_unit).lower())
    return value * factor if factor is not None else None


def plan_value_to_inches(value: Optional[float], units: Optional[str] = None) -> Optional[float]:
    return _convert(value, units, PLAN_UNITS_TO_INCHES, "inch")


def real_value_to_feet(value: Optional[float], units: Optional[str] = None) -> Optional[float]:
    return _convert(value, units, REAL_UNITS_TO_FEET, "foot")


def parse_scale_note(note: str) -> Optional[Tuple[float, float]]:
    """
    Parse a written scale into (plan inches, real feet).

    Handles architectural notes like ``1/8" = 1'-0"`` and metric ratios like
    ``1:100`` (plan inch against the ratio in millimetres converted to feet).
    """
    match = IMPERIAL_SCALE_PATTERN.search(note)
    if match:
        numerator = float(match.group(1))
        denominator = float(match.group(2))
        real_feet = float(match.group(3)) + (float(match.group(4)) / 12 if match.group(4) else 0)
        if numerator > 0 and denominator > 0 and real_feet > 0:
            return numerator / denominator, real_feet
    match = METRIC_SCALE_PATTERN.search(note)
    if match:
        ratio = float(match.group(1))
        if ratio > 0:
            return 1.0, (ratio / 1000) * 3.28084
    return None


def _viewport_priority(annotation: ScaleAnnotation, category: str) -> int:
    label = (annotation.viewport_label or "").lower()
    if not label:
        return 0
    if "floor" in category and "floor" in label:
        return 3
    if "ceiling" in category and "ceiling" in label:
        return 3
    if "plan" in label:
        return 2
    if "elevation" in label:
        return 1
    return 0


def select_scale_annotation(
    annotations: Sequence[ScaleAnnotation], sheet: Optional[Sheet] = None
) -> Optional[ScaleAnnotation]:
    """Highest viewport priority wins; the first annotation wins ties."""
    if not annotations:
        return None
    category = sheet.category.value if sheet is not None and sheet.category else ""
    best = annotations[0]
    score = _viewport_priority(best, category)
    for annotation in annotations[1:]:
        candidate = _viewport_priority(annotation, category)
        if candidate > score:
            best, score = annotation, candidate
    return best


class FusionService:
    """Builds the fused room and wall view of a job."""

    def __init__(self, default_dpi: int = PDF_RENDER_DPI):
        self.default_dpi = default_dpi or 220

    def _dpi(self, sheet: Sheet) -> int:
        return sheet.render_dpi or self.default_dpi

    def _feet_from_ratio(self, length_px: float, sheet: Sheet, ratio: Optional[ScaleRatio]) -> Optional[float]:
        if ratio is None or not ratio.plan_value or not ratio.real_value:
            return None
        plan_inches = plan_value_to_inches(ratio.plan_value, ratio.plan_units)
        real_feet = real_value_to_feet(ratio.real_value, ratio.real_units)
        if not plan_inches or not real_feet:
            return None
        dpi = self._dpi(sheet)
        if dpi <= 0:
            return None
        return (length_px / dpi) * (real_feet / plan_inches)

    def _feet_from_note(self, length_px: float, sheet: Sheet, note: str) -> Optional[float]:
        parsed = parse_scale_note(note)
        if parsed is None:
            return None
        plan_inches, real_feet = parsed
        dpi = self._dpi(sheet)
        if dpi <= 0:
            return None
        return (length_px / dpi) * (real_feet / plan_inches)

    def pixels_to_feet(
        self, length_px: float, sheet: Sheet, annotation: Optional[ScaleAnnotation] = None
    ) -> Optional[float]:
        length = self._feet_from_ratio(length_px, sheet, annotation.scale_ratio if annotation else None)
        if length is not None:
            return length
        note = (annotation.scale_note if annotation else None) or sheet.scale or ""
        if not note:
            return None
        return self._feet_from_note(length_px, sheet, note)

    def combine_rooms(
        self,
        schedules: Sequence[RoomScheduleEntry],
        mappings: Sequence[RoomSpatialMapping],
        heights: Sequence[CeilingHeight],
        spaces: Sequence[Space],
        space_finishes: Sequence[SpaceFinish],
    ) -> List[FusedRoom]:
        rooms: Dict[str, FusedRoom] = {}

        def ensure(room_number: str, room_name: Optional[str] = None) -> FusedRoom:
            room = rooms.get(room_number)
            if room is None:
                room = rooms[room_number] = FusedRoom(room_number=room_number, room_name=room_name or None)
            if room_name and not room.room_name:
                room.room_name = room_name
            return room

        def add_unique(values: List[str], value: Optional[str]) -> None:
            if value and value not in values:
                values.append(value)

        for row in schedules:
            if not row.room_number:
                continue
            room = ensure(row.room_number, row.room_name)
            room.floor_finish_code = row.floor_finish_code if row.floor_finish_code is not None else room.floor_finish_code
            room.wall_finish_code = row.wall_finish_code if row.wall_finish_code is not None else room.wall_finish_code
            room.ceiling_finish_code = (
                row.ceiling_finish_code if row.ceiling_finish_code is not None else room.ceiling_finish_code
            )
            room.base_code = row.base_code if row.base_code is not None else room.base_code
            add_unique(room.sheet_refs, row.sheet_name)

        for mapping in mappings:
            if not mapping.room_number:
                continue
            room = ensure(mapping.room_number, mapping.room_name)
            room.bounding_box_px = mapping.bounding_box_px or room.bounding_box_px
            room.label_center_px = mapping.label_center_px or room.label_center_px
            add_unique(room.sheet_refs, mapping.sheet_name)
            add_unique(room.notes, mapping.notes)

        for height in heights:
            if not height.room_number:
                continue
            room = ensure(height.room_number)
            if height.height_ft is not None:
                room.height_ft = height.height_ft
            add_unique(room.notes, height.source_note)
            add_unique(room.sheet_refs, height.sheet_name)

        finishes_by_category = {finish.category: finish for finish in space_finishes}
        for space in spaces:
            room = ensure(space.space_id, space.name)
            room.space_id = space.space_id
            room.category = space.category.value
            room.area_sqft = space.approx_area_sqft if space.approx_area_sqft is not None else room.area_sqft
            room.bounding_box_px = space.bbox_px or room.bounding_box_px
            add_unique(room.sheet_refs, space.sheet_name)
            finish = finishes_by_category.get(space.category)
            if finish is not None:
                room.finishes = RoomFinishes(
                    floor=finish.floor or None,
                    walls=list(finish.walls),
                    ceiling=finish.ceiling or None,
                    base=finish.base or None,
                )

        return list(rooms.values())

    def combine_walls(
        self,
        wall_runs: Sequence[WallSegment],
        sheets_by_index: Dict[int, Sheet],
        scales_by_sheet: Dict[int, List[ScaleAnnotation]],
    ) -> List[FusedWall]:
        walls = []
        for segment in wall_runs:
            sheet = sheets_by_index.get(segment.sheet_index) if segment.sheet_index is not None else None
            length_px = polyline_length(segment.endpoints_px)
            length_ft = None
            if sheet is not None:
                annotation = select_scale_annotation(scales_by_sheet.get(segment.sheet_index, []), sheet)
                length_ft = self.pixels_to_feet(length_px, sheet, annotation)
            walls.append(FusedWall(
                id=segment.id,
                sheet_index=segment.sheet_index,
                partition_type_id=segment.partition_type_id or None,
                new_or_existing=segment.new_or_existing or None,
                endpoints_px=list(segment.endpoints_px),
                adjacent_rooms=list(segment.adjacent_rooms),
                adjacent_spaces=list(segment.space_ids),
                length_px=round(length_px, 2),
                length_ft=round(length_ft, 2) if length_ft is not None else None,
                notes=segment.notes or None,
            ))
        return walls

    def fuse(
        self,
        sheets: Sequence[Sheet],
        room_schedules: Sequence[RoomScheduleEntry] = (),
        room_mappings: Sequence[RoomSpatialMapping] = (),
        ceiling_heights: Sequence[CeilingHeight] = (),
        wall_runs: Sequence[WallSegment] = (),
        partition_types: Sequence[PartitionType] = (),
        scale_annotations: Sequence[ScaleAnnotation] = (),
        spaces: Sequence[Space] = (),
        space_finishes: Sequence[SpaceFinish] = (),
    ) -> FusionResult:
        sheets_by_index = {sheet.index: sheet for sheet in sheets}
        scales_by_sheet: Dict[int, List[ScaleAnnotation]] = {}
        for annotation in scale_annotations:
            if annotation.sheet_index is not None:
                scales_by_sheet.setdefault(annotation.sheet_index, []).append(annotation)

        rooms = self.combine_rooms(room_schedules, room_mappings, ceiling_heights, spaces, space_finishes)
        walls = self.combine_walls(wall_runs, sheets_by_index, scales_by_sheet)
        measured = sum(1 for wall in walls if wall.length_ft is not None)
        logger.info(f"Fused {len(rooms)} rooms and {len(walls)} walls ({measured} with real-world length)")

        return FusionResult(
            rooms=rooms,
            walls=walls,
            meta=FusionMeta(
                sheet_count=len(sheets),
                partition_types=list(partition_types),
                scale_annotations=list(scale_annotations),
                spaces=list(spaces),
                space_finishes=list(space_finishes),
            ),
        )
