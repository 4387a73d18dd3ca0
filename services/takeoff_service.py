"""
Project takeoff aggregation.

Builds the project / sheets / levels / rooms / walls view of a job from fused
data, features and sheet summaries. Deterministic: missing values stay None and
are explained in notes instead of being guessed, except for the documented
ceiling height defaults.
"""
import logging
from typing import Any, Dict, List, Optional, Sequence

from schemas.extraction import SheetTrustReport
from schemas.features import Feature, FeatureType
from schemas.sheets import Sheet
from schemas.takeoff import (
    FusionResult,
    LevelSummary,
    ProjectTakeoff,
    QuantitySummary,
    TakeoffMeta,
    TakeoffProject,
    TakeoffRoom,
    TakeoffSheet,
    TakeoffWall,
)

logger = logging.getLogger(__name__)

# Assumed ceiling heights (ft) when no RCP height was read for a room
DEFAULT_HEIGHT_SALES = 10.0
DEFAULT_HEIGHT_BOH = 8.0
LOW_CEILING_CATEGORIES = {"boh", "restroom"}
LOW_CEILING_WORDS = ("BACK OF HOUSE", "BOH", "TOILET", "RESTROOM", "STORAGE", "CLOSET", "ELECTRICAL")


def assumed_height(category: Optional[str], name: Optional[str]) -> float:
    if category in LOW_CEILING_CATEGORIES:
        return DEFAULT_HEIGHT_BOH
    upper = (name or "").upper()
    if any(word in upper for word in LOW_CEILING_WORDS):
        return DEFAULT_HEIGHT_BOH
    return DEFAULT_HEIGHT_SALES


def summarize_quantities(features: Sequence[Feature]) -> List[QuantitySummary]:
    totals: Dict[str, QuantitySummary] = {}
    for feature in features:
        summary = totals.setdefault(feature.type.value, QuantitySummary(feature_type=feature.type.value))
        summary.count += 1
        summary.length += feature.length or 0
        summary.area += feature.area or 0
    for summary in totals.values():
        summary.length = round(summary.length, 2)
        summary.area = round(summary.area, 2)
    return sorted(totals.values(), key=lambda summary: summary.feature_type)


def _room_feature_areas(features: Sequence[Feature]) -> Dict[str, float]:
    """ROOM feature areas keyed by upper-cased number and name."""
    areas: Dict[str, float] = {}
    for feature in features:
        if feature.type != FeatureType.ROOM or not feature.area:
            continue
        for key in ("number", "name"):
            value = feature.props.get(key)
            if value:
                areas.setdefault(str(value).strip().upper(), feature.area)
    return areas


class TakeoffAggregator:
    """Assembles a ProjectTakeoff for one job."""

    def build(
        self,
        job_id: str,
        file_id: str,
        disciplines: Sequence[str],
        targets: Sequence[str],
        sheets: Sequence[Sheet],
        features: Sequence[Feature],
        fusion: Optional[FusionResult] = None,
        trust_reports: Sequence[SheetTrustReport] = (),
        vision_summary: Optional[Dict[str, Any]] = None,
    ) -> ProjectTakeoff:
        fusion = fusion or FusionResult()
        notes: List[str] = []
        trust_by_sheet = {report.sheet_index: report for report in trust_reports}

        takeoff_sheets = []
        for sheet in sheets:
            report = trust_by_sheet.get(sheet.index)
            classification = sheet.classification
            takeoff_sheets.append(TakeoffSheet(
                index=sheet.index,
                name=sheet.label,
                category=sheet.category.value if sheet.category else None,
                discipline=list(classification.discipline) if classification else (
                    [sheet.discipline] if sheet.discipline else []
                ),
                scale=sheet.scale,
                trust_score=report.trust_score if report else None,
                needs_review=report.needs_review if report else False,
            ))

        rooms = self._rooms(fusion, features, notes)
        walls = self._walls(fusion, features, rooms, notes)
        levels = self._levels(features, vision_summary)

        review_sheets = [sheet.index for sheet in takeoff_sheets if sheet.needs_review]
        if review_sheets:
            notes.append(f"{len(review_sheets)} sheet(s) flagged for manual review of space data.")

        scores = [report.trust_score for report in trust_reports]
        confidence = round(sum(scores) / len(scores), 2) if scores else 0.5

        takeoff = ProjectTakeoff(
            project=TakeoffProject(
                job_id=job_id,
                file_id=file_id,
                disciplines=list(disciplines),
                targets=list(targets),
                sheet_count=len(sheets),
            ),
            sheets=takeoff_sheets,
            levels=levels,
            rooms=rooms,
            walls=walls,
            quantities=summarize_quantities(features),
            meta=TakeoffMeta(confidence=confidence, notes=list(dict.fromkeys(notes)), review_sheets=review_sheets),
        )
        logger.info(
            f"Takeoff for job {job_id}: {len(rooms)} rooms, {len(walls)} walls, {len(levels)} levels",
            extra={"job_id": job_id},
        )
        return takeoff

    def _rooms(self, fusion: FusionResult, features: Sequence[Feature], notes: List[str]) -> List[TakeoffRoom]:
        feature_areas = _room_feature_areas(features)
        rooms = []
        assumed = 0
        for fused in fusion.rooms:
            area = fused.area_sqft
            if area is None:
                area = feature_areas.get(fused.room_number.strip().upper())
            if area is None and fused.room_name:
                area = feature_areas.get(fused.room_name.strip().upper())

            if fused.height_ft is not None:
                height, source = fused.height_ft, "rcp"
            else:
                height, source = assumed_height(fused.category, fused.room_name), "assumption"
                assumed += 1

            confidence = 0.5
            if area is not None:
                confidence += 0.2
            if source == "rcp":
                confidence += 0.2
            rooms.append(TakeoffRoom(
                room_number=fused.room_number,
                room_name=fused.room_name,
                area_sqft=round(area, 2) if area is not None else None,
                height_ft=height,
                height_source=source,
                finishes=fused.finishes,
                sheet_refs=list(fused.sheet_refs),
                confidence=round(confidence, 2),
            ))
        if assumed:
            notes.append(
                f"Ceiling height assumed for {assumed} room(s): "
                f"{DEFAULT_HEIGHT_SALES:g} ft sales, {DEFAULT_HEIGHT_BOH:g} ft back of house."
            )
        return rooms

    def _walls(
        self,
        fusion: FusionResult,
        features: Sequence[Feature],
        rooms: List[TakeoffRoom],
        notes: List[str],
    ) -> List[TakeoffWall]:
        heights = {room.room_number: room.height_ft for room in rooms}
        walls: List[TakeoffWall] = []
        perimeters: Dict[str, float] = {}
        unscaled = 0

        for fused in fusion.walls:
            adjacent = [heights[ref] for ref in fused.adjacent_rooms if ref in heights and heights[ref]]
            height = max(adjacent) if adjacent else None
            if fused.length_ft is None:
                unscaled += 1
            else:
                for ref in fused.adjacent_rooms:
                    if ref in heights:
                        perimeters[ref] = perimeters.get(ref, 0.0) + fused.length_ft
            walls.append(TakeoffWall(
                id=fused.id,
                partition_type_id=fused.partition_type_id,
                length_ft=fused.length_ft,
                height_ft=height,
                area_sqft=round(fused.length_ft * height, 2) if fused.length_ft is not None and height else None,
                source="fusion",
            ))

        if not walls:
            for feature in features:
                if feature.type != FeatureType.WALL:
                    continue
                height = feature.props.get("heightFt")
                walls.append(TakeoffWall(
                    id=feature.id,
                    partition_type_id=feature.props.get("partitionType"),
                    length_ft=feature.length,
                    height_ft=height,
                    area_sqft=round(feature.length * height, 2) if feature.length and height else None,
                    source="feature",
                ))

        for room in rooms:
            if room.room_number in perimeters:
                room.perimeter_wall_ft = round(perimeters[room.room_number], 2)
        if unscaled:
            notes.append(f"{unscaled} wall run(s) have no usable scale; lengths left empty.")
        return walls

    def _levels(self, features: Sequence[Feature], vision_summary: Optional[Dict[str, Any]]) -> List[LevelSummary]:
        levels = [LevelSummary.model_validate(level) for level in (vision_summary or {}).get("levels") or []]
        if levels:
            return levels
        return [
            LevelSummary(
                name=feature.props.get("name"),
                elevation_ft=feature.props.get("elevationFt"),
                height_ft=feature.props.get("heightFt"),
            )
            for feature in features
            if feature.type == FeatureType.LEVEL
        ]
