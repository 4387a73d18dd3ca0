"""
Turns primary plan analysis results into Feature records.
"""
import logging
import math
from typing import Any, Dict, Iterable, List, Optional, Sequence

from schemas.extraction import VisionResult
from schemas.features import Feature, FeatureType

logger = logging.getLogger(__name__)

# Job target name -> feature types it asks for
TARGET_FEATURE_TYPES = {
    "rooms": {FeatureType.ROOM},
    "walls": {FeatureType.WALL},
    "doors": {FeatureType.OPENING},
    "windows": {FeatureType.OPENING},
    "openings": {FeatureType.OPENING},
    "pipes": {FeatureType.PIPE},
    "ducts": {FeatureType.DUCT},
    "fixtures": {FeatureType.FIXTURE},
    "levels": {FeatureType.LEVEL},
    "elevations": {FeatureType.ELEVATION},
    "sections": {FeatureType.SECTION},
    "risers": {FeatureType.RISER},
}

# Vertical context feeds scope diagnosis whatever the targets are
ALWAYS_EXTRACTED = {FeatureType.LEVEL, FeatureType.RISER}


def wanted_feature_types(targets: Iterable[str]) -> set:
    wanted = set(ALWAYS_EXTRACTED)
    for target in targets:
        wanted |= TARGET_FEATURE_TYPES.get(str(target).strip().lower(), set())
    return wanted


def _number(value: Any) -> Optional[float]:
    if isinstance(value, bool) or value is None:
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number if math.isfinite(number) else None


def _props(**values) -> Dict[str, Any]:
    return {key: value for key, value in values.items() if value is not None}


def _opening_wanted(opening_type: Optional[str], targets: Sequence[str]) -> bool:
    """doors-only or windows-only targets keep just that kind of opening."""
    lowered = {str(target).strip().lower() for target in targets}
    if "openings" in lowered or {"doors", "windows"} <= lowered:
        return True
    kind = (opening_type or "").strip().lower()
    if "doors" in lowered and "door" in kind:
        return True
    if "windows" in lowered and "window" in kind:
        return True
    return False


def features_from_vision(
    result: VisionResult,
    job_id: str,
    targets: Sequence[str],
    sheet_id: Optional[str] = None,
) -> List[Feature]:
    """Features for one sheet's analysis, filtered by the job's targets."""
    wanted = wanted_feature_types(targets)
    sheet_id = sheet_id or result.sheet_name
    features: List[Feature] = []

    def emit(feature_type: FeatureType, **fields) -> None:
        if feature_type in wanted:
            features.append(Feature(job_id=job_id, sheet_id=sheet_id, type=feature_type, **fields))

    for room in result.rooms:
        emit(FeatureType.ROOM, area=_number(room.area),
             props=_props(name=room.name, program=room.program, number=room.number))
    for wall in result.walls:
        emit(FeatureType.WALL, length=_number(wall.length),
             props=_props(partitionType=wall.partition_type, sourceId=wall.id))
    for opening in result.openings:
        if FeatureType.OPENING in wanted and _opening_wanted(opening.type, targets):
            features.append(Feature(
                job_id=job_id, sheet_id=sheet_id, type=FeatureType.OPENING, count=1,
                props=_props(openingType=opening.type, width=_number(opening.width), height=_number(opening.height)),
            ))
    for pipe in result.pipes:
        emit(FeatureType.PIPE, length=_number(pipe.length),
             props=_props(service=pipe.service, diameterIn=_number(pipe.diameter), room=pipe.room, sourceId=pipe.id))
    for duct in result.ducts:
        emit(FeatureType.DUCT, length=_number(duct.length),
             props=_props(size=duct.size, room=duct.room, sourceId=duct.id))
    for fixture in result.fixtures:
        emit(FeatureType.FIXTURE, count=_number(fixture.count) or 1,
             props=_props(fixtureType=fixture.type, room=fixture.room))
    for level in result.levels:
        emit(FeatureType.LEVEL, count=1,
             props=_props(name=level.name, elevationFt=_number(level.elevation_ft), heightFt=_number(level.height_ft)))
    for view in result.elevations:
        emit(FeatureType.ELEVATION, count=1, props=_props(name=view.name, reference=view.reference))
    for view in result.sections:
        emit(FeatureType.SECTION, count=1, props=_props(name=view.name, reference=view.reference))
    for riser in result.risers:
        emit(FeatureType.RISER, count=1, props=_props(service=riser.service, heightFt=_number(riser.height_ft)))

    return features


def summarize_vision(results: Sequence[VisionResult], features: Sequence[Feature]) -> Dict[str, Any]:
    """Per-job summary of plan analysis used by scope diagnosis and the takeoff."""
    by_type: Dict[str, int] = {}
    for feature in features:
        by_type[feature.type.value] = by_type.get(feature.type.value, 0) + 1

    riser_heights = [
        riser.height_ft for result in results for riser in result.risers if _number(riser.height_ft) is not None
    ]
    levels = [
        level.model_dump() for result in results for level in result.levels if level.name or level.elevation_ft is not None
    ]
    level_heights = [level["height_ft"] for level in levels if _number(level.get("height_ft")) is not None]

    return {
        "sheets_analyzed": len(results),
        "sheet_indexes": [result.sheet_index for result in results],
        "features_by_type": by_type,
        "total_features": len(features),
        "total_risers": sum(len(result.risers) for result in results),
        "total_riser_height_ft": round(sum(riser_heights), 2) if riser_heights else None,
        "levels": levels,
        "default_story_height_ft": (
            round(sum(level_heights) / len(level_heights), 1) if level_heights else None
        ),
        "notes": [result.notes for result in results if result.notes],
    }
