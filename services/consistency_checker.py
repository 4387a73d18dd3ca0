"""
Cross-sheet consistency checks.

Annotation only: issues are reported for manual review and never change or
drop extracted data.
"""
import logging
import re
from collections import defaultdict
from typing import Dict, Iterable, List, Optional, Sequence, Set

from schemas.extraction import (
    CeilingHeight,
    ConsistencyIssue,
    RoomScheduleEntry,
    RoomSpatialMapping,
    ScaleAnnotation,
    Space,
)
from schemas.features import Feature, FeatureType
from schemas.sheets import RASTER_CATEGORIES, Sheet, SheetCategory

logger = logging.getLogger(__name__)

AREA_CONFLICT_RATIO = 0.2
CEILING_CONFLICT_FT = 2.0
ROOM_REFERENCING_TYPES = {FeatureType.PIPE, FeatureType.DUCT, FeatureType.FIXTURE}


def _key(value: Optional[str]) -> str:
    return re.sub(r"\s+", " ", (value or "").strip().upper())


def _normalize_scale(note: Optional[str]) -> str:
    return re.sub(r"[^0-9A-Z:/=]", "", (note or "").upper())


def check_room_numbers(schedules: Sequence[RoomScheduleEntry]) -> List[ConsistencyIssue]:
    issues = []
    names_by_number: Dict[str, Set[str]] = defaultdict(set)
    seen_on_sheet: Dict[tuple, int] = defaultdict(int)
    for row in schedules:
        number = _key(row.room_number)
        if not number:
            continue
        seen_on_sheet[(row.sheet_index, number)] += 1
        if row.room_name:
            names_by_number[number].add(_key(row.room_name))

    for (sheet_index, number), count in sorted(seen_on_sheet.items(), key=lambda item: (str(item[0][0]), item[0][1])):
        if count > 1:
            issues.append(ConsistencyIssue(
                code="duplicate_room_number",
                message=f"Room {number} appears {count} times in the schedule on sheet {sheet_index}",
                refs=[number],
            ))
    for number, names in sorted(names_by_number.items()):
        if len(names) > 1:
            issues.append(ConsistencyIssue(
                code="room_name_conflict",
                message=f"Room {number} has conflicting names: {', '.join(sorted(names))}",
                refs=[number],
            ))
    return issues


def check_scales(sheets: Sequence[Sheet], annotations: Sequence[ScaleAnnotation]) -> List[ConsistencyIssue]:
    issues = []
    by_sheet: Dict[int, List[ScaleAnnotation]] = defaultdict(list)
    for annotation in annotations:
        if annotation.sheet_index is not None:
            by_sheet[annotation.sheet_index].append(annotation)

    for sheet in sheets:
        if sheet.category not in RASTER_CATEGORIES or sheet.category == SheetCategory.FIXTURE:
            continue
        if not by_sheet.get(sheet.index) and not sheet.scale:
            issues.append(ConsistencyIssue(
                code="missing_scale",
                severity="info",
                message=f"No scale found for plan sheet {sheet.label}; wall lengths stay in pixels",
                refs=[sheet.label],
            ))

    for sheet_index, entries in sorted(by_sheet.items()):
        notes_by_view: Dict[str, Set[str]] = defaultdict(set)
        for entry in entries:
            normalized = _normalize_scale(entry.scale_note)
            if normalized:
                notes_by_view[_key(entry.viewport_label)].add(normalized)
        for view, notes in sorted(notes_by_view.items()):
            if len(notes) > 1:
                issues.append(ConsistencyIssue(
                    code="conflicting_scale",
                    message=f"Sheet {sheet_index} viewport '{view or 'unnamed'}' has {len(notes)} different scales",
                    refs=[str(sheet_index)],
                ))
    return issues


def check_room_areas(spaces: Sequence[Space], features: Sequence[Feature]) -> List[ConsistencyIssue]:
    issues = []
    space_areas: Dict[str, float] = {}
    for space in spaces:
        if space.approx_area_sqft:
            space_areas[_key(space.name)] = space.approx_area_sqft

    for feature in features:
        if feature.type != FeatureType.ROOM or not feature.area:
            continue
        name = _key(feature.props.get("name"))
        reference = space_areas.get(name)
        if not reference:
            continue
        delta = abs(feature.area - reference) / max(feature.area, reference)
        if delta > AREA_CONFLICT_RATIO:
            issues.append(ConsistencyIssue(
                code="room_area_conflict",
                message=(
                    f"Room {name} area differs between sources "
                    f"({feature.area:.0f} vs {reference:.0f} sqft)"
                ),
                refs=[name, feature.id],
            ))
    return issues


def check_ceiling_heights(entries: Sequence[CeilingHeight]) -> List[ConsistencyIssue]:
    issues = []
    heights: Dict[str, List[float]] = defaultdict(list)
    for entry in entries:
        room = _key(entry.room_number or entry.space_id)
        if room and entry.height_ft is not None:
            heights[room].append(entry.height_ft)
    for room, values in sorted(heights.items()):
        if max(values) - min(values) > CEILING_CONFLICT_FT:
            issues.append(ConsistencyIssue(
                code="ceiling_height_conflict",
                message=f"Room {room} ceiling heights range {min(values)}-{max(values)} ft",
                refs=[room],
            ))
    return issues


def check_room_references(
    features: Sequence[Feature],
    known_rooms: Iterable[str],
) -> List[ConsistencyIssue]:
    known = {_key(room) for room in known_rooms if room}
    if not known:
        return []
    issues = []
    for feature in features:
        if feature.type not in ROOM_REFERENCING_TYPES:
            continue
        room = _key(feature.props.get("room"))
        if room and room not in known:
            issues.append(ConsistencyIssue(
                code="unknown_room_reference",
                severity="info",
                message=f"{feature.type.value} feature references unknown room {room}",
                refs=[feature.id, room],
            ))
    return issues


def check_consistency(
    sheets: Sequence[Sheet] = (),
    spaces: Sequence[Space] = (),
    room_schedules: Sequence[RoomScheduleEntry] = (),
    room_mappings: Sequence[RoomSpatialMapping] = (),
    ceiling_heights: Sequence[CeilingHeight] = (),
    scale_annotations: Sequence[ScaleAnnotation] = (),
    features: Sequence[Feature] = (),
) -> List[ConsistencyIssue]:
    """Run every cross-sheet check and return the combined issue list."""
    known_rooms: List[str] = []
    for row in room_schedules:
        known_rooms.extend([row.room_number, row.room_name])
    for mapping in room_mappings:
        known_rooms.extend([mapping.room_number, mapping.room_name])
    for space in spaces:
        known_rooms.extend([space.space_id, space.name])
    for feature in features:
        if feature.type == FeatureType.ROOM:
            known_rooms.extend([feature.props.get("number"), feature.props.get("name")])

    issues = (
        check_room_numbers(room_schedules)
        + check_scales(sheets, scale_annotations)
        + check_room_areas(spaces, features)
        + check_ceiling_heights(ceiling_heights)
        + check_room_references(features, [str(room) for room in known_rooms if room])
    )
    if issues:
        logger.info(f"Consistency check found {len(issues)} issues")
    return issues
