"""
Heuristic scope diagnosis: CSI divisions, assemblies, material summary,
vertical systems and fitting estimates derived from extracted features.
"""
import logging
import math
from typing import Any, Dict, List, Optional, Sequence

from schemas.features import Feature
from schemas.sheets import IngestResult
from schemas.takeoff import (
    Assembly,
    CsiDivision,
    FittingEstimate,
    LevelSummary,
    MaterialRequirement,
    ScopeDiagnosis,
    VerticalSystems,
)

logger = logging.getLogger(__name__)

FEATURE_CSI_MAP = {
    "ROOM": ("09 00 00", "Finishes", "Interior Spaces"),
    "WALL": ("09 20 00", "Partitions & Ceilings", "Gypsum Partitions"),
    "OPENING": ("08 10 00", "Doors and Frames", "Door / Window Systems"),
    "PIPE": ("22 00 00", "Plumbing", "Domestic / Waste Piping"),
    "FIXTURE": ("22 40 00", "Plumbing Fixtures", "Fixture Package"),
    "DUCT": ("23 30 00", "HVAC Air Distribution", "Ductwork"),
    "LEVEL": ("01 10 00", "Summary of Work", "Vertical Datum"),
    "ELEVATION": ("06 00 00", "Wood, Plastics & Composites", "Wall Elevations"),
    "SECTION": ("03 00 00", "Concrete / Structural Framing", "Building Sections"),
    "RISER": ("21 00 00", "Fire Suppression / Vertical Systems", "Riser Systems"),
}

HEURISTIC_CONFIDENCE = 0.55


def round_half_up(value: float, digits: int = 0) -> float:
    """Round halves away from zero for positive quantities (2.5 -> 3)."""
    factor = 10 ** digits
    return math.floor(value * factor + 0.5) / factor


def count_features(features: Sequence[Feature]) -> Dict[str, int]:
    counts: Dict[str, int] = {}
    for feature in features:
        counts[feature.type.value] = counts.get(feature.type.value, 0) + 1
    return counts


def sum_linear(features: Sequence[Feature], feature_type: str) -> float:
    """Length per feature of the type, falling back to area when no length is set."""
    return sum(
        (feature.length or feature.area or 0)
        for feature in features
        if feature.type.value == feature_type
    )


def derive_csi_divisions(features: Sequence[Feature]) -> List[CsiDivision]:
    buckets: Dict[str, Dict[str, Any]] = {}
    for feature in features:
        mapping = FEATURE_CSI_MAP.get(feature.type.value)
        if mapping is None:
            continue
        division, title, assembly = mapping
        bucket = buckets.setdefault(division, {"title": title, "count": 0, "assemblies": [], "drivers": []})
        bucket["count"] += 1
        if assembly not in bucket["assemblies"]:
            bucket["assemblies"].append(assembly)
        for key in ("partitionType", "service"):
            driver = feature.props.get(key)
            if driver and driver not in bucket["drivers"]:
                bucket["drivers"].append(driver)

    return [
        CsiDivision(
            division=division,
            title=bucket["title"],
            confidence=min(0.9, 0.4 + bucket["count"] * 0.05),
            assemblies=bucket["assemblies"],
            drivers=[str(driver) for driver in bucket["drivers"]],
        )
        for division, bucket in buckets.items()
    ]


def derive_assemblies(features: Sequence[Feature], totals: Dict[str, float]) -> List[Assembly]:
    assemblies: List[Assembly] = []
    if totals["wall"] > 0:
        assemblies.append(Assembly(
            name="Interior Partitions",
            description="Stud and gypsum assemblies derived from WALL features",
            quantity=round_half_up(totals["wall"], 1), unit="lf", drivers=["WALL"],
            confidence=0.7, csi_division="09 20 00",
        ))
    if totals["pipe"] > 0:
        assemblies.append(Assembly(
            name="Plumbing Distribution",
            description="Water / waste piping per PIPE targets",
            quantity=round_half_up(totals["pipe"], 1), unit="lf", drivers=["PIPE"],
            confidence=0.65, csi_division="22 00 00",
        ))
    if totals["duct"] > 0:
        assemblies.append(Assembly(
            name="HVAC Duct Runs",
            description="Supply / return ductwork",
            quantity=round_half_up(totals["duct"], 1), unit="lf", drivers=["DUCT"],
            confidence=0.6, csi_division="23 30 00",
        ))
    if totals["fixtures"] > 0:
        assemblies.append(Assembly(
            name="Fixture Package",
            description="Plumbing or electrical fixtures counted from plans",
            quantity=totals["fixtures"], unit="ea", drivers=["FIXTURE"],
            confidence=0.62, csi_division="22 40 00",
        ))

    rooms = [feature for feature in features if feature.type.value == "ROOM"]
    if rooms:
        total_area = sum(room.area or 0 for room in rooms)
        assemblies.append(Assembly(
            name="Interior Fit-Out",
            description="Rooms / program areas requiring finishes and specialties",
            quantity=round_half_up(total_area) if total_area else len(rooms),
            unit="sf" if total_area else "ea",
            drivers=["ROOM"],
            confidence=0.58,
            csi_division="09 00 00",
        ))
    return assemblies


def derive_materials(totals: Dict[str, float]) -> List[MaterialRequirement]:
    materials: List[MaterialRequirement] = []
    if totals["wall"] > 0:
        materials.append(MaterialRequirement(
            name="Stud Framing", quantity=round_half_up(totals["wall"] * 0.75, 1), unit="ea",
            confidence=0.6, notes='Assumes studs at 16" o.c.', source_feature_types=["WALL"],
        ))
        materials.append(MaterialRequirement(
            name="Gypsum Board", quantity=round_half_up(totals["wall"] * 2, 1), unit="sf",
            confidence=0.58, notes="Two sides standard partition coverage", source_feature_types=["WALL"],
        ))
    if totals["pipe"] > 0:
        materials.append(MaterialRequirement(
            name="Piping (various services)", quantity=round_half_up(totals["pipe"], 1), unit="lf",
            confidence=0.55, notes="Combine CW/HW/SAN services per takeoff", source_feature_types=["PIPE"],
        ))
    if totals["duct"] > 0:
        materials.append(MaterialRequirement(
            name="Galvanized Duct", quantity=round_half_up(totals["duct"], 1), unit="lf",
            confidence=0.5, notes="Includes supply and return runs", source_feature_types=["DUCT"],
        ))
    if totals["fixtures"] > 0:
        materials.append(MaterialRequirement(
            name="Fixtures", quantity=totals["fixtures"], unit="ea", confidence=0.6,
            notes="Plumbing/electrical devices counted from fixtures layer", source_feature_types=["FIXTURE"],
        ))
    return materials


def estimate_story_height(features: Sequence[Feature]) -> Optional[float]:
    heights = [
        feature.props["heightFt"]
        for feature in features
        if isinstance(feature.props.get("heightFt"), (int, float)) and not isinstance(feature.props.get("heightFt"), bool)
    ]
    if not heights:
        return None
    return round_half_up(sum(heights) / len(heights), 1)


def build_vertical_summary(
    features: Sequence[Feature],
    pipe_length: float,
    analysis_summary: Optional[Dict[str, Any]] = None,
) -> Optional[VerticalSystems]:
    summary = analysis_summary or {}
    levels = [LevelSummary.model_validate(level) for level in summary.get("levels") or []]
    if not levels:
        levels = [
            LevelSummary(
                name=feature.props.get("name"),
                elevation_ft=feature.props.get("elevationFt"),
                height_ft=feature.props.get("heightFt"),
            )
            for feature in features
            if feature.type.value == "LEVEL"
        ]

    vertical = VerticalSystems(
        default_story_height_ft=summary.get("default_story_height_ft"),
        levels=levels,
        riser_count=summary.get("total_risers") or 0,
        total_riser_height_ft=summary.get("total_riser_height_ft"),
    )
    if not vertical.default_story_height_ft and features:
        vertical.default_story_height_ft = estimate_story_height(features)
        vertical.notes.append("Story height estimated from room data.")
    if pipe_length > 0 and not vertical.riser_count:
        vertical.notes.append("Piping present without riser diagrams; consider riser assumptions.")

    if not vertical.default_story_height_ft and not vertical.riser_count and not vertical.levels:
        return None
    return vertical


def build_fitting_estimates(features: Sequence[Feature]) -> List[FittingEstimate]:
    groups: Dict[str, Dict[str, float]] = {}
    for feature in features:
        if feature.type.value != "PIPE":
            continue
        service = feature.props.get("service") or "PIPE"
        group = groups.setdefault(service, {"length": 0.0, "count": 0})
        group["length"] += feature.length or 0
        group["count"] += 1

    fittings: List[FittingEstimate] = []
    for service, group in groups.items():
        length = group["length"]
        if not length:
            continue
        fittings.append(FittingEstimate(
            system=f"{service} piping",
            elbows=max(1, int(round_half_up(group["count"] * 0.8))),
            tees=max(0, int(round_half_up(length / 40))),
            couplings=max(1, int(round_half_up(length / 20))),
            reducers=int(round_half_up(length / 75)),
            confidence=0.4,
            notes=[f"Estimated from {length:.1f} LF across {int(group['count'])} runs."],
        ))

    duct_length = sum_linear(features, "DUCT")
    if duct_length > 0:
        fittings.append(FittingEstimate(
            system="HVAC ductwork",
            elbows=max(1, int(round_half_up(duct_length / 60))),
            tees=int(round_half_up(duct_length / 90)),
            couplings=int(round_half_up(duct_length / 30)),
            reducers=int(round_half_up(duct_length / 120)),
            confidence=0.35,
            notes=[f"Based on {duct_length:.1f} LF total duct run."],
        ))
    return fittings


def diagnose_scope(
    features: Sequence[Feature],
    targets: Sequence[str] = (),
    ingest: Optional[IngestResult] = None,
    analysis_summary: Optional[Dict[str, Any]] = None,
) -> ScopeDiagnosis:
    """Build the heuristic diagnosis for one job's features."""
    counts = count_features(features)
    totals = {
        "wall": sum_linear(features, "WALL"),
        "pipe": sum_linear(features, "PIPE"),
        "duct": sum_linear(features, "DUCT"),
        "fixtures": counts.get("FIXTURE", 0),
    }
    vertical = build_vertical_summary(features, totals["pipe"], analysis_summary)

    notes: List[str] = []
    if ingest is not None and ingest.metadata.total_pages:
        disciplines = ", ".join(ingest.metadata.detected_disciplines) or "disciplines unknown"
        notes.append(f"Analyzed {ingest.metadata.total_pages} sheets ({disciplines})")
    if not totals["pipe"] and "pipes" in targets:
        notes.append("No piping runs detected - verify plumbing scope manually.")
    if vertical is None or not vertical.riser_count:
        notes.append("Vertical risers not detected; confirm elevations and riser diagrams.")

    parts = []
    if counts.get("ROOM"):
        parts.append(f"{counts['ROOM']} rooms")
    if totals["wall"]:
        parts.append(f"{round_half_up(totals['wall']):.0f} LF walls")
    if totals["pipe"]:
        parts.append(f"{round_half_up(totals['pipe']):.0f} LF piping")
    if totals["duct"]:
        parts.append(f"{round_half_up(totals['duct']):.0f} LF ductwork")
    if totals["fixtures"]:
        parts.append(f"{totals['fixtures']} fixtures")
    summary = (
        f"Detected {', '.join(parts)} across uploaded plans."
        if parts
        else "Scope features detected but quantities are minimal - review manually."
    )

    diagnosis = ScopeDiagnosis(
        summary=summary,
        feature_counts=counts,
        csi_divisions=derive_csi_divisions(features),
        assemblies=derive_assemblies(features, totals),
        materials=derive_materials(totals),
        vertical_systems=vertical,
        fittings=build_fitting_estimates(features),
        confidence=HEURISTIC_CONFIDENCE,
        notes=notes,
    )
    logger.info(f"Scope diagnosis: {summary}")
    return diagnosis
