"""
Tests for feature extraction from plan analysis and the heuristic scope diagnosis.
"""
import pytest

from schemas.extraction import (
    VisionDuct,
    VisionFixture,
    VisionLevel,
    VisionOpening,
    VisionPipe,
    VisionResult,
    VisionRiser,
    VisionRoom,
    VisionWall,
)
from schemas.features import Feature, FeatureType
from services.feature_extraction import features_from_vision, summarize_vision, wanted_feature_types
from services.scope_diagnosis import (
    build_fitting_estimates,
    build_vertical_summary,
    derive_csi_divisions,
    diagnose_scope,
    round_half_up,
)


def vision_result(**kwargs):
    kwargs.setdefault("sheet_index", 0)
    kwargs.setdefault("sheet_name", "A1.1")
    return VisionResult(**kwargs)


FULL_RESULT = vision_result(
    rooms=[VisionRoom(number="101", name="OFFICE", area=220)],
    walls=[VisionWall(id="w1", partition_type="PT-1", length=40)],
    openings=[VisionOpening(type="Door", width=3, height=7), VisionOpening(type="Window", width=4)],
    pipes=[VisionPipe(service="CW", diameter=1, length=60)],
    ducts=[VisionDuct(size="12x10", length=30)],
    fixtures=[VisionFixture(type="Sink", count=None)],
    levels=[VisionLevel(name="Level 1", elevation_ft=0, height_ft=12)],
    risers=[VisionRiser(service="CW", height_ft=24)],
)


class TestFeatureExtraction:
    """Test conversion of analysis results to features."""

    def test_all_targets(self):
        features = features_from_vision(
            FULL_RESULT, "job-1", ["rooms", "walls", "doors", "windows", "pipes", "ducts", "fixtures"]
        )
        counts = {}
        for feature in features:
            counts[feature.type] = counts.get(feature.type, 0) + 1
        assert counts == {
            FeatureType.ROOM: 1, FeatureType.WALL: 1, FeatureType.OPENING: 2, FeatureType.PIPE: 1,
            FeatureType.DUCT: 1, FeatureType.FIXTURE: 1, FeatureType.LEVEL: 1, FeatureType.RISER: 1,
        }
        assert all(feature.job_id == "job-1" and feature.sheet_id == "A1.1" for feature in features)

    def test_props_are_camel_case(self):
        features = features_from_vision(FULL_RESULT, "job-1", ["walls", "pipes", "fixtures"])
        by_type = {feature.type: feature for feature in features}
        assert by_type[FeatureType.WALL].props == {"partitionType": "PT-1", "sourceId": "w1"}
        assert by_type[FeatureType.WALL].length == 40
        assert by_type[FeatureType.PIPE].props == {"service": "CW", "diameterIn": 1.0}
        assert by_type[FeatureType.FIXTURE].count == 1
        assert by_type[FeatureType.FIXTURE].props == {"fixtureType": "Sink"}

    def test_doors_only(self):
        features = features_from_vision(FULL_RESULT, "job-1", ["doors"])
        openings = [feature for feature in features if feature.type == FeatureType.OPENING]
        assert len(openings) == 1
        assert openings[0].props["openingType"] == "Door"
        assert openings[0].count == 1

    def test_vertical_context_always_extracted(self):
        features = features_from_vision(FULL_RESULT, "job-1", ["rooms"])
        assert {feature.type for feature in features} == {FeatureType.ROOM, FeatureType.LEVEL, FeatureType.RISER}
        assert wanted_feature_types([]) == {FeatureType.LEVEL, FeatureType.RISER}

    def test_summary(self):
        features = features_from_vision(FULL_RESULT, "job-1", ["walls"])
        summary = summarize_vision([FULL_RESULT], features)
        assert summary["sheets_analyzed"] == 1
        assert summary["sheet_indexes"] == [0]
        assert summary["features_by_type"] == {"WALL": 1, "LEVEL": 1, "RISER": 1}
        assert summary["total_risers"] == 1
        assert summary["total_riser_height_ft"] == 24
        assert summary["default_story_height_ft"] == 12
        assert summary["levels"][0]["name"] == "Level 1"


class TestScopeDiagnosis:
    """Test the deterministic scope diagnosis."""

    def test_round_half_up(self):
        assert round_half_up(2.5) == 3
        assert round_half_up(0.25, 1) == pytest.approx(0.3)
        assert round_half_up(0.4) == 0

    def test_walls_and_pipes(self):
        features = [
            Feature(type=FeatureType.WALL, length=100, props={"partitionType": "PT-1"}),
            Feature(type=FeatureType.WALL, length=50, props={"partitionType": "PT-1"}),
            Feature(type=FeatureType.PIPE, length=40, props={"service": "CW"}),
            Feature(type=FeatureType.ROOM, area=200),
        ]
        diagnosis = diagnose_scope(features, targets=["walls", "pipes"])

        assert diagnosis.feature_counts == {"WALL": 2, "PIPE": 1, "ROOM": 1}
        assert diagnosis.summary == "Detected 1 rooms, 150 LF walls, 40 LF piping across uploaded plans."
        assert diagnosis.confidence == 0.55

        partitions = next(d for d in diagnosis.csi_divisions if d.division == "09 20 00")
        assert partitions.confidence == pytest.approx(0.5)
        assert partitions.drivers == ["PT-1"]

        assemblies = {assembly.name: assembly for assembly in diagnosis.assemblies}
        assert assemblies["Interior Partitions"].quantity == 150
        assert assemblies["Interior Fit-Out"].quantity == 200
        assert assemblies["Interior Fit-Out"].unit == "sf"

        materials = {material.name: material for material in diagnosis.materials}
        assert materials["Stud Framing"].quantity == 112.5
        assert materials["Gypsum Board"].quantity == 300

        fitting = diagnosis.fittings[0]
        assert fitting.system == "CW piping"
        assert (fitting.elbows, fitting.tees, fitting.couplings, fitting.reducers) == (1, 1, 2, 1)

        assert diagnosis.vertical_systems is None
        assert "Vertical risers not detected; confirm elevations and riser diagrams." in diagnosis.notes

    def test_missing_pipes_note(self):
        diagnosis = diagnose_scope([Feature(type=FeatureType.WALL, length=10)], targets=["pipes"])
        assert any("No piping runs detected" in note for note in diagnosis.notes)

    def test_no_quantities(self):
        diagnosis = diagnose_scope([])
        assert diagnosis.summary.startswith("Scope features detected but quantities are minimal")
        assert diagnosis.csi_divisions == []

    def test_division_confidence_caps(self):
        features = [Feature(type=FeatureType.DUCT, length=1) for _ in range(20)]
        assert derive_csi_divisions(features)[0].confidence == 0.9

    def test_vertical_summary_from_analysis(self):
        summary = {
            "levels": [{"name": "L1", "elevation_ft": 0, "height_ft": 14}],
            "default_story_height_ft": 14,
            "total_risers": 2,
            "total_riser_height_ft": 28,
        }
        vertical = build_vertical_summary([], 0, summary)
        assert vertical.riser_count == 2
        assert vertical.default_story_height_ft == 14
        assert vertical.levels[0].name == "L1"
        assert vertical.notes == []

    def test_vertical_summary_estimates_story_height(self):
        features = [
            Feature(type=FeatureType.LEVEL, count=1, props={"name": "L1", "heightFt": 12}),
            Feature(type=FeatureType.LEVEL, count=1, props={"name": "L2", "heightFt": 13}),
        ]
        vertical = build_vertical_summary(features, 10, None)
        assert vertical.default_story_height_ft == 12.5
        assert [level.name for level in vertical.levels] == ["L1", "L2"]
        assert "Story height estimated from room data." in vertical.notes
        assert any("riser assumptions" in note for note in vertical.notes)

    def test_duct_fittings(self):
        fittings = build_fitting_estimates([Feature(type=FeatureType.DUCT, length=180)])
        assert fittings[0].system == "HVAC ductwork"
        assert (fittings[0].elbows, fittings[0].tees, fittings[0].couplings, fittings[0].reducers) == (3, 2, 6, 2)
