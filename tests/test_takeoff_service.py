"""
Tests for the project takeoff aggregation and cross-sheet consistency checks.
"""
import pytest

from schemas.extraction import (
    CeilingHeight,
    RoomScheduleEntry,
    ScaleAnnotation,
    SheetTrustReport,
    Space,
)
from schemas.features import Feature, FeatureType
from schemas.sheets import Sheet, SheetClassification
from schemas.takeoff import FusedRoom, FusedWall, FusionResult
from services.consistency_checker import check_consistency
from services.takeoff_service import TakeoffAggregator, assumed_height, summarize_quantities


def trust_report(index, score):
    return SheetTrustReport(
        sheet_index=index, trust_score=score, needs_review=score < 0.6, original_count=1, retained_count=1
    )


def plan_sheet(index, category="floor", scale=None):
    return Sheet(
        index=index,
        name=f"A1.{index}",
        scale=scale,
        classification=SheetClassification(category=category, discipline=["architectural"]),
    )


def build(**kwargs):
    kwargs.setdefault("job_id", "job-1")
    kwargs.setdefault("file_id", "plans.pdf")
    kwargs.setdefault("disciplines", ["A"])
    kwargs.setdefault("targets", ["rooms", "walls"])
    kwargs.setdefault("sheets", [plan_sheet(0)])
    kwargs.setdefault("features", [])
    return TakeoffAggregator().build(**kwargs)


class TestTakeoffAggregator:
    """Test the deterministic project takeoff."""

    def test_assumed_heights(self):
        assert assumed_height("sales", "SALES FLOOR") == 10
        assert assumed_height("boh", "STOCK") == 8
        assert assumed_height("other", "STORAGE 104") == 8
        assert assumed_height(None, None) == 10

    def test_rooms_and_walls(self):
        fusion = FusionResult(
            rooms=[
                FusedRoom(room_number="101", room_name="OFFICE", height_ft=9.0, area_sqft=180),
                FusedRoom(room_number="S2", room_name="BACK OF HOUSE", category="boh"),
            ],
            walls=[
                FusedWall(id="W1", adjacent_rooms=["101", "S2"], length_ft=20.0),
                FusedWall(id="W2", adjacent_rooms=["101"], length_ft=None),
            ],
        )
        takeoff = build(fusion=fusion)

        rooms = {room.room_number: room for room in takeoff.rooms}
        assert rooms["101"].height_ft == 9.0
        assert rooms["101"].height_source == "rcp"
        assert rooms["101"].confidence == pytest.approx(0.9)
        assert rooms["101"].perimeter_wall_ft == 20.0
        assert rooms["S2"].height_ft == 8.0
        assert rooms["S2"].height_source == "assumption"
        assert rooms["S2"].area_sqft is None
        assert rooms["S2"].confidence == pytest.approx(0.5)

        walls = {wall.id: wall for wall in takeoff.walls}
        assert walls["W1"].height_ft == 9.0
        assert walls["W1"].area_sqft == 180.0
        assert walls["W2"].length_ft is None
        assert walls["W2"].area_sqft is None

        assert any("Ceiling height assumed for 1 room(s)" in note for note in takeoff.meta.notes)
        assert any("1 wall run(s) have no usable scale" in note for note in takeoff.meta.notes)

    def test_room_area_from_features(self):
        fusion = FusionResult(rooms=[FusedRoom(room_number="101", room_name="OFFICE")])
        features = [Feature(type=FeatureType.ROOM, area=150, props={"number": "101", "name": "OFFICE"})]
        takeoff = build(fusion=fusion, features=features)
        assert takeoff.rooms[0].area_sqft == 150

    def test_walls_fall_back_to_features(self):
        features = [Feature(type=FeatureType.WALL, length=30, props={"partitionType": "PT-2", "heightFt": 10})]
        takeoff = build(features=features)
        assert len(takeoff.walls) == 1
        assert takeoff.walls[0].source == "feature"
        assert takeoff.walls[0].partition_type_id == "PT-2"
        assert takeoff.walls[0].area_sqft == 300

    def test_confidence_and_review_sheets(self):
        takeoff = build(
            sheets=[plan_sheet(0), plan_sheet(1)],
            trust_reports=[trust_report(0, 0.9), trust_report(1, 0.4)],
        )
        assert takeoff.meta.confidence == pytest.approx(0.65)
        assert takeoff.meta.review_sheets == [1]
        assert takeoff.sheets[1].trust_score == 0.4
        assert takeoff.sheets[0].discipline == ["architectural"]
        assert takeoff.project.sheet_count == 2

    def test_default_confidence(self):
        assert build().meta.confidence == 0.5

    def test_levels_from_summary_or_features(self):
        summary = {"levels": [{"name": "L1", "elevation_ft": 0, "height_ft": 12}]}
        assert build(vision_summary=summary).levels[0].name == "L1"
        features = [Feature(type=FeatureType.LEVEL, count=1, props={"name": "L2", "elevationFt": 14})]
        levels = build(features=features).levels
        assert levels[0].name == "L2"
        assert levels[0].elevation_ft == 14

    def test_quantities(self):
        quantities = summarize_quantities([
            Feature(type=FeatureType.WALL, length=10.004),
            Feature(type=FeatureType.WALL, length=5),
            Feature(type=FeatureType.ROOM, area=100),
        ])
        assert [q.feature_type for q in quantities] == ["ROOM", "WALL"]
        assert quantities[1].count == 2
        assert quantities[1].length == 15.0
        assert quantities[0].area == 100


class TestConsistencyChecker:
    """Test cross-sheet consistency issues."""

    def codes(self, issues):
        return sorted(issue.code for issue in issues)

    def test_clean(self):
        assert check_consistency() == []

    def test_room_schedule_conflicts(self):
        issues = check_consistency(room_schedules=[
            RoomScheduleEntry(room_number="101", room_name="OFFICE", sheet_index=5),
            RoomScheduleEntry(room_number="101", room_name="STORAGE", sheet_index=5),
        ])
        assert self.codes(issues) == ["duplicate_room_number", "room_name_conflict"]

    def test_missing_and_conflicting_scales(self):
        issues = check_consistency(
            sheets=[plan_sheet(0), plan_sheet(1), plan_sheet(2, category="elevations")],
            scale_annotations=[
                ScaleAnnotation(sheet_index=1, viewport_label="Floor Plan", scale_note='1/8" = 1\'-0"'),
                ScaleAnnotation(sheet_index=1, viewport_label="Floor Plan", scale_note='1/4" = 1\'-0"'),
            ],
        )
        assert self.codes(issues) == ["conflicting_scale", "missing_scale"]
        missing = next(issue for issue in issues if issue.code == "missing_scale")
        assert missing.refs == ["A1.0"]

    def test_room_area_conflict(self):
        issues = check_consistency(
            spaces=[Space(space_id="S1", name="Sales", approx_area_sqft=1000)],
            features=[Feature(type=FeatureType.ROOM, area=600, props={"name": "SALES"})],
        )
        assert self.codes(issues) == ["room_area_conflict"]

    def test_ceiling_height_conflict(self):
        issues = check_consistency(ceiling_heights=[
            CeilingHeight(room_number="101", height_ft=9),
            CeilingHeight(room_number="101", height_ft=12),
            CeilingHeight(room_number="102", height_ft=9),
            CeilingHeight(room_number="102", height_ft=10),
        ])
        assert self.codes(issues) == ["ceiling_height_conflict"]
        assert issues[0].refs == ["101"]

    def test_unknown_room_reference(self):
        issues = check_consistency(
            room_schedules=[RoomScheduleEntry(room_number="101", room_name="OFFICE")],
            features=[
                Feature(type=FeatureType.PIPE, length=10, props={"room": "101"}),
                Feature(type=FeatureType.FIXTURE, count=1, props={"room": "999"}),
            ],
        )
        assert self.codes(issues) == ["unknown_room_reference"]
        assert issues[0].severity == "info"
