"""
Tests for scale handling and the final fusion of rooms and walls.
"""
import pytest

from schemas.extraction import (
    CeilingHeight,
    RoomScheduleEntry,
    RoomSpatialMapping,
    ScaleAnnotation,
    ScaleRatio,
    Space,
    SpaceFinish,
    WallSegment,
)
from schemas.sheets import Sheet, SheetClassification
from services.fusion_service import (
    FusionService,
    parse_scale_note,
    plan_value_to_inches,
    polyline_length,
    real_value_to_feet,
    select_scale_annotation,
)

# 500 px at 100 dpi is 5 inches of paper
DIAGONAL = [(0, 0), (300, 400)]


def plan_sheet(index=0, dpi=100, scale=None, category="floor"):
    return Sheet(
        index=index,
        name=f"A1.{index}",
        render_dpi=dpi,
        scale=scale,
        classification=SheetClassification(category=category, is_primary_plan=True),
    )


class TestScaleParsing:
    """Test written scale notes and unit tables."""

    def test_architectural_note(self):
        assert parse_scale_note('1/8" = 1\'-0"') == (0.125, 1.0)

    def test_architectural_note_with_inches(self):
        plan, real = parse_scale_note('3/16"=1\'-6"')
        assert plan == pytest.approx(0.1875)
        assert real == pytest.approx(1.5)

    def test_metric_ratio(self):
        plan, real = parse_scale_note("SCALE 1:100")
        assert plan == 1.0
        assert real == pytest.approx(0.328084)

    def test_unparseable(self):
        assert parse_scale_note("NOT TO SCALE") is None

    def test_unit_tables(self):
        assert plan_value_to_inches(1, "ft") == 12
        assert plan_value_to_inches(25.4, "mm") == pytest.approx(1.0)
        assert real_value_to_feet(12, "in") == pytest.approx(1.0)
        assert real_value_to_feet(1, "parsec") is None
        assert real_value_to_feet(-1) is None

    def test_polyline_length(self):
        assert polyline_length(DIAGONAL) == 500
        assert polyline_length([(0, 0), (3, 4), (3, 10)]) == 11
        assert polyline_length([(1, 1)]) == 0


class TestPixelsToFeet:
    """Test pixel to real-world conversion."""

    def test_ratio(self):
        annotation = ScaleAnnotation(
            scale_ratio=ScaleRatio(plan_units="inch", plan_value=0.125, real_units="foot", real_value=1)
        )
        assert FusionService().pixels_to_feet(500, plan_sheet(), annotation) == pytest.approx(40.0)

    def test_ratio_takes_precedence_over_note(self):
        annotation = ScaleAnnotation(
            scale_note='1/4" = 1\'-0"',
            scale_ratio=ScaleRatio(plan_units="in", plan_value=1, real_units="ft", real_value=8),
        )
        assert FusionService().pixels_to_feet(500, plan_sheet(), annotation) == pytest.approx(40.0)

    def test_note_fallback(self):
        annotation = ScaleAnnotation(scale_note='1/4" = 1\'-0"')
        assert FusionService().pixels_to_feet(500, plan_sheet(), annotation) == pytest.approx(20.0)

    def test_sheet_scale_fallback(self):
        sheet = plan_sheet(scale='1/8" = 1\'-0"')
        assert FusionService().pixels_to_feet(500, sheet) == pytest.approx(40.0)

    def test_metric(self):
        sheet = plan_sheet(scale="1:100")
        assert FusionService().pixels_to_feet(500, sheet) == pytest.approx(1.64042)

    def test_default_dpi(self):
        sheet = plan_sheet(dpi=None, scale='1/8" = 1\'-0"')
        assert FusionService(default_dpi=100).pixels_to_feet(500, sheet) == pytest.approx(40.0)

    def test_no_scale(self):
        assert FusionService().pixels_to_feet(500, plan_sheet()) is None


class TestSelectScaleAnnotation:
    """Test viewport priority when a sheet carries several scales."""

    def test_matching_viewport_wins(self):
        elevation = ScaleAnnotation(viewport_label="Interior Elevation", scale_note='1/2" = 1\'-0"')
        floor = ScaleAnnotation(viewport_label="Floor Plan", scale_note='1/8" = 1\'-0"')
        assert select_scale_annotation([elevation, floor], plan_sheet()) is floor

    def test_ties_keep_first(self):
        first = ScaleAnnotation(viewport_label="Enlarged Plan")
        second = ScaleAnnotation(viewport_label="Key Plan")
        assert select_scale_annotation([first, second], plan_sheet(category="other")) is first

    def test_empty(self):
        assert select_scale_annotation([], plan_sheet()) is None


class TestFuse:
    """Test the fused room and wall lists."""

    def test_rooms_merge_by_number(self):
        result = FusionService().fuse(
            sheets=[plan_sheet()],
            room_schedules=[RoomScheduleEntry(
                room_number="101", room_name="OFFICE", floor_finish_code="CPT-1", sheet_name="A6.1",
            )],
            room_mappings=[RoomSpatialMapping(
                room_number="101", bounding_box_px=[10, 10, 200, 150], label_center_px=(100, 80), sheet_name="A1.0",
            )],
            ceiling_heights=[CeilingHeight(room_number="101", height_ft=9.0, source_note="ACT @ 9'-0\"")],
        )
        assert len(result.rooms) == 1
        room = result.rooms[0]
        assert room.room_name == "OFFICE"
        assert room.floor_finish_code == "CPT-1"
        assert room.bounding_box_px == [10, 10, 200, 150]
        assert room.height_ft == 9.0
        assert room.sheet_refs == ["A6.1", "A1.0"]
        assert room.notes == ["ACT @ 9'-0\""]

    def test_spaces_pick_up_category_finishes(self):
        result = FusionService().fuse(
            sheets=[plan_sheet()],
            spaces=[Space(space_id="S1", name="SALES", category="sales", approx_area_sqft=850, sheet_name="A1.0")],
            space_finishes=[SpaceFinish(category="sales", floor="LVT-1", walls=["PT-1"], ceiling="ACT-1")],
        )
        room = result.rooms[0]
        assert room.room_number == "S1"
        assert room.category == "sales"
        assert room.area_sqft == 850
        assert room.finishes.floor == "LVT-1"
        assert room.finishes.walls == ["PT-1"]
        assert len(result.meta.spaces) == 1

    def test_wall_lengths(self):
        result = FusionService().fuse(
            sheets=[plan_sheet(index=2)],
            wall_runs=[
                WallSegment(id="W1", sheet_index=2, endpoints_px=DIAGONAL, partition_type_id="PT-1"),
                WallSegment(id="W2", sheet_index=9, endpoints_px=DIAGONAL),
            ],
            scale_annotations=[ScaleAnnotation(sheet_index=2, viewport_label="Floor Plan", scale_note='1/8" = 1\'-0"')],
        )
        by_id = {wall.id: wall for wall in result.walls}
        assert by_id["W1"].length_px == 500
        assert by_id["W1"].length_ft == 40.0
        assert by_id["W1"].partition_type_id == "PT-1"
        assert by_id["W2"].length_ft is None
        assert result.meta.sheet_count == 1
