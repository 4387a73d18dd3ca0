"""
Tests for the cost snapshot and labor plan.
"""
import pytest

from schemas.features import Feature, FeatureType
from services.cost_estimator import CostEstimator, feature_quantity, load_markup_settings
from services.labor_estimator import LaborEstimator, load_productivity_overrides


def feature(feature_type, **kwargs):
    return Feature(type=feature_type, **kwargs)


class TestCostEstimator:
    """Test per-trade cost buckets."""

    def make(self, **kwargs):
        kwargs.setdefault("markups", {"A": 0.12, "P": 0.15, "M": 0.17})
        return CostEstimator(**kwargs)

    def test_wall_cost(self):
        snapshot = self.make().generate_cost_snapshot("job-1", [feature(FeatureType.WALL, length=100)])
        assert len(snapshot.trades) == 1
        trade = snapshot.trades[0]
        assert trade.trade == "A"
        assert trade.quantity == 100
        assert trade.quantity_unit == "lf"
        assert trade.material_cost == pytest.approx(1854.0)
        assert trade.labor_cost == pytest.approx(1230.0)
        assert trade.equipment_cost == pytest.approx(150.0)
        assert trade.markup_value == pytest.approx(388.08)
        assert trade.total_cost == pytest.approx(3622.08)
        assert snapshot.totals.grand_total == pytest.approx(3622.08)
        assert snapshot.confidence == 0.62

    def test_features_without_quantity_are_skipped(self):
        snapshot = self.make().generate_cost_snapshot(
            "job-1", [feature(FeatureType.WALL), feature(FeatureType.ROOM, area=0)]
        )
        assert snapshot.trades == []
        assert snapshot.confidence == 0.3
        assert snapshot.notes[0].startswith("No cost-bearing features")

    def test_count_defaults_to_one(self):
        assert feature_quantity(feature(FeatureType.OPENING), "ea") == 1
        assert feature_quantity(feature(FeatureType.FIXTURE, count=4), "ea") == 4
        assert feature_quantity(feature(FeatureType.PIPE, length=0), "lf") is None

    def test_trades_grouped(self):
        snapshot = self.make().generate_cost_snapshot("job-1", [
            feature(FeatureType.PIPE, length=10),
            feature(FeatureType.FIXTURE, count=2),
            feature(FeatureType.DUCT, length=5),
        ])
        trades = {trade.trade: trade for trade in snapshot.trades}
        assert set(trades) == {"P", "M"}
        assert trades["P"].feature_types == ["PIPE", "FIXTURE"]

    def test_notes(self):
        snapshot = self.make().generate_cost_snapshot(
            "job-1",
            [feature(FeatureType.WALL, length=10)],
            scope_diagnosis={"vertical_systems": {"riser_count": 0}},
            rule_set_id="rs-1",
        )
        assert any("Vertical systems missing" in note for note in snapshot.notes)
        assert any("rs-1" in note for note in snapshot.notes)

    def test_no_vertical_note_without_vertical_systems(self):
        snapshot = self.make().generate_cost_snapshot(
            "job-1", [feature(FeatureType.WALL, length=10)], scope_diagnosis={"vertical_systems": None}
        )
        assert not any("Vertical systems" in note for note in snapshot.notes)

    def test_markup_precedence(self):
        markups = load_markup_settings('{"A": 0.2, "P": "bad"}', per_trade={"A": 0.3, "M": -1})
        assert markups["A"] == 0.3
        assert markups["P"] == 0.15
        assert markups["M"] == 0.17

    def test_invalid_markup_json(self):
        markups = load_markup_settings("{not json", per_trade={})
        assert markups["A"] == 0.12


class TestLaborEstimator:
    """Test crew-hour planning."""

    def test_wall_crew(self):
        plan = LaborEstimator(productivity_overrides={}, shifts=1).build_labor_plan(
            "job-1", [feature(FeatureType.WALL, length=100), feature(FeatureType.WALL, length=80)],
            disciplines=["A"],
        )
        assert len(plan.crews) == 1
        crew = plan.crews[0]
        assert crew.quantity == 180
        assert crew.hours == 10
        assert crew.crew_days == 1.25
        assert crew.labor_cost == 420
        assert crew.burden_cost == pytest.approx(159.6)
        assert plan.totals.total_cost == pytest.approx(579.6)
        assert plan.duration_days == 1.25
        assert plan.peak_crew_size == 4
        assert plan.disciplines == ["A"]

    def test_shifts_and_overrides(self):
        plan = LaborEstimator(productivity_overrides={"WALL": 36}, shifts=2).build_labor_plan(
            "job-1", [feature(FeatureType.WALL, length=144)]
        )
        assert plan.crews[0].hours == 4
        assert plan.crews[0].crew_days == 0.25
        assert plan.recommended_shifts == 2

    def test_nothing_measurable(self):
        plan = LaborEstimator(productivity_overrides={}).build_labor_plan(
            "job-1", [feature(FeatureType.LEVEL)], scope_diagnosis={"notes": ["Story height estimated from room data."]}
        )
        assert plan.crews == []
        assert plan.duration_days is None
        assert plan.notes == ["No measurable features for labor modeling.", "Story height estimated from room data."]

    def test_productivity_overrides_parsing(self):
        assert load_productivity_overrides('{"wall": 20, "pipe": -1, "duct": "x"}') == {"WALL": 20.0}
        assert load_productivity_overrides("[1, 2]") == {}
        assert load_productivity_overrides("{oops") == {}
