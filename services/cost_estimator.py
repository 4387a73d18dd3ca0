"""
Trade-level cost snapshot built from extracted features.
"""
import json
import logging
from typing import Any, Dict, List, Optional, Sequence

from config.settings import (
    ADMIN_MARKUPS_JSON,
    LABOR_ESCALATION_PCT,
    MATERIAL_ESCALATION_PCT,
    get_admin_markup_override,
)
from schemas.estimates import CostSettings, CostSnapshot, CostTotals, TradeCost
from schemas.features import TRADE_LABELS, Feature

logger = logging.getLogger(__name__)

# feature type -> (trade, unit, material/unit, labor/unit, equipment/unit, drivers)
FEATURE_COST_LIBRARY: Dict[str, Dict[str, Any]] = {
    "ROOM": {"trade": "A", "unit": "sf", "material": 6.5, "labor": 4.5, "equipment": 0.75,
             "drivers": ["Interior fit-out"]},
    "WALL": {"trade": "A", "unit": "lf", "material": 18, "labor": 12, "equipment": 1.5,
             "drivers": ["Stud + drywall partitions"]},
    "OPENING": {"trade": "A", "unit": "ea", "material": 850, "labor": 220, "equipment": 45,
                "drivers": ["Door / window packages"]},
    "PIPE": {"trade": "P", "unit": "lf", "material": 22, "labor": 16, "equipment": 2,
             "drivers": ["CW / HW / SAN piping"]},
    "FIXTURE": {"trade": "P", "unit": "ea", "material": 780, "labor": 180, "equipment": 35},
    "DUCT": {"trade": "M", "unit": "lf", "material": 28, "labor": 20, "equipment": 4,
             "drivers": ["Supply / return ductwork"]},
    "LEVEL": {"trade": "A", "unit": "ea", "material": 250, "labor": 140, "equipment": 10},
    "ELEVATION": {"trade": "A", "unit": "ea", "material": 420, "labor": 180, "equipment": 15},
    "SECTION": {"trade": "S", "unit": "ea", "material": 520, "labor": 200, "equipment": 20},
    "RISER": {"trade": "P", "unit": "ea", "material": 980, "labor": 320, "equipment": 55},
}

DEFAULT_MARKUPS = {"A": 0.12, "P": 0.15, "M": 0.17, "E": 0.14, "S": 0.10}
FALLBACK_MARKUP = 0.10
MARKUP_TRADES = ("A", "P", "M", "E", "S")


def feature_quantity(feature: Feature, unit: str) -> Optional[float]:
    """lf -> length, sf -> area, ea -> count (1 when absent); zero counts as missing."""
    if unit == "lf":
        return feature.length or None
    if unit == "sf":
        return feature.area or None
    if unit == "ea":
        return feature.count or 1
    return None


def load_markup_settings(overrides_json: Optional[str] = None, per_trade: Optional[Dict[str, float]] = None) -> Dict[str, float]:
    """
    Markup percentage per trade.

    Precedence: per-trade override > JSON blob > built-in default. Per-trade
    overrides come from ADMIN_MARKUP_<T> unless passed explicitly; negative values
    are ignored.
    """
    markups = dict(DEFAULT_MARKUPS)
    raw = ADMIN_MARKUPS_JSON if overrides_json is None else overrides_json
    if raw:
        try:
            parsed = json.loads(raw)
            if isinstance(parsed, dict):
                for trade, value in parsed.items():
                    if isinstance(value, (int, float)) and not isinstance(value, bool):
                        markups[str(trade).upper()] = float(value)
            else:
                logger.warning("ADMIN_MARKUPS_JSON must be a JSON object; ignoring")
        except json.JSONDecodeError as e:
            logger.warning(f"Failed to parse ADMIN_MARKUPS_JSON: {str(e)}")

    if per_trade is None:
        per_trade = {}
        for trade in MARKUP_TRADES:
            value = get_admin_markup_override(trade)
            if value is not None:
                per_trade[trade] = value
    for trade, value in per_trade.items():
        if value is not None and value >= 0:
            markups[trade.upper()] = float(value)
    return markups


class CostEstimator:
    """Rolls features into per-trade cost buckets with escalation and markup."""

    def __init__(
        self,
        markups: Optional[Dict[str, float]] = None,
        material_escalation_pct: float = MATERIAL_ESCALATION_PCT,
        labor_escalation_pct: float = LABOR_ESCALATION_PCT,
    ):
        self.markups = markups if markups is not None else load_markup_settings()
        self.material_escalation_pct = material_escalation_pct
        self.labor_escalation_pct = labor_escalation_pct

    def generate_cost_snapshot(
        self,
        job_id: str,
        features: Sequence[Feature],
        scope_diagnosis: Optional[Dict[str, Any]] = None,
        rule_set_id: Optional[str] = None,
    ) -> CostSnapshot:
        buckets: Dict[str, Dict[str, Any]] = {}

        for feature in features:
            definition = FEATURE_COST_LIBRARY.get(feature.type.value)
            if definition is None:
                continue
            quantity = feature_quantity(feature, definition["unit"])
            if not quantity:
                continue

            trade = definition["trade"]
            bucket = buckets.setdefault(trade, {
                "feature_types": [],
                "quantity": 0.0,
                "quantity_unit": definition["unit"],
                "material": 0.0,
                "labor": 0.0,
                "equipment": 0.0,
                "drivers": [],
            })
            bucket["quantity"] += quantity
            bucket["material"] += quantity * definition["material"]
            bucket["labor"] += quantity * definition["labor"]
            bucket["equipment"] += quantity * definition["equipment"]
            if feature.type.value not in bucket["feature_types"]:
                bucket["feature_types"].append(feature.type.value)
            for driver in definition.get("drivers", []):
                if driver not in bucket["drivers"]:
                    bucket["drivers"].append(driver)

        trades: List[TradeCost] = []
        for trade, bucket in buckets.items():
            markup_pct = self.markups.get(trade, FALLBACK_MARKUP)
            material = bucket["material"] * (1 + self.material_escalation_pct)
            labor = bucket["labor"] * (1 + self.labor_escalation_pct)
            subtotal = material + labor + bucket["equipment"]
            markup_value = subtotal * markup_pct
            trades.append(TradeCost(
                trade=trade,
                trade_label=TRADE_LABELS.get(trade, trade),
                feature_types=bucket["feature_types"],
                quantity=round(bucket["quantity"], 2),
                quantity_unit=bucket["quantity_unit"],
                material_cost=round(material, 2),
                labor_cost=round(labor, 2),
                equipment_cost=round(bucket["equipment"], 2),
                markup_pct=markup_pct,
                markup_value=round(markup_value, 2),
                total_cost=round(subtotal + markup_value, 2),
                drivers=bucket["drivers"],
            ))

        totals = CostTotals(
            material_cost=round(sum(t.material_cost for t in trades), 2),
            labor_cost=round(sum(t.labor_cost for t in trades), 2),
            equipment_cost=round(sum(t.equipment_cost for t in trades), 2),
            markup=round(sum(t.markup_value for t in trades), 2),
        )
        totals.grand_total = round(
            totals.material_cost + totals.labor_cost + totals.equipment_cost + totals.markup, 2
        )

        notes = []
        if not trades:
            notes.append("No cost-bearing features detected. Ensure targets include measurable systems.")
        vertical = (scope_diagnosis or {}).get("vertical_systems") or {}
        if vertical.get("riser_count") == 0:
            notes.append("Vertical systems missing; add contingency for potential risers/elevators.")
        if rule_set_id:
            notes.append(f"Materials rule set {rule_set_id} applied before costing.")

        logger.info(
            f"Cost snapshot for job {job_id}: {len(trades)} trades, grand total {totals.grand_total:.2f}",
            extra={"job_id": job_id},
        )
        return CostSnapshot(
            job_id=job_id,
            settings=CostSettings(
                material_escalation_pct=self.material_escalation_pct,
                labor_escalation_pct=self.labor_escalation_pct,
                admin_markup=dict(self.markups),
            ),
            trades=trades,
            totals=totals,
            confidence=0.62 if trades else 0.3,
            notes=notes,
        )
