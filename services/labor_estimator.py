"""
Crew-hour labor plan built from extracted features.
"""
import json
import logging
from typing import Any, Dict, List, Optional, Sequence

from config.settings import LABOR_PRODUCTIVITY_JSON, LABOR_SHIFTS
from schemas.estimates import CrewPlan, LaborPlan, LaborTotals
from schemas.features import Feature
from services.cost_estimator import feature_quantity

logger = logging.getLogger(__name__)

HOURS_PER_SHIFT = 8

LABOR_LIBRARY: Dict[str, Dict[str, Any]] = {
    "WALL": {"crew_type": "Carpenters + Drywall Finishers", "crew_size": 4, "productivity": 18,
             "units": "lf", "trade": "A", "wage_rate": 42, "burden_pct": 0.38},
    "ROOM": {"crew_type": "Interior Finish Crew", "crew_size": 5, "productivity": 250,
             "units": "sf", "trade": "A", "wage_rate": 40, "burden_pct": 0.35},
    "PIPE": {"crew_type": "Plumbers (Journeyman / Apprentice)", "crew_size": 3, "productivity": 25,
             "units": "lf", "trade": "P", "wage_rate": 48, "burden_pct": 0.42},
    "FIXTURE": {"crew_type": "Fixture Install Crew", "crew_size": 2, "productivity": 6,
                "units": "ea", "trade": "P", "wage_rate": 46, "burden_pct": 0.40},
    "DUCT": {"crew_type": "Sheet Metal Crew", "crew_size": 4, "productivity": 32,
             "units": "lf", "trade": "M", "wage_rate": 44, "burden_pct": 0.39},
    "ELEVATION": {"crew_type": "Finish Carpenters", "crew_size": 3, "productivity": 2,
                  "units": "ea", "trade": "A", "wage_rate": 43, "burden_pct": 0.36},
    "RISER": {"crew_type": "Vertical Piping Crew", "crew_size": 3, "productivity": 1.2,
              "units": "ea", "trade": "P", "wage_rate": 49, "burden_pct": 0.44},
}


def load_productivity_overrides(raw: Optional[str] = None) -> Dict[str, float]:
    """Feature type -> units per hour; only positive numbers are accepted."""
    raw = LABOR_PRODUCTIVITY_JSON if raw is None else raw
    overrides: Dict[str, float] = {}
    if not raw:
        return overrides
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError as e:
        logger.warning(f"Failed to parse LABOR_PRODUCTIVITY_JSON: {str(e)}")
        return overrides
    if not isinstance(parsed, dict):
        logger.warning("LABOR_PRODUCTIVITY_JSON must be a JSON object; ignoring")
        return overrides
    for key, value in parsed.items():
        try:
            number = float(value)
        except (TypeError, ValueError):
            continue
        if number > 0:
            overrides[str(key).upper()] = number
    return overrides


class LaborEstimator:
    """One crew line per feature type with measurable quantity."""

    def __init__(self, productivity_overrides: Optional[Dict[str, float]] = None, shifts: int = LABOR_SHIFTS):
        self.productivity_overrides = (
            productivity_overrides if productivity_overrides is not None else load_productivity_overrides()
        )
        self.shifts = max(1, int(shifts))

    def build_labor_plan(
        self,
        job_id: str,
        features: Sequence[Feature],
        disciplines: Sequence[str] = (),
        scope_diagnosis: Optional[Dict[str, Any]] = None,
    ) -> LaborPlan:
        quantities: Dict[str, float] = {}
        for feature in features:
            plan = LABOR_LIBRARY.get(feature.type.value)
            if plan is None:
                continue
            quantity = feature_quantity(feature, plan["units"])
            if not quantity:
                continue
            quantities[feature.type.value] = quantities.get(feature.type.value, 0.0) + quantity

        crews: List[CrewPlan] = []
        for feature_type, quantity in quantities.items():
            plan = LABOR_LIBRARY[feature_type]
            productivity = self.productivity_overrides.get(feature_type, plan["productivity"])
            hours = quantity / productivity
            labor_cost = hours * plan["wage_rate"]
            burden_cost = labor_cost * plan["burden_pct"]
            crews.append(CrewPlan(
                feature_type=feature_type,
                trade=plan["trade"],
                crew_type=plan["crew_type"],
                crew_size=plan["crew_size"],
                units=plan["units"],
                quantity=round(quantity, 2),
                productivity=productivity,
                hours=round(hours, 2),
                crew_days=round(hours / (HOURS_PER_SHIFT * self.shifts), 2),
                wage_rate=plan["wage_rate"],
                labor_cost=round(labor_cost, 2),
                burden_pct=plan["burden_pct"],
                burden_cost=round(burden_cost, 2),
            ))

        notes: List[str] = []
        if not crews:
            notes.append("No measurable features for labor modeling.")
        notes.extend((scope_diagnosis or {}).get("notes") or [])

        totals = LaborTotals(
            hours=round(sum(c.hours for c in crews), 2),
            labor_cost=round(sum(c.labor_cost for c in crews), 2),
            burden_cost=round(sum(c.burden_cost for c in crews), 2),
        )
        totals.total_cost = round(totals.labor_cost + totals.burden_cost, 2)

        return LaborPlan(
            job_id=job_id,
            crews=crews,
            totals=totals,
            recommended_shifts=self.shifts,
            peak_crew_size=max((c.crew_size for c in crews), default=0),
            disciplines=list(disciplines),
            notes=list(dict.fromkeys(notes)),
            duration_days=round(sum(c.crew_days for c in crews), 2) if crews else None,
        )
