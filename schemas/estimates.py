"""
Pydantic schemas for the cost snapshot and labor plan.
"""
from datetime import datetime, timezone
from typing import Dict, List, Optional

from pydantic import BaseModel, Field


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TradeCost(BaseModel):
    trade: str
    trade_label: str
    feature_types: List[str] = Field(default_factory=list)
    quantity: float
    quantity_unit: str
    material_cost: float
    labor_cost: float
    equipment_cost: float
    markup_pct: float
    markup_value: float
    total_cost: float
    drivers: List[str] = Field(default_factory=list)


class CostTotals(BaseModel):
    material_cost: float = 0.0
    labor_cost: float = 0.0
    equipment_cost: float = 0.0
    markup: float = 0.0
    grand_total: float = 0.0


class CostSettings(BaseModel):
    material_escalation_pct: float
    labor_escalation_pct: float
    admin_markup: Dict[str, float]


class CostSnapshot(BaseModel):
    job_id: str
    base_currency: str = "USD"
    settings: CostSettings
    trades: List[TradeCost] = Field(default_factory=list)
    totals: CostTotals = Field(default_factory=CostTotals)
    confidence: float
    notes: List[str] = Field(default_factory=list)
    generated_at: datetime = Field(default_factory=_utcnow)


class CrewPlan(BaseModel):
    feature_type: str
    trade: str
    crew_type: str
    crew_size: int
    units: str
    quantity: float
    productivity: float
    hours: float
    crew_days: float
    wage_rate: float
    labor_cost: float
    burden_pct: float
    burden_cost: float


class LaborTotals(BaseModel):
    hours: float = 0.0
    labor_cost: float = 0.0
    burden_cost: float = 0.0
    total_cost: float = 0.0


class LaborPlan(BaseModel):
    job_id: str
    crews: List[CrewPlan] = Field(default_factory=list)
    totals: LaborTotals = Field(default_factory=LaborTotals)
    recommended_shifts: int = 1
    peak_crew_size: int = 0
    disciplines: List[str] = Field(default_factory=list)
    notes: List[str] = Field(default_factory=list)
    generated_at: datetime = Field(default_factory=_utcnow)
    duration_days: Optional[float] = None
