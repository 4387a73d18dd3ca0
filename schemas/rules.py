"""
Pydantic schemas for rule sets and the materials they produce.
"""
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, Field, field_validator


class RuleSetUnits(BaseModel):
    linear: str = "ft"
    area: str = "ft2"
    volume: Optional[str] = "ft3"


class RuleMaterial(BaseModel):
    sku: str
    qty: str
    uom: Optional[str] = None
    description: Optional[str] = None

    @field_validator("qty", mode="before")
    @classmethod
    def _qty_as_expression(cls, value):
        # YAML turns "qty: 2" into an int
        return str(value) if isinstance(value, (int, float)) else value


class Rule(BaseModel):
    when: Dict[str, Any]
    materials: List[RuleMaterial]


class RuleSet(BaseModel):
    version: Union[str, int, float]
    units: RuleSetUnits
    vars: Dict[str, Any] = Field(default_factory=dict)
    rules: List[Rule]


class StoredRuleSet(BaseModel):
    """A validated rule set as kept by the repository."""

    id: str
    name: str
    version: str
    rule_set: RuleSet
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class MaterialSource(BaseModel):
    rule_id: str
    feature_type: Optional[str] = None
    feature_ids: List[str] = Field(default_factory=list)


class Material(BaseModel):
    """One consolidated bill-of-materials row."""

    sku: str
    qty: float
    uom: str
    description: Optional[str] = None
    source: MaterialSource


class PricedMaterial(Material):
    category: Optional[str] = None
    unit_price: Optional[float] = None
    total_price: Optional[float] = None


class MaterialsSummary(BaseModel):
    total_items: int
    total_value: float
    categories: List[str]
    generated_at: datetime


class MaterialsResponse(BaseModel):
    job_id: str
    currency: str = "USD"
    items: List[PricedMaterial]
    summary: MaterialsSummary
