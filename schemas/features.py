"""
Feature schema and the two-tier value accessor used by the rules engine.
"""
import uuid
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field


class FeatureType(str, Enum):
    ROOM = "ROOM"
    WALL = "WALL"
    OPENING = "OPENING"
    PIPE = "PIPE"
    DUCT = "DUCT"
    FIXTURE = "FIXTURE"
    LEVEL = "LEVEL"
    ELEVATION = "ELEVATION"
    SECTION = "SECTION"
    RISER = "RISER"


MEASURE_FIELDS = ("length", "area", "count")


class Feature(BaseModel):
    """One measurable building element. Frozen once emitted."""

    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    job_id: Optional[str] = None
    sheet_id: Optional[str] = None
    type: FeatureType
    length: Optional[float] = None
    area: Optional[float] = None
    count: Optional[float] = None
    props: Dict[str, Any] = Field(default_factory=dict)

    class Config:
        frozen = True

    def lookup(self, path: str) -> Any:
        return lookup_value(self.model_dump(mode="json"), path)

    def measures(self) -> Dict[str, float]:
        """Numeric top-level measures that are present."""
        values = {}
        for name in MEASURE_FIELDS:
            value = getattr(self, name)
            if value is not None:
                values[name] = float(value)
        return values


def lookup_value(record: Dict[str, Any], path: str) -> Any:
    """
    Resolve a dotted path against a record and its ``props`` bag.

    At every step the key is looked up on the current mapping first and then on
    that mapping's ``props``; a missing key anywhere yields None.
    """
    value: Any = record
    for part in path.split("."):
        if not isinstance(value, dict):
            return None
        found = value.get(part)
        if found is None:
            props = value.get("props")
            found = props.get(part) if isinstance(props, dict) else None
        value = found
    return value


# Trade code vocabulary shared by every component
TRADE_LABELS = {
    "A": "Architectural / Interiors",
    "P": "Plumbing",
    "M": "Mechanical / HVAC",
    "E": "Electrical",
    "S": "Structural",
    "V": "Vertical Transport",
}

FEATURE_TRADES = {
    FeatureType.ROOM: "A",
    FeatureType.WALL: "A",
    FeatureType.OPENING: "A",
    FeatureType.PIPE: "P",
    FeatureType.FIXTURE: "P",
    FeatureType.DUCT: "M",
    FeatureType.LEVEL: "A",
    FeatureType.ELEVATION: "A",
    FeatureType.SECTION: "S",
    FeatureType.RISER: "P",
}


def trade_for_feature_type(feature_type) -> str:
    """Trade code for a feature type name; unknown types fall back to A."""
    if isinstance(feature_type, FeatureType):
        return FEATURE_TRADES[feature_type]
    try:
        return FEATURE_TRADES[FeatureType(str(feature_type).upper())]
    except ValueError:
        return "A"
