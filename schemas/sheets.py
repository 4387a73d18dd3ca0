"""
Pydantic schemas for ingested sheets and their classification.
"""
import logging
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator

logger = logging.getLogger(__name__)


class SheetCategory(str, Enum):
    """Closed set of sheet categories produced by classification."""
    SITE = "site"
    DEMO_FLOOR = "demo_floor"
    FLOOR = "floor"
    FIXTURE = "fixture"
    RCP = "rcp"
    ELEVATIONS = "elevations"
    SECTIONS = "sections"
    MATERIALS = "materials"
    FURNITURE = "furniture"
    ARTWORK = "artwork"
    RR_DETAILS = "rr_details"
    OTHER = "other"


# Later stages read rasters only for these sheets
RASTER_CATEGORIES = {
    SheetCategory.FLOOR,
    SheetCategory.DEMO_FLOOR,
    SheetCategory.FIXTURE,
    SheetCategory.RCP,
}
RASTER_DISCIPLINES = {"mechanical", "electrical", "plumbing", "fire protection", "m", "e", "p", "fp"}


class SheetClassification(BaseModel):
    """Classification of one sheet."""

    sheet_id: Optional[str] = None
    title: Optional[str] = None
    category: SheetCategory = SheetCategory.OTHER
    discipline: List[str] = Field(default_factory=list)
    confidence: float = 0.0
    is_primary_plan: bool = False
    notes: Optional[str] = None

    @field_validator("category", mode="before")
    @classmethod
    def _coerce_category(cls, value):
        if isinstance(value, SheetCategory):
            return value
        normalized = str(value or "").strip().lower()
        try:
            return SheetCategory(normalized)
        except ValueError:
            return SheetCategory.OTHER

    @field_validator("discipline", mode="before")
    @classmethod
    def _coerce_discipline(cls, value):
        if value is None:
            return []
        if isinstance(value, str):
            return [value]
        return value

    @field_validator("confidence", mode="before")
    @classmethod
    def _clamp_confidence(cls, value):
        try:
            return min(1.0, max(0.0, float(value)))
        except (TypeError, ValueError):
            return 0.0

    @classmethod
    def fallback(cls, error: str) -> "SheetClassification":
        """Classification used when the model call fails for a sheet."""
        return cls(category=SheetCategory.OTHER, discipline=[], confidence=0.0,
                   notes=f"Classification failed: {error}")

    def needs_raster(self) -> bool:
        if self.category in RASTER_CATEGORIES or self.is_primary_plan:
            return True
        return any(d.strip().lower() in RASTER_DISCIPLINES for d in self.discipline)


class Sheet(BaseModel):
    """One page of an ingested drawing set."""

    index: int
    name: Optional[str] = None
    discipline: Optional[str] = None
    scale: Optional[str] = None
    units: Optional[str] = None
    sheet_id_guess: Optional[str] = None
    width_px: Optional[int] = None
    height_px: Optional[int] = None
    render_dpi: Optional[int] = None
    text: str = ""
    raster: Optional[bytes] = Field(default=None, exclude=True, repr=False)
    raster_dropped: bool = False
    classification: Optional[SheetClassification] = None

    @property
    def label(self) -> str:
        return self.name or self.sheet_id_guess or f"sheet-{self.index}"

    @property
    def category(self) -> Optional[SheetCategory]:
        return self.classification.category if self.classification else None

    @property
    def is_primary_plan(self) -> bool:
        return bool(self.classification and self.classification.is_primary_plan)

    def has_text(self) -> bool:
        return bool(self.text and self.text.strip())

    def has_raster(self) -> bool:
        return self.raster is not None and not self.raster_dropped

    def image_bytes(self) -> Optional[bytes]:
        """Raster bytes, or None when the buffer was never rendered or already dropped."""
        if self.raster_dropped:
            logger.warning(
                f"Raster for {self.label} was dropped after classification; treating as no image",
                extra={"sheet_index": self.index},
            )
            return None
        return self.raster

    def drop_raster(self) -> int:
        """Release the raster buffer in place and return the number of bytes freed."""
        freed = len(self.raster) if self.raster else 0
        self.raster = None
        self.raster_dropped = True
        return freed


class IngestMetadata(BaseModel):
    total_pages: int = 0
    detected_disciplines: List[str] = Field(default_factory=list)
    file_type: str = "pdf"


class IngestResult(BaseModel):
    """Contract returned by the ingestion collaborator."""

    file_id: str
    sheets: List[Sheet] = Field(default_factory=list)
    metadata: IngestMetadata = Field(default_factory=IngestMetadata)
