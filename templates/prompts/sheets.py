"""
Sheet-level prompt templates: classification and primary plan analysis.
"""
from templates.prompt_registry import PromptRegistry

registry = PromptRegistry()

registry.register(
    "CLASSIFY_SHEET",
    """You classify one sheet of a construction drawing set.

You receive the sheet's extracted text and, when available, a rendered image.
Return ONE JSON object with exactly these keys:
- "sheet_id": the sheet number from the title block (e.g. "A1.01") or null
- "title": the sheet title or null
- "category": one of "site", "demo_floor", "floor", "fixture", "rcp", "elevations",
  "sections", "materials", "furniture", "artwork", "rr_details", "other"
- "discipline": array of discipline names shown on the sheet (e.g. ["architectural"])
- "confidence": number between 0 and 1
- "is_primary_plan": true only for the main new-work floor plan of the set
- "notes": short free text or null

Use "rcp" for reflected ceiling plans and "demo_floor" for demolition plans.
Return ONLY the JSON.""",
)

registry.register(
    "ANALYZE_PLAN",
    """You read a rendered construction floor plan and report what is drawn on it.

Return ONE JSON object with these keys (use empty arrays when nothing is found):
- "rooms": [{"number", "name", "program", "area"}]  area in square feet
- "walls": [{"id", "partition_type", "length", "rooms"}]  length in feet
- "openings": [{"type", "width", "height"}]  type is "door" or "window", sizes in feet
- "pipes": [{"id", "service", "diameter", "length", "room"}]  diameter in inches, length in feet
- "ducts": [{"id", "size", "length", "room"}]  size like "12x10", length in feet
- "fixtures": [{"type", "count", "room"}]
- "levels": [{"name", "elevation_ft", "height_ft"}]
- "elevations": [{"name", "reference"}]
- "sections": [{"name", "reference"}]
- "risers": [{"service", "height_ft"}]
- "scale": the plan scale note as printed, or null
- "notes": short free text or null

Only report what you can see. Never invent quantities; use null when unsure.
Return ONLY the JSON.""",
)
