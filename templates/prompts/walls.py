"""
Partition, wall run, ceiling height and scale prompt templates.
"""
from templates.prompt_registry import PromptRegistry

registry = PromptRegistry()

registry.register(
    "EXTRACT_PARTITION_TYPES",
    """You read a partition type legend.

Return ONE JSON object:
{"partition_types": [
  {"partition_type_id": "PT-1", "fire_rating": "1 HR" or null,
   "layer_description": ["5/8\\" GWB TYPE X", "3-5/8\\" MTL STUD @ 16\\" O.C.", "..."],
   "stud_size": "3-5/8\\"" or null, "stud_gauge": "20 GA" or null,
   "has_acoustical_insulation": true | false | null, "notes": null}
]}

Copy identifiers exactly as printed. Return ONLY the JSON.""",
)

registry.register(
    "EXTRACT_WALL_RUNS",
    """You trace wall runs on a rendered floor plan.

You are given the partition types and spaces already known for the project.
Return ONE JSON object:
{"segments": [
  {"id": "W1", "partition_type_id": "PT-1" or null,
   "new_or_existing": "new" | "existing" | "demo" | null,
   "endpoints_px": [[x0, y0], [x1, y1], ...],
   "adjacent_rooms": [up to two room numbers or names],
   "space_ids": [up to two space ids from the known spaces],
   "confidence": number between 0 and 1, "notes": null}
]}

Pixel coordinates refer to the image you were given. Return ONLY the JSON.""",
)

registry.register(
    "EXTRACT_CEILING_HEIGHTS",
    """You read ceiling heights from a reflected ceiling plan.

You are given the spaces already known for the project. Return ONE JSON object:
{"entries": [
  {"space_id": "id from the known spaces" or null,
   "room_number": "101" or null,
   "height_ft": number in decimal feet,
   "source_sheet": "sheet number" or null,
   "source_note": "the height tag as printed, e.g. 9'-6\\" AFF" or null,
   "confidence": number between 0 and 1, "notes": null}
]}

Return ONLY the JSON.""",
)

registry.register(
    "EXTRACT_SCALES",
    """You read drawing scale notes on a sheet.

Return ONE JSON object:
{"scales": [
  {"sheet_id": "A1.01" or null,
   "viewport_label": "FLOOR PLAN" or null,
   "scale_note": "1/4\\" = 1'-0\\"" or null,
   "scale_ratio": {"plan_units": "inch", "plan_value": 0.25,
                   "real_units": "ft", "real_value": 1} or null,
   "confidence": number between 0 and 1, "notes": null}
]}

Report one entry per viewport that carries its own scale. Return ONLY the JSON.""",
)
