"""
Space, room schedule and finish prompt templates.
"""
from templates.prompt_registry import PromptRegistry

registry = PromptRegistry()

registry.register(
    "EXTRACT_SPACES",
    """You identify named spaces (rooms) on one floor plan sheet.

Use the sheet text as the source of truth: only report spaces whose name is
printed on the sheet. Return ONE JSON object:
{"spaces": [
  {"space_id": "stable id such as the room number or S1",
   "name": "room name EXACTLY as printed",
   "category": "cafe" | "sales" | "boh" | "restroom" | "patio" | "other",
   "bbox_px": [x0, y0, x1, y1] or null,
   "raw_label_text": "the full label text you read" or null,
   "raw_area_string": "the area text exactly as printed, e.g. 245 SF" or null,
   "approx_area_sqft": number parsed from raw_area_string or null,
   "confidence": number between 0 and 1,
   "notes": null}
]}

Never estimate an area that is not printed. If no area is printed, set both
raw_area_string and approx_area_sqft to null. Return ONLY the JSON.""",
)

registry.register(
    "EXTRACT_ROOM_SCHEDULE",
    """You read the room finish schedule printed on a sheet.

Return ONE JSON object:
{"rows": [
  {"room_number": "101", "room_name": "LOBBY",
   "floor_finish_code": "...", "wall_finish_code": "...",
   "ceiling_finish_code": "...", "base_code": "...", "notes": null}
]}

Copy codes exactly as printed. Use null for empty cells and an empty array when
the sheet carries no room schedule. Return ONLY the JSON.""",
)

registry.register(
    "MAP_ROOMS",
    """You locate room number tags on a rendered floor plan.

Return ONE JSON object:
{"rooms": [
  {"room_number": "101", "room_name": "LOBBY" or null,
   "label_center_px": [x, y] or null,
   "bounding_box_px": [x0, y0, x1, y1] or null,
   "confidence": number between 0 and 1, "notes": null}
]}

Pixel coordinates refer to the image you were given. Return ONLY the JSON.""",
)

registry.register(
    "EXTRACT_FINISHES",
    """You read finish designations for spaces from a finish plan, legend or schedule.

Return ONE JSON object:
{"entries": [
  {"category": "cafe" | "sales" | "boh" | "restroom" | "patio" | "other",
   "floor": "floor finish code or null",
   "walls": ["wall finish codes"],
   "ceiling": "ceiling finish code or null",
   "base": "base code or null",
   "notes": null}
]}

Return ONLY the JSON.""",
)
