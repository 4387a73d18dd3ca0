"""
Application settings loaded from environment variables.
"""
import os
import logging
from dotenv import load_dotenv
from typing import Dict, Any

# Load environment variables from .env file
load_dotenv()

# OpenAI API Configuration
OPENAI_API_KEY = os.getenv("OPENAI_API_KEY")
if not OPENAI_API_KEY:
    logging.getLogger(__name__).warning(
        "OPENAI_API_KEY not configured - extraction capability will return no results"
    )

# Logging Configuration
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

# Pipeline-specific log level control
PIPELINE_LOG_LEVEL = os.getenv("PIPELINE_LOG_LEVEL", "").upper()

# Additional configuration settings
DEBUG_MODE = os.getenv("DEBUG_MODE", "false").lower() == "true"


def _resolve_pipeline_level(default=logging.INFO):
    """Resolve pipeline logging level from environment or defaults."""
    if PIPELINE_LOG_LEVEL in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
        return getattr(logging, PIPELINE_LOG_LEVEL, default)
    return logging.DEBUG if DEBUG_MODE else default


# Model Configuration
DEFAULT_MODEL = os.getenv("DEFAULT_MODEL", "gpt-4o-mini")
VISION_MODEL = os.getenv("VISION_MODEL", "gpt-4o")
CLASSIFICATION_MODEL = os.getenv("CLASSIFICATION_MODEL", DEFAULT_MODEL)
DEFAULT_MODEL_TEMP = float(os.getenv("DEFAULT_MODEL_TEMP", "0.1"))
DEFAULT_MODEL_MAX_TOKENS = int(os.getenv("DEFAULT_MODEL_MAX_TOKENS", "8192"))

# Per-call timeouts (seconds); each budget is independent
RESPONSES_TIMEOUT_SECONDS = int(os.getenv("RESPONSES_TIMEOUT_SECONDS", "200"))
TEXT_EXTRACTION_TIMEOUT_SECONDS = int(os.getenv("TEXT_EXTRACTION_TIMEOUT_SECONDS", "60"))
PAGE_RENDER_TIMEOUT_SECONDS = int(os.getenv("PAGE_RENDER_TIMEOUT_SECONDS", "45"))

# Ingestion
PDF_RENDER_DPI = int(os.getenv("PDF_RENDER_DPI", "220"))
MAX_RENDER_PAGES = int(os.getenv("MAX_RENDER_PAGES", "60"))

# Bounded worker pools for sheet-level sub-work
PARALLEL_EXTRACTION_LIMIT = int(os.getenv("PARALLEL_EXTRACTION_LIMIT", "5"))

# Text and context budgets sent to the model (characters)
CLASSIFICATION_TEXT_LIMIT = int(os.getenv("CLASSIFICATION_TEXT_LIMIT", "4000"))
EXTRACTION_TEXT_LIMIT = int(os.getenv("EXTRACTION_TEXT_LIMIT", "6000"))
WALL_CONTEXT_LIMIT = int(os.getenv("WALL_CONTEXT_LIMIT", "6000"))
CEILING_CONTEXT_LIMIT = int(os.getenv("CEILING_CONTEXT_LIMIT", "8000"))
ROOM_SCHEDULE_CONTEXT_LIMIT = int(os.getenv("ROOM_SCHEDULE_CONTEXT_LIMIT", "6000"))

# Trust validator constants
TRUST_REVIEW_THRESHOLD = float(os.getenv("TRUST_REVIEW_THRESHOLD", "0.6"))
AREA_MISMATCH_TOLERANCE = float(os.getenv("AREA_MISMATCH_TOLERANCE", "0.3"))
AREA_OVERSHOOT_RATIO = float(os.getenv("AREA_OVERSHOOT_RATIO", "2.0"))
AREA_KEYWORD_WINDOW = int(os.getenv("AREA_KEYWORD_WINDOW", "40"))
AREA_TOTAL_KEYWORDS = [
    keyword.strip().upper()
    for keyword in os.getenv(
        "AREA_TOTAL_KEYWORDS", "TOTAL,LEASABLE,OVERALL,GROSS,TENANT,SUITE,BUILDING"
    ).split(",")
    if keyword.strip()
]

# Cost intelligence overrides
ADMIN_MARKUPS_JSON = os.getenv("ADMIN_MARKUPS_JSON", "")
MATERIAL_ESCALATION_PCT = float(os.getenv("MATERIAL_ESCALATION_PCT", "0.03"))
LABOR_ESCALATION_PCT = float(os.getenv("LABOR_ESCALATION_PCT", "0.025"))

# Labor modeling overrides
LABOR_PRODUCTIVITY_JSON = os.getenv("LABOR_PRODUCTIVITY_JSON", "")
LABOR_SHIFTS = int(os.getenv("LABOR_SHIFTS", "1"))

# Default rule set used when a job names none
DEFAULT_RULE_SET_NAME = os.getenv("DEFAULT_RULE_SET_NAME", "Standard Commercial Rules")
DEFAULT_RULE_SET_VERSION = os.getenv("DEFAULT_RULE_SET_VERSION", "1.0")

# Storage
STORAGE_ROOT = os.getenv("STORAGE_ROOT", os.path.join(os.getcwd(), "takeoff_data"))

# Job queue
MAX_CONCURRENT_JOBS = int(os.getenv("MAX_CONCURRENT_JOBS", "1"))


def get_admin_markup_override(trade: str):
    """Per-trade markup override (ADMIN_MARKUP_<TRADE>), read at call time."""
    raw = os.getenv(f"ADMIN_MARKUP_{trade.upper()}")
    if raw is None or raw.strip() == "":
        return None
    try:
        return float(raw)
    except ValueError:
        logging.getLogger(__name__).warning(f"Ignoring non-numeric ADMIN_MARKUP_{trade.upper()}={raw!r}")
        return None


def get_all_settings() -> Dict[str, Any]:
    return {
        "OPENAI_API_KEY": "***REDACTED***" if OPENAI_API_KEY else None,
        "LOG_LEVEL": LOG_LEVEL,
        "DEBUG_MODE": DEBUG_MODE,
        "DEFAULT_MODEL": DEFAULT_MODEL,
        "VISION_MODEL": VISION_MODEL,
        "CLASSIFICATION_MODEL": CLASSIFICATION_MODEL,
        "DEFAULT_MODEL_TEMP": DEFAULT_MODEL_TEMP,
        "DEFAULT_MODEL_MAX_TOKENS": DEFAULT_MODEL_MAX_TOKENS,
        "RESPONSES_TIMEOUT_SECONDS": RESPONSES_TIMEOUT_SECONDS,
        "TEXT_EXTRACTION_TIMEOUT_SECONDS": TEXT_EXTRACTION_TIMEOUT_SECONDS,
        "PAGE_RENDER_TIMEOUT_SECONDS": PAGE_RENDER_TIMEOUT_SECONDS,
        "PDF_RENDER_DPI": PDF_RENDER_DPI,
        "MAX_RENDER_PAGES": MAX_RENDER_PAGES,
        "PARALLEL_EXTRACTION_LIMIT": PARALLEL_EXTRACTION_LIMIT,
        "TRUST_REVIEW_THRESHOLD": TRUST_REVIEW_THRESHOLD,
        "AREA_MISMATCH_TOLERANCE": AREA_MISMATCH_TOLERANCE,
        "AREA_OVERSHOOT_RATIO": AREA_OVERSHOOT_RATIO,
        "AREA_KEYWORD_WINDOW": AREA_KEYWORD_WINDOW,
        "AREA_TOTAL_KEYWORDS": AREA_TOTAL_KEYWORDS,
        "ADMIN_MARKUPS_JSON": ADMIN_MARKUPS_JSON or None,
        "MATERIAL_ESCALATION_PCT": MATERIAL_ESCALATION_PCT,
        "LABOR_ESCALATION_PCT": LABOR_ESCALATION_PCT,
        "LABOR_PRODUCTIVITY_JSON": LABOR_PRODUCTIVITY_JSON or None,
        "LABOR_SHIFTS": LABOR_SHIFTS,
        "DEFAULT_RULE_SET_NAME": DEFAULT_RULE_SET_NAME,
        "DEFAULT_RULE_SET_VERSION": DEFAULT_RULE_SET_VERSION,
        "STORAGE_ROOT": STORAGE_ROOT,
        "MAX_CONCURRENT_JOBS": MAX_CONCURRENT_JOBS,
    }


# Apply dynamic levels to pipeline modules
for name in [
    "services.ai_service",
    "services.extraction_capability",
    "processing.pipeline.orchestrator",
    "processing.job_processor",
]:
    logging.getLogger(name).setLevel(_resolve_pipeline_level())

# Keep httpx quiet
logging.getLogger("httpx").setLevel(logging.WARNING)
