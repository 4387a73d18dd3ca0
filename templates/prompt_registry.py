"""
Registry system for managing prompt templates.
Provides a singleton registry that serves as the single source of truth for all
extraction prompts.
"""
import importlib
from typing import Dict, Optional, List
import logging

logger = logging.getLogger(__name__)

# Prompt keys every extraction operation depends on
REQUIRED_PROMPTS = [
    "CLASSIFY_SHEET",
    "EXTRACT_SPACES",
    "EXTRACT_PARTITION_TYPES",
    "EXTRACT_WALL_RUNS",
    "EXTRACT_CEILING_HEIGHTS",
    "EXTRACT_SCALES",
    "EXTRACT_ROOM_SCHEDULE",
    "MAP_ROOMS",
    "EXTRACT_FINISHES",
    "ANALYZE_PLAN",
]

_PROMPT_MODULES = [
    "templates.prompts.sheets",
    "templates.prompts.spaces",
    "templates.prompts.walls",
]


class PromptRegistry:
    """Single source of truth for all prompt templates."""

    _instance = None
    _prompts: Dict[str, str] = {}

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super(PromptRegistry, cls).__new__(cls)
            cls._instance._prompts = {}
        return cls._instance

    def register(self, key: str, prompt_text: str, aliases: Optional[List[str]] = None):
        """Register a prompt template with optional aliases."""
        key = key.upper()
        # Ensure prompt contains 'json' for OpenAI API requirement
        prompt_text = self._ensure_json_keyword(prompt_text)
        self._prompts[key] = prompt_text

        if aliases:
            for alias in aliases:
                self._prompts[alias.upper()] = prompt_text

        return self  # Enable method chaining

    def get(self, key: str) -> str:
        """Return the prompt registered under ``key``."""
        prompt = self._prompts.get(key.upper())
        if prompt is None:
            raise KeyError(f"No prompt registered for {key!r}")
        return prompt

    def _ensure_json_keyword(self, prompt_text: str) -> str:
        """
        Ensure the prompt contains the word 'json' to satisfy OpenAI API requirements
        when using response_format={"type": "json_object"}.
        """
        if not prompt_text:
            return "Please structure your response as valid JSON."

        if "json" not in prompt_text.lower():
            prompt_text += (
                "\n\nIMPORTANT: Format your entire response as a valid JSON object."
            )

        return prompt_text

    def keys(self) -> List[str]:
        """Return all registered prompt keys."""
        return list(self._prompts.keys())

    def contains(self, key: str) -> bool:
        """Check if a prompt key exists."""
        return key.upper() in self._prompts


_registry = PromptRegistry()
_loaded = False


def get_registry() -> PromptRegistry:
    """Get the global prompt registry instance, loading the built-in prompts once."""
    global _loaded
    if not _loaded:
        _loaded = True
        for module_name in _PROMPT_MODULES:
            importlib.import_module(module_name)
    return _registry


def verify_registry() -> bool:
    """Check that every required prompt is registered."""
    registry = get_registry()
    missing = [key for key in REQUIRED_PROMPTS if not registry.contains(key)]
    if missing:
        logger.error(f"Prompt registry is missing: {', '.join(missing)}")
        return False
    return True
