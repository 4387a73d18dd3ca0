"""
Tests for the model-backed extraction capability, the JSON request helper,
the prompt registry and the ingestion text guesses.
"""
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from schemas.sheets import Sheet, SheetCategory
from services.ai_service import _build_user_content, _strip_json_fences, request_json_object
from services.extraction_capability import ExtractionCapability, _context_block
from services.ingest_service import guess_discipline, guess_scale, guess_sheet_number
from templates.prompt_registry import REQUIRED_PROMPTS, get_registry, verify_registry
from utils.exceptions import AIProcessingError, JSONValidationError

REQUEST = "services.extraction_capability.request_json_object"


def plan_sheet(raster=b"png"):
    return Sheet(index=3, name="A1.1", text="FLOOR PLAN\nSALES 101", raster=raster)


def fake_client(content):
    response = SimpleNamespace(
        choices=[SimpleNamespace(message=SimpleNamespace(content=content))],
        usage=SimpleNamespace(prompt_tokens=10, completion_tokens=5),
    )
    client = MagicMock()
    client.chat.completions.create = AsyncMock(return_value=response)
    return client


class TestExtractionCapability:
    """Test result validation and no-result handling."""

    @pytest.mark.asyncio
    async def test_no_client_means_no_result(self):
        capability = ExtractionCapability(None)
        with patch(REQUEST, new=AsyncMock()) as request:
            assert capability.available is False
            assert await capability.classify(plan_sheet()) is None
            assert await capability.extract_scales(plan_sheet()) is None
            request.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_classify(self):
        capability = ExtractionCapability(MagicMock())
        reply = {"category": "Floor", "discipline": "Architectural", "confidence": 1.4, "is_primary_plan": True}
        with patch(REQUEST, new=AsyncMock(return_value=reply)) as request:
            classification = await capability.classify(plan_sheet(), job_id="job-1")
        assert classification.category == SheetCategory.FLOOR
        assert classification.discipline == ["Architectural"]
        assert classification.confidence == 1.0
        assert request.await_args.kwargs["image_bytes"] == b"png"
        assert request.await_args.kwargs["job_id"] == "job-1"

    @pytest.mark.asyncio
    async def test_entries_are_stamped_with_sheet(self):
        capability = ExtractionCapability(MagicMock())
        reply = {"scales": [{"viewport_label": "Floor Plan", "scale_note": "1/8\" = 1'-0\""}]}
        with patch(REQUEST, new=AsyncMock(return_value=reply)):
            scales = await capability.extract_scales(plan_sheet())
        assert scales[0].sheet_index == 3
        assert scales[0].sheet_name == "A1.1"

    @pytest.mark.asyncio
    async def test_schema_mismatch_means_no_result(self):
        capability = ExtractionCapability(MagicMock())
        with patch(REQUEST, new=AsyncMock(return_value={"spaces": "not a list"})):
            assert await capability.extract_spaces(plan_sheet()) is None

    @pytest.mark.asyncio
    async def test_model_failure_means_no_result(self):
        capability = ExtractionCapability(MagicMock())
        with patch(REQUEST, new=AsyncMock(side_effect=AIProcessingError("Timeout after 5s"))):
            assert await capability.extract_room_schedule(plan_sheet()) is None
        with patch(REQUEST, new=AsyncMock(side_effect=JSONValidationError("bad"))):
            assert await capability.extract_finishes(plan_sheet()) is None

    @pytest.mark.asyncio
    async def test_plan_analysis(self):
        capability = ExtractionCapability(MagicMock())
        reply = {"walls": [{"partition_type": "PT-1", "length": 42}], "sheet_index": 99}
        with patch(REQUEST, new=AsyncMock(return_value=reply)) as request:
            result = await capability.analyze_plan_image(plan_sheet(), disciplines=["A"], targets=["walls"])
        assert result.sheet_index == 3
        assert result.sheet_name == "A1.1"
        assert result.walls[0].length == 42
        assert "Report these element types: walls" in request.await_args.args[1]

    @pytest.mark.asyncio
    async def test_dropped_raster_skips_image_operations(self):
        sheet = plan_sheet()
        sheet.drop_raster()
        capability = ExtractionCapability(MagicMock())
        with patch(REQUEST, new=AsyncMock()) as request:
            assert await capability.analyze_plan_image(sheet) is None
            assert await capability.extract_wall_runs(sheet, [], []) is None
            assert await capability.map_rooms(sheet, []) is None
            request.assert_not_awaited()

    def test_context_block_is_truncated(self):
        sheets = [Sheet(index=n, name=f"A{n}") for n in range(20)]
        block = _context_block("Known sheets", sheets, 50)
        assert block.startswith("Known sheets:\n")
        assert block.endswith("...(truncated)")
        assert _context_block("Known sheets", [], 50) is None


class TestRequestJsonObject:
    """Test JSON-mode requests against a stub client."""

    @pytest.mark.asyncio
    async def test_parses_fenced_json(self):
        client = fake_client('```json\n{"scales": []}\n```')
        assert await request_json_object(client, "text", "gpt-test", "Return json") == {"scales": []}
        params = client.chat.completions.create.await_args.kwargs
        assert params["response_format"] == {"type": "json_object"}
        assert params["messages"][1]["content"] == "text"

    @pytest.mark.asyncio
    async def test_rejects_non_object(self):
        with pytest.raises(JSONValidationError):
            await request_json_object(fake_client("[1, 2]"), "text", "gpt-test", "Return json")

    @pytest.mark.asyncio
    async def test_rejects_invalid_json(self):
        with pytest.raises(JSONValidationError):
            await request_json_object(fake_client("{oops"), "text", "gpt-test", "Return json")

    def test_image_content(self):
        content = _build_user_content("describe", b"\x89PNG")
        assert content[0] == {"type": "text", "text": "describe"}
        assert content[1]["image_url"]["url"].startswith("data:image/png;base64,")
        assert _build_user_content("describe", None) == "describe"

    def test_strip_fences(self):
        assert _strip_json_fences('```\n{"a": 1}\n```') == '{"a": 1}'
        assert _strip_json_fences('{"a": 1}') == '{"a": 1}'


class TestPromptRegistry:
    """Test the built-in prompts."""

    def test_required_prompts_registered(self):
        assert verify_registry() is True
        registry = get_registry()
        for key in REQUIRED_PROMPTS:
            assert "json" in registry.get(key).lower()

    def test_unknown_prompt(self):
        with pytest.raises(KeyError):
            get_registry().get("NOT_A_PROMPT")


class TestIngestGuesses:
    """Test sheet metadata read from page text."""

    def test_sheet_number(self):
        text = "SEE A5.1 FOR DETAILS\nA1.1 FLOOR PLAN\nSHEET A1.1"
        assert guess_sheet_number(text) == "A1.1"
        assert guess_sheet_number("no sheet here") is None

    def test_discipline(self):
        assert guess_discipline("FP-101") == "Fire Protection"
        assert guess_discipline("M2.0") == "Mechanical"
        assert guess_discipline(None) is None

    def test_scale(self):
        assert guess_scale("FLOOR PLAN\nSCALE: 1/8\" = 1'-0\"\nNORTH") == "1/8\" = 1'-0\""
        assert guess_scale("FLOOR PLAN") is None
