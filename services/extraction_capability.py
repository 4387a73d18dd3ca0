"""
OpenAI-backed extraction capability.

Each operation sends one sheet (text and, where useful, its raster) with a
registered prompt, then validates the reply against a pydantic response model.
Any failure (no client, API error, timeout, invalid JSON, schema mismatch) is
reported as no result: the operation returns None and logs why.
"""
import json
import logging
from typing import Any, List, Optional, Sequence, Type, TypeVar

from openai import AsyncOpenAI
from pydantic import BaseModel, ValidationError

from config.settings import (
    CEILING_CONTEXT_LIMIT,
    CLASSIFICATION_MODEL,
    CLASSIFICATION_TEXT_LIMIT,
    DEFAULT_MODEL,
    EXTRACTION_TEXT_LIMIT,
    RESPONSES_TIMEOUT_SECONDS,
    ROOM_SCHEDULE_CONTEXT_LIMIT,
    VISION_MODEL,
    WALL_CONTEXT_LIMIT,
)
from schemas.extraction import (
    CeilingHeight,
    CeilingHeightResponse,
    ClassificationResponse,
    PartitionType,
    PartitionTypeResponse,
    RoomScheduleEntry,
    RoomScheduleResponse,
    RoomSpatialMapping,
    RoomSpatialMappingResponse,
    ScaleAnnotation,
    ScaleResponse,
    Space,
    SpaceCandidate,
    SpaceExtractionResponse,
    SpaceFinish,
    SpaceFinishResponse,
    VisionResult,
    WallRunResponse,
    WallSegment,
)
from schemas.sheets import Sheet, SheetClassification
from services.ai_service import request_json_object
from templates.prompt_registry import get_registry
from utils.exceptions import AIProcessingError, JSONValidationError

logger = logging.getLogger(__name__)

ResponseT = TypeVar("ResponseT", bound=BaseModel)


def _sheet_prompt(sheet: Sheet, text_limit: int, context: Optional[str] = None) -> str:
    parts = [f"Sheet: {sheet.label} (page {sheet.index + 1})"]
    if sheet.scale:
        parts.append(f"Scale note: {sheet.scale}")
    if context:
        parts.append(context)
    parts.append("Sheet text:\n" + (sheet.text[:text_limit] if sheet.has_text() else "(no text layer)"))
    return "\n\n".join(parts)


def _context_block(title: str, items: Sequence[BaseModel], limit: int) -> Optional[str]:
    """JSON dump of prior-stage results, cut to a character budget."""
    if not items:
        return None
    dumped = json.dumps([item.model_dump(mode="json", exclude_none=True) for item in items])
    if len(dumped) > limit:
        dumped = dumped[:limit] + "...(truncated)"
    return f"{title}:\n{dumped}"


def _stamp(entries: List[Any], sheet: Sheet) -> List[Any]:
    return [entry.model_copy(update={"sheet_index": sheet.index, "sheet_name": sheet.label}) for entry in entries]


class ExtractionCapability:
    """Plan-understanding operations used by the pipeline stages."""

    def __init__(
        self,
        client: Optional[AsyncOpenAI],
        model: str = DEFAULT_MODEL,
        vision_model: str = VISION_MODEL,
        classification_model: str = CLASSIFICATION_MODEL,
        timeout: float = RESPONSES_TIMEOUT_SECONDS,
    ):
        self.client = client
        self.model = model
        self.vision_model = vision_model
        self.classification_model = classification_model
        self.timeout = timeout
        self.prompts = get_registry()

    @property
    def available(self) -> bool:
        return self.client is not None

    async def _request(
        self,
        operation: str,
        prompt_key: str,
        response_model: Type[ResponseT],
        input_text: str,
        image_bytes: Optional[bytes] = None,
        model: Optional[str] = None,
        job_id: Optional[str] = None,
    ) -> Optional[ResponseT]:
        if self.client is None:
            logger.debug(f"{operation}: no model client configured, returning no result")
            return None
        try:
            data = await request_json_object(
                self.client,
                input_text,
                model or self.model,
                self.prompts.get(prompt_key),
                image_bytes=image_bytes,
                operation=operation,
                job_id=job_id,
                timeout=self.timeout,
            )
        except (AIProcessingError, JSONValidationError) as e:
            logger.warning(f"{operation}: no result ({str(e)})", extra={"job_id": job_id})
            return None
        try:
            return response_model.model_validate(data)
        except ValidationError as e:
            logger.warning(
                f"{operation}: response failed schema validation ({e.error_count()} errors)",
                extra={"job_id": job_id},
            )
            return None

    async def classify(self, sheet: Sheet, job_id: Optional[str] = None) -> Optional[SheetClassification]:
        result = await self._request(
            "classify",
            "CLASSIFY_SHEET",
            ClassificationResponse,
            _sheet_prompt(sheet, CLASSIFICATION_TEXT_LIMIT),
            image_bytes=sheet.image_bytes(),
            model=self.classification_model,
            job_id=job_id,
        )
        if result is None:
            return None
        return SheetClassification.model_validate(result.model_dump())

    async def extract_spaces(self, sheet: Sheet, job_id: Optional[str] = None) -> Optional[List[SpaceCandidate]]:
        result = await self._request(
            "extract_spaces",
            "EXTRACT_SPACES",
            SpaceExtractionResponse,
            _sheet_prompt(sheet, EXTRACTION_TEXT_LIMIT),
            image_bytes=sheet.image_bytes(),
            model=self.vision_model,
            job_id=job_id,
        )
        return _stamp(result.spaces, sheet) if result else None

    async def extract_room_schedule(
        self, sheet: Sheet, job_id: Optional[str] = None
    ) -> Optional[List[RoomScheduleEntry]]:
        result = await self._request(
            "extract_room_schedule",
            "EXTRACT_ROOM_SCHEDULE",
            RoomScheduleResponse,
            _sheet_prompt(sheet, EXTRACTION_TEXT_LIMIT),
            job_id=job_id,
        )
        return _stamp(result.rows, sheet) if result else None

    async def map_rooms(
        self,
        sheet: Sheet,
        schedule: Sequence[RoomScheduleEntry],
        job_id: Optional[str] = None,
    ) -> Optional[List[RoomSpatialMapping]]:
        image = sheet.image_bytes()
        if image is None:
            return None
        context = _context_block("Known room schedule", schedule, ROOM_SCHEDULE_CONTEXT_LIMIT)
        result = await self._request(
            "map_rooms",
            "MAP_ROOMS",
            RoomSpatialMappingResponse,
            _sheet_prompt(sheet, EXTRACTION_TEXT_LIMIT, context),
            image_bytes=image,
            model=self.vision_model,
            job_id=job_id,
        )
        return _stamp(result.rooms, sheet) if result else None

    async def extract_finishes(self, sheet: Sheet, job_id: Optional[str] = None) -> Optional[List[SpaceFinish]]:
        result = await self._request(
            "extract_finishes",
            "EXTRACT_FINISHES",
            SpaceFinishResponse,
            _sheet_prompt(sheet, EXTRACTION_TEXT_LIMIT),
            image_bytes=sheet.image_bytes(),
            job_id=job_id,
        )
        return _stamp(result.entries, sheet) if result else None

    async def extract_partition_types(
        self, sheet: Sheet, job_id: Optional[str] = None
    ) -> Optional[List[PartitionType]]:
        result = await self._request(
            "extract_partition_types",
            "EXTRACT_PARTITION_TYPES",
            PartitionTypeResponse,
            _sheet_prompt(sheet, EXTRACTION_TEXT_LIMIT),
            image_bytes=sheet.image_bytes(),
            job_id=job_id,
        )
        return _stamp(result.partition_types, sheet) if result else None

    async def extract_wall_runs(
        self,
        sheet: Sheet,
        partition_types: Sequence[PartitionType],
        spaces: Sequence[Space],
        job_id: Optional[str] = None,
    ) -> Optional[List[WallSegment]]:
        image = sheet.image_bytes()
        if image is None:
            return None
        context = "\n\n".join(
            block
            for block in (
                _context_block("Known partition types", partition_types, WALL_CONTEXT_LIMIT // 2),
                _context_block("Known spaces", spaces, WALL_CONTEXT_LIMIT // 2),
            )
            if block
        )
        result = await self._request(
            "extract_wall_runs",
            "EXTRACT_WALL_RUNS",
            WallRunResponse,
            _sheet_prompt(sheet, EXTRACTION_TEXT_LIMIT, context or None),
            image_bytes=image,
            model=self.vision_model,
            job_id=job_id,
        )
        return _stamp(result.segments, sheet) if result else None

    async def extract_ceiling_heights(
        self,
        sheet: Sheet,
        spaces: Sequence[Space],
        mappings: Sequence[RoomSpatialMapping] = (),
        job_id: Optional[str] = None,
    ) -> Optional[List[CeilingHeight]]:
        image = sheet.image_bytes()
        if image is None:
            return None
        context = "\n\n".join(
            block
            for block in (
                _context_block("Known spaces", spaces, CEILING_CONTEXT_LIMIT // 2),
                _context_block("Known room locations", mappings, CEILING_CONTEXT_LIMIT // 2),
            )
            if block
        )
        result = await self._request(
            "extract_ceiling_heights",
            "EXTRACT_CEILING_HEIGHTS",
            CeilingHeightResponse,
            _sheet_prompt(sheet, EXTRACTION_TEXT_LIMIT, context or None),
            image_bytes=image,
            model=self.vision_model,
            job_id=job_id,
        )
        return _stamp(result.entries, sheet) if result else None

    async def extract_scales(self, sheet: Sheet, job_id: Optional[str] = None) -> Optional[List[ScaleAnnotation]]:
        result = await self._request(
            "extract_scales",
            "EXTRACT_SCALES",
            ScaleResponse,
            _sheet_prompt(sheet, EXTRACTION_TEXT_LIMIT),
            job_id=job_id,
        )
        return _stamp(result.scales, sheet) if result else None

    async def analyze_plan_image(
        self,
        sheet: Sheet,
        disciplines: Sequence[str] = (),
        targets: Sequence[str] = (),
        job_id: Optional[str] = None,
    ) -> Optional[VisionResult]:
        image = sheet.image_bytes()
        if image is None:
            logger.info(f"No image available for {sheet.label}; skipping plan analysis")
            return None
        context = (
            f"Disciplines of interest: {', '.join(disciplines) or 'all'}\n"
            f"Report these element types: {', '.join(targets) or 'all'}"
        )
        result = await self._request(
            "analyze_plan_image",
            "ANALYZE_PLAN",
            VisionResult,
            _sheet_prompt(sheet, EXTRACTION_TEXT_LIMIT, context),
            image_bytes=image,
            model=self.vision_model,
            job_id=job_id,
        )
        if result is None:
            return None
        return result.model_copy(update={"sheet_index": sheet.index, "sheet_name": sheet.label})
