"""
PDF ingestion collaborator built on PyMuPDF.

Turns a drawing set into Sheet records: per-page text, a PNG raster, and a few
guesses read from the text (sheet number, discipline, scale). Text extraction
and page rendering each run in an executor under their own timeout.
"""
import os
import re
import asyncio
import logging
from typing import Callable, List, Optional, Tuple

import pymupdf as fitz

from config.settings import (
    MAX_RENDER_PAGES,
    PAGE_RENDER_TIMEOUT_SECONDS,
    PDF_RENDER_DPI,
    TEXT_EXTRACTION_TIMEOUT_SECONDS,
)
from schemas.sheets import IngestMetadata, IngestResult, Sheet
from utils.exceptions import ExtractionError
from utils.logging_utils import suppress_noisy_warnings
from utils.performance import time_operation

logger = logging.getLogger(__name__)

SHEET_NUMBER_PATTERN = re.compile(r"\b((?:FP|[ACEGIMPSLT])-?\d{1,3}(?:\.\d{1,2})?[A-Z]?)\b")
SCALE_PATTERN = re.compile(r"SCALE\s*:?\s*([^\n]{3,30})", re.IGNORECASE)

# Sheet number prefix -> discipline
DISCIPLINE_PREFIXES = {
    "FP": "Fire Protection",
    "A": "Architectural",
    "I": "Interiors",
    "S": "Structural",
    "M": "Mechanical",
    "E": "Electrical",
    "P": "Plumbing",
    "C": "Civil",
    "L": "Landscape",
    "G": "General",
    "T": "Technology",
}

# Fragments of PDF-library log lines that say nothing about our data
NOISY_PDF_WARNINGS = (
    "MuPDF error",
    "MuPDF warning",
    "Unknown font",
    "cannot find ExtGState",
    "invalid marked content",
)


def guess_sheet_number(text: str) -> Optional[str]:
    """Most frequent sheet-number-like token, which is usually the title block's."""
    matches = SHEET_NUMBER_PATTERN.findall(text or "")
    if not matches:
        return None
    return max(set(matches), key=matches.count)


def guess_discipline(sheet_number: Optional[str]) -> Optional[str]:
    if not sheet_number:
        return None
    upper = sheet_number.upper()
    if upper.startswith("FP"):
        return DISCIPLINE_PREFIXES["FP"]
    return DISCIPLINE_PREFIXES.get(upper[0])


def guess_scale(text: str) -> Optional[str]:
    match = SCALE_PATTERN.search(text or "")
    return match.group(1).strip() if match else None


def _page_count_sync(file_path: str) -> int:
    with fitz.open(file_path) as doc:
        return len(doc)


def _page_text_sync(file_path: str, page_num: int) -> str:
    """
    Extract a page's text from its text blocks.
    This method runs synchronously (typically in an executor).
    """
    with fitz.open(file_path) as doc:
        page = doc[page_num]
        blocks = page.get_text("blocks")
        return "\n".join(block[4] for block in blocks if block[6] == 0)


def _render_page_sync(file_path: str, page_num: int, dpi: int) -> Tuple[bytes, int, int]:
    """
    Render one page to PNG bytes.
    This method runs synchronously (typically in an executor).
    """
    with fitz.open(file_path) as doc:
        page = doc[page_num]
        pixmap = page.get_pixmap(matrix=fitz.Matrix(dpi / 72, dpi / 72))
        return pixmap.tobytes("png"), pixmap.width, pixmap.height


class PdfIngestor:
    """
    Ingestion collaborator: ``ingest(file_id) -> IngestResult``.

    ``resolve_path`` maps a file id to a local path; by default the id is the path.
    """

    def __init__(
        self,
        resolve_path: Optional[Callable[[str], str]] = None,
        dpi: int = PDF_RENDER_DPI,
        max_render_pages: int = MAX_RENDER_PAGES,
        text_timeout: float = TEXT_EXTRACTION_TIMEOUT_SECONDS,
        render_timeout: float = PAGE_RENDER_TIMEOUT_SECONDS,
    ):
        self.resolve_path = resolve_path or (lambda file_id: file_id)
        self.dpi = dpi
        self.max_render_pages = max_render_pages
        self.text_timeout = text_timeout
        self.render_timeout = render_timeout

    async def _page_text(self, file_path: str, page_num: int) -> str:
        loop = asyncio.get_running_loop()
        try:
            return await asyncio.wait_for(
                loop.run_in_executor(None, _page_text_sync, file_path, page_num),
                timeout=self.text_timeout,
            )
        except asyncio.TimeoutError:
            logger.warning(f"Text extraction timed out after {self.text_timeout}s on page {page_num + 1}")
            return ""
        except (RuntimeError, ValueError) as e:
            logger.warning(f"Text extraction failed on page {page_num + 1}: {str(e)}")
            return ""

    async def _render(self, file_path: str, page_num: int) -> Optional[Tuple[bytes, int, int]]:
        loop = asyncio.get_running_loop()
        try:
            return await asyncio.wait_for(
                loop.run_in_executor(None, _render_page_sync, file_path, page_num, self.dpi),
                timeout=self.render_timeout,
            )
        except asyncio.TimeoutError:
            logger.warning(f"Page render timed out after {self.render_timeout}s on page {page_num + 1}")
            return None
        except (RuntimeError, ValueError) as e:
            logger.warning(f"Page render failed on page {page_num + 1}: {str(e)}")
            return None

    async def _ingest_page(self, file_path: str, page_num: int) -> Sheet:
        text = await self._page_text(file_path, page_num)
        rendered = await self._render(file_path, page_num) if page_num < self.max_render_pages else None
        sheet_number = guess_sheet_number(text)
        raster, width, height = rendered if rendered else (None, None, None)
        return Sheet(
            index=page_num,
            name=sheet_number,
            sheet_id_guess=sheet_number,
            discipline=guess_discipline(sheet_number),
            scale=guess_scale(text),
            units="imperial",
            width_px=width,
            height_px=height,
            render_dpi=self.dpi if rendered else None,
            text=text,
            raster=raster,
        )

    @time_operation("ingestion")
    async def ingest(self, file_id: str) -> IngestResult:
        """
        Read every page of the drawing set.

        Raises:
            ExtractionError: the file is missing or cannot be opened as a PDF
        """
        file_path = self.resolve_path(file_id)
        if not os.path.exists(file_path):
            raise ExtractionError(f"File not found: {file_path}")

        loop = asyncio.get_running_loop()
        with suppress_noisy_warnings(["pymupdf", "fitz", __name__], NOISY_PDF_WARNINGS) as noise:
            try:
                page_count = await loop.run_in_executor(None, _page_count_sync, file_path)
            except (RuntimeError, ValueError) as e:
                raise ExtractionError(f"Cannot open {os.path.basename(file_path)}: {str(e)}")

            sheets: List[Sheet] = []
            for page_num in range(page_count):
                sheets.append(await self._ingest_page(file_path, page_num))

        if noise.suppressed:
            logger.debug(f"Suppressed {noise.suppressed} PDF library warnings during ingestion")
        if page_count > self.max_render_pages:
            logger.warning(
                f"Rendered only the first {self.max_render_pages} of {page_count} pages",
                extra={"file_id": file_id},
            )

        disciplines = sorted({sheet.discipline for sheet in sheets if sheet.discipline})
        logger.info(f"Ingested {page_count} pages from {os.path.basename(file_path)}")
        return IngestResult(
            file_id=file_id,
            sheets=sheets,
            metadata=IngestMetadata(total_pages=page_count, detected_disciplines=disciplines, file_type="pdf"),
        )
