"""
Per-sheet trust validation of model-proposed spaces.

Candidates are cross-checked against the sheet's own text: a space survives only
if its name is supported by its label and by the sheet text, and a parsed area is
kept only when its printed area string appears on the sheet and the area total
reconciles with any printed reference total. The sheet gets a reproducible
0-1 trust score built from fixed penalties.
"""
import logging
import re
from dataclasses import dataclass, field
from typing import List, Optional, Sequence, Tuple

from config.settings import (
    AREA_KEYWORD_WINDOW,
    AREA_MISMATCH_TOLERANCE,
    AREA_OVERSHOOT_RATIO,
    AREA_TOTAL_KEYWORDS,
    TRUST_REVIEW_THRESHOLD,
)
from schemas.extraction import SheetTrustReport, Space, SpaceCandidate

logger = logging.getLogger(__name__)

REFERENCE_AREA_PATTERN = re.compile(
    r"(\d{1,3}(?:,\d{3})+(?:\.\d+)?|\d+(?:\.\d+)?)\s*"
    r"(?:SQ\.?\s*FT\.?|SQFT|S\.F\.|SF)(?![A-Z0-9])",
    re.IGNORECASE,
)


@dataclass
class TrustConfig:
    review_threshold: float = TRUST_REVIEW_THRESHOLD
    mismatch_tolerance: float = AREA_MISMATCH_TOLERANCE
    overshoot_ratio: float = AREA_OVERSHOOT_RATIO
    keyword_window: int = AREA_KEYWORD_WINDOW
    keywords: List[str] = field(default_factory=lambda: list(AREA_TOTAL_KEYWORDS))
    no_survivors_penalty: float = 0.5
    label_drop_penalty: float = 0.08
    label_drop_cap: float = 0.4
    text_drop_penalty: float = 0.1
    text_drop_cap: float = 0.5
    untrusted_area_penalty: float = 0.15
    overshoot_penalty: float = 0.3
    mismatch_penalty: float = 0.2
    unverified_total_penalty: float = 0.15
    dense_sheet_spaces: int = 10
    dense_sheet_max_area: float = 1500.0
    dense_sheet_penalty: float = 0.2
    max_spaces: int = 25
    max_spaces_penalty: float = 0.2
    min_retention: float = 0.5
    low_retention_penalty: float = 0.2


def normalize_area_text(value: str) -> str:
    """Alphanumerics only, upper-cased."""
    return re.sub(r"[^A-Za-z0-9]", "", value or "").upper()


def find_reference_areas(text: str, keywords: Sequence[str], window: int) -> List[float]:
    """
    Area totals printed on the sheet.

    A number followed by an area unit counts when one of ``keywords`` appears
    within ``window`` characters on either side of the match.
    """
    references = []
    upper = (text or "").upper()
    for match in REFERENCE_AREA_PATTERN.finditer(upper):
        start = max(0, match.start() - window)
        end = min(len(upper), match.end() + window)
        surrounding = upper[start:end]
        if any(keyword in surrounding for keyword in keywords):
            try:
                references.append(float(match.group(1).replace(",", "")))
            except ValueError:
                continue
    return [value for value in references if value > 0]


class _Score:
    """Running score that never drops below zero."""

    def __init__(self):
        self.value = 1.0
        self.issues: List[str] = []

    def penalize(self, amount: float, issue: str) -> None:
        self.value = max(0.0, self.value - amount)
        if issue not in self.issues:
            self.issues.append(issue)


def validate_sheet_spaces(
    candidates: Sequence[SpaceCandidate],
    sheet_text: Optional[str],
    sheet_index: int,
    sheet_name: Optional[str] = None,
    config: Optional[TrustConfig] = None,
) -> Tuple[List[Space], SheetTrustReport]:
    """
    Filter and score one sheet's space candidates.

    Returns:
        Tuple of (surviving spaces annotated with the sheet score, trust report)
    """
    config = config or TrustConfig()
    has_text = bool(sheet_text and sheet_text.strip())
    text_lower = sheet_text.lower() if has_text else ""
    normalized_text = normalize_area_text(sheet_text) if has_text else ""
    score = _Score()

    # 1. label support
    labelled: List[SpaceCandidate] = []
    invalid_label_count = 0
    for candidate in candidates:
        name = (candidate.name or "").strip().lower()
        label = (candidate.raw_label_text or "").lower()
        if name and name in label:
            labelled.append(candidate)
        else:
            invalid_label_count += 1

    # 2. text support
    supported: List[SpaceCandidate] = []
    unsupported_name_count = 0
    for candidate in labelled:
        if has_text and candidate.name.strip().lower() not in text_lower:
            unsupported_name_count += 1
            continue
        supported.append(candidate)

    # 3. area support
    untrusted_area_count = 0
    areas: List[Optional[float]] = []
    for candidate in supported:
        area = candidate.approx_area_sqft
        if area is not None:
            raw = normalize_area_text(candidate.raw_area_string or "")
            if not candidate.raw_area_string:
                area = None
            elif not raw or not has_text or raw not in normalized_text:
                untrusted_area_count += 1
                area = None
        areas.append(area)

    # 4. area-sum reconciliation
    trusted_sum = sum(area for area in areas if area is not None)
    references = find_reference_areas(sheet_text or "", config.keywords, config.keyword_window)
    reference = min(references, key=lambda ref: abs(ref - trusted_sum)) if references else None
    invalidate = False

    # 5. penalties
    survivors = len(supported)
    original = len(candidates)
    if survivors == 0:
        score.penalize(config.no_survivors_penalty, "no_spaces")
    if invalid_label_count:
        score.penalize(min(config.label_drop_cap, invalid_label_count * config.label_drop_penalty), "invalid_label")
    if unsupported_name_count:
        score.penalize(min(config.text_drop_cap, unsupported_name_count * config.text_drop_penalty), "unsupported_name")
    if untrusted_area_count:
        score.penalize(config.untrusted_area_penalty, "untrusted_area")

    if reference is not None and trusted_sum > 0:
        if abs(trusted_sum - reference) > config.mismatch_tolerance * reference:
            invalidate = True
            if trusted_sum / reference > config.overshoot_ratio:
                score.penalize(config.overshoot_penalty, "area_sum_over_2x")
            else:
                score.penalize(config.mismatch_penalty, "area_sum_mismatch")
    elif trusted_sum > 0:
        score.penalize(config.unverified_total_penalty, "area_total_unverified")

    if (
        survivors > config.dense_sheet_spaces
        and reference is not None
        and reference <= config.dense_sheet_max_area
    ):
        score.penalize(config.dense_sheet_penalty, "dense_small_sheet")
    if survivors > config.max_spaces:
        score.penalize(config.max_spaces_penalty, "too_many_spaces")
    if original > 0 and survivors / original < config.min_retention:
        score.penalize(config.low_retention_penalty, "low_retention")

    trust_score = round(score.value, 2)
    needs_review = trust_score < config.review_threshold

    spaces = [
        Space(
            **candidate.model_dump(exclude={"approx_area_sqft", "sheet_index", "sheet_name"}),
            approx_area_sqft=None if invalidate else area,
            sheet_index=sheet_index,
            sheet_name=sheet_name,
            trust_score=trust_score,
            issues=list(score.issues),
            needs_review=needs_review,
        )
        for candidate, area in zip(supported, areas)
    ]

    report = SheetTrustReport(
        sheet_index=sheet_index,
        sheet_name=sheet_name,
        trust_score=trust_score,
        needs_review=needs_review,
        original_count=original,
        retained_count=survivors,
        invalid_label_count=invalid_label_count,
        unsupported_name_count=unsupported_name_count,
        untrusted_area_count=untrusted_area_count,
        computed_area_sqft=round(trusted_sum, 2) if trusted_sum else None,
        reference_area_sqft=reference,
        areas_invalidated=invalidate,
        issues=list(score.issues),
    )

    if needs_review:
        logger.warning(
            f"Sheet {sheet_name or sheet_index} flagged for review (trust {trust_score}): {', '.join(score.issues)}",
            extra={"sheet_index": sheet_index},
        )
    return spaces, report
