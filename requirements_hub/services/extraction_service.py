"""
Requirement Extraction — turns raw spreadsheet rows into requirement drafts.

Heuristic and template-specific: a cell is a requirement when it carries a
modal verb (ska/skall/bör/shall/should/must) and looks like one complete
statement. The category of a requirement is the nearest preceding heading
row in the same sheet.

Pure: no I/O, no LLM. Rows that fail the heuristics are skipped silently.
"""

from __future__ import annotations

import logging
import re
from typing import Any, Iterable, Optional, Sequence

from requirements_hub.models.enums import RequirementType
from requirements_hub.models.schemas import RequirementDraft, SheetRow
from requirements_hub.rules.extraction_rules import ExtractionRules

logger = logging.getLogger(__name__)

# ── Header-like tokens ───────────────────────────────────

_LETTER_HEADER_RE = re.compile(r"^[A-Za-zÅÄÖåäö]\d?\.$")        # "A." / "B1."
_LIST_MARKER_RE = re.compile(r"^(?:\d+(?:\.\d+)*[.)]?|[-*•–])$")  # "1.", "2.3", "4)", "-"
_CELL_REFERENCE_RE = re.compile(r"^\$?[A-Z]{1,3}\$?\d{1,7}$")      # "B12", "$C$4"

# ── Category candidates ──────────────────────────────────

_SECTION_NUMBER_RE = re.compile(r"^[\d\s.,:]+$")                   # "3.1", "8.20"
_BARE_NUMBER_RE = re.compile(r"^\d+(?:[.,]\d+)?$")
_SINGLE_LETTER_HEADER_RE = re.compile(r"^[A-Za-zÅÄÖåäö]\d?\.?$")
_HAS_LETTER_RE = re.compile(r"[^\W\d_]")


def _cell_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    return str(value).strip()


def _keyword_pattern(words: Sequence[str]) -> re.Pattern[str]:
    alternatives = "|".join(re.escape(w) for w in sorted(words, key=len, reverse=True))
    return re.compile(rf"\b(?:{alternatives})\b", re.IGNORECASE)


class RequirementExtractor:
    """Extract RequirementDrafts from SheetRows using ExtractionRules."""

    def __init__(self, rules: ExtractionRules | None = None):
        self.rules = rules or ExtractionRules()
        self._modal_re = _keyword_pattern(self.rules.modal_keywords)
        self._must_re = _keyword_pattern(self.rules.must_keywords)
        self._should_re = _keyword_pattern(self.rules.should_keywords)
        self._deny_phrases = [p.lower() for p in self.rules.deny_phrases]

    # ── Public API ───────────────────────────────────────

    def extract(self, rows: Iterable[SheetRow]) -> list[RequirementDraft]:
        rows = list(rows)
        drafts: list[RequirementDraft] = []
        skipped = 0
        tracker = _HeadingTracker(self)

        for row in rows:
            text = self.find_requirement_cell(row.cells)
            if text is None:
                if self.has_modal_keyword(row.cells):
                    skipped += 1
                    logger.debug(
                        f"[EXTRACT] Skipped {row.sheet_name}#{row.sheet_row_index}: "
                        f"no cell passed the requirement heuristics"
                    )
                else:
                    tracker.observe(row)
                continue

            preceding = tracker.current(row)
            drafts.append(RequirementDraft(
                text=text,
                requirement_type=self.classify_type(text),
                categories=[row.sheet_name, preceding],
                sheet_name=row.sheet_name,
                sheet_order=row.sheet_order,
                sheet_row_index=row.sheet_row_index,
            ))

        must = sum(1 for d in drafts if d.requirement_type == RequirementType.MUST)
        should = sum(1 for d in drafts if d.requirement_type == RequirementType.SHOULD)
        logger.info(
            f"[EXTRACT] {len(drafts)} requirements from {len(rows)} rows "
            f"(Skall: {must}, Bör: {should}, skipped keyword rows: {skipped})"
        )
        return drafts

    # ── Detection ────────────────────────────────────────

    def has_modal_keyword(self, cells: Sequence[Any]) -> bool:
        """Keyword test used to tell requirement rows from heading rows."""
        return any(self._modal_re.search(_cell_text(c)) for c in cells)

    def find_requirement_cell(self, cells: Sequence[Any]) -> Optional[str]:
        """Leftmost cell that qualifies as a requirement statement."""
        for cell in cells:
            text = _cell_text(cell)
            if text and self._modal_re.search(text) and self.qualifies(text):
                return text
        return None

    def qualifies(self, text: str) -> bool:
        r = self.rules
        if not (r.min_length <= len(text) <= r.max_length):
            return False
        if not (r.min_words <= len(text.split()) <= r.max_words):
            return False
        if text.count(".") > r.max_sentences:
            return False
        if not text.rstrip().endswith("."):
            return False
        lowered = text.lower()
        if any(phrase in lowered for phrase in self._deny_phrases):
            return False
        if self.is_header_like(text):
            return False
        return True

    @staticmethod
    def is_header_like(text: str) -> bool:
        token = text.strip()
        return bool(
            _LETTER_HEADER_RE.match(token)
            or _LIST_MARKER_RE.match(token)
            or _CELL_REFERENCE_RE.match(token)
        )

    def classify_type(self, text: str) -> Optional[RequirementType]:
        if self._must_re.search(text):
            return RequirementType.MUST
        if self._should_re.search(text):
            return RequirementType.SHOULD
        return None

    # ── Category discovery ───────────────────────────────

    def heading_of(self, row: SheetRow) -> Optional[str]:
        """Heading read from a non-requirement row, None for blank or keyword rows."""
        texts = [_cell_text(c) for c in row.cells]
        if not any(texts) or self.has_modal_keyword(row.cells):
            return None
        return self._pick_heading(texts)

    def _pick_heading(self, texts: list[str]) -> str:
        column = self.rules.category_column
        ordered: list[str] = []
        if 0 <= column < len(texts):
            ordered.append(texts[column])
        ordered.extend(t for i, t in enumerate(texts) if i != column)
        ordered = [t for t in ordered if t]

        for text in ordered:
            if self._is_preferred_heading(text):
                return text
        for text in ordered:
            if self._is_acceptable_heading(text):
                return text
        return self.rules.uncategorized_label

    @staticmethod
    def _is_preferred_heading(text: str) -> bool:
        return (
            len(text) > 5
            and bool(_HAS_LETTER_RE.search(text))
            and not _SECTION_NUMBER_RE.match(text)
        )

    @staticmethod
    def _is_acceptable_heading(text: str) -> bool:
        return (
            len(text) > 2
            and not _BARE_NUMBER_RE.match(text)
            and not _SINGLE_LETTER_HEADER_RE.match(text)
        )


class _HeadingTracker:
    """Nearest preceding heading per sheet, carried forward row by row."""

    def __init__(self, extractor: RequirementExtractor):
        self._extractor = extractor
        self._sheet: tuple[int, str] | None = None
        self._heading: str | None = None

    def _enter(self, row: SheetRow) -> None:
        sheet = (row.sheet_order, row.sheet_name)
        if sheet != self._sheet:
            self._sheet = sheet
            self._heading = None

    def observe(self, row: SheetRow) -> None:
        self._enter(row)
        heading = self._extractor.heading_of(row)
        if heading is not None:
            self._heading = heading

    def current(self, row: SheetRow) -> str:
        self._enter(row)
        return self._heading or self._extractor.rules.uncategorized_label
