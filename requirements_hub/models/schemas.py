"""
Data schemas for requirements, category mappings, groups and the
intermediate objects passed between the import stages.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Optional

from pydantic import BaseModel, Field

from .enums import ProgressEventType, RequirementType, SanitationOutcome, UserStatus
from requirements_hub.utils.requirement_key import generate_requirement_key


# ── Persisted records ────────────────────────────────────


class Requirement(BaseModel):
    """A requirement as stored in the historical corpus."""
    id: str
    text: str
    requirement_type: Optional[RequirementType] = None
    requirement_category: Optional[str] = None  # raw category from the sheet
    canonical_category: Optional[str] = None
    categories: list[str] = []  # [sheet category, preceding category]
    organizations: list[str] = []
    import_organization: str = ""
    occurrences: int = 1
    dates: list[str] = []

    # Grouping fields, owned by the grouping run
    group_id: Optional[str] = None
    group_representative: bool = False
    similarity_score: Optional[int] = None
    category_label: Optional[str] = None

    # Reviewer fields
    user_status: UserStatus = UserStatus.OK
    user_comment: str = ""

    import_date: Optional[str] = None
    first_seen_date: Optional[str] = None
    last_seen_date: Optional[str] = None
    is_new: bool = True

    model_config = {"use_enum_values": False}


class CategoryMapping(BaseModel):
    source_category: str
    target_category: str


# ── Extraction ───────────────────────────────────────────


class SheetRow(BaseModel):
    """One raw spreadsheet row with its position in the workbook."""
    sheet_name: str
    sheet_order: int
    sheet_row_index: int
    cells: list[Any] = []


class RequirementDraft(BaseModel):
    """A requirement extracted from an uploaded file, not yet persisted."""
    text: str
    requirement_type: Optional[RequirementType] = None
    categories: list[str] = []
    sheet_name: str
    sheet_order: int
    sheet_row_index: int

    @property
    def key(self) -> str:
        return generate_requirement_key(
            self.sheet_name, self.sheet_order, self.sheet_row_index, self.text
        )

    @property
    def best_category(self) -> str:
        """Preceding-text category when present, else the sheet category."""
        if len(self.categories) > 1 and self.categories[1]:
            return self.categories[1]
        return self.categories[0] if self.categories else ""


# ── Grouping ─────────────────────────────────────────────


class RequirementGroup(BaseModel):
    """A cluster of near-duplicate requirements from one grouping run."""
    group_id: str
    representative_id: str
    members: list[str]
    similarity_score: int = 0  # 0-100
    category: str = ""


class GroupingResult(BaseModel):
    groups: list[RequirementGroup] = []
    ungrouped_requirements: list[str] = []
    cancelled: bool = False


class SanitationResult(BaseModel):
    """Outcome of cleaning one raw clustering response."""
    outcome: SanitationOutcome
    groups: list[RequirementGroup] = []
    ungrouped_requirements: list[str] = []
    repairs: list[str] = []


class CommitReport(BaseModel):
    groups_written: int = 0
    requirements_updated: int = 0
    ungrouped_cleared: int = 0
    failed_group_ids: list[str] = []


class ProgressEvent(BaseModel):
    type: ProgressEventType
    message: str
    step: Optional[int] = None
    total: Optional[int] = None
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


# ── Comparison / import ──────────────────────────────────


class CompareResult(BaseModel):
    """How one draft from a new file relates to the historical corpus."""
    draft: RequirementDraft
    key: str
    matched_exact_requirements: list[Requirement] = []
    is_identical: bool = False
    similarity_score: float = 0.0
    ai_grouped_requirements: Optional[list[Requirement]] = None


class RequirementEdit(BaseModel):
    """Reviewer changes captured during a comparison review."""
    comment: str = ""
    status: UserStatus = UserStatus.OK


class ImportSummary(BaseModel):
    organization: str
    total_requirements: int = 0
    new_requirements: int = 0
    merged_requirements: int = 0
    edits_applied: int = 0
    categories: list[str] = []
    ai_groups_found: int = 0


class GroupingRunSummary(BaseModel):
    """What a full fetch → group → commit run did."""
    groups: int = 0
    processed_requirements: int = 0
    ungrouped: int = 0
    failed_group_writes: list[str] = []
    cancelled: bool = False
    summary: str = ""  # assistant summary, empty when not requested


# ── Listing / statistics ─────────────────────────────────


class RequirementFilter(BaseModel):
    """Listing filter. Empty fields do not restrict; list fields match any value."""
    search: str = ""  # case-insensitive substring of the text
    types: list[RequirementType] = []
    organizations: list[str] = []
    categories: list[str] = []
    dates: list[str] = []
    statuses: list[UserStatus] = []
    grouped_only: bool = False
    only_new: bool = False


class NamedCount(BaseModel):
    name: str
    count: int


class RequirementStatistics(BaseModel):
    total_requirements: int = 0
    must_requirements: int = 0
    should_requirements: int = 0
    new_requirements: int = 0
    organizations: int = 0  # distinct organizations
    groups: int = 0  # distinct group ids
    categories: list[NamedCount] = []
    organization_stats: list[NamedCount] = []
    status_stats: list[NamedCount] = []
