"""
Import Service — the two phases of importing an organization's workbook.

  compare_file(): extract drafts and diff them against the stored corpus,
                  nothing is written except new category mappings
  commit_file():  store the drafts (merging into identical stored
                  requirements), apply the reviewer's edits captured during
                  the compare phase, then regroup the whole corpus

Edits are matched to drafts by RequirementKey, so both phases must run the
same extraction over the same file.
"""

from __future__ import annotations

import logging
import uuid
from datetime import date
from typing import Any, Mapping, Optional

from requirements_hub.config import Settings, get_settings
from requirements_hub.exceptions import ImportValidationError, RequirementsHubError
from requirements_hub.models.schemas import (
    CompareResult,
    ImportSummary,
    Requirement,
    RequirementDraft,
    RequirementEdit,
)
from requirements_hub.persistence.requirement_repository import RequirementRepository
from requirements_hub.rules.extraction_rules import ExtractionRulesStore
from requirements_hub.services.category_normalizer import CategoryNormalizer
from requirements_hub.services.comparison_service import ComparisonEngine
from requirements_hub.services.extraction_service import RequirementExtractor
from requirements_hub.services.grouping_service import GroupingEngine, run_grouping
from requirements_hub.services.progress import ProgressCallback
from requirements_hub.services.spreadsheet_service import SpreadsheetService, WorkbookSource
from requirements_hub.utils.text import normalize_text

logger = logging.getLogger(__name__)


class ImportService:
    def __init__(
        self,
        repository: RequirementRepository,
        normalizer: CategoryNormalizer,
        grouping_engine: GroupingEngine | None = None,
        extractor: RequirementExtractor | None = None,
        spreadsheet: SpreadsheetService | None = None,
        comparison: ComparisonEngine | None = None,
        settings: Settings | None = None,
    ):
        self.settings = settings or get_settings()
        self.repository = repository
        self.normalizer = normalizer
        self.grouping_engine = grouping_engine
        self.extractor = extractor or RequirementExtractor(ExtractionRulesStore().get_rules())
        self.spreadsheet = spreadsheet or SpreadsheetService(self.settings.skip_first_sheet)
        self.comparison = comparison or ComparisonEngine(self.settings)

    def read_drafts(self, source: WorkbookSource) -> list[RequirementDraft]:
        return self.extractor.extract(self.spreadsheet.read_rows(source))

    # ── Phase 1: compare ─────────────────────────────────

    async def compare_file(self, source: WorkbookSource, organization: str) -> list[CompareResult]:
        drafts = self.read_drafts(source)
        logger.info(f"[IMPORT] Comparing {len(drafts)} requirements from {organization} against history")
        if not drafts:
            return []

        category_map = await self.normalizer.map_categories(d.best_category for d in drafts)
        history = self.repository.get_all_requirements()
        return self.comparison.compare_against_history(drafts, history, category_map)

    # ── Phase 2: commit ──────────────────────────────────

    async def commit_file(
        self,
        source: WorkbookSource,
        organization: str,
        edits: Optional[Mapping[str, Any]] = None,
        progress: Optional[ProgressCallback] = None,
        import_date: Optional[date] = None,
    ) -> ImportSummary:
        if not organization or not organization.strip():
            raise ImportValidationError("An organization is required for import")
        organization = organization.strip()

        drafts = self.read_drafts(source)
        if not drafts:
            raise ImportValidationError("No valid requirements found in the workbook")

        today = (import_date or date.today()).isoformat()
        reviewer_edits = {
            key: value if isinstance(value, RequirementEdit) else RequirementEdit.model_validate(value)
            for key, value in (edits or {}).items()
        }
        category_map = await self.normalizer.map_categories(d.best_category for d in drafts)

        stored = {normalize_text(r.text): r for r in self.repository.get_all_requirements()}
        pending: dict[str, Requirement] = {}
        summary = ImportSummary(organization=organization, total_requirements=len(drafts))

        for draft in drafts:
            edit = reviewer_edits.get(draft.key)
            if edit is not None:
                summary.edits_applied += 1
            text_key = normalize_text(draft.text)

            if text_key in stored:
                self._merge_into(stored[text_key], organization, today, edit)
                summary.merged_requirements += 1
            elif text_key in pending:
                self._bump(pending[text_key], organization, today, edit)
                summary.merged_requirements += 1
            else:
                pending[text_key] = self._new_requirement(draft, organization, today, category_map, edit)

        created = self.repository.create_many_requirements(pending.values())
        summary.new_requirements = len(created)
        summary.categories = sorted({r.canonical_category for r in created if r.canonical_category})
        logger.info(
            f"[IMPORT] {organization}: {summary.total_requirements} requirements, "
            f"{summary.new_requirements} new, {summary.merged_requirements} merged, "
            f"{summary.edits_applied} reviewer edits"
        )

        if self.settings.auto_group_after_import and self.grouping_engine is not None:
            try:
                run = await run_grouping(self.repository, self.grouping_engine, progress)
                summary.ai_groups_found = run.groups
            except RequirementsHubError as exc:
                logger.warning(f"[IMPORT] Automatic grouping after import failed: {exc}")

        return summary

    # ── Record building ──────────────────────────────────

    def _new_requirement(
        self,
        draft: RequirementDraft,
        organization: str,
        today: str,
        category_map: Mapping[str, str],
        edit: Optional[RequirementEdit],
    ) -> Requirement:
        raw_category = draft.best_category.strip()
        req = Requirement(
            id=str(uuid.uuid4()),
            text=draft.text,
            requirement_type=draft.requirement_type,
            requirement_category=raw_category or None,
            canonical_category=category_map.get(raw_category, self.normalizer.uncategorized),
            categories=list(draft.categories),
            organizations=[organization],
            import_organization=organization,
            occurrences=1,
            dates=[today],
            import_date=today,
            first_seen_date=today,
            last_seen_date=today,
            is_new=True,
        )
        if edit is not None:
            req.user_comment = edit.comment
            req.user_status = edit.status
        return req

    @staticmethod
    def _bump(req: Requirement, organization: str, today: str, edit: Optional[RequirementEdit]) -> None:
        req.occurrences += 1
        if organization not in req.organizations:
            req.organizations.append(organization)
        if today not in req.dates:
            req.dates.append(today)
        req.last_seen_date = today
        if edit is not None:
            req.user_comment = edit.comment
            req.user_status = edit.status

    def _merge_into(
        self,
        req: Requirement,
        organization: str,
        today: str,
        edit: Optional[RequirementEdit],
    ) -> None:
        self._bump(req, organization, today, edit)
        req.is_new = False
        updates = {
            "occurrences": req.occurrences,
            "organizations": req.organizations,
            "dates": req.dates,
            "last_seen_date": req.last_seen_date,
            "is_new": False,
        }
        if edit is not None:
            updates["user_comment"] = edit.comment
            updates["user_status"] = edit.status
        self.repository.update_requirement(req.id, updates)
