"""
Comparison Service — diffs the drafts of a newly uploaded file against the
historical (grouped) corpus before anything is committed.

A draft is "identical" when some stored requirement has the same text
(case- and whitespace-insensitive); the groups of those matches are pulled
in as related requirements. Otherwise a group is pulled in when one of its
members shares the draft's category, has a high AI similarity score and
enough word overlap with the draft.
"""

from __future__ import annotations

import logging
from typing import Mapping, Optional, Sequence

from requirements_hub.config import Settings, get_settings
from requirements_hub.models.schemas import CompareResult, Requirement, RequirementDraft
from requirements_hub.utils.text import normalize_text, token_overlap

logger = logging.getLogger(__name__)

IDENTICAL_SCORE = 1.0
AI_EXPANSION_SCORE = 0.7
NO_MATCH_SCORE = 0.0


class ComparisonEngine:
    def __init__(self, settings: Settings | None = None):
        self.settings = settings or get_settings()

    def compare_against_history(
        self,
        drafts: Sequence[RequirementDraft],
        history: Sequence[Requirement],
        category_map: Optional[Mapping[str, str]] = None,
    ) -> list[CompareResult]:
        """
        One CompareResult per draft, in draft order.
        *category_map* translates a draft's raw category to a canonical one.
        """
        by_text: dict[str, list[Requirement]] = {}
        for req in history:
            by_text.setdefault(normalize_text(req.text), []).append(req)
        groups = self._groups(history)

        results = [self._compare_one(d, by_text, groups, category_map or {}) for d in drafts]

        identical = sum(1 for r in results if r.is_identical)
        related = sum(1 for r in results if not r.is_identical and r.ai_grouped_requirements)
        logger.info(
            f"[COMPARE] {len(results)} drafts vs {len(history)} stored requirements: "
            f"{identical} identical, {related} with related groups, "
            f"{len(results) - identical - related} new"
        )
        return results

    # ── Internals ────────────────────────────────────────

    @staticmethod
    def _groups(history: Sequence[Requirement]) -> dict[str, list[Requirement]]:
        """group_id → members, keeping only real groups (2+ members)."""
        groups: dict[str, list[Requirement]] = {}
        for req in history:
            if req.group_id:
                groups.setdefault(req.group_id, []).append(req)
        return {gid: members for gid, members in groups.items() if len(members) >= 2}

    def _compare_one(
        self,
        draft: RequirementDraft,
        by_text: dict[str, list[Requirement]],
        groups: dict[str, list[Requirement]],
        category_map: Mapping[str, str],
    ) -> CompareResult:
        exact = by_text.get(normalize_text(draft.text), [])
        expanded: dict[str, Requirement] = {}

        if exact:
            for match in exact:
                for member in groups.get(match.group_id or "", []):
                    expanded.setdefault(member.id, member)
        else:
            category = draft.best_category
            category = category_map.get(category, category)
            for members in groups.values():
                if any(self._is_related(draft, category, m) for m in members):
                    for member in members:
                        expanded.setdefault(member.id, member)

        if exact:
            score = IDENTICAL_SCORE
        elif expanded:
            score = AI_EXPANSION_SCORE
        else:
            score = NO_MATCH_SCORE

        return CompareResult(
            draft=draft,
            key=draft.key,
            matched_exact_requirements=list(exact),
            is_identical=bool(exact),
            similarity_score=score,
            ai_grouped_requirements=list(expanded.values()) or None,
        )

    def _is_related(self, draft: RequirementDraft, category: str, member: Requirement) -> bool:
        member_category = member.category_label or member.canonical_category
        return (
            member_category == category
            and (member.similarity_score or 0) >= self.settings.comparison_min_similarity
            and token_overlap(draft.text, member.text) > self.settings.comparison_min_token_overlap
        )
