"""
Grouping Service — clusters near-duplicate requirements per canonical
category with one LLM call per category.

Pipeline for one run over the whole corpus:
  1. partition requirements by canonical category
  2. categories with < 2 members go straight to "ungrouped"
  3. one clustering call per category (RetryPolicy: 3 attempts, 2s/4s backoff)
  4. sanitize the model output against the category's id set
  5. optionally merge groups from fixed-size sub-batches
  6. commit: clear every grouping, then write the new ones

Reasoning-service failures never leave this module: a category that cannot
be clustered ends up ungrouped. Persistence failures propagate.
"""

from __future__ import annotations

import asyncio
import json
import logging
import math
import time
import uuid
from typing import Any, Optional, Sequence

from requirements_hub.config import Settings, get_settings
from requirements_hub.exceptions import (
    ClusteringTransientError,
    PersistenceError,
    RetryExhaustedError,
)
from requirements_hub.models.enums import ProgressEventType as Event, SanitationOutcome
from requirements_hub.models.schemas import (
    CommitReport,
    GroupingResult,
    GroupingRunSummary,
    Requirement,
    RequirementGroup,
    SanitationResult,
)
from requirements_hub.persistence.requirement_repository import RequirementRepository
from requirements_hub.services.assistant_service import AssistantService
from requirements_hub.services.category_normalizer import CategoryNormalizer
from requirements_hub.services.llm_service import (
    GroqReasoningClient,
    ReasoningClient,
    extract_json_payload,
    load_prompt,
)
from requirements_hub.services.progress import ProgressCallback, ProgressReporter
from requirements_hub.services.retry_policy import RetryPolicy

logger = logging.getLogger(__name__)


def generate_group_id() -> str:
    return f"group-{int(time.time() * 1000)}-{uuid.uuid4().hex[:9]}"


# ── Pure helpers ─────────────────────────────────────────


def normalize_similarity_score(value: Any) -> int:
    """
    Integer 0-100. Values in [0, 1] are read as fractions, anything else
    is clamped; non-numeric input scores 0.
    """
    if isinstance(value, bool) or value is None:
        return 0
    try:
        score = float(value)
    except (TypeError, ValueError):
        return 0
    if math.isnan(score):
        return 0
    if score <= 1:
        score = max(0.0, score) * 100
    score = min(100.0, score)
    return int(math.floor(score + 0.5))


def sanitize_grouping_output(
    raw: Any,
    known_ids: Sequence[str],
    category: str,
    min_group_size: int = 2,
) -> SanitationResult:
    """
    Turn an untrusted clustering response into groups that respect the
    contract: known ids only, each id in at most one group, groups of at
    least *min_group_size*, every known id either grouped or ungrouped.
    """
    ordered_ids = list(dict.fromkeys(str(i) for i in known_ids))
    known = set(ordered_ids)

    if not isinstance(raw, dict):
        return SanitationResult(
            outcome=SanitationOutcome.REJECTED,
            ungrouped_requirements=ordered_ids,
            repairs=[f"response is {type(raw).__name__}, not an object"],
        )

    repairs: list[str] = []
    assigned: set[str] = set()
    groups: list[RequirementGroup] = []

    raw_groups = raw.get("groups")
    if not isinstance(raw_groups, list):
        repairs.append("missing 'groups' list")
        raw_groups = []

    for position, raw_group in enumerate(raw_groups):
        if not isinstance(raw_group, dict):
            repairs.append(f"group #{position} is not an object")
            continue

        raw_members = raw_group.get("members")
        if not isinstance(raw_members, list):
            raw_members = []
        representative = raw_group.get("representativeId")
        candidates = [str(m) for m in raw_members if m is not None]
        if representative is not None and str(representative) not in candidates:
            candidates.append(str(representative))

        members: list[str] = []
        for member_id in candidates:
            if member_id not in known:
                repairs.append(f"unknown id {member_id} removed")
            elif member_id in members:
                repairs.append(f"id {member_id} repeated within group #{position}")
            elif member_id in assigned:
                repairs.append(f"id {member_id} already grouped, removed from group #{position}")
            else:
                members.append(member_id)

        if len(members) < min_group_size:
            repairs.append(f"group #{position} dropped with {len(members)} member(s)")
            continue

        rep_id = str(representative) if representative is not None else ""
        if rep_id not in members:
            repairs.append(f"group #{position} representative replaced by {members[0]}")
            rep_id = members[0]

        raw_category = raw_group.get("category")
        if raw_category and str(raw_category).strip() != category:
            repairs.append(f"group #{position} category '{raw_category}' forced to '{category}'")

        assigned.update(members)
        groups.append(RequirementGroup(
            group_id=generate_group_id(),
            representative_id=rep_id,
            members=members,
            similarity_score=normalize_similarity_score(raw_group.get("similarityScore")),
            category=category,
        ))

    raw_ungrouped = raw.get("ungroupedRequirements")
    if not isinstance(raw_ungrouped, list):
        repairs.append("missing 'ungroupedRequirements' list")
        raw_ungrouped = []

    ungrouped: list[str] = []
    for value in raw_ungrouped:
        requirement_id = str(value)
        if requirement_id not in known:
            repairs.append(f"unknown ungrouped id {requirement_id} removed")
        elif requirement_id in assigned:
            repairs.append(f"id {requirement_id} both grouped and ungrouped")
        elif requirement_id not in ungrouped:
            ungrouped.append(requirement_id)

    missing = [i for i in ordered_ids if i not in assigned and i not in ungrouped]
    if missing:
        repairs.append(f"{len(missing)} id(s) missing from the response added to ungrouped")
        ungrouped.extend(missing)

    return SanitationResult(
        outcome=SanitationOutcome.REPAIRED if repairs else SanitationOutcome.VALID,
        groups=groups,
        ungrouped_requirements=ungrouped,
        repairs=repairs,
    )


def consolidate_groups(groups: Sequence[RequirementGroup]) -> list[RequirementGroup]:
    """
    Merge groups that share a category: members are unioned, scores averaged
    and the first group's representative kept. Used when one category was
    clustered in several sub-batches.
    """
    by_category: dict[str, list[RequirementGroup]] = {}
    for group in groups:
        by_category.setdefault(group.category, []).append(group)

    consolidated: list[RequirementGroup] = []
    for category, category_groups in by_category.items():
        if len(category_groups) == 1:
            consolidated.append(category_groups[0])
            continue
        members = list(dict.fromkeys(m for g in category_groups for m in g.members))
        average = sum(g.similarity_score for g in category_groups) / len(category_groups)
        consolidated.append(RequirementGroup(
            group_id=generate_group_id(),
            representative_id=category_groups[0].representative_id,
            members=members,
            similarity_score=int(math.floor(average + 0.5)),
            category=category,
        ))
    return consolidated


# ── Engine ───────────────────────────────────────────────


class GroupingEngine:
    """Runs the per-category clustering protocol against a ReasoningClient."""

    def __init__(
        self,
        normalizer: CategoryNormalizer,
        client: ReasoningClient | None = None,
        settings: Settings | None = None,
        retry_policy: RetryPolicy | None = None,
    ):
        self.settings = settings or get_settings()
        self.normalizer = normalizer
        self.client = client or GroqReasoningClient()
        self.retry_policy = retry_policy or RetryPolicy.for_grouping(self.settings)
        self._system_prompt = load_prompt("grouping_system.txt").strip()
        self._user_template = load_prompt("grouping_user.txt")

    async def group_requirements(
        self,
        requirements: Sequence[Requirement],
        progress: Optional[ProgressCallback] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> GroupingResult:
        report = ProgressReporter(progress)
        if not requirements:
            return GroupingResult()

        report(Event.START, f"Grouping {len(requirements)} requirements")
        try:
            partitions = await self.partition_by_category(requirements)
        except PersistenceError as exc:
            report(Event.ERROR, f"Grouping failed: {exc}")
            raise

        total = len(partitions)
        report(Event.INFO, f"Identified {total} categories to analyse")

        async def process(step: int, category: str, members: list[Requirement]) -> GroupingResult:
            if cancel_event is not None and cancel_event.is_set():
                return GroupingResult(ungrouped_requirements=[r.id for r in members], cancelled=True)
            return await self._group_category(category, members, report, step, total)

        items = list(partitions.items())
        concurrency = max(1, self.settings.grouping_concurrency)
        if concurrency == 1:
            results = [await process(step, cat, reqs) for step, (cat, reqs) in enumerate(items, start=1)]
        else:
            semaphore = asyncio.Semaphore(concurrency)

            async def bounded(step: int, category: str, members: list[Requirement]) -> GroupingResult:
                async with semaphore:
                    return await process(step, category, members)

            results = await asyncio.gather(
                *(bounded(step, cat, reqs) for step, (cat, reqs) in enumerate(items, start=1))
            )

        merged = GroupingResult(
            groups=[g for r in results for g in r.groups],
            ungrouped_requirements=[i for r in results for i in r.ungrouped_requirements],
            cancelled=any(r.cancelled for r in results),
        )

        if merged.cancelled:
            report(Event.WARNING, "Grouping cancelled, remaining categories left ungrouped")
        report(
            Event.SUCCESS,
            f"Grouping finished: {len(merged.groups)} groups, "
            f"{len(merged.ungrouped_requirements)} ungrouped across {total} categories",
        )
        return merged

    async def partition_by_category(self, requirements: Sequence[Requirement]) -> dict[str, list[Requirement]]:
        """Canonical category → requirements, in first-seen order."""
        mapping = await self.normalizer.map_categories(
            dict.fromkeys(r.requirement_category for r in requirements)
        )
        partitions: dict[str, list[Requirement]] = {}
        for req in requirements:
            raw = (req.requirement_category or "").strip()
            category = mapping.get(raw) or self.normalizer.uncategorized
            partitions.setdefault(category, []).append(req)
        return partitions

    # ── Per category ─────────────────────────────────────

    async def _group_category(
        self,
        category: str,
        requirements: list[Requirement],
        report: ProgressReporter,
        step: int,
        total: int,
    ) -> GroupingResult:
        report(Event.PROGRESS, f"Analysing category '{category}' ({len(requirements)} requirements)", step, total)

        min_size = self.settings.grouping_min_group_size
        if len(requirements) < min_size:
            report(Event.INFO, f"Skipping category '{category}': too few requirements to group")
            return GroupingResult(ungrouped_requirements=[r.id for r in requirements])

        batch_size = self.settings.grouping_batch_size
        if batch_size <= 0 or len(requirements) <= batch_size:
            return await self._cluster_with_retry(category, requirements, report)

        batches = [requirements[i:i + batch_size] for i in range(0, len(requirements), batch_size)]
        report(Event.INFO, f"Category '{category}' split into {len(batches)} batches of up to {batch_size}")
        groups: list[RequirementGroup] = []
        ungrouped: list[str] = []
        for batch in batches:
            if len(batch) < min_size:
                ungrouped.extend(r.id for r in batch)
                continue
            partial = await self._cluster_with_retry(category, batch, report)
            groups.extend(partial.groups)
            ungrouped.extend(partial.ungrouped_requirements)

        merged_groups = consolidate_groups(groups)
        grouped_ids = {m for g in merged_groups for m in g.members}
        return GroupingResult(
            groups=merged_groups,
            ungrouped_requirements=[i for i in ungrouped if i not in grouped_ids],
        )

    async def _cluster_with_retry(
        self,
        category: str,
        requirements: list[Requirement],
        report: ProgressReporter,
    ) -> GroupingResult:
        max_attempts = self.retry_policy.max_attempts

        def on_retry(attempt: int, error: BaseException, delay: float) -> None:
            report(Event.WARNING, f"Attempt {attempt} failed for category '{category}': {error}")
            report(
                Event.RETRY,
                f"Retrying category '{category}' in {delay:g}s (attempt {attempt + 1}/{max_attempts})",
            )

        report(Event.INFO, f"Sending {len(requirements)} requirements in one call for category '{category}'")
        try:
            sanitized = await self.retry_policy.run(
                lambda: self._cluster_once(category, requirements),
                label=f"grouping '{category}'",
                on_retry=on_retry,
            )
        except RetryExhaustedError as exc:
            report(
                Event.ERROR,
                f"All {exc.attempts} attempts failed for category '{category}', "
                f"leaving {len(requirements)} requirements ungrouped",
            )
            return GroupingResult(ungrouped_requirements=[r.id for r in requirements])

        if sanitized.outcome == SanitationOutcome.REPAIRED:
            shown = "; ".join(sanitized.repairs[:5])
            more = f" (+{len(sanitized.repairs) - 5} more)" if len(sanitized.repairs) > 5 else ""
            report(Event.WARNING, f"Repaired model output for '{category}': {shown}{more}")

        report(
            Event.SUCCESS,
            f"Category '{category}': {len(sanitized.groups)} groups, "
            f"{len(sanitized.ungrouped_requirements)} ungrouped",
        )
        return GroupingResult(
            groups=sanitized.groups,
            ungrouped_requirements=sanitized.ungrouped_requirements,
        )

    async def _cluster_once(self, category: str, requirements: list[Requirement]) -> SanitationResult:
        payload = self.build_payload(category, requirements)
        user_prompt = self._user_template.format(
            category=category,
            threshold_percent=int(round(self.settings.grouping_similarity_threshold * 100)),
            min_group_size=self.settings.grouping_min_group_size,
            payload=json.dumps(payload, ensure_ascii=False, indent=2),
        )

        try:
            raw_response = await self.client.complete(self._system_prompt, user_prompt)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            raise ClusteringTransientError(f"reasoning service call failed: {exc}") from exc

        data = extract_json_payload(raw_response)
        if data is None:
            raise ClusteringTransientError("response contained no parseable JSON")

        result = sanitize_grouping_output(
            data,
            [r.id for r in requirements],
            category,
            min_group_size=self.settings.grouping_min_group_size,
        )
        if result.outcome == SanitationOutcome.REJECTED:
            raise ClusteringTransientError(f"response rejected: {'; '.join(result.repairs)}")
        return result

    def build_payload(self, category: str, requirements: Sequence[Requirement]) -> dict[str, Any]:
        return {
            "category": category,
            "instructions": {
                "similarityThreshold": self.settings.grouping_similarity_threshold,
                "minimumGroupSize": self.settings.grouping_min_group_size,
                "strictCategoryMatching": True,
                "coverageRequired": True,
            },
            "requirements": [
                {
                    "id": r.id,
                    "text": r.text,
                    "type": r.requirement_type.value if r.requirement_type else None,
                    "category": r.requirement_category,
                }
                for r in requirements
            ],
        }


# ── Commit ───────────────────────────────────────────────


def commit_grouping(repository: RequirementRepository, result: GroupingResult) -> CommitReport:
    """
    Replace every stored grouping with *result*.

    Clearing runs first and aborts on failure. Group writes are independent:
    a failing group is logged and recorded, the rest are still written.
    """
    repository.clear_all_groupings()
    report = CommitReport()

    for group in result.groups:
        try:
            repository.update_requirement_group(
                group.representative_id, group.group_id, True, group.similarity_score, group.category
            )
            for member_id in group.members:
                if member_id != group.representative_id:
                    repository.update_requirement_group(
                        member_id, group.group_id, False, group.similarity_score, group.category
                    )
        except PersistenceError as exc:
            logger.error(f"[GROUPING] Failed writing group {group.group_id}: {exc}")
            report.failed_group_ids.append(group.group_id)
            continue
        report.groups_written += 1
        report.requirements_updated += len(group.members)

    for requirement_id in result.ungrouped_requirements:
        try:
            repository.clear_requirement_grouping(requirement_id)
        except PersistenceError as exc:
            logger.error(f"[GROUPING] Failed clearing grouping for {requirement_id}: {exc}")
            continue
        report.ungrouped_cleared += 1

    logger.info(
        f"[GROUPING] Committed {report.groups_written} groups "
        f"({report.requirements_updated} requirements), "
        f"{len(report.failed_group_ids)} failed"
    )
    return report


async def run_grouping(
    repository: RequirementRepository,
    engine: GroupingEngine,
    progress: Optional[ProgressCallback] = None,
    cancel_event: Optional[asyncio.Event] = None,
    assistant: Optional[AssistantService] = None,
) -> GroupingRunSummary:
    """
    Fetch the whole corpus, group it and store the result.
    With an *assistant* the summary also carries a short text recap.
    """
    report = ProgressReporter(progress)
    requirements = repository.get_requirements_for_grouping()
    logger.info(f"[GROUPING] Found {len(requirements)} requirements for grouping")

    if not requirements:
        report(Event.SUCCESS, "No requirements to group")
        return GroupingRunSummary()

    result = await engine.group_requirements(requirements, progress, cancel_event)
    if result.cancelled:
        # a partial result would wipe groups of the categories never analysed
        report(Event.WARNING, "Grouping cancelled, stored groups left unchanged")
        return GroupingRunSummary(
            groups=len(result.groups),
            processed_requirements=len(requirements),
            ungrouped=len(result.ungrouped_requirements),
            cancelled=True,
        )

    try:
        commit = commit_grouping(repository, result)
    except PersistenceError as exc:
        report(Event.ERROR, f"Saving groups failed: {exc}")
        raise

    report(Event.SUCCESS, f"Saved {commit.groups_written} groups for {len(requirements)} requirements")
    summary = ""
    if assistant is not None:
        summary = await assistant.generate_grouping_summary(result.groups, len(requirements))
    return GroupingRunSummary(
        groups=len(result.groups),
        processed_requirements=len(requirements),
        ungrouped=len(result.ungrouped_requirements),
        failed_group_writes=commit.failed_group_ids,
        summary=summary,
    )
