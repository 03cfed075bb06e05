"""
Single-shot LLM helpers around the grouping feature:
suggest a category for one requirement and summarize a grouping run.
Both degrade to a fixed answer when the reasoning service fails.
"""

from __future__ import annotations

import logging
from typing import Sequence

from requirements_hub.config import Settings, get_settings
from requirements_hub.exceptions import RequirementsHubError
from requirements_hub.models.schemas import RequirementGroup
from requirements_hub.services.llm_service import GroqReasoningClient, ReasoningClient, load_prompt
from requirements_hub.services.retry_policy import RetryPolicy

logger = logging.getLogger(__name__)

_CATEGORIZE_SYSTEM_PROMPT = "Du kategoriserar IT-krav på svenska. Svara endast med kategorins namn."
_SUMMARY_SYSTEM_PROMPT = "Du sammanfattar resultat från kravgruppering på svenska på ett professionellt sätt."

SUMMARY_FALLBACK = "Gruppering slutförd utan sammanfattning."


class AssistantService:
    def __init__(
        self,
        client: ReasoningClient | None = None,
        settings: Settings | None = None,
        retry_policy: RetryPolicy | None = None,
    ):
        self.settings = settings or get_settings()
        self.client = client or GroqReasoningClient()
        self.retry_policy = retry_policy or RetryPolicy.for_assistant(self.settings)

    async def categorize_requirement(self, requirement_text: str) -> str:
        prompt = load_prompt("categorize.txt").format(requirement_text=requirement_text)
        try:
            answer = await self.retry_policy.run(
                lambda: self.client.complete(_CATEGORIZE_SYSTEM_PROMPT, prompt),
                label="categorize requirement",
            )
        except RequirementsHubError as exc:
            logger.warning(f"[ASSISTANT] Categorization failed: {exc}")
            return self.settings.uncategorized_label

        lines = (answer or "").strip().splitlines()
        category = lines[0].strip().strip('"') if lines else ""
        return category or self.settings.uncategorized_label

    async def generate_grouping_summary(self, groups: Sequence[RequirementGroup], total_requirements: int) -> str:
        prompt = load_prompt("grouping_summary.txt").format(
            total_requirements=total_requirements,
            group_count=len(groups),
            grouped_count=sum(len(g.members) for g in groups),
            group_lines="\n".join(
                f"- {g.category}: {len(g.members)} krav (likhetspoäng: {g.similarity_score}%)" for g in groups
            ) or "- (inga grupper)",
        )
        try:
            answer = await self.retry_policy.run(
                lambda: self.client.complete(_SUMMARY_SYSTEM_PROMPT, prompt),
                label="grouping summary",
            )
        except RequirementsHubError as exc:
            logger.warning(f"[ASSISTANT] Summary failed: {exc}")
            return SUMMARY_FALLBACK

        return (answer or "").strip() or "Gruppering slutförd."
