"""
Category Normalizer — maps raw sheet categories to canonical categories.

Resolution order for one raw category:
  1. blank or the placeholder    → the "uncategorized" label
  2. exact mapping               → its target
  3. case-insensitive mapping    → its target (an exact mapping is stored)
  4. LLM match against the known canonical categories (≥ 70% confidence)
  5. cleaned-up raw name         → becomes a new canonical category

Every resolution from step 3 on is written to the mapping store, so the
table grows with each import and later lookups stay in step 2.
"""

from __future__ import annotations

import json
import logging
import re
from typing import Iterable, Optional

from requirements_hub.config import Settings, get_settings
from requirements_hub.exceptions import RequirementsHubError
from requirements_hub.persistence.requirement_repository import RequirementRepository
from requirements_hub.services.llm_service import (
    GroqReasoningClient,
    ReasoningClient,
    extract_json_payload,
    load_prompt,
)
from requirements_hub.services.retry_policy import RetryPolicy

logger = logging.getLogger(__name__)

_CATEGORY_SYSTEM_PROMPT = "Du är expert på svensk IT-upphandling. Svara alltid med giltigt JSON."

_ENUMERATOR_PREFIX_RE = re.compile(r"^[A-Z]\d?\.\s*", re.IGNORECASE)  # "A. ", "B1. "
_LETTER_PREFIX_RE = re.compile(r"^[A-Z]\s+", re.IGNORECASE)          # "F "
_WHITESPACE_RE = re.compile(r"\s+")


def clean_category_name(category: str) -> str:
    """Strip a leading enumerator ("A. ", "B1.", "F ") and collapse whitespace."""
    cleaned = _ENUMERATOR_PREFIX_RE.sub("", category)
    cleaned = _LETTER_PREFIX_RE.sub("", cleaned)
    cleaned = _WHITESPACE_RE.sub(" ", cleaned).strip()
    return cleaned or category.strip()


class CategoryCache:
    """
    In-memory copy of the mapping table.

    Owned by whoever builds the normalizer. ``load()`` reads the table once;
    call ``invalidate()`` after the table is changed from outside.
    """

    def __init__(self, repository: RequirementRepository):
        self._repository = repository
        self._mappings: dict[str, str] | None = None

    @property
    def loaded(self) -> bool:
        return self._mappings is not None

    def load(self) -> None:
        if self._mappings is not None:
            return
        mappings = self._repository.get_all_category_mappings()
        self._mappings = {m.source_category: m.target_category for m in mappings}
        logger.info(f"[CATEGORY] Loaded {len(mappings)} category mappings into cache")

    def invalidate(self) -> None:
        self._mappings = None

    def _table(self) -> dict[str, str]:
        self.load()
        return self._mappings  # type: ignore[return-value]

    def get(self, source: str) -> Optional[str]:
        return self._table().get(source)

    def find_case_insensitive(self, source: str) -> Optional[str]:
        lowered = source.lower()
        for known_source, target in self._table().items():
            if known_source.lower() == lowered:
                return target
        return None

    def put(self, source: str, target: str) -> None:
        self._table()[source] = target

    def targets(self) -> list[str]:
        """Distinct canonical categories, in first-seen order."""
        return list(dict.fromkeys(self._table().values()))

    def __len__(self) -> int:
        return len(self._table())


class CategoryNormalizer:
    """Resolve raw categories to canonical ones, learning as it goes."""

    def __init__(
        self,
        repository: RequirementRepository,
        cache: CategoryCache | None = None,
        client: ReasoningClient | None = None,
        settings: Settings | None = None,
        retry_policy: RetryPolicy | None = None,
    ):
        self.settings = settings or get_settings()
        self.repository = repository
        self.cache = cache or CategoryCache(repository)
        self.client = client or GroqReasoningClient()
        self.retry_policy = retry_policy or RetryPolicy.for_category_match(self.settings)
        self._prompt_template = load_prompt("category_match.txt")

    @property
    def uncategorized(self) -> str:
        return self.settings.uncategorized_label

    # ── Public API ───────────────────────────────────────

    async def map_category(self, source_category: Optional[str]) -> str:
        if not source_category or not source_category.strip():
            return self.uncategorized

        raw = source_category.strip()
        # the placeholder keeps its own bucket
        if raw.lower() == self.uncategorized.lower():
            return self.uncategorized
        self.cache.load()

        # 1. Exact mapping
        target = self.cache.get(raw)
        if target is not None:
            logger.debug(f"[CATEGORY] Mapping found: '{raw}' → '{target}'")
            return target

        # 2. Case-insensitive mapping
        target = self.cache.find_case_insensitive(raw)
        if target is not None:
            logger.info(f"[CATEGORY] Case-insensitive match: '{raw}' → '{target}'")
            return self._create_mapping(raw, target)

        # 3. LLM match against known canonical categories
        known_targets = self.cache.targets()
        if known_targets:
            logger.info(f"[CATEGORY] No mapping for '{raw}', asking LLM ({len(known_targets)} candidates)")
            target = await self._find_ai_match(raw, known_targets)
            if target is not None:
                logger.info(f"[CATEGORY] LLM match: '{raw}' → '{target}'")
                return self._create_mapping(raw, target)

        # 4. New canonical category
        target = clean_category_name(raw)
        logger.info(f"[CATEGORY] New category: '{raw}' → '{target}'")
        return self._create_mapping(raw, target)

    async def map_categories(self, source_categories: Iterable[Optional[str]]) -> dict[str, str]:
        """Resolve each distinct raw category once, in input order."""
        self.cache.load()
        results: dict[str, str] = {"": self.uncategorized}

        for source in source_categories:
            normalized = (source or "").strip()
            if normalized and normalized not in results:
                results[normalized] = await self.map_category(normalized)

        return results

    # ── Internals ────────────────────────────────────────

    async def _find_ai_match(self, source_category: str, targets: list[str]) -> Optional[str]:
        prompt = self._prompt_template.format(
            source_category=source_category,
            target_categories="\n".join(f"{i}. {t}" for i, t in enumerate(targets, start=1)),
            min_confidence=self.settings.category_match_confidence,
        )
        try:
            raw_response = await self.retry_policy.run(
                lambda: self.client.complete(_CATEGORY_SYSTEM_PROMPT, prompt),
                label=f"category match '{source_category}'",
            )
        except RequirementsHubError as exc:
            logger.warning(f"[CATEGORY] LLM matching failed for '{source_category}': {exc}")
            return None

        data = extract_json_payload(raw_response)
        if not isinstance(data, dict):
            logger.warning(f"[CATEGORY] Unusable LLM reply for '{source_category}': {raw_response!r:.200}")
            return None

        try:
            confidence = float(data.get("confidence") or 0)
        except (TypeError, ValueError):
            confidence = 0.0
        candidate = data.get("targetCategory")
        if not data.get("match") or confidence < self.settings.category_match_confidence or not candidate:
            logger.debug(f"[CATEGORY] No qualifying LLM match for '{source_category}': {json.dumps(data, ensure_ascii=False)}")
            return None

        # only canonical categories that already exist are accepted
        lowered = str(candidate).strip().lower()
        for target in targets:
            if target.lower() == lowered:
                return target
        logger.warning(f"[CATEGORY] LLM proposed unknown category '{candidate}' for '{source_category}'")
        return None

    def _create_mapping(self, source: str, target: str) -> str:
        """Persist ``source → target`` and return the target actually stored."""
        stored = self.repository.create_category_mapping(source, target)
        if stored.target_category != target:
            logger.info(
                f"[CATEGORY] '{source}' was already mapped to '{stored.target_category}' by a concurrent import"
            )
        self.cache.put(source, stored.target_category)
        return stored.target_category
