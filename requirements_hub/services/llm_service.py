"""
LLM Service — the reasoning-service client used for clustering, category
matching and summaries.

Provides:
  - get_llm()               → configured Groq ChatModel (singleton)
  - ReasoningClient         → async complete(system, user) → text
  - GroqReasoningClient     → default ReasoningClient on top of ChatGroq
  - extract_json_payload()  → first JSON object in a possibly wrapped reply
  - load_prompt()           → prompt template from the prompts/ directory
"""

from __future__ import annotations

import json
import logging
import time
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any

from requirements_hub.config import get_settings

logger = logging.getLogger(__name__)

_PROMPT_DIR = Path(__file__).resolve().parent.parent / "prompts"

_llm_instance = None


def get_llm():
    """
    Return a configured Groq LLM client (singleton).
    Uses langchain-groq's ChatGroq.
    """
    global _llm_instance
    if _llm_instance is not None:
        return _llm_instance

    settings = get_settings()

    if not settings.groq_api_key:
        raise ValueError("GROQ_API_KEY is not set in environment / .env file")

    from langchain_groq import ChatGroq

    _llm_instance = ChatGroq(
        api_key=settings.groq_api_key,
        model=settings.llm_model,
        temperature=settings.llm_temperature,
        max_tokens=settings.llm_max_tokens,
    )
    logger.info(f"Initialized Groq LLM: {settings.llm_model}")
    return _llm_instance


def load_prompt(name: str) -> str:
    """Read a prompt template shipped in the prompts/ directory."""
    return (_PROMPT_DIR / name).read_text(encoding="utf-8")


class ReasoningClient(ABC):
    """Anything that can answer a system + user prompt pair with text."""

    @abstractmethod
    async def complete(self, system_prompt: str, user_prompt: str) -> str:
        ...


class GroqReasoningClient(ReasoningClient):
    """ReasoningClient backed by ChatGroq. Timeouts are applied by the caller's RetryPolicy."""

    def __init__(self, llm: Any = None):
        self._llm = llm

    @property
    def llm(self):
        if self._llm is None:
            self._llm = get_llm()
        return self._llm

    async def complete(self, system_prompt: str, user_prompt: str) -> str:
        logger.debug(
            f"[LLM] Prompt length: {len(system_prompt) + len(user_prompt)} chars"
        )
        logger.debug(f"[LLM] Prompt preview:\n{user_prompt[:500]}{'…' if len(user_prompt) > 500 else ''}")

        t0 = time.perf_counter()
        response = await self.llm.ainvoke([
            ("system", system_prompt),
            ("human", user_prompt),
        ])
        elapsed = time.perf_counter() - t0
        content = response.content or ""

        meta = getattr(response, "response_metadata", {}) or {}
        finish_reason = meta.get("finish_reason", "unknown")
        usage = meta.get("token_usage") or meta.get("usage", {})
        logger.info(
            f"[LLM] Response received in {elapsed:.2f}s | "
            f"Response length: {len(content)} chars | "
            f"finish_reason={finish_reason} | "
            f"tokens={usage}"
        )
        logger.debug(f"[LLM] Full response:\n{content}")
        return content


def extract_json_payload(raw_response: Any) -> Any | None:
    """
    Pull a JSON object out of a model reply.

    Accepts an already-parsed dict, plain JSON text, JSON inside markdown
    code fences, or JSON surrounded by prose. Returns None when nothing
    parseable is found.
    """
    if raw_response is None:
        return None
    if isinstance(raw_response, dict):
        return raw_response
    if not isinstance(raw_response, str):
        return None

    text = raw_response.strip()
    if not text:
        return None

    # Strip markdown code fences
    if "```" in text:
        lines = [l for l in text.split("\n") if not l.strip().startswith("```")]
        text = "\n".join(lines).strip()

    try:
        return json.loads(text)
    except json.JSONDecodeError:
        pass

    # Fall back to the outermost {...} span
    try:
        start = text.index("{")
        end = text.rindex("}") + 1
    except ValueError:
        logger.warning("[LLM] No JSON object found in response")
        return None

    try:
        return json.loads(text[start:end])
    except json.JSONDecodeError as exc:
        logger.warning(f"[LLM] JSON parse error: {exc}")
        return None
