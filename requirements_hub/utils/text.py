"""
Text helpers shared by extraction and comparison.
"""

from __future__ import annotations

import re

_WHITESPACE_RE = re.compile(r"\s+")
_WORD_RE = re.compile(r"\w+", re.UNICODE)


def normalize_text(text: str | None) -> str:
    """Trim, lowercase and collapse internal whitespace."""
    return _WHITESPACE_RE.sub(" ", (text or "").strip().lower())


def significant_words(text: str | None, min_length: int = 4) -> set[str]:
    """Lowercase words of at least *min_length* characters."""
    return {w for w in _WORD_RE.findall((text or "").lower()) if len(w) >= min_length}


def token_overlap(a: str | None, b: str | None) -> float:
    """Shared significant words divided by the larger word set."""
    words_a = significant_words(a)
    words_b = significant_words(b)
    denominator = max(len(words_a), len(words_b))
    if denominator == 0:
        return 0.0
    return len(words_a & words_b) / denominator
