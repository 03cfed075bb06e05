"""
Stable identity for a requirement draft across the compare and commit
phases of one import.
"""

from __future__ import annotations

import re

_WHITESPACE_RE = re.compile(r"\s+")


def generate_requirement_key(
    sheet_name: str,
    sheet_order: int,
    sheet_row_index: int,
    requirement_text: str | None,
) -> str:
    """
    Return ``sheet:order:row:text`` where the text part is the first 50
    characters with every whitespace run replaced by ``_``.

    Only stable while both phases run the same extraction over the same file.
    """
    text_part = _WHITESPACE_RE.sub("_", (requirement_text or "")[:50])
    return f"{sheet_name}:{sheet_order}:{sheet_row_index}:{text_part}"
