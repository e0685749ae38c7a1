"""Write-time moderation for answer text.

``filter_content`` masks banned terms; ``find_text_problem`` reports why a
piece of text cannot be accepted at all. Both are pure functions so they
can be called concurrently from any request.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Iterable, Optional

MASK_CHAR = "*"
URL_PATTERN = re.compile(r"(?:https?://|www\.)", re.IGNORECASE)


@dataclass(frozen=True)
class FilterResult:
    is_flagged: bool
    rendered_text: str
    reason: Optional[str] = None


def filter_content(text: str, banned_terms: Iterable[str]) -> FilterResult:
    """Mask every case-insensitive occurrence of each banned term.

    Each match is replaced by a run of mask characters as long as the term,
    so the rendered text always has the same length as the input.
    """
    terms = [term for term in banned_terms if term and term.strip()]
    if not terms:
        return FilterResult(is_flagged=False, rendered_text=text)

    rendered = text
    detected: list[str] = []

    for term in terms:
        pattern = re.compile(re.escape(term), re.IGNORECASE)
        # Match against the original so earlier masks cannot hide a term
        spans = [m.span() for m in pattern.finditer(text)]
        if not spans:
            continue
        detected.append(term)
        for start, end in spans:
            rendered = rendered[:start] + MASK_CHAR * (end - start) + rendered[end:]

    if not detected:
        return FilterResult(is_flagged=False, rendered_text=text)

    return FilterResult(
        is_flagged=True,
        rendered_text=rendered,
        reason=f"Banned terms detected: {', '.join(detected)}",
    )


def find_text_problem(text: Optional[str], max_length: int) -> Optional[str]:
    """Return a user-facing message if ``text`` is not an acceptable answer."""
    if not text or not text.strip():
        return "Answer text is required"

    if len(text) > max_length:
        return f"Answer must be {max_length} characters or less"

    if URL_PATTERN.search(text):
        return "Answers cannot contain URLs"

    return None
