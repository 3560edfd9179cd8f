"""
Fuzzy string matching for names and project titles.
Pure and deterministic: normalization, edit-distance ratio, token-sort ratio, partial ratio.
"""
from __future__ import annotations

import math
import re

from rapidfuzz.distance import Levenshtein

_NON_LETTERS = re.compile(r"[^a-z\s]")
_WHITESPACE = re.compile(r"\s+")


def normalize_text(text: str | None) -> str:
    """Lowercase, keep only letters and spaces, collapse whitespace."""
    if not text:
        return ""
    lowered = _NON_LETTERS.sub("", text.lower())
    return _WHITESPACE.sub(" ", lowered).strip()


def similarity_ratio(a: str, b: str) -> int:
    """
    Edit-distance similarity in [0, 100].

    ratio = 100 * (max_len - distance) / max_len rounded half-up, with unit-cost
    insert/delete/substitute. Two empty strings are identical (100).
    """
    max_len = max(len(a), len(b))
    if max_len == 0:
        return 100
    distance = Levenshtein.distance(a, b)
    # Half-up: round() would send 74.5 to 74 and flip a threshold decision.
    return math.floor(100 * (max_len - distance) / max_len + 0.5)


def token_sort_ratio(a: str, b: str) -> int:
    """Similarity after sorting whitespace-separated tokens, so word order is irrelevant."""
    sorted_a = " ".join(sorted(a.split()))
    sorted_b = " ".join(sorted(b.split()))
    return similarity_ratio(sorted_a, sorted_b)


def partial_ratio(a: str, b: str) -> int:
    """Best similarity of the shorter string against every same-length window of the longer one."""
    shorter, longer = (a, b) if len(a) <= len(b) else (b, a)
    if not shorter:
        return 0
    window = len(shorter)
    best = 0
    for start in range(len(longer) - window + 1):
        best = max(best, similarity_ratio(shorter, longer[start:start + window]))
        if best == 100:
            break
    return best


def names_match(a: str, b: str, threshold: int = 80) -> bool:
    """Order-independent name comparison; an empty side never matches."""
    if not a or not b:
        return False
    return token_sort_ratio(normalize_text(a), normalize_text(b)) >= threshold


def project_match(project: str, text: str, threshold: int = 75) -> bool:
    """True if the project title appears (fuzzily) somewhere inside free text."""
    if not project or not text:
        return False
    return partial_ratio(normalize_text(project), normalize_text(text)) >= threshold
