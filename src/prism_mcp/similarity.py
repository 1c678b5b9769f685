"""
Vector similarity and snippet helpers.

Pure functions, no I/O: cosine similarity, top-k ranking over embeddable
items, and snippet extraction for search results.
"""

from __future__ import annotations

import math
from collections.abc import Iterable, Sequence
from typing import TypeVar

from prism_mcp.errors import DimensionMismatchError, InvalidArgumentError
from prism_mcp.rule_types import EmbeddableItem, RankedResult

T = TypeVar("T", bound=EmbeddableItem)

ELLIPSIS = "..."
# A clean break is only taken past this fraction of max_length
_BREAK_THRESHOLD = 0.7


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """
    Compute cosine similarity between two equal-length vectors.

    Returns a float in [-1, 1], or exactly 0.0 when either vector has zero
    magnitude.
    """
    if len(a) != len(b):
        raise DimensionMismatchError(len(a), len(b))

    dot = sum(x * y for x, y in zip(a, b))
    norm_a = math.sqrt(sum(x * x for x in a))
    norm_b = math.sqrt(sum(y * y for y in b))

    magnitude = norm_a * norm_b
    if magnitude == 0.0:
        return 0.0

    return dot / magnitude


def top_k(query_vector: Sequence[float], items: Iterable[T], k: int) -> list[RankedResult[T]]:
    """
    Rank *items* by cosine similarity to *query_vector* and keep the best *k*.

    Items without an embedding are skipped. Ties keep their input order.
    """
    if isinstance(k, bool) or not isinstance(k, int):
        raise InvalidArgumentError(f"k must be an integer, got {k!r}")
    if k <= 0:
        return []

    scored = [
        RankedResult(item=item, similarity=cosine_similarity(query_vector, item.embedding))
        for item in items
        if item.embedding
    ]
    # list.sort is stable, so equal scores keep their relative order
    scored.sort(key=lambda r: r.similarity, reverse=True)
    return scored[:k]


def extract_snippet(text: str, max_length: int = 200) -> str:
    """
    Shorten *text* to at most *max_length* characters (plus an ellipsis).

    Prefers ending on the last period past 70% of *max_length*, then on the
    last space past the same point, else cuts hard.
    """
    if max_length < 0:
        raise InvalidArgumentError(f"max_length must be non-negative, got {max_length}")
    if len(text) <= max_length:
        return text

    snippet = text[:max_length]
    last_period = snippet.rfind(".")
    last_space = snippet.rfind(" ")
    threshold = max_length * _BREAK_THRESHOLD

    if last_period > threshold:
        return snippet[: last_period + 1]
    if last_space > threshold:
        return snippet[:last_space] + ELLIPSIS
    return snippet + ELLIPSIS
