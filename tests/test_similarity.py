"""
Tests for the similarity engine: cosine similarity, top-k ranking and
snippet extraction.
"""

from __future__ import annotations

import math

import pytest

from prism_mcp.errors import DimensionMismatchError, InvalidArgumentError
from prism_mcp.rule_types import RuleDocument
from prism_mcp.similarity import cosine_similarity, extract_snippet, top_k


def _rule(slug: str, embedding: list[float] | None) -> RuleDocument:
    return RuleDocument(slug=slug, content=f"{slug} body", embedding=embedding)


class TestCosineSimilarity:
    def test_identical_vectors(self) -> None:
        assert cosine_similarity([1.0, 2.0, 3.0], [1.0, 2.0, 3.0]) == pytest.approx(1.0)

    def test_orthogonal_vectors(self) -> None:
        assert cosine_similarity([1.0, 0.0], [0.0, 1.0]) == pytest.approx(0.0)

    def test_opposite_vectors(self) -> None:
        assert cosine_similarity([1.0, -2.0], [-1.0, 2.0]) == pytest.approx(-1.0)

    def test_scale_invariant(self) -> None:
        a = [0.3, -1.2, 4.0]
        assert cosine_similarity(a, [x * 7.5 for x in a]) == pytest.approx(1.0)

    def test_zero_vector_is_exactly_zero(self) -> None:
        assert cosine_similarity([0.0, 0.0, 0.0], [1.0, 2.0, 3.0]) == 0.0
        assert cosine_similarity([1.0, 2.0], [0.0, 0.0]) == 0.0

    def test_result_within_bounds(self) -> None:
        value = cosine_similarity([0.2, 0.9, -0.4], [-0.5, 0.1, 0.8])
        assert -1.0 <= value <= 1.0

    def test_symmetric(self) -> None:
        a, b = [1.0, 2.0, 0.5], [0.3, -1.0, 2.0]
        assert math.isclose(cosine_similarity(a, b), cosine_similarity(b, a))

    def test_dimension_mismatch(self) -> None:
        with pytest.raises(DimensionMismatchError) as exc_info:
            cosine_similarity([1.0, 2.0], [1.0, 2.0, 3.0])
        assert "equal length" in str(exc_info.value)
        assert isinstance(exc_info.value, ValueError)


class TestTopK:
    def test_orders_by_similarity_descending(self) -> None:
        items = [
            _rule("low", [0.0, 1.0]),
            _rule("high", [1.0, 0.0]),
            _rule("mid", [1.0, 1.0]),
        ]
        ranked = top_k([1.0, 0.0], items, 3)
        assert [r.item.slug for r in ranked] == ["high", "mid", "low"]
        scores = [r.similarity for r in ranked]
        assert scores == sorted(scores, reverse=True)

    def test_truncates_to_k(self) -> None:
        items = [_rule(f"r{i}", [1.0, float(i)]) for i in range(10)]
        assert len(top_k([1.0, 0.0], items, 3)) == 3

    def test_fewer_items_than_k(self) -> None:
        items = [_rule("a", [1.0, 0.0]), _rule("b", [0.0, 1.0])]
        assert len(top_k([1.0, 0.0], items, 5)) == 2

    def test_skips_items_without_embedding(self) -> None:
        items = [_rule("none", None), _rule("empty", []), _rule("ok", [1.0, 0.0])]
        ranked = top_k([1.0, 0.0], items, 5)
        assert [r.item.slug for r in ranked] == ["ok"]

    def test_ties_keep_input_order(self) -> None:
        items = [_rule("first", [1.0, 0.0]), _rule("second", [2.0, 0.0]), _rule("third", [3.0, 0.0])]
        ranked = top_k([1.0, 0.0], items, 3)
        assert [r.item.slug for r in ranked] == ["first", "second", "third"]

    def test_zero_or_negative_k_returns_empty(self) -> None:
        items = [_rule("a", [1.0, 0.0])]
        assert top_k([1.0, 0.0], items, 0) == []
        assert top_k([1.0, 0.0], items, -3) == []

    @pytest.mark.parametrize("k", [2.5, "3", True, None])
    def test_non_integer_k_rejected(self, k: object) -> None:
        with pytest.raises(InvalidArgumentError):
            top_k([1.0, 0.0], [_rule("a", [1.0, 0.0])], k)  # type: ignore[arg-type]

    def test_empty_items(self) -> None:
        assert top_k([1.0, 0.0], [], 5) == []

    def test_dimension_mismatch_propagates(self) -> None:
        with pytest.raises(DimensionMismatchError):
            top_k([1.0, 0.0], [_rule("a", [1.0, 0.0, 0.0])], 1)


class TestExtractSnippet:
    def test_short_text_unchanged(self) -> None:
        assert extract_snippet("Short rule.", 200) == "Short rule."

    def test_exact_length_unchanged(self) -> None:
        text = "x" * 200
        assert extract_snippet(text) == text

    def test_breaks_on_late_period_without_ellipsis(self) -> None:
        # period at index 89 of a 100-char window
        text = "a" * 89 + "." + "b" * 50
        assert extract_snippet(text, 100) == "a" * 89 + "."

    def test_breaks_on_late_space_with_ellipsis(self) -> None:
        text = "a" * 80 + " " + "b" * 50
        assert extract_snippet(text, 100) == "a" * 80 + "..."

    def test_early_break_points_ignored(self) -> None:
        text = "a" * 10 + ". " + "b" * 200
        assert extract_snippet(text, 100) == text[:100] + "..."

    def test_threshold_is_strict(self) -> None:
        # Period exactly at 0.7 * max_length is not a valid break
        text = "a" * 70 + "." + "b" * 100
        assert extract_snippet(text, 100) == text[:100] + "..."

    def test_period_preferred_over_later_space(self) -> None:
        text = "a" * 75 + "." + "b" * 10 + " " + "c" * 50
        assert extract_snippet(text, 100) == "a" * 75 + "."

    def test_length_bound(self) -> None:
        text = "word " * 100
        assert len(extract_snippet(text, 50)) <= 50 + len("...")

    def test_zero_max_length(self) -> None:
        assert extract_snippet("abc", 0) == "..."
        assert extract_snippet("", 0) == ""

    def test_negative_max_length_rejected(self) -> None:
        with pytest.raises(InvalidArgumentError):
            extract_snippet("abc", -1)

    def test_space_break_example(self) -> None:
        assert extract_snippet("A sentence here now and more", 20) == "A sentence here now..."

    def test_period_break_example(self) -> None:
        assert extract_snippet("A short sentence here. Then more words", 25) == "A short sentence here."
