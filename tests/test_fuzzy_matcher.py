"""Tests for FuzzyMatcher -- normalization, exact/substring checks and similarity."""

from __future__ import annotations

import pytest

from marquee.core.fuzzy_matcher import FuzzyMatcher


@pytest.fixture
def matcher() -> FuzzyMatcher:
    return FuzzyMatcher()


# ------------------------------------------------------------------
# normalization
# ------------------------------------------------------------------


class TestNormalize:
    def test_dots_and_underscores(self):
        assert FuzzyMatcher.normalize("The.Matrix_Reloaded") == "the matrix reloaded"

    def test_whitespace_collapsed(self):
        assert FuzzyMatcher.normalize("  The   Matrix  ") == "the matrix"

    def test_none_and_empty(self):
        assert FuzzyMatcher.normalize(None) == ""
        assert FuzzyMatcher.normalize("") == ""


# ------------------------------------------------------------------
# exact / substring
# ------------------------------------------------------------------


class TestExactAndSubstring:
    def test_exact_ignores_case_and_separators(self, matcher: FuzzyMatcher):
        assert matcher.is_exact("The.Matrix", "the matrix")

    def test_exact_requires_content(self, matcher: FuzzyMatcher):
        assert not matcher.is_exact("", "")
        assert not matcher.is_exact(None, None)

    def test_substring_either_direction(self, matcher: FuzzyMatcher):
        assert matcher.is_substring("Matrix", "The Matrix")
        assert matcher.is_substring("The Matrix Reloaded", "matrix reloaded")

    def test_substring_with_empty_side(self, matcher: FuzzyMatcher):
        assert not matcher.is_substring("", "The Matrix")
        assert not matcher.is_substring("Matrix", None)


# ------------------------------------------------------------------
# similarity
# ------------------------------------------------------------------


class TestSimilarity:
    def test_identical(self, matcher: FuzzyMatcher):
        assert matcher.similarity("Alien", "ALIEN") == 1.0

    def test_empty_values(self, matcher: FuzzyMatcher):
        assert matcher.similarity("", "Alien") == 0.0
        assert matcher.similarity("Alien", None) == 0.0

    def test_jaccard_over_character_sets(self, matcher: FuzzyMatcher):
        # {a, b} shared out of {a, b, c, d}
        assert matcher.similarity("abc", "abd") == pytest.approx(0.5)

    def test_disjoint_strings(self, matcher: FuzzyMatcher):
        assert matcher.similarity("abc", "xyz") == 0.0

    def test_bounded(self, matcher: FuzzyMatcher):
        for a, b in [("Se7en", "Seven"), ("Up", "Upgrade"), ("Heat", "The Heat")]:
            assert 0.0 <= matcher.similarity(a, b) <= 1.0

    def test_token_sort_handles_reordering(self):
        token_sort = FuzzyMatcher("token_sort")
        assert token_sort.similarity("Matrix The", "The Matrix") == 1.0

    def test_token_sort_scaled_to_unit_interval(self):
        token_sort = FuzzyMatcher("token_sort")
        score = token_sort.similarity("The Godfather", "The Godfather Part II")
        assert 0.5 < score < 1.0

    def test_unknown_strategy_rejected(self):
        with pytest.raises(ValueError, match="similarity strategy"):
            FuzzyMatcher("levenshtein")

    def test_strategy_property(self):
        assert FuzzyMatcher("token_sort").strategy == "token_sort"
