"""Tests for librarian.core.tokens."""

from librarian.core.tokens import count_words, estimate_tokens, fits_budget, tokens_for_chars


class TestEstimateTokens:
    def test_empty(self):
        assert estimate_tokens("") == 0

    def test_rounds_up(self):
        assert estimate_tokens("a") == 1
        assert estimate_tokens("abcd") == 1
        assert estimate_tokens("abcde") == 2

    def test_matches_char_count(self):
        assert tokens_for_chars(0) == 0
        assert tokens_for_chars(9) == estimate_tokens("x" * 9) == 3

    def test_monotonic(self):
        sizes = [estimate_tokens("x" * n) for n in range(0, 200, 7)]
        assert sizes == sorted(sizes)


class TestFitsBudget:
    def test_strictly_under(self):
        text = "x" * 400  # 100 tokens
        assert fits_budget(text, 101)
        assert not fits_budget(text, 100)

    def test_ratio(self):
        text = "x" * 280  # 70 tokens
        assert not fits_budget(text, 100, ratio=0.7)
        assert fits_budget(text, 101, ratio=0.7)


class TestCountWords:
    def test_whitespace_split(self):
        assert count_words("one  two\nthree\tfour") == 4
        assert count_words("") == 0
