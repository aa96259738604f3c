"""Tests for the context-similarity matcher.

WHY: The matcher is the one primitive every other component depends on.
The blend formula, the adaptive threshold and the strict acceptance
comparison decide which text index every timing event lands on.

HOW: Hand-computable sequences for blend_similarity, the four-word
exact-match scenario, and the aligned fixture for window behaviour.
"""

from __future__ import annotations

import pytest

from listen_along.core.ir import NO_MATCH, MatchResult
from listen_along.core.matcher import ContextMatcher, blend_similarity
from listen_along.core.timing import ingest_timings
from listen_along.core.tokenizer import tokenize_text


# ---------------------------------------------------------------------------
# blend_similarity
# ---------------------------------------------------------------------------


class TestBlendSimilarity:

    def test_identical_sequences_score_one(self):
        assert blend_similarity(["a", "b", "c"], ["a", "b", "c"]) == pytest.approx(1.0)

    def test_both_empty_scores_one(self):
        assert blend_similarity([], []) == 1.0

    def test_one_empty_scores_zero(self):
        assert blend_similarity(["a"], []) == 0.0
        assert blend_similarity([], ["a"]) == 0.0

    def test_reordered_words_score_overlap_only(self):
        # overlap 2/2, positional 0/2
        assert blend_similarity(["a", "b"], ["b", "a"]) == pytest.approx(0.6)

    def test_overlap_divides_by_longer_sequence(self):
        # overlap 2/4, positional 2/2
        assert blend_similarity(["a", "b"], ["a", "b", "c", "d"]) == pytest.approx(0.6 * 0.5 + 0.4)

    def test_custom_weights(self):
        score = blend_similarity(["a", "b"], ["b", "a"], overlap_weight=0.5, positional_weight=0.5)
        assert score == pytest.approx(0.5)


# ---------------------------------------------------------------------------
# Scoring and acceptance
# ---------------------------------------------------------------------------


class TestScoring:

    @pytest.fixture
    def matcher(self, settings):
        doc = tokenize_text("the quick brown fox")
        events = ingest_timings([
            {"word": w, "time_start": i * 0.5, "time_end": i * 0.5 + 0.3}
            for i, w in enumerate(["the", "quick", "brown", "fox"])
        ])
        return ContextMatcher(doc, events, settings)

    def test_exact_match_with_full_context_scores_one(self, matcher):
        result = matcher.score(2, 2)
        assert result.index == 2
        assert result.word_score == 1.0
        assert result.context_score == pytest.approx(1.0)
        assert result.probability == pytest.approx(1.0)

    def test_find_best_match_picks_exact_word(self, matcher):
        result = matcher.find_best_match(2, search_center=2)
        assert result.accepted
        assert result.index == 2

    def test_thresholds_depend_on_word_score(self, matcher):
        assert matcher.threshold_for(1.0) == pytest.approx(0.2)
        assert matcher.threshold_for(0.0) == pytest.approx(0.3)

    def test_acceptance_is_strictly_above_threshold(self, matcher):
        assert matcher.accept(MatchResult(index=3, probability=0.2, word_score=1.0)) is NO_MATCH
        assert matcher.accept(MatchResult(index=3, probability=0.21, word_score=1.0)).index == 3
        assert matcher.accept(MatchResult(index=3, probability=0.3, word_score=0.0)) is NO_MATCH
        assert matcher.accept(MatchResult(index=3, probability=0.31, word_score=0.0)).index == 3

    def test_out_of_range_timing_index_is_no_match(self, matcher):
        assert matcher.find_best_match(99, 0) is NO_MATCH
        assert matcher.find_best_match(-1, 0) is NO_MATCH


# ---------------------------------------------------------------------------
# Context windows and empty tokens
# ---------------------------------------------------------------------------


class TestContextWindows:

    def test_text_context_excludes_centre(self, aligned_matcher):
        context = aligned_matcher.text_context(0)
        assert len(context) == 10
        assert context[0] == "bravo"

    def test_audio_context_is_clipped_at_edges(self, aligned_matcher):
        context = aligned_matcher.audio_context(19)
        assert len(context) == 10
        assert "tango" not in context

    def test_empty_tokens_are_never_candidates(self, settings):
        doc = tokenize_text("the — fox")
        events = ingest_timings([
            {"word": "the", "time_start": 0.0, "time_end": 0.2},
            {"word": "fox", "time_start": 0.3, "time_end": 0.5},
        ])
        matcher = ContextMatcher(doc, events, settings)
        assert matcher.text_context(2) == ["the"]
        assert matcher.find_best_match(1, 1).index == 2
        assert matcher.score(1, 1) is NO_MATCH


# ---------------------------------------------------------------------------
# Search windows
# ---------------------------------------------------------------------------


class TestSearch:

    def test_find_best_match_is_local(self, aligned_matcher):
        # timing 18 lies outside [0, 10]; no candidate there clears the threshold
        assert aligned_matcher.find_best_match(18, search_center=0) is NO_MATCH
        assert aligned_matcher.find_best_match(18, search_center=15).index == 18

    def test_full_range_search_finds_distant_match(self, aligned_matcher):
        assert aligned_matcher.find_best_match_in_range(18, 0, None, center=0).index == 18

    def test_full_range_ties_prefer_center(self, settings):
        doc = tokenize_text("go go go go")
        events = ingest_timings([{"word": "go", "time_start": 0.0, "time_end": 0.1}])
        matcher = ContextMatcher(doc, events, settings)
        assert matcher.find_best_match_in_range(0, center=2).index == 2
        assert matcher.find_best_match_in_range(0).index == 0

    def test_forward_exact_search(self, aligned_matcher):
        assert aligned_matcher.forward_exact_search("echo", 0) == 4
        assert aligned_matcher.forward_exact_search("echo", 5) == -1
        assert aligned_matcher.forward_exact_search("tango", 0) == -1
        assert aligned_matcher.forward_exact_search("tango", 0, limit=20) == 19
        assert aligned_matcher.forward_exact_search("", 0) == -1

    def test_nearest_exact_search(self, settings):
        doc = tokenize_text("a x b c d x e")
        matcher = ContextMatcher(doc, [], settings)
        assert matcher.nearest_exact_search("x", 4) == 5
        assert matcher.nearest_exact_search("x", 3) == 1
        assert matcher.nearest_exact_search("zzz", 3) == -1

    def test_interpolate_text_index(self, aligned_matcher):
        assert aligned_matcher.interpolate_text_index(0) == 0
        assert aligned_matcher.interpolate_text_index(19) == 19
        assert aligned_matcher.interpolate_text_index(10) == 10
