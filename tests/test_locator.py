"""Tests for locating passages in the text and the audio.

WHY: "Start listening from this paragraph" depends on two independent
searches agreeing: the token window for the passage, and the timing
event for the window's first word. Either can fail, and failures must
come back as values the caller can show, not exceptions.

HOW: The fox fixture ("the quick brown fox jumps over the lazy dog",
word i at 0.5 i s). With the default locator window of 15 every
surrounding context covers the whole sentence, which keeps the scores
hand-computable:
  context(query) = 0.6 * len(query) / 9 when no word lines up
"""

from __future__ import annotations

import pytest

from listen_along.core.locator import (
    LOW_PROBABILITY,
    NO_AUDIO_TIMING,
    NO_VALID_WORDS,
    ParagraphLocator,
)
from listen_along.core.matcher import ContextMatcher
from listen_along.core.timing import ingest_timings
from listen_along.core.tokenizer import tokenize_text


@pytest.fixture
def locator(fox_matcher):
    return ParagraphLocator(fox_matcher)


@pytest.fixture
def two_paragraph_locator(fox_records, settings):
    document = tokenize_text("the quick brown fox\n\njumps over the lazy dog")
    return ParagraphLocator(ContextMatcher(document, ingest_timings(fox_records), settings))


# ---------------------------------------------------------------------------
# locate
# ---------------------------------------------------------------------------


class TestLocate:

    def test_exact_passage(self, locator):
        result = locator.locate("Brown fox, jumps!")
        assert result.success
        assert (result.start, result.end) == (2, 4)
        # 0.7 * 1.0 + 0.3 * (0.6 * 3 / 9)
        assert result.probability == pytest.approx(0.76)
        assert result.window.direct_score == pytest.approx(1.0)
        assert result.timestamp.time_s == pytest.approx(1.0)
        assert result.timestamp.timing_index == 2
        assert result.timestamp.probability == pytest.approx(1.0)

    def test_end_of_text(self, locator):
        result = locator.locate("lazy dog")
        assert result.success
        assert result.start == 7
        assert result.probability == pytest.approx(0.74)
        assert result.timestamp.time_s == pytest.approx(3.5)

    def test_unknown_passage_is_rejected(self, locator):
        result = locator.locate("purple elephants dance")
        assert not result.success
        assert result.error == LOW_PROBABILITY
        assert result.timestamp is None

    def test_punctuation_only_query(self, locator):
        result = locator.locate("... !!!")
        assert not result.success
        assert result.error == NO_VALID_WORDS

    def test_explicit_threshold_overrides_default(self, locator):
        assert locator.locate("brown fox jumps", min_probability=0.9).error == LOW_PROBABILITY
        assert locator.locate("brown fox jumps", min_probability=0.5).success

    def test_no_timings_reports_window_without_time(self, fox_document, settings):
        locator = ParagraphLocator(ContextMatcher(fox_document, [], settings))
        result = locator.locate("brown fox")
        assert not result.success
        assert result.error == NO_AUDIO_TIMING
        assert result.start == 2

    def test_windows_of_mostly_punctuation_are_skipped(self, fox_events, settings):
        # "red" alone would score 0.6; a 3-word window needs 2 populated tokens
        document = tokenize_text("* * * red")
        locator = ParagraphLocator(ContextMatcher(document, fox_events, settings))
        result = locator.locate("red fox runs")
        assert not result.success
        assert result.error == LOW_PROBABILITY
        assert result.start == -1

    def test_scene_break_tokens_keep_positions(self, fox_events, settings):
        document = tokenize_text("it was late * * * brown fox jumps")
        locator = ParagraphLocator(ContextMatcher(document, fox_events, settings))
        result = locator.locate("brown fox jumps")
        assert (result.start, result.end) == (6, 8)
        assert result.timestamp.time_s == pytest.approx(1.0)

    def test_repeated_first_word_uses_audio_context(self, locator):
        # with W=5 only the second "the" has the same neighbours in both streams
        locator.set_context_window(5)
        result = locator.locate("the lazy dog")
        assert result.start == 6
        assert result.timestamp.timing_index == 6
        assert result.timestamp.time_s == pytest.approx(3.0)


# ---------------------------------------------------------------------------
# Multiple candidates and paragraphs
# ---------------------------------------------------------------------------


class TestParagraphs:

    def test_locate_first_stops_at_first_success(self, locator):
        attempts = locator.locate_first(["purple elephants", "lazy dog", "brown fox"])
        assert len(attempts) == 2
        assert attempts[0].result.error == LOW_PROBABILITY
        assert attempts[1].index == 1
        assert attempts[1].result.success

    def test_locate_first_all_failing(self, locator):
        attempts = locator.locate_first(["purple", "..."])
        assert [a.result.success for a in attempts] == [False, False]

    def test_extract_paragraphs(self, two_paragraph_locator):
        assert two_paragraph_locator.extract_paragraphs() == [
            "the quick brown fox",
            "jumps over the lazy dog",
        ]

    def test_locate_paragraph_by_index(self, two_paragraph_locator):
        result = two_paragraph_locator.locate_paragraph(1)
        assert result.success
        assert result.start == 4
        assert result.timestamp.time_s == pytest.approx(2.0)

    def test_single_paragraph_document(self, locator):
        result = locator.locate_paragraph(0)
        assert result.success
        assert result.start == 0
        assert result.probability == pytest.approx(1.0)
        assert result.timestamp.time_s == 0.0

    def test_paragraph_index_out_of_range(self, two_paragraph_locator):
        assert two_paragraph_locator.locate_paragraph(5).error == NO_VALID_WORDS


# ---------------------------------------------------------------------------
# Building blocks
# ---------------------------------------------------------------------------


class TestPrimitives:

    def test_two_empty_sequences_do_not_match(self, locator):
        assert locator.similarity([], []) == 0.0
        assert locator.similarity(["a"], ["a"]) == pytest.approx(1.0)

    def test_find_best_window_empty_query(self, locator):
        assert locator.find_best_window([]).start == -1

    def test_find_audio_timestamp_out_of_range(self, locator):
        assert locator.find_audio_timestamp(-1) is None
        assert locator.find_audio_timestamp(99) is None

    def test_find_audio_timestamp_without_matching_event(self, fox_document, settings):
        events = ingest_timings([{"word": "zebra", "time_start": 0.0, "time_end": 0.2}])
        locator = ParagraphLocator(ContextMatcher(fox_document, events, settings))
        assert locator.find_audio_timestamp(0) is None

    def test_setters_clamp(self, locator):
        assert locator.set_min_probability_threshold(1.5) == 1.0
        assert locator.set_min_probability_threshold(-0.5) == 0.0
        assert locator.set_context_window(2) == 5
        assert locator.set_context_window(500) == 50
        assert locator.context_window == 50

    def test_threshold_setter_applies_to_locate(self, locator):
        locator.set_min_probability_threshold(0.9)
        assert locator.locate("brown fox jumps").error == LOW_PROBABILITY
