"""Tests for seek resolution.

WHY: After a seek the reader expects the highlight to jump to exactly
where the audio now is, whatever happened before. Each fallback in the
chain covers a different kind of missing or ambiguous data.

HOW: The aligned fixture (word i spoken over [0.5 i, 0.5 i + 0.3]) for
the timing-based strategies, and hand-made timings for the fallbacks.
"""

from __future__ import annotations

import dataclasses
import math

import pytest

from listen_along.core.highlighter import HighlightProgressionController
from listen_along.core.ir import ControllerPhase, SeekStrategy
from listen_along.core.matcher import ContextMatcher
from listen_along.core.seek import SeekResolver
from listen_along.core.timing import ingest_timings
from listen_along.core.tokenizer import tokenize_text


def _resolver(document, records, settings):
    matcher = ContextMatcher(document, ingest_timings(records), settings)
    return SeekResolver(HighlightProgressionController(matcher))


# ---------------------------------------------------------------------------
# Strategy chain
# ---------------------------------------------------------------------------


class TestStrategies:

    def test_time_inside_a_word(self, resolver, controller):
        resolution = resolver.resolve(2.1)
        assert resolution.strategy == SeekStrategy.CONTAINING_EVENT
        assert resolution.text_index == 4
        assert resolution.timing_index == 4
        assert resolution.probability == pytest.approx(1.0)
        assert controller.state.highlighted == set(range(5))

    def test_time_between_words_uses_previous_word(self, resolver):
        resolution = resolver.resolve(2.4)
        assert resolution.strategy == SeekStrategy.CLOSEST_PREVIOUS_EVENT
        assert resolution.text_index == 4

    def test_start_of_audio_highlights_first_word(self, resolver):
        resolution = resolver.resolve(0.0)
        assert resolution.strategy == SeekStrategy.CONTAINING_EVENT
        assert resolution.text_index == 0

    def test_unmatched_word_falls_back_to_exact_search(self, settings):
        # a single timed word has no context, so its probability is only 0.4 * 1.0
        document = tokenize_text("one two three four")
        resolver = _resolver(
            document,
            [{"word": "three", "time_start": 1.0, "time_end": 1.5}],
            dataclasses.replace(settings, exact_match_threshold=0.5),
        )
        resolution = resolver.resolve(1.2)
        assert resolution.strategy == SeekStrategy.EXACT_WORD_SEARCH
        assert resolution.text_index == 2

    def test_no_timings_estimates_from_speaking_rate(self, aligned_document, settings):
        resolver = SeekResolver(HighlightProgressionController(ContextMatcher(aligned_document, [], settings)))
        resolution = resolver.resolve(2.0)
        assert resolution.strategy == SeekStrategy.TIME_ESTIMATE
        assert resolution.text_index == 5

    def test_time_before_first_word_estimates(self, aligned_document, settings):
        records = [
            {"word": t.normalized, "time_start": 5.0 + 0.5 * i, "time_end": 5.3 + 0.5 * i}
            for i, t in enumerate(aligned_document.tokens)
        ]
        resolver = _resolver(aligned_document, records, settings)
        resolution = resolver.resolve(1.0)
        assert resolution.strategy == SeekStrategy.TIME_ESTIMATE
        assert resolution.text_index == 2
        assert resolver.controller.phase == ControllerPhase.INITIAL_LOOKAHEAD

    def test_zero_without_timings_clears(self, aligned_document, settings):
        resolver = SeekResolver(HighlightProgressionController(ContextMatcher(aligned_document, [], settings)))
        resolution = resolver.resolve(0.0)
        assert resolution.strategy == SeekStrategy.CLEARED
        assert resolution.text_index == -1
        assert resolver.controller.state.highlighted == set()

    def test_empty_document_clears(self, settings):
        resolver = _resolver(tokenize_text(""), [], settings)
        assert resolver.resolve(3.0).strategy == SeekStrategy.CLEARED


# ---------------------------------------------------------------------------
# State after a seek
# ---------------------------------------------------------------------------


class TestSeekState:

    def test_clears_previous_highlights(self, resolver, controller, surface):
        controller.tick(5.05)
        resolver.resolve(1.05)
        assert controller.state.highlighted == {0, 1, 2}
        assert surface.highlighted_indices() == [0, 1, 2]

    def test_lifts_ceiling_until_next_tick(self, resolver, controller):
        resolver.resolve(2.1)
        assert math.isinf(controller.state.max_allowed_index)
        controller.tick(2.15)
        assert controller.state.max_allowed_index == 4

    def test_pointer_skips_events_already_due(self, resolver, controller):
        resolver.resolve(2.1)
        assert controller.state.next_timing_pointer == 5

    def test_ticking_continues_from_seek(self, resolver, controller):
        resolver.resolve(2.1)
        result = controller.tick(2.6)
        assert result.highlighted == [5]

    def test_backward_seek_resets_watermark(self, resolver, controller):
        controller.tick(8.05)
        resolver.resolve(1.05)
        assert controller.state.highlighted_through == 3


# ---------------------------------------------------------------------------
# Range handling
# ---------------------------------------------------------------------------


class TestClamping:

    def test_negative_time_clamps_to_zero(self, resolver):
        assert resolver.resolve(-5.0, duration=10.0).time_s == 0.0

    def test_time_past_duration_clamps(self, resolver):
        resolution = resolver.resolve(50.0, duration=10.0)
        assert resolution.time_s == 10.0
        assert resolution.text_index == 19

    def test_round_trip_returns_to_same_word(self, resolver, aligned_events):
        first = resolver.resolve(aligned_events[7].start_s)
        resolver.resolve(1.0)
        again = resolver.resolve(aligned_events[7].start_s)
        assert first.text_index == 7
        assert abs(again.text_index - first.text_index) <= 1
