"""Shared test fixtures for the listen_along test suite.

WHY: Most engine behaviour only shows up on concrete text/timing pairs.
Centralizing a few well-understood documents keeps the expected indices
in tests easy to verify by hand.

HOW: Three reference documents:
  aligned — 20 distinct words, one timing per word at 0.5 s intervals
            (word i spoken over [0.5 i, 0.5 i + 0.3])
  gap     — 24 distinct words; words 6-8 have no timings, word 5 ends
            at 2.0 s and word 9 starts at 2.5 s
  fox     — "the quick brown fox jumps over the lazy dog", timed like
            aligned
Each has matching event, matcher and controller fixtures.

RULES:
- Settings are the library defaults (W=10, lookahead 100 ms)
- Words are distinct in aligned/gap so every timing has one true match
"""

from typing import Any, Dict, List

import pytest

from listen_along.adapters.render_surface import InMemoryRenderSurface
from listen_along.config import AlignmentSettings
from listen_along.core.highlighter import HighlightProgressionController
from listen_along.core.matcher import ContextMatcher
from listen_along.core.seek import SeekResolver
from listen_along.core.timing import ingest_timings
from listen_along.core.tokenizer import tokenize_text


WORDS: List[str] = [
    "alpha", "bravo", "charlie", "delta", "echo", "foxtrot",
    "golf", "hotel", "india", "juliet", "kilo", "lima",
    "mike", "november", "oscar", "papa", "quebec", "romeo",
    "sierra", "tango", "uniform", "victor", "whiskey", "xray",
]

FOX_TEXT = "the quick brown fox jumps over the lazy dog"


def timed_records(words: List[str], step: float = 0.5, length: float = 0.3) -> List[Dict[str, Any]]:
    """One record per word, word i spoken over [step * i, step * i + length]."""
    return [
        {
            "word": word,
            "time_start": round(step * i, 3),
            "time_end": round(step * i + length, 3),
        }
        for i, word in enumerate(words)
    ]


def gap_records(next_start: float = 2.5) -> List[Dict[str, Any]]:
    """Timings for WORDS with words 6-8 missing; word 5 ends at 2.0 s."""
    records = []
    for j in range(6):
        start = round(0.25 + 0.3 * j, 3)
        records.append({"word": WORDS[j], "time_start": start, "time_end": round(start + 0.25, 3)})
    for j in range(9, len(WORDS)):
        start = round(next_start + 0.3 * (j - 9), 3)
        records.append({"word": WORDS[j], "time_start": start, "time_end": round(start + 0.25, 3)})
    return records


# ---------------------------------------------------------------------------
# Settings
# ---------------------------------------------------------------------------


@pytest.fixture
def settings():
    return AlignmentSettings(
        context_window=10,
        lookahead_ms=100,
        locator_context_window=15,
        tick_hz=20.0,
    )


@pytest.fixture
def make_events():
    """Factory: TimingEvents for a word list, word i spoken at 0.5 i s."""
    def _make(words: List[str]):
        return ingest_timings(timed_records(words))
    return _make


# ---------------------------------------------------------------------------
# Aligned document
# ---------------------------------------------------------------------------


@pytest.fixture
def aligned_document():
    return tokenize_text(" ".join(WORDS[:20]))


@pytest.fixture
def aligned_events():
    return ingest_timings(timed_records(WORDS[:20]))


@pytest.fixture
def aligned_matcher(aligned_document, aligned_events, settings):
    return ContextMatcher(aligned_document, aligned_events, settings)


@pytest.fixture
def surface(aligned_document):
    return InMemoryRenderSurface(aligned_document)


@pytest.fixture
def controller(aligned_matcher, surface):
    return HighlightProgressionController(aligned_matcher, surface)


@pytest.fixture
def resolver(controller):
    return SeekResolver(controller)


# ---------------------------------------------------------------------------
# Gap document
# ---------------------------------------------------------------------------


@pytest.fixture
def gap_document():
    return tokenize_text(" ".join(WORDS))


@pytest.fixture
def make_gap_controller(gap_document, settings):
    """Factory: controller over the gap document, word 9 starting at next_start."""
    def _make(next_start: float = 2.5) -> HighlightProgressionController:
        events = ingest_timings(gap_records(next_start))
        return HighlightProgressionController(ContextMatcher(gap_document, events, settings))
    return _make


@pytest.fixture
def gap_controller(make_gap_controller):
    return make_gap_controller()


# ---------------------------------------------------------------------------
# Fox document
# ---------------------------------------------------------------------------


@pytest.fixture
def fox_document():
    return tokenize_text(FOX_TEXT)


@pytest.fixture
def fox_records():
    return timed_records(FOX_TEXT.split())


@pytest.fixture
def fox_events(fox_records):
    return ingest_timings(fox_records)


@pytest.fixture
def fox_matcher(fox_document, fox_events, settings):
    return ContextMatcher(fox_document, fox_events, settings)


# ---------------------------------------------------------------------------
# Playback clock
# ---------------------------------------------------------------------------


class FakeClock:
    """Manually advanced monotonic clock for SimulatedAudioEngine."""

    def __init__(self, start: float = 100.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()
