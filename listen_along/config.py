"""Configuration constants, tuning defaults, and .env loading.

WHY: The alignment engine is a greedy real-time heuristic whose weights
and thresholds were chosen empirically. Keeping every one of them in a
single place, overridable from the environment, lets them be tuned per
deployment without touching matching code.

HOW: python-dotenv loads the .env file on import. Each constant is a
module-level value read from an environment variable with a documented
default. AlignmentSettings bundles them into one immutable object that
is passed down to the matcher, controller, resolver and locator.

RULES:
- Blend ratios (0.4/0.6, 0.6/0.4, 0.7/0.3) and thresholds (0.2/0.3, 0.4)
  are defaults only; matching code never changes them silently
- All times are float seconds except LOOKAHEAD_MS and DEFAULT_OFFSET_MS
- SETTINGS_ENV is the one table of variable names and defaults
- load_settings() reads the environment at call time, so tests can
  monkeypatch variables and build fresh settings
"""

from __future__ import annotations

import os
from dataclasses import dataclass

from dotenv import load_dotenv

# Load .env from the project root (where the script is run from)
load_dotenv()


def _env_value(variable: str, default):
    """Read variable, parsed as the default's type; blank or unset → default."""
    raw = os.getenv(variable, "").strip()
    if not raw:
        return default
    return type(default)(raw)


# Every AlignmentSettings field → (environment variable, default). Both the
# module constants below and load_settings() read through this table.
SETTINGS_ENV = {
    # Matching
    "context_window": ("LISTEN_ALONG_CONTEXT_WINDOW", 10),
    "exact_match_threshold": ("LISTEN_ALONG_EXACT_THRESHOLD", 0.2),
    "fuzzy_match_threshold": ("LISTEN_ALONG_FUZZY_THRESHOLD", 0.3),
    "word_weight": ("LISTEN_ALONG_WORD_WEIGHT", 0.4),
    "context_weight": ("LISTEN_ALONG_CONTEXT_WEIGHT", 0.6),
    "overlap_weight": ("LISTEN_ALONG_OVERLAP_WEIGHT", 0.6),
    "positional_weight": ("LISTEN_ALONG_POSITIONAL_WEIGHT", 0.4),
    # Highlight progression
    "lookahead_ms": ("LISTEN_ALONG_LOOKAHEAD_MS", 100),
    "fallback_words_per_second": ("LISTEN_ALONG_FALLBACK_WPS", 2.5),
    "gap_words_per_second": ("LISTEN_ALONG_GAP_WPS", 3.0),
    "missed_event_words": ("LISTEN_ALONG_MISSED_EVENT_WORDS", 2),
    "min_gap_s": ("LISTEN_ALONG_MIN_GAP_S", 0.1),
    "end_flush_s": ("LISTEN_ALONG_END_FLUSH_S", 0.1),
    "tick_hz": ("LISTEN_ALONG_TICK_HZ", 20.0),
    # Paragraph locating
    "locator_context_window": ("LISTEN_ALONG_LOCATOR_CONTEXT_WINDOW", 15),
    "direct_weight": ("LISTEN_ALONG_DIRECT_WEIGHT", 0.7),
    "surround_weight": ("LISTEN_ALONG_SURROUND_WEIGHT", 0.3),
    "min_locate_probability": ("LISTEN_ALONG_MIN_LOCATE_PROBABILITY", 0.4),
    "min_populated_ratio": ("LISTEN_ALONG_MIN_POPULATED_RATIO", 0.5),
}


def _setting(field: str):
    variable, default = SETTINGS_ENV[field]
    return _env_value(variable, default)


# ---------------------------------------------------------------------------
# Matching
# ---------------------------------------------------------------------------

CONTEXT_WINDOW = _setting("context_window")
"""Half-width W of the context windows and of the findBestMatch search."""

EXACT_MATCH_THRESHOLD = _setting("exact_match_threshold")
FUZZY_MATCH_THRESHOLD = _setting("fuzzy_match_threshold")

WORD_WEIGHT = _setting("word_weight")
CONTEXT_WEIGHT = _setting("context_weight")

OVERLAP_WEIGHT = _setting("overlap_weight")
POSITIONAL_WEIGHT = _setting("positional_weight")

# ---------------------------------------------------------------------------
# Highlight progression
# ---------------------------------------------------------------------------

LOOKAHEAD_MS = _setting("lookahead_ms")
FALLBACK_WORDS_PER_SECOND = _setting("fallback_words_per_second")
GAP_WORDS_PER_SECOND = _setting("gap_words_per_second")

MISSED_EVENT_WORDS = _setting("missed_event_words")
"""Most words a timing event with no match anywhere may advance the highlight."""

MIN_GAP_S = _setting("min_gap_s")
END_FLUSH_S = _setting("end_flush_s")
TICK_HZ = _setting("tick_hz")

# ---------------------------------------------------------------------------
# Paragraph locating
# ---------------------------------------------------------------------------

LOCATOR_CONTEXT_WINDOW = _setting("locator_context_window")
DIRECT_WEIGHT = _setting("direct_weight")
SURROUND_WEIGHT = _setting("surround_weight")
MIN_LOCATE_PROBABILITY = _setting("min_locate_probability")
MIN_POPULATED_RATIO = _setting("min_populated_ratio")

# ---------------------------------------------------------------------------
# Ingest and HTTP API
# ---------------------------------------------------------------------------

DEFAULT_OFFSET_MS = _env_value("LISTEN_ALONG_OFFSET_MS", 0)
MAX_SESSIONS = _env_value("LISTEN_ALONG_MAX_SESSIONS", 100)
SESSION_TTL_S = _env_value("LISTEN_ALONG_SESSION_TTL_S", 3600)


@dataclass(frozen=True)
class AlignmentSettings:
    """Every tunable the alignment engine reads, in one immutable bundle.

    WHY: The matcher, controller, resolver and locator share constants
    (window sizes, blend weights, speaking rates). Passing one settings
    object keeps them consistent and makes per-test overrides trivial
    via dataclasses.replace().

    RULES:
    - Defaults mirror the module-level constants at import time
    - lookahead_s is derived from lookahead_ms, never stored separately
    """

    context_window: int = CONTEXT_WINDOW
    exact_match_threshold: float = EXACT_MATCH_THRESHOLD
    fuzzy_match_threshold: float = FUZZY_MATCH_THRESHOLD
    word_weight: float = WORD_WEIGHT
    context_weight: float = CONTEXT_WEIGHT
    overlap_weight: float = OVERLAP_WEIGHT
    positional_weight: float = POSITIONAL_WEIGHT
    lookahead_ms: int = LOOKAHEAD_MS
    fallback_words_per_second: float = FALLBACK_WORDS_PER_SECOND
    gap_words_per_second: float = GAP_WORDS_PER_SECOND
    missed_event_words: int = MISSED_EVENT_WORDS
    min_gap_s: float = MIN_GAP_S
    end_flush_s: float = END_FLUSH_S
    tick_hz: float = TICK_HZ
    locator_context_window: int = LOCATOR_CONTEXT_WINDOW
    direct_weight: float = DIRECT_WEIGHT
    surround_weight: float = SURROUND_WEIGHT
    min_locate_probability: float = MIN_LOCATE_PROBABILITY
    min_populated_ratio: float = MIN_POPULATED_RATIO

    @property
    def lookahead_s(self) -> float:
        return self.lookahead_ms / 1000.0

    @property
    def tick_interval_s(self) -> float:
        return 1.0 / self.tick_hz if self.tick_hz > 0 else 0.05


def load_settings() -> AlignmentSettings:
    """Build AlignmentSettings from the current environment.

    WHY: Module constants are frozen at import time. Long-running
    processes and tests need a way to pick up changed variables.

    HOW: Re-reads every variable in SETTINGS_ENV, falling back to the
    built-in defaults when a variable is unset or blank.
    """
    return AlignmentSettings(**{field: _setting(field) for field in SETTINGS_ENV})
