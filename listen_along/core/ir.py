"""Intermediate representation dataclasses for the alignment engine.

WHY: The reference text and the timing stream come from different
pipelines and disagree in practice. Every engine component (matcher,
controller, seek resolver, locator) needs the same well-typed view of
both sources and the same vocabulary for results, so the IR decouples
ingestion from matching and matching from rendering.

HOW: Plain dataclasses, grouped in three layers:
  Inputs   — Token, Paragraph, ReferenceDocument, TimingEvent
  Results  — MatchResult, WindowMatch, TimestampMatch, ParagraphMatch,
             SeekResolution, TickResult
  State    — HighlightState, ControllerPhase, SeekStrategy

RULES:
- Token.index is positional (first token = 0) and never changes for the
  lifetime of a loaded document
- Tokens carry no render handle; the render surface is addressed by index
- TimingEvent times are float seconds, already offset and clamped at 0
- MatchResult.index == -1 means "no acceptable match"
- HighlightState.highlighted_through only grows between explicit resets
"""

from __future__ import annotations

import enum
import math
from dataclasses import dataclass, field
from typing import List, Optional, Set


@dataclass(frozen=True)
class Token:
    """One positionally-indexed word of the reference text.

    RULES:
    - text: the word as displayed (punctuation kept)
    - normalized: lowercase, non-word characters stripped; may be ""
      for tokens like "—" which are kept positionally but never matched
    - paragraph: index of the Paragraph this token belongs to
    """

    index: int
    text: str
    normalized: str
    paragraph: int = 0


@dataclass(frozen=True)
class Paragraph:
    """Boundary marker for one paragraph of the reference text.

    RULES:
    - start / end are inclusive token indices
    - text is the paragraph's words joined by single spaces
    """

    index: int
    start: int
    end: int
    text: str


@dataclass
class ReferenceDocument:
    """The tokenized reference text plus its paragraph boundaries."""

    tokens: List[Token] = field(default_factory=list)
    paragraphs: List[Paragraph] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.tokens)

    @property
    def words(self) -> List[str]:
        """Normalized words in token order (empty strings included)."""
        return [t.normalized for t in self.tokens]


@dataclass(frozen=True)
class TimingEvent:
    """One timestamped word from the external timing stream."""

    word: str
    start_s: float
    end_s: float
    normalized: str = ""


@dataclass(frozen=True)
class MatchResult:
    """Confidence that a text index is the one being spoken.

    RULES:
    - probability = word_weight * word_score + context_weight * context_score
    - word_score is 1.0 for an exact normalized match, else 0.0
    - index == -1 denotes "no acceptable match"
    """

    index: int
    probability: float = 0.0
    word_score: float = 0.0
    context_score: float = 0.0

    @property
    def accepted(self) -> bool:
        return self.index >= 0


NO_MATCH = MatchResult(index=-1)


class ControllerPhase(str, enum.Enum):
    """States of the forward highlight state machine."""

    IDLE = "idle"
    INITIAL_LOOKAHEAD = "initial_lookahead"
    STREAMING = "streaming"
    END_FLUSH = "end_flush"


@dataclass
class HighlightState:
    """Committed highlight state owned by one controller.

    RULES:
    - highlighted_through: next index to commit; every index in
      highlighted is < highlighted_through
    - max_allowed_index: recomputed every tick; math.inf right after a seek
    - next_timing_pointer: first timing event not yet processed
    - current_index: most recently committed index, -1 when none
    """

    highlighted_through: int = 0
    highlighted: Set[int] = field(default_factory=set)
    max_allowed_index: float = math.inf
    next_timing_pointer: int = 0
    current_index: int = -1


@dataclass(frozen=True)
class TickResult:
    """What one controller tick committed."""

    time_s: float
    highlighted: List[int]
    phase: ControllerPhase
    highlighted_through: int
    max_allowed_index: float


class SeekStrategy(str, enum.Enum):
    """Which fallback in the seek chain produced the committed state."""

    CONTAINING_EVENT = "containing_event"
    CLOSEST_PREVIOUS_EVENT = "closest_previous_event"
    EXACT_WORD_SEARCH = "exact_word_search"
    TIME_ESTIMATE = "time_estimate"
    CLEARED = "cleared"


@dataclass(frozen=True)
class SeekResolution:
    """Outcome of re-deriving alignment state for an arbitrary time.

    RULES:
    - text_index is the last committed index, -1 when cleared
    - timing_index is the event used, -1 for time estimates and clears
    """

    time_s: float
    strategy: SeekStrategy
    text_index: int
    timing_index: int = -1
    probability: float = 0.0


@dataclass(frozen=True)
class WindowMatch:
    """Best-scoring window of reference tokens for a free-text query."""

    start: int
    end: int
    probability: float
    direct_score: float = 0.0
    context_score: float = 0.0


NO_WINDOW = WindowMatch(start=-1, end=-1, probability=0.0)


@dataclass(frozen=True)
class TimestampMatch:
    """Timing event chosen for a text index by reverse context matching."""

    timing_index: int
    time_s: float
    probability: float


@dataclass(frozen=True)
class ParagraphMatch:
    """Outcome of locating a passage in the reference text and the audio.

    RULES:
    - success is True only when both the window and a timestamp were found
    - error is one of "No valid words", "Low match probability",
      "No audio timing", or None on success
    """

    success: bool
    window: WindowMatch = NO_WINDOW
    timestamp: Optional[TimestampMatch] = None
    error: Optional[str] = None

    @property
    def start(self) -> int:
        return self.window.start

    @property
    def end(self) -> int:
        return self.window.end

    @property
    def probability(self) -> float:
        return self.window.probability
