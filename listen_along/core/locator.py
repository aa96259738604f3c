"""Reverse matching: free-form passage → token window → audio timestamp.

WHY: Readers start listening from a passage, not from a time. Given the
text of a paragraph (or any excerpt) the engine has to find where it
sits in the reference tokens and which timing event to seek the audio
to, tolerating punctuation differences and small edits in the excerpt.

HOW:
  1. Tokenize the query like the reference text (n words).
  2. Slide an n-token window over the reference. For each window:
       direct  = similarity(query, window words)
       context = similarity(query, window plus W words either side)
       score   = direct_weight * direct + surround_weight * context
     Windows with fewer than half their tokens populated are skipped.
  3. Reject the best window below the minimum probability.
  4. For every timing event whose word equals the window's first token,
     compare the text context around that token with the event's audio
     context; the best event gives the seek time
     (probability = 0.5 + 0.5 * context).

RULES:
- similarity is the matcher's overlap/positional blend, except two empty
  sequences score 0.0 here
- The best window must be strictly better than the previous best, so
  ties keep the earliest window
- Failures are values (ParagraphMatch.success False), never exceptions
- min probability is clamped to [0, 1]; the context window to [5, 50]
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List, Optional, Sequence

from listen_along.config import AlignmentSettings
from listen_along.core.ir import (
    NO_WINDOW,
    ParagraphMatch,
    TimestampMatch,
    WindowMatch,
)
from listen_along.core.matcher import ContextMatcher, blend_similarity
from listen_along.core.tokenizer import tokenize_query

logger = logging.getLogger(__name__)

MIN_CONTEXT_WINDOW = 5
MAX_CONTEXT_WINDOW = 50

NO_VALID_WORDS = "No valid words"
LOW_PROBABILITY = "Low match probability"
NO_AUDIO_TIMING = "No audio timing"


@dataclass(frozen=True)
class LocateAttempt:
    """One entry of a locate_first() run."""

    index: int
    text: str
    result: ParagraphMatch


class ParagraphLocator:
    """Finds passages in the reference text and maps them onto the audio."""

    def __init__(
        self,
        matcher: ContextMatcher,
        settings: Optional[AlignmentSettings] = None,
    ) -> None:
        self.matcher = matcher
        self.settings = settings or matcher.settings
        self.document = matcher.document
        self.min_probability = self.settings.min_locate_probability
        self.context_window = self.settings.locator_context_window
        self._words = self.document.words

    # ------------------------------------------------------------------
    # Tuning
    # ------------------------------------------------------------------

    def set_min_probability_threshold(self, value: float) -> float:
        self.min_probability = max(0.0, min(1.0, value))
        return self.min_probability

    def set_context_window(self, value: int) -> int:
        self.context_window = max(MIN_CONTEXT_WINDOW, min(MAX_CONTEXT_WINDOW, int(value)))
        return self.context_window

    # ------------------------------------------------------------------
    # Similarity
    # ------------------------------------------------------------------

    def similarity(self, query: Sequence[str], reference: Sequence[str]) -> float:
        if not query and not reference:
            return 0.0
        return blend_similarity(
            query,
            reference,
            overlap_weight=self.settings.overlap_weight,
            positional_weight=self.settings.positional_weight,
        )

    def text_context(self, start: int, end: int) -> List[str]:
        """Populated words in [start - W, end + W), window included."""
        first = max(0, start - self.context_window)
        last = min(len(self._words), end + self.context_window)
        return [w for w in self._words[first:last] if w]

    def audio_context(self, timing_index: int) -> List[str]:
        """Populated timing words in [i - W, i + W), the event included."""
        events = self.matcher.events
        first = max(0, timing_index - self.context_window)
        last = min(len(events), timing_index + self.context_window)
        return [e.normalized for e in events[first:last] if e.normalized]

    # ------------------------------------------------------------------
    # Matching
    # ------------------------------------------------------------------

    def find_best_window(self, query: Sequence[str]) -> WindowMatch:
        """Highest-scoring window of len(query) tokens, or NO_WINDOW."""
        size = len(query)
        if not size:
            return NO_WINDOW

        best = NO_WINDOW
        for i in range(0, len(self._words) - size + 1):
            window = [w for w in self._words[i:i + size] if w]
            if len(window) < size * self.settings.min_populated_ratio:
                continue

            direct = self.similarity(query, window)
            context = self.similarity(query, self.text_context(i, i + size))
            probability = (
                self.settings.direct_weight * direct
                + self.settings.surround_weight * context
            )
            if probability > best.probability:
                best = WindowMatch(
                    start=i,
                    end=i + size - 1,
                    probability=probability,
                    direct_score=direct,
                    context_score=context,
                )
        return best

    def find_audio_timestamp(self, text_index: int) -> Optional[TimestampMatch]:
        """Best timing event for text_index by reverse context matching."""
        if not 0 <= text_index < len(self._words):
            return None
        target = self._words[text_index]
        if not target or not self.matcher.event_count:
            return None

        text_words = self.text_context(text_index, text_index + 1)
        best: Optional[TimestampMatch] = None
        for i, event in enumerate(self.matcher.events):
            if event.normalized != target:
                continue
            score = self.similarity(text_words, self.audio_context(i))
            probability = 0.5 + 0.5 * score
            if best is None or probability > best.probability:
                best = TimestampMatch(timing_index=i, time_s=event.start_s, probability=probability)
        return best

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def locate(self, text: str, min_probability: Optional[float] = None) -> ParagraphMatch:
        """Locate a passage and the audio time it starts at."""
        threshold = self.min_probability if min_probability is None else min_probability
        query = tokenize_query(text)
        if not query:
            return ParagraphMatch(success=False, error=NO_VALID_WORDS)

        window = self.find_best_window(query)
        if window.probability < threshold:
            logger.info(
                "Locate rejected: best window %d-%d p=%.3f < %.3f",
                window.start, window.end, window.probability, threshold,
            )
            return ParagraphMatch(success=False, window=window, error=LOW_PROBABILITY)

        timestamp = self.find_audio_timestamp(window.start)
        if timestamp is None:
            logger.info("Locate found window %d-%d but no audio timing", window.start, window.end)
            return ParagraphMatch(success=False, window=window, error=NO_AUDIO_TIMING)

        logger.info(
            "Located window %d-%d (p=%.3f) at %.3fs",
            window.start, window.end, window.probability, timestamp.time_s,
        )
        return ParagraphMatch(success=True, window=window, timestamp=timestamp)

    def locate_first(
        self,
        texts: Sequence[str],
        min_probability: Optional[float] = None,
    ) -> List[LocateAttempt]:
        """Try passages in order, stopping after the first success."""
        attempts: List[LocateAttempt] = []
        for i, text in enumerate(texts):
            result = self.locate(text, min_probability)
            attempts.append(LocateAttempt(index=i, text=text, result=result))
            if result.success:
                break
        return attempts

    def extract_paragraphs(self) -> List[str]:
        return [p.text.strip() for p in self.document.paragraphs if p.text.strip()]

    def locate_paragraph(self, index: int, min_probability: Optional[float] = None) -> ParagraphMatch:
        """Locate one of the document's own paragraphs by its index."""
        paragraphs = self.document.paragraphs
        if not 0 <= index < len(paragraphs):
            return ParagraphMatch(success=False, error=NO_VALID_WORDS)
        return self.locate(paragraphs[index].text, min_probability)
