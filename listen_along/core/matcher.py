"""Context-similarity matching between the timing stream and the text.

WHY: The timing stream and the reference text tokenize the same speech
differently, repeat words, and drift apart. An exact word comparison
alone picks the wrong "the" half the time. Scoring a candidate by its
word AND by how well its neighbourhood agrees with the neighbourhood of
the spoken word is the shared primitive every other component (forward
highlighting, seeking, paragraph locating) is built on.

HOW: For a timing index and a candidate text index, build two context
windows of half-width W (excluding the centre word), blend a set-overlap
ratio with a positional-agreement ratio into a context score, and blend
that with the exact-word score into a probability. findBestMatch scans
[centre - W, centre + W] and keeps the best candidate; an adaptive
threshold then decides whether it is accepted.

RULES:
- context = overlap_weight * overlap + positional_weight * positional
  (defaults 0.6 / 0.4); both contexts empty → 1.0, one empty → 0.0
- probability = word_weight * word + context_weight * context
  (defaults 0.4 / 0.6)
- Threshold is exact_match_threshold (0.2) when the best candidate is an
  exact word match, else fuzzy_match_threshold (0.3); a result must be
  strictly above it to be accepted
- findBestMatch ties go to the lowest (earliest) text index
- Tokens with an empty normalized word are never candidates and never
  appear in a context window
- Per-query cost is O(W) candidates × O(W) context words
"""

from __future__ import annotations

import logging
from typing import List, Optional, Sequence

from listen_along.config import AlignmentSettings
from listen_along.core.ir import NO_MATCH, MatchResult, ReferenceDocument, TimingEvent

logger = logging.getLogger(__name__)


def blend_similarity(
    audio_words: Sequence[str],
    text_words: Sequence[str],
    overlap_weight: float = 0.6,
    positional_weight: float = 0.4,
) -> float:
    """Blend set overlap and positional agreement of two word sequences.

    WHY: Set overlap tolerates reordering and drift; positional agreement
    rewards sequences that line up word for word. The blend is used both
    for timing/text contexts and for locator windows.

    HOW:
      overlap    = |{a in audio_words present in text_words}| / max(len)
      positional = |{i < min(len): audio[i] == text[i]}| / min(len)

    RULES:
    - Both sequences empty → 1.0
    - Exactly one empty → 0.0
    - Duplicates in audio_words are counted individually
    """
    if not audio_words and not text_words:
        return 1.0
    if not audio_words or not text_words:
        return 0.0

    text_set = set(text_words)
    overlap_count = sum(1 for w in audio_words if w in text_set)
    overlap = overlap_count / max(len(audio_words), len(text_words))

    shortest = min(len(audio_words), len(text_words))
    positional_count = sum(
        1 for i in range(shortest) if audio_words[i] == text_words[i]
    )
    positional = positional_count / shortest

    return overlap_weight * overlap + positional_weight * positional


class ContextMatcher:
    """Scores text candidates for timing events of one loaded document.

    WHY: Every component asks the same question ("which text index is
    this timing event?") with a different search region. Holding the
    document, the events and the settings together lets each caller ask
    with just indices.

    HOW: Normalized words are precomputed once per document. Context
    windows are rebuilt per query (they are tiny) and nothing is cached
    between queries.

    RULES:
    - find_best_match searches a local window (real-time path)
    - find_best_match_in_range searches an arbitrary span (seek path)
    - forward_exact_search / nearest_exact_search are the cheap no-match
      fallbacks and only compare words
    """

    def __init__(
        self,
        document: ReferenceDocument,
        events: Sequence[TimingEvent],
        settings: Optional[AlignmentSettings] = None,
    ) -> None:
        self.settings = settings or AlignmentSettings()
        self.document = document
        self.events = list(events)
        self._text_words = document.words
        self._audio_words = [e.normalized for e in self.events]

    @property
    def token_count(self) -> int:
        return len(self._text_words)

    @property
    def event_count(self) -> int:
        return len(self._audio_words)

    def text_word(self, index: int) -> str:
        return self._text_words[index]

    # ------------------------------------------------------------------
    # Context windows
    # ------------------------------------------------------------------

    def audio_context(self, timing_index: int, width: Optional[int] = None) -> List[str]:
        """Normalized timing words within ±width of timing_index, centre excluded."""
        width = self.settings.context_window if width is None else width
        start = max(0, timing_index - width)
        end = min(self.event_count - 1, timing_index + width)
        return [
            self._audio_words[i]
            for i in range(start, end + 1)
            if i != timing_index and self._audio_words[i]
        ]

    def text_context(self, text_index: int, width: Optional[int] = None) -> List[str]:
        """Normalized text words within ±width of text_index, centre excluded."""
        width = self.settings.context_window if width is None else width
        start = max(0, text_index - width)
        end = min(self.token_count - 1, text_index + width)
        return [
            self._text_words[i]
            for i in range(start, end + 1)
            if i != text_index and self._text_words[i]
        ]

    def context_similarity(self, audio_words: Sequence[str], text_words: Sequence[str]) -> float:
        return blend_similarity(
            audio_words,
            text_words,
            overlap_weight=self.settings.overlap_weight,
            positional_weight=self.settings.positional_weight,
        )

    # ------------------------------------------------------------------
    # Scoring
    # ------------------------------------------------------------------

    def threshold_for(self, word_score: float) -> float:
        if word_score == 1.0:
            return self.settings.exact_match_threshold
        return self.settings.fuzzy_match_threshold

    def accept(self, result: MatchResult) -> MatchResult:
        """Apply the adaptive threshold, returning NO_MATCH below it."""
        if result.index < 0:
            return NO_MATCH
        if result.probability > self.threshold_for(result.word_score):
            return result
        return NO_MATCH

    def score_words(
        self,
        target_word: str,
        audio_words: Sequence[str],
        candidate_index: int,
        text_words: Sequence[str],
    ) -> MatchResult:
        """Score one candidate given both context windows (unthresholded)."""
        word_score = 1.0 if target_word == self._text_words[candidate_index] else 0.0
        context_score = self.context_similarity(audio_words, text_words)
        probability = (
            self.settings.word_weight * word_score
            + self.settings.context_weight * context_score
        )
        return MatchResult(
            index=candidate_index,
            probability=probability,
            word_score=word_score,
            context_score=context_score,
        )

    def score(self, timing_index: int, text_index: int) -> MatchResult:
        """Score text_index as the position of timing event timing_index.

        Returns NO_MATCH when the candidate falls below the threshold.
        """
        if not self._text_words[text_index]:
            return NO_MATCH
        raw = self.score_words(
            self._audio_words[timing_index],
            self.audio_context(timing_index),
            text_index,
            self.text_context(text_index),
        )
        return self.accept(raw)

    def _scan(
        self,
        timing_index: int,
        candidates: range,
        center: Optional[int] = None,
    ) -> MatchResult:
        target = self._audio_words[timing_index]
        audio_words = self.audio_context(timing_index)
        best = NO_MATCH
        best_distance = 0

        for i in candidates:
            if not self._text_words[i]:
                continue
            result = self.score_words(target, audio_words, i, self.text_context(i))
            distance = abs(i - center) if center is not None else 0
            if result.probability > best.probability or (
                center is not None
                and best.index >= 0
                and result.probability == best.probability
                and distance < best_distance
            ):
                best = result
                best_distance = distance

        return self.accept(best)

    def find_best_match(self, timing_index: int, search_center: int = 0) -> MatchResult:
        """Best text index for a timing event within ±W of search_center.

        WHY: Runs every tick, so the search is local to the last committed
        highlight, which also biases it toward forward progress.

        RULES:
        - Candidates: [search_center - W, search_center + W] clipped to the text
        - Ties go to the lowest index
        - Returns NO_MATCH if the timing index is out of range or nothing
          clears the threshold
        """
        if not 0 <= timing_index < self.event_count or not self.token_count:
            return NO_MATCH
        width = self.settings.context_window
        start = max(0, search_center - width)
        end = min(self.token_count, search_center + width + 1)
        match = self._scan(timing_index, range(start, end))
        logger.debug(
            "Match for %r (timing %d) near %d → %d (p=%.3f)",
            self.events[timing_index].word, timing_index, search_center,
            match.index, match.probability,
        )
        return match

    def find_best_match_in_range(
        self,
        timing_index: int,
        start: int = 0,
        end: Optional[int] = None,
        center: Optional[int] = None,
    ) -> MatchResult:
        """Best text index for a timing event anywhere in [start, end).

        Used when no continuity can be assumed (after a seek). Equal
        probabilities are resolved toward center, then the lower index.
        """
        if not 0 <= timing_index < self.event_count or not self.token_count:
            return NO_MATCH
        end = self.token_count if end is None else min(end, self.token_count)
        return self._scan(timing_index, range(max(0, start), end), center=center)

    # ------------------------------------------------------------------
    # Word-only fallbacks
    # ------------------------------------------------------------------

    def forward_exact_search(self, word: str, start: int, limit: Optional[int] = None) -> int:
        """First index >= start whose normalized word equals word, or -1.

        At most `limit` tokens are inspected (default W).
        """
        if not word:
            return -1
        limit = self.settings.context_window if limit is None else limit
        end = min(self.token_count, max(0, start) + limit + 1)
        for i in range(max(0, start), end):
            if self._text_words[i] == word:
                return i
        return -1

    def nearest_exact_search(self, word: str, center: int, radius: Optional[int] = None) -> int:
        """Index closest to center (earlier first on ties) whose word equals word, or -1."""
        if not word or not self.token_count:
            return -1
        radius = self.settings.context_window if radius is None else radius
        center = min(max(0, center), self.token_count - 1)
        for offset in range(radius + 1):
            for i in (center - offset, center + offset):
                if 0 <= i < self.token_count and self._text_words[i] == word:
                    return i
        return -1

    def interpolate_text_index(self, timing_index: int) -> int:
        """Map a timing index linearly into token-index space."""
        if self.token_count == 0:
            return 0
        if self.event_count <= 1:
            return 0
        ratio = timing_index / (self.event_count - 1)
        return min(self.token_count - 1, max(0, round(ratio * (self.token_count - 1))))
