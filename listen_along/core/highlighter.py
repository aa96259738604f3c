"""Forward, real-time highlight progression under playback.

WHY: While audio plays, the reader must see the text highlighted word
by word in step with the narration: never ahead of what has been
spoken, never stuck behind it, and with silent or ambiguous gaps filled
by a plausible number of words. Matching is greedy and local, so a
separate time-derived ceiling keeps optimistic matches honest.

HOW: tick(time) runs once per animation frame (or timer tick):
  1. Recompute max_allowed_index from the playback time.
  2. InitialLookahead — before the first timed word, estimate a few
     words from a fixed speaking rate.
  3. Streaming — process every newly-due timing event exactly once via
     a monotonic pointer; match it, fill the gap up to the match, then
     estimate how many words lie in the audio gap before the next event.
     An event with no local match falls back to a forward exact-word
     search, then a search around its interpolated text position, then
     a small time-based step.
  4. Catch-up — make sure the latest due event's match is reached,
     re-anchoring the same way when the local search finds nothing.
  5. EndFlush — near the end of the audio, highlight everything left.
Proposals that exceed the ceiling are remembered as a pending target
and committed on later ticks as the ceiling rises.

RULES:
- highlighted_through only increases between reset() calls
- Streaming commits never exceed max_allowed_index; EndFlush ignores it
- Commits within a tick are issued in increasing index order
- A timing event is processed at most once between resets
- A seek (reset) during a tick aborts the rest of that tick
- Stale render handles are skipped, never raised
- Without timings, progress follows the fallback speaking rate
- An event matched nowhere advances at most missed_event_words
"""

from __future__ import annotations

import bisect
import logging
import math
from typing import List, Optional

from listen_along.adapters.render_surface import RenderSurface, TokenHandle
from listen_along.config import AlignmentSettings
from listen_along.core.ir import NO_MATCH, ControllerPhase, HighlightState, MatchResult, TickResult
from listen_along.core.matcher import ContextMatcher

logger = logging.getLogger(__name__)


class _TickAborted(Exception):
    """Raised inside a tick when a reset happened while it was committing."""


class HighlightProgressionController:
    """Owns the HighlightState of one loaded document or section.

    WHY: Highlight state must have exactly one owner so that ticks,
    seeks and end-of-audio flushes never race each other.

    HOW: Holds the matcher, an optional render surface and the mutable
    HighlightState. All surface commands go through _resolve(), which
    re-acquires a handle per command and checks it is still valid.

    RULES:
    - reset() is the only way highlighted_through goes down
    - The surface may be swapped or rebuilt at any time; call
      resync_surface() to re-apply committed state to new handles
    """

    def __init__(
        self,
        matcher: ContextMatcher,
        surface: Optional[RenderSurface] = None,
        settings: Optional[AlignmentSettings] = None,
    ) -> None:
        self.matcher = matcher
        self.settings = settings or matcher.settings
        self.surface = surface
        self.state = HighlightState()
        self.phase = ControllerPhase.IDLE
        self._pending_target = -1
        self._generation = 0
        self._tick_commits: List[int] = []
        self._starts = [e.start_s for e in matcher.events]

    # ------------------------------------------------------------------
    # Basic properties
    # ------------------------------------------------------------------

    @property
    def token_count(self) -> int:
        return self.matcher.token_count

    @property
    def event_count(self) -> int:
        return self.matcher.event_count

    @property
    def generation(self) -> int:
        """Incremented by every reset(); ticks compare it to detect seeks."""
        return self._generation

    @property
    def pending_target(self) -> int:
        return self._pending_target

    def last_due_event(self, time_s: float) -> int:
        """Index of the last event whose start (minus lookahead) has passed, or -1."""
        return bisect.bisect_right(self._starts, time_s + self.settings.lookahead_s) - 1

    def rate_index(self, time_s: float) -> int:
        """Last index reached at the fallback speaking rate, -1 at t <= 0."""
        if time_s <= 0 or not self.token_count:
            return -1
        words = int(math.floor(time_s * self.settings.fallback_words_per_second))
        return min(words, self.token_count - 1)

    # ------------------------------------------------------------------
    # Surface commands
    # ------------------------------------------------------------------

    def _resolve(self, index: int) -> Optional[TokenHandle]:
        if self.surface is None:
            return None
        handle = self.surface.resolve(index)
        if handle is None or not handle.is_valid():
            logger.debug("Skipping stale render handle at index %d", index)
            return None
        return handle

    def _commit_index(self, index: int) -> None:
        previous = self.state.current_index
        self.state.highlighted.add(index)
        self.state.current_index = index
        self.state.highlighted_through = index + 1
        self._tick_commits.append(index)

        if previous >= 0:
            previous_handle = self._resolve(previous)
            if previous_handle is not None:
                previous_handle.set_read(True)
        handle = self._resolve(index)
        if handle is not None:
            handle.set_highlighted(True)

    def resync_surface(self, surface: Optional[RenderSurface] = None) -> None:
        """Re-apply committed state to a rebuilt (or replacement) surface."""
        if surface is not None:
            self.surface = surface
        for index in sorted(self.state.highlighted):
            handle = self._resolve(index)
            if handle is None:
                continue
            handle.set_highlighted(True)
            if index != self.state.current_index:
                handle.set_read(True)
        logger.debug("Resynced %d highlights to render surface", len(self.state.highlighted))

    # ------------------------------------------------------------------
    # Committing
    # ------------------------------------------------------------------

    def reset(self) -> None:
        """Clear all highlight and processing state (seek or explicit clear)."""
        for index in self.state.highlighted:
            handle = self._resolve(index)
            if handle is not None:
                handle.set_highlighted(False)
                handle.set_read(False)
        self.state = HighlightState()
        self.phase = ControllerPhase.IDLE
        self._pending_target = -1
        self._generation += 1

    def commit_through(self, target: int, clamp: bool = True) -> List[int]:
        """Commit every index from highlighted_through up to target inclusive.

        RULES:
        - Bounded by the last token, and by max_allowed_index when clamp
        - Returns the indices newly committed by this call
        - Raises _TickAborted if a reset happens while committing
        """
        limit = min(target, self.token_count - 1)
        if clamp and not math.isinf(self.state.max_allowed_index):
            limit = min(limit, int(self.state.max_allowed_index))

        generation = self._generation
        committed: List[int] = []
        index = self.state.highlighted_through
        while index <= limit:
            self._commit_index(index)
            committed.append(index)
            if self._generation != generation:
                raise _TickAborted()
            index += 1
        return committed

    def restore(
        self,
        text_index: int,
        next_timing_pointer: int = 0,
        phase: ControllerPhase = ControllerPhase.STREAMING,
    ) -> List[int]:
        """Establish a fresh baseline after reset(): commit [0, text_index] unclamped."""
        committed: List[int] = []
        if text_index >= 0:
            committed = self.commit_through(text_index, clamp=False)
            self._pending_target = min(text_index, self.token_count - 1)
        self.state.next_timing_pointer = max(0, next_timing_pointer)
        self.phase = phase
        return committed

    def propose(self, target: int, reason: str = "") -> List[int]:
        """Raise the pending target and commit as far as the ceiling allows."""
        if target > self._pending_target:
            self._pending_target = min(target, self.token_count - 1)
        committed = self.commit_through(self._pending_target)
        if committed:
            logger.debug(
                "Highlighted %d-%d %s", committed[0], committed[-1], reason,
            )
        return committed

    def _search_center(self) -> int:
        return max(self.state.highlighted_through, self._pending_target + 1)

    # ------------------------------------------------------------------
    # Ceiling
    # ------------------------------------------------------------------

    def compute_max_allowed_index(self, time_s: float) -> int:
        """Highest index the audio has reached by time_s.

        WHY: Matches are locally optimistic; this time-derived ceiling is
        what keeps highlighting from running ahead of the narration.

        HOW: Match the last due event. Inside its [start, end] window only
        its own index is allowed. In the gap after it, interpolate toward
        the next event's match proportionally to the elapsed gap time.
        After the last event, extend by the fallback speaking rate.

        RULES:
        - No timings → pure speaking-rate estimate
        - Unmatchable last event → forward exact search, then the larger
          of the current watermark and the speaking-rate estimate
        """
        if not self.token_count:
            return -1
        if not self.event_count:
            return self.rate_index(time_s)

        effective = time_s + self.settings.lookahead_s
        k = self.last_due_event(time_s)
        if k < 0:
            return -1

        event = self.matcher.events[k]
        match = self.matcher.find_best_match(k, self._search_center())
        if match.accepted:
            matched = match.index
        else:
            matched = self.matcher.forward_exact_search(
                event.normalized, self.state.highlighted_through,
            )
            if matched < 0:
                return max(self.state.highlighted_through - 1, self.rate_index(time_s))

        if effective <= event.end_s:
            return matched

        if k + 1 < self.event_count:
            following = self.matcher.events[k + 1]
            next_match = self.matcher.find_best_match(k + 1, matched + 1)
            span = following.start_s - event.end_s
            if next_match.accepted and next_match.index > matched and span > 0:
                fraction = min(1.0, (effective - event.end_s) / span)
                return matched + int(math.floor(fraction * (next_match.index - matched)))
            return matched

        extra = int(math.floor((effective - event.end_s) * self.settings.fallback_words_per_second))
        return min(self.token_count - 1, matched + extra)

    # ------------------------------------------------------------------
    # Tick phases
    # ------------------------------------------------------------------

    def _handle_initial_words(self, time_s: float) -> None:
        first = self.matcher.events[0]
        if time_s >= first.start_s:
            if self.phase in (ControllerPhase.IDLE, ControllerPhase.INITIAL_LOOKAHEAD):
                self.phase = ControllerPhase.STREAMING
            return

        self.phase = ControllerPhase.INITIAL_LOOKAHEAD
        if time_s >= max(0.0, first.start_s - self.settings.lookahead_s):
            words = max(1, int(math.floor(time_s * self.settings.fallback_words_per_second)))
            self.propose(words - 1, "(initial words before first timed word)")

    def _process_due_events(self, time_s: float) -> None:
        lookahead = self.settings.lookahead_s
        events = self.matcher.events
        while (
            self.state.next_timing_pointer < self.event_count
            and events[self.state.next_timing_pointer].start_s - lookahead <= time_s
        ):
            timing_index = self.state.next_timing_pointer
            self.state.next_timing_pointer += 1
            self._process_event(timing_index)

    def _process_event(self, timing_index: int) -> None:
        event = self.matcher.events[timing_index]
        match = self.matcher.find_best_match(timing_index, self._search_center())

        if match.accepted:
            self.propose(
                match.index,
                "(\"{}\" p={:.3f} word={:.1f} context={:.3f})".format(
                    event.word, match.probability, match.word_score, match.context_score,
                ),
            )
            self._estimate_gap(timing_index, match)
            return

        fallback = self.matcher.forward_exact_search(
            event.normalized, self.state.highlighted_through,
        )
        if fallback >= 0:
            self.propose(fallback, "(exact-word fallback for \"{}\")".format(event.word))
            return

        anchored = self._reanchor(timing_index)
        if anchored.accepted:
            self.propose(
                anchored.index,
                "(re-anchored \"{}\" p={:.3f})".format(event.word, anchored.probability),
            )
            return

        self._advance_by_time(timing_index)

    def _reanchor(self, timing_index: int) -> MatchResult:
        """Search ±W around the event's interpolated text position.

        WHY: The local search follows the watermark. When the narration
        skips more than W words of the text (an unread heading, an aside)
        every later event falls outside it and nothing would ever match
        again.

        RULES:
        - Candidates start at highlighted_through; nothing behind it
        - Equal probabilities resolve toward the interpolated position
        """
        width = self.settings.context_window
        center = self.matcher.interpolate_text_index(timing_index)
        start = max(self.state.highlighted_through, center - width)
        end = center + width + 1
        if start >= end:
            return NO_MATCH
        return self.matcher.find_best_match_in_range(timing_index, start, end, center=center)

    def _advance_by_time(self, timing_index: int) -> None:
        """Last resort for an event with no match: step toward the speaking-rate estimate."""
        event = self.matcher.events[timing_index]
        step = self.state.highlighted_through - 1 + self.settings.missed_event_words
        target = min(self.rate_index(event.start_s), step)
        if target < self.state.highlighted_through:
            logger.debug("No match for %r at %.3fs", event.word, event.start_s)
            return
        self.propose(target, "(time estimate for unmatched \"{}\")".format(event.word))

    def _estimate_gap(self, timing_index: int, match: MatchResult) -> None:
        """Estimate words spoken between this event's match and the next one."""
        if timing_index + 1 >= self.event_count:
            return
        event = self.matcher.events[timing_index]
        following = self.matcher.events[timing_index + 1]
        next_match = self.matcher.find_best_match(timing_index + 1, match.index + 1)
        if not next_match.accepted or next_match.index <= match.index + 1:
            return

        gap = following.start_s - event.end_s
        available = next_match.index - match.index - 1
        if gap > self.settings.min_gap_s:
            estimated = max(1, int(math.ceil(gap * self.settings.gap_words_per_second)))
            words = min(estimated, available)
            self.propose(
                match.index + words,
                "(estimated {} words in {:.3f}s gap)".format(words, gap),
            )
        else:
            self.propose(next_match.index - 1, "(filling between consecutive timed words)")

    def _catch_up(self) -> None:
        k = self.state.next_timing_pointer - 1
        if k < 0:
            return
        match = self.matcher.find_best_match(k, self._search_center())
        if not match.accepted:
            match = self._reanchor(k)
        if match.accepted and match.index >= self.state.highlighted_through:
            self.propose(match.index, "(catching up to current time)")

    # ------------------------------------------------------------------
    # Public entry points
    # ------------------------------------------------------------------

    def tick(self, time_s: float, duration: Optional[float] = None) -> TickResult:
        """Advance highlight state for the current playback time.

        Never raises for alignment problems; the worst outcome of a bad
        tick is that nothing new is highlighted.
        """
        self._tick_commits = []
        time_s = max(0.0, time_s)
        if duration is not None and duration > 0:
            time_s = min(time_s, duration)

        if self.phase != ControllerPhase.END_FLUSH:
            try:
                self.state.max_allowed_index = self.compute_max_allowed_index(time_s)
                if self.event_count:
                    self._handle_initial_words(time_s)
                    self._process_due_events(time_s)
                    self._catch_up()
                    self.commit_through(self._pending_target)
                else:
                    self.phase = ControllerPhase.STREAMING
                    self.propose(self.rate_index(time_s), "(time-based estimate)")

                if duration is not None and duration > 0 and time_s >= duration - self.settings.end_flush_s:
                    self.flush_to_end()
            except _TickAborted:
                logger.debug("Tick at %.3fs aborted by a reset", time_s)
                self._tick_commits = []

        return TickResult(
            time_s=time_s,
            highlighted=list(self._tick_commits),
            phase=self.phase,
            highlighted_through=self.state.highlighted_through,
            max_allowed_index=self.state.max_allowed_index,
        )

    def flush_to_end(self) -> List[int]:
        """Highlight every remaining token, ignoring the ceiling."""
        self.phase = ControllerPhase.END_FLUSH
        remaining = self.token_count - self.state.highlighted_through
        if remaining > 0:
            logger.info("Highlighting remaining %d words at end of audio", remaining)
        self._pending_target = self.token_count - 1
        return self.commit_through(self.token_count - 1, clamp=False)

    def handle_audio_end(self) -> List[int]:
        """Explicit end-of-audio notification."""
        self._tick_commits = []
        try:
            self.flush_to_end()
        except _TickAborted:
            self._tick_commits = []
        logger.info(
            "Audio ended: %d/%d words highlighted",
            len(self.state.highlighted), self.token_count,
        )
        return list(self._tick_commits)
