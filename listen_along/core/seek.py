"""Stateless re-derivation of highlight state for an arbitrary time.

WHY: After a user seek (or a rewind) nothing about the previous
progression can be trusted: the watermark, the processed pointer and
the local search centre all belong to a different point in the audio.
The resolver rebuilds state from zero using only the time.

HOW: Reset the controller, lift the ceiling, then try a fixed chain of
strategies; the first one that yields a text index commits [0, index]:
  1. containing_event       — the event whose [start, end] contains t
  2. closest_previous_event — the last event with start <= t
  3. exact_word_search      — that event's word near the interpolated index
  4. time_estimate          — fallback speaking rate from t
  5. cleared                — t == 0 or nothing at all to highlight
Finally the timing pointer is advanced past every event already due so
the next tick continues from here instead of replaying history.

RULES:
- Out-of-range times are clamped to [0, duration]
- Events 1 and 2 are matched against the full token range, centred on
  the interpolated index
- Seek commits are not clamped by max_allowed_index
"""

from __future__ import annotations

import bisect
import logging
import math
from typing import Optional

from listen_along.core.highlighter import HighlightProgressionController
from listen_along.core.ir import ControllerPhase, SeekResolution, SeekStrategy

logger = logging.getLogger(__name__)


class SeekResolver:
    """Resolves a playback time into a committed highlight state."""

    def __init__(self, controller: HighlightProgressionController) -> None:
        self.controller = controller
        self.matcher = controller.matcher
        self._starts = [e.start_s for e in self.matcher.events]
        self._longest = max((e.end_s - e.start_s for e in self.matcher.events), default=0.0)

    def containing_event(self, time_s: float) -> int:
        """Earliest event whose [start, end] window contains time_s, or -1."""
        # Only events starting within the longest event duration can contain t.
        low = bisect.bisect_left(self._starts, time_s - self._longest)
        high = self.closest_previous_event(time_s)
        for i in range(low, high + 1):
            if self.matcher.events[i].end_s >= time_s:
                return i
        return -1

    def closest_previous_event(self, time_s: float) -> int:
        """Last event with start <= time_s, or -1."""
        return bisect.bisect_right(self._starts, time_s) - 1

    def _match_event(self, timing_index: int):
        center = self.matcher.interpolate_text_index(timing_index)
        return self.matcher.find_best_match_in_range(timing_index, 0, None, center=center)

    def _finish(
        self,
        time_s: float,
        strategy: SeekStrategy,
        text_index: int,
        timing_index: int = -1,
        probability: float = 0.0,
    ) -> SeekResolution:
        controller = self.controller
        if self._starts and time_s < self._starts[0]:
            phase = ControllerPhase.INITIAL_LOOKAHEAD
        else:
            phase = ControllerPhase.STREAMING
        controller.restore(
            text_index,
            next_timing_pointer=controller.last_due_event(time_s) + 1,
            phase=phase,
        )

        logger.info(
            "Seek to %.3fs resolved by %s → index %d", time_s, strategy.value, text_index,
        )
        return SeekResolution(
            time_s=time_s,
            strategy=strategy,
            text_index=text_index,
            timing_index=timing_index,
            probability=probability,
        )

    def resolve(self, time_s: float, duration: Optional[float] = None) -> SeekResolution:
        """Reset the controller and derive highlight state for time_s."""
        time_s = max(0.0, time_s)
        if duration is not None and duration > 0:
            time_s = min(time_s, duration)

        controller = self.controller
        controller.reset()
        controller.state.max_allowed_index = math.inf

        if not controller.token_count:
            return self._finish(time_s, SeekStrategy.CLEARED, -1)

        containing = self.containing_event(time_s)
        if containing >= 0:
            match = self._match_event(containing)
            if match.accepted:
                return self._finish(
                    time_s, SeekStrategy.CONTAINING_EVENT, match.index,
                    containing, match.probability,
                )

        previous = self.closest_previous_event(time_s)
        if previous >= 0 and previous != containing:
            match = self._match_event(previous)
            if match.accepted:
                return self._finish(
                    time_s, SeekStrategy.CLOSEST_PREVIOUS_EVENT, match.index,
                    previous, match.probability,
                )

        anchor = containing if containing >= 0 else previous
        if anchor >= 0:
            found = self.matcher.nearest_exact_search(
                self.matcher.events[anchor].normalized,
                self.matcher.interpolate_text_index(anchor),
            )
            if found >= 0:
                return self._finish(time_s, SeekStrategy.EXACT_WORD_SEARCH, found, anchor)

        if time_s > 0:
            estimate = controller.rate_index(time_s)
            if estimate >= 0:
                return self._finish(time_s, SeekStrategy.TIME_ESTIMATE, estimate)

        return self._finish(time_s, SeekStrategy.CLEARED, -1)
