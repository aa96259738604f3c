"""Audio-engine interface, typed playback events, and a simulated engine.

WHY: The alignment engine is driven by the playback clock and reacts to
play, pause, seek, rate-change and end notifications. Ad hoc callback
slots made ordering and unsubscription implicit; a small typed event
bus makes both explicit and testable.

HOW: PlaybackMessage is the one message type (kind + time + rate).
EventBus delivers messages to subscribers in subscription order and
hands back Subscription objects that cancel themselves. AudioEngine is
the abstract transport the session binds to. SimulatedAudioEngine is a
clock-driven implementation used by the CLI simulator and the tests.

RULES:
- Subscribers run synchronously, in the order they subscribed
- A subscriber raising is logged and skipped; delivery continues
- Seek targets are clamped to [0, duration]
- SimulatedAudioEngine reads time from an injectable clock so tests can
  advance it deterministically
"""

from __future__ import annotations

import enum
import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Callable, FrozenSet, List, Optional

logger = logging.getLogger(__name__)


class PlaybackEvent(str, enum.Enum):
    """Kinds of playback message an AudioEngine publishes.

    WHY: The session reacts differently to each transport change: ticks
    start on play, stop on pause, a seek re-derives alignment and the end
    flushes the rest of the text. An enum keeps subscribers and
    publishers agreeing on the names.

    HOW: Inherits from str so values log and serialize as plain strings.

    RULES:
    - play: playback started or resumed
    - pause: playback paused; the position is kept
    - seek: the position changed discontinuously
    - rate: the playback rate changed; the position did not
    - end: playback reached the end of the audio
    """

    PLAY = "play"
    PAUSE = "pause"
    SEEK = "seek"
    RATE = "rate"
    END = "end"


@dataclass(frozen=True)
class PlaybackMessage:
    """One transport notification: what happened, at which position.

    RULES:
    - time_s is the playback position after the change, in seconds
    - rate is the playback rate in effect after the change
    """

    kind: PlaybackEvent
    time_s: float
    rate: float = 1.0


Handler = Callable[[PlaybackMessage], None]


class Subscription:
    """Handle returned by EventBus.subscribe().

    WHY: Sessions are rebound between sections and engines. Holding the
    handle makes unsubscribing an explicit call instead of a search
    through a callback list.

    HOW: Remembers its bus, handler and kind filter. cancel() marks it
    inactive and removes it from the bus.

    RULES:
    - kinds None means every kind
    - cancel() is idempotent
    - A subscription cancelled while a message is being delivered does
      not receive that message
    """

    def __init__(self, bus: "EventBus", handler: Handler, kinds: Optional[FrozenSet[PlaybackEvent]]) -> None:
        self._bus = bus
        self.handler = handler
        self.kinds = kinds
        self.active = True

    def wants(self, kind: PlaybackEvent) -> bool:
        return self.active and (self.kinds is None or kind in self.kinds)

    def cancel(self) -> None:
        if self.active:
            self.active = False
            self._bus._remove(self)


class EventBus:
    """Ordered publish/subscribe for playback messages.

    WHY: Several parts of a session listen to one engine, and a handler
    that fails must not starve the ones after it.

    HOW: Subscriptions live in a list in subscription order. publish()
    iterates over a copy, so handlers may subscribe or cancel while a
    message is delivered.

    RULES:
    - Delivery is synchronous and in subscription order
    - A handler exception is logged and delivery continues
    - Subscriptions added during publish() get the next message, not
      the current one
    """

    def __init__(self) -> None:
        self._subscriptions: List[Subscription] = []

    def subscribe(self, handler: Handler, *kinds: PlaybackEvent) -> Subscription:
        """Subscribe handler to the given kinds (all kinds when none given)."""
        subscription = Subscription(self, handler, frozenset(kinds) if kinds else None)
        self._subscriptions.append(subscription)
        return subscription

    def publish(self, message: PlaybackMessage) -> None:
        for subscription in list(self._subscriptions):
            if not subscription.wants(message.kind):
                continue
            try:
                subscription.handler(message)
            except Exception:
                logger.exception("Playback handler failed for %s", message.kind.value)

    def subscriber_count(self) -> int:
        return len(self._subscriptions)

    def _remove(self, subscription: Subscription) -> None:
        if subscription in self._subscriptions:
            self._subscriptions.remove(subscription)


class AudioEngine(ABC):
    """The playback transport the alignment session consumes.

    RULES:
    - get_current_time() / get_duration() are in seconds
    - seek_to() must publish a SEEK message once the position changed
    """

    def __init__(self) -> None:
        self.events = EventBus()

    @abstractmethod
    def get_current_time(self) -> float:
        ...

    @abstractmethod
    def get_duration(self) -> float:
        ...

    @abstractmethod
    def seek_to(self, time_s: float) -> None:
        ...

    def poll_end(self) -> bool:
        """Publish END if playback just reached the end; engines with native
        end notifications leave this as a no-op."""
        return False

    def clamp_time(self, time_s: float) -> float:
        duration = self.get_duration()
        time_s = max(0.0, time_s)
        if duration > 0:
            time_s = min(time_s, duration)
        return time_s


class SimulatedAudioEngine(AudioEngine):
    """Clock-driven stand-in for a real audio transport.

    WHY: Alignment behaviour depends only on the playback clock. A
    simulated transport lets the CLI replay a document at any speed and
    lets tests step time exactly.

    HOW: Position is base_position + (clock() - anchor) * rate while
    playing. Every state change re-anchors, so rate changes and seeks
    never make time jump.

    RULES:
    - Time never exceeds duration; poll_end() publishes END once
    - forward()/rewind() move by 10 s by default, clamped
    """

    def __init__(
        self,
        duration: float,
        clock: Callable[[], float] = time.monotonic,
        rate: float = 1.0,
    ) -> None:
        super().__init__()
        self._duration = max(0.0, duration)
        self._clock = clock
        self._rate = rate
        self._base = 0.0
        self._anchor = clock()
        self._playing = False
        self._ended = False

    @property
    def playing(self) -> bool:
        return self._playing

    @property
    def rate(self) -> float:
        return self._rate

    def get_duration(self) -> float:
        return self._duration

    def get_current_time(self) -> float:
        if not self._playing:
            return self._base
        elapsed = (self._clock() - self._anchor) * self._rate
        return min(self._duration, self._base + elapsed)

    def _reanchor(self) -> None:
        self._base = self.get_current_time()
        self._anchor = self._clock()

    def play(self) -> None:
        if self._playing:
            return
        if self._base >= self._duration:
            self._base = 0.0
        self._anchor = self._clock()
        self._playing = True
        self._ended = False
        logger.info("Playback started at %.3fs", self._base)
        self.events.publish(PlaybackMessage(PlaybackEvent.PLAY, self._base, self._rate))

    def pause(self) -> None:
        if not self._playing:
            return
        self._reanchor()
        self._playing = False
        logger.info("Playback paused at %.3fs", self._base)
        self.events.publish(PlaybackMessage(PlaybackEvent.PAUSE, self._base, self._rate))

    def toggle(self) -> None:
        if self._playing:
            self.pause()
        else:
            self.play()

    def seek_to(self, time_s: float) -> None:
        self._base = self.clamp_time(time_s)
        self._anchor = self._clock()
        self._ended = False
        logger.info("Playback seeked to %.3fs", self._base)
        self.events.publish(PlaybackMessage(PlaybackEvent.SEEK, self._base, self._rate))

    def forward(self, seconds: float = 10.0) -> None:
        self.seek_to(self.get_current_time() + seconds)

    def rewind(self, seconds: float = 10.0) -> None:
        self.seek_to(self.get_current_time() - seconds)

    def set_rate(self, rate: float) -> None:
        self._reanchor()
        self._rate = rate
        logger.info("Playback rate set to %.1fx", rate)
        self.events.publish(PlaybackMessage(PlaybackEvent.RATE, self._base, rate))

    def poll_end(self) -> bool:
        """Publish END once playback has reached the duration."""
        if self._playing and not self._ended and self.get_current_time() >= self._duration:
            self._reanchor()
            self._playing = False
            self._ended = True
            logger.info("Playback ended at %.3fs", self._base)
            self.events.publish(PlaybackMessage(PlaybackEvent.END, self._base, self._rate))
            return True
        return False
