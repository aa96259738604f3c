"""Read-along session: wires the engine to an audio transport.

WHY: The core components are passive; something has to own one
controller per loaded document, feed it the playback clock, and turn
play/pause/seek/end notifications into ticks, seeks and flushes. Books
with several sections need the listening display moved explicitly from
one section's session to the next rather than through shared state.

HOW:
  ReadAlongSession — matcher + controller + seek resolver + locator for
                     one document; binds to an AudioEngine's event bus
  TickLoop         — fixed-interval asyncio driver calling session.poll()
  SectionManager   — owns one session per section and rebinds the audio
                     engine to whichever section is active

RULES:
- play starts ticking, pause stops it, end stops it and flushes
- seek always goes through SeekResolver, never through tick()
- A session is bound to at most one audio engine at a time
- Exceptions from a tick are logged; the loop keeps running
"""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Callable, Dict, List, Optional, Sequence

from listen_along.adapters.audio_engine import (
    AudioEngine,
    PlaybackEvent,
    PlaybackMessage,
    Subscription,
)
from listen_along.adapters.render_surface import InMemoryRenderSurface, RenderSurface
from listen_along.config import AlignmentSettings, load_settings
from listen_along.core.highlighter import HighlightProgressionController
from listen_along.core.ir import ParagraphMatch, ReferenceDocument, SeekResolution, TickResult, TimingEvent
from listen_along.core.locator import ParagraphLocator
from listen_along.core.matcher import ContextMatcher
from listen_along.core.seek import SeekResolver
from listen_along.core.timing import load_timings
from listen_along.core.tokenizer import tokenize_html, tokenize_text

logger = logging.getLogger(__name__)

HTML_SUFFIXES = (".html", ".htm", ".xhtml")


def load_document(path: str | Path) -> ReferenceDocument:
    """Tokenize a plain-text or HTML reference document from disk."""
    path = Path(path)
    content = path.read_text(encoding="utf-8")
    if path.suffix.lower() in HTML_SUFFIXES:
        return tokenize_html(content)
    return tokenize_text(content)


# ---------------------------------------------------------------------------
# Tick loop
# ---------------------------------------------------------------------------


class TickLoop:
    """Calls a callback at a fixed interval while active.

    WHY: Browsers drive ticks from animation frames; a headless process
    needs its own cadence (default 20 Hz).

    HOW: start() schedules an asyncio task on the running loop. Outside
    an event loop start() only arms the loop and the owner steps it by
    calling the callback itself (the CLI simulator and tests do this).
    """

    def __init__(self, callback: Callable[[], object], interval_s: float) -> None:
        self._callback = callback
        self.interval_s = interval_s
        self._active = False
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._active

    def start(self) -> None:
        if self._active:
            return
        self._active = True
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return
        self._task = loop.create_task(self._run())

    def stop(self) -> None:
        self._active = False
        if self._task is not None:
            self._task.cancel()
            self._task = None

    async def _run(self) -> None:
        while self._active:
            try:
                self._callback()
            except Exception:
                logger.exception("Tick callback failed")
            await asyncio.sleep(self.interval_s)


# ---------------------------------------------------------------------------
# Session
# ---------------------------------------------------------------------------


class ReadAlongSession:
    """Alignment engine for one loaded document.

    WHY: Bundles everything that shares one HighlightState so that it has
    a single owner, and gives the outer layers (HTTP API, CLI, sections)
    one object to drive.

    HOW: Construct from a ReferenceDocument and ingested TimingEvents, or
    with from_files(). Drive it directly (tick/seek/end/locate) or bind()
    it to an AudioEngine and let playback messages drive it.

    RULES:
    - The render surface defaults to an InMemoryRenderSurface that keeps
      visual state but records no commands
    - seek_to_paragraph() seeks the bound engine (whose SEEK message then
      resolves state) or resolves directly when unbound
    """

    def __init__(
        self,
        document: ReferenceDocument,
        events: Sequence[TimingEvent],
        settings: Optional[AlignmentSettings] = None,
        surface: Optional[RenderSurface] = None,
    ) -> None:
        self.settings = settings or load_settings()
        self.document = document
        if surface is None:
            surface = InMemoryRenderSurface(document, record_commands=False)
        self.surface = surface
        self.matcher = ContextMatcher(document, events, self.settings)
        self.controller = HighlightProgressionController(self.matcher, self.surface, self.settings)
        self.resolver = SeekResolver(self.controller)
        self.locator = ParagraphLocator(self.matcher, self.settings)
        self.audio: Optional[AudioEngine] = None
        self.ticks = TickLoop(self.poll, self.settings.tick_interval_s)
        self._subscriptions: List[Subscription] = []
        self.last_tick: Optional[TickResult] = None

        logger.info(
            "Loaded document: %d tokens, %d paragraphs, %d timing events",
            len(document), len(document.paragraphs), len(self.matcher.events),
        )
        if not self.matcher.events:
            logger.warning("No word timings; highlighting will follow the speaking rate")

    @classmethod
    def from_files(
        cls,
        text_path: str | Path,
        timings_path: Optional[str | Path] = None,
        offset_ms: int = 0,
        settings: Optional[AlignmentSettings] = None,
    ) -> "ReadAlongSession":
        document = load_document(text_path)
        events = load_timings(timings_path, offset_ms) if timings_path else []
        return cls(document, events, settings)

    # ------------------------------------------------------------------
    # Direct driving
    # ------------------------------------------------------------------

    @property
    def duration(self) -> Optional[float]:
        if self.audio is not None:
            return self.audio.get_duration()
        if self.matcher.events:
            return self.matcher.events[-1].end_s
        return None

    def tick(self, time_s: float, duration: Optional[float] = None) -> TickResult:
        result = self.controller.tick(time_s, duration if duration is not None else self.duration)
        self.last_tick = result
        return result

    def seek(self, time_s: float, duration: Optional[float] = None) -> SeekResolution:
        return self.resolver.resolve(time_s, duration if duration is not None else self.duration)

    def end(self) -> List[int]:
        self.ticks.stop()
        return self.controller.handle_audio_end()

    def clear(self) -> None:
        self.controller.reset()

    def locate(self, text: str, min_probability: Optional[float] = None) -> ParagraphMatch:
        return self.locator.locate(text, min_probability)

    def seek_to_paragraph(self, text: str, min_probability: Optional[float] = None) -> ParagraphMatch:
        """Locate a passage and move playback (and highlighting) to it."""
        match = self.locate(text, min_probability)
        if match.success and match.timestamp is not None:
            if self.audio is not None:
                self.audio.seek_to(match.timestamp.time_s)
            else:
                self.seek(match.timestamp.time_s)
        return match

    def seek_to_paragraphs(self, texts: Sequence[str], min_probability: Optional[float] = None):
        """Try passages in order and seek to the first one that locates."""
        attempts = self.locator.locate_first(texts, min_probability)
        if attempts and attempts[-1].result.success:
            timestamp = attempts[-1].result.timestamp
            if self.audio is not None:
                self.audio.seek_to(timestamp.time_s)
            else:
                self.seek(timestamp.time_s)
        return attempts

    def rebind_surface(self, surface: RenderSurface) -> None:
        self.surface = surface
        self.controller.resync_surface(surface)

    # ------------------------------------------------------------------
    # Audio-engine binding
    # ------------------------------------------------------------------

    @property
    def bound(self) -> bool:
        return self.audio is not None

    def bind(self, audio: AudioEngine) -> None:
        if self.audio is audio:
            return
        self.unbind()
        self.audio = audio
        bus = audio.events
        self._subscriptions = [
            bus.subscribe(self._on_play, PlaybackEvent.PLAY),
            bus.subscribe(self._on_pause, PlaybackEvent.PAUSE),
            bus.subscribe(self._on_seek, PlaybackEvent.SEEK),
            bus.subscribe(self._on_rate, PlaybackEvent.RATE),
            bus.subscribe(self._on_end, PlaybackEvent.END),
        ]
        logger.debug("Session bound to audio engine")

    def unbind(self) -> None:
        for subscription in self._subscriptions:
            subscription.cancel()
        self._subscriptions = []
        self.ticks.stop()
        if self.audio is not None:
            logger.debug("Session unbound from audio engine")
        self.audio = None

    def poll(self) -> Optional[TickResult]:
        """One tick from the bound engine's clock; None when not ticking."""
        if self.audio is None or not self.ticks.running:
            return None
        result = self.tick(self.audio.get_current_time(), self.audio.get_duration())
        self.audio.poll_end()
        return result

    def _on_play(self, message: PlaybackMessage) -> None:
        self.ticks.start()

    def _on_pause(self, message: PlaybackMessage) -> None:
        self.ticks.stop()

    def _on_seek(self, message: PlaybackMessage) -> None:
        self.seek(message.time_s)

    def _on_rate(self, message: PlaybackMessage) -> None:
        logger.info("Playback rate changed to %.2fx", message.rate)

    def _on_end(self, message: PlaybackMessage) -> None:
        self.end()


# ---------------------------------------------------------------------------
# Sections
# ---------------------------------------------------------------------------


class SectionManager:
    """One session per section; exactly one bound to the audio engine.

    WHY: A multi-section reader shares one audio transport and one
    listening display. Moving the display between sections must be a
    visible call, not a side effect of whichever section touched it last.

    RULES:
    - activate() unbinds the previously active session before binding
    - Removing the active section unbinds it
    """

    def __init__(self, audio: AudioEngine) -> None:
        self.audio = audio
        self._sections: Dict[str, ReadAlongSession] = {}
        self.active_key: Optional[str] = None

    def __len__(self) -> int:
        return len(self._sections)

    def add(self, key: str, session: ReadAlongSession) -> None:
        self._sections[key] = session

    def get(self, key: str) -> Optional[ReadAlongSession]:
        return self._sections.get(key)

    @property
    def active(self) -> Optional[ReadAlongSession]:
        if self.active_key is None:
            return None
        return self._sections.get(self.active_key)

    def activate(self, key: str) -> ReadAlongSession:
        session = self._sections.get(key)
        if session is None:
            raise KeyError(key)
        if self.active_key == key:
            return session

        previous = self.active
        if previous is not None:
            previous.unbind()
        session.bind(self.audio)
        self.active_key = key
        logger.info("Activated section %s", key)
        return session

    def deactivate(self) -> None:
        previous = self.active
        if previous is not None:
            previous.unbind()
        self.active_key = None

    def remove(self, key: str) -> bool:
        if key == self.active_key:
            self.deactivate()
        return self._sections.pop(key, None) is not None
