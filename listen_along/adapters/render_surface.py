"""Render-surface interface and an in-memory implementation.

WHY: The engine decides which tokens are spoken; something else draws
them. Holding live element references inside matching state made the
engine fail whenever the surface was rebuilt. Addressing the surface by
token index, re-resolving a handle for every command and checking its
validity first removes that failure class.

HOW: RenderSurface maps a token index to a TokenHandle on demand.
TokenHandle exposes the token's normalized word and two visual states:
"highlighted" (committed as spoken) and "read" (already passed, i.e.
committed and no longer the current word). InMemoryRenderSurface backs
handles with plain state and can record every command for a client to
drain, which is what the HTTP API and the tests use.

RULES:
- Callers resolve a handle per command and never keep it beyond a tick
- A handle from before rebuild() reports is_valid() == False and
  ignores commands
- resolve() returns None for out-of-range indices
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import List, Optional, Tuple

from listen_along.core.ir import ReferenceDocument


class TokenHandle(ABC):
    """One addressable token on a render surface."""

    @property
    @abstractmethod
    def normalized_word(self) -> str:
        """The token's normalized word."""

    @abstractmethod
    def is_valid(self) -> bool:
        """Whether this handle still refers to a live surface element."""

    @abstractmethod
    def is_highlighted(self) -> bool:
        ...

    @abstractmethod
    def set_highlighted(self, value: bool) -> None:
        ...

    @abstractmethod
    def is_read(self) -> bool:
        ...

    @abstractmethod
    def set_read(self, value: bool) -> None:
        ...


class RenderSurface(ABC):
    """Index-addressed collection of token handles."""

    @abstractmethod
    def token_count(self) -> int:
        ...

    @abstractmethod
    def resolve(self, index: int) -> Optional[TokenHandle]:
        """Return a handle for index, or None if it cannot be resolved."""


@dataclass
class _TokenVisualState:
    normalized_word: str
    highlighted: bool = False
    read: bool = False


class MemoryTokenHandle(TokenHandle):
    """Handle into an InMemoryRenderSurface, bound to one surface generation."""

    def __init__(self, surface: "InMemoryRenderSurface", index: int, generation: int) -> None:
        self._surface = surface
        self._index = index
        self._generation = generation

    @property
    def index(self) -> int:
        return self._index

    @property
    def normalized_word(self) -> str:
        return self._surface._states[self._index].normalized_word

    def is_valid(self) -> bool:
        return self._surface._is_live(self._index, self._generation)

    def is_highlighted(self) -> bool:
        return self.is_valid() and self._surface._states[self._index].highlighted

    def set_highlighted(self, value: bool) -> None:
        if self.is_valid():
            self._surface._states[self._index].highlighted = value
            self._surface._record("highlight", self._index, value)

    def is_read(self) -> bool:
        return self.is_valid() and self._surface._states[self._index].read

    def set_read(self, value: bool) -> None:
        if self.is_valid():
            self._surface._states[self._index].read = value
            self._surface._record("read", self._index, value)


class InMemoryRenderSurface(RenderSurface):
    """Render surface kept entirely in memory.

    WHY: Headless consumers (the HTTP API, the CLI simulator, tests)
    need a surface that behaves like a rebuilt-on-demand DOM without a
    browser.

    HOW: One visual state per token plus a generation counter. rebuild()
    bumps the generation and resets all visual state, invalidating every
    handle handed out earlier. detach() invalidates a single index.

    RULES:
    - With record_commands, commands holds ("highlight" | "read", index,
      value) in issue order until drain_commands() empties it
    - Without it nothing is recorded, so a long-lived surface that no
      client drains does not grow
    """

    def __init__(self, document: ReferenceDocument, record_commands: bool = True) -> None:
        self.record_commands = record_commands
        self._words = document.words
        self._generation = 0
        self._detached: set = set()
        self._states: List[_TokenVisualState] = []
        self.commands: List[Tuple[str, int, bool]] = []
        self.rebuild()

    @property
    def generation(self) -> int:
        return self._generation

    def token_count(self) -> int:
        return len(self._states)

    def resolve(self, index: int) -> Optional[TokenHandle]:
        if not 0 <= index < len(self._states):
            return None
        return MemoryTokenHandle(self, index, self._generation)

    def drain_commands(self) -> List[Tuple[str, int, bool]]:
        """Return the recorded commands and start a new log."""
        commands, self.commands = self.commands, []
        return commands

    def rebuild(self) -> None:
        """Recreate every element, dropping visual state and old handles."""
        self._generation += 1
        self._detached = set()
        self._states = [_TokenVisualState(normalized_word=w) for w in self._words]

    def detach(self, index: int) -> None:
        """Invalidate the element at index until the next rebuild()."""
        self._detached.add(index)

    def highlighted_indices(self) -> List[int]:
        return [i for i, s in enumerate(self._states) if s.highlighted and i not in self._detached]

    def read_indices(self) -> List[int]:
        return [i for i, s in enumerate(self._states) if s.read and i not in self._detached]

    def _is_live(self, index: int, generation: int) -> bool:
        return generation == self._generation and index not in self._detached

    def _record(self, action: str, index: int, value: bool) -> None:
        if self.record_commands:
            self.commands.append((action, index, value))
