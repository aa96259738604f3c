"""Core alignment modules.

WHY: The core package contains the heart of the listen-along engine:
the IR dataclasses, text and timing ingestion, the shared context
matcher, and the three state machines built on it (forward highlight
progression, seek resolution, paragraph locating).

HOW: ir.py defines the data structures, tokenizer.py and timing.py
build them from raw inputs, matcher.py scores candidates, and
highlighter.py, seek.py and locator.py drive the matcher in real time.

RULES:
- Core modules know nothing about audio playback or rendering beyond
  the narrow interfaces in listen_along.adapters
- Nothing in core raises for alignment quality problems
"""
