"""Interfaces to the engine's external collaborators.

WHY: Audio playback and on-screen rendering are outside the alignment
core. The core talks to them only through the narrow abstractions
defined here, so a browser bridge, a headless server and the tests can
all plug in their own implementations.

HOW: audio_engine.py defines the playback transport and its typed event
bus; render_surface.py defines index-addressed token handles.
"""
