"""Listen-along alignment engine.

Highlights a reference text word by word in step with narrated audio,
re-derives the highlight position after seeks, and maps passages of the
text back to audio timestamps.
"""

__version__ = "0.1.0"
