"""Timing-stream ingestion: validation, offset, clamping, ordering.

WHY: The timing stream comes from a separate speech pipeline and is
supplied by collaborators with no ordering guarantee. A global sync
offset is often needed to line it up with the audio file. The engine
assumes sorted, non-negative, offset-corrected events, so ingestion
must establish that explicitly.

HOW: Raw records are validated against a JSON Schema (jsonschema),
shifted by offset_ms / 1000 seconds, clamped at 0, stable-sorted by
start time, and converted to immutable TimingEvent objects carrying
their normalized word.

RULES:
- Records need word (string), time_start and time_end (numbers, seconds)
- Negative shifted times clamp to 0, never below
- Sorting is stable: records with equal start keep their input order
- Malformed input raises TimingFormatError at the boundary
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Dict, Iterable, List

import jsonschema

from listen_along.core.ir import TimingEvent
from listen_along.core.tokenizer import normalize_word

logger = logging.getLogger(__name__)

TIMING_SCHEMA: Dict[str, Any] = {
    "type": "array",
    "items": {
        "type": "object",
        "required": ["word", "time_start", "time_end"],
        "properties": {
            "word": {"type": "string"},
            "time_start": {"type": "number"},
            "time_end": {"type": "number"},
        },
    },
}


class TimingFormatError(ValueError):
    """Raised when a timing stream does not match TIMING_SCHEMA."""


def validate_timings(records: Any) -> None:
    """Check raw timing records against TIMING_SCHEMA.

    Raises:
        TimingFormatError: With the jsonschema message for the first
            offending record.
    """
    try:
        jsonschema.validate(instance=records, schema=TIMING_SCHEMA)
    except jsonschema.ValidationError as exc:
        raise TimingFormatError("Invalid timing stream: {}".format(exc.message)) from exc


def ingest_timings(
    records: Iterable[Dict[str, Any]],
    offset_ms: int = 0,
) -> List[TimingEvent]:
    """Normalize raw timing records into sorted TimingEvents.

    WHY: The controller walks events with a single monotonic pointer and
    the seek resolver binary-searches by start time, so both rely on the
    ordering and offset this function establishes.

    HOW: Validate, shift every start/end by offset_ms / 1000, clamp at 0,
    then stable-sort by the shifted start.

    Args:
        records: Dicts with word, time_start, time_end (seconds).
        offset_ms: Signed millisecond offset applied uniformly.

    Returns:
        TimingEvents ordered by start_s ascending.
    """
    records = list(records)
    validate_timings(records)

    offset_s = offset_ms / 1000.0
    events = [
        TimingEvent(
            word=record["word"],
            start_s=max(0.0, record["time_start"] + offset_s),
            end_s=max(0.0, record["time_end"] + offset_s),
            normalized=normalize_word(record["word"]),
        )
        for record in records
    ]
    events.sort(key=lambda e: e.start_s)

    logger.info("Loaded %d word timings", len(events))
    if offset_ms:
        logger.info("Applied %dms offset to all timings", offset_ms)
    return events


def load_timings(path: str | Path, offset_ms: int = 0) -> List[TimingEvent]:
    """Read a JSON timing file and ingest it.

    Raises:
        TimingFormatError: If the file is not valid JSON or fails validation.
    """
    try:
        records = json.loads(Path(path).read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        raise TimingFormatError("Timing file is not valid JSON: {}".format(exc)) from exc
    return ingest_timings(records, offset_ms=offset_ms)
