"""Pydantic request/response models for the HTTP API.

WHY: A browser client renders the tokens itself and only needs the
engine's decisions: which indices to mark highlighted or read, where a
seek landed, and where a passage was found. Typed models validate the
requests and document every field in /docs.

HOW: One request model per mutating endpoint, one response model per
endpoint. Timing records are accepted as raw objects so that the timing
ingest's JSON-schema validation produces the error messages.

RULES:
- All models use Field(description=...) for OpenAPI documentation
- max_allowed_index is null whenever the engine holds no ceiling
- Python 3.9+ compatible (no PEP 604 unions, use Optional from typing)
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class DocumentFormat(str, Enum):
    """How the submitted reference text is tokenized.

    RULES:
    - text: paragraphs separated by blank lines
    - html: every <p> element is a paragraph
    """

    text = "text"
    html = "html"


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class CreateSessionRequest(BaseModel):
    """Reference document and word timings for a new alignment session."""

    text: str = Field(description="Reference text, plain or HTML depending on format.")
    format: DocumentFormat = Field(
        default=DocumentFormat.text,
        description="How to split the reference text into paragraphs.",
    )
    timings: List[Dict[str, Any]] = Field(
        default_factory=list,
        description=(
            "Timing records, each {word, time_start, time_end} in seconds. "
            "May be empty, in which case highlighting follows a fixed speaking rate."
        ),
    )
    offset_ms: Optional[int] = Field(
        default=None,
        description="Millisecond offset added to every timing record (server default when omitted).",
    )
    duration_s: Optional[float] = Field(
        default=None,
        description="Audio duration in seconds. Defaults to the end of the last timing record.",
    )

    model_config = {"json_schema_extra": {
        "examples": [
            {
                "text": "The quick brown fox.\n\nIt jumps over the lazy dog.",
                "format": "text",
                "timings": [
                    {"word": "The", "time_start": 0.0, "time_end": 0.2},
                    {"word": "quick", "time_start": 0.25, "time_end": 0.5},
                ],
                "offset_ms": 0,
            }
        ]
    }}


class TickRequest(BaseModel):
    """Current playback time reported by the client."""

    time_s: float = Field(description="Current playback position in seconds.")
    duration_s: Optional[float] = Field(
        default=None,
        description="Audio duration override in seconds.",
    )


class SeekRequest(BaseModel):
    """Playback position the client has jumped to."""

    time_s: float = Field(description="New playback position in seconds (clamped to the audio).")


class LocateRequest(BaseModel):
    """Passage to locate, by text, by several candidate texts, or by paragraph index.

    RULES:
    - Exactly one of text, texts, paragraph_index should be given; text
      wins over texts, texts over paragraph_index
    - When seek is true a successful locate also resets highlighting to
      the located time
    """

    text: Optional[str] = Field(default=None, description="Free-form passage text.")
    texts: Optional[List[str]] = Field(
        default=None,
        description="Candidate passages tried in order until one is located.",
    )
    paragraph_index: Optional[int] = Field(
        default=None,
        description="Index of one of the document's own paragraphs.",
    )
    min_probability: Optional[float] = Field(
        default=None,
        ge=0.0,
        le=1.0,
        description="Minimum window score to accept (server default when omitted).",
    )
    seek: bool = Field(default=True, description="Seek highlighting to the located time.")


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class TokenInfo(BaseModel):
    """One token of the reference document as the client should render it."""

    index: int = Field(description="Positional token index.")
    text: str = Field(description="Word as displayed.")
    paragraph: int = Field(description="Paragraph index this token belongs to.")


class ParagraphInfo(BaseModel):
    index: int = Field(description="Paragraph index.")
    start: int = Field(description="First token index (inclusive).")
    end: int = Field(description="Last token index (inclusive).")
    text: str = Field(description="Paragraph text.")


class RenderCommand(BaseModel):
    """A visual state change the client should apply to one token."""

    action: str = Field(description="'highlight' or 'read'.")
    index: int = Field(description="Token index.")
    value: bool = Field(description="New state.")


class SessionCreatedResponse(BaseModel):
    """Returned when a document has been loaded into a new session."""

    id: str = Field(description="Unique session identifier.")
    token_count: int = Field(description="Number of tokens in the reference document.")
    timing_count: int = Field(description="Number of ingested timing records.")
    duration_s: Optional[float] = Field(default=None, description="Audio duration in seconds.")
    tokens: List[TokenInfo] = Field(description="Tokens to render, in order.")
    paragraphs: List[ParagraphInfo] = Field(description="Paragraph boundaries.")

    model_config = {"json_schema_extra": {
        "examples": [
            {
                "id": "550e8400e29b41d4a716446655440000",
                "token_count": 2,
                "timing_count": 2,
                "duration_s": 0.5,
                "tokens": [
                    {"index": 0, "text": "The", "paragraph": 0},
                    {"index": 1, "text": "quick", "paragraph": 0},
                ],
                "paragraphs": [{"index": 0, "start": 0, "end": 1, "text": "The quick"}],
            }
        ]
    }}


class SessionResponse(BaseModel):
    """Current alignment state of a session."""

    id: str = Field(description="Unique session identifier.")
    token_count: int = Field(description="Number of tokens in the reference document.")
    timing_count: int = Field(description="Number of ingested timing records.")
    duration_s: Optional[float] = Field(default=None, description="Audio duration in seconds.")
    phase: str = Field(description="Highlight controller phase.")
    highlighted_through: int = Field(description="Next token index to be highlighted.")
    current_index: int = Field(description="Most recently highlighted token, -1 when none.")
    created_at: float = Field(description="Session creation timestamp (Unix epoch seconds).")


class TickResponse(BaseModel):
    """What one tick committed."""

    time_s: float = Field(description="Playback time the tick was evaluated at.")
    phase: str = Field(description="Highlight controller phase after the tick.")
    highlighted: List[int] = Field(description="Token indices newly highlighted by this tick.")
    highlighted_through: int = Field(description="Next token index to be highlighted.")
    max_allowed_index: Optional[int] = Field(
        default=None,
        description="Highest index the audio has reached, null when unbounded.",
    )
    commands: List[RenderCommand] = Field(description="Render commands issued during the tick.")


class SeekResponse(BaseModel):
    """Where a seek landed."""

    time_s: float = Field(description="Clamped seek time in seconds.")
    strategy: str = Field(description="Which fallback resolved the position.")
    text_index: int = Field(description="Last highlighted token index, -1 when cleared.")
    timing_index: int = Field(description="Timing record used, -1 for estimates.")
    probability: float = Field(description="Match probability of the resolving match.")
    commands: List[RenderCommand] = Field(description="Render commands issued during the seek.")


class EndResponse(BaseModel):
    highlighted: List[int] = Field(description="Token indices highlighted by the end flush.")
    highlighted_through: int = Field(description="Next token index (equals token_count).")
    commands: List[RenderCommand] = Field(description="Render commands issued during the flush.")


class LocateAttemptInfo(BaseModel):
    index: int = Field(description="Position of the passage in the request's texts.")
    success: bool = Field(description="Whether this passage was located.")
    error: Optional[str] = Field(default=None, description="Failure reason.")


class LocateResponse(BaseModel):
    """Outcome of locating a passage in the text and the audio."""

    success: bool = Field(description="True when both a window and a timestamp were found.")
    start: int = Field(description="First token of the best window, -1 when none.")
    end: int = Field(description="Last token of the best window, -1 when none.")
    probability: float = Field(description="Window score.")
    time_s: Optional[float] = Field(default=None, description="Audio time the passage starts at.")
    timing_index: Optional[int] = Field(default=None, description="Timing record the time came from.")
    error: Optional[str] = Field(
        default=None,
        description="'No valid words', 'Low match probability' or 'No audio timing'.",
    )
    attempts: Optional[List[LocateAttemptInfo]] = Field(
        default=None,
        description="Per-passage results when several texts were given.",
    )
    commands: List[RenderCommand] = Field(
        default_factory=list,
        description="Render commands issued by the seek that followed a successful locate.",
    )


class ErrorResponse(BaseModel):
    """Standard error response body.

    RULES:
    - detail is always a human-readable error message
    """

    detail: str = Field(description="Human-readable error description.")


class HealthResponse(BaseModel):
    status: str = Field(description="Service health status.", json_schema_extra={"example": "ok"})
    version: str = Field(description="API version string.", json_schema_extra={"example": "0.1.0"})
    sessions: int = Field(description="Number of live sessions.")
