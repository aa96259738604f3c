"""FastAPI application exposing the alignment engine over HTTP.

WHY: The browser owns the audio element and the rendered tokens; the
engine runs server-side. The client loads a document once, then reports
playback time on every tick (and on seeks, end of audio and paragraph
clicks) and applies the render commands it gets back.

HOW: A single FastAPI app with a module-level SessionStore. Every
session endpoint looks the session up (404 when unknown), runs one
engine operation, and returns the result plus the render commands that
operation issued against the session's in-memory surface.

RULES:
- All endpoints have OpenAPI summary, description and tags
- Error responses use the shared ErrorResponse schema
- Invalid timing payloads are 422 with the validation message
- Store capacity is 429
- Idle sessions are expired by a periodic cleanup task
- Python 3.9+ compatible (no match/case, no PEP 604 unions)
"""

from __future__ import annotations

import asyncio
import logging
import math
from contextlib import asynccontextmanager
from typing import List, Optional

from fastapi import FastAPI, HTTPException
from fastapi.responses import Response

from listen_along import __version__
from listen_along.adapters.render_surface import InMemoryRenderSurface
from listen_along.config import DEFAULT_OFFSET_MS, load_settings
from listen_along.core.ir import ParagraphMatch
from listen_along.core.timing import TimingFormatError, ingest_timings
from listen_along.core.tokenizer import tokenize_html, tokenize_text
from listen_along.server.models import (
    CreateSessionRequest,
    DocumentFormat,
    EndResponse,
    ErrorResponse,
    HealthResponse,
    LocateAttemptInfo,
    LocateRequest,
    LocateResponse,
    ParagraphInfo,
    RenderCommand,
    SeekRequest,
    SeekResponse,
    SessionCreatedResponse,
    SessionResponse,
    TickRequest,
    TickResponse,
    TokenInfo,
)
from listen_along.server.sessions import SessionStore, StoredSession
from listen_along.session import ReadAlongSession

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# App and store setup
# ---------------------------------------------------------------------------

session_store = SessionStore()


async def _periodic_cleanup() -> None:
    """Expire idle sessions every minute."""
    while True:
        await asyncio.sleep(60)
        session_store.cleanup_expired()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Start periodic cleanup on startup, cancel on shutdown."""
    task = asyncio.create_task(_periodic_cleanup())
    yield
    task.cancel()
    try:
        await task
    except asyncio.CancelledError:
        pass


app = FastAPI(
    lifespan=lifespan,
    title="Listen-Along Alignment API",
    description=(
        "Aligns a reference text with word-level audio timings so a client "
        "can highlight the text in step with playback. Load a document, "
        "report playback time, and apply the returned highlight commands."
    ),
    version=__version__,
    docs_url="/docs",
    redoc_url="/redoc",
)

NOT_FOUND = {404: {"model": ErrorResponse, "description": "Session not found"}}


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _get_or_404(session_id: str) -> StoredSession:
    stored = session_store.get_session(session_id)
    if stored is None:
        raise HTTPException(status_code=404, detail="Session not found: {}".format(session_id))
    return stored


def _duration(stored: StoredSession) -> Optional[float]:
    if stored.duration_s is not None:
        return stored.duration_s
    return stored.session.duration


def _take_commands(stored: StoredSession) -> List[RenderCommand]:
    """Drain the render commands recorded since the previous request."""
    surface = stored.session.surface
    if not isinstance(surface, InMemoryRenderSurface):
        return []
    return [
        RenderCommand(action=action, index=index, value=value)
        for action, index, value in surface.drain_commands()
    ]


def _locate_response(
    match: ParagraphMatch,
    attempts: Optional[List[LocateAttemptInfo]] = None,
) -> LocateResponse:
    timestamp = match.timestamp
    return LocateResponse(
        success=match.success,
        start=match.start,
        end=match.end,
        probability=match.probability,
        time_s=timestamp.time_s if timestamp is not None else None,
        timing_index=timestamp.timing_index if timestamp is not None else None,
        error=match.error,
        attempts=attempts,
    )


# ---------------------------------------------------------------------------
# Endpoints: Sessions
# ---------------------------------------------------------------------------


@app.post(
    "/sessions",
    response_model=SessionCreatedResponse,
    status_code=201,
    tags=["sessions"],
    summary="Load a document into a new session",
    description=(
        "Tokenizes the reference text (plain text or HTML), ingests the word "
        "timings with the given offset, and returns the tokens the client "
        "should render together with a session ID."
    ),
    responses={
        422: {"model": ErrorResponse, "description": "Invalid timing records"},
        429: {"model": ErrorResponse, "description": "Too many concurrent sessions"},
    },
)
async def create_session(request: CreateSessionRequest) -> SessionCreatedResponse:
    if request.format == DocumentFormat.html:
        document = tokenize_html(request.text)
    else:
        document = tokenize_text(request.text)

    offset_ms = DEFAULT_OFFSET_MS if request.offset_ms is None else request.offset_ms
    try:
        events = ingest_timings(request.timings, offset_ms)
    except TimingFormatError as exc:
        raise HTTPException(status_code=422, detail=str(exc))

    # the client applies these commands, so the surface records them for draining
    surface = InMemoryRenderSurface(document, record_commands=True)
    session = ReadAlongSession(document, events, load_settings(), surface=surface)
    try:
        stored = session_store.create_session(session, request.duration_s)
    except ValueError as exc:
        raise HTTPException(status_code=429, detail=str(exc))

    return SessionCreatedResponse(
        id=stored.id,
        token_count=len(document),
        timing_count=len(events),
        duration_s=_duration(stored),
        tokens=[
            TokenInfo(index=t.index, text=t.text, paragraph=t.paragraph)
            for t in document.tokens
        ],
        paragraphs=[
            ParagraphInfo(index=p.index, start=p.start, end=p.end, text=p.text)
            for p in document.paragraphs
        ],
    )


@app.get(
    "/sessions/{session_id}",
    response_model=SessionResponse,
    tags=["sessions"],
    summary="Get session state",
    description="Returns the current highlight watermark and controller phase of a session.",
    responses=NOT_FOUND,
)
async def get_session(session_id: str) -> SessionResponse:
    stored = _get_or_404(session_id)
    session = stored.session
    state = session.controller.state
    return SessionResponse(
        id=stored.id,
        token_count=len(session.document),
        timing_count=len(session.matcher.events),
        duration_s=_duration(stored),
        phase=session.controller.phase.value,
        highlighted_through=state.highlighted_through,
        current_index=state.current_index,
        created_at=stored.created_at,
    )


@app.delete(
    "/sessions/{session_id}",
    status_code=204,
    tags=["sessions"],
    summary="Delete a session",
    description="Discards a session and its alignment state.",
    responses=NOT_FOUND,
)
async def delete_session(session_id: str) -> Response:
    if not session_store.delete_session(session_id):
        raise HTTPException(status_code=404, detail="Session not found: {}".format(session_id))
    return Response(status_code=204)


# ---------------------------------------------------------------------------
# Endpoints: Playback
# ---------------------------------------------------------------------------


@app.post(
    "/sessions/{session_id}/tick",
    response_model=TickResponse,
    tags=["playback"],
    summary="Advance highlighting to the current playback time",
    description=(
        "Call on every animation frame (or at a fixed interval) while audio "
        "plays. Highlighting never runs ahead of the reported time, except "
        "for the end-of-audio flush."
    ),
    responses=NOT_FOUND,
)
async def tick_session(session_id: str, request: TickRequest) -> TickResponse:
    stored = _get_or_404(session_id)
    duration = request.duration_s if request.duration_s is not None else _duration(stored)
    result = stored.session.tick(request.time_s, duration)
    ceiling = result.max_allowed_index
    return TickResponse(
        time_s=result.time_s,
        phase=result.phase.value,
        highlighted=result.highlighted,
        highlighted_through=result.highlighted_through,
        max_allowed_index=None if math.isinf(ceiling) else int(ceiling),
        commands=_take_commands(stored),
    )


@app.post(
    "/sessions/{session_id}/seek",
    response_model=SeekResponse,
    tags=["playback"],
    summary="Re-derive highlighting after a seek",
    description=(
        "Clears all highlighting and rebuilds it for the new playback "
        "position. Times outside the audio are clamped."
    ),
    responses=NOT_FOUND,
)
async def seek_session(session_id: str, request: SeekRequest) -> SeekResponse:
    stored = _get_or_404(session_id)
    resolution = stored.session.seek(request.time_s, _duration(stored))
    return SeekResponse(
        time_s=resolution.time_s,
        strategy=resolution.strategy.value,
        text_index=resolution.text_index,
        timing_index=resolution.timing_index,
        probability=resolution.probability,
        commands=_take_commands(stored),
    )


@app.post(
    "/sessions/{session_id}/end",
    response_model=EndResponse,
    tags=["playback"],
    summary="Notify end of audio",
    description="Highlights every remaining token so the text is never left partially highlighted.",
    responses=NOT_FOUND,
)
async def end_session(session_id: str) -> EndResponse:
    stored = _get_or_404(session_id)
    highlighted = stored.session.end()
    return EndResponse(
        highlighted=highlighted,
        highlighted_through=stored.session.controller.state.highlighted_through,
        commands=_take_commands(stored),
    )


@app.post(
    "/sessions/{session_id}/locate",
    response_model=LocateResponse,
    tags=["playback"],
    summary="Locate a passage and its audio time",
    description=(
        "Finds the best-matching window for a passage (free text, a list of "
        "candidate passages, or one of the document's paragraphs) and the "
        "audio time it starts at. On success the client should seek its "
        "audio to time_s; highlighting is reset to that time unless seek is false."
    ),
    responses={
        404: {"model": ErrorResponse, "description": "Session not found"},
        422: {"model": ErrorResponse, "description": "No passage given"},
    },
)
async def locate_in_session(session_id: str, request: LocateRequest) -> LocateResponse:
    stored = _get_or_404(session_id)
    session = stored.session
    attempts = None

    if request.text is not None:
        match = session.locate(request.text, request.min_probability)
    elif request.texts:
        runs = session.locator.locate_first(request.texts, request.min_probability)
        attempts = [
            LocateAttemptInfo(index=a.index, success=a.result.success, error=a.result.error)
            for a in runs
        ]
        match = runs[-1].result
    elif request.paragraph_index is not None:
        match = session.locator.locate_paragraph(request.paragraph_index, request.min_probability)
    else:
        raise HTTPException(
            status_code=422,
            detail="One of text, texts or paragraph_index is required",
        )

    response = _locate_response(match, attempts)
    if request.seek and match.success and match.timestamp is not None:
        session.seek(match.timestamp.time_s, _duration(stored))
        response.commands = _take_commands(stored)
    return response


# ---------------------------------------------------------------------------
# Endpoints: Health
# ---------------------------------------------------------------------------


@app.get(
    "/health",
    response_model=HealthResponse,
    tags=["health"],
    summary="Health check",
    description="Liveness and readiness check for load balancers and orchestrators.",
)
async def health_check() -> HealthResponse:
    return HealthResponse(status="ok", version=__version__, sessions=len(session_store))


def run_api(host: str = "0.0.0.0", port: int = 8000) -> None:
    """Entry point for the listen-along-api console script."""
    import uvicorn
    uvicorn.run(app, host=host, port=port)
