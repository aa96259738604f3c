"""In-memory session store with TTL cleanup.

WHY: Each browser tab listening along to a document needs its own
alignment state on the server, addressable across requests. Sessions
are cheap and disposable, so an in-memory store is sufficient.

HOW: StoredSession wraps a ReadAlongSession with an ID, timestamps and
the audio duration the client reported. SessionStore is a dict guarded
by a threading.Lock. Sessions idle for longer than the TTL are removed
by cleanup_expired().

RULES:
- All store mutations are protected by threading.Lock
- create_session() raises ValueError at capacity (the API maps it to 429)
- get_session() returns None for unknown IDs and refreshes last_accessed
- TTL is measured from last_accessed, not created_at
- Session IDs are uuid4 hex strings
"""

from __future__ import annotations

import logging
import threading
import time
import uuid
from dataclasses import dataclass
from typing import Dict, List, Optional

from listen_along.config import MAX_SESSIONS, SESSION_TTL_S
from listen_along.session import ReadAlongSession

logger = logging.getLogger(__name__)


@dataclass
class StoredSession:
    """A live alignment session and its bookkeeping."""

    id: str
    session: ReadAlongSession
    created_at: float
    last_accessed: float
    duration_s: Optional[float] = None


class SessionStore:
    """Thread-safe in-memory store for alignment sessions."""

    def __init__(
        self,
        ttl_seconds: int = SESSION_TTL_S,
        max_sessions: int = MAX_SESSIONS,
    ) -> None:
        self._sessions: Dict[str, StoredSession] = {}
        self._lock = threading.Lock()
        self._ttl_seconds = ttl_seconds
        self.max_sessions = max_sessions

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)

    def create_session(
        self,
        session: ReadAlongSession,
        duration_s: Optional[float] = None,
    ) -> StoredSession:
        with self._lock:
            if len(self._sessions) >= self.max_sessions:
                raise ValueError(
                    "Maximum number of concurrent sessions ({}) reached".format(
                        self.max_sessions
                    )
                )
            now = time.time()
            stored = StoredSession(
                id=uuid.uuid4().hex,
                session=session,
                created_at=now,
                last_accessed=now,
                duration_s=duration_s,
            )
            self._sessions[stored.id] = stored

        logger.info("Created session %s (%d tokens)", stored.id, len(session.document))
        return stored

    def get_session(self, session_id: str) -> Optional[StoredSession]:
        with self._lock:
            stored = self._sessions.get(session_id)
            if stored is not None:
                stored.last_accessed = time.time()
            return stored

    def list_sessions(self) -> List[StoredSession]:
        with self._lock:
            return sorted(self._sessions.values(), key=lambda s: s.created_at)

    def delete_session(self, session_id: str) -> bool:
        with self._lock:
            stored = self._sessions.pop(session_id, None)
        if stored is None:
            return False
        stored.session.unbind()
        logger.info("Deleted session %s", session_id)
        return True

    def clear(self) -> None:
        with self._lock:
            self._sessions.clear()

    def cleanup_expired(self) -> int:
        """Remove sessions idle for longer than the TTL; returns the count."""
        now = time.time()
        expired: List[StoredSession] = []

        with self._lock:
            for session_id, stored in list(self._sessions.items()):
                if now - stored.last_accessed > self._ttl_seconds:
                    expired.append(self._sessions.pop(session_id))

        for stored in expired:
            stored.session.unbind()
            logger.info(
                "Expired session %s (idle %.0fs)", stored.id, now - stored.last_accessed,
            )
        return len(expired)
