"""
minerweb - Session Store
==========================
In-memory login sessions with sliding idle expiry.

A session stays valid while the gap between two successful checks never
exceeds the idle timeout. Every successful check refreshes the session's
last access time. Expired sessions are evicted lazily by the check that
finds them expired; purge_expired() sweeps the whole table and is called on
every login so the table cannot grow without bound.

The table is guarded by a single lock that is held only while the dict is
read or mutated.
"""

import secrets
import threading
import time
from dataclasses import dataclass
from typing import Callable


@dataclass
class Session:
    """One authenticated browser session."""
    session_id: str
    user: str
    client: str
    created_at: float
    last_access: float


class SessionStore:
    """
    Thread-safe session table.

    Attributes:
        idle_timeout: Maximum allowed gap in seconds between two checks.
    """

    def __init__(self, idle_timeout: float, clock: Callable[[], float] = time.monotonic):
        """
        Args:
            idle_timeout: Session idle timeout in seconds.
            clock:        Monotonic time source; injectable for tests.
        """
        self.idle_timeout = idle_timeout
        self._clock = clock
        self._sessions: dict[str, Session] = {}
        self._lock = threading.Lock()

    def create(self, user: str, client: str = "") -> Session:
        """Create and store a new session with a random id."""
        now = self._clock()
        session = Session(
            session_id=secrets.token_urlsafe(32),
            user=user,
            client=client,
            created_at=now,
            last_access=now,
        )
        with self._lock:
            self._sessions[session.session_id] = session
        return session

    def touch(self, session_id: str) -> Session | None:
        """
        Validate a session and refresh its last access time.

        Returns:
            The session if it exists and has not expired, None otherwise.
            An expired session is removed from the table.
        """
        now = self._clock()
        with self._lock:
            session = self._sessions.get(session_id)
            if session is None:
                return None
            if now - session.last_access > self.idle_timeout:
                del self._sessions[session_id]
                return None
            session.last_access = now
            return session

    def remove(self, session_id: str) -> None:
        """Drop a session. Removing an unknown id is a no-op."""
        with self._lock:
            self._sessions.pop(session_id, None)

    def purge_expired(self) -> int:
        """Remove every expired session; returns how many were removed."""
        now = self._clock()
        with self._lock:
            expired = [
                sid for sid, s in self._sessions.items()
                if now - s.last_access > self.idle_timeout
            ]
            for sid in expired:
                del self._sessions[sid]
        return len(expired)

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)
