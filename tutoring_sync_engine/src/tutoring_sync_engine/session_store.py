"""
Session Store

Owns every live (not yet ended) tutoring session for the lifetime of the
process, plus one asyncio.Lock per session so that a whole turn on a session
runs without interleaving with another turn or an end on the same session.
"""

import asyncio
from typing import Dict, List, MutableMapping, Optional

from tutoring_sync_engine.errors import NotFoundError
from tutoring_sync_engine.session_state import TutoringSession


class SessionStore:
    """Live sessions keyed by id, with per-session locks."""

    def __init__(self, backing: Optional[MutableMapping[str, TutoringSession]] = None):
        """
        Args:
            backing: Mapping used to hold sessions (a plain dict by default)
        """
        self._sessions: MutableMapping[str, TutoringSession] = backing if backing is not None else {}
        self._locks: Dict[str, asyncio.Lock] = {}

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, session_id: str) -> bool:
        return session_id in self._sessions

    def add(self, session: TutoringSession) -> None:
        self._sessions[session.id] = session

    def get(self, session_id: str) -> Optional[TutoringSession]:
        return self._sessions.get(session_id)

    def require(self, session_id: str) -> TutoringSession:
        session = self._sessions.get(session_id)
        if session is None:
            raise NotFoundError(f"Session {session_id} not found")
        return session

    def remove(self, session_id: str) -> Optional[TutoringSession]:
        # The lock stays so waiters queued behind an end still see a consistent object
        return self._sessions.pop(session_id, None)

    def all(self) -> List[TutoringSession]:
        return list(self._sessions.values())

    def active_for_user(self, user_id: str) -> List[TutoringSession]:
        """Active sessions of a user, most recently started first."""
        sessions = [s for s in self._sessions.values() if s.user_id == user_id and s.is_active]
        return sorted(sessions, key=lambda s: s.start_time, reverse=True)

    def lock_for(self, session_id: str) -> asyncio.Lock:
        lock = self._locks.get(session_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[session_id] = lock
        return lock
