"""In-memory ceremony and login session stores."""

from __future__ import annotations

import logging
import secrets
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict

from .errors import NoPendingCeremony, NotAuthenticated

logger = logging.getLogger(__name__)

REGISTRATION = "registration"
AUTHENTICATION = "authentication"


@dataclass(frozen=True)
class CeremonySession:
    user_id: str
    kind: str
    state: Dict[str, Any]
    expires_at: float


@dataclass(frozen=True)
class AuthSession:
    token: str
    user_id: str
    expires_at: float


class CeremonySessionStore:
    """Pending ceremony state keyed by user id.

    At most one ceremony per user is kept. Starting a new one replaces the
    previous state, and :meth:`pop` always removes the entry, so a challenge
    can be consumed once at most.
    """

    def __init__(self, ttl: float = 300.0, clock: Callable[[], float] = time.time) -> None:
        self.ttl = ttl
        self._clock = clock
        self._lock = threading.Lock()
        self._sessions: Dict[str, CeremonySession] = {}

    def put(self, user_id: str, kind: str, state: Dict[str, Any]) -> CeremonySession:
        session = CeremonySession(
            user_id=user_id,
            kind=kind,
            state=state,
            expires_at=self._clock() + self.ttl,
        )
        with self._lock:
            self._purge_locked()
            previous = self._sessions.get(user_id)
            self._sessions[user_id] = session
        if previous is not None:
            logger.warning(
                "Replacing pending %s ceremony for user %s with a new %s ceremony",
                previous.kind,
                user_id,
                kind,
            )
        return session

    def pop(self, user_id: str, kind: str) -> CeremonySession:
        with self._lock:
            session = self._sessions.pop(user_id, None)
            self._purge_locked()
        if session is None:
            raise NoPendingCeremony(f"No pending ceremony for user {user_id}")
        if session.expires_at <= self._clock():
            raise NoPendingCeremony(f"Ceremony for user {user_id} expired")
        if session.kind != kind:
            raise NoPendingCeremony(f"Pending ceremony for user {user_id} is {session.kind}, not {kind}")
        return session

    def pending(self, user_id: str) -> bool:
        with self._lock:
            session = self._sessions.get(user_id)
            return session is not None and session.expires_at > self._clock()

    def sweep(self) -> int:
        with self._lock:
            return self._purge_locked()

    def _purge_locked(self) -> int:
        now = self._clock()
        expired = [key for key, session in self._sessions.items() if session.expires_at <= now]
        for key in expired:
            del self._sessions[key]
        return len(expired)

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)


class AuthSessionStore:
    """Opaque bearer tokens for authenticated users."""

    def __init__(self, ttl: float = 24 * 60 * 60, clock: Callable[[], float] = time.time) -> None:
        self.ttl = ttl
        self._clock = clock
        self._lock = threading.Lock()
        self._sessions: Dict[str, AuthSession] = {}

    def create(self, user_id: str) -> AuthSession:
        with self._lock:
            self._purge_locked()
            token = secrets.token_urlsafe(32)
            while token in self._sessions:
                token = secrets.token_urlsafe(32)
            session = AuthSession(token=token, user_id=user_id, expires_at=self._clock() + self.ttl)
            self._sessions[token] = session
        return session

    def resolve(self, token: str | None) -> str:
        if not token:
            raise NotAuthenticated("No session token")
        with self._lock:
            session = self._sessions.get(token)
            if session is not None and session.expires_at <= self._clock():
                del self._sessions[token]
                session = None
        if session is None:
            raise NotAuthenticated("Invalid or expired session")
        return session.user_id

    def revoke(self, token: str | None) -> bool:
        if not token:
            return False
        with self._lock:
            return self._sessions.pop(token, None) is not None

    def sweep(self) -> int:
        with self._lock:
            return self._purge_locked()

    def _purge_locked(self) -> int:
        now = self._clock()
        expired = [token for token, session in self._sessions.items() if session.expires_at <= now]
        for token in expired:
            del self._sessions[token]
        return len(expired)

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)


__all__ = [
    "AUTHENTICATION",
    "REGISTRATION",
    "AuthSession",
    "AuthSessionStore",
    "CeremonySession",
    "CeremonySessionStore",
]
