"""In-memory session table for logged in accounts."""

from __future__ import annotations

import logging
import threading
from datetime import datetime, timezone
from typing import Callable, Dict, Optional

from .models import AccountSession
from .tokens import Token

logger = logging.getLogger("orpheus.sessions")

Clock = Callable[[], datetime]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SessionTable:
    """Map usernames to their current session.

    At most one live session exists per username. Every check-then-act
    sequence runs under ``_lock``; ``_tokens`` mirrors ``_sessions`` so token
    uniqueness can be checked without scanning the table.
    """

    def __init__(self, *, clock: Clock = utcnow) -> None:
        self._clock = clock
        self._sessions: Dict[str, AccountSession] = {}
        self._tokens: Dict[Token, str] = {}
        self._lock = threading.Lock()

    def now(self) -> datetime:
        return self._clock()

    def register_session(self, session: AccountSession) -> bool:
        """Install *session* unless its account already has a live session."""

        now = self._clock()
        with self._lock:
            existing = self._sessions.get(session.username)
            if existing is not None and not existing.is_expired(now):
                logger.debug("Account %s already has a live session", session.username)
                return False
            self._install_locked(session)
        logger.debug("Registered session for %s", session.username)
        return True

    def supersede(self, session: AccountSession) -> Optional[AccountSession]:
        """Install *session* unconditionally and return whatever it replaced."""

        with self._lock:
            previous = self._install_locked(session)
        if previous is not None:
            logger.debug("Replaced previous session for %s", session.username)
        return previous

    def lookup(self, username: str) -> Optional[AccountSession]:
        now = self._clock()
        with self._lock:
            session = self._sessions.get(username)
            if session is None:
                return None
            if session.is_expired(now):
                self._remove_locked(username)
                return None
            return session

    def get_session(self, username: str, token: Token) -> Optional[AccountSession]:
        """Return the live session for *username* if it carries *token*."""

        session = self.lookup(username)
        if session is None or session.token != token:
            return None
        return session

    def authenticate(self, username: str, token: Token) -> bool:
        return self.get_session(username, token) is not None

    def prune_expired(self) -> int:
        now = self._clock()
        with self._lock:
            expired = [name for name, session in self._sessions.items() if session.is_expired(now)]
            for name in expired:
                self._remove_locked(name)
        if expired:
            logger.debug("Pruned %d expired session(s)", len(expired))
        return len(expired)

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)

    def _install_locked(self, session: AccountSession) -> Optional[AccountSession]:
        owner = self._tokens.get(session.token)
        if owner is not None and owner != session.username:
            raise ValueError("Session token is already assigned to another account")
        previous = self._remove_locked(session.username)
        self._sessions[session.username] = session
        self._tokens[session.token] = session.username
        return previous

    def _remove_locked(self, username: str) -> Optional[AccountSession]:
        previous = self._sessions.pop(username, None)
        if previous is not None:
            self._tokens.pop(previous.token, None)
        return previous


__all__ = ["Clock", "SessionTable", "utcnow"]
