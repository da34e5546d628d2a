"""Login and per-request authentication on top of the account store."""

from __future__ import annotations

import logging
from datetime import timedelta
from typing import Optional

from . import tokens
from .accounts import AccountStore
from .models import (
    AccountSession,
    AuthResult,
    AuthStatus,
    LoginStatus,
    RegistrationResult,
)
from .passwords import Password
from .sessions import SessionTable
from .tokens import Token

logger = logging.getLogger("orpheus.auth")

DEFAULT_SESSION_LIFETIME = timedelta(hours=6)


class AuthService:
    """Entry point used by the HTTP layer for every account operation.

    A successful login always replaces the account's previous session, live
    or expired, so re-authenticating from a new client never locks the user
    out until the old session runs out.
    """

    def __init__(
        self,
        accounts: AccountStore,
        sessions: Optional[SessionTable] = None,
        *,
        session_lifetime: timedelta = DEFAULT_SESSION_LIFETIME,
    ) -> None:
        if session_lifetime <= timedelta(0):
            raise ValueError("Session lifetime must be positive")
        self._accounts = accounts
        self._sessions = sessions if sessions is not None else SessionTable()
        self._session_lifetime = session_lifetime

    @property
    def accounts(self) -> AccountStore:
        return self._accounts

    @property
    def sessions(self) -> SessionTable:
        return self._sessions

    @property
    def session_lifetime(self) -> timedelta:
        return self._session_lifetime

    def register_account(self, username: str, password: Password, is_admin: bool = False) -> RegistrationResult:
        """Create an account. Callers must have checked the requester is an admin."""

        return self._accounts.register(username, password, is_admin)

    def login(self, username: str, password: Password) -> AuthResult:
        outcome = self._accounts.verify_login(username, password)
        if outcome.status is LoginStatus.NOT_FOUND:
            logger.info("Login attempt for unknown account %s", username)
            return AuthResult(AuthStatus.ACCOUNT_NOT_FOUND)
        if outcome.status is LoginStatus.INVALID_PASSWORD or outcome.account is None:
            logger.warning("Failed login attempt for %s", username)
            return AuthResult(AuthStatus.INVALID_PASSWORD)

        now = self._sessions.now()
        session = AccountSession(
            account=outcome.account,
            token=tokens.generate(),
            started_at=now,
            expires_at=now + self._session_lifetime,
        )
        self._sessions.supersede(session)
        logger.info("Account %s logged in; session expires at %s", session.username, session.expires_at.isoformat())
        return AuthResult(AuthStatus.SUCCESS, session)

    def authenticate(self, username: str, token: Token) -> bool:
        return self._sessions.authenticate(username, token)

    def authorize(self, username: str, token: Token) -> Optional[AccountSession]:
        """Return the caller's live session, or ``None`` if the token is not valid."""

        return self._sessions.get_session(username, token)

    def prune_sessions(self) -> int:
        return self._sessions.prune_expired()


__all__ = ["DEFAULT_SESSION_LIFETIME", "AuthService"]
