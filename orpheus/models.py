"""Domain models for accounts, sessions and authentication outcomes."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional

from .tokens import Token


@dataclass(frozen=True)
class AccountRecord:
    """A registered account as persisted in the account file."""

    username: str
    password_hash: str
    is_admin: bool = False

    def __repr__(self) -> str:
        return f"AccountRecord(username={self.username!r}, is_admin={self.is_admin!r})"


@dataclass(frozen=True)
class AccountSession:
    """A logged in account and the token that identifies it."""

    account: AccountRecord
    token: Token
    started_at: datetime
    expires_at: datetime

    @property
    def username(self) -> str:
        return self.account.username

    def is_expired(self, now: datetime) -> bool:
        return now >= self.expires_at


class RegistrationResult(str, Enum):
    """Outcome of adding an account to the store."""

    CREATED = "created"
    ALREADY_EXISTS = "already_exists"


class LoginStatus(str, Enum):
    """Outcome of checking a username/password pair against the store."""

    SUCCESS = "success"
    INVALID_PASSWORD = "invalid_password"
    NOT_FOUND = "not_found"


class AuthStatus(str, Enum):
    """Outcome of a login attempt as reported to the HTTP layer."""

    SUCCESS = "success"
    INVALID_PASSWORD = "invalid_password"
    ACCOUNT_NOT_FOUND = "account_not_found"


@dataclass(frozen=True)
class LoginResult:
    status: LoginStatus
    account: Optional[AccountRecord] = None

    @property
    def ok(self) -> bool:
        return self.status is LoginStatus.SUCCESS


@dataclass(frozen=True)
class AuthResult:
    status: AuthStatus
    session: Optional[AccountSession] = None

    @property
    def ok(self) -> bool:
        return self.status is AuthStatus.SUCCESS

    @property
    def token(self) -> Optional[Token]:
        return self.session.token if self.session is not None else None


__all__ = [
    "AccountRecord",
    "AccountSession",
    "AuthResult",
    "AuthStatus",
    "LoginResult",
    "LoginStatus",
    "RegistrationResult",
]
