"""Account and session core for the Orpheus music server."""

from __future__ import annotations

from typing import Any

from .accounts import AccountStore
from .auth import AuthService
from .models import AccountRecord, AccountSession, AuthStatus, LoginStatus, RegistrationResult
from .passwords import PasswordHasher
from .sessions import SessionTable
from .tokens import Token


def create_application(*args: Any, **kwargs: Any):
    """Factory function that returns the configured FastAPI application."""

    from .application import create_application as _create_application

    return _create_application(*args, **kwargs)


__all__ = [
    "AccountRecord",
    "AccountSession",
    "AccountStore",
    "AuthService",
    "AuthStatus",
    "LoginStatus",
    "PasswordHasher",
    "RegistrationResult",
    "SessionTable",
    "Token",
    "create_application",
]
