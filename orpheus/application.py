"""Application factory wiring configuration, storage and the HTTP API."""
from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Optional

from fastapi import FastAPI

from .accounts import AccountStore
from .api import create_app
from .auth import AuthService
from .config import ServerConfig, load_config, resolve_config_path
from .passwords import PasswordHasher
from .persistence import BackgroundSaver
from .sessions import SessionTable


@dataclass(frozen=True)
class Services:
    """The long-lived objects shared by every request handler."""

    config: ServerConfig
    store: AccountStore
    auth: AuthService
    saver: BackgroundSaver


def build_services(config: ServerConfig) -> Services:
    """Open the account store and construct the services around it.

    Raises :class:`~orpheus.errors.CorruptAccountFileError` if the account file
    cannot be decoded.
    """

    hasher = PasswordHasher(rounds=config.password_rounds)
    store = AccountStore.open(config.account_data_path, hasher=hasher)
    sessions = SessionTable()
    auth = AuthService(store, sessions, session_lifetime=config.session_lifetime)
    saver = BackgroundSaver(store, sessions=sessions, interval=config.save_interval)
    return Services(config=config, store=store, auth=auth, saver=saver)


def create_application(
    *,
    config: Optional[ServerConfig] = None,
    config_path: Optional[str] = None,
) -> FastAPI:
    """Create the ASGI application from a config object or config file."""

    if config is None:
        config = load_config(resolve_config_path(config_path or os.getenv("ORPHEUS_CONFIG")))
    services = build_services(config)
    app = create_app(auth=services.auth, saver=services.saver)
    app.state.services = services
    return app


__all__ = ["Services", "build_services", "create_application"]
