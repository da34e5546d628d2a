"""HTTP API for logging in and managing accounts."""

from __future__ import annotations

import contextlib
import logging
from datetime import datetime
from typing import AsyncIterator, Callable, Dict, Optional

from fastapi import Depends, FastAPI, Header, HTTPException, Request, status
from fastapi.responses import JSONResponse, PlainTextResponse
from pydantic import BaseModel, Field

from . import tokens
from .accounts import MAX_USERNAME_LENGTH
from .auth import AuthService
from .errors import DataIntegrityError, TokenFormatError
from .models import AccountSession, AuthStatus, RegistrationResult
from .persistence import BackgroundSaver

logger = logging.getLogger("orpheus.api")


class CreateAccountRequest(BaseModel):
    username: str = Field(..., min_length=1, max_length=MAX_USERNAME_LENGTH)
    password: str = Field(..., min_length=1, max_length=4096)
    is_admin: bool = False


class CreateAccountResponse(BaseModel):
    username: str
    is_admin: bool


class SessionResponse(BaseModel):
    username: str
    is_admin: bool
    started_at: datetime
    expires_at: datetime


def _decode_header(value: str) -> str:
    # Starlette decodes header bytes as latin-1; clients send UTF-8.
    try:
        return value.encode("latin-1").decode("utf-8")
    except UnicodeError:
        return value


def _require_header(value: Optional[str], name: str) -> str:
    if value is None or not value.strip():
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=f"Missing '{name}' header")
    return _decode_header(value)


def _build_session_dependency(auth: AuthService) -> Callable[..., AccountSession]:
    def dependency(
        username: Optional[str] = Header(default=None),
        auth_token: Optional[str] = Header(default=None, alias="auth-token"),
    ) -> AccountSession:
        name = _require_header(username, "username")
        raw_token = _require_header(auth_token, "auth-token")
        try:
            token = tokens.parse(raw_token)
        except TokenFormatError as exc:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc

        session = auth.authorize(name.strip(), token)
        if session is None:
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Session token is invalid or has expired",
            )
        return session

    return dependency


def register_routes(app: FastAPI, auth: AuthService) -> None:
    """Expose the account endpoints on the provided FastAPI application."""

    current_session = _build_session_dependency(auth)

    @app.get("/healthz")
    def healthcheck() -> Dict[str, str]:
        return {"status": "ok"}

    @app.post("/login", response_class=PlainTextResponse)
    def login(
        username: Optional[str] = Header(default=None),
        password: Optional[str] = Header(default=None),
    ) -> PlainTextResponse:
        name = _require_header(username, "username").strip()
        secret = _require_header(password, "password")

        result = auth.login(name, secret)
        if result.status is AuthStatus.ACCOUNT_NOT_FOUND:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Account not found")
        if result.status is AuthStatus.INVALID_PASSWORD or result.token is None:
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid credentials")
        return PlainTextResponse(str(result.token))

    @app.post(
        "/create-account",
        status_code=status.HTTP_201_CREATED,
        response_model=CreateAccountResponse,
    )
    def create_account(
        request: CreateAccountRequest,
        session: AccountSession = Depends(current_session),
    ) -> CreateAccountResponse:
        if not session.account.is_admin:
            logger.warning("Non-admin account %s attempted to create account %s", session.username, request.username)
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Administrator privileges required")

        try:
            outcome = auth.register_account(request.username, request.password, request.is_admin)
        except ValueError as exc:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc

        if outcome is RegistrationResult.ALREADY_EXISTS:
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Account already exists")

        logger.info("Account %s created by %s", request.username.strip(), session.username)
        return CreateAccountResponse(username=request.username.strip(), is_admin=request.is_admin)

    @app.get("/session", response_model=SessionResponse)
    def current(session: AccountSession = Depends(current_session)) -> SessionResponse:
        return SessionResponse(
            username=session.username,
            is_admin=session.account.is_admin,
            started_at=session.started_at,
            expires_at=session.expires_at,
        )


def create_app(
    *,
    auth: AuthService,
    saver: Optional[BackgroundSaver] = None,
) -> FastAPI:
    """Instantiate the FastAPI application around an :class:`AuthService`."""

    @contextlib.asynccontextmanager
    async def lifespan(_: FastAPI) -> AsyncIterator[None]:
        if saver is not None:
            await saver.start()
        try:
            yield
        finally:
            if saver is not None:
                await saver.stop()

    app = FastAPI(
        title="Orpheus",
        version="0.1.0",
        description="Account and session service for the Orpheus music server.",
        lifespan=lifespan,
    )
    app.state.auth = auth
    app.state.saver = saver

    @app.exception_handler(DataIntegrityError)
    async def integrity_error_handler(request: Request, exc: DataIntegrityError) -> JSONResponse:
        logger.error("Data integrity failure while handling %s %s: %s", request.method, request.url.path, exc)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"detail": "Stored account data is corrupted"},
        )

    register_routes(app, auth)
    return app


__all__ = ["CreateAccountRequest", "create_app", "register_routes"]
