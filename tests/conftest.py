from __future__ import annotations

import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from orpheus.accounts import AccountStore
from orpheus.auth import AuthService
from orpheus.passwords import PasswordHasher
from orpheus.sessions import SessionTable

# Cheap scrypt parameters keep the suite fast; production uses DEFAULT_ROUNDS.
TEST_ROUNDS = 4


class FakeClock:
    """Manually advanced clock for expiry tests."""

    def __init__(self, start: datetime | None = None) -> None:
        self.current = start or datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.current

    def advance(self, delta: timedelta) -> None:
        self.current = self.current + delta


@pytest.fixture()
def hasher() -> PasswordHasher:
    return PasswordHasher(rounds=TEST_ROUNDS)


@pytest.fixture()
def accounts_path(tmp_path: Path) -> Path:
    return tmp_path / "data" / "accounts.yaml"


@pytest.fixture()
def store(accounts_path: Path, hasher: PasswordHasher) -> AccountStore:
    return AccountStore.open(accounts_path, hasher=hasher)


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def sessions(clock: FakeClock) -> SessionTable:
    return SessionTable(clock=clock)


@pytest.fixture()
def auth(store: AccountStore, sessions: SessionTable) -> AuthService:
    return AuthService(store, sessions)
