from __future__ import annotations

import threading
from concurrent.futures import ThreadPoolExecutor
from datetime import timedelta

import pytest

from orpheus import tokens
from orpheus.models import AccountRecord, AccountSession
from orpheus.sessions import SessionTable

from .conftest import FakeClock

ALICE = AccountRecord(username="alice", password_hash="$scrypt$x", is_admin=False)
BOB = AccountRecord(username="bob", password_hash="$scrypt$y", is_admin=True)


def _session(clock: FakeClock, account: AccountRecord = ALICE, lifetime: timedelta = timedelta(hours=6)) -> AccountSession:
    now = clock()
    return AccountSession(account=account, token=tokens.generate(), started_at=now, expires_at=now + lifetime)


def test_register_and_authenticate(sessions: SessionTable, clock: FakeClock) -> None:
    session = _session(clock)
    assert sessions.register_session(session) is True

    assert sessions.lookup("alice") is session
    assert sessions.authenticate("alice", session.token)
    assert not sessions.authenticate("alice", tokens.generate())
    assert not sessions.authenticate("bob", session.token)


def test_live_session_is_not_overwritten(sessions: SessionTable, clock: FakeClock) -> None:
    first = _session(clock)
    second = _session(clock)

    assert sessions.register_session(first)
    assert sessions.register_session(second) is False
    assert sessions.authenticate("alice", first.token)
    assert not sessions.authenticate("alice", second.token)


def test_expired_session_is_replaced_on_register(sessions: SessionTable, clock: FakeClock) -> None:
    first = _session(clock)
    sessions.register_session(first)
    clock.advance(timedelta(hours=6))

    second = _session(clock)
    assert sessions.register_session(second) is True
    assert sessions.authenticate("alice", second.token)
    assert not sessions.authenticate("alice", first.token)


def test_expired_session_never_authenticates(sessions: SessionTable, clock: FakeClock) -> None:
    session = _session(clock)
    sessions.register_session(session)

    clock.advance(timedelta(hours=5, minutes=59))
    assert sessions.authenticate("alice", session.token)

    # Expiry is inclusive: now >= expires_at is expired.
    clock.advance(timedelta(minutes=1))
    assert not sessions.authenticate("alice", session.token)
    assert sessions.lookup("alice") is None
    assert len(sessions) == 0


def test_session_with_past_expiry_fails(sessions: SessionTable, clock: FakeClock) -> None:
    now = clock()
    stale = AccountSession(
        account=ALICE,
        token=tokens.generate(),
        started_at=now - timedelta(hours=7),
        expires_at=now - timedelta(hours=1),
    )
    assert sessions.register_session(stale) is True
    assert not sessions.authenticate("alice", stale.token)
    assert sessions.get_session("alice", stale.token) is None


def test_supersede_replaces_live_session(sessions: SessionTable, clock: FakeClock) -> None:
    first = _session(clock)
    second = _session(clock)
    assert sessions.supersede(first) is None
    assert sessions.supersede(second) is first

    assert sessions.authenticate("alice", second.token)
    assert not sessions.authenticate("alice", first.token)


def test_token_reuse_across_accounts_is_rejected(sessions: SessionTable, clock: FakeClock) -> None:
    session = _session(clock)
    sessions.register_session(session)
    clash = AccountSession(
        account=BOB,
        token=session.token,
        started_at=session.started_at,
        expires_at=session.expires_at,
    )
    with pytest.raises(ValueError):
        sessions.register_session(clash)
    assert sessions.lookup("bob") is None


def test_get_session_exposes_account(sessions: SessionTable, clock: FakeClock) -> None:
    session = _session(clock, account=BOB)
    sessions.register_session(session)

    found = sessions.get_session("bob", session.token)
    assert found is not None
    assert found.account.is_admin


def test_prune_expired(sessions: SessionTable, clock: FakeClock) -> None:
    sessions.register_session(_session(clock, ALICE, lifetime=timedelta(minutes=5)))
    sessions.register_session(_session(clock, BOB, lifetime=timedelta(hours=1)))

    clock.advance(timedelta(minutes=10))
    assert sessions.prune_expired() == 1
    assert sessions.lookup("alice") is None
    assert sessions.lookup("bob") is not None
    assert sessions.prune_expired() == 0


def test_concurrent_registration_admits_one_session(sessions: SessionTable, clock: FakeClock) -> None:
    workers = 8
    barrier = threading.Barrier(workers)
    candidates = [_session(clock) for _ in range(workers)]

    def attempt(session: AccountSession) -> bool:
        barrier.wait()
        return sessions.register_session(session)

    with ThreadPoolExecutor(max_workers=workers) as executor:
        results = list(executor.map(attempt, candidates))

    assert results.count(True) == 1
    winner = candidates[results.index(True)]
    assert sessions.lookup("alice") is winner
    assert len(sessions) == 1
