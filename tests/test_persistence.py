from __future__ import annotations

import asyncio
import logging
from datetime import timedelta
from pathlib import Path
from unittest import mock

import pytest

from orpheus.accounts import AccountStore
from orpheus.errors import AccountStoreWriteError
from orpheus.passwords import PasswordHasher
from orpheus.persistence import BackgroundSaver
from orpheus.sessions import SessionTable

from .conftest import FakeClock


def test_tick_writes_only_when_dirty(store: AccountStore) -> None:
    saver = BackgroundSaver(store)
    assert saver.tick() is False

    store.register("alice", "secret")
    assert saver.tick() is True
    assert not store.is_dirty()
    assert saver.tick() is False


def test_tick_prunes_expired_sessions(store: AccountStore, sessions: SessionTable, clock: FakeClock, auth) -> None:
    auth.register_account("alice", "secret")
    auth.login("alice", "secret")
    saver = BackgroundSaver(store, sessions=sessions)
    assert len(sessions) == 1

    clock.advance(timedelta(hours=6))
    saver.tick()
    assert len(sessions) == 0


def test_failed_tick_is_logged_and_retried(store: AccountStore, caplog: pytest.LogCaptureFixture) -> None:
    saver = BackgroundSaver(store)
    store.register("alice", "secret")

    with mock.patch.object(store, "save", side_effect=AccountStoreWriteError("disk full")):
        with caplog.at_level(logging.ERROR, logger="orpheus.persistence"):
            assert saver.tick() is False

    assert saver.consecutive_failures == 1
    assert store.is_dirty()
    assert "Saving accounts failed" in caplog.text

    assert saver.tick() is True
    assert saver.consecutive_failures == 0
    assert not store.is_dirty()


def test_flush_propagates_write_errors(store: AccountStore) -> None:
    saver = BackgroundSaver(store)
    with mock.patch.object(store, "save", side_effect=AccountStoreWriteError("disk full")):
        with pytest.raises(AccountStoreWriteError):
            saver.flush()


def test_interval_must_be_positive(store: AccountStore) -> None:
    with pytest.raises(ValueError):
        BackgroundSaver(store, interval=0)


def test_background_loop_flushes_and_stop_saves_once_more(accounts_path: Path, hasher: PasswordHasher) -> None:
    store = AccountStore.open(accounts_path, hasher=hasher)
    saver = BackgroundSaver(store, interval=0.01)

    async def scenario() -> None:
        await saver.start()
        assert saver.running
        store.register("alice", "secret")
        for _ in range(200):
            if not store.is_dirty():
                break
            await asyncio.sleep(0.01)
        assert not store.is_dirty()

        store.register("bob", "secret")
        with mock.patch.object(saver, "tick", return_value=False):
            await saver.stop()
        assert not saver.running

    asyncio.run(scenario())

    reopened = AccountStore.open(accounts_path, hasher=hasher)
    assert reopened.usernames() == ["alice", "bob"]


def test_start_is_idempotent(store: AccountStore) -> None:
    saver = BackgroundSaver(store, interval=10)

    async def scenario() -> None:
        await saver.start()
        first = saver._task
        await saver.start()
        assert saver._task is first
        await saver.stop()

    asyncio.run(scenario())


def test_unexpected_tick_error_keeps_loop_alive(
    accounts_path: Path, hasher: PasswordHasher, caplog: pytest.LogCaptureFixture
) -> None:
    store = AccountStore.open(accounts_path, hasher=hasher)
    saver = BackgroundSaver(store, interval=0.01)

    async def scenario() -> None:
        with mock.patch.object(saver, "tick", side_effect=RuntimeError("boom")) as tick:
            await saver.start()
            for _ in range(200):
                if tick.call_count >= 2:
                    break
                await asyncio.sleep(0.01)
            assert tick.call_count >= 2
            assert saver.running

            store.register("alice", "secret")
            await saver.stop()

    with caplog.at_level(logging.ERROR, logger="orpheus.persistence"):
        asyncio.run(scenario())

    assert "Unexpected error in background account saver" in caplog.text
    assert AccountStore.open(accounts_path, hasher=hasher).usernames() == ["alice"]


def test_stop_flushes_even_when_task_failed(accounts_path: Path, hasher: PasswordHasher) -> None:
    store = AccountStore.open(accounts_path, hasher=hasher)
    saver = BackgroundSaver(store, interval=10)

    async def failing() -> None:
        raise RuntimeError("saver crashed")

    async def scenario() -> None:
        saver._task = asyncio.create_task(failing())
        await asyncio.sleep(0)
        store.register("alice", "secret")
        with pytest.raises(RuntimeError, match="saver crashed"):
            await saver.stop()

    asyncio.run(scenario())

    assert not store.is_dirty()
    assert AccountStore.open(accounts_path, hasher=hasher).usernames() == ["alice"]
