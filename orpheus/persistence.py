"""Periodic flushing of the account store and session housekeeping."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from typing import Optional

from .accounts import AccountStore
from .errors import AccountStoreWriteError
from .sessions import SessionTable

logger = logging.getLogger("orpheus.persistence")

DEFAULT_SAVE_INTERVAL = 1.0


class BackgroundSaver:
    """Flush dirty account state to disk on a fixed interval.

    Each tick runs in a worker thread so file I/O never blocks the event
    loop. A failed write leaves the store dirty and is retried on the next
    tick; a skipped tick has no consequence beyond a later write.
    """

    def __init__(
        self,
        store: AccountStore,
        *,
        sessions: Optional[SessionTable] = None,
        interval: float = DEFAULT_SAVE_INTERVAL,
    ) -> None:
        if interval <= 0:
            raise ValueError("Save interval must be positive")
        self._store = store
        self._sessions = sessions
        self._interval = interval
        self._task: Optional[asyncio.Task[None]] = None
        self._failures = 0

    @property
    def sessions(self) -> Optional[SessionTable]:
        return self._sessions

    @property
    def interval(self) -> float:
        return self._interval

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def consecutive_failures(self) -> int:
        return self._failures

    def tick(self) -> bool:
        """Run one maintenance pass. Returns ``True`` if the store was written."""

        if self._sessions is not None:
            self._sessions.prune_expired()

        try:
            written = self._store.flush()
        except AccountStoreWriteError:
            self._failures += 1
            logger.exception(
                "Saving accounts failed (%d consecutive failure(s)); will retry in %.1fs",
                self._failures,
                self._interval,
            )
            return False

        if self._failures:
            logger.info("Account store saved after %d failed attempt(s)", self._failures)
            self._failures = 0
        return written

    def flush(self) -> None:
        """Unconditionally write the store. Used once more at shutdown."""

        try:
            self._store.save()
        except AccountStoreWriteError:
            logger.exception("Final account save failed; unsaved accounts may be lost")
            raise
        logger.info("Account store flushed to %s", self._store.path)

    async def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._run(), name="orpheus-account-saver")
        logger.debug("Background saver started (interval=%.1fs)", self._interval)

    async def stop(self) -> None:
        task, self._task = self._task, None
        try:
            if task is not None:
                task.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await task
        finally:
            await asyncio.to_thread(self.flush)

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self._interval)
            try:
                await asyncio.to_thread(self.tick)
            except Exception:
                logger.exception("Unexpected error in background account saver; continuing")


__all__ = ["DEFAULT_SAVE_INTERVAL", "BackgroundSaver"]
