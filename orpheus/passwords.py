"""Password hashing for account records.

Hashes are produced with scrypt and stored as self-describing modular crypt
strings (``$scrypt$ln=16,r=8,p=1$<salt>$<key>``), so the cost parameters and
the per-password salt travel with the hash. Raising the cost later does not
invalidate existing records.
"""

from __future__ import annotations

import logging
from typing import Union

from passlib import exc as passlib_exc
from passlib.context import CryptContext

from .errors import CorruptHashError

logger = logging.getLogger("orpheus.passwords")

DEFAULT_ROUNDS = 16

Password = Union[str, bytes]


class PasswordHasher:
    """Stateless wrapper around a passlib context configured for scrypt."""

    def __init__(self, *, rounds: int = DEFAULT_ROUNDS) -> None:
        if rounds < 1:
            raise ValueError("Password hashing rounds must be at least 1")
        self._rounds = rounds
        self._context = CryptContext(
            schemes=["scrypt"],
            deprecated="auto",
            scrypt__rounds=rounds,
        )

    @property
    def rounds(self) -> int:
        return self._rounds

    def hash(self, password: Password) -> str:
        if not password:
            raise ValueError("Password must not be empty")
        try:
            return self._context.hash(password)
        except passlib_exc.PasswordSizeError as exc:
            raise ValueError("Password is too long") from exc

    def verify(self, password: Password, record: str) -> bool:
        """Return ``True`` if *password* matches the stored *record*.

        A record that cannot be parsed raises :class:`CorruptHashError` so the
        caller can tell data corruption apart from a wrong password.
        """

        if not isinstance(record, str) or not record:
            raise CorruptHashError("Stored password hash is empty")
        if not self._context.identify(record):
            raise CorruptHashError("Stored password hash uses an unknown scheme")
        try:
            return self._context.verify(password, record)
        except passlib_exc.PasswordSizeError:
            return False
        except (ValueError, TypeError) as exc:
            raise CorruptHashError(f"Stored password hash is malformed: {exc}") from exc


__all__ = ["DEFAULT_ROUNDS", "PasswordHasher"]
