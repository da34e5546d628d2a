"""Exception hierarchy shared by the account and session layers."""

from __future__ import annotations


class DataIntegrityError(RuntimeError):
    """Raised when persisted account data can no longer be trusted."""


class CorruptAccountFileError(DataIntegrityError):
    """The account file exists but could not be decoded."""

    def __init__(self, path: object, reason: str) -> None:
        super().__init__(f"Account file {path} is corrupted: {reason}")
        self.path = path
        self.reason = reason


class CorruptHashError(DataIntegrityError):
    """A stored password hash could not be parsed."""


class AccountStoreWriteError(OSError):
    """Writing the account snapshot to disk failed."""


class TokenFormatError(ValueError):
    """A session token was not in canonical hyphenated hex form."""


__all__ = [
    "AccountStoreWriteError",
    "CorruptAccountFileError",
    "CorruptHashError",
    "DataIntegrityError",
    "TokenFormatError",
]
