"""Session token generation and parsing."""

from __future__ import annotations

import re
import secrets
import uuid

from .errors import TokenFormatError

TOKEN_BYTES = 16

_CANONICAL_TOKEN = re.compile(
    r"^[0-9a-fA-F]{8}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{12}$"
)


class Token:
    """An opaque 128-bit session token.

    Tokens render as a lowercase hyphenated hex string (the familiar UUID
    layout) but every one of the 128 bits is random; no version or variant
    bits are reserved.
    """

    __slots__ = ("_value",)

    def __init__(self, value: uuid.UUID) -> None:
        self._value = value

    @property
    def bytes(self) -> bytes:
        return self._value.bytes

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Token):
            return NotImplemented
        return secrets.compare_digest(self._value.bytes, other._value.bytes)

    def __hash__(self) -> int:
        return hash(self._value)

    def __str__(self) -> str:
        return str(self._value)

    def __repr__(self) -> str:
        return "Token(<redacted>)"


def generate() -> Token:
    """Return a new token drawn from the operating system's CSPRNG."""

    return Token(uuid.UUID(bytes=secrets.token_bytes(TOKEN_BYTES)))


def parse(text: str) -> Token:
    """Parse the canonical textual form produced by ``str(token)``."""

    if not isinstance(text, str):
        raise TokenFormatError("Session token must be a string")
    candidate = text.strip()
    if not _CANONICAL_TOKEN.match(candidate):
        raise TokenFormatError("Session token is not in canonical hyphenated hex form")
    return Token(uuid.UUID(candidate))


__all__ = ["TOKEN_BYTES", "Token", "generate", "parse"]
