"""Disk-backed account storage.

Accounts live in memory behind a single lock and are written to a YAML file
as a full snapshot. Lock discipline: ``_lock`` guards ``_accounts``,
``_dirty`` and ``_generation`` and is never held while hashing passwords or
touching the filesystem. ``_save_lock`` serialises writers so two snapshots
never race on the temporary file.
"""

from __future__ import annotations

import logging
import os
import tempfile
import threading
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import yaml

from .errors import AccountStoreWriteError, CorruptAccountFileError
from .models import AccountRecord, LoginResult, LoginStatus, RegistrationResult
from .passwords import Password, PasswordHasher

logger = logging.getLogger("orpheus.accounts")

FORMAT_VERSION = 1
MAX_USERNAME_LENGTH = 64

_FileSignature = Tuple[int, int, int]


def _ensure_directory(path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)


def _file_signature(path: Path) -> Optional[_FileSignature]:
    try:
        stat = path.stat()
    except FileNotFoundError:
        return None
    return (stat.st_ino, stat.st_mtime_ns, stat.st_size)


def normalise_username(username: str) -> str:
    value = (username or "").strip()
    if not value:
        raise ValueError("Username must not be empty")
    if len(value) > MAX_USERNAME_LENGTH:
        raise ValueError(f"Username must be {MAX_USERNAME_LENGTH} characters or fewer")
    if any(char.isspace() for char in value):
        raise ValueError("Username must not contain whitespace")
    if not all(33 <= ord(char) <= 126 for char in value):
        raise ValueError("Username must contain only printable ASCII characters")
    return value


def encode_accounts(accounts: Dict[str, AccountRecord]) -> str:
    """Serialise *accounts* to the on-disk YAML document."""

    payload = {
        "version": FORMAT_VERSION,
        "accounts": {
            name: {"password_hash": record.password_hash, "is_admin": record.is_admin}
            for name, record in accounts.items()
        },
    }
    return yaml.safe_dump(payload, sort_keys=True, default_flow_style=False)


def decode_accounts(text: str, *, path: Path) -> Dict[str, AccountRecord]:
    """Parse the on-disk YAML document, raising on anything unexpected."""

    if not text.strip():
        return {}

    try:
        raw = yaml.safe_load(text)
    except yaml.YAMLError as exc:
        raise CorruptAccountFileError(path, f"invalid YAML ({exc})") from exc

    if not isinstance(raw, dict):
        raise CorruptAccountFileError(path, "top level is not a mapping")

    version = raw.get("version")
    if not isinstance(version, int) or isinstance(version, bool) or version < 1:
        raise CorruptAccountFileError(path, "missing or invalid format version")
    if version > FORMAT_VERSION:
        logger.warning(
            "Account file %s uses format version %s (newer than %s); unknown fields are ignored",
            path,
            version,
            FORMAT_VERSION,
        )

    entries = raw.get("accounts") or {}
    if not isinstance(entries, dict):
        raise CorruptAccountFileError(path, "'accounts' is not a mapping")

    accounts: Dict[str, AccountRecord] = {}
    for name, entry in entries.items():
        if not isinstance(name, str) or not name:
            raise CorruptAccountFileError(path, f"invalid username key {name!r}")
        if not isinstance(entry, dict):
            raise CorruptAccountFileError(path, f"entry for {name!r} is not a mapping")
        password_hash = entry.get("password_hash")
        if not isinstance(password_hash, str) or not password_hash:
            raise CorruptAccountFileError(path, f"entry for {name!r} has no password hash")
        is_admin = entry.get("is_admin", False)
        if not isinstance(is_admin, bool):
            raise CorruptAccountFileError(path, f"entry for {name!r} has a non-boolean is_admin")
        accounts[name] = AccountRecord(username=name, password_hash=password_hash, is_admin=is_admin)
    return accounts


class AccountStore:
    """Thread-safe in-memory account map persisted to a single file."""

    def __init__(
        self,
        path: Path,
        accounts: Optional[Dict[str, AccountRecord]] = None,
        *,
        hasher: Optional[PasswordHasher] = None,
    ) -> None:
        self._path = Path(path)
        self._accounts: Dict[str, AccountRecord] = dict(accounts or {})
        self._hasher = hasher or PasswordHasher()
        self._lock = threading.Lock()
        self._save_lock = threading.Lock()
        self._dirty = False
        self._generation = 0
        self._signature = _file_signature(self._path)
        self._decoy_hash: Optional[str] = None

    @classmethod
    def open(cls, path: Path, *, hasher: Optional[PasswordHasher] = None) -> "AccountStore":
        """Load the store at *path*, creating an empty file if none exists.

        A file that exists but cannot be decoded raises
        :class:`CorruptAccountFileError`; starting with an empty store would
        silently hide the loss of every account.
        """

        path = Path(path)
        _ensure_directory(path)

        signature = _file_signature(path)
        if signature is not None:
            try:
                text = path.read_text(encoding="utf-8")
            except UnicodeDecodeError as exc:
                raise CorruptAccountFileError(path, "file is not valid UTF-8") from exc
            accounts = decode_accounts(text, path=path)
            logger.info("Loaded %d account(s) from %s", len(accounts), path)
            store = cls(path, accounts, hasher=hasher)
            store._signature = signature
            return store

        store = cls(path, hasher=hasher)
        # Write the empty snapshot now so permission problems show up at startup.
        store.save()
        logger.info("Created empty account file at %s", path)
        return store

    @property
    def path(self) -> Path:
        return self._path

    @property
    def hasher(self) -> PasswordHasher:
        return self._hasher

    # ------------------------------------------------------------------
    # Registration and lookup
    # ------------------------------------------------------------------
    def register(self, username: str, password: Password, is_admin: bool = False) -> RegistrationResult:
        name = normalise_username(username)

        with self._lock:
            if name in self._accounts:
                logger.info("Refusing to register existing account %s", name)
                return RegistrationResult.ALREADY_EXISTS

        password_hash = self._hasher.hash(password)
        record = AccountRecord(username=name, password_hash=password_hash, is_admin=bool(is_admin))
        return self.register_record(record)

    def register_record(self, record: AccountRecord) -> RegistrationResult:
        """Insert an already hashed record unless the username is taken."""

        with self._lock:
            if record.username in self._accounts:
                logger.info("Refusing to register existing account %s", record.username)
                return RegistrationResult.ALREADY_EXISTS
            self._accounts[record.username] = record
            self._mark_dirty_locked()

        logger.info("Registered account %s (admin=%s)", record.username, record.is_admin)
        return RegistrationResult.CREATED

    def verify_login(self, username: str, password: Password) -> LoginResult:
        with self._lock:
            record = self._accounts.get((username or "").strip())

        if record is None:
            # Same scrypt cost as a real check so unknown names are not faster.
            self._hasher.verify(password, self._decoy())
            return LoginResult(LoginStatus.NOT_FOUND)
        if not self._hasher.verify(password, record.password_hash):
            return LoginResult(LoginStatus.INVALID_PASSWORD)
        return LoginResult(LoginStatus.SUCCESS, record)

    def get(self, username: str) -> Optional[AccountRecord]:
        with self._lock:
            return self._accounts.get(username)

    def usernames(self) -> List[str]:
        with self._lock:
            return sorted(self._accounts)

    def __contains__(self, username: object) -> bool:
        with self._lock:
            return username in self._accounts

    def __len__(self) -> int:
        with self._lock:
            return len(self._accounts)

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------
    def is_dirty(self) -> bool:
        with self._lock:
            return self._dirty

    def save(self) -> None:
        """Write a snapshot of every account to disk atomically.

        The dirty flag is only cleared when no registration slipped in while
        the snapshot was being written; otherwise the next save picks it up.

        If another process replaced the file since this store last read or
        wrote it, accounts found only on disk are merged in first so they
        are not overwritten. A file that changed and can no longer be decoded
        is left alone and :class:`AccountStoreWriteError` is raised.
        """

        with self._save_lock:
            self._merge_external_changes()
            with self._lock:
                snapshot = dict(self._accounts)
                generation = self._generation

            encoded = encode_accounts(snapshot)
            try:
                self._write_atomic(encoded)
            except OSError as exc:
                raise AccountStoreWriteError(f"Failed to save accounts to {self._path}: {exc}") from exc
            self._signature = _file_signature(self._path)

            with self._lock:
                if self._generation == generation:
                    self._dirty = False

        logger.debug("Saved %d account(s) to %s", len(snapshot), self._path)

    def flush(self) -> bool:
        """Save only if there are unsaved changes. Returns ``True`` if written."""

        if not self.is_dirty():
            return False
        self.save()
        return True

    def close(self) -> None:
        self.save()

    def __enter__(self) -> "AccountStore":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------
    def _mark_dirty_locked(self) -> None:
        self._dirty = True
        self._generation += 1

    def _decoy(self) -> str:
        if self._decoy_hash is None:
            self._decoy_hash = self._hasher.hash(os.urandom(16).hex())
        return self._decoy_hash

    def _merge_external_changes(self) -> None:
        """Pull in accounts another process wrote since our last read or write.

        Caller must hold ``_save_lock``.
        """

        if _file_signature(self._path) in (None, self._signature):
            return

        try:
            on_disk = decode_accounts(self._path.read_text(encoding="utf-8"), path=self._path)
        except (OSError, UnicodeDecodeError, CorruptAccountFileError) as exc:
            raise AccountStoreWriteError(
                f"Refusing to overwrite {self._path}: it was changed by another process and cannot be read ({exc})"
            ) from exc

        with self._lock:
            added = sorted(name for name in on_disk if name not in self._accounts)
            for name in added:
                self._accounts[name] = on_disk[name]

        if added:
            logger.warning(
                "Merged %d account(s) written to %s by another process: %s",
                len(added),
                self._path,
                ", ".join(added),
            )

    def _write_atomic(self, data: str) -> None:
        _ensure_directory(self._path)
        fd, tmp_name = tempfile.mkstemp(
            prefix=f".{self._path.name}.",
            suffix=".tmp",
            dir=str(self._path.parent),
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                handle.write(data)
                handle.flush()
                os.fsync(handle.fileno())
            os.replace(tmp_name, self._path)
        except BaseException:
            try:
                os.unlink(tmp_name)
            except FileNotFoundError:
                pass
            raise


__all__ = [
    "FORMAT_VERSION",
    "AccountStore",
    "decode_accounts",
    "encode_accounts",
    "normalise_username",
]
