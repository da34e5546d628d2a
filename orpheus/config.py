"""Configuration loading for the Orpheus server."""
from __future__ import annotations

import os
from dataclasses import dataclass, replace
from datetime import timedelta
from pathlib import Path
from typing import Dict, Mapping, Optional

import yaml

from .passwords import DEFAULT_ROUNDS
from .persistence import DEFAULT_SAVE_INTERVAL

DEFAULT_HOST = "0.0.0.0"
DEFAULT_PORT = 31078
DEFAULT_SESSION_LIFETIME_HOURS = 6.0

_PROJECT_ROOT = Path(__file__).resolve().parent.parent


def _resolve_path(raw: str, base_path: Path | None) -> Path:
    candidate = Path(raw).expanduser()
    if candidate.is_absolute():
        return candidate.resolve(strict=False)
    if base_path is not None:
        return (base_path / candidate).resolve(strict=False)
    return candidate.resolve(strict=False)


def _positive_number(data: Mapping[str, object], key: str, default: float) -> float:
    value = data.get(key, default)
    try:
        number = float(value)  # type: ignore[arg-type]
    except (TypeError, ValueError) as exc:
        raise ValueError(f"Configuration value 'server.{key}' must be a number") from exc
    if number <= 0:
        raise ValueError(f"Configuration value 'server.{key}' must be positive")
    return number


def _integer(data: Mapping[str, object], key: str, default: int, *, minimum: int, maximum: int) -> int:
    value = data.get(key, default)
    if isinstance(value, bool):
        raise ValueError(f"Configuration value 'server.{key}' must be an integer")
    try:
        number = int(value)  # type: ignore[arg-type]
    except (TypeError, ValueError) as exc:
        raise ValueError(f"Configuration value 'server.{key}' must be an integer") from exc
    if not minimum <= number <= maximum:
        raise ValueError(f"Configuration value 'server.{key}' must be between {minimum} and {maximum}")
    return number


@dataclass(frozen=True)
class ServerConfig:
    """Resolved settings for one server process."""

    account_data_path: Path
    host: str = DEFAULT_HOST
    port: int = DEFAULT_PORT
    save_interval: float = DEFAULT_SAVE_INTERVAL
    session_lifetime: timedelta = timedelta(hours=DEFAULT_SESSION_LIFETIME_HOURS)
    password_rounds: int = DEFAULT_ROUNDS

    @staticmethod
    def from_dict(data: Dict[str, object], base_path: Path | None = None) -> "ServerConfig":
        """Create a :class:`ServerConfig` from the raw ``server`` section."""

        raw_path = data.get("account_data_path")
        if raw_path:
            account_data_path = _resolve_path(str(raw_path), base_path)
        else:
            account_data_path = (_PROJECT_ROOT / "data" / "accounts.yaml").resolve(strict=False)
        host = str(data.get("host") or DEFAULT_HOST).strip()
        if not host:
            raise ValueError("Configuration value 'server.host' must not be empty")

        return ServerConfig(
            account_data_path=account_data_path,
            host=host,
            port=_integer(data, "port", DEFAULT_PORT, minimum=1, maximum=65535),
            save_interval=_positive_number(data, "save_interval", DEFAULT_SAVE_INTERVAL),
            session_lifetime=timedelta(
                hours=_positive_number(data, "session_lifetime_hours", DEFAULT_SESSION_LIFETIME_HOURS)
            ),
            password_rounds=_integer(data, "password_rounds", DEFAULT_ROUNDS, minimum=1, maximum=31),
        )

    def with_overrides(self, environ: Mapping[str, str]) -> "ServerConfig":
        """Apply ``ORPHEUS_*`` environment overrides."""

        updated = self
        data_path = environ.get("ORPHEUS_ACCOUNT_DATA_PATH")
        if data_path:
            updated = replace(updated, account_data_path=_resolve_path(data_path, None))
        host = environ.get("ORPHEUS_HOST")
        if host and host.strip():
            updated = replace(updated, host=host.strip())
        port = environ.get("ORPHEUS_PORT")
        if port:
            updated = replace(updated, port=_integer({"port": port}, "port", DEFAULT_PORT, minimum=1, maximum=65535))
        return updated


def load_config(config_path: Path, *, environ: Optional[Mapping[str, str]] = None) -> ServerConfig:
    """Load settings from a YAML file, falling back to defaults if it is absent."""

    raw: Dict[str, object] = {}
    if config_path.exists():
        with config_path.open("r", encoding="utf-8") as handle:
            loaded = yaml.safe_load(handle) or {}
        if not isinstance(loaded, dict):
            raise ValueError(f"Configuration file {config_path} must contain a mapping")
        raw = loaded

    server = raw.get("server") or {}
    if not isinstance(server, dict):
        raise ValueError("Configuration key 'server' must be a mapping")

    config = ServerConfig.from_dict(server, base_path=config_path.parent)
    return config.with_overrides(os.environ if environ is None else environ)


def resolve_config_path(env_value: Optional[str]) -> Path:
    """Resolve the path to the configuration file."""
    if env_value:
        return Path(env_value).expanduser().resolve(strict=False)
    return (_PROJECT_ROOT / "config" / "orpheus.yaml").resolve(strict=False)


__all__ = ["DEFAULT_HOST", "DEFAULT_PORT", "ServerConfig", "load_config", "resolve_config_path"]
