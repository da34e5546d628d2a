"""Command-line interface for the Orpheus server."""

from __future__ import annotations

import argparse
import logging
import os
import sys
from getpass import getpass
from typing import Sequence

from orpheus.accounts import AccountStore
from orpheus.application import build_services
from orpheus.config import ServerConfig, load_config, resolve_config_path
from orpheus.errors import AccountStoreWriteError, CorruptAccountFileError
from orpheus.models import RegistrationResult
from orpheus.passwords import PasswordHasher

logger = logging.getLogger("orpheus.main")

_DEFAULT_SERVICE_URL = "http://localhost:31078"


def _parse_args(argv: Sequence[str] | None) -> argparse.Namespace:
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument(
        "--config",
        default=None,
        help="Path to the YAML configuration file (default: ORPHEUS_CONFIG or config/orpheus.yaml)",
    )
    common.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging verbosity (default: INFO)",
    )

    parser = argparse.ArgumentParser(description="Orpheus music server")
    subparsers = parser.add_subparsers(dest="command")

    parser.set_defaults(command="serve")

    serve_parser = subparsers.add_parser("serve", parents=[common], help="Start the HTTP server")
    serve_parser.add_argument("--host", default=None, help="Bind address (overrides the config file)")
    serve_parser.add_argument("--port", type=int, default=None, help="Listen port (overrides the config file)")

    subparsers.add_parser("init", parents=[common], help="Create or validate the account file")
    subparsers.add_parser("list-accounts", parents=[common], help="List registered accounts")

    create_parser = subparsers.add_parser("create-account", parents=[common], help="Register a new account")
    create_parser.add_argument("username", help="Unique username for the account")
    create_parser.add_argument("--admin", action="store_true", help="Allow the account to create other accounts")

    login_parser = subparsers.add_parser(
        "login", parents=[common], help="Log into a running server and print the session token"
    )
    login_parser.add_argument("username", help="Account username")
    login_parser.add_argument(
        "--service-url",
        default=None,
        help=f"Base URL of a running server (default: {_DEFAULT_SERVICE_URL})",
    )

    args_list = list(argv) if argv is not None else sys.argv[1:]
    known_commands = {"serve", "init", "list-accounts", "create-account", "login"}

    if not args_list:
        args_list = ["serve"]
    else:
        first = args_list[0]
        if first in ("-h", "--help"):
            return parser.parse_args(args_list)
        if first not in known_commands:
            args_list = ["serve", *args_list]

    return parser.parse_args(args_list)


def _load_config(config_path: str | None) -> ServerConfig:
    path = resolve_config_path(config_path or os.getenv("ORPHEUS_CONFIG"))
    try:
        return load_config(path)
    except ValueError as exc:
        raise SystemExit(f"Invalid configuration in {path}: {exc}") from exc


def _open_store(config: ServerConfig) -> AccountStore:
    try:
        return AccountStore.open(
            config.account_data_path,
            hasher=PasswordHasher(rounds=config.password_rounds),
        )
    except CorruptAccountFileError as exc:
        raise SystemExit(f"Refusing to start: {exc}") from exc


def _serve(config: ServerConfig, *, host: str | None, port: int | None, log_level: str) -> None:
    import uvicorn

    from orpheus.api import create_app

    try:
        services = build_services(config)
    except CorruptAccountFileError as exc:
        raise SystemExit(f"Refusing to start: {exc}") from exc

    bind_host = host if host is not None else config.host
    bind_port = port if port is not None else config.port
    logger.info("Starting Orpheus on http://%s:%s", bind_host, bind_port)
    logger.info("Accounts are stored in %s", config.account_data_path)

    app = create_app(auth=services.auth, saver=services.saver)
    try:
        uvicorn.run(app, host=bind_host, port=bind_port, log_level=log_level.lower())
    finally:
        services.saver.flush()


def _initialise(config: ServerConfig) -> None:
    store = _open_store(config)
    print(f"Account file ready at {store.path} ({len(store)} account(s)).")


def _list_accounts(config: ServerConfig) -> None:
    store = _open_store(config)
    usernames = store.usernames()
    if not usernames:
        print("No accounts are currently registered.")
        return

    print(f"{len(usernames)} account(s) found:")
    print(f"{'Username':<32}  Admin")
    print("-" * 40)
    for username in usernames:
        record = store.get(username)
        admin = "yes" if record is not None and record.is_admin else "no"
        print(f"{username:<32}  {admin}")


def _create_account(config: ServerConfig, username: str, *, is_admin: bool) -> int:
    password = _prompt_for_password()
    if password is None:
        print("Aborted creating account.", file=sys.stderr)
        return 1

    with _open_store(config) as store:
        try:
            outcome = store.register(username, password, is_admin)
        except ValueError as exc:
            print(f"Failed to create account: {exc}", file=sys.stderr)
            return 1

    if outcome is RegistrationResult.ALREADY_EXISTS:
        print(f"Account '{username}' already exists.", file=sys.stderr)
        return 1

    role = "administrator" if is_admin else "user"
    print(f"Created {role} account '{username.strip()}'.")
    return 0


def _prompt_for_password() -> str | None:
    for _ in range(3):
        password = getpass("Password: ")
        if not password:
            print("Password must not be empty. Please try again.")
            continue
        confirmation = getpass("Confirm password: ")
        if password != confirmation:
            print("Passwords do not match. Please try again.")
            continue
        return password
    return None


def _login(username: str, *, service_url: str | None) -> int:
    import httpx

    base_url = (service_url or os.getenv("ORPHEUS_SERVICE_URL") or _DEFAULT_SERVICE_URL).rstrip("/")
    password = os.getenv("ORPHEUS_CLI_PASSWORD") or getpass("Password: ")

    try:
        response = httpx.post(
            f"{base_url}/login",
            headers={"username": username, "password": password},
            timeout=10.0,
        )
    except httpx.HTTPError as exc:
        print(f"Failed to contact Orpheus server: {exc}", file=sys.stderr)
        return 1

    if response.status_code == 401:
        print("Invalid password.", file=sys.stderr)
        return 1
    if response.status_code == 404:
        print(f"No account named '{username}'.", file=sys.stderr)
        return 1
    if response.status_code != 200:
        print(f"Server responded with {response.status_code}: {response.text.strip()}", file=sys.stderr)
        return 1

    print(response.text.strip())
    return 0


def main(argv: Sequence[str] | None = None) -> int:
    """Entry point for CLI usage."""

    args = _parse_args(argv)
    logging.basicConfig(level=getattr(logging, args.log_level), format="%(asctime)s [%(levelname)s] %(message)s")

    if args.command == "login":
        return _login(args.username, service_url=args.service_url)

    config = _load_config(args.config)

    if args.command == "serve":
        try:
            _serve(config, host=args.host, port=args.port, log_level=args.log_level)
        except AccountStoreWriteError as exc:
            raise SystemExit(f"Unsaved accounts could not be written: {exc}") from exc
    elif args.command == "init":
        _initialise(config)
    elif args.command == "list-accounts":
        _list_accounts(config)
    elif args.command == "create-account":
        return _create_account(config, args.username, is_admin=args.admin)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
