"""Command line interface for the passkey authentication service."""

from __future__ import annotations

import argparse
import json
import logging
import sys

import uvicorn

from passkeyauth.config import Settings, get_settings
from passkeyauth.errors import PasskeyAuthError
from passkeyauth.server import create_app
from passkeyauth.store import CredentialStore, JsonDatabase, UserDirectory


def parse_args(argv: list[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument(
        "--store",
        help="Location of the JSON store (default: PASSKEY_STORE_PATH or passkeys.json)",
    )
    parser.add_argument(
        "--log-level",
        help="Logging level (default: PASSKEY_LOG_LEVEL or INFO)",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    serve_parser = subparsers.add_parser("serve", help="Run the HTTP service")
    serve_parser.add_argument("--host", help="Bind address (default: PASSKEY_HOST)")
    serve_parser.add_argument("--port", type=int, help="Bind port (default: PASSKEY_PORT)")

    show_parser = subparsers.add_parser("show-user", help="Print a user and its credentials")
    show_parser.add_argument("username", help="Username to look up")

    return parser.parse_args(argv)


def load_settings(namespace: argparse.Namespace) -> Settings:
    overrides = {}
    if namespace.store:
        overrides["store_path"] = namespace.store
    if namespace.log_level:
        overrides["log_level"] = namespace.log_level
    if getattr(namespace, "host", None):
        overrides["host"] = namespace.host
    if getattr(namespace, "port", None):
        overrides["port"] = namespace.port
    return get_settings().model_copy(update=overrides)


def show_user(settings: Settings, username: str) -> int:
    db = JsonDatabase(settings.store_path)
    user = UserDirectory(db).get_by_name(username)
    if user is None:
        print(f"Unknown user: {username}", file=sys.stderr)
        return 1
    credentials = CredentialStore(db).list_for_user(user.id)
    payload = {
        "user": user.to_dict(),
        "credentials": [record.to_dict() for record in credentials],
    }
    print(json.dumps(payload, indent=2))
    return 0


def serve(settings: Settings) -> int:
    uvicorn.run(create_app(settings), host=settings.host, port=settings.port)
    return 0


def main(argv: list[str] | None = None) -> int:
    namespace = parse_args(argv if argv is not None else sys.argv[1:])
    settings = load_settings(namespace)
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        if namespace.command == "serve":
            return serve(settings)
        if namespace.command == "show-user":
            return show_user(settings, namespace.username)
    except PasskeyAuthError as exc:
        print(f"Error: {exc.public_message}", file=sys.stderr)
        return 1

    raise RuntimeError("Unreachable")


if __name__ == "__main__":
    raise SystemExit(main())
