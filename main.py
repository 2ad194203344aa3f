#!/usr/bin/env python3
"""
Catalog auth -- operator CLI for session maintenance.

Usage:
  python main.py cleanup
  python main.py revoke-all IDENTITY_ID

Both commands read the same settings as the API (DATABASE_URL, SECRET_KEY,
AUTH_TIMEOUT_SECONDS, ...) and operate on the same session table.

Environment variables:
  DATABASE_URL  SQLAlchemy URL of the auth database.
                Defaults to sqlite:///auth/catalog_auth.db beside this file.
"""

import argparse
import logging
import sys

from auth.cleanup import SessionJanitor
from auth.errors import AuthError
from auth.store import SessionStore
from core.config import get_settings

logger = logging.getLogger("catalogauth.cli")


def _cleanup(store: SessionStore) -> int:
    removed = SessionJanitor(store).run_once() or 0
    print(f"  Purged {removed} revoked/expired session(s).")
    return 0


def _revoke_all(store: SessionStore, identity_id: str) -> int:
    identity_id = identity_id.strip()
    if not identity_id:
        print("  [!] IDENTITY_ID must not be empty.")
        return 2
    count = store.revoke_all_sessions_for_identity(identity_id)
    logger.info("Revoked %d session(s) for user %s from the CLI", count, identity_id)
    print(f"  Revoked {count} session(s) for {identity_id}.")
    return 0


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(
        prog="catalog-auth",
        description="Session maintenance for the catalog auth service.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py cleanup
  python main.py revoke-all 0b5c1f9e-6d0e-4d6b-9d1f-3c2a7e8f4a10
  DATABASE_URL=sqlite:////var/lib/catalog/auth.db python main.py cleanup
        """,
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Log at DEBUG level",
    )
    commands = parser.add_subparsers(dest="command", metavar="COMMAND")
    commands.add_parser(
        "cleanup",
        help="Delete revoked and expired sessions",
    )
    revoke = commands.add_parser(
        "revoke-all",
        help="Revoke every active session of one identity",
    )
    revoke.add_argument("identity_id", metavar="IDENTITY_ID", help="ID of the identity to log out everywhere")
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return 0

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    settings = get_settings()
    store = SessionStore(settings.database_url, timeout=settings.auth_timeout_seconds)
    try:
        if args.command == "cleanup":
            return _cleanup(store)
        return _revoke_all(store, args.identity_id)
    except AuthError as exc:
        print(f"  [!] {exc.message}")
        return 1
    finally:
        store.close()


if __name__ == "__main__":
    sys.exit(main())
