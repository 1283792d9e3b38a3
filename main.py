#!/usr/bin/env python3
"""
Newsdesk -- command-line administration.

Usage:
  python main.py seed-admin --email admin@example.com --password 's3cret-pass'
  python main.py seed-admin --email admin@example.com --password 's3cret-pass' --name "Night Editor"
  python main.py publish-due

Environment variables:
  DATABASE_URL  SQLAlchemy URL of the store (default sqlite:///newsdesk.db)
  SECRET_KEY    Required unless DEBUG=true (see core/config.py)
"""

import argparse
import sys

from core.config import get_settings
from core.errors import ConfigurationError, StorageFailure

# auth.tokens and auth.passwords read the settings at import time, so the
# store and service modules are imported inside each command, after
# get_settings() has had its chance to raise ConfigurationError.


def _seed_admin(args: argparse.Namespace) -> int:
    from auth.service import AuthService
    from auth.store import AccountStore

    settings = get_settings()
    store = AccountStore(settings.database_url, settings.storage_timeout_seconds)
    try:
        service = AuthService.from_settings(store, settings)
        account_id = service.seed_admin(args.email, args.password, args.name)
    finally:
        store.close()
    if account_id is None:
        print(f"  An account for {args.email} already exists. Nothing to do.")
        return 0
    print(f"  Admin account created (id {account_id}).")
    return 0


def _publish_due(args: argparse.Namespace) -> int:
    from content.store import ContentStore

    settings = get_settings()
    store = ContentStore(settings.database_url, settings.storage_timeout_seconds)
    try:
        published = store.publish_due()
    finally:
        store.close()
    print(f"  {published} scheduled post(s) published.")
    return 0


def main() -> None:
    parser = argparse.ArgumentParser(
        prog="newsdesk",
        description="Newsdesk administration commands.",
        epilog=__doc__,
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    sub = parser.add_subparsers(dest="command", required=True)

    seed = sub.add_parser("seed-admin", help="Create the first admin account if it does not exist.")
    seed.add_argument("--email", required=True, help="Login email of the admin account.")
    seed.add_argument("--password", required=True, help="Initial password (at least 6 characters).")
    seed.add_argument("--name", default=None, help="Display name (default: ADMIN_NAME or 'Default Admin').")
    seed.set_defaults(func=_seed_admin)

    publish = sub.add_parser("publish-due", help="Publish every scheduled post whose time has come.")
    publish.set_defaults(func=_publish_due)

    args = parser.parse_args()
    if getattr(args, "password", None) is not None and len(args.password) < 6:
        parser.error("--password must be at least 6 characters")

    try:
        settings = get_settings()
        if getattr(args, "name", None) is None and args.command == "seed-admin":
            args.name = settings.admin_name
        sys.exit(args.func(args))
    except ConfigurationError as exc:
        print(f"  [!] Configuration error: {exc}", file=sys.stderr)
        sys.exit(2)
    except StorageFailure as exc:
        print(f"  [!] {exc.message}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
