#!/usr/bin/env python3
"""
IT user console -- database and environment management commands.

Usage:
  python manage.py init-db
  python manage.py drop-tables --yes
  python manage.py clear-db --yes
  python manage.py check-db
  python manage.py check-email
  python manage.py serve --host 0.0.0.0 --port 8000 --reload

All settings come from the environment / .env via core.config (DATABASE_URL,
SMTP_HOST, ...). Destructive commands refuse to run without --yes.
"""

import argparse
import sys

from auth.store import UserStore
from core.config import Settings, get_settings
from core.mailer import Mailer


def _open_store(settings: Settings) -> UserStore:
    return UserStore(settings.database_url, pool_size=settings.db_pool_size, pool_timeout=settings.db_pool_timeout)


def cmd_init_db(args: argparse.Namespace, settings: Settings) -> int:
    store = _open_store(settings)
    try:
        if not store.ping():
            print("  [!] Could not connect to the database.")
            return 1
        store.create_tables()
        print("  Users table and indexes are in place.")
        return 0
    finally:
        store.close()


def cmd_drop_tables(args: argparse.Namespace, settings: Settings) -> int:
    if not args.yes:
        print("  [!] This permanently drops every table. Re-run with --yes to confirm.")
        return 1
    store = _open_store(settings)
    try:
        store.drop_tables()
        print("  All tables dropped.")
        return 0
    finally:
        store.close()


def cmd_clear_db(args: argparse.Namespace, settings: Settings) -> int:
    if not args.yes:
        print("  [!] This deletes every user account. Re-run with --yes to confirm.")
        return 1
    store = _open_store(settings)
    try:
        removed = store.delete_all()
        print(f"  Deleted {removed} user(s). Schema kept.")
        return 0
    finally:
        store.close()


def cmd_check_db(args: argparse.Namespace, settings: Settings) -> int:
    """Report connectivity and the user counts by status."""
    store = _open_store(settings)
    try:
        if not store.ping():
            print("  [!] Database connection failed.")
            return 1
        counts = store.status_counts()
        print("  Database connection OK.")
        print(
            f"  Users: {counts['total']} total, {counts['active']} active, "
            f"{counts['unverified']} unverified, {counts['blocked']} blocked"
        )
        return 0
    finally:
        store.close()


def cmd_check_email(args: argparse.Namespace, settings: Settings) -> int:
    mailer = Mailer(settings)
    if not mailer.enabled:
        print("  [!] SMTP is not configured (set SMTP_HOST and EMAIL_FROM or SMTP_USERNAME).")
        return 1
    if not mailer.check_connection():
        print(f"  [!] Could not authenticate against {settings.smtp_host}:{settings.smtp_port}.")
        return 1
    print(f"  SMTP login to {settings.smtp_host}:{settings.smtp_port} succeeded.")
    return 0


def cmd_serve(args: argparse.Namespace, settings: Settings) -> int:
    import uvicorn

    uvicorn.run("asgi:app", host=args.host, port=args.port, reload=args.reload)
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="manage.py",
        description="Management commands for the IT user console API.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python manage.py init-db
  python manage.py check-db
  python manage.py clear-db --yes
  DATABASE_URL=postgresql://itums:secret@db/itums python manage.py init-db
        """,
    )
    sub = parser.add_subparsers(dest="command", metavar="COMMAND")

    sub.add_parser("init-db", help="Create the users table and indexes (idempotent)").set_defaults(func=cmd_init_db)

    drop = sub.add_parser("drop-tables", help="Drop every table (destroys all data)")
    drop.add_argument("--yes", action="store_true", help="Confirm the destructive action")
    drop.set_defaults(func=cmd_drop_tables)

    clear = sub.add_parser("clear-db", help="Delete every user account, keeping the schema")
    clear.add_argument("--yes", action="store_true", help="Confirm the destructive action")
    clear.set_defaults(func=cmd_clear_db)

    sub.add_parser("check-db", help="Check connectivity and print user counts").set_defaults(func=cmd_check_db)
    sub.add_parser("check-email", help="Check the SMTP configuration by logging in").set_defaults(
        func=cmd_check_email
    )

    serve = sub.add_parser("serve", help="Run the API with uvicorn")
    serve.add_argument("--host", default="127.0.0.1", help="Bind address (default: 127.0.0.1)")
    serve.add_argument("--port", type=int, default=8000, help="Bind port (default: 8000)")
    serve.add_argument("--reload", action="store_true", help="Restart on code changes (development only)")
    serve.set_defaults(func=cmd_serve)

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    if not getattr(args, "func", None):
        parser.print_help()
        return 1
    return args.func(args, get_settings())


if __name__ == "__main__":
    sys.exit(main())
