"""Command-line interface for TodoList authentication maintenance."""

import argparse
import asyncio
import logging
import sys
from datetime import datetime, timedelta, timezone

from todolist_auth import __version__
from todolist_auth.auth.refresh_store import RefreshTokenStore
from todolist_auth.config import get_settings
from todolist_auth.database.connection import close_db, create_tables, get_db, init_db

logger = logging.getLogger(__name__)


async def _create_tables(args: argparse.Namespace) -> int:
    await create_tables()
    print("Tables created.")
    return 0


async def _revoke_user(args: argparse.Namespace) -> int:
    async with get_db() as session:
        count = await RefreshTokenStore(session).revoke_all_for_user(args.user_id)
    print(f"Revoked {count} refresh token(s) for user {args.user_id}.")
    return 0


async def _purge_tokens(args: argparse.Namespace) -> int:
    cutoff = datetime.now(timezone.utc) - timedelta(days=args.days)
    async with get_db() as session:
        count = await RefreshTokenStore(session).purge_expired(cutoff)
    print(f"Deleted {count} refresh token(s) expired before {cutoff.isoformat()}.")
    return 0


def _non_negative_int(value: str) -> int:
    days = int(value)
    if days < 0:
        raise argparse.ArgumentTypeError(f"must be 0 or greater, got {days}")
    return days


COMMANDS = {
    "create-tables": _create_tables,
    "revoke-user": _revoke_user,
    "purge-tokens": _purge_tokens,
}


async def _run(args: argparse.Namespace) -> int:
    await init_db(args.database_url)
    try:
        return await COMMANDS[args.command](args)
    finally:
        await close_db()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="todolist-auth",
        description="TodoList authentication - session token maintenance",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}",
    )
    parser.add_argument(
        "--database-url",
        default=None,
        help="Override DATABASE_URL",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    subparsers.add_parser("create-tables", help="Create the users and refresh_tokens tables")

    revoke_parser = subparsers.add_parser(
        "revoke-user", help="Revoke every refresh token of a user (sign out everywhere)"
    )
    revoke_parser.add_argument("user_id", help="Local user id")

    purge_parser = subparsers.add_parser(
        "purge-tokens", help="Delete refresh tokens that expired a while ago"
    )
    purge_parser.add_argument(
        "--days",
        type=_non_negative_int,
        default=0,
        help="Only delete tokens expired more than this many days ago",
    )

    return parser


def main(argv: list[str] | None = None) -> int:
    """Main entry point for the CLI."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return 0

    logging.basicConfig(
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        level=getattr(logging, get_settings().log_level.upper(), logging.INFO),
    )

    return asyncio.run(_run(args))


if __name__ == "__main__":
    sys.exit(main())
