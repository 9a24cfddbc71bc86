"""
favsync CLI - Inspect and sync local-first favorites.

Usage:
    favsync status [--json]
    favsync list [--limit N] [--json]
    favsync add MESSAGE_ID --content TEXT --role ROLE [--chat-id C] [--remote-message-id R]
    favsync remove MESSAGE_ID
    favsync push [--json]
    favsync pull [--json]
    favsync clear --yes
"""

import argparse
import asyncio
import inspect
import logging
import sys

from favsync.cli.commands import (
    cmd_add,
    cmd_clear,
    cmd_list,
    cmd_pull,
    cmd_push,
    cmd_remove,
    cmd_status,
)
from favsync.config import load_config
from favsync.context import SyncContext, create_context
from favsync.logging_config import setup_favsync_logging

logger = logging.getLogger(__name__)

COMMANDS = {
    "status": cmd_status,
    "list": cmd_list,
    "add": cmd_add,
    "remove": cmd_remove,
    "push": cmd_push,
    "pull": cmd_pull,
    "clear": cmd_clear,
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="favsync",
        description="Local-first favorites with background sync",
    )
    parser.add_argument("--user", "-u", help="User ID (overrides configuration)", default=None)
    parser.add_argument("--log-level", default=None, help="Log level (default from config)")

    subparsers = parser.add_subparsers(dest="command", required=True)

    p_status = subparsers.add_parser("status", help="Show favorites and sync queue status")
    p_status.add_argument("--json", "-j", action="store_true", help="Output as JSON")

    p_list = subparsers.add_parser("list", help="List favorites, newest first")
    p_list.add_argument("--limit", "-l", type=int, default=0, help="Show at most N favorites")
    p_list.add_argument("--json", "-j", action="store_true", help="Output as JSON")

    p_add = subparsers.add_parser("add", help="Favorite a message")
    p_add.add_argument("message_id", help="Local message ID")
    p_add.add_argument("--content", "-c", required=True, help="Message text")
    p_add.add_argument("--role", "-r", required=True, choices=["user", "assistant", "system"])
    p_add.add_argument("--chat-id", dest="chat_id", default=None, help="Local chat ID")
    p_add.add_argument(
        "--remote-message-id", dest="remote_message_id", default=None, help="Remote message ID"
    )
    p_add.add_argument("--mode", default=None, help="Chat mode")
    p_add.add_argument("--title", default=None, help="Chat title")
    p_add.add_argument("--json", "-j", action="store_true", help="Output as JSON")

    p_remove = subparsers.add_parser("remove", help="Unfavorite a message")
    p_remove.add_argument("message_id", help="Local or remote message ID, or favorite ID")
    p_remove.add_argument("--json", "-j", action="store_true", help="Output as JSON")

    p_push = subparsers.add_parser("push", help="Deliver queued changes now")
    p_push.add_argument("--json", "-j", action="store_true", help="Output as JSON")

    p_pull = subparsers.add_parser("pull", help="Merge remote favorites into local state")
    p_pull.add_argument("--json", "-j", action="store_true", help="Output as JSON")

    p_clear = subparsers.add_parser("clear", help="Delete all local favorites")
    p_clear.add_argument("--yes", action="store_true", help="Confirm deletion")

    return parser


async def run_command(args, ctx: SyncContext) -> None:
    """Dispatch a parsed command against a context."""
    handler = COMMANDS[args.command]
    outcome = handler(args, ctx)
    if inspect.isawaitable(outcome):
        await outcome


async def _main_async(args) -> None:
    config = load_config()
    if args.user:
        config.user_id = args.user
    setup_favsync_logging(config.user_id, args.log_level or config.log_level)

    ctx = create_context(config)
    try:
        await run_command(args, ctx)
    finally:
        await ctx.close()


def main(argv=None):
    parser = build_parser()
    args = parser.parse_args(argv)
    try:
        asyncio.run(_main_async(args))
    except (ValueError, TypeError) as e:
        logger.error(f"Input validation error: {e}")
        print(f"✗ {e}", file=sys.stderr)
        sys.exit(1)
    except Exception as e:
        logger.error(f"Command failed: {e}", exc_info=True)
        print(f"✗ Command failed: {e}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
