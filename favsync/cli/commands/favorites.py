"""Favorites commands for the favsync CLI."""

import json
import logging
from typing import TYPE_CHECKING

from favsync.events import EventType
from favsync.logging_config import log_flush, log_merge

if TYPE_CHECKING:
    from favsync.context import SyncContext

logger = logging.getLogger(__name__)


def _print_json(data) -> None:
    print(json.dumps(data, indent=2, default=str))


def cmd_status(args, ctx: "SyncContext"):
    """Show local favorites and queue state."""
    status = ctx.engine.get_status()
    status["backend_url"] = ctx.config.backend_url

    if args.json:
        _print_json(status)
        return

    print(f"User:       {status['user_id'] or 'anonymous'}")
    print(f"Backend:    {status['backend_url'] or 'not configured (local only)'}")
    print(
        f"Favorites:  {status['total_favorites']} "
        f"({status['synced']} synced, {status['pending_sync']} pending, {status['failed']} failed)"
    )
    print(f"Queue:      {status['queue_size']} pending operations")
    for item in status["queue_items"]:
        waiting = "" if item["has_remote_message_id"] else " (waiting for message sync)"
        print(f"  - {item['type']:6} {item['local_id']} retries={item['retry_count']}{waiting}")


def cmd_list(args, ctx: "SyncContext"):
    """List favorites, newest first."""
    favorites = ctx.engine.list()
    if args.limit:
        favorites = favorites[: args.limit]

    if args.json:
        _print_json([f.to_dict() for f in favorites])
        return

    if not favorites:
        print("No favorites yet.")
        return
    for fav in favorites:
        preview = fav.content.replace("\n", " ")
        if len(preview) > 60:
            preview = preview[:57] + "..."
        print(f"[{fav.sync_status.value:7}] {fav.role.value:9} {preview}")
        print(f"           {fav.local_id}  message={fav.message_id}  at={fav.favorited_at}")


def cmd_add(args, ctx: "SyncContext"):
    """Favorite a message locally."""
    favorite = ctx.engine.add(
        args.message_id,
        args.content,
        args.role,
        args.chat_id or "",
        remote_message_id=args.remote_message_id,
        mode=args.mode,
        chat_title=args.title,
    )
    if args.json:
        _print_json(favorite.to_dict())
    else:
        print(f"✓ Favorited {args.message_id} ({favorite.local_id}, {favorite.sync_status.value})")


def cmd_remove(args, ctx: "SyncContext"):
    """Unfavorite a message locally."""
    removed = ctx.engine.remove(args.message_id)
    if args.json:
        _print_json({"removed": removed, "message_id": args.message_id})
    elif removed:
        print(f"✓ Removed favorite for {args.message_id}")
    else:
        print(f"✗ No favorite found for {args.message_id}")


async def cmd_push(args, ctx: "SyncContext"):
    """Deliver queued changes now, retrying failed ones."""
    if ctx.client is None:
        print("✗ Backend not configured")
        print("  Set FAVSYNC_BACKEND_URL or add backend_url to credentials.json")
        return

    result = await ctx.engine.force_sync()
    log_flush(ctx.engine.user_id, result)

    if args.json:
        _print_json(
            {
                "pushed": result.pushed,
                "removed": result.removed,
                "not_ready": result.not_ready,
                "deferred": result.deferred,
                "failed": result.failed,
                "abandoned": result.abandoned,
                "errors": result.errors,
                "success": result.success,
            }
        )
        return

    print(f"✓ Pushed {result.pushed} favorites, removed {result.removed}")
    if result.not_ready:
        print(f"  {result.not_ready} waiting for their messages to sync")
    if result.errors:
        print(f"⚠️  {len(result.errors)} errors:")
        for error in result.errors[:5]:
            print(f"  - {error}")


async def cmd_pull(args, ctx: "SyncContext"):
    """Fetch remote favorites and merge them into local state."""
    if ctx.client is None:
        print("✗ Backend not configured")
        return

    merged = []
    unsubscribe = ctx.bus.subscribe(merged.append, [EventType.REMOTE_MERGED])
    try:
        ok = await ctx.engine.refresh_from_remote()
    finally:
        unsubscribe()

    counts = {"added": 0, "updated": 0, "skipped": 0}
    if merged:
        event = merged[-1]
        counts = {"added": event.added, "updated": event.updated, "skipped": event.skipped}
        log_merge(ctx.engine.user_id, **counts)

    if args.json:
        _print_json({"success": ok, **counts, "total": len(ctx.engine.list())})
    elif ok:
        print(
            f"✓ Pulled remote favorites: {counts['added']} added, "
            f"{counts['updated']} updated, {counts['skipped']} skipped"
        )
    else:
        print("✗ Could not fetch remote favorites (local data unchanged)")


def cmd_clear(args, ctx: "SyncContext"):
    """Delete every local favorite and queued change for the active user."""
    if not args.yes:
        print("✗ Refusing to clear without --yes")
        return
    count = len(ctx.engine.list())
    ctx.engine.clear_all()
    print(f"✓ Cleared {count} favorites")
