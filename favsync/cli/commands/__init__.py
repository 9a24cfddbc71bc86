"""CLI command handlers."""

from favsync.cli.commands.favorites import (
    cmd_add,
    cmd_clear,
    cmd_list,
    cmd_pull,
    cmd_push,
    cmd_remove,
    cmd_status,
)

__all__ = [
    "cmd_add",
    "cmd_clear",
    "cmd_list",
    "cmd_pull",
    "cmd_push",
    "cmd_remove",
    "cmd_status",
]
