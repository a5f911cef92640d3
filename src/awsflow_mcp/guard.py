"""Confirmation gate for mutating commands.

A command is treated as mutating when its name starts with one of
:data:`MUTATING_VERBS` (case-insensitive). The classification is purely
lexical: ``StartExportTask`` gates, ``DescribeExportTasks`` does not.
Anything that gates must be approved by the host's :data:`ConfirmationGate`
before the tool runs.
"""

import logging
from collections.abc import Awaitable, Callable

from awsflow_mcp.types import JsonValue

logger = logging.getLogger(__name__)

MUTATING_VERBS: tuple[str, ...] = (
    "create",
    "update",
    "delete",
    "put",
    "post",
    "send",
    "publish",
    "invoke",
    "start",
    "stop",
    "execute",
    "run",
    "upload",
    "download",
    "copy",
    "insert",
    "commit",
    "rollback",
    "terminate",
    "reboot",
    "modify",
    "attach",
    "detach",
    "add",
    "remove",
    "tag",
    "untag",
    "enable",
    "disable",
    "register",
    "deregister",
    "subscribe",
    "unsubscribe",
    "purge",
    "reset",
    "restore",
    "write",
    "import",
    "batchwrite",
    "set",
)

ConfirmationGate = Callable[[str, str, dict[str, JsonValue]], Awaitable[bool]]
"""Async callback ``(tool_name, command, params) -> approved``."""


def needs_confirmation(command: str) -> bool:
    """Return True when *command* names a mutating action."""
    normalized = command.strip().lower()
    return any(normalized.startswith(verb) for verb in MUTATING_VERBS)


async def deny_all(
    tool_name: str, command: str, params: dict[str, JsonValue]
) -> bool:
    """Gate that declines every mutating command (no interactive host)."""
    logger.info("Declined %s.%s: no confirmation available", tool_name, command)
    return False


async def approve_all(
    tool_name: str, command: str, params: dict[str, JsonValue]
) -> bool:
    """Gate that approves every mutating command."""
    logger.debug("Auto-approved %s.%s", tool_name, command)
    return True
