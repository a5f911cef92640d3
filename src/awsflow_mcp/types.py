"""Shared type definitions for awsflow-mcp."""

from collections.abc import Callable
from typing import Literal, NotRequired, TypeAlias, TypedDict

# Recursive JSON-compatible type (avoids Any)
JsonValue: TypeAlias = (
    int | float | str | bool | None | list["JsonValue"] | dict[str, "JsonValue"]
)

SessionKind: TypeAlias = Literal["local", "socket"]
"""Transport a session is attached through."""

Notifier = Callable[[str], None]
"""Receives user-visible notices (queued at capacity, bridge started, ...)."""

ContextProbe = Callable[[], bool]
"""Returns True when the host credential/session context is initialized."""


def always_ready() -> bool:
    """Default context probe for hosts without a credential context."""
    return True


class BridgeMetrics(TypedDict):
    """Socket-side admission counters reported by the bridge."""

    active: int
    queued: int
    cap: int


class BridgeStatus(TypedDict):
    """Result of ``SessionManager.check_status()``."""

    running: bool
    reachable: bool
    host: str
    port: int
    activeSessions: int
    queuedConnections: int
    sessionCap: int
    message: NotRequired[str]
