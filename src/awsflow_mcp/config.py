"""Persisted bridge configuration.

The state survives restarts as a small JSON document. Field names are
stored in camelCase (``sessionCap``, ``disabledTools``) and accepted in
either camelCase or snake_case.
"""

import json
import logging
import os
from pathlib import Path

from pydantic import BaseModel, Field, ValidationError, field_validator

from awsflow_mcp.exceptions import ConfigError
from awsflow_mcp.protocol import DEFAULT_HOST, DEFAULT_PORT

logger = logging.getLogger(__name__)

DEFAULT_SESSION_CAP: int = 20

STATE_FILE_PERMISSIONS: int = 0o600
"""Unix permission bits for the state file (owner read/write only)."""

HOST_ENV_VAR = "AWSFLOW_MCP_HOST"
PORT_ENV_VAR = "AWSFLOW_MCP_PORT"
STATE_FILE_ENV_VAR = "AWSFLOW_MCP_STATE_FILE"


def normalize_port(port: object) -> int | None:
    """Return *port* as an int in 0..65535, or None when it is not one.

    Port 0 asks the OS for a free port when the bridge binds.
    """
    if port is None or isinstance(port, bool):
        return None
    try:
        parsed = int(str(port).strip())
    except ValueError:
        return None
    if parsed < 0 or parsed > 65535:  # noqa: PLR2004
        return None
    return parsed


def default_host() -> str:
    """Host from ``AWSFLOW_MCP_HOST``, falling back to loopback."""
    return os.environ.get(HOST_ENV_VAR) or DEFAULT_HOST


def default_port() -> int:
    """Port from ``AWSFLOW_MCP_PORT``, falling back to ``DEFAULT_PORT``."""
    port = normalize_port(os.environ.get(PORT_ENV_VAR))
    return DEFAULT_PORT if port is None else port


def _port_or_default(port: object) -> int:
    normalized = normalize_port(port)
    return default_port() if normalized is None else normalized


def effective_cap(session_cap: int | None) -> int:
    """Cap actually enforced: unset or zero means the default, never below 1."""
    return max(1, session_cap or DEFAULT_SESSION_CAP)


def default_state_path() -> Path:
    """Location of the persisted state file."""
    override = os.environ.get(STATE_FILE_ENV_VAR)
    if override:
        return Path(override)
    return Path.home() / ".awsflow" / "mcp_state.json"


class McpState(BaseModel):
    """Process-wide bridge settings.

    Attributes:
        enabled: Whether the bridge has been switched on.
        session_cap: Maximum concurrent sessions across both transports.
        disabled_tools: Tool names hidden from newly created sessions.
        host: Listening host for the TCP bridge.
        port: Listening port for the TCP bridge.
    """

    enabled: bool = False
    session_cap: int = Field(default=DEFAULT_SESSION_CAP, alias="sessionCap")
    disabled_tools: list[str] = Field(default_factory=list, alias="disabledTools")
    host: str = Field(default_factory=default_host)
    port: int = Field(default_factory=default_port)

    model_config = {"populate_by_name": True}

    @field_validator("host", mode="before")
    @classmethod
    def _fallback_host(cls, value: object) -> object:
        return value or default_host()

    @field_validator("port", mode="before")
    @classmethod
    def _fallback_port(cls, value: object) -> int:
        return _port_or_default(value)

    @field_validator("disabled_tools", mode="before")
    @classmethod
    def _fallback_disabled(cls, value: object) -> object:
        return [] if value is None else value

    @property
    def cap(self) -> int:
        """The session cap as enforced (see :func:`effective_cap`)."""
        return effective_cap(self.session_cap)


class McpConfig:
    """Load and update :class:`McpState`, optionally backed by a JSON file.

    Args:
        path: File holding the persisted state. ``None`` keeps the state in
            memory for the lifetime of this object.
    """

    def __init__(self, path: Path | str | None = None) -> None:
        self._path = Path(path) if path is not None else None
        self._memory: McpState | None = None

    @classmethod
    def from_environment(cls) -> "McpConfig":
        """Config persisted at :func:`default_state_path`."""
        return cls(default_state_path())

    @property
    def path(self) -> Path | None:
        return self._path

    def load(self) -> McpState:
        """Return the stored state, or defaults when nothing usable is stored."""
        if self._path is None:
            return (self._memory or McpState()).model_copy(deep=True)

        if not self._path.exists():
            return McpState()
        try:
            raw = json.loads(self._path.read_text(encoding="utf-8"))
            if not isinstance(raw, dict):
                raise ValueError("state file does not hold a JSON object")
            return McpState.model_validate(raw)
        except (OSError, ValueError, ValidationError) as exc:
            logger.warning(
                "Ignoring unreadable MCP state file %s: %s", self._path, exc
            )
            return McpState()

    def update_enabled(self, enabled: bool) -> None:
        self._save(self.load().model_copy(update={"enabled": bool(enabled)}))

    def update_session_cap(self, session_cap: int) -> None:
        if isinstance(session_cap, bool) or not isinstance(session_cap, int):
            raise ConfigError(f"Session cap must be an integer, got {session_cap!r}")
        self._save(self.load().model_copy(update={"session_cap": session_cap}))

    def update_disabled_tools(self, disabled_tools: list[str]) -> None:
        names = [str(name) for name in disabled_tools]
        self._save(self.load().model_copy(update={"disabled_tools": names}))

    def update_host(self, host: str) -> None:
        self._save(self.load().model_copy(update={"host": host or default_host()}))

    def update_port(self, port: int) -> None:
        self._save(self.load().model_copy(update={"port": _port_or_default(port)}))

    def update_endpoint(self, host: str, port: int) -> None:
        """Update host and port together (one write)."""
        self._save(
            self.load().model_copy(
                update={
                    "host": host or default_host(),
                    "port": _port_or_default(port),
                }
            )
        )

    def _save(self, state: McpState) -> None:
        if self._path is None:
            self._memory = state
            return

        self._path.parent.mkdir(parents=True, exist_ok=True)
        fd = os.open(
            str(self._path),
            os.O_WRONLY | os.O_CREAT | os.O_TRUNC,
            STATE_FILE_PERMISSIONS,
        )
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump(state.model_dump(by_alias=True), f, indent=2)
        logger.debug("MCP state written to %s", self._path)
