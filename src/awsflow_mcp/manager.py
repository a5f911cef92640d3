"""Session manager: configuration owner and admission authority.

The manager creates local (terminal) sessions, owns the TCP
:class:`~awsflow_mcp.bridge.BridgeServer`, and keeps the two transports under
one shared cap::

    local sessions + socket sessions <= max(1, session_cap)

Requests beyond the cap wait in FIFO queues (local requests here, socket
connections in the bridge). Whenever a session of either kind ends, the
local queue is promoted first, then the bridge's.
"""

import asyncio
import contextlib
import itertools
import logging
from collections import deque

from awsflow_mcp.bridge import BridgeServer
from awsflow_mcp.config import McpConfig, McpState
from awsflow_mcp.dispatcher import Dispatcher
from awsflow_mcp.exceptions import BridgeStartupError, ConfigError
from awsflow_mcp.guard import ConfirmationGate, deny_all
from awsflow_mcp.registry import ToolRegistry
from awsflow_mcp.resources import DEFAULT_RESOURCES, ResourceDocument
from awsflow_mcp.session import Session, TerminalChannel
from awsflow_mcp.types import BridgeStatus, ContextProbe, Notifier, always_ready

logger = logging.getLogger(__name__)

PROBE_TIMEOUT_SECONDS: float = 1.2
"""Timeout for the reachability probe in :meth:`SessionManager.check_status`."""

NOT_STARTED_MESSAGE = "Bridge is not started yet. Use Start Server to launch it."
UNREACHABLE_MESSAGE = (
    "Bridge is running but not reachable on the configured host/port."
)


def _log_notice(message: str) -> None:
    logger.info(message)


class SessionManager:
    """Façade over configuration, local sessions and the TCP bridge.

    Args:
        registry: Tools available to every session.
        config: Configuration store. Defaults to an in-memory store.
        confirm: Gate consulted before mutating commands.
        context_ready: Probe for the host credential/session context.
        notify: Receives user-visible notices.
        resources: Reference documents served to clients.
    """

    def __init__(
        self,
        registry: ToolRegistry,
        *,
        config: McpConfig | None = None,
        confirm: ConfirmationGate = deny_all,
        context_ready: ContextProbe = always_ready,
        notify: Notifier | None = None,
        resources: tuple[ResourceDocument, ...] = DEFAULT_RESOURCES,
    ) -> None:
        self._registry = registry
        self._config = config if config is not None else McpConfig()
        self._confirm = confirm
        self._context_ready = context_ready
        self._notify = notify or _log_notice
        self._resources = resources
        self._session_ids = itertools.count(1)
        self._active: dict[int, Session] = {}
        self._queue: deque[asyncio.Future[Session | None]] = deque()
        self._bridge: BridgeServer | None = None
        self._bridge_lock = asyncio.Lock()
        self._disposed = False

    # ── Sessions ─────────────────────────────────────────────────────────

    async def start_session(self) -> Session | None:
        """Open a local session, waiting in the queue when at capacity.

        Also makes sure the bridge is listening on the configured address.

        Returns:
            The running session, or ``None`` when the manager was stopped
            (or disposed) before a slot became free.
        """
        if self._disposed:
            return None

        state = self._effective_state()
        if not state.enabled:
            self._config.update_enabled(True)
        try:
            await self._ensure_bridge(state)
        except BridgeStartupError as exc:
            logger.warning("Continuing without TCP bridge: %s", exc)
        if self._disposed:
            return None

        cap = self._cap()
        if self.total_active_count() < cap:
            return self._create_local_session()

        future: asyncio.Future[Session | None] = (
            asyncio.get_running_loop().create_future()
        )
        self._queue.append(future)
        self._notify(f"MCP sessions at capacity ({cap}). Request queued.")
        return await future

    async def start_bridge(self) -> None:
        """Start the TCP bridge without opening a local session.

        Raises:
            BridgeStartupError: If the configured address cannot be bound.
        """
        if self._disposed:
            return
        state = self._effective_state()
        if not state.enabled:
            self._config.update_enabled(True)
        await self._ensure_bridge(state)

    async def stop_all(self) -> None:
        """Close every session, cancel queued requests and stop the bridge.

        Queued ``start_session`` calls return ``None``.
        """
        sessions = list(self._active.values())
        self._active.clear()
        queued = list(self._queue)
        self._queue.clear()
        for future in queued:
            if not future.done():
                future.set_result(None)
        for session in sessions:
            await session.close()

        async with self._bridge_lock:
            bridge, self._bridge = self._bridge, None
            if bridge is not None:
                await bridge.stop()

    async def aclose(self) -> None:
        """Dispose the manager; later ``start_session`` calls return None."""
        self._disposed = True
        await self.stop_all()

    def local_session_count(self) -> int:
        return len(self._active)

    def total_active_count(self) -> int:
        """Active sessions across both transports."""
        socket_active = self._bridge.active_count if self._bridge else 0
        return len(self._active) + socket_active

    @property
    def queued_session_count(self) -> int:
        """Local requests waiting for a slot."""
        return sum(1 for future in self._queue if not future.done())

    @property
    def bridge(self) -> BridgeServer | None:
        return self._bridge

    def _create_local_session(self) -> Session:
        session = Session(
            session_id=next(self._session_ids),
            kind="local",
            channel=TerminalChannel(),
            dispatcher=self._create_dispatcher(),
            on_closed=self._on_session_closed,
        )
        self._active[session.session_id] = session
        session.start()
        return session

    def _create_dispatcher(self) -> Dispatcher:
        return Dispatcher(
            self._registry,
            self.enabled_tools(),
            confirm=self._confirm,
            context_ready=self._context_ready,
            resources=self._resources,
        )

    def _on_session_closed(self, session: Session) -> None:
        if self._active.get(session.session_id) is not session:
            return
        del self._active[session.session_id]
        self._on_capacity_freed()

    def _on_capacity_freed(self) -> None:
        cap = self._cap()
        while self._queue and self.total_active_count() < cap:
            future = self._queue.popleft()
            if future.done():
                continue
            future.set_result(self._create_local_session())
        if self._bridge is not None:
            self._bridge.promote_queued()

    # ── Configuration ────────────────────────────────────────────────────

    def set_enabled(self, enabled: bool) -> None:
        """Store the enabled flag.

        The flag is persisted only. A running bridge keeps running, and a
        later :meth:`start_session` or :meth:`start_bridge` sets it back to
        true. Use :meth:`stop_all` to take the bridge down.
        """
        self._config.update_enabled(enabled)

    def set_session_cap(self, cap: int) -> None:
        """Change the cap; open sessions are kept even above a lowered cap."""
        if isinstance(cap, bool) or not isinstance(cap, int):
            raise ConfigError(f"Session cap must be an integer, got {cap!r}")
        self._config.update_session_cap(cap)
        self._on_capacity_freed()

    def set_disabled_tools(self, disabled_tools: list[str]) -> None:
        """Hide tools from sessions created from now on."""
        self._config.update_disabled_tools(list(disabled_tools))

    async def update_endpoint(self, host: str, port: int) -> None:
        """Store a new bridge address, rebinding a running bridge if it moved."""
        self._config.update_endpoint(host, port)
        if self._bridge is not None:
            await self._ensure_bridge(self._effective_state())

    def load_state(self) -> McpState:
        return self._config.load()

    def settings_snapshot(self) -> McpState:
        return self._effective_state()

    def enabled_tools(self) -> list[str]:
        """Registered tools not listed in ``disabled_tools``."""
        disabled = set(self._effective_state().disabled_tools)
        return [name for name in self._registry.names() if name not in disabled]

    def _effective_state(self) -> McpState:
        return self._config.load()

    def _cap(self) -> int:
        return self._effective_state().cap

    # ── Bridge ───────────────────────────────────────────────────────────

    async def _ensure_bridge(self, state: McpState) -> None:
        async with self._bridge_lock:
            if self._bridge is not None:
                if (
                    self._bridge.address == (state.host, state.port)
                    and self._bridge.is_running()
                ):
                    return
                old, self._bridge = self._bridge, None
                freed = old.active_count
                await old.stop()
            else:
                freed = 0

            bridge = BridgeServer(
                self._create_dispatcher,
                self._cap,
                self.local_session_count,
                on_capacity_freed=self._on_capacity_freed,
                host=state.host,
                port=state.port,
                notify=self._notify,
            )
            try:
                await bridge.start()
                self._bridge = bridge
            finally:
                # Socket sessions closed by the rebind free their slots.
                if freed:
                    self._on_capacity_freed()

    async def check_status(self) -> BridgeStatus:
        """Report bridge state and probe the listening address."""
        state = self._effective_state()
        bridge = self._bridge
        running = bridge is not None and bridge.is_running()
        if bridge is not None and running:
            host, port = bridge.bound_address
            metrics = bridge.get_metrics()
            socket_active, socket_queued = metrics["active"], metrics["queued"]
        else:
            host, port = state.host, state.port
            socket_active = socket_queued = 0

        status: BridgeStatus = {
            "running": running,
            "reachable": False,
            "host": host,
            "port": port,
            "activeSessions": len(self._active) + socket_active,
            "queuedConnections": self.queued_session_count + socket_queued,
            "sessionCap": state.cap,
        }
        status["reachable"] = await _probe(host, port)

        if not running:
            status["message"] = NOT_STARTED_MESSAGE
        elif not status["reachable"]:
            status["message"] = UNREACHABLE_MESSAGE
            self._notify(f"MCP bridge is not reachable at {host}:{port}")
        return status


async def _probe(host: str, port: int) -> bool:
    """Return True when a TCP connection to ``host:port`` succeeds."""
    try:
        _, writer = await asyncio.wait_for(
            asyncio.open_connection(host, port), timeout=PROBE_TIMEOUT_SECONDS
        )
    except (OSError, TimeoutError):
        return False
    writer.close()
    with contextlib.suppress(OSError):
        await writer.wait_closed()
    return True
