"""TCP bridge: admission-controlled socket sessions.

The bridge shares one capacity with the local (terminal) sessions owned by
the :class:`~awsflow_mcp.manager.SessionManager`. A connection that arrives
while ``local + socket`` sessions are at the cap is queued: it receives one
``notifications/status`` message and is left waiting, its bytes held but not
interpreted, until a slot frees. Queued connections are promoted oldest
first.

Admission, release and promotion never await between reading the counters
and updating them, so the shared state stays consistent on a single event
loop without locks.
"""

import asyncio
import contextlib
import itertools
import logging
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass, field

from awsflow_mcp.dispatcher import Dispatcher
from awsflow_mcp.exceptions import BridgeStartupError
from awsflow_mcp.protocol import (
    DEFAULT_HOST,
    DEFAULT_PORT,
    READ_CHUNK_SIZE,
    encode_message,
    queued_notice,
)
from awsflow_mcp.session import Session, SocketChannel
from awsflow_mcp.types import BridgeMetrics, Notifier

logger = logging.getLogger(__name__)

QUEUED_HOLD_LIMIT: int = 1_048_576
"""Bytes held for a queued connection before reading from it pauses."""


def _log_notice(message: str) -> None:
    logger.info(message)


@dataclass(eq=False)
class _QueuedConnection:
    reader: asyncio.StreamReader
    writer: asyncio.StreamWriter
    promoted: asyncio.Future[bool]
    held: bytearray = field(default_factory=bytearray)


class BridgeServer:
    """Asyncio TCP server for socket sessions.

    Args:
        dispatcher_factory: Builds a fresh dispatcher for each admitted
            connection (scoped to the enabled tools at that moment).
        get_cap: Returns the current effective session cap.
        get_local_active_count: Returns the number of active local sessions.
        on_capacity_freed: Called after a socket session ends. Defaults to
            :meth:`promote_queued`.
        host: Listening host.
        port: Listening port; 0 binds an ephemeral port.
        notify: Receives user-visible notices.
    """

    def __init__(
        self,
        dispatcher_factory: Callable[[], Dispatcher],
        get_cap: Callable[[], int],
        get_local_active_count: Callable[[], int] = lambda: 0,
        *,
        on_capacity_freed: Callable[[], None] | None = None,
        host: str = DEFAULT_HOST,
        port: int = DEFAULT_PORT,
        notify: Notifier | None = None,
    ) -> None:
        self._dispatcher_factory = dispatcher_factory
        self._get_cap = get_cap
        self._get_local_active_count = get_local_active_count
        self._on_capacity_freed = on_capacity_freed or self.promote_queued
        self._host = host
        self._port = port
        self._notify = notify or _log_notice
        self._server: asyncio.Server | None = None
        self._active = 0
        self._sessions: set[Session] = set()
        self._queued: deque[_QueuedConnection] = deque()
        self._session_ids = itertools.count(1)

    # ── Lifecycle ────────────────────────────────────────────────────────

    async def start(self) -> None:
        """Bind the listener.

        Raises:
            BridgeStartupError: If the address cannot be bound.
        """
        if self._server is not None:
            return
        try:
            self._server = await asyncio.start_server(
                self._handle_connection, self._host, self._port
            )
        except OSError as exc:
            self._notify(
                f"MCP bridge failed to listen on {self._host}:{self._port}: {exc}"
            )
            raise BridgeStartupError(
                f"Cannot listen on {self._host}:{self._port}: {exc}",
                host=self._host,
                port=self._port,
            ) from exc
        host, port = self.bound_address
        self._notify(f"MCP bridge listening on {host}:{port}")

    async def stop(self) -> None:
        """Close the listener, every socket session and every queued connection.

        Nothing is promoted while stopping. Safe to call more than once.
        """
        server, self._server = self._server, None
        if server is None:
            return
        server.close()

        queued = list(self._queued)
        self._queued.clear()
        for entry in queued:
            if not entry.promoted.done():
                entry.promoted.set_result(False)
            await _close_writer(entry.writer)

        for session in list(self._sessions):
            await session.close()
        self._sessions.clear()
        self._active = 0

        with contextlib.suppress(OSError):
            await server.wait_closed()
        self._notify(f"MCP bridge on {self._host}:{self._port} stopped")

    def is_running(self) -> bool:
        return self._server is not None

    @property
    def address(self) -> tuple[str, int]:
        """Configured ``(host, port)``."""
        return self._host, self._port

    @property
    def bound_address(self) -> tuple[str, int]:
        """Actual ``(host, port)`` of the listener (differs when port is 0)."""
        if self._server is not None and self._server.sockets:
            sockname = self._server.sockets[0].getsockname()
            return self._host, int(sockname[1])
        return self.address

    # ── Admission ────────────────────────────────────────────────────────

    @property
    def active_count(self) -> int:
        return self._active

    @property
    def queued_count(self) -> int:
        return len(self._queued)

    def get_metrics(self) -> BridgeMetrics:
        return {
            "active": self._active,
            "queued": len(self._queued),
            "cap": max(1, self._get_cap()),
        }

    def total_active(self) -> int:
        """Local plus socket sessions currently admitted."""
        return self._get_local_active_count() + self._active

    def notify_capacity_change(self) -> None:
        """Re-check the queue after capacity changed elsewhere."""
        self.promote_queued()

    def promote_queued(self) -> None:
        """Admit queued connections, oldest first, while there is capacity."""
        if self._server is None:
            return
        cap = max(1, self._get_cap())
        while self._queued and self.total_active() < cap:
            entry = self._queued.popleft()
            if entry.promoted.done():
                continue
            self._active += 1
            entry.promoted.set_result(True)
            logger.debug(
                "MCP bridge: promoted queued connection. Total active: %d",
                self.total_active(),
            )

    async def _handle_connection(
        self,
        reader: asyncio.StreamReader,
        writer: asyncio.StreamWriter,
    ) -> None:
        cap = max(1, self._get_cap())
        initial = b""
        if self.total_active() >= cap:
            entry = _QueuedConnection(
                reader=reader,
                writer=writer,
                promoted=asyncio.get_running_loop().create_future(),
            )
            self._queued.append(entry)
            logger.info("MCP bridge: capacity reached (%d). Queuing connection.", cap)
            if not await self._wait_in_queue(entry, cap):
                return
            initial = bytes(entry.held)
        else:
            self._active += 1

        await self._run_session(reader, writer, initial)

    async def _wait_in_queue(self, entry: _QueuedConnection, cap: int) -> bool:
        """Hold a queued connection until it is promoted or goes away.

        Returns:
            True when the connection was promoted.
        """
        try:
            entry.writer.write((encode_message(queued_notice(cap)) + "\n").encode())
            await entry.writer.drain()
        except (ConnectionError, OSError):
            self._drop_queued(entry)
            await _close_writer(entry.writer)
            return False

        while not entry.promoted.done():
            if len(entry.held) >= QUEUED_HOLD_LIMIT:
                await asyncio.wait({entry.promoted})
                break
            read = asyncio.ensure_future(entry.reader.read(READ_CHUNK_SIZE))
            await asyncio.wait(
                {read, entry.promoted}, return_when=asyncio.FIRST_COMPLETED
            )
            if not read.done():
                read.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await read
                break
            try:
                data = read.result()
            except (ConnectionError, OSError):
                data = b""
            if not data:
                if entry.promoted.done() and entry.promoted.result():
                    break
                logger.debug("MCP bridge: queued connection went away")
                self._drop_queued(entry)
                await _close_writer(entry.writer)
                return False
            entry.held.extend(data)

        return entry.promoted.result()

    def _drop_queued(self, entry: _QueuedConnection) -> None:
        with contextlib.suppress(ValueError):
            self._queued.remove(entry)
        if not entry.promoted.done():
            entry.promoted.set_result(False)

    async def _run_session(
        self,
        reader: asyncio.StreamReader,
        writer: asyncio.StreamWriter,
        initial: bytes,
    ) -> None:
        if self._server is None:
            # Promoted just before the bridge stopped.
            await _close_writer(writer)
            return
        try:
            dispatcher = self._dispatcher_factory()
        except Exception:
            logger.error(
                "MCP bridge: cannot create session dispatcher", exc_info=True
            )
            self._active = max(0, self._active - 1)
            self._on_capacity_freed()
            await _close_writer(writer)
            return
        session = Session(
            session_id=next(self._session_ids),
            kind="socket",
            channel=SocketChannel(reader, writer, initial),
            dispatcher=dispatcher,
            on_closed=self._on_session_closed,
        )
        self._sessions.add(session)
        logger.info(
            "MCP bridge: session started. Total active: %d", self.total_active()
        )
        await session.run()

    def _on_session_closed(self, session: Session) -> None:
        if session not in self._sessions:
            return
        self._sessions.discard(session)
        self._active = max(0, self._active - 1)
        logger.info(
            "MCP bridge: session %s ended. Total active: %d",
            session.session_id,
            self.total_active(),
        )
        if self._server is not None:
            self._on_capacity_freed()


async def _close_writer(writer: asyncio.StreamWriter) -> None:
    if writer.is_closing():
        return
    writer.close()
    with contextlib.suppress(OSError):
        await writer.wait_closed()
