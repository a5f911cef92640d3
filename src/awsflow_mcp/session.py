"""Sessions: one attached client, its channel, and its private dispatcher.

A :class:`Session` is transport-agnostic. It reads text from a
:class:`DuplexChannel`, frames it into lines, hands each line to its own
:class:`~awsflow_mcp.dispatcher.Dispatcher` and writes the response back.

Lines of one session are processed strictly in arrival order. Reading runs
concurrently with processing, so a disconnect (or Ctrl-C on the terminal
channel) is noticed while a tool call is still running, and that call is
cancelled.

Architecture::

    channel.read() ─> LineBuffer ─> line queue ─> Dispatcher.handle()
                                                        │
    channel.write_line() <──────── response ─────────────┘
"""

import asyncio
import codecs
import contextlib
import logging
from collections.abc import Callable
from typing import Protocol

from awsflow_mcp.dispatcher import Dispatcher
from awsflow_mcp.exceptions import InvalidRequestError, ParseError
from awsflow_mcp.protocol import (
    READ_CHUNK_SIZE,
    LineBuffer,
    encode_message,
    error_response,
    parse_line,
    recover_id,
)
from awsflow_mcp.types import SessionKind

logger = logging.getLogger(__name__)

INTERRUPT: str = "\x03"
"""Ctrl-C on the terminal channel; closes the session."""


# ── Channels ─────────────────────────────────────────────────────────────


class DuplexChannel(Protocol):
    """Bidirectional text stream a session is attached to."""

    async def open(self, session_id: int) -> None:
        """Called once when the session starts."""
        ...

    async def read(self) -> str | None:
        """Return the next chunk of text, or None at end of stream."""
        ...

    async def write_line(self, text: str) -> None:
        """Write *text* followed by the channel's line terminator."""
        ...

    async def close(self) -> None:
        """Release the channel. Must be safe to call more than once."""
        ...


class SocketChannel:
    """Channel over an asyncio TCP stream pair.

    Args:
        reader: Stream reader of the accepted connection.
        writer: Stream writer of the accepted connection.
        initial: Bytes already read from the connection (e.g. while it was
            queued) that must be delivered before anything else.
    """

    def __init__(
        self,
        reader: asyncio.StreamReader,
        writer: asyncio.StreamWriter,
        initial: bytes = b"",
    ) -> None:
        self._reader = reader
        self._writer = writer
        self._initial = initial
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")

    @property
    def peer(self) -> object:
        return self._writer.get_extra_info("peername")

    async def open(self, session_id: int) -> None:
        # Real MCP clients start with initialize; no banner.
        return None

    async def read(self) -> str | None:
        if self._initial:
            data, self._initial = self._initial, b""
        else:
            data = await self._reader.read(READ_CHUNK_SIZE)
            if not data:
                return None
        return self._decoder.decode(data)

    async def write_line(self, text: str) -> None:
        self._writer.write((text + "\n").encode("utf-8"))
        await self._writer.drain()

    async def close(self) -> None:
        if self._writer.is_closing():
            return
        self._writer.close()
        try:
            await self._writer.wait_closed()
        except OSError:
            pass


class TerminalChannel:
    """In-process pseudo-terminal channel for local sessions.

    The host pushes keystrokes or pasted text with :meth:`send_input` and
    drains what the session writes with :meth:`read_output`. Output lines
    end with ``\\r\\n`` like a terminal. Typing Ctrl-C closes the session.
    """

    def __init__(self) -> None:
        self._input: asyncio.Queue[str | None] = asyncio.Queue()
        self._output: asyncio.Queue[str] = asyncio.Queue()
        self._session_id: int | None = None
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def send_input(self, data: str) -> None:
        """Feed terminal input to the session."""
        if self._closed:
            return
        before, interrupt, _ = data.partition(INTERRUPT)
        if before:
            self._input.put_nowait(before)
        if interrupt:
            logger.debug("Interrupt on terminal session %s", self._session_id)
            self._input.put_nowait(None)

    def interrupt(self) -> None:
        """Equivalent to the user pressing Ctrl-C."""
        self.send_input(INTERRUPT)

    async def read_output(self) -> str:
        """Wait for the next chunk the session wrote."""
        return await self._output.get()

    def drain_output(self) -> list[str]:
        """Return everything written so far without waiting."""
        chunks: list[str] = []
        while not self._output.empty():
            chunks.append(self._output.get_nowait())
        return chunks

    async def open(self, session_id: int) -> None:
        self._session_id = session_id
        await self.write_line(f"Awsflow MCP session {session_id} started.")
        await self.write_line("Type Ctrl+C to close this session.")

    async def read(self) -> str | None:
        if self._closed:
            return None
        return await self._input.get()

    async def write_line(self, text: str) -> None:
        self._output.put_nowait(text + "\r\n")

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        if self._session_id is not None:
            await self.write_line(f"MCP session {self._session_id} closed.")
        self._input.put_nowait(None)


# ── Session ──────────────────────────────────────────────────────────────


class Session:
    """One admitted client.

    Args:
        session_id: Identifier unique within the owning component.
        kind: ``"local"`` or ``"socket"``.
        channel: Transport the session reads from and writes to.
        dispatcher: Private dispatcher, built when the session was admitted.
        on_closed: Called exactly once after the session has been torn down.
    """

    def __init__(
        self,
        session_id: int,
        kind: SessionKind,
        channel: DuplexChannel,
        dispatcher: Dispatcher,
        on_closed: Callable[["Session"], None] | None = None,
    ) -> None:
        self.session_id = session_id
        self.kind: SessionKind = kind
        self.channel = channel
        self.dispatcher = dispatcher
        self._on_closed = on_closed
        self._buffer = LineBuffer()
        self._lines: asyncio.Queue[str | None] = asyncio.Queue()
        self._task: asyncio.Task[None] | None = None
        self._current: asyncio.Task[None] | None = None
        self._closed = False
        self._released = False

    def __repr__(self) -> str:
        state = "closed" if self._closed else "open"
        return f"<Session {self.kind}:{self.session_id} {state}>"

    @property
    def closed(self) -> bool:
        return self._closed

    def start(self) -> asyncio.Task[None]:
        """Run the session in a background task."""
        if self._task is None:
            self._task = asyncio.create_task(
                self.run(), name=f"mcp-session-{self.kind}-{self.session_id}"
            )
        return self._task

    async def run(self) -> None:
        """Serve the channel until it ends or the session is closed."""
        if self._task is None:
            self._task = asyncio.current_task()

        reader = asyncio.create_task(self._read_loop())
        logger.info("MCP session %s (%s) started", self.session_id, self.kind)
        try:
            await self.channel.open(self.session_id)
            while not self._closed:
                line = await self._lines.get()
                if line is None:
                    break
                self._current = asyncio.create_task(self._process_line(line))
                await asyncio.wait({self._current})
                if not self._current.cancelled():
                    self._current.result()
        except (ConnectionError, OSError) as exc:
            logger.debug("Session %s transport error: %s", self.session_id, exc)
        except Exception:
            logger.error(
                "Error handling MCP session %s", self.session_id, exc_info=True
            )
        finally:
            self._abort()
            reader.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await reader
            await self._release()

    async def close(self) -> None:
        """Tear the session down, cancelling any in-flight tool call."""
        if self._released:
            return
        self._abort()
        task = self._task
        if task is not None and task is not asyncio.current_task():
            await asyncio.wait({task})
        await self._release()

    async def _read_loop(self) -> None:
        try:
            while True:
                chunk = await self.channel.read()
                if chunk is None:
                    break
                for line in self._buffer.feed(chunk):
                    self._lines.put_nowait(line)
        except (ConnectionError, OSError) as exc:
            logger.debug("Session %s read failed: %s", self.session_id, exc)
        self._abort()

    def _abort(self) -> None:
        self._closed = True
        self.dispatcher.cancel_all()
        if self._current is not None and not self._current.done():
            self._current.cancel()
        self._lines.put_nowait(None)

    async def _process_line(self, line: str) -> None:
        try:
            request = parse_line(line)
        except ParseError as exc:
            response = error_response(recover_id(line), exc)
        except InvalidRequestError as exc:
            if exc.notification:
                logger.debug("Dropped malformed notification: %s", exc.message)
                return
            response = error_response(exc.request_id, exc)
        else:
            response = await self.dispatcher.handle(request)

        if response is not None and not self._closed:
            await self.channel.write_line(encode_message(response))

    async def _release(self) -> None:
        if self._released:
            return
        self._released = True
        self._closed = True
        self.dispatcher.cancel_all()
        try:
            await self.channel.close()
        except (ConnectionError, OSError) as exc:
            logger.debug("Session %s close failed: %s", self.session_id, exc)
        logger.info("MCP session %s (%s) closed", self.session_id, self.kind)
        if self._on_closed is not None:
            self._on_closed(self)
