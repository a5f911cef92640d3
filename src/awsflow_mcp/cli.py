"""``awsflow-mcp`` command line.

Subcommands::

    awsflow-mcp relay [--host H] [--port P]
        Relay stdin lines to the bridge and bridge lines to stdout, so that
        stdio-only MCP clients can talk to a running bridge.

    awsflow-mcp serve --registry module:attr [--metadata tools.json]
                      [--host H] [--port P] [--session-cap N] [--approve-all]
        Run the bridge around an importable tool registry until interrupted.
"""

import argparse
import asyncio
import codecs
import contextlib
import importlib
import logging
import sys
import threading
from collections.abc import Mapping
from pathlib import Path
from typing import TextIO

from awsflow_mcp.config import McpConfig, default_host, default_port
from awsflow_mcp.exceptions import AwsflowMcpError, ConfigError
from awsflow_mcp.guard import approve_all, deny_all
from awsflow_mcp.manager import SessionManager
from awsflow_mcp.protocol import READ_CHUNK_SIZE, LineBuffer
from awsflow_mcp.registry import ToolRecord, ToolRegistry, load_tool_metadata

logger = logging.getLogger(__name__)


# ── Relay ─────────────────────────────────────────────────────────────────


def _pump_stdin(
    stream: TextIO,
    loop: asyncio.AbstractEventLoop,
    lines: asyncio.Queue[str | None],
) -> None:
    """Blocking stdin reader, run in a daemon thread."""
    with contextlib.suppress(RuntimeError):  # loop already closed
        for line in stream:
            loop.call_soon_threadsafe(lines.put_nowait, line)
        loop.call_soon_threadsafe(lines.put_nowait, None)


async def _forward_stdin(
    lines: asyncio.Queue[str | None], writer: asyncio.StreamWriter
) -> None:
    try:
        while True:
            line = await lines.get()
            if line is None:
                if writer.can_write_eof():
                    writer.write_eof()
                return
            trimmed = line.strip()
            if not trimmed:
                continue
            writer.write((trimmed + "\n").encode("utf-8"))
            await writer.drain()
    except (ConnectionError, OSError) as exc:
        logger.debug("Relay upstream closed: %s", exc)


async def _forward_socket(reader: asyncio.StreamReader, stdout: TextIO) -> None:
    buffer = LineBuffer()
    decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
    try:
        while True:
            data = await reader.read(READ_CHUNK_SIZE)
            if not data:
                return
            for line in buffer.feed(decoder.decode(data)):
                stdout.write(line + "\n")
            stdout.flush()
    except (ConnectionError, OSError) as exc:
        logger.debug("Relay downstream closed: %s", exc)


async def run_relay(
    host: str,
    port: int,
    *,
    stdin: TextIO | None = None,
    stdout: TextIO | None = None,
    stderr: TextIO | None = None,
) -> int:
    """Relay newline-delimited JSON between stdio and the bridge.

    Returns:
        Process exit code: 0 when the bridge closed the connection, 1 when
        it could not be reached.
    """
    stdin = stdin or sys.stdin
    stdout = stdout or sys.stdout
    stderr = stderr or sys.stderr
    try:
        reader, writer = await asyncio.open_connection(host, port)
    except OSError as exc:
        print(
            f"MCP Client Error: Cannot connect to MCP bridge at {host}:{port}. "
            f"Start it with 'awsflow-mcp serve'. Detail: {exc}",
            file=stderr,
        )
        return 1

    lines: asyncio.Queue[str | None] = asyncio.Queue()
    threading.Thread(
        target=_pump_stdin,
        args=(stdin, asyncio.get_running_loop(), lines),
        name="awsflow-mcp-stdin",
        daemon=True,
    ).start()
    upstream = asyncio.create_task(_forward_stdin(lines, writer))
    try:
        await _forward_socket(reader, stdout)
    finally:
        upstream.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await upstream
        writer.close()
        with contextlib.suppress(OSError):
            await writer.wait_closed()
    return 0


# ── Serve ─────────────────────────────────────────────────────────────────


def load_registry(target: str, metadata_path: Path | None = None) -> ToolRegistry:
    """Import a tool registry from ``module:attribute``.

    The attribute may be a :class:`ToolRegistry`, a mapping of tool name to
    tool, or a callable returning either. Metadata loaded from
    *metadata_path* fills in tools registered without metadata.

    Raises:
        ConfigError: If *target* cannot be imported or has the wrong type.
        ToolMetadataError: If the metadata file cannot be loaded.
    """
    module_name, sep, attr = target.partition(":")
    if not sep or not module_name or not attr:
        raise ConfigError(
            f"Registry must be given as module:attribute, got {target!r}"
        )
    try:
        module = importlib.import_module(module_name)
    except ImportError as exc:
        raise ConfigError(
            f"Cannot import registry module {module_name!r}: {exc}"
        ) from exc
    try:
        obj = getattr(module, attr)
    except AttributeError as exc:
        raise ConfigError(f"Module {module_name!r} has no attribute {attr!r}") from exc

    if callable(obj) and not isinstance(obj, (ToolRegistry, Mapping)):
        obj = obj()

    metadata = load_tool_metadata(metadata_path) if metadata_path else {}
    if isinstance(obj, ToolRegistry):
        if not metadata:
            return obj
        return ToolRegistry(
            ToolRecord(
                name=record.name,
                tool=record.tool,
                metadata=record.metadata or metadata.get(record.name),
            )
            for record in obj
        )
    if isinstance(obj, Mapping):
        return ToolRegistry.from_tools(obj, metadata)
    raise ConfigError(
        f"{target} is not a ToolRegistry or a mapping of tools "
        f"(got {type(obj).__name__})"
    )


def _print_notice(message: str) -> None:
    print(message, file=sys.stderr)


async def run_server(args: argparse.Namespace) -> int:
    """Run the bridge until the task is cancelled."""
    registry = load_registry(args.registry, args.metadata)
    if args.state_file:
        config = McpConfig(args.state_file)
    else:
        config = McpConfig.from_environment()
    if args.session_cap is not None:
        config.update_session_cap(args.session_cap)
    if args.host is not None or args.port is not None:
        state = config.load()
        config.update_endpoint(
            args.host or state.host,
            state.port if args.port is None else args.port,
        )

    manager = SessionManager(
        registry,
        config=config,
        confirm=approve_all if args.approve_all else deny_all,
        notify=_print_notice,
    )
    await manager.start_bridge()
    logger.info("Serving %d tools", len(registry))
    try:
        await asyncio.Event().wait()
    finally:
        await manager.aclose()
    return 0


# ── Entry point ───────────────────────────────────────────────────────────


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="awsflow-mcp", description="Awsflow MCP bridge"
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    relay = subparsers.add_parser("relay", help="relay stdio to a running bridge")
    relay.add_argument("--host", default=None, help="bridge host")
    relay.add_argument("--port", type=int, default=None, help="bridge port")

    serve = subparsers.add_parser("serve", help="run the TCP bridge")
    serve.add_argument(
        "--registry", required=True, help="tool registry as module:attribute"
    )
    serve.add_argument(
        "--metadata", type=Path, default=None, help="tool metadata JSON file"
    )
    serve.add_argument("--host", default=None, help="listening host")
    serve.add_argument("--port", type=int, default=None, help="listening port")
    serve.add_argument(
        "--session-cap", type=int, default=None, help="maximum concurrent sessions"
    )
    serve.add_argument(
        "--state-file", type=Path, default=None, help="persisted state file"
    )
    serve.add_argument(
        "--approve-all",
        action="store_true",
        help="run mutating commands without asking",
    )
    return parser


def main(argv: list[str] | None = None) -> int:
    """Entry point for the ``awsflow-mcp`` script."""
    args = build_parser().parse_args(argv)
    try:
        if args.command == "relay":
            return asyncio.run(
                run_relay(
                    args.host or default_host(),
                    default_port() if args.port is None else args.port,
                )
            )
        return asyncio.run(run_server(args))
    except KeyboardInterrupt:
        return 130
    except AwsflowMcpError as exc:
        print(f"awsflow-mcp: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
