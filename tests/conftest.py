"""Shared test fixtures and helpers for awsflow_mcp tests."""

import asyncio
import json
from collections.abc import Callable

import pytest
from mcp.types import Tool as ToolMetadata

from awsflow_mcp.config import McpConfig
from awsflow_mcp.registry import CancellationToken, ToolRegistry
from awsflow_mcp.session import TerminalChannel
from awsflow_mcp.types import JsonValue

READ_TIMEOUT = 3.0


# ── Fake tools ────────────────────────────────────────────────────────────


class EchoTool:
    """Returns its command and params as a JSON text part."""

    def __init__(self) -> None:
        self.calls: list[tuple[str, dict[str, JsonValue]]] = []

    async def invoke(
        self,
        command: str,
        params: dict[str, JsonValue],
        cancel_token: CancellationToken,
    ) -> object:
        self.calls.append((command, params))
        payload = json.dumps({"command": command, "params": params})
        return {"content": [{"value": payload}]}


class BlockingTool:
    """Runs until its cancellation token fires."""

    def __init__(self) -> None:
        self.started = asyncio.Event()
        self.token: CancellationToken | None = None

    async def invoke(
        self,
        command: str,
        params: dict[str, JsonValue],
        cancel_token: CancellationToken,
    ) -> object:
        self.token = cancel_token
        self.started.set()
        await cancel_token.wait()
        return "cancelled"


class FailingTool:
    """Always raises."""

    async def invoke(
        self,
        command: str,
        params: dict[str, JsonValue],
        cancel_token: CancellationToken,
    ) -> object:
        raise RuntimeError("boom")


def make_metadata(name: str, description: str = "") -> ToolMetadata:
    return ToolMetadata(
        name=name,
        description=description or f"{name} actions",
        inputSchema={"type": "object"},
    )


# ── Fixtures ──────────────────────────────────────────────────────────────


@pytest.fixture
def echo_tool() -> EchoTool:
    return EchoTool()


@pytest.fixture
def blocking_tool() -> BlockingTool:
    return BlockingTool()


@pytest.fixture
def registry(echo_tool: EchoTool, blocking_tool: BlockingTool) -> ToolRegistry:
    """S3Tool and EC2Tool are listed; SlowTool and FailTool have no metadata."""
    return ToolRegistry.from_tools(
        {
            "S3Tool": echo_tool,
            "EC2Tool": EchoTool(),
            "SlowTool": blocking_tool,
            "FailTool": FailingTool(),
        },
        {"S3Tool": make_metadata("S3Tool"), "EC2Tool": make_metadata("EC2Tool")},
    )


@pytest.fixture
def config() -> McpConfig:
    """In-memory config bound to an ephemeral loopback port."""
    cfg = McpConfig()
    cfg.update_endpoint("127.0.0.1", 0)
    return cfg


# ── Wire helpers ──────────────────────────────────────────────────────────


def request(
    method: str, request_id: int | str | None = 1, **params: object
) -> dict[str, object]:
    """Build a JSON-RPC request (a notification when *request_id* is None)."""
    message: dict[str, object] = {"jsonrpc": "2.0", "method": method}
    if request_id is not None:
        message["id"] = request_id
    if params:
        message["params"] = params
    return message


async def send(writer: asyncio.StreamWriter, message: dict[str, object]) -> None:
    writer.write((json.dumps(message) + "\n").encode("utf-8"))
    await writer.drain()


async def receive(reader: asyncio.StreamReader) -> dict[str, object]:
    """Read one response line from a socket."""
    line = await asyncio.wait_for(reader.readline(), READ_TIMEOUT)
    assert line, "connection closed before a response arrived"
    return json.loads(line)


async def read_terminal(channel: TerminalChannel) -> str:
    """Read one chunk written to a terminal channel."""
    return await asyncio.wait_for(channel.read_output(), READ_TIMEOUT)


async def wait_until(
    predicate: Callable[[], bool], timeout: float = READ_TIMEOUT
) -> None:
    """Poll *predicate* until it returns True."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.01)
