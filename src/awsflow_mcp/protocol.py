"""Wire protocol: JSON-RPC message types, constants, and newline framing.

Both transports (TCP socket and in-process terminal) carry the same framing:
one UTF-8 JSON object per line.

Wire format::

    {"jsonrpc": "2.0", "id": 1, "method": "tools/list"}\\n
"""

import json
import re
from collections.abc import Mapping
from typing import NotRequired, TypeAlias, TypedDict

from awsflow_mcp.exceptions import InvalidRequestError, ParseError, RpcError
from awsflow_mcp.types import JsonValue

# ── Constants ──────────────────────────────────────────────────────────────

JSONRPC_VERSION: str = "2.0"

PROTOCOL_VERSION: str = "2024-11-05"
"""MCP protocol revision announced by ``initialize``."""

SERVER_NAME: str = "awsflow"

SERVER_VERSION: str = "1.0.3"

DEFAULT_HOST: str = "127.0.0.1"
"""Fallback listening host (loopback only)."""

DEFAULT_PORT: int = 37114
"""Fallback listening port."""

READ_CHUNK_SIZE: int = 65_536
"""Bytes requested per socket read."""

QUEUED_STATUS_METHOD: str = "notifications/status"

_LINE_SPLIT = re.compile(r"\r?\n")
_ID_PATTERN = re.compile(r'"id"\s*:\s*("(?:[^"\\]|\\.)*"|-?\d+)')


# ── Message TypedDicts ─────────────────────────────────────────────────────

RpcId: TypeAlias = str | int


class RpcRequest(TypedDict):
    """Request or notification received from a client."""

    method: str
    id: NotRequired[RpcId | None]
    jsonrpc: NotRequired[str]
    params: NotRequired[dict[str, JsonValue]]


class RpcErrorPayload(TypedDict):
    """Error object on the wire."""

    message: str
    code: NotRequired[int]
    data: NotRequired[JsonValue]


class RpcResponse(TypedDict):
    """Response sent back for a request that carries an ``id``."""

    jsonrpc: str
    id: NotRequired[RpcId | None]
    result: NotRequired[dict[str, JsonValue]]
    error: NotRequired[RpcErrorPayload]


class QueuedStatusParams(TypedDict):
    status: str
    cap: int
    message: str


class QueuedNotice(TypedDict):
    """Sent once to a socket connection that has been queued."""

    jsonrpc: str
    method: str
    params: QueuedStatusParams


# ── Framing ────────────────────────────────────────────────────────────────


class LineBuffer:
    """Accumulates text chunks and yields complete, non-blank lines.

    A trailing partial line is kept until a later chunk completes it.
    """

    def __init__(self) -> None:
        self._pending = ""

    def feed(self, chunk: str) -> list[str]:
        """Append *chunk* and return the complete lines it finishes."""
        self._pending += chunk
        parts = _LINE_SPLIT.split(self._pending)
        self._pending = parts.pop()
        return [line.strip() for line in parts if line.strip()]

    @property
    def pending(self) -> str:
        """Text received after the last newline."""
        return self._pending


def encode_message(message: Mapping[str, object]) -> str:
    """Serialize *message* as a single JSON line without the terminator."""
    return json.dumps(message, ensure_ascii=False, separators=(",", ":"))


def recover_id(line: str) -> RpcId | None:
    """Best-effort extraction of a request ``id`` from an unparseable line."""
    match = _ID_PATTERN.search(line)
    if match is None:
        return None
    token = match.group(1)
    try:
        value = json.loads(token)
    except json.JSONDecodeError:
        return None
    if isinstance(value, (str, int)):
        return value
    return None


def parse_line(line: str) -> RpcRequest:
    """Parse one framed line into a request.

    Args:
        line: A complete line with the terminator removed.

    Returns:
        The decoded request object.

    Raises:
        ParseError: If the line is not valid JSON.
        InvalidRequestError: If the JSON is not an object with a string
            ``method``.
    """
    try:
        data = json.loads(line)
    except json.JSONDecodeError as exc:
        raise ParseError("Invalid JSON", data=str(exc)) from exc

    if not isinstance(data, dict):
        raise InvalidRequestError("Request must be a JSON object")
    if not isinstance(data.get("method"), str):
        raise InvalidRequestError(
            "Request is missing a string 'method'",
            request_id=_id_of(data),
            notification=is_notification(data),
        )
    params = data.get("params")
    if params is not None and not isinstance(params, dict):
        raise InvalidRequestError(
            "Request 'params' must be an object",
            request_id=_id_of(data),
            notification=is_notification(data),
        )
    return data  # type: ignore[return-value]


def _id_of(data: Mapping[str, object]) -> RpcId | None:
    value = data.get("id")
    if isinstance(value, (str, int)) and not isinstance(value, bool):
        return value
    return None


def is_notification(request: Mapping[str, object]) -> bool:
    """Return True when *request* has no ``id`` and must not be answered."""
    return request.get("id") is None


# ── Response builders ──────────────────────────────────────────────────────


def result_response(
    request_id: RpcId | None, result: dict[str, JsonValue]
) -> RpcResponse:
    """Build a success response echoing *request_id*."""
    return {"id": request_id, "jsonrpc": JSONRPC_VERSION, "result": result}


def error_response(request_id: RpcId | None, error: RpcError) -> RpcResponse:
    """Build an error response from an :class:`RpcError`.

    The ``id`` key is omitted when no id is known.
    """
    payload: RpcErrorPayload = {"message": error.message, "code": error.code}
    if error.data is not None:
        payload["data"] = error.data  # type: ignore[typeddict-item]
    response: RpcResponse = {"jsonrpc": JSONRPC_VERSION, "error": payload}
    if request_id is not None:
        response["id"] = request_id
    return response


def queued_notice(cap: int) -> QueuedNotice:
    """Build the notification sent to a connection queued at capacity."""
    return {
        "jsonrpc": JSONRPC_VERSION,
        "method": QUEUED_STATUS_METHOD,
        "params": {
            "status": "queued",
            "cap": cap,
            "message": "Queued until capacity frees",
        },
    }
