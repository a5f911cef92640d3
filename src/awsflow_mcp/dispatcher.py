"""JSON-RPC dispatcher: routes one request at a time to the tool registry.

Each session owns its own :class:`Dispatcher`. The enabled tool set is fixed
when the dispatcher is built, so later configuration changes never reach
sessions that are already open.

Architecture::

    Session  ── request ──>  Dispatcher  ── invoke(command, params) ──>  Tool
             <── response ──
"""

import json
import logging
import traceback
from collections.abc import Awaitable, Callable, Iterable, Mapping
from typing import TypeAlias, cast

from mcp.types import TextContent

from awsflow_mcp.exceptions import (
    ContextNotReadyError,
    InvalidParamsError,
    MethodNotFoundError,
    RpcError,
    ToolExecutionError,
    ToolNotEnabledError,
    UserCancelledError,
)
from awsflow_mcp.guard import ConfirmationGate, deny_all, needs_confirmation
from awsflow_mcp.protocol import (
    PROTOCOL_VERSION,
    SERVER_NAME,
    SERVER_VERSION,
    RpcId,
    RpcResponse,
    error_response,
    is_notification,
    result_response,
)
from awsflow_mcp.registry import CancellationToken, ToolRecord, ToolRegistry
from awsflow_mcp.resources import DEFAULT_RESOURCES, ResourceDocument, find_resource
from awsflow_mcp.types import ContextProbe, JsonValue, always_ready

logger = logging.getLogger(__name__)

Params: TypeAlias = Mapping[str, JsonValue]
MethodHandler: TypeAlias = Callable[[Params], Awaitable[dict[str, JsonValue]]]

NOTIFICATION_METHODS = frozenset({"notifications/initialized", "initialized"})


class Dispatcher:
    """Per-session protocol handler.

    Args:
        registry: All tools known to the process.
        enabled_tools: Names visible to this session. Tools outside this set
            are neither listed nor callable.
        confirm: Gate consulted before mutating commands.
        context_ready: Probe for the host credential/session context.
        resources: Reference documents served by ``resources/*``.
    """

    def __init__(
        self,
        registry: ToolRegistry,
        enabled_tools: Iterable[str],
        *,
        confirm: ConfirmationGate = deny_all,
        context_ready: ContextProbe = always_ready,
        resources: tuple[ResourceDocument, ...] = DEFAULT_RESOURCES,
    ) -> None:
        self._tools: dict[str, ToolRecord] = registry.select(enabled_tools)
        self._confirm = confirm
        self._context_ready = context_ready
        self._resources = resources
        self._inflight: set[CancellationToken] = set()
        self._methods: dict[str, MethodHandler] = {
            "tools/list": self._rpc_list_tools,
            "list_tools": self._rpc_list_tools,
            "resources/list": self._rpc_list_resources,
            "list_resources": self._rpc_list_resources,
            "resources/read": self._rpc_read_resource,
            "read_resource": self._rpc_read_resource,
            "tools/call": self._rpc_call_tool,
            "call_tool": self._rpc_call_tool,
        }

    @property
    def enabled_tools(self) -> frozenset[str]:
        """Names of the tools this session may call."""
        return frozenset(self._tools)

    @property
    def inflight_calls(self) -> int:
        return len(self._inflight)

    def cancel_all(self) -> None:
        """Signal cancellation to every tool call still running."""
        for token in list(self._inflight):
            token.cancel()

    async def handle(self, request: Mapping[str, object]) -> RpcResponse | None:
        """Handle one request.

        Args:
            request: A decoded request object (see ``protocol.parse_line``).

        Returns:
            The response to write back, or ``None`` for notifications.
        """
        method = request.get("method")
        if method in NOTIFICATION_METHODS or is_notification(request):
            logger.debug("Notification %s: no response", method)
            return None

        request_id = cast(RpcId, request.get("id"))
        raw_params = request.get("params")
        params: Params = raw_params if isinstance(raw_params, Mapping) else {}

        try:
            if method == "initialize":
                return result_response(request_id, self._initialize_result())
            handler = self._methods.get(str(method))
            if handler is None:
                raise MethodNotFoundError(f"Method not found: {method}")
            return result_response(request_id, await handler(params))
        except RpcError as exc:
            return error_response(request_id, exc)
        except Exception as exc:
            logger.error("Internal error handling %s", method, exc_info=True)
            return error_response(
                request_id,
                RpcError(
                    str(exc) or "Internal error", data=traceback.format_exc()
                ),
            )

    # ── Methods ───────────────────────────────────────────────────────────

    def _initialize_result(self) -> dict[str, JsonValue]:
        return {
            "protocolVersion": PROTOCOL_VERSION,
            "capabilities": {"tools": {}, "resources": {}, "prompts": {}},
            "serverInfo": {"name": SERVER_NAME, "version": SERVER_VERSION},
        }

    def list_tools(self) -> list[dict[str, JsonValue]]:
        """Listing entries for enabled tools that have metadata."""
        listed: list[dict[str, JsonValue]] = []
        for record in self._tools.values():
            if record.metadata is None:
                continue
            # Wire field names, whatever the attribute names of the mcp release.
            dumped = record.metadata.model_dump(by_alias=True)
            listed.append(
                {
                    "name": dumped["name"],
                    "description": dumped.get("description") or "",
                    "inputSchema": dumped["inputSchema"],
                }
            )
        return listed

    async def _rpc_list_tools(self, params: Params) -> dict[str, JsonValue]:
        return {"tools": self.list_tools()}  # type: ignore[dict-item]

    async def _rpc_list_resources(self, params: Params) -> dict[str, JsonValue]:
        listings = [doc.listing() for doc in self._resources]
        return {"resources": listings}  # type: ignore[dict-item]

    async def _rpc_read_resource(self, params: Params) -> dict[str, JsonValue]:
        uri = params.get("uri")
        if not isinstance(uri, str) or not uri:
            raise InvalidParamsError("uri is required")
        document = find_resource(self._resources, uri)
        return {"contents": [document.contents()]}  # type: ignore[list-item]

    async def _rpc_call_tool(self, params: Params) -> dict[str, JsonValue]:
        tool_name, command, tool_params = _resolve_call(params)
        if not tool_name or not command:
            raise InvalidParamsError(
                "tool and command (or name and arguments) are required"
            )

        record = self._tools.get(tool_name)
        if record is None:
            raise ToolNotEnabledError(tool_name)

        if not self._context_ready():
            raise ContextNotReadyError("Session not initialized")

        if needs_confirmation(command):
            approved = await self._confirm(tool_name, command, tool_params)
            if not approved:
                logger.info("User declined %s.%s", tool_name, command)
                raise UserCancelledError(tool_name, command)

        token = CancellationToken()
        self._inflight.add(token)
        try:
            logger.debug("Invoking %s.%s", tool_name, command)
            result = await record.tool.invoke(command, tool_params, token)
        except RpcError:
            raise
        except Exception as exc:
            logger.error(
                "Tool '%s' command '%s' failed: %s",
                tool_name,
                command,
                exc,
                exc_info=True,
            )
            raise ToolExecutionError(
                str(exc) or type(exc).__name__,
                data={
                    "type": type(exc).__name__,
                    "message": str(exc),
                    "traceback": traceback.format_exc(),
                },
            ) from exc
        finally:
            self._inflight.discard(token)

        text = format_tool_result(result)
        content = TextContent(type="text", text=text)
        return {"content": [content.model_dump(exclude_none=True)]}


def _resolve_call(
    params: Params,
) -> tuple[str | None, str | None, dict[str, JsonValue]]:
    """Pull tool name, command and command params out of a call payload.

    Accepted shapes::

        {"tool": T, "command": C, "params": P}
        {"name": T, "arguments": {"command": C, "params": P}}
        {"name": T, "arguments": {"command": C, ...flat params}}
    """
    tool_name = params.get("tool") or params.get("name")
    arguments = params.get("params") or params.get("arguments") or {}
    if not isinstance(arguments, dict):
        arguments = {}
    command = params.get("command") or arguments.get("command")
    nested = arguments.get("params")
    tool_params = nested if isinstance(nested, dict) else arguments
    return (
        tool_name if isinstance(tool_name, str) else None,
        command if isinstance(command, str) else None,
        tool_params,
    )


def _part_text(part: object) -> str:
    if isinstance(part, Mapping):
        value = part.get("value", part.get("text"))
    else:
        value = getattr(part, "value", None)
        if value is None:
            value = getattr(part, "text", None)
    return "" if value is None else str(value)


def format_tool_result(result: object) -> str:
    """Reduce a tool's return value to display text.

    The payload is taken from ``output`` or ``content`` when present.
    Content parts contribute their ``value``/``text``. Text that decodes as
    JSON is re-encoded with indentation; anything else that is not text is
    JSON-encoded as is.
    """
    raw = result
    if isinstance(result, Mapping):
        if result.get("output") is not None:
            raw = result["output"]
        elif result.get("content") is not None:
            raw = result["content"]
    else:
        for attr in ("output", "content"):
            value = getattr(result, attr, None)
            if value is not None:
                raw = value
                break

    if isinstance(raw, Mapping) and isinstance(raw.get("content"), list):
        parts: list[object] | None = raw["content"]
    elif isinstance(raw, list):
        parts = raw
    else:
        parts = None

    text: str | None = None
    if parts:
        text = "".join(_part_text(part) for part in parts)
    elif isinstance(raw, str):
        text = raw

    if not text:
        return json.dumps(raw, default=str)

    try:
        parsed = json.loads(text)
    except json.JSONDecodeError:
        return text
    if isinstance(parsed, str):
        return parsed
    return json.dumps(parsed, indent=2)
