"""Custom exceptions for awsflow-mcp."""

from mcp.types import (
    INTERNAL_ERROR,
    INVALID_PARAMS,
    INVALID_REQUEST,
    METHOD_NOT_FOUND,
    PARSE_ERROR,
)

# Application error codes (JSON-RPC reserves -32000..-32099 for servers)
CONTEXT_NOT_READY = -32000
TOOL_NOT_ENABLED = -32001
RESOURCE_NOT_FOUND = -32002
USER_CANCELLED = -32003


class AwsflowMcpError(Exception):
    """Base exception for awsflow-mcp."""


class ConfigError(AwsflowMcpError):
    """Raised when a configuration value is rejected."""


class ToolMetadataError(AwsflowMcpError):
    """Raised when tool metadata cannot be loaded or validated."""


class BridgeStartupError(AwsflowMcpError):
    """Raised when the bridge listener cannot bind its address.

    Attributes:
        host: Host the bridge tried to bind.
        port: Port the bridge tried to bind.
    """

    def __init__(self, message: str, *, host: str, port: int) -> None:
        super().__init__(message)
        self.host = host
        self.port = port


class RpcError(AwsflowMcpError):
    """An error that is reported to the client as a JSON-RPC error object.

    Subclasses fix ``code`` so that clients can tell the failure classes
    apart without parsing messages.

    Attributes:
        code: JSON-RPC error code.
        data: Optional auxiliary diagnostic data.
    """

    code: int = INTERNAL_ERROR

    def __init__(self, message: str, *, data: object = None) -> None:
        super().__init__(message)
        self.message = message
        self.data = data


class ParseError(RpcError):
    """Raised when a line is not valid JSON."""

    code = PARSE_ERROR


class InvalidRequestError(RpcError):
    """Raised when a message is valid JSON but not a request object.

    Attributes:
        request_id: The ``id`` found in the message, if any.
        notification: True when the message is an object without an ``id``.
            Such messages are never answered.
    """

    code = INVALID_REQUEST

    def __init__(
        self,
        message: str,
        *,
        request_id: str | int | None = None,
        notification: bool = False,
    ) -> None:
        super().__init__(message)
        self.request_id = request_id
        self.notification = notification


class MethodNotFoundError(RpcError):
    """Raised when the requested method is not served."""

    code = METHOD_NOT_FOUND


class InvalidParamsError(RpcError):
    """Raised when a call is missing its tool name or command."""

    code = INVALID_PARAMS


class ContextNotReadyError(RpcError):
    """Raised when the host credential/session context is not initialized."""

    code = CONTEXT_NOT_READY


class ToolNotEnabledError(RpcError):
    """Raised when a tool is not part of the session's enabled set.

    Attributes:
        tool_name: Name of the tool the client asked for.
    """

    code = TOOL_NOT_ENABLED

    def __init__(self, tool_name: str) -> None:
        super().__init__(f"Tool {tool_name} is not enabled for MCP")
        self.tool_name = tool_name


class ResourceNotFoundError(RpcError):
    """Raised when a resource URI is unknown."""

    code = RESOURCE_NOT_FOUND

    def __init__(self, uri: str) -> None:
        super().__init__(f"Resource not found: {uri}", data={"uri": uri})
        self.uri = uri


class UserCancelledError(RpcError):
    """Raised when the user declines a mutating command.

    Attributes:
        tool_name: Tool the command belongs to.
        command: The declined command.
    """

    code = USER_CANCELLED

    def __init__(self, tool_name: str, command: str) -> None:
        super().__init__(
            "User cancelled action command",
            data={"tool": tool_name, "command": command},
        )
        self.tool_name = tool_name
        self.command = command


class ToolExecutionError(RpcError):
    """Raised when a tool's invoke call fails."""

    code = INTERNAL_ERROR
