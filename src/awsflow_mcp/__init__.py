"""awsflow-mcp: MCP bridge exposing the Awsflow tool registry over JSON-RPC."""

import logging
import os
import warnings

# Configure log level from environment variable
# Users can set AWSFLOW_MCP_LOG_LEVEL to DEBUG, INFO, WARNING, ERROR, or CRITICAL
# Default is WARNING (suppresses debug/info logs)
_VALID_LOG_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
_log_level_env = os.getenv("AWSFLOW_MCP_LOG_LEVEL")
_log_level_str = (_log_level_env or "WARNING").upper()

if _log_level_str not in _VALID_LOG_LEVELS:
    warnings.warn(
        f"Invalid AWSFLOW_MCP_LOG_LEVEL='{_log_level_str}'. "
        f"Valid values: DEBUG, INFO, WARNING, ERROR, CRITICAL. Using WARNING.",
        stacklevel=1,
    )
    _log_level_str = "WARNING"

_logger = logging.getLogger("awsflow_mcp")
_logger.setLevel(getattr(logging, _log_level_str))

# Add handler only when env var is explicitly set and no handler exists yet
if _log_level_env is not None and not _logger.handlers:
    _handler = logging.StreamHandler()
    _handler.setFormatter(
        logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")
    )
    _logger.addHandler(_handler)

from awsflow_mcp.bridge import BridgeServer  # noqa: E402
from awsflow_mcp.config import McpConfig, McpState, effective_cap  # noqa: E402
from awsflow_mcp.dispatcher import Dispatcher, format_tool_result  # noqa: E402
from awsflow_mcp.exceptions import (  # noqa: E402
    AwsflowMcpError,
    BridgeStartupError,
    ConfigError,
    ContextNotReadyError,
    InvalidParamsError,
    InvalidRequestError,
    MethodNotFoundError,
    ParseError,
    ResourceNotFoundError,
    RpcError,
    ToolExecutionError,
    ToolMetadataError,
    ToolNotEnabledError,
    UserCancelledError,
)
from awsflow_mcp.guard import (  # noqa: E402
    MUTATING_VERBS,
    ConfirmationGate,
    approve_all,
    deny_all,
    needs_confirmation,
)
from awsflow_mcp.manager import SessionManager  # noqa: E402
from awsflow_mcp.protocol import DEFAULT_HOST, DEFAULT_PORT  # noqa: E402
from awsflow_mcp.registry import (  # noqa: E402
    CancellationToken,
    Tool,
    ToolRecord,
    ToolRegistry,
    load_tool_metadata,
)
from awsflow_mcp.resources import DEFAULT_RESOURCES, ResourceDocument  # noqa: E402
from awsflow_mcp.session import Session, SocketChannel, TerminalChannel  # noqa: E402
from awsflow_mcp.types import BridgeMetrics, BridgeStatus  # noqa: E402

__all__ = [
    "SessionManager",
    "BridgeServer",
    "Dispatcher",
    "Session",
    "SocketChannel",
    "TerminalChannel",
    "McpConfig",
    "McpState",
    "effective_cap",
    "format_tool_result",
    "DEFAULT_HOST",
    "DEFAULT_PORT",
    "BridgeMetrics",
    "BridgeStatus",
    # Tools
    "Tool",
    "ToolRecord",
    "ToolRegistry",
    "CancellationToken",
    "load_tool_metadata",
    "ResourceDocument",
    "DEFAULT_RESOURCES",
    # Confirmation
    "MUTATING_VERBS",
    "ConfirmationGate",
    "needs_confirmation",
    "approve_all",
    "deny_all",
    # Exceptions
    "AwsflowMcpError",
    "ConfigError",
    "ToolMetadataError",
    "BridgeStartupError",
    "RpcError",
    "ParseError",
    "InvalidRequestError",
    "MethodNotFoundError",
    "InvalidParamsError",
    "ContextNotReadyError",
    "ToolNotEnabledError",
    "ResourceNotFoundError",
    "UserCancelledError",
    "ToolExecutionError",
]
