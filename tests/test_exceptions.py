"""Tests for awsflow_mcp.exceptions module."""

import pytest

from awsflow_mcp.exceptions import (
    CONTEXT_NOT_READY,
    RESOURCE_NOT_FOUND,
    TOOL_NOT_ENABLED,
    USER_CANCELLED,
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


class TestAwsflowMcpError:
    """Tests for the base exception."""

    def test_is_base_exception(self) -> None:
        assert issubclass(AwsflowMcpError, Exception)

    def test_exception_hierarchy(self) -> None:
        """All custom exceptions should inherit from AwsflowMcpError."""
        for cls in (ConfigError, ToolMetadataError, BridgeStartupError, RpcError):
            assert issubclass(cls, AwsflowMcpError)


class TestRpcErrorCodes:
    """Each RPC failure class carries its own JSON-RPC code."""

    @pytest.mark.parametrize(
        ("error", "code"),
        [
            (ParseError("bad"), -32700),
            (InvalidRequestError("bad"), -32600),
            (MethodNotFoundError("bad"), -32601),
            (InvalidParamsError("bad"), -32602),
            (ToolExecutionError("bad"), -32603),
            (RpcError("bad"), -32603),
            (ContextNotReadyError("bad"), CONTEXT_NOT_READY),
            (ToolNotEnabledError("S3Tool"), TOOL_NOT_ENABLED),
            (ResourceNotFoundError("awsflow://x"), RESOURCE_NOT_FOUND),
            (UserCancelledError("S3Tool", "DeleteBucket"), USER_CANCELLED),
        ],
    )
    def test_code(self, error: RpcError, code: int) -> None:
        assert error.code == code

    def test_application_codes_are_distinct(self) -> None:
        codes = [CONTEXT_NOT_READY, TOOL_NOT_ENABLED, RESOURCE_NOT_FOUND]
        codes.append(USER_CANCELLED)
        assert len(set(codes)) == 4


class TestRpcErrorAttributes:
    def test_message_and_data(self) -> None:
        error = RpcError("failed", data={"detail": 1})
        assert error.message == "failed"
        assert error.data == {"detail": 1}
        assert str(error) == "failed"

    def test_invalid_request_keeps_request_id(self) -> None:
        error = InvalidRequestError("bad", request_id=7)
        assert error.request_id == 7

    def test_tool_not_enabled_message(self) -> None:
        error = ToolNotEnabledError("S3Tool")
        assert error.message == "Tool S3Tool is not enabled for MCP"
        assert error.tool_name == "S3Tool"

    def test_user_cancelled_data(self) -> None:
        error = UserCancelledError("S3Tool", "DeleteBucket")
        assert error.message == "User cancelled action command"
        assert error.data == {"tool": "S3Tool", "command": "DeleteBucket"}

    def test_resource_not_found_data(self) -> None:
        error = ResourceNotFoundError("awsflow://missing")
        assert error.data == {"uri": "awsflow://missing"}
        assert "awsflow://missing" in error.message


class TestBridgeStartupError:
    def test_keeps_address(self) -> None:
        error = BridgeStartupError("in use", host="127.0.0.1", port=37114)
        assert error.host == "127.0.0.1"
        assert error.port == 37114

    def test_can_be_raised_with_message(self) -> None:
        with pytest.raises(AwsflowMcpError, match="in use"):
            raise BridgeStartupError("in use", host="h", port=1)
