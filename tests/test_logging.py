"""Tests for logging configuration and log points.

The package log level is read from AWSFLOW_MCP_LOG_LEVEL when awsflow_mcp is
first imported.
"""

from __future__ import annotations

import asyncio
import logging
import sys
from collections.abc import Generator
from pathlib import Path
from types import ModuleType
from typing import TYPE_CHECKING
from unittest.mock import MagicMock

import pytest

if TYPE_CHECKING:
    from pytest import LogCaptureFixture

    from awsflow_mcp.registry import ToolRegistry


def _forget_package() -> None:
    for key in [key for key in sys.modules if key.startswith("awsflow_mcp")]:
        del sys.modules[key]


@pytest.fixture
def restore_modules() -> Generator[None, None, None]:
    """Save and restore awsflow_mcp modules around a re-import."""
    original_modules: dict[str, ModuleType] = {
        key: mod for key, mod in sys.modules.items() if key.startswith("awsflow_mcp")
    }
    logger = logging.getLogger("awsflow_mcp")
    original_level = logger.level

    yield

    _forget_package()
    sys.modules.update(original_modules)
    logger.handlers.clear()
    logger.setLevel(original_level)


class TestLogLevelConfiguration:
    """Tests for AWSFLOW_MCP_LOG_LEVEL environment variable."""

    @pytest.fixture(autouse=True)
    def _restore_modules(self, restore_modules: None) -> None:
        """Auto-use the shared restore_modules fixture."""

    @pytest.mark.parametrize(
        ("value", "level"),
        [("DEBUG", logging.DEBUG), ("info", logging.INFO), ("ERROR", logging.ERROR)],
    )
    def test_log_level_set_from_env(
        self, monkeypatch: pytest.MonkeyPatch, value: str, level: int
    ) -> None:
        _forget_package()
        monkeypatch.setenv("AWSFLOW_MCP_LOG_LEVEL", value)

        import awsflow_mcp  # noqa: F401

        assert logging.getLogger("awsflow_mcp").level == level

    def test_log_level_defaults_to_warning(
        self, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        _forget_package()
        monkeypatch.delenv("AWSFLOW_MCP_LOG_LEVEL", raising=False)

        import awsflow_mcp  # noqa: F401

        assert logging.getLogger("awsflow_mcp").level == logging.WARNING

    def test_invalid_value_falls_back_to_warning_with_warning(
        self, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        import warnings

        _forget_package()
        monkeypatch.setenv("AWSFLOW_MCP_LOG_LEVEL", "LOUD")

        with warnings.catch_warnings(record=True) as w:
            warnings.simplefilter("always")
            import awsflow_mcp  # noqa: F401

            assert len(w) == 1
            assert "Invalid AWSFLOW_MCP_LOG_LEVEL" in str(w[0].message)
            assert "LOUD" in str(w[0].message)

        assert logging.getLogger("awsflow_mcp").level == logging.WARNING

    def test_handler_added_only_when_env_set(
        self, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        logger = logging.getLogger("awsflow_mcp")
        logger.handlers.clear()
        _forget_package()
        monkeypatch.delenv("AWSFLOW_MCP_LOG_LEVEL", raising=False)

        import awsflow_mcp  # noqa: F401

        assert logger.handlers == []

        _forget_package()
        monkeypatch.setenv("AWSFLOW_MCP_LOG_LEVEL", "DEBUG")

        import awsflow_mcp  # noqa: F401, F811

        assert len(logger.handlers) == 1
        assert isinstance(logger.handlers[0], logging.StreamHandler)


class TestLogPoints:
    """Tests for log records emitted at session and bridge boundaries."""

    @pytest.mark.asyncio
    async def test_bridge_logs_queueing(
        self, registry: ToolRegistry, caplog: LogCaptureFixture
    ) -> None:
        from awsflow_mcp.bridge import BridgeServer
        from awsflow_mcp.dispatcher import Dispatcher

        bridge = BridgeServer(
            lambda: Dispatcher(registry, registry.names()),
            lambda: 1,
            lambda: 1,
            host="127.0.0.1",
            port=0,
            notify=MagicMock(),
        )
        with caplog.at_level(logging.INFO, logger="awsflow_mcp.bridge"):
            await bridge.start()
            try:
                host, port = bridge.bound_address
                reader, writer = await asyncio.open_connection(host, port)
                await asyncio.wait_for(reader.readline(), 3)
                writer.close()
            finally:
                await bridge.stop()

        assert any(
            "capacity reached (1)" in record.message for record in caplog.records
        ), f"Expected queueing log not found. Records: {caplog.messages}"

    @pytest.mark.asyncio
    async def test_session_logs_lifecycle(
        self, registry: ToolRegistry, caplog: LogCaptureFixture
    ) -> None:
        from awsflow_mcp.dispatcher import Dispatcher
        from awsflow_mcp.session import Session, TerminalChannel

        session = Session(
            7, "local", TerminalChannel(), Dispatcher(registry, registry.names())
        )
        with caplog.at_level(logging.INFO, logger="awsflow_mcp.session"):
            session.start()
            await asyncio.sleep(0)
            await session.close()

        assert "MCP session 7 (local) started" in caplog.messages
        assert "MCP session 7 (local) closed" in caplog.messages

    @pytest.mark.asyncio
    async def test_tool_failure_is_logged(
        self, registry: ToolRegistry, caplog: LogCaptureFixture
    ) -> None:
        from awsflow_mcp.dispatcher import Dispatcher

        dispatcher = Dispatcher(registry, registry.names())
        with caplog.at_level(logging.ERROR, logger="awsflow_mcp.dispatcher"):
            await dispatcher.handle(
                {
                    "jsonrpc": "2.0",
                    "id": 1,
                    "method": "tools/call",
                    "params": {"tool": "FailTool", "command": "GetThing"},
                }
            )

        assert any(
            "Tool 'FailTool' command 'GetThing' failed" in record.message
            for record in caplog.records
        )

    def test_unreadable_state_is_logged(
        self, tmp_path: Path, caplog: LogCaptureFixture
    ) -> None:

        from awsflow_mcp.config import McpConfig

        path = tmp_path / "state.json"
        path.write_text("not json")
        with caplog.at_level(logging.WARNING, logger="awsflow_mcp.config"):
            McpConfig(path).load()

        assert any(record.levelno == logging.WARNING for record in caplog.records)
