"""Tests for persisted bridge configuration."""

import json
import os
import stat
from pathlib import Path

import pytest

from awsflow_mcp.config import (
    DEFAULT_SESSION_CAP,
    HOST_ENV_VAR,
    PORT_ENV_VAR,
    STATE_FILE_ENV_VAR,
    McpConfig,
    McpState,
    default_state_path,
    effective_cap,
    normalize_port,
)
from awsflow_mcp.exceptions import ConfigError
from awsflow_mcp.protocol import DEFAULT_HOST, DEFAULT_PORT


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in (HOST_ENV_VAR, PORT_ENV_VAR, STATE_FILE_ENV_VAR):
        monkeypatch.delenv(name, raising=False)


class TestEffectiveCap:
    @pytest.mark.parametrize(
        ("cap", "expected"),
        [(None, 20), (0, 20), (1, 1), (5, 5), (-3, 1)],
    )
    def test_effective_cap(self, cap: int | None, expected: int) -> None:
        assert effective_cap(cap) == expected


class TestNormalizePort:
    @pytest.mark.parametrize(
        ("value", "expected"),
        [
            (8080, 8080),
            ("8080", 8080),
            (" 9000 ", 9000),
            (0, 0),
            (65536, None),
            (-1, None),
            ("abc", None),
            (None, None),
            (True, None),
        ],
    )
    def test_normalize(self, value: object, expected: int | None) -> None:
        assert normalize_port(value) == expected


class TestMcpStateDefaults:
    def test_defaults(self) -> None:
        state = McpState()
        assert state.enabled is False
        assert state.session_cap == DEFAULT_SESSION_CAP
        assert state.disabled_tools == []
        assert state.host == DEFAULT_HOST
        assert state.port == DEFAULT_PORT

    def test_env_overrides_endpoint(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv(HOST_ENV_VAR, "0.0.0.0")
        monkeypatch.setenv(PORT_ENV_VAR, "40000")
        state = McpState()
        assert state.host == "0.0.0.0"
        assert state.port == 40000

    def test_invalid_env_port_falls_back(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv(PORT_ENV_VAR, "not-a-port")
        assert McpState().port == DEFAULT_PORT

    def test_accepts_camel_case(self) -> None:
        state = McpState.model_validate(
            {"sessionCap": 3, "disabledTools": ["S3Tool"], "port": "1234"}
        )
        assert state.session_cap == 3
        assert state.disabled_tools == ["S3Tool"]
        assert state.port == 1234

    def test_empty_host_and_bad_port_fall_back(self) -> None:
        state = McpState.model_validate({"host": "", "port": 70000})
        assert state.host == DEFAULT_HOST
        assert state.port == DEFAULT_PORT

    def test_cap_property(self) -> None:
        assert McpState(session_cap=0).cap == 20


class TestMcpConfigInMemory:
    def test_updates_are_kept(self) -> None:
        config = McpConfig()
        config.update_enabled(True)
        config.update_session_cap(2)
        config.update_disabled_tools(["EC2Tool"])
        config.update_endpoint("localhost", 4000)

        state = config.load()
        assert state.enabled is True
        assert state.session_cap == 2
        assert state.disabled_tools == ["EC2Tool"]
        assert (state.host, state.port) == ("localhost", 4000)

    def test_load_returns_a_copy(self) -> None:
        config = McpConfig()
        config.load().disabled_tools.append("S3Tool")
        assert config.load().disabled_tools == []

    def test_update_host_and_port(self) -> None:
        config = McpConfig()
        config.update_host("")
        config.update_port(5555)
        assert config.load().host == DEFAULT_HOST
        assert config.load().port == 5555

    @pytest.mark.parametrize("value", ["3", 2.5, True])
    def test_rejects_non_integer_cap(self, value: object) -> None:
        with pytest.raises(ConfigError):
            McpConfig().update_session_cap(value)  # type: ignore[arg-type]


class TestMcpConfigFile:
    def test_missing_file_gives_defaults(self, tmp_path: Path) -> None:
        config = McpConfig(tmp_path / "state.json")
        assert config.load() == McpState()

    def test_persists_in_camel_case(self, tmp_path: Path) -> None:
        path = tmp_path / "nested" / "state.json"
        McpConfig(path).update_session_cap(4)

        raw = json.loads(path.read_text())
        assert raw["sessionCap"] == 4
        assert "disabledTools" in raw
        assert McpConfig(path).load().session_cap == 4

    def test_file_is_owner_only(self, tmp_path: Path) -> None:
        path = tmp_path / "state.json"
        McpConfig(path).update_enabled(True)
        mode = stat.S_IMODE(os.stat(path).st_mode)
        assert mode == 0o600

    def test_corrupt_file_gives_defaults(
        self, tmp_path: Path, caplog: pytest.LogCaptureFixture
    ) -> None:
        path = tmp_path / "state.json"
        path.write_text("{broken")
        assert McpConfig(path).load() == McpState()
        assert "Ignoring unreadable MCP state file" in caplog.text

    def test_non_object_file_gives_defaults(self, tmp_path: Path) -> None:
        path = tmp_path / "state.json"
        path.write_text("[1, 2]")
        assert McpConfig(path).load() == McpState()

    def test_state_path_from_env(
        self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.setenv(STATE_FILE_ENV_VAR, str(tmp_path / "s.json"))
        assert default_state_path() == tmp_path / "s.json"
        assert McpConfig.from_environment().path == tmp_path / "s.json"

    def test_default_state_path(self) -> None:
        assert default_state_path() == Path.home() / ".awsflow" / "mcp_state.json"
