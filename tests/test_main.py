"""Tests for busrelay.__main__ entrypoint functions."""

from __future__ import annotations

import asyncio
import re
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest

from busrelay.__main__ import (
    EXIT_CONFIG,
    EXIT_FAULT,
    EXIT_INTERRUPTED,
    EXIT_OK,
    exit_code_for,
    main,
    reload_config,
    resolve_settings,
    setup_logging,
)
from busrelay.config import Config
from busrelay.core.errors import (
    BusClosed,
    BusPublishFailed,
    ConfigurationError,
    FrameTruncated,
    TransportClosed,
)
from busrelay.gateway import Termination

# ---------------------------------------------------------------------------
# setup_logging
# ---------------------------------------------------------------------------


class TestSetupLogging:
    def test_removes_default_handler_and_adds_stderr(self):
        """setup_logging configures loguru on stderr with the correct level."""
        import sys

        with patch("busrelay.__main__.logger") as mock_logger, patch.dict("os.environ", {}, clear=True):
            setup_logging(verbose=False)
            mock_logger.remove.assert_called_once()
            mock_logger.add.assert_called_once()
            call_args = mock_logger.add.call_args
            assert call_args[0][0] is sys.stderr
            assert call_args[1]["level"] == "INFO"

    def test_verbose_sets_debug_level(self):
        with patch("busrelay.__main__.logger") as mock_logger:
            setup_logging(verbose=True)
            assert mock_logger.add.call_args[1]["level"] == "DEBUG"

    def test_log_level_env(self):
        with patch("busrelay.__main__.logger") as mock_logger, patch.dict("os.environ", {"LOG_LEVEL": "warning"}):
            setup_logging()
            assert mock_logger.add.call_args[1]["level"] == "WARNING"

    def test_format_includes_time_and_level(self):
        with patch("busrelay.__main__.logger") as mock_logger:
            setup_logging()
            fmt = mock_logger.add.call_args[1]["format"]
            assert "{time:" in fmt
            assert "{level:" in fmt
            assert "{message}" in fmt


# ---------------------------------------------------------------------------
# reload_config / resolve_settings
# ---------------------------------------------------------------------------


class TestReloadConfig:
    def test_reload_config_calls_load_and_cfg_reload(self, tmp_path):
        config_file = tmp_path / "busrelay.yaml"
        fake_data = {"service_name": "native-host"}
        with (
            patch("busrelay.__main__.load_config_with_env", return_value=fake_data) as mock_load,
            patch("busrelay.__main__.cfg") as mock_cfg,
        ):
            result = reload_config(config_file)

        mock_load.assert_called_once_with(config_file)
        mock_cfg.reload.assert_called_once_with(fake_data)
        assert result is mock_cfg


class TestResolveSettings:
    def _config(self, data=None):
        return Config(data or {})

    def test_cli_identity_wins(self):
        settings = resolve_settings(self._config({"identity": "from-file"}), "from-cli")
        assert settings.identity == "from-cli"

    def test_config_identity_without_cli(self):
        assert resolve_settings(self._config({"identity": "from-file"})).identity == "from-file"

    def test_invalid_cli_identity(self):
        with pytest.raises(ConfigurationError):
            resolve_settings(self._config(), "amq.reserved")


# ---------------------------------------------------------------------------
# exit codes
# ---------------------------------------------------------------------------


class TestExitCodeFor:
    @pytest.mark.parametrize(
        ("result", "expected"),
        [
            (Termination("local_closed", TransportClosed("eof")), EXIT_OK),
            (Termination("bus_closed", BusClosed("closed")), EXIT_OK),
            (FrameTruncated("short read"), EXIT_FAULT),
            (BusPublishFailed("gone"), EXIT_FAULT),
            (ConfigurationError("bad"), EXIT_CONFIG),
            (KeyboardInterrupt(), EXIT_INTERRUPTED),
            (asyncio.CancelledError(), EXIT_INTERRUPTED),
        ],
    )
    def test_mapping(self, result, expected):
        assert exit_code_for(result) == expected


# ---------------------------------------------------------------------------
# main
# ---------------------------------------------------------------------------


def _run_main(argv, *, run_result=None, run_error=None, config_error=None):
    """Run main() with stdio, logging and the event loop patched out."""
    fake_run = MagicMock(side_effect=run_error, return_value=run_result)
    fake_reload = MagicMock(side_effect=config_error)
    with (
        patch("busrelay.__main__.setup_logging"),
        patch("busrelay.__main__.reload_config", fake_reload),
        patch("busrelay.__main__.resolve_settings", return_value=MagicMock(identity="abc-123")),
        patch("busrelay.__main__._run"),
        patch("busrelay.__main__.asyncio.run", fake_run),
        patch.dict("sys.modules", {"uvloop": None}),
        pytest.raises(SystemExit) as exc_info,
    ):
        main(argv)
    return exc_info.value.code, fake_reload


class TestMain:
    def test_clean_close_exits_zero(self):
        code, _ = _run_main([], run_result=Termination("local_closed", TransportClosed("eof")))
        assert code == EXIT_OK

    def test_fault_exits_one(self):
        code, _ = _run_main([], run_error=BusPublishFailed("gone"))
        assert code == EXIT_FAULT

    def test_interrupt_exits_130(self):
        code, _ = _run_main([], run_error=KeyboardInterrupt())
        assert code == EXIT_INTERRUPTED

    def test_config_error_exits_two(self):
        code, _ = _run_main([], config_error=ConfigurationError("bad byte order"))
        assert code == EXIT_CONFIG

    def test_browser_arguments_ignored(self, tmp_path):
        # Arrange
        config = tmp_path / "relay.yaml"
        argv = ["-c", str(config), "chrome-extension://abcdefg/"]

        # Act
        code, fake_reload = _run_main(argv, run_result=Termination("bus_closed", BusClosed("closed")))

        # Assert
        assert code == EXIT_OK
        fake_reload.assert_called_once_with(config)

    def test_malformed_yaml_exits_two(self, tmp_path):
        # Arrange
        bad = tmp_path / "busrelay.yaml"
        bad.write_text("broker_url: [unclosed\n")

        # Act
        with (
            patch("busrelay.__main__.setup_logging"),
            patch("busrelay.config.loader.load_dotenv"),
            patch.dict("os.environ", {}, clear=True),
            patch("busrelay.__main__._run") as mock_run,
            pytest.raises(SystemExit) as exc_info,
        ):
            main(["-c", str(bad)])

        # Assert
        assert exc_info.value.code == EXIT_CONFIG
        mock_run.assert_not_called()


class TestPackaging:
    def test_uvloop_extra_has_run_api(self):
        """uvloop.run(), used by main(), first shipped in uvloop 0.18."""
        pyproject = Path(__file__).resolve().parents[1] / "pyproject.toml"
        match = re.search(r'"uvloop>=(\d+)\.(\d+)', pyproject.read_text())
        assert match is not None
        assert (int(match.group(1)), int(match.group(2))) >= (0, 18)
