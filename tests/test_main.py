from __future__ import annotations

import logging
import signal
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest

from run_when.main import build_parser, main, setup_logging
from run_when.source import WatchError


def test_setup_logging(tmp_path: Path) -> None:
    log_file = tmp_path / "test.log"
    setup_logging("DEBUG", str(log_file))

    logger = logging.getLogger("test_logger")
    logger.debug("Test message")

    assert log_file.exists()
    assert "Test message" in log_file.read_text()


def test_setup_logging_invalid() -> None:
    with pytest.raises(ValueError, match="Invalid log level"):
        setup_logging("INVALID_LEVEL", None)


def test_setup_logging_creates_dir(tmp_path: Path) -> None:
    log_file = tmp_path / "subdir" / "logs" / "test.log"

    setup_logging("INFO", str(log_file))

    assert log_file.parent.exists()
    assert log_file.exists()


def test_setup_logging_file_error(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    """Test that setup_logging handles file access errors gracefully."""
    log_file = tmp_path / "log_dir"
    log_file.mkdir()

    setup_logging("INFO", str(log_file))

    captured = capsys.readouterr()
    assert "Warning: Failed to setup log file" in captured.err


def test_parser_short_flags() -> None:
    args = build_parser().parse_args(["-t", "2s", "-r", "-f", "src", "-c", "./build.sh"])

    assert args.debounce_period == "2s"
    assert args.recursive is True
    assert args.watch_path == "src"
    assert args.command_file == "./build.sh"
    assert args.capture_output is None


def test_parser_defaults_defer_to_config() -> None:
    args = build_parser().parse_args([])

    assert args.debounce_period is None
    assert args.recursive is None
    assert args.watch_path is None
    assert args.command_file is None
    assert args.command_timeout is None


def test_parser_long_flags() -> None:
    args = build_parser().parse_args(
        ["--debounce-period", "1s", "--recursive", "--file", "a", "--command-file", "b",
         "--no-capture", "--command-timeout", "30s"]
    )

    assert args.recursive is True
    assert args.capture_output is False
    assert args.command_timeout == "30s"


@patch("run_when.main.RunWhenWatcher")
def test_malformed_debounce_period_exits_before_watching(
    mock_watcher_cls: MagicMock, temp_dir: Path, clean_env: None
) -> None:
    with pytest.raises(SystemExit) as exc_info:
        main(["-t", "abc", "-f", str(temp_dir), "-c", "./build.sh"])

    assert exc_info.value.code != 0
    assert "Invalid debounce period" in str(exc_info.value.code)
    mock_watcher_cls.assert_not_called()


@patch("run_when.main.RunWhenWatcher")
def test_missing_watch_path_exits(mock_watcher_cls: MagicMock, temp_dir: Path, clean_env: None) -> None:
    with pytest.raises(SystemExit) as exc_info:
        main(["-f", str(temp_dir / "missing"), "-c", "./build.sh"])

    assert "Configuration Error" in str(exc_info.value.code)
    mock_watcher_cls.assert_not_called()


@patch("run_when.main.threading.Event")
@patch("run_when.main.RunWhenWatcher")
@patch("run_when.main.setup_logging")
@patch("signal.signal")
def test_main_execution(
    mock_signal: MagicMock,
    mock_setup_logging: MagicMock,
    mock_watcher_cls: MagicMock,
    mock_event_cls: MagicMock,
    temp_dir: Path,
    clean_env: None,
) -> None:
    mock_event_cls.return_value.wait.return_value = True
    watcher = mock_watcher_cls.return_value
    watcher.error = None
    watcher.get_statistics.return_value = {
        "events_detected": 0, "triggers": 0, "commands_run": 0, "command_failures": 0,
    }

    main(["-t", "1s", "-r", "-f", str(temp_dir), "-c", "./build.sh"])

    mock_setup_logging.assert_called_once_with("INFO", None)
    target, window, runner = mock_watcher_cls.call_args[0]
    assert target.path == temp_dir
    assert target.recursive is True
    assert window == 1.0
    assert runner.spec.executable == "./build.sh"
    assert mock_watcher_cls.call_args.kwargs["on_exit"] == mock_event_cls.return_value.set

    watcher.start.assert_called_once()
    watcher.stop.assert_called_once()

    registered = [args[0] for args, _ in mock_signal.call_args_list]
    assert signal.SIGINT in registered
    assert signal.SIGTERM in registered


@patch("run_when.main.threading.Event")
@patch("run_when.main.RunWhenWatcher")
@patch("run_when.main.setup_logging")
@patch("signal.signal")
def test_main_exits_nonzero_on_watch_failure(
    mock_signal: MagicMock,
    mock_setup_logging: MagicMock,
    mock_watcher_cls: MagicMock,
    mock_event_cls: MagicMock,
    temp_dir: Path,
    clean_env: None,
) -> None:
    mock_event_cls.return_value.wait.return_value = True
    watcher = mock_watcher_cls.return_value
    watcher.error = WatchError("Watched path no longer exists")
    watcher.get_statistics.return_value = {
        "events_detected": 3, "triggers": 1, "commands_run": 1, "command_failures": 0,
    }

    with pytest.raises(SystemExit) as exc_info:
        main(["-f", str(temp_dir), "-c", "./build.sh"])

    assert exc_info.value.code == 1
    watcher.stop.assert_called_once()


@patch("run_when.main.RunWhenWatcher")
@patch("run_when.main.setup_logging")
@patch("signal.signal")
def test_main_exits_nonzero_when_watch_cannot_start(
    mock_signal: MagicMock,
    mock_setup_logging: MagicMock,
    mock_watcher_cls: MagicMock,
    temp_dir: Path,
    clean_env: None,
) -> None:
    mock_watcher_cls.return_value.start.side_effect = WatchError("Cannot watch")

    with pytest.raises(SystemExit) as exc_info:
        main(["-f", str(temp_dir), "-c", "./build.sh"])

    assert exc_info.value.code == 1
