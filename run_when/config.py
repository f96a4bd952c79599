"""Configuration management for run-when.

This module handles loading configuration from defaults, config files, environment variables,
and CLI arguments. It enforces a strict priority order and validates every value before the
watch starts, so a bad setting is a startup error rather than a runtime surprise.

The configuration is aggregated into a :class:`Config` dataclass, which serves as the
single source of truth for application settings.

Priority Order:
    1. CLI Arguments
    2. Environment Variables
    3. Config File (``[run-when]`` section)
    4. Defaults

Supported Environment Variables:
    * ``RUN_WHEN_FILE``: The file or directory to watch.
    * ``RUN_WHEN_COMMAND_FILE``: The executable to run.
    * ``RUN_WHEN_DEBOUNCE_PERIOD``: Debounce period (e.g. ``600ms``, ``2s``).
    * ``RUN_WHEN_RECURSIVE``: Watch directories recursively.
    * ``RUN_WHEN_LOG_FILE``: Path to the log file.
    * ``RUN_WHEN_LOG_LEVEL``: Logging level.
    * ``RUN_WHEN_CAPTURE_OUTPUT``: Capture command output (default true).
    * ``RUN_WHEN_COMMAND_TIMEOUT``: Kill the command after this duration.
"""

from __future__ import annotations

import logging
import os
import threading
from configparser import ConfigParser, Error as ConfigParserError
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any, Dict, List, Optional

from run_when.duration import parse_duration

logger = logging.getLogger(__name__)
logger.addHandler(logging.NullHandler())

__all__ = ["Config", "load_config"]

APP_NAME = "run-when"
DEFAULT_DEBOUNCE_PERIOD = "600ms"

_TRUE_VALUES = ("true", "1", "yes", "on")
_FALSE_VALUES = ("false", "0", "no", "off")


@dataclass
class Config:
    """Define the application configuration structure.

    Attributes:
        watch_path (str): Absolute path of the watched file or directory.
        command_file (str): The executable run on each settled burst.
        debounce_period (str): The debounce period as given (e.g. "600ms").
        debounce_seconds (float): The parsed debounce period in seconds.
        recursive (bool): Watch directories recursively. Defaults to False.
        log_file (Optional[str]): Absolute path to the log file. Defaults to None.
        log_level (str): Logging level (e.g., INFO, DEBUG). Defaults to "INFO".
        capture_output (bool): Capture command stdout/stderr for the log. Defaults to True.
        command_timeout (Optional[float]): Seconds before a hung command is killed.
            Defaults to None (wait forever).
    """

    watch_path: str
    command_file: str
    debounce_period: str = DEFAULT_DEBOUNCE_PERIOD
    debounce_seconds: float = 0.6
    recursive: bool = False
    log_file: Optional[str] = None
    log_level: str = "INFO"
    capture_output: bool = True
    command_timeout: Optional[float] = None


def _get_config_file_paths() -> List[str]:
    """Return a list of potential config file paths in order of priority.

    Checks the following locations:
    1. Local `config.ini` (current working directory).
    2. `$XDG_CONFIG_HOME/run-when/config.ini` (Linux/macOS).
    3. `%APPDATA%\\run-when\\config.ini` (Windows).
    4. `~/.config/run-when/config.ini` (Fallback).

    Returns:
        List[str]: A list of file paths to check for configuration.
    """
    paths = ["config.ini"]

    xdg_config_home = os.environ.get("XDG_CONFIG_HOME")
    if xdg_config_home:
        paths.append(os.path.join(os.path.expanduser(xdg_config_home), APP_NAME, "config.ini"))
    elif os.name == "nt" and os.environ.get("APPDATA"):
        paths.append(os.path.join(os.path.expanduser(os.environ["APPDATA"]), APP_NAME, "config.ini"))
    else:
        paths.append(os.path.join(os.path.expanduser("~"), ".config", APP_NAME, "config.ini"))
    return paths


def _parse_bool(key: str, value: Any) -> bool:
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in _TRUE_VALUES:
        return True
    if text in _FALSE_VALUES:
        return False
    raise ValueError(f"Invalid boolean for {key}: {value}")


def _validate_watch_path(path_str: str) -> str:
    """Resolve the watch path and verify it can be watched.

    Args:
        path_str (str): The raw path string (``~`` is expanded).

    Returns:
        str: The resolved absolute path.

    Raises:
        ValueError: If the path does not exist or cannot be read.
    """
    path = Path(os.path.expanduser(path_str))
    try:
        resolved = path.resolve(strict=True)
    except FileNotFoundError as e:
        raise ValueError(f"Watch path not found: {path}") from e
    except (RuntimeError, OSError) as e:
        raise ValueError(f"Error resolving watch path {path}: {e}") from e

    if not (resolved.is_dir() or resolved.is_file()):
        raise ValueError(f"Invalid watch path (not a file or directory): {resolved}")
    if not os.access(resolved, os.R_OK):
        raise ValueError(f"Read permission denied for watch path: {resolved}")
    return str(resolved)


def _validate_log_path(path_str: str) -> str:
    """Resolve the log file path and verify it is writable.

    The parent directory is created if missing.

    Args:
        path_str (str): The raw path string (``~`` is expanded).

    Returns:
        str: The resolved absolute path.

    Raises:
        ValueError: If the file cannot be created or written.
    """
    resolved = Path(os.path.expanduser(path_str)).absolute()
    if resolved.exists() and not resolved.is_file():
        raise ValueError(f"Invalid path: Log file is not a regular file: {resolved}")
    try:
        resolved.parent.mkdir(parents=True, exist_ok=True)
        with resolved.open('a'):
            pass
    except PermissionError as e:
        raise ValueError(f"Write permission denied for log file: {resolved}") from e
    except OSError as e:
        raise ValueError(f"Cannot create log file: {e}") from e
    return str(resolved)


def load_config(args: Dict[str, Any]) -> Config:
    """Load and validate configuration with strict priority, returning a Config object.

    Aggregates configuration from multiple sources, resolving conflicts by
    prioritizing command-line arguments, then environment variables, then
    configuration files, and finally hardcoded defaults.

    Args:
        args (Dict[str, Any]): Dictionary of parsed CLI arguments from argparse.
            Keys should match Config attributes (e.g., 'watch_path', 'command_file').
            Values of None are ignored so lower-priority sources take effect.
            Typically obtained via ``vars(parser.parse_args())``.

    Returns:
        Config: The fully resolved and validated configuration object.

    Raises:
        ValueError: If the watch path or command is missing, the watch path cannot be
            watched, the debounce period or command timeout is malformed, or any other
            value is invalid.

    Examples:
        >>> config = load_config({"watch_path": ".", "command_file": "./build.sh"})
        >>> config.debounce_seconds
        0.6
        >>> load_config({"watch_path": ".", "command_file": "x", "debounce_period": "abc"})
        Traceback (most recent call last):
        ...
        ValueError: Invalid debounce period 'abc': Invalid duration: 'abc'
    """
    # 1. Defaults
    config_values: Dict[str, Any] = {
        "watch_path": None,
        "command_file": None,
        "debounce_period": DEFAULT_DEBOUNCE_PERIOD,
        "recursive": False,
        "log_file": None,
        "log_level": "INFO",
        "capture_output": True,
        "command_timeout": None,
    }

    # 2. Config File (simple INI support)
    for path in _get_config_file_paths():
        if os.path.isfile(path):
            logger.debug(f"Loading config from {path}")
            parser = ConfigParser(interpolation=None)
            try:
                parser.read(path, encoding="utf-8-sig")
                if APP_NAME in parser:
                    for key, value in parser[APP_NAME].items():
                        key = key.replace("-", "_")
                        if key not in config_values:
                            logger.warning(f"Ignoring unknown config key '{key}' in {path}")
                            continue
                        if value is not None and value != "":
                            config_values[key] = value
            except (ConfigParserError, UnicodeDecodeError, OSError) as e:
                logger.error(f"Failed to parse config file {path}: {e}")
            break

    # 3. Environment Variables
    env_map = {
        "RUN_WHEN_FILE": "watch_path",
        "RUN_WHEN_COMMAND_FILE": "command_file",
        "RUN_WHEN_DEBOUNCE_PERIOD": "debounce_period",
        "RUN_WHEN_RECURSIVE": "recursive",
        "RUN_WHEN_LOG_FILE": "log_file",
        "RUN_WHEN_LOG_LEVEL": "log_level",
        "RUN_WHEN_CAPTURE_OUTPUT": "capture_output",
        "RUN_WHEN_COMMAND_TIMEOUT": "command_timeout",
    }
    for env_var, config_key in env_map.items():
        val = os.getenv(env_var)
        if val is not None and val != "":
            config_values[config_key] = val

    # 4. CLI Arguments (override if not None)
    for key, value in args.items():
        if value is not None:
            config_values[key] = value

    if not config_values["watch_path"]:
        raise ValueError("No path to watch given (use --file)")
    if not config_values["command_file"]:
        raise ValueError("No command given (use --command-file)")

    period = str(config_values["debounce_period"])
    try:
        config_values["debounce_seconds"] = parse_duration(period)
    except ValueError as e:
        raise ValueError(f"Invalid debounce period '{period}': {e}") from e
    if config_values["debounce_seconds"] > threading.TIMEOUT_MAX:
        raise ValueError(
            f"Invalid debounce period '{period}': longer than the platform maximum "
            f"of {threading.TIMEOUT_MAX:.0f}s"
        )
    config_values["debounce_period"] = period

    if config_values["command_timeout"] is not None:
        raw_timeout = config_values["command_timeout"]
        if isinstance(raw_timeout, (int, float)):
            timeout = float(raw_timeout)
        else:
            try:
                timeout = parse_duration(str(raw_timeout))
            except ValueError as e:
                raise ValueError(f"Invalid command timeout '{raw_timeout}': {e}") from e
        if timeout <= 0:
            raise ValueError(f"command_timeout must be positive, got {raw_timeout}")
        if timeout > threading.TIMEOUT_MAX:
            raise ValueError(
                f"Invalid command timeout '{raw_timeout}': longer than the platform maximum "
                f"of {threading.TIMEOUT_MAX:.0f}s"
            )
        config_values["command_timeout"] = timeout

    config_values["recursive"] = _parse_bool("recursive", config_values["recursive"])
    config_values["capture_output"] = _parse_bool("capture_output", config_values["capture_output"])

    config_values["watch_path"] = _validate_watch_path(str(config_values["watch_path"]))
    config_values["command_file"] = str(config_values["command_file"])

    if config_values["log_file"]:
        config_values["log_file"] = _validate_log_path(str(config_values["log_file"]))

    # Handle debug flag
    if args.get("debug"):
        config_values["log_level"] = "DEBUG"

    # Validate log_level
    config_values["log_level"] = str(config_values["log_level"]).upper()
    if not isinstance(getattr(logging, config_values["log_level"], None), int):
        raise ValueError(f"Invalid log level: {config_values['log_level']}")

    # Filter out keys that are not in Config fields (e.g. 'debug' from CLI)
    config_fields = {f.name for f in fields(Config)}
    filtered_values = {k: v for k, v in config_values.items() if k in config_fields}

    return Config(**filtered_values)
