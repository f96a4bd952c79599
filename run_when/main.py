"""Main entry point for run-when.

This module handles the command-line interface (CLI), configuration loading,
logging setup, and process lifecycle. It wires the configuration into a
:class:`RunWhenWatcher` and waits until a signal or a fatal watch error ends it.

Key Responsibilities:
    - CLI Argument Parsing: -t/--debounce-period, -r/--recursive, -f/--file, -c/--command-file.
    - Signal Handling: SIGINT/SIGTERM stop the watcher gracefully (exit 0).
    - Logging: Configured once here, before the watch starts (10MB rotation for --log-file).
    - Exit Status: Non-zero on configuration errors, an unwatchable path, or a fatal
      watch error during the run.
"""

from __future__ import annotations

import argparse
import logging
import os
import signal
import sys
import threading
from logging.handlers import RotatingFileHandler
from pathlib import Path
from types import FrameType
from typing import List, Optional

from run_when import __version__
from run_when.config import load_config
from run_when.runner import CommandRunner, CommandSpec
from run_when.source import WatchError, WatchTarget
from run_when.watcher import RunWhenWatcher

# Logging configuration constants
LOG_FORMAT = '[%(asctime)s] [%(levelname)s] %(name)s: %(message)s'
LOG_DATE_FORMAT = '%Y-%m-%dT%H:%M:%S'

logger = logging.getLogger(__name__)
logger.addHandler(logging.NullHandler())


def setup_logging(log_level: str, log_file: Optional[str]) -> None:
    """Configure the logging system.

    Sets up console logging (stdout) and optional file logging with rotation.

    Logging Practices:
        - **Levels**:
            - ``INFO``: Triggers, command output, command completion.
            - ``WARNING``: Recoverable oddities (e.g. --recursive on a file).
            - ``ERROR``: Command spawn/timeout/decode failures.
            - ``CRITICAL``: Fatal watch errors.
            - ``DEBUG``: Raw events and burst sizes.
        - **Format**: ``[asctime] [levelname] name: message``
        - **Rotation**: Log files are rotated at 10MB (keeping 5 backups).

    Args:
        log_level (str): The logging level (e.g., "DEBUG", "INFO", "WARNING", "ERROR").
        log_file (Optional[str]): Optional path to a log file.

    Returns:
        None

    Raises:
        ValueError: If the provided log_level is not a valid logging level.

    Example:
        >>> setup_logging("INFO", "/path/to/run-when.log")
    """
    numeric_level = getattr(logging, log_level.upper(), None)
    if not isinstance(numeric_level, int):
        raise ValueError(f"Invalid log level: {log_level}")

    handlers: List[logging.Handler] = []
    formatter = logging.Formatter(LOG_FORMAT, datefmt=LOG_DATE_FORMAT)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(formatter)
    handlers.append(console_handler)

    if log_file:
        try:
            Path(log_file).parent.mkdir(parents=True, exist_ok=True)
            file_handler = RotatingFileHandler(log_file, maxBytes=10 * 1024 * 1024, backupCount=5)
            file_handler.setFormatter(formatter)
            handlers.append(file_handler)
        except Exception as e:
            # Logging isn't setup yet
            sys.stderr.write(f"Warning: Failed to setup log file '{log_file}': {e}\n")

    logging.basicConfig(level=numeric_level, handlers=handlers, force=True)


def build_parser() -> argparse.ArgumentParser:
    """Build the command-line parser.

    Defaults are None so that environment variables and the config file can
    fill in anything not given on the command line.

    Returns:
        argparse.ArgumentParser: The parser.
    """
    parser = argparse.ArgumentParser(
        prog="run-when",
        description="Run a (debounced) command upon changes to the filesystem.",
    )
    parser.add_argument(
        "-t",
        "--debounce-period",
        type=str,
        default=None,
        help="The debounce period, i.e. wait for a quiet period of this length before "
        "running the executable (default: 600ms).",
    )
    parser.add_argument(
        "-r",
        "--recursive",
        action="store_const",
        const=True,
        default=None,
        help="Watch a directory recursively.",
    )
    parser.add_argument(
        "-f",
        "--file",
        dest="watch_path",
        type=str,
        default=None,
        help="The file/directory to watch. A directory is watched non-recursively "
        "unless -r is also given.",
    )
    parser.add_argument(
        "-c",
        "--command-file",
        type=str,
        default=None,
        help="An executable to run once a change is detected.",
    )
    parser.add_argument(
        "--no-capture",
        dest="capture_output",
        action="store_const",
        const=False,
        default=None,
        help="Let the command write straight to this terminal instead of capturing its output.",
    )
    parser.add_argument(
        "--command-timeout",
        type=str,
        default=None,
        help="Kill the command if it runs longer than this duration (default: wait forever).",
    )
    parser.add_argument(
        "--debug", action="store_true", help="Enable debug logging (overrides --log-level)."
    )
    parser.add_argument("--log-file", type=str, default=None, help="Path to the log file.")
    parser.add_argument(
        "--log-level",
        type=str,
        default=None,
        help="Logging level (DEBUG, INFO, WARNING, ERROR). Default: INFO",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return parser


def main(argv: Optional[List[str]] = None) -> None:
    """Execute the main application logic.

    Parse command-line arguments, load configuration, set up logging,
    and run the watcher until a signal or a fatal watch error.

    Args:
        argv (Optional[List[str]]): Arguments to parse; defaults to ``sys.argv[1:]``.

    Returns:
        None: Returns on a graceful shutdown.

    Raises:
        SystemExit: On invalid configuration (message, status 1), when the watch
            cannot be established (status 1), or when the watch fails while
            running (status 1).

    Example:
        $ run-when -f ./src -r -t 1s -c ./build.sh
    """
    parser = build_parser()
    args = parser.parse_args(argv)

    # Bootstrap logging to capture config loading events
    bootstrap_formatter = logging.Formatter(LOG_FORMAT, datefmt=LOG_DATE_FORMAT)
    bootstrap_handler = logging.StreamHandler(sys.stdout)
    bootstrap_handler.setFormatter(bootstrap_formatter)
    bootstrap_level = logging.DEBUG if args.debug else logging.INFO
    logging.basicConfig(level=bootstrap_level, handlers=[bootstrap_handler], force=True)

    try:
        config = load_config(vars(args))
        logger.debug(f"Configuration loaded: {config}")
        setup_logging(config.log_level, config.log_file)
    except ValueError as e:
        sys.exit(f"Configuration Error: {e}")
    except Exception as e:
        sys.exit(f"Startup Error: {e}")

    logger.info(f"Starting run-when v{__version__} (PID: {os.getpid()})...")

    stop_event = threading.Event()

    runner = CommandRunner(
        CommandSpec(config.command_file),
        capture_output=config.capture_output,
        timeout=config.command_timeout,
    )
    watcher = RunWhenWatcher(
        WatchTarget(Path(config.watch_path), recursive=config.recursive),
        config.debounce_seconds,
        runner,
        on_exit=stop_event.set,
    )

    def signal_handler(sig: int, frame: Optional[FrameType]) -> None:
        """Handle SIGINT/SIGTERM by setting the stop event.

        Args:
            sig (int): The signal number.
            frame (Optional[FrameType]): The current stack frame (unused).

        Returns:
            None
        """
        sig_name = signal.Signals(sig).name
        logger.info(f"Received signal {sig_name}, shutting down...")
        stop_event.set()

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    try:
        watcher.start()
    except WatchError as e:
        logger.critical(f"Failed to watch {config.watch_path}: {e}")
        sys.exit(1)

    try:
        # Pure event-driven wait: set by a signal or by the loop ending
        stop_event.wait()
    except KeyboardInterrupt:
        logger.info("KeyboardInterrupt received, stopping...")
    finally:
        watcher.stop()
        stats = watcher.get_statistics()
        logger.info(
            f"Events={stats['events_detected']}, Triggers={stats['triggers']}, "
            f"Commands={stats['commands_run']}, Failures={stats['command_failures']}"
        )

    if watcher.error is not None:
        sys.exit(1)


if __name__ == "__main__":
    main()
