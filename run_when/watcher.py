"""
Watch loop wiring: source -> coalescer -> runner.

Responsibility:
    :class:`RunWhenWatcher` composes the :class:`WatchSource`, the
    :class:`DebounceCoalescer` and the :class:`CommandRunner`, owns the single
    loop thread, and reports each execution.

Key Invariants:
    - One loop thread owns the debounce state; the observer thread only
      enqueues.
    - Commands run serially on the loop thread. Changes made while a command
      runs are queued and produce a later trigger; none are dropped and no
      trigger runs the command twice.
    - Spawn, timeout and decode failures are reported and watching continues.
      A :class:`WatchError` ends the loop and is kept in :attr:`error`.
"""

from __future__ import annotations

import logging
import threading
import time
from typing import Any, Callable, Dict, Optional

from run_when.debounce import DebounceCoalescer, TriggerSignal
from run_when.duration import format_duration
from run_when.runner import CommandRunner, report_outcome
from run_when.source import WatchError, WatchSource, WatchTarget

logger = logging.getLogger(__name__)
logger.addHandler(logging.NullHandler())

__all__ = ["RunWhenWatcher"]


class RunWhenWatcher:
    """Run a command once per settled burst of changes under a path.

    Attributes:
        target (WatchTarget): What is watched.
        runner (CommandRunner): Runs the command on each trigger.
        source (WatchSource): The raw change source.
        coalescer (DebounceCoalescer): The debounce stage.
        error (Optional[BaseException]): The fatal error that ended the loop, if any.

    Example:
        >>> runner = CommandRunner(CommandSpec("./build.sh"))
        >>> watcher = RunWhenWatcher(WatchTarget(Path("src"), True), 0.6, runner)
        >>> watcher.start()
        >>> # ...
        >>> watcher.stop()
    """

    def __init__(
        self,
        target: WatchTarget,
        debounce_seconds: float,
        runner: CommandRunner,
        logger: Optional[logging.Logger] = None,
        on_exit: Optional[Callable[[], None]] = None,
        source: Optional[WatchSource] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """Initialize the watcher.

        Args:
            target (WatchTarget): What to watch.
            debounce_seconds (float): The debounce window in seconds.
            runner (CommandRunner): The command runner.
            logger (Optional[logging.Logger]): Logger used for all reporting.
            on_exit (Optional[Callable[[], None]]): Called when the loop ends
                for any reason.
            source (Optional[WatchSource]): Alternate source (tests).
            clock (Callable[[], float]): Clock shared by source and coalescer.
        """
        self.target = target
        self.runner = runner
        self.logger = logger or logging.getLogger(__name__)
        self.on_exit = on_exit
        self.source = source or WatchSource(target, clock=clock, logger=self.logger)
        self.coalescer = DebounceCoalescer(
            debounce_seconds, self.source.events, clock=clock, logger=self.logger
        )
        self.error: Optional[BaseException] = None
        self._clock = clock
        self._thread: Optional[threading.Thread] = None
        self._start_time = 0.0
        self._finished = threading.Event()

        self.commands_run: int = 0
        self.command_failures: int = 0
        self.last_trigger_time: float = 0.0

    def start(self) -> None:
        """Start the source and the loop thread.

        Returns:
            None

        Raises:
            WatchError: If the watch cannot be established.
        """
        self.logger.info(
            f"Watching {self.target.path} (recursive={self.target.recursive}, "
            f"debounce={format_duration(self.coalescer.window)}); "
            f"command: {self.runner.spec.executable}"
        )
        self.source.start()
        self._start_time = self._clock()
        self._finished.clear()
        self._thread = threading.Thread(target=self._run_loop, name="RunWhenLoop")
        self._thread.daemon = True
        self._thread.start()

    def run(self) -> None:
        """Start the source and run the loop on the calling thread.

        Returns:
            None

        Raises:
            WatchError: If the watch cannot be established or fails later.
        """
        self.source.start()
        self._start_time = self._clock()
        self._finished.clear()
        self._run_loop()
        if isinstance(self.error, WatchError):
            raise self.error

    def stop(self, timeout: float = 5.0) -> None:
        """Stop the source and wait for the loop thread to finish.

        A command that is still running is waited for up to ``timeout``.

        Args:
            timeout (float): Seconds to wait for the loop thread.

        Returns:
            None
        """
        self.source.stop()
        if self._thread and self._thread is not threading.current_thread():
            self._thread.join(timeout=timeout)
            if self._thread.is_alive():
                self.logger.warning("Watch loop did not terminate within timeout (command still running?).")
        self.logger.info("Watcher stopped.")

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Block until the loop ends. Returns False on timeout."""
        return self._finished.wait(timeout)

    def _run_loop(self) -> None:
        try:
            self.coalescer.run(self._on_trigger)
        except WatchError as e:
            self.error = e
            self.logger.critical(f"Failed to watch {self.target.path}: {e}")
        except Exception as e:
            self.error = e
            self.logger.critical(f"Watch loop crashed: {e}", exc_info=True)
        finally:
            self._finished.set()
            if self.on_exit:
                try:
                    self.on_exit()
                except Exception as e:
                    self.logger.error(f"Error in exit callback: {e}")

    def _on_trigger(self, signal: TriggerSignal) -> None:
        self.last_trigger_time = signal.emitted_at
        if self.logger.isEnabledFor(logging.DEBUG):
            self.logger.debug(
                f"Trigger: {signal.event_count} event(s) over "
                f"{signal.last_event_at - signal.first_event_at:.3f}s"
            )
        outcome = self.runner.run()
        self.commands_run += 1
        if outcome.success:
            # Only announced once the command actually ran
            self.logger.info(
                f"Changes detected in '{self.target.path}'. "
                f"Running '{self.runner.spec.executable}'"
            )
        else:
            self.command_failures += 1
        report_outcome(outcome, self.runner.spec, self.logger)

    def get_statistics(self) -> Dict[str, Any]:
        """Return loop statistics.

        Returns:
            Dict[str, Any]: Counters and timings for logging.
        """
        uptime = self._clock() - self._start_time if self._start_time else 0.0
        return {
            "events_detected": self.source.handler.events_seen,
            "events_absorbed": self.coalescer.events_absorbed,
            "triggers": self.coalescer.triggers_emitted,
            "commands_run": self.commands_run,
            "command_failures": self.command_failures,
            "last_trigger_time": self.last_trigger_time,
            "uptime": uptime,
        }

    def __repr__(self) -> str:
        return (
            f"<RunWhenWatcher path={self.target.path} "
            f"command={self.runner.spec.executable!r} state={self.coalescer.state.value}>"
        )
