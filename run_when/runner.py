"""Command execution for settled bursts."""

from __future__ import annotations

import logging
import subprocess
import time
from dataclasses import dataclass
from typing import Optional

logger = logging.getLogger(__name__)
logger.addHandler(logging.NullHandler())

__all__ = ["CommandRunner", "CommandSpec", "ExecutionOutcome", "report_outcome"]


@dataclass(frozen=True)
class CommandSpec:
    """The command to run: a bare executable path, no arguments."""

    executable: str


@dataclass(frozen=True)
class ExecutionOutcome:
    """Result of one command execution.

    A command that launched and exited is a success whatever its exit code;
    ``return_code`` is kept for reporting only.

    Attributes:
        success (bool): The command was launched and its output was usable.
        stdout_text (Optional[str]): Captured standard output, if captured.
        stderr_text (Optional[str]): Captured standard error, if captured.
        error_detail (Optional[str]): Why the execution failed.
        return_code (Optional[int]): Exit code, when the process ran.
        duration (float): Wall time in seconds.
    """

    success: bool
    stdout_text: Optional[str] = None
    stderr_text: Optional[str] = None
    error_detail: Optional[str] = None
    return_code: Optional[int] = None
    duration: float = 0.0


class CommandRunner:
    """Run a :class:`CommandSpec` and turn every failure into an outcome.

    Nothing raised by spawning, waiting or decoding escapes :meth:`run`.

    Attributes:
        spec (CommandSpec): The command to run.
        capture_output (bool): Capture stdout/stderr instead of inheriting them.
        timeout (Optional[float]): Kill the child after this many seconds.
            None waits forever.
    """

    __slots__ = ('spec', 'capture_output', 'timeout', 'logger')

    def __init__(
        self,
        spec: CommandSpec,
        capture_output: bool = True,
        timeout: Optional[float] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.spec = spec
        self.capture_output = capture_output
        self.timeout = timeout
        self.logger = logger or logging.getLogger(__name__)

    def run(self) -> ExecutionOutcome:
        """Run the command once and wait for it to exit.

        Returns:
            ExecutionOutcome: The outcome; never raises for spawn, timeout or
            decoding problems.
        """
        start = time.monotonic()
        try:
            completed = subprocess.run(
                [self.spec.executable],
                capture_output=self.capture_output,
                timeout=self.timeout,
                check=False,
            )
        except subprocess.TimeoutExpired:
            return ExecutionOutcome(
                success=False,
                error_detail=f"Command timed out after {self.timeout}s and was killed",
                duration=time.monotonic() - start,
            )
        except (OSError, ValueError) as e:
            # Not found, not executable, or any other OS-level spawn failure
            return ExecutionOutcome(
                success=False,
                error_detail=f"{type(e).__name__}: {e}",
                duration=time.monotonic() - start,
            )

        duration = time.monotonic() - start
        if not self.capture_output:
            return ExecutionOutcome(
                success=True, return_code=completed.returncode, duration=duration
            )

        try:
            stdout_text = completed.stdout.decode("utf-8")
            stderr_text = completed.stderr.decode("utf-8")
        except UnicodeDecodeError as e:
            return ExecutionOutcome(
                success=False,
                error_detail=f"Command output is not valid UTF-8: {e}",
                return_code=completed.returncode,
                duration=duration,
            )

        return ExecutionOutcome(
            success=True,
            stdout_text=stdout_text,
            stderr_text=stderr_text,
            return_code=completed.returncode,
            duration=duration,
        )

    def __repr__(self) -> str:
        return f"<CommandRunner executable={self.spec.executable!r} capture={self.capture_output}>"


def report_outcome(
    outcome: ExecutionOutcome, spec: CommandSpec, log: Optional[logging.Logger] = None
) -> None:
    """Log an :class:`ExecutionOutcome`.

    Args:
        outcome (ExecutionOutcome): The outcome to report.
        spec (CommandSpec): The command that produced it.
        log (Optional[logging.Logger]): Logger to report to.

    Returns:
        None
    """
    log = log or logger
    if not outcome.success:
        log.error(f"Error occurred when command '{spec.executable}' was executed: {outcome.error_detail}")
        return

    if outcome.stdout_text:
        log.info(f"[{spec.executable}] stdout:\n{outcome.stdout_text.rstrip()}")
    if outcome.stderr_text:
        log.info(f"[{spec.executable}] stderr:\n{outcome.stderr_text.rstrip()}")
    log.info(
        f"Command '{spec.executable}' finished in {outcome.duration:.2f}s "
        f"(exit code {outcome.return_code})"
    )
