from __future__ import annotations

import os
import queue
import sys
import tempfile
from collections import deque
from pathlib import Path
from typing import Any, Callable, Deque, Generator, Iterable, List, Optional, Tuple
from unittest.mock import MagicMock, patch

import pytest
from watchdog.events import FileSystemEvent

from run_when.config import Config
from run_when.source import SHUTDOWN, RawChangeEvent


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, now: float = 0.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class ScriptedQueue:
    """Queue stand-in that delivers items at scripted times on a FakeClock.

    ``get(timeout=t)`` either delivers the next item (moving the clock to its
    time if that is within ``t``) or moves the clock forward by ``t`` and
    raises ``queue.Empty``. Once the script is exhausted a blocking ``get()``
    returns ``SHUTDOWN``.
    """

    def __init__(self, clock: FakeClock, items: Iterable[Tuple[float, Any]] = ()) -> None:
        self.clock = clock
        self.items: Deque[Tuple[float, Any]] = deque(items)

    def push(self, at: float, item: Any) -> None:
        self.items.append((at, item))

    def get(self, block: bool = True, timeout: Optional[float] = None) -> Any:
        if self.items:
            at, item = self.items[0]
            if timeout is None or at <= self.clock.now + timeout:
                self.items.popleft()
                self.clock.now = max(self.clock.now, at)
                return item
            self.clock.now += timeout
            raise queue.Empty
        if timeout is None:
            return SHUTDOWN
        self.clock.now += timeout
        raise queue.Empty


def raw(at: float, path: str = "/tmp/watched/file.txt") -> RawChangeEvent:
    return RawChangeEvent(timestamp=at, event_type="modified", src_path=path)


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Fixture for a temporary directory using tempfile.TemporaryDirectory.

    Ensures automatic cleanup after test execution.
    """
    with tempfile.TemporaryDirectory() as tmpdirname:
        yield Path(tmpdirname).resolve()


@pytest.fixture
def make_event() -> Callable[..., RawChangeEvent]:
    return raw


@pytest.fixture
def fake_clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def scripted_queue(fake_clock: FakeClock) -> Callable[[List[float]], ScriptedQueue]:
    """Build a ScriptedQueue of raw events arriving at the given times."""
    def _make(times: List[float]) -> ScriptedQueue:
        return ScriptedQueue(fake_clock, [(t, raw(t)) for t in times])
    return _make


@pytest.fixture
def executable_script(temp_dir: Path) -> Callable[[str], Path]:
    """Write an executable shell script and return its path."""
    if sys.platform == "win32":
        pytest.skip("shell scripts are POSIX only")

    def _write(body: str, name: str = "cmd.sh") -> Path:
        script = temp_dir / name
        script.write_text("#!/bin/sh\n" + body + "\n", encoding="utf-8")
        script.chmod(0o755)
        return script
    return _write


@pytest.fixture
def mock_filesystem_event() -> MagicMock:
    """Fixture for a generic watchdog FileSystemEvent."""
    event = MagicMock(spec=FileSystemEvent)
    event.is_directory = False
    event.src_path = "/tmp/test/file.txt"
    event.dest_path = ""
    event.event_type = "modified"
    return event


@pytest.fixture
def mock_config(temp_dir: Path) -> Config:
    """Fixture for a default Config object."""
    return Config(
        watch_path=str(temp_dir),
        command_file="/bin/true",
        debounce_period="600ms",
        debounce_seconds=0.6,
    )


@pytest.fixture
def mock_observer() -> Generator[MagicMock, None, None]:
    """Fixture for mocking the watchdog Observer."""
    with patch("run_when.source.Observer") as mock:
        yield mock


@pytest.fixture
def clean_env(temp_dir: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    """Isolate from RUN_WHEN_* variables and user config files."""
    for key in list(os.environ):
        if key.startswith("RUN_WHEN_"):
            monkeypatch.delenv(key)
    config_home = temp_dir / "xdg"
    config_home.mkdir()
    monkeypatch.setenv("XDG_CONFIG_HOME", str(config_home))
    monkeypatch.chdir(temp_dir)
