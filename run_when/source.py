"""
Raw filesystem change source built on watchdog.

Responsibility:
    Subscribe to OS change notifications for a :class:`WatchTarget` and push
    every relevant notification, uncoalesced, onto an ordered unbounded
    queue as a :class:`RawChangeEvent`. Failures of the watch itself are
    pushed onto the same queue as a :class:`WatchError`, so the consumer sees
    one ordered stream.

Design:
    - **Event-Driven**: ``watchdog.observers.Observer`` delivers events on its
      own thread; the handler only timestamps and enqueues them.
    - **File targets**: the parent directory is watched non-recursively and
      events are filtered to the target file, so atomic saves (write to a
      temp file, rename over the target) are still seen.
    - **Health Check**: a daemon timer verifies that the watched path still
      exists and the observer thread is alive. The first failure is reported
      once as a :class:`WatchError`; there is no restart.
"""

from __future__ import annotations

import logging
import os
import queue
import threading
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Optional, Union

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

logger = logging.getLogger(__name__)
logger.addHandler(logging.NullHandler())

__all__ = [
    "SHUTDOWN",
    "ChangeEventHandler",
    "RawChangeEvent",
    "WatchError",
    "WatchSource",
    "WatchTarget",
]

# Read-only access to watched files must not count as a change
IGNORED_EVENT_TYPES = frozenset({"opened", "closed_no_write"})

HEALTH_CHECK_INTERVAL = 1.0


class WatchError(Exception):
    """The watch can no longer deliver events (path gone, observer dead)."""


class _Shutdown:
    """Sentinel type placed on the event queue when the source is stopped."""

    __slots__ = ()

    def __repr__(self) -> str:
        return "<SHUTDOWN>"


SHUTDOWN = _Shutdown()


@dataclass(frozen=True)
class WatchTarget:
    """What is observed.

    Attributes:
        path (Path): Absolute path of the watched file or directory.
        recursive (bool): Watch subdirectories too (directories only).
    """

    path: Path
    recursive: bool = False


@dataclass(frozen=True)
class RawChangeEvent:
    """A single uncoalesced change notification.

    Only ``timestamp`` is used for debouncing; the rest is for logging.

    Attributes:
        timestamp (float): Arrival time on the monotonic clock.
        event_type (str): watchdog event type (``modified``, ``created``, ...).
        src_path (str): Path the event refers to.
        dest_path (str): Destination for moves, else empty.
        is_directory (bool): Whether the event refers to a directory.
    """

    timestamp: float
    event_type: str = "modified"
    src_path: str = ""
    dest_path: str = ""
    is_directory: bool = False


def _as_str(path: Union[str, bytes, None]) -> str:
    if not path:
        return ""
    return os.fsdecode(path)


class ChangeEventHandler(FileSystemEventHandler):
    """Translate watchdog events into :class:`RawChangeEvent` queue items.

    Attributes:
        target (WatchTarget): The watched target.
        events (queue.Queue): Queue receiving the raw events.
        target_file (Optional[str]): Set when the target is a single file;
            only events touching that path are forwarded.
    """

    def __init__(
        self,
        target: WatchTarget,
        events: "queue.Queue[Any]",
        target_file: Optional[Path] = None,
        clock: Callable[[], float] = time.monotonic,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        super().__init__()
        self.target = target
        self.events = events
        self.target_file = str(target_file) if target_file is not None else None
        self._clock = clock
        self.logger = logger or logging.getLogger(__name__)
        self.events_seen: int = 0

    def _is_relevant(self, event: FileSystemEvent) -> bool:
        if event.event_type in IGNORED_EVENT_TYPES:
            return False
        if self.target_file is None:
            return True
        # Fast string comparison first, then normalized comparison
        src_path = _as_str(event.src_path)
        dest_path = _as_str(getattr(event, "dest_path", ""))
        if self.target_file in (src_path, dest_path):
            return True
        try:
            candidates = {str(Path(p).absolute()) for p in (src_path, dest_path) if p}
        except (OSError, RuntimeError) as e:
            self.logger.debug(f"Could not normalize event path: {e}")
            return False
        return self.target_file in candidates

    def on_any_event(self, event: FileSystemEvent) -> None:
        """Enqueue a relevant watchdog event.

        Args:
            event (FileSystemEvent): The event from the observer thread.

        Returns:
            None
        """
        if not self._is_relevant(event):
            return

        raw = RawChangeEvent(
            timestamp=self._clock(),
            event_type=event.event_type,
            src_path=_as_str(event.src_path),
            dest_path=_as_str(getattr(event, "dest_path", "")),
            is_directory=bool(event.is_directory),
        )
        self.events_seen += 1
        if self.logger.isEnabledFor(logging.DEBUG):
            self.logger.debug(f"Raw event: {raw.event_type} on {raw.src_path}")
        self.events.put(raw)

    def __repr__(self) -> str:
        return f"<ChangeEventHandler target={self.target.path}>"


class WatchSource:
    """Own the watchdog observer for a :class:`WatchTarget`.

    Attributes:
        target (WatchTarget): The watched target.
        events (queue.Queue): Ordered, unbounded delivery channel. Holds
            :class:`RawChangeEvent`, :class:`WatchError` or :data:`SHUTDOWN`.
        watch_dir (Path): Directory the observer is scheduled on.
        handler (ChangeEventHandler): The event handler instance.

    Example:
        >>> source = WatchSource(WatchTarget(Path("src"), recursive=True))
        >>> source.start()
        >>> item = source.events.get()
        >>> source.stop()
    """

    def __init__(
        self,
        target: WatchTarget,
        events: Optional["queue.Queue[Any]"] = None,
        health_check_interval: float = HEALTH_CHECK_INTERVAL,
        clock: Callable[[], float] = time.monotonic,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.target = target
        self.events: "queue.Queue[Any]" = events if events is not None else queue.Queue()
        self.health_check_interval = health_check_interval
        self.logger = logger or logging.getLogger(__name__)
        self._clock = clock
        self._observer: Optional[Observer] = None
        self._health_check_timer: Optional[threading.Timer] = None
        self._lock = threading.Lock()
        self._stopping = False
        self._failed = False

        target_file: Optional[Path] = None
        try:
            is_dir = target.path.is_dir()
        except OSError:
            is_dir = False
        if is_dir:
            self.watch_dir = target.path
        else:
            self.watch_dir = target.path.parent
            target_file = target.path

        self.handler = ChangeEventHandler(
            target, self.events, target_file=target_file, clock=clock, logger=self.logger
        )

    @property
    def recursive(self) -> bool:
        """Whether the observer is scheduled recursively."""
        return self.target.recursive and self.handler.target_file is None

    def start(self) -> None:
        """Start the observer.

        Returns:
            None

        Raises:
            WatchError: If the path does not exist or the observer cannot start.
        """
        if not self.target.path.exists():
            raise WatchError(f"Path not found: {self.target.path}")

        if self.target.recursive and self.handler.target_file is not None:
            self.logger.warning(f"--recursive has no effect on a single file: {self.target.path}")

        self._stopping = False
        self._failed = False
        observer = Observer()
        try:
            observer.schedule(self.handler, str(self.watch_dir), recursive=self.recursive)
            observer.start()
        except OSError as e:
            raise WatchError(f"Cannot watch {self.target.path}: {e} (Check inotify limits?)") from e
        except Exception as e:
            raise WatchError(f"Failed to start observer for {self.target.path}: {e}") from e

        self._observer = observer
        self.logger.info(
            f"Observer started ({type(observer).__name__}) on {self.watch_dir} "
            f"(recursive={self.recursive})"
        )
        self._schedule_health_check()

    def stop(self) -> None:
        """Stop the observer and wake the consumer with :data:`SHUTDOWN`.

        Returns:
            None
        """
        with self._lock:
            self._stopping = True
            if self._health_check_timer:
                self._health_check_timer.cancel()
                self._health_check_timer = None

        if self._observer:
            try:
                if self._observer.is_alive():
                    self._observer.stop()
                    self._observer.join(timeout=5.0)
                    if self._observer.is_alive():
                        self.logger.warning("Observer thread did not terminate within timeout.")
            except Exception as e:
                self.logger.error(f"Error stopping observer: {e}")
        self.events.put(SHUTDOWN)

    def is_alive(self) -> bool:
        """Return True while the observer thread is running."""
        return self._observer is not None and self._observer.is_alive()

    def check_health(self) -> bool:
        """Verify the watched path and the observer thread.

        Puts a :class:`WatchError` on the queue the first time a check fails.

        Returns:
            bool: True if the watch is healthy.
        """
        if self._stopping or self._failed:
            return not self._failed

        try:
            exists = self.target.path.exists()
        except OSError as e:
            self.logger.debug(f"Error checking path existence: {e}")
            exists = False

        if not exists:
            self._fail(WatchError(f"Watched path no longer exists: {self.target.path}"))
            return False
        if not self.is_alive():
            self._fail(WatchError(f"Observer for {self.target.path} stopped unexpectedly"))
            return False
        return True

    def _fail(self, error: WatchError) -> None:
        with self._lock:
            if self._failed or self._stopping:
                return
            self._failed = True
        self.logger.error(str(error))
        self.events.put(error)

    def _schedule_health_check(self) -> None:
        with self._lock:
            if self._stopping or self._failed:
                return
            self._health_check_timer = threading.Timer(
                self.health_check_interval, self._run_health_check
            )
            self._health_check_timer.daemon = True
            self._health_check_timer.start()

    def _run_health_check(self) -> None:
        try:
            healthy = self.check_health()
        except Exception as e:
            self.logger.error(f"Health check failed: {e}")
            healthy = True
        if healthy:
            self._schedule_health_check()

    def __repr__(self) -> str:
        alive = self.is_alive()
        return f"<WatchSource path={self.target.path} recursive={self.recursive} alive={alive}>"
