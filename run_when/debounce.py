"""
Trailing-edge debounce of raw change events.

The coalescer turns an arbitrarily bursty stream of :class:`RawChangeEvent`
items into :class:`TriggerSignal` emissions, one per settled burst.

Algorithm:
    A single pending deadline slot, initially empty. Every event sets it to
    ``event.timestamp + window`` (a full reset, never a partial one). When the
    deadline passes with no newer event, one trigger is emitted and the slot
    is cleared. A stream whose gaps never reach the window therefore never
    triggers until it pauses.

Loop:
    :meth:`DebounceCoalescer.run` blocks on ``events.get(timeout=...)`` with
    the time left until the deadline, so "event arrived" and "deadline
    passed" come out of one ordered wait. Events that were queued while the
    loop was busy (for example while a command was running) keep their
    arrival time; one that arrived at or after the pending deadline is held
    back until the earlier burst has been triggered.
"""

from __future__ import annotations

import enum
import logging
import queue
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Optional

from run_when.source import SHUTDOWN, RawChangeEvent, WatchError

logger = logging.getLogger(__name__)
logger.addHandler(logging.NullHandler())

__all__ = ["CoalescerState", "DebounceCoalescer", "TriggerSignal"]


class CoalescerState(enum.Enum):
    IDLE = "idle"
    PENDING_BURST = "pending_burst"


@dataclass(frozen=True)
class TriggerSignal:
    """A burst of changes has settled.

    The runner does not depend on any of these fields; they are kept for
    reporting.

    Attributes:
        emitted_at (float): Monotonic time the trigger was emitted.
        event_count (int): Raw events absorbed into the burst.
        first_event_at (float): Arrival time of the first event of the burst.
        last_event_at (float): Arrival time of the last event of the burst.
    """

    emitted_at: float
    event_count: int
    first_event_at: float
    last_event_at: float


class DebounceCoalescer:
    """Coalesce raw events into trigger signals.

    Attributes:
        window (float): The debounce window in seconds.
        events: Queue-like object providing ``get(block=True, timeout=None)``.
        triggers_emitted (int): Number of triggers emitted so far.
        events_absorbed (int): Number of raw events folded into bursts.
    """

    __slots__ = (
        'window', 'events', 'logger', '_clock', '_deadline', '_burst_count',
        '_burst_start', '_last_event', '_held', 'triggers_emitted', 'events_absorbed',
    )

    def __init__(
        self,
        window: float,
        events: Any,
        clock: Callable[[], float] = time.monotonic,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        """Initialize the coalescer.

        Args:
            window (float): The debounce window in seconds. Zero disables batching.
            events: The delivery channel from the watch source.
            clock (Callable[[], float]): Clock matching the one that stamped the events.
            logger (Optional[logging.Logger]): Optional logger instance.

        Raises:
            ValueError: If the window is negative or longer than the
                longest wait the platform supports.
        """
        if window < 0:
            raise ValueError(f"Debounce window must be non-negative, got {window}")
        if window > threading.TIMEOUT_MAX:
            raise ValueError(f"Debounce window {window}s exceeds the platform maximum wait")
        self.window = float(window)
        self.events = events
        self.logger = logger or logging.getLogger(__name__)
        self._clock = clock
        self._deadline: Optional[float] = None
        self._burst_count = 0
        self._burst_start = 0.0
        self._last_event = 0.0
        self._held: Optional[RawChangeEvent] = None
        self.triggers_emitted = 0
        self.events_absorbed = 0

    @property
    def state(self) -> CoalescerState:
        if self._deadline is None:
            return CoalescerState.IDLE
        return CoalescerState.PENDING_BURST

    @property
    def deadline(self) -> Optional[float]:
        """The pending deadline, or None when idle."""
        return self._deadline

    def feed(self, event: RawChangeEvent) -> None:
        """Fold one raw event into the current burst, (re)arming the deadline.

        Args:
            event (RawChangeEvent): The event to absorb.

        Returns:
            None
        """
        if self._deadline is None:
            self._burst_count = 0
            self._burst_start = event.timestamp
        self._burst_count += 1
        self._last_event = event.timestamp
        self._deadline = event.timestamp + self.window
        self.events_absorbed += 1

    def time_until_due(self, now: float) -> Optional[float]:
        """Return how long the loop may block, or None to block indefinitely."""
        if self._deadline is None:
            return None
        return max(0.0, self._deadline - now)

    def poll(self, now: float) -> Optional[TriggerSignal]:
        """Emit a trigger if the pending deadline has passed.

        Args:
            now (float): Current time on the coalescer's clock.

        Returns:
            Optional[TriggerSignal]: The trigger, or None if nothing is due.
        """
        if self._deadline is None or now < self._deadline:
            return None
        signal = TriggerSignal(
            emitted_at=now,
            event_count=self._burst_count,
            first_event_at=self._burst_start,
            last_event_at=self._last_event,
        )
        self._deadline = None
        self._burst_count = 0
        self.triggers_emitted += 1
        return signal

    def _next_item(self) -> Any:
        """Wait for the next event or for the deadline, whichever comes first.

        Returns:
            Any: A queue item, or None when the deadline should be handled.
        """
        if self._held is not None:
            item, self._held = self._held, None
            if self._deadline is None or item.timestamp < self._deadline:
                return item
            self._held = item
            return None

        timeout = self.time_until_due(self._clock())
        try:
            if timeout is None:
                item = self.events.get()
            else:
                item = self.events.get(timeout=timeout)
        except queue.Empty:
            return None

        if (
            isinstance(item, RawChangeEvent)
            and self._deadline is not None
            and item.timestamp >= self._deadline
        ):
            # The deadline passed before this event arrived
            self._held = item
            return None
        return item

    def run(self, on_trigger: Callable[[TriggerSignal], None]) -> None:
        """Run the coalescing loop until shutdown.

        ``on_trigger`` runs on this thread, so a slow command holds the loop;
        events arriving meanwhile wait on the queue and are folded in by
        arrival time afterwards.

        Args:
            on_trigger (Callable[[TriggerSignal], None]): Called once per settled burst.

        Returns:
            None: When the source sends :data:`SHUTDOWN`.

        Raises:
            WatchError: When the source reports that the watch failed.
        """
        self.logger.debug(f"Coalescer loop started (window={self.window}s)")
        while True:
            item = self._next_item()

            if item is None:
                signal = self.poll(self._clock())
                if signal is not None:
                    self._emit(signal, on_trigger)
                continue

            if item is SHUTDOWN:
                if self._deadline is not None:
                    self.logger.debug(
                        f"Shutting down with a pending burst of {self._burst_count} event(s)"
                    )
                self.logger.debug("Coalescer loop stopped")
                return

            if isinstance(item, WatchError):
                raise item

            if isinstance(item, RawChangeEvent):
                self.feed(item)
            else:
                self.logger.warning(f"Ignoring unexpected queue item: {item!r}")

    def _emit(self, signal: TriggerSignal, on_trigger: Callable[[TriggerSignal], None]) -> None:
        if self.logger.isEnabledFor(logging.DEBUG):
            self.logger.debug(
                f"Burst settled: {signal.event_count} event(s) coalesced into one trigger"
            )
        try:
            on_trigger(signal)
        except Exception:
            self.logger.error("Error in trigger callback", exc_info=True)

    def __repr__(self) -> str:
        return f"<DebounceCoalescer window={self.window} state={self.state.value}>"
