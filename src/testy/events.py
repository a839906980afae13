"""Event plumbing between the terminal, the supervisor and the event loop.

Input events travel through an unbounded queue and are never dropped. Update
notifications travel through a small bounded queue and are dropped when it is
full: the line buffer holds the data, a notification only asks for a repaint.
"""

from __future__ import annotations

import logging
import math
import queue
import threading
import time
from typing import TYPE_CHECKING

from testy.types import FatalError, UpdateNotification

if TYPE_CHECKING:
    from collections.abc import Callable

    from testy.exceptions import TestyError
    from testy.types import InputEvent, LoopEvent

__all__ = ["EventStream", "InputPump", "RateLimiter"]

_logger = logging.getLogger(__name__)


class EventStream:
    """Merged wake-up point for the event loop.

    Producers on any thread post into one of three lanes; the single consumer
    calls ``next()`` and gets the first ready event by priority
    fatal > input > update, or ``None`` on timeout.
    """

    _inputs: queue.SimpleQueue[InputEvent]
    _updates: queue.Queue[UpdateNotification]
    _fatal: queue.SimpleQueue[FatalError]
    _wake: threading.Event
    _dropped: int
    _dropped_lock: threading.Lock

    def __init__(self, notification_capacity: int = 20) -> None:
        if notification_capacity <= 0:
            raise ValueError(f"notification_capacity must be positive, got {notification_capacity}")
        self._inputs = queue.SimpleQueue()
        self._updates = queue.Queue(maxsize=notification_capacity)
        self._fatal = queue.SimpleQueue()
        self._wake = threading.Event()
        self._dropped = 0
        self._dropped_lock = threading.Lock()

    @property
    def dropped_notifications(self) -> int:
        """Notifications discarded because the lane was full."""
        return self._dropped

    def post_input(self, event: InputEvent) -> None:
        self._inputs.put(event)
        self._wake.set()

    def notify(self) -> bool:
        """Non-blocking update notification. Returns False if it was dropped."""
        try:
            self._updates.put_nowait(UpdateNotification(type="update", timestamp=time.monotonic()))
        except queue.Full:
            with self._dropped_lock:
                self._dropped += 1
            _logger.debug("Update lane full, dropping notification")
            return False
        self._wake.set()
        return True

    def fail(self, error: TestyError) -> None:
        """Hand an unrecoverable worker error to the event loop."""
        self._fatal.put(FatalError(type="fatal", error=error))
        self._wake.set()

    def next(self, timeout: float) -> LoopEvent | None:
        """Block until an event is ready or ``timeout`` seconds pass."""
        deadline = time.monotonic() + timeout
        while True:
            # Clear before polling so a post racing with the poll still wakes the wait.
            self._wake.clear()
            event = self._poll()
            if event is not None:
                return event
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                return None
            self._wake.wait(remaining)

    def _poll(self) -> LoopEvent | None:
        for lane in (self._fatal, self._inputs):
            try:
                return lane.get_nowait()
            except queue.Empty:
                pass
        try:
            return self._updates.get_nowait()
        except queue.Empty:
            return None


class RateLimiter:
    """Allows an action at most once per ``interval`` seconds."""

    _interval: float
    _clock: Callable[[], float]
    _last: float

    def __init__(self, interval: float, clock: Callable[[], float] = time.monotonic) -> None:
        self._interval = interval
        self._clock = clock
        self._last = -math.inf

    def ready(self) -> bool:
        """True (and the window restarts) if ``interval`` has passed since the last True."""
        now = self._clock()
        if now - self._last >= self._interval:
            self._last = now
            return True
        return False


class InputPump:
    """Thin relay from the terminal's input thread into the event stream."""

    _stream: EventStream
    _closed: threading.Event

    def __init__(self, stream: EventStream) -> None:
        self._stream = stream
        self._closed = threading.Event()

    def relay(self, event: InputEvent) -> None:
        if self._closed.is_set():
            _logger.debug(f"Input pump closed, ignoring {event['type']} event")
            return
        self._stream.post_input(event)

    def close(self) -> None:
        """Stop relaying; the event loop is gone or going."""
        self._closed.set()
