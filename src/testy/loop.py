"""Event loop: applies input to the screen state and paints at a capped rate."""

from __future__ import annotations

import logging
import math
import time
from typing import TYPE_CHECKING, Protocol

from testy.buffer import LineBuffer
from testy.supervisor import ExecutionSupervisor
from testy.types import ExitResult, Key, ScrollDirection

if TYPE_CHECKING:
    from collections.abc import Callable

    from testy.buffer import ScreenState
    from testy.config.models import TestyConfig
    from testy.events import EventStream
    from testy.types import Frame, KeyPressed, LoopEvent

__all__ = ["EventLoop", "Frontend", "Submitter", "run_session"]

_logger = logging.getLogger(__name__)


class Frontend(Protocol):
    """Whatever puts a frame on the screen."""

    def paint(self, frame: Frame) -> None: ...


class Submitter(Protocol):
    def submit(self, command: str) -> None: ...


class EventLoop:
    """Single consumer of the event stream.

    Wakes on input, update notifications or the idle timeout; marks the screen
    dirty and paints at most once per refresh interval however often it wakes.
    """

    _config: TestyConfig
    _buffer: LineBuffer
    _events: EventStream
    _submitter: Submitter
    _frontend: Frontend
    _clock: Callable[[], float]
    _dirty: bool
    _last_paint: float
    _paints: int

    def __init__(
        self,
        config: TestyConfig,
        buffer: LineBuffer,
        events: EventStream,
        submitter: Submitter,
        frontend: Frontend,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._config = config
        self._buffer = buffer
        self._events = events
        self._submitter = submitter
        self._frontend = frontend
        self._clock = clock
        self._dirty = True
        self._last_paint = -math.inf
        self._paints = 0

    @property
    def paints(self) -> int:
        """Frames painted so far."""
        return self._paints

    def run(self) -> ExitResult:
        """Loop until the interrupt key.

        Raises:
            TestyError: A worker reported a fatal error, or the screen state is unusable.
        """
        while True:
            self._paint_if_due()
            event = self._events.next(self._wait_timeout())
            if event is None:
                if not self._dirty:
                    # Periodic repaint while idle.
                    self._dirty = True
                continue
            if not self._dispatch(event):
                break

        with self._buffer.locked() as state:
            result = ExitResult(lines=list(state.lines), last_command=state.last_submitted)
        _logger.info(f"Event loop exiting after {self._paints} frame(s)")
        return result

    def _wait_timeout(self) -> float:
        if not self._dirty:
            return self._config.idle_timeout
        due = self._last_paint + self._config.refresh_interval
        return max(0.0, due - self._clock())

    def _paint_if_due(self) -> None:
        if not self._dirty:
            return
        now = self._clock()
        if now - self._last_paint < self._config.refresh_interval:
            return
        self._frontend.paint(self._buffer.frame())
        self._last_paint = now
        self._dirty = False
        self._paints += 1

    def _dispatch(self, event: LoopEvent) -> bool:
        """Apply one event. Returns False when the loop should exit."""
        match event["type"]:
            case "key":
                return self._on_key(event)
            case "wheel":
                step = self._config.display.scroll_speed
                delta = step if event["direction"] == ScrollDirection.DOWN else -step
                with self._buffer.locked() as state:
                    state.scroll_by(delta)
            case "resize":
                with self._buffer.locked() as state:
                    state.set_viewport(event["height"])
            case "update":
                pass
            case "fatal":
                error = event["error"]
                _logger.critical(f"Fatal error from worker: {error}")
                raise error
        self._dirty = True
        return True

    def _on_key(self, event: KeyPressed) -> bool:
        key = event["key"]
        if key == Key.INTERRUPT:
            _logger.debug("Interrupt received")
            return False

        submitted: str | None = None
        with self._buffer.locked() as state:
            match key:
                case Key.CHAR:
                    if event["char"]:
                        state.prompt.insert(event["char"])
                case Key.BACKSPACE:
                    state.prompt.backspace()
                case Key.LEFT:
                    state.prompt.move_left()
                case Key.RIGHT:
                    state.prompt.move_right()
                case Key.ENTER:
                    submitted = _submit(state)
        if submitted is not None:
            self._submitter.submit(submitted)
        self._dirty = True
        return True


def _submit(state: ScreenState) -> str:
    """Record the prompt as the last submission; the prompt keeps its text."""
    state.last_submitted = state.prompt.text.strip()
    return state.prompt.text


def run_session(config: TestyConfig, events: EventStream, frontend: Frontend) -> ExitResult:
    """Wire buffer, supervisor and event loop together and run until exit.

    The supervisor is always stopped (and its running pipeline cancelled)
    before this returns or raises.
    """
    buffer = LineBuffer()
    supervisor = ExecutionSupervisor(config, buffer, events)
    loop = EventLoop(config, buffer, events, supervisor, frontend)
    supervisor.start()
    try:
        return loop.run()
    finally:
        supervisor.stop()
        if events.dropped_notifications:
            _logger.debug(f"Dropped {events.dropped_notifications} update notification(s)")
