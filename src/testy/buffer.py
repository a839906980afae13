"""Shared, lock-guarded screen state: output lines, scroll offset and command line."""

from __future__ import annotations

import contextlib
import dataclasses
import logging
import threading
from typing import TYPE_CHECKING

from testy import exceptions
from testy.editor import CommandLine
from testy.types import Frame

if TYPE_CHECKING:
    from collections.abc import Generator

_logger = logging.getLogger(__name__)

# Critical sections are a handful of list operations; failing to get the
# guard within this window means something is wedged.
_ACQUIRE_TIMEOUT_S = 5.0


@dataclasses.dataclass
class ScreenState:
    """Mutable state rendered every frame. Only touch it through ``LineBuffer.locked()``.

    Invariant: ``0 <= scroll <= max_scroll`` after every method call. A
    ``viewport_height`` of 0 means the height is not known yet.
    """

    lines: list[str] = dataclasses.field(default_factory=list[str])
    scroll: int = 0
    viewport_height: int = 0
    prompt: CommandLine = dataclasses.field(default_factory=CommandLine)
    last_submitted: str = ""

    @property
    def max_scroll(self) -> int:
        """Largest scroll offset that still fills the viewport (or shows the last line)."""
        if self.viewport_height == 0:
            return max(0, len(self.lines) - 1)
        return max(0, len(self.lines) - self.viewport_height)

    def reset(self) -> None:
        """Drop all output and return to the top (new command accepted)."""
        self.lines.clear()
        self.scroll = 0

    def append(self, line: str, *, follow: bool) -> None:
        """Append one output line; with ``follow`` keep the newest line in view.

        Following waits for a known viewport height; until then the window
        starts at the current offset and shows everything after it.
        """
        self.lines.append(line)
        if follow and self.viewport_height > 0:
            self.scroll = self.max_scroll

    def scroll_by(self, delta: int) -> None:
        self.scroll = min(max(0, self.scroll + delta), self.max_scroll)

    def set_viewport(self, height: int) -> None:
        self.viewport_height = max(0, height)
        self.scroll = min(self.scroll, self.max_scroll)

    def visible_lines(self) -> list[str]:
        """The window of lines starting at the scroll offset."""
        if self.viewport_height == 0:
            return self.lines[self.scroll :]
        return self.lines[self.scroll : self.scroll + self.viewport_height]

    def frame(self) -> Frame:
        return Frame(
            command=self.prompt.text,
            cursor=self.prompt.cursor,
            lines=tuple(self.visible_lines()),
            first_line=self.scroll,
            total_lines=len(self.lines),
        )


class LineBuffer:
    """Single mutual-exclusion guard around ``ScreenState``.

    Every reader and writer takes the guard for the duration of one short
    access only. If an exception escapes a critical section the state may be
    half-updated, so the guard is poisoned: every later access raises
    ``StateAccessError``.
    """

    _state: ScreenState
    _lock: threading.Lock
    _acquire_timeout: float
    _poisoned_by: BaseException | None

    def __init__(
        self, state: ScreenState | None = None, *, acquire_timeout: float = _ACQUIRE_TIMEOUT_S
    ) -> None:
        self._state = state if state is not None else ScreenState()
        self._lock = threading.Lock()
        self._acquire_timeout = acquire_timeout
        self._poisoned_by = None

    @property
    def poisoned(self) -> bool:
        return self._poisoned_by is not None

    @contextlib.contextmanager
    def locked(self) -> Generator[ScreenState]:
        """Exclusive access to the shared state.

        Raises:
            StateAccessError: The guard timed out or was poisoned by an earlier failure.
        """
        if not self._lock.acquire(timeout=self._acquire_timeout):
            raise exceptions.StateAccessError(
                f"Could not acquire screen state within {self._acquire_timeout:.1f}s"
            )
        try:
            if self._poisoned_by is not None:
                raise exceptions.StateAccessError(
                    f"Screen state is inconsistent after an earlier failure: {self._poisoned_by!r}"
                ) from self._poisoned_by
            try:
                yield self._state
            except Exception as e:
                self._poisoned_by = e
                _logger.error(f"Screen state poisoned by {e!r}")
                raise
        finally:
            self._lock.release()

    def frame(self) -> Frame:
        """Snapshot the visible window for painting."""
        with self.locked() as state:
            return state.frame()

    def snapshot_lines(self) -> list[str]:
        with self.locked() as state:
            return list(state.lines)
