from __future__ import annotations

import threading

import pytest

from testy import exceptions
from testy.buffer import LineBuffer, ScreenState

# =============================================================================
# ScreenState
# =============================================================================


def _state(lines: int, viewport: int) -> ScreenState:
    return ScreenState(lines=[str(i) for i in range(lines)], viewport_height=viewport)


def test_append_with_follow_keeps_newest_line_visible() -> None:
    state = _state(0, 3)

    for i in range(5):
        state.append(str(i), follow=True)

    assert state.scroll == 2
    assert state.visible_lines() == ["2", "3", "4"]


def test_append_without_follow_keeps_offset() -> None:
    state = _state(0, 3)

    for i in range(5):
        state.append(str(i), follow=False)

    assert state.scroll == 0
    assert state.visible_lines() == ["0", "1", "2"]


def test_scroll_by_clamps_to_bounds() -> None:
    state = _state(10, 4)

    state.scroll_by(-3)
    assert state.scroll == 0

    state.scroll_by(100)
    assert state.scroll == 6, "Scrolling stops once the last line is at the bottom"


def test_scroll_with_short_output_stays_at_top() -> None:
    state = _state(2, 10)

    state.scroll_by(3)

    assert state.scroll == 0


def test_set_viewport_reclamps_scroll() -> None:
    state = _state(10, 2)
    state.scroll_by(8)

    state.set_viewport(6)

    assert state.scroll == 4


def test_zero_viewport_shows_everything_from_offset() -> None:
    state = _state(3, 0)

    assert state.visible_lines() == ["0", "1", "2"]


def test_follow_with_unknown_viewport_keeps_lines_visible() -> None:
    state = ScreenState()

    for i in range(3):
        state.append(str(i), follow=True)

    assert state.scroll == 0
    assert state.visible_lines() == ["0", "1", "2"]


def test_scroll_with_unknown_viewport_stops_at_last_line() -> None:
    state = _state(5, 0)

    state.scroll_by(100)

    assert state.scroll == 4
    assert state.visible_lines() == ["4"]


def test_follow_resumes_once_viewport_is_known() -> None:
    state = _state(5, 0)
    state.set_viewport(2)

    state.append("5", follow=True)

    assert state.visible_lines() == ["4", "5"]


def test_reset_clears_lines_and_scroll_but_keeps_prompt() -> None:
    state = _state(10, 2)
    state.scroll_by(5)
    state.prompt.insert("x")

    state.reset()

    assert state.lines == []
    assert state.scroll == 0
    assert state.prompt.text == "x"


def test_frame_reflects_state() -> None:
    state = _state(5, 2)
    state.scroll_by(1)
    state.prompt.insert("l")

    frame = state.frame()

    assert frame.command == "l"
    assert frame.cursor == 1
    assert frame.lines == ("1", "2")
    assert frame.first_line == 1
    assert frame.total_lines == 5


# =============================================================================
# LineBuffer guard
# =============================================================================


def test_locked_gives_shared_state() -> None:
    buf = LineBuffer()

    with buf.locked() as state:
        state.append("a", follow=True)

    assert buf.snapshot_lines() == ["a"]
    assert buf.frame().lines == ("a",)


def test_exception_in_critical_section_poisons_guard() -> None:
    buf = LineBuffer()

    with pytest.raises(RuntimeError, match="boom"), buf.locked():
        raise RuntimeError("boom")

    assert buf.poisoned
    with pytest.raises(exceptions.StateAccessError, match="inconsistent"):
        buf.snapshot_lines()


def test_acquire_timeout_raises_state_access_error() -> None:
    buf = LineBuffer(acquire_timeout=0.05)
    holding = threading.Event()
    release = threading.Event()

    def hold() -> None:
        with buf.locked():
            holding.set()
            release.wait(5.0)

    holder = threading.Thread(target=hold)
    holder.start()
    try:
        assert holding.wait(5.0)
        with pytest.raises(exceptions.StateAccessError, match="Could not acquire"):
            buf.snapshot_lines()
    finally:
        release.set()
        holder.join()

    assert not buf.poisoned, "A timed-out waiter never entered the critical section"


def test_snapshot_is_a_copy() -> None:
    buf = LineBuffer()
    with buf.locked() as state:
        state.append("a", follow=False)

    snapshot = buf.snapshot_lines()
    snapshot.append("b")

    assert buf.snapshot_lines() == ["a"]
