from __future__ import annotations

import logging
import sys
import threading
from typing import TYPE_CHECKING, ClassVar

from typing_extensions import override

import rich.text
import textual.app
import textual.binding
import textual.events
import textual.message
import textual.widgets

from testy import exceptions, loop
from testy.events import EventStream, InputPump
from testy.types import Key, ScrollDirection, ViewportResized, char_key, special_key, wheel

if TYPE_CHECKING:
    from collections.abc import Callable

    from textual.app import ComposeResult

    from testy.config.models import TestyConfig
    from testy.types import ExitResult, Frame, InputEvent, KeyPressed

__all__ = ["TestyApp", "run_with_tui", "translate_key"]

_logger = logging.getLogger(__name__)

_SHUTDOWN_TIMEOUT_S = 5.0

_SPECIAL_KEYS: dict[str, Key] = {
    "enter": Key.ENTER,
    "backspace": Key.BACKSPACE,
    "left": Key.LEFT,
    "right": Key.RIGHT,
}


def translate_key(key: str, character: str | None) -> KeyPressed | None:
    """Map a terminal key to an editor key press, or None if it has no meaning here."""
    if key in _SPECIAL_KEYS:
        return special_key(_SPECIAL_KEYS[key])
    if character is not None and len(character) == 1 and character.isprintable():
        return char_key(character)
    return None


def render_command(command: str, cursor: int) -> rich.text.Text:
    """Command text with the cursor cell shown in reverse video."""
    text = rich.text.Text(command, no_wrap=True, end="")
    if cursor >= len(command):
        text.append(" ", style="reverse")
    else:
        text.stylize("reverse", cursor, cursor + 1)
    return text


class FramePainted(textual.message.Message):
    """A frame produced by the event loop thread."""

    frame: Frame

    def __init__(self, frame: Frame) -> None:
        self.frame = frame
        super().__init__()


class LoopFinished(textual.message.Message):
    """The event loop thread has returned or raised."""


class CommandBar(textual.widgets.Static):
    """One-line command editor display."""

    def show(self, command: str, cursor: int) -> None:
        self.update(render_command(command, cursor))


class OutputView(textual.widgets.Static):
    """Output pane. Reports its height and wheel ticks back to the event loop."""

    _relay: Callable[[InputEvent], None]

    def __init__(self, relay: Callable[[InputEvent], None], *, id: str | None = None) -> None:
        super().__init__(id=id)
        self._relay = relay

    def show(self, lines: tuple[str, ...]) -> None:
        # Output is arbitrary program text: never interpret markup.
        self.update(rich.text.Text("\n".join(lines), no_wrap=True, end=""))

    def on_resize(self, event: textual.events.Resize) -> None:
        self._relay(ViewportResized(type="resize", height=self.content_size.height))

    def on_mouse_scroll_down(self, event: textual.events.MouseScrollDown) -> None:
        event.stop()
        self._relay(wheel(ScrollDirection.DOWN))

    def on_mouse_scroll_up(self, event: textual.events.MouseScrollUp) -> None:
        event.stop()
        self._relay(wheel(ScrollDirection.UP))


_TUI_CSS: str = """
#command-bar {
    height: 3;
    border: solid $surface-lighten-1;
    padding: 0 1;
}

#output {
    height: 1fr;
    border: solid $surface-lighten-1;
    padding: 0 1;
}
"""


class TestyApp(textual.app.App[None]):
    """Interactive screen. The event loop runs on a worker thread and paints via messages."""

    CSS: ClassVar[str] = _TUI_CSS
    BINDINGS: ClassVar[list[textual.binding.BindingType]] = [
        textual.binding.Binding("ctrl+c", "interrupt", "Quit", priority=True),
        textual.binding.Binding("ctrl+q", "interrupt", "Quit", show=False, priority=True),
    ]
    ENABLE_COMMAND_PALETTE: ClassVar[bool] = False

    _config: TestyConfig
    _events: EventStream
    _pump: InputPump
    _loop_thread: threading.Thread | None
    _last_frame: Frame | None
    _result: ExitResult | None
    _error: Exception | None

    def __init__(self, config: TestyConfig) -> None:
        super().__init__()
        self._config = config
        self._events = EventStream(config.execution.notification_capacity)
        self._pump = InputPump(self._events)
        self._loop_thread = None
        self._last_frame = None
        self._result = None
        self._error = None

    @property
    def result(self) -> ExitResult | None:
        return self._result

    @property
    def last_frame(self) -> Frame | None:
        """Most recent frame shown on screen."""
        return self._last_frame

    @property
    def error(self) -> Exception | None:
        """Exception raised by the event loop, if any."""
        return self._error

    @property
    def events(self) -> EventStream:
        return self._events

    @override
    def compose(self) -> ComposeResult:
        yield CommandBar(id="command-bar")
        yield OutputView(self._pump.relay, id="output")

    def on_mount(self) -> None:
        self.title = "testy"
        self._loop_thread = threading.Thread(target=self._run_loop, name="testy-loop", daemon=True)
        self._loop_thread.start()

    def _run_loop(self) -> None:
        """Run the event loop (runs in background thread)."""
        try:
            self._result = loop.run_session(self._config, self._events, self)
        except Exception as e:
            self._error = e
        finally:
            self._pump.close()
            self.post_message(LoopFinished())

    def paint(self, frame: Frame) -> None:
        """Called from the event loop thread."""
        self.post_message(FramePainted(frame))

    def on_frame_painted(self, message: FramePainted) -> None:
        frame = message.frame
        self._last_frame = frame
        self.query_one("#command-bar", CommandBar).show(frame.command, frame.cursor)
        self.query_one("#output", OutputView).show(frame.lines)

    def on_loop_finished(self, message: LoopFinished) -> None:
        self.exit()

    def on_key(self, event: textual.events.Key) -> None:
        translated = translate_key(event.key, event.character)
        if translated is None:
            return
        event.stop()
        event.prevent_default()
        self._pump.relay(translated)

    def action_interrupt(self) -> None:
        self._pump.relay(special_key(Key.INTERRUPT))

    def shutdown(self) -> None:
        """Make sure the event loop thread has finished (and stopped its pipelines)."""
        thread = self._loop_thread
        if thread is None or not thread.is_alive():
            return
        self._events.post_input(special_key(Key.INTERRUPT))
        thread.join(timeout=_SHUTDOWN_TIMEOUT_S)
        if thread.is_alive():
            _logger.warning("Event loop thread did not finish within timeout")


def run_with_tui(config: TestyConfig) -> ExitResult:
    """Run the interactive screen until interrupted. Raises whatever stopped the event loop."""
    if not (sys.stdin.isatty() and sys.stdout.isatty()):
        raise exceptions.TerminalError("testy needs an interactive terminal on stdin and stdout")
    app = TestyApp(config)
    try:
        app.run(mouse=True)
    finally:
        app.shutdown()
    if app.error is not None:
        raise app.error
    if app.result is None:
        raise exceptions.TerminalError(f"Terminal session ended abnormally (code {app.return_code})")
    return app.result
