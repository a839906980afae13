from __future__ import annotations

import dataclasses
import enum
from typing import TYPE_CHECKING, Literal, TypedDict

if TYPE_CHECKING:
    from testy.exceptions import TestyError


class Key(enum.StrEnum):
    """Semantic key carried by a key press event."""

    CHAR = "char"
    ENTER = "enter"
    BACKSPACE = "backspace"
    LEFT = "left"
    RIGHT = "right"
    INTERRUPT = "interrupt"


class ScrollDirection(enum.StrEnum):
    """Pointer wheel direction."""

    UP = "up"
    DOWN = "down"


class ExitOutput(enum.StrEnum):
    """What is written to stdout after the interactive screen closes."""

    OUTPUT = "output"
    COMMAND = "command"


# =============================================================================
# Input events (produced by the terminal, relayed by the input pump)
# =============================================================================


class KeyPressed(TypedDict):
    """A decoded key press. ``char`` is set only for ``Key.CHAR``."""

    type: Literal["key"]
    key: Key
    char: str | None


class WheelScrolled(TypedDict):
    """A pointer wheel tick over the output pane."""

    type: Literal["wheel"]
    direction: ScrollDirection


class ViewportResized(TypedDict):
    """The output pane now shows ``height`` rows."""

    type: Literal["resize"]
    height: int


InputEvent = KeyPressed | WheelScrolled | ViewportResized


# =============================================================================
# Internal events (produced by the supervisor and its readers)
# =============================================================================


class UpdateNotification(TypedDict):
    """Payload-free "buffer changed" signal. The line buffer is authoritative."""

    type: Literal["update"]
    timestamp: float


class FatalError(TypedDict):
    """A worker hit an unrecoverable error; the event loop must stop."""

    type: Literal["fatal"]
    error: TestyError


LoopEvent = InputEvent | UpdateNotification | FatalError


def char_key(char: str) -> KeyPressed:
    return KeyPressed(type="key", key=Key.CHAR, char=char)


def special_key(key: Key) -> KeyPressed:
    return KeyPressed(type="key", key=key, char=None)


def wheel(direction: ScrollDirection) -> WheelScrolled:
    return WheelScrolled(type="wheel", direction=direction)


# =============================================================================
# Render / exit values
# =============================================================================


@dataclasses.dataclass(frozen=True)
class Frame:
    """Everything the terminal needs to paint one screen."""

    command: str
    cursor: int
    lines: tuple[str, ...]
    first_line: int
    total_lines: int


@dataclasses.dataclass(frozen=True)
class ExitResult:
    """Final state handed back to the caller once the event loop exits."""

    lines: list[str]
    last_command: str

    def dump(self, mode: ExitOutput) -> list[str]:
        """Lines to print for the given exit output mode."""
        match mode:
            case ExitOutput.OUTPUT:
                return list(self.lines)
            case ExitOutput.COMMAND:
                return [self.last_command] if self.last_command else []
