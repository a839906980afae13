from __future__ import annotations

import dataclasses


@dataclasses.dataclass
class CommandLine:
    """Editable command text with a cursor.

    Invariant: ``0 <= cursor <= len(text)`` after every operation.
    """

    text: str = ""
    cursor: int = 0

    def insert(self, char: str) -> None:
        """Insert at the cursor and advance past the inserted text."""
        self.text = self.text[: self.cursor] + char + self.text[self.cursor :]
        self.cursor += len(char)

    def backspace(self) -> None:
        """Delete the character before the cursor; no-op at the start of the line."""
        if self.cursor == 0:
            return
        self.text = self.text[: self.cursor - 1] + self.text[self.cursor :]
        self.cursor -= 1

    def move_left(self) -> None:
        self.cursor = max(0, self.cursor - 1)

    def move_right(self) -> None:
        self.cursor = min(len(self.text), self.cursor + 1)
