from typing import Annotated, Self

import pydantic

from testy.types import ExitOutput


class ExecutionConfig(pydantic.BaseModel):
    """How submitted commands are turned into subprocesses."""

    model_config = pydantic.ConfigDict(frozen=True, extra="forbid")

    shell: Annotated[str, pydantic.Field(min_length=1)] = "bash"
    delimiter: Annotated[str, pydantic.Field(min_length=1)] = "|"
    # Minimum gap between update notifications from one pipeline reader (1000/120 ms)
    update_interval_ms: Annotated[int, pydantic.Field(ge=0)] = 8
    notification_capacity: Annotated[int, pydantic.Field(gt=0)] = 20
    termination_grace_ms: Annotated[int, pydantic.Field(ge=0)] = 500


class DisplayConfig(pydantic.BaseModel):
    """Scrolling, repaint pacing and exit output."""

    model_config = pydantic.ConfigDict(frozen=True, extra="forbid")

    no_scroll: bool = False
    scroll_speed: Annotated[int, pydantic.Field(ge=1)] = 3
    refresh_interval_ms: Annotated[int, pydantic.Field(ge=0)] = 8
    idle_timeout_ms: Annotated[int, pydantic.Field(gt=0)] = 500
    exit_output: ExitOutput = ExitOutput.OUTPUT


class TestyConfig(pydantic.BaseModel):
    """Complete testy configuration, built once at startup and never mutated."""

    model_config = pydantic.ConfigDict(frozen=True, extra="forbid")

    execution: ExecutionConfig = pydantic.Field(default_factory=ExecutionConfig)
    display: DisplayConfig = pydantic.Field(default_factory=DisplayConfig)

    @classmethod
    def get_default(cls) -> Self:
        """Get default configuration."""
        return cls()

    @property
    def update_interval(self) -> float:
        """Supervisor notification cap in seconds."""
        return self.execution.update_interval_ms / 1000

    @property
    def refresh_interval(self) -> float:
        """Paint cap in seconds."""
        return self.display.refresh_interval_ms / 1000

    @property
    def idle_timeout(self) -> float:
        """Event loop wake-up timeout in seconds."""
        return self.display.idle_timeout_ms / 1000

    @property
    def termination_grace(self) -> float:
        return self.execution.termination_grace_ms / 1000
