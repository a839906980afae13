from typing_extensions import override


class TestyError(Exception):
    """Base exception for testy errors."""

    def format_user_message(self) -> str:
        """Format a user-friendly error message."""
        return str(self)

    def get_suggestion(self) -> str | None:
        """Return actionable suggestion for resolving the error."""
        return None


# =============================================================================
# Recoverable pipeline errors (shown inline in the output pane)
# =============================================================================


class PipelineError(TestyError):
    """Base class for errors raised while building or running a pipeline."""

    pass


class BadCommandError(PipelineError):
    """Raised when a command yields no runnable stages (empty or empty stage)."""

    _command: str
    _detail: str

    def __init__(self, command: str, detail: str = "no stages") -> None:
        self._command = command
        self._detail = detail
        super().__init__(f"{detail}: {command!r}")

    @property
    def command(self) -> str:
        return self._command

    @override
    def __reduce__(self) -> tuple[type, tuple[str, str]]:
        return (self.__class__, (self._command, self._detail))


class SpawnFailureError(PipelineError):
    """Raised when a stage subprocess could not be started."""

    _stage: str
    _index: int
    _reason: str

    def __init__(self, stage: str, index: int, reason: str) -> None:
        self._stage = stage
        self._index = index
        self._reason = reason
        super().__init__(f"stage {index} ({stage!r}) failed to start: {reason}")

    @property
    def stage(self) -> str:
        return self._stage

    @property
    def index(self) -> int:
        return self._index

    @override
    def __reduce__(self) -> tuple[type, tuple[str, int, str]]:
        return (self.__class__, (self._stage, self._index, self._reason))

    @override
    def get_suggestion(self) -> str:
        return "Check that the configured shell exists and is executable (--shell)"


class StreamError(PipelineError):
    """Raised when reading a pipeline's output stream fails. Treated as end-of-stream."""

    pass


class TerminationFailureError(PipelineError):
    """Raised (and logged, never fatal) when a stage process would not stop."""

    pass


# =============================================================================
# Fatal errors (stop the whole program with a non-zero exit code)
# =============================================================================


class StateAccessError(TestyError):
    """Raised when the shared screen state guard cannot be acquired cleanly.

    Shared state is only trusted while every accessor returns cleanly, so this
    error always terminates the program.
    """

    @override
    def get_suggestion(self) -> str:
        return "Re-run with --verbose --log-file <path> and report the log"


class TerminalError(TestyError):
    """Raised when the interactive terminal cannot be initialized or torn down."""

    @override
    def get_suggestion(self) -> str:
        return "Make sure testy is running in an interactive terminal"


class ConfigError(TestyError):
    """Raised when the configuration file or command-line options are invalid."""

    pass
