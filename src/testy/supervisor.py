"""Owns the "current pipeline" slot and feeds pipeline output into the line buffer."""

from __future__ import annotations

import logging
import queue
import threading
from typing import TYPE_CHECKING

from testy import exceptions
from testy import pipeline as pipeline_mod
from testy.events import RateLimiter

if TYPE_CHECKING:
    from testy.buffer import LineBuffer
    from testy.config.models import TestyConfig
    from testy.events import EventStream
    from testy.pipeline import Pipeline

__all__ = ["ExecutionSupervisor", "format_error_line"]

_logger = logging.getLogger(__name__)

_JOIN_TIMEOUT_S = 3.0


def format_error_line(error: exceptions.TestyError) -> str:
    """Inline output line shown in place of a pipeline that could not run."""
    return f"bad command: {error.format_user_message()}"


class ExecutionSupervisor:
    """Runs submitted commands one at a time on a dedicated thread.

    For each distinct command (after trimming) it cancels the previous
    pipeline, clears the buffer, starts the new pipeline and hands its output
    to a reader thread. Identical resubmissions are ignored.
    """

    _config: TestyConfig
    _buffer: LineBuffer
    _events: EventStream
    _commands: queue.SimpleQueue[str | None]
    _thread: threading.Thread | None
    _readers: list[threading.Thread]
    _last_command: str
    _current: Pipeline | None

    def __init__(self, config: TestyConfig, buffer: LineBuffer, events: EventStream) -> None:
        self._config = config
        self._buffer = buffer
        self._events = events
        self._commands = queue.SimpleQueue()
        self._thread = None
        self._readers = []
        self._last_command = ""
        self._current = None

    @property
    def last_command(self) -> str:
        """Last accepted (trimmed) command."""
        return self._last_command

    @property
    def current(self) -> Pipeline | None:
        return self._current

    def start(self) -> None:
        if self._thread is not None:
            raise RuntimeError("supervisor already started")
        self._thread = threading.Thread(target=self._run, name="testy-supervisor", daemon=True)
        self._thread.start()

    def submit(self, command: str) -> None:
        """Queue a command; processed in submission order."""
        self._commands.put(command)

    def stop(self) -> None:
        """Stop intake, cancel the running pipeline and wait for readers to drain."""
        self._commands.put(None)
        if self._thread is not None:
            self._thread.join(timeout=_JOIN_TIMEOUT_S)
            if self._thread.is_alive():
                _logger.warning("Supervisor thread did not exit within timeout")
        if self._current is not None:
            self._current.cancel()
        for reader in self._readers:
            reader.join(timeout=_JOIN_TIMEOUT_S)
            if reader.is_alive():
                _logger.warning(f"Reader {reader.name} did not exit within timeout")

    # =========================================================================
    # Supervisor thread
    # =========================================================================

    def _run(self) -> None:
        try:
            for command in iter(self._commands.get, None):
                self._accept(command)
        except exceptions.StateAccessError as e:
            _logger.critical(f"Supervisor lost access to screen state: {e}")
            self._events.fail(e)
        except Exception as e:
            _logger.exception("Supervisor crashed")
            self._events.fail(exceptions.TestyError(f"Supervisor crashed: {e!r}"))

    def _accept(self, command: str) -> None:
        normalized = command.strip()
        if normalized == self._last_command:
            _logger.debug(f"Ignoring resubmission of {normalized!r}")
            return

        # Cancel before reset: once the buffer is cleared only the new
        # pipeline's reader may append.
        if self._current is not None:
            self._current.cancel()
            self._current = None
        with self._buffer.locked() as state:
            state.reset()
        self._last_command = normalized
        self._events.notify()

        try:
            stages = pipeline_mod.split_stages(normalized, self._config.execution.delimiter)
            running = pipeline_mod.run(
                stages,
                self._config.execution.shell,
                token=pipeline_mod.CancellationToken(),
                grace=self._config.termination_grace,
            )
        except exceptions.PipelineError as e:
            _logger.info(f"Command {normalized!r} not started: {e}")
            with self._buffer.locked() as state:
                state.append(format_error_line(e), follow=not self._config.display.no_scroll)
            self._events.notify()
            return

        self._current = running
        self._readers = [r for r in self._readers if r.is_alive()]
        reader = threading.Thread(
            target=self._read_output,
            args=(running,),
            name=f"testy-reader-{running.pids[-1]}",
            daemon=True,
        )
        self._readers.append(reader)
        reader.start()

    # =========================================================================
    # Reader threads (one per pipeline)
    # =========================================================================

    def _read_output(self, running: Pipeline) -> None:
        limiter = RateLimiter(self._config.update_interval)
        follow = not self._config.display.no_scroll
        token = running.token
        try:
            for line in running.lines():
                # Checked under the guard so nothing lands after a reset.
                with self._buffer.locked() as state:
                    if token.is_cancelled():
                        break
                    state.append(line, follow=follow)
                if limiter.ready():
                    self._events.notify()
        except exceptions.StreamError as e:
            _logger.debug(f"Output stream ended with error, treating as end of stream: {e}")
        except exceptions.StateAccessError as e:
            _logger.critical(f"Reader lost access to screen state: {e}")
            self._events.fail(e)
            return
        except Exception as e:
            _logger.exception("Pipeline reader crashed")
            self._events.fail(exceptions.TestyError(f"Pipeline reader crashed: {e!r}"))
            return
        finally:
            running.close()

        if token.is_cancelled():
            _logger.debug(f"Pipeline {running.pids} cancelled")
        else:
            _logger.debug(f"Pipeline {running.pids} finished")
            self._events.notify()
