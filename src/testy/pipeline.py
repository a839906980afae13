"""Chained shell subprocesses emulating ``a | b | c``.

Each stage runs as ``<shell> -c <stage>`` in its own session. Stage *i* reads
stage *i-1*'s stdout; every stage's stderr is merged into its stdout. The
caller reads the last stage's output with ``Pipeline.lines()``.
"""

from __future__ import annotations

import dataclasses
import logging
import os
import signal
import subprocess
import threading
import time
from typing import IO, TYPE_CHECKING

from testy import exceptions

if TYPE_CHECKING:
    from collections.abc import Iterator, Sequence

__all__ = ["CancellationToken", "Pipeline", "StageSpec", "run", "split_stages"]

_logger = logging.getLogger(__name__)


class CancellationToken:
    """One-way flag shared between the supervisor and one pipeline reader."""

    _event: threading.Event

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    def is_cancelled(self) -> bool:
        return self._event.is_set()


@dataclasses.dataclass(frozen=True)
class StageSpec:
    """One shell invocation within a pipeline."""

    index: int
    text: str

    def argv(self, shell: str) -> list[str]:
        return [shell, "-c", self.text]


def split_stages(command: str, delimiter: str = "|") -> list[StageSpec]:
    """Split a command on the pipe delimiter into trimmed stages.

    This is a textual split, not a shell parse: a stage must not contain the
    delimiter itself.

    Raises:
        BadCommandError: The command is blank or has an empty stage (``"a | | b"``).
    """
    if not command.strip():
        raise exceptions.BadCommandError(command, "empty command")
    parts = [part.strip() for part in command.split(delimiter)]
    if any(not part for part in parts):
        raise exceptions.BadCommandError(command, "empty stage")
    return [StageSpec(index=i, text=part) for i, part in enumerate(parts)]


class Pipeline:
    """Running chain of stage processes plus the cancellation handle for it.

    ``terminate()`` signals every stage exactly once, whether it is reached
    through ``cancel()`` or through the reader's ``close()`` at end of stream.
    """

    _stages: list[StageSpec]
    _processes: list[subprocess.Popen[bytes]]
    _token: CancellationToken
    _grace: float
    _teardown_lock: threading.Lock
    _terminated: bool

    def __init__(
        self,
        stages: Sequence[StageSpec],
        processes: Sequence[subprocess.Popen[bytes]],
        token: CancellationToken,
        grace: float = 0.5,
    ) -> None:
        if not processes or len(processes) != len(stages):
            raise ValueError(f"expected one process per stage, got {len(processes)}/{len(stages)}")
        self._stages = list(stages)
        self._processes = list(processes)
        self._token = token
        self._grace = grace
        self._teardown_lock = threading.Lock()
        self._terminated = False

    @property
    def token(self) -> CancellationToken:
        return self._token

    @property
    def pids(self) -> list[int]:
        return [proc.pid for proc in self._processes]

    @property
    def terminated(self) -> bool:
        return self._terminated

    @property
    def stdout(self) -> IO[bytes]:
        """Combined output of the final stage."""
        stream = self._processes[-1].stdout
        assert stream is not None, "stages are always spawned with stdout=PIPE"
        return stream

    def lines(self) -> Iterator[str]:
        """Yield decoded output lines of the final stage without their line endings.

        Raises:
            StreamError: Reading the stream failed (closed or broken pipe).
        """
        stream = self.stdout
        while True:
            try:
                raw = stream.readline()
            except (OSError, ValueError) as e:
                raise exceptions.StreamError(f"Reading pipeline output failed: {e}") from e
            if not raw:
                return
            yield raw.decode("utf-8", errors="replace").rstrip("\r\n")

    def cancel(self) -> None:
        """Flip the token, then signal every stage to stop."""
        self._token.cancel()
        self.terminate()

    def terminate(self) -> None:
        """Send SIGTERM to every stage's process group. Idempotent."""
        with self._teardown_lock:
            if self._terminated:
                return
            self._terminated = True
        _logger.debug(f"Terminating pipeline pids={self.pids}")
        _signal_all(self._processes, signal.SIGTERM)

    def close(self) -> None:
        """Release the pipeline: terminate, reap stages, close the output stream.

        Called by the reader once it stops reading. A stage that outlives the
        grace period is logged as a termination failure and left running.
        """
        self.terminate()
        deadline = time.monotonic() + self._grace
        for stage, proc in zip(self._stages, self._processes, strict=True):
            try:
                proc.wait(timeout=max(0.0, deadline - time.monotonic()))
            except subprocess.TimeoutExpired:
                error = exceptions.TerminationFailureError(
                    f"stage {stage.index} ({stage.text!r}, pid {proc.pid}) ignored SIGTERM"
                )
                _logger.warning(str(error))
        for proc in self._processes:
            if proc.stdout is not None:
                proc.stdout.close()


def _signal_all(processes: Sequence[subprocess.Popen[bytes]], sig: signal.Signals) -> None:
    """Best-effort signal to each stage's process group; failures are logged, not raised."""
    for proc in processes:
        try:
            os.killpg(proc.pid, sig)
        except ProcessLookupError:
            _logger.debug(f"Process group {proc.pid} already exited")
        except OSError as e:
            error = exceptions.TerminationFailureError(
                f"Could not signal process group {proc.pid}: {e}"
            )
            _logger.warning(str(error))


def run(
    stages: Sequence[StageSpec],
    shell: str,
    *,
    token: CancellationToken | None = None,
    grace: float = 0.5,
) -> Pipeline:
    """Spawn one process per stage, wired stdout to stdin in order.

    Stage 0 reads from ``/dev/null``. If any stage fails to start, every stage
    already started is killed before the error is raised, so no orphans remain.

    Raises:
        BadCommandError: ``stages`` is empty.
        SpawnFailureError: A stage process could not be started.
    """
    if not stages:
        raise exceptions.BadCommandError("", "no stages")

    processes = list[subprocess.Popen[bytes]]()
    upstream: IO[bytes] | None = None
    try:
        for stage in stages:
            stdin: IO[bytes] | int = upstream if upstream is not None else subprocess.DEVNULL
            try:
                proc = subprocess.Popen(
                    stage.argv(shell),
                    stdin=stdin,
                    stdout=subprocess.PIPE,
                    stderr=subprocess.STDOUT,
                    start_new_session=True,
                )
            except (OSError, ValueError, subprocess.SubprocessError) as e:
                raise exceptions.SpawnFailureError(stage.text, stage.index, str(e)) from e
            processes.append(proc)
            # The child holds its own copy now; dropping ours lets the
            # upstream stage see SIGPIPE when this one exits.
            if upstream is not None:
                upstream.close()
            upstream = proc.stdout
    except exceptions.SpawnFailureError:
        _rollback(processes)
        raise

    pipeline = Pipeline(stages, processes, token or CancellationToken(), grace=grace)
    _logger.info(f"Started pipeline of {len(stages)} stage(s), pids={pipeline.pids}")
    return pipeline


def _rollback(processes: Sequence[subprocess.Popen[bytes]]) -> None:
    """Kill and reap a partially built chain."""
    _signal_all(processes, signal.SIGKILL)
    for proc in processes:
        proc.wait()
        if proc.stdout is not None:
            proc.stdout.close()
    if processes:
        _logger.info(f"Rolled back {len(processes)} partially started stage(s)")
