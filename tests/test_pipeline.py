from __future__ import annotations

import logging
import os
import signal
import time
from typing import TYPE_CHECKING

import pytest

from testy import exceptions, pipeline

if TYPE_CHECKING:
    from pytest_mock import MockerFixture

# =============================================================================
# split_stages
# =============================================================================


def test_split_stages_trims_and_indexes() -> None:
    stages = pipeline.split_stages("ls  |grep foo|   wc -l ")

    assert [s.text for s in stages] == ["ls", "grep foo", "wc -l"]
    assert [s.index for s in stages] == [0, 1, 2]


def test_split_stages_single_stage() -> None:
    assert pipeline.split_stages("echo hi") == [pipeline.StageSpec(index=0, text="echo hi")]


def test_split_stages_custom_delimiter() -> None:
    stages = pipeline.split_stages("echo a ;; cat", delimiter=";;")

    assert [s.text for s in stages] == ["echo a", "cat"]


@pytest.mark.parametrize("command", ["", "   "])
def test_split_stages_blank_command(command: str) -> None:
    with pytest.raises(exceptions.BadCommandError, match="empty command"):
        pipeline.split_stages(command)


@pytest.mark.parametrize("command", ["echo a | | cat", "| cat", "echo a |"])
def test_split_stages_empty_stage(command: str) -> None:
    with pytest.raises(exceptions.BadCommandError, match="empty stage"):
        pipeline.split_stages(command)


def test_stage_argv() -> None:
    assert pipeline.StageSpec(index=0, text="echo hi").argv("sh") == ["sh", "-c", "echo hi"]


# =============================================================================
# run / Pipeline (real subprocesses)
# =============================================================================


def _collect(command: str) -> list[str]:
    running = pipeline.run(pipeline.split_stages(command), "sh")
    try:
        return list(running.lines())
    finally:
        running.close()


def test_single_stage_output() -> None:
    assert _collect("printf 'a\\nb\\n'") == ["a", "b"]


def test_stages_are_chained() -> None:
    assert _collect("echo a | tr a b") == ["b"]


def test_three_stage_chain() -> None:
    assert _collect("printf 'x\\ny\\nx\\n' | grep x | wc -l") == ["2"]


def test_stderr_is_merged_into_output() -> None:
    assert _collect("echo oops 1>&2") == ["oops"]


def test_first_stage_reads_empty_stdin() -> None:
    start = time.monotonic()

    assert _collect("cat") == []
    assert time.monotonic() - start < 5.0


def test_undecodable_bytes_are_replaced() -> None:
    assert _collect("printf '\\377ok\\n'") == ["\ufffdok"]


def test_run_rejects_empty_stage_list() -> None:
    with pytest.raises(exceptions.BadCommandError):
        pipeline.run([], "sh")


def test_missing_shell_raises_spawn_failure() -> None:
    stages = pipeline.split_stages("echo a")

    with pytest.raises(exceptions.SpawnFailureError) as exc_info:
        pipeline.run(stages, "/nonexistent/testy-shell")

    assert exc_info.value.index == 0
    assert exc_info.value.stage == "echo a"
    assert exc_info.value.get_suggestion() is not None


def test_spawn_failure_rolls_back_started_stages(mocker: MockerFixture) -> None:
    first = mocker.MagicMock()
    first.pid = 4242
    mocker.patch.object(pipeline.subprocess, "Popen", side_effect=[first, OSError("no fork")])
    killpg = mocker.patch.object(pipeline.os, "killpg")

    with pytest.raises(exceptions.SpawnFailureError, match="stage 1"):
        pipeline.run(pipeline.split_stages("echo a | cat"), "sh")

    killpg.assert_called_once_with(4242, signal.SIGKILL)
    first.wait.assert_called_once()
    first.stdout.close.assert_called()


def test_terminate_signals_once(mocker: MockerFixture) -> None:
    running = pipeline.run(pipeline.split_stages("sleep 5"), "sh")
    killpg = mocker.spy(os, "killpg")
    try:
        running.terminate()
        running.terminate()

        assert killpg.call_count == 1
        assert running.terminated
    finally:
        running.close()

    assert killpg.call_count == 1, "close() after terminate() does not signal again"


def test_cancel_flips_token_and_stops_stages() -> None:
    token = pipeline.CancellationToken()
    running = pipeline.run(pipeline.split_stages("sleep 5 | cat"), "sh", token=token)
    start = time.monotonic()

    running.cancel()
    remaining = list(running.lines())
    running.close()

    assert token.is_cancelled()
    assert remaining == []
    assert time.monotonic() - start < 3.0
    assert all(proc.poll() is not None for proc in running._processes)


def test_terminate_reaches_grandchildren() -> None:
    # The shell backgrounds sleep and waits; SIGTERM to the group stops both.
    running = pipeline.run(pipeline.split_stages("sleep 5 & wait"), "sh")
    start = time.monotonic()

    running.cancel()
    assert list(running.lines()) == []
    running.close()

    assert time.monotonic() - start < 3.0


def test_stage_ignoring_sigterm_is_logged(caplog: pytest.LogCaptureFixture) -> None:
    running = pipeline.run(pipeline.split_stages("trap '' TERM; sleep 1"), "sh", grace=0.05)
    # Give the shell time to install the trap.
    time.sleep(0.2)

    with caplog.at_level(logging.WARNING, logger="testy.pipeline"):
        running.close()

    assert "ignored SIGTERM" in caplog.text


def test_reading_closed_stream_raises_stream_error() -> None:
    running = pipeline.run(pipeline.split_stages("echo a"), "sh")
    running.close()

    with pytest.raises(exceptions.StreamError):
        list(running.lines())


def test_pipeline_requires_one_process_per_stage() -> None:
    with pytest.raises(ValueError, match="one process per stage"):
        pipeline.Pipeline(pipeline.split_stages("a | b"), [], pipeline.CancellationToken())
