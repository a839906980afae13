from __future__ import annotations

import pathlib
import sys

import click.testing
import pytest

from testy.buffer import LineBuffer
from testy.config import io as config_io
from testy.config import models
from testy.events import EventStream

# Add tests directory to sys.path so helpers.py can be imported
_tests_dir = pathlib.Path(__file__).parent
if str(_tests_dir) not in sys.path:
    sys.path.insert(0, str(_tests_dir))


@pytest.fixture(autouse=True)
def isolated_config_file(tmp_path: pathlib.Path, monkeypatch: pytest.MonkeyPatch) -> pathlib.Path:
    """Point config lookup at a per-test path so a real user config never leaks in."""
    path = tmp_path / "testy-config.yaml"
    monkeypatch.setenv(config_io.CONFIG_ENV_VAR, str(path))
    return path


@pytest.fixture
def config() -> models.TestyConfig:
    """POSIX sh with a generous reaping grace so slow CI machines don't flake."""
    return models.TestyConfig.model_validate(
        {"execution": {"shell": "sh", "termination_grace_ms": 2000}}
    )


@pytest.fixture
def buffer() -> LineBuffer:
    return LineBuffer()


@pytest.fixture
def events(config: models.TestyConfig) -> EventStream:
    return EventStream(config.execution.notification_capacity)


@pytest.fixture
def runner() -> click.testing.CliRunner:
    """Create a CLI runner for testing."""
    return click.testing.CliRunner()
