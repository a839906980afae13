from __future__ import annotations

import functools
import logging
import pathlib
from typing import TYPE_CHECKING, Any, ParamSpec, TypeVar

import click

from testy import __version__, exceptions
from testy.config import io as config_io
from testy.tui import app as tui_app
from testy.types import ExitOutput

if TYPE_CHECKING:
    from collections.abc import Callable

P = ParamSpec("P")
R = TypeVar("R")

_LOG_FORMAT = "%(asctime)s %(threadName)s %(levelname)s %(name)s: %(message)s"


def _handle_testy_error(e: exceptions.TestyError) -> click.ClickException:
    """Convert TestyError to user-friendly ClickException."""
    message = e.format_user_message()
    if suggestion := e.get_suggestion():
        message = f"{message}\n\nTip: {suggestion}"
    return click.ClickException(message)


def with_error_handling(func: Callable[P, R]) -> Callable[P, R]:
    """Wrap a command so domain errors exit with code 1 and a readable message."""

    @functools.wraps(func)
    def wrapper(*args: P.args, **kwargs: P.kwargs) -> R:
        try:
            return func(*args, **kwargs)
        except click.ClickException:
            raise
        except exceptions.TestyError as e:
            raise _handle_testy_error(e) from e
        except Exception as e:
            raise click.ClickException(repr(e)) from e

    return wrapper


def _setup_logging(verbose: bool, log_file: pathlib.Path | None) -> None:
    """Configure logging. The screen owns the terminal, so records only ever go to a file."""
    if log_file is None:
        logging.basicConfig(level=logging.WARNING, handlers=[logging.NullHandler()], force=True)
        return
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(level=level, filename=log_file, format=_LOG_FORMAT, force=True)


def _build_overrides(
    no_scroll: bool,
    shell: str | None,
    scroll_speed: int | None,
    exit_output: str | None,
) -> dict[str, Any]:
    """Nested config values from flags; unset flags stay None and are ignored."""
    return {
        "execution": {"shell": shell},
        "display": {
            "no_scroll": True if no_scroll else None,
            "scroll_speed": scroll_speed,
            "exit_output": exit_output,
        },
    }


@click.command(context_settings={"help_option_names": ["-h", "--help"]})
@click.version_option(__version__, "--version", prog_name="testy")
@click.option("--no-scroll", "-s", is_flag=True, help="Do not follow new output to the bottom")
@click.option("--shell", default=None, help="Shell used to run each stage [default: bash]")
@click.option(
    "--scroll-speed",
    type=click.IntRange(min=1),
    default=None,
    help="Lines per mouse wheel tick [default: 3]",
)
@click.option(
    "--exit-output",
    type=click.Choice([mode.value for mode in ExitOutput]),
    default=None,
    help="What to print after exiting [default: output]",
)
@click.option(
    "--log-file",
    type=click.Path(dir_okay=False, path_type=pathlib.Path),
    default=None,
    help="Write logs to this file",
)
@click.option("--verbose", "-v", is_flag=True, help="Log debug detail (with --log-file)")
@with_error_handling
def cli(
    no_scroll: bool,
    shell: str | None,
    scroll_speed: int | None,
    exit_output: str | None,
    log_file: pathlib.Path | None,
    verbose: bool,
) -> None:
    """Interactively build a shell pipeline and watch its output as you type.

    Type a command and press Enter to run it; pressing Enter again with a
    changed command cancels the previous run and starts over. Ctrl+C exits
    and prints the last output (or the last command, see --exit-output).
    """
    _setup_logging(verbose, log_file)
    config = config_io.load_config(_build_overrides(no_scroll, shell, scroll_speed, exit_output))
    result = tui_app.run_with_tui(config)
    for line in result.dump(config.display.exit_output):
        click.echo(line)


def main() -> None:
    """Main CLI entry point."""
    cli()


if __name__ == "__main__":
    main()
