"""CLI application for stack-deployer."""

from __future__ import annotations

import logging
import os
import sys
from typing import TextIO

import typer

from stack_deployer import __version__

app = typer.Typer(
    name="stack-deployer",
    no_args_is_help=True,
    add_completion=False,
)

LOG_LEVEL_VARIABLE = "DEPLOY_LOG"

_LOG_FORMAT = "%(levelname)s %(name)s: %(message)s"
_VALID_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}

# Workflow command prefixes understood by GitHub Actions runners.
_WORKFLOW_COMMANDS = {
    logging.DEBUG: "::debug::",
    logging.WARNING: "::warning::",
    logging.ERROR: "::error::",
    logging.CRITICAL: "::error::",
}


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(f"stack-deployer {__version__}")
        raise typer.Exit


class WorkflowCommandFormatter(logging.Formatter):
    """Render records as GitHub Actions workflow commands.

    Info records stay plain output; the other levels become annotations.
    Newlines are escaped so multi-line messages stay one annotation.
    """

    def format(self, record: logging.LogRecord) -> str:
        message = super().format(record)
        prefix = _WORKFLOW_COMMANDS.get(record.levelno)
        if prefix is None:
            return message
        escaped = message.replace("%", "%25").replace("\r", "%0D").replace("\n", "%0A")
        return f"{prefix}{escaped}"


class _StderrHandler(logging.StreamHandler):
    """Write to whatever ``sys.stderr`` is when a record is emitted."""

    def __init__(self) -> None:
        logging.Handler.__init__(self)

    @property
    def stream(self) -> TextIO:  # type: ignore[override]
        return sys.stderr


def _resolve_level(verbose: bool, quiet: bool) -> int:
    """Pick the log level: ``DEPLOY_LOG`` > ``-v``/``RUNNER_DEBUG`` > ``-q`` > info."""
    env_level = os.environ.get(LOG_LEVEL_VARIABLE, "").upper()
    if env_level:
        if env_level in _VALID_LEVELS:
            return getattr(logging, env_level)
        print(
            f"WARNING: invalid {LOG_LEVEL_VARIABLE} level '{env_level}', "
            f"expected one of {', '.join(sorted(_VALID_LEVELS))}; defaulting to INFO",
            file=sys.stderr,
        )
        return logging.INFO
    # Re-running a workflow with debug logging enabled sets RUNNER_DEBUG=1.
    if verbose or os.environ.get("RUNNER_DEBUG") == "1":
        return logging.DEBUG
    if quiet:
        return logging.WARNING
    return logging.INFO


def _configure_logging(verbose: bool = False, quiet: bool = False) -> None:
    """Route ``stack_deployer`` logs to stderr.

    Milestones are shown by default.  Inside GitHub Actions
    (``GITHUB_ACTIONS=true``) records are rendered as workflow commands.
    """
    if os.environ.get("GITHUB_ACTIONS") == "true":
        formatter: logging.Formatter = WorkflowCommandFormatter("%(message)s")
    else:
        formatter = logging.Formatter(_LOG_FORMAT)

    handler = _StderrHandler()
    handler.setFormatter(formatter)

    logger = logging.getLogger("stack_deployer")
    for existing in [h for h in logger.handlers if isinstance(h, _StderrHandler)]:
        logger.removeHandler(existing)
    logger.addHandler(handler)
    logger.setLevel(_resolve_level(verbose, quiet))


@app.callback()
def main(
    version: bool | None = typer.Option(
        None,
        "--version",
        "-V",
        help="Show version and exit.",
        callback=_version_callback,
        is_eager=True,
    ),
    verbose: bool = typer.Option(
        False,
        "--verbose",
        "-v",
        help="Show debug output (also enabled by RUNNER_DEBUG=1).",
    ),
    quiet: bool = typer.Option(
        False,
        "--quiet",
        "-q",
        help="Only show warnings and errors.",
    ),
) -> None:
    """Deploy Compose stacks to Docker Swarm with versioned secrets and configs."""
    _ = version
    _configure_logging(verbose, quiet)


# Register commands after app is created to avoid circular imports.
from stack_deployer.cli import commands as _commands  # noqa: E402, F401
