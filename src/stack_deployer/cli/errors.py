"""Map exceptions to clean stderr messages and exit codes."""

from __future__ import annotations

import typer


def _err(msg: str, *, fg: str | None) -> None:
    """Print a styled message to stderr."""
    typer.echo(typer.style(msg, fg=fg), err=True)


def handle_error(exc: BaseException, *, color: bool = True) -> int:
    """Print a clean error message to stderr and return an exit code.

    All errors map to exit code 1.  No tracebacks are printed.
    """
    from stack_deployer.cli.formatting import format_diagnostics
    from stack_deployer.errors import (
        ConfigurationError,
        ControlPlaneError,
        ConvergenceError,
        DeploymentTimeoutError,
        InterpolationError,
        ResolutionError,
    )

    fg = typer.colors.RED if color else None

    if not isinstance(exc, Exception):
        _err("Deployment failed due to an unknown error.", fg=fg)
    elif isinstance(exc, ConfigurationError):
        _err(f"Configuration error: {exc}", fg=fg)
    elif isinstance(exc, InterpolationError):
        _err(f"Interpolation failed: {exc}", fg=fg)
    elif isinstance(exc, ResolutionError):
        _err(f"Variable resolution failed: {exc}", fg=fg)
    elif isinstance(exc, ControlPlaneError):
        _err(f"Control plane error: {exc}", fg=fg)
    elif isinstance(exc, ConvergenceError):
        _err(f"Deployment failed: {exc}", fg=fg)
        if isinstance(exc, DeploymentTimeoutError) and exc.pending:
            _err(f"  Pending services: {', '.join(exc.pending)}", fg=fg)
        for block in format_diagnostics(exc.diagnostics):
            _err(block, fg=None)
    else:
        _err(f"Error: {exc}", fg=fg)

    return 1
