"""CLI command implementations."""

from __future__ import annotations

import os
import sys
from pathlib import Path
from typing import TYPE_CHECKING, Annotated, Any

import typer

from stack_deployer.cli import app
from stack_deployer.cli.errors import handle_error

if TYPE_CHECKING:
    from stack_deployer.config.settings import Settings
    from stack_deployer.core.client import ControlPlaneClient

StackName = Annotated[
    str | None,
    typer.Option("--stack", "-s", help="Stack name (default: repository name)."),
]

StackVersion = Annotated[
    str | None,
    typer.Option("--stack-version", help="Deployment version (default: tag or commit)."),
]

StackFiles = Annotated[
    list[Path] | None,
    typer.Option("--stack-file", "-f", help="Stack file to deploy; repeatable."),
]

WorkingDir = Annotated[
    Path | None,
    typer.Option("--working-dir", "-C", help="Directory to resolve stack and secret files in."),
]

EnvFile = Annotated[
    Path | None,
    typer.Option("--env-file", help="Load variables from a .env file."),
]

Variables = Annotated[
    list[str] | None,
    typer.Option("--var", help="Variable as KEY=VALUE; repeatable."),
]

Exclusions = Annotated[
    list[str] | None,
    typer.Option("--exclude", help="Variable to remove from the environment; repeatable."),
]

KeyInterpolation = Annotated[
    bool | None,
    typer.Option("--key-interpolation/--no-key-interpolation", help="Interpolate mapping keys."),
]

ManageVariables = Annotated[
    bool | None,
    typer.Option(
        "--manage-variables/--no-manage-variables",
        help="Resolve and version secrets and configs.",
    ),
]

StrictVariables = Annotated[
    bool | None,
    typer.Option(
        "--strict-variables/--no-strict-variables",
        help="Fail when a declared secret file is missing.",
    ),
]

Monitor = Annotated[
    bool | None,
    typer.Option("--monitor/--no-monitor", help="Wait for services to converge."),
]

MonitorInterval = Annotated[
    int | None,
    typer.Option("--monitor-interval", min=1, help="Seconds between status polls."),
]

MonitorTimeout = Annotated[
    int | None,
    typer.Option("--monitor-timeout", min=1, help="Seconds to wait for convergence."),
]

NoColor = Annotated[
    bool,
    typer.Option("--no-color", help="Disable colored output."),
]


def _use_color(no_color: bool) -> bool:
    """Determine whether to use color output."""
    return not (no_color or os.environ.get("NO_COLOR"))


def _client() -> ControlPlaneClient:
    from stack_deployer.core.docker import DockerCLIClient

    return DockerCLIClient()


def _build_settings(
    *,
    stack_file: list[Path] | None = None,
    variables: list[str] | None = None,
    exclude: list[str] | None = None,
    working_dir: Path | None = None,
    **inputs: Any,
) -> Settings:
    """Merge CLI options over ``DEPLOY_*`` environment inputs.

    Options left unset on the command line fall back to the environment.
    """
    from stack_deployer.config.settings import DeploymentInputs, parse_settings

    if stack_file:
        inputs["stack_file"] = "\n".join(str(f) for f in stack_file)
    if variables:
        inputs["extra_variables"] = "\n".join(variables)
    if exclude:
        inputs["exclude_variables"] = "\n".join(exclude)

    settings = parse_settings(
        DeploymentInputs(**{k: v for k, v in inputs.items() if v is not None})
    )
    if working_dir is not None:
        settings = settings.model_copy(update={"working_dir": working_dir})
    return settings


@app.command(name="deploy")
def deploy_cmd(
    stack: StackName = None,
    stack_version: StackVersion = None,
    stack_file: StackFiles = None,
    working_dir: WorkingDir = None,
    env_file: EnvFile = None,
    var: Variables = None,
    exclude: Exclusions = None,
    key_interpolation: KeyInterpolation = None,
    manage_variables: ManageVariables = None,
    strict_variables: StrictVariables = None,
    monitor: Monitor = None,
    monitor_interval: MonitorInterval = None,
    monitor_timeout: MonitorTimeout = None,
    no_color: NoColor = False,
) -> None:
    """Deploy the stack, wait for it to converge and prune outdated variables."""
    from rich.console import Console

    from stack_deployer.cli.formatting import styler
    from stack_deployer.deployment import deploy

    color = _use_color(no_color)
    try:
        settings = _build_settings(
            stack_name=stack,
            version=stack_version,
            stack_file=stack_file,
            working_dir=working_dir,
            env_file=env_file,
            variables=var,
            exclude=exclude,
            key_interpolation=key_interpolation,
            manage_variables=manage_variables,
            strict_variables=strict_variables,
            monitor=monitor,
            monitor_interval=monitor_interval,
            monitor_timeout=monitor_timeout,
        )
        console = Console(stderr=True, no_color=not color)
        with console.status(f"Deploying stack {settings.stack}..."):
            deploy(settings, _client())
    except Exception as exc:
        raise typer.Exit(handle_error(exc, color=color)) from exc

    typer.echo(
        styler(color)(
            f"Stack {settings.stack} deployed (version {settings.version}).", fg="green"
        )
    )


@app.command(name="reconcile")
def reconcile_cmd(
    stack: StackName = None,
    stack_version: StackVersion = None,
    stack_file: StackFiles = None,
    working_dir: WorkingDir = None,
    env_file: EnvFile = None,
    var: Variables = None,
    exclude: Exclusions = None,
    key_interpolation: KeyInterpolation = None,
    manage_variables: ManageVariables = None,
    strict_variables: StrictVariables = None,
    keep_generated: Annotated[
        bool,
        typer.Option("--keep-generated", help="Keep generated variable files."),
    ] = False,
    no_color: NoColor = False,
) -> None:
    """Print the reconciled stack files with resolved secrets and configs."""
    from stack_deployer.config.serialization import dump_yaml
    from stack_deployer.config.stack import load_stack_file, reconcile, resolve_stack_files
    from stack_deployer.interpolation import interpolate_spec
    from stack_deployer.variables.lifecycle import GeneratedFiles

    color = _use_color(no_color)
    generated = GeneratedFiles()
    try:
        settings = _build_settings(
            stack_name=stack,
            version=stack_version,
            stack_file=stack_file,
            working_dir=working_dir,
            env_file=env_file,
            variables=var,
            exclude=exclude,
            key_interpolation=key_interpolation,
            manage_variables=manage_variables,
            strict_variables=strict_variables,
        )
        documents = []
        for path in resolve_stack_files(settings):
            spec = load_stack_file(path)
            if settings.key_interpolation:
                spec = interpolate_spec(spec, settings.variables, key_interpolation=True)
            documents.append(dump_yaml(reconcile(spec, settings, generated=generated)))
    except Exception as exc:
        raise typer.Exit(handle_error(exc, color=color)) from exc
    finally:
        if not keep_generated:
            generated.cleanup()

    typer.echo("---\n".join(documents), nl=False)


@app.command(name="prune")
def prune_cmd(
    stack: StackName = None,
    stack_file: StackFiles = None,
    working_dir: WorkingDir = None,
    env_file: EnvFile = None,
    var: Variables = None,
    rotation_threshold_days: Annotated[
        int | None,
        typer.Option("--rotation-threshold-days", min=1, help="Flag secrets older than this."),
    ] = None,
    no_color: NoColor = False,
) -> None:
    """Remove secret and config versions the current stack files no longer use."""
    from stack_deployer.cli.formatting import format_prune_result
    from stack_deployer.config.stack import load_stack
    from stack_deployer.variables.lifecycle import GeneratedFiles
    from stack_deployer.variables.pruning import prune

    color = _use_color(no_color)
    try:
        settings = _build_settings(
            stack_name=stack,
            stack_file=stack_file,
            working_dir=working_dir,
            env_file=env_file,
            variables=var,
            rotation_threshold_days=rotation_threshold_days,
        )
        client = _client()
        with GeneratedFiles() as generated:
            spec = load_stack(settings, client, generated=generated)
        result = prune(spec, settings, client)
    except Exception as exc:
        raise typer.Exit(handle_error(exc, color=color)) from exc

    typer.echo(format_prune_result(result, color=color))


@app.command(name="monitor")
def monitor_cmd(
    stack: StackName = None,
    monitor_interval: MonitorInterval = None,
    monitor_timeout: MonitorTimeout = None,
    no_color: NoColor = False,
) -> None:
    """Wait for the services of a deployed stack to converge."""
    from stack_deployer.cli.formatting import styler
    from stack_deployer.monitoring import monitor

    color = _use_color(no_color)
    try:
        settings = _build_settings(
            stack_name=stack,
            monitor=True,
            monitor_interval=monitor_interval,
            monitor_timeout=monitor_timeout,
        )
        monitor(settings, _client())
    except Exception as exc:
        raise typer.Exit(handle_error(exc, color=color)) from exc

    typer.echo(styler(color)(f"All services of stack {settings.stack} converged.", fg="green"))


@app.command(name="interpolate")
def interpolate_cmd(
    text: Annotated[
        str | None,
        typer.Argument(help="Text to interpolate; read from stdin when omitted."),
    ] = None,
    env_file: EnvFile = None,
    var: Variables = None,
    strict: Annotated[
        bool,
        typer.Option("--strict", help="Fail on undefined variables."),
    ] = False,
    no_color: NoColor = False,
) -> None:
    """Resolve variable references in text against the deployment environment."""
    from stack_deployer.interpolation import interpolate

    color = _use_color(no_color)
    try:
        settings = _build_settings(env_file=env_file, variables=var)
        source = text if text is not None else sys.stdin.read()
        result = interpolate(source, settings.variables, strict)
    except Exception as exc:
        raise typer.Exit(handle_error(exc, color=color)) from exc

    typer.echo(result, nl=text is not None)
