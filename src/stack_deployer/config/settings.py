"""Deployment settings and the layered variable environment."""

from __future__ import annotations

import json
import logging
import os
import re
from collections.abc import Mapping
from pathlib import Path

from dotenv import dotenv_values
from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)

STACK_VARIABLE = "MATCHORY_DEPLOYMENT_STACK"
VERSION_VARIABLE = "MATCHORY_DEPLOYMENT_VERSION"

_HEREDOC_RE = re.compile(r"^([A-Za-z_][A-Za-z0-9_]*)<<([A-Za-z0-9_]+)$")

# Environment variables that hold raw inputs rather than deployment values.
_INPUT_KEYS: frozenset[str] = frozenset({"VARIABLES"})


class Settings(BaseModel):
    """Resolved settings for a single deployment run."""

    stack: str
    version: str
    stack_files: list[str] = Field(default_factory=list)
    env_var_prefix: str = "DEPLOYMENT"
    key_interpolation: bool = False
    manage_variables: bool = True
    monitor: bool = False
    monitor_interval: int = Field(default=5, gt=0)
    monitor_timeout: int = Field(default=300, gt=0)
    strict_variables: bool = True
    rotation_threshold_days: int = Field(default=365, gt=0)
    variables: dict[str, str] = Field(default_factory=dict)
    working_dir: Path = Path()

    @field_validator("env_var_prefix")
    @classmethod
    def _strip_trailing_underscore(cls, v: str) -> str:
        return v.removesuffix("_")


class DeploymentInputs(BaseSettings):
    """Raw deployment inputs.

    Every field can be set via constructor kwargs (e.g. CLI options) or an
    environment variable with the ``DEPLOY_`` prefix.  Constructor kwargs take
    precedence.
    """

    model_config = SettingsConfigDict(env_prefix="DEPLOY_")

    stack_name: str | None = None
    version: str | None = None
    stack_file: str | None = None
    env_var_prefix: str | None = None
    env_file: Path | None = None
    variables: str | None = None
    secrets: str | None = None
    exclude_variables: str | None = None
    extra_variables: str | None = None
    key_interpolation: bool = False
    manage_variables: bool = True
    monitor: bool = False
    monitor_interval: int = 5
    monitor_timeout: int = 300
    strict_variables: bool = True
    rotation_threshold_days: int = 365


def parse_settings(inputs: DeploymentInputs, env: Mapping[str, str] | None = None) -> Settings:
    """Infer the run settings from raw inputs and the process environment."""
    logger.debug("Parsing settings from inputs")
    env = os.environ if env is None else env

    stack = infer_stack_name(inputs.stack_name, env)
    version = infer_version(inputs.version, env)
    variables = build_variables(inputs, env)

    # Deployment variables are always available during interpolation.
    variables[STACK_VARIABLE] = stack
    variables[VERSION_VARIABLE] = version

    return Settings(
        stack=stack,
        version=version,
        stack_files=infer_stack_files(inputs.stack_file, env),
        env_var_prefix=inputs.env_var_prefix or "DEPLOYMENT",
        key_interpolation=inputs.key_interpolation,
        manage_variables=inputs.manage_variables,
        monitor=inputs.monitor,
        monitor_interval=inputs.monitor_interval,
        monitor_timeout=inputs.monitor_timeout,
        strict_variables=inputs.strict_variables,
        rotation_threshold_days=inputs.rotation_threshold_days,
        variables=variables,
    )


def infer_stack_name(name: str | None, env: Mapping[str, str]) -> str:
    if name:
        return name
    repository = env.get("GITHUB_REPOSITORY", "")
    return repository.split("/")[-1] or "unknown"


def infer_version(version: str | None, env: Mapping[str, str]) -> str:
    if version:
        return version
    ref = env.get("GITHUB_REF", "")
    if ref.startswith("refs/tags/"):
        return ref.removeprefix("refs/tags/")
    sha = env.get("GITHUB_SHA")
    return sha[:7] if sha else "unknown"


def infer_stack_files(files: str | None, env: Mapping[str, str]) -> list[str]:
    """Split the stack file input (or ``COMPOSE_FILE``) into paths.

    Newline-separated input wins unless ``COMPOSE_PATH_SEPARATOR`` is set
    explicitly; otherwise the separator defaults to ``:``.
    """
    raw = files or env.get("COMPOSE_FILE") or ""
    custom_separator = env.get("COMPOSE_PATH_SEPARATOR")
    if "\n" in raw and custom_separator is None:
        separator = "\n"
    else:
        separator = custom_separator or ":"
    return [f.strip() for f in raw.split(separator) if f.strip()]


def build_variables(inputs: DeploymentInputs, env: Mapping[str, str]) -> dict[str, str]:
    """Build the variable environment, lowest priority first.

    ``.env`` file < process environment < ``variables`` < ``secrets`` <
    exclusions < ``extra_variables``.  Extra variables cannot be excluded.
    """
    variables: dict[str, str] = {}

    if inputs.env_file is not None:
        if not inputs.env_file.is_file():
            logger.warning("Environment file %s does not exist; ignoring", inputs.env_file)
        else:
            for key, value in dotenv_values(inputs.env_file, encoding="utf-8-sig").items():
                if value is not None:
                    variables[key] = value

    for key, value in env.items():
        if key in _INPUT_KEYS or not value:
            continue
        variables[key] = value

    if inputs.variables:
        variables.update(parse_variable_input(inputs.variables))
    if inputs.secrets:
        variables.update(parse_variable_input(inputs.secrets))

    if inputs.exclude_variables:
        for key in (line.strip() for line in inputs.exclude_variables.splitlines()):
            if key:
                variables.pop(key, None)

    if inputs.extra_variables:
        variables.update(parse_variable_input(inputs.extra_variables))

    return variables


def parse_variable_input(text: str) -> dict[str, str]:
    """Parse a JSON object or ``KEY=VALUE`` lines (with ``KEY<<EOF`` heredocs)."""
    stripped = text.strip()
    if _is_json_like(stripped):
        try:
            parsed = json.loads(stripped)
        except json.JSONDecodeError:
            logger.debug("Variable input looks like JSON but failed to parse; using KEY=VALUE")
        else:
            if isinstance(parsed, dict):
                return {
                    k: v if isinstance(v, str) else _stringify(v)
                    for k, v in parsed.items()
                    if v is not None
                }

    variables: dict[str, str] = {}
    lines = text.split("\n")
    i = 0
    while i < len(lines):
        line = lines[i].strip()
        i += 1
        if not line or line.startswith("#"):
            continue

        heredoc = _HEREDOC_RE.match(line)
        if heredoc is not None:
            key, delimiter = heredoc.groups()
            content: list[str] = []
            while i < len(lines) and lines[i] != delimiter:
                content.append(lines[i])
                i += 1
            i += 1  # closing delimiter
            variables[key] = "\n".join(content)
            continue

        key, *parts = (part.strip() for part in line.split("="))
        variables[key] = "=".join(parts)

    return variables


def _stringify(value: object) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (dict, list)):
        return json.dumps(value)
    return str(value)


def _is_json_like(text: str) -> bool:
    if not (text.startswith("{") and text.endswith("}")):
        return False
    # ``{`` … ``}`` with ``=`` but no ``:`` is almost certainly KEY=VALUE.
    return not ("=" in text and ":" not in text)
