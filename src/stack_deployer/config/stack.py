"""Stack file discovery, loading and reconciliation."""

from __future__ import annotations

import logging
import uuid
from pathlib import Path
from typing import TYPE_CHECKING, Any

from ruamel.yaml.error import YAMLError

from stack_deployer.config.serialization import dump_yaml, load_yaml
from stack_deployer.errors import ConfigurationError
from stack_deployer.interpolation import interpolate_spec
from stack_deployer.variables.lifecycle import resolve_variable

if TYPE_CHECKING:
    from stack_deployer.config.settings import Settings
    from stack_deployer.core.client import ControlPlaneClient
    from stack_deployer.variables.lifecycle import GeneratedFiles

logger = logging.getLogger(__name__)

SCHEMA_VERSION = "3.9"

_BASENAMES = ("compose", "docker-compose")
_QUALIFIERS = (".production", ".prod", "")
_EXTENSIONS = (".yaml", ".yml")

# Tried in order when no stack file is given explicitly.
DEFAULT_VARIANTS: tuple[str, ...] = (
    *(f"{b}{q}{e}" for b in _BASENAMES for q in _QUALIFIERS for e in _EXTENSIONS),
    *(f"{d}/{b}{e}" for d in (".docker", "docker") for b in _BASENAMES for e in _EXTENSIONS),
)

_VARIABLE_SECTIONS = ("secrets", "configs")


def resolve_stack_files(settings: Settings) -> list[Path]:
    """Return the stack files to deploy.

    Explicitly configured files must all exist; a missing one aborts the run
    rather than silently falling back to a default file.

    Raises:
        ConfigurationError: A configured file is missing, or no default
            variant exists.
    """
    root = settings.working_dir
    if settings.stack_files:
        logger.debug("Resolving stack files from %s", settings.stack_files)
        paths = [root / f for f in settings.stack_files]
        missing = [
            f for f, p in zip(settings.stack_files, paths, strict=True) if not p.is_file()
        ]
        if missing:
            raise ConfigurationError(
                "One or more stack files specified in the configuration are missing "
                f"or not readable: {', '.join(missing)}"
            )
        return paths

    for variant in DEFAULT_VARIANTS:
        path = root / variant
        if path.is_file():
            logger.info('Found stack file at "%s"', variant)
            return [path]

    raise ConfigurationError("Could not find a suitable stack file")


def load_stack_file(path: Path) -> dict[str, Any]:
    """Parse a single stack file.

    Raises:
        ConfigurationError: The file is not valid YAML or not a mapping.
    """
    try:
        spec = load_yaml(path)
    except (OSError, YAMLError) as exc:
        raise ConfigurationError(f"Failed to read {path}: {exc}") from exc
    if not isinstance(spec, dict):
        raise ConfigurationError(f"Invalid stack specification in {path}: expected a mapping")
    return spec


def _require_services(spec: dict[str, Any]) -> None:
    if not spec.get("services"):
        raise ConfigurationError("Invalid stack specification: Missing services section")


def reconcile(
    spec: dict[str, Any],
    settings: Settings,
    *,
    generated: GeneratedFiles | None = None,
) -> dict[str, Any]:
    """Adapt a stack spec for deployment and resolve its secrets and configs.

    The top-level ``name`` is dropped, a missing ``version`` defaults to
    ``3.9``, and (when variable management is on) every secret and config
    entry is replaced by its resolved, versioned declaration.  Returns a new
    mapping; *spec* is not modified.  Files written for resolved variables
    are recorded in *generated* when given.

    Raises:
        ConfigurationError: The spec has no services, or a declaration is
            invalid or has no source.
        ResolutionError: A declared file or environment variable is missing.
    """
    result = {k: v for k, v in spec.items() if k != "name"}
    result.setdefault("version", SCHEMA_VERSION)
    _require_services(result)

    if not settings.manage_variables:
        return result

    for section in _VARIABLE_SECTIONS:
        entries = result.get(section)
        if not entries:
            continue
        logger.info("Processing %s", section)
        resolved = {}
        for name, entry in entries.items():
            variable = resolve_variable(name, entry, settings)
            if generated is not None:
                generated.track(variable)
            resolved[name] = variable.declaration.to_spec()
        result[section] = resolved
    return result


def load_stack(
    settings: Settings,
    client: ControlPlaneClient,
    *,
    generated: GeneratedFiles | None = None,
) -> dict[str, Any]:
    """Load, reconcile and merge the stack files into one deployable spec.

    Merging is delegated to the control plane, which validates the files
    and resolves shorthand options.  Reconciled specs are written to
    temporary files for that step and removed afterwards.
    """
    specs = []
    for path in resolve_stack_files(settings):
        spec = load_stack_file(path)
        if settings.key_interpolation:
            spec = interpolate_spec(spec, settings.variables, key_interpolation=True)
        specs.append(reconcile(spec, settings, generated=generated))

    temp_files: list[Path] = []
    try:
        for spec in specs:
            name = f"docker-compose.generated.{uuid.uuid4()}.yaml"
            path = (settings.working_dir / name).absolute()
            path.write_text(dump_yaml(spec), encoding="utf-8")
            temp_files.append(path)
        merged = client.normalize_stack(temp_files, settings.variables)
    finally:
        for path in temp_files:
            path.unlink(missing_ok=True)

    _require_services(merged)
    logger.info("Loaded stack %s from %d file(s)", settings.stack, len(specs))
    return merged
