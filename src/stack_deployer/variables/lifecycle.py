"""Resolve, hash and materialize secret/config declarations."""

from __future__ import annotations

import hashlib
import logging
import uuid
from typing import TYPE_CHECKING, Any

from stack_deployer.errors import ConfigurationError, DeploymentError, ErrorKind, ResolutionError
from stack_deployer.interpolation import interpolate
from stack_deployer.variables import codecs
from stack_deployer.variables.declarations import (
    ResolvedVariable,
    VariableDeclaration,
    VariableSource,
)
from stack_deployer.variables.labels import HASH_LABEL, NAME_LABEL, STACK_LABEL, VERSION_LABEL

if TYPE_CHECKING:
    from pathlib import Path
    from types import TracebackType

    from stack_deployer.config.settings import Settings

logger = logging.getLogger(__name__)

HASH_PREFIX_LENGTH = 7
GENERATED_SUFFIX = ".generated.secret"
SECRET_FILE_SUFFIX = ".secret"


def hash_content(content: str) -> str:
    """SHA-256 hex digest of *content* with surrounding whitespace trimmed."""
    return hashlib.sha256(content.strip().encode("utf-8")).hexdigest()


def resolve_variable(
    name: str,
    declaration: VariableDeclaration | dict[str, Any] | None,
    settings: Settings,
) -> ResolvedVariable:
    """Resolve a declaration into a file-backed, content-addressed variable.

    Side effect: content that is not already backed by a file (environment,
    inline content, encoded/decoded values) is written to
    ``{name}.{token}.generated.secret`` in the working directory.  The path
    is recorded as ``generated_file`` on the result; see :class:`GeneratedFiles`.

    Raises:
        ConfigurationError: No source can be found, or a directive is invalid.
        ResolutionError: A declared file or environment variable is missing.
    """
    logger.debug("Processing variable %s", name)
    if not isinstance(declaration, VariableDeclaration):
        declaration = VariableDeclaration.parse(name, declaration)

    if declaration.ignored:
        logger.debug('Variable "%s" is marked as ignored. Skipping.', name)
        return ResolvedVariable(logical_name=name, declaration=declaration)

    content: str | None = None
    backing_file: str | None = None

    match declaration.source:
        case VariableSource.FILE:
            try:
                content = _read_file(name, declaration, settings)
                backing_file = declaration.file
            except DeploymentError as exc:
                if exc.kind is not ErrorKind.RESOLUTION or settings.strict_variables:
                    raise
                logger.debug("%s; inferring the source instead", exc)
        case VariableSource.ENVIRONMENT:
            content = _read_environment(name, declaration, settings.variables)
        case VariableSource.CONTENT:
            assert declaration.content is not None
            content = interpolate(declaration.content, settings.variables)

    if content is None:
        content, backing_file = _infer(name, settings)

    if not content:
        logger.warning(
            'Variable "%s" is defined with an empty value. This is not recommended, '
            "as it may lead to unexpected behavior.",
            name,
        )

    if declaration.encoding is not None:
        logger.debug('Encoding variable "%s" to %s', name, declaration.encoding)
        content = codecs.encode(content, declaration.encoding, variable=name)
        backing_file = None
    elif declaration.decoding is not None:
        logger.debug('Decoding variable "%s" from %s', name, declaration.decoding)
        content = codecs.decode(content, declaration.decoding, variable=name)
        backing_file = None

    generated_file: Path | None = None
    if backing_file is None:
        generated_file = _materialize(name, content, settings.working_dir)
        backing_file = _stack_path(generated_file)

    digest = hash_content(content)
    base_name = declaration.name or f"{settings.stack}-{name}"
    labels = {
        **declaration.user_labels(),
        NAME_LABEL: name,
        HASH_LABEL: digest,
        STACK_LABEL: settings.stack,
        VERSION_LABEL: settings.version,
    }
    rewritten = declaration.model_copy(
        update={
            "name": f"{base_name}-{digest[:HASH_PREFIX_LENGTH]}",
            "file": backing_file,
            "environment": None,
            "content": None,
            "labels": labels,
        }
    )
    return ResolvedVariable(
        logical_name=name, declaration=rewritten, hash=digest, generated_file=generated_file
    )


def _read_file(name: str, declaration: VariableDeclaration, settings: Settings) -> str:
    assert declaration.file is not None
    path = settings.working_dir / declaration.file
    if not path.is_file():
        raise ResolutionError(
            f'Variable "{name}" specifies the file "{declaration.file}" as its source, '
            "but this file does not exist or is not readable. Ensure it exists, or remove "
            'the "file" property from the variable definition to infer the value from the '
            "build environment automatically.",
            variable=name,
        )
    logger.debug("Loading variable %s from file: %s", name, path)
    return _read_content(path)


def _read_environment(
    name: str, declaration: VariableDeclaration, variables: dict[str, str]
) -> str:
    # Environment values are used verbatim, without interpolation.
    assert declaration.environment is not None
    if declaration.environment not in variables:
        raise ResolutionError(
            f'Variable "{name}" specifies the environment variable '
            f'"{declaration.environment}" as its source, but there is no such variable '
            "defined in the environment. Ensure it exists, or remove the "
            '"environment" property from the variable definition to infer the value '
            "from the variable name automatically.",
            variable=name,
        )
    return variables[declaration.environment]


def environment_variants(name: str, *, prefix: str, stack: str) -> list[str]:
    """Environment variable names tried, in order, for an undeclared source."""
    safe = name.replace("-", "_")
    upper = safe.upper()
    return [
        safe,
        upper,
        f"{prefix}_{safe}",
        f"{prefix}_{upper}",
        f"{stack}_{safe}",
        f"{stack}_{safe}".upper(),
    ]


def _infer(name: str, settings: Settings) -> tuple[str, str | None]:
    """Find content for a declaration without an explicit source.

    Returns the content and, if it came from a file, the file it came from.
    """
    secret_file = settings.working_dir / f"{name}{SECRET_FILE_SUFFIX}"
    if secret_file.is_file():
        logger.debug('Loading variable "%s" from file: "%s"', name, secret_file)
        return _read_content(secret_file), _stack_path(secret_file)

    variants = environment_variants(name, prefix=settings.env_var_prefix, stack=settings.stack)
    for variant in variants:
        if variant in settings.variables:
            logger.debug('Loading variable "%s" from environment variable "%s"', name, variant)
            return settings.variables[variant], None

    expected = ", ".join(f'"{v}"' for v in dict.fromkeys(variants))
    raise ConfigurationError(
        f'Variable "{name}" is not defined in the environment. To use it as a secret or '
        f"config, set one of the environment variables {expected}, or create a file "
        f'named "{name}{SECRET_FILE_SUFFIX}" in the project root directory.'
    )


def _materialize(name: str, content: str, working_dir: Path) -> Path:
    """Write *content* to a uniquely named generated file."""
    path = working_dir / f"{name}.{uuid.uuid4()}{GENERATED_SUFFIX}"
    path.write_bytes(content.encode("utf-8"))
    logger.debug('Materialized variable "%s" to %s', name, path)
    return path


def _stack_path(path: Path) -> str:
    # Relative paths in a stack file must be explicit.
    return path.as_posix() if path.is_absolute() else f"./{path.as_posix()}"


def _read_content(path: Path) -> str:
    # Bytes as stored, so line endings stay part of the hash.  Binary files
    # are hashed lossily; the control plane reads the file itself.
    return path.read_bytes().decode("utf-8", errors="replace")


class GeneratedFiles:
    """Variable files written during one run, removed again on exit.

    Only files recorded here are deleted; other ``*.generated.secret`` files
    in the working directory (e.g. from a concurrent run) are left alone.
    """

    def __init__(self) -> None:
        self.paths: list[Path] = []

    def __enter__(self) -> GeneratedFiles:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.cleanup()

    def track(self, resolved: ResolvedVariable) -> None:
        if resolved.generated_file is not None:
            self.paths.append(resolved.generated_file)

    def cleanup(self) -> list[Path]:
        """Delete the recorded files and return their paths."""
        removed: list[Path] = []
        for path in self.paths:
            path.unlink(missing_ok=True)
            removed.append(path)
        self.paths.clear()
        if removed:
            logger.debug("Removed %d generated variable file(s)", len(removed))
        return removed
