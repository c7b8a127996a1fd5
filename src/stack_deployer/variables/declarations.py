"""Secret/config declaration models."""

from __future__ import annotations

from enum import Enum
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from stack_deployer.errors import ConfigurationError
from stack_deployer.variables.labels import (
    DECODE_LABEL,
    DIRECTIVE_LABELS,
    ENCODE_LABEL,
    HASH_LABEL,
    IGNORE_LABEL,
    NAME_LABEL,
    STACK_LABEL,
    VERSION_LABEL,
)

_EXPLICIT_SOURCES = ("file", "environment", "content")


class VariableSource(str, Enum):
    FILE = "file"
    ENVIRONMENT = "environment"
    CONTENT = "content"
    INFERRED = "inferred"


class VariableDeclaration(BaseModel):
    """A secret or config entry as declared in a stack file.

    At most one of ``file``, ``environment`` and ``content`` may be set; with
    none of them the source is inferred from the logical name.  Compose keys
    this tool does not interpret (``driver``, ``external``, …) are kept as
    extra fields and passed through.
    """

    model_config = ConfigDict(extra="allow")

    name: str | None = None
    file: str | None = None
    environment: str | None = None
    content: str | None = None
    labels: dict[str, str] = Field(default_factory=dict)

    @field_validator("content", mode="before")
    @classmethod
    def _content_to_str(cls, v: Any) -> Any:
        if v is None or isinstance(v, str):
            return v
        return str(v)

    @field_validator("labels", mode="before")
    @classmethod
    def _normalize_labels(cls, v: Any) -> Any:
        # Compose accepts labels as a mapping or as a list of ``key=value``.
        if v is None:
            return {}
        if isinstance(v, list):
            return dict(str(item).partition("=")[::2] for item in v)
        if isinstance(v, dict):
            return {str(k): _label_value(val) for k, val in v.items()}
        return v

    @model_validator(mode="after")
    def _check_directives(self) -> VariableDeclaration:
        explicit = [s for s in _EXPLICIT_SOURCES if getattr(self, s) is not None]
        if len(explicit) > 1:
            raise ValueError(
                f"multiple sources declared ({', '.join(explicit)}); specify at most one"
            )
        if ENCODE_LABEL in self.labels and DECODE_LABEL in self.labels:
            raise ValueError("encode and decode directives are mutually exclusive")
        return self

    @classmethod
    def parse(cls, name: str, raw: dict[str, Any] | None) -> VariableDeclaration:
        """Validate a raw stack-file entry, raising ``ConfigurationError`` on failure."""
        try:
            return cls.model_validate(raw or {})
        except ValidationError as exc:
            raise ConfigurationError(f'Invalid declaration for variable "{name}": {exc}') from exc

    @property
    def source(self) -> VariableSource:
        for s in _EXPLICIT_SOURCES:
            if getattr(self, s) is not None:
                return VariableSource(s)
        return VariableSource.INFERRED

    @property
    def ignored(self) -> bool:
        return self.labels.get(IGNORE_LABEL, "").lower() == "true"

    @property
    def encoding(self) -> str | None:
        return self.labels.get(ENCODE_LABEL)

    @property
    def decoding(self) -> str | None:
        return self.labels.get(DECODE_LABEL)

    def user_labels(self) -> dict[str, str]:
        """Labels declared by the user, without directive labels."""
        return {k: v for k, v in self.labels.items() if k not in DIRECTIVE_LABELS}

    def to_spec(self) -> dict[str, Any]:
        """Dump back to a stack-file entry."""
        return self.model_dump(exclude_none=True)


class VariableIdentity(BaseModel):
    """Identity of a managed secret/config version, read from its labels."""

    model_config = ConfigDict(frozen=True)

    name: str
    hash: str
    stack: str
    version: str

    @classmethod
    def from_labels(cls, labels: dict[str, Any] | None) -> VariableIdentity | None:
        """Return the identity, or ``None`` if any identity label is missing or empty."""
        labels = labels or {}
        values = {
            "name": labels.get(NAME_LABEL),
            "hash": labels.get(HASH_LABEL),
            "stack": labels.get(STACK_LABEL),
            "version": labels.get(VERSION_LABEL),
        }
        if not all(values.values()):
            return None
        return cls(**{k: str(v) for k, v in values.items()})

    @property
    def key(self) -> str:
        return f"{self.stack}{self.name}{self.hash}"


class ResolvedVariable(BaseModel):
    """Result of resolving a declaration.

    ``declaration`` is the rewritten stack-file entry: file-backed, with the
    versioned name and identity labels applied.  For ignored declarations it
    is returned unchanged and ``hash`` is ``None``.  ``generated_file`` is the
    file written for content that had no backing file of its own.
    """

    logical_name: str
    declaration: VariableDeclaration
    hash: str | None = None
    generated_file: Path | None = None

    @property
    def generated(self) -> bool:
        return self.generated_file is not None

    @property
    def name(self) -> str | None:
        return self.declaration.name

    @property
    def file(self) -> str | None:
        return self.declaration.file

    @property
    def labels(self) -> dict[str, str]:
        return self.declaration.labels

    @property
    def identity(self) -> VariableIdentity | None:
        return VariableIdentity.from_labels(self.labels)


def _label_value(v: Any) -> str:
    if isinstance(v, bool):
        return "true" if v else "false"
    return str(v)
