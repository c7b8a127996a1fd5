"""Reserved label keys stored on secrets and configs."""

from __future__ import annotations

_PREFIX = "com.matchory.deployment"

# Identity labels, written on every managed secret/config.
NAME_LABEL = f"{_PREFIX}.name"
HASH_LABEL = f"{_PREFIX}.hash"
STACK_LABEL = f"{_PREFIX}.stack"
VERSION_LABEL = f"{_PREFIX}.version"

IDENTITY_LABELS: tuple[str, ...] = (NAME_LABEL, HASH_LABEL, STACK_LABEL, VERSION_LABEL)

# Directive labels, read from declarations and never written back.
IGNORE_LABEL = f"{_PREFIX}.ignore"
ENCODE_LABEL = f"{_PREFIX}.encode"
DECODE_LABEL = f"{_PREFIX}.decode"

DIRECTIVE_LABELS: frozenset[str] = frozenset({IGNORE_LABEL, ENCODE_LABEL, DECODE_LABEL})

# Label Docker attaches to every service of a stack.
STACK_NAMESPACE_LABEL = "com.docker.stack.namespace"
