"""Shell-style variable interpolation.

Supports the subset of Bash parameter expansion understood by Docker Compose:

- ``$NAME`` and ``${NAME}``
- ``${NAME-default}`` / ``${NAME:-default}``: default if unset (or empty)
- ``${NAME+alt}`` / ``${NAME:+alt}``: alternative if set (and non-empty)
- ``${NAME?message}`` / ``${NAME:?message}``: error if unset (or empty)

``$$`` escapes a literal dollar sign.  Arguments may contain further
references (``${FOO:-${BAR:-${BAZ}}}``), which are resolved innermost-first.
Values looked up from the environment are inserted verbatim and never
re-interpolated.  An unterminated or malformed ``${`` is kept as-is.
"""

from __future__ import annotations

import re
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any, TypeAlias

from stack_deployer.errors import InterpolationError

_NAME_RE = re.compile(r"[A-Za-z_][A-Za-z0-9_]*")

# Longest operators first so ``:-`` is not read as ``:`` + ``-``.
_OPERATORS = (":-", ":+", ":?", "-", "+", "?")


@dataclass(frozen=True, slots=True)
class Literal:
    text: str


@dataclass(frozen=True, slots=True)
class Reference:
    name: str
    operator: str | None = None
    argument: tuple[Token, ...] = ()


Token: TypeAlias = Literal | Reference


def tokenize(text: str) -> list[Token]:
    """Split *text* into literal and reference tokens."""
    tokens, _ = _scan(text, 0, in_argument=False)
    assert tokens is not None
    return tokens


def _scan(text: str, pos: int, *, in_argument: bool) -> tuple[list[Token] | None, int]:
    """Scan from *pos* until the end of *text* (or the closing ``}`` of an argument).

    Returns ``(None, pos)`` when an argument is malformed or unterminated.
    """
    tokens: list[Token] = []
    buf: list[str] = []

    def flush() -> None:
        if buf:
            tokens.append(Literal("".join(buf)))
            buf.clear()

    while pos < len(text):
        ch = text[pos]
        if in_argument and ch == "}":
            flush()
            return tokens, pos
        if in_argument and ch == "{":
            return None, pos
        if ch == "$":
            if text.startswith("$$", pos):
                buf.append("$")
                pos += 2
                continue
            ref, end = _scan_reference(text, pos)
            if ref is not None:
                flush()
                tokens.append(ref)
                pos = end
                continue
        buf.append(ch)
        pos += 1

    if in_argument:
        return None, pos
    flush()
    return tokens, pos


def _scan_reference(text: str, pos: int) -> tuple[Reference | None, int]:
    """Parse a reference starting at the ``$`` at *pos*."""
    bare = _NAME_RE.match(text, pos + 1)
    if bare is not None:
        return Reference(bare.group()), bare.end()

    if not text.startswith("${", pos):
        return None, pos

    name = _NAME_RE.match(text, pos + 2)
    if name is None:
        return None, pos
    cursor = name.end()
    if text.startswith("}", cursor):
        return Reference(name.group()), cursor + 1

    operator = next((op for op in _OPERATORS if text.startswith(op, cursor)), None)
    if operator is None:
        return None, pos

    argument, close = _scan(text, cursor + len(operator), in_argument=True)
    if argument is None:
        return None, pos
    return Reference(name.group(), operator, tuple(argument)), close + 1


def _evaluate(tokens: list[Token] | tuple[Token, ...], env: Mapping[str, str], strict: bool) -> str:
    return "".join(
        token.text if isinstance(token, Literal) else _resolve(token, env, strict)
        for token in tokens
    )


def _resolve(ref: Reference, env: Mapping[str, str], strict: bool) -> str:
    value = env.get(ref.name)
    # Arguments are evaluated before the reference itself (innermost-first).
    argument = _evaluate(ref.argument, env, strict)

    match ref.operator:
        case "-":
            return argument if value is None else value
        case ":-":
            return value if value else argument
        case "+":
            return argument if value is not None else ""
        case ":+":
            return argument if value else ""
        case "?" | ":?":
            missing = value is None if ref.operator == "?" else not value
            if missing:
                raise InterpolationError(
                    f"Failed to resolve variable {ref.name}: Missing required value: {argument}",
                    variable=ref.name,
                )
            assert value is not None
            return value

    if value is None:
        if strict:
            raise InterpolationError(
                f"Variable {ref.name} is required but not defined", variable=ref.name
            )
        return ""
    return value


def interpolate(text: str, env: Mapping[str, str], strict: bool = False) -> str:
    """Resolve all variable references in *text* against *env*.

    Raises:
        InterpolationError: On a failed ``?``/``:?`` reference, or on an
            undefined variable when *strict* is set.
    """
    return _evaluate(tokenize(text), env, strict)


def interpolate_spec(
    spec: Any,
    env: Mapping[str, str],
    *,
    key_interpolation: bool = False,
    strict: bool = False,
) -> Any:
    """Interpolate every string in a nested mapping/list structure.

    Mapping keys are left untouched unless *key_interpolation* is set.
    """
    if isinstance(spec, str):
        return interpolate(spec, env, strict)
    if isinstance(spec, Mapping):
        return {
            (interpolate(k, env, strict) if key_interpolation and isinstance(k, str) else k): (
                interpolate_spec(v, env, key_interpolation=key_interpolation, strict=strict)
            )
            for k, v in spec.items()
        }
    if isinstance(spec, list):
        return [
            interpolate_spec(v, env, key_interpolation=key_interpolation, strict=strict)
            for v in spec
        ]
    return spec
