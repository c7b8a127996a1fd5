"""Content encoders/decoders selected by the encode/decode directive labels."""

from __future__ import annotations

import base64
import binascii
from collections.abc import Callable
from urllib.parse import quote, unquote

from stack_deployer.errors import ConfigurationError

# Characters ``encodeURIComponent`` leaves unescaped.
_URL_SAFE = "-_.!~*'()"


def _b64url_decode(value: str) -> bytes:
    return base64.urlsafe_b64decode(value + "=" * (-len(value) % 4))


ENCODERS: dict[str, Callable[[str], str]] = {
    "base64": lambda v: base64.b64encode(v.encode("utf-8")).decode("ascii"),
    "base64url": lambda v: base64.urlsafe_b64encode(v.encode("utf-8")).decode("ascii").rstrip("="),
    "hex": lambda v: v.encode("utf-8").hex(),
    "url": lambda v: quote(v, safe=_URL_SAFE),
}

DECODERS: dict[str, Callable[[str], str]] = {
    "base64": lambda v: base64.b64decode(v).decode("utf-8"),
    "base64url": lambda v: _b64url_decode(v).decode("utf-8"),
    "hex": lambda v: bytes.fromhex(v).decode("utf-8"),
    "url": lambda v: unquote(v, errors="strict"),
}


def encode(content: str, fmt: str, *, variable: str) -> str:
    """Encode *content* to *fmt*."""
    return _apply(ENCODERS, content, fmt, variable=variable, verb="encoding")


def decode(content: str, fmt: str, *, variable: str) -> str:
    """Decode *content* from *fmt*."""
    return _apply(DECODERS, content, fmt, variable=variable, verb="decoding")


def _apply(
    codecs: dict[str, Callable[[str], str]],
    content: str,
    fmt: str,
    *,
    variable: str,
    verb: str,
) -> str:
    codec = codecs.get(fmt)
    if codec is None:
        supported = ", ".join(codecs)
        raise ConfigurationError(
            f'Variable "{variable}" specifies an unknown {verb} format: "{fmt}". '
            f'Must be one of "{supported}".'
        )
    try:
        return codec(content)
    except (binascii.Error, ValueError) as exc:
        raise ConfigurationError(
            f'Variable "{variable}" could not be {verb.removesuffix("ing")}ed as {fmt}: {exc}'
        ) from exc
