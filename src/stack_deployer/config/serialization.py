"""YAML reading/writing for stack files."""

from __future__ import annotations

from io import StringIO
from pathlib import Path
from typing import Any

from ruamel.yaml import YAML


def _yaml() -> YAML:
    yaml = YAML(typ="safe", pure=True)
    yaml.default_flow_style = False
    return yaml


def load_yaml(source: Path | str) -> Any:
    """Parse YAML from a file path or a string."""
    if isinstance(source, Path):
        return _yaml().load(source)
    return _yaml().load(StringIO(source))


def dump_yaml(data: Any) -> str:
    """Serialize *data* to block-style YAML."""
    buf = StringIO()
    _yaml().dump(data, buf)
    return buf.getvalue()
