"""Console output rendering."""

from __future__ import annotations

from typing import TYPE_CHECKING

import typer

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable

    from stack_deployer.monitoring import RolloutDiagnostics
    from stack_deployer.variables.pruning import PruneResult


def styler(color: bool) -> Callable[..., str]:
    """Return ``typer.style`` when *color* is True, otherwise a passthrough."""
    if color:
        return typer.style
    return lambda text, **_kw: text


def _plural(n: int, noun: str) -> str:
    return f"{n} {noun}{'s' if n != 1 else ''}"


def format_prune_result(result: PruneResult, *, color: bool = True) -> str:
    style = styler(color)
    if not result.removed and not result.rotate:
        return "No outdated variables found."
    lines = []
    if result.removed:
        lines.append(style(f"Pruned {_plural(len(result.removed), 'variable')}.", fg="green"))
    if result.rotate:
        lines.append(
            style(f"{_plural(len(result.rotate), 'variable')} should be rotated.", fg="yellow")
        )
    return "\n".join(lines)


def format_diagnostics(diagnostics: Iterable[RolloutDiagnostics]) -> list[str]:
    """Render rollout diagnostics, one block per service."""
    return [d.render() for d in diagnostics]
