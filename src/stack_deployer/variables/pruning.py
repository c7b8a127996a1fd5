"""Garbage collection of superseded secret/config versions."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING, Any

from stack_deployer.core.client import label_filter
from stack_deployer.variables.declarations import VariableDeclaration, VariableIdentity
from stack_deployer.variables.labels import STACK_LABEL

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable, Mapping

    from stack_deployer.config.settings import Settings
    from stack_deployer.core.client import ControlPlaneClient
    from stack_deployer.core.models import InventoryItem

logger = logging.getLogger(__name__)


@dataclass
class PruneResult:
    """Outcome of a prune pass: removed item ids and ids due for rotation."""

    removed: list[str] = field(default_factory=list)
    rotate: list[str] = field(default_factory=list)

    def extend(self, other: PruneResult) -> None:
        self.removed.extend(other.removed)
        self.rotate.extend(other.rotate)


def declared_identities(entries: Mapping[str, Any] | None) -> set[str]:
    """Identity keys of the variables declared in a stack-file section."""
    keys: set[str] = set()
    for entry in (entries or {}).values():
        if isinstance(entry, VariableDeclaration):
            labels: Any = entry.labels
        else:
            labels = (entry or {}).get("labels")
        identity = VariableIdentity.from_labels(labels if isinstance(labels, dict) else None)
        if identity is not None:
            keys.add(identity.key)
    return keys


def prune_variables(
    kind: str,
    current: set[str],
    inventory: Iterable[InventoryItem],
    remover: Callable[[str], None],
    *,
    rotation_threshold: timedelta,
    now: datetime | None = None,
) -> PruneResult:
    """Remove inventory items that no declared variable refers to.

    Items lacking any identity label are treated as foreign and removed.
    Removal errors propagate.
    """
    now = now or datetime.now(UTC)
    result = PruneResult()
    items = list(inventory)
    if not items:
        return result

    logger.info("Checking %d %s%s", len(items), kind, "s" if len(items) != 1 else "")

    for i, item in enumerate(items, start=1):
        name = item.display_name
        logger.debug("Checking %s %d/%d: %s", kind, i, len(items), name)

        identity = VariableIdentity.from_labels(item.labels)
        if identity is None:
            logger.info('Found invalid %s "%s": Missing identity labels. Pruning.', kind, name)
            remover(item.id)
            result.removed.append(item.id)
            continue

        if identity.key not in current:
            logger.info(
                'Pruning outdated version "%s" of %s "%s": %s',
                identity.hash[:7],
                kind,
                identity.name,
                name,
            )
            remover(item.id)
            result.removed.append(item.id)

        if _created_before(item, now - rotation_threshold):
            logger.warning(
                '%s "%s" has been in use for too long and should be rotated!',
                kind.capitalize(),
                name,
            )
            result.rotate.append(item.id)

    return result


def prune(
    spec: Mapping[str, Any],
    settings: Settings,
    client: ControlPlaneClient,
    *,
    now: datetime | None = None,
) -> PruneResult:
    """Prune outdated secrets and configs of the stack."""
    logger.info("Pruning outdated variables for stack %s", settings.stack)
    threshold = timedelta(days=settings.rotation_threshold_days)
    stack_filter = [label_filter(STACK_LABEL, settings.stack)]

    result = prune_variables(
        "secret",
        declared_identities(spec.get("secrets")),
        client.list_secrets(stack_filter),
        client.remove_secret,
        rotation_threshold=threshold,
        now=now,
    )
    result.extend(
        prune_variables(
            "config",
            declared_identities(spec.get("configs")),
            client.list_configs(stack_filter),
            client.remove_config,
            rotation_threshold=threshold,
            now=now,
        )
    )
    return result


def _created_before(item: InventoryItem, cutoff: datetime) -> bool:
    created = item.created_at
    if created is None:
        return False
    if created.tzinfo is None:
        created = created.replace(tzinfo=UTC)
    return created < cutoff
