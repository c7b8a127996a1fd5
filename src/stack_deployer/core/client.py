"""Control plane client interface."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Protocol

if TYPE_CHECKING:
    from collections.abc import Mapping, Sequence
    from datetime import datetime
    from pathlib import Path

    from stack_deployer.core.models import InventoryItem, LogEntry, ServiceSnapshot, TaskInfo


class ControlPlaneClient(Protocol):
    """Commands issued against the cluster.

    Label filters are ``key=value`` strings.  Implementations raise
    :class:`~stack_deployer.errors.ControlPlaneError` on failure and never
    retry on their own.
    """

    def deploy_stack(self, spec: Mapping[str, Any], stack: str, env: Mapping[str, str]) -> None:
        """Apply *spec* as stack *stack*."""

    def normalize_stack(
        self, files: Sequence[Path], env: Mapping[str, str]
    ) -> dict[str, Any]:
        """Merge stack files into a single canonical spec."""

    def list_services(
        self, labels: Sequence[str], *, inspect: bool = True
    ) -> list[ServiceSnapshot]:
        """List services matching all *labels*; with *inspect*, include update status."""

    def get_service_logs(
        self, service_id: str, *, since: datetime | None = None, tail: int | None = None
    ) -> list[LogEntry]:
        """Fetch logs of a service."""

    def list_service_tasks(self, service_id: str) -> list[TaskInfo]:
        """List the tasks of a service."""

    def list_secrets(self, labels: Sequence[str]) -> list[InventoryItem]:
        """List secrets matching all *labels*."""

    def list_configs(self, labels: Sequence[str]) -> list[InventoryItem]:
        """List configs matching all *labels*."""

    def remove_secret(self, secret_id: str) -> None:
        """Remove a secret."""

    def remove_config(self, config_id: str) -> None:
        """Remove a config."""


def label_filter(key: str, value: str) -> str:
    """Build a ``key=value`` label filter."""
    return f"{key}={value}"
