"""Control plane access."""

from stack_deployer.core.client import ControlPlaneClient, label_filter
from stack_deployer.core.docker import DockerCLIClient
from stack_deployer.core.models import (
    InventoryItem,
    LogEntry,
    ServiceSnapshot,
    TaskInfo,
    UpdateStatus,
)

__all__ = [
    "ControlPlaneClient",
    "DockerCLIClient",
    "InventoryItem",
    "LogEntry",
    "ServiceSnapshot",
    "TaskInfo",
    "UpdateStatus",
    "label_filter",
]
