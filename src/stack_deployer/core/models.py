"""Structured results returned by the control plane client."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field


class InventoryItem(BaseModel):
    """A secret or config stored in the cluster."""

    id: str
    name: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None
    labels: dict[str, str] = Field(default_factory=dict)

    @property
    def display_name(self) -> str:
        return self.name or self.id


class UpdateStatus(BaseModel):
    state: str | None = None
    message: str | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None


class ServiceSnapshot(BaseModel):
    """Point-in-time view of a service, re-fetched on every monitor poll."""

    id: str
    name: str | None = None
    running_tasks: int | None = None
    desired_tasks: int | None = None
    update_status: UpdateStatus | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @property
    def display_name(self) -> str:
        return self.name or self.id


class TaskInfo(BaseModel):
    id: str
    service_id: str | None = None
    state: str | None = None
    desired_state: str | None = None
    message: str | None = None
    error: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None


class LogEntry(BaseModel):
    timestamp: datetime | None = None
    metadata: dict[str, str] = Field(default_factory=dict)
    message: str = ""
