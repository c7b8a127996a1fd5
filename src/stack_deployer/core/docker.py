"""Control plane client backed by the ``docker`` CLI."""

from __future__ import annotations

import json
import logging
import os
import re
import subprocess
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from stack_deployer.config.serialization import dump_yaml, load_yaml
from stack_deployer.core.models import (
    InventoryItem,
    LogEntry,
    ServiceSnapshot,
    TaskInfo,
    UpdateStatus,
)
from stack_deployer.errors import ControlPlaneError

if TYPE_CHECKING:
    from collections.abc import Mapping, Sequence
    from pathlib import Path

logger = logging.getLogger(__name__)

_REPLICAS_RE = re.compile(r"(\d+)/(\d+)")
_TIMESTAMP_RE = re.compile(r"^(.*?T\d{2}:\d{2}:\d{2})(?:\.(\d+))?(Z|[+-]\d{2}:\d{2})?$")


def parse_timestamp(value: str | None) -> datetime | None:
    """Parse an RFC 3339 timestamp as emitted by Docker (nanosecond precision)."""
    if not value:
        return None
    match = _TIMESTAMP_RE.match(value.strip())
    if match is None:
        return None
    base, fraction, zone = match.groups()
    text = base
    if fraction:
        text += "." + fraction[:6].ljust(6, "0")
    parsed = datetime.fromisoformat(text)
    if zone in (None, "Z"):
        return parsed.replace(tzinfo=UTC)
    return datetime.fromisoformat(text + zone)


def parse_labels(text: str) -> dict[str, str]:
    """Parse ``key=value,key=value`` label strings."""
    labels: dict[str, str] = {}
    for item in text.split(","):
        if not item:
            continue
        key, _, value = item.partition("=")
        labels[key] = value
    return labels


def _parse_json_lines(output: str) -> list[dict[str, Any]]:
    return [json.loads(line) for line in output.splitlines() if line.strip()]


class DockerCLIClient:
    """Issue control plane commands through the ``docker`` executable."""

    def __init__(self, *, executable: str = "docker") -> None:
        self._executable = executable

    def _run(
        self,
        args: list[str],
        *,
        operation: str,
        target: str | None = None,
        stdin: str | None = None,
        env: Mapping[str, str] | None = None,
    ) -> str:
        cmd = [self._executable, *(a for a in args if a)]
        logger.debug("Running %s", " ".join(cmd))
        try:
            completed = subprocess.run(
                cmd,
                input=stdin,
                env={**os.environ, **env} if env is not None else None,
                check=True,
                capture_output=True,
                text=True,
            )
        except subprocess.CalledProcessError as exc:
            stderr = (exc.stderr or "").strip()
            raise ControlPlaneError(
                operation, stderr or f"exit code {exc.returncode}", target=target
            ) from exc
        except OSError as exc:
            raise ControlPlaneError(operation, str(exc), target=target) from exc
        return completed.stdout

    @staticmethod
    def _filters(labels: Sequence[str]) -> list[str]:
        flags: list[str] = []
        for label in labels:
            flags.extend(["--filter", f"label={label}"])
        return flags

    def _inspect(self, object_type: str, ids: list[str]) -> list[dict[str, Any]]:
        if not ids:
            return []
        operation = f"inspect {object_type}s"
        output = self._run(["inspect", f"--type={object_type}", *ids], operation=operation)
        try:
            return json.loads(output)
        except json.JSONDecodeError as exc:
            raise ControlPlaneError(operation, f"invalid JSON output: {exc}") from exc

    # -- stacks -----------------------------------------------------------

    def deploy_stack(self, spec: Mapping[str, Any], stack: str, env: Mapping[str, str]) -> None:
        self._run(
            [
                "stack",
                "deploy",
                "--prune",
                "--quiet",
                "--detach=true",
                "--with-registry-auth",
                "--resolve-image=always",
                "--compose-file",
                "-",
                stack,
            ],
            operation="deploy stack",
            target=stack,
            stdin=dump_yaml(dict(spec)),
            env=env,
        )
        logger.info("Deployed stack %s", stack)

    def normalize_stack(self, files: Sequence[Path], env: Mapping[str, str]) -> dict[str, Any]:
        flags = [f"--compose-file={f}" for f in files]
        output = self._run(
            ["stack", "config", *flags, "--skip-interpolation"],
            operation="normalize stack files",
            env=env,
        )
        if not output.strip():
            raise ControlPlaneError("normalize stack files", "no content produced")
        spec = load_yaml(output)
        if not isinstance(spec, dict):
            raise ControlPlaneError("normalize stack files", "output is not a mapping")
        return spec

    # -- services ---------------------------------------------------------

    def list_services(
        self, labels: Sequence[str], *, inspect: bool = True
    ) -> list[ServiceSnapshot]:
        output = self._run(
            ["service", "ls", "--format=json", *self._filters(labels)],
            operation="list services",
        )
        listed = {row["ID"]: row for row in _parse_json_lines(output)}
        inspected = self._inspect("service", list(listed)) if inspect else []
        snapshots: list[ServiceSnapshot] = []
        for service_id, row in listed.items():
            details = next((d for d in inspected if d["ID"].startswith(service_id)), {})
            running, desired = _parse_replicas(row.get("Replicas", ""))
            status = details.get("UpdateStatus")
            snapshots.append(
                ServiceSnapshot(
                    id=details.get("ID", service_id),
                    name=row.get("Name") or details.get("Spec", {}).get("Name"),
                    running_tasks=running,
                    desired_tasks=desired,
                    update_status=UpdateStatus(
                        state=status.get("State"),
                        message=status.get("Message"),
                        started_at=parse_timestamp(status.get("StartedAt")),
                        completed_at=parse_timestamp(status.get("CompletedAt")),
                    )
                    if status
                    else None,
                    created_at=parse_timestamp(details.get("CreatedAt")),
                    updated_at=parse_timestamp(details.get("UpdatedAt")),
                )
            )
        return snapshots

    def get_service_logs(
        self, service_id: str, *, since: datetime | None = None, tail: int | None = None
    ) -> list[LogEntry]:
        output = self._run(
            [
                "service",
                "logs",
                "--raw",
                "--no-trunc",
                "--details",
                "--timestamps",
                f"--tail={tail}" if tail else "",
                f"--since={since.isoformat()}" if since else "",
                service_id,
            ],
            operation="get logs for service",
            target=service_id,
        )
        entries: list[LogEntry] = []
        for line in output.strip().splitlines():
            timestamp, _, rest = line.partition(" ")
            metadata, _, message = rest.partition(" ")
            entries.append(
                LogEntry(
                    timestamp=parse_timestamp(timestamp),
                    metadata=parse_labels(metadata),
                    message=message,
                )
            )
        return entries

    def list_service_tasks(self, service_id: str) -> list[TaskInfo]:
        output = self._run(
            ["service", "ps", "--quiet", "--no-trunc", service_id],
            operation="list tasks of service",
            target=service_id,
        )
        ids = [line.strip() for line in output.splitlines() if line.strip()]
        tasks: list[TaskInfo] = []
        for row in self._inspect("task", ids):
            status = row.get("Status", {})
            tasks.append(
                TaskInfo(
                    id=row["ID"],
                    service_id=row.get("ServiceID"),
                    state=status.get("State"),
                    desired_state=row.get("DesiredState"),
                    message=status.get("Message"),
                    error=status.get("Err"),
                    created_at=parse_timestamp(row.get("CreatedAt")),
                    updated_at=parse_timestamp(row.get("UpdatedAt")),
                )
            )
        return tasks

    # -- secrets and configs ----------------------------------------------

    def _list_inventory(self, kind: str, labels: Sequence[str]) -> list[InventoryItem]:
        output = self._run(
            [kind, "ls", "--quiet", *self._filters(labels)],
            operation=f"list {kind}s",
        )
        ids = [line.strip() for line in output.splitlines() if line.strip()]
        items: list[InventoryItem] = []
        for row in self._inspect(kind, ids):
            spec = row.get("Spec", {})
            items.append(
                InventoryItem(
                    id=row["ID"],
                    name=spec.get("Name"),
                    created_at=parse_timestamp(row.get("CreatedAt")),
                    updated_at=parse_timestamp(row.get("UpdatedAt")),
                    labels={k: str(v) for k, v in (spec.get("Labels") or {}).items()},
                )
            )
        return items

    def list_secrets(self, labels: Sequence[str]) -> list[InventoryItem]:
        return self._list_inventory("secret", labels)

    def list_configs(self, labels: Sequence[str]) -> list[InventoryItem]:
        return self._list_inventory("config", labels)

    def remove_secret(self, secret_id: str) -> None:
        self._run(["secret", "rm", secret_id], operation="remove secret", target=secret_id)

    def remove_config(self, config_id: str) -> None:
        self._run(["config", "rm", config_id], operation="remove config", target=config_id)


def _parse_replicas(value: str) -> tuple[int | None, int | None]:
    match = _REPLICAS_RE.search(value or "")
    if match is None:
        return None, None
    return int(match.group(1)), int(match.group(2))
