"""Post-deployment rollout monitoring.

The monitor polls the services of a stack until every service has converged
(running replicas match the desired count, or the update reports
``completed``), a service reports a failed update, or the attempt budget
(``ceil(timeout / interval)``) is exhausted.  On failure it gathers recent
service logs and the latest task error as diagnostics; those are logged and
attached to the raised error but never replace it.
"""

from __future__ import annotations

import logging
import math
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import TYPE_CHECKING

from stack_deployer.core.client import label_filter
from stack_deployer.errors import ConvergenceError, DeploymentTimeoutError, ServiceUpdateFailedError
from stack_deployer.variables.labels import STACK_NAMESPACE_LABEL

if TYPE_CHECKING:
    from stack_deployer.config.settings import Settings
    from stack_deployer.core.client import ControlPlaneClient
    from stack_deployer.core.models import LogEntry, ServiceSnapshot

logger = logging.getLogger(__name__)

LOG_TAIL = 100

_FAILED_TASK_STATES = frozenset({"failed", "rejected", "shutdown"})

_FAILURE_REASONS: dict[str, str] = {
    "paused": "Service is paused",
    "rollback_started": "Service failed to update and is being rolled back",
    "rollback_completed": "Service failed to update and was rolled back",
    "rollback_paused": "Service is paused and is being rolled back",
    "unknown": "Service update status is unknown",
}


class MonitorPhase(str, Enum):
    POLLING = "polling"
    CONVERGED = "converged"
    TIMED_OUT = "timed_out"
    FAILED = "failed"


@dataclass
class MonitorState:
    attempts_remaining: int
    started_at: datetime
    completed: set[str] = field(default_factory=set)
    phase: MonitorPhase = MonitorPhase.POLLING
    polls: int = 0


@dataclass(frozen=True)
class RolloutDiagnostics:
    """Best-effort failure context for a single service."""

    service_id: str
    service_name: str
    logs: list[LogEntry] = field(default_factory=list)
    task_error: str | None = None

    def render(self) -> str:
        lines = [f'Service "{self.service_name}":']
        if self.task_error:
            lines.append(f"  Last task error: {self.task_error}")
        if self.logs:
            lines.append("  Logs since deployment:")
            lines.extend(f"    {entry.message}" for entry in self.logs)
        return "\n".join(lines)


def failure_reason(state: str) -> str:
    return _FAILURE_REASONS.get(state, "Unknown failure reason")


def is_service_update_complete(service: ServiceSnapshot) -> bool:
    """Check whether a service has converged.

    Raises:
        ServiceUpdateFailedError: The update is paused, rolled back, or in an
            unrecognized state.
    """
    name = service.display_name
    logger.debug("Checking update status of service %s", name)

    if service.update_status is None:
        if service.running_tasks is not None and service.desired_tasks is not None:
            if service.running_tasks == service.desired_tasks:
                logger.debug('Service "%s" is running', name)
                return True
            logger.debug(
                'Service "%s" is only partially running: %d/%d tasks running',
                name,
                service.running_tasks,
                service.desired_tasks,
            )
        return False

    state = service.update_status.state or "unknown"
    if state == "completed":
        logger.debug('Update of service "%s" is complete', name)
        return True
    if state == "updating":
        logger.debug('Update of service "%s" is still in progress', name)
        return False

    reason = failure_reason(state)
    if service.update_status.message:
        reason = f"{reason}: {service.update_status.message}"
    raise ServiceUpdateFailedError(name, state, reason)


class RolloutMonitor:
    """Poll a stack's services until the rollout converges."""

    def __init__(
        self,
        client: ControlPlaneClient,
        settings: Settings,
        *,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], datetime] = lambda: datetime.now(UTC),
    ) -> None:
        self._client = client
        self._settings = settings
        self._sleep = sleep
        self._clock = clock

    def run(self) -> MonitorState:
        """Poll until convergence.

        Raises:
            ServiceUpdateFailedError: A service update failed.
            DeploymentTimeoutError: Services were still pending when the
                attempt budget ran out.
        """
        settings = self._settings
        state = MonitorState(
            attempts_remaining=math.ceil(settings.monitor_timeout / settings.monitor_interval),
            started_at=self._clock(),
        )
        namespace = [label_filter(STACK_NAMESPACE_LABEL, settings.stack)]
        services: list[ServiceSnapshot] = []
        logger.info('Monitoring stack "%s" for post-deployment issues', settings.stack)

        while True:
            state.attempts_remaining -= 1
            if state.attempts_remaining <= 0:
                state.phase = MonitorPhase.TIMED_OUT
                pending = [s for s in services if s.id not in state.completed]
                error = DeploymentTimeoutError([s.display_name for s in pending])
                self._attach_diagnostics(error, pending, state)
                raise error

            services = self._client.list_services(namespace)
            state.polls += 1
            logger.debug(
                "Waiting for services to complete: %d/%d",
                sum(s.id in state.completed for s in services),
                len(services),
            )

            for service in services:
                if service.id in state.completed:
                    continue
                try:
                    complete = is_service_update_complete(service)
                except ServiceUpdateFailedError as exc:
                    state.phase = MonitorPhase.FAILED
                    logger.error('Service "%s" failed to update: %s', service.display_name, exc)
                    self._attach_diagnostics(exc, [service], state)
                    raise
                if complete:
                    logger.info('Service "%s" has been deployed successfully', service.display_name)
                    state.completed.add(service.id)

            if {s.id for s in services} <= state.completed:
                state.phase = MonitorPhase.CONVERGED
                logger.info("All services have been deployed successfully")
                return state

            self._sleep(settings.monitor_interval)

    def _attach_diagnostics(
        self, error: ConvergenceError, services: list[ServiceSnapshot], state: MonitorState
    ) -> None:
        for service in services:
            diagnostics = self.diagnose(service, since=state.started_at)
            error.diagnostics.append(diagnostics)
            logger.error("%s", diagnostics.render())

    def diagnose(self, service: ServiceSnapshot, *, since: datetime) -> RolloutDiagnostics:
        """Collect logs and the latest task error; fetch failures are swallowed."""
        logs: list[LogEntry] = []
        try:
            logs = self._client.get_service_logs(service.id, since=since, tail=LOG_TAIL)
        except Exception:
            logger.debug("Could not fetch logs for service %s", service.display_name, exc_info=True)

        task_error: str | None = None
        try:
            tasks = self._client.list_service_tasks(service.id)
            failed = [
                t for t in tasks if t.state in _FAILED_TASK_STATES and (t.error or t.message)
            ]
            latest = max(
                failed,
                key=lambda t: t.updated_at or datetime.min.replace(tzinfo=UTC),
                default=None,
            )
            if latest is not None:
                task_error = latest.error or latest.message
        except Exception:
            logger.debug(
                "Could not fetch tasks for service %s", service.display_name, exc_info=True
            )

        return RolloutDiagnostics(
            service_id=service.id,
            service_name=service.display_name,
            logs=logs,
            task_error=task_error,
        )


def monitor(
    settings: Settings,
    client: ControlPlaneClient,
    *,
    sleep: Callable[[float], None] = time.sleep,
) -> MonitorState | None:
    """Monitor the rollout of ``settings.stack``; a no-op when monitoring is disabled."""
    if not settings.monitor:
        logger.info("Post-deployment monitoring is disabled")
        return None
    return RolloutMonitor(client, settings, sleep=sleep).run()
