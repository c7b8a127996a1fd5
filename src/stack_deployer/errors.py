"""Deployment error types.

Every error carries a :class:`ErrorKind` so callers can branch on the category
of failure (e.g. softening resolution errors on the file-source path) without
matching on concrete classes.  The original exception is chained via
``__cause__``.
"""

from __future__ import annotations

from enum import Enum
from typing import TYPE_CHECKING, ClassVar

if TYPE_CHECKING:
    from stack_deployer.monitoring import RolloutDiagnostics


class ErrorKind(str, Enum):
    CONFIGURATION = "configuration"
    RESOLUTION = "resolution"
    CONTROL_PLANE = "control_plane"
    CONVERGENCE = "convergence"


class DeploymentError(Exception):
    """Base exception for deployment errors."""

    kind: ClassVar[ErrorKind]


class ConfigurationError(DeploymentError):
    """Raised for invalid stack files, declarations or settings."""

    kind = ErrorKind.CONFIGURATION


class ResolutionError(DeploymentError):
    """Raised when a variable's content cannot be looked up."""

    kind = ErrorKind.RESOLUTION

    def __init__(self, message: str, *, variable: str | None = None) -> None:
        super().__init__(message)
        self.variable = variable


class InterpolationError(ResolutionError):
    """Raised when a ``${NAME?message}`` reference or strict lookup fails."""


class ControlPlaneError(DeploymentError):
    """Raised when a command against the cluster fails."""

    kind = ErrorKind.CONTROL_PLANE

    def __init__(self, operation: str, message: str, *, target: str | None = None) -> None:
        self.operation = operation
        self.target = target
        subject = f"{operation} {target!r}" if target else operation
        super().__init__(f"Failed to {subject}: {message}")


class ConvergenceError(DeploymentError):
    """Raised when a rollout does not converge."""

    kind = ErrorKind.CONVERGENCE

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.diagnostics: list[RolloutDiagnostics] = []


class DeploymentTimeoutError(ConvergenceError):
    """Raised when services are still updating after the monitor timeout."""

    def __init__(self, pending: list[str] | None = None) -> None:
        super().__init__("Deployment timed out")
        self.pending = pending or []


class ServiceUpdateFailedError(ConvergenceError):
    """Raised when a service reports a failed or rolled-back update."""

    def __init__(self, service: str, state: str, reason: str) -> None:
        super().__init__(f'Update of service "{service}" failed: {reason}')
        self.service = service
        self.state = state
        self.reason = reason
