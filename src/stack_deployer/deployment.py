"""Deployment entrypoint and convenience API."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from stack_deployer.config.stack import load_stack, reconcile
from stack_deployer.interpolation import interpolate
from stack_deployer.monitoring import monitor
from stack_deployer.variables.lifecycle import GeneratedFiles
from stack_deployer.variables.pruning import prune

if TYPE_CHECKING:
    from stack_deployer.config.settings import Settings
    from stack_deployer.core.client import ControlPlaneClient

logger = logging.getLogger(__name__)

__all__ = ["deploy", "interpolate", "monitor", "prune", "reconcile"]


def deploy(settings: Settings, client: ControlPlaneClient) -> dict[str, Any]:
    """Deploy the stack described by *settings* and return the deployed spec.

    Runs load → deploy → monitor (if enabled) → prune.  Pruning only happens
    after a successful rollout, so a failed update keeps the previous
    secret/config versions available for rollback.  Variable files written
    by this run are removed afterwards, whatever the outcome.
    """
    with GeneratedFiles() as generated:
        spec = load_stack(settings, client, generated=generated)
        client.deploy_stack(spec, settings.stack, settings.variables)
        monitor(settings, client)
        result = prune(spec, settings, client)

    logger.info(
        "Deployed stack %s version %s (%d outdated variable(s) pruned)",
        settings.stack,
        settings.version,
        len(result.removed),
    )
    return spec
