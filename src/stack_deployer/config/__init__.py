"""Deployment settings and stack file handling."""

from stack_deployer.config.settings import (
    STACK_VARIABLE,
    VERSION_VARIABLE,
    DeploymentInputs,
    Settings,
    parse_settings,
)

__all__ = [
    "STACK_VARIABLE",
    "VERSION_VARIABLE",
    "DeploymentInputs",
    "Settings",
    "parse_settings",
]
