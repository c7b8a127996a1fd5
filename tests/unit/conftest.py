"""Shared fixtures for unit tests."""

from __future__ import annotations

import logging
import os
from typing import TYPE_CHECKING, Any
from unittest.mock import MagicMock

import pytest

from stack_deployer.config.settings import Settings

if TYPE_CHECKING:
    from collections.abc import Callable, Iterator
    from pathlib import Path

_ENV_PREFIXES = ("DEPLOY_", "GITHUB_", "COMPOSE_", "RUNNER_")


@pytest.fixture(autouse=True)
def _clean_deploy_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Remove deployment env vars so unit tests don't leak host config."""
    for var in list(os.environ):
        if var.startswith(_ENV_PREFIXES):
            monkeypatch.delenv(var, raising=False)


@pytest.fixture(autouse=True)
def _reset_package_logger() -> Iterator[None]:
    """Drop handlers and levels installed by CLI invocations."""
    yield
    logger = logging.getLogger("stack_deployer")
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
    logger.setLevel(logging.NOTSET)


@pytest.fixture
def make_settings(tmp_path: Path) -> Callable[..., Settings]:
    """Factory fixture: settings for stack ``demo`` rooted in ``tmp_path``."""

    def _make(**overrides: Any) -> Settings:
        values: dict[str, Any] = {"stack": "demo", "version": "1.0.0", "working_dir": tmp_path}
        values.update(overrides)
        return Settings(**values)

    return _make


@pytest.fixture
def client() -> MagicMock:
    """Control plane client double with empty inventories."""
    mock = MagicMock()
    mock.list_secrets.return_value = []
    mock.list_configs.return_value = []
    mock.list_services.return_value = []
    mock.get_service_logs.return_value = []
    mock.list_service_tasks.return_value = []
    return mock
