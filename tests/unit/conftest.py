"""Shared fixtures for unit tests. Docker is never contacted."""

from unittest.mock import AsyncMock, MagicMock

import pytest

from plan_orchestrator.core.config import OrchestratorConfig
from plan_orchestrator.core.models import ExecResult

# Variables the config layer reads; tests must not inherit them from the shell
_CONFIG_ENV_VARS = [
    "DOCKER_WORKER_COUNT",
    "DOCKER_PARALLEL_LIMIT",
    "DOCKER_REUSE_ARCADIA",
    "DOCKER_WARM_MODE",
    "DOCKER_WARM_CONTAINER_NAME",
    "DOCKER_ARC_OBJECT_STORE_VOLUME",
    "DOCKER_PLATFORM",
    "DOCKER_BASE_IMAGE",
    "ARCADIA",
]


@pytest.fixture(autouse=True)
def clean_config_env(monkeypatch):
    for name in _CONFIG_ENV_VARS:
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def config(tmp_path):
    """Config rooted in a temp project with fast readiness polling."""
    return OrchestratorConfig(
        project_root=tmp_path,
        host_repo_path=tmp_path / "arcadia",
        worker_count=2,
        mount_timeout_seconds=0.05,
        mount_poll_interval_seconds=0.01,
    )


def exec_result(exit_code=0, stdout="", stderr=""):
    return ExecResult(exit_code=exit_code, stdout=stdout, stderr=stderr, duration_ms=5)


@pytest.fixture
def executor():
    """CommandExecutor double whose async calls succeed by default."""
    ex = MagicMock()
    ex.exec_async = AsyncMock(return_value=exec_result(stdout="OK\n"))
    ex.copy_into = AsyncMock(return_value=exec_result())
    return ex
