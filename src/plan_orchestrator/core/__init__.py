"""Core models, configuration and naming."""

from .config import OrchestratorConfig, load_config
from .errors import (
    InfrastructureError,
    OrchestratorError,
    RuntimeUnavailableError,
    SandboxLifecycleError,
    SandboxNotReadyError,
)
from .models import ExecResult, RunResult, RunSummary, SandboxHandle, SandboxState, SyncResult
from .naming import extract_issue_key, parse_task_keys, sanitize_container_name

__all__ = [
    "OrchestratorConfig",
    "load_config",
    "InfrastructureError",
    "OrchestratorError",
    "RuntimeUnavailableError",
    "SandboxLifecycleError",
    "SandboxNotReadyError",
    "ExecResult",
    "RunResult",
    "RunSummary",
    "SandboxHandle",
    "SandboxState",
    "SyncResult",
    "extract_issue_key",
    "parse_task_keys",
    "sanitize_container_name",
]
