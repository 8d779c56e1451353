"""Docker sandboxes that keep the workspace mounted between tasks."""

from .executor import CommandExecutor
from .lifecycle import SandboxLifecycle
from .runtime import DockerRuntime

__all__ = [
    "CommandExecutor",
    "DockerRuntime",
    "SandboxLifecycle",
]
