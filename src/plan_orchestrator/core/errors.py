"""Error taxonomy for the sandbox orchestrator.

Only infrastructure errors and pool-bootstrap lifecycle errors are allowed
to unwind out of the scheduler. Everything else is captured into a
RunResult and surfaced through the run summary.
"""


class OrchestratorError(Exception):
    """Base class for all orchestrator errors."""


class InfrastructureError(OrchestratorError):
    """Docker, network, image or shared-volume setup failed. Fatal to the run."""


class RuntimeUnavailableError(InfrastructureError):
    """The container runtime binary or daemon could not be reached."""

    def __init__(self, detail: str):
        self.detail = detail
        super().__init__(f"Docker is not installed or not available: {detail}")


class SandboxLifecycleError(OrchestratorError):
    """A sandbox could not be created, started or brought to readiness."""

    def __init__(self, sandbox: str, message: str):
        self.sandbox = sandbox
        super().__init__(f"[{sandbox}] {message}")


class SandboxNotReadyError(SandboxLifecycleError):
    """The workspace mount did not appear before the readiness timeout."""

    def __init__(self, sandbox: str, timeout_seconds: float):
        self.timeout_seconds = timeout_seconds
        super().__init__(
            sandbox,
            f"Warm container did not become ready in {timeout_seconds:g}s "
            "(mountpoint not detected)",
        )
