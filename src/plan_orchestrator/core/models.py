"""Typed results and persisted records shared across the orchestrator."""

from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, computed_field


class SandboxState(str, Enum):
    """Lifecycle states of a sandbox container."""
    ABSENT = "absent"
    CREATED = "created"
    STARTED = "started"
    READY = "ready"  # running and the workspace mount is verified


class WorkerStatus(str, Enum):
    IDLE = "idle"
    RUNNING = "running"


class TaskOutcome(str, Enum):
    OK = "ok"
    FAIL = "fail"


class SandboxHandle(BaseModel):
    """A sandbox that ensure-ready has brought to the READY state."""
    name: str
    state: SandboxState = SandboxState.READY
    store_path: str
    object_store_volume: str
    warmup_ms: int = 0


class PoolMember(BaseModel):
    """A reusable worker slot and the sandbox currently backing it.

    In reuse mode the sandbox has the member's own name; in dedicated mode it
    is the per-task container while a task runs.
    """
    name: str
    sandbox: str
    state: SandboxState = SandboxState.ABSENT


class ExecResult(BaseModel):
    """Exit status and captured output of a command run inside a sandbox."""
    exit_code: int
    stdout: str = ""
    stderr: str = ""
    duration_ms: int = 0

    @property
    def ok(self) -> bool:
        return self.exit_code == 0


class SyncResult(BaseModel):
    """Outcome of bringing a sandbox workspace up to date.

    ``success`` only reflects the mandatory sync script. Patch application is
    best-effort: ``patch_applied`` is None when there was nothing to apply.
    """
    success: bool
    exit_code: int
    stdout: str = ""
    stderr: str = ""
    patch_applied: Optional[bool] = None
    duration_ms: int = 0


class WorkerStateRecord(BaseModel):
    """Persisted state of one pool member."""
    status: WorkerStatus = WorkerStatus.IDLE
    task_id: Optional[str] = None
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
    last_task_id: Optional[str] = None
    last_result: Optional[TaskOutcome] = None
    updated_at: Optional[datetime] = None


class WorkerStateDocument(BaseModel):
    """The whole workers.json document, rewritten on every mutation."""
    workers: Dict[str, WorkerStateRecord] = Field(default_factory=dict)


class RunResult(BaseModel):
    """Result of one task. Produced once and never mutated.

    A failed result carries either a non-zero ``exit_code`` (the task ran and
    failed) or an ``error`` (the sandbox never got to run it).
    """
    model_config = ConfigDict(frozen=True)

    task_id: str
    worker: str
    success: bool
    exit_code: Optional[int] = None
    stdout: str = ""
    stderr: str = ""
    duration_ms: int = 0
    error: Optional[str] = None
    log_path: Optional[str] = None

    @property
    def outcome(self) -> TaskOutcome:
        return TaskOutcome.OK if self.success else TaskOutcome.FAIL


class RunSummary(BaseModel):
    """Aggregated results of one scheduling invocation."""
    results: List[RunResult] = Field(default_factory=list)
    duration_ms: int = 0

    @computed_field
    @property
    def total(self) -> int:
        return len(self.results)

    @computed_field
    @property
    def successful(self) -> int:
        return sum(1 for r in self.results if r.success)

    @computed_field
    @property
    def failed(self) -> int:
        return sum(1 for r in self.results if not r.success)
