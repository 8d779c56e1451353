"""Distribute tasks across a fixed pool of warm sandboxes.

Each pool member runs one cooperative loop. Loops share a cursor into the
task list; a loop claims ``tasks[cursor]`` and advances the cursor without
awaiting in between, which is atomic on the asyncio event loop, so no task
is dispatched twice. Within a member the steps for a task are strictly
sequential (sync, then exec, then the next claim); across members results
arrive in completion order.
"""

import asyncio
import logging
import shlex
import time
from typing import Dict, List, NamedTuple, Optional

from .config import OrchestratorConfig
from .errors import InfrastructureError, SandboxLifecycleError
from .models import PoolMember, RunResult, RunSummary, SandboxHandle, SandboxState
from .naming import (
    DEFAULT_BRANCH,
    get_warm_container_name,
    is_issue_key,
    one_shot_container_name,
    sanitize_container_name,
    worker_names,
)
from .run_logger import RunLogger, format_duration
from .worker_state import WorkerStateStore
from ..sandbox.executor import CommandExecutor
from ..sandbox.lifecycle import CONTAINER_DOTENV_PATH, CONTAINER_TASKS_DIR, SandboxLifecycle
from ..sandbox.runtime import DockerRuntime
from ..utils.validators import validate_branch_name, validate_project_path
from ..workspace.host import HostWorkspace
from ..workspace.patch import PatchArtifact
from ..workspace.sync import WorkspaceSyncProtocol, project_dir

logger = logging.getLogger(__name__)


class HostContext(NamedTuple):
    """What the sandboxes must mirror from the caller's checkout."""
    branch: str
    project_path: str
    diff: Optional[str]


def _elapsed_ms(start: float) -> int:
    return int((time.monotonic() - start) * 1000)


class TaskScheduler:
    """Runs a batch of issue keys on the sandbox pool."""

    def __init__(
        self,
        config: OrchestratorConfig,
        lifecycle: Optional[SandboxLifecycle] = None,
        executor: Optional[CommandExecutor] = None,
        sync: Optional[WorkspaceSyncProtocol] = None,
        state_store: Optional[WorkerStateStore] = None,
        run_logger: Optional[RunLogger] = None,
        host: Optional[HostWorkspace] = None,
    ):
        self.config = config
        self.executor = executor or CommandExecutor()
        self.lifecycle = lifecycle or SandboxLifecycle(config, DockerRuntime(), self.executor)
        self.sync = sync or WorkspaceSyncProtocol(self.executor, config.vcs_binary)
        self.state_store = state_store or WorkerStateStore(config.worker_state_path)
        self.run_logger = run_logger or RunLogger(config.tasks_dir)
        self.host = host or HostWorkspace(config)
        self.members: Dict[str, PoolMember] = {}

    @property
    def worker_names(self) -> List[str]:
        return worker_names(self.config.worker_count, self.config.worker_prefix)

    def member(self, name: str) -> PoolMember:
        """Pool member ``name``, registered on first reference."""
        if name not in self.members:
            self.members[name] = PoolMember(name=name, sandbox=name)
        return self.members[name]

    async def _ensure_member_ready(
        self,
        member: PoolMember,
        environment: Optional[Dict[str, str]] = None,
    ) -> SandboxHandle:
        try:
            handle = await self.lifecycle.ensure_ready(member.sandbox, environment=environment)
        except SandboxLifecycleError:
            # Unknown until the next ensure-ready probes it again
            member.state = SandboxState.ABSENT
            raise
        member.state = handle.state
        return handle

    # -- host context ------------------------------------------------------------

    def _resolve_host_context(self) -> HostContext:
        branch = self.host.get_branch()
        try:
            validate_branch_name(branch)
        except ValueError as e:
            logger.warning(f"Host branch rejected ({e}); falling back to {DEFAULT_BRANCH}")
            branch = DEFAULT_BRANCH

        project_path = self.host.get_project_path()
        try:
            validate_project_path(project_path)
        except ValueError as e:
            raise InfrastructureError(f"Cannot map project into the workspace: {e}") from e

        diff = self.host.get_uncommitted_diff()

        if branch != DEFAULT_BRANCH:
            logger.info(f"Host branch: {branch}")
        if diff:
            changed = self.host.get_uncommitted_files()
            logger.info(
                f"Host has uncommitted changes in {len(changed)} file(s) "
                f"({len(diff.splitlines())} diff line(s))"
            )
        logger.info(f"Project path in workspace: {project_path}")
        return HostContext(branch=branch, project_path=project_path, diff=diff)

    async def resolve_host_context(self) -> HostContext:
        return await asyncio.to_thread(self._resolve_host_context)

    # -- scripts -------------------------------------------------------------------

    def _project_prelude(self, project_path: str) -> List[str]:
        return [
            "set -e",
            f"cd {project_dir(project_path)}",
            'export PATH="$HOME/arcadia:$PATH"',
            f"if [ -f {CONTAINER_DOTENV_PATH} ]; then cp {CONTAINER_DOTENV_PATH} ./.env || true; fi",
            "if [ -f ./.env ]; then set -a; . ./.env; set +a; fi",
            'export ARCADIA="$HOME/arcadia"',
        ]

    def build_task_script(self, issue_key: str, project_path: str) -> str:
        """Script that runs the task commands for ``issue_key`` in the project subtree."""
        if not is_issue_key(issue_key):
            raise ValueError(f"Refusing to run task with invalid issue key: {issue_key!r}")
        quoted_key = shlex.quote(issue_key)
        lines = self._project_prelude(project_path)
        # Task output must land on the host-shared tasks volume
        lines += [
            "mkdir -p .cache",
            "rm -rf .cache/tasks || true",
            f"ln -s {CONTAINER_TASKS_DIR} .cache/tasks",
        ]
        lines += [command.format(issue_key=quoted_key) for command in self.config.task_commands]
        return "\n".join(lines)

    def build_command_script(self, project_path: str, command: Optional[str], skip_install: bool) -> str:
        lines = self._project_prelude(project_path)
        if not skip_install:
            lines.append(f"{self.config.install_command} || true")
        lines.append(command or "true")
        return "\n".join(lines)

    # -- per-task execution ----------------------------------------------------------

    async def _sync_and_exec(
        self,
        sandbox: str,
        worker: str,
        task_id: str,
        script: str,
        context: HostContext,
        patch: Optional[PatchArtifact],
        start: float,
        copy_patch: bool = False,
    ) -> RunResult:
        sync_result = await self.sync.sync(
            sandbox, context.branch, context.project_path, patch, copy_patch=copy_patch
        )
        logger.info(
            f"Workspace sync: {'OK' if sync_result.success else 'FAILED'} "
            f"({format_duration(sync_result.duration_ms)})",
            extra={"worker": worker, "issue_key": task_id},
        )
        if not sync_result.success:
            return RunResult(
                task_id=task_id,
                worker=worker,
                success=False,
                exit_code=sync_result.exit_code,
                stdout=sync_result.stdout,
                stderr=sync_result.stderr,
                duration_ms=_elapsed_ms(start),
                error="workspace sync failed",
            )

        exec_result = await self.executor.exec_async(sandbox, script)
        return RunResult(
            task_id=task_id,
            worker=worker,
            success=exec_result.ok,
            exit_code=exec_result.exit_code,
            stdout=exec_result.stdout,
            stderr=exec_result.stderr,
            duration_ms=_elapsed_ms(start),
        )

    async def _run_on_member(
        self, worker: str, issue_key: str, context: HostContext, patch: Optional[PatchArtifact], start: float
    ) -> RunResult:
        member = self.member(worker)
        # Cheap when warm; recovers a member whose container died mid-run
        await self._ensure_member_ready(member)
        script = self.build_task_script(issue_key, context.project_path)
        return await self._sync_and_exec(member.sandbox, worker, issue_key, script, context, patch, start)

    async def _run_dedicated(
        self, worker: str, issue_key: str, context: HostContext, patch: Optional[PatchArtifact], start: float
    ) -> RunResult:
        member = self.member(worker)
        member.sandbox = sanitize_container_name(issue_key)
        try:
            await self._ensure_member_ready(member, environment={"ISSUE_KEY": issue_key})
            script = self.build_task_script(issue_key, context.project_path)
            return await self._sync_and_exec(member.sandbox, worker, issue_key, script, context, patch, start)
        finally:
            sandbox = member.sandbox
            member.sandbox, member.state = member.name, SandboxState.ABSENT
            await self.lifecycle.remove(sandbox)

    async def run_task(
        self,
        worker: str,
        issue_key: str,
        context: HostContext,
        patch: Optional[PatchArtifact],
        dedicated: bool,
    ) -> RunResult:
        """Run one claimed task on ``worker``; only infrastructure errors escape."""
        start = time.monotonic()
        self.run_logger.task_started(worker, issue_key)
        self.state_store.mark_running(worker, issue_key)
        try:
            if dedicated:
                result = await self._run_dedicated(worker, issue_key, context, patch, start)
            else:
                result = await self._run_on_member(worker, issue_key, context, patch, start)
        except (InfrastructureError, asyncio.CancelledError):
            # Fatal to the run, or cancelled because a sibling hit a fatal error
            self.state_store.mark_finished(worker, issue_key, success=False)
            raise
        except (SandboxLifecycleError, ValueError) as e:
            result = RunResult(
                task_id=issue_key,
                worker=worker,
                success=False,
                duration_ms=_elapsed_ms(start),
                error=str(e),
            )

        self.state_store.mark_finished(worker, issue_key, result.success)
        log_path = self.run_logger.write_task_run_log(result)
        if log_path is not None:
            result = result.model_copy(update={"log_path": str(log_path)})
        self.run_logger.task_finished(result)
        return result

    # -- pool ------------------------------------------------------------------

    async def bootstrap_pool(self, names: List[str]) -> None:
        """Make every pool member ready before dispatch; any failure aborts the run."""
        for name in names:
            await self._ensure_member_ready(self.member(name))

    async def run(
        self,
        tasks: List[str],
        dedicated: Optional[bool] = None,
        verbose: bool = False,
    ) -> RunSummary:
        """Run every task exactly once and return the summary.

        Args:
            tasks: Canonical issue keys
            dedicated: One ephemeral sandbox per task instead of warm reuse;
                defaults to the inverse of ``config.reuse_sandboxes``
            verbose: Keep each task's stdout in the summary (it is always in
                the per-task log file)
        """
        if dedicated is None:
            dedicated = not self.config.reuse_sandboxes
        names = self.worker_names
        logger.info(
            f"Starting parallel run for {len(tasks)} issue(s) on {len(names)} worker(s)"
            f"{' (dedicated containers)' if dedicated else ''}"
        )

        context = await self.resolve_host_context()
        self.state_store.mark_idle(names)
        started = time.monotonic()
        results: List[RunResult] = []

        with PatchArtifact.create(context.diff, self.config.tmp_dir) as patch:
            if not dedicated:
                await self.bootstrap_pool(names)

            cursor = 0

            async def worker_loop(worker: str) -> None:
                nonlocal cursor
                while cursor < len(tasks):
                    issue_key = tasks[cursor]
                    cursor += 1
                    results.append(await self.run_task(worker, issue_key, context, patch, dedicated))

            # The first fatal error cancels every other loop before it can claim again
            try:
                async with asyncio.TaskGroup() as group:
                    for name in names:
                        group.create_task(worker_loop(name))
            except ExceptionGroup as failures:
                raise failures.exceptions[0]

        if not verbose:
            results = [r.model_copy(update={"stdout": ""}) for r in results]
        summary = RunSummary(results=results, duration_ms=_elapsed_ms(started))
        self.run_logger.pool_completed(summary, len(names))
        return summary

    async def run_single(
        self,
        command: Optional[str] = None,
        issue_key: Optional[str] = None,
        skip_install: bool = False,
        label: str = "command",
    ) -> RunResult:
        """Run an ad-hoc command (and the installer) in a sandbox.

        With reuse on, the warm sandbox is chosen by the warm naming mode, so
        different branches get different sandboxes unless the mode is
        ``single``. With reuse off, a one-shot sandbox is created for this
        call and always removed afterwards.
        """
        start = time.monotonic()
        context = await self.resolve_host_context()
        one_shot = not self.config.reuse_sandboxes
        if one_shot:
            sandbox = one_shot_container_name("install" if label == "install" else "cmd")
        else:
            sandbox = get_warm_container_name(
                self.config.warm_container_name,
                self.config.warm_mode,
                branch=context.branch,
                issue_key=issue_key,
            )
        with PatchArtifact.create(context.diff, self.config.tmp_dir) as patch:
            try:
                handle = await self.lifecycle.ensure_ready(sandbox)
                script = self.build_command_script(context.project_path, command, skip_install)
                result = await self._sync_and_exec(
                    sandbox, sandbox, issue_key or label, script, context, patch, start, copy_patch=True
                )
            finally:
                if one_shot:
                    await self.lifecycle.remove(sandbox)
        logger.info(
            f"Run finished in {format_duration(result.duration_ms)} "
            f"(warmup: {format_duration(handle.warmup_ms)})"
        )
        return result

    async def recreate_pool(self) -> List[str]:
        """Remove worker and service containers, then bring the pool back up."""
        names = self.worker_names
        await self.lifecycle.remove_matching(
            [f"{self.config.worker_prefix}-", self.config.service_container_name]
        )
        self.members.clear()
        if self.config.reuse_sandboxes:
            await self.bootstrap_pool(names)
        await self.lifecycle.ensure_service_container()
        logger.info(f"Recreated {len(names)} worker container(s) and service container.")
        return names
