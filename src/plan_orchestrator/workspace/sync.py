"""Bring a ready sandbox's workspace up to date before a task runs.

Steps, all inside the sandbox:

1. force-checkout the target branch, falling back to a plain checkout
2. pull
3. discard local drift in the project subtree
4. replay the caller's uncommitted changes (PatchArtifact), if any

Steps 1-3 tolerate VCS failures: a stale or unreachable remote should not
block a task that can still run on the current tree. Step 4 is best-effort;
a failed or partial apply is logged and recorded but never fails the sync.
"""

import logging
import shlex
import time
from typing import Optional

from ..core.models import SyncResult
from ..sandbox.executor import CommandExecutor
from ..sandbox.lifecycle import REPO_MOUNT
from ..utils.validators import validate_branch_name, validate_project_path
from .patch import PatchArtifact

logger = logging.getLogger(__name__)

SANDBOX_PATCH_PATH = "/tmp/host-changes.patch"


def project_dir(project_path: str) -> str:
    """Shell expression for the project subtree inside the mounted workspace."""
    return f"{REPO_MOUNT}/{shlex.quote(validate_project_path(project_path))}"


class WorkspaceSyncProtocol:
    """Runs the sync steps through a CommandExecutor."""

    def __init__(self, executor: CommandExecutor, vcs_binary: str = "arc"):
        self.executor = executor
        self.vcs = shlex.quote(vcs_binary)

    def build_sync_script(self, branch: str, project_path: str) -> str:
        """Fixed template; branch and path are allow-listed then shell-quoted."""
        quoted_branch = shlex.quote(validate_branch_name(branch))
        quoted_path = shlex.quote(validate_project_path(project_path))
        vcs = self.vcs
        return "\n".join([
            "set -euo pipefail",
            f"cd {REPO_MOUNT}",
            'export PATH="$HOME/arcadia:$PATH"',
            'echo "Syncing workspace..."',
            f"{vcs} checkout {quoted_branch} -f 2>/dev/null || {vcs} checkout {quoted_branch} 2>/dev/null || true",
            f"{vcs} pull 2>/dev/null || true",
            f"{vcs} checkout {quoted_path} 2>/dev/null || true",
        ])

    def build_patch_script(self, project_path: str, from_file: Optional[str] = None) -> str:
        """Apply a patch read from stdin, or from ``from_file`` inside the sandbox."""
        apply = "patch -p0 --batch --forward"
        if from_file:
            target = shlex.quote(from_file)
            apply = f"if [ -s {target} ]; then {apply} < {target}; fi"
        return "\n".join([
            "set -e",
            f"cd {project_dir(project_path)}",
            apply,
        ])

    async def apply_patch(
        self,
        sandbox: str,
        project_path: str,
        patch: PatchArtifact,
        copy_first: bool = False,
    ) -> bool:
        """Apply ``patch`` to the project subtree. Returns False on any failure."""
        if copy_first:
            copied = await self.executor.copy_into(sandbox, patch.path, SANDBOX_PATCH_PATH)
            if not copied.ok:
                logger.warning(f"Host diff copy into {sandbox}: FAILED ({copied.stderr.strip()})")
                return False
            result = await self.executor.exec_async(
                sandbox, self.build_patch_script(project_path, from_file=SANDBOX_PATCH_PATH)
            )
        else:
            result = await self.executor.exec_async(
                sandbox, self.build_patch_script(project_path), stdin_file=patch.path
            )

        if not result.ok:
            logger.warning(
                f"Host diff apply in {sandbox}: WARN (exit {result.exit_code}); "
                "uncommitted changes may be partially applied"
            )
            return False
        logger.info(f"Host diff apply in {sandbox}: OK")
        return True

    async def sync(
        self,
        sandbox: str,
        branch: str,
        project_path: str,
        patch: Optional[PatchArtifact] = None,
        copy_patch: bool = False,
    ) -> SyncResult:
        """Run all sync steps in ``sandbox``.

        ``success`` is False only when the sync script itself fails (for
        example the mount disappeared); patch problems only set
        ``patch_applied`` to False.
        """
        start = time.monotonic()
        result = await self.executor.exec_async(sandbox, self.build_sync_script(branch, project_path))
        if not result.ok:
            logger.warning(f"Workspace sync in {sandbox}: FAILED (exit {result.exit_code})")
            return SyncResult(
                success=False,
                exit_code=result.exit_code,
                stdout=result.stdout,
                stderr=result.stderr,
                duration_ms=int((time.monotonic() - start) * 1000),
            )

        patch_applied: Optional[bool] = None
        if patch is not None and patch.exists:
            patch_applied = await self.apply_patch(sandbox, project_path, patch, copy_first=copy_patch)

        return SyncResult(
            success=True,
            exit_code=result.exit_code,
            stdout=result.stdout,
            stderr=result.stderr,
            patch_applied=patch_applied,
            duration_ms=int((time.monotonic() - start) * 1000),
        )
