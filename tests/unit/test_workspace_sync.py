"""Tests for syncing a sandbox workspace with the host checkout."""

import pytest

from plan_orchestrator.core.models import ExecResult
from plan_orchestrator.workspace.patch import PatchArtifact
from plan_orchestrator.workspace.sync import SANDBOX_PATCH_PATH, WorkspaceSyncProtocol


@pytest.fixture
def sync(executor):
    return WorkspaceSyncProtocol(executor)


@pytest.fixture
def patch_file(tmp_path):
    path = tmp_path / "host-diff-1.patch"
    path.write_text("--- a/f\n+++ b/f\n")
    return PatchArtifact(path)


class TestSyncScript:
    def test_checkout_pull_and_subtree_reset_are_tolerated(self, sync):
        script = sync.build_sync_script("users/me/feature", "junk/devduck")

        assert "arc checkout users/me/feature -f 2>/dev/null || arc checkout users/me/feature 2>/dev/null || true" in script
        assert "arc pull 2>/dev/null || true" in script
        assert "arc checkout junk/devduck 2>/dev/null || true" in script

    def test_step_order(self, sync):
        script = sync.build_sync_script("trunk", "junk/devduck")
        assert script.index("checkout trunk") < script.index("pull") < script.index("checkout junk/devduck")

    @pytest.mark.parametrize("branch", ["x; rm -rf /", "$(id)", "-f"])
    def test_rejects_unsafe_branch(self, sync, branch):
        with pytest.raises(ValueError):
            sync.build_sync_script(branch, "junk/devduck")

    def test_rejects_escaping_project_path(self, sync):
        with pytest.raises(ValueError):
            sync.build_sync_script("trunk", "../etc")

    def test_patch_script(self, sync):
        script = sync.build_patch_script("junk/devduck")
        assert 'cd "$HOME/arcadia"/junk/devduck' in script
        assert "patch -p0 --batch --forward" in script

    def test_patch_script_from_file(self, sync):
        script = sync.build_patch_script("junk/devduck", from_file=SANDBOX_PATCH_PATH)
        assert f"< {SANDBOX_PATCH_PATH}" in script


class TestSync:
    @pytest.mark.asyncio
    async def test_success_without_patch(self, sync, executor):
        result = await sync.sync("w1", "trunk", "junk/devduck")

        assert result.success
        assert result.patch_applied is None
        executor.exec_async.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_script_failure_is_sync_failure(self, sync, executor):
        executor.exec_async.return_value = ExecResult(exit_code=1, stderr="cd: no such directory")

        result = await sync.sync("w1", "trunk", "junk/devduck")

        assert not result.success
        assert result.exit_code == 1
        assert result.stderr == "cd: no such directory"

    @pytest.mark.asyncio
    async def test_patch_streamed_through_stdin(self, sync, executor, patch_file):
        result = await sync.sync("w1", "trunk", "junk/devduck", patch_file)

        assert result.success
        assert result.patch_applied is True
        last = executor.exec_async.await_args_list[-1]
        assert last.kwargs["stdin_file"] == patch_file.path

    @pytest.mark.asyncio
    async def test_patch_failure_does_not_fail_sync(self, sync, executor, patch_file):
        executor.exec_async.side_effect = [
            ExecResult(exit_code=0),
            ExecResult(exit_code=1, stderr="Reversed (or previously applied) patch detected!"),
        ]

        result = await sync.sync("w1", "trunk", "junk/devduck", patch_file)

        assert result.success
        assert result.patch_applied is False

    @pytest.mark.asyncio
    async def test_patch_copied_first(self, sync, executor, patch_file):
        result = await sync.sync("w1", "trunk", "junk/devduck", patch_file, copy_patch=True)

        assert result.patch_applied is True
        executor.copy_into.assert_awaited_once_with("w1", patch_file.path, SANDBOX_PATCH_PATH)

    @pytest.mark.asyncio
    async def test_copy_failure_skips_apply(self, sync, executor, patch_file):
        executor.copy_into.return_value = ExecResult(exit_code=1, stderr="no such container")

        result = await sync.sync("w1", "trunk", "junk/devduck", patch_file, copy_patch=True)

        assert result.success
        assert result.patch_applied is False
        assert executor.exec_async.await_count == 1
