"""Tests for host checkout inspection."""

import stat
from unittest.mock import patch

import pytest

from plan_orchestrator.workspace.host import ChangedFile, HostWorkspace
from plan_orchestrator.workspace.patch import PatchArtifact


@pytest.fixture
def repo(config):
    path = config.resolved_host_repo_path()
    path.mkdir()
    return path


def _vcs_outputs(outputs):
    """Fake get_command_output keyed by the VCS subcommand arguments."""
    def fake(cmd, **kwargs):
        return outputs.get(tuple(cmd[1:]))
    return fake


class TestGetBranch:
    def test_no_repository_is_trunk(self, config):
        assert HostWorkspace(config).get_branch() == "trunk"

    def test_from_info(self, config, repo):
        outputs = {("info",): "path: .\nbranch: users/me/feature\nhash: abc"}
        with patch("plan_orchestrator.workspace.host.get_command_output", side_effect=_vcs_outputs(outputs)):
            assert HostWorkspace(config).get_branch() == "users/me/feature"

    def test_from_branch_list(self, config, repo):
        outputs = {("branch", "--list-names"): "  trunk\n* feature-x\n"}
        with patch("plan_orchestrator.workspace.host.get_command_output", side_effect=_vcs_outputs(outputs)):
            assert HostWorkspace(config).get_branch() == "feature-x"

    def test_unknown_is_trunk(self, config, repo):
        with patch("plan_orchestrator.workspace.host.get_command_output", return_value=None):
            assert HostWorkspace(config).get_branch() == "trunk"


class TestGetProjectPath:
    def test_relative_to_repository(self, config, repo):
        project = repo / "junk" / "team" / "proj"
        project.mkdir(parents=True)
        config.project_root = project
        assert HostWorkspace(config).get_project_path() == "junk/team/proj"

    def test_after_arcadia_segment(self, config, tmp_path):
        config.host_repo_path = tmp_path / "elsewhere"
        config.project_root = tmp_path / "mnt" / "arcadia" / "junk" / "x"
        assert HostWorkspace(config).get_project_path() == "junk/x"

    def test_default(self, config, tmp_path):
        config.host_repo_path = tmp_path / "elsewhere"
        config.project_root = tmp_path / "plain"
        assert HostWorkspace(config).get_project_path() == "junk/devduck"


class TestUncommittedDiff:
    def test_no_repository(self, config):
        assert HostWorkspace(config).get_uncommitted_diff() is None

    def test_warnings_stripped(self, config, repo):
        diff = "WARNING: slow mount\n--- a/f\n+++ b/f\n-x\n+y"
        with patch("plan_orchestrator.workspace.host.get_command_output", return_value=diff):
            assert HostWorkspace(config).get_uncommitted_diff() == "--- a/f\n+++ b/f\n-x\n+y"

    def test_falls_back_to_cached(self, config, repo):
        config.project_root = repo / "junk" / "devduck"
        outputs = {
            ("diff", "--relative=/junk/devduck"): "",
            ("diff", "--cached", "--relative=/junk/devduck"): "--- a/g\n+++ b/g",
        }
        with patch("plan_orchestrator.workspace.host.get_command_output", side_effect=_vcs_outputs(outputs)):
            assert HostWorkspace(config).get_uncommitted_diff() == "--- a/g\n+++ b/g"

    def test_capped(self, config, repo):
        config.max_diff_lines = 3
        diff = "\n".join(f"+line{i}" for i in range(10))
        with patch("plan_orchestrator.workspace.host.get_command_output", return_value=diff):
            assert HostWorkspace(config).get_uncommitted_diff().count("\n") == 2

    def test_non_utf8_bytes_survive_into_patch(self, config, repo, tmp_path):
        """A legacy-encoded change is carried byte for byte instead of crashing the run."""
        vcs = tmp_path / "fake-arc"
        vcs.write_text(
            "#!/bin/sh\n"
            "if [ \"$1\" = diff ]; then printf 'diff a.py\\n--- a.py\\n+++ a.py\\n-caf\\351\\n'; fi\n"
        )
        vcs.chmod(vcs.stat().st_mode | stat.S_IEXEC)
        config.vcs_binary = str(vcs)

        diff = HostWorkspace(config).get_uncommitted_diff()

        assert diff is not None
        with PatchArtifact.create(diff, config.tmp_dir) as artifact:
            assert b"-caf\xe9\n" in artifact.path.read_bytes()


class TestUncommittedFiles:
    def test_parses_short_status(self, config, repo):
        status = "## trunk\n M src/a.py\n?? new.txt\nWARNING: x\nA  added.py\n"
        with patch("plan_orchestrator.workspace.host.get_command_output", return_value=status):
            files = HostWorkspace(config).get_uncommitted_files()

        assert files == [
            ChangedFile("M", "src/a.py"),
            ChangedFile("??", "new.txt"),
            ChangedFile("A", "added.py"),
        ]
