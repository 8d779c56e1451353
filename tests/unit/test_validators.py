"""Tests for command-template input validation."""

import pytest

from plan_orchestrator.utils.validators import validate_branch_name, validate_project_path


class TestValidateBranchName:
    @pytest.mark.parametrize("name", ["trunk", "users/me/feature-1", "release_2.0"])
    def test_valid(self, name):
        assert validate_branch_name(name) == name

    @pytest.mark.parametrize("name", [
        "",
        "feature; rm -rf /",
        "$(whoami)",
        "-f",
        "/abs",
        "trailing/",
        "a..b",
        "x" * 256,
    ])
    def test_invalid(self, name):
        with pytest.raises(ValueError):
            validate_branch_name(name)


class TestValidateProjectPath:
    def test_valid_and_trailing_slash_trimmed(self):
        assert validate_project_path("junk/devduck/") == "junk/devduck"

    @pytest.mark.parametrize("path", ["", "/etc", "../outside", "a/../../b", "a b", "a;b"])
    def test_invalid(self, path):
        with pytest.raises(ValueError):
            validate_project_path(path)
