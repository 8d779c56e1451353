"""Tests for subprocess_utils."""

import pytest

from plan_orchestrator.utils.subprocess_utils import (
    CommandNotFoundError,
    SubprocessError,
    get_command_output,
    run_command,
)


def test_subprocess_error_includes_context():
    """Test SubprocessError includes all context."""
    error = SubprocessError(cmd="arc info", returncode=1, stderr="error message", stdout="output")

    assert error.cmd == "arc info"
    assert error.returncode == 1
    assert error.stderr == "error message"
    assert error.stdout == "output"
    assert "arc info" in str(error)


def test_run_command_success():
    """Test run_command succeeds for valid command."""
    result = run_command(["echo", "hello"], check=True)
    assert result.returncode == 0
    assert "hello" in result.stdout


def test_run_command_failure_raises():
    """Test run_command raises SubprocessError on failure."""
    with pytest.raises(SubprocessError) as exc_info:
        run_command(["false"], check=True)

    assert exc_info.value.returncode != 0


def test_run_command_failure_no_check():
    """Test run_command does not raise when check=False."""
    result = run_command(["false"], check=False)
    assert result.returncode != 0


def test_run_command_missing_executable():
    """A missing binary is reported as CommandNotFoundError, not FileNotFoundError."""
    with pytest.raises(CommandNotFoundError) as exc_info:
        run_command(["nonexistent_command_12345"], check=False)

    assert exc_info.value.returncode == 127


def test_get_command_output_strips_whitespace():
    """Test get_command_output strips whitespace."""
    assert get_command_output(["echo", "  hello  "]) == "hello"


def test_get_command_output_none_on_failure():
    assert get_command_output(["false"]) is None
    assert get_command_output(["nonexistent_command_12345"]) is None


def test_run_command_with_cwd(tmp_path):
    """Test run_command respects cwd parameter."""
    (tmp_path / "test.txt").write_text("content")

    result = run_command(["ls"], cwd=tmp_path, check=True)
    assert "test.txt" in result.stdout


def test_get_command_output_undecodable_is_none():
    """Strict decoding of non-UTF-8 output counts as no output."""
    assert get_command_output(["printf", "caf\\351"]) is None


def test_get_command_output_surrogateescape_round_trips():
    output = get_command_output(["printf", "caf\\351"], errors="surrogateescape")
    assert output.encode("utf-8", errors="surrogateescape") == b"caf\xe9"
