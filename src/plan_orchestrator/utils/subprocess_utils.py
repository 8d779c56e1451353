"""Standardized subprocess utilities for host-side command execution."""

import logging
import subprocess
from pathlib import Path
from typing import List, Optional, Union

logger = logging.getLogger(__name__)


class SubprocessError(Exception):
    """Exception raised when a subprocess command fails."""

    def __init__(self, cmd: str, returncode: int, stderr: str, stdout: str = ""):
        self.cmd = cmd
        self.returncode = returncode
        self.stderr = stderr
        self.stdout = stdout
        super().__init__(
            f"Command failed with exit code {returncode}: {cmd}\nstderr: {stderr}"
        )


class CommandNotFoundError(SubprocessError):
    """The executable could not be started at all."""

    def __init__(self, cmd: str, reason: str):
        super().__init__(cmd=cmd, returncode=127, stderr=reason)


def _format_cmd(cmd: Union[str, List[str]]) -> str:
    return cmd if isinstance(cmd, str) else " ".join(cmd)


def run_command(
    cmd: Union[str, List[str]],
    *,
    cwd: Optional[Path] = None,
    check: bool = True,
    timeout: Optional[int] = None,
    errors: Optional[str] = None,
    capture_output: bool = True,
) -> subprocess.CompletedProcess:
    """
    Run a command with standardized error handling.

    Args:
        cmd: Argument vector (preferred) or a string for shell-free single commands
        cwd: Working directory
        check: Raise SubprocessError on non-zero exit
        timeout: Timeout in seconds
        errors: Decoding error handler for captured output (default strict);
            ``surrogateescape`` keeps undecodable bytes recoverable
        capture_output: Capture stdout/stderr (False streams them to the terminal)

    Returns:
        CompletedProcess with stdout, stderr, returncode

    Raises:
        CommandNotFoundError: If the executable is missing or not executable
        SubprocessError: If check=True and command fails
        subprocess.TimeoutExpired: If timeout exceeded
    """
    try:
        result = subprocess.run(
            cmd,
            cwd=cwd,
            capture_output=capture_output,
            text=True,
            encoding="utf-8",
            errors=errors,
            timeout=timeout,
            check=False,  # We handle check ourselves for better error messages
        )
    except (FileNotFoundError, PermissionError) as e:
        raise CommandNotFoundError(_format_cmd(cmd), str(e)) from e
    except subprocess.TimeoutExpired:
        logger.error(f"Command timed out after {timeout}s: {_format_cmd(cmd)}")
        raise

    if check and result.returncode != 0:
        raise SubprocessError(
            cmd=_format_cmd(cmd),
            returncode=result.returncode,
            stderr=result.stderr or "",
            stdout=result.stdout or "",
        )
    return result


def get_command_output(
    cmd: Union[str, List[str]],
    *,
    cwd: Optional[Path] = None,
    timeout: int = 30,
    errors: Optional[str] = None,
) -> Optional[str]:
    """Return stripped stdout of a command, or None if it failed, is missing or is undecodable."""
    try:
        result = run_command(cmd, cwd=cwd, check=True, timeout=timeout, errors=errors)
    except (SubprocessError, subprocess.TimeoutExpired, UnicodeDecodeError) as e:
        logger.debug(f"Command produced no output ({_format_cmd(cmd)}): {e}")
        return None
    return result.stdout.strip()
