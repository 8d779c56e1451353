"""Run command lines inside sandbox containers via the docker CLI."""

import asyncio
import logging
import time
from pathlib import Path
from typing import List, Optional

from ..core.errors import RuntimeUnavailableError
from ..core.models import ExecResult
from ..utils.subprocess_utils import CommandNotFoundError, run_command

logger = logging.getLogger(__name__)


class CommandExecutor:
    """Execute shell scripts inside running containers.

    ``docker exec`` is used rather than the SDK's exec API because the async
    variant needs to stream a file to the command's stdin. A non-zero exit is
    a normal ExecResult; failing to start ``docker`` at all raises
    RuntimeUnavailableError so callers can tell infrastructure problems from
    task failures.

    There is deliberately no timeout: a long task holds its pool member until
    it finishes or is killed externally.
    """

    def __init__(self, docker_binary: str = "docker", shell: str = "bash"):
        self.docker_binary = docker_binary
        self.shell = shell

    def _exec_argv(self, sandbox: str, script: str, interactive: bool) -> List[str]:
        argv = [self.docker_binary, "exec"]
        if interactive:
            argv.append("-i")
        argv += [sandbox, self.shell, "-lc", script]
        return argv

    def exec_sync(self, sandbox: str, script: str) -> ExecResult:
        """Run ``script`` in ``sandbox`` and block until it exits."""
        argv = self._exec_argv(sandbox, script, interactive=False)
        start = time.monotonic()
        try:
            result = run_command(argv, check=False, errors="replace")
        except CommandNotFoundError as e:
            raise RuntimeUnavailableError(e.stderr) from e
        return ExecResult(
            exit_code=result.returncode,
            stdout=result.stdout or "",
            stderr=result.stderr or "",
            duration_ms=int((time.monotonic() - start) * 1000),
        )

    async def exec_async(
        self,
        sandbox: str,
        script: str,
        stdin_file: Optional[Path] = None,
    ) -> ExecResult:
        """Run ``script`` in ``sandbox`` without blocking the event loop.

        When ``stdin_file`` is given its bytes become the command's stdin.
        """
        argv = self._exec_argv(sandbox, script, interactive=True)
        return await self.run_docker_async(argv[1:], stdin_file=stdin_file)

    async def run_docker_async(
        self,
        args: List[str],
        stdin_file: Optional[Path] = None,
    ) -> ExecResult:
        """Run ``docker <args>`` asynchronously, capturing output."""
        start = time.monotonic()
        try:
            process = await asyncio.create_subprocess_exec(
                self.docker_binary,
                *args,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except (FileNotFoundError, PermissionError) as e:
            raise RuntimeUnavailableError(str(e)) from e

        payload = b""
        if stdin_file is not None:
            try:
                payload = Path(stdin_file).read_bytes()
            except OSError as e:
                logger.warning(f"Could not read stdin file {stdin_file}: {e}")

        stdout, stderr = await process.communicate(input=payload)
        exit_code = process.returncode if process.returncode is not None else 1
        return ExecResult(
            exit_code=exit_code,
            stdout=stdout.decode("utf-8", errors="replace"),
            stderr=stderr.decode("utf-8", errors="replace"),
            duration_ms=int((time.monotonic() - start) * 1000),
        )

    async def copy_into(self, sandbox: str, source: Path, destination: str) -> ExecResult:
        """Copy a host file into the container (``docker cp``)."""
        return await self.run_docker_async(["cp", str(source), f"{sandbox}:{destination}"])
