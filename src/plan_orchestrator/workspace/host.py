"""Inspect the caller's host checkout: branch, project path, uncommitted diff."""

import logging
import re
from typing import List, NamedTuple, Optional

from ..core.config import OrchestratorConfig
from ..core.naming import DEFAULT_BRANCH
from ..utils.subprocess_utils import get_command_output

logger = logging.getLogger(__name__)

_BRANCH_LINE = re.compile(r"branch:\s*(.+)", re.IGNORECASE)
_STATUS_LINE = re.compile(r"^([?!AMDRU]{1,2})\s+(.+)$")


class ChangedFile(NamedTuple):
    status: str
    path: str


class HostWorkspace:
    """Queries the host repository through the VCS command line."""

    def __init__(self, config: OrchestratorConfig):
        self.config = config
        self.repo_path = config.resolved_host_repo_path()

    def _vcs(self, *args: str, errors: str = "replace") -> Optional[str]:
        return get_command_output([self.config.vcs_binary, *args], cwd=self.repo_path, errors=errors)

    def get_branch(self) -> str:
        """Current host branch, ``trunk`` when it cannot be determined."""
        if not self.repo_path.is_dir():
            return DEFAULT_BRANCH

        info = self._vcs("info")
        if info:
            for line in info.splitlines():
                match = _BRANCH_LINE.search(line)
                if match:
                    return match.group(1).strip()

        names = self._vcs("branch", "--list-names")
        if names:
            for line in names.splitlines():
                if line.startswith("*"):
                    return line.lstrip("*").strip()

        return DEFAULT_BRANCH

    def get_project_path(self) -> str:
        """Project root relative to the repository root, with forward slashes."""
        project_root = self.config.project_root.resolve()
        repo_root = self.repo_path.resolve() if self.repo_path.exists() else self.repo_path
        try:
            relative = project_root.relative_to(repo_root)
            if str(relative) != ".":
                return relative.as_posix()
        except ValueError:
            pass

        parts = project_root.parts
        if "arcadia" in parts:
            index = parts.index("arcadia")
            if index < len(parts) - 1:
                return "/".join(parts[index + 1:])

        return self.config.default_project_path

    def _clean_diff(self, output: Optional[str]) -> Optional[str]:
        if not output or not output.strip():
            return None
        lines = [line for line in output.split("\n") if "WARNING" not in line]
        lines = lines[: self.config.max_diff_lines]
        cleaned = "\n".join(lines).strip()
        return cleaned or None

    def get_uncommitted_diff(self) -> Optional[str]:
        """Unstaged changes in the project subtree, falling back to staged ones.

        Bytes that are not valid UTF-8 (legacy-encoded sources) are carried
        as surrogate escapes; write the diff back with
        ``errors="surrogateescape"`` to recover them exactly.
        """
        if not self.repo_path.is_dir():
            return None
        relative = f"--relative=/{self.get_project_path()}"
        diff = self._clean_diff(self._vcs("diff", relative, errors="surrogateescape"))
        if diff:
            return diff
        return self._clean_diff(self._vcs("diff", "--cached", relative, errors="surrogateescape"))

    def get_uncommitted_files(self) -> List[ChangedFile]:
        """Parsed short status of the host checkout."""
        if not self.repo_path.is_dir():
            return []
        output = self._vcs("status", "--short")
        if not output:
            return []
        files: List[ChangedFile] = []
        for line in output.split("\n"):
            trimmed = line.strip()
            if not trimmed or trimmed.startswith("#") or "WARNING" in trimmed:
                continue
            match = _STATUS_LINE.match(trimmed)
            if match:
                files.append(ChangedFile(match.group(1).strip() or "M", match.group(2).strip()))
        return files
