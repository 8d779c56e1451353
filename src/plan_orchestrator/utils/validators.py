"""Allow-list validation for values interpolated into sandbox commands."""

import re


def validate_branch_name(branch_name: str) -> str:
    """
    Validate a branch name before it is spliced into a sandbox script.

    Raises:
        ValueError: If branch name is invalid
    """
    if not branch_name:
        raise ValueError("Branch name cannot be empty")

    if not re.match(r'^[a-zA-Z0-9._/-]+$', branch_name):
        raise ValueError(f"Invalid branch name: {branch_name}")

    if branch_name.startswith(('/', '-')) or branch_name.endswith('/'):
        raise ValueError(f"Branch name cannot start with / or - or end with /: {branch_name}")

    if '..' in branch_name or '@{' in branch_name:
        raise ValueError("Branch name contains invalid sequence")

    if len(branch_name) > 255:
        raise ValueError("Branch name too long")

    return branch_name


def validate_project_path(project_path: str) -> str:
    """
    Validate a repository-relative project path (e.g. ``junk/team/project``).

    Raises:
        ValueError: If the path is absolute, escapes the repository or has odd characters
    """
    if not project_path:
        raise ValueError("Project path cannot be empty")

    if not re.match(r'^[a-zA-Z0-9._/-]+$', project_path):
        raise ValueError(f"Invalid project path: {project_path}")

    if project_path.startswith(('/', '-')):
        raise ValueError(f"Project path must be relative: {project_path}")

    if any(part == '..' for part in project_path.split('/')):
        raise ValueError(f"Project path cannot contain '..': {project_path}")

    return project_path.rstrip('/')
