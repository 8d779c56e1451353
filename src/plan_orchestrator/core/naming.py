"""Deterministic names for issue keys, sandboxes and pool members."""

import logging
import re
import time
from typing import List, Optional

logger = logging.getLogger(__name__)

ISSUE_KEY_PATTERN = re.compile(r"([A-Z]+-\d+)", re.IGNORECASE)
_STRICT_ISSUE_KEY = re.compile(r"^[A-Z]+-\d+$")
# Tracker URLs carry the key as a path segment: https://tracker.example/CRM-55
_URL_ISSUE_KEY = re.compile(r"^https?://[^/\s]+/(?:[^\s]*/)?([A-Z]+-\d+)(?:[/?#]|$)", re.IGNORECASE)

DEDICATED_CONTAINER_PREFIX = "plan-"
NAME_PART_MAX_LENGTH = 48
NAME_PART_FALLBACK = "x"
DEFAULT_BRANCH = "trunk"
ONE_SHOT_CONTAINER_PREFIX = "devduck"


def extract_issue_key(text: str) -> Optional[str]:
    """Return the canonical uppercase issue key found in ``text``.

    Accepts a bare key (any case) or a URL containing one. Returns None when
    nothing matches; callers treat that as a rejected task.
    """
    if not text:
        return None
    text = text.strip()
    if text.lower().startswith("http"):
        match = _URL_ISSUE_KEY.match(text)
        if match:
            return match.group(1).upper()
    match = ISSUE_KEY_PATTERN.search(text)
    return match.group(1).upper() if match else None


def is_issue_key(value: str) -> bool:
    """Strict allow-list check for an already-canonical key."""
    return bool(value) and bool(_STRICT_ISSUE_KEY.match(value))


def parse_task_keys(raw: str) -> List[str]:
    """Split comma-separated input into canonical keys.

    Unrecognized entries are dropped with a warning and duplicates are
    collapsed, keeping first-seen order.
    """
    keys: List[str] = []
    for part in raw.split(","):
        part = part.strip()
        if not part:
            continue
        key = extract_issue_key(part)
        if key is None:
            logger.warning(f"Ignoring unrecognized issue key: {part!r}")
            continue
        if key not in keys:
            keys.append(key)
    return keys


def sanitize_container_name(issue_key: str) -> str:
    """Name of the dedicated per-task container: CRM-55 -> plan-crm_55."""
    return f"{DEDICATED_CONTAINER_PREFIX}{issue_key.lower().replace('-', '_')}"


def safe_docker_name_part(text: Optional[str], max_length: int = NAME_PART_MAX_LENGTH) -> str:
    """Reduce arbitrary text to a ``[a-z0-9-]`` fragment usable in a container name."""
    part = re.sub(r"[^a-z0-9]+", "-", str(text or "").lower())
    part = part.strip("-")[:max_length].strip("-")
    return part or NAME_PART_FALLBACK


def get_warm_container_name(
    base: str,
    mode: str = "branch",
    branch: Optional[str] = None,
    issue_key: Optional[str] = None,
) -> str:
    """Warm container name for the given warm-naming mode.

    - single: one warm container for everything
    - issue: one per issue key (falls back to branch naming without a key)
    - branch: one per branch, the default
    """
    mode = (mode or "branch").lower()
    if mode == "single":
        return base
    if mode == "issue" and issue_key:
        return f"{base}-{safe_docker_name_part(issue_key)}"
    return f"{base}-{safe_docker_name_part(branch or DEFAULT_BRANCH)}"


def worker_names(count: int, prefix: str) -> List[str]:
    return [f"{prefix}-{i}" for i in range(1, count + 1)]


def one_shot_container_name(kind: str) -> str:
    """Throwaway container for an install or ad-hoc command: devduck-cmd-<ms>."""
    return f"{ONE_SHOT_CONTAINER_PREFIX}-{safe_docker_name_part(kind)}-{int(time.time() * 1000)}"
