"""Patch artifacts carrying the caller's uncommitted changes into sandboxes."""

import logging
import time
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Optional

logger = logging.getLogger(__name__)


def normalize_patch_filenames(diff_text: Optional[str]) -> str:
    """Make VCS diff headers digestible by ``patch``.

    Some VCS tools emit headers like ``--- path/to/file\\t(index)``; ``patch``
    would treat the suffix as part of the filename, so everything after the
    first tab on ``---``/``+++`` lines is dropped. The output always ends
    with a newline. Applying this twice gives the same result.
    """
    lines = (diff_text or "").split("\n")
    fixed = []
    for line in lines:
        if line.startswith("--- ") or line.startswith("+++ "):
            line = line[:4] + line[4:].split("\t")[0]
        fixed.append(line)
    out = "\n".join(fixed)
    if not out.endswith("\n"):
        out += "\n"
    return out


class PatchArtifact:
    """A normalized diff on disk. Written once, then only read."""

    def __init__(self, path: Path):
        self.path = Path(path)

    @property
    def exists(self) -> bool:
        return self.path.is_file() and self.path.stat().st_size > 0

    def remove(self) -> None:
        try:
            self.path.unlink()
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.warning(f"Failed to remove patch file {self.path}: {e}")

    @classmethod
    @contextmanager
    def create(cls, diff_text: Optional[str], tmp_dir: Path) -> Iterator[Optional["PatchArtifact"]]:
        """Write ``diff_text`` to a temp patch file for the duration of the block.

        Yields None when there is no diff. The file is removed on exit whether
        or not the block succeeded.
        """
        if not diff_text or not diff_text.strip():
            yield None
            return

        tmp_dir.mkdir(parents=True, exist_ok=True)
        path = tmp_dir / f"host-diff-{int(time.time() * 1000)}.patch"
        # Round-trips non-UTF-8 bytes captured by HostWorkspace
        path.write_text(normalize_patch_filenames(diff_text), encoding="utf-8", errors="surrogateescape")
        path.chmod(0o444)
        logger.info(f"Created diff file: {path}")
        artifact = cls(path)
        try:
            yield artifact
        finally:
            artifact.remove()
