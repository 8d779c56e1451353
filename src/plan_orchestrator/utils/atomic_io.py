"""Atomic file I/O operations."""

import logging
import os
from pathlib import Path

from pydantic import BaseModel

logger = logging.getLogger(__name__)


def atomic_write_text(file_path: Path, content: str, max_retries: int = 3) -> None:
    """
    Write ``content`` to ``file_path`` via a temp file and rename.

    Readers see either the previous document or the new one, never a partial
    write. The parent directory is created when missing.

    Raises:
        OSError: If the write fails after all retries
    """
    file_path.parent.mkdir(parents=True, exist_ok=True)
    # PID + suffix keeps temp files of concurrent writers apart
    tmp_file = file_path.with_suffix(f"{file_path.suffix}.tmp.{os.getpid()}")

    last_error: OSError = OSError(f"Failed to write {file_path}")
    for attempt in range(max_retries):
        try:
            tmp_file.write_text(content, encoding="utf-8")
            os.replace(tmp_file, file_path)
            return
        except OSError as e:
            last_error = e
            if attempt < max_retries - 1:
                logger.warning(
                    f"Failed to write {file_path} (attempt {attempt + 1}/{max_retries}): {e}"
                )
        finally:
            if tmp_file.exists():
                try:
                    tmp_file.unlink()
                except OSError:
                    pass

    logger.error(f"Failed to write {file_path} after {max_retries} attempts: {last_error}")
    raise last_error


def atomic_write_model(file_path: Path, model: BaseModel, indent: int = 2) -> None:
    """Atomically write a Pydantic model as JSON."""
    atomic_write_text(file_path, model.model_dump_json(indent=indent) + "\n")
