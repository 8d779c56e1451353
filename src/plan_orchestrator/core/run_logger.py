"""Per-task run logs and orchestrator progress lines."""

import logging
from datetime import UTC, datetime
from pathlib import Path
from typing import Optional

from .models import RunResult, RunSummary

logger = logging.getLogger(__name__)


def format_duration(ms: float) -> str:
    """Human-readable duration: 850ms, 4.20s, 2m 5.0s."""
    if ms < 1000:
        return f"{int(ms)}ms"
    seconds = ms / 1000
    if seconds < 60:
        return f"{seconds:.2f}s"
    minutes = int(seconds // 60)
    return f"{minutes}m {seconds - minutes * 60:.1f}s"


class RunLogger:
    """Writes a log file per task attempt next to the task's output directory.

    Task output lives in ``<tasks_dir>/<ISSUE>_<slug>/``; attempt logs go to
    its ``logs/`` subdirectory as ``<timestamp>.<worker>.<ok|fail>.log``.
    Tasks that never produced an output directory get no log file.
    """

    def __init__(self, tasks_dir: Path):
        self.tasks_dir = Path(tasks_dir)

    def find_task_dir(self, issue_key: str) -> Optional[Path]:
        if not self.tasks_dir.is_dir():
            return None
        try:
            candidates = sorted(
                entry for entry in self.tasks_dir.iterdir()
                if entry.is_dir() and entry.name.startswith(f"{issue_key}_")
            )
        except OSError as e:
            logger.debug(f"Could not scan {self.tasks_dir}: {e}")
            return None
        return candidates[0] if candidates else None

    def write_task_run_log(self, result: RunResult, now: Optional[datetime] = None) -> Optional[Path]:
        """Write the attempt log for ``result``; returns its path or None."""
        task_dir = self.find_task_dir(result.task_id)
        if task_dir is None:
            return None

        now = now or datetime.now(UTC)
        logs_dir = task_dir / "logs"
        logs_dir.mkdir(parents=True, exist_ok=True)
        stamp = now.strftime("%Y-%m-%dT%H-%M-%S")
        log_path = logs_dir / f"{stamp}.{result.worker}.{result.outcome.value}.log"

        header = "\n".join([
            f"issue: {result.task_id}",
            f"worker: {result.worker}",
            f"success: {str(result.success).lower()}",
            f"duration: {format_duration(result.duration_ms)}",
            f"time: {now.isoformat()}",
            "",
        ])
        body = result.stdout or ""
        if result.error:
            body += f"\n\n[error]\n{result.error}"
        if result.stderr:
            body += f"\n\n[stderr]\n{result.stderr}"
        log_path.write_text(header + body, encoding="utf-8")
        return log_path

    # -- progress lines ----------------------------------------------------------

    def task_started(self, worker: str, issue_key: str) -> None:
        logger.info("starting", extra={"worker": worker, "issue_key": issue_key})

    def task_finished(self, result: RunResult) -> None:
        extra = {"worker": result.worker, "issue_key": result.task_id}
        status = "SUCCESS" if result.success else "FAILED"
        logger.info(f"{status} ({format_duration(result.duration_ms)})", extra=extra)
        if result.error:
            logger.error(f"error: {result.error}", extra=extra)
        if result.stderr:
            logger.info(f"stderr: {result.stderr.strip()}", extra=extra)
        if result.log_path:
            logger.info(f"log saved: {result.log_path}", extra=extra)

    def pool_completed(self, summary: RunSummary, worker_count: int) -> None:
        logger.info(
            f"Parallel run completed in {format_duration(summary.duration_ms)} "
            f"with max {worker_count} worker container(s)."
        )
        logger.info(
            f"Summary: {summary.successful} successful, {summary.failed} failed "
            f"out of {summary.total} total"
        )
