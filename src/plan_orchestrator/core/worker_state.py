"""Persisted per-worker state (workers.json).

The document is small and rewritten wholesale on every mutation. Writers in
this process are serialized through a lock and the file is replaced with an
atomic rename, so readers never see a torn document. Two orchestrator
processes sharing the same file are not coordinated.
"""

import json
import logging
import threading
from datetime import UTC, datetime
from pathlib import Path
from typing import Callable, Iterable, Optional

from pydantic import ValidationError

from .models import TaskOutcome, WorkerStateDocument, WorkerStateRecord, WorkerStatus
from ..utils.atomic_io import atomic_write_model

logger = logging.getLogger(__name__)

StateUpdater = Callable[[WorkerStateDocument], WorkerStateDocument]


class WorkerStateStore:
    """Read-modify-write accessors for the worker state document."""

    def __init__(self, state_path: Path):
        self.state_path = Path(state_path)
        self._lock = threading.Lock()

    def read(self) -> WorkerStateDocument:
        """Return the persisted document; missing or corrupt files read as empty."""
        if not self.state_path.exists():
            return WorkerStateDocument()
        try:
            raw = json.loads(self.state_path.read_text(encoding="utf-8"))
            if not isinstance(raw, dict):
                raise ValueError("worker state is not a JSON object")
            return WorkerStateDocument.model_validate(raw)
        except (OSError, ValueError, ValidationError) as e:
            logger.debug(f"Ignoring unreadable worker state {self.state_path}: {e}")
            return WorkerStateDocument()

    def write(self, updater: Optional[StateUpdater] = None) -> WorkerStateDocument:
        """Load, transform and persist the document. Last writer wins."""
        with self._lock:
            current = self.read()
            updated = updater(current) if updater else current
            atomic_write_model(self.state_path, updated)
            return updated

    def mark_idle(self, names: Iterable[str]) -> WorkerStateDocument:
        """Reset the document so every named worker is idle with no task."""
        now = datetime.now(UTC)
        return self.write(lambda _: WorkerStateDocument(workers={
            name: WorkerStateRecord(status=WorkerStatus.IDLE, task_id=None, updated_at=now)
            for name in names
        }))

    def set_status(self, name: str, **patch) -> WorkerStateDocument:
        """Merge a partial update into one worker's record."""
        def apply(state: WorkerStateDocument) -> WorkerStateDocument:
            record = state.workers.get(name, WorkerStateRecord())
            merged = record.model_dump()
            merged.update(patch)
            merged["updated_at"] = datetime.now(UTC)
            state.workers[name] = WorkerStateRecord.model_validate(merged)
            return state

        return self.write(apply)

    def mark_running(self, name: str, task_id: str) -> WorkerStateDocument:
        return self.set_status(
            name,
            status=WorkerStatus.RUNNING,
            task_id=task_id,
            started_at=datetime.now(UTC),
        )

    def mark_finished(self, name: str, task_id: str, success: bool) -> WorkerStateDocument:
        return self.set_status(
            name,
            status=WorkerStatus.IDLE,
            task_id=None,
            finished_at=datetime.now(UTC),
            last_task_id=task_id,
            last_result=TaskOutcome.OK if success else TaskOutcome.FAIL,
        )
