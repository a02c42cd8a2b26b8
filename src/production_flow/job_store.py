from __future__ import annotations

import logging
import threading
import uuid
from datetime import datetime, timedelta
from typing import Any, Dict

from .models.job import GenerationJob, JobStatus, TaskKey

logger = logging.getLogger(__name__)

MAX_ACTIVE_TASK_AGE = timedelta(minutes=30)
MAX_COMPLETED_TASK_AGE = timedelta(minutes=10)
STALE_ACTIVE_TASK_AGE = timedelta(minutes=15)


class TaskRegistry:
    """Session-scoped view of every submitted job, one record per composite key.

    A new record for an existing key replaces the old one. Updates are applied
    only while the updated job is still the current record for its key, so a
    poller whose job was superseded cannot overwrite its successor.
    """

    def __init__(self) -> None:
        self._records: Dict[TaskKey, GenerationJob] = {}
        self._keys_by_id: Dict[str, TaskKey] = {}
        self._lock = threading.Lock()

    def upsert(self, job: GenerationJob) -> GenerationJob:
        with self._lock:
            previous = self._records.get(job.key)
            if previous is not None and previous.id != job.id:
                self._keys_by_id.pop(previous.id, None)
                logger.info(
                    "Superseded task record",
                    extra={"job_id": previous.id, "replaced_by": job.id, "kind": job.kind.value},
                )
            self._records[job.key] = job
            self._keys_by_id[job.id] = job.key
            return job

    def replace_if_current(self, job_id: str, replacement: GenerationJob) -> GenerationJob | None:
        """Swap in ``replacement`` only while ``job_id`` is still the record for its key.

        Returns None, leaving the registry untouched, when the job has been
        superseded or dismissed in the meantime.
        """
        with self._lock:
            key = self._keys_by_id.get(job_id)
            current = self._records.get(key) if key is not None else None
            if current is None or current.id != job_id or replacement.key != key:
                return None
            self._records[key] = replacement
            self._keys_by_id[replacement.id] = key
            if replacement.id != job_id:
                del self._keys_by_id[job_id]
            return replacement

    def get(self, key: TaskKey) -> GenerationJob | None:
        with self._lock:
            return self._records.get(key)

    def get_job(self, job_id: str) -> GenerationJob | None:
        with self._lock:
            key = self._keys_by_id.get(job_id)
            return self._records.get(key) if key is not None else None

    def update(self, job_id: str, **changes: Any) -> GenerationJob | None:
        """Apply ``changes`` to the current record for ``job_id``.

        Returns None when the job has been superseded or dismissed. Terminal
        records reject further status changes.
        """
        with self._lock:
            key = self._keys_by_id.get(job_id)
            current = self._records.get(key) if key is not None else None
            if current is None or current.id != job_id:
                return None
            if current.status.is_terminal and "status" in changes:
                raise ValueError(f"Job {job_id} is already {current.status.value}")
            changes["last_updated_at"] = datetime.utcnow()
            if "status" in changes and JobStatus(changes["status"]).is_terminal:
                changes.setdefault("completed_at", changes["last_updated_at"])
            updated = current.model_copy(update=changes)
            self._records[key] = updated
            return updated

    def remove(self, key: TaskKey) -> GenerationJob | None:
        with self._lock:
            removed = self._records.pop(key, None)
            if removed is not None:
                self._keys_by_id.pop(removed.id, None)
            return removed

    def dismiss(self, job_id: str) -> bool:
        """Drop a terminal record from view; active records cannot be dismissed."""
        with self._lock:
            key = self._keys_by_id.get(job_id)
            current = self._records.get(key) if key is not None else None
            if current is None:
                return False
            if not current.status.is_terminal:
                raise ValueError(f"Job {job_id} is still {current.status.value}")
            del self._records[key]
            del self._keys_by_id[job_id]
            return True

    def list(self, *, show_id: str | None = None, active_only: bool = False) -> list[GenerationJob]:
        with self._lock:
            records = list(self._records.values())
        if show_id is not None:
            records = [record for record in records if record.target.show_id == show_id]
        if active_only:
            records = [record for record in records if record.status.is_active]
        return sorted(records, key=lambda record: record.started_at)

    def prune(self, *, now: datetime | None = None) -> int:
        """Expire records past their age limit; returns how many were dropped."""
        now = now or datetime.utcnow()

        def expired(record: GenerationJob) -> bool:
            limit = MAX_ACTIVE_TASK_AGE if record.status.is_active else MAX_COMPLETED_TASK_AGE
            reference = record.started_at if record.status.is_active else (record.completed_at or record.started_at)
            return now - reference >= limit

        return self._drop_where(expired)

    def sweep_stale(self, *, now: datetime | None = None) -> int:
        """Drop active records that have been running suspiciously long."""
        now = now or datetime.utcnow()
        return self._drop_where(
            lambda record: record.status.is_active and now - record.started_at >= STALE_ACTIVE_TASK_AGE
        )

    def _drop_where(self, predicate) -> int:
        with self._lock:
            doomed = [key for key, record in self._records.items() if predicate(record)]
            for key in doomed:
                record = self._records.pop(key)
                self._keys_by_id.pop(record.id, None)
        if doomed:
            logger.info("Dropped expired task records", extra={"count": len(doomed)})
        return len(doomed)

    @staticmethod
    def new_correlation_id(kind_value: str) -> str:
        suffix = uuid.uuid4().hex[:12]
        return f"{kind_value}_{suffix}"

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)


__all__ = ["TaskRegistry"]
