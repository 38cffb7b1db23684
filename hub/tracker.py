"""Active-job map and bounded job history."""

from __future__ import annotations

import logging
from collections import deque

from .broadcaster import Broadcaster
from .models import Job, LogEntry

LOGGER = logging.getLogger(__name__)

DEFAULT_HISTORY_LIMIT = 100


class JobTracker:
    """Owns the active -> history transition of jobs and history eviction."""

    def __init__(self, broadcaster: Broadcaster, history_limit: int = DEFAULT_HISTORY_LIMIT) -> None:
        if history_limit < 1:
            raise ValueError("history_limit must be positive")
        self._broadcaster = broadcaster
        self._active: dict[str, Job] = {}
        # Most recent first; appendleft on a full deque evicts the oldest.
        self._history: deque[Job] = deque(maxlen=history_limit)

    @property
    def history_limit(self) -> int:
        return self._history.maxlen or 0

    def start(self, job: Job) -> None:
        self._active[job.id] = job
        LOGGER.info("Job %s started for system %s", job.id, job.system_id)
        self._broadcaster.emit(job.system_id, f"{job.type.value}-started", job.to_dict())

    def log(self, job: Job, entry: LogEntry) -> None:
        payload = {"job_id": job.id, **entry.to_dict()}
        self._broadcaster.emit(job.system_id, f"{job.type.value}-log", payload)

    def finish(self, job: Job) -> bool:
        if not job.is_terminal or self._active.pop(job.id, None) is None:
            return False
        self._history.appendleft(job)
        LOGGER.info("Job %s %s", job.id, job.status.value)
        self._broadcaster.emit(job.system_id, f"{job.type.value}-{job.status.value}", job.to_dict())
        return True

    def get(self, job_id: str) -> Job | None:
        job = self._active.get(job_id)
        if job is not None:
            return job
        return next((job for job in self._history if job.id == job_id), None)

    def active(self, system_id: str | None = None) -> list[Job]:
        return [job for job in self._active.values() if system_id is None or job.system_id == system_id]

    def history(self, system_id: str | None = None, limit: int = 20) -> list[Job]:
        jobs = [job for job in self._history if system_id is None or job.system_id == system_id]
        return jobs[: max(limit, 0)]
