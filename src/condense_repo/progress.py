from __future__ import annotations

import threading
import time
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from condense_repo.config import ProgressInfo
from condense_repo.logging import logger

if TYPE_CHECKING:
    from collections.abc import Callable
    from datetime import timedelta


@dataclass(frozen=True)
class Job:
    """A tracked scan and its latest progress snapshot."""

    job_id: str
    created_at: float
    updated_at: float
    progress: ProgressInfo = field(default_factory=ProgressInfo)


class ProgressTracker:
    """Registry of scan jobs owned by the caller.

    One tracker is created by whoever runs scans and handed to each
    `FileProcessor`; there is no process-wide instance.
    """

    def __init__(self, clock: Callable[[], float] = time.time) -> None:
        self._clock = clock
        self._lock = threading.Lock()
        self._jobs: dict[str, Job] = {}
        self._counter = 0

    def register_job(self) -> str:
        """Create a job and return its id (`job_<milliseconds>`, made unique)."""
        now = self._clock()
        with self._lock:
            self._counter += 1
            job_id = f"job_{int(now * 1000)}"
            if job_id in self._jobs:
                job_id = f"{job_id}_{self._counter}"
            self._jobs[job_id] = Job(job_id=job_id, created_at=now, updated_at=now)
        logger.info("Registered job %s", job_id)
        return job_id

    def update_progress(self, job_id: str, progress: ProgressInfo) -> None:
        """Store a new snapshot for a job; unknown ids are ignored with a warning."""
        now = self._clock()
        with self._lock:
            job = self._jobs.get(job_id)
            if job is not None:
                self._jobs[job_id] = Job(job_id=job_id, created_at=job.created_at, updated_at=now, progress=progress)
        if job is None:
            logger.warning("Progress for unknown job %s", job_id)
            return
        if progress.is_complete:
            logger.info(
                "Job %s complete: %d processed, %d skipped, %d errors",
                job_id,
                progress.processed_files,
                progress.skipped_files,
                progress.error_files,
            )

    def get_job(self, job_id: str) -> Job | None:
        with self._lock:
            return self._jobs.get(job_id)

    def all_jobs(self) -> list[Job]:
        with self._lock:
            return list(self._jobs.values())

    def remove_job(self, job_id: str) -> bool:
        with self._lock:
            return self._jobs.pop(job_id, None) is not None

    def cleanup_completed_jobs(self, older_than: timedelta) -> int:
        """Drop complete jobs whose last update is older than `older_than`.

        Args:
            older_than (timedelta): minimum age of the last update

        Returns:
            int: number of removed jobs
        """
        limit = self._clock() - older_than.total_seconds()
        with self._lock:
            stale = [
                job_id
                for job_id, job in self._jobs.items()
                if job.progress.is_complete and job.updated_at < limit
            ]
            for job_id in stale:
                del self._jobs[job_id]
        if stale:
            logger.info("Removed %d completed jobs", len(stale))
        return len(stale)
