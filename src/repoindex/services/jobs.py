"""In-memory tracking of indexing jobs and their progress."""

import asyncio
import uuid
from datetime import datetime
from typing import Optional

from ..models import IndexingProgress, JobStatus


class JobRegistry:
    """In-memory job tracker. Keeps up to ``max_jobs`` recent jobs."""

    def __init__(self, max_jobs: int = 100):
        self.max_jobs = max_jobs
        self._jobs: dict[str, IndexingProgress] = {}
        self._cancel: dict[str, asyncio.Event] = {}

    def create(self, repository_id: int) -> IndexingProgress:
        job_id = uuid.uuid4().hex[:12]
        progress = IndexingProgress(job_id=job_id, repository_id=repository_id)
        self._jobs[job_id] = progress
        self._cancel[job_id] = asyncio.Event()
        self._prune()
        return progress

    def start(self, job_id: str):
        p = self._jobs.get(job_id)
        if p and p.status == JobStatus.PENDING:
            p.status = JobStatus.RUNNING
            p.started_at = datetime.now().isoformat()

    def cancel(self, job_id: str) -> bool:
        """Request cooperative cancellation. The job records ``cancelled`` once it stops."""
        p = self._jobs.get(job_id)
        if not p or p.status.terminal:
            return False
        self._cancel[job_id].set()
        return True

    def cancel_event(self, job_id: str) -> asyncio.Event:
        return self._cancel[job_id]

    def get(self, job_id: str) -> Optional[IndexingProgress]:
        return self._jobs.get(job_id)

    def active_for(self, repository_id: int) -> Optional[IndexingProgress]:
        for p in reversed(self._jobs.values()):
            if p.repository_id == repository_id and not p.status.terminal:
                return p
        return None

    def list_all(self, repository_id: Optional[int] = None) -> list[dict]:
        """Job snapshots, newest first."""
        return [p.to_dict() for p in reversed(self._jobs.values())
                if repository_id is None or p.repository_id == repository_id]

    def clear_finished(self) -> int:
        """Remove all completed, failed, and cancelled jobs."""
        to_remove = [k for k, p in self._jobs.items() if p.status.terminal]
        for k in to_remove:
            del self._jobs[k]
            self._cancel.pop(k, None)
        return len(to_remove)

    def _prune(self):
        excess = len(self._jobs) - self.max_jobs
        if excess <= 0:
            return
        # Running jobs are never evicted
        oldest = [k for k, p in self._jobs.items() if p.status.terminal][:excess]
        for k in oldest:
            del self._jobs[k]
            self._cancel.pop(k, None)
