"""Per-repository indexing state: Standby, Indexing, Indexed, Error."""

import logging
from dataclasses import replace
from datetime import datetime
from typing import Optional

from ..errors import SyncInProgressError
from ..models import IndexingState, RepoState

log = logging.getLogger("repoindex.state")

CANCELLED_MESSAGE = "Indexing cancelled"
IN_PROGRESS_MESSAGE = "sync already in progress"


class IndexingStateMachine:
    """Tracks the latest IndexingState of every repository.

    A repository enters Indexing only from a non-Indexing state; a second
    request while Indexing is refused, never queued. Completion and failure
    are accepted only from the job that is currently running.
    """

    def __init__(self):
        self._states: dict[int, IndexingState] = {}

    def get(self, repository_id: int) -> IndexingState:
        state = self._states.get(repository_id)
        if state is None:
            return IndexingState(repository_id=repository_id)
        return replace(state)

    def is_indexing(self, repository_id: int) -> bool:
        state = self._states.get(repository_id)
        return state is not None and state.state == RepoState.INDEXING

    def begin(self, repository_id: int, job_id: str) -> IndexingState:
        current = self._states.get(repository_id)
        if current is not None and current.state == RepoState.INDEXING:
            raise SyncInProgressError(IN_PROGRESS_MESSAGE)
        state = IndexingState(repository_id=repository_id, state=RepoState.INDEXING, job_id=job_id)
        self._states[repository_id] = state
        log.info("Repository %d: -> Indexing (job %s)", repository_id, job_id)
        return replace(state)

    def _finish(self, repository_id: int, job_id: str, target: RepoState, message: Optional[str]) -> bool:
        current = self._states.get(repository_id)
        if current is None or current.state != RepoState.INDEXING or current.job_id != job_id:
            log.warning("Ignoring %s for repository %d from stale job %s", target.value, repository_id, job_id)
            return False
        current.state = target
        current.message = message
        current.updated_at = datetime.now().isoformat()
        log.info("Repository %d: Indexing -> %s%s", repository_id, target.value, f" ({message})" if message else "")
        return True

    def complete(self, repository_id: int, job_id: str, message: Optional[str] = None) -> bool:
        return self._finish(repository_id, job_id, RepoState.INDEXED, message)

    def fail(self, repository_id: int, job_id: str, message: str) -> bool:
        return self._finish(repository_id, job_id, RepoState.ERROR, message)

    def cancel(self, repository_id: int, job_id: str) -> bool:
        return self._finish(repository_id, job_id, RepoState.ERROR, CANCELLED_MESSAGE)

    def reset(self, repository_id: int) -> None:
        """Forget a repository's state (after its index is deleted)."""
        current = self._states.get(repository_id)
        if current is not None and current.state == RepoState.INDEXING:
            raise SyncInProgressError(IN_PROGRESS_MESSAGE)
        self._states.pop(repository_id, None)
