"""Caller-facing indexing service: start, poll, cancel and search."""

import asyncio
import logging
from dataclasses import asdict
from typing import Optional

from pydantic import ValidationError

from ..config import AppConfig
from ..errors import RepoIndexError
from ..models import IndexingProgress, IndexingState, JobStatus
from ..processing.embedder import Embedder, build_embedder
from ..processing.parser import CodeParser
from ..processing.scanner import RepositoryScanner
from ..processing.vectorstore import QdrantIndex
from ..providers.github import GitHubProvider
from ..schemas import (
    DeleteIndexResult,
    RepositoryStatsResponse,
    SearchHit,
    SearchRequest,
    SearchResponse,
    StartIndexingResult,
)
from ..store import SQLiteRepositoryStore
from .jobs import JobRegistry
from .orchestrator import BatchOrchestrator
from .state import IN_PROGRESS_MESSAGE, IndexingStateMachine

log = logging.getLogger("repoindex.indexing")


class IndexingService:
    """Explicitly constructed service instance; see ``build_service``.

    Indexing outcomes never raise: they are recorded on the job's
    IndexingProgress and on the repository's IndexingState.
    """

    def __init__(
        self,
        config: AppConfig,
        store: SQLiteRepositoryStore,
        provider: GitHubProvider,
        embedder: Embedder,
        index: QdrantIndex,
    ):
        self.config = config
        self.store = store
        self.provider = provider
        self.embedder = embedder
        self.index = index
        self.scanner = RepositoryScanner(provider, config.scanner)
        self.parser = CodeParser(config.parser)
        self.jobs = JobRegistry(config.indexing.max_jobs)
        self.states = IndexingStateMachine()
        self.orchestrator = BatchOrchestrator(
            self.scanner, self.parser, embedder, index, provider, store, config.indexing,
        )
        self._tasks: dict[str, asyncio.Task] = {}

    # ── Jobs ──────────────────────────────────────────────────

    async def start_indexing(self, repository_id: int, token: Optional[str] = None,
                             reindex: bool = False) -> StartIndexingResult:
        running = self.jobs.active_for(repository_id)
        if self.states.is_indexing(repository_id):
            state = self.states.get(repository_id)
            job_id = state.job_id or (running.job_id if running else None)
            log.info("Refusing to index repository %d: %s", repository_id, IN_PROGRESS_MESSAGE)
            return StartIndexingResult(job_id=job_id, accepted=False, message=IN_PROGRESS_MESSAGE)

        try:
            repository = self.store.get(repository_id)
        except RepoIndexError as e:
            return StartIndexingResult(accepted=False, message=str(e))

        progress = self.jobs.create(repository_id)
        self.states.begin(repository_id, progress.job_id)

        self.jobs.start(progress.job_id)
        task = asyncio.create_task(self._run_job(repository, progress, token, reindex))
        self._tasks[progress.job_id] = task
        task.add_done_callback(lambda _t, jid=progress.job_id: self._tasks.pop(jid, None))
        log.info("Started job %s for %s (reindex=%s)", progress.job_id, repository.full_name, reindex)
        return StartIndexingResult(job_id=progress.job_id, accepted=True, message="indexing started")

    async def _run_job(self, repository, progress: IndexingProgress, token, reindex) -> None:
        cancel = self.jobs.cancel_event(progress.job_id)
        try:
            await self.orchestrator.run(repository, progress, cancel, token=token, reindex=reindex)
        except Exception as e:
            log.exception("Job %s crashed", progress.job_id)
            progress.finish(JobStatus.FAILED, error=f"Unexpected error: {e}")
        finally:
            if progress.status == JobStatus.COMPLETED:
                self.states.complete(repository.id, progress.job_id, progress.message)
            elif progress.status == JobStatus.CANCELLED:
                self.states.cancel(repository.id, progress.job_id)
            else:
                if not progress.status.terminal:
                    progress.finish(JobStatus.FAILED, error="Job stopped unexpectedly")
                self.states.fail(repository.id, progress.job_id, progress.error or "Indexing failed")

    def get_progress(self, job_id: str) -> Optional[IndexingProgress]:
        return self.jobs.get(job_id)

    def cancel(self, job_id: str) -> bool:
        ok = self.jobs.cancel(job_id)
        if ok:
            log.info("Cancellation requested for job %s", job_id)
        return ok

    async def wait(self, job_id: str) -> Optional[IndexingProgress]:
        """Wait for a job to reach a terminal status."""
        task = self._tasks.get(job_id)
        if task is not None:
            await asyncio.shield(task)
        return self.jobs.get(job_id)

    def list_jobs(self, repository_id: Optional[int] = None) -> list[dict]:
        return self.jobs.list_all(repository_id)

    def clear_finished_jobs(self) -> int:
        """Forget completed, failed and cancelled jobs."""
        return self.jobs.clear_finished()

    def get_state(self, repository_id: int) -> IndexingState:
        return self.states.get(repository_id)

    # ── Search and maintenance ────────────────────────────────

    async def search(self, repository_id: int, query: str, min_score: Optional[float] = None,
                     max_results: Optional[int] = None) -> SearchResponse:
        try:
            req = SearchRequest(
                repository_id=repository_id,
                query=query,
                min_score=self.config.search.min_score if min_score is None else min_score,
                max_results=self.config.search.max_results if max_results is None else max_results,
            )
        except ValidationError as e:
            errors = "; ".join(f"{'.'.join(map(str, err['loc']))}: {err['msg']}" for err in e.errors())
            return SearchResponse(repository_id=repository_id, query=query, error=errors)

        try:
            vector = await self.embedder.embed_query(req.query)
            hits = await self.index.search(vector, req.repository_id, req.min_score, req.max_results)
        except RepoIndexError as e:
            log.warning("Search in repository %d failed: %s", repository_id, e)
            return SearchResponse(repository_id=repository_id, query=query, error=str(e))

        return SearchResponse(
            repository_id=repository_id,
            query=req.query,
            results=[SearchHit(**asdict(h)) for h in hits],
        )

    async def repository_stats(self, repository_id: int, token: Optional[str] = None) -> RepositoryStatsResponse:
        try:
            repository = self.store.get(repository_id)
            stats = await self.scanner.stats(repository, token)
        except RepoIndexError as e:
            log.warning("Stats for repository %d failed: %s", repository_id, e)
            return RepositoryStatsResponse(repository_id=repository_id, error=str(e))
        return RepositoryStatsResponse(repository_id=repository_id, **stats.to_dict())

    async def delete_index(self, repository_id: int) -> DeleteIndexResult:
        """Drop the repository's collection. Refused while it is being indexed."""
        if self.states.is_indexing(repository_id):
            return DeleteIndexResult(repository_id=repository_id, error=IN_PROGRESS_MESSAGE)
        try:
            deleted = await self.index.delete_collection(repository_id)
        except RepoIndexError as e:
            log.warning("Deleting index of repository %d failed: %s", repository_id, e)
            return DeleteIndexResult(repository_id=repository_id, error=str(e))
        self.states.reset(repository_id)
        self.scanner.invalidate(repository_id)
        return DeleteIndexResult(repository_id=repository_id, deleted=deleted)

    async def close(self) -> None:
        for job_id in list(self._tasks):
            self.jobs.cancel(job_id)
        if self._tasks:
            await asyncio.gather(*self._tasks.values())
        await self.embedder.close()
        await self.provider.close()
        await self.index.close()
        self.store.close()


def build_service(config: Optional[AppConfig] = None) -> IndexingService:
    """Construct a service and its collaborators from configuration."""
    config = (config or AppConfig()).validate()
    gh = config.github
    provider = GitHubProvider(
        base_url=gh.base_url,
        token=gh.token,
        timeout=gh.timeout_s,
        max_attempts=gh.max_attempts,
        fetch_concurrency=gh.fetch_concurrency,
    )
    index = QdrantIndex(
        url=config.qdrant.url,
        api_key=config.qdrant.api_key,
        collection_prefix=config.qdrant.collection_prefix,
        distance=config.qdrant.distance,
    )
    return IndexingService(
        config=config,
        store=SQLiteRepositoryStore(config.store.db_path),
        provider=provider,
        embedder=build_embedder(config.embedding),
        index=index,
    )
