"""Batch orchestrator: scan, parse, embed and store one repository.

Parsing runs on a fixed pool of worker coroutines that pull files from a
shared iterator. Parsed blocks go to a lock-guarded accumulator; whenever it
holds ``batch_segment_threshold`` blocks a batch is cut and handed to a batch
task that embeds and upserts it. Batch tasks are bounded by
``batch_concurrency`` and at most ``max_pending_batches`` may be outstanding,
so parse workers wait when embedding falls behind.

Cancellation and fatal errors are checked before each file and before each
batch. A call already in flight is allowed to finish.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Iterator, Optional, Protocol

from ..config import IndexingConfig
from ..errors import (
    ConfigurationError,
    EmbeddingBatchError,
    IndexingCancelled,
    ParseError,
    ProviderError,
    RepoIndexError,
)
from ..models import (
    CodeBlock,
    IndexedFile,
    IndexingProgress,
    IndexingSummary,
    JobStatus,
    RemoteFile,
    Repository,
    Stage,
)
from ..processing.embedder import Embedder
from ..processing.parser import CodeParser, content_hash
from ..processing.scanner import RepositoryScanner
from ..processing.vectorstore import QdrantIndex, make_point
from ..store import RepositoryStore
from .state import CANCELLED_MESSAGE

log = logging.getLogger("repoindex.orchestrator")

# Cap on per-job error strings kept in the summary
MAX_SUMMARY_ERRORS = 200


class ContentProvider(Protocol):
    async def get_file_content(self, owner: str, repo: str, path: str, token: Optional[str] = None) -> bytes: ...

    async def get_languages(self, owner: str, repo: str, token: Optional[str] = None) -> dict[str, int]: ...


@dataclass
class _Job:
    repository: Repository
    progress: IndexingProgress
    summary: IndexingSummary
    cancel: asyncio.Event
    token: Optional[str]
    indexed: dict[str, IndexedFile]
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    pending: list[tuple[CodeBlock, int]] = field(default_factory=list)
    batch_tasks: list[asyncio.Task] = field(default_factory=list)
    abort: asyncio.Event = field(default_factory=asyncio.Event)
    error: Optional[BaseException] = None
    batch_sem: Optional[asyncio.Semaphore] = None
    slots: Optional[asyncio.Semaphore] = None

    @property
    def stopped(self) -> bool:
        return self.cancel.is_set() or self.abort.is_set()

    def fail(self, exc: BaseException) -> None:
        if self.error is None:
            self.error = exc
        self.abort.set()

    def note(self, message: str) -> None:
        if len(self.summary.errors) < MAX_SUMMARY_ERRORS:
            self.summary.errors.append(message)


class BatchOrchestrator:
    """Runs one indexing job end to end and records its terminal status."""

    def __init__(
        self,
        scanner: RepositoryScanner,
        parser: CodeParser,
        embedder: Embedder,
        index: QdrantIndex,
        provider: ContentProvider,
        store: RepositoryStore,
        config: Optional[IndexingConfig] = None,
    ):
        self.scanner = scanner
        self.parser = parser
        self.embedder = embedder
        self.index = index
        self.provider = provider
        self.store = store
        self.config = config or IndexingConfig()

    async def run(
        self,
        repository: Repository,
        progress: IndexingProgress,
        cancel: asyncio.Event,
        token: Optional[str] = None,
        reindex: bool = False,
    ) -> IndexingSummary:
        summary = IndexingSummary()
        progress.summary = summary
        if progress.status == JobStatus.PENDING:
            progress.status = JobStatus.RUNNING
            progress.started_at = datetime.now().isoformat()

        try:
            await self._execute(repository, progress, summary, cancel, token, reindex)
        except IndexingCancelled:
            log.info("Job %s cancelled for %s", progress.job_id, repository.full_name)
            progress.finish(JobStatus.CANCELLED, error=CANCELLED_MESSAGE, message=CANCELLED_MESSAGE)
            return summary
        except RepoIndexError as e:
            log.error("Job %s failed for %s: %s", progress.job_id, repository.full_name, e)
            progress.finish(JobStatus.FAILED, error=str(e))
            return summary

        error = None
        if progress.total_blocks > 0 and progress.indexed_blocks == 0:
            error = f"No blocks indexed: all {progress.total_blocks} blocks were skipped"
        elif summary.files_scanned > 0 and summary.files_indexed + summary.files_unchanged == 0:
            error = f"No blocks indexed: all {summary.files_scanned} files failed"
        if error:
            log.error("Job %s failed for %s: %s", progress.job_id, repository.full_name, error)
            progress.finish(JobStatus.FAILED, error=error)
            return summary

        message = (
            f"Indexed {summary.blocks_indexed} blocks from {summary.files_indexed} files "
            f"({summary.files_unchanged} unchanged, {summary.files_removed} removed, "
            f"{summary.files_failed} failed, {summary.blocks_skipped} blocks skipped)"
        )
        progress.finish(JobStatus.COMPLETED, message=message)
        log.info("Job %s completed for %s: %s", progress.job_id, repository.full_name, message)
        return summary

    # ── Stages ────────────────────────────────────────────────

    @staticmethod
    def _check_cancel(cancel: asyncio.Event) -> None:
        if cancel.is_set():
            raise IndexingCancelled(CANCELLED_MESSAGE)

    async def _execute(self, repository, progress, summary, cancel, token, reindex) -> None:
        # initializing: nothing touches the index until both collaborators check out
        progress.advance(Stage.INITIALIZING)
        progress.message = "Validating embedder configuration"
        self._check_cancel(cancel)
        result = await self.embedder.validate_configuration()
        if not result.valid:
            raise ConfigurationError(result.error or "Embedder configuration is invalid")
        await self.index.ping()
        existed = await self.index.initialize(repository.id, result.dimension)
        if reindex and existed:
            await self.index.clear_collection(repository.id)
            log.info("Cleared index for full reindex of %s", repository.full_name)

        self._check_cancel(cancel)
        progress.advance(Stage.SCANNING)
        progress.message = "Scanning repository"
        scan = await self.scanner.scan(repository, token)
        progress.discovered_files = scan.discovered
        progress.total_files = len(scan.files)
        summary.files_scanned = len(scan.files)

        indexed = {} if reindex else await self.index.get_indexed_files(repository.id)
        current = {f.path for f in scan.files}
        for path in sorted(set(indexed) - current):
            await self.index.delete_file_points(repository.id, path)
            summary.files_removed += 1
        if summary.files_removed:
            log.info("Removed points of %d files no longer in %s", summary.files_removed, repository.full_name)

        self._check_cancel(cancel)
        progress.advance(Stage.PARSING)
        progress.message = f"Parsing {len(scan.files)} files"
        job = _Job(repository=repository, progress=progress, summary=summary,
                   cancel=cancel, token=token, indexed=indexed)
        await self._process_files(job, scan.files)

        progress.advance(Stage.STORING)
        progress.message = "Recording sync"
        await self._record_sync(repository, token)

    async def _record_sync(self, repository: Repository, token: Optional[str]) -> None:
        languages: Optional[dict[str, int]] = None
        try:
            languages = await self.provider.get_languages(repository.owner_login, repository.name, token)
        except ProviderError as e:
            log.warning("Could not fetch languages for %s: %s", repository.full_name, e)
        self.store.mark_synced(repository.id, datetime.now(timezone.utc).isoformat(), languages)

    # ── Parsing ───────────────────────────────────────────────

    async def _process_files(self, job: _Job, files: list[RemoteFile]) -> None:
        job.batch_sem = asyncio.Semaphore(self.config.batch_concurrency)
        job.slots = asyncio.Semaphore(self.config.max_pending_batches)
        queue = iter(files)
        workers = min(self.config.parsing_concurrency, len(files)) or 1
        await asyncio.gather(*(self._parse_worker(job, queue) for _ in range(workers)))

        if not job.stopped:
            job.progress.advance(Stage.EMBEDDING)
            job.progress.message = "Embedding remaining blocks"
            async with job.lock:
                remainder, job.pending = job.pending, []
            threshold = self.config.batch_segment_threshold
            for i in range(0, len(remainder), threshold):
                await self._dispatch(job, remainder[i:i + threshold])

        # In-flight batches always run to completion
        await asyncio.gather(*job.batch_tasks)

        if job.error is not None:
            raise job.error
        self._check_cancel(job.cancel)

    async def _parse_worker(self, job: _Job, queue: Iterator[RemoteFile]) -> None:
        for remote in queue:
            if job.stopped:
                return
            try:
                await self._process_file(job, remote)
            except Exception as e:  # collected and re-raised by _process_files
                job.fail(e)
                return

    async def _mark_processed(self, job: _Job, **counts: int) -> None:
        async with job.lock:
            job.progress.processed_files += 1
            for name, value in counts.items():
                setattr(job.summary, name, getattr(job.summary, name) + value)

    async def _drop_stale(self, job: _Job, path: str) -> None:
        """Delete points left from an earlier version of a file."""
        if path in job.indexed:
            await self.index.delete_file_points(job.repository.id, path)

    async def _process_file(self, job: _Job, remote: RemoteFile) -> None:
        repo = job.repository
        async with job.lock:
            job.progress.current_file = remote.path

        try:
            raw = await self.provider.get_file_content(repo.owner_login, repo.name, remote.path, job.token)
        except ProviderError as e:
            if e.status_code != 404:
                raise
            log.warning("Skipping %s: removed since listing", remote.path)
            job.note(f"{remote.path}: not found")
            await self._drop_stale(job, remote.path)
            await self._mark_processed(job, files_failed=1)
            return

        file_hash = content_hash(raw)
        prior = job.indexed.get(remote.path)
        if prior is not None and prior.file_hash == file_hash and prior.complete:
            await self._mark_processed(job, files_unchanged=1)
            return

        try:
            _, blocks = self.parser.parse_file(remote.path, raw, file_hash)
        except ParseError as e:
            log.warning("Skipping %s: %s", remote.path, e)
            job.note(str(e))
            await self._drop_stale(job, remote.path)
            await self._mark_processed(job, files_failed=1)
            return

        await self._drop_stale(job, remote.path)

        ready: list[list[tuple[CodeBlock, int]]] = []
        threshold = self.config.batch_segment_threshold
        async with job.lock:
            job.progress.processed_files += 1
            job.progress.total_blocks += len(blocks)
            job.summary.files_indexed += 1
            job.pending.extend((b, len(blocks)) for b in blocks)
            while len(job.pending) >= threshold:
                ready.append(job.pending[:threshold])
                del job.pending[:threshold]

        for batch in ready:
            await self._dispatch(job, batch)

    # ── Batches ───────────────────────────────────────────────

    async def _dispatch(self, job: _Job, batch: list[tuple[CodeBlock, int]]) -> None:
        await job.slots.acquire()
        job.progress.advance(Stage.EMBEDDING)
        job.batch_tasks.append(asyncio.create_task(self._run_batch(job, batch)))

    async def _skip_batch(self, job: _Job, batch: list[tuple[CodeBlock, int]], reason: str) -> None:
        async with job.lock:
            job.progress.skipped_blocks += len(batch)
            job.summary.blocks_skipped += len(batch)
        job.note(reason)

    async def _run_batch(self, job: _Job, batch: list[tuple[CodeBlock, int]]) -> None:
        try:
            async with job.batch_sem:
                if job.stopped:
                    return
                try:
                    vectors = await self.embedder.embed_blocks([b for b, _ in batch])
                except EmbeddingBatchError as e:
                    log.warning("Skipping batch of %d blocks: %s", len(batch), e)
                    await self._skip_batch(job, batch, str(e))
                    return
                job.progress.advance(Stage.STORING)
                points = [make_point(b, v, job.repository, n) for (b, n), v in zip(batch, vectors)]
                await self.index.upsert_points(job.repository.id, points)
                async with job.lock:
                    job.progress.indexed_blocks += len(points)
                    job.summary.blocks_indexed += len(points)
        except Exception as e:  # collected and re-raised by _process_files
            job.fail(e)
        finally:
            job.slots.release()
