"""repoindex data models."""

import uuid
from dataclasses import asdict, dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional

# Fixed namespace for deterministic point ids
POINT_NAMESPACE = uuid.UUID("f47ac10b-58cc-4372-a567-0e02b2c3d479")


class JobStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def terminal(self) -> bool:
        return self in (JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELLED)


class Stage(str, Enum):
    INITIALIZING = "initializing"
    SCANNING = "scanning"
    PARSING = "parsing"
    EMBEDDING = "embedding"
    STORING = "storing"
    COMPLETED = "completed"

    @property
    def order(self) -> int:
        return list(Stage).index(self)


class RepoState(str, Enum):
    STANDBY = "Standby"
    INDEXING = "Indexing"
    INDEXED = "Indexed"
    ERROR = "Error"


@dataclass
class RemoteFile:
    path: str
    size: int


@dataclass
class Repository:
    id: int
    full_name: str
    owner_login: str
    name: str
    last_synced_at: Optional[str] = None
    languages: dict[str, int] = field(default_factory=dict)


@dataclass
class CodeBlock:
    file_path: str
    identifier: Optional[str]
    type: str
    start_line: int
    end_line: int
    content: str
    file_hash: str
    segment_hash: str

    def point_id(self, repository_id: int) -> str:
        raw = f"{repository_id}:{self.file_path}:{self.segment_hash}"
        return str(uuid.uuid5(POINT_NAMESPACE, raw))


@dataclass
class IndexPoint:
    id: str
    vector: list[float]
    payload: dict


@dataclass
class IndexedFile:
    """What the vector index currently holds for one file."""

    file_hash: str
    block_count: int
    points: int = 0

    @property
    def complete(self) -> bool:
        return self.points == self.block_count


@dataclass
class ScanResult:
    files: list[RemoteFile]
    discovered: int
    skipped_oversized: int = 0
    skipped_ignored: int = 0
    skipped_unsupported: int = 0


@dataclass
class RepositoryStats:
    total_files: int
    supported_files: int
    total_size: int
    supported_size: int
    languages: dict[str, int] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class IndexingSummary:
    files_scanned: int = 0
    files_indexed: int = 0
    files_unchanged: int = 0
    files_removed: int = 0
    files_failed: int = 0
    blocks_indexed: int = 0
    blocks_skipped: int = 0
    errors: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class IndexingProgress:
    job_id: str
    repository_id: int
    status: JobStatus = JobStatus.PENDING
    stage: Stage = Stage.INITIALIZING
    discovered_files: int = 0
    total_files: int = 0
    processed_files: int = 0
    total_blocks: int = 0
    indexed_blocks: int = 0
    skipped_blocks: int = 0
    current_file: Optional[str] = None
    message: Optional[str] = None
    error: Optional[str] = None
    summary: Optional[IndexingSummary] = None
    created_at: str = field(default_factory=lambda: datetime.now().isoformat())
    started_at: Optional[str] = None
    completed_at: Optional[str] = None

    def advance(self, stage: Stage) -> None:
        """Move to a later stage; never moves backwards."""
        if stage.order > self.stage.order:
            self.stage = stage

    def finish(self, status: JobStatus, error: Optional[str] = None, message: Optional[str] = None) -> bool:
        """Enter a terminal status. Returns False if the job had already finished."""
        if self.status.terminal or not status.terminal:
            return False
        self.status = status
        self.error = error
        if message is not None:
            self.message = message
        if status == JobStatus.COMPLETED:
            self.stage = Stage.COMPLETED
        self.current_file = None
        self.completed_at = datetime.now().isoformat()
        return True

    def to_dict(self) -> dict:
        duration_ms = None
        if self.started_at:
            start = datetime.fromisoformat(self.started_at)
            if self.completed_at:
                end = datetime.fromisoformat(self.completed_at)
            else:
                end = datetime.now()
            duration_ms = int((end - start).total_seconds() * 1000)

        return {
            "job_id": self.job_id,
            "repository_id": self.repository_id,
            "status": self.status.value,
            "stage": self.stage.value,
            "discovered_files": self.discovered_files,
            "total_files": self.total_files,
            "processed_files": self.processed_files,
            "total_blocks": self.total_blocks,
            "indexed_blocks": self.indexed_blocks,
            "skipped_blocks": self.skipped_blocks,
            "current_file": self.current_file,
            "message": self.message,
            "error": self.error,
            "summary": self.summary.to_dict() if self.summary else None,
            "created_at": self.created_at,
            "started_at": self.started_at,
            "completed_at": self.completed_at,
            "duration_ms": duration_ms,
        }


@dataclass
class IndexingState:
    repository_id: int
    state: RepoState = RepoState.STANDBY
    job_id: Optional[str] = None
    message: Optional[str] = None
    updated_at: str = field(default_factory=lambda: datetime.now().isoformat())


@dataclass
class SearchResult:
    id: str
    score: float
    file_path: str
    identifier: Optional[str]
    block_type: str
    start_line: int
    end_line: int
    content: str
    repository_id: int
    repository_name: str
