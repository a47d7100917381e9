"""repoindex exception hierarchy."""

from typing import Optional


class RepoIndexError(Exception):
    """Base exception for all repoindex errors."""


class ConfigurationError(RepoIndexError):
    """Invalid configuration or an unusable embedding provider."""


class ProviderError(RepoIndexError):
    """Source repository provider call failed (listing or content fetch)."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class ParseError(RepoIndexError):
    """A single file could not be split into blocks."""

    def __init__(self, file_path: str, message: str):
        super().__init__(f"{file_path}: {message}")
        self.file_path = file_path


class EmbeddingBatchError(RepoIndexError):
    """An embedding batch failed after all retries."""

    def __init__(self, message: str, batch_size: int = 0):
        super().__init__(message)
        self.batch_size = batch_size


class IndexBackendError(RepoIndexError):
    """Vector index operation failed."""


class IndexingCancelled(RepoIndexError):
    """Indexing job was cancelled by the caller."""


class SyncInProgressError(RepoIndexError):
    """An indexing job is already running for this repository."""


class RepositoryNotFoundError(RepoIndexError):
    """Repository record does not exist in the store."""
