"""Repository scanning: fetch the remote listing and filter it to indexable files."""

import logging
import time
from pathlib import PurePosixPath
from typing import Optional, Protocol

from ..config import ScannerConfig
from ..models import RemoteFile, Repository, RepositoryStats, ScanResult
from ..patterns import PathMatcher

log = logging.getLogger("repoindex.scanner")

LANGUAGE_MAP: dict[str, str] = {
    ".py": "python", ".pyi": "python",
    ".go": "go",
    ".js": "javascript", ".mjs": "javascript", ".cjs": "javascript", ".jsx": "javascript",
    ".ts": "typescript", ".tsx": "typescript",
    ".rs": "rust",
    ".java": "java", ".kt": "kotlin", ".scala": "scala",
    ".c": "c", ".h": "c", ".cpp": "cpp", ".hpp": "cpp", ".cc": "cpp",
    ".cs": "csharp",
    ".rb": "ruby",
    ".php": "php",
    ".swift": "swift",
    ".dart": "dart",
    ".m": "objective-c", ".mm": "objective-c",
    ".pl": "perl",
    ".lua": "lua",
    ".r": "r",
    ".sh": "shell", ".bash": "shell", ".zsh": "shell", ".fish": "shell",
    ".ps1": "powershell", ".bat": "batch",
    ".sql": "sql",
    ".html": "html", ".css": "css", ".scss": "scss", ".sass": "sass", ".less": "less",
    ".vue": "vue", ".svelte": "svelte",
    ".yml": "yaml", ".yaml": "yaml", ".toml": "toml", ".json": "json", ".xml": "xml",
    ".ini": "ini", ".cfg": "ini", ".conf": "ini",
    ".md": "markdown", ".rst": "restructuredtext", ".txt": "text", ".tex": "latex", ".org": "org",
}


def file_extension(path: str) -> str:
    return PurePosixPath(path).suffix.lower()


def language_for(path: str) -> str:
    return LANGUAGE_MAP.get(file_extension(path), "unknown")


class FileLister(Protocol):
    async def list_files(self, owner: str, repo: str, token: Optional[str] = None) -> list[RemoteFile]: ...


class RepositoryScanner:
    """Turns a repository's remote listing into an ordered candidate list.

    The provider is injected. Listings are cached per repository for
    ``listing_ttl_s`` so that ``stats`` right after ``scan`` does not hit the
    provider a second time.
    """

    def __init__(self, provider: FileLister, config: Optional[ScannerConfig] = None):
        self.provider = provider
        self.config = config or ScannerConfig()
        self.matcher = PathMatcher(self.config.ignored_directories, self.config.ignored_file_patterns)
        self._extensions = {e.lower() for e in self.config.supported_extensions}
        self._listings: dict[int, tuple[float, list[RemoteFile]]] = {}

    async def _listing(self, repository: Repository, token: Optional[str], refresh: bool) -> list[RemoteFile]:
        now = time.monotonic()
        cached = self._listings.get(repository.id)
        if not refresh and cached and now - cached[0] < self.config.listing_ttl_s:
            log.debug("Reusing cached listing for %s", repository.full_name)
            return cached[1]
        files = await self.provider.list_files(repository.owner_login, repository.name, token)
        self._listings[repository.id] = (now, files)
        return files

    def invalidate(self, repository_id: int) -> None:
        self._listings.pop(repository_id, None)

    def is_supported(self, path: str) -> bool:
        return file_extension(path) in self._extensions

    async def scan(self, repository: Repository, token: Optional[str] = None) -> ScanResult:
        """Fetch a fresh listing and return the files worth indexing, in listing order."""
        listing = await self._listing(repository, token, refresh=True)
        result = ScanResult(files=[], discovered=len(listing))
        for f in listing:
            if self.matcher.is_ignored(f.path):
                result.skipped_ignored += 1
            elif not self.is_supported(f.path):
                result.skipped_unsupported += 1
            elif f.size > self.config.max_file_size_bytes:
                log.debug("Skipping oversized file %s (%d bytes)", f.path, f.size)
                result.skipped_oversized += 1
            else:
                result.files.append(f)

        log.info(
            "Scanned %s: %d candidates of %d files (ignored=%d unsupported=%d oversized=%d)",
            repository.full_name, len(result.files), result.discovered,
            result.skipped_ignored, result.skipped_unsupported, result.skipped_oversized,
        )
        return result

    async def stats(self, repository: Repository, token: Optional[str] = None) -> RepositoryStats:
        """Totals and per-language file counts, from the cached listing when fresh."""
        listing = await self._listing(repository, token, refresh=False)
        stats = RepositoryStats(total_files=len(listing), supported_files=0, total_size=0, supported_size=0)
        for f in listing:
            stats.total_size += f.size
            if self.is_supported(f.path) and not self.matcher.is_ignored(f.path):
                stats.supported_files += 1
                stats.supported_size += f.size
                lang = language_for(f.path)
                stats.languages[lang] = stats.languages.get(lang, 0) + 1
        return stats
