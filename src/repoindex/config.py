"""repoindex configuration: dataclasses with env var overrides."""

import os
from dataclasses import dataclass, field

from .errors import ConfigurationError

SUPPORTED_EXTENSIONS: tuple[str, ...] = (
    ".js", ".ts", ".jsx", ".tsx", ".mjs", ".cjs",
    ".py", ".pyi",
    ".java", ".kt", ".scala",
    ".c", ".h", ".cpp", ".hpp", ".cc",
    ".cs", ".php", ".rb", ".go", ".rs", ".swift",
    ".r", ".m", ".mm", ".pl", ".lua", ".dart",
    ".sh", ".bash", ".zsh", ".fish", ".ps1", ".bat",
    ".sql", ".html", ".css", ".scss", ".sass", ".less",
    ".vue", ".svelte",
    ".yaml", ".yml", ".json", ".xml", ".toml", ".ini", ".cfg", ".conf",
    ".md", ".txt", ".rst", ".tex", ".org",
)

IGNORED_DIRECTORIES: tuple[str, ...] = (
    "node_modules", ".git", ".svn", ".hg", ".bzr",
    ".vscode", ".idea",
    "dist", "build", "out", "target", "bin", "obj",
    ".next", ".nuxt", "coverage", ".nyc_output",
    "logs", "tmp", "temp", ".cache",
    "vendor", "bower_components",
    ".sass-cache", ".parcel-cache",
    "__pycache__", ".mypy_cache", ".pytest_cache", ".tox", ".venv", "venv",
)

IGNORED_FILE_PATTERNS: tuple[str, ...] = (
    "*.log", "*.tmp", "*.temp", "*.cache",
    "*.min.js", "*.min.css", "*.bundle.js", "*.chunk.js",
    "*.map", "*.lock", "*.pid",
    "package-lock.json", "pnpm-lock.yaml", "go.sum",
)


def _env_list(name: str, default: tuple[str, ...]) -> tuple[str, ...]:
    raw = os.getenv(name)
    if not raw:
        return default
    return tuple(p.strip() for p in raw.split(",") if p.strip())


@dataclass(slots=True)
class GitHubConfig:
    base_url: str = field(default_factory=lambda: os.getenv("GITHUB_API_URL", "https://api.github.com"))
    token: str = field(default_factory=lambda: os.getenv("GITHUB_TOKEN", ""))
    timeout_s: float = field(default_factory=lambda: float(os.getenv("GITHUB_TIMEOUT_S", "30")))
    max_attempts: int = field(default_factory=lambda: int(os.getenv("GITHUB_MAX_ATTEMPTS", "3")))
    fetch_concurrency: int = field(default_factory=lambda: int(os.getenv("GITHUB_FETCH_CONCURRENCY", "8")))


@dataclass(slots=True)
class EmbeddingConfig:
    provider: str = field(default_factory=lambda: os.getenv("EMBEDDING_PROVIDER", "openai"))
    base_url: str = field(default_factory=lambda: os.getenv("EMBEDDING_BASE_URL", ""))
    model: str = field(default_factory=lambda: os.getenv("EMBEDDING_MODEL", "text-embedding-3-small"))
    api_key: str = field(
        default_factory=lambda: os.getenv("EMBEDDING_API_KEY", os.getenv("OPENAI_API_KEY", ""))
    )
    timeout_s: float = field(default_factory=lambda: float(os.getenv("EMBEDDING_TIMEOUT_S", "60")))
    max_items_per_call: int = field(default_factory=lambda: int(os.getenv("EMBEDDING_MAX_ITEMS", "64")))
    max_chars_per_call: int = field(default_factory=lambda: int(os.getenv("EMBEDDING_MAX_CHARS", "400000")))
    max_item_chars: int = field(default_factory=lambda: int(os.getenv("EMBEDDING_MAX_ITEM_CHARS", "32764")))
    max_attempts: int = field(default_factory=lambda: int(os.getenv("EMBEDDING_MAX_ATTEMPTS", "3")))
    initial_retry_delay_s: float = 0.5

    def resolved_base_url(self) -> str:
        if self.base_url:
            return self.base_url
        if self.provider == "ollama":
            return "http://localhost:11434"
        return "https://api.openai.com/v1"


@dataclass(slots=True)
class QdrantConfig:
    url: str = field(default_factory=lambda: os.getenv("QDRANT_URL", "http://localhost:6333"))
    api_key: str = field(default_factory=lambda: os.getenv("QDRANT_API_KEY", ""))
    collection_prefix: str = field(
        default_factory=lambda: os.getenv("QDRANT_COLLECTION_PREFIX", "code-blocks-repo-")
    )
    distance: str = field(default_factory=lambda: os.getenv("QDRANT_DISTANCE", "Cosine"))


@dataclass(slots=True)
class ScannerConfig:
    max_file_size_bytes: int = field(
        default_factory=lambda: int(os.getenv("INDEXING_MAX_FILE_SIZE", str(1024 * 1024)))
    )
    supported_extensions: tuple[str, ...] = field(
        default_factory=lambda: _env_list("INDEXING_EXTENSIONS", SUPPORTED_EXTENSIONS)
    )
    ignored_directories: tuple[str, ...] = field(
        default_factory=lambda: _env_list("INDEXING_IGNORED_DIRS", IGNORED_DIRECTORIES)
    )
    ignored_file_patterns: tuple[str, ...] = field(
        default_factory=lambda: _env_list("INDEXING_IGNORED_FILES", IGNORED_FILE_PATTERNS)
    )
    listing_ttl_s: float = 60.0


@dataclass(slots=True)
class ParserConfig:
    min_block_lines: int = field(default_factory=lambda: int(os.getenv("PARSER_MIN_BLOCK_LINES", "3")))
    max_block_lines: int = field(default_factory=lambda: int(os.getenv("PARSER_MAX_BLOCK_LINES", "60")))
    max_block_chars: int = field(default_factory=lambda: int(os.getenv("PARSER_MAX_BLOCK_CHARS", "4000")))


@dataclass(slots=True)
class IndexingConfig:
    parsing_concurrency: int = field(default_factory=lambda: int(os.getenv("PARSING_CONCURRENCY", "10")))
    batch_concurrency: int = field(
        default_factory=lambda: int(os.getenv("BATCH_PROCESSING_CONCURRENCY", "4"))
    )
    batch_segment_threshold: int = field(
        default_factory=lambda: int(os.getenv("BATCH_SEGMENT_THRESHOLD", "60"))
    )
    max_pending_batches: int = field(default_factory=lambda: int(os.getenv("MAX_PENDING_BATCHES", "20")))
    max_jobs: int = 100


@dataclass(slots=True)
class SearchConfig:
    min_score: float = field(default_factory=lambda: float(os.getenv("SEARCH_MIN_SCORE", "0.4")))
    max_results: int = field(default_factory=lambda: int(os.getenv("SEARCH_MAX_RESULTS", "50")))


@dataclass(slots=True)
class StoreConfig:
    db_path: str = field(default_factory=lambda: os.getenv("REPOINDEX_DB_PATH", "repoindex.sqlite"))


@dataclass(slots=True)
class AppConfig:
    github: GitHubConfig = field(default_factory=GitHubConfig)
    embedding: EmbeddingConfig = field(default_factory=EmbeddingConfig)
    qdrant: QdrantConfig = field(default_factory=QdrantConfig)
    scanner: ScannerConfig = field(default_factory=ScannerConfig)
    parser: ParserConfig = field(default_factory=ParserConfig)
    indexing: IndexingConfig = field(default_factory=IndexingConfig)
    search: SearchConfig = field(default_factory=SearchConfig)
    store: StoreConfig = field(default_factory=StoreConfig)

    def validate(self) -> "AppConfig":
        """Raise ConfigurationError for values the pipeline cannot run with."""
        if self.embedding.provider not in ("openai", "ollama"):
            raise ConfigurationError(f"Unknown embedding provider: {self.embedding.provider!r}")
        if self.qdrant.distance not in ("Cosine", "Dot", "Euclid", "Manhattan"):
            raise ConfigurationError(f"Unknown Qdrant distance: {self.qdrant.distance!r}")

        positive = {
            "github.max_attempts": self.github.max_attempts,
            "embedding.max_items_per_call": self.embedding.max_items_per_call,
            "embedding.max_chars_per_call": self.embedding.max_chars_per_call,
            "embedding.max_item_chars": self.embedding.max_item_chars,
            "embedding.max_attempts": self.embedding.max_attempts,
            "scanner.max_file_size_bytes": self.scanner.max_file_size_bytes,
            "parser.min_block_lines": self.parser.min_block_lines,
            "parser.max_block_lines": self.parser.max_block_lines,
            "parser.max_block_chars": self.parser.max_block_chars,
            "indexing.parsing_concurrency": self.indexing.parsing_concurrency,
            "indexing.batch_concurrency": self.indexing.batch_concurrency,
            "indexing.batch_segment_threshold": self.indexing.batch_segment_threshold,
            "indexing.max_pending_batches": self.indexing.max_pending_batches,
        }
        for name, value in positive.items():
            if value <= 0:
                raise ConfigurationError(f"{name} must be positive, got {value}")

        if self.parser.min_block_lines > self.parser.max_block_lines:
            raise ConfigurationError(
                f"parser.min_block_lines ({self.parser.min_block_lines}) exceeds "
                f"parser.max_block_lines ({self.parser.max_block_lines})"
            )
        if self.embedding.max_item_chars > self.embedding.max_chars_per_call:
            raise ConfigurationError("embedding.max_item_chars exceeds embedding.max_chars_per_call")
        if not 0.0 <= self.search.min_score <= 1.0:
            raise ConfigurationError(f"search.min_score must be in [0, 1], got {self.search.min_score}")
        return self
