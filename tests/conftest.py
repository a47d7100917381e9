"""Shared fakes and fixtures for the repoindex test suite."""

import asyncio
from pathlib import Path
from typing import Callable, Optional

import pytest
import pytest_asyncio
from qdrant_client import AsyncQdrantClient

from repoindex.config import (
    AppConfig,
    IndexingConfig,
    ParserConfig,
    ScannerConfig,
    SearchConfig,
    StoreConfig,
)
from repoindex.errors import EmbeddingBatchError, ProviderError
from repoindex.models import RemoteFile, Repository
from repoindex.processing.embedder import Embedder, EmbeddingResponse
from repoindex.processing.vectorstore import QdrantIndex
from repoindex.services.indexing import IndexingService
from repoindex.store import SQLiteRepositoryStore

FIXTURES_DIR = Path(__file__).parent / "fixtures"

REPO = Repository(id=1, full_name="octo/demo", owner_login="octo", name="demo")

# Embedding dimensions: one per keyword plus a constant bias term
KEYWORDS = ("fibonacci", "csv", "email", "batch")


def keyword_vector(text: str) -> list[float]:
    lowered = text.lower()
    return [float(lowered.count(k)) for k in KEYWORDS] + [1.0]


def python_function(name: str, body_lines: int = 3) -> str:
    lines = [f"def {name}(x):", f'    """Compute {name}."""']
    lines += [f"    x = x + {i}" for i in range(body_lines)]
    lines.append("    return x")
    return "\n".join(lines) + "\n"


# ---------------------------------------------------------------------------
# Source repository provider
# ---------------------------------------------------------------------------
class FakeProvider:
    """In-memory stand-in for the GitHub provider."""

    def __init__(self, files: Optional[dict[str, bytes]] = None, sizes: Optional[dict[str, int]] = None,
                 languages: Optional[dict[str, int]] = None):
        self.files: dict[str, bytes] = dict(files or {})
        self.sizes: dict[str, int] = dict(sizes or {})
        self.languages = languages if languages is not None else {"Python": 1000}
        self.content_errors: dict[str, ProviderError] = {}
        self.list_calls = 0
        self.content_calls: list[str] = []
        self.closed = False

    async def list_files(self, owner, repo, token=None) -> list[RemoteFile]:
        self.list_calls += 1
        await asyncio.sleep(0)
        return [RemoteFile(path=p, size=self.sizes.get(p, len(data))) for p, data in self.files.items()]

    async def get_file_content(self, owner, repo, path, token=None) -> bytes:
        self.content_calls.append(path)
        await asyncio.sleep(0)
        if path in self.content_errors:
            raise self.content_errors[path]
        if path not in self.files:
            raise ProviderError(f"{path} not found", status_code=404)
        return self.files[path]

    async def get_languages(self, owner, repo, token=None) -> dict[str, int]:
        return dict(self.languages)

    async def close(self) -> None:
        self.closed = True


# ---------------------------------------------------------------------------
# Embedder
# ---------------------------------------------------------------------------
class FakeEmbedder(Embedder):
    """Keyword-count embeddings computed locally; batching and retries are the real ones."""

    name = "fake"

    def __init__(self, fail_when: Optional[Callable[[list[str]], bool]] = None,
                 valid: bool = True, **kwargs):
        kwargs.setdefault("retry_delay_s", 0)
        super().__init__("http://embedder.invalid", "fake-model", **kwargs)
        self.fail_when = fail_when
        self.valid = valid
        self.requests: list[list[str]] = []
        self.batch_calls = 0
        self.gate: Optional[asyncio.Event] = None
        self.gate_after = 0
        self.waiting = asyncio.Event()

    async def _request(self, texts, model):
        self.requests.append(list(texts))
        await asyncio.sleep(0)
        if self.fail_when is not None and self.fail_when(texts):
            raise EmbeddingBatchError("embedding provider rejected batch", batch_size=len(texts))
        return EmbeddingResponse(embeddings=[keyword_vector(t) for t in texts],
                                 usage={"prompt_tokens": len(texts), "total_tokens": len(texts)})

    async def _preflight(self):
        return None if self.valid else "fake: model not available"

    async def embed_blocks(self, blocks):
        self.batch_calls += 1
        if self.gate is not None and self.batch_calls > self.gate_after:
            self.waiting.set()
            await self.gate.wait()
        return await super().embed_blocks(blocks)


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------
@pytest.fixture
def store(tmp_path) -> SQLiteRepositoryStore:
    s = SQLiteRepositoryStore(str(tmp_path / "repos.sqlite"))
    s.upsert(REPO)
    yield s
    s.close()


@pytest_asyncio.fixture
async def index() -> QdrantIndex:
    idx = QdrantIndex(client=AsyncQdrantClient(location=":memory:"))
    yield idx
    await idx.close()


@pytest.fixture
def embedder() -> FakeEmbedder:
    return FakeEmbedder()


def make_config(tmp_path=None, **indexing) -> AppConfig:
    indexing.setdefault("parsing_concurrency", 4)
    indexing.setdefault("batch_concurrency", 2)
    indexing.setdefault("batch_segment_threshold", 2)
    indexing.setdefault("max_pending_batches", 4)
    return AppConfig(
        scanner=ScannerConfig(
            max_file_size_bytes=10_000,
            supported_extensions=(".py", ".js", ".md", ".txt"),
            ignored_directories=("node_modules", ".git", "build*"),
            ignored_file_patterns=("*.min.js", "*.lock"),
        ),
        parser=ParserConfig(min_block_lines=3, max_block_lines=60, max_block_chars=4000),
        indexing=IndexingConfig(**indexing),
        search=SearchConfig(min_score=0.0, max_results=50),
        store=StoreConfig(db_path=str(tmp_path / "unused.sqlite") if tmp_path else ":memory:"),
    )


def make_service(store, provider, embedder, index, tmp_path=None, **indexing) -> IndexingService:
    return IndexingService(
        config=make_config(tmp_path, **indexing),
        store=store,
        provider=provider,
        embedder=embedder,
        index=index,
    )


async def point_set(index: QdrantIndex, repository_id: int = REPO.id) -> dict[str, dict]:
    """Every stored point id mapped to its payload."""
    name = index.collection_name(repository_id)
    if not await index.client.collection_exists(name):
        return {}
    points, offset, out = None, None, {}
    while True:
        points, offset = await index.client.scroll(
            collection_name=name, limit=256, offset=offset, with_payload=True, with_vectors=False,
        )
        for p in points:
            out[str(p.id)] = dict(p.payload)
        if offset is None:
            return out
