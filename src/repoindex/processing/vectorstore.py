"""Qdrant vector index: one collection per repository."""

import functools
import logging
from typing import Optional

import httpx
from qdrant_client import AsyncQdrantClient
from qdrant_client.http.exceptions import ResponseHandlingException, UnexpectedResponse
from qdrant_client.models import (
    Distance,
    FieldCondition,
    Filter,
    FilterSelector,
    MatchValue,
    PayloadSchemaType,
    PointStruct,
    VectorParams,
)

from ..errors import IndexBackendError
from ..models import CodeBlock, IndexedFile, IndexPoint, Repository, SearchResult
from .scanner import language_for

log = logging.getLogger("repoindex.vectorstore")

_BACKEND_ERRORS = (UnexpectedResponse, ResponseHandlingException, httpx.HTTPError, ValueError, OSError)


def _backend_call(fn):
    """Translate qdrant-client and transport failures into IndexBackendError."""

    @functools.wraps(fn)
    async def wrapper(self, *args, **kwargs):
        try:
            return await fn(self, *args, **kwargs)
        except _BACKEND_ERRORS as e:
            raise IndexBackendError(f"Qdrant {fn.__name__} failed: {e}") from e

    return wrapper


def make_point(block: CodeBlock, vector: list[float], repository: Repository, file_block_count: int) -> IndexPoint:
    return IndexPoint(
        id=block.point_id(repository.id),
        vector=vector,
        payload={
            "repository_id": repository.id,
            "repository_name": repository.full_name,
            "file_path": block.file_path,
            "identifier": block.identifier,
            "block_type": block.type,
            "start_line": block.start_line,
            "end_line": block.end_line,
            "content": block.content,
            "file_hash": block.file_hash,
            "segment_hash": block.segment_hash,
            "file_block_count": file_block_count,
            "language": language_for(block.file_path),
            "line_count": block.end_line - block.start_line + 1,
        },
    )


class QdrantIndex:
    """Per-repository collection lifecycle, upserts and similarity search."""

    _distance_map = {
        "Cosine": Distance.COSINE,
        "Euclid": Distance.EUCLID,
        "Dot": Distance.DOT,
        "Manhattan": Distance.MANHATTAN,
    }

    def __init__(
        self,
        url: str = "http://localhost:6333",
        api_key: str = "",
        collection_prefix: str = "code-blocks-repo-",
        distance: str = "Cosine",
        client: Optional[AsyncQdrantClient] = None,
    ):
        self.client = client or AsyncQdrantClient(url=url, api_key=api_key or None)
        self.collection_prefix = collection_prefix
        self.distance = distance

    def collection_name(self, repository_id: int) -> str:
        return f"{self.collection_prefix}{repository_id}"

    @staticmethod
    def _repo_filter(repository_id: int, file_path: Optional[str] = None) -> Filter:
        conditions = [FieldCondition(key="repository_id", match=MatchValue(value=repository_id))]
        if file_path is not None:
            conditions.append(FieldCondition(key="file_path", match=MatchValue(value=file_path)))
        return Filter(must=conditions)

    # ── Lifecycle ─────────────────────────────────────────────

    @_backend_call
    async def ping(self) -> None:
        await self.client.get_collections()

    async def _create(self, name: str, dimension: int) -> None:
        await self.client.create_collection(
            collection_name=name,
            vectors_config=VectorParams(
                size=dimension, distance=self._distance_map.get(self.distance, Distance.COSINE)
            ),
        )
        for field_name, schema in (
            ("repository_id", PayloadSchemaType.INTEGER),
            ("file_path", PayloadSchemaType.KEYWORD),
            ("block_type", PayloadSchemaType.KEYWORD),
        ):
            await self.client.create_payload_index(
                collection_name=name, field_name=field_name, field_schema=schema,
            )

    async def _vector_size(self, name: str) -> Optional[int]:
        info = await self.client.get_collection(name)
        vectors = info.config.params.vectors
        return getattr(vectors, "size", None)

    @_backend_call
    async def initialize(self, repository_id: int, dimension: int) -> bool:
        """Create the repository's collection if absent. Returns whether it already existed."""
        name = self.collection_name(repository_id)
        if await self.client.collection_exists(name):
            size = await self._vector_size(name)
            if size is not None and size != dimension:
                raise IndexBackendError(
                    f"Collection '{name}' has vector size {size}, embedder produces {dimension}; "
                    "delete the index and reindex"
                )
            log.debug("Collection '%s' already exists", name)
            return True
        await self._create(name, dimension)
        log.info("Created collection '%s' (dim=%d, %s)", name, dimension, self.distance)
        return False

    @_backend_call
    async def clear_collection(self, repository_id: int) -> None:
        """Drop every point, keeping the collection and its vector parameters."""
        name = self.collection_name(repository_id)
        if not await self.client.collection_exists(name):
            return
        size = await self._vector_size(name)
        await self.client.delete_collection(collection_name=name)
        if size is not None:
            await self._create(name, size)
        log.info("Cleared collection '%s'", name)

    @_backend_call
    async def delete_collection(self, repository_id: int) -> bool:
        name = self.collection_name(repository_id)
        if not await self.client.collection_exists(name):
            return False
        await self.client.delete_collection(collection_name=name)
        log.info("Deleted collection '%s'", name)
        return True

    # ── Points ────────────────────────────────────────────────

    @_backend_call
    async def upsert_points(self, repository_id: int, points: list[IndexPoint]) -> None:
        if not points:
            return
        await self.client.upsert(
            collection_name=self.collection_name(repository_id),
            points=[PointStruct(id=p.id, vector=p.vector, payload=p.payload) for p in points],
            wait=True,
        )

    @_backend_call
    async def delete_file_points(self, repository_id: int, file_path: str) -> None:
        await self.client.delete(
            collection_name=self.collection_name(repository_id),
            points_selector=FilterSelector(filter=self._repo_filter(repository_id, file_path)),
            wait=True,
        )

    @_backend_call
    async def delete_points_by_repository(self, repository_id: int) -> None:
        name = self.collection_name(repository_id)
        if not await self.client.collection_exists(name):
            return
        await self.client.delete(
            collection_name=name,
            points_selector=FilterSelector(filter=self._repo_filter(repository_id)),
            wait=True,
        )

    @_backend_call
    async def get_indexed_files(self, repository_id: int) -> dict[str, IndexedFile]:
        """Stored hash, expected block count and actual point count per file."""
        name = self.collection_name(repository_id)
        result: dict[str, IndexedFile] = {}
        if not await self.client.collection_exists(name):
            return result
        offset = None
        while True:
            points, offset = await self.client.scroll(
                collection_name=name,
                scroll_filter=self._repo_filter(repository_id),
                limit=256,
                offset=offset,
                with_payload=["file_path", "file_hash", "file_block_count"],
                with_vectors=False,
            )
            for p in points:
                payload = p.payload or {}
                fp = payload.get("file_path")
                if not fp:
                    continue
                entry = result.get(fp)
                if entry is None:
                    entry = result[fp] = IndexedFile(
                        file_hash=payload.get("file_hash", ""),
                        block_count=int(payload.get("file_block_count", 0)),
                    )
                elif entry.file_hash != payload.get("file_hash", ""):
                    # Mixed generations of one file never count as complete
                    entry.block_count = -1
                entry.points += 1
            if offset is None:
                break
        return result

    @_backend_call
    async def count(self, repository_id: int) -> int:
        name = self.collection_name(repository_id)
        if not await self.client.collection_exists(name):
            return 0
        res = await self.client.count(collection_name=name, exact=True)
        return res.count

    # ── Search ────────────────────────────────────────────────

    @_backend_call
    async def search(
        self,
        query_vector: list[float],
        repository_id: int,
        min_score: Optional[float] = None,
        max_results: int = 50,
    ) -> list[SearchResult]:
        name = self.collection_name(repository_id)
        if not await self.client.collection_exists(name):
            return []
        response = await self.client.query_points(
            collection_name=name,
            query=query_vector,
            query_filter=self._repo_filter(repository_id),
            limit=max_results,
            score_threshold=min_score,
            with_payload=True,
        )
        hits = []
        for point in response.points:
            payload = point.payload or {}
            hits.append(SearchResult(
                id=str(point.id),
                score=point.score,
                file_path=payload.get("file_path", ""),
                identifier=payload.get("identifier"),
                block_type=payload.get("block_type", "block"),
                start_line=int(payload.get("start_line", 0)),
                end_line=int(payload.get("end_line", 0)),
                content=payload.get("content", ""),
                repository_id=int(payload.get("repository_id", repository_id)),
                repository_name=payload.get("repository_name", ""),
            ))
        hits.sort(key=lambda h: (-h.score, h.id))
        return hits

    async def close(self) -> None:
        await self.client.close()
