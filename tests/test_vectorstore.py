"""Tests for the Qdrant index using the in-memory local client."""

import pytest

from repoindex.errors import IndexBackendError
from repoindex.models import CodeBlock
from repoindex.processing.vectorstore import make_point

from conftest import REPO


def _block(path: str, content: str, file_hash: str = "fh", start: int = 1) -> CodeBlock:
    return CodeBlock(
        file_path=path, identifier=None, type="block", start_line=start, end_line=start + 2,
        content=content, file_hash=file_hash, segment_hash=f"seg-{path}-{content}",
    )


def _points(path: str, vectors: list[list[float]], file_hash: str = "fh", block_count=None):
    count = len(vectors) if block_count is None else block_count
    return [
        make_point(_block(path, f"content {i}", file_hash, start=i * 3 + 1), vec, REPO, count)
        for i, vec in enumerate(vectors)
    ]


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_initialize_reports_existing(self, index):
        assert await index.initialize(REPO.id, 3) is False
        assert await index.initialize(REPO.id, 3) is True

    @pytest.mark.asyncio
    async def test_dimension_mismatch_rejected(self, index):
        await index.initialize(REPO.id, 3)
        with pytest.raises(IndexBackendError):
            await index.initialize(REPO.id, 4)

    @pytest.mark.asyncio
    async def test_clear_keeps_collection(self, index):
        await index.initialize(REPO.id, 3)
        await index.upsert_points(REPO.id, _points("a.py", [[1.0, 0.0, 0.0]]))
        await index.clear_collection(REPO.id)
        assert await index.count(REPO.id) == 0
        assert await index.initialize(REPO.id, 3) is True

    @pytest.mark.asyncio
    async def test_delete_collection(self, index):
        assert await index.delete_collection(REPO.id) is False
        await index.initialize(REPO.id, 3)
        assert await index.delete_collection(REPO.id) is True
        assert await index.count(REPO.id) == 0

    @pytest.mark.asyncio
    async def test_ping(self, index):
        await index.ping()


class TestPoints:
    @pytest.mark.asyncio
    async def test_payload_fields(self, index):
        await index.initialize(REPO.id, 3)
        point = _points("src/a.py", [[1.0, 0.0, 0.0]])[0]
        await index.upsert_points(REPO.id, [point])
        assert point.payload["repository_name"] == "octo/demo"
        assert point.payload["language"] == "python"
        assert point.payload["line_count"] == 3
        assert await index.count(REPO.id) == 1

    @pytest.mark.asyncio
    async def test_upsert_same_id_overwrites(self, index):
        await index.initialize(REPO.id, 3)
        await index.upsert_points(REPO.id, _points("a.py", [[1.0, 0.0, 0.0]]))
        await index.upsert_points(REPO.id, _points("a.py", [[0.0, 1.0, 0.0]]))
        assert await index.count(REPO.id) == 1

    @pytest.mark.asyncio
    async def test_indexed_files_summary(self, index):
        await index.initialize(REPO.id, 3)
        await index.upsert_points(REPO.id, _points("a.py", [[1.0, 0.0, 0.0], [0.0, 1.0, 0.0]], file_hash="ha"))
        await index.upsert_points(REPO.id, _points("b.py", [[0.0, 0.0, 1.0]], file_hash="hb", block_count=3))
        files = await index.get_indexed_files(REPO.id)
        assert files["a.py"].file_hash == "ha"
        assert files["a.py"].complete
        assert files["b.py"].points == 1
        assert not files["b.py"].complete

    @pytest.mark.asyncio
    async def test_mixed_hashes_never_complete(self, index):
        await index.initialize(REPO.id, 3)
        old = make_point(_block("a.py", "old", "h1"), [1.0, 0.0, 0.0], REPO, 2)
        new = make_point(_block("a.py", "new", "h2", start=4), [0.0, 1.0, 0.0], REPO, 2)
        await index.upsert_points(REPO.id, [old, new])
        assert not (await index.get_indexed_files(REPO.id))["a.py"].complete

    @pytest.mark.asyncio
    async def test_delete_file_points(self, index):
        await index.initialize(REPO.id, 3)
        await index.upsert_points(REPO.id, _points("a.py", [[1.0, 0.0, 0.0], [0.0, 1.0, 0.0]]))
        await index.upsert_points(REPO.id, _points("b.py", [[0.0, 0.0, 1.0]]))
        await index.delete_file_points(REPO.id, "a.py")
        assert set(await index.get_indexed_files(REPO.id)) == {"b.py"}

    @pytest.mark.asyncio
    async def test_missing_collection_reads_empty(self, index):
        assert await index.get_indexed_files(REPO.id) == {}
        assert await index.search([1.0, 0.0, 0.0], REPO.id) == []
        await index.delete_points_by_repository(REPO.id)


class TestSearch:
    @pytest.mark.asyncio
    async def test_sorted_by_score_and_thresholded(self, index):
        await index.initialize(REPO.id, 3)
        await index.upsert_points(REPO.id, _points("a.py", [[1.0, 0.0, 0.0], [1.0, 1.0, 0.0], [0.0, 0.0, 1.0]]))
        hits = await index.search([1.0, 0.0, 0.0], REPO.id, min_score=0.5)
        assert [h.content for h in hits] == ["content 0", "content 1"]
        assert hits[0].score >= hits[1].score
        assert hits[0].repository_name == "octo/demo"
        assert hits[0].file_path == "a.py"

    @pytest.mark.asyncio
    async def test_max_results(self, index):
        await index.initialize(REPO.id, 3)
        await index.upsert_points(REPO.id, _points("a.py", [[1.0, 0.0, 0.0], [1.0, 1.0, 0.0], [1.0, 1.0, 1.0]]))
        hits = await index.search([1.0, 0.0, 0.0], REPO.id, max_results=2)
        assert len(hits) == 2
