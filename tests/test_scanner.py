"""Tests for repository scanning and stats."""

import pytest

from repoindex.config import ScannerConfig
from repoindex.processing.scanner import RepositoryScanner, language_for

from conftest import REPO, FakeProvider


def _scanner(provider, **overrides) -> RepositoryScanner:
    cfg = dict(
        max_file_size_bytes=100,
        supported_extensions=(".py", ".js", ".md"),
        ignored_directories=("node_modules", "build*"),
        ignored_file_patterns=("*.min.js",),
    )
    cfg.update(overrides)
    return RepositoryScanner(provider, ScannerConfig(**cfg))


@pytest.fixture
def provider():
    return FakeProvider(
        files={
            "src/app.py": b"print('hi')\n",
            "src/big.py": b"x = 1\n",
            "README.md": b"# Demo\n",
            "image.png": b"\x89PNG",
            "node_modules/lib/index.js": b"module.exports = 1\n",
            "build-out/gen.py": b"x = 2\n",
            "static/app.min.js": b"var a=1;",
            "web/main.js": b"console.log(1)\n",
        },
        sizes={"src/big.py": 5000},
    )


class TestScan:
    @pytest.mark.asyncio
    async def test_filters_and_preserves_listing_order(self, provider):
        result = await _scanner(provider).scan(REPO)
        assert [f.path for f in result.files] == ["src/app.py", "README.md", "web/main.js"]
        assert result.discovered == 8
        assert result.skipped_oversized == 1
        assert result.skipped_unsupported == 1
        assert result.skipped_ignored == 3

    @pytest.mark.asyncio
    async def test_extension_match_is_case_insensitive(self):
        provider = FakeProvider(files={"Main.PY": b"x = 1\n"})
        result = await _scanner(provider).scan(REPO)
        assert [f.path for f in result.files] == ["Main.PY"]

    @pytest.mark.asyncio
    async def test_file_at_size_limit_is_kept(self):
        provider = FakeProvider(files={"a.py": b"x"}, sizes={"a.py": 100})
        result = await _scanner(provider).scan(REPO)
        assert len(result.files) == 1

    @pytest.mark.asyncio
    async def test_scan_always_refreshes_listing(self, provider):
        scanner = _scanner(provider)
        await scanner.scan(REPO)
        await scanner.scan(REPO)
        assert provider.list_calls == 2


class TestStats:
    @pytest.mark.asyncio
    async def test_stats_reuses_scan_listing(self, provider):
        scanner = _scanner(provider)
        await scanner.scan(REPO)
        stats = await scanner.stats(REPO)
        assert provider.list_calls == 1
        assert stats.total_files == 8
        assert stats.supported_files == 4
        assert stats.languages == {"python": 2, "markdown": 1, "javascript": 1}
        assert stats.supported_size == 12 + 5000 + 7 + 15

    @pytest.mark.asyncio
    async def test_expired_listing_is_refetched(self, provider):
        scanner = _scanner(provider, listing_ttl_s=0)
        await scanner.stats(REPO)
        await scanner.stats(REPO)
        assert provider.list_calls == 2

    @pytest.mark.asyncio
    async def test_invalidate_drops_cache(self, provider):
        scanner = _scanner(provider)
        await scanner.stats(REPO)
        scanner.invalidate(REPO.id)
        await scanner.stats(REPO)
        assert provider.list_calls == 2


class TestLanguageFor:
    def test_known_extensions(self):
        assert language_for("a/b.py") == "python"
        assert language_for("x.TSX") == "typescript"

    def test_unknown(self):
        assert language_for("Makefile") == "unknown"
