"""Tests for the GitHub provider against a mocked HTTP transport."""

import base64

import httpx
import pytest

from repoindex.errors import ProviderError
from repoindex.providers.github import GitHubProvider


class FakeGitHub:
    """Routes GitHub API paths to canned responses and counts calls per path."""

    def __init__(self):
        self.calls: list[httpx.Request] = []
        self.failures: dict[str, list[httpx.Response]] = {}

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.calls.append(request)
        path = request.url.path
        queued = self.failures.get(path)
        if queued:
            return queued.pop(0)
        if path == "/repos/octo/demo":
            return httpx.Response(200, json={"default_branch": "develop"})
        if path == "/repos/octo/demo/git/trees/develop":
            assert request.url.params.get("recursive") == "1"
            return httpx.Response(200, json={"truncated": False, "tree": [
                {"path": "src", "type": "tree"},
                {"path": "src/a.py", "type": "blob", "size": 12},
                {"path": "README.md", "type": "blob", "size": 40},
            ]})
        if path == "/repos/octo/demo/contents/src/a.py":
            return httpx.Response(200, json={
                "encoding": "base64",
                "content": base64.b64encode(b"print('a')\n").decode(),
            })
        if path == "/repos/octo/demo/contents/big.bin":
            if request.headers.get("accept") == "application/vnd.github.raw+json":
                return httpx.Response(200, content=b"raw bytes")
            return httpx.Response(200, json={"encoding": "none", "content": ""})
        if path == "/repos/octo/demo/contents/src":
            return httpx.Response(200, json=[{"name": "a.py"}])
        if path == "/repos/octo/demo/languages":
            return httpx.Response(200, json={"Python": 1200, "Shell": 80})
        return httpx.Response(404, json={"message": "Not Found"})

    def count(self, path: str) -> int:
        return sum(1 for r in self.calls if r.url.path == path)


@pytest.fixture
def github():
    return FakeGitHub()


@pytest.fixture
def provider(github):
    return GitHubProvider(base_url="https://gh.test", token="t0", retry_delay_s=0,
                          transport=httpx.MockTransport(github))


class TestListing:
    @pytest.mark.asyncio
    async def test_lists_blobs_from_default_branch(self, provider):
        files = await provider.list_files("octo", "demo")
        assert [(f.path, f.size) for f in files] == [("src/a.py", 12), ("README.md", 40)]
        await provider.close()

    @pytest.mark.asyncio
    async def test_languages(self, provider):
        assert await provider.get_languages("octo", "demo") == {"Python": 1200, "Shell": 80}
        await provider.close()


class TestContent:
    @pytest.mark.asyncio
    async def test_base64_content_decoded(self, provider):
        assert await provider.get_file_content("octo", "demo", "src/a.py") == b"print('a')\n"
        await provider.close()

    @pytest.mark.asyncio
    async def test_large_file_fetched_raw(self, provider, github):
        assert await provider.get_file_content("octo", "demo", "big.bin") == b"raw bytes"
        assert github.count("/repos/octo/demo/contents/big.bin") == 2
        await provider.close()

    @pytest.mark.asyncio
    async def test_directory_rejected(self, provider):
        with pytest.raises(ProviderError):
            await provider.get_file_content("octo", "demo", "src")
        await provider.close()

    @pytest.mark.asyncio
    async def test_call_token_overrides_default(self, provider, github):
        await provider.get_file_content("octo", "demo", "src/a.py", token="t1")
        assert github.calls[-1].headers["authorization"] == "Bearer t1"
        await provider.get_languages("octo", "demo")
        assert github.calls[-1].headers["authorization"] == "Bearer t0"
        await provider.close()


class TestErrors:
    @pytest.mark.asyncio
    async def test_not_found_keeps_status_and_is_not_retried(self, provider, github):
        with pytest.raises(ProviderError) as exc:
            await provider.get_file_content("octo", "demo", "missing.py")
        assert exc.value.status_code == 404
        assert github.count("/repos/octo/demo/contents/missing.py") == 1
        await provider.close()

    @pytest.mark.asyncio
    async def test_server_error_retried_then_succeeds(self, provider, github):
        github.failures["/repos/octo/demo/languages"] = [httpx.Response(500)]
        assert await provider.get_languages("octo", "demo") == {"Python": 1200, "Shell": 80}
        assert github.count("/repos/octo/demo/languages") == 2
        await provider.close()

    @pytest.mark.asyncio
    async def test_exhausted_retries(self, provider, github):
        github.failures["/repos/octo/demo/languages"] = [httpx.Response(502) for _ in range(3)]
        with pytest.raises(ProviderError) as exc:
            await provider.get_languages("octo", "demo")
        assert exc.value.status_code == 502
        assert github.count("/repos/octo/demo/languages") == 3
        await provider.close()

    @pytest.mark.asyncio
    async def test_rate_limit_not_retried(self, provider, github):
        github.failures["/repos/octo/demo"] = [
            httpx.Response(403, headers={"x-ratelimit-remaining": "0"}, json={"message": "rate limited"}),
        ]
        with pytest.raises(ProviderError) as exc:
            await provider.list_files("octo", "demo")
        assert exc.value.status_code == 403
        assert "rate limit" in str(exc.value)
        assert github.count("/repos/octo/demo") == 1
        await provider.close()

    @pytest.mark.asyncio
    async def test_invalid_json(self, provider, github):
        github.failures["/repos/octo/demo/languages"] = [httpx.Response(200, content=b"<html>")]
        with pytest.raises(ProviderError):
            await provider.get_languages("octo", "demo")
        await provider.close()
