"""GitHub REST client: repository tree listing, file contents and languages."""

import asyncio
import base64
import logging
from typing import Optional
from urllib.parse import quote

import httpx

from ..errors import ProviderError
from ..models import RemoteFile
from ..retry import retrying

log = logging.getLogger("repoindex.github")


class GitHubProvider:
    """Async GitHub API client.

    Retries transient failures (transport errors, 429, 5xx) with exponential
    backoff. Everything that still fails is raised as ``ProviderError``.
    """

    def __init__(
        self,
        base_url: str = "https://api.github.com",
        token: str = "",
        timeout: float = 30.0,
        max_attempts: int = 3,
        fetch_concurrency: int = 8,
        retry_delay_s: float = 0.5,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.token = token
        self.max_attempts = max_attempts
        self.retry_delay_s = retry_delay_s
        self._sem = asyncio.Semaphore(fetch_concurrency)
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=timeout,
            transport=transport,
            headers={
                "Accept": "application/vnd.github+json",
                "X-GitHub-Api-Version": "2022-11-28",
            },
        )

    def _headers(self, token: Optional[str], accept: Optional[str] = None) -> dict[str, str]:
        headers: dict[str, str] = {}
        tok = token or self.token
        if tok:
            headers["Authorization"] = f"Bearer {tok}"
        if accept:
            headers["Accept"] = accept
        return headers

    async def _get(self, path: str, token: Optional[str], accept: Optional[str] = None,
                   params: Optional[dict] = None) -> httpx.Response:
        try:
            async with self._sem:
                async for attempt in retrying(log, f"GitHub GET {path}", self.max_attempts, self.retry_delay_s):
                    with attempt:
                        resp = await self._client.get(path, headers=self._headers(token, accept), params=params)
                        if resp.status_code == 403 and resp.headers.get("x-ratelimit-remaining") == "0":
                            raise ProviderError("GitHub API rate limit exceeded", status_code=403)
                        resp.raise_for_status()
                        return resp
        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            raise ProviderError(f"GitHub request {path} failed: HTTP {status}", status_code=status) from e
        except httpx.HTTPError as e:
            raise ProviderError(f"GitHub request {path} failed: {e}") from e

    @staticmethod
    def _json(resp: httpx.Response):
        try:
            return resp.json()
        except ValueError as e:
            raise ProviderError(f"Invalid JSON from GitHub: {e}", status_code=resp.status_code) from e

    async def default_branch(self, owner: str, repo: str, token: Optional[str] = None) -> str:
        data = self._json(await self._get(f"/repos/{owner}/{repo}", token))
        return data.get("default_branch") or "main"

    async def list_files(self, owner: str, repo: str, token: Optional[str] = None) -> list[RemoteFile]:
        """Every blob in the default branch's tree, in the order GitHub returns them."""
        branch = await self.default_branch(owner, repo, token)
        data = self._json(await self._get(
            f"/repos/{owner}/{repo}/git/trees/{quote(branch, safe='')}",
            token,
            params={"recursive": "1"},
        ))
        if data.get("truncated"):
            log.warning("Tree listing for %s/%s was truncated by GitHub", owner, repo)
        files = [
            RemoteFile(path=e["path"], size=int(e.get("size", 0)))
            for e in data.get("tree", [])
            if e.get("type") == "blob"
        ]
        log.debug("Listed %d files in %s/%s@%s", len(files), owner, repo, branch)
        return files

    async def get_file_content(self, owner: str, repo: str, path: str, token: Optional[str] = None) -> bytes:
        url = f"/repos/{owner}/{repo}/contents/{quote(path)}"
        data = self._json(await self._get(url, token))
        if isinstance(data, list):
            raise ProviderError(f"{path} is a directory, not a file")
        if data.get("encoding") == "base64":
            try:
                return base64.b64decode(data.get("content", ""))
            except ValueError as e:
                raise ProviderError(f"Invalid base64 content for {path}: {e}") from e
        # Files above the contents API inline limit come back with encoding "none"
        resp = await self._get(url, token, accept="application/vnd.github.raw+json")
        return resp.content

    async def get_languages(self, owner: str, repo: str, token: Optional[str] = None) -> dict[str, int]:
        data = self._json(await self._get(f"/repos/{owner}/{repo}/languages", token))
        return {str(k): int(v) for k, v in data.items()}

    async def close(self) -> None:
        await self._client.aclose()
