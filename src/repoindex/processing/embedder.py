"""Embedding clients: OpenAI-compatible /embeddings and Ollama /api/embed."""

import abc
import logging
from dataclasses import dataclass, field
from typing import Optional, Sequence

import httpx

from ..config import EmbeddingConfig
from ..errors import ConfigurationError, EmbeddingBatchError
from ..models import CodeBlock
from ..retry import retrying

log = logging.getLogger("repoindex.embedder")


@dataclass
class ValidationResult:
    valid: bool
    error: Optional[str] = None
    dimension: Optional[int] = None


@dataclass
class EmbeddingResponse:
    embeddings: list[list[float]]
    usage: dict[str, int] = field(default_factory=dict)


class Embedder(abc.ABC):
    """Batching, truncation and retry shared by the concrete providers.

    Subclasses implement ``_request`` for a single HTTP call. Vector ``i`` of
    every result always corresponds to text ``i`` of the input.
    """

    name = "embedder"

    def __init__(
        self,
        base_url: str,
        model: str,
        timeout: float = 60.0,
        max_items_per_call: int = 64,
        max_chars_per_call: int = 400_000,
        max_item_chars: int = 32_764,
        max_attempts: int = 3,
        retry_delay_s: float = 0.5,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.model = model
        self.max_items_per_call = max_items_per_call
        self.max_chars_per_call = max_chars_per_call
        self.max_item_chars = max_item_chars
        self.max_attempts = max_attempts
        self.retry_delay_s = retry_delay_s
        self._client = httpx.AsyncClient(timeout=timeout, transport=transport)
        self._dim: Optional[int] = None
        self.usage: dict[str, int] = {"prompt_tokens": 0, "total_tokens": 0, "requests": 0}

    @property
    def dimension(self) -> Optional[int]:
        return self._dim

    @abc.abstractmethod
    async def _request(self, texts: list[str], model: str) -> EmbeddingResponse:
        """Send one embedding call for ``texts``."""

    def _batches(self, texts: Sequence[str]) -> list[list[str]]:
        batches: list[list[str]] = []
        current: list[str] = []
        chars = 0
        for text in texts:
            if len(text) > self.max_item_chars:
                log.warning("Truncating embedding input from %d to %d chars", len(text), self.max_item_chars)
                text = text[: self.max_item_chars]
            if current and (len(current) >= self.max_items_per_call
                            or chars + len(text) > self.max_chars_per_call):
                batches.append(current)
                current, chars = [], 0
            current.append(text)
            chars += len(text)
        if current:
            batches.append(current)
        return batches

    async def _call(self, texts: list[str], model: str) -> EmbeddingResponse:
        try:
            async for attempt in retrying(log, f"{self.name} embed", self.max_attempts, self.retry_delay_s):
                with attempt:
                    resp = await self._request(texts, model)
        except httpx.HTTPStatusError as e:
            raise EmbeddingBatchError(
                f"{self.name} embedding failed: HTTP {e.response.status_code}", batch_size=len(texts)
            ) from e
        except httpx.HTTPError as e:
            raise EmbeddingBatchError(f"{self.name} embedding failed: {e}", batch_size=len(texts)) from e
        except (KeyError, ValueError, TypeError) as e:
            raise EmbeddingBatchError(f"Invalid {self.name} embedding response: {e}", batch_size=len(texts)) from e
        if len(resp.embeddings) != len(texts):
            raise EmbeddingBatchError(
                f"{self.name} returned {len(resp.embeddings)} vectors for {len(texts)} inputs",
                batch_size=len(texts),
            )
        self.usage["requests"] += 1
        for key in ("prompt_tokens", "total_tokens"):
            self.usage[key] += int(resp.usage.get(key, 0))
        return resp

    async def create_embeddings(self, texts: Sequence[str], model: Optional[str] = None) -> EmbeddingResponse:
        """Embed texts in provider-sized batches, preserving input order."""
        out = EmbeddingResponse(embeddings=[])
        for batch in self._batches(texts):
            resp = await self._call(batch, model or self.model)
            out.embeddings.extend(resp.embeddings)
            for key, value in resp.usage.items():
                out.usage[key] = out.usage.get(key, 0) + int(value)
        if out.embeddings and self._dim is None:
            self._dim = len(out.embeddings[0])
        return out

    async def embed(self, texts: Sequence[str]) -> list[list[float]]:
        return (await self.create_embeddings(texts)).embeddings

    async def embed_blocks(self, blocks: Sequence[CodeBlock]) -> list[list[float]]:
        texts = [
            f"File: {b.file_path} | Lines {b.start_line}-{b.end_line}\n\n{b.content}"
            for b in blocks
        ]
        return await self.embed(texts)

    async def embed_query(self, query: str) -> list[float]:
        return (await self.embed([query]))[0]

    async def _preflight(self) -> Optional[str]:
        """Provider-specific checks before the probe. Returns an error message or None."""
        return None

    async def validate_configuration(self) -> ValidationResult:
        """Probe the endpoint with one embedding and record the vector dimension."""
        error = await self._preflight()
        if error:
            return ValidationResult(valid=False, error=error)
        try:
            resp = await self._call(["dimension probe"], self.model)
        except EmbeddingBatchError as e:
            cause = e.__cause__
            if isinstance(cause, httpx.HTTPStatusError):
                status = cause.response.status_code
                if status in (401, 403):
                    return ValidationResult(valid=False, error=f"{self.name}: authentication failed (HTTP {status})")
                if status == 404:
                    return ValidationResult(valid=False, error=f"{self.name}: model {self.model!r} not found")
            elif isinstance(cause, httpx.TransportError):
                return ValidationResult(valid=False, error=f"{self.name}: cannot reach {self.base_url}: {cause}")
            return ValidationResult(valid=False, error=str(e))
        if not resp.embeddings or not resp.embeddings[0]:
            return ValidationResult(valid=False, error=f"{self.name}: empty embedding returned")
        self._dim = len(resp.embeddings[0])
        log.info("Embedding dimension: %d (model: %s)", self._dim, self.model)
        return ValidationResult(valid=True, dimension=self._dim)

    async def close(self) -> None:
        await self._client.aclose()


class OpenAIEmbedder(Embedder):
    """OpenAI-compatible ``POST {base}/embeddings``."""

    name = "openai"

    def __init__(self, base_url: str, model: str, api_key: str = "", **kwargs):
        super().__init__(base_url, model, **kwargs)
        self.api_key = api_key

    async def _request(self, texts: list[str], model: str) -> EmbeddingResponse:
        resp = await self._client.post(
            f"{self.base_url}/embeddings",
            json={"input": texts, "model": model, "encoding_format": "float"},
            headers={"Authorization": f"Bearer {self.api_key}"},
        )
        resp.raise_for_status()
        data = resp.json()
        items = sorted(data["data"], key=lambda d: d["index"])
        usage = data.get("usage") or {}
        return EmbeddingResponse(
            embeddings=[item["embedding"] for item in items],
            usage={k: int(v) for k, v in usage.items() if k in ("prompt_tokens", "total_tokens")},
        )

    async def _preflight(self) -> Optional[str]:
        if not self.api_key:
            return "openai: API key is required"
        return None


class OllamaEmbedder(Embedder):
    """Ollama ``POST {base}/api/embed``."""

    name = "ollama"

    async def _request(self, texts: list[str], model: str) -> EmbeddingResponse:
        resp = await self._client.post(
            f"{self.base_url}/api/embed",
            json={"model": model, "input": texts},
        )
        resp.raise_for_status()
        data = resp.json()
        count = int(data.get("prompt_eval_count", 0))
        return EmbeddingResponse(
            embeddings=data["embeddings"],
            usage={"prompt_tokens": count, "total_tokens": count},
        )

    async def _preflight(self) -> Optional[str]:
        try:
            resp = await self._client.get(f"{self.base_url}/api/tags")
            resp.raise_for_status()
            names = {m.get("name", "") for m in resp.json().get("models", [])}
        except httpx.HTTPError as e:
            return f"ollama: cannot reach {self.base_url}: {e}"
        except ValueError as e:
            return f"ollama: invalid /api/tags response: {e}"
        if self.model not in names and f"{self.model}:latest" not in names:
            return f"ollama: model {self.model!r} is not pulled"
        return None


def build_embedder(config: EmbeddingConfig, transport: Optional[httpx.AsyncBaseTransport] = None) -> Embedder:
    kwargs = dict(
        timeout=config.timeout_s,
        max_items_per_call=config.max_items_per_call,
        max_chars_per_call=config.max_chars_per_call,
        max_item_chars=config.max_item_chars,
        max_attempts=config.max_attempts,
        retry_delay_s=config.initial_retry_delay_s,
        transport=transport,
    )
    if config.provider == "openai":
        return OpenAIEmbedder(config.resolved_base_url(), config.model, api_key=config.api_key, **kwargs)
    if config.provider == "ollama":
        return OllamaEmbedder(config.resolved_base_url(), config.model, **kwargs)
    raise ConfigurationError(f"Unknown embedding provider: {config.provider!r}")
