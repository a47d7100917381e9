"""Pydantic request/response schemas for the caller-facing service."""

from typing import Optional

from pydantic import BaseModel, Field


# ── Indexing ────────────────────────────────────────────────

class StartIndexingResult(BaseModel):
    job_id: Optional[str] = None
    accepted: bool
    message: str = ""


# ── Search ──────────────────────────────────────────────────

class SearchRequest(BaseModel):
    repository_id: int
    query: str = Field(..., min_length=1)
    min_score: float = Field(0.4, ge=0.0, le=1.0)
    max_results: int = Field(50, ge=1, le=200)


class SearchHit(BaseModel):
    id: str
    score: float
    file_path: str
    identifier: Optional[str] = None
    block_type: str
    start_line: int
    end_line: int
    content: str
    repository_id: int
    repository_name: str


class SearchResponse(BaseModel):
    repository_id: int
    query: str
    results: list[SearchHit] = Field(default_factory=list)
    error: Optional[str] = None


# ── Maintenance ─────────────────────────────────────────────

class RepositoryStatsResponse(BaseModel):
    repository_id: int
    total_files: int = 0
    supported_files: int = 0
    total_size: int = 0
    supported_size: int = 0
    languages: dict[str, int] = Field(default_factory=dict)
    error: Optional[str] = None


class DeleteIndexResult(BaseModel):
    repository_id: int
    deleted: bool = False
    error: Optional[str] = None
