from typing import Any, Literal

from shared.models.base import CamelModel
from shared.models.progress import IndexingProgress


class ErrorResponse(CamelModel):
    error: str


class HealthResponse(CamelModel):
    status: Literal["ok"] = "ok"
    version: str
    timestamp: int


class SearchResultItem(CamelModel):
    content: str
    path: str
    score: float
    topic: str
    chunk_id: str | None = None
    metadata: dict[str, Any] | None = None


class SearchResponse(CamelModel):
    query: str
    results: list[SearchResultItem]
    total_results: int
    execution_time: int
    strategy: str


class TopicInfo(CamelModel):
    id: str
    name: str
    description: str | None = None
    document_count: int
    chunk_count: int | None = None
    created_at: int
    updated_at: int
    embedding_model: str
    source: Literal["local", "common"] = "local"


class TopicListResponse(CamelModel):
    topics: list[TopicInfo]


class TopicDocumentInfo(CamelModel):
    id: str
    name: str
    path: str
    chunk_count: int


class TopicDetailResponse(TopicInfo):
    documents: list[TopicDocumentInfo] = []


class StatusResponse(CamelModel):
    status: Literal["idle", "indexing", "paused"]
    watching: bool
    watch_folders: list[str]
    active_operations: list[IndexingProgress]
    embedding_model: str
    total_topics: int
