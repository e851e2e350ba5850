"""Pydantic models for ingestion progress reporting."""

from typing import Literal

from pydantic import Field

from shared.models.base import CamelModel, now_ms

IndexingStage = Literal["removing", "loading", "chunking", "embedding", "storing", "complete"]


class FileProgress(CamelModel):
    """Stage of a single file within a running batch."""

    stage: IndexingStage
    chunk_count: int | None = None


class IndexingProgress(CamelModel):
    """Live progress record of the in-flight batch of one topic."""

    topic_id: str
    topic_name: str
    total_files: int
    processed_files: int = 0
    current_file: str | None = None
    stage: IndexingStage = "loading"
    percentage: int = 0
    start_time: int = Field(default_factory=now_ms)
    active_files: dict[str, FileProgress] = {}
