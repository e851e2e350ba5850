"""Pydantic models for the ingestion pipeline boundary."""

from typing import Any, Awaitable, Callable

from pydantic import BaseModel, ConfigDict

from shared.models.progress import IndexingStage


class PipelineProgress(BaseModel):
    """Progress notification emitted by the pipeline for a single file."""

    stage: IndexingStage
    message: str
    details: dict[str, Any] | None = None


class PipelineOptions(BaseModel):
    """Per-call options handed to the pipeline.

    Attributes:
        on_progress: Optional (sync or async) callback invoked with a PipelineProgress for every stage change.
        chunk_size:  Overrides the configured chunk size in characters.
        chunk_overlap: Overrides the configured overlap between consecutive chunks.
    """

    model_config = ConfigDict(arbitrary_types_allowed=True)

    on_progress: Callable[[PipelineProgress], None | Awaitable[None]] | None = None
    chunk_size: int | None = None
    chunk_overlap: int | None = None


class PipelineMetadata(BaseModel):
    file_path: str
    document_name: str
    chunks_created: int = 0
    chunks_stored: int = 0
    characters: int = 0


class PipelineResult(BaseModel):
    """Outcome of processing one file. success=False never comes with stored chunks."""

    success: bool
    errors: list[str] = []
    metadata: PipelineMetadata
