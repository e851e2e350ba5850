"""Pydantic models for chunks stored in and retrieved from a vector store."""

from typing import Any

from pydantic import BaseModel


class ChunkRecord(BaseModel):
    """A single chunk as stored in a topic's vector table.

    Attributes:
        id:            Deterministic chunk ID (UUID5 of topic, file path and chunk index).
        text:          Raw text content of this chunk.
        document_name: Basename of the source file; removal filters on it.
        source:        Full path of the source file.
        topic_id:      Owning topic.
        chunk_index:   Zero-based position of the chunk within its document.
        vector:        The embedding vector.
    """

    id: str
    text: str
    document_name: str
    source: str
    topic_id: str
    chunk_index: int
    vector: list[float] = []

    def to_metadata(self) -> dict[str, Any]:
        return {
            "chunkId": self.id,
            "documentName": self.document_name,
            "source": self.source,
            "topicId": self.topic_id,
            "chunkIndex": self.chunk_index,
        }


class ScoredChunk(BaseModel):
    """A chunk together with its relevance score (higher is better)."""

    chunk: ChunkRecord
    score: float


class QueryResult(BaseModel):
    """Ranked chunks of a query plus the strategy that produced them."""

    results: list[ScoredChunk]
    total_results: int
    strategy: str
