"""Pydantic models for the topic registry.

Hierarchy:
  Topic:               a named, independently embedded document collection.
  TopicsIndex:         the persisted registry (topics.json) of one storage root.
  TopicStats:          derived counters served by the listing endpoints.
  VectorStoreMetadata: per-topic record of the model a vector store was built with.
  ExportedTopicData:   topic.json entry of an export archive.
"""

from typing import Literal

from pydantic import Field

from shared.models.base import CamelModel, now_ms
from shared.models.document import Document

TopicSource = Literal["local", "common"]


class Topic(CamelModel):
    """A named collection of indexed documents.

    Names are unique case-insensitively within the local registry. The source
    field tells local (mutable) topics apart from topics mounted read-only from
    the common registry.
    """

    id: str
    name: str
    description: str | None = None
    document_count: int = 0
    created_at: int = Field(default_factory=now_ms)
    updated_at: int = Field(default_factory=now_ms)
    source: TopicSource = "local"


class TopicsIndex(CamelModel):
    """The topic index of one storage root."""

    topics: dict[str, Topic] = {}
    model_name: str = ""
    last_updated: int = Field(default_factory=now_ms)


class TopicStats(CamelModel):
    document_count: int
    chunk_count: int
    last_updated: int
    embedding_model: str


class VectorStoreMetadata(CamelModel):
    """Sidecar file written next to a topic's vector store.

    Records the embedding model used to build the store; vectors from a
    different model are not comparable with it.
    """

    topic_id: str
    embedding_model: str
    chunk_count: int = 0
    updated_at: int = Field(default_factory=now_ms)


class ExportedTopicData(CamelModel):
    """Metadata entry (topic.json) of a .rag export archive."""

    version: str
    topic: Topic
    documents: list[Document] = []
    embedding_model: str
    exported_at: int = Field(default_factory=now_ms)
