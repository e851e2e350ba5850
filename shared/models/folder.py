"""Pydantic models for the per-topic folder usage tree."""

from pydantic import Field

from shared.models.base import CamelModel, now_ms


class FolderNode(CamelModel):
    """A folder or file in the usage tree.

    For folders chunk_count is the sum over the children; for files it is the
    number of chunks stored for that file.
    """

    name: str
    path: str
    is_file: bool = False
    chunk_count: int = 0
    children: dict[str, "FolderNode"] = {}


class FolderUsageStats(CamelModel):
    """All roots of one topic's tree, keyed by resolved root path."""

    roots: dict[str, FolderNode] = {}
    total_chunks: int = 0
    last_updated: int = Field(default_factory=now_ms)
