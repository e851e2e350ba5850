"""Pydantic model for ingested documents."""

import os
from typing import Literal

from pydantic import Field

from shared.models.base import CamelModel, now_ms

FileType = Literal["pdf", "markdown", "html", "text"]


def map_file_type(file_path: str) -> FileType:
    """Map a file's extension to the document file type.

    Args:
        file_path (str): Path or name of the file.

    Returns:
        FileType: pdf, markdown, html or text. Unknown extensions fall back to markdown.
    """
    extension = os.path.splitext(file_path)[1].lower().lstrip(".")
    if extension == "pdf":
        return "pdf"
    if extension in ("html", "htm"):
        return "html"
    if extension == "txt":
        return "text"
    return "markdown"


def normalize_path(file_path: str) -> str:
    """Normalize a path the way every registry lookup expects it."""
    return os.path.normpath(os.path.abspath(os.path.expanduser(file_path)))


class Document(CamelModel):
    """One ingested source file within one topic.

    Keyed by a generated ID but looked up operationally by its normalized file
    path. The vector store tags each chunk with the file's basename
    (documentName), which is what chunk removal filters on.
    """

    id: str
    topic_id: str
    name: str
    file_path: str
    file_type: FileType = "markdown"
    added_at: int = Field(default_factory=now_ms)
    chunk_count: int = 0
