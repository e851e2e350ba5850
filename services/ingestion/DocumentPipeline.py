"""Document ingestion pipeline.

Reads a local file, splits its text into overlapping chunks, generates
embeddings via the EmbedClient and stores the chunks in the topic's vector
store.
"""

import asyncio
import os
import uuid

from services.ingestion.PipelineInterface import PipelineInterface, StoreProvider
from services.ingestion.TextExtractor import TextExtractor
from shared.clients.embed.EmbedClientInterface import EmbedClientInterface
from shared.helper.constants import DEFAULT_CHUNK_OVERLAP, DEFAULT_CHUNK_SIZE
from shared.helper.HelperConfig import HelperConfig
from shared.models.document import normalize_path
from shared.models.pipeline import PipelineMetadata, PipelineOptions, PipelineProgress, PipelineResult
from shared.models.progress import IndexingStage
from shared.models.search import ChunkRecord


def _split_text(text: str, chunk_size: int, chunk_overlap: int) -> list[str]:
    """Split a document's text into overlapping chunks.

    Args:
        text (str): The full document text.
        chunk_size (int): Characters per chunk.
        chunk_overlap (int): Characters shared by consecutive chunks.

    Returns:
        list[str]: Ordered list of non-blank text chunks.
    """
    if not text or not text.strip():
        return []
    # an overlap >= size would never advance
    chunk_overlap = min(chunk_overlap, chunk_size - 1)
    chunks: list[str] = []
    start = 0
    while start < len(text):
        end = min(start + chunk_size, len(text))
        chunk = text[start:end]
        if chunk.strip():
            chunks.append(chunk)
        if end >= len(text):
            break
        start = end - chunk_overlap
    return chunks


def _make_chunk_id(topic_id: str, file_path: str, chunk_index: int) -> str:
    """Build a deterministic UUID5 chunk ID.

    The same file chunk always maps to the same ID, so re-indexing a file
    reproduces its IDs.

    Args:
        topic_id (str): Owning topic.
        file_path (str): Normalized path of the source file.
        chunk_index (int): Zero-based chunk index within the document.

    Returns:
        str: UUID string.
    """
    return str(uuid.uuid5(uuid.NAMESPACE_URL, f"{topic_id}:{file_path}:{chunk_index}"))


class DocumentPipeline(PipelineInterface):
    """Loads, chunks, embeds and stores single files."""

    def __init__(self, helper_config: HelperConfig, embed_client: EmbedClientInterface, extractor: TextExtractor | None = None) -> None:
        self.logging = helper_config.get_logger()
        self._embed_client = embed_client
        self._extractor = extractor or TextExtractor()
        self._store_provider: StoreProvider | None = None
        self.chunk_size = int(helper_config.get_number_val("CHUNK_SIZE", default=DEFAULT_CHUNK_SIZE))
        self.chunk_overlap = int(helper_config.get_number_val("CHUNK_OVERLAP", default=DEFAULT_CHUNK_OVERLAP))

    def initialize(self, store_provider: StoreProvider) -> None:
        self._store_provider = store_provider

    ##########################################
    ################ PIPELINE ################
    ##########################################

    async def process_document(self, file_path: str, topic_id: str, options: PipelineOptions | None = None) -> PipelineResult:
        options = options or PipelineOptions()
        file_path = normalize_path(file_path)
        document_name = os.path.basename(file_path)
        metadata = PipelineMetadata(file_path=file_path, document_name=document_name)

        try:
            if self._store_provider is None:
                raise RuntimeError("Pipeline not initialized. Call initialize() before processing documents.")

            await self._notify(options, "loading", f"Loading {document_name}")
            text = await self._extractor.extract(file_path)
            metadata.characters = len(text)

            await self._notify(options, "chunking", f"Splitting {document_name}")
            chunks = _split_text(
                text,
                options.chunk_size or self.chunk_size,
                options.chunk_overlap if options.chunk_overlap is not None else self.chunk_overlap,
            )
            metadata.chunks_created = len(chunks)
            if not chunks:
                return PipelineResult(success=False, errors=[f"No text content extracted from {document_name}"], metadata=metadata)

            await self._notify(options, "embedding", f"Embedding {len(chunks)} chunks", {"chunks": len(chunks)})
            vectors = await self._embed_client.do_embed(chunks)
            if len(vectors) != len(chunks):
                raise ValueError(f"Embedding backend returned {len(vectors)} vectors for {len(chunks)} chunks")

            await self._notify(options, "storing", f"Storing {len(chunks)} chunks", {"chunks": len(chunks)})
            records = [
                ChunkRecord(
                    id=_make_chunk_id(topic_id, file_path, index),
                    text=chunk,
                    document_name=document_name,
                    source=file_path,
                    topic_id=topic_id,
                    chunk_index=index,
                    vector=vector,
                )
                for index, (chunk, vector) in enumerate(zip(chunks, vectors))
            ]
            store = await self._store_provider(topic_id)
            metadata.chunks_stored = await store.add_chunks(records)

            await self._notify(options, "complete", f"Indexed {document_name}", {"chunks": metadata.chunks_stored})
            return PipelineResult(success=True, metadata=metadata)
        except Exception as e:
            self.logging.error("Failed to process '%s': %s", file_path, e)
            return PipelineResult(success=False, errors=[str(e)], metadata=metadata)

    async def _notify(self, options: PipelineOptions, stage: IndexingStage, message: str, details: dict | None = None) -> None:
        if options.on_progress is None:
            return
        result = options.on_progress(PipelineProgress(stage=stage, message=message, details=details))
        if asyncio.iscoroutine(result):
            await result
