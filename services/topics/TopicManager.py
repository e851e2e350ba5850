"""Topic registry and vector-store lifecycle.

The TopicManager is the only owner of the topic index, the per-topic document
registries and the vector store cache. Everything else addresses topics by ID
and goes through the accessors below; cache invalidation towards the retrieval
layer is published on the event bus.

On-disk layout of a storage root:

    topics.json                         TopicsIndex
    topic-<id>-documents.json           list of Document
    topic-<id>-folder-stats.json        FolderUsageStats
    vector-<id>-metadata.json           VectorStoreMetadata
    lancedb/<id>.lance/                 native vector store files
"""

import asyncio
import json
import os
import random
import re
import shutil
import string
import zipfile
from typing import Callable

import aiofiles
from pydantic import ValidationError

from services.ingestion.DocumentPipeline import DocumentPipeline
from services.ingestion.PipelineInterface import PipelineInterface
from services.progress.ProgressTracker import ProgressTracker
from services.topics.FolderUsageTree import FolderUsageTree
from shared.clients.embed.EmbedClientInterface import EmbedClientInterface
from shared.clients.vector.VectorStoreFactory import VectorStoreFactory
from shared.clients.vector.VectorStoreInterface import VectorStoreInterface
from shared.errors import (
    ArchiveInvalidError,
    DuplicateNameError,
    ModelMismatchError,
    NotFoundError,
    NotInitializedError,
    ReadOnlyTopicError,
    VectorStoreUnavailableError,
)
from shared.helper.constants import (
    DEFAULT_TOPIC_DESCRIPTION,
    DEFAULT_TOPIC_NAME,
    EVENT_TOPIC_DELETED,
    EVENT_TOPIC_VECTOR_STORE_DELETED,
    EVENT_TOPICS_MODEL_CHANGED,
    EXPORT_FORMAT_VERSION,
    EXPORT_METADATA_ENTRY,
    EXPORT_VECTOR_PREFIX,
    TOPICS_INDEX_FILENAME,
    VECTOR_DIR_NAME,
    VECTOR_TABLE_SUFFIX,
)
from shared.helper.EventBus import EventBus
from shared.helper.HelperConfig import HelperConfig
from shared.models.base import now_ms
from shared.models.document import Document, map_file_type, normalize_path
from shared.models.folder import FolderUsageStats
from shared.models.pipeline import PipelineOptions, PipelineProgress
from shared.models.topic import ExportedTopicData, Topic, TopicsIndex, TopicStats

_ID_ALPHABET = string.ascii_lowercase + string.digits


def _generate_id(prefix: str) -> str:
    """Time + random ID, e.g. topic-1718000000000-k3j9x0a"""
    return f"{prefix}-{now_ms()}-{''.join(random.choices(_ID_ALPHABET, k=7))}"


def _model_slug(model_name: str) -> str:
    return re.sub(r"[^A-Za-z0-9._-]+", "_", model_name or "unknown")


class TopicManager:
    """Owns topics, their documents, folder usage trees and vector stores."""

    def __init__(
        self,
        helper_config: HelperConfig,
        embed_client: EmbedClientInterface,
        progress_tracker: ProgressTracker,
        event_bus: EventBus,
        pipeline: PipelineInterface | None = None,
        store_class: type[VectorStoreInterface] | None = None,
        watch_folders_provider: Callable[[], list[str]] | None = None,
    ):
        self.helper_config = helper_config
        self.logging = helper_config.get_logger()
        self.embed_client = embed_client
        self.progress = progress_tracker
        self.event_bus = event_bus
        self.pipeline = pipeline or DocumentPipeline(helper_config=helper_config, embed_client=embed_client)
        self.folder_tree = FolderUsageTree(helper_config, watch_folders_provider)
        self._store_class = store_class

        self.database_dir = normalize_path(helper_config.get_database_dir())
        self._configured_common_path = helper_config.get_string_val("COMMON_DATABASE_PATH", default="").strip()

        self._topics_index: TopicsIndex | None = None
        self._documents: dict[str, dict[str, Document]] = {}
        self._vector_factory: VectorStoreFactory | None = None
        self._store_cache: dict[str, VectorStoreInterface] = {}

        self._common_index: TopicsIndex | None = None
        self._common_documents: dict[str, dict[str, Document]] = {}
        self._common_database_path: str | None = None

        self._initialized = False
        self._init_task: asyncio.Task | None = None

    ##########################################
    ############# INITIALIZATION #############
    ##########################################

    def is_initialized(self) -> bool:
        return self._initialized

    async def ensure_initialized(self) -> None:
        """Initialize once. Concurrent callers await the same in-flight attempt.

        Raises:
            Exception: Whatever made the attempt fail. The next call starts a fresh attempt.
        """
        if self._initialized:
            return
        if self._init_task is None:
            self._init_task = asyncio.create_task(self._init())
        task = self._init_task
        try:
            await task
        except Exception:
            if self._init_task is task:
                self._init_task = None
            raise

    async def _init(self) -> None:
        self.logging.info("Initializing TopicManager in %s", self.database_dir)
        try:
            os.makedirs(self.database_dir, exist_ok=True)
            current_model = self.embed_client.get_current_model()

            index = await self._load_index(self.database_dir)
            if index is None:
                index = TopicsIndex(model_name=current_model)
            if index.model_name != current_model:
                self.logging.info("Active embedding model is '%s', index was written with '%s'", current_model, index.model_name or "none")
                index.model_name = current_model
                index.last_updated = now_ms()

            documents: dict[str, dict[str, Document]] = {}
            for topic_id in index.topics:
                documents[topic_id] = await self._load_documents(topic_id, self.database_dir)
                await self.folder_tree.load(topic_id, self._folder_stats_path(topic_id))

            factory = VectorStoreFactory(self.helper_config, self.database_dir, current_model, store_class=self._store_class)
        except Exception as e:
            self.logging.error("Failed to initialize TopicManager: %s", e)
            raise

        # commit only fully loaded state
        self._topics_index = index
        self._documents = documents
        self._vector_factory = factory
        self._store_cache.clear()
        self.pipeline.initialize(self._get_store_for_write)
        await self._save_index()
        await self.load_common_database()

        self._initialized = True
        self.logging.info(
            "TopicManager initialized: %d local topic(s), %d common topic(s), model '%s'",
            len(index.topics),
            len(self._common_index.topics) if self._common_index else 0,
            index.model_name,
        )

    def _require_initialized(self) -> TopicsIndex:
        if not self._initialized or self._topics_index is None or self._vector_factory is None:
            raise NotInitializedError("TopicManager not initialized")
        return self._topics_index

    ##########################################
    ############### PERSISTENCE ##############
    ##########################################

    def _index_path(self, root: str) -> str:
        return os.path.join(root, TOPICS_INDEX_FILENAME)

    def _documents_path(self, topic_id: str, root: str | None = None) -> str:
        return os.path.join(root or self.database_dir, f"topic-{topic_id}-documents.json")

    def _folder_stats_path(self, topic_id: str) -> str:
        return os.path.join(self.database_dir, f"topic-{topic_id}-folder-stats.json")

    async def _read_json(self, path: str):
        async with aiofiles.open(path, "r", encoding="utf-8") as f:
            return json.loads(await f.read())

    async def _write_json(self, path: str, data) -> None:
        async with aiofiles.open(path, "w", encoding="utf-8") as f:
            await f.write(json.dumps(data, indent=2))

    async def _load_index(self, root: str) -> TopicsIndex | None:
        path = self._index_path(root)
        if not os.path.exists(path):
            return None
        return TopicsIndex.model_validate(await self._read_json(path))

    async def _save_index(self) -> None:
        index = self._topics_index
        if index is None:
            return
        index.last_updated = now_ms()
        await self._write_json(self._index_path(self.database_dir), index.to_json_dict())

    async def _load_documents(self, topic_id: str, root: str) -> dict[str, Document]:
        path = self._documents_path(topic_id, root)
        if not os.path.exists(path):
            return {}
        try:
            rows = await self._read_json(path)
            return {doc.id: doc for doc in (Document.model_validate(row) for row in rows)}
        except (OSError, ValueError) as e:
            self.logging.error("Failed to load documents of topic %s: %s", topic_id, e)
            return {}

    async def _save_documents(self, topic_id: str) -> None:
        documents = self._documents.get(topic_id, {})
        await self._write_json(self._documents_path(topic_id), [doc.to_json_dict() for doc in documents.values()])

    async def _save_folder_usage(self, topic_id: str) -> None:
        try:
            await self.folder_tree.save(topic_id, self._folder_stats_path(topic_id))
        except OSError as e:
            self.logging.warning("Failed to save folder usage of topic %s: %s", topic_id, e)

    ##########################################
    ################# TOPICS #################
    ##########################################

    def _get_local_topic(self, topic_id: str) -> Topic:
        """
        Returns the mutable local topic record.

        Raises:
            ReadOnlyTopicError: If the topic belongs to the common registry.
            NotFoundError: If no topic with the ID exists.
        """
        index = self._require_initialized()
        topic = index.topics.get(topic_id)
        if topic is None:
            if self.is_common_topic(topic_id):
                raise ReadOnlyTopicError(f"Topic '{self._common_index.topics[topic_id].name}' belongs to the common database and is read-only")
            raise NotFoundError(f"Topic not found: {topic_id}")
        return topic

    def _find_local_by_name(self, name: str, exclude_id: str | None = None) -> Topic | None:
        wanted = name.strip().lower()
        for topic in self._require_initialized().topics.values():
            if topic.id != exclude_id and topic.name.lower() == wanted:
                return topic
        return None

    async def create_topic(self, name: str, description: str | None = None, initial_documents: list[str] | None = None) -> Topic:
        """Create a local topic.

        Args:
            name (str): Topic name, unique (case-insensitive) among local topics.
            description (str | None): Optional description.
            initial_documents (list[str] | None): Files to ingest right away.

        Returns:
            Topic: The created topic.

        Raises:
            DuplicateNameError: If a local topic with the same name exists.
        """
        index = self._require_initialized()
        name = name.strip()
        if not name:
            raise ValueError("Topic name must not be empty")
        if self._find_local_by_name(name) is not None:
            raise DuplicateNameError(f'Topic with name "{name}" already exists')

        topic = Topic(id=_generate_id("topic"), name=name, description=description)
        index.topics[topic.id] = topic
        self._documents[topic.id] = {}
        await self._save_index()
        self.logging.info("Created topic '%s' (%s)", topic.name, topic.id)

        if initial_documents:
            await self.add_documents(topic.id, initial_documents)
        return topic.model_copy()

    async def ensure_default_topic(self) -> Topic:
        """
        Returns the local topic named "Default", creating it if needed.
        """
        await self.ensure_initialized()
        existing = self._find_local_by_name(DEFAULT_TOPIC_NAME)
        if existing is not None:
            return existing.model_copy()
        self.logging.info("Creating default topic for folder watching")
        return await self.create_topic(DEFAULT_TOPIC_NAME, DEFAULT_TOPIC_DESCRIPTION)

    async def update_topic(self, topic_id: str, name: str | None = None, description: str | None = None) -> Topic:
        """Rename a topic and/or change its description.

        Raises:
            NotFoundError: If the topic does not exist.
            ReadOnlyTopicError: If the topic belongs to the common registry.
            DuplicateNameError: If the new name is taken by another local topic.
        """
        topic = self._get_local_topic(topic_id)
        if name is not None and name.strip() and name.strip() != topic.name:
            if self._find_local_by_name(name, exclude_id=topic_id) is not None:
                raise DuplicateNameError(f'Topic with name "{name.strip()}" already exists')
            topic.name = name.strip()
        if description is not None:
            topic.description = description
        topic.updated_at = now_ms()
        await self._save_index()
        return topic.model_copy()

    async def delete_topic_vector_store(self, topic_id: str) -> None:
        """Drop a topic's vectors but keep the topic and its document registry.

        Used before re-indexing a topic with another embedding model.
        """
        self._get_local_topic(topic_id)
        await self._vector_factory.delete_store(topic_id)
        self._drop_cached_store(topic_id)
        self.folder_tree.clear(topic_id)
        await self.event_bus.broadcast(EVENT_TOPIC_VECTOR_STORE_DELETED, {"topicId": topic_id})
        self.logging.info("Deleted vector store of topic %s", topic_id)

    async def delete_topic(self, topic_id: str) -> None:
        """Delete a topic with its documents, vectors and folder usage.

        Raises:
            NotFoundError: If the topic does not exist.
            ReadOnlyTopicError: If the topic belongs to the common registry.
        """
        topic = self._get_local_topic(topic_id)
        await self._vector_factory.delete_store(topic_id)
        self._drop_cached_store(topic_id)
        self._documents.pop(topic_id, None)
        self.folder_tree.clear(topic_id)
        for path in (self._documents_path(topic_id), self._folder_stats_path(topic_id)):
            if os.path.exists(path):
                os.remove(path)

        del self._topics_index.topics[topic_id]
        await self._save_index()
        await self.event_bus.broadcast(EVENT_TOPIC_DELETED, {"topicId": topic_id})
        self.logging.info("Deleted topic '%s' (%s)", topic.name, topic_id)

    ##########################################
    ################ DOCUMENTS ###############
    ##########################################

    async def add_documents(self, topic_id: str, file_paths: list[str], options: PipelineOptions | None = None) -> list[Document]:
        """Ingest files into a topic, one after another.

        A failing file is logged and skipped. The topic index and the document
        registry are persisted once after the whole batch.

        Args:
            topic_id (str): The target topic.
            file_paths (list[str]): Files to ingest.
            options (PipelineOptions | None): Passed on to the pipeline; its on_progress still fires.

        Returns:
            list[Document]: The documents that were added successfully.
        """
        topic = self._get_local_topic(topic_id)
        options = options or PipelineOptions()
        documents = self._documents.setdefault(topic_id, {})
        added: list[Document] = []

        await self.progress.start_tracking(topic_id, topic.name, len(file_paths))
        try:
            for position, file_path in enumerate(file_paths):
                # pause takes effect between files, never inside one
                await self.progress.wait_if_paused(topic_id)
                file_path = normalize_path(file_path)
                await self.progress.update_progress(topic_id, processed_files=position, current_file=file_path)

                result = await self.pipeline.process_document(file_path, topic_id, self._wrap_options(topic_id, file_path, options))
                if not result.success:
                    self.logging.warning("Document processing failed for %s: %s", file_path, "; ".join(result.errors))
                    await self.progress.update_file_progress(topic_id, file_path, "complete")
                    continue

                document = Document(
                    id=_generate_id("doc"),
                    topic_id=topic_id,
                    name=os.path.basename(file_path),
                    file_path=file_path,
                    file_type=map_file_type(file_path),
                    chunk_count=result.metadata.chunks_stored,
                )
                documents[document.id] = document
                self.folder_tree.update(topic_id, file_path, document.chunk_count)
                added.append(document)
                self.logging.info("Added '%s' to topic '%s' (%d chunks)", document.name, topic.name, document.chunk_count)

            await self.progress.update_progress(topic_id, processed_files=len(file_paths))
        except BaseException:
            await self.progress.cancel_tracking(topic_id)
            raise
        finally:
            topic.document_count = len(documents)
            topic.updated_at = now_ms()
            await self._save_index()
            await self._save_documents(topic_id)
            await self._save_folder_usage(topic_id)
            if added:
                await self._refresh_vector_metadata(topic_id)

        await self.progress.complete_tracking(topic_id)
        self.logging.info("Added %d of %d document(s) to topic '%s'", len(added), len(file_paths), topic.name)
        return added

    def _wrap_options(self, topic_id: str, file_path: str, options: PipelineOptions) -> PipelineOptions:
        user_callback = options.on_progress

        async def on_progress(update: PipelineProgress) -> None:
            chunk_count = (update.details or {}).get("chunks")
            await self.progress.update_file_progress(topic_id, file_path, update.stage, chunk_count)
            if user_callback is not None:
                result = user_callback(update)
                if asyncio.iscoroutine(result):
                    await result

        return options.model_copy(update={"on_progress": on_progress})

    async def remove_document_by_file_path(self, topic_id: str, file_path: str) -> bool:
        """Remove the document registered for a file path.

        Metadata is removed first; deleting the chunks from the vector store is
        best effort and only logged on failure.

        Args:
            topic_id (str): The topic.
            file_path (str): Path of the source file.

        Returns:
            bool: True if a document was registered for the path.
        """
        topic = self._get_local_topic(topic_id)
        document = self.find_document_by_path(topic_id, file_path)
        if document is None:
            return False

        del self._documents[topic_id][document.id]
        try:
            store = await self._get_existing_store(topic_id)
            if store is not None:
                await store.delete_by_document_name(document.name)
        except Exception as e:
            self.logging.warning("Failed to remove chunks of '%s' from the vector store: %s", document.name, e)

        topic.document_count = len(self._documents[topic_id])
        topic.updated_at = now_ms()
        await self._save_index()
        await self._save_documents(topic_id)
        self.folder_tree.remove(topic_id, document.file_path)
        await self._save_folder_usage(topic_id)
        await self._refresh_vector_metadata(topic_id)
        self.logging.info("Removed '%s' from topic '%s'", document.name, topic.name)
        return True

    def find_document_by_path(self, topic_id: str, file_path: str) -> Document | None:
        wanted = normalize_path(file_path)
        for document in self._documents.get(topic_id, {}).values():
            if normalize_path(document.file_path) == wanted:
                return document
        return None

    ##########################################
    ############## VECTOR STORES #############
    ##########################################

    def _root_for(self, topic_id: str) -> str:
        if self.is_common_topic(topic_id) and self._common_database_path:
            return self._common_database_path
        return self.database_dir

    async def _ensure_model_compatibility(self, topic_id: str) -> None:
        """Refuse to use a store whose embedding model cannot be served.

        Raises:
            ModelMismatchError: If the stored model differs from the active one and is not available.
        """
        metadata = await self._vector_factory.read_metadata(topic_id, self._root_for(topic_id))
        if metadata is None or not metadata.embedding_model:
            return
        current_model = self.embed_client.get_current_model()
        if metadata.embedding_model == current_model:
            return
        if await self.embed_client.is_model_available(metadata.embedding_model):
            return

        topic = self.get_topic(topic_id)
        topic_name = topic.name if topic else topic_id
        self.logging.warning(
            "Embedding model mismatch for topic '%s': stored '%s', active '%s'",
            topic_name,
            metadata.embedding_model,
            current_model,
        )
        raise ModelMismatchError(
            f'Topic "{topic_name}" was indexed with embedding model "{metadata.embedding_model}", '
            f'but the current setting is "{current_model}". '
            f'The model "{metadata.embedding_model}" is not currently available. '
            f'Please switch back to "{metadata.embedding_model}" or recreate the topic.',
            stored_model=metadata.embedding_model,
            current_model=current_model,
        )

    async def get_vector_store(self, topic_id: str) -> VectorStoreInterface:
        """Return the (cached) vector store of a local or common topic.

        Raises:
            NotFoundError: If the topic does not exist.
            ModelMismatchError: If the store was built with a model that cannot be served.
            VectorStoreUnavailableError: If the topic has no vectors on disk.
        """
        self._require_initialized()
        topic = self.get_topic(topic_id)
        if topic is None:
            raise NotFoundError(f"Topic not found: {topic_id}")
        await self._ensure_model_compatibility(topic_id)

        store = await self._get_existing_store(topic_id)
        if store is None:
            raise VectorStoreUnavailableError(f"No vector store found for topic '{topic.name}'. Add documents first.")
        return store

    async def _get_existing_store(self, topic_id: str) -> VectorStoreInterface | None:
        cached = self._store_cache.get(topic_id)
        if cached is not None:
            # write handles are cached before their table exists
            return cached if await cached.exists() else None
        store = await self._vector_factory.load_store(topic_id, self._root_for(topic_id))
        if store is not None:
            self._store_cache[topic_id] = store
        return store

    async def _get_store_for_write(self, topic_id: str) -> VectorStoreInterface:
        """Store provider handed to the pipeline. Never mixes vectors of two models in one store.

        Raises:
            ModelMismatchError: If the topic's vectors were built with another model.
        """
        metadata = await self._vector_factory.read_metadata(topic_id)
        current_model = self.embed_client.get_current_model()
        if metadata is not None and metadata.chunk_count > 0 and metadata.embedding_model != current_model:
            raise ModelMismatchError(
                f'Topic "{self._topics_index.topics[topic_id].name}" was indexed with embedding model '
                f'"{metadata.embedding_model}", but the current setting is "{current_model}". '
                f'Please switch back to "{metadata.embedding_model}" or delete the topic\'s vector store to re-index it.',
                stored_model=metadata.embedding_model,
                current_model=current_model,
            )
        store = self._store_cache.get(topic_id)
        if store is None:
            store = self._vector_factory.open_store(topic_id)
            self._store_cache[topic_id] = store
        return store

    def _drop_cached_store(self, topic_id: str) -> None:
        store = self._store_cache.pop(topic_id, None)
        if store is not None:
            store.close()

    async def _refresh_vector_metadata(self, topic_id: str) -> None:
        try:
            store = await self._get_existing_store(topic_id)
            chunk_count = await store.count() if store is not None else 0
            await self._vector_factory.write_metadata(topic_id, chunk_count, embedding_model=self.embed_client.get_current_model())
        except Exception as e:
            self.logging.warning("Failed to refresh vector metadata of topic %s: %s", topic_id, e)

    async def reinitialize_with_new_model(self) -> None:
        """Rebuild the vector side after the active embedding model changed.

        Disposes the factory, drops every cached store, tells subscribers to drop
        their per-topic state and records the new model in the index.
        """
        index = self._require_initialized()
        topic_ids = list(index.topics)
        current_model = self.embed_client.get_current_model()
        self.logging.info("Reinitializing vector stores for embedding model '%s'", current_model)

        self._vector_factory.dispose()
        self._store_cache.clear()
        await self.event_bus.broadcast(EVENT_TOPICS_MODEL_CHANGED, {"topicIds": topic_ids, "model": current_model})

        self._vector_factory = VectorStoreFactory(self.helper_config, self.database_dir, current_model, store_class=self._store_class)
        self.pipeline.initialize(self._get_store_for_write)
        index.model_name = current_model
        await self._save_index()

    ##########################################
    ############# EXPORT / IMPORT ############
    ##########################################

    async def export_topic(self, topic_id: str, export_path: str) -> str:
        """Write a local topic into a .rag archive (zip, DEFLATE).

        Args:
            topic_id (str): The topic to export.
            export_path (str): Target file.

        Returns:
            str: The written archive path.

        Raises:
            ReadOnlyTopicError: If the topic belongs to the common registry.
            NotFoundError: If the topic does not exist.
        """
        if self.is_common_topic(topic_id):
            raise ReadOnlyTopicError("Cannot export topics from common database")
        topic = self._get_local_topic(topic_id)

        metadata = await self._vector_factory.read_metadata(topic_id)
        embedding_model = metadata.embedding_model if metadata else self._topics_index.model_name
        export_data = ExportedTopicData(
            version=EXPORT_FORMAT_VERSION,
            topic=topic,
            documents=self.get_topic_documents(topic_id),
            embedding_model=embedding_model,
        )
        native_dir = self._vector_factory.get_native_path(topic_id)
        metadata_path = self._vector_factory.get_metadata_path(topic_id)
        vector_prefix = f"{EXPORT_VECTOR_PREFIX}/{_model_slug(embedding_model)}/{topic_id}{VECTOR_TABLE_SUFFIX}"

        def _write_archive() -> None:
            os.makedirs(os.path.dirname(os.path.abspath(export_path)), exist_ok=True)
            with zipfile.ZipFile(export_path, "w", compression=zipfile.ZIP_DEFLATED, compresslevel=9) as archive:
                archive.writestr(EXPORT_METADATA_ENTRY, json.dumps(export_data.to_json_dict(), indent=2))
                if os.path.isdir(native_dir):
                    for folder, _, files in os.walk(native_dir):
                        for file_name in files:
                            full_path = os.path.join(folder, file_name)
                            relative = os.path.relpath(full_path, native_dir).replace(os.sep, "/")
                            archive.write(full_path, f"{vector_prefix}/{relative}")
                else:
                    self.logging.debug("No vector store files for topic %s", topic_id)
                if os.path.exists(metadata_path):
                    archive.write(metadata_path, os.path.basename(metadata_path))

        await asyncio.to_thread(_write_archive)
        self.logging.info("Exported topic '%s' to %s", topic.name, export_path)
        return export_path

    async def import_topic(self, archive_path: str) -> Topic:
        """Import a .rag archive as a new local topic.

        The topic and every document get fresh IDs. A clashing name gets the
        suffix " (imported)", then " (imported 2)", " (imported 3)" and so on.

        Args:
            archive_path (str): The archive to read.

        Returns:
            Topic: The imported topic.

        Raises:
            ArchiveInvalidError: If the archive is unreadable or lacks topic.json.
        """
        index = self._require_initialized()

        def _read_archive() -> tuple[dict, dict[str, bytes]]:
            try:
                with zipfile.ZipFile(archive_path) as archive:
                    names = archive.namelist()
                    if EXPORT_METADATA_ENTRY not in names:
                        raise ArchiveInvalidError("Invalid archive: topic.json not found")
                    payload = json.loads(archive.read(EXPORT_METADATA_ENTRY).decode("utf-8"))
                    entries = {name: archive.read(name) for name in names if not name.endswith("/") and name != EXPORT_METADATA_ENTRY}
                    return payload, entries
            except (zipfile.BadZipFile, OSError, ValueError) as e:
                raise ArchiveInvalidError(f"Invalid archive: {e}")

        payload, entries = await asyncio.to_thread(_read_archive)
        try:
            export_data = ExportedTopicData.model_validate(payload)
        except ValidationError as e:
            raise ArchiveInvalidError(f"Invalid archive: malformed topic.json ({e.error_count()} error(s))")

        current_model = self.embed_client.get_current_model()
        if export_data.embedding_model != current_model:
            self.logging.warning(
                "Imported topic uses embedding model '%s' while '%s' is active. Switch to it before querying.",
                export_data.embedding_model,
                current_model,
            )

        original_id = export_data.topic.id
        new_id = _generate_id("topic")
        name = export_data.topic.name
        if self._find_local_by_name(name) is not None:
            base_name = name
            name = f"{base_name} (imported)"
            counter = 2
            while self._find_local_by_name(name) is not None:
                name = f"{base_name} (imported {counter})"
                counter += 1
        topic = export_data.topic.model_copy(
            update={"id": new_id, "name": name, "source": "local", "created_at": now_ms(), "updated_at": now_ms()}
        )

        native_dir = self._vector_factory.get_native_path(new_id)
        metadata_entry = f"vector-{original_id}-metadata.json"
        legacy_prefixes = (
            f"{VECTOR_DIR_NAME}/{original_id}{VECTOR_TABLE_SUFFIX}/",
            f"{VECTOR_DIR_NAME}/{original_id}/",
        )
        vector_pattern = re.compile(rf"^{re.escape(EXPORT_VECTOR_PREFIX)}/[^/]+/{re.escape(original_id + VECTOR_TABLE_SUFFIX)}/(.+)$")

        def _extract_vectors() -> None:
            os.makedirs(native_dir, exist_ok=True)
            for entry_name, data in entries.items():
                relative = None
                match = vector_pattern.match(entry_name)
                if match:
                    relative = match.group(1)
                else:
                    for prefix in legacy_prefixes:
                        if entry_name.startswith(prefix):
                            relative = entry_name[len(prefix):]
                            break
                if not relative or ".." in relative.split("/"):
                    continue
                target = os.path.join(native_dir, *relative.split("/"))
                os.makedirs(os.path.dirname(target), exist_ok=True)
                with open(target, "wb") as f:
                    f.write(data)

        try:
            await asyncio.to_thread(_extract_vectors)
        except OSError:
            shutil.rmtree(native_dir, ignore_errors=True)
            raise

        if metadata_entry in entries:
            vector_metadata = json.loads(entries[metadata_entry].decode("utf-8"))
            await self._vector_factory.write_metadata(
                new_id,
                int(vector_metadata.get("chunkCount", 0)),
                embedding_model=vector_metadata.get("embeddingModel") or export_data.embedding_model,
            )

        documents: dict[str, Document] = {}
        for exported in export_data.documents:
            document = exported.model_copy(update={"id": _generate_id("doc"), "topic_id": new_id})
            documents[document.id] = document
            self.folder_tree.update(new_id, document.file_path, document.chunk_count)
        topic.document_count = len(documents)

        index.topics[new_id] = topic
        self._documents[new_id] = documents
        await self._save_index()
        await self._save_documents(new_id)
        await self._save_folder_usage(new_id)
        self.logging.info("Imported topic '%s' as %s (%d documents, was %s)", topic.name, new_id, len(documents), original_id)
        return topic.model_copy()

    ##########################################
    ############# COMMON DATABASE ############
    ##########################################

    def _reset_common(self) -> None:
        self._common_index = None
        self._common_documents = {}
        self._common_database_path = None

    async def load_common_database(self, common_path: str | None = None) -> bool:
        """Mount the read-only common registry.

        Any name clash with a local topic aborts the whole load; only the local
        registry stays active then.

        Args:
            common_path (str | None): Overrides COMMON_DATABASE_PATH.

        Returns:
            bool: True if a common registry is mounted afterwards.
        """
        if common_path is not None:
            self._configured_common_path = common_path.strip()
        self._reset_common()
        if not self._configured_common_path:
            self.logging.debug("No common database path configured")
            return False

        path = normalize_path(self._configured_common_path)
        if not os.path.isdir(path):
            self.logging.warning("Common database path does not exist: %s", path)
            return False
        if not os.path.exists(self._index_path(path)):
            self.logging.warning("Common database path %s is missing %s. Is the path correct?", path, TOPICS_INDEX_FILENAME)
            return False

        try:
            common_index = await self._load_index(path)
        except (OSError, ValueError) as e:
            self.logging.warning("Failed to load common database %s: %s", path, e)
            return False

        local_names = {topic.name.lower() for topic in self._topics_index.topics.values()}
        conflicts = [topic.name for topic in common_index.topics.values() if topic.name.lower() in local_names]
        if conflicts:
            conflict_list = ", ".join(conflicts[:3]) + ("..." if len(conflicts) > 3 else "")
            self.logging.warning(
                "Cannot load common database due to name conflicts. Local topics [%s] already exist. Rename your local topics first.",
                conflict_list,
            )
            return False

        for topic in common_index.topics.values():
            topic.source = "common"
            self._common_documents[topic.id] = await self._load_documents(topic.id, path)
        self._common_index = common_index
        self._common_database_path = path
        self.logging.info("Common database loaded from %s (%d topics)", path, len(common_index.topics))
        return True

    def get_common_database_path(self) -> str | None:
        return self._common_database_path

    ##########################################
    ################ ACCESSORS ###############
    ##########################################

    def get_topic(self, topic_id: str) -> Topic | None:
        if self._topics_index and topic_id in self._topics_index.topics:
            return self._topics_index.topics[topic_id].model_copy(update={"source": "local"})
        if self._common_index and topic_id in self._common_index.topics:
            return self._common_index.topics[topic_id].model_copy(update={"source": "common"})
        return None

    def get_all_topics(self) -> list[Topic]:
        """
        Returns local topics followed by common topics, each tagged with its source.
        """
        local = [t.model_copy(update={"source": "local"}) for t in self._topics_index.topics.values()] if self._topics_index else []
        common = [t.model_copy(update={"source": "common"}) for t in self._common_index.topics.values()] if self._common_index else []
        return local + common

    def find_topic_by_name(self, name: str) -> Topic | None:
        wanted = name.strip().lower()
        for topic in self.get_all_topics():
            if topic.name.lower() == wanted:
                return topic
        return None

    def is_common_topic(self, topic_id: str) -> bool:
        return self._common_index is not None and topic_id in self._common_index.topics

    def get_topic_documents(self, topic_id: str) -> list[Document]:
        if topic_id in self._documents:
            return list(self._documents[topic_id].values())
        return list(self._common_documents.get(topic_id, {}).values())

    def get_folder_usage(self, topic_id: str) -> FolderUsageStats | None:
        return self.folder_tree.get(topic_id)

    def set_watch_folders_provider(self, provider: Callable[[], list[str]]) -> None:
        """
        Folder usage roots follow the watch folders returned by the provider.
        """
        self.folder_tree.set_watch_folders_provider(provider)

    def get_model_name(self) -> str:
        return self._topics_index.model_name if self._topics_index else self.embed_client.get_current_model()

    async def get_topic_stats(self, topic_id: str) -> TopicStats | None:
        """Derive counters of a topic from its documents and vector metadata.

        Returns:
            TopicStats | None: None if the topic does not exist or stats cannot be read.
        """
        topic = self.get_topic(topic_id)
        if topic is None or self._vector_factory is None:
            return None
        documents = self.get_topic_documents(topic_id)
        metadata = await self._vector_factory.read_metadata(topic_id, self._root_for(topic_id))
        return TopicStats(
            document_count=len(documents),
            chunk_count=metadata.chunk_count if metadata else sum(doc.chunk_count for doc in documents),
            last_updated=topic.updated_at,
            embedding_model=(metadata.embedding_model if metadata else None) or self.get_model_name() or "unknown",
        )

    ##########################################
    ################ LIFECYCLE ###############
    ##########################################

    async def refresh(self) -> None:
        """
        Reloads the local index and document registries from disk and remounts the common registry.
        """
        self._require_initialized()
        index = await self._load_index(self.database_dir)
        if index is not None:
            self._topics_index = index
            self._documents = {topic_id: await self._load_documents(topic_id, self.database_dir) for topic_id in index.topics}
        await self.load_common_database()
        self.logging.info("Refreshed topics from disk")

    def dispose(self) -> None:
        self.logging.info("Disposing TopicManager")
        if self._vector_factory is not None:
            self._vector_factory.dispose()
        self._vector_factory = None
        self._store_cache.clear()
        self._documents.clear()
        self._reset_common()
        self._topics_index = None
        self._initialized = False
        self._init_task = None
