import json
import os
import shutil

import aiofiles

from shared.clients.vector.VectorStoreInterface import VectorStoreInterface
from shared.helper.constants import VECTOR_DIR_NAME
from shared.helper.HelperConfig import HelperConfig
from shared.models.base import now_ms
from shared.models.topic import VectorStoreMetadata


class VectorStoreFactory:
    """Opens per-topic vector stores under one embedding model.

    Owns the on-disk layout of the vector side of a storage root:

        <root>/lancedb/<topic_id>.lance/     native engine files
        <root>/vector-<topic_id>-metadata.json

    A factory is bound to the embedding model active when it was built; after a
    model change the topic manager disposes it and builds a new one.
    """

    def __init__(self, helper_config: HelperConfig, database_dir: str, embedding_model: str, store_class: type[VectorStoreInterface] | None = None):
        self.helper_config = helper_config
        self.logging = helper_config.get_logger()
        self.database_dir = database_dir
        self.embedding_model = embedding_model
        self._store_class = store_class or self._load_store_class()
        self._open_stores: list[VectorStoreInterface] = []

    def _load_store_class(self) -> type[VectorStoreInterface]:
        """
        Imports shared.clients.vector.<engine>.VectorStore<Engine> for VECTOR_ENGINE.

        Raises:
            ValueError: If the engine has no store implementation.
        """
        engine = self.helper_config.get_string_val("VECTOR_ENGINE", default="lancedb").strip().lower().capitalize()
        class_name = f"VectorStore{engine}"
        try:
            module = __import__(f"shared.clients.vector.{engine.lower()}.{class_name}", fromlist=[class_name])
            return getattr(module, class_name)
        except (ImportError, AttributeError) as e:
            raise ValueError(f"Unsupported vector engine specified: '{engine}'. Error: {e}")

    ##########################################
    ################# PATHS ##################
    ##########################################

    def _root(self, database_dir: str | None) -> str:
        return database_dir or self.database_dir

    def get_vector_dir(self, database_dir: str | None = None) -> str:
        return os.path.join(self._root(database_dir), VECTOR_DIR_NAME)

    def get_metadata_path(self, topic_id: str, database_dir: str | None = None) -> str:
        return os.path.join(self._root(database_dir), f"vector-{topic_id}-metadata.json")

    def get_native_path(self, topic_id: str, database_dir: str | None = None) -> str:
        return self._build(topic_id, database_dir).get_native_path()

    ##########################################
    ################# STORES #################
    ##########################################

    def _build(self, topic_id: str, database_dir: str | None) -> VectorStoreInterface:
        return self._store_class(db_path=self.get_vector_dir(database_dir), table_name=topic_id, logger=self.logging)

    def open_store(self, topic_id: str, database_dir: str | None = None) -> VectorStoreInterface:
        """Return a handle for the topic, whether or not its table exists yet.

        Args:
            topic_id (str): The topic whose table to open.
            database_dir (str | None): Storage root, defaults to the local one.

        Returns:
            VectorStoreInterface: The handle. The factory closes it on dispose().
        """
        store = self._build(topic_id, database_dir)
        self._open_stores.append(store)
        return store

    async def load_store(self, topic_id: str, database_dir: str | None = None) -> VectorStoreInterface | None:
        """
        Returns a handle for an existing table, None if the topic has no vectors on disk.
        """
        store = self.open_store(topic_id, database_dir)
        if await store.exists():
            return store
        store.close()
        self._open_stores.remove(store)
        return None

    async def delete_store(self, topic_id: str, database_dir: str | None = None) -> None:
        """Drop the topic's table and its metadata file.

        Args:
            topic_id (str): The topic whose vectors to delete.
            database_dir (str | None): Storage root, defaults to the local one.
        """
        store = self._build(topic_id, database_dir)
        await store.drop()
        store.close()
        native_path = store.get_native_path()
        if os.path.isdir(native_path):
            shutil.rmtree(native_path, ignore_errors=True)
        metadata_path = self.get_metadata_path(topic_id, database_dir)
        if os.path.exists(metadata_path):
            os.remove(metadata_path)
        self.logging.info("Deleted vector store of topic %s", topic_id)

    def dispose(self) -> None:
        """
        Closes every handle handed out by this factory.
        """
        for store in self._open_stores:
            store.close()
        self._open_stores.clear()

    ##########################################
    ################ METADATA ################
    ##########################################

    async def read_metadata(self, topic_id: str, database_dir: str | None = None) -> VectorStoreMetadata | None:
        """
        Returns the topic's vector metadata, None if missing or unreadable.
        """
        path = self.get_metadata_path(topic_id, database_dir)
        if not os.path.exists(path):
            return None
        try:
            async with aiofiles.open(path, "r", encoding="utf-8") as f:
                return VectorStoreMetadata.model_validate_json(await f.read())
        except (OSError, ValueError) as e:
            self.logging.warning("Could not read vector metadata %s: %s", path, e)
            return None

    async def write_metadata(self, topic_id: str, chunk_count: int, embedding_model: str | None = None, database_dir: str | None = None) -> VectorStoreMetadata:
        """Record the model and chunk count of the topic's vectors.

        Args:
            topic_id (str): The topic.
            chunk_count (int): Number of chunks now stored.
            embedding_model (str | None): Model the vectors were built with, defaults to the factory's.
            database_dir (str | None): Storage root, defaults to the local one.

        Returns:
            VectorStoreMetadata: The written record.
        """
        metadata = VectorStoreMetadata(
            topic_id=topic_id,
            embedding_model=embedding_model or self.embedding_model,
            chunk_count=chunk_count,
            updated_at=now_ms(),
        )
        path = self.get_metadata_path(topic_id, database_dir)
        os.makedirs(os.path.dirname(path), exist_ok=True)
        async with aiofiles.open(path, "w", encoding="utf-8") as f:
            await f.write(json.dumps(metadata.to_json_dict(), indent=2))
        return metadata
