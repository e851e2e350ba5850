import logging
import os
from abc import ABC, abstractmethod

from shared.models.search import ChunkRecord, ScoredChunk


class VectorStoreInterface(ABC):
    """Per-topic handle on an on-disk vector table.

    One instance wraps exactly one table (named after the topic ID) inside one
    database directory. All methods are coroutines; engines with blocking APIs
    push the work onto a worker thread.
    """

    def __init__(self, db_path: str, table_name: str, logger: logging.Logger | None = None):
        self.db_path = db_path
        self.table_name = table_name
        self.logging = logger or logging.getLogger(__name__)

    ##########################################
    ################ GETTER ##################
    ##########################################

    def get_native_path(self) -> str:
        """
        Returns the directory holding the engine's own files for this table.
        This is what an export archive carries.
        """
        return os.path.join(self.db_path, f"{self.table_name}{self._get_native_suffix()}")

    @abstractmethod
    def _get_native_suffix(self) -> str:
        """
        Returns the directory suffix the engine uses for a table. E.g. ".lance"
        """
        pass

    @abstractmethod
    async def exists(self) -> bool:
        """
        Returns True if the table has been created on disk.
        """
        pass

    @abstractmethod
    async def count(self) -> int:
        """
        Returns the number of stored chunks. 0 if the table does not exist.
        """
        pass

    ##########################################
    ################# WRITE ##################
    ##########################################

    @abstractmethod
    async def add_chunks(self, chunks: list[ChunkRecord]) -> int:
        """Insert chunks, creating the table on first insert.

        Args:
            chunks (list[ChunkRecord]): Chunks including their vectors.

        Returns:
            int: Number of chunks written.
        """
        pass

    @abstractmethod
    async def delete_by_document_name(self, document_name: str) -> None:
        """Delete every chunk whose document_name equals the given basename.

        Args:
            document_name (str): Basename of the source file.
        """
        pass

    @abstractmethod
    async def drop(self) -> None:
        """
        Removes the table and its files.
        """
        pass

    ##########################################
    ################# READ ###################
    ##########################################

    @abstractmethod
    async def similarity_search(self, vector: list[float], k: int) -> list[ScoredChunk]:
        """Nearest-neighbour search by cosine similarity.

        Args:
            vector (list[float]): The query embedding.
            k (int): Maximum number of results.

        Returns:
            list[ScoredChunk]: Best matches first; score is 1 - cosine distance.
        """
        pass

    @abstractmethod
    async def scan(self, limit: int | None = None) -> list[ChunkRecord]:
        """Read stored chunks without ranking (used by keyword retrieval).

        Args:
            limit (int | None): Maximum number of chunks, None for all.

        Returns:
            list[ChunkRecord]: Stored chunks in table order, vectors omitted.
        """
        pass

    ##########################################
    ############### LIFECYCLE ################
    ##########################################

    def close(self) -> None:
        """
        Releases the connection. The handle must not be used afterwards.
        """
        pass
