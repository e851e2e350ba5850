from abc import ABC, abstractmethod
from typing import Awaitable, Callable

from shared.clients.vector.VectorStoreInterface import VectorStoreInterface
from shared.models.pipeline import PipelineOptions, PipelineResult

StoreProvider = Callable[[str], Awaitable[VectorStoreInterface]]


class PipelineInterface(ABC):
    """Turns one source file into stored chunks of a topic's vector store.

    The topic manager binds a store provider on initialization and again after
    every embedding model change, so the pipeline always writes through the
    manager's vector store cache.
    """

    @abstractmethod
    def initialize(self, store_provider: StoreProvider) -> None:
        """Bind the callable that returns the writable vector store of a topic.

        Args:
            store_provider (StoreProvider): Coroutine function topic_id -> store.
        """
        pass

    @abstractmethod
    async def process_document(self, file_path: str, topic_id: str, options: PipelineOptions | None = None) -> PipelineResult:
        """Load, chunk, embed and store one file.

        Implementations report every failure through the result and never raise.

        Args:
            file_path (str): Path of the source file.
            topic_id (str): Topic whose vector store receives the chunks.
            options (PipelineOptions | None): Progress callback and chunking overrides.

        Returns:
            PipelineResult: success flag, error messages and chunk counters.
        """
        pass
