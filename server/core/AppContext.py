"""Wiring of the long-lived core services.

One AppContext is built per process in the FastAPI lifespan and stored on
app.state.context. Every router reaches the services through it.
"""

from dataclasses import dataclass

import httpx

from server.core.RetrievalService import RetrievalService
from services.ingestion.PipelineInterface import PipelineInterface
from services.progress.ProgressTracker import ProgressTracker
from services.topics.TopicManager import TopicManager
from services.watcher.FileWatcherService import FileWatcherService
from shared.clients.embed.EmbedClientInterface import EmbedClientInterface
from shared.clients.embed.EmbedClientManager import EmbedClientManager
from shared.clients.vector.VectorStoreInterface import VectorStoreInterface
from shared.helper.EventBus import EventBus
from shared.helper.HelperConfig import HelperConfig


@dataclass
class AppContext:
    helper_config: HelperConfig
    event_bus: EventBus
    embed_client: EmbedClientInterface
    progress: ProgressTracker
    topic_manager: TopicManager
    watcher: FileWatcherService
    retrieval: RetrievalService

    @classmethod
    def build(
        cls,
        helper_config: HelperConfig,
        embed_client: EmbedClientInterface | None = None,
        pipeline: PipelineInterface | None = None,
        store_class: type[VectorStoreInterface] | None = None,
    ) -> "AppContext":
        """Create every core service without starting any of them.

        Args:
            helper_config (HelperConfig): Configuration source.
            embed_client (EmbedClientInterface | None): Embedding client; picked via EMBED_ENGINE if None.
            pipeline (PipelineInterface | None): Ingestion pipeline; the DocumentPipeline if None.
            store_class (type[VectorStoreInterface] | None): Vector store backend; picked via VECTOR_ENGINE if None.

        Returns:
            AppContext: The unstarted context.
        """
        logger = helper_config.get_logger()
        event_bus = EventBus(logger=logger)
        embed_client = embed_client or EmbedClientManager(helper_config=helper_config).get_client()
        progress = ProgressTracker(helper_config=helper_config, event_bus=event_bus)
        topic_manager = TopicManager(
            helper_config=helper_config,
            embed_client=embed_client,
            progress_tracker=progress,
            event_bus=event_bus,
            pipeline=pipeline,
            store_class=store_class,
        )
        watcher = FileWatcherService(helper_config=helper_config, topic_manager=topic_manager)
        retrieval = RetrievalService(
            helper_config=helper_config,
            topic_manager=topic_manager,
            embed_client=embed_client,
            progress_tracker=progress,
            event_bus=event_bus,
            watcher=watcher,
        )
        return cls(
            helper_config=helper_config,
            event_bus=event_bus,
            embed_client=embed_client,
            progress=progress,
            topic_manager=topic_manager,
            watcher=watcher,
            retrieval=retrieval,
        )

    ##########################################
    ############### LIFECYCLE ################
    ##########################################

    async def start(self) -> None:
        """Boot the embedding client, load the topic registry and attach the watcher.

        A failing registry load keeps the context alive; the API answers 503
        until a later attempt succeeds.
        """
        logging = self.helper_config.get_logger()
        if not self.embed_client.is_booted():
            await self.embed_client.boot()
        await self.check_connections()
        await self.retrieval.start()

        try:
            await self.topic_manager.ensure_initialized()
        except Exception as e:
            logging.error("Topic registry could not be loaded, search is unavailable: %s", e)
            return

        await self.watcher.start()

    async def check_connections(self) -> None:
        """
        Logs a warning if the embedding backend is not reachable. Indexing and
        search fail later, the server stays up.
        """
        logging = self.helper_config.get_logger()
        try:
            result: httpx.Response = await self.embed_client.do_healthcheck()
        except httpx.HTTPError as e:
            logging.warning("Embedding backend is not reachable: %s. Indexing and search will fail.", e)
            return
        if not result.is_success:
            logging.warning(
                "Embedding backend '%s' is not reachable (status %d). Indexing and search will fail.",
                self.embed_client.get_engine_name(),
                result.status_code,
            )

    async def close(self) -> None:
        logging = self.helper_config.get_logger()
        logging.info("Shutting down, stopping watcher and closing clients...")
        await self.watcher.stop()
        await self.retrieval.stop()
        await self.progress.clear_all()
        self.topic_manager.dispose()
        await self.embed_client.close()
        logging.info("Shutdown complete.")
