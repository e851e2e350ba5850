import time

from server.core.QueryAgent import QueryAgent
from server.models.responses import (
    SearchResponse,
    SearchResultItem,
    StatusResponse,
    TopicDetailResponse,
    TopicDocumentInfo,
    TopicInfo,
    TopicListResponse,
)
from services.progress.ProgressTracker import ProgressTracker
from services.topics.TopicManager import TopicManager
from services.watcher.FileWatcherService import FileWatcherService
from shared.clients.embed.EmbedClientInterface import EmbedClientInterface
from shared.errors import InvalidRequestError, ModelSwitchError, NotFoundError, NotInitializedError
from shared.helper.constants import (
    DEFAULT_HYBRID_ALPHA,
    DEFAULT_RETRIEVAL_STRATEGY,
    DEFAULT_SEARCH_LIMIT,
    EVENT_TOPIC_DELETED,
    EVENT_TOPIC_VECTOR_STORE_DELETED,
    EVENT_TOPICS_MODEL_CHANGED,
)
from shared.helper.EventBus import EventBus
from shared.helper.HelperConfig import HelperConfig
from shared.models.topic import Topic


class RetrievalService:
    """Serves searches, topic listings and status for the HTTP API.

    Keeps one QueryAgent per topic. The agent cache is dropped through the
    event bus whenever the topic manager deletes a topic, drops its vector
    store or switches the embedding model.
    """

    def __init__(
        self,
        helper_config: HelperConfig,
        topic_manager: TopicManager,
        embed_client: EmbedClientInterface,
        progress_tracker: ProgressTracker,
        event_bus: EventBus,
        watcher: FileWatcherService | None = None,
    ) -> None:
        self.logging = helper_config.get_logger()
        self._topic_manager = topic_manager
        self._embed_client = embed_client
        self._progress = progress_tracker
        self._event_bus = event_bus
        self._watcher = watcher
        self._agents: dict[str, QueryAgent] = {}

        self.strategy = helper_config.get_string_val("RETRIEVAL_STRATEGY", default=DEFAULT_RETRIEVAL_STRATEGY).lower()
        self.alpha = float(helper_config.get_number_val("RETRIEVAL_HYBRID_ALPHA", default=DEFAULT_HYBRID_ALPHA))
        self.default_limit = int(helper_config.get_number_val("SEARCH_DEFAULT_LIMIT", default=DEFAULT_SEARCH_LIMIT))

    async def start(self) -> None:
        await self._event_bus.subscribe(EVENT_TOPIC_DELETED, self._on_topic_removed)
        await self._event_bus.subscribe(EVENT_TOPIC_VECTOR_STORE_DELETED, self._on_topic_removed)
        await self._event_bus.subscribe(EVENT_TOPICS_MODEL_CHANGED, self._on_model_changed)

    async def stop(self) -> None:
        await self._event_bus.unsubscribe(EVENT_TOPIC_DELETED, self._on_topic_removed)
        await self._event_bus.unsubscribe(EVENT_TOPIC_VECTOR_STORE_DELETED, self._on_topic_removed)
        await self._event_bus.unsubscribe(EVENT_TOPICS_MODEL_CHANGED, self._on_model_changed)
        self._agents.clear()

    ##########################################
    ################ CACHE ###################
    ##########################################

    def clear_agent_cache(self, topic_id: str | None = None) -> None:
        if topic_id is None:
            self._agents.clear()
        else:
            self._agents.pop(topic_id, None)

    def cached_topic_ids(self) -> list[str]:
        return list(self._agents)

    def _on_topic_removed(self, payload: dict) -> None:
        topic_id = payload.get("topicId")
        if topic_id:
            self.logging.debug("Dropping query agent of topic %s", topic_id)
            self.clear_agent_cache(topic_id)

    def _on_model_changed(self, payload: dict) -> None:
        self.logging.debug("Embedding model changed to %s, dropping all query agents", payload.get("model"))
        self.clear_agent_cache()

    async def _get_agent(self, topic: Topic) -> QueryAgent:
        agent = self._agents.get(topic.id)
        if agent is None:
            store = await self._topic_manager.get_vector_store(topic.id)
            agent = QueryAgent(store=store, embed_client=self._embed_client, strategy=self.strategy, alpha=self.alpha)
            self._agents[topic.id] = agent
        return agent

    ##########################################
    ################# CORE ###################
    ##########################################

    def _require_initialized(self) -> None:
        if not self._topic_manager.is_initialized():
            raise NotInitializedError("Topic manager not initialized")

    def _resolve_topic(self, topic_name: str | None) -> Topic:
        topics = self._topic_manager.get_all_topics()
        if topic_name:
            topic = self._topic_manager.find_topic_by_name(topic_name)
            if topic is None:
                available = ", ".join(t.name for t in topics) or "none"
                raise NotFoundError(f"Topic not found: {topic_name}. Available topics: {available}")
            return topic
        if not topics:
            raise NotFoundError("No topics available")
        return topics[0]

    async def _align_embedding_model(self, topic: Topic) -> str:
        """Switch the active embedding model to the one the topic was built with.

        Returns:
            str: The model the query has to be embedded with. Searches run
                concurrently, so the caller pins this model instead of relying
                on the active one.

        Raises:
            ModelSwitchError: If the stored model cannot be activated.
        """
        stats = await self._topic_manager.get_topic_stats(topic.id)
        stored_model = stats.embedding_model if stats else None
        current_model = self._embed_client.get_current_model()
        if not stored_model or stored_model == "unknown" or stored_model == current_model:
            return current_model

        self.logging.info("Topic '%s' uses embedding model '%s', switching from '%s'", topic.name, stored_model, current_model)
        try:
            await self._embed_client.do_switch_model(stored_model)
        except Exception as e:
            raise ModelSwitchError(
                f"Topic '{topic.name}' was indexed with embedding model '{stored_model}' but the active model is "
                f"'{current_model}' and switching failed: {e}"
            ) from e
        self.clear_agent_cache()
        return stored_model

    async def search(self, query: str | None, limit: int | None = None, topic_name: str | None = None) -> SearchResponse:
        """Run a retrieval query against one topic.

        Args:
            query (str | None): The search text.
            limit (int | None): Maximum number of results, non-positive values fall back to the default.
            topic_name (str | None): Topic to search (case-insensitive). Defaults to the first topic.

        Returns:
            SearchResponse: The ranked results.

        Raises:
            InvalidRequestError: If the query is missing.
            NotInitializedError: If the topic manager is not ready.
            NotFoundError: If the topic does not exist or no topic exists at all.
            ModelSwitchError: If the topic's embedding model cannot be activated.
        """
        if not query or not query.strip():
            raise InvalidRequestError("Missing required parameter: q")
        self._require_initialized()
        limit = limit if limit and limit > 0 else self.default_limit

        started = time.perf_counter()
        topic = self._resolve_topic(topic_name)
        model = await self._align_embedding_model(topic)
        agent = await self._get_agent(topic)

        self.logging.info("Searching topic '%s' for '%s' (limit=%d, strategy=%s)", topic.name, query, limit, agent.strategy)
        result = await agent.query(query, limit, model=model)

        items = [
            SearchResultItem(
                content=item.chunk.text,
                path=item.chunk.source or item.chunk.document_name,
                score=item.score,
                topic=topic.name,
                chunk_id=item.chunk.id,
                metadata=item.chunk.to_metadata(),
            )
            for item in result.results
        ]
        execution_time = int((time.perf_counter() - started) * 1000)
        self.logging.info("Search returned %d result(s) in %d ms", len(items), execution_time)
        return SearchResponse(
            query=query,
            results=items,
            total_results=result.total_results,
            execution_time=execution_time,
            strategy=result.strategy,
        )

    ##########################################
    ################# TOPICS #################
    ##########################################

    async def _topic_info(self, topic: Topic) -> dict:
        chunk_count = None
        embedding_model = self._embed_client.get_current_model()
        try:
            stats = await self._topic_manager.get_topic_stats(topic.id)
        except Exception as e:
            self.logging.debug("Could not read stats of topic %s: %s", topic.id, e)
            stats = None
        if stats is not None:
            chunk_count = stats.chunk_count
            embedding_model = stats.embedding_model
        return {
            "id": topic.id,
            "name": topic.name,
            "description": topic.description,
            "document_count": topic.document_count,
            "chunk_count": chunk_count,
            "created_at": topic.created_at,
            "updated_at": topic.updated_at,
            "embedding_model": embedding_model,
            "source": topic.source,
        }

    async def list_topics(self) -> TopicListResponse:
        self._require_initialized()
        topics = [TopicInfo(**await self._topic_info(topic)) for topic in self._topic_manager.get_all_topics()]
        return TopicListResponse(topics=topics)

    async def get_topic_details(self, topic_name: str) -> TopicDetailResponse:
        """Describe one topic including its documents.

        Raises:
            NotFoundError: If no topic has that name.
        """
        self._require_initialized()
        topic = self._topic_manager.find_topic_by_name(topic_name)
        if topic is None:
            raise NotFoundError(f"Topic not found: {topic_name}")
        documents = [
            TopicDocumentInfo(id=doc.id, name=doc.name, path=doc.file_path, chunk_count=doc.chunk_count)
            for doc in self._topic_manager.get_topic_documents(topic.id)
        ]
        return TopicDetailResponse(**await self._topic_info(topic), documents=documents)

    ##########################################
    ################# STATUS #################
    ##########################################

    def get_status(self) -> StatusResponse:
        if self._progress.is_paused():
            status = "paused"
        elif self._progress.has_active_indexing():
            status = "indexing"
        else:
            status = "idle"

        watching = False
        watch_folders: list[str] = []
        if self._watcher is not None:
            watching = self._watcher.is_watching_enabled()
            watch_folders = self._watcher.get_configured_watch_folders()

        total_topics = len(self._topic_manager.get_all_topics()) if self._topic_manager.is_initialized() else 0
        return StatusResponse(
            status=status,
            watching=watching,
            watch_folders=watch_folders,
            active_operations=self._progress.get_all_progress(),
            embedding_model=self._embed_client.get_current_model(),
            total_topics=total_topics,
        )

    async def pause_indexing(self) -> StatusResponse:
        await self._progress.pause()
        return self.get_status()

    async def resume_indexing(self) -> StatusResponse:
        await self._progress.resume()
        return self.get_status()
