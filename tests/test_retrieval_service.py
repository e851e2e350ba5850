import asyncio

import pytest
import pytest_asyncio

from server.core.RetrievalService import RetrievalService
from shared.errors import InvalidRequestError, ModelSwitchError, NotFoundError, NotInitializedError

from fakes import ten_chunk_text, write_file


@pytest_asyncio.fixture
async def retrieval(helper_config, topic_manager, embed_client, progress, event_bus) -> RetrievalService:
    service = RetrievalService(
        helper_config=helper_config,
        topic_manager=topic_manager,
        embed_client=embed_client,
        progress_tracker=progress,
        event_bus=event_bus,
    )
    await service.start()
    yield service
    await service.stop()


async def _topic_with_docs(topic_manager, env, name: str = "Docs"):
    topic = await topic_manager.create_topic(name, description="handbook")
    await topic_manager.add_documents(
        topic.id,
        [
            write_file(env / name / "webpack.md", "configure the webpack build pipeline"),
            write_file(env / name / "auth.md", "authentication flow with tokens"),
        ],
    )
    return topic


async def test_search_requires_a_query(retrieval):
    with pytest.raises(InvalidRequestError, match="Missing required parameter: q"):
        await retrieval.search("   ")


async def test_search_without_topics(retrieval):
    with pytest.raises(NotFoundError, match="No topics available"):
        await retrieval.search("test", limit=5)


async def test_search_unknown_topic(retrieval, topic_manager, env):
    await _topic_with_docs(topic_manager, env)

    with pytest.raises(NotFoundError, match="Topic not found: Elsewhere"):
        await retrieval.search("test", topic_name="Elsewhere")


async def test_search_before_initialization(helper_config, make_topic_manager, embed_client, progress, event_bus):
    service = RetrievalService(helper_config, make_topic_manager(), embed_client, progress, event_bus)

    with pytest.raises(NotInitializedError):
        await service.search("test")


async def test_search_shapes_results(retrieval, topic_manager, env):
    await _topic_with_docs(topic_manager, env)

    response = await retrieval.search("webpack build", limit=1, topic_name="docs")

    assert response.query == "webpack build"
    assert response.strategy == "hybrid"
    assert response.total_results == 1
    item = response.results[0]
    assert item.topic == "Docs"
    assert item.path == str(env / "Docs" / "webpack.md")
    assert item.content == "configure the webpack build pipeline"
    assert item.chunk_id == item.metadata["chunkId"]
    assert item.metadata["documentName"] == "webpack.md"
    payload = response.to_json_dict()
    assert set(payload) == {"query", "results", "totalResults", "executionTime", "strategy"}
    assert "chunkId" in payload["results"][0]


async def test_non_positive_limit_uses_default(retrieval, topic_manager, env):
    topic = await topic_manager.create_topic("Docs")
    await topic_manager.add_documents(topic.id, [write_file(env / "big.md", ten_chunk_text())])

    response = await retrieval.search("test", limit=0)

    assert len(response.results) == 10


async def test_search_switches_to_the_topic_model(retrieval, topic_manager, embed_client, env):
    topic = await _topic_with_docs(topic_manager, env)
    await retrieval.search("webpack")
    assert retrieval.cached_topic_ids() == [topic.id]
    embed_client.embed_model = "mxbai-embed-large"
    embed_client.available_models = ["mxbai-embed-large", "nomic-embed-text"]

    response = await retrieval.search("webpack")

    assert response.results
    assert embed_client.get_current_model() == "nomic-embed-text"


async def test_failed_model_switch_names_both_models(retrieval, topic_manager, embed_client, env):
    await _topic_with_docs(topic_manager, env)
    embed_client.embed_model = "mxbai-embed-large"
    embed_client.available_models = ["mxbai-embed-large"]

    with pytest.raises(ModelSwitchError) as excinfo:
        await retrieval.search("webpack")

    assert "nomic-embed-text" in excinfo.value.message
    assert "mxbai-embed-large" in excinfo.value.message


async def test_concurrent_searches_embed_with_each_topics_model(retrieval, topic_manager, embed_client, env):
    embed_client.available_models = ["m1", "m2"]
    embed_client.embed_model = "m1"
    await _topic_with_docs(topic_manager, env, name="One")
    embed_client.embed_model = "m2"
    await _topic_with_docs(topic_manager, env, name="Two")
    embed_client.embedded.clear()

    first, second = await asyncio.gather(
        retrieval.search("query-one", topic_name="One"),
        retrieval.search("query-two", topic_name="Two"),
    )

    assert first.results and second.results
    assert sorted(embed_client.embedded) == [("query-one", "m1"), ("query-two", "m2")]


async def test_topic_events_drop_cached_agents(retrieval, topic_manager, env):
    docs = await _topic_with_docs(topic_manager, env)
    notes = await _topic_with_docs(topic_manager, env, name="Notes")
    await retrieval.search("webpack", topic_name="Docs")
    await retrieval.search("webpack", topic_name="Notes")

    await topic_manager.delete_topic(docs.id)
    assert retrieval.cached_topic_ids() == [notes.id]

    await topic_manager.reinitialize_with_new_model()
    assert retrieval.cached_topic_ids() == []


async def test_topic_listing_and_details(retrieval, topic_manager, env):
    topic = await _topic_with_docs(topic_manager, env)
    await topic_manager.create_topic("Empty")

    listing = (await retrieval.list_topics()).to_json_dict()["topics"]
    assert [t["name"] for t in listing] == ["Docs", "Empty"]
    assert listing[0]["chunkCount"] == 2
    assert listing[0]["documentCount"] == 2
    assert listing[0]["embeddingModel"] == "nomic-embed-text"
    assert listing[1]["chunkCount"] == 0

    details = await retrieval.get_topic_details("DOCS")
    assert details.id == topic.id
    assert sorted(doc.name for doc in details.documents) == ["auth.md", "webpack.md"]
    assert all(doc.chunk_count == 1 for doc in details.documents)

    with pytest.raises(NotFoundError):
        await retrieval.get_topic_details("missing")


async def test_status_reflects_pause_and_indexing(retrieval, progress, topic_manager):
    status = retrieval.get_status()
    assert status.status == "idle"
    assert status.watching is False
    assert status.total_topics == 0
    assert status.embedding_model == "nomic-embed-text"

    await progress.start_tracking("t1", "Docs", total_files=2)
    assert retrieval.get_status().status == "indexing"
    assert retrieval.get_status().active_operations[0].topic_name == "Docs"

    paused = await retrieval.pause_indexing()
    assert paused.status == "paused"
    resumed = await retrieval.resume_indexing()
    assert resumed.status == "indexing"
