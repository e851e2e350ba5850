import pytest
import pytest_asyncio

from server.core.QueryAgent import QueryAgent, keyword_score
from shared.models.search import ChunkRecord

from fakes import FakeVectorStore, fake_vector


def _chunk(index: int, text: str) -> ChunkRecord:
    return ChunkRecord(
        id=f"c{index}",
        text=text,
        document_name=f"doc{index}.md",
        source=f"/docs/doc{index}.md",
        topic_id="t1",
        chunk_index=0,
        vector=fake_vector(text),
    )


@pytest_asyncio.fixture
async def store(tmp_path) -> FakeVectorStore:
    store = FakeVectorStore(db_path=str(tmp_path / "vectors"), table_name="t1")
    await store.add_chunks(
        [
            _chunk(0, "configure the webpack build pipeline"),
            _chunk(1, "authentication flow with tokens"),
            _chunk(2, "webpack loaders and plugins"),
            _chunk(3, "unrelated gardening notes"),
        ]
    )
    return store


def test_keyword_score_is_fraction_of_query_terms():
    assert keyword_score(["webpack", "build"], "The Webpack build.") == 1.0
    assert keyword_score(["webpack", "tokens"], "webpack loaders") == 0.5
    assert keyword_score([], "anything") == 0.0


def test_unknown_strategy_is_rejected(embed_client, tmp_path):
    with pytest.raises(ValueError):
        QueryAgent(store=FakeVectorStore(str(tmp_path), "t1"), embed_client=embed_client, strategy="magic")


async def test_keyword_strategy_only_returns_matching_chunks(store, embed_client):
    agent = QueryAgent(store=store, embed_client=embed_client, strategy="keyword")

    result = await agent.query("webpack build", limit=10)

    assert result.strategy == "keyword"
    assert [item.chunk.id for item in result.results] == ["c0", "c2"]
    assert result.results[0].score == 1.0
    assert result.total_results == 2
    assert embed_client.embed_calls == 0


async def test_vector_strategy_ranks_by_similarity(store, embed_client):
    agent = QueryAgent(store=store, embed_client=embed_client, strategy="vector")

    result = await agent.query("authentication flow with tokens", limit=2)

    assert len(result.results) == 2
    assert result.results[0].chunk.id == "c1"
    assert result.results[0].score == pytest.approx(1.0)


async def test_hybrid_strategy_blends_scores(store, embed_client):
    agent = QueryAgent(store=store, embed_client=embed_client, strategy="hybrid", alpha=0.7)

    result = await agent.query("webpack loaders and plugins", limit=1)

    assert result.strategy == "hybrid"
    top = result.results[0]
    assert top.chunk.id == "c2"
    assert top.score == pytest.approx(0.7 * 1.0 + 0.3 * 1.0)


async def test_limit_is_respected(store, embed_client):
    agent = QueryAgent(store=store, embed_client=embed_client)

    result = await agent.query("webpack", limit=1)

    assert len(result.results) == 1
