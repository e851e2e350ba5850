import json

import httpx
import pytest

from shared.clients.embed.EmbedClientManager import EmbedClientManager
from shared.clients.embed.ollama.EmbedClientOllama import EmbedClientOllama


def _ollama_handler(requests: list[httpx.Request], models: list[str]):
    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        if request.url.path == "/api/tags":
            return httpx.Response(200, json={"models": [{"name": name} for name in models]})
        if request.url.path == "/api/embed":
            body = json.loads(request.content)
            return httpx.Response(200, json={"model": body["model"], "embeddings": [[float(len(text)), 1.0] for text in body["input"]]})
        return httpx.Response(200, text="Ollama is running")

    return handler


@pytest.fixture
def ollama_env(env, monkeypatch):
    monkeypatch.setenv("EMBED_OLLAMA_BASE_URL", "http://ollama.test:11434")
    monkeypatch.setenv("EMBED_BATCH_SIZE", "2")
    monkeypatch.delenv("EMBED_OLLAMA_API_KEY", raising=False)
    return env


async def _booted_client(helper_config, requests, models) -> EmbedClientOllama:
    client = EmbedClientOllama(helper_config=helper_config)
    await client.boot(transport=httpx.MockTransport(_ollama_handler(requests, models)))
    return client


async def test_embed_batches_requests(ollama_env, helper_config):
    requests: list[httpx.Request] = []
    client = await _booted_client(helper_config, requests, ["nomic-embed-text:latest"])

    vectors = await client.do_embed(["a", "bb", "ccc"])
    await client.close()

    assert vectors == [[1.0, 1.0], [2.0, 1.0], [3.0, 1.0]]
    embed_requests = [r for r in requests if r.url.path == "/api/embed"]
    assert len(embed_requests) == 2
    assert json.loads(embed_requests[0].content) == {"model": "nomic-embed-text", "input": ["a", "bb"]}
    assert str(embed_requests[0].url).startswith("http://ollama.test:11434/")


async def test_embed_with_pinned_model_ignores_active_model(ollama_env, helper_config):
    requests: list[httpx.Request] = []
    client = await _booted_client(helper_config, requests, ["nomic-embed-text", "all-minilm"])

    await client.do_embed("a", model="all-minilm")
    await client.do_switch_model("all-minilm")
    await client.do_embed("b", model="nomic-embed-text")
    await client.close()

    bodies = [json.loads(r.content) for r in requests if r.url.path == "/api/embed"]
    assert bodies == [{"model": "all-minilm", "input": ["a"]}, {"model": "nomic-embed-text", "input": ["b"]}]
    assert client.get_current_model() == "all-minilm"


async def test_model_availability_ignores_latest_tag(ollama_env, helper_config):
    client = await _booted_client(helper_config, [], ["nomic-embed-text:latest", "mxbai-embed-large:335m"])

    assert await client.is_model_available("nomic-embed-text")
    assert await client.is_model_available("NOMIC-EMBED-TEXT:latest")
    assert not await client.is_model_available("mxbai-embed-large")
    assert not await client.is_model_available("")
    await client.close()


async def test_switch_model_requires_availability(ollama_env, helper_config):
    client = await _booted_client(helper_config, [], ["nomic-embed-text", "all-minilm"])

    await client.do_switch_model("all-minilm")
    assert client.get_current_model() == "all-minilm"

    with pytest.raises(ValueError):
        await client.do_switch_model("unknown-model")
    assert client.get_current_model() == "all-minilm"
    await client.close()


async def test_unreachable_backend_means_unavailable(ollama_env, helper_config):
    def refuse(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    client = EmbedClientOllama(helper_config=helper_config)
    await client.boot(transport=httpx.MockTransport(refuse))

    assert not await client.is_model_available("nomic-embed-text")
    await client.close()


async def test_failed_embedding_raises(ollama_env, helper_config):
    client = EmbedClientOllama(helper_config=helper_config)
    await client.boot(transport=httpx.MockTransport(lambda request: httpx.Response(500, text="model not loaded")))

    with pytest.raises(Exception, match="status 500"):
        await client.do_embed("text")
    await client.close()


async def test_api_key_is_sent_as_bearer_token(ollama_env, helper_config, monkeypatch):
    monkeypatch.setenv("EMBED_OLLAMA_API_KEY", "secret")
    requests: list[httpx.Request] = []
    client = await _booted_client(helper_config, requests, [])

    response = await client.do_healthcheck()
    await client.close()

    assert response.is_success
    assert requests[0].headers["Authorization"] == "Bearer secret"


async def test_requests_before_boot_fail(ollama_env, helper_config):
    client = EmbedClientOllama(helper_config=helper_config)

    with pytest.raises(Exception, match="boot"):
        await client.do_embed("text")


def test_manager_picks_engine_from_configuration(ollama_env, helper_config, monkeypatch):
    monkeypatch.setenv("EMBED_ENGINE", "ollama")
    assert isinstance(EmbedClientManager(helper_config).get_client(), EmbedClientOllama)

    monkeypatch.setenv("EMBED_ENGINE", "nonexistent")
    with pytest.raises(ValueError):
        EmbedClientManager(helper_config)
