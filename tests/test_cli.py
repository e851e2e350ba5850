import json

import httpx
import pytest

from cli.lrag import LragClient, build_parser, format_search_markdown, main, resolve_command

SEARCH_RESPONSE = {
    "query": "webpack",
    "results": [
        {"content": "configure the webpack build", "path": "/docs/webpack.md", "score": 0.91, "topic": "Docs", "chunkId": "c0"},
        {"content": "webpack loaders", "path": "/notes/loaders.md", "score": 0.35, "topic": "Notes", "chunkId": "c1"},
    ],
    "totalResults": 2,
    "executionTime": 12,
    "strategy": "hybrid",
}

TOPIC = {
    "id": "topic_1",
    "name": "Docs",
    "description": "handbook",
    "documentCount": 1,
    "chunkCount": 3,
    "createdAt": 1700000000000,
    "updatedAt": 1700000000000,
    "embeddingModel": "nomic-embed-text",
    "source": "local",
}


def _client(handler) -> LragClient:
    return LragClient(host="localhost", port=3875, transport=httpx.MockTransport(handler))


def _api(requests: list[httpx.Request]):
    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        if request.url.path == "/search":
            return httpx.Response(200, json=SEARCH_RESPONSE)
        if request.url.path == "/topics":
            return httpx.Response(200, json={"topics": [TOPIC]})
        if request.url.path.startswith("/topics/"):
            return httpx.Response(404, json={"error": "Topic not found: Missing Topic"})
        return httpx.Response(
            200,
            json={
                "status": "paused" if request.method == "POST" else "idle",
                "watching": True,
                "watchFolders": ["/docs"],
                "activeOperations": [],
                "embeddingModel": "nomic-embed-text",
                "totalTopics": 1,
            },
        )

    return handler


def test_positional_words_form_the_query(monkeypatch, capsys):
    monkeypatch.setenv("NO_COLOR", "1")
    requests: list[httpx.Request] = []

    code = main(["how", "to", "configure", "-n", "3"], client=_client(_api(requests)))

    assert code == 0
    assert requests[0].url.params["q"] == "how to configure"
    assert requests[0].url.params["limit"] == "3"
    out = capsys.readouterr().out
    assert "# Topic: Docs" in out
    assert "# Topic: Notes" in out
    assert "(91%)" in out


def test_compact_output_implies_json(capsys):
    code = main(["--compact", "webpack"], client=_client(_api([])))

    assert code == 0
    payload = json.loads(capsys.readouterr().out)
    assert payload == {
        "query": "webpack",
        "results": [
            {"content": "configure the webpack build", "path": "/docs/webpack.md", "score": 0.91},
            {"content": "webpack loaders", "path": "/notes/loaders.md", "score": 0.35},
        ],
        "totalResults": 2,
    }


def test_list_as_json_prints_the_topic_array(capsys):
    assert main(["--list", "--json"], client=_client(_api([]))) == 0

    assert json.loads(capsys.readouterr().out) == [TOPIC]


def test_topic_name_is_url_encoded_and_errors_are_reported(capsys):
    requests: list[httpx.Request] = []

    code = main(["--topic", "Missing Topic"], client=_client(_api(requests)))

    assert code == 1
    assert requests[0].url.raw_path == b"/topics/Missing%20Topic"
    assert "Topic not found: Missing Topic" in capsys.readouterr().err


def test_pause_posts_and_prints_status(monkeypatch, capsys):
    monkeypatch.setenv("NO_COLOR", "1")
    requests: list[httpx.Request] = []

    assert main(["--pause"], client=_client(_api(requests))) == 0

    assert requests[0].method == "POST"
    assert requests[0].url.path == "/indexing/pause"
    out = capsys.readouterr().out
    assert "Status: Paused" in out
    assert "/docs" in out


def test_unreachable_server_prints_help(capsys):
    def refuse(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    code = main(["--status"], client=_client(refuse))

    assert code == 1
    captured = capsys.readouterr()
    assert "Cannot connect to LocalRAG server at http://localhost:3875" in captured.err
    assert "python -m server.api_server" in captured.out


def test_missing_query_is_an_error(capsys):
    requests: list[httpx.Request] = []

    assert main([], client=_client(_api(requests))) == 1

    assert requests == []
    assert "Search query is required" in capsys.readouterr().err


def test_commands_are_mutually_exclusive():
    with pytest.raises(SystemExit):
        build_parser().parse_args(["--list", "--status"])


def test_resolve_command_defaults_to_search():
    assert resolve_command(build_parser().parse_args(["anything"])) == "search"
    assert resolve_command(build_parser().parse_args(["-t", "Docs"])) == "topic"


def test_host_and_port_come_from_environment(monkeypatch):
    monkeypatch.setenv("LRAG_HOST", "10.0.0.5")
    monkeypatch.setenv("LRAG_PORT", "4000")

    client = LragClient()
    client.close()

    assert client.base_url == "http://10.0.0.5:4000"


def test_empty_results_are_reported(monkeypatch):
    monkeypatch.setenv("NO_COLOR", "1")

    text = format_search_markdown({**SEARCH_RESPONSE, "results": [], "totalResults": 0})

    assert "No results found." in text
