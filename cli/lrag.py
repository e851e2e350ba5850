"""lrag - command line client for the localrag retrieval API.

Usage:
    python -m cli.lrag "your search query"
    python -m cli.lrag --list
    python -m cli.lrag --topic Default
    python -m cli.lrag --status
"""

import argparse
import json
import os
import sys
from datetime import datetime
from urllib.parse import quote

import httpx

from shared.errors import LocalRagError, UnreachableError
from shared.helper.constants import APP_DISPLAY_NAME, DEFAULT_HOST, DEFAULT_PORT, DEFAULT_SEARCH_LIMIT

VERSION = "1.0.0"
REQUEST_TIMEOUT = 30.0
CONTENT_PREVIEW_LENGTH = 500

_ANSI = {
    "reset": "\033[0m",
    "bold": "\033[1m",
    "dim": "\033[2m",
    "red": "\033[31m",
    "green": "\033[32m",
    "yellow": "\033[33m",
    "blue": "\033[34m",
    "cyan": "\033[36m",
}


def _colors_enabled() -> bool:
    return sys.stdout.isatty() and not os.getenv("NO_COLOR")


def _c(name: str) -> str:
    return _ANSI[name] if _colors_enabled() else ""


def _format_ms(timestamp_ms: int) -> str:
    return datetime.fromtimestamp(timestamp_ms / 1000).strftime("%Y-%m-%d %H:%M:%S")


##########################################
################ CLIENT ##################
##########################################


class LragClient:
    """Thin synchronous client for the local HTTP API."""

    def __init__(self, host: str | None = None, port: int | None = None, transport: httpx.BaseTransport | None = None):
        host = host or os.getenv("LRAG_HOST", DEFAULT_HOST)
        port = port or int(os.getenv("LRAG_PORT", DEFAULT_PORT))
        self.base_url = f"http://{host}:{port}"
        self._client = httpx.Client(base_url=self.base_url, timeout=REQUEST_TIMEOUT, transport=transport)

    def close(self) -> None:
        self._client.close()

    def request(self, method: str, path: str, params: dict | None = None) -> dict:
        """Send a request and return the decoded JSON body.

        Raises:
            UnreachableError: If nothing listens on the configured host and port.
            LocalRagError: If the server answers with an error status or invalid JSON.
        """
        try:
            response = self._client.request(method, path, params=params)
        except httpx.ConnectError as e:
            raise UnreachableError(f"Cannot connect to {APP_DISPLAY_NAME} server at {self.base_url}") from e
        except httpx.TimeoutException as e:
            raise LocalRagError("Request timeout") from e

        try:
            body = response.json()
        except ValueError as e:
            raise LocalRagError(f"Invalid JSON response: {response.text}") from e
        if response.status_code >= 400:
            error = LocalRagError(body.get("error") or f"HTTP {response.status_code}")
            error.status_code = response.status_code
            raise error
        return body

    def search(self, query: str, limit: int) -> dict:
        return self.request("GET", "/search", params={"q": query, "limit": limit})

    def list_topics(self) -> dict:
        return self.request("GET", "/topics")

    def get_topic(self, name: str) -> dict:
        return self.request("GET", f"/topics/{quote(name, safe='')}")

    def get_status(self) -> dict:
        return self.request("GET", "/status")

    def pause(self) -> dict:
        return self.request("POST", "/indexing/pause")

    def resume(self) -> dict:
        return self.request("POST", "/indexing/resume")


##########################################
############### FORMATTING ###############
##########################################


def format_search_markdown(response: dict) -> str:
    lines = [
        f"{_c('bold')}Search Results{_c('reset')} for \"{_c('cyan')}{response['query']}{_c('reset')}\"",
        f"{_c('dim')}Found {response['totalResults']} results in {response['executionTime']}ms ({response['strategy']}){_c('reset')}\n",
    ]
    if not response["results"]:
        lines.append(f"{_c('yellow')}No results found.{_c('reset')}")
        return "\n".join(lines)

    by_topic: dict[str, list[dict]] = {}
    for result in response["results"]:
        by_topic.setdefault(result["topic"], []).append(result)

    for topic_name, results in by_topic.items():
        lines.append(f"{_c('bold')}# Topic: {topic_name}{_c('reset')}\n")
        for index, result in enumerate(results, start=1):
            percent = round(result["score"] * 100)
            score_color = _c("green") if percent >= 70 else _c("yellow") if percent >= 40 else _c("red")
            lines.append(f"{_c('bold')}{index}.{_c('reset')} {_c('blue')}{result['path']}{_c('reset')} {score_color}({percent}%){_c('reset')}\n")
            content = result["content"].strip()
            if len(content) > CONTENT_PREVIEW_LENGTH:
                content = content[:CONTENT_PREVIEW_LENGTH] + "..."
            lines.extend(["```", content, "```\n"])
    return "\n".join(lines)


def format_topics_markdown(topics: list[dict]) -> str:
    lines = [f"{_c('bold')}{APP_DISPLAY_NAME} Topics{_c('reset')} ({len(topics)} total)\n"]
    if not topics:
        lines.append(f"{_c('yellow')}No topics found.{_c('reset')}")
        return "\n".join(lines)
    for topic in topics:
        chunk_count = topic.get("chunkCount")
        lines.append(f"{_c('cyan')}*{_c('reset')} {_c('bold')}{topic['name']}{_c('reset')}")
        if topic.get("description"):
            lines.append(f"  {_c('dim')}{topic['description']}{_c('reset')}")
        lines.append(f"  {_c('dim')}Documents: {topic['documentCount']} | Chunks: {chunk_count if chunk_count is not None else '?'}{_c('reset')}")
        lines.append(f"  {_c('dim')}Updated: {_format_ms(topic['updatedAt'])}{_c('reset')}")
        lines.append("")
    return "\n".join(lines)


def format_topic_list_markdown(response: dict) -> str:
    return format_topics_markdown(response["topics"])


def format_topic_markdown(topic: dict) -> str:
    chunk_count = topic.get("chunkCount")
    lines = [f"{_c('bold')}Topic: {_c('cyan')}{topic['name']}{_c('reset')}\n"]
    if topic.get("description"):
        lines.append(f"{topic['description']}\n")
    lines.extend(
        [
            f"{_c('dim')}ID:{_c('reset')} {topic['id']}",
            f"{_c('dim')}Documents:{_c('reset')} {topic['documentCount']}",
            f"{_c('dim')}Chunks:{_c('reset')} {chunk_count if chunk_count is not None else 'Unknown'}",
            f"{_c('dim')}Embedding Model:{_c('reset')} {topic.get('embeddingModel') or 'Unknown'}",
            f"{_c('dim')}Created:{_c('reset')} {_format_ms(topic['createdAt'])}",
            f"{_c('dim')}Updated:{_c('reset')} {_format_ms(topic['updatedAt'])}",
        ]
    )
    documents = topic.get("documents") or []
    if documents:
        lines.append(f"\n{_c('bold')}Documents:{_c('reset')}")
        for doc in documents:
            lines.append(f"  {_c('blue')}{doc['path']}{_c('reset')} {_c('dim')}({doc['chunkCount']} chunks){_c('reset')}")
    return "\n".join(lines)


def format_status_markdown(status: dict) -> str:
    lines = [
        f"{_c('bold')}{APP_DISPLAY_NAME} Status{_c('reset')}\n",
        f"{_c('bold')}Status:{_c('reset')} {status['status'].capitalize()}",
        f"{_c('dim')}Topics:{_c('reset')} {status['totalTopics']}",
        f"{_c('dim')}Embedding Model:{_c('reset')} {status['embeddingModel']}",
        f"\n{_c('bold')}File Watching:{_c('reset')} {'Enabled' if status['watching'] else 'Disabled'}",
    ]
    if status["watchFolders"]:
        lines.append(f"{_c('dim')}Watch Folders:{_c('reset')}")
        lines.extend(f"  {_c('blue')}{folder}{_c('reset')}" for folder in status["watchFolders"])
    if status["activeOperations"]:
        lines.append(f"\n{_c('bold')}Active Operations:{_c('reset')}")
        for op in status["activeOperations"]:
            lines.append(
                f"  {_c('yellow')}>{_c('reset')} {op['topicName']}: {op['stage']} "
                f"({op['processedFiles']}/{op['totalFiles']}, {op['percentage']}%)"
            )
    return "\n".join(lines)


def compact_payload(command: str, response: dict) -> dict | list:
    """Reduce a response to the fields printed by --compact."""
    if command == "search":
        return {
            "query": response["query"],
            "results": [{"content": r["content"], "path": r["path"], "score": r["score"]} for r in response["results"]],
            "totalResults": response["totalResults"],
        }
    if command == "list":
        return [{"name": t["name"], "documentCount": t["documentCount"], "chunkCount": t.get("chunkCount")} for t in response["topics"]]
    if command == "topic":
        return {
            "name": response["name"],
            "documentCount": response["documentCount"],
            "chunkCount": response.get("chunkCount"),
            "documents": [d["path"] for d in response.get("documents") or []],
        }
    return {
        "status": response["status"],
        "watching": response["watching"],
        "totalTopics": response["totalTopics"],
        "activeOperations": len(response["activeOperations"]),
    }


##########################################
################## CLI ###################
##########################################


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="lrag",
        description=f"Search topics indexed by the {APP_DISPLAY_NAME} core over its local HTTP API.",
    )
    parser.add_argument("query", nargs="*", help="search query (default command)")
    commands = parser.add_mutually_exclusive_group()
    commands.add_argument("-s", "--search", metavar="QUERY", help="search indexed documents")
    commands.add_argument("-l", "--list", action="store_true", help="list all topics")
    commands.add_argument("-t", "--topic", metavar="NAME", help="show details for a specific topic")
    commands.add_argument("--status", action="store_true", help="show indexing and watch status")
    commands.add_argument("--pause", action="store_true", help="pause indexing")
    commands.add_argument("--resume", action="store_true", help="resume indexing")
    parser.add_argument("-j", "--json", action="store_true", help="output results as JSON")
    parser.add_argument("-c", "--compact", action="store_true", help="output compact JSON (implies --json)")
    parser.add_argument("-n", "--limit", type=int, default=DEFAULT_SEARCH_LIMIT, help=f"maximum results (default: {DEFAULT_SEARCH_LIMIT})")
    parser.add_argument("-v", "--version", action="version", version=f"lrag version {VERSION}")
    return parser


def resolve_command(args: argparse.Namespace) -> str:
    if args.list:
        return "list"
    if args.topic is not None:
        return "topic"
    if args.status:
        return "status"
    if args.pause:
        return "pause"
    if args.resume:
        return "resume"
    return "search"


def run(args: argparse.Namespace, client: LragClient) -> str:
    """Execute one command and return the text to print.

    Raises:
        LocalRagError: On usage errors and server-side errors.
    """
    command = resolve_command(args)
    if args.compact:
        args.json = True

    if command == "search":
        query = args.search or " ".join(args.query).strip()
        if not query:
            raise LocalRagError('Search query is required. Usage: lrag "your search query"')
        limit = args.limit if args.limit and args.limit > 0 else DEFAULT_SEARCH_LIMIT
        response = client.search(query, limit)
        formatter = format_search_markdown
    elif command == "list":
        response = client.list_topics()
        formatter = format_topic_list_markdown
    elif command == "topic":
        response = client.get_topic(args.topic)
        formatter = format_topic_markdown
    else:
        if command == "pause":
            response = client.pause()
        elif command == "resume":
            response = client.resume()
        else:
            response = client.get_status()
        command = "status"
        formatter = format_status_markdown

    if not args.json:
        return formatter(response)
    if args.compact:
        return json.dumps(compact_payload(command, response), indent=2)
    return json.dumps(response["topics"] if command == "list" else response, indent=2)


def print_connection_help(error: UnreachableError) -> None:
    print(f"\n{_c('red')}x {error.message}{_c('reset')}\n", file=sys.stderr)
    print(f"{_c('yellow')}lrag requires the {APP_DISPLAY_NAME} API server to be running.{_c('reset')}\n")
    print(f"{_c('bold')}To start the server:{_c('reset')}")
    print("  python -m server.api_server")
    print(f"\n{_c('dim')}It listens on {DEFAULT_HOST}:{DEFAULT_PORT} unless APP_HOST / APP_PORT say otherwise.{_c('reset')}\n")


def main(argv: list[str] | None = None, client: LragClient | None = None) -> int:
    args = build_parser().parse_args(argv)
    client = client or LragClient()
    try:
        print(run(args, client))
        return 0
    except UnreachableError as e:
        print_connection_help(e)
        return 1
    except LocalRagError as e:
        print(f"{_c('red')}Error: {e.message}{_c('reset')}", file=sys.stderr)
        return 1
    finally:
        client.close()


if __name__ == "__main__":
    sys.exit(main())
