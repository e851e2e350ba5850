from fastapi import APIRouter, Request

from server.models.responses import SearchResponse

router = APIRouter(prefix="/search", tags=["search"])


def _parse_limit(raw: str | None) -> int | None:
    try:
        return int(raw) if raw else None
    except ValueError:
        return None


@router.get("")
async def search(request: Request, q: str | None = None, limit: str | None = None, topic: str | None = None) -> SearchResponse:
    """Run a retrieval query against one topic.

    Args:
        request (Request): FastAPI request (provides app.state.context).
        q (str | None): The query text, required.
        limit (str | None): Maximum number of results. Missing or unparsable values use the default.
        topic (str | None): Topic name (case-insensitive). Defaults to the first topic.

    Returns:
        SearchResponse: Ranked chunks with scores and source paths.
    """
    retrieval = request.app.state.context.retrieval
    return await retrieval.search(q, limit=_parse_limit(limit), topic_name=topic)
