from fastapi import APIRouter, Request

from server.models.responses import TopicDetailResponse, TopicListResponse

router = APIRouter(prefix="/topics", tags=["topics"])


@router.get("")
async def list_topics(request: Request) -> TopicListResponse:
    """List local and common topics with their chunk counts."""
    return await request.app.state.context.retrieval.list_topics()


@router.get("/{name}")
async def get_topic(request: Request, name: str) -> TopicDetailResponse:
    """Describe a single topic (case-insensitive name) including its documents."""
    return await request.app.state.context.retrieval.get_topic_details(name)
