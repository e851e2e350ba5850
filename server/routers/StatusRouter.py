from fastapi import APIRouter, Request

from server.models.responses import StatusResponse

router = APIRouter(tags=["status"])


@router.get("/status")
async def status(request: Request) -> StatusResponse:
    """Report whether the core is idle, indexing or paused, plus watch state."""
    return request.app.state.context.retrieval.get_status()


@router.post("/indexing/pause")
async def pause_indexing(request: Request) -> StatusResponse:
    return await request.app.state.context.retrieval.pause_indexing()


@router.post("/indexing/resume")
async def resume_indexing(request: Request) -> StatusResponse:
    return await request.app.state.context.retrieval.resume_indexing()
