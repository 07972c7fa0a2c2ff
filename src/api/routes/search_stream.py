"""Search streaming endpoint: one orchestration run per request, as server-sent events."""

import structlog
from fastapi import APIRouter, Request
from fastapi.responses import StreamingResponse

from src.api.models.search import ModeInfo, SearchStreamRequest
from src.workflow.cancellation import CancellationToken

router = APIRouter(prefix="/api/search", tags=["search"])
logger = structlog.get_logger(__name__)


@router.post("/stream")
async def stream_search(request: SearchStreamRequest, app_request: Request):
    search_request = request.to_search_request()
    orchestrator = app_request.app.state.orchestrator_factory.create(search_request.mode)
    token = CancellationToken()

    async def event_source():
        events = orchestrator.run(search_request, token)
        try:
            async for event in events:
                if await app_request.is_disconnected():
                    logger.info("Client disconnected, cancelling search")
                    token.cancel("client disconnected")
                    break
                yield event.to_sse()
        finally:
            await events.aclose()

    return StreamingResponse(
        event_source(),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Search-Mode": search_request.mode.value,
        },
    )


@router.get("/modes", response_model=list[ModeInfo])
async def list_modes(app_request: Request) -> list[ModeInfo]:
    return [ModeInfo(**mode) for mode in app_request.app.state.orchestrator_factory.get_available_modes()]
