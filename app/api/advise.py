# =============================================================================
# Advise API — Streaming Multi-Expert Answer Endpoint
# =============================================================================
#
# POST /advise (and POST /openai, the path the original web client posts to)
#
# FLOW:
#   1. Validate the body; blank/missing fields → 400 JSON, no stream opened
#   2. Create the request's CancellationToken and SessionChannel
#   3. Start the orchestrator run as a background task
#   4. Return an EventSourceResponse over channel.frames()
#
# EventSourceResponse sends ping comments every heartbeat_interval_seconds
# and tears down channel.frames() on client disconnect, which cancels the
# run. The channel's opening comment is the first body byte, so headers are
# flushed right away.
# =============================================================================

from __future__ import annotations

import asyncio
import logging

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from sse_starlette.sse import EventSourceResponse

from app.agents.orchestrator import Orchestrator
from app.api.deps import get_orchestrator
from app.config import Settings
from app.models.requests import AdviseRequest
from app.models.responses import ErrorResponse
from app.services.channel import CancellationToken, SessionChannel

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Advice"])

# EventSourceResponse adds Connection and X-Accel-Buffering itself
SSE_HEADERS = {
    "Cache-Control": "no-cache, no-transform",
    "Content-Encoding": "identity",
}

# Strong references to in-flight runs so they are not garbage collected
_running: set[asyncio.Task] = set()


# ---------------------------------------------------------------------------
# POST /advise — Ask a question, stream the answer
# ---------------------------------------------------------------------------


@router.post(
    "/advise",
    response_class=EventSourceResponse,
    responses={
        200: {"content": {"text/event-stream": {}}},
        400: {"model": ErrorResponse},
    },
    summary="Ask a financial question and stream the answer",
    description=(
        "Classifies the question, runs the relevant financial experts over "
        "the account's snapshot and streams a synthesised answer as "
        "Server-Sent Events."
    ),
)
@router.post("/openai", include_in_schema=False)
async def advise_endpoint(
    http_request: Request,
    request: AdviseRequest,
    orchestrator: Orchestrator = Depends(get_orchestrator),
):
    """
    Open the event stream for one advisory run.

    Error handling:
    - Missing/blank question or accountId → 400 before streaming
    - Everything after that is reported inside the stream as an `error`
      event (see Orchestrator.run)
    """
    missing = request.missing_fields()
    if missing:
        logger.info("Rejected advise request: missing %s", missing)
        return JSONResponse(
            status_code=400,
            content=ErrorResponse(
                error=f"Missing {' or '.join(missing)}."
            ).model_dump(),
        )

    settings: Settings = http_request.app.state.settings
    logger.info(
        "Advise request: account=%s, question='%s'",
        request.account_id,
        request.question[:80],
    )

    channel = SessionChannel(
        CancellationToken(),
        buffer_size=settings.channel_buffer_size,
    )

    task = asyncio.create_task(
        orchestrator.run(
            request.question.strip(),
            request.account_id.strip(),
            channel,
        )
    )
    _running.add(task)
    task.add_done_callback(_running.discard)

    return EventSourceResponse(
        channel.frames(),
        ping=settings.heartbeat_interval_seconds,
        headers=SSE_HEADERS,
    )
