"""HTTP API: streaming chat, abort, and history queries."""

from __future__ import annotations

import logging
from typing import AsyncIterator

from fastapi import APIRouter, Depends, FastAPI, Query, Request
from fastapi.responses import JSONResponse, StreamingResponse

from . import __version__
from .context import AppContext
from .errors import AgentroomError, ErrorKind
from .lifecycle import RequestLifecycleManager
from .models import ChatTurnRequest, ReconstructedConversation

logger = logging.getLogger(__name__)

STREAM_HEADERS = {
    "Cache-Control": "no-cache, no-store, must-revalidate",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}

STATUS_BY_KIND = {
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.VALIDATION: 400,
    ErrorKind.ADAPTER: 502,
}

router = APIRouter()


def get_context(request: Request) -> AppContext:
    return request.app.state.context


async def ndjson_stream(
    lifecycle: RequestLifecycleManager, chat_request: ChatTurnRequest
) -> AsyncIterator[str]:
    async for envelope in lifecycle.stream(chat_request):
        yield envelope.to_ndjson()


@router.post("/chat")
async def chat(chat_request: ChatTurnRequest, ctx: AppContext = Depends(get_context)):
    if ctx.debug:
        logger.debug("Received chat request: %s", chat_request.model_dump_json(by_alias=True))
    return StreamingResponse(
        ndjson_stream(ctx.lifecycle, chat_request),
        media_type="application/x-ndjson",
        headers=STREAM_HEADERS,
    )


@router.post("/abort/{request_id}")
async def abort(request_id: str, ctx: AppContext = Depends(get_context)):
    aborted = ctx.lifecycle.abort(request_id)
    return {"success": True, "aborted": aborted}


@router.get("/agents")
async def list_agents(ctx: AppContext = Depends(get_context)):
    return {"agents": ctx.registry.all_agents()}


@router.get("/projects")
async def list_projects(ctx: AppContext = Depends(get_context)):
    return {"projects": await ctx.history.list_projects()}


@router.get("/projects/{encoded_name}/histories")
async def list_histories(
    encoded_name: str,
    agent_id: str | None = Query(default=None, alias="agentId"),
    ctx: AppContext = Depends(get_context),
):
    conversations = await ctx.history.list_summaries(encoded_name, agent_id=agent_id)
    return {"conversations": conversations}


@router.get(
    "/projects/{encoded_name}/histories/{session_id}",
    response_model=ReconstructedConversation,
)
async def get_history(encoded_name: str, session_id: str, ctx: AppContext = Depends(get_context)):
    return await ctx.history.get_conversation(encoded_name, session_id)


async def handle_agentroom_error(request: Request, exc: AgentroomError) -> JSONResponse:
    status = STATUS_BY_KIND.get(exc.kind, 500)
    if status >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse({"error": exc.message, "kind": exc.kind.value}, status_code=status)


def create_app(context: AppContext) -> FastAPI:
    app = FastAPI(
        title="agentroom",
        version=__version__,
        description="Multi-agent chat orchestration and conversation history API",
    )
    app.state.context = context
    app.add_exception_handler(AgentroomError, handle_agentroom_error)
    app.include_router(router)
    return app
