"""Chat routes: streamed retrieval-augmented answers and per-user history."""

import logging
from functools import partial

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import StreamingResponse
from pydantic import ValidationError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from portal.config import Settings, get_settings
from portal.dependencies import get_current_user, get_db, get_rag, get_session_factory
from portal.metrics import chat_requests_total
from portal.models.user import User
from portal.schemas.chat import ChatHistoryItem, ChatRequest
from portal.services.chat_service import ChatStream, list_recent_history, record_chat_history
from portal.services.rag_service import RAGClient, RAGServiceError

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/chat", tags=["chat"])


async def _parse_chat_request(request: Request) -> ChatRequest:
    try:
        payload = await request.json()
        body = ChatRequest.model_validate(payload)
    except (ValueError, ValidationError) as e:
        raise HTTPException(status_code=400, detail="Request body must be JSON with a 'message' string") from e
    if not body.message.strip():
        raise HTTPException(status_code=400, detail="Message must not be empty")
    return body


def _client_media_type(upstream_content_type: str) -> str:
    """Pass plain-text framing through; everything else is served as SSE."""
    if upstream_content_type.startswith("text/plain"):
        return "text/plain"
    return "text/event-stream"


@router.post("")
async def chat(
    request: Request,
    user: User = Depends(get_current_user),
    rag: RAGClient = Depends(get_rag),
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
):
    """Stream an AI search answer; the full answer is saved to history once the stream ends."""
    # Body is read only after the session check, so unauthenticated calls get 401 first
    body = await _parse_chat_request(request)

    try:
        upstream = await rag.open_stream(body.message)
    except RAGServiceError as e:
        chat_requests_total.labels(status="upstream_error").inc()
        raise HTTPException(status_code=500, detail="AI service error") from e

    stream = ChatStream(
        upstream,
        on_complete=partial(record_chat_history, session_factory, user.id, body.message),
    )
    stream.start()
    chat_requests_total.labels(status="streamed").inc()

    return StreamingResponse(
        stream.iter_client(),
        media_type=_client_media_type(upstream.headers.get("content-type", "")),
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
        },
    )


@router.get("/history", response_model=list[ChatHistoryItem])
async def chat_history(
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    """The caller's most recent conversations, oldest first."""
    entries = await list_recent_history(db, user.id, limit=settings.chat_history_limit)
    return [ChatHistoryItem.model_validate(e) for e in entries]
