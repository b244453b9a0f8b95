"""Chat streaming: tee the AI search stream to the caller and to chat history."""

import asyncio
import logging
from typing import AsyncIterator, Awaitable, Callable, Coroutine

import httpx
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from portal.metrics import chat_history_writes_total
from portal.models.chat_history import ChatHistory
from portal.services.sse import SSEDecoder, SSEEvent, extract_response_text

logger = logging.getLogger(__name__)

_EOF = object()

# Strong references to detached tasks so they are not garbage collected mid-flight
_background_tasks: set[asyncio.Task] = set()


def spawn_background(coro: Coroutine, name: str | None = None) -> asyncio.Task:
    """Run ``coro`` detached from the request that started it."""
    task = asyncio.create_task(coro, name=name)
    _background_tasks.add(task)
    task.add_done_callback(_background_tasks.discard)
    return task


async def drain_background_tasks(timeout: float | None = None) -> None:
    """Wait for detached tasks to finish. Called at shutdown."""
    pending = {t for t in _background_tasks if not t.done()}
    if not pending:
        return
    _, still_pending = await asyncio.wait(pending, timeout=timeout)
    if still_pending:
        logger.warning("%d background task(s) still running at shutdown", len(still_pending))


class ChatStream:
    """Fan one upstream byte stream out to two independent readers.

    A pump task reads the upstream once and pushes every chunk, unmodified,
    into two unbounded queues. The client reader and the history recorder
    consume at their own pace, and neither stops if the client disconnects.
    """

    def __init__(
        self,
        upstream: httpx.Response,
        on_complete: Callable[[str], Awaitable[None]],
    ) -> None:
        self._upstream = upstream
        self._on_complete = on_complete
        self._client_queue: asyncio.Queue = asyncio.Queue()
        self._recorder_queue: asyncio.Queue = asyncio.Queue()

    def start(self) -> None:
        spawn_background(self._pump(), name="chat-stream-pump")
        spawn_background(self._record(), name="chat-history-recorder")

    async def iter_client(self) -> AsyncIterator[bytes]:
        while True:
            chunk = await self._client_queue.get()
            if chunk is _EOF:
                return
            yield chunk

    async def _pump(self) -> None:
        try:
            async for chunk in self._upstream.aiter_bytes():
                self._client_queue.put_nowait(chunk)
                self._recorder_queue.put_nowait(chunk)
        except Exception:
            logger.exception("AI search stream interrupted")
        finally:
            self._client_queue.put_nowait(_EOF)
            self._recorder_queue.put_nowait(_EOF)
            await self._upstream.aclose()

    async def _record(self) -> None:
        try:
            text = await self._reconstruct()
            await self._on_complete(text)
        except Exception:
            chat_history_writes_total.labels(status="error").inc()
            logger.exception("Chat history reconstruction failed")
        else:
            chat_history_writes_total.labels(status="ok").inc()

    async def _reconstruct(self) -> str:
        decoder = SSEDecoder()
        parts: list[str] = []
        while True:
            chunk = await self._recorder_queue.get()
            if chunk is _EOF:
                break
            _append_fragments(parts, decoder.feed(chunk))
        _append_fragments(parts, decoder.flush())
        return "".join(parts)


def _append_fragments(parts: list[str], events: list[SSEEvent]) -> None:
    for event in events:
        try:
            text = extract_response_text(event)
        except ValueError as e:
            logger.warning("Skipping undecodable AI search event: %s", e)
            continue
        if text:
            parts.append(text)


async def record_chat_history(
    session_factory: async_sessionmaker[AsyncSession],
    user_id: str,
    user_message: str,
    ai_response: str,
) -> None:
    """Append one history entry in a session of its own, outside the request."""
    async with session_factory() as db:
        db.add(
            ChatHistory(
                user_id=user_id,
                user_message=user_message,
                ai_response=ai_response,
            )
        )
        await db.commit()
    logger.debug("Stored chat history for user %s (%d chars)", user_id, len(ai_response))


async def list_recent_history(db: AsyncSession, user_id: str, limit: int = 20) -> list[ChatHistory]:
    """The user's newest ``limit`` entries, oldest first."""
    result = await db.execute(
        select(ChatHistory)
        .where(ChatHistory.user_id == user_id)
        .order_by(ChatHistory.timestamp.desc(), ChatHistory.id.desc())
        .limit(limit)
    )
    entries = list(result.scalars().all())
    entries.reverse()
    return entries
