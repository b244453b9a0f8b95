"""Tests for the chat stream tee and chat history persistence."""

import asyncio
from datetime import timedelta

import pytest
from sqlalchemy import select

from conftest import sign_in, sse_chunk
from portal.models.base import utcnow
from portal.models.chat_history import ChatHistory
from portal.services.chat_service import (
    ChatStream,
    drain_background_tasks,
    list_recent_history,
    record_chat_history,
)


class FakeUpstream:
    """Minimal stand-in for a streamed httpx.Response."""

    def __init__(self, chunks, fail_after=None):
        self.chunks = chunks
        self.fail_after = fail_after
        self.closed = False

    async def aiter_bytes(self):
        for i, chunk in enumerate(self.chunks):
            if self.fail_after is not None and i == self.fail_after:
                raise ConnectionError("upstream reset")
            await asyncio.sleep(0)
            yield chunk

    async def aclose(self):
        self.closed = True


class Recorder:
    def __init__(self, delay: float = 0, fail: bool = False):
        self.delay = delay
        self.fail = fail
        self.calls: list[str] = []

    async def __call__(self, text: str) -> None:
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail:
            raise RuntimeError("database is down")
        self.calls.append(text)


async def _read_all(stream: ChatStream) -> list[bytes]:
    return [chunk async for chunk in stream.iter_client()]


class TestChatStream:
    @pytest.mark.asyncio
    async def test_client_receives_upstream_bytes_verbatim(self):
        chunks = [sse_chunk("Hello"), b": keep-alive\n\n", sse_chunk(" world")]
        recorder = Recorder()
        stream = ChatStream(FakeUpstream(chunks), on_complete=recorder)
        stream.start()

        received = await _read_all(stream)
        await drain_background_tasks()

        assert received == chunks
        assert recorder.calls == ["Hello world"]

    @pytest.mark.asyncio
    async def test_event_split_across_chunks_is_reassembled(self):
        whole = sse_chunk("Hello") + sse_chunk(" world")
        chunks = [whole[:7], whole[7:30], whole[30:]]
        recorder = Recorder()
        stream = ChatStream(FakeUpstream(chunks), on_complete=recorder)
        stream.start()

        assert b"".join(await _read_all(stream)) == whole
        await drain_background_tasks()
        assert recorder.calls == ["Hello world"]

    @pytest.mark.asyncio
    async def test_malformed_event_is_skipped(self):
        chunks = [sse_chunk("a"), b"data: {broken\n\n", sse_chunk("b"), b"data: [DONE]\n\n"]
        recorder = Recorder()
        stream = ChatStream(FakeUpstream(chunks), on_complete=recorder)
        stream.start()

        received = await _read_all(stream)
        await drain_background_tasks()

        assert received == chunks
        assert recorder.calls == ["ab"]

    @pytest.mark.asyncio
    async def test_recorder_failure_does_not_affect_client(self):
        chunks = [sse_chunk("x")]
        stream = ChatStream(FakeUpstream(chunks), on_complete=Recorder(fail=True))
        stream.start()

        assert await _read_all(stream) == chunks
        await drain_background_tasks()

    @pytest.mark.asyncio
    async def test_slow_recorder_does_not_block_client(self):
        chunks = [sse_chunk("a"), sse_chunk("b")]
        recorder = Recorder(delay=0.2)
        stream = ChatStream(FakeUpstream(chunks), on_complete=recorder)
        stream.start()

        received = await asyncio.wait_for(_read_all(stream), timeout=0.1)
        assert received == chunks
        assert recorder.calls == []

        await drain_background_tasks()
        assert recorder.calls == ["ab"]

    @pytest.mark.asyncio
    async def test_history_recorded_when_client_never_reads(self):
        upstream = FakeUpstream([sse_chunk("unread")])
        recorder = Recorder()
        ChatStream(upstream, on_complete=recorder).start()

        await drain_background_tasks()

        assert recorder.calls == ["unread"]
        assert upstream.closed

    @pytest.mark.asyncio
    async def test_upstream_failure_ends_both_branches(self):
        upstream = FakeUpstream([sse_chunk("partial"), sse_chunk("never")], fail_after=1)
        recorder = Recorder()
        stream = ChatStream(upstream, on_complete=recorder)
        stream.start()

        assert await _read_all(stream) == [sse_chunk("partial")]
        await drain_background_tasks()

        assert recorder.calls == ["partial"]
        assert upstream.closed


class TestChatHistoryRepository:
    @pytest.mark.asyncio
    async def test_record_chat_history(self, session_factory, settings):
        user = await sign_in(session_factory, settings)

        await record_chat_history(session_factory, user.user_id, "hi", "Hello world")

        async with session_factory() as db:
            rows = (await db.execute(select(ChatHistory))).scalars().all()
        assert len(rows) == 1
        assert rows[0].user_id == user.user_id
        assert rows[0].user_message == "hi"
        assert rows[0].ai_response == "Hello world"
        assert rows[0].timestamp is not None

    @pytest.mark.asyncio
    async def test_recent_history_is_capped_and_oldest_first(self, session_factory, settings):
        user = await sign_in(session_factory, settings)
        base = utcnow() - timedelta(hours=1)
        async with session_factory() as db:
            for i in range(25):
                db.add(
                    ChatHistory(
                        user_id=user.user_id,
                        user_message=f"q{i}",
                        ai_response=f"a{i}",
                        timestamp=base + timedelta(minutes=i),
                    )
                )
            await db.commit()

            entries = await list_recent_history(db, user.user_id, limit=20)

        assert [e.user_message for e in entries] == [f"q{i}" for i in range(5, 25)]

    @pytest.mark.asyncio
    async def test_history_is_scoped_to_user(self, session_factory, settings):
        alice = await sign_in(session_factory, settings, email="alice@example.com")
        bob = await sign_in(session_factory, settings, email="bob@example.com")
        await record_chat_history(session_factory, alice.user_id, "alice asks", "answer")
        await record_chat_history(session_factory, bob.user_id, "bob asks", "answer")

        async with session_factory() as db:
            entries = await list_recent_history(db, alice.user_id)

        assert [e.user_message for e in entries] == ["alice asks"]
