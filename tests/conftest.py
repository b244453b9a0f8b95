"""Shared test fixtures."""

import json
import time
from dataclasses import dataclass, field
from datetime import timedelta

import httpx
import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

from portal.config import Settings
from portal.dependencies import get_identity_provider, get_rag, get_session_factory, get_state_store
from portal.main import create_app
from portal.models.base import Base
from portal.services.oauth_service import GOOGLE_TOKEN_URL, GOOGLE_USERINFO_URL, GoogleOAuthClient
from portal.services.rag_service import RAGClient
from portal.services.session_service import create_session, encode_session_cookie
from portal.services.state_store import StateStore, StateStoreError
from portal.services.user_service import upsert_user


@pytest.fixture
def settings() -> Settings:
    return Settings(
        app_env="development",
        database_url="sqlite+aiosqlite://",
        redis_url="redis://localhost:6379/0",
        google_client_id="test-client-id",
        google_client_secret="test-client-secret",
        google_redirect_uri="https://motaiot.com/api/auth/callback/google",
        cloudflare_account_id="test-account",
        cloudflare_api_token="test-cf-token",
        rate_limit_enabled=False,
        debug=True,
    )


@pytest_asyncio.fixture
async def session_factory(tmp_path):
    """File-backed SQLite so request and background sessions use separate connections."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'portal.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield async_sessionmaker(engine, expire_on_commit=False)
    await engine.dispose()


class FakeStateStore(StateStore):
    """In-memory stand-in for the Redis state store, with the same TTL semantics."""

    def __init__(self, ttl_seconds: int = 300) -> None:
        self.ttl = ttl_seconds
        self.tokens: dict[str, float] = {}
        self.fail_writes = False

    async def issue(self, token: str) -> None:
        if self.fail_writes:
            raise StateStoreError("KV unavailable")
        self.tokens[token] = time.monotonic() + self.ttl

    async def consume(self, token: str) -> bool:
        expires = self.tokens.pop(token, None)
        return expires is not None and expires > time.monotonic()

    def expire(self, token: str) -> None:
        self.tokens[token] = time.monotonic() - 1


@pytest.fixture
def state_store() -> FakeStateStore:
    return FakeStateStore()


@dataclass
class FakeGoogle:
    """Scripted Google token + userinfo endpoints behind httpx.MockTransport."""

    token_status: int = 200
    token_body: dict = field(
        default_factory=lambda: {"access_token": "ya29.test-access", "expires_in": 3599, "id_token": "test-id-token"}
    )
    userinfo_status: int = 200
    profile: dict = field(
        default_factory=lambda: {"sub": "google-sub-1", "email": "a@b.com", "name": "A"}
    )
    requests: list = field(default_factory=list)

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        url = str(request.url)
        if url.startswith(GOOGLE_TOKEN_URL):
            return httpx.Response(self.token_status, json=self.token_body)
        if url.startswith(GOOGLE_USERINFO_URL):
            return httpx.Response(self.userinfo_status, json=self.profile)
        return httpx.Response(404)

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)


@pytest.fixture
def fake_google() -> FakeGoogle:
    return FakeGoogle()


def sse_chunk(response: str) -> bytes:
    return f"data: {json.dumps({'response': response})}\n\n".encode()


@dataclass
class FakeRAG:
    """Scripted AutoRAG ai-search endpoint streaming ``chunks``."""

    chunks: list = field(default_factory=lambda: [sse_chunk("Hello"), sse_chunk(" world")])
    status: int = 200
    error_body: dict = field(default_factory=lambda: {"errors": [{"message": "index not found"}]})
    requests: list = field(default_factory=list)

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.status != 200:
            return httpx.Response(self.status, json=self.error_body)

        async def body():
            for chunk in self.chunks:
                yield chunk

        return httpx.Response(200, headers={"Content-Type": "text/event-stream"}, content=body())

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)


@pytest.fixture
def fake_rag() -> FakeRAG:
    return FakeRAG()


@pytest.fixture
def app(settings, session_factory, state_store, fake_google, fake_rag):
    app = create_app(settings)
    rag_client = RAGClient(settings, transport=fake_rag.transport)
    app.dependency_overrides[get_session_factory] = lambda: session_factory
    app.dependency_overrides[get_state_store] = lambda: state_store
    app.dependency_overrides[get_identity_provider] = lambda: GoogleOAuthClient(
        settings, transport=fake_google.transport
    )
    app.dependency_overrides[get_rag] = lambda: rag_client
    return app


@pytest_asyncio.fixture
async def client(app):
    async with httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="https://testserver") as c:
        yield c


@dataclass
class SignedIn:
    user_id: str
    session_token: str
    cookie: str

    @property
    def headers(self) -> dict:
        return {"Cookie": self.cookie}


async def sign_in(session_factory, settings, email: str = "a@b.com", ttl: timedelta = timedelta(days=30)) -> SignedIn:
    async with session_factory() as db:
        user = await upsert_user(db, email=email, name=email.split("@")[0])
        session = await create_session(db, user.id, ttl)
        await db.commit()
    value = encode_session_cookie(session.session_token, user.id)
    return SignedIn(
        user_id=user.id,
        session_token=session.session_token,
        cookie=f"{settings.session_cookie_name}={value}",
    )


@pytest_asyncio.fixture
async def signed_in(session_factory, settings) -> SignedIn:
    return await sign_in(session_factory, settings)
