"""FastAPI dependency injection.

Every platform binding (database, Redis, identity provider, RAG service) is
built here from ``Settings`` so routers never read ambient globals directly and
tests can swap any of them through ``app.dependency_overrides``.
"""

import logging
from typing import AsyncGenerator

import redis.asyncio as aioredis
from fastapi import Depends, HTTPException, Request, status
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from portal.config import Settings, get_settings
from portal.models.user import User
from portal.services.crypto_service import CryptoService, get_crypto_service
from portal.services.oauth_service import PROVIDERS, GoogleOAuthClient
from portal.services.rag_service import RAGClient, get_rag_client
from portal.services.session_service import get_session_user, parse_session_cookie
from portal.services.state_store import RedisStateStore, StateStore

logger = logging.getLogger(__name__)

# Database engine and session factory (initialized in lifespan)
_engine = None
_session_factory = None
_redis_client: aioredis.Redis | None = None


def init_db(settings: Settings) -> tuple:
    """Initialize database engine and session factory. Called from lifespan."""
    global _engine, _session_factory
    _engine = create_async_engine(
        settings.database_url,
        echo=settings.debug,
        pool_size=20,
        max_overflow=10,
        pool_pre_ping=True,
    )
    _session_factory = async_sessionmaker(_engine, expire_on_commit=False)
    return _engine, _session_factory


async def shutdown_db():
    """Dispose of the database engine. Called from lifespan."""
    global _engine, _session_factory
    if _engine:
        await _engine.dispose()
    _engine = None
    _session_factory = None


def get_session_factory(settings: Settings = Depends(get_settings)) -> async_sessionmaker[AsyncSession]:
    if _session_factory is None:
        init_db(settings)
    return _session_factory


async def get_db(
    factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
) -> AsyncGenerator[AsyncSession, None]:
    """Yield an async database session."""
    async with factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


def get_redis(settings: Settings = Depends(get_settings)) -> aioredis.Redis:
    global _redis_client
    if _redis_client is None:
        _redis_client = aioredis.from_url(settings.redis_url, decode_responses=True)
    return _redis_client


async def shutdown_redis():
    global _redis_client
    if _redis_client is not None:
        await _redis_client.aclose()
    _redis_client = None


def get_state_store(
    redis: aioredis.Redis = Depends(get_redis),
    settings: Settings = Depends(get_settings),
) -> StateStore:
    return RedisStateStore(redis, ttl_seconds=settings.oauth_state_ttl_seconds)


def get_identity_provider(provider: str, settings: Settings = Depends(get_settings)) -> GoogleOAuthClient:
    """Resolve the ``{provider}`` path segment to a configured OAuth client."""
    if provider not in PROVIDERS:
        raise HTTPException(status_code=404, detail=f"Unknown provider: {provider}")
    return GoogleOAuthClient(settings)


def get_crypto(settings: Settings = Depends(get_settings)) -> CryptoService:
    return get_crypto_service(settings)


def get_rag(settings: Settings = Depends(get_settings)) -> RAGClient:
    return get_rag_client(settings)


async def get_optional_user(
    request: Request,
    db: AsyncSession = Depends(get_db),
    settings: Settings = Depends(get_settings),
) -> User | None:
    """Resolve the session cookie to a user, or None. Never raises for bad sessions."""
    parsed = parse_session_cookie(request.cookies.get(settings.session_cookie_name))
    if parsed is None:
        return None
    session_token, user_id = parsed
    try:
        return await get_session_user(db, session_token, user_id)
    except SQLAlchemyError:
        logger.exception("Session lookup failed")
        await db.rollback()
        return None


async def get_current_user(user: User | None = Depends(get_optional_user)) -> User:
    """Require a valid, unexpired session."""
    if user is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Unauthorized: invalid session",
        )
    return user
