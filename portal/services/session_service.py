"""Login sessions and the session cookie codec.

The cookie carries ``<sessionToken>|<userId>``; both halves must match a
``sessions`` row whose expiry is still in the future.
"""

import logging
import secrets
from datetime import timedelta

from fastapi import Response
from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from portal.config import Settings
from portal.models.base import utcnow
from portal.models.session import Session
from portal.models.user import User

logger = logging.getLogger(__name__)

COOKIE_DELIMITER = "|"


def generate_session_token() -> str:
    """Generate a high-entropy opaque session token."""
    return secrets.token_urlsafe(32)


def encode_session_cookie(session_token: str, user_id: str) -> str:
    return f"{session_token}{COOKIE_DELIMITER}{user_id}"


def parse_session_cookie(value: str | None) -> tuple[str, str] | None:
    """Split a cookie value into (session_token, user_id), or None if malformed."""
    if not value:
        return None
    parts = value.split(COOKIE_DELIMITER)
    if len(parts) != 2:
        return None
    session_token, user_id = (p.strip() for p in parts)
    if not session_token or not user_id:
        return None
    return session_token, user_id


def set_session_cookie(response: Response, settings: Settings, session_token: str, user_id: str) -> None:
    response.set_cookie(
        key=settings.session_cookie_name,
        value=encode_session_cookie(session_token, user_id),
        max_age=settings.session_max_age,
        path="/",
        secure=True,
        httponly=True,
        samesite="lax",
    )


def clear_session_cookie(response: Response, settings: Settings) -> None:
    response.delete_cookie(
        key=settings.session_cookie_name,
        path="/",
        secure=True,
        httponly=True,
        samesite="lax",
    )


async def create_session(db: AsyncSession, user_id: str, ttl: timedelta) -> Session:
    session = Session(
        user_id=user_id,
        session_token=generate_session_token(),
        expires=utcnow() + ttl,
    )
    db.add(session)
    await db.flush()
    return session


async def get_session_user(db: AsyncSession, session_token: str, user_id: str) -> User | None:
    """Return the session's user, treating expired sessions as absent."""
    result = await db.execute(
        select(User)
        .join(Session, Session.user_id == User.id)
        .where(
            Session.session_token == session_token,
            Session.user_id == user_id,
            Session.expires > utcnow(),
        )
    )
    return result.scalar_one_or_none()


async def delete_session(db: AsyncSession, session_token: str) -> int:
    result = await db.execute(delete(Session).where(Session.session_token == session_token))
    return result.rowcount or 0
