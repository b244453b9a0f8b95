"""Seed script: populates dev DB with a sample user, a session and chat history.

Prints a session cookie that can be pasted into the browser (or curl) to call
the authenticated chat endpoints without going through Google.
"""

import asyncio
from datetime import timedelta

from sqlalchemy import select
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

from portal.config import get_settings
from portal.models.base import Base, utcnow
from portal.models.chat_history import ChatHistory
from portal.services.session_service import create_session, encode_session_cookie
from portal.services.user_service import upsert_user

SEED_EMAIL = "dev@example.com"


async def seed():
    settings = get_settings()
    engine = create_async_engine(settings.database_url, echo=False)
    session_factory = async_sessionmaker(engine, expire_on_commit=False)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    async with session_factory() as db:
        user = await upsert_user(db, email=SEED_EMAIL, name="Dev User")

        result = await db.execute(select(ChatHistory.id).where(ChatHistory.user_id == user.id).limit(1))
        if result.scalar() is None:
            now = utcnow()
            samples = [
                ("What does MOTA build?", "MOTA builds IoT telemetry hardware and software."),
                ("Do you ship internationally?", "Yes, to most regions. Contact sales for a quote."),
            ]
            for i, (question, answer) in enumerate(samples):
                db.add(
                    ChatHistory(
                        user_id=user.id,
                        user_message=question,
                        ai_response=answer,
                        timestamp=now - timedelta(minutes=len(samples) - i),
                    )
                )

        session = await create_session(db, user.id, timedelta(days=settings.session_ttl_days))
        await db.commit()

    await engine.dispose()

    print(f"Seeded user {SEED_EMAIL} ({user.id})")
    print(f"Cookie: {settings.session_cookie_name}={encode_session_cookie(session.session_token, user.id)}")


if __name__ == "__main__":
    asyncio.run(seed())
