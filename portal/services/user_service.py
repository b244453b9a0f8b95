"""User and linked-account persistence."""

import logging
from datetime import timedelta

from sqlalchemy import func, select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession

from portal.models.account import Account
from portal.models.base import generate_id, utcnow
from portal.models.user import User
from portal.services.crypto_service import CryptoService
from portal.services.oauth_service import OAuthProfile, OAuthTokens

logger = logging.getLogger(__name__)

_DIALECT_INSERTS = {
    "postgresql": postgresql.insert,
    "sqlite": sqlite.insert,
}


async def upsert_user(
    db: AsyncSession,
    email: str,
    name: str | None = None,
    avatar: str | None = None,
) -> User:
    """Create the user for ``email``, or refresh name/avatar if it already exists.

    A single ``INSERT ... ON CONFLICT (email) DO UPDATE``, so two first logins
    for the same address racing each other end up on one row.
    """
    display_name = name or email
    insert = _DIALECT_INSERTS[db.get_bind().dialect.name]
    users = User.__table__

    stmt = insert(users).values(
        id=generate_id(),
        name=display_name,
        email=email,
        avatar=avatar,
        emailVerified=utcnow(),
    )
    stmt = stmt.on_conflict_do_update(
        index_elements=[users.c.email],
        set_={
            users.c.name: stmt.excluded.name,
            users.c.avatar: func.coalesce(stmt.excluded.avatar, users.c.avatar),
            users.c.updated_at: func.now(),
        },
    )
    await db.execute(stmt)

    result = await db.execute(
        select(User).where(User.email == email).execution_options(populate_existing=True)
    )
    return result.scalar_one()


async def find_linked_user(db: AsyncSession, provider: str, subject: str) -> User | None:
    result = await db.execute(
        select(User)
        .join(Account, Account.user_id == User.id)
        .where(Account.provider == provider, Account.provider_account_id == subject)
    )
    return result.scalar_one_or_none()


async def link_account(
    db: AsyncSession,
    user: User,
    provider: str,
    subject: str,
    tokens: OAuthTokens,
    crypto: CryptoService,
) -> Account:
    """Link (provider, subject) to ``user`` once; later logins leave the link untouched."""
    result = await db.execute(
        select(Account).where(
            Account.provider == provider,
            Account.provider_account_id == subject,
        )
    )
    account = result.scalar_one_or_none()
    if account:
        return account

    expires_at = None
    if tokens.expires_in:
        expires_at = utcnow() + timedelta(seconds=int(tokens.expires_in))

    account = Account(
        user_id=user.id,
        type="oidc",
        provider=provider,
        provider_account_id=subject,
        access_token=crypto.seal_token(tokens.access_token),
        expires_at=expires_at,
        id_token=crypto.seal_token(tokens.id_token),
    )
    db.add(account)
    await db.flush()
    logger.info("Linked %s account to user %s", provider, user.id)
    return account


async def _refresh_profile(db: AsyncSession, user: User, profile: OAuthProfile) -> None:
    user.name = profile.name or profile.email
    if profile.picture:
        user.avatar = profile.picture

    if profile.email != user.email:
        taken = await db.scalar(select(User.id).where(User.email == profile.email, User.id != user.id))
        if taken:
            logger.warning("Not moving user %s to an email address owned by user %s", user.id, taken)
        else:
            user.email = profile.email
    await db.flush()


async def resolve_login_user(
    db: AsyncSession,
    provider: str,
    profile: OAuthProfile,
    tokens: OAuthTokens,
    crypto: CryptoService,
) -> User:
    """Map a provider identity to a local user.

    An existing (provider, subject) link always wins, even if the provider now
    reports a different email. Otherwise the user is found or created by email
    and linked.
    """
    user = await find_linked_user(db, provider, profile.subject)
    if user is not None:
        await _refresh_profile(db, user, profile)
        return user

    user = await upsert_user(db, email=profile.email, name=profile.name, avatar=profile.picture)
    await link_account(db, user, provider=provider, subject=profile.subject, tokens=tokens, crypto=crypto)
    return user
