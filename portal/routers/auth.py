"""Authentication routes: Google OAuth authorization-code flow + cookie sessions."""

import logging
import uuid
from datetime import timedelta

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse, RedirectResponse
from sqlalchemy.ext.asyncio import AsyncSession

from portal.config import Settings, get_settings
from portal.dependencies import (
    get_crypto,
    get_db,
    get_identity_provider,
    get_optional_user,
    get_state_store,
)
from portal.metrics import logins_total
from portal.models.user import User
from portal.schemas.auth import ProviderInfo, SessionResponse, UserResponse
from portal.services.crypto_service import CryptoService
from portal.services.oauth_service import PROVIDERS, GoogleOAuthClient, OAuthProviderError
from portal.services.session_service import (
    clear_session_cookie,
    create_session,
    delete_session,
    parse_session_cookie,
    set_session_cookie,
)
from portal.services.state_store import StateStore, StateStoreError
from portal.services.user_service import resolve_login_user

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/auth", tags=["auth"])


@router.get("/login/{provider}")
async def login(
    provider: str,
    idp: GoogleOAuthClient = Depends(get_identity_provider),
    state_store: StateStore = Depends(get_state_store),
):
    """Issue a single-use state token and redirect to the provider."""
    state = str(uuid.uuid4())
    try:
        await state_store.issue(state)
    except StateStoreError as e:
        logger.error("Could not persist OAuth state: %s", e)
        raise HTTPException(status_code=500, detail=f"Failed to start login: {e}") from e

    return RedirectResponse(idp.authorization_url(state), status_code=302)


@router.get("/callback/{provider}")
async def callback(
    provider: str,
    code: str | None = None,
    state: str | None = None,
    idp: GoogleOAuthClient = Depends(get_identity_provider),
    state_store: StateStore = Depends(get_state_store),
    db: AsyncSession = Depends(get_db),
    crypto: CryptoService = Depends(get_crypto),
    settings: Settings = Depends(get_settings),
):
    """Complete the login: verify state, exchange the code, upsert the user, open a session."""
    if not code or not state:
        raise HTTPException(status_code=400, detail="Missing code or state in callback")

    # consume() deletes the state, so it cannot be redeemed again even if a later step fails
    if not await state_store.consume(state):
        logins_total.labels(provider=provider, outcome="invalid_state").inc()
        raise HTTPException(status_code=401, detail="State validation failed")

    try:
        tokens = await idp.exchange_code(code)
        profile = await idp.fetch_profile(tokens.access_token)
    except OAuthProviderError as e:
        logins_total.labels(provider=provider, outcome="provider_error").inc()
        raise HTTPException(status_code=500, detail=str(e)) from e

    if not profile.email:
        logins_total.labels(provider=provider, outcome="missing_email").inc()
        raise HTTPException(status_code=400, detail="OAuth provider did not return an email address")

    user = await resolve_login_user(db, provider, profile, tokens, crypto)

    # Last step: the session only exists once everything above has succeeded
    session = await create_session(db, user.id, timedelta(days=settings.session_ttl_days))
    await db.commit()

    logins_total.labels(provider=provider, outcome="success").inc()
    logger.info("User %s signed in via %s", user.id, provider)

    response = RedirectResponse(settings.site_url, status_code=302)
    set_session_cookie(response, settings, session.session_token, user.id)
    return response


@router.get("/session", response_model=SessionResponse)
async def get_session(
    request: Request,
    user: User | None = Depends(get_optional_user),
    settings: Settings = Depends(get_settings),
):
    """Return the signed-in user, or ``{"user": null}``. Never fails with 401."""
    if user is None:
        return JSONResponse(content={"user": None})

    body = SessionResponse(user=UserResponse.model_validate(user))
    response = JSONResponse(content=body.model_dump(mode="json"))
    # Refresh Max-Age so an active session stays alive
    session_token, user_id = parse_session_cookie(request.cookies.get(settings.session_cookie_name))
    set_session_cookie(response, settings, session_token, user_id)
    return response


@router.get("/providers", response_model=dict[str, ProviderInfo])
async def list_providers(settings: Settings = Depends(get_settings)):
    """Map of configured providers and where to start signing in with each."""
    prefix = f"{settings.api_prefix}{router.prefix}"
    return {
        provider_id: ProviderInfo(id=provider_id, name=name, signin_url=f"{prefix}/login/{provider_id}")
        for provider_id, name in PROVIDERS.items()
    }


@router.post("/logout")
async def logout(
    request: Request,
    db: AsyncSession = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    """Delete the current session (if any) and clear the cookie."""
    parsed = parse_session_cookie(request.cookies.get(settings.session_cookie_name))
    if parsed is not None:
        deleted = await delete_session(db, parsed[0])
        await db.commit()
        logger.info("Logout removed %d session(s)", deleted)

    response = JSONResponse(content={"message": "Logged out"})
    clear_session_cookie(response, settings)
    return response
