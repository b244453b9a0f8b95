"""Google OAuth authorization-code flow over plain HTTPS."""

import logging
from dataclasses import dataclass
from urllib.parse import urlencode

import httpx

from portal.config import Settings

logger = logging.getLogger(__name__)

GOOGLE_AUTH_URL = "https://accounts.google.com/o/oauth2/v2/auth"
GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"
GOOGLE_USERINFO_URL = "https://www.googleapis.com/oauth2/v3/userinfo"

SCOPES = ["openid", "email", "profile"]

# provider id -> display name
PROVIDERS = {
    "google": "Google",
}


class OAuthProviderError(Exception):
    """The identity provider rejected a token exchange or profile request."""


@dataclass
class OAuthTokens:
    access_token: str
    expires_in: int | None = None
    id_token: str | None = None


@dataclass
class OAuthProfile:
    subject: str
    email: str | None
    name: str | None = None
    picture: str | None = None


class GoogleOAuthClient:
    """Google identity provider client.

    A fresh ``httpx.AsyncClient`` is used per call; ``transport`` lets tests
    substitute ``httpx.MockTransport``.
    """

    provider = "google"

    def __init__(self, settings: Settings, transport: httpx.AsyncBaseTransport | None = None) -> None:
        self._settings = settings
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=10, transport=self._transport)

    def authorization_url(self, state: str) -> str:
        params = {
            "client_id": self._settings.google_client_id,
            "redirect_uri": self._settings.google_redirect_uri,
            "response_type": "code",
            "scope": " ".join(SCOPES),
            "state": state,
        }
        return f"{GOOGLE_AUTH_URL}?{urlencode(params)}"

    async def exchange_code(self, code: str) -> OAuthTokens:
        """Exchange an authorization code for tokens."""
        try:
            async with self._client() as client:
                response = await client.post(
                    GOOGLE_TOKEN_URL,
                    data={
                        "client_id": self._settings.google_client_id,
                        "client_secret": self._settings.google_client_secret.get_secret_value(),
                        "code": code,
                        "redirect_uri": self._settings.google_redirect_uri,
                        "grant_type": "authorization_code",
                    },
                )
        except httpx.HTTPError as e:
            logger.error("Google token endpoint unreachable: %s", e)
            raise OAuthProviderError("Token exchange failed") from e

        if response.status_code != 200:
            logger.error("Google token exchange failed: %s %s", response.status_code, response.text)
            raise OAuthProviderError("Token exchange failed")

        token_data = response.json()
        access_token = token_data.get("access_token")
        if not access_token:
            logger.error("Google token response without access_token: %s", list(token_data))
            raise OAuthProviderError("Provider did not return an access token")

        return OAuthTokens(
            access_token=access_token,
            expires_in=token_data.get("expires_in"),
            id_token=token_data.get("id_token"),
        )

    async def fetch_profile(self, access_token: str) -> OAuthProfile:
        try:
            async with self._client() as client:
                response = await client.get(
                    GOOGLE_USERINFO_URL,
                    headers={"Authorization": f"Bearer {access_token}"},
                )
        except httpx.HTTPError as e:
            logger.error("Google userinfo endpoint unreachable: %s", e)
            raise OAuthProviderError("User info fetch failed") from e

        if response.status_code != 200:
            logger.error("Google userinfo fetch failed: %s %s", response.status_code, response.text)
            raise OAuthProviderError("User info fetch failed")

        userinfo = response.json()
        # v3 userinfo carries "sub", v2 "id"; fall back to the email address
        subject = userinfo.get("sub") or userinfo.get("id") or userinfo.get("email") or ""
        return OAuthProfile(
            subject=str(subject),
            email=userinfo.get("email"),
            name=userinfo.get("name"),
            picture=userinfo.get("picture"),
        )
