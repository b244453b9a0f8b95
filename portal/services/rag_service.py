"""Cloudflare AutoRAG (AI Search) client.

Retrieval and generation happen entirely on the hosted service; this client
only opens the streamed response.
"""

import json
import logging

import httpx

from portal.config import Settings

logger = logging.getLogger(__name__)

CLOUDFLARE_API_BASE = "https://api.cloudflare.com/client/v4"


class RAGServiceError(Exception):
    """The AI search service refused or failed the request."""


def _error_message(body: bytes) -> str | None:
    """Extract ``errors[0].message`` from a Cloudflare API error body."""
    try:
        payload = json.loads(body)
        return payload["errors"][0]["message"]
    except (ValueError, KeyError, IndexError, TypeError):
        return None


class RAGClient:
    def __init__(self, settings: Settings, transport: httpx.AsyncBaseTransport | None = None) -> None:
        self._settings = settings
        self._client = httpx.AsyncClient(
            timeout=httpx.Timeout(settings.autorag_timeout_seconds, connect=10.0),
            transport=transport,
        )

    @property
    def url(self) -> str:
        s = self._settings
        return f"{CLOUDFLARE_API_BASE}/accounts/{s.cloudflare_account_id}/autorag/rags/{s.autorag_name}/ai-search"

    async def open_stream(self, query: str) -> httpx.Response:
        """Start a streamed AI search. The caller must close the returned response."""
        request = self._client.build_request(
            "POST",
            self.url,
            json={
                "query": query,
                "rewrite_query": self._settings.autorag_rewrite_query,
                "stream": True,
            },
            headers={
                "Authorization": f"Bearer {self._settings.cloudflare_api_token.get_secret_value()}",
                "Accept": "text/event-stream",
            },
        )
        try:
            response = await self._client.send(request, stream=True)
        except httpx.HTTPError as e:
            logger.error("AI search request failed: %s", e)
            raise RAGServiceError("AI search unavailable") from e

        if response.status_code >= 400:
            body = await response.aread()
            await response.aclose()
            message = _error_message(body)
            logger.error(
                "AI search returned %s: %s",
                response.status_code,
                message or body[:500].decode("utf-8", errors="replace"),
            )
            raise RAGServiceError(message or f"AI search HTTP error {response.status_code}")

        return response

    async def aclose(self) -> None:
        await self._client.aclose()


_rag_client: RAGClient | None = None


def get_rag_client(settings: Settings) -> RAGClient:
    global _rag_client
    if _rag_client is None:
        _rag_client = RAGClient(settings)
    return _rag_client


async def shutdown_rag_client() -> None:
    global _rag_client
    if _rag_client is not None:
        await _rag_client.aclose()
    _rag_client = None
