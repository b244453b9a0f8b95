"""Single-use OAuth anti-CSRF state tokens kept in Redis with a TTL."""

import logging
from abc import ABC, abstractmethod

import redis.asyncio as aioredis
from redis.exceptions import RedisError

logger = logging.getLogger(__name__)

STATE_KEY_PREFIX = "oauth_state:"
PENDING_MARKER = "pending"


class StateStoreError(Exception):
    """Raised when a state token cannot be persisted."""


class StateStore(ABC):
    """Storage for pending-login state tokens."""

    @abstractmethod
    async def issue(self, token: str) -> None:
        """Record ``token`` as a pending login. Raises StateStoreError on failure."""
        ...

    @abstractmethod
    async def consume(self, token: str) -> bool:
        """Redeem ``token`` once. Returns False if unknown, expired or already used."""
        ...


class RedisStateStore(StateStore):
    """State tokens as Redis keys.

    Expiry is enforced by the key TTL, and redemption is a single GETDEL, so a
    token can be consumed by at most one callback even under concurrency.
    """

    def __init__(self, redis: aioredis.Redis, ttl_seconds: int = 300) -> None:
        self._redis = redis
        self._ttl = ttl_seconds

    async def issue(self, token: str) -> None:
        key = f"{STATE_KEY_PREFIX}{token}"
        try:
            created = await self._redis.set(key, PENDING_MARKER, ex=self._ttl, nx=True)
        except RedisError as e:
            raise StateStoreError(f"Failed to store OAuth state: {e}") from e
        if not created:
            raise StateStoreError("OAuth state already exists")
        logger.debug("Issued OAuth state (ttl=%ss)", self._ttl)

    async def consume(self, token: str) -> bool:
        key = f"{STATE_KEY_PREFIX}{token}"
        value = await self._redis.getdel(key)
        if value != PENDING_MARKER:
            logger.warning("Invalid, expired or replayed OAuth state")
            return False
        return True
