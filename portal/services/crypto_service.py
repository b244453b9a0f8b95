"""Sealing of provider tokens cached on linked accounts (libsodium SecretBox)."""

import base64
import binascii
import logging

import nacl.secret
import nacl.utils

from portal.config import Settings

logger = logging.getLogger(__name__)


class CryptoConfigError(Exception):
    """The configured encryption key is missing or unusable."""


class CryptoService:
    """Seals the access and id tokens stored on ``accounts`` rows.

    Outside production a missing key falls back to a per-process key, so tokens
    sealed by one process cannot be opened by the next one.
    """

    def __init__(self, settings: Settings) -> None:
        key_b64 = settings.encryption_key.get_secret_value()
        if not key_b64:
            if settings.is_production:
                raise CryptoConfigError("ENCRYPTION_KEY must be set in production")
            logger.warning("No encryption key configured; provider tokens use an ephemeral key")
            key = nacl.utils.random(nacl.secret.SecretBox.KEY_SIZE)
        else:
            try:
                key = base64.b64decode(key_b64, validate=True)
            except binascii.Error as e:
                raise CryptoConfigError("ENCRYPTION_KEY is not valid base64") from e
            if len(key) != nacl.secret.SecretBox.KEY_SIZE:
                raise CryptoConfigError(
                    f"ENCRYPTION_KEY must decode to {nacl.secret.SecretBox.KEY_SIZE} bytes, got {len(key)}"
                )
        self._box = nacl.secret.SecretBox(key)

    def seal_token(self, token: str | None) -> bytes | None:
        """Encrypt a provider token for storage. Absent or empty tokens are stored as NULL."""
        if not token:
            return None
        return self._box.encrypt(token.encode("utf-8"))

    def open_token(self, sealed: bytes | None) -> str | None:
        """Decrypt a stored token. Raises nacl.exceptions.CryptoError if it was tampered with."""
        if sealed is None:
            return None
        return self._box.decrypt(sealed).decode("utf-8")


_crypto_service: CryptoService | None = None


def get_crypto_service(settings: Settings) -> CryptoService:
    global _crypto_service
    if _crypto_service is None:
        _crypto_service = CryptoService(settings)
    return _crypto_service
