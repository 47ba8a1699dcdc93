"""Fernet-based encryption for sensitive answers at rest.

Sensitive assessment answers are stored as Fernet tokens. Fernet uses a
fresh random IV per token and authenticates every token with HMAC-SHA256,
so equal plaintexts never produce equal ciphertexts and tampering is
detected on decrypt. Supports key rotation with automatic fallback to the
previous key for decryption.
"""

from __future__ import annotations

import base64
import hashlib
import logging
from typing import Protocol

from cryptography.fernet import Fernet, InvalidToken

from src.core.config import Settings
from src.core.errors import ConfigurationError, DecryptionFailed

logger = logging.getLogger(__name__)


class KeyProvider(Protocol):
    """Supplies key material to the cipher."""

    def current_key(self) -> str: ...

    def previous_key(self) -> str | None: ...


class SettingsKeyProvider:
    """Reads answer encryption keys from application settings."""

    def __init__(self, settings: Settings) -> None:
        self._settings = settings

    def current_key(self) -> str:
        return self._settings.answer_encryption_key.get_secret_value()

    def previous_key(self) -> str | None:
        return self._settings.answer_encryption_key_previous.get_secret_value() or None


class StaticKeyProvider:
    """Key provider over fixed values (scripts and tests)."""

    def __init__(self, key: str, previous: str | None = None) -> None:
        self._key = key
        self._previous = previous

    def current_key(self) -> str:
        return self._key

    def previous_key(self) -> str | None:
        return self._previous


def _derive_fernet_key(secret: str) -> bytes:
    """Derive a valid Fernet key from an arbitrary secret string."""
    try:
        Fernet(secret.encode())
        return secret.encode()
    except ValueError:
        derived = hashlib.sha256(secret.encode()).digest()
        return base64.urlsafe_b64encode(derived)


class AnswerCipher:
    """Authenticated symmetric encryption for individual answer strings.

    Key material is resolved once at construction so a missing key fails
    at startup rather than in the middle of a submission.
    """

    def __init__(self, key_provider: KeyProvider) -> None:
        key = key_provider.current_key()
        if not key:
            raise ConfigurationError(
                "ANSWER_ENCRYPTION_KEY not configured. Set it in environment or .env file."
            )
        self._fernet = Fernet(_derive_fernet_key(key))
        previous = key_provider.previous_key()
        self._previous = Fernet(_derive_fernet_key(previous)) if previous else None

    def encrypt(self, plaintext: str) -> str:
        """Encrypt a string value and return a urlsafe base64 token."""
        return self._fernet.encrypt(plaintext.encode("utf-8")).decode("ascii")

    def decrypt(self, ciphertext: str) -> str:
        """Decrypt a token produced by :meth:`encrypt`.

        Tries the current key first, then falls back to the previous key
        if key rotation is in progress.
        """
        token = ciphertext.encode("ascii", errors="replace")
        try:
            return self._fernet.decrypt(token).decode("utf-8")
        except InvalidToken:
            if self._previous is not None:
                try:
                    return self._previous.decrypt(token).decode("utf-8")
                except InvalidToken:
                    pass
        logger.error("Failed to decrypt answer: invalid token or wrong key")
        raise DecryptionFailed("Stored answer failed integrity check")

    def re_encrypt(self, ciphertext: str) -> str:
        """Re-encrypt a value with the current key.

        Used during key rotation to migrate stored answers.
        """
        return self.encrypt(self.decrypt(ciphertext))


def create_answer_cipher(settings: Settings) -> AnswerCipher:
    """Build the process-wide cipher from settings."""
    return AnswerCipher(SettingsKeyProvider(settings))
