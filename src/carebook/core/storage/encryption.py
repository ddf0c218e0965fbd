"""Fernet-based encryption for free-text health record fields.

Notes, visit content, facility names, doctor names and prescriber names can
identify a person, so they are encrypted before writing to SQLite. Structured
values (metric values, test names, dates) stay in clear for window queries.
"""

from __future__ import annotations

import logging

from cryptography.fernet import Fernet, InvalidToken

logger = logging.getLogger(__name__)


class EncryptionError(Exception):
    """Raised when encryption/decryption fails."""


class FieldEncryptor:
    """Encrypts and decrypts optional text fields using Fernet.

    An encryptor built without a key is disabled: values pass through
    unchanged. This keeps a keyless development setup usable while making
    the at-rest protection a single configuration switch.

    Usage::

        encryptor = FieldEncryptor(key="...")
        token = encryptor.encrypt_text("Dr. Tanaka")
        encryptor.decrypt_text(token)  # "Dr. Tanaka"
    """

    def __init__(self, key: str | None = None) -> None:
        """Initialize with a Fernet key.

        Args:
            key: A valid Fernet key string, or empty/None to disable
                 encryption. Generate with :meth:`generate_key`.

        Raises:
            EncryptionError: If a non-empty key is invalid.
        """
        self._fernet: Fernet | None = None
        if not key or not key.strip():
            logger.warning("No encryption key configured; free-text fields are stored in clear")
            return
        try:
            self._fernet = Fernet(key.encode())
        except (ValueError, TypeError) as exc:
            raise EncryptionError(f"Invalid encryption key: {exc}") from exc

    @property
    def enabled(self) -> bool:
        return self._fernet is not None

    def encrypt_text(self, value: str | None) -> str | None:
        """Encrypt a text value to a Fernet token string.

        ``None`` and empty strings are stored as ``None``.

        Raises:
            EncryptionError: If encryption fails.
        """
        if not value:
            return None
        if self._fernet is None:
            return value
        try:
            return self._fernet.encrypt(value.encode("utf-8")).decode("utf-8")
        except Exception as exc:
            raise EncryptionError(f"Encryption failed: {exc}") from exc

    def decrypt_text(self, token: str | None) -> str | None:
        """Decrypt a Fernet token string back to text.

        Raises:
            EncryptionError: If the token is invalid or decryption fails.
        """
        if not token:
            return None
        if self._fernet is None:
            return token
        try:
            return self._fernet.decrypt(token.encode("utf-8")).decode("utf-8")
        except InvalidToken as exc:
            raise EncryptionError("Decryption failed: invalid token or wrong key") from exc

    @staticmethod
    def generate_key() -> str:
        """Generate a new Fernet key (URL-safe base64, 32 bytes)."""
        return Fernet.generate_key().decode("utf-8")
