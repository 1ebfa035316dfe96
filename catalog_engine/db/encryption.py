"""Encryption utilities for credentials stored at rest.

Stored API tokens and the Medusa admin token setting are encrypted with
Fernet (AES-128-CBC + HMAC-SHA256), so tampering or a wrong key is
detected on decrypt rather than yielding garbage.
"""

import base64
import binascii
import hashlib
import logging

from cryptography.fernet import Fernet, InvalidToken

from catalog_engine import metrics
from catalog_engine.config import settings

logger = logging.getLogger(__name__)

# Per-process fallback key when ENCRYPTION_KEY is not configured
_temporary_key: bytes | None = None


class DecryptionError(Exception):
    """Raised when a stored value cannot be decrypted (tampered, wrong key, malformed)."""


def get_encryption_key(key_str: str | None = None) -> bytes:
    """
    Resolve the Fernet key.

    Accepts a urlsafe-base64 Fernet key as-is; any other string is treated
    as a passphrase and stretched with SHA-256.

    Args:
        key_str: Explicit key material, defaults to settings.encryption_key

    Returns:
        Fernet key as bytes
    """
    global _temporary_key

    key_str = key_str if key_str is not None else settings.encryption_key
    if not key_str:
        if _temporary_key is None:
            logger.warning(
                "ENCRYPTION_KEY not set, using a temporary per-process key "
                "(stored tokens will not survive a restart)"
            )
            _temporary_key = Fernet.generate_key()
        return _temporary_key

    try:
        if len(base64.urlsafe_b64decode(key_str.encode())) == 32:
            return key_str.encode()
    except (binascii.Error, ValueError):
        pass
    return base64.urlsafe_b64encode(hashlib.sha256(key_str.encode()).digest())


def encrypt_value(value: str, key: str | None = None) -> str:
    """
    Encrypt a value for storage.

    Args:
        value: Plaintext value to encrypt
        key: Optional explicit key material

    Returns:
        Fernet token as a string
    """
    fernet = Fernet(get_encryption_key(key))
    return fernet.encrypt(value.encode()).decode()


def decrypt_value(value: str, key: str | None = None) -> str:
    """
    Decrypt a value from storage.

    Args:
        value: Fernet token produced by encrypt_value
        key: Optional explicit key material

    Returns:
        Decrypted plaintext

    Raises:
        DecryptionError: If the token is malformed, tampered with, or the key is wrong
    """
    try:
        fernet = Fernet(get_encryption_key(key))
        return fernet.decrypt(value.encode()).decode()
    except (InvalidToken, ValueError, TypeError) as e:
        exception_type = type(e).__name__
        metrics.record_decryption_failure(exception_type)
        raise DecryptionError(
            f"Decryption failed: {exception_type} (value_length={len(value or '')})"
        ) from e


def mask_token(token: str) -> str:
    """Mask a secret for display, keeping the first and last four characters."""
    if len(token) <= 8:
        return "****"
    return f"{token[:4]}****{token[-4:]}"
