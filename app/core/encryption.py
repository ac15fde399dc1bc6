# app/core/encryption.py
"""
Symmetric encryption for credentials stored at rest.

Values are encrypted with Fernet (AES-128-CBC + HMAC-SHA256). Every call to
``encrypt_value`` draws a fresh random IV, which Fernet places at the front of
the token, so encrypting the same secret twice never yields the same
ciphertext. Plaintext only exists in memory for the duration of a call.
"""
import logging
from functools import lru_cache

from cryptography.fernet import Fernet, InvalidToken

from app.core.config import settings
from app.core.exceptions import CredentialDecryptionError

logger = logging.getLogger(__name__)


@lru_cache(maxsize=4)
def _get_fernet(key: str) -> Fernet:
    if not key:
        raise ValueError("ENCRYPTION_KEY environment variable is not set")
    return Fernet(key.encode())


def encrypt_value(plaintext: str, key: str = None) -> str:
    """Encrypt a string. Empty input stays empty."""
    if not plaintext:
        return ""
    fernet = _get_fernet(key or settings.ENCRYPTION_KEY)
    return fernet.encrypt(plaintext.encode()).decode()


def decrypt_value(token: str, key: str = None) -> str:
    """Decrypt a value produced by encrypt_value."""
    if not token:
        return ""
    fernet = _get_fernet(key or settings.ENCRYPTION_KEY)
    try:
        return fernet.decrypt(token.encode()).decode()
    except InvalidToken as e:
        logger.error("Stored credential failed authentication during decryption")
        raise CredentialDecryptionError(
            "Stored credential could not be decrypted"
        ) from e
