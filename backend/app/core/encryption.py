"""Encryption of buyer credentials at rest (Fernet: AES-128-CBC + HMAC-SHA256)."""
import base64
import hashlib
import logging
from typing import Optional

from cryptography.fernet import Fernet, InvalidToken

from app.core.config import settings

logger = logging.getLogger(__name__)

_fernet: Optional[Fernet] = None


def _key() -> bytes:
    if settings.ENCRYPTION_KEY:
        return settings.ENCRYPTION_KEY.encode("ascii")
    if settings.ENVIRONMENT == "production":
        logger.warning("ENCRYPTION_KEY is not set; deriving the credential key from SECRET_KEY")
    digest = hashlib.sha256(settings.SECRET_KEY.encode("utf-8")).digest()
    return base64.urlsafe_b64encode(digest)


def get_fernet() -> Fernet:
    global _fernet
    if _fernet is None:
        _fernet = Fernet(_key())
    return _fernet


def reset_fernet():
    """Forget the cached key (after ENCRYPTION_KEY or SECRET_KEY changes)."""
    global _fernet
    _fernet = None


def generate_encryption_key() -> str:
    return Fernet.generate_key().decode("ascii")


def encrypt(plaintext: str) -> str:
    if not plaintext:
        raise ValueError("Plaintext is required for encryption")
    return get_fernet().encrypt(plaintext.encode("utf-8")).decode("ascii")


def decrypt(token: str) -> str:
    if not token:
        raise ValueError("Encrypted data is required for decryption")
    return get_fernet().decrypt(token.encode("ascii")).decode("utf-8")


def is_encrypted(value) -> bool:
    if not isinstance(value, str) or not value:
        return False
    try:
        decrypt(value)
    except (InvalidToken, ValueError, UnicodeError):
        return False
    return True


def encrypt_if_needed(value: Optional[str]) -> Optional[str]:
    """Encrypt plaintext; leave empty and already encrypted values alone."""
    if not value or is_encrypted(value):
        return value
    return encrypt(value)


def encrypt_credentials(credentials: Optional[dict]) -> dict:
    return {key: encrypt_if_needed(value) if isinstance(value, str) else value
            for key, value in (credentials or {}).items()}


def decrypt_credentials(credentials: Optional[dict]) -> dict:
    """Decrypt each string value; values that are not tokens are returned as stored."""
    result = {}
    for key, value in (credentials or {}).items():
        result[key] = value
        if isinstance(value, str) and value:
            try:
                result[key] = decrypt(value)
            except (InvalidToken, ValueError, UnicodeError):
                logger.debug(f"Credential '{key}' is stored unencrypted")
    return result
