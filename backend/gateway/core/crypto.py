"""
Encryption utilities for connection secrets stored in application settings
"""
from cryptography.fernet import Fernet, InvalidToken
from functools import lru_cache
import os
from typing import Optional

from gateway.config import settings

ENCRYPTED_PREFIX = "enc::"


def get_or_create_encryption_key() -> bytes:
    """Get the configured encryption key, or create one under DATA_DIR."""
    if settings.ENCRYPTION_KEY:
        return settings.ENCRYPTION_KEY.encode()

    key_file = os.path.join(settings.DATA_DIR, "encryption.key")

    if os.path.exists(key_file):
        with open(key_file, "rb") as f:
            return f.read()

    # Generate new key
    key = Fernet.generate_key()
    os.makedirs(os.path.dirname(key_file), exist_ok=True)
    with open(key_file, "wb") as f:
        f.write(key)

    return key


@lru_cache()
def get_cipher() -> Fernet:
    return Fernet(get_or_create_encryption_key())


def is_encrypted(value: Optional[str]) -> bool:
    return bool(value) and value.startswith(ENCRYPTED_PREFIX)


def encrypt_value(value: str) -> str:
    """Encrypt a string value."""
    if not value:
        return ""
    if is_encrypted(value):
        return value
    token = get_cipher().encrypt(value.encode()).decode()
    return f"{ENCRYPTED_PREFIX}{token}"


def decrypt_value(stored_value: Optional[str]) -> Optional[str]:
    """
    Decrypt a stored value.

    Values written before encryption was introduced are plaintext and are
    returned unchanged. A value that cannot be decrypted with the current key
    yields None, which callers treat as "not configured".
    """
    if not stored_value:
        return None
    if not is_encrypted(stored_value):
        return stored_value
    try:
        token = stored_value[len(ENCRYPTED_PREFIX):].encode()
        return get_cipher().decrypt(token).decode()
    except InvalidToken:
        return None
