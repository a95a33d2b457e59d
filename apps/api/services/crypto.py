"""
Encryption for commerce store credentials at rest (Fernet).
"""

import base64
from functools import lru_cache

from cryptography.fernet import Fernet, InvalidToken
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from config import settings
from services.errors import ValidationError


@lru_cache(maxsize=4)
def _fernet_for(secret: str) -> Fernet:
    # Fernet needs 32 url-safe base64 bytes; anything else is stretched with PBKDF2.
    if len(secret) == 32:
        key = base64.urlsafe_b64encode(secret.encode())
    else:
        kdf = PBKDF2HMAC(
            algorithm=hashes.SHA256(),
            length=32,
            salt=b"content_shop_commerce_credentials",
            iterations=100000,
        )
        key = base64.urlsafe_b64encode(kdf.derive(secret.encode()))
    return Fernet(key)


def encrypt_token(token: str) -> str:
    """Encrypt a store access token before it is persisted on a commerce account."""
    if not token:
        raise ValidationError("Access token is required")
    return _fernet_for(settings.ENCRYPTION_KEY).encrypt(token.encode()).decode()


def decrypt_token(encrypted_token: str) -> str:
    """
    Decrypt a stored access token.

    Raises ValidationError when the ciphertext was produced with a different
    ENCRYPTION_KEY, so the account has to be reconnected.
    """
    try:
        return _fernet_for(settings.ENCRYPTION_KEY).decrypt(encrypted_token.encode()).decode()
    except InvalidToken as exc:
        raise ValidationError("Stored access token cannot be decrypted. Reconnect the store.") from exc
