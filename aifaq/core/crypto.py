"""Encryption at rest for merchant-supplied credentials (AI provider API keys)."""
import base64
import logging
from functools import lru_cache
from typing import Optional

from cryptography.fernet import Fernet, InvalidToken
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from aifaq.core.config import settings


logger = logging.getLogger(__name__)

_KDF_SALT = b"aifaq-credentials"
_DEV_FALLBACK_KEY = "aifaq-development-key-not-for-production"


@lru_cache(maxsize=8)
def _derive_key(secret: str) -> bytes:
    kdf = PBKDF2HMAC(algorithm=hashes.SHA256(), length=32, salt=_KDF_SALT, iterations=390000)
    return base64.urlsafe_b64encode(kdf.derive(secret.encode("utf-8")))


class CredentialCipher:
    """Symmetric encrypt/decrypt for short secrets."""

    def __init__(self, secret: Optional[str] = None):
        secret = secret or settings.ENCRYPTION_KEY
        if not secret:
            logger.warning("ENCRYPTION_KEY not configured; using development key")
            secret = _DEV_FALLBACK_KEY
        self._fernet = Fernet(_derive_key(secret))

    def encrypt(self, plaintext: str) -> str:
        return self._fernet.encrypt(plaintext.encode("utf-8")).decode("ascii")

    def decrypt(self, token: str) -> str:
        """Decrypt a stored value. Values written before encryption was enabled come back unchanged."""
        try:
            return self._fernet.decrypt(token.encode("ascii")).decode("utf-8")
        except (InvalidToken, UnicodeEncodeError):
            return token
