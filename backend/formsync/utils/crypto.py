"""Token Encryption - Airtable tokens are stored encrypted at rest"""
import base64
import hashlib
from typing import List, Optional

from cryptography.fernet import Fernet, InvalidToken, MultiFernet

from ..config.settings import settings
from ..domain.errors import AuthExpiredError
from .logger import get_logger

logger = get_logger(__name__)


def _derived_key(secret: str) -> bytes:
    return base64.urlsafe_b64encode(hashlib.sha256(secret.encode()).digest())


class TokenCipher:
    """
    Fernet encryption for OAuth tokens

    ENCRYPTION_KEY holds one or more comma-separated Fernet keys. The first
    encrypts; every key is tried when decrypting, so keys can be rotated by
    prepending a new one.
    """

    def __init__(self, keys: Optional[List[str]] = None):
        keys = keys if keys is not None else settings.encryption_keys
        if not keys:
            if settings.is_production:
                raise RuntimeError("ENCRYPTION_KEY must be set in production")
            logger.warning("ENCRYPTION_KEY not set, deriving a development key from JWT_SECRET")
            fernets = [Fernet(_derived_key(settings.jwt_secret))]
        else:
            fernets = [Fernet(key.encode()) for key in keys]
        self._fernet = MultiFernet(fernets)

    def encrypt(self, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        return self._fernet.encrypt(value.encode()).decode()

    def decrypt(self, value: Optional[str], account_id: str = "") -> Optional[str]:
        """
        Raises:
            AuthExpiredError: Stored token was encrypted with an unknown key
                or is corrupt; the owner has to reauthorize
        """
        if value is None:
            return None
        try:
            return self._fernet.decrypt(value.encode()).decode()
        except InvalidToken:
            logger.error(
                f"Could not decrypt stored token for account {account_id}",
                extra={"account_id": account_id}
            )
            raise AuthExpiredError(
                "Stored credential cannot be read, please reauthorize",
                details={"account_id": account_id}
            )


# Global cipher instance
_token_cipher: Optional[TokenCipher] = None


def get_token_cipher() -> TokenCipher:
    """Get global token cipher"""
    global _token_cipher
    if _token_cipher is None:
        _token_cipher = TokenCipher()
    return _token_cipher
