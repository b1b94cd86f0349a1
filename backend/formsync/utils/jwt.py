"""Session Tokens - issued after the Airtable OAuth callback"""
import jwt
from datetime import timedelta
from typing import Any, Dict, Optional

from ..config.settings import settings
from ..domain.errors import AuthenticationError
from .logger import get_logger
from .time import utc_now

logger = get_logger(__name__)


class SessionTokenManager:
    """Issue and validate HS256 session tokens for form owners"""

    def __init__(
        self,
        secret: Optional[str] = None,
        algorithm: Optional[str] = None,
        expires_days: Optional[int] = None
    ):
        self._secret = secret or settings.jwt_secret
        self._algorithm = algorithm or settings.jwt_algorithm
        self._lifetime = timedelta(days=expires_days or settings.jwt_expires_days)

    @property
    def max_age_seconds(self) -> int:
        return int(self._lifetime.total_seconds())

    def issue(self, account_id: str) -> str:
        """Issue a session token for an account"""
        now = utc_now()
        claims = {
            "sub": account_id,
            "account_id": account_id,
            "iat": now,
            "exp": now + self._lifetime,
        }
        return jwt.encode(claims, self._secret, algorithm=self._algorithm)

    def validate(self, token: str) -> Dict[str, Any]:
        """
        Validate a session token

        Args:
            token: Token with or without 'Bearer ' prefix

        Returns:
            Decoded claims

        Raises:
            AuthenticationError: If token is missing, invalid or expired
        """
        if not token:
            raise AuthenticationError("Token is missing")

        if token.startswith("Bearer "):
            token = token[7:]

        try:
            claims = jwt.decode(token, self._secret, algorithms=[self._algorithm])
        except jwt.ExpiredSignatureError:
            logger.warning("Session token expired")
            raise AuthenticationError("Token has expired")
        except jwt.PyJWTError as e:
            logger.warning(f"Session token validation error: {e}")
            raise AuthenticationError(f"Invalid token: {str(e)}")

        if not claims.get("account_id"):
            raise AuthenticationError("Token does not identify an account")
        return claims

    def get_account_id(self, token: str) -> str:
        """Validate token and return the account it was issued for"""
        return self.validate(token)["account_id"]


# Global token manager instance
_session_tokens: Optional[SessionTokenManager] = None


def get_session_token_manager() -> SessionTokenManager:
    """Get global session token manager"""
    global _session_tokens
    if _session_tokens is None:
        _session_tokens = SessionTokenManager()
    return _session_tokens
