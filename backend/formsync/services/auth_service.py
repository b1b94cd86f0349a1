"""Authorization Service - Airtable OAuth (authorization code + PKCE)"""
from typing import Any, Dict, Optional, Tuple
from urllib.parse import urlencode

from .airtable_client import AirtableClient
from .credential_service import CredentialService, get_credential_service
from ..config.settings import settings
from ..domain.models import Credential
from ..domain.errors import ValidationError, ExternalServiceError
from ..repositories.auth_state_repo import AuthStateRepository
from ..utils.jwt import SessionTokenManager, get_session_token_manager
from ..utils.pkce import generate_pkce, generate_state
from ..utils.logger import get_logger

logger = get_logger(__name__)


class AuthService:
    """Run the authorization handshake and issue session tokens"""

    def __init__(
        self,
        state_repo: Optional[AuthStateRepository] = None,
        credentials: Optional[CredentialService] = None,
        client: Optional[AirtableClient] = None,
        tokens: Optional[SessionTokenManager] = None
    ):
        self.state_repo = state_repo or AuthStateRepository()
        self.credentials = credentials or get_credential_service()
        self.client = client or self.credentials.client
        self.tokens = tokens or get_session_token_manager()

    def begin_authorization(self) -> Dict[str, str]:
        """
        Start an authorization

        Returns:
            auth_url to redirect the browser to and the state bound to it
        """
        pkce = generate_pkce()
        state = generate_state()
        self.state_repo.put(state, pkce.verifier, settings.auth_state_ttl_seconds)

        query = urlencode({
            "client_id": settings.airtable_client_id,
            "redirect_uri": settings.airtable_redirect_uri,
            "response_type": "code",
            "scope": " ".join(settings.airtable_scopes_list),
            "state": state,
            "code_challenge": pkce.challenge,
            "code_challenge_method": pkce.method,
        })
        return {"auth_url": f"{settings.airtable_auth_url}?{query}", "state": state}

    async def complete_authorization(self, code: str, state: str) -> Tuple[Credential, str]:
        """
        Finish an authorization from the callback parameters

        Returns:
            Stored credential and a session token for the account

        Raises:
            ValidationError: Missing code, or unknown / expired / reused state
        """
        if not code or not state:
            raise ValidationError("Missing authorization code or state")

        verifier = self.state_repo.consume(state)
        if verifier is None:
            raise ValidationError("Invalid or expired authorization state")

        grant = await self.client.exchange_authorization_code(verifier, code)
        profile: Dict[str, Any] = await self.client.get_current_user(grant.access_token)

        account_id = profile.get("id")
        if not account_id:
            raise ExternalServiceError("Airtable profile did not include a user ID")

        credential = self.credentials.upsert_from_authorization(
            external_account_id=account_id,
            access_token=grant.access_token,
            refresh_token=grant.refresh_token,
            expires_in=grant.expires_in,
            scopes=grant.scopes or list(profile.get("scopes") or []),
            profile=profile
        )
        logger.info(
            f"Authorization completed for account {account_id}",
            extra={"account_id": account_id, "action": "authorize"}
        )
        return credential, self.tokens.issue(account_id)
