"""Credential Service - Delegated Airtable access per account"""
import asyncio
from datetime import datetime
from typing import Any, Dict, List, Optional

from .airtable_client import AirtableClient
from ..domain.models import Credential
from ..domain.errors import AuthExpiredError, DomainError
from ..repositories.credential_repo import CredentialRepository
from ..utils.logger import get_logger
from ..utils.time import utc_now, add_seconds

logger = get_logger(__name__)


class CredentialService:
    """
    Store, expire and refresh Airtable credentials

    Refresh is single-flight per account: concurrent callers share the one
    in-flight token exchange and its result.
    """

    def __init__(
        self,
        repo: Optional[CredentialRepository] = None,
        client: Optional[AirtableClient] = None
    ):
        self.repo = repo or CredentialRepository()
        self.client = client or AirtableClient()
        self._inflight: Dict[str, "asyncio.Task[Credential]"] = {}

    def get(self, account_id: str) -> Credential:
        """Get credential by account ID"""
        return self.repo.get_credential_or_raise(account_id)

    def upsert_from_authorization(
        self,
        external_account_id: str,
        access_token: str,
        refresh_token: Optional[str],
        expires_in: int,
        scopes: List[str],
        profile: Optional[Dict[str, Any]] = None
    ) -> Credential:
        """
        Create or overwrite the credential for an account after authorization

        Email and display name are only replaced by non-empty values.
        """
        profile = profile or {}
        now = utc_now()
        expires_at = add_seconds(now, expires_in)
        email = profile.get("email")
        name = profile.get("name")

        existing = self.repo.get_credential(external_account_id)
        if existing:
            updates: Dict[str, Any] = {
                "access_token": access_token,
                "refresh_token": refresh_token,
                "expires_at": expires_at,
                "scopes": scopes,
                "profile": profile,
                "updated_at": now,
            }
            if email:
                updates["email"] = email
            if name:
                updates["name"] = name
            credential = self.repo.update_credential(external_account_id, updates)
            logger.info(
                f"Re-authorized account {external_account_id}",
                extra={"account_id": external_account_id, "action": "reauthorize"}
            )
            return credential

        credential = Credential(
            account_id=external_account_id,
            access_token=access_token,
            refresh_token=refresh_token,
            expires_at=expires_at,
            scopes=scopes,
            email=email or None,
            name=name or None,
            profile=profile,
            created_at=now,
            updated_at=now
        )
        return self.repo.save_credential(credential)

    def is_expired(self, credential: Credential, now: Optional[datetime] = None) -> bool:
        """True once the access token's expiry has been reached"""
        return (now or utc_now()) >= credential.expires_at

    async def get_valid_credential(self, account_id: str) -> Credential:
        """
        Load a credential, refreshing it first if the access token expired

        Raises:
            CredentialNotFoundError: No credential for the account
            AuthExpiredError: Token expired and could not be refreshed
        """
        credential = self.get(account_id)
        if self.is_expired(credential):
            logger.info(
                f"Access token expired for account {account_id}, refreshing",
                extra={"account_id": account_id}
            )
            credential = await self.refresh(credential)
        return credential

    async def refresh(self, credential: Credential) -> Credential:
        """
        Exchange the refresh token for a new access token

        Raises:
            AuthExpiredError: Any failure; the owner has to reauthorize
        """
        account_id = credential.account_id
        task = self._inflight.get(account_id)
        if task is None:
            task = asyncio.ensure_future(self._refresh(credential))
            self._inflight[account_id] = task
            task.add_done_callback(lambda done, key=account_id: self._forget(key, done))
        else:
            logger.debug(f"Joining in-flight refresh for account {account_id}")
        return await asyncio.shield(task)

    def _forget(self, account_id: str, task: "asyncio.Task[Credential]") -> None:
        if self._inflight.get(account_id) is task:
            del self._inflight[account_id]

    async def _refresh(self, credential: Credential) -> Credential:
        account_id = credential.account_id
        if not credential.refresh_token:
            logger.warning(
                f"No refresh token for account {account_id}",
                extra={"account_id": account_id, "action": "refresh", "status": "failed"}
            )
            raise AuthExpiredError(
                "No refresh token available, please reauthorize",
                details={"account_id": account_id}
            )

        try:
            grant = await self.client.exchange_refresh_token(credential.refresh_token)
        except AuthExpiredError:
            raise
        except DomainError as e:
            logger.error(
                f"Token refresh failed for account {account_id}: {e.message}",
                extra={"account_id": account_id, "action": "refresh", "error_code": e.error_code}
            )
            raise AuthExpiredError(
                "Token refresh failed, please reauthorize",
                details={"account_id": account_id, "cause": e.error_code}
            ) from e

        now = utc_now()
        updates: Dict[str, Any] = {
            "access_token": grant.access_token,
            "expires_at": add_seconds(now, grant.expires_in),
            "updated_at": now,
        }
        if grant.refresh_token:
            updates["refresh_token"] = grant.refresh_token
        if grant.scopes:
            updates["scopes"] = grant.scopes

        refreshed = self.repo.update_credential(account_id, updates)
        logger.info(
            f"Refreshed access token for account {account_id}",
            extra={"account_id": account_id, "action": "refresh", "status": "ok"}
        )
        return refreshed


# Global credential service instance
_credential_service: Optional[CredentialService] = None


def get_credential_service() -> CredentialService:
    """Get global credential service"""
    global _credential_service
    if _credential_service is None:
        _credential_service = CredentialService()
    return _credential_service
