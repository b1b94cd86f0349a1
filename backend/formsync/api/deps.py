"""API Dependencies - Common dependencies for routes"""
from typing import Optional
from fastapi import Cookie, Depends, Header, HTTPException, status

from ..domain.errors import AuthenticationError
from ..services.airtable_client import AirtableClient
from ..services.auth_service import AuthService
from ..services.credential_service import CredentialService, get_credential_service
from ..services.form_service import FormService
from ..services.notification_processor import NotificationProcessor, get_notification_processor
from ..services.submission_service import SubmissionService
from ..services.subscription_service import SubscriptionService, get_subscription_service
from ..utils.jwt import get_session_token_manager
from ..utils.logger import set_correlation_id
from ..utils.idgen import generate_correlation_id


async def get_correlation_id_dep(
    x_correlation_id: Optional[str] = Header(None, alias="X-Correlation-Id")
) -> str:
    """
    Get or generate correlation ID for request tracing

    If client provides X-Correlation-Id, use it.
    Otherwise generate a new one.
    """
    correlation_id = x_correlation_id or generate_correlation_id()
    set_correlation_id(correlation_id)
    return correlation_id


def _account_from_token(token: str) -> str:
    try:
        return get_session_token_manager().get_account_id(token)
    except AuthenticationError as e:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=e.to_dict(),
            headers={"WWW-Authenticate": "Bearer"}
        )


async def get_current_account_dep(
    authorization: Optional[str] = Header(None),
    token: Optional[str] = Cookie(None)
) -> str:
    """
    Account ID of the signed-in form owner

    The session token comes from the Authorization header or, failing that,
    the `token` cookie set by the OAuth callback.

    Raises:
        HTTPException: 401 if token is invalid or missing
    """
    session_token = authorization or token
    if not session_token:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail={"error": {"code": "AUTHENTICATION_ERROR", "message": "Not authenticated"}},
            headers={"WWW-Authenticate": "Bearer"}
        )
    return _account_from_token(session_token)


async def get_optional_account_dep(
    authorization: Optional[str] = Header(None),
    token: Optional[str] = Cookie(None)
) -> Optional[str]:
    """
    Account ID if a session token was sent

    Returns None if no token provided.
    Raises error if token is provided but invalid.
    """
    session_token = authorization or token
    if not session_token:
        return None
    return _account_from_token(session_token)


# ============================================================================
# Service providers (overridden in tests)
# ============================================================================

def get_credential_service_dep() -> CredentialService:
    return get_credential_service()


def get_airtable_client_dep(
    credentials: CredentialService = Depends(get_credential_service_dep)
) -> AirtableClient:
    return credentials.client


def get_auth_service_dep(
    credentials: CredentialService = Depends(get_credential_service_dep)
) -> AuthService:
    return AuthService(credentials=credentials)


def get_subscription_service_dep() -> SubscriptionService:
    return get_subscription_service()


def get_form_service_dep(
    credentials: CredentialService = Depends(get_credential_service_dep),
    subscriptions: SubscriptionService = Depends(get_subscription_service_dep)
) -> FormService:
    return FormService(credentials=credentials, subscriptions=subscriptions)


def get_submission_service_dep(
    credentials: CredentialService = Depends(get_credential_service_dep)
) -> SubmissionService:
    return SubmissionService(credentials=credentials)


def get_notification_processor_dep() -> NotificationProcessor:
    return get_notification_processor()
