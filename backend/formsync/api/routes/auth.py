"""Auth API Routes - Airtable OAuth handshake and session"""
from typing import Any, Dict, List, Optional
from urllib.parse import quote
from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import JSONResponse, RedirectResponse
from pydantic import BaseModel

from ..deps import (
    get_auth_service_dep, get_correlation_id_dep, get_credential_service_dep, get_current_account_dep
)
from ...config.settings import settings
from ...domain.errors import DomainError
from ...services.auth_service import AuthService
from ...services.credential_service import CredentialService
from ...utils.jwt import get_session_token_manager
from ...utils.logger import get_logger

logger = get_logger(__name__)
router = APIRouter()

SESSION_COOKIE = "token"


# ============================================================================
# Request/Response Models
# ============================================================================

class AuthorizationStartResponse(BaseModel):
    """Where to send the browser to authorize"""
    success: bool = True
    auth_url: str
    state: str


class AccountResponse(BaseModel):
    """Signed-in account, without tokens"""
    account_id: str
    email: Optional[str] = None
    name: Optional[str] = None
    scopes: List[str]
    expires_at: str
    created_at: str
    updated_at: str


class RefreshResponse(BaseModel):
    """Result of a manual token refresh"""
    success: bool = True
    message: str
    expires_at: str


# ============================================================================
# Routes
# ============================================================================

@router.get("/airtable", response_model=AuthorizationStartResponse)
async def start_authorization(
    service: AuthService = Depends(get_auth_service_dep),
    correlation_id: str = Depends(get_correlation_id_dep)
):
    """Begin the Airtable OAuth flow (PKCE)"""
    try:
        started = service.begin_authorization()
        return AuthorizationStartResponse(auth_url=started["auth_url"], state=started["state"])
    except DomainError as e:
        raise HTTPException(status_code=e.http_status, detail=e.to_dict())


@router.get("/airtable/callback")
async def authorization_callback(
    code: Optional[str] = Query(None),
    state: Optional[str] = Query(None),
    error: Optional[str] = Query(None),
    service: AuthService = Depends(get_auth_service_dep)
):
    """
    Airtable redirects here after consent

    Success sets the session cookie and redirects to the frontend with the
    token; any failure redirects to the frontend login page.
    """
    frontend_url = settings.frontend_url.rstrip("/")
    if error:
        logger.warning(f"Airtable authorization denied: {error}")
        return RedirectResponse(f"{frontend_url}/login?error={quote(error)}")

    try:
        credential, session_token = await service.complete_authorization(code or "", state or "")
    except DomainError as e:
        logger.error(f"OAuth callback failed: {e.error_code} - {e.message}")
        return RedirectResponse(f"{frontend_url}/login?error=auth_failed")

    response = RedirectResponse(f"{frontend_url}/callback?token={quote(session_token)}")
    response.set_cookie(
        SESSION_COOKIE,
        session_token,
        max_age=get_session_token_manager().max_age_seconds,
        httponly=True,
        secure=settings.is_production,
        samesite="lax"
    )
    logger.info("Signed in via Airtable", extra={"account_id": credential.account_id})
    return response


@router.get("/me", response_model=AccountResponse)
async def get_me(
    account_id: str = Depends(get_current_account_dep),
    credentials: CredentialService = Depends(get_credential_service_dep)
):
    """Get the signed-in account"""
    try:
        data: Dict[str, Any] = credentials.get(account_id).to_public()
        return AccountResponse(**data)
    except DomainError as e:
        raise HTTPException(status_code=e.http_status, detail=e.to_dict())


@router.post("/refresh", response_model=RefreshResponse)
async def refresh_token(
    account_id: str = Depends(get_current_account_dep),
    credentials: CredentialService = Depends(get_credential_service_dep)
):
    """Refresh the Airtable access token now"""
    try:
        credential = await credentials.refresh(credentials.get(account_id))
        return RefreshResponse(
            message="Token refreshed successfully",
            expires_at=credential.expires_at.isoformat()
        )
    except DomainError as e:
        raise HTTPException(status_code=e.http_status, detail=e.to_dict())


@router.post("/logout")
async def logout(account_id: str = Depends(get_current_account_dep)):
    """Clear the session cookie"""
    response = JSONResponse({"success": True, "message": "Logged out successfully"})
    response.delete_cookie(SESSION_COOKIE)
    logger.info("Signed out", extra={"account_id": account_id})
    return response
