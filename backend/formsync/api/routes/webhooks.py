"""Webhook API Routes - Airtable notifications and subscription management"""
import json
from typing import Any, Dict, List
from fastapi import APIRouter, Depends, HTTPException, Request, Response, status
from pydantic import BaseModel

from ..deps import (
    get_credential_service_dep, get_current_account_dep, get_form_service_dep,
    get_notification_processor_dep, get_subscription_service_dep
)
from ...domain.models import NotificationPayload
from ...domain.errors import DomainError
from ...services.credential_service import CredentialService
from ...services.form_service import FormService
from ...services.notification_processor import NotificationProcessor
from ...services.subscription_service import SubscriptionService
from ...utils.logger import get_logger

logger = get_logger(__name__)
router = APIRouter()

SIGNATURE_HEADER = "X-Airtable-Content-MAC"


class SubscriptionResponse(BaseModel):
    """Registered subscription"""
    success: bool = True
    message: str
    data: Dict[str, Any]


class SubscriptionListResponse(BaseModel):
    """Subscriptions of a form"""
    success: bool = True
    count: int
    registering: bool = False
    data: List[Dict[str, Any]]


@router.post("/airtable")
async def receive_notification(
    request: Request,
    processor: NotificationProcessor = Depends(get_notification_processor_dep)
):
    """
    Change notification from Airtable

    Always acknowledged with 200 so Airtable does not retry; problems are
    logged instead.
    """
    try:
        raw_body = await request.body()
        body = json.loads(raw_body or b"{}")
        payload = NotificationPayload.from_webhook_body(body) if isinstance(body, dict) else None
        if payload is None:
            logger.info("Ignoring notification without a webhook id")
        else:
            await processor.process(payload, raw_body, request.headers.get(SIGNATURE_HEADER))
    except Exception as e:
        logger.exception(f"Error processing Airtable notification: {e}")
    return {"success": True}


@router.post("/register/{form_id}", response_model=SubscriptionResponse)
async def register_subscription(
    form_id: str,
    response: Response,
    account_id: str = Depends(get_current_account_dep),
    forms: FormService = Depends(get_form_service_dep),
    credentials: CredentialService = Depends(get_credential_service_dep),
    subscriptions: SubscriptionService = Depends(get_subscription_service_dep)
):
    """Subscribe to changes of a form's table (owner only)"""
    try:
        form = forms.get_form(form_id, account_id)
        existing = subscriptions.get_active_for_form(form.form_id)
        if existing:
            return SubscriptionResponse(message="Webhook already registered", data=existing.to_public())

        credential = await credentials.get_valid_credential(form.owner_id)
        subscription = await subscriptions.register(form, credential)
        response.status_code = status.HTTP_201_CREATED
        return SubscriptionResponse(message="Webhook registered successfully", data=subscription.to_public())
    except DomainError as e:
        raise HTTPException(status_code=e.http_status, detail=e.to_dict())


@router.delete("/{subscription_id}")
async def unregister_subscription(
    subscription_id: str,
    account_id: str = Depends(get_current_account_dep),
    forms: FormService = Depends(get_form_service_dep),
    credentials: CredentialService = Depends(get_credential_service_dep),
    subscriptions: SubscriptionService = Depends(get_subscription_service_dep)
):
    """Remove a subscription (owner only); Airtable deletion is best effort"""
    try:
        subscription = subscriptions.get(subscription_id)
        form = forms.get_form(subscription.form_id, account_id)

        credential = None
        try:
            credential = await credentials.get_valid_credential(form.owner_id)
        except DomainError as e:
            logger.warning(
                f"Retiring subscription {subscription_id} locally only: {e.message}",
                extra={"subscription_id": subscription_id, "error_code": e.error_code}
            )

        await subscriptions.unregister(subscription, credential)
        return {"success": True, "message": "Webhook deleted successfully"}
    except DomainError as e:
        raise HTTPException(status_code=e.http_status, detail=e.to_dict())


@router.get("/form/{form_id}", response_model=SubscriptionListResponse)
async def list_subscriptions(
    form_id: str,
    account_id: str = Depends(get_current_account_dep),
    forms: FormService = Depends(get_form_service_dep),
    subscriptions: SubscriptionService = Depends(get_subscription_service_dep)
):
    """Subscriptions of a form (owner only)"""
    try:
        form = forms.get_form(form_id, account_id)
        items = subscriptions.list_for_form(form.form_id)
        return SubscriptionListResponse(
            count=len(items),
            registering=subscriptions.is_registering(form.form_id),
            data=[s.to_public(subscriptions.state_of(s)) for s in items]
        )
    except DomainError as e:
        raise HTTPException(status_code=e.http_status, detail=e.to_dict())
