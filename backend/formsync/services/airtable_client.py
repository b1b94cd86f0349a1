"""Airtable Client - OAuth token exchange, webhooks, records and schema"""
from datetime import datetime
from typing import Any, Dict, List, Optional, Type, TypeVar
from urllib.parse import quote

import httpx
from pydantic import BaseModel, ValidationError as PydanticValidationError

from ..config.settings import settings
from ..domain.models import ExternalRecord, SubscriptionGrant, TokenGrant
from ..domain.enums import AUTHORABLE_ANSWER_TYPES
from ..domain.errors import (
    AuthExpiredError, ExternalServiceError, NotFoundError, UpstreamUnavailableError
)
from ..utils.logger import get_logger
from ..utils.time import parse_optional_iso

logger = get_logger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)


class AirtableClient:
    """
    Thin async wrapper over the Airtable REST API

    Every call carries a bounded timeout. Failures are raised as domain errors:
    401/403 -> AuthExpiredError, 429/5xx/transport -> UpstreamUnavailableError,
    other non-2xx or a 2xx body that is not the expected JSON -> ExternalServiceError.
    """

    def __init__(
        self,
        api_base_url: Optional[str] = None,
        token_url: Optional[str] = None,
        client_id: Optional[str] = None,
        client_secret: Optional[str] = None,
        redirect_uri: Optional[str] = None,
        timeout_seconds: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        self.api_base_url = (api_base_url or settings.airtable_api_base_url).rstrip("/")
        self.token_url = token_url or settings.airtable_token_url
        self.client_id = client_id if client_id is not None else settings.airtable_client_id
        self.client_secret = client_secret if client_secret is not None else settings.airtable_client_secret
        self.redirect_uri = redirect_uri or settings.airtable_redirect_uri
        self.timeout_seconds = timeout_seconds or settings.http_timeout_seconds
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self.timeout_seconds, transport=self._transport)

    # =========================================================================
    # OAuth token exchange
    # =========================================================================

    async def exchange_authorization_code(self, verifier: str, code: str) -> TokenGrant:
        """Exchange an authorization code (PKCE) for tokens"""
        data = await self._token_request({
            "grant_type": "authorization_code",
            "code": code,
            "code_verifier": verifier,
            "redirect_uri": self.redirect_uri,
        })
        return self._parse(TokenGrant, data, "token exchange (authorization_code)")

    async def exchange_refresh_token(self, refresh_token: str) -> TokenGrant:
        """Exchange a refresh token for a new access token"""
        data = await self._token_request({
            "grant_type": "refresh_token",
            "refresh_token": refresh_token,
        })
        return self._parse(TokenGrant, data, "token exchange (refresh_token)")

    async def _token_request(self, form: Dict[str, str]) -> Dict[str, Any]:
        grant_type = form["grant_type"]
        try:
            async with self._client() as client:
                response = await client.post(
                    self.token_url,
                    data=form,
                    auth=(self.client_id, self.client_secret),
                    headers={"Content-Type": "application/x-www-form-urlencoded"}
                )
        except httpx.HTTPError as e:
            logger.error(f"Airtable token exchange ({grant_type}) failed: {e}")
            raise UpstreamUnavailableError(
                "Airtable token endpoint unreachable",
                details={"grant_type": grant_type, "reason": type(e).__name__}
            )

        if response.status_code in (400, 401, 403):
            logger.warning(f"Airtable rejected {grant_type} exchange: {response.status_code} - {response.text}")
            raise AuthExpiredError(
                "Airtable rejected the token exchange",
                details={"grant_type": grant_type, "upstream": self._error_message(response)}
            )
        action = f"token exchange ({grant_type})"
        self._raise_for_status(response, action)
        return self._json(response, action)

    # =========================================================================
    # Metadata
    # =========================================================================

    async def get_current_user(self, access_token: str) -> Dict[str, Any]:
        """Profile of the account that granted the token (whoami)"""
        return await self._request("GET", "/meta/whoami", access_token, action="fetch user profile")

    async def list_bases(self, access_token: str) -> List[Dict[str, Any]]:
        """Bases the token can access"""
        data = await self._request("GET", "/meta/bases", access_token, action="list bases")
        return [
            {
                "id": base.get("id"),
                "name": base.get("name"),
                "permission_level": base.get("permissionLevel"),
            }
            for base in data.get("bases", [])
        ]

    async def get_base_schema(self, access_token: str, base_id: str) -> List[Dict[str, Any]]:
        """Tables and fields of a base"""
        data = await self._request(
            "GET", f"/meta/bases/{base_id}/tables", access_token, action="fetch base schema"
        )
        return [
            {
                "id": table.get("id"),
                "name": table.get("name"),
                "primary_field_id": table.get("primaryFieldId"),
                "fields": [
                    {
                        "id": field.get("id"),
                        "name": field.get("name"),
                        "type": field.get("type"),
                        "options": field.get("options"),
                    }
                    for field in table.get("fields", [])
                ],
            }
            for table in data.get("tables", [])
        ]

    async def get_table_fields(self, access_token: str, base_id: str, table_id: str) -> List[Dict[str, Any]]:
        """Fields of one table, flagged with whether a form can use them"""
        tables = await self.get_base_schema(access_token, base_id)
        table = next((t for t in tables if t["id"] == table_id), None)
        if table is None:
            raise NotFoundError(f"Table {table_id} not found in base {base_id}")

        return [
            {**field, "is_supported": field["type"] in AUTHORABLE_ANSWER_TYPES}
            for field in table["fields"]
        ]

    # =========================================================================
    # Records
    # =========================================================================

    async def create_record(
        self,
        access_token: str,
        base_id: str,
        table_id: str,
        fields: Dict[str, Any]
    ) -> ExternalRecord:
        """Create a record, letting Airtable typecast values"""
        data = await self._request(
            "POST",
            f"/{base_id}/{quote(table_id, safe='')}",
            access_token,
            json={"fields": fields, "typecast": True},
            action="create record"
        )
        return self._parse(ExternalRecord, {
            "id": data.get("id"),
            "fields": data.get("fields") or {},
            "created_time": self._timestamp(data.get("createdTime"), "create record"),
        }, "create record")

    # =========================================================================
    # Webhooks
    # =========================================================================

    async def create_subscription(
        self,
        access_token: str,
        base_id: str,
        callback_url: str,
        filter_spec: Dict[str, Any]
    ) -> SubscriptionGrant:
        """Create a webhook on a base"""
        data = await self._request(
            "POST",
            f"/bases/{base_id}/webhooks",
            access_token,
            json={"notificationUrl": callback_url, "specification": filter_spec},
            action="create webhook"
        )
        return self._parse(SubscriptionGrant, {
            "id": data.get("id"),
            "mac_secret": data.get("macSecretBase64"),
            "expiration_time": self._timestamp(data.get("expirationTime"), "create webhook"),
        }, "create webhook")

    async def renew_subscription(self, access_token: str, base_id: str, subscription_id: str):
        """
        Extend a webhook's lifetime

        Returns:
            New expiration time, if Airtable reports one
        """
        data = await self._request(
            "POST",
            f"/bases/{base_id}/webhooks/{subscription_id}/refresh",
            access_token,
            action="refresh webhook"
        )
        return self._timestamp(data.get("expirationTime"), "refresh webhook")

    async def delete_subscription(self, access_token: str, base_id: str, subscription_id: str) -> None:
        """Delete a webhook"""
        await self._request(
            "DELETE",
            f"/bases/{base_id}/webhooks/{subscription_id}",
            access_token,
            action="delete webhook"
        )

    # =========================================================================
    # Transport
    # =========================================================================

    async def _request(
        self,
        method: str,
        path: str,
        access_token: str,
        json: Optional[Dict[str, Any]] = None,
        action: str = "call Airtable"
    ) -> Dict[str, Any]:
        url = f"{self.api_base_url}{path}"
        try:
            async with self._client() as client:
                response = await client.request(
                    method,
                    url,
                    headers={
                        "Authorization": f"Bearer {access_token}",
                        "Content-Type": "application/json"
                    },
                    json=json
                )
        except httpx.HTTPError as e:
            logger.error(f"Airtable request to {action} failed: {type(e).__name__}: {e}")
            raise UpstreamUnavailableError(
                f"Airtable unreachable while trying to {action}",
                details={"reason": type(e).__name__}
            )

        self._raise_for_status(response, action)
        if not response.content:
            return {}
        return self._json(response, action)

    def _json(self, response: httpx.Response, action: str) -> Dict[str, Any]:
        try:
            data = response.json()
        except ValueError:
            data = None
        if not isinstance(data, dict):
            logger.error(f"Airtable returned a non-JSON body to {action}: {response.text[:200]}")
            raise ExternalServiceError(
                f"Airtable returned an unreadable response to {action}",
                details={"status_code": response.status_code}
            )
        return data

    def _timestamp(self, value: Any, action: str) -> Optional[datetime]:
        try:
            return parse_optional_iso(value)
        except (ValueError, OverflowError):
            logger.error(f"Airtable returned an unparseable timestamp to {action}: {value!r}")
            raise ExternalServiceError(
                f"Airtable returned an unexpected response to {action}",
                details={"value": str(value)}
            )

    def _parse(self, model: Type[ModelT], data: Dict[str, Any], action: str) -> ModelT:
        try:
            return model.model_validate(data)
        except PydanticValidationError as e:
            logger.error(f"Airtable returned an unexpected body to {action}: {e.error_count()} errors")
            raise ExternalServiceError(
                f"Airtable returned an unexpected response to {action}",
                details={"fields": sorted({".".join(map(str, err["loc"])) for err in e.errors()})}
            )

    def _raise_for_status(self, response: httpx.Response, action: str) -> None:
        status = response.status_code
        if status < 400:
            return

        message = self._error_message(response)
        details = {"status_code": status, "upstream": message}
        logger.error(f"Airtable failed to {action}: {status} - {message}")

        if status in (401, 403):
            raise AuthExpiredError(f"Airtable refused to {action}", details=details)
        if status == 404:
            raise NotFoundError(f"Airtable could not find the target to {action}", details=details)
        if status == 429 or status >= 500:
            raise UpstreamUnavailableError(f"Airtable unavailable to {action}", details=details)
        raise ExternalServiceError(f"Airtable failed to {action}: {message}", details=details)

    @staticmethod
    def _error_message(response: httpx.Response) -> str:
        try:
            body = response.json()
        except ValueError:
            return response.text
        error = body.get("error") if isinstance(body, dict) else None
        if isinstance(error, dict):
            return error.get("message") or error.get("type") or str(error)
        if isinstance(error, str):
            return body.get("error_description") or error
        return response.text
