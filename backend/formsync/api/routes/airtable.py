"""Airtable API Routes - Bases, tables and fields for form authoring"""
from typing import Any, Dict, List, Optional
from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

from ..deps import get_airtable_client_dep, get_credential_service_dep, get_current_account_dep
from ...domain.errors import DomainError
from ...services.airtable_client import AirtableClient
from ...services.credential_service import CredentialService
from ...utils.logger import get_logger

logger = get_logger(__name__)
router = APIRouter()


class BaseListResponse(BaseModel):
    """Bases visible to the account"""
    count: int
    items: List[Dict[str, Any]]


class TableListResponse(BaseModel):
    """Tables of a base"""
    count: int
    items: List[Dict[str, Any]]


class FieldListResponse(BaseModel):
    """Fields of a table"""
    count: int
    items: List[Dict[str, Any]]
    supported_count: Optional[int] = None


@router.get("/bases", response_model=BaseListResponse)
async def list_bases(
    account_id: str = Depends(get_current_account_dep),
    credentials: CredentialService = Depends(get_credential_service_dep),
    client: AirtableClient = Depends(get_airtable_client_dep)
):
    """List bases the account can access"""
    try:
        credential = await credentials.get_valid_credential(account_id)
        bases = await client.list_bases(credential.access_token)
        return BaseListResponse(count=len(bases), items=bases)
    except DomainError as e:
        raise HTTPException(status_code=e.http_status, detail=e.to_dict())


@router.get("/bases/{base_id}/tables", response_model=TableListResponse)
async def list_tables(
    base_id: str,
    account_id: str = Depends(get_current_account_dep),
    credentials: CredentialService = Depends(get_credential_service_dep),
    client: AirtableClient = Depends(get_airtable_client_dep)
):
    """List tables (with fields) of a base"""
    try:
        credential = await credentials.get_valid_credential(account_id)
        tables = await client.get_base_schema(credential.access_token, base_id)
        return TableListResponse(count=len(tables), items=tables)
    except DomainError as e:
        raise HTTPException(status_code=e.http_status, detail=e.to_dict())


@router.get("/bases/{base_id}/tables/{table_id}/fields", response_model=FieldListResponse)
async def list_fields(
    base_id: str,
    table_id: str,
    account_id: str = Depends(get_current_account_dep),
    credentials: CredentialService = Depends(get_credential_service_dep),
    client: AirtableClient = Depends(get_airtable_client_dep)
):
    """List fields of a table, flagging the ones a form can use"""
    try:
        credential = await credentials.get_valid_credential(account_id)
        fields = await client.get_table_fields(credential.access_token, base_id, table_id)
        return FieldListResponse(
            count=len(fields),
            items=fields,
            supported_count=sum(1 for field in fields if field["is_supported"])
        )
    except DomainError as e:
        raise HTTPException(status_code=e.http_status, detail=e.to_dict())
