"""Response API Routes - Stored submissions"""
from typing import Any, Dict, List
from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel

from ..deps import get_current_account_dep, get_form_service_dep, get_submission_service_dep
from ...domain.models import SubmissionRecord
from ...domain.errors import DomainError
from ...services.form_service import FormService
from ...services.submission_service import SubmissionService

router = APIRouter()


class ResponseListResponse(BaseModel):
    """Submissions of a form"""
    form_id: str
    count: int
    items: List[SubmissionRecord]


class ResponseDetailResponse(BaseModel):
    """One submission with the questions needed to render it"""
    response: SubmissionRecord
    form: Dict[str, Any]


@router.get("/forms/{form_id}/responses", response_model=ResponseListResponse)
async def list_responses(
    form_id: str,
    include_deleted: bool = Query(False, description="Include records deleted in Airtable"),
    account_id: str = Depends(get_current_account_dep),
    forms: FormService = Depends(get_form_service_dep),
    submissions: SubmissionService = Depends(get_submission_service_dep)
):
    """List a form's responses, newest first"""
    try:
        form = forms.get_form(form_id, account_id)
        records = submissions.list_for_form(form, include_deleted)
        return ResponseListResponse(form_id=form_id, count=len(records), items=records)
    except DomainError as e:
        raise HTTPException(status_code=e.http_status, detail=e.to_dict())


@router.get("/responses/{response_id}", response_model=ResponseDetailResponse)
async def get_response(
    response_id: str,
    account_id: str = Depends(get_current_account_dep),
    submissions: SubmissionService = Depends(get_submission_service_dep)
):
    """Get a single response (form owner only)"""
    try:
        found = submissions.get_submission(response_id, account_id)
        form = found["form"]
        return ResponseDetailResponse(
            response=found["response"],
            form={"form_id": form.form_id, "title": form.title, "questions": form.model_dump(mode="json")["questions"]}
        )
    except DomainError as e:
        raise HTTPException(status_code=e.http_status, detail=e.to_dict())
