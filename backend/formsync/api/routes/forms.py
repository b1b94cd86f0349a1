"""Form API Routes - Form definitions, visibility preview and submission"""
from typing import Any, Dict, List, Optional
from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from pydantic import BaseModel, Field

from ..deps import (
    get_correlation_id_dep, get_current_account_dep, get_form_service_dep,
    get_optional_account_dep, get_submission_service_dep
)
from ...domain.models import ConditionalRule, FormDefinition, Question, SubmissionMetadata
from ...domain.enums import SubmissionSource
from ...domain.errors import DomainError
from ...engine.condition_evaluator import ConditionEvaluator
from ...services.form_service import FormService
from ...services.submission_service import SubmissionService
from ...utils.logger import get_logger

logger = get_logger(__name__)
router = APIRouter()


# ============================================================================
# Request/Response Models
# ============================================================================

class QuestionRequest(BaseModel):
    """Question within a form"""
    question_key: str = Field(..., min_length=1, max_length=100)
    external_field_id: str = Field(..., min_length=1)
    external_field_name: str = Field(..., min_length=1)
    label: str = Field(..., min_length=1, max_length=500)
    type: str
    required: bool = False
    options: List[str] = Field(default_factory=list)
    conditional_rules: Optional[ConditionalRule] = None
    order: Optional[int] = None

    def to_question(self, index: int) -> Question:
        data = self.model_dump()
        data["order"] = index if self.order is None else self.order
        return Question.model_validate(data)


class CreateFormRequest(BaseModel):
    """Request to create a form"""
    title: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = Field(None, max_length=2000)
    base_id: str = Field(..., min_length=1)
    table_id: str = Field(..., min_length=1)
    base_name: Optional[str] = None
    table_name: Optional[str] = None
    questions: List[QuestionRequest] = Field(..., min_length=1)


class UpdateFormRequest(BaseModel):
    """Request to update a form"""
    title: Optional[str] = Field(None, min_length=1, max_length=200)
    description: Optional[str] = Field(None, max_length=2000)
    questions: Optional[List[QuestionRequest]] = None
    is_active: Optional[bool] = None
    base_name: Optional[str] = None
    table_name: Optional[str] = None


class AnswersRequest(BaseModel):
    """Answers keyed by question key"""
    answers: Dict[str, Any] = Field(default_factory=dict)


class FormSummaryResponse(BaseModel):
    """Form without its questions, for list views"""
    form_id: str
    title: str
    description: Optional[str] = None
    base_id: str
    table_id: str
    base_name: Optional[str] = None
    table_name: Optional[str] = None
    is_active: bool
    question_count: int
    submission_count: int
    last_submission_at: Optional[str] = None
    created_at: str
    updated_at: str


class FormListResponse(BaseModel):
    """List of forms"""
    count: int
    items: List[FormSummaryResponse]


class VisibilityResponse(BaseModel):
    """Questions visible for a partial answer set"""
    visible_keys: List[str]


class SubmitResponse(BaseModel):
    """Accepted submission"""
    success: bool = True
    message: str = "Form submitted successfully"
    response_id: str
    external_record_id: str


# ============================================================================
# Helper Functions
# ============================================================================

def _form_to_summary(form: FormDefinition) -> FormSummaryResponse:
    """Convert form model to list item"""
    return FormSummaryResponse(
        form_id=form.form_id,
        title=form.title,
        description=form.description,
        base_id=form.base_id,
        table_id=form.table_id,
        base_name=form.base_name,
        table_name=form.table_name,
        is_active=form.is_active,
        question_count=len(form.questions),
        submission_count=form.submission_count,
        last_submission_at=form.last_submission_at.isoformat() if form.last_submission_at else None,
        created_at=form.created_at.isoformat(),
        updated_at=form.updated_at.isoformat()
    )


# ============================================================================
# Routes
# ============================================================================

@router.post("", response_model=FormDefinition, status_code=status.HTTP_201_CREATED)
async def create_form(
    request: CreateFormRequest,
    account_id: str = Depends(get_current_account_dep),
    service: FormService = Depends(get_form_service_dep),
    correlation_id: str = Depends(get_correlation_id_dep)
):
    """Create a form over an Airtable table"""
    try:
        form = service.create_form(
            owner_id=account_id,
            title=request.title,
            description=request.description,
            base_id=request.base_id,
            table_id=request.table_id,
            base_name=request.base_name,
            table_name=request.table_name,
            questions=[q.to_question(index) for index, q in enumerate(request.questions)]
        )
        return form
    except DomainError as e:
        raise HTTPException(status_code=e.http_status, detail=e.to_dict())


@router.get("", response_model=FormListResponse)
async def list_forms(
    is_active: Optional[bool] = Query(None, description="Filter by active flag"),
    account_id: str = Depends(get_current_account_dep),
    service: FormService = Depends(get_form_service_dep)
):
    """List the signed-in owner's forms, newest first"""
    try:
        forms = service.list_forms(account_id, is_active)
        return FormListResponse(count=len(forms), items=[_form_to_summary(f) for f in forms])
    except DomainError as e:
        raise HTTPException(status_code=e.http_status, detail=e.to_dict())


@router.get("/{form_id}", response_model=FormDefinition)
async def get_form(
    form_id: str,
    account_id: str = Depends(get_current_account_dep),
    service: FormService = Depends(get_form_service_dep)
):
    """Get a form definition (owner only)"""
    try:
        return service.get_form(form_id, account_id)
    except DomainError as e:
        raise HTTPException(status_code=e.http_status, detail=e.to_dict())


@router.put("/{form_id}", response_model=FormDefinition)
async def update_form(
    form_id: str,
    request: UpdateFormRequest,
    account_id: str = Depends(get_current_account_dep),
    service: FormService = Depends(get_form_service_dep)
):
    """Update a form"""
    try:
        updates: Dict[str, Any] = request.model_dump(exclude_unset=True, exclude={"questions"})
        if request.questions is not None:
            updates["questions"] = [q.to_question(index) for index, q in enumerate(request.questions)]
        return service.update_form(form_id, account_id, updates)
    except DomainError as e:
        raise HTTPException(status_code=e.http_status, detail=e.to_dict())


@router.delete("/{form_id}")
async def delete_form(
    form_id: str,
    account_id: str = Depends(get_current_account_dep),
    service: FormService = Depends(get_form_service_dep)
):
    """Delete a form, its responses and its webhooks"""
    try:
        await service.delete_form(form_id, account_id)
        return {"success": True, "message": "Form deleted successfully"}
    except DomainError as e:
        raise HTTPException(status_code=e.http_status, detail=e.to_dict())


@router.post("/{form_id}/visibility", response_model=VisibilityResponse)
async def preview_visibility(
    form_id: str,
    request: AnswersRequest,
    service: FormService = Depends(get_form_service_dep)
):
    """Which questions are visible for the answers given so far"""
    try:
        form = service.get_active_form(form_id)
        visible = ConditionEvaluator().get_visible_keys(form.questions, request.answers)
        return VisibilityResponse(visible_keys=visible)
    except DomainError as e:
        raise HTTPException(status_code=e.http_status, detail=e.to_dict())


@router.post("/{form_id}/submit", response_model=SubmitResponse, status_code=status.HTTP_201_CREATED)
async def submit_form(
    form_id: str,
    body: AnswersRequest,
    request: Request,
    account_id: Optional[str] = Depends(get_optional_account_dep),
    forms: FormService = Depends(get_form_service_dep),
    submissions: SubmissionService = Depends(get_submission_service_dep),
    correlation_id: str = Depends(get_correlation_id_dep)
):
    """Submit answers; creates the Airtable record and stores the response"""
    try:
        form = forms.get_active_form(form_id)
        metadata = SubmissionMetadata(
            submitted_by=account_id,
            ip_address=request.client.host if request.client else None,
            user_agent=request.headers.get("user-agent"),
            submission_source=SubmissionSource.WEB.value
        )
        record = await submissions.submit(form, body.answers, metadata)
        return SubmitResponse(response_id=record.response_id, external_record_id=record.external_record_id)
    except DomainError as e:
        raise HTTPException(status_code=e.http_status, detail=e.to_dict())
