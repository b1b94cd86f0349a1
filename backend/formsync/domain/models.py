"""Domain Models - Pydantic schemas for all entities"""
from datetime import datetime
from typing import Any, Dict, List, Optional
from pydantic import BaseModel, Field, ConfigDict

from .enums import SubscriptionState, SubmissionSource
from ..utils.time import utc_now


# ============================================================================
# Credentials
# ============================================================================

class Credential(BaseModel):
    """Delegated Airtable access for one external account"""
    model_config = ConfigDict(extra="ignore")

    account_id: str = Field(..., description="Airtable user ID")
    access_token: str = Field(..., description="OAuth access token")
    refresh_token: Optional[str] = Field(None, description="OAuth refresh token")
    expires_at: datetime = Field(..., description="When the access token expires")
    scopes: List[str] = Field(default_factory=list)
    email: Optional[str] = None
    name: Optional[str] = None
    profile: Dict[str, Any] = Field(default_factory=dict, description="Raw whoami payload")
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    def to_public(self) -> Dict[str, Any]:
        """Serialize without secrets"""
        return self.model_dump(mode="json", exclude={"access_token", "refresh_token"})


class TokenGrant(BaseModel):
    """Result of an OAuth token exchange"""
    access_token: str
    refresh_token: Optional[str] = None
    expires_in: int = Field(..., description="Lifetime of the access token in seconds")
    scope: Optional[str] = None

    @property
    def scopes(self) -> List[str]:
        return self.scope.split() if self.scope else []


# ============================================================================
# Forms & Conditional Rules
# ============================================================================

class Condition(BaseModel):
    """Single visibility condition on another question's answer"""
    model_config = ConfigDict(extra="forbid")

    question_key: str = Field(..., description="Key of the question whose answer is tested")
    operator: str = Field(..., description="equals, notEquals or contains")
    value: Any = Field(..., description="Value to compare against")


class ConditionalRule(BaseModel):
    """Conditions combined with AND/OR logic"""
    model_config = ConfigDict(extra="forbid")

    logic: str = Field("AND", description="AND or OR")
    conditions: List[Condition] = Field(default_factory=list)


class Question(BaseModel):
    """Form question mapped onto an Airtable field"""
    model_config = ConfigDict(extra="forbid")

    question_key: str = Field(..., min_length=1, description="Stable key, unique within the form")
    external_field_id: str = Field(..., min_length=1, description="Airtable field ID")
    external_field_name: str = Field(..., min_length=1, description="Airtable field name")
    label: str = Field(..., min_length=1)
    type: str = Field(..., description="Declared answer type")
    required: bool = False
    options: List[str] = Field(default_factory=list, description="Allowed options for select types")
    conditional_rules: Optional[ConditionalRule] = None
    order: int = 0


class FormDefinition(BaseModel):
    """Form definition targeting one Airtable table"""
    model_config = ConfigDict(extra="ignore")

    form_id: str
    owner_id: str = Field(..., description="Account ID of the owning credential")
    title: str
    description: Optional[str] = None
    base_id: str
    table_id: str
    base_name: Optional[str] = None
    table_name: Optional[str] = None
    questions: List[Question] = Field(default_factory=list)
    is_active: bool = True
    submission_count: int = 0
    last_submission_at: Optional[datetime] = None
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)


class RuleViolation(BaseModel):
    """One problem found in a form's conditional rules"""
    question_index: int
    question_key: str
    condition_index: Optional[int] = None
    message: str


class RuleValidationResult(BaseModel):
    """Outcome of authoring-time rule validation"""
    ok: bool
    errors: List[RuleViolation] = Field(default_factory=list)


# ============================================================================
# Submissions
# ============================================================================

class SubmissionMetadata(BaseModel):
    """Where a submission came from"""
    submitted_by: Optional[str] = None
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    submission_source: str = SubmissionSource.WEB.value


class SubmissionRecord(BaseModel):
    """Local copy of an answer set mirrored as an Airtable record"""
    model_config = ConfigDict(extra="ignore")

    response_id: str
    form_id: str
    external_record_id: str = Field(..., description="Airtable record ID")
    answers: Dict[str, Any] = Field(default_factory=dict)
    metadata: SubmissionMetadata = Field(default_factory=SubmissionMetadata)
    deleted_externally: bool = False
    last_synced_at: datetime = Field(default_factory=utc_now)
    created_at: datetime = Field(default_factory=utc_now)


class ExternalRecord(BaseModel):
    """Record as returned by Airtable"""
    id: str
    fields: Dict[str, Any] = Field(default_factory=dict)
    created_time: Optional[datetime] = None


# ============================================================================
# Subscriptions (Airtable webhooks)
# ============================================================================

class SubscriptionError(BaseModel):
    """Last renewal error"""
    message: str
    timestamp: datetime


class Subscription(BaseModel):
    """Change-notification subscription for one form's table"""
    model_config = ConfigDict(extra="ignore")

    external_id: str = Field(..., description="Airtable webhook ID")
    form_id: str
    base_id: str
    table_id: str
    notification_url: str
    mac_secret: Optional[str] = Field(None, description="Base64 HMAC secret for notification signatures")
    cursor: int = 1
    active: bool = True
    last_ping_at: datetime = Field(default_factory=utc_now)
    last_notification_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None
    error_count: int = 0
    last_error: Optional[SubscriptionError] = None
    created_at: datetime = Field(default_factory=utc_now)

    @property
    def state(self) -> SubscriptionState:
        return SubscriptionState.ACTIVE if self.active else SubscriptionState.RETIRED

    def to_public(self, state: Optional[SubscriptionState] = None) -> Dict[str, Any]:
        """Serialize without the MAC secret"""
        data = self.model_dump(mode="json", exclude={"mac_secret"})
        data["state"] = (state or self.state).value
        return data


class SubscriptionGrant(BaseModel):
    """Result of creating a subscription in Airtable"""
    id: str
    mac_secret: Optional[str] = None
    expiration_time: Optional[datetime] = None


class SweepResult(BaseModel):
    """Summary of one renewal sweep"""
    selected: int = 0
    renewed: int = 0
    failed: int = 0
    retired: int = 0
    skipped: int = 0
    cancelled: bool = False


# ============================================================================
# Inbound Notifications
# ============================================================================

class RecordChange(BaseModel):
    """Change to a single record"""
    model_config = ConfigDict(extra="ignore")

    current: Optional[Dict[str, Any]] = None
    previous: Optional[Dict[str, Any]] = None

    @property
    def is_materialized(self) -> bool:
        return bool(self.current and self.current.get("cellValuesByFieldId"))


class TableChanges(BaseModel):
    """Changes reported for one table"""
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    changed_records_by_id: Dict[str, RecordChange] = Field(default_factory=dict, alias="changedRecordsById")
    destroyed_record_ids: List[str] = Field(default_factory=list, alias="destroyedRecordIds")
    created_records_by_id: Dict[str, Any] = Field(default_factory=dict, alias="createdRecordsById")


class NotificationPayload(BaseModel):
    """Inbound change notification, normalized"""
    model_config = ConfigDict(extra="ignore")

    subscription_external_id: str
    base_id: Optional[str] = None
    timestamp: datetime = Field(default_factory=utc_now)
    cursor: Optional[int] = None
    changed_tables_by_id: Dict[str, TableChanges] = Field(default_factory=dict)

    @classmethod
    def from_webhook_body(cls, body: Dict[str, Any]) -> Optional["NotificationPayload"]:
        """
        Build from the JSON body Airtable posts

        Returns None when the body does not identify a webhook.
        """
        webhook = body.get("webhook") or {}
        webhook_id = webhook.get("id") if isinstance(webhook, dict) else None
        if not webhook_id:
            return None

        base = body.get("base") or {}
        data: Dict[str, Any] = {
            "subscription_external_id": webhook_id,
            "base_id": base.get("id") if isinstance(base, dict) else None,
            "cursor": body.get("cursor"),
            "changed_tables_by_id": body.get("changedTablesById") or {},
        }
        if body.get("timestamp"):
            data["timestamp"] = body["timestamp"]
        return cls.model_validate(data)


class NotificationOutcome(BaseModel):
    """What processing a notification did"""
    subscription_external_id: str
    accepted: bool = False
    reason: Optional[str] = None
    updated: int = 0
    deleted: int = 0
    created_observed: int = 0
    failed: int = 0
