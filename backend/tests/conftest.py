"""
Pytest Configuration and Fixtures

In-memory stand-ins for the Mongo repositories and the Airtable client, so
services can be exercised without a database or network.
"""

import os
import tempfile

# Settings are read at import time
os.environ.setdefault("LOGS_PATH", os.path.join(tempfile.gettempdir(), "formsync-test-logs"))
os.environ.setdefault("SCHEDULER_ENABLED", "false")
os.environ.setdefault("JWT_SECRET", "test-secret")
os.environ.setdefault("ENCRYPTION_KEY", "MDEyMzQ1Njc4OWFiY2RlZjAxMjM0NTY3ODlhYmNkZWY=")
os.environ.setdefault("REQUIRE_WEBHOOK_SIGNATURE", "false")

import asyncio
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

import pytest

from formsync.domain.errors import (
    CredentialNotFoundError, FormNotFoundError, SubmissionNotFoundError, SubscriptionNotFoundError
)
from formsync.domain.models import (
    Credential, ExternalRecord, FormDefinition, Question, SubmissionRecord,
    Subscription, SubscriptionGrant, TokenGrant
)
from formsync.services.credential_service import CredentialService
from formsync.utils.time import utc_now


# ============================================================================
# Fake repositories
# ============================================================================

class FakeCredentialRepository:
    def __init__(self):
        self.items: Dict[str, Credential] = {}

    def get_credential(self, account_id: str) -> Optional[Credential]:
        credential = self.items.get(account_id)
        return credential.model_copy(deep=True) if credential else None

    def get_credential_or_raise(self, account_id: str) -> Credential:
        credential = self.get_credential(account_id)
        if not credential:
            raise CredentialNotFoundError(f"No credential for account {account_id}")
        return credential

    def save_credential(self, credential: Credential) -> Credential:
        self.items[credential.account_id] = credential.model_copy(deep=True)
        return credential

    def update_credential(self, account_id: str, updates: Dict[str, Any]) -> Credential:
        if account_id not in self.items:
            raise CredentialNotFoundError(f"No credential for account {account_id}")
        self.items[account_id] = self.items[account_id].model_copy(update=updates)
        return self.get_credential(account_id)


class FakeFormRepository:
    def __init__(self):
        self.items: Dict[str, FormDefinition] = {}

    def create_form(self, form: FormDefinition) -> FormDefinition:
        self.items[form.form_id] = form.model_copy(deep=True)
        return form

    def get_form(self, form_id: str) -> Optional[FormDefinition]:
        form = self.items.get(form_id)
        return form.model_copy(deep=True) if form else None

    def get_form_or_raise(self, form_id: str) -> FormDefinition:
        form = self.get_form(form_id)
        if not form:
            raise FormNotFoundError(f"Form {form_id} not found")
        return form

    def list_forms_for_owner(self, owner_id: str, is_active: Optional[bool] = None) -> List[FormDefinition]:
        forms = [
            f for f in self.items.values()
            if f.owner_id == owner_id and (is_active is None or f.is_active == is_active)
        ]
        return sorted(forms, key=lambda f: f.created_at, reverse=True)

    def update_form(self, form_id: str, updates: Dict[str, Any]) -> FormDefinition:
        if form_id not in self.items:
            raise FormNotFoundError(f"Form {form_id} not found")
        data = self.items[form_id].model_dump()
        data.update(updates)
        data["updated_at"] = utc_now()
        self.items[form_id] = FormDefinition.model_validate(data)
        return self.get_form(form_id)

    def record_submission(self, form_id: str, submitted_at: datetime) -> None:
        form = self.items[form_id]
        self.items[form_id] = form.model_copy(update={
            "submission_count": form.submission_count + 1,
            "last_submission_at": submitted_at,
        })

    def delete_form(self, form_id: str) -> bool:
        return self.items.pop(form_id, None) is not None


class FakeSubmissionRepository:
    def __init__(self):
        self.items: Dict[str, SubmissionRecord] = {}
        self.fail_on: set = set()

    def create_submission(self, record: SubmissionRecord) -> SubmissionRecord:
        self.items[record.response_id] = record.model_copy(deep=True)
        return record

    def get_submission(self, response_id: str) -> Optional[SubmissionRecord]:
        record = self.items.get(response_id)
        return record.model_copy(deep=True) if record else None

    def get_submission_or_raise(self, response_id: str) -> SubmissionRecord:
        record = self.get_submission(response_id)
        if not record:
            raise SubmissionNotFoundError(f"Response {response_id} not found")
        return record

    def find_by_external_record(self, external_record_id: str, form_id: str) -> Optional[SubmissionRecord]:
        if external_record_id in self.fail_on:
            raise RuntimeError(f"storage failure for {external_record_id}")
        for record in self.items.values():
            if record.external_record_id == external_record_id and record.form_id == form_id:
                return record.model_copy(deep=True)
        return None

    def list_for_form(self, form_id: str, include_deleted: bool = False) -> List[SubmissionRecord]:
        records = [
            r for r in self.items.values()
            if r.form_id == form_id and (include_deleted or not r.deleted_externally)
        ]
        return sorted(records, key=lambda r: r.created_at, reverse=True)

    def mark_synced(self, response_id: str, synced_at: datetime) -> None:
        self.items[response_id] = self.items[response_id].model_copy(update={"last_synced_at": synced_at})

    def mark_deleted_externally(self, response_id: str, synced_at: datetime) -> None:
        self.items[response_id] = self.items[response_id].model_copy(
            update={"deleted_externally": True, "last_synced_at": synced_at}
        )

    def delete_for_form(self, form_id: str) -> int:
        doomed = [key for key, r in self.items.items() if r.form_id == form_id]
        for key in doomed:
            del self.items[key]
        return len(doomed)


class FakeSubscriptionRepository:
    def __init__(self):
        self.items: Dict[str, Subscription] = {}
        self.writes: List[Dict[str, Any]] = []

    def create_subscription(self, subscription: Subscription) -> Subscription:
        self.items[subscription.external_id] = subscription.model_copy(deep=True)
        return subscription

    def get_subscription(self, external_id: str) -> Optional[Subscription]:
        subscription = self.items.get(external_id)
        return subscription.model_copy(deep=True) if subscription else None

    def get_subscription_or_raise(self, external_id: str) -> Subscription:
        subscription = self.get_subscription(external_id)
        if not subscription:
            raise SubscriptionNotFoundError(f"Subscription {external_id} not found")
        return subscription

    def find_active_for_form(self, form_id: str) -> Optional[Subscription]:
        for subscription in self.items.values():
            if subscription.form_id == form_id and subscription.active:
                return subscription.model_copy(deep=True)
        return None

    def list_for_form(self, form_id: str) -> List[Subscription]:
        return [s.model_copy(deep=True) for s in self.items.values() if s.form_id == form_id]

    def find_due_for_renewal(self, pinged_before: datetime) -> List[Subscription]:
        due = [s for s in self.items.values() if s.active and s.last_ping_at < pinged_before]
        return [s.model_copy(deep=True) for s in sorted(due, key=lambda s: s.last_ping_at)]

    def update_subscription(self, external_id: str, updates: Dict[str, Any]) -> Subscription:
        if external_id not in self.items:
            raise SubscriptionNotFoundError(f"Subscription {external_id} not found")
        self.writes.append({"external_id": external_id, **updates})
        data = self.items[external_id].model_dump()
        data.update(updates)
        self.items[external_id] = Subscription.model_validate(data)
        return self.get_subscription(external_id)

    def delete_for_form(self, form_id: str) -> int:
        doomed = [key for key, s in self.items.items() if s.form_id == form_id]
        for key in doomed:
            del self.items[key]
        return len(doomed)


class FakeAuthStateRepository:
    def __init__(self):
        self.items: Dict[str, Dict[str, Any]] = {}

    def put(self, state: str, verifier: str, ttl_seconds: int) -> None:
        self.items[state] = {"verifier": verifier, "expires_at": utc_now() + timedelta(seconds=ttl_seconds)}

    def consume(self, state: str) -> Optional[str]:
        entry = self.items.pop(state, None)
        if entry is None or entry["expires_at"] <= utc_now():
            return None
        return entry["verifier"]


# ============================================================================
# Fake Airtable client
# ============================================================================

class FakeAirtableClient:
    """Records calls; behaviour is configured per test through attributes"""

    def __init__(self):
        self.calls: List[tuple] = []
        self.refresh_grant = TokenGrant(access_token="fresh-token", refresh_token="fresh-refresh", expires_in=3600)
        self.refresh_error: Optional[Exception] = None
        self.refresh_delay = 0.0
        self.renew_errors: Dict[str, Exception] = {}
        self.renew_expiration: Optional[datetime] = None
        self.delete_error: Optional[Exception] = None
        self.record_counter = 0
        self.profile = {"id": "usr1", "email": "owner@example.com", "scopes": ["data.records:read"]}

    async def exchange_authorization_code(self, verifier: str, code: str) -> TokenGrant:
        self.calls.append(("exchange_code", verifier, code))
        return TokenGrant(access_token="access-1", refresh_token="refresh-1", expires_in=3600, scope="data.records:read data.records:write")

    async def exchange_refresh_token(self, refresh_token: str) -> TokenGrant:
        self.calls.append(("refresh", refresh_token))
        if self.refresh_delay:
            await asyncio.sleep(self.refresh_delay)
        if self.refresh_error:
            raise self.refresh_error
        return self.refresh_grant

    async def get_current_user(self, access_token: str) -> Dict[str, Any]:
        self.calls.append(("whoami", access_token))
        return dict(self.profile)

    async def create_record(self, access_token: str, base_id: str, table_id: str, fields: Dict[str, Any]) -> ExternalRecord:
        self.record_counter += 1
        self.calls.append(("create_record", base_id, table_id, fields))
        return ExternalRecord(id=f"rec{self.record_counter:03d}", fields=fields)

    async def create_subscription(self, access_token: str, base_id: str, callback_url: str, filter_spec: Dict[str, Any]) -> SubscriptionGrant:
        self.calls.append(("create_subscription", base_id, callback_url, filter_spec))
        return SubscriptionGrant(id=f"ach{len(self.calls):03d}", mac_secret="c2VjcmV0", expiration_time=utc_now() + timedelta(days=7))

    async def renew_subscription(self, access_token: str, base_id: str, subscription_id: str) -> Optional[datetime]:
        self.calls.append(("renew", subscription_id))
        error = self.renew_errors.get(subscription_id)
        if error:
            raise error
        return self.renew_expiration

    async def delete_subscription(self, access_token: str, base_id: str, subscription_id: str) -> None:
        self.calls.append(("delete_subscription", subscription_id))
        if self.delete_error:
            raise self.delete_error

    def count(self, name: str) -> int:
        return sum(1 for call in self.calls if call[0] == name)


# ============================================================================
# Fixtures
# ============================================================================

@pytest.fixture
def credential_repo() -> FakeCredentialRepository:
    return FakeCredentialRepository()


@pytest.fixture
def form_repo() -> FakeFormRepository:
    return FakeFormRepository()


@pytest.fixture
def submission_repo() -> FakeSubmissionRepository:
    return FakeSubmissionRepository()


@pytest.fixture
def subscription_repo() -> FakeSubscriptionRepository:
    return FakeSubscriptionRepository()


@pytest.fixture
def auth_state_repo() -> FakeAuthStateRepository:
    return FakeAuthStateRepository()


@pytest.fixture
def airtable() -> FakeAirtableClient:
    return FakeAirtableClient()


@pytest.fixture
def credentials(credential_repo, airtable) -> CredentialService:
    return CredentialService(repo=credential_repo, client=airtable)


@pytest.fixture
def owner_credential(credential_repo) -> Credential:
    """Valid credential for account usr1"""
    credential = Credential(
        account_id="usr1",
        access_token="access-1",
        refresh_token="refresh-1",
        expires_at=utc_now() + timedelta(hours=1),
        scopes=["data.records:read", "data.records:write"],
        email="owner@example.com"
    )
    credential_repo.save_credential(credential)
    return credential


def make_question(key: str, qtype: str = "singleLineText", **kwargs) -> Question:
    data = {
        "question_key": key,
        "external_field_id": f"fld{key}",
        "external_field_name": kwargs.pop("field_name", key.title()),
        "label": kwargs.pop("label", key.title()),
        "type": qtype,
    }
    data.update(kwargs)
    return Question.model_validate(data)


@pytest.fixture
def role_form(form_repo) -> FormDefinition:
    """Form where githubUrl is required only for engineers"""
    form = FormDefinition(
        form_id="FRM-role",
        owner_id="usr1",
        title="Application",
        base_id="appBase",
        table_id="tblApplicants",
        questions=[
            make_question("name", required=True, field_name="Name"),
            make_question("role", "singleSelect", required=True, options=["Engineer", "Designer"], field_name="Role"),
            make_question(
                "githubUrl",
                required=True,
                field_name="GitHub URL",
                label="GitHub URL",
                conditional_rules={
                    "logic": "AND",
                    "conditions": [{"question_key": "role", "operator": "equals", "value": "Engineer"}]
                }
            ),
        ]
    )
    form_repo.create_form(form)
    return form


def run(coro):
    """Run a coroutine to completion"""
    return asyncio.run(coro)
