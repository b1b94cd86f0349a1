import json

import pytest
from fastapi.testclient import TestClient

from formsync.api import deps
from formsync.domain.models import SubmissionRecord, Subscription
from formsync.main import app
from formsync.services.auth_service import AuthService
from formsync.services.form_service import FormService
from formsync.services.notification_processor import NotificationProcessor
from formsync.services.submission_service import SubmissionService
from formsync.services.subscription_service import SubscriptionService
from formsync.utils.jwt import get_session_token_manager


@pytest.fixture
def client(credential_repo, form_repo, submission_repo, subscription_repo, auth_state_repo, airtable, credentials):
    subscriptions = SubscriptionService(
        repo=subscription_repo, form_repo=form_repo, credentials=credentials, client=airtable
    )
    forms = FormService(
        repo=form_repo, submission_repo=submission_repo, subscriptions=subscriptions, credentials=credentials
    )
    submissions = SubmissionService(
        repo=submission_repo, form_repo=form_repo, credentials=credentials, client=airtable
    )
    processor = NotificationProcessor(subscription_repo=subscription_repo, submission_repo=submission_repo)
    auth = AuthService(state_repo=auth_state_repo, credentials=credentials, client=airtable)

    app.dependency_overrides[deps.get_credential_service_dep] = lambda: credentials
    app.dependency_overrides[deps.get_airtable_client_dep] = lambda: airtable
    app.dependency_overrides[deps.get_subscription_service_dep] = lambda: subscriptions
    app.dependency_overrides[deps.get_form_service_dep] = lambda: forms
    app.dependency_overrides[deps.get_submission_service_dep] = lambda: submissions
    app.dependency_overrides[deps.get_notification_processor_dep] = lambda: processor
    app.dependency_overrides[deps.get_auth_service_dep] = lambda: auth

    yield TestClient(app)

    app.dependency_overrides.clear()


@pytest.fixture
def auth_headers():
    token = get_session_token_manager().issue("usr1")
    return {"Authorization": f"Bearer {token}"}


# ============================================================================
# Auth
# ============================================================================

def test_start_authorization_returns_url(client):
    response = client.get("/api/v1/auth/airtable")

    assert response.status_code == 200
    data = response.json()
    assert data["auth_url"].startswith("https://airtable.com/oauth2/v1/authorize?")
    assert data["state"]


def test_callback_sets_cookie_and_redirects(client):
    state = client.get("/api/v1/auth/airtable").json()["state"]

    response = client.get(
        "/api/v1/auth/airtable/callback",
        params={"code": "abc", "state": state},
        follow_redirects=False
    )

    assert response.status_code in (302, 307)
    assert "/callback?token=" in response.headers["location"]
    assert "token=" in response.headers["set-cookie"]


def test_callback_with_unknown_state_redirects_to_login(client):
    response = client.get(
        "/api/v1/auth/airtable/callback",
        params={"code": "abc", "state": "forged"},
        follow_redirects=False
    )

    assert response.headers["location"].endswith("/login?error=auth_failed")


def test_me_requires_session(client):
    response = client.get("/api/v1/auth/me")
    assert response.status_code == 401


def test_me_hides_tokens(client, auth_headers, owner_credential):
    response = client.get("/api/v1/auth/me", headers=auth_headers)

    assert response.status_code == 200
    assert response.json()["account_id"] == "usr1"
    assert "access_token" not in response.json()


def test_refresh_without_refresh_token_asks_for_reauth(client, auth_headers, credential_repo, owner_credential):
    credential_repo.update_credential("usr1", {"refresh_token": None})

    response = client.post("/api/v1/auth/refresh", headers=auth_headers)

    assert response.status_code == 401
    assert response.json()["detail"]["error"]["details"]["requires_reauth"] is True


# ============================================================================
# Forms & submissions
# ============================================================================

def test_create_and_list_forms(client, auth_headers):
    body = {
        "title": "Application",
        "base_id": "appBase",
        "table_id": "tblA",
        "questions": [
            {"question_key": "name", "external_field_id": "fld1", "external_field_name": "Name", "label": "Name", "type": "singleLineText", "required": True}
        ]
    }

    created = client.post("/api/v1/forms", json=body, headers=auth_headers)
    assert created.status_code == 201
    form_id = created.json()["form_id"]

    listed = client.get("/api/v1/forms", headers=auth_headers).json()
    assert listed["count"] == 1
    assert listed["items"][0]["form_id"] == form_id
    assert listed["items"][0]["question_count"] == 1


def test_create_form_with_bad_rule_returns_400(client, auth_headers):
    body = {
        "title": "Broken",
        "base_id": "appBase",
        "table_id": "tblA",
        "questions": [
            {
                "question_key": "a", "external_field_id": "fld1", "external_field_name": "A", "label": "A",
                "type": "singleLineText",
                "conditional_rules": {"logic": "AND", "conditions": [{"question_key": "zzz", "operator": "equals", "value": 1}]}
            }
        ]
    }

    response = client.post("/api/v1/forms", json=body, headers=auth_headers)

    assert response.status_code == 400
    assert response.json()["detail"]["error"]["code"] == "RULE_VALIDATION_ERROR"


def test_other_owner_gets_403(client, role_form):
    token = get_session_token_manager().issue("intruder")
    response = client.get(f"/api/v1/forms/{role_form.form_id}", headers={"Authorization": f"Bearer {token}"})
    assert response.status_code == 403


def test_visibility_preview(client, role_form):
    response = client.post(f"/api/v1/forms/{role_form.form_id}/visibility", json={"answers": {"role": "Engineer"}})
    assert response.json()["visible_keys"] == ["name", "role", "githubUrl"]


def test_submit_requires_github_for_engineers(client, role_form, owner_credential, airtable):
    response = client.post(
        f"/api/v1/forms/{role_form.form_id}/submit",
        json={"answers": {"name": "Ada", "role": "Engineer"}}
    )

    assert response.status_code == 400
    assert response.json()["detail"]["error"]["message"] == "Required field missing: GitHub URL"
    assert airtable.count("create_record") == 0


def test_submit_creates_record_and_response(client, role_form, owner_credential, airtable, submission_repo, form_repo):
    response = client.post(
        f"/api/v1/forms/{role_form.form_id}/submit",
        json={"answers": {"name": "Grace", "role": "Designer"}}
    )

    assert response.status_code == 201
    data = response.json()
    assert data["external_record_id"] == "rec001"
    assert airtable.calls[-1] == ("create_record", "appBase", "tblApplicants", {"Name": "Grace", "Role": "Designer"})
    assert submission_repo.items[data["response_id"]].external_record_id == "rec001"
    assert form_repo.items[role_form.form_id].submission_count == 1


def test_list_responses_hides_deleted(client, auth_headers, role_form, submission_repo):
    submission_repo.create_submission(SubmissionRecord(response_id="RSP-1", form_id=role_form.form_id, external_record_id="rec1"))
    submission_repo.create_submission(SubmissionRecord(
        response_id="RSP-2", form_id=role_form.form_id, external_record_id="rec2", deleted_externally=True
    ))

    visible = client.get(f"/api/v1/forms/{role_form.form_id}/responses", headers=auth_headers).json()
    everything = client.get(
        f"/api/v1/forms/{role_form.form_id}/responses", params={"include_deleted": True}, headers=auth_headers
    ).json()

    assert visible["count"] == 1
    assert everything["count"] == 2

    detail = client.get("/api/v1/responses/RSP-1", headers=auth_headers)
    assert detail.status_code == 200
    assert detail.json()["form"]["title"] == "Application"


# ============================================================================
# Webhooks
# ============================================================================

def test_notification_endpoint_always_acknowledges(client):
    for payload in [b"not json", b"[]", json.dumps({"webhook": {"id": "achUnknown"}}).encode()]:
        response = client.post("/api/v1/webhooks/airtable", content=payload)
        assert response.status_code == 200
        assert response.json() == {"success": True}


def test_notification_marks_destroyed_record(client, role_form, subscription_repo, submission_repo):
    subscription_repo.create_subscription(Subscription(
        external_id="achLive", form_id=role_form.form_id, base_id="appBase",
        table_id="tblApplicants", notification_url="http://x"
    ))
    submission_repo.create_submission(SubmissionRecord(
        response_id="RSP-9", form_id=role_form.form_id, external_record_id="rec009"
    ))
    body = {
        "base": {"id": "appBase"},
        "webhook": {"id": "achLive"},
        "timestamp": "2024-05-01T10:00:00.000Z",
        "changedTablesById": {"tblApplicants": {"destroyedRecordIds": ["rec009"]}}
    }

    response = client.post("/api/v1/webhooks/airtable", json=body)

    assert response.json() == {"success": True}
    assert submission_repo.items["RSP-9"].deleted_externally is True


def test_register_then_list_and_delete(client, auth_headers, role_form, owner_credential, airtable):
    first = client.post(f"/api/v1/webhooks/register/{role_form.form_id}", headers=auth_headers)
    second = client.post(f"/api/v1/webhooks/register/{role_form.form_id}", headers=auth_headers)

    assert first.status_code == 201
    assert second.status_code == 200
    assert second.json()["message"] == "Webhook already registered"
    assert airtable.count("create_subscription") == 1
    subscription_id = first.json()["data"]["external_id"]
    assert "mac_secret" not in first.json()["data"]

    listed = client.get(f"/api/v1/webhooks/form/{role_form.form_id}", headers=auth_headers).json()
    assert listed["count"] == 1
    assert listed["registering"] is False
    assert listed["data"][0]["state"] == "ACTIVE"

    deleted = client.delete(f"/api/v1/webhooks/{subscription_id}", headers=auth_headers)
    assert deleted.status_code == 200

    listed = client.get(f"/api/v1/webhooks/form/{role_form.form_id}", headers=auth_headers).json()
    assert listed["data"][0]["state"] == "RETIRED"


def test_update_can_clear_description_but_not_title(client, auth_headers, form_repo, role_form):
    form_repo.update_form(role_form.form_id, {"description": "Apply here", "table_name": "Applicants"})

    kept = client.put(f"/api/v1/forms/{role_form.form_id}", json={"title": "Applications"}, headers=auth_headers)
    assert kept.status_code == 200
    assert kept.json()["description"] == "Apply here"

    cleared = client.put(
        f"/api/v1/forms/{role_form.form_id}",
        json={"description": None, "table_name": None, "title": None},
        headers=auth_headers
    )
    assert cleared.status_code == 200
    assert cleared.json()["description"] is None
    assert cleared.json()["table_name"] is None
    assert cleared.json()["title"] == "Applications"
