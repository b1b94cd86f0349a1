import asyncio
from datetime import timedelta

import httpx
import pytest

from formsync.domain.errors import AuthExpiredError, CredentialNotFoundError, UpstreamUnavailableError
from formsync.domain.models import Credential
from formsync.services.airtable_client import AirtableClient
from formsync.services.credential_service import CredentialService
from formsync.utils.time import utc_now
from tests.conftest import run


def expired_credential(credential_repo, refresh_token="refresh-1"):
    credential = Credential(
        account_id="usr1",
        access_token="stale",
        refresh_token=refresh_token,
        expires_at=utc_now() - timedelta(minutes=1),
        scopes=["data.records:read"]
    )
    credential_repo.save_credential(credential)
    return credential


def test_get_unknown_account_raises(credentials):
    with pytest.raises(CredentialNotFoundError):
        credentials.get("nobody")


def test_upsert_creates_then_overwrites_in_place(credentials, credential_repo):
    created = credentials.upsert_from_authorization(
        "usr1", "a1", "r1", 3600, ["data.records:read"], {"id": "usr1", "email": "ada@example.com", "name": "Ada"}
    )
    assert created.email == "ada@example.com"

    updated = credentials.upsert_from_authorization(
        "usr1", "a2", None, 60, ["webhook:manage"], {"id": "usr1", "email": ""}
    )
    assert len(credential_repo.items) == 1
    assert updated.access_token == "a2"
    assert updated.refresh_token is None
    assert updated.scopes == ["webhook:manage"]
    assert updated.email == "ada@example.com"
    assert updated.name == "Ada"
    assert updated.created_at == created.created_at


def test_is_expired_boundary(credentials, owner_credential):
    assert credentials.is_expired(owner_credential, owner_credential.expires_at) is True
    assert credentials.is_expired(owner_credential, owner_credential.expires_at - timedelta(seconds=1)) is False


def test_refresh_replaces_tokens_and_expiry(credentials, credential_repo, airtable):
    credential = expired_credential(credential_repo)
    before = utc_now()

    refreshed = run(credentials.refresh(credential))

    assert refreshed.access_token == "fresh-token"
    assert refreshed.refresh_token == "fresh-refresh"
    assert refreshed.expires_at >= before + timedelta(seconds=3600)
    assert credential_repo.items["usr1"].access_token == "fresh-token"


def test_refresh_keeps_old_refresh_token_when_none_issued(credentials, credential_repo, airtable):
    credential = expired_credential(credential_repo)
    airtable.refresh_grant = airtable.refresh_grant.model_copy(update={"refresh_token": None})

    refreshed = run(credentials.refresh(credential))

    assert refreshed.refresh_token == "refresh-1"


def test_refresh_without_refresh_token_requires_reauth(credentials, credential_repo, airtable):
    credential = expired_credential(credential_repo, refresh_token=None)

    with pytest.raises(AuthExpiredError) as exc:
        run(credentials.refresh(credential))

    assert exc.value.details["requires_reauth"] is True
    assert airtable.count("refresh") == 0


def test_refresh_failure_becomes_auth_expired(credentials, credential_repo, airtable):
    credential = expired_credential(credential_repo)
    airtable.refresh_error = UpstreamUnavailableError("down")

    with pytest.raises(AuthExpiredError):
        run(credentials.refresh(credential))
    assert credential_repo.items["usr1"].access_token == "stale"


def test_concurrent_refreshes_share_one_exchange(credentials, credential_repo, airtable):
    credential = expired_credential(credential_repo)
    airtable.refresh_delay = 0.05

    async def refresh_many():
        return await asyncio.gather(*(credentials.refresh(credential) for _ in range(5)))

    results = run(refresh_many())

    assert airtable.count("refresh") == 1
    assert {r.access_token for r in results} == {"fresh-token"}


def test_concurrent_refresh_failure_reaches_every_caller(credentials, credential_repo, airtable):
    credential = expired_credential(credential_repo)
    airtable.refresh_delay = 0.05
    airtable.refresh_error = AuthExpiredError("revoked")

    async def refresh_many():
        return await asyncio.gather(
            *(credentials.refresh(credential) for _ in range(3)), return_exceptions=True
        )

    results = run(refresh_many())

    assert airtable.count("refresh") == 1
    assert all(isinstance(r, AuthExpiredError) for r in results)


def test_get_valid_credential_refreshes_only_when_expired(credentials, credential_repo, airtable, owner_credential):
    assert run(credentials.get_valid_credential("usr1")).access_token == "access-1"
    assert airtable.count("refresh") == 0

    expired_credential(credential_repo)
    assert run(credentials.get_valid_credential("usr1")).access_token == "fresh-token"
    assert airtable.count("refresh") == 1


def test_malformed_token_response_becomes_auth_expired(credential_repo):
    credential = expired_credential(credential_repo)
    client = AirtableClient(
        token_url="https://airtable.test/oauth2/v1/token",
        client_id="cid",
        client_secret="csecret",
        transport=httpx.MockTransport(lambda request: httpx.Response(200, json={"unexpected": 1}))
    )
    service = CredentialService(repo=credential_repo, client=client)

    with pytest.raises(AuthExpiredError):
        run(service.refresh(credential))
    assert credential_repo.items["usr1"].access_token == "stale"
