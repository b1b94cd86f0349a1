import pytest

from formsync.domain.errors import (
    DuplicateQuestionKeyError, FormNotFoundError, PermissionDeniedError,
    RuleValidationError, ValidationError
)
from formsync.domain.models import SubmissionRecord, Subscription
from formsync.services.form_service import FormService
from formsync.services.subscription_service import SubscriptionService
from tests.conftest import make_question, run


@pytest.fixture
def service(form_repo, submission_repo, subscription_repo, credentials, airtable):
    subscriptions = SubscriptionService(
        repo=subscription_repo, form_repo=form_repo, credentials=credentials, client=airtable
    )
    return FormService(
        repo=form_repo,
        submission_repo=submission_repo,
        subscriptions=subscriptions,
        credentials=credentials
    )


def create(service, questions, owner="usr1"):
    return service.create_form(
        owner_id=owner, title="Survey", base_id="appBase", table_id="tblA", questions=questions
    )


def test_create_form_stores_questions(service, form_repo):
    form = create(service, [make_question("name"), make_question("role", "singleSelect", options=["A"])])

    assert form.form_id.startswith("FRM-")
    assert form_repo.items[form.form_id].questions[1].options == ["A"]


def test_duplicate_keys_conflict(service):
    with pytest.raises(DuplicateQuestionKeyError):
        create(service, [make_question("name"), make_question("name")])


def test_unsupported_type_rejected(service):
    with pytest.raises(ValidationError, match="Unsupported question type"):
        create(service, [make_question("when", "dateTime")])


def test_invalid_rules_report_all_errors(service):
    questions = [
        make_question("a", conditional_rules={
            "logic": "AND",
            "conditions": [
                {"question_key": "ghost", "operator": "equals", "value": 1},
                {"question_key": "a", "operator": "equals", "value": 1},
            ]
        })
    ]
    with pytest.raises(RuleValidationError) as exc:
        create(service, questions)
    assert len(exc.value.details["errors"]) == 2


def test_strict_dependencies_only_when_enabled(service, monkeypatch):
    questions = [
        make_question("a", conditional_rules={"conditions": [{"question_key": "b", "operator": "equals", "value": 1}]}),
        make_question("b"),
    ]
    create(service, questions)

    monkeypatch.setattr("formsync.services.form_service.settings.strict_rule_dependencies", True)
    with pytest.raises(RuleValidationError, match="dependencies"):
        create(service, questions)


def test_non_owner_is_denied(service):
    form = create(service, [make_question("name")])
    with pytest.raises(PermissionDeniedError):
        service.get_form(form.form_id, "someone-else")


def test_update_revalidates_questions(service):
    form = create(service, [make_question("name")])

    updated = service.update_form(form.form_id, "usr1", {"title": "Renamed", "is_active": False})
    assert updated.title == "Renamed"
    assert updated.is_active is False

    with pytest.raises(DuplicateQuestionKeyError):
        service.update_form(form.form_id, "usr1", {"questions": [make_question("x"), make_question("x")]})


def test_inactive_form_does_not_take_submissions(service):
    form = create(service, [make_question("name")])
    service.update_form(form.form_id, "usr1", {"is_active": False})

    with pytest.raises(FormNotFoundError):
        service.get_active_form(form.form_id)


def test_delete_cascades(service, form_repo, submission_repo, subscription_repo, airtable, owner_credential):
    form = create(service, [make_question("name")])
    submission_repo.create_submission(SubmissionRecord(response_id="RSP-1", form_id=form.form_id, external_record_id="rec1"))
    subscription_repo.create_subscription(Subscription(
        external_id="achX", form_id=form.form_id, base_id="appBase", table_id="tblA", notification_url="http://x"
    ))

    run(service.delete_form(form.form_id, "usr1"))

    assert form.form_id not in form_repo.items
    assert submission_repo.items == {}
    assert subscription_repo.items == {}
    assert airtable.count("delete_subscription") == 1


def test_delete_without_usable_credential_still_deletes(service, form_repo, subscription_repo, airtable):
    form = create(service, [make_question("name")])
    subscription_repo.create_subscription(Subscription(
        external_id="achY", form_id=form.form_id, base_id="appBase", table_id="tblA", notification_url="http://x"
    ))

    run(service.delete_form(form.form_id, "usr1"))

    assert form_repo.items == {}
    assert airtable.count("delete_subscription") == 0


def test_update_clears_optional_fields_only(service):
    form = service.create_form(
        owner_id="usr1", title="Survey", base_id="appBase", table_id="tblA",
        questions=[make_question("name")], description="Old text", base_name="Hiring"
    )

    updated = service.update_form(form.form_id, "usr1", {"description": None, "base_name": None, "title": None})

    assert updated.description is None
    assert updated.base_name is None
    assert updated.title == "Survey"


def test_update_leaves_absent_fields_alone(service):
    form = service.create_form(
        owner_id="usr1", title="Survey", base_id="appBase", table_id="tblA",
        questions=[make_question("name")], description="Keep me"
    )

    updated = service.update_form(form.form_id, "usr1", {"is_active": False})

    assert updated.description == "Keep me"
