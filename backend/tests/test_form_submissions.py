"""Tests for forms and the submission review lifecycle."""

import pytest
import pytest_asyncio
from sqlalchemy import select

from conftest import dispatched
from core.constants import SubmissionStatus
from core.exceptions import (
    NotFoundError,
    PermissionDeniedError,
    PreconditionFailedError,
    ValidationError,
)
from db.models.form import Form, FormSubmission
from db.models.n8n_workflow import FormN8nBinding, N8nWorkflow
from services.form_service import FormService

MODERATOR_RULE = '{"==": [{"var": "user.role"}, "moderator"]}'


@pytest.fixture
def service(db_session, dispatcher) -> FormService:
    return FormService(db_session, dispatcher)


@pytest_asyncio.fixture
async def form(db_session, team):
    """Active form assigned to 'Personal', reviewed by moderators."""
    form = Form(
        title="Urlaubsantrag",
        description="",
        is_public=False,
        is_active=True,
        teams=[team],
        edit_form_permissions="true",
        review_form_permissions=MODERATOR_RULE,
        n8n_bindings=[],
    )
    db_session.add(form)
    await db_session.commit()
    db_session.expunge_all()
    return form


@pytest_asyncio.fixture
async def submitted(service, form, member):
    submission = await service.start_submission(form.id, member, {"tage": 3})
    await service.submit_submission(submission.id, member)
    return submission.id


async def status_of(session, submission_id):
    session.expunge_all()
    submission = await session.get(FormSubmission, submission_id)
    return submission.status if submission is not None else None


@pytest.mark.integration
class TestForms:
    async def test_create_form_defaults(self, service, moderator):
        form = await service.create_form(moderator, "Reisekosten")
        assert form.edit_form_permissions == "true"
        assert form.review_form_permissions == "{}"
        assert form.is_active is True

    async def test_member_cannot_create(self, service, member):
        with pytest.raises(PermissionDeniedError) as exc:
            await service.create_form(member, "Reisekosten")
        assert exc.value.message == "Keine Berechtigung zum Erstellen von Formularen"

    async def test_update_rejects_malformed_rule(self, service, form, moderator):
        with pytest.raises(ValidationError):
            await service.update_form(form.id, moderator, {"review_form_permissions": '{"foo": 1}'})

    async def test_update_form(self, service, form, moderator):
        updated = await service.update_form(
            form.id, moderator, {"title": "Urlaub", "schema": {"pages": []}, "review_form_permissions": "true"}
        )
        assert updated.title == "Urlaub"
        assert updated.schema == {"pages": []}
        assert updated.review_form_permissions == "true"

    async def test_list_forms_visibility(self, service, form, member, outsider, moderator):
        assert [f.id for f in await service.list_forms(member)] == [form.id]
        assert await service.list_forms(outsider) == []
        # Edit rule "true" lets moderators see unassigned forms
        assert [f.id for f in await service.list_forms(moderator)] == [form.id]

    async def test_delete_form_hides_it(self, service, form, moderator, member):
        await service.delete_form(form.id, moderator)
        with pytest.raises(NotFoundError) as exc:
            await service.start_submission(form.id, member)
        assert exc.value.message == "Formular nicht gefunden"

    async def test_connect_rejects_unknown_event(self, service, form, moderator, db_session):
        n8n = N8nWorkflow(workflow_id="n8n-1", name="Mail")
        db_session.add(n8n)
        await db_session.flush()
        with pytest.raises(ValidationError) as exc:
            await service.connect_n8n(form.id, n8n.id, "explode", moderator)
        assert exc.value.message == "Ungültiges Ereignis"

    async def test_connect_and_disconnect(self, service, form, moderator, db_session):
        n8n = N8nWorkflow(workflow_id="n8n-1", name="Mail")
        db_session.add(n8n)
        await db_session.flush()

        connected = await service.connect_n8n(form.id, n8n.id, "submit", moderator)
        await service.connect_n8n(form.id, n8n.id, "submit", moderator)
        assert [(b.n8n_workflow_id, b.event) for b in connected.n8n_bindings] == [(n8n.id, "submit")]

        disconnected = await service.disconnect_n8n(form.id, n8n.id, "submit", moderator)
        assert disconnected.n8n_bindings == []


@pytest.mark.integration
class TestSubmissionLifecycle:
    async def test_start_requires_assignment(self, service, form, outsider):
        with pytest.raises(PermissionDeniedError) as exc:
            await service.start_submission(form.id, outsider)
        assert exc.value.message == "Keine Berechtigung zum Ausfüllen dieses Formulars"

    async def test_inactive_form(self, service, form, member, db_session):
        stored = await db_session.get(Form, form.id)
        stored.is_active = False
        await db_session.commit()

        with pytest.raises(PreconditionFailedError) as exc:
            await service.start_submission(form.id, member)
        assert exc.value.message == "Formular ist nicht aktiv"

    async def test_save_and_submit(self, service, form, member, db_session):
        submission = await service.start_submission(form.id, member)
        assert submission.status == "ongoing"

        saved = await service.save_submission(submission.id, {"tage": 5}, member)
        assert saved.data == {"tage": 5}

        submitted = await service.submit_submission(submission.id, member)
        assert submitted.status == "submitted"
        assert submitted.submitted_at is not None

        with pytest.raises(PreconditionFailedError) as exc:
            await service.save_submission(submission.id, {"tage": 6}, member)
        assert exc.value.message == "Formular ist nicht in Bearbeitung"

    async def test_only_submitter_may_save(self, service, form, member, outsider):
        submission = await service.start_submission(form.id, member)
        with pytest.raises(PermissionDeniedError):
            await service.save_submission(submission.id, {"x": 1}, outsider)

    async def test_review_and_complete(self, service, submitted, moderator, db_session):
        reviewing = await service.review_submission(submitted, moderator)
        assert reviewing.status == "reviewing"

        done = await service.decide_submission(submitted, SubmissionStatus.COMPLETED, "Genehmigt", moderator)
        assert done.status == "completed"
        assert done.completed_notes == "Genehmigt"
        assert done.completed_at is not None
        assert await status_of(db_session, submitted) == "completed"

    async def test_send_back_for_changes(self, service, submitted, moderator, member):
        await service.review_submission(submitted, moderator)
        returned = await service.decide_submission(submitted, "ongoing", "Bitte Datum ergänzen", moderator)
        assert returned.status == "ongoing"
        assert returned.review_notes == "Bitte Datum ergänzen"

        resubmitted = await service.submit_submission(submitted, member, {"tage": 3, "ab": "2026-11-02"})
        assert resubmitted.status == "submitted"

    async def test_reject(self, service, submitted, moderator):
        await service.review_submission(submitted, moderator)
        rejected = await service.decide_submission(submitted, "rejected", "Zu kurzfristig", moderator)
        assert rejected.status == "rejected"
        assert rejected.rejected_notes == "Zu kurzfristig"

    async def test_invalid_decision(self, service, submitted, moderator):
        await service.review_submission(submitted, moderator)
        with pytest.raises(ValidationError) as exc:
            await service.decide_submission(submitted, "submitted", None, moderator)
        assert exc.value.message == "Ungültige Entscheidung"

    async def test_decide_requires_reviewing(self, service, submitted, moderator):
        with pytest.raises(PreconditionFailedError) as exc:
            await service.decide_submission(submitted, "completed", None, moderator)
        assert exc.value.message == "Formular ist nicht in Prüfung"

    async def test_member_cannot_review(self, service, submitted, member):
        with pytest.raises(PermissionDeniedError):
            await service.review_submission(submitted, member)

    async def test_review_requires_submitted(self, service, form, member, moderator):
        submission = await service.start_submission(form.id, member)
        with pytest.raises(PreconditionFailedError) as exc:
            await service.review_submission(submission.id, moderator)
        assert exc.value.message == "Formular ist nicht eingereicht"

    async def test_withdraw_deletes(self, service, form, member, db_session):
        submission = await service.start_submission(form.id, member)
        await service.withdraw_submission(submission.id, member)
        assert await status_of(db_session, submission.id) is None

    async def test_withdraw_after_submit(self, service, submitted, member):
        with pytest.raises(PreconditionFailedError):
            await service.withdraw_submission(submitted, member)

    async def test_archive_and_reactivate(self, service, submitted, moderator, member):
        archived = await service.archive_submission(submitted, moderator)
        assert archived.is_archived is True
        assert await service.list_submissions(member) == []
        assert [s.id for s in await service.list_submissions(member, archived=True)] == [submitted]

        with pytest.raises(PreconditionFailedError):
            await service.archive_submission(submitted, moderator)

        reactivated = await service.reactivate_submission(submitted, moderator)
        assert reactivated.is_archived is False

    async def test_list_submissions_visibility(self, service, submitted, member, moderator, outsider):
        assert [s.id for s in await service.list_submissions(member)] == [submitted]
        assert [s.id for s in await service.list_submissions(moderator)] == [submitted]
        assert await service.list_submissions(outsider) == []
        assert [s.id for s in await service.list_submissions(moderator, status="submitted")] == [submitted]
        assert await service.list_submissions(moderator, status="completed") == []

    async def test_get_submission_denied(self, service, submitted, outsider):
        with pytest.raises(PermissionDeniedError):
            await service.get_submission(submitted, outsider)


@pytest.mark.integration
class TestSubmissionWebhooks:
    @pytest_asyncio.fixture
    async def bound_form(self, db_session, form):
        n8n = {name: N8nWorkflow(workflow_id=f"n8n-{name}", name=name) for name in ("revoke", "archive", "submit")}
        db_session.add_all(n8n.values())
        await db_session.flush()
        db_session.add_all([
            FormN8nBinding(form_id=form.id, n8n_workflow_id=n8n["revoke"].id, event="revoke"),
            FormN8nBinding(form_id=form.id, n8n_workflow_id=n8n["archive"].id, event="archive"),
            FormN8nBinding(form_id=form.id, n8n_workflow_id=n8n["submit"].id, event="submit"),
        ])
        await db_session.commit()
        db_session.expunge_all()
        return form

    async def test_submit_trigger(self, service, bound_form, member, dispatcher):
        submission = await service.start_submission(bound_form.id, member, {"tage": 2})
        await service.submit_submission(submission.id, member)

        [(ids, context)] = dispatched(dispatcher)
        assert ids == ["n8n-submit"]
        assert context["event"] == "submit"
        assert context["status"] == "submitted"
        assert context["data"] == {"tage": 2}
        assert context["form"]["title"] == "Urlaubsantrag"

    async def test_withdraw_sends_last_state(self, service, bound_form, member, dispatcher):
        submission = await service.start_submission(bound_form.id, member, {"tage": 2})
        await service.withdraw_submission(submission.id, member)

        [(ids, context)] = dispatched(dispatcher)
        assert ids == ["n8n-revoke"]
        assert context["event"] == "revoke"
        assert context["submissionId"] == submission.id
        assert context["data"] == {"tage": 2}

    async def test_archive_bucket_for_both_directions(self, service, bound_form, member, moderator, dispatcher):
        submission = await service.start_submission(bound_form.id, member)
        await service.archive_submission(submission.id, moderator)
        await service.reactivate_submission(submission.id, moderator)

        calls = dispatched(dispatcher)
        assert [ids for ids, _ in calls] == [["n8n-archive"], ["n8n-archive"]]
        assert [context["event"] for _, context in calls] == ["archive", "reactivate"]

    async def test_stored_status_after_decision(self, service, bound_form, member, moderator, db_session):
        submission = await service.start_submission(bound_form.id, member)
        await service.submit_submission(submission.id, member)
        await service.review_submission(submission.id, moderator)
        await service.decide_submission(submission.id, "completed", None, moderator)

        db_session.expunge_all()
        result = await db_session.execute(select(FormSubmission.status).where(FormSubmission.id == submission.id))
        assert result.scalar_one() == "completed"
