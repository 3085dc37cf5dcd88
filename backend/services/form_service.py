"""Standalone forms and the review lifecycle of their submissions.

    ongoing --submit--> submitted --review--> reviewing --decide--> ongoing | rejected | completed

Withdrawing an ongoing submission deletes it. The archive flag is
orthogonal to status. Status changes are conditional UPDATEs checked by
rowcount; state is committed before webhooks fire.
"""

import logging
from typing import Any, Iterable, Optional, Sequence

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from core.access import AccessGate, Operation, access_gate
from core.constants import RULE_ALLOW_ALL, RULE_DENY_ALL, FormEvent, SubmissionStatus
from core.exceptions import NotFoundError, PermissionDeniedError, PreconditionFailedError, RuleSyntaxError, ValidationError
from core.permission_context import AccessTarget, Principal, entity_scope
from core.rules import validate_rule
from core.webhooks import WebhookDispatcher, binding_ids
from db.base import utcnow
from db.models.form import Form, FormSubmission
from db.models.n8n_workflow import FormN8nBinding, N8nWorkflow, bindings_for
from db.models.team import Team
from services.base import BaseService, parse_event
from services.workflow_service import is_assigned

logger = logging.getLogger(__name__)

PERMISSION_FIELDS = ("edit_form_permissions", "review_form_permissions")

NOT_ONGOING = "Formular ist nicht in Bearbeitung"
NOT_SUBMITTED = "Formular ist nicht eingereicht"
NOT_REVIEWING = "Formular ist nicht in Prüfung"

# decision status -> (notes column, event)
DECISIONS = {
    SubmissionStatus.ONGOING: ("review_notes", FormEvent.RE_UPDATE),
    SubmissionStatus.REJECTED: ("rejected_notes", FormEvent.REJECT),
    SubmissionStatus.COMPLETED: ("completed_notes", FormEvent.COMPLETE),
}


class FormService(BaseService[Form]):
    """Form definitions and submissions."""

    not_found_message = "Formular nicht gefunden"

    def __init__(
        self,
        db: AsyncSession,
        dispatcher: Optional[WebhookDispatcher] = None,
        gate: AccessGate = access_gate,
    ):
        super().__init__(Form, db)
        self.dispatcher = dispatcher or WebhookDispatcher.from_settings()
        self.gate = gate

    # ─── Access ────────────────────────────────────────────

    def _require_editable(self, principal: Principal, form: Form, operation: Operation = Operation.EDIT_FORM) -> None:
        self.gate.require(
            principal,
            operation,
            AccessTarget(form.edit_form_permissions, {"form": entity_scope(form)}),
        )

    def _require_reviewer(self, principal: Principal, submission: FormSubmission) -> None:
        form = submission.form
        self.gate.require(
            principal,
            Operation.REVIEW_SUBMISSION,
            AccessTarget(form.review_form_permissions, {"form": entity_scope(form)}, submission.data or {}),
        )

    @staticmethod
    def _require_submitter(principal: Principal, submission: FormSubmission) -> None:
        if not principal.is_admin and submission.submitted_by_id != principal.id:
            raise PermissionDeniedError(Operation.FILL_OUT_FORM.message)

    def can_fill_out(self, principal: Principal, form: Form) -> bool:
        if principal.is_admin:
            return True
        if not (form.is_public or is_assigned(principal, form)):
            return False
        return self.gate.authorize(principal, Operation.FILL_OUT_FORM)

    # ─── Forms ─────────────────────────────────────────────

    async def list_forms(self, principal: Principal) -> list[Form]:
        """Forms the principal may fill out or edit."""
        result = await self.db.execute(
            select(Form).where(Form.is_deleted == False).order_by(Form.title)  # noqa: E712
        )
        return [
            form for form in result.scalars().all()
            if self.can_fill_out(principal, form) or self.gate.authorize(
                principal,
                Operation.EDIT_FORM,
                AccessTarget(form.edit_form_permissions, {"form": entity_scope(form)}),
            )
        ]

    async def create_form(
        self,
        principal: Principal,
        title: str,
        description: str = "",
        is_public: bool = False,
        is_active: bool = True,
        responsible_team_id: Optional[str] = None,
    ) -> Form:
        """Create a form; editing is open, reviewing is admin-only until configured."""
        self.gate.require(principal, Operation.CREATE_FORM)
        form = await self.create({
            "title": title,
            "description": description or "",
            "is_public": is_public,
            "is_active": is_active,
            "responsible_team_id": responsible_team_id,
            "edit_form_permissions": RULE_ALLOW_ALL,
            "review_form_permissions": RULE_DENY_ALL,
        })
        logger.info("Form created: %s by %s", form.id, principal.email)
        return form

    async def update_form(self, form_id: str, principal: Principal, data: dict[str, Any]) -> Form:
        """Update scalar fields, schema/theme and permission rules.

        Raises:
            ValidationError: If a permission rule does not parse
        """
        form = await self.get_or_404(form_id)
        self._require_editable(principal, form)

        for field in PERMISSION_FIELDS:
            rule = data.get(field)
            if rule is not None:
                try:
                    validate_rule(rule)
                except RuleSyntaxError:
                    raise ValidationError("Ungültige Berechtigungsregel")

        if "responsible_team_id" in data and data["responsible_team_id"] == "":
            data.pop("responsible_team_id")
            form.responsible_team = None
        elif data.get("responsible_team_id"):
            form.responsible_team = await self._team(data.pop("responsible_team_id"))

        for key, value in data.items():
            if value is not None and hasattr(form, key):
                setattr(form, key, value)
        await self.db.flush()
        return form

    async def delete_form(self, form_id: str, principal: Principal) -> None:
        form = await self.get_or_404(form_id)
        self._require_editable(principal, form, Operation.DELETE_FORM)
        form.soft_delete()
        await self.db.flush()
        logger.info("Form deleted: %s by %s", form_id, principal.email)

    async def set_teams(self, form_id: str, team_ids: Sequence[str], principal: Principal) -> Form:
        form = await self.get_or_404(form_id)
        self._require_editable(principal, form)
        form.teams = [await self._team(team_id) for team_id in dict.fromkeys(team_ids)]
        await self.db.flush()
        return form

    async def connect_n8n(self, form_id: str, n8n_workflow_id: str, event: FormEvent, principal: Principal) -> Form:
        form = await self.get_or_404(form_id)
        self._require_editable(principal, form)

        n8n_workflow = await self.db.get(N8nWorkflow, n8n_workflow_id)
        if n8n_workflow is None:
            raise NotFoundError("N8n Workflow nicht gefunden")
        event = parse_event(FormEvent, event)
        if not any(b.n8n_workflow_id == n8n_workflow_id and b.event == event for b in form.n8n_bindings):
            form.n8n_bindings.append(
                FormN8nBinding(n8n_workflow_id=n8n_workflow_id, event=event, n8n_workflow=n8n_workflow)
            )
        await self.db.flush()
        return form

    async def disconnect_n8n(self, form_id: str, n8n_workflow_id: str, event: FormEvent, principal: Principal) -> Form:
        form = await self.get_or_404(form_id)
        self._require_editable(principal, form)

        event = parse_event(FormEvent, event)
        form.n8n_bindings = [
            b for b in form.n8n_bindings
            if not (b.n8n_workflow_id == n8n_workflow_id and b.event == event)
        ]
        await self.db.flush()
        return form

    # ─── Submissions: read ─────────────────────────────────

    async def get_submission(self, submission_id: str, principal: Optional[Principal] = None) -> FormSubmission:
        result = await self.db.execute(
            select(FormSubmission)
            .where(FormSubmission.id == submission_id)
            .execution_options(populate_existing=True)
        )
        submission = result.scalar_one_or_none()
        if submission is None:
            raise NotFoundError("Formular Einreichung nicht gefunden")
        if principal is not None and not self._may_view(principal, submission):
            raise PermissionDeniedError(Operation.REVIEW_SUBMISSION.message)
        return submission

    def _may_view(self, principal: Principal, submission: FormSubmission) -> bool:
        if principal.is_admin or submission.submitted_by_id == principal.id:
            return True
        form = submission.form
        return self.gate.authorize(
            principal,
            Operation.REVIEW_SUBMISSION,
            AccessTarget(form.review_form_permissions, {"form": entity_scope(form)}, submission.data or {}),
        )

    async def list_submissions(
        self,
        principal: Principal,
        form_id: Optional[str] = None,
        archived: bool = False,
        status: Optional[SubmissionStatus] = None,
    ) -> list[FormSubmission]:
        """Own submissions plus those the principal may review, newest first."""
        query = (
            select(FormSubmission)
            .join(Form, Form.id == FormSubmission.form_id)
            .where(Form.is_deleted == False, FormSubmission.is_archived == archived)  # noqa: E712
            .order_by(FormSubmission.created_at.desc())
        )
        if form_id is not None:
            query = query.where(FormSubmission.form_id == form_id)
        if status is not None:
            query = query.where(FormSubmission.status == SubmissionStatus(status).value)
        result = await self.db.execute(query)
        return [s for s in result.scalars().all() if self._may_view(principal, s)]

    # ─── Submissions: lifecycle ────────────────────────────

    async def start_submission(self, form_id: str, principal: Principal, data: Optional[dict] = None) -> FormSubmission:
        form = await self.get_or_404(form_id)
        if not form.is_active:
            raise PreconditionFailedError("Formular ist nicht aktiv")
        if not self.can_fill_out(principal, form):
            raise PermissionDeniedError(Operation.FILL_OUT_FORM.message)

        submission = FormSubmission(
            form_id=form.id,
            form=form,
            submitted_by_id=principal.id,
            status=SubmissionStatus.ONGOING.value,
            data=data or {},
            is_archived=False,
        )
        self.db.add(submission)
        await self.db.flush()
        await self.db.commit()
        logger.info("Form submission started: %s on form %s by %s", submission.id, form.id, principal.email)

        await self._dispatch(submission, FormEvent.FILL_OUT, principal)
        return submission

    async def save_submission(self, submission_id: str, data: dict, principal: Principal) -> FormSubmission:
        submission = await self.get_submission(submission_id)
        self._require_submitter(principal, submission)
        await self._transition(submission.id, [SubmissionStatus.ONGOING], {"data": data}, NOT_ONGOING)
        await self.db.commit()

        submission = await self.get_submission(submission_id)
        await self._dispatch(submission, FormEvent.SAVE, principal)
        return submission

    async def submit_submission(
        self,
        submission_id: str,
        principal: Principal,
        data: Optional[dict] = None,
    ) -> FormSubmission:
        submission = await self.get_submission(submission_id)
        self._require_submitter(principal, submission)
        values: dict[str, Any] = {"status": SubmissionStatus.SUBMITTED.value, "submitted_at": utcnow()}
        if data is not None:
            values["data"] = data
        await self._transition(submission.id, [SubmissionStatus.ONGOING], values, NOT_ONGOING)
        await self.db.commit()
        logger.info("Form submission submitted: %s by %s", submission.id, principal.email)

        submission = await self.get_submission(submission_id)
        await self._dispatch(submission, FormEvent.SUBMIT, principal)
        return submission

    async def withdraw_submission(self, submission_id: str, principal: Principal) -> None:
        """Delete an ongoing submission; the revoke bucket still receives its data."""
        submission = await self.get_submission(submission_id)
        self._require_submitter(principal, submission)
        if submission.status != SubmissionStatus.ONGOING.value:
            raise PreconditionFailedError(NOT_ONGOING)

        context = self._webhook_context(submission, FormEvent.REVOKE, principal)
        bindings = bindings_for(submission.form.n8n_bindings, FormEvent.REVOKE)
        await self.db.delete(submission)
        await self.db.commit()
        logger.info("Form submission withdrawn: %s by %s", submission_id, principal.email)

        await self.dispatcher.dispatch(binding_ids(bindings), context)

    async def review_submission(self, submission_id: str, principal: Principal) -> FormSubmission:
        submission = await self.get_submission(submission_id)
        self._require_reviewer(principal, submission)
        await self._transition(
            submission.id,
            [SubmissionStatus.SUBMITTED],
            {"status": SubmissionStatus.REVIEWING.value},
            NOT_SUBMITTED,
        )
        await self.db.commit()

        submission = await self.get_submission(submission_id)
        await self._dispatch(submission, FormEvent.REVIEW, principal)
        return submission

    async def decide_submission(
        self,
        submission_id: str,
        status: SubmissionStatus,
        message: Optional[str],
        principal: Principal,
    ) -> FormSubmission:
        """Finish a review: send back for changes, reject or complete.

        Args:
            submission_id: Submission under review
            status: ongoing, rejected or completed
            message: Reviewer notes stored with the decision
            principal: Reviewer
        """
        status = SubmissionStatus(status)
        if status not in DECISIONS:
            raise ValidationError("Ungültige Entscheidung")
        notes_field, event = DECISIONS[status]

        submission = await self.get_submission(submission_id)
        self._require_reviewer(principal, submission)

        values: dict[str, Any] = {"status": status.value, notes_field: message}
        if status == SubmissionStatus.COMPLETED:
            values["completed_at"] = utcnow()
        await self._transition(submission.id, [SubmissionStatus.REVIEWING], values, NOT_REVIEWING)
        await self.db.commit()
        logger.info("Form submission decided: %s -> %s by %s", submission.id, status.value, principal.email)

        submission = await self.get_submission(submission_id)
        await self._dispatch(submission, event, principal, message=message)
        return submission

    async def archive_submission(self, submission_id: str, principal: Principal) -> FormSubmission:
        return await self._set_archived(submission_id, True, principal)

    async def reactivate_submission(self, submission_id: str, principal: Principal) -> FormSubmission:
        return await self._set_archived(submission_id, False, principal)

    async def _set_archived(self, submission_id: str, archived: bool, principal: Principal) -> FormSubmission:
        submission = await self.get_submission(submission_id)
        self._require_reviewer(principal, submission)

        result = await self.db.execute(
            update(FormSubmission)
            .where(FormSubmission.id == submission.id, FormSubmission.is_archived == (not archived))
            .values(is_archived=archived, archived_at=utcnow() if archived else None, updated_at=utcnow())
        )
        if result.rowcount != 1:
            raise PreconditionFailedError(
                "Formular ist bereits archiviert" if archived else "Formular ist nicht archiviert"
            )
        await self.db.commit()

        submission = await self.get_submission(submission_id)
        await self._dispatch(submission, FormEvent.ARCHIVE, principal, event_name="archive" if archived else "reactivate")
        return submission

    # ─── Helpers ───────────────────────────────────────────

    async def _transition(
        self,
        submission_id: str,
        allowed_from: Iterable[SubmissionStatus],
        values: dict[str, Any],
        conflict_message: str,
    ) -> None:
        result = await self.db.execute(
            update(FormSubmission)
            .where(
                FormSubmission.id == submission_id,
                FormSubmission.status.in_([status.value for status in allowed_from]),
            )
            .values(updated_at=utcnow(), **values)
        )
        if result.rowcount != 1:
            raise PreconditionFailedError(conflict_message)

    def _webhook_context(
        self,
        submission: FormSubmission,
        event: FormEvent,
        principal: Principal,
        message: Optional[str] = None,
        event_name: Optional[str] = None,
    ) -> dict:
        context: dict[str, Any] = {
            "event": event_name or FormEvent(event).value,
            "submissionId": submission.id,
            "status": submission.status,
            "form": {"id": submission.form.id, "title": submission.form.title},
            "user": principal.as_context(),
            "data": submission.data or {},
        }
        if message is not None:
            context["message"] = message
        return context

    async def _dispatch(
        self,
        submission: FormSubmission,
        event: FormEvent,
        principal: Principal,
        message: Optional[str] = None,
        event_name: Optional[str] = None,
    ) -> None:
        await self.dispatcher.dispatch(
            binding_ids(bindings_for(submission.form.n8n_bindings, event)),
            self._webhook_context(submission, event, principal, message, event_name),
        )

    async def _team(self, team_id: str) -> Team:
        team = await self.db.get(Team, team_id)
        if team is None:
            raise NotFoundError("Bereich nicht gefunden")
        return team
