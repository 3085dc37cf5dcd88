"""Form endpoints: CRUD, n8n bindings and submission lifecycle."""

from typing import List, Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession
import logging

from api.schemas.common import MessageResponse, N8nBindingRequest, binding_responses, team_ref
from api.schemas.form import (
    FormCreate,
    FormResponse,
    FormUpdate,
    SubmissionData,
    SubmissionDecision,
    SubmissionResponse,
)
from app.dependencies import get_current_principal, get_db
from core.constants import SUBMISSION_STATUS_LABELS, SubmissionStatus
from core.permission_context import Principal
from core.webhooks import WebhookDispatcher, get_webhook_dispatcher
from services.form_service import FormService

logger = logging.getLogger(__name__)

router = APIRouter(tags=["forms"])
submissions_router = APIRouter(tags=["submissions"])


def _form_to_response(form) -> FormResponse:
    return FormResponse(
        id=form.id,
        title=form.title,
        description=form.description or "",
        is_public=form.is_public,
        is_active=form.is_active,
        schema_=form.schema,
        theme=form.theme,
        responsible_team=team_ref(form.responsible_team),
        teams=[team_ref(team) for team in form.teams],
        edit_form_permissions=form.edit_form_permissions,
        review_form_permissions=form.review_form_permissions,
        n8n_bindings=binding_responses(form.n8n_bindings),
    )


def _submission_to_response(submission) -> SubmissionResponse:
    return SubmissionResponse(
        id=submission.id,
        form_id=submission.form_id,
        form_title=submission.form.title,
        submitted_by_id=submission.submitted_by_id,
        status=submission.status,
        status_label=SUBMISSION_STATUS_LABELS[SubmissionStatus(submission.status)],
        data=submission.data or {},
        review_notes=submission.review_notes,
        rejected_notes=submission.rejected_notes,
        completed_notes=submission.completed_notes,
        is_archived=submission.is_archived,
        submitted_at=submission.submitted_at,
        completed_at=submission.completed_at,
    )


# ─── Forms ─────────────────────────────────────────────────


@router.get("/", response_model=List[FormResponse])
async def list_forms(
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
) -> List[FormResponse]:
    forms = await FormService(db).list_forms(principal)
    return [_form_to_response(form) for form in forms]


@router.post("/", response_model=MessageResponse, status_code=status.HTTP_201_CREATED)
async def create_form(
    request: FormCreate,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
) -> MessageResponse:
    form = await FormService(db).create_form(
        principal,
        title=request.title,
        description=request.description or "",
        is_public=request.is_public,
        is_active=request.is_active,
        responsible_team_id=request.responsible_team_id,
    )
    return MessageResponse(message="Formular erstellt", id=form.id)


@router.get("/{form_id}", response_model=FormResponse)
async def get_form(
    form_id: str,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
) -> FormResponse:
    form = await FormService(db).get_or_404(form_id)
    return _form_to_response(form)


@router.put("/{form_id}", response_model=MessageResponse)
async def update_form(
    form_id: str,
    request: FormUpdate,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
) -> MessageResponse:
    """
    Update form fields, schema and rules; ``team_ids`` replaces the assigned teams.
    """
    svc = FormService(db)
    data = request.model_dump(exclude_unset=True)
    team_ids = data.pop("team_ids", None)
    if "schema_" in data:
        data["schema"] = data.pop("schema_")
    await svc.update_form(form_id, principal, data)
    if team_ids is not None:
        await svc.set_teams(form_id, team_ids, principal)
    return MessageResponse(message="Formular aktualisiert", id=form_id)


@router.delete("/{form_id}", response_model=MessageResponse)
async def delete_form(
    form_id: str,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
) -> MessageResponse:
    await FormService(db).delete_form(form_id, principal)
    return MessageResponse(message="Formular gelöscht", id=form_id)


@router.post("/{form_id}/n8n", response_model=MessageResponse)
async def connect_n8n(
    form_id: str,
    request: N8nBindingRequest,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
) -> MessageResponse:
    await FormService(db).connect_n8n(form_id, request.n8n_workflow_id, request.event, principal)
    return MessageResponse(message="N8n Workflow verbunden", id=form_id)


@router.delete("/{form_id}/n8n", response_model=MessageResponse)
async def disconnect_n8n(
    form_id: str,
    request: N8nBindingRequest,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
) -> MessageResponse:
    await FormService(db).disconnect_n8n(form_id, request.n8n_workflow_id, request.event, principal)
    return MessageResponse(message="N8n Workflow getrennt", id=form_id)


@router.post("/{form_id}/submissions", response_model=MessageResponse, status_code=status.HTTP_201_CREATED)
async def start_submission(
    form_id: str,
    request: SubmissionData,
    principal: Principal = Depends(get_current_principal),
    dispatcher: WebhookDispatcher = Depends(get_webhook_dispatcher),
    db: AsyncSession = Depends(get_db),
) -> MessageResponse:
    submission = await FormService(db, dispatcher).start_submission(form_id, principal, request.data)
    return MessageResponse(message="Formular wurde gespeichert", id=submission.id)


# ─── Submissions ───────────────────────────────────────────


@submissions_router.get("/", response_model=List[SubmissionResponse])
async def list_submissions(
    form_id: Optional[str] = Query(default=None),
    archived: bool = Query(default=False),
    submission_status: Optional[SubmissionStatus] = Query(default=None, alias="status"),
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
) -> List[SubmissionResponse]:
    submissions = await FormService(db).list_submissions(
        principal, form_id=form_id, archived=archived, status=submission_status
    )
    return [_submission_to_response(s) for s in submissions]


@submissions_router.get("/{submission_id}", response_model=SubmissionResponse)
async def get_submission(
    submission_id: str,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
) -> SubmissionResponse:
    submission = await FormService(db).get_submission(submission_id, principal)
    return _submission_to_response(submission)


@submissions_router.put("/{submission_id}", response_model=MessageResponse)
async def save_submission(
    submission_id: str,
    request: SubmissionData,
    principal: Principal = Depends(get_current_principal),
    dispatcher: WebhookDispatcher = Depends(get_webhook_dispatcher),
    db: AsyncSession = Depends(get_db),
) -> MessageResponse:
    await FormService(db, dispatcher).save_submission(submission_id, request.data or {}, principal)
    return MessageResponse(message="Formular wurde gespeichert", id=submission_id)


@submissions_router.delete("/{submission_id}", response_model=MessageResponse)
async def withdraw_submission(
    submission_id: str,
    principal: Principal = Depends(get_current_principal),
    dispatcher: WebhookDispatcher = Depends(get_webhook_dispatcher),
    db: AsyncSession = Depends(get_db),
) -> MessageResponse:
    await FormService(db, dispatcher).withdraw_submission(submission_id, principal)
    return MessageResponse(message="Formular wurde zurückgezogen", id=submission_id)


@submissions_router.post("/{submission_id}/submit", response_model=MessageResponse)
async def submit_submission(
    submission_id: str,
    request: SubmissionData,
    principal: Principal = Depends(get_current_principal),
    dispatcher: WebhookDispatcher = Depends(get_webhook_dispatcher),
    db: AsyncSession = Depends(get_db),
) -> MessageResponse:
    await FormService(db, dispatcher).submit_submission(submission_id, principal, request.data)
    return MessageResponse(message="Formular wurde gespeichert und eingereicht", id=submission_id)


@submissions_router.post("/{submission_id}/review", response_model=MessageResponse)
async def review_submission(
    submission_id: str,
    principal: Principal = Depends(get_current_principal),
    dispatcher: WebhookDispatcher = Depends(get_webhook_dispatcher),
    db: AsyncSession = Depends(get_db),
) -> MessageResponse:
    await FormService(db, dispatcher).review_submission(submission_id, principal)
    return MessageResponse(message="Formular wurde zur Prüfung aktualisiert", id=submission_id)


@submissions_router.post("/{submission_id}/decision", response_model=MessageResponse)
async def decide_submission(
    submission_id: str,
    request: SubmissionDecision,
    principal: Principal = Depends(get_current_principal),
    dispatcher: WebhookDispatcher = Depends(get_webhook_dispatcher),
    db: AsyncSession = Depends(get_db),
) -> MessageResponse:
    await FormService(db, dispatcher).decide_submission(submission_id, request.status, request.message, principal)
    return MessageResponse(message="Formular wurde aktualisiert", id=submission_id)


@submissions_router.post("/{submission_id}/archive", response_model=MessageResponse)
async def archive_submission(
    submission_id: str,
    principal: Principal = Depends(get_current_principal),
    dispatcher: WebhookDispatcher = Depends(get_webhook_dispatcher),
    db: AsyncSession = Depends(get_db),
) -> MessageResponse:
    await FormService(db, dispatcher).archive_submission(submission_id, principal)
    return MessageResponse(message="Formular wurde archiviert", id=submission_id)


@submissions_router.post("/{submission_id}/reactivate", response_model=MessageResponse)
async def reactivate_submission(
    submission_id: str,
    principal: Principal = Depends(get_current_principal),
    dispatcher: WebhookDispatcher = Depends(get_webhook_dispatcher),
    db: AsyncSession = Depends(get_db),
) -> MessageResponse:
    await FormService(db, dispatcher).reactivate_submission(submission_id, principal)
    return MessageResponse(message="Formular wurde reaktiviert", id=submission_id)
