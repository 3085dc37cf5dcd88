"""Workflow run endpoints: initialize, read, save/complete/reset process runs, archive, delete."""

from typing import List, Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession
import logging

from api.schemas.common import MessageResponse
from api.schemas.run import (
    ProcessRunData,
    ProcessRunReset,
    ProcessRunResponse,
    RunArchive,
    RunInitialize,
    RunResponse,
)
from app.dependencies import get_current_principal, get_db
from core.constants import WORKFLOW_RUN_STATUS_LABELS, WorkflowRunStatus
from core.permission_context import Principal, merge_run_data
from core.webhooks import WebhookDispatcher, get_webhook_dispatcher
from services.run_service import RunService

logger = logging.getLogger(__name__)

router = APIRouter(tags=["runs"])


def _process_run_to_response(pr) -> ProcessRunResponse:
    return ProcessRunResponse(
        id=pr.id,
        process_id=pr.process_id,
        process_name=pr.process.name,
        position=pr.position,
        status=pr.status,
        data=pr.data or {},
        reset_process_text=pr.reset_process_text,
        completed_at=pr.completed_at,
    )


def run_to_response(run, tree: Optional[list] = None) -> RunResponse:
    """Convert a WorkflowRun ORM object to response schema."""
    data = merge_run_data(run.process_runs)
    information = {
        field["label"]: data.get(field["fieldKey"])
        for field in (run.workflow.information or [])
    }
    return RunResponse(
        id=run.id,
        workflow_id=run.workflow_id,
        workflow_name=run.workflow.name,
        status=run.status,
        status_label=WORKFLOW_RUN_STATUS_LABELS[WorkflowRunStatus(run.status)],
        is_archived=run.is_archived,
        archived_notes=run.archived_notes,
        started_at=run.started_at,
        completed_at=run.completed_at,
        information=information,
        process_runs=[_process_run_to_response(pr) for pr in run.process_runs],
        tree=tree,
    )


@router.post("/", response_model=MessageResponse, status_code=status.HTTP_201_CREATED)
async def initialize_run(
    request: RunInitialize,
    principal: Principal = Depends(get_current_principal),
    dispatcher: WebhookDispatcher = Depends(get_webhook_dispatcher),
    db: AsyncSession = Depends(get_db),
) -> MessageResponse:
    """
    Start a workflow run, optionally seeding the initialize process.
    """
    run = await RunService(db, dispatcher).initialize(request.workflow_id, principal, request.data)
    return MessageResponse(message="Workflow gestartet", id=run.id)


@router.get("/", response_model=List[RunResponse])
async def list_runs(
    workflow_id: Optional[str] = Query(default=None),
    archived: bool = Query(default=False),
    run_status: Optional[WorkflowRunStatus] = Query(default=None, alias="status"),
    search: Optional[str] = Query(default=None),
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
) -> List[RunResponse]:
    runs = await RunService(db).list_runs(
        principal, workflow_id=workflow_id, archived=archived, status=run_status, search=search
    )
    return [run_to_response(run) for run in runs]


@router.get("/{run_id}", response_model=RunResponse)
async def get_run(
    run_id: str,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
) -> RunResponse:
    """
    Run details with the process tree and each process run attached.
    """
    svc = RunService(db)
    run = await svc.get_run(run_id, principal)
    return run_to_response(run, tree=await svc.run_tree(run))


@router.post("/process-runs/{process_run_id}/save", response_model=MessageResponse)
async def save_process_run(
    process_run_id: str,
    request: ProcessRunData,
    principal: Principal = Depends(get_current_principal),
    dispatcher: WebhookDispatcher = Depends(get_webhook_dispatcher),
    db: AsyncSession = Depends(get_db),
) -> MessageResponse:
    await RunService(db, dispatcher).save(process_run_id, request.data or {}, principal)
    return MessageResponse(message="Formular wurde gespeichert", id=process_run_id)


@router.post("/process-runs/{process_run_id}/complete", response_model=MessageResponse)
async def complete_process_run(
    process_run_id: str,
    request: ProcessRunData,
    principal: Principal = Depends(get_current_principal),
    dispatcher: WebhookDispatcher = Depends(get_webhook_dispatcher),
    db: AsyncSession = Depends(get_db),
) -> MessageResponse:
    """
    Complete a process run. Fails with 409 while dependencies are open.
    """
    await RunService(db, dispatcher).complete(process_run_id, principal, request.data)
    return MessageResponse(message="Formular wurde gespeichert und eingereicht", id=process_run_id)


@router.post("/process-runs/{process_run_id}/reset", response_model=MessageResponse)
async def reset_process_run(
    process_run_id: str,
    request: ProcessRunReset,
    principal: Principal = Depends(get_current_principal),
    dispatcher: WebhookDispatcher = Depends(get_webhook_dispatcher),
    db: AsyncSession = Depends(get_db),
) -> MessageResponse:
    await RunService(db, dispatcher).reset(process_run_id, request.reset_text, principal)
    return MessageResponse(message="Prozess wurde zurückgesetzt", id=process_run_id)


@router.post("/{run_id}/archive", response_model=MessageResponse)
async def archive_run(
    run_id: str,
    request: RunArchive,
    principal: Principal = Depends(get_current_principal),
    dispatcher: WebhookDispatcher = Depends(get_webhook_dispatcher),
    db: AsyncSession = Depends(get_db),
) -> MessageResponse:
    await RunService(db, dispatcher).archive(run_id, request.message, principal)
    return MessageResponse(message="Workflow Ausführung archiviert", id=run_id)


@router.post("/{run_id}/reactivate", response_model=MessageResponse)
async def reactivate_run(
    run_id: str,
    principal: Principal = Depends(get_current_principal),
    dispatcher: WebhookDispatcher = Depends(get_webhook_dispatcher),
    db: AsyncSession = Depends(get_db),
) -> MessageResponse:
    await RunService(db, dispatcher).reactivate(run_id, principal)
    return MessageResponse(message="Workflow Ausführung reaktiviert", id=run_id)


@router.delete("/{run_id}", response_model=MessageResponse)
async def delete_run(
    run_id: str,
    principal: Principal = Depends(get_current_principal),
    dispatcher: WebhookDispatcher = Depends(get_webhook_dispatcher),
    db: AsyncSession = Depends(get_db),
) -> MessageResponse:
    await RunService(db, dispatcher).delete(run_id, principal)
    return MessageResponse(message="Workflow Ausführung gelöscht", id=run_id)
