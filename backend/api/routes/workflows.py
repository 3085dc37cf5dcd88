"""Workflow endpoints: CRUD, teams, information fields, n8n bindings, process tree and runs."""

from typing import List, Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession
import logging

from api.schemas.common import MessageResponse, N8nBindingRequest, binding_responses, team_ref
from api.schemas.run import RunResponse
from api.schemas.workflow import (
    InformationField,
    InformationUpdate,
    TeamAssignment,
    WorkflowCreate,
    WorkflowResponse,
    WorkflowUpdate,
)
from api.routes.runs import run_to_response
from app.dependencies import get_current_principal, get_db
from core.constants import WorkflowRunStatus
from core.permission_context import Principal
from services.process_service import ProcessService
from services.run_service import RunService
from services.workflow_service import WorkflowService

logger = logging.getLogger(__name__)

router = APIRouter(tags=["workflows"])


def _workflow_to_response(wf) -> WorkflowResponse:
    """Convert a Workflow ORM object to response schema."""
    return WorkflowResponse(
        id=wf.id,
        name=wf.name,
        description=wf.description or "",
        is_public=wf.is_public,
        is_active=wf.is_active,
        responsible_team=team_ref(wf.responsible_team),
        teams=[team_ref(team) for team in wf.teams],
        edit_workflow_permissions=wf.edit_workflow_permissions,
        submit_process_permissions=wf.submit_process_permissions,
        initialize_process_id=wf.initialize_process_id,
        information=[InformationField(**field) for field in (wf.information or [])],
        n8n_bindings=binding_responses(wf.n8n_bindings),
        created_at=wf.created_at,
        updated_at=wf.updated_at,
    )


@router.get("/", response_model=List[WorkflowResponse])
async def list_workflows(
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
) -> List[WorkflowResponse]:
    """
    List workflows visible to the current user.
    """
    workflows = await WorkflowService(db).list_workflows(principal)
    return [_workflow_to_response(wf) for wf in workflows]


@router.post("/", response_model=MessageResponse, status_code=status.HTTP_201_CREATED)
async def create_workflow(
    request: WorkflowCreate,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
) -> MessageResponse:
    """
    Create a new workflow (moderators).
    """
    wf = await WorkflowService(db).create_workflow(
        principal,
        name=request.name,
        description=request.description or "",
        is_public=request.is_public,
        is_active=request.is_active,
        responsible_team_id=request.responsible_team_id,
        team_ids=request.team_ids,
    )
    return MessageResponse(message="Workflow erstellt", id=wf.id)


@router.get("/{workflow_id}", response_model=WorkflowResponse)
async def get_workflow(
    workflow_id: str,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
) -> WorkflowResponse:
    wf = await WorkflowService(db).get_workflow(workflow_id, principal)
    return _workflow_to_response(wf)


@router.put("/{workflow_id}", response_model=MessageResponse)
async def update_workflow(
    workflow_id: str,
    request: WorkflowUpdate,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
) -> MessageResponse:
    """
    Update workflow fields and permission rules.
    """
    await WorkflowService(db).update_workflow(workflow_id, principal, request.model_dump(exclude_unset=True))
    return MessageResponse(message="Workflow aktualisiert", id=workflow_id)


@router.delete("/{workflow_id}", response_model=MessageResponse)
async def delete_workflow(
    workflow_id: str,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
) -> MessageResponse:
    await WorkflowService(db).delete_workflow(workflow_id, principal)
    return MessageResponse(message="Workflow gelöscht", id=workflow_id)


@router.post("/{workflow_id}/teams", response_model=MessageResponse)
async def assign_teams(
    workflow_id: str,
    request: TeamAssignment,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
) -> MessageResponse:
    await WorkflowService(db).assign_teams(workflow_id, request.team_ids, principal)
    return MessageResponse(message="Bereiche hinzugefügt", id=workflow_id)


@router.delete("/{workflow_id}/teams/{team_id}", response_model=MessageResponse)
async def remove_team(
    workflow_id: str,
    team_id: str,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
) -> MessageResponse:
    await WorkflowService(db).remove_team(workflow_id, team_id, principal)
    return MessageResponse(message="Bereich entfernt", id=workflow_id)


@router.put("/{workflow_id}/information", response_model=MessageResponse)
async def update_information(
    workflow_id: str,
    request: InformationUpdate,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
) -> MessageResponse:
    """
    Replace the summary fields shown in run lists.
    """
    fields = [field.model_dump() for field in request.fields]
    await WorkflowService(db).update_information(workflow_id, fields, principal)
    return MessageResponse(message="Workflow Informationen aktualisiert", id=workflow_id)


@router.post("/{workflow_id}/n8n", response_model=MessageResponse)
async def connect_n8n(
    workflow_id: str,
    request: N8nBindingRequest,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
) -> MessageResponse:
    await WorkflowService(db).connect_n8n(workflow_id, request.n8n_workflow_id, request.event, principal)
    return MessageResponse(message="N8n Workflow verbunden", id=workflow_id)


@router.delete("/{workflow_id}/n8n", response_model=MessageResponse)
async def disconnect_n8n(
    workflow_id: str,
    request: N8nBindingRequest,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
) -> MessageResponse:
    await WorkflowService(db).disconnect_n8n(workflow_id, request.n8n_workflow_id, request.event, principal)
    return MessageResponse(message="N8n Workflow getrennt", id=workflow_id)


@router.get("/{workflow_id}/processes")
async def get_process_tree(
    workflow_id: str,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
) -> list[dict]:
    """
    Process tree of a workflow, categories with nested children.
    """
    await WorkflowService(db).get_workflow(workflow_id, principal)
    return await ProcessService(db).get_tree(workflow_id)


@router.get("/{workflow_id}/runs", response_model=List[RunResponse])
async def list_workflow_runs(
    workflow_id: str,
    archived: bool = Query(default=False, description="List archived runs instead"),
    run_status: Optional[WorkflowRunStatus] = Query(default=None, alias="status"),
    search: Optional[str] = Query(default=None, description="Matches the information fields"),
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
) -> List[RunResponse]:
    runs = await RunService(db).list_runs(
        principal, workflow_id=workflow_id, archived=archived, status=run_status, search=search
    )
    return [run_to_response(run) for run in runs]
