"""Process designer endpoints."""

from typing import List

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession
import logging

from api.schemas.common import MessageResponse, N8nBindingRequest
from api.schemas.process import (
    DependencyUpdate,
    ProcessCreate,
    ProcessFormUpdate,
    ProcessMove,
    ProcessPermissionsUpdate,
    ProcessResponse,
    ProcessUpdate,
)
from app.dependencies import get_current_principal, get_db
from core.permission_context import Principal
from services.process_service import ProcessService

logger = logging.getLogger(__name__)

router = APIRouter(tags=["processes"])


def _process_to_response(process) -> ProcessResponse:
    return ProcessResponse(
        id=process.id,
        workflow_id=process.workflow_id,
        parent_id=process.parent_id,
        name=process.name,
        description=process.description or "",
        is_category=process.is_category,
        order=process.order,
        schema_=process.schema,
        theme=process.theme,
        edit_process_permissions=process.edit_process_permissions,
        submit_process_permissions=process.submit_process_permissions,
        view_process_permissions=process.view_process_permissions,
        reset_process_permissions=process.reset_process_permissions,
        dependency_ids=[d.id for d in process.dependencies if not d.is_deleted],
        team_ids=[team.id for team in process.teams],
        responsible_team_id=process.responsible_team_id,
    )


@router.post("/", response_model=MessageResponse, status_code=status.HTTP_201_CREATED)
async def create_process(
    request: ProcessCreate,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
) -> MessageResponse:
    """
    Append a process or category to a workflow's tree.
    """
    process = await ProcessService(db).create_process(
        request.workflow_id,
        principal,
        name=request.name,
        description=request.description or "",
        is_category=request.is_category,
        parent_id=request.parent_id,
    )
    message = "Kategorie erstellt" if process.is_category else "Prozess erstellt"
    return MessageResponse(message=message, id=process.id)


@router.get("/{process_id}", response_model=ProcessResponse, response_model_by_alias=True)
async def get_process(
    process_id: str,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
) -> ProcessResponse:
    process = await ProcessService(db).get_or_404(process_id)
    return _process_to_response(process)


@router.put("/{process_id}", response_model=MessageResponse)
async def update_process(
    process_id: str,
    request: ProcessUpdate,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
) -> MessageResponse:
    await ProcessService(db).update_process(
        process_id,
        principal,
        name=request.name,
        description=request.description,
        responsible_team_id=request.responsible_team_id,
        team_ids=request.team_ids,
    )
    return MessageResponse(message="Prozess aktualisiert", id=process_id)


@router.delete("/{process_id}", response_model=MessageResponse)
async def delete_process(
    process_id: str,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
) -> MessageResponse:
    """
    Soft-delete a process together with everything below it.
    """
    await ProcessService(db).delete_process(process_id, principal)
    return MessageResponse(message="Prozess gelöscht", id=process_id)


@router.put("/{process_id}/form", response_model=MessageResponse)
async def update_process_form(
    process_id: str,
    request: ProcessFormUpdate,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
) -> MessageResponse:
    await ProcessService(db).update_process_form(process_id, principal, request.schema_, request.theme)
    return MessageResponse(message="Prozess Formular aktualisiert", id=process_id)


@router.put("/{process_id}/permissions", response_model=MessageResponse)
async def update_process_permissions(
    process_id: str,
    request: ProcessPermissionsUpdate,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
) -> MessageResponse:
    await ProcessService(db).update_process_permissions(process_id, principal, request.model_dump())
    return MessageResponse(message="Prozess Berechtigungen aktualisiert", id=process_id)


@router.post("/{process_id}/move", response_model=MessageResponse)
async def move_process(
    process_id: str,
    request: ProcessMove,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
) -> MessageResponse:
    await ProcessService(db).move_process(process_id, request.direction, principal)
    return MessageResponse(message="Prozess verschoben", id=process_id)


@router.get("/{process_id}/dependencies/available", response_model=List[ProcessResponse])
async def available_dependencies(
    process_id: str,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
) -> List[ProcessResponse]:
    candidates = await ProcessService(db).available_dependencies(process_id)
    return [_process_to_response(p) for p in candidates]


@router.put("/{process_id}/dependencies", response_model=MessageResponse)
async def set_dependencies(
    process_id: str,
    request: DependencyUpdate,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
) -> MessageResponse:
    await ProcessService(db).set_dependencies(process_id, request.dependency_ids, principal)
    return MessageResponse(message="Abhängigkeiten aktualisiert", id=process_id)


@router.delete("/{process_id}/dependencies/{dependency_id}", response_model=MessageResponse)
async def remove_dependency(
    process_id: str,
    dependency_id: str,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
) -> MessageResponse:
    await ProcessService(db).remove_dependency(process_id, dependency_id, principal)
    return MessageResponse(message="Abhängigkeiten entfernt", id=process_id)


@router.post("/{process_id}/n8n", response_model=MessageResponse)
async def connect_n8n(
    process_id: str,
    request: N8nBindingRequest,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
) -> MessageResponse:
    await ProcessService(db).connect_n8n(process_id, request.n8n_workflow_id, request.event, principal)
    return MessageResponse(message="N8n Workflow verbunden", id=process_id)


@router.delete("/{process_id}/n8n", response_model=MessageResponse)
async def disconnect_n8n(
    process_id: str,
    request: N8nBindingRequest,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
) -> MessageResponse:
    await ProcessService(db).disconnect_n8n(process_id, request.n8n_workflow_id, request.event, principal)
    return MessageResponse(message="N8n Workflow getrennt", id=process_id)
