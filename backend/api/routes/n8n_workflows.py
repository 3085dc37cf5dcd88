"""N8n workflow registry endpoints."""

from typing import List

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from api.schemas.admin import N8nWorkflowCreate, N8nWorkflowResponse, N8nWorkflowUpdate
from api.schemas.common import MessageResponse
from app.dependencies import get_current_principal, get_db
from core.permission_context import Principal
from services.n8n_service import N8nWorkflowService

router = APIRouter(tags=["n8n"])


@router.get("/", response_model=List[N8nWorkflowResponse])
async def list_n8n_workflows(
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
) -> List[N8nWorkflowResponse]:
    workflows = await N8nWorkflowService(db).list_workflows(principal)
    return [N8nWorkflowResponse.model_validate(wf) for wf in workflows]


@router.post("/", response_model=MessageResponse, status_code=status.HTTP_201_CREATED)
async def register_n8n_workflow(
    request: N8nWorkflowCreate,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
) -> MessageResponse:
    wf = await N8nWorkflowService(db).register(request.workflow_id, request.name, principal)
    return MessageResponse(message="N8n Workflow erstellt", id=wf.id)


@router.put("/{id}", response_model=MessageResponse)
async def rename_n8n_workflow(
    id: str,
    request: N8nWorkflowUpdate,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
) -> MessageResponse:
    await N8nWorkflowService(db).rename(id, request.name, principal)
    return MessageResponse(message="N8n Workflow aktualisiert", id=id)


@router.delete("/{id}", response_model=MessageResponse)
async def remove_n8n_workflow(
    id: str,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
) -> MessageResponse:
    await N8nWorkflowService(db).remove(id, principal)
    return MessageResponse(message="N8n Workflow gelöscht", id=id)
