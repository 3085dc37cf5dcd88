"""Team administration endpoints."""

from typing import List

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from api.schemas.admin import TeamCreate, TeamMembers, TeamResponse, TeamUpdate
from api.schemas.common import MessageResponse
from app.dependencies import get_current_principal, get_db
from core.permission_context import Principal
from services.team_service import TeamService

router = APIRouter(tags=["teams"])


def _team_to_response(team) -> TeamResponse:
    return TeamResponse(
        id=team.id,
        name=team.name,
        contact_email=team.contact_email,
        member_ids=[member.id for member in team.members],
    )


@router.get("/", response_model=List[TeamResponse])
async def list_teams(
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
) -> List[TeamResponse]:
    return [_team_to_response(team) for team in await TeamService(db).list_teams()]


@router.post("/", response_model=MessageResponse, status_code=status.HTTP_201_CREATED)
async def create_team(
    request: TeamCreate,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
) -> MessageResponse:
    team = await TeamService(db).create_team(request.name, principal, request.contact_email)
    return MessageResponse(message="Bereich erstellt", id=team.id)


@router.put("/{team_id}", response_model=MessageResponse)
async def update_team(
    team_id: str,
    request: TeamUpdate,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
) -> MessageResponse:
    await TeamService(db).update_team(team_id, principal, name=request.name, contact_email=request.contact_email)
    return MessageResponse(message="Bereich aktualisiert", id=team_id)


@router.put("/{team_id}/members", response_model=MessageResponse)
async def set_members(
    team_id: str,
    request: TeamMembers,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
) -> MessageResponse:
    await TeamService(db).set_members(team_id, request.user_ids, principal)
    return MessageResponse(message="Mitglieder aktualisiert", id=team_id)


@router.delete("/{team_id}", response_model=MessageResponse)
async def delete_team(
    team_id: str,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
) -> MessageResponse:
    await TeamService(db).delete_team(team_id, principal)
    return MessageResponse(message="Bereich gelöscht", id=team_id)
