"""User endpoints: current user and role management."""

from typing import List

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from api.schemas.admin import RoleUpdate, UserResponse
from api.schemas.common import MessageResponse
from app.dependencies import get_current_principal, get_db
from core.permission_context import Principal
from services.user_service import UserService

router = APIRouter(tags=["users"])


def _user_to_response(user) -> UserResponse:
    return UserResponse(
        id=user.id,
        name=user.name,
        email=user.email,
        role=user.role,
        image=user.image,
        teams=[team.name for team in user.teams],
    )


@router.get("/me", response_model=UserResponse)
async def get_me(
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
) -> UserResponse:
    user = await UserService(db).get_or_404(principal.id)
    return _user_to_response(user)


@router.get("/", response_model=List[UserResponse])
async def list_users(
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
) -> List[UserResponse]:
    return [_user_to_response(user) for user in await UserService(db).list_users(principal)]


@router.put("/{user_id}/role", response_model=MessageResponse)
async def update_role(
    user_id: str,
    request: RoleUpdate,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
) -> MessageResponse:
    await UserService(db).update_role(user_id, request.role, principal)
    return MessageResponse(message="Rolle aktualisiert", id=user_id)
