"""User service: principal resolution and role management."""

import logging
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from core.access import AccessGate, Operation, access_gate
from core.constants import UserRole
from core.exceptions import UnauthorizedError
from core.permission_context import Principal
from db.models.user import User
from services.base import BaseService

logger = logging.getLogger(__name__)


class UserService(BaseService[User]):
    """Service for portal users."""

    not_found_message = "Benutzer nicht gefunden"

    def __init__(self, db: AsyncSession, gate: AccessGate = access_gate):
        super().__init__(User, db)
        self.gate = gate

    async def get_by_email(self, email: str) -> Optional[User]:
        """Get a user by email."""
        result = await self.db.execute(select(User).where(User.email == email))
        return result.scalar_one_or_none()

    async def load_principal(self, user_id: str) -> Principal:
        """Resolve the token subject to a request principal with team names."""
        user = await self.get_by_id(user_id)
        if user is None:
            raise UnauthorizedError(self.not_found_message)
        return Principal.from_user(user)

    async def list_users(self, principal: Principal) -> list[User]:
        self.gate.require(principal, Operation.ADMINISTRATE)
        result = await self.db.execute(select(User).order_by(User.name))
        return list(result.scalars().all())

    async def update_role(self, user_id: str, role: UserRole, principal: Principal) -> User:
        """Change a user's privilege tier (admins only)."""
        self.gate.require(principal, Operation.ADMINISTRATE)
        user = await self.get_or_404(user_id)
        user.role = UserRole(role).value
        await self.db.flush()
        logger.info("User role changed: %s -> %s by %s", user.id, user.role, principal.email)
        return user
