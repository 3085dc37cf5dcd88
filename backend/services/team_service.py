"""Team administration."""

import logging
from typing import Optional, Sequence

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from core.access import AccessGate, Operation, access_gate
from core.exceptions import NotFoundError, PreconditionFailedError
from core.permission_context import Principal
from db.models.team import Team
from db.models.user import User
from services.base import BaseService

logger = logging.getLogger(__name__)


class TeamService(BaseService[Team]):
    """Admin-only CRUD for teams and their members."""

    not_found_message = "Bereich nicht gefunden"

    def __init__(self, db: AsyncSession, gate: AccessGate = access_gate):
        super().__init__(Team, db)
        self.gate = gate

    async def list_teams(self) -> list[Team]:
        result = await self.db.execute(select(Team).order_by(Team.name))
        return list(result.scalars().all())

    async def create_team(self, name: str, principal: Principal, contact_email: Optional[str] = None) -> Team:
        self.gate.require(principal, Operation.ADMINISTRATE)
        await self._ensure_unique(name)
        team = await self.create({"name": name, "contact_email": contact_email})
        logger.info("Team created: %s (%s) by %s", team.id, name, principal.email)
        return team

    async def update_team(
        self,
        team_id: str,
        principal: Principal,
        name: Optional[str] = None,
        contact_email: Optional[str] = None,
    ) -> Team:
        """Rename a team. Stored rules refer to the old name and are not rewritten."""
        self.gate.require(principal, Operation.ADMINISTRATE)
        team = await self.get_or_404(team_id)
        if name is not None and name != team.name:
            await self._ensure_unique(name)
            team.name = name
        if contact_email is not None:
            team.contact_email = contact_email or None
        await self.db.flush()
        return team

    async def delete_team(self, team_id: str, principal: Principal) -> None:
        self.gate.require(principal, Operation.ADMINISTRATE)
        await self.hard_delete(team_id)
        logger.info("Team deleted: %s by %s", team_id, principal.email)

    async def set_members(self, team_id: str, user_ids: Sequence[str], principal: Principal) -> Team:
        self.gate.require(principal, Operation.ADMINISTRATE)
        team = await self.get_or_404(team_id)
        members = []
        for user_id in dict.fromkeys(user_ids):
            user = await self.db.get(User, user_id)
            if user is None:
                raise NotFoundError("Benutzer nicht gefunden")
            members.append(user)
        team.members = members
        await self.db.flush()
        return team

    async def _ensure_unique(self, name: str) -> None:
        result = await self.db.execute(select(Team.id).where(Team.name == name))
        if result.first() is not None:
            raise PreconditionFailedError("Bereich existiert bereits")
