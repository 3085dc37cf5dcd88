"""Tests for admin services: teams, the n8n registry and user roles."""

import pytest
from sqlalchemy import func, select

from core.constants import UserRole
from core.exceptions import NotFoundError, PermissionDeniedError, PreconditionFailedError, UnauthorizedError
from db.models.n8n_workflow import N8nWorkflow, WorkflowN8nBinding
from services.n8n_service import N8nWorkflowService
from services.team_service import TeamService
from services.user_service import UserService


@pytest.mark.integration
class TestTeams:
    async def test_create_and_list(self, db_session, admin, team):
        service = TeamService(db_session)
        created = await service.create_team("IT", admin, contact_email="it@example.com")
        assert created.contact_email == "it@example.com"
        assert [t.name for t in await service.list_teams()] == ["IT", "Personal"]

    async def test_duplicate_name(self, db_session, admin, team):
        with pytest.raises(PreconditionFailedError) as exc:
            await TeamService(db_session).create_team("Personal", admin)
        assert exc.value.message == "Bereich existiert bereits"

    async def test_moderator_denied(self, db_session, moderator):
        with pytest.raises(PermissionDeniedError):
            await TeamService(db_session).create_team("IT", moderator)

    async def test_rename(self, db_session, admin, team):
        renamed = await TeamService(db_session).update_team(team.id, admin, name="HR", contact_email="")
        assert renamed.name == "HR"
        assert renamed.contact_email is None

    async def test_set_members(self, db_session, admin, team, outsider_user):
        service = TeamService(db_session)
        updated = await service.set_members(team.id, [outsider_user.id], admin)
        assert [u.id for u in updated.members] == [outsider_user.id]

        with pytest.raises(NotFoundError):
            await service.set_members(team.id, ["missing"], admin)

    async def test_delete(self, db_session, admin, team):
        service = TeamService(db_session)
        await service.delete_team(team.id, admin)
        with pytest.raises(NotFoundError):
            await service.get_or_404(team.id)


@pytest.mark.integration
class TestN8nRegistry:
    async def test_register_and_list(self, db_session, admin, moderator):
        service = N8nWorkflowService(db_session)
        await service.register("abc123", "Mailversand", admin)
        assert [w.workflow_id for w in await service.list_workflows(moderator)] == ["abc123"]

    async def test_member_cannot_list(self, db_session, member):
        with pytest.raises(PermissionDeniedError):
            await N8nWorkflowService(db_session).list_workflows(member)

    async def test_duplicate(self, db_session, admin):
        service = N8nWorkflowService(db_session)
        await service.register("abc123", "Mailversand", admin)
        with pytest.raises(PreconditionFailedError) as exc:
            await service.register("abc123", "Nochmal", admin)
        assert exc.value.message == "N8n Workflow existiert bereits"

    async def test_rename(self, db_session, admin):
        service = N8nWorkflowService(db_session)
        registered = await service.register("abc123", "Mailversand", admin)
        renamed = await service.rename(registered.id, "Benachrichtigung", admin)
        assert renamed.name == "Benachrichtigung"

    async def test_remove_drops_bindings(self, db_session, admin, workflow):
        service = N8nWorkflowService(db_session)
        registered = await service.register("abc123", "Mailversand", admin)
        db_session.add(WorkflowN8nBinding(workflow_id=workflow.id, n8n_workflow_id=registered.id, event="save"))
        await db_session.flush()

        await service.remove(registered.id, admin)

        bindings = await db_session.execute(select(func.count()).select_from(WorkflowN8nBinding))
        assert bindings.scalar() == 0
        assert await db_session.get(N8nWorkflow, registered.id) is None


@pytest.mark.integration
class TestUsers:
    async def test_load_principal(self, db_session, member_user):
        principal = await UserService(db_session).load_principal(member_user.id)
        assert principal.email == member_user.email
        assert principal.teams == ("Personal",)
        assert principal.role == UserRole.USER

    async def test_unknown_user(self, db_session):
        with pytest.raises(UnauthorizedError) as exc:
            await UserService(db_session).load_principal("missing")
        assert exc.value.status_code == 401

    async def test_get_by_email(self, db_session, member_user):
        found = await UserService(db_session).get_by_email(member_user.email)
        assert found.id == member_user.id

    async def test_update_role(self, db_session, admin, member_user):
        updated = await UserService(db_session).update_role(member_user.id, "moderator", admin)
        assert updated.role == "moderator"

    async def test_list_requires_admin(self, db_session, moderator, admin):
        service = UserService(db_session)
        with pytest.raises(PermissionDeniedError):
            await service.list_users(moderator)
        assert len(await service.list_users(admin)) == 2
