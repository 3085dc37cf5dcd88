"""Workflow administration: CRUD, team assignment, information fields and n8n bindings."""

import logging
from typing import Any, Optional, Sequence

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from core.access import AccessGate, Operation, access_gate
from core.constants import RULE_ALLOW_ALL, WorkflowEvent
from core.exceptions import NotFoundError, PermissionDeniedError, RuleSyntaxError, ValidationError
from core.permission_context import AccessTarget, Principal, entity_scope
from core.rules import validate_rule
from db.models.n8n_workflow import N8nWorkflow, WorkflowN8nBinding
from db.models.process import Process
from db.models.team import Team
from db.models.workflow import Workflow
from services.base import BaseService, parse_event

logger = logging.getLogger(__name__)

PERMISSION_FIELDS = ("edit_workflow_permissions", "submit_process_permissions")


def is_assigned(principal: Principal, entity) -> bool:
    """True if one of the principal's teams is assigned to (or owns) the entity."""
    names = {team.name for team in entity.teams}
    if entity.responsible_team is not None:
        names.add(entity.responsible_team.name)
    return bool(names.intersection(principal.teams))


class WorkflowService(BaseService[Workflow]):
    """Service for workflow definitions."""

    not_found_message = "Workflow nicht gefunden"

    def __init__(self, db: AsyncSession, gate: AccessGate = access_gate):
        super().__init__(Workflow, db)
        self.gate = gate

    # ─── Access ────────────────────────────────────────────

    def _require_editable(
        self,
        principal: Principal,
        workflow: Workflow,
        operation: Operation = Operation.EDIT_WORKFLOW,
    ) -> None:
        """Moderator check with its own message, then the workflow's edit rule."""
        self.gate.require(principal, Operation.MANAGE_WORKFLOWS)
        self.gate.require(
            principal,
            operation,
            AccessTarget(workflow.edit_workflow_permissions, {"workflow": entity_scope(workflow)}),
        )

    # ─── Read ──────────────────────────────────────────────

    async def list_workflows(self, principal: Principal) -> list[Workflow]:
        """Admins see every workflow, others those ``can_view`` allows."""
        result = await self.db.execute(
            select(Workflow)
            .where(Workflow.is_deleted == False)  # noqa: E712
            .order_by(Workflow.name)
        )
        workflows = result.scalars().all()
        if principal.is_admin:
            return list(workflows)
        return [wf for wf in workflows if self.can_view(principal, wf)]

    async def get_workflow(self, workflow_id: str, principal: Principal) -> Workflow:
        workflow = await self.get_or_404(workflow_id)
        if not self.can_view(principal, workflow):
            raise PermissionDeniedError(Operation.EXECUTE_WORKFLOW.message)
        return workflow

    def can_view(self, principal: Principal, workflow: Workflow) -> bool:
        """Public and assigned workflows, plus those the principal may edit."""
        if principal.is_admin or workflow.is_public or is_assigned(principal, workflow):
            return True
        return self.gate.authorize(
            principal,
            Operation.EDIT_WORKFLOW,
            AccessTarget(workflow.edit_workflow_permissions, {"workflow": entity_scope(workflow)}),
        )

    # ─── Create / Update / Delete ──────────────────────────

    async def create_workflow(
        self,
        principal: Principal,
        name: str,
        description: str = "",
        is_public: bool = False,
        is_active: bool = True,
        responsible_team_id: Optional[str] = None,
        team_ids: Optional[list[str]] = None,
    ) -> Workflow:
        """Create a workflow with unrestricted edit and submit rules."""
        self.gate.require(principal, Operation.CREATE_WORKFLOW)

        workflow = await self.create({
            "name": name,
            "description": description or "",
            "is_public": is_public,
            "is_active": is_active,
            "responsible_team_id": responsible_team_id,
            "edit_workflow_permissions": RULE_ALLOW_ALL,
            "submit_process_permissions": RULE_ALLOW_ALL,
            "information": [],
        })
        if team_ids:
            workflow.teams = await self._teams(team_ids)
            await self.db.flush()
        logger.info("Workflow created: %s by %s", workflow.id, principal.email)
        return workflow

    async def update_workflow(self, workflow_id: str, principal: Principal, data: dict[str, Any]) -> Workflow:
        """Update scalar fields and permission rules.

        Args:
            workflow_id: Workflow UUID
            principal: Requesting user
            data: Fields to change (None values are skipped)

        Raises:
            ValidationError: If a rule does not parse or the initialize process is invalid
        """
        workflow = await self.get_or_404(workflow_id)
        self._require_editable(principal, workflow)

        for field in PERMISSION_FIELDS:
            rule = data.get(field)
            if rule is not None:
                try:
                    validate_rule(rule)
                except RuleSyntaxError:
                    raise ValidationError("Ungültige Berechtigungsregel")

        initialize_process_id = data.pop("initialize_process_id", None)
        if initialize_process_id is not None:
            workflow.initialize_process_id = await self._initialize_process(workflow, initialize_process_id)

        if "responsible_team_id" in data and data["responsible_team_id"] == "":
            workflow.responsible_team_id = None
            workflow.responsible_team = None
            data.pop("responsible_team_id")
        elif data.get("responsible_team_id"):
            workflow.responsible_team = await self._team(data.pop("responsible_team_id"))

        for key, value in data.items():
            if value is not None and hasattr(workflow, key):
                setattr(workflow, key, value)
        await self.db.flush()
        return workflow

    async def delete_workflow(self, workflow_id: str, principal: Principal) -> None:
        workflow = await self.get_or_404(workflow_id)
        self._require_editable(principal, workflow, Operation.DELETE_WORKFLOW)
        workflow.soft_delete()
        await self.db.flush()
        logger.info("Workflow deleted: %s by %s", workflow_id, principal.email)

    # ─── Teams / information ───────────────────────────────

    async def assign_teams(self, workflow_id: str, team_ids: list[str], principal: Principal) -> Workflow:
        workflow = await self.get_or_404(workflow_id)
        self._require_editable(principal, workflow)

        current = {team.id for team in workflow.teams}
        for team in await self._teams(team_ids):
            if team.id not in current:
                workflow.teams.append(team)
        await self.db.flush()
        return workflow

    async def remove_team(self, workflow_id: str, team_id: str, principal: Principal) -> Workflow:
        workflow = await self.get_or_404(workflow_id)
        self._require_editable(principal, workflow)

        workflow.teams = [team for team in workflow.teams if team.id != team_id]
        await self.db.flush()
        return workflow

    async def update_information(
        self,
        workflow_id: str,
        fields: list[dict],
        principal: Principal,
    ) -> Workflow:
        """Replace the ordered ``[{label, fieldKey}]`` summary fields."""
        workflow = await self.get_or_404(workflow_id)
        self._require_editable(principal, workflow)

        workflow.information = [
            {"label": f["label"], "fieldKey": f["fieldKey"]} for f in fields
        ]
        await self.db.flush()
        return workflow

    # ─── N8n bindings ──────────────────────────────────────

    async def connect_n8n(
        self,
        workflow_id: str,
        n8n_workflow_id: str,
        event: WorkflowEvent,
        principal: Principal,
    ) -> Workflow:
        workflow = await self.get_or_404(workflow_id)
        self._require_editable(principal, workflow)

        n8n_workflow = await self.db.get(N8nWorkflow, n8n_workflow_id)
        if n8n_workflow is None:
            raise NotFoundError("N8n Workflow nicht gefunden")
        event = parse_event(WorkflowEvent, event)
        if not any(b.n8n_workflow_id == n8n_workflow_id and b.event == event for b in workflow.n8n_bindings):
            workflow.n8n_bindings.append(
                WorkflowN8nBinding(n8n_workflow_id=n8n_workflow_id, event=event, n8n_workflow=n8n_workflow)
            )
        await self.db.flush()
        return workflow

    async def disconnect_n8n(
        self,
        workflow_id: str,
        n8n_workflow_id: str,
        event: WorkflowEvent,
        principal: Principal,
    ) -> Workflow:
        workflow = await self.get_or_404(workflow_id)
        self._require_editable(principal, workflow)

        event = parse_event(WorkflowEvent, event)
        workflow.n8n_bindings = [
            b for b in workflow.n8n_bindings
            if not (b.n8n_workflow_id == n8n_workflow_id and b.event == event)
        ]
        await self.db.flush()
        return workflow

    # ─── Helpers ───────────────────────────────────────────

    async def _initialize_process(self, workflow: Workflow, process_id: str) -> Optional[str]:
        if process_id == "":
            return None
        process = await self.db.get(Process, process_id)
        if (
            process is None
            or process.is_deleted
            or process.workflow_id != workflow.id
            or process.is_category
        ):
            raise ValidationError("Ungültiger Initialisierungsprozess")
        return process.id

    async def _team(self, team_id: str) -> Team:
        team = await self.db.get(Team, team_id)
        if team is None:
            raise NotFoundError("Bereich nicht gefunden")
        return team

    async def _teams(self, team_ids: Sequence[str]) -> list[Team]:
        return [await self._team(team_id) for team_id in dict.fromkeys(team_ids)]
