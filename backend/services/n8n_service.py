"""Registry of n8n workflows that lifecycle events can be bound to."""

import logging
from typing import Optional

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from core.access import AccessGate, Operation, access_gate
from core.exceptions import PreconditionFailedError
from core.permission_context import Principal
from db.models.n8n_workflow import FormN8nBinding, N8nWorkflow, ProcessN8nBinding, WorkflowN8nBinding
from services.base import BaseService

logger = logging.getLogger(__name__)


class N8nWorkflowService(BaseService[N8nWorkflow]):
    """Admin-only CRUD for n8n workflow references; listing is open to moderators."""

    not_found_message = "N8n Workflow nicht gefunden"

    def __init__(self, db: AsyncSession, gate: AccessGate = access_gate):
        super().__init__(N8nWorkflow, db)
        self.gate = gate

    async def list_workflows(self, principal: Principal) -> list[N8nWorkflow]:
        self.gate.require(principal, Operation.MANAGE_WORKFLOWS)
        result = await self.db.execute(select(N8nWorkflow).order_by(N8nWorkflow.name))
        return list(result.scalars().all())

    async def register(self, workflow_id: str, name: str, principal: Principal) -> N8nWorkflow:
        self.gate.require(principal, Operation.ADMINISTRATE)
        existing = await self.db.execute(select(N8nWorkflow.id).where(N8nWorkflow.workflow_id == workflow_id))
        if existing.first() is not None:
            raise PreconditionFailedError("N8n Workflow existiert bereits")
        n8n_workflow = await self.create({"workflow_id": workflow_id, "name": name})
        logger.info("N8n workflow registered: %s (%s) by %s", workflow_id, name, principal.email)
        return n8n_workflow

    async def rename(self, id: str, name: Optional[str], principal: Principal) -> N8nWorkflow:
        self.gate.require(principal, Operation.ADMINISTRATE)
        return await self.update(id, {"name": name})

    async def remove(self, id: str, principal: Principal) -> None:
        """Delete the reference; bindings go with it."""
        self.gate.require(principal, Operation.ADMINISTRATE)
        n8n_workflow = await self.get_or_404(id)
        for binding in (WorkflowN8nBinding, ProcessN8nBinding, FormN8nBinding):
            await self.db.execute(delete(binding).where(binding.n8n_workflow_id == n8n_workflow.id))
        await self.db.delete(n8n_workflow)
        await self.db.flush()
        logger.info("N8n workflow removed: %s by %s", id, principal.email)
