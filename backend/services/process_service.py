"""Process tree designer: create, edit, reorder and wire up processes.

The tree is stored flat (``parent_id`` + ``order``). Display trees are
built on demand by grouping rows on ``parent_id``; no ORM parent/child
relationships are involved.
"""

import logging
from typing import Any, Callable, Iterable, Optional, Sequence, TypeVar

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from core.access import AccessGate, Operation, access_gate
from core.constants import MoveDirection, ProcessEvent
from core.exceptions import (
    NotFoundError,
    PreconditionFailedError,
    RuleSyntaxError,
    ValidationError,
)
from core.permission_context import AccessTarget, Principal, entity_scope
from core.rules import validate_rule
from db.models.n8n_workflow import N8nWorkflow, ProcessN8nBinding
from db.models.process import Process
from db.models.team import Team
from db.models.workflow import Workflow
from services.base import BaseService, parse_event

logger = logging.getLogger(__name__)

T = TypeVar("T")

PERMISSION_FIELDS = (
    "edit_process_permissions",
    "submit_process_permissions",
    "view_process_permissions",
    "reset_process_permissions",
)


# ─── Tree helpers ──────────────────────────────────────


def group_children(
    items: Iterable[T],
    parent_of: Callable[[T], Optional[str]],
    order_of: Callable[[T], Any],
) -> dict[Optional[str], list[T]]:
    """Index items by parent id, each bucket sorted by ``order_of``."""
    children: dict[Optional[str], list[T]] = {}
    for item in items:
        children.setdefault(parent_of(item), []).append(item)
    for bucket in children.values():
        bucket.sort(key=order_of)
    return children


def tree_order(processes: Iterable[Process]) -> list[Process]:
    """Depth-first order of a process tree, roots first.

    Processes whose parent is not in ``processes`` are unreachable and dropped.
    """
    children = group_children(processes, lambda p: p.parent_id, lambda p: (p.order, p.name))
    ordered: list[Process] = []
    stack = list(reversed(children.get(None, [])))
    while stack:
        node = stack.pop()
        ordered.append(node)
        stack.extend(reversed(children.get(node.id, [])))
    return ordered


def build_tree(
    processes: Iterable[Process],
    render: Callable[[Process], dict],
) -> list[dict]:
    """Nested ``{..., "children": [...]}`` dicts for a flat process list."""
    children = group_children(processes, lambda p: p.parent_id, lambda p: (p.order, p.name))

    def _render(node: Process) -> dict:
        rendered = render(node)
        rendered["children"] = [_render(child) for child in children.get(node.id, [])]
        return rendered

    return [_render(root) for root in children.get(None, [])]


def descendants_of(process_id: str, processes: Iterable[Process]) -> list[Process]:
    """All processes below ``process_id``."""
    children = group_children(processes, lambda p: p.parent_id, lambda p: p.order)
    found: list[Process] = []
    stack = list(children.get(process_id, []))
    while stack:
        node = stack.pop()
        found.append(node)
        stack.extend(children.get(node.id, []))
    return found


class ProcessService(BaseService[Process]):
    """Designer operations on a workflow's process tree."""

    not_found_message = "Prozess nicht gefunden"

    def __init__(self, db: AsyncSession, gate: AccessGate = access_gate):
        super().__init__(Process, db)
        self.gate = gate

    # ─── Read ──────────────────────────────────────────────

    async def _workflow(self, workflow_id: str) -> Workflow:
        result = await self.db.execute(
            select(Workflow).where(Workflow.id == workflow_id, Workflow.is_deleted == False)  # noqa: E712
        )
        workflow = result.scalar_one_or_none()
        if workflow is None:
            raise NotFoundError("Workflow nicht gefunden")
        return workflow

    async def workflow_processes(self, workflow_id: str) -> Sequence[Process]:
        """Live processes of a workflow (flat)."""
        result = await self.db.execute(
            select(Process).where(
                Process.workflow_id == workflow_id,
                Process.is_deleted == False,  # noqa: E712
            )
        )
        return result.scalars().all()

    async def get_tree(self, workflow_id: str) -> list[dict]:
        """Display tree of a workflow's processes."""
        await self._workflow(workflow_id)
        processes = await self.workflow_processes(workflow_id)
        return build_tree(processes, process_summary)

    async def available_dependencies(self, process_id: str) -> list[Process]:
        """Processes that could still be added as dependencies."""
        process = await self.get_or_404(process_id)
        current = {dep.id for dep in process.dependencies}
        candidates = await self.workflow_processes(process.workflow_id)
        return [
            p for p in tree_order(candidates)
            if not p.is_category and p.id != process.id and p.id not in current
        ]

    # ─── Access ────────────────────────────────────────────

    def _require_structural(self, principal: Principal, workflow: Workflow, operation: Operation) -> None:
        self.gate.require(
            principal,
            operation,
            AccessTarget(workflow.edit_workflow_permissions, {"workflow": entity_scope(workflow)}),
        )

    def _require_content(self, principal: Principal, workflow: Workflow, process: Process) -> None:
        self.gate.require(
            principal,
            Operation.EDIT_PROCESS_CONTENT,
            AccessTarget(
                process.edit_process_permissions,
                {"workflow": entity_scope(workflow), "process": entity_scope(process)},
            ),
        )

    # ─── Create / Update ───────────────────────────────────

    async def create_process(
        self,
        workflow_id: str,
        principal: Principal,
        name: str,
        description: str = "",
        is_category: bool = False,
        parent_id: Optional[str] = None,
    ) -> Process:
        """Append a process (or category) at the end of its sibling list."""
        workflow = await self._workflow(workflow_id)
        self._require_structural(principal, workflow, Operation.EDIT_WORKFLOW)

        if parent_id is not None:
            parent = await self.get_by_id(parent_id)
            if parent is None or parent.workflow_id != workflow_id or not parent.is_category:
                raise NotFoundError("Übergeordnete Kategorie nicht gefunden")

        result = await self.db.execute(
            select(func.max(Process.order)).where(
                Process.workflow_id == workflow_id,
                Process.parent_id.is_(None) if parent_id is None else Process.parent_id == parent_id,
                Process.is_deleted == False,  # noqa: E712
            )
        )
        highest = result.scalar()
        order = 0 if highest is None else highest + 1

        process = await self.create({
            "workflow_id": workflow_id,
            "parent_id": parent_id,
            "order": order,
            "name": name,
            "description": description or "",
            "is_category": is_category,
        })
        logger.info("Process created: %s in workflow %s", process.id, workflow_id)
        return process

    async def update_process(
        self,
        process_id: str,
        principal: Principal,
        name: Optional[str] = None,
        description: Optional[str] = None,
        responsible_team_id: Optional[str] = None,
        team_ids: Optional[list[str]] = None,
    ) -> Process:
        process = await self.get_or_404(process_id)
        workflow = await self._workflow(process.workflow_id)
        self._require_structural(principal, workflow, Operation.EDIT_PROCESS)

        if name is not None:
            process.name = name
        if description is not None:
            process.description = description
        if responsible_team_id is not None:
            process.responsible_team = await self._team(responsible_team_id) if responsible_team_id else None
        if team_ids is not None:
            process.teams = [await self._team(team_id) for team_id in team_ids]
        await self.db.flush()
        return process

    async def update_process_form(
        self,
        process_id: str,
        principal: Principal,
        schema: Optional[dict],
        theme: Optional[dict] = None,
    ) -> Process:
        """Store the SurveyJS schema/theme as given."""
        process = await self.get_or_404(process_id)
        if process.is_category:
            raise PreconditionFailedError("Kategorien haben kein Formular")
        workflow = await self._workflow(process.workflow_id)
        self._require_content(principal, workflow, process)

        process.schema = schema
        if theme is not None:
            process.theme = theme
        await self.db.flush()
        return process

    async def update_process_permissions(
        self,
        process_id: str,
        principal: Principal,
        permissions: dict[str, Optional[str]],
    ) -> Process:
        """Replace permission rules; every rule must parse."""
        process = await self.get_or_404(process_id)
        workflow = await self._workflow(process.workflow_id)
        self._require_content(principal, workflow, process)

        for field, rule in permissions.items():
            if field not in PERMISSION_FIELDS or rule is None:
                continue
            try:
                validate_rule(rule)
            except RuleSyntaxError:
                raise ValidationError("Ungültige Berechtigungsregel")
            setattr(process, field, rule)
        await self.db.flush()
        return process

    # ─── Structure ─────────────────────────────────────────

    async def delete_process(self, process_id: str, principal: Principal) -> list[str]:
        """Soft-delete a process and everything below it.

        Deleted processes are dropped from other processes' dependencies
        and from the workflow's initialize process.

        Returns:
            Ids of all deleted processes
        """
        process = await self.get_or_404(process_id)
        workflow = await self._workflow(process.workflow_id)
        self._require_structural(principal, workflow, Operation.DELETE_PROCESS)

        siblings = await self.workflow_processes(process.workflow_id)
        doomed = [process, *descendants_of(process.id, siblings)]
        doomed_ids = [p.id for p in doomed]

        for node in doomed:
            node.soft_delete()
        for other in siblings:
            if other.id not in doomed_ids:
                other.dependencies = [d for d in other.dependencies if d.id not in doomed_ids]
        if workflow.initialize_process_id in doomed_ids:
            workflow.initialize_process_id = None

        await self.db.flush()
        logger.info("Processes deleted: %s", ", ".join(doomed_ids))
        return doomed_ids

    async def move_process(
        self,
        process_id: str,
        direction: MoveDirection,
        principal: Principal,
    ) -> Process:
        """Swap the process with its previous/next sibling."""
        process = await self.get_or_404(process_id)
        workflow = await self._workflow(process.workflow_id)
        self._require_structural(principal, workflow, Operation.EDIT_PROCESS)

        processes = await self.workflow_processes(process.workflow_id)
        siblings = group_children(processes, lambda p: p.parent_id, lambda p: (p.order, p.name))[process.parent_id]
        index = next(i for i, p in enumerate(siblings) if p.id == process.id)

        if MoveDirection(direction) == MoveDirection.UP:
            if index == 0:
                raise PreconditionFailedError("Prozess ist bereits am Anfang")
            neighbour = siblings[index - 1]
        else:
            if index == len(siblings) - 1:
                raise PreconditionFailedError("Prozess ist bereits am Ende")
            neighbour = siblings[index + 1]

        # Renumber first so duplicate order values cannot make the swap a no-op
        for position, sibling in enumerate(siblings):
            sibling.order = position
        process.order, neighbour.order = neighbour.order, process.order
        await self.db.flush()
        return process

    # ─── Dependencies ──────────────────────────────────────

    async def set_dependencies(
        self,
        process_id: str,
        dependency_ids: list[str],
        principal: Principal,
    ) -> Process:
        """Replace the dependency set of a process."""
        process = await self.get_or_404(process_id)
        workflow = await self._workflow(process.workflow_id)
        self._require_structural(principal, workflow, Operation.EDIT_PROCESS)

        processes = {p.id: p for p in await self.workflow_processes(process.workflow_id)}
        chosen = []
        for dependency_id in dict.fromkeys(dependency_ids):
            dependency = processes.get(dependency_id)
            if dependency is None or dependency.is_category or dependency.id == process.id:
                raise ValidationError("Ungültige Abhängigkeit")
            chosen.append(dependency)

        graph = {p.id: [d.id for d in p.dependencies] for p in processes.values()}
        graph[process.id] = [d.id for d in chosen]
        if _reaches(graph, start=[d.id for d in chosen], target=process.id):
            raise ValidationError("Zirkuläre Abhängigkeit")

        process.dependencies = chosen
        await self.db.flush()
        return process

    async def remove_dependency(
        self,
        process_id: str,
        dependency_id: str,
        principal: Principal,
    ) -> Process:
        process = await self.get_or_404(process_id)
        workflow = await self._workflow(process.workflow_id)
        self._require_structural(principal, workflow, Operation.EDIT_PROCESS)

        process.dependencies = [d for d in process.dependencies if d.id != dependency_id]
        await self.db.flush()
        return process

    # ─── N8n bindings ──────────────────────────────────────

    async def connect_n8n(
        self,
        process_id: str,
        n8n_workflow_id: str,
        event: ProcessEvent,
        principal: Principal,
    ) -> Process:
        process = await self.get_or_404(process_id)
        workflow = await self._workflow(process.workflow_id)
        self._require_structural(principal, workflow, Operation.EDIT_PROCESS)

        n8n_workflow = await self.db.get(N8nWorkflow, n8n_workflow_id)
        if n8n_workflow is None:
            raise NotFoundError("N8n Workflow nicht gefunden")
        event = parse_event(ProcessEvent, event)
        if not any(b.n8n_workflow_id == n8n_workflow_id and b.event == event for b in process.n8n_bindings):
            process.n8n_bindings.append(
                ProcessN8nBinding(n8n_workflow_id=n8n_workflow_id, event=event, n8n_workflow=n8n_workflow)
            )
        await self.db.flush()
        return process

    async def disconnect_n8n(
        self,
        process_id: str,
        n8n_workflow_id: str,
        event: ProcessEvent,
        principal: Principal,
    ) -> Process:
        process = await self.get_or_404(process_id)
        workflow = await self._workflow(process.workflow_id)
        self._require_structural(principal, workflow, Operation.EDIT_PROCESS)

        event = parse_event(ProcessEvent, event)
        process.n8n_bindings = [
            b for b in process.n8n_bindings
            if not (b.n8n_workflow_id == n8n_workflow_id and b.event == event)
        ]
        await self.db.flush()
        return process

    async def _team(self, team_id: str) -> Team:
        team = await self.db.get(Team, team_id)
        if team is None:
            raise NotFoundError("Bereich nicht gefunden")
        return team


def _reaches(graph: dict[str, list[str]], start: list[str], target: str) -> bool:
    """True if ``target`` is reachable from any node in ``start``."""
    seen: set[str] = set()
    stack = list(start)
    while stack:
        node = stack.pop()
        if node == target:
            return True
        if node in seen:
            continue
        seen.add(node)
        stack.extend(graph.get(node, []))
    return False


def process_summary(process: Process) -> dict:
    return {
        "id": process.id,
        "name": process.name,
        "description": process.description,
        "isCategory": process.is_category,
        "parentId": process.parent_id,
        "order": process.order,
        "dependencies": [d.id for d in process.dependencies if not d.is_deleted],
    }
