"""Run lifecycle: workflow runs and their process runs.

State machines:

    ProcessRun   open -> ongoing -> completed      (completed -> ongoing only via reset)
    WorkflowRun  open -> ongoing -> completed      (+ orthogonal is_archived flag)

Rules enforced here:
    - a process run completes only when every dependency has a completed
      process run in the same workflow run
    - the workflow run completes in the same transaction as its last
      process run, and never earlier
    - completed or archived workflow runs reject save/complete
    - resetting a process run reopens a completed/archived workflow run,
      siblings are never touched

Every status change is a conditional UPDATE (``... WHERE status IN``)
checked by rowcount, and the dependency read happens in the same
transaction as the write. State is committed before webhooks fire.
"""

import logging
from typing import Any, Iterable, Optional, Sequence

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from core.access import AccessGate, Operation, access_gate
from core.constants import ProcessEvent, ProcessRunStatus, WorkflowEvent, WorkflowRunStatus
from core.exceptions import (
    DependencyUnsatisfiedError,
    NotFoundError,
    PermissionDeniedError,
    PreconditionFailedError,
)
from core.permission_context import (
    AccessTarget,
    Principal,
    entity_scope,
    merge_run_data,
    process_data_map,
)
from core.webhooks import WebhookDispatcher, binding_ids
from db.base import utcnow
from db.models.n8n_workflow import bindings_for
from db.models.process import Process
from db.models.run import ProcessRun, WorkflowRun
from db.models.workflow import Workflow
from services.base import BaseService
from services.process_service import group_children, tree_order

logger = logging.getLogger(__name__)

OPEN = ProcessRunStatus.OPEN.value
ONGOING = ProcessRunStatus.ONGOING.value
COMPLETED = ProcessRunStatus.COMPLETED.value

RUN_LOCKED = "Workflow Ausführung ist abgeschlossen oder archiviert"
ALREADY_COMPLETED = "Prozess ist bereits abgeschlossen"
NOT_COMPLETED = "Prozess ist nicht abgeschlossen"
CATEGORY_NOT_EDITABLE = "Kategorien können nicht bearbeitet werden"


class RunService(BaseService[WorkflowRun]):
    """Lifecycle operations on workflow runs and process runs."""

    not_found_message = "Workflow Ausführung nicht gefunden"

    def __init__(
        self,
        db: AsyncSession,
        dispatcher: Optional[WebhookDispatcher] = None,
        gate: AccessGate = access_gate,
    ):
        super().__init__(WorkflowRun, db)
        self.dispatcher = dispatcher or WebhookDispatcher.from_settings()
        self.gate = gate

    # ─── Loading ───────────────────────────────────────────

    async def _workflow(self, workflow_id: str) -> Workflow:
        result = await self.db.execute(
            select(Workflow).where(Workflow.id == workflow_id, Workflow.is_deleted == False)  # noqa: E712
        )
        workflow = result.scalar_one_or_none()
        if workflow is None:
            raise NotFoundError("Workflow nicht gefunden")
        return workflow

    async def _run(self, run_id: str) -> WorkflowRun:
        result = await self.db.execute(
            select(WorkflowRun)
            .where(WorkflowRun.id == run_id)
            .execution_options(populate_existing=True)
        )
        run = result.scalar_one_or_none()
        if run is None:
            raise NotFoundError(self.not_found_message)
        return run

    async def _process_run(self, process_run_id: str) -> ProcessRun:
        result = await self.db.execute(
            select(ProcessRun)
            .where(ProcessRun.id == process_run_id)
            .execution_options(populate_existing=True)
        )
        process_run = result.scalar_one_or_none()
        if process_run is None:
            raise NotFoundError("Prozess Ausführung nicht gefunden")
        return process_run

    async def _siblings(self, run_id: str) -> list[ProcessRun]:
        """Fresh read of all process runs of a workflow run, in tree order."""
        result = await self.db.execute(
            select(ProcessRun)
            .where(ProcessRun.workflow_run_id == run_id)
            .order_by(ProcessRun.position)
            .execution_options(populate_existing=True)
        )
        return list(result.scalars().all())

    # ─── Access ────────────────────────────────────────────

    @staticmethod
    def _workflow_target(rule: str, workflow: Workflow, data: Optional[dict] = None) -> AccessTarget:
        return AccessTarget(rule, {"workflow": entity_scope(workflow)}, data or {})

    @staticmethod
    def _process_target(rule: str, workflow: Workflow, process: Process, data: dict) -> AccessTarget:
        return AccessTarget(
            rule,
            {"workflow": entity_scope(workflow), "process": entity_scope(process)},
            data,
        )

    def can_view(self, principal: Principal, run: WorkflowRun, siblings: Sequence[ProcessRun] = None) -> bool:
        """A run is visible if any of its process runs may be viewed."""
        if principal.is_admin:
            return True
        siblings = siblings if siblings is not None else run.process_runs
        data = merge_run_data(siblings)
        return any(
            self.gate.authorize(
                principal,
                Operation.VIEW_PROCESS,
                self._process_target(pr.process.view_process_permissions, run.workflow, pr.process, data),
            )
            for pr in siblings
        )

    # ─── Guards ────────────────────────────────────────────

    @staticmethod
    def _ensure_writable(run: WorkflowRun, process_run: ProcessRun) -> None:
        if run.is_locked:
            raise PreconditionFailedError(RUN_LOCKED)
        if process_run.status == COMPLETED:
            raise PreconditionFailedError(ALREADY_COMPLETED)
        if process_run.process.is_category:
            raise PreconditionFailedError(CATEGORY_NOT_EDITABLE)

    @staticmethod
    def blocking_dependencies(process_run: ProcessRun, siblings: Iterable[ProcessRun]) -> list[str]:
        """Names of dependencies without a completed process run in the same workflow run."""
        by_process = {pr.process_id: pr for pr in siblings}
        dependencies = sorted(
            (d for d in process_run.process.dependencies if not d.is_deleted),
            key=lambda d: (d.order, d.name),
        )
        blocking = []
        for dependency in dependencies:
            dependency_run = by_process.get(dependency.id)
            if dependency_run is None or dependency_run.status != COMPLETED:
                blocking.append(dependency.name)
        return blocking

    def _check_dependencies(self, process_run: ProcessRun, siblings: Iterable[ProcessRun]) -> None:
        blocking = self.blocking_dependencies(process_run, siblings)
        if blocking:
            raise DependencyUnsatisfiedError(blocking)

    # ─── Conditional writes ────────────────────────────────

    async def _transition_process_run(
        self,
        process_run_id: str,
        allowed_from: Sequence[str],
        values: dict[str, Any],
        conflict_message: str,
    ) -> None:
        result = await self.db.execute(
            update(ProcessRun)
            .where(ProcessRun.id == process_run_id, ProcessRun.status.in_(allowed_from))
            .values(updated_at=utcnow(), **values)
        )
        if result.rowcount != 1:
            raise PreconditionFailedError(conflict_message)

    async def _transition_run(self, run_id: str, allowed_from: Sequence[str], values: dict[str, Any]) -> bool:
        result = await self.db.execute(
            update(WorkflowRun)
            .where(WorkflowRun.id == run_id, WorkflowRun.status.in_(allowed_from))
            .values(updated_at=utcnow(), **values)
        )
        return result.rowcount == 1

    async def _count_incomplete(self, run_id: str) -> int:
        result = await self.db.execute(
            select(func.count())
            .select_from(ProcessRun)
            .where(ProcessRun.workflow_run_id == run_id, ProcessRun.status != COMPLETED)
        )
        return result.scalar() or 0

    # ─── Lifecycle ─────────────────────────────────────────

    async def initialize(
        self,
        workflow_id: str,
        principal: Principal,
        seed_data: Optional[dict] = None,
    ) -> WorkflowRun:
        """Start a run with one open process run per live, non-category process.

        Args:
            workflow_id: Workflow to run
            principal: Requesting user
            seed_data: Answers for the workflow's initialize process

        Returns:
            The new WorkflowRun
        """
        workflow = await self._workflow(workflow_id)
        if not workflow.is_active:
            raise PreconditionFailedError("Workflow ist nicht aktiv")
        self.gate.require(
            principal,
            Operation.EXECUTE_WORKFLOW,
            self._workflow_target(workflow.submit_process_permissions, workflow, seed_data),
        )

        result = await self.db.execute(
            select(Process).where(
                Process.workflow_id == workflow.id,
                Process.is_deleted == False,  # noqa: E712
            )
        )
        leaves = [p for p in tree_order(result.scalars().all()) if not p.is_category]

        now = utcnow()
        run = WorkflowRun(
            workflow_id=workflow.id,
            workflow=workflow,
            status=WorkflowRunStatus.OPEN.value,
            started_at=now,
            started_by_id=principal.id,
            is_archived=False,
        )
        for position, process in enumerate(leaves):
            process_run = ProcessRun(
                process_id=process.id,
                process=process,
                position=position,
                status=OPEN,
                started_at=now,
            )
            if seed_data is not None and process.id == workflow.initialize_process_id:
                process_run.data = dict(seed_data)
                process_run.status = ONGOING
                process_run.submitted_by_id = principal.id
                run.status = WorkflowRunStatus.ONGOING.value
            run.process_runs.append(process_run)

        self.db.add(run)
        await self.db.flush()
        await self.db.commit()
        logger.info("Workflow run initialized: %s (%d processes) by %s", run.id, len(leaves), principal.email)

        await self._dispatch(
            bindings_for(workflow.n8n_bindings, WorkflowEvent.INITIALIZE),
            self._webhook_context(WorkflowEvent.INITIALIZE.value, run, run.process_runs, principal),
        )
        return run

    async def save(self, process_run_id: str, data: dict, principal: Principal) -> ProcessRun:
        """Store answers of a process run and mark it ongoing."""
        process_run = await self._process_run(process_run_id)
        run = process_run.workflow_run
        self._ensure_writable(run, process_run)

        siblings = await self._siblings(run.id)
        merged = merge_run_data(data if pr.id == process_run.id else pr for pr in siblings)
        self.gate.require(
            principal,
            Operation.EXECUTE_PROCESS,
            self._process_target(process_run.process.submit_process_permissions, run.workflow, process_run.process, merged),
        )
        self._check_dependencies(process_run, siblings)

        await self._transition_process_run(
            process_run.id,
            [OPEN, ONGOING],
            {
                "status": ONGOING,
                "data": data,
                "reset_process_text": None,
                "submitted_by_id": principal.id,
            },
            ALREADY_COMPLETED,
        )
        await self._transition_run(
            run.id,
            [WorkflowRunStatus.OPEN.value, WorkflowRunStatus.ONGOING.value],
            {"status": WorkflowRunStatus.ONGOING.value},
        )
        await self.db.commit()
        logger.info("Process run saved: %s by %s", process_run.id, principal.email)

        siblings = await self._siblings(run.id)
        await self._dispatch(
            binding_ids(
                bindings_for(process_run.process.n8n_bindings, ProcessEvent.SAVE),
                bindings_for(run.workflow.n8n_bindings, WorkflowEvent.SAVE),
            ),
            self._webhook_context(WorkflowEvent.SAVE.value, run, siblings, principal, process_run),
        )
        return process_run

    async def complete(
        self,
        process_run_id: str,
        principal: Principal,
        data: Optional[dict] = None,
    ) -> ProcessRun:
        """Complete a process run, cascading to the workflow run on the last one.

        Args:
            process_run_id: Process run to complete
            principal: Requesting user
            data: Optional final answers, written in the same statement

        Raises:
            DependencyUnsatisfiedError: Listing every incomplete dependency by name
        """
        process_run = await self._process_run(process_run_id)
        run = process_run.workflow_run
        self._ensure_writable(run, process_run)

        siblings = await self._siblings(run.id)
        merged = merge_run_data(
            (data if data is not None and pr.id == process_run.id else pr) for pr in siblings
        )
        self.gate.require(
            principal,
            Operation.EXECUTE_PROCESS,
            self._process_target(process_run.process.submit_process_permissions, run.workflow, process_run.process, merged),
        )
        self._check_dependencies(process_run, siblings)

        now = utcnow()
        values: dict[str, Any] = {
            "status": COMPLETED,
            "completed_at": now,
            "reset_process_text": None,
            "submitted_by_id": principal.id,
        }
        if data is not None:
            values["data"] = data
        await self._transition_process_run(process_run.id, [OPEN, ONGOING], values, ALREADY_COMPLETED)

        remaining = await self._count_incomplete(run.id)
        run_completed = False
        if remaining == 0:
            run_completed = await self._transition_run(
                run.id,
                [WorkflowRunStatus.OPEN.value, WorkflowRunStatus.ONGOING.value],
                {"status": WorkflowRunStatus.COMPLETED.value, "completed_at": now},
            )
        else:
            await self._transition_run(
                run.id,
                [WorkflowRunStatus.OPEN.value],
                {"status": WorkflowRunStatus.ONGOING.value},
            )
        await self.db.commit()
        logger.info(
            "Process run completed: %s by %s (%d remaining)",
            process_run.id, principal.email, remaining,
        )

        siblings = await self._siblings(run.id)
        workflow_bindings = run.workflow.n8n_bindings
        targets = [bindings_for(process_run.process.n8n_bindings, ProcessEvent.COMPLETE)]
        if run_completed:
            targets.append(bindings_for(workflow_bindings, WorkflowEvent.COMPLETE))
        if remaining == 1:
            targets.append(bindings_for(workflow_bindings, WorkflowEvent.LAST))
        await self._dispatch(
            binding_ids(*targets),
            self._webhook_context(WorkflowEvent.COMPLETE.value, run, siblings, principal, process_run),
        )
        return process_run

    async def reset(self, process_run_id: str, reset_text: Optional[str], principal: Principal) -> ProcessRun:
        """Reopen a completed process run; reopens its workflow run if needed."""
        process_run = await self._process_run(process_run_id)
        run = process_run.workflow_run
        if process_run.status != COMPLETED:
            raise PreconditionFailedError(NOT_COMPLETED)

        siblings = await self._siblings(run.id)
        self.gate.require(
            principal,
            Operation.RESET_PROCESS,
            self._process_target(
                process_run.process.reset_process_permissions,
                run.workflow,
                process_run.process,
                merge_run_data(siblings),
            ),
        )

        reopen = run.is_locked
        await self._transition_process_run(
            process_run.id,
            [COMPLETED],
            {"status": ONGOING, "reset_process_text": reset_text, "completed_at": None},
            NOT_COMPLETED,
        )
        if reopen:
            await self._transition_run(
                run.id,
                [status.value for status in WorkflowRunStatus],
                {
                    "status": WorkflowRunStatus.ONGOING.value,
                    "completed_at": None,
                    "is_archived": False,
                    "archived_at": None,
                    "archived_notes": None,
                },
            )
        await self.db.commit()
        logger.info("Process run reset: %s by %s (run reopened: %s)", process_run.id, principal.email, reopen)

        siblings = await self._siblings(run.id)
        targets = [bindings_for(process_run.process.n8n_bindings, ProcessEvent.REACTIVATE)]
        if reopen:
            targets.append(bindings_for(run.workflow.n8n_bindings, WorkflowEvent.REACTIVATE))
        await self._dispatch(
            binding_ids(*targets),
            self._webhook_context(
                WorkflowEvent.REACTIVATE.value, run, siblings, principal, process_run, message=reset_text
            ),
        )
        return process_run

    async def archive(self, run_id: str, message: Optional[str], principal: Principal) -> WorkflowRun:
        """Set the archive flag; status is left untouched."""
        run = await self._run(run_id)
        self.gate.require(
            principal,
            Operation.ARCHIVE_RUN,
            self._workflow_target(run.workflow.submit_process_permissions, run.workflow, merge_run_data(run.process_runs)),
        )
        if run.is_archived:
            raise PreconditionFailedError("Workflow Ausführung ist bereits archiviert")

        result = await self.db.execute(
            update(WorkflowRun)
            .where(WorkflowRun.id == run.id, WorkflowRun.is_archived == False)  # noqa: E712
            .values(is_archived=True, archived_at=utcnow(), archived_notes=message, updated_at=utcnow())
        )
        if result.rowcount != 1:
            raise PreconditionFailedError("Workflow Ausführung ist bereits archiviert")
        await self.db.commit()
        logger.info("Workflow run archived: %s by %s", run.id, principal.email)

        siblings = await self._siblings(run.id)
        await self._dispatch(
            bindings_for(run.workflow.n8n_bindings, WorkflowEvent.ARCHIVE),
            self._webhook_context(WorkflowEvent.ARCHIVE.value, run, siblings, principal, message=message),
        )
        return run

    async def reactivate(self, run_id: str, principal: Principal) -> WorkflowRun:
        """Clear the archive flag and notify the archive bucket again."""
        run = await self._run(run_id)
        self.gate.require(
            principal,
            Operation.REACTIVATE_RUN,
            self._workflow_target(run.workflow.submit_process_permissions, run.workflow, merge_run_data(run.process_runs)),
        )
        if not run.is_archived and run.status != WorkflowRunStatus.ARCHIVED.value:
            raise PreconditionFailedError("Workflow Ausführung ist nicht archiviert")

        values: dict[str, Any] = {"is_archived": False, "archived_at": None, "archived_notes": None}
        if run.status == WorkflowRunStatus.ARCHIVED.value:
            values["status"] = WorkflowRunStatus.ONGOING.value
        await self.db.execute(
            update(WorkflowRun).where(WorkflowRun.id == run.id).values(updated_at=utcnow(), **values)
        )
        await self.db.commit()
        logger.info("Workflow run reactivated: %s by %s", run.id, principal.email)

        siblings = await self._siblings(run.id)
        await self._dispatch(
            bindings_for(run.workflow.n8n_bindings, WorkflowEvent.ARCHIVE),
            self._webhook_context(WorkflowEvent.REACTIVATE.value, run, siblings, principal),
        )
        return run

    async def delete(self, run_id: str, principal: Principal) -> None:
        """Hard delete; process runs go with it."""
        run = await self._run(run_id)
        self.gate.require(
            principal,
            Operation.DELETE_RUN,
            self._workflow_target(run.workflow.submit_process_permissions, run.workflow, merge_run_data(run.process_runs)),
        )
        await self.db.delete(run)
        await self.db.commit()
        logger.info("Workflow run deleted: %s by %s", run_id, principal.email)

    # ─── Read side ─────────────────────────────────────────

    async def get_run(self, run_id: str, principal: Principal) -> WorkflowRun:
        run = await self._run(run_id)
        if not self.can_view(principal, run):
            raise PermissionDeniedError(Operation.VIEW_PROCESS.message)
        return run

    async def list_runs(
        self,
        principal: Principal,
        workflow_id: Optional[str] = None,
        archived: bool = False,
        status: Optional[WorkflowRunStatus] = None,
        search: Optional[str] = None,
    ) -> list[WorkflowRun]:
        """Runs visible to the principal, newest first."""
        query = (
            select(WorkflowRun)
            .join(Workflow, Workflow.id == WorkflowRun.workflow_id)
            .where(Workflow.is_deleted == False, WorkflowRun.is_archived == archived)  # noqa: E712
            .order_by(WorkflowRun.started_at.desc())
        )
        if workflow_id is not None:
            query = query.where(WorkflowRun.workflow_id == workflow_id)
        if status is not None:
            query = query.where(WorkflowRun.status == WorkflowRunStatus(status).value)
        result = await self.db.execute(query)
        runs = [run for run in result.scalars().all() if self.can_view(principal, run)]
        if search:
            runs = [run for run in runs if matches_search(run, search)]
        return runs

    async def run_tree(self, run: WorkflowRun) -> list[dict]:
        """Process tree of the workflow with each leaf's process run attached."""
        result = await self.db.execute(
            select(Process).where(Process.workflow_id == run.workflow_id)
        )
        processes = result.scalars().all()
        by_process = {pr.process_id: pr for pr in run.process_runs}
        # Live processes plus deleted ones that still carry a process run
        nodes = [p for p in processes if not p.is_deleted or p.id in by_process]
        children = group_children(nodes, lambda p: p.parent_id, lambda p: (p.order, p.name))

        def render(process: Process) -> dict:
            process_run = by_process.get(process.id)
            return {
                "processId": process.id,
                "name": process.name,
                "isCategory": process.is_category,
                "processRun": process_run_summary(process_run) if process_run is not None else None,
                "children": [render(child) for child in children.get(process.id, [])],
            }

        return [render(root) for root in children.get(None, [])]

    # ─── Webhooks ──────────────────────────────────────────

    def _webhook_context(
        self,
        event: str,
        run: WorkflowRun,
        process_runs: Sequence[ProcessRun],
        principal: Principal,
        process_run: Optional[ProcessRun] = None,
        message: Optional[str] = None,
    ) -> dict:
        context: dict[str, Any] = {
            "event": event,
            "workflowRunId": run.id,
            "workflow": {"id": run.workflow.id, "name": run.workflow.name},
            "user": principal.as_context(),
            "data": merge_run_data(process_runs),
            "processData": process_data_map(process_runs),
        }
        if process_run is not None:
            context["processRunId"] = process_run.id
            context["process"] = {"id": process_run.process.id, "name": process_run.process.name}
        if message is not None:
            context["message"] = message
        return context

    async def _dispatch(self, bindings: Iterable[Any], context: dict) -> None:
        await self.dispatcher.dispatch(binding_ids(bindings), context)


def process_run_summary(process_run: ProcessRun) -> dict:
    return {
        "id": process_run.id,
        "status": process_run.status,
        "data": process_run.data or {},
        "resetProcessText": process_run.reset_process_text,
        "completedAt": process_run.completed_at.isoformat() if process_run.completed_at else None,
    }


def matches_search(run: WorkflowRun, search: str) -> bool:
    """Case-insensitive match on the workflow's information fields (all fields if none)."""
    needle = search.strip().lower()
    if not needle:
        return True
    data = merge_run_data(run.process_runs)
    keys = [field["fieldKey"] for field in (run.workflow.information or [])] or list(data)
    return any(needle in str(data.get(key, "")).lower() for key in keys)
