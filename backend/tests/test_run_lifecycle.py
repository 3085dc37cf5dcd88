"""Tests for the run lifecycle: initialize, save, complete, reset, archive.

Uses the ``workflow`` fixture: P1 and P2 where P2 depends on P1, both
executable by members of 'Personal'.
"""

import pytest
import pytest_asyncio
from sqlalchemy import select

from conftest import dispatched
from core.constants import WorkflowEvent
from core.exceptions import (
    DependencyUnsatisfiedError,
    NotFoundError,
    PermissionDeniedError,
    PreconditionFailedError,
)
from db.models.n8n_workflow import N8nWorkflow, ProcessN8nBinding, WorkflowN8nBinding
from db.models.run import ProcessRun, WorkflowRun
from services.run_service import RunService, matches_search


@pytest.fixture
def service(db_session, dispatcher) -> RunService:
    return RunService(db_session, dispatcher)


async def reload(session, run_id):
    """Committed state of a run and its process runs, keyed by process name."""
    session.expunge_all()
    run = (await session.execute(select(WorkflowRun).where(WorkflowRun.id == run_id))).scalar_one()
    return run, {pr.process.name: pr for pr in run.process_runs}


@pytest_asyncio.fixture
async def started(service, workflow, member):
    """A freshly initialized run, with process runs keyed by process name."""
    run = await service.initialize(workflow.id, member)
    return run.id, {pr.process.name: pr.id for pr in run.process_runs}


@pytest.mark.integration
class TestInitialize:
    async def test_creates_open_process_runs_in_order(self, service, workflow, member, db_session):
        run = await service.initialize(workflow.id, member)

        run, by_name = await reload(db_session, run.id)
        assert run.status == "open"
        assert run.started_by_id == member.id
        assert [pr.process.name for pr in run.process_runs] == ["P1", "P2"]
        assert all(pr.status == "open" for pr in by_name.values())

    async def test_outsider_denied(self, service, workflow, outsider):
        with pytest.raises(PermissionDeniedError) as exc:
            await service.initialize(workflow.id, outsider)
        assert exc.value.message == "Keine Berechtigung zum Ausführen dieses Workflows"

    async def test_inactive_workflow(self, service, workflow, member, db_session):
        from db.models.workflow import Workflow

        wf = await db_session.get(Workflow, workflow.id)
        wf.is_active = False
        await db_session.commit()

        with pytest.raises(PreconditionFailedError):
            await service.initialize(workflow.id, member)

    async def test_unknown_workflow(self, service, member):
        with pytest.raises(NotFoundError):
            await service.initialize("missing", member)

    async def test_seed_data_goes_to_initialize_process(self, service, workflow, processes, member, db_session):
        from db.models.workflow import Workflow

        p1, _ = processes
        wf = await db_session.get(Workflow, workflow.id)
        wf.initialize_process_id = p1.id
        await db_session.commit()

        run = await service.initialize(workflow.id, member, seed_data={"name": "Anna"})

        run, by_name = await reload(db_session, run.id)
        assert run.status == "ongoing"
        assert by_name["P1"].status == "ongoing"
        assert by_name["P1"].data == {"name": "Anna"}
        assert by_name["P2"].status == "open"

    async def test_categories_get_no_process_run(self, service, workflow, member, db_session):
        from db.models.process import Process

        category = Process(
            workflow_id=workflow.id, name="Kategorie", description="", order=2, is_category=True,
        )
        db_session.add(category)
        await db_session.flush()
        db_session.add(Process(
            workflow_id=workflow.id, parent_id=category.id, name="P3", description="", order=0,
            submit_process_permissions="true", view_process_permissions="true",
        ))
        await db_session.commit()
        db_session.expunge_all()

        run = await service.initialize(workflow.id, member)

        _, by_name = await reload(db_session, run.id)
        assert sorted(by_name) == ["P1", "P2", "P3"]


@pytest.mark.integration
class TestSaveAndComplete:
    async def test_dependency_blocks_completion(self, service, started, member):
        _, ids = started
        with pytest.raises(DependencyUnsatisfiedError) as exc:
            await service.complete(ids["P2"], member)
        assert exc.value.message == "Folgende Abhängigkeiten sind nicht abgeschlossen: P1"
        assert exc.value.blocking == ["P1"]
        assert exc.value.status_code == 409

    async def test_dependency_blocks_save(self, service, started, member):
        _, ids = started
        with pytest.raises(DependencyUnsatisfiedError):
            await service.save(ids["P2"], {"x": 1}, member)

    async def test_full_scenario(self, service, started, member, db_session):
        run_id, ids = started

        await service.save(ids["P1"], {"name": "Anna"}, member)
        run, by_name = await reload(db_session, run_id)
        assert by_name["P1"].status == "ongoing"
        assert by_name["P1"].data == {"name": "Anna"}
        assert by_name["P1"].submitted_by_id == member.id
        assert run.status == "ongoing"

        await service.complete(ids["P1"], member)
        run, by_name = await reload(db_session, run_id)
        assert by_name["P1"].status == "completed"
        assert by_name["P1"].completed_at is not None
        assert run.status == "ongoing"
        assert run.completed_at is None

        await service.complete(ids["P2"], member, data={"ok": True})
        run, by_name = await reload(db_session, run_id)
        assert by_name["P2"].status == "completed"
        assert by_name["P2"].data == {"ok": True}
        assert run.status == "completed"
        assert run.completed_at is not None

    async def test_complete_twice(self, service, started, member):
        _, ids = started
        await service.complete(ids["P1"], member)
        with pytest.raises(PreconditionFailedError) as exc:
            await service.complete(ids["P1"], member)
        assert exc.value.message == "Prozess ist bereits abgeschlossen"

    async def test_completed_run_rejects_writes(self, service, started, member):
        _, ids = started
        await service.complete(ids["P1"], member)
        await service.complete(ids["P2"], member)

        with pytest.raises(PreconditionFailedError):
            await service.save(ids["P1"], {"x": 1}, member)

    async def test_outsider_cannot_save(self, service, started, outsider):
        _, ids = started
        with pytest.raises(PermissionDeniedError) as exc:
            await service.save(ids["P1"], {"x": 1}, outsider)
        assert exc.value.message == "Keine Berechtigung zum Ausführen dieses Prozesses"

    async def test_admin_bypasses_rules(self, service, started, admin, db_session):
        run_id, ids = started
        await service.complete(ids["P1"], admin)
        _, by_name = await reload(db_session, run_id)
        assert by_name["P1"].status == "completed"

    async def test_unknown_process_run(self, service, member):
        with pytest.raises(NotFoundError):
            await service.save("missing", {}, member)


@pytest.mark.integration
class TestResetAndArchive:
    async def test_reset_reopens_completed_run(self, service, started, member, db_session):
        run_id, ids = started
        await service.complete(ids["P1"], member)
        await service.complete(ids["P2"], member)

        await service.reset(ids["P1"], "Bitte korrigieren", member)

        run, by_name = await reload(db_session, run_id)
        assert run.status == "ongoing"
        assert run.completed_at is None
        assert by_name["P1"].status == "ongoing"
        assert by_name["P1"].reset_process_text == "Bitte korrigieren"
        # Siblings are left alone
        assert by_name["P2"].status == "completed"

    async def test_reset_requires_completed(self, service, started, member):
        _, ids = started
        with pytest.raises(PreconditionFailedError) as exc:
            await service.reset(ids["P1"], None, member)
        assert exc.value.message == "Prozess ist nicht abgeschlossen"

    async def test_reset_clears_archive(self, service, started, member, db_session):
        run_id, ids = started
        await service.complete(ids["P1"], member)
        await service.archive(run_id, "erledigt", member)

        await service.reset(ids["P1"], None, member)

        run, _ = await reload(db_session, run_id)
        assert run.is_archived is False
        assert run.archived_notes is None

    async def test_archived_run_blocks_save(self, service, started, member, db_session):
        run_id, ids = started
        await service.archive(run_id, "erledigt", member)

        run, _ = await reload(db_session, run_id)
        assert run.is_archived is True
        assert run.status == "open"
        assert run.archived_notes == "erledigt"

        with pytest.raises(PreconditionFailedError) as exc:
            await service.save(ids["P1"], {"x": 1}, member)
        assert exc.value.message == "Workflow Ausführung ist abgeschlossen oder archiviert"

    async def test_archived_run_blocks_complete_until_reactivated(self, service, started, member, db_session):
        run_id, ids = started
        await service.archive(run_id, None, member)

        with pytest.raises(PreconditionFailedError) as exc:
            await service.complete(ids["P1"], member)
        assert exc.value.message == "Workflow Ausführung ist abgeschlossen oder archiviert"

        _, by_name = await reload(db_session, run_id)
        assert by_name["P1"].status == "open"

        await service.reactivate(run_id, member)
        await service.complete(ids["P1"], member)
        _, by_name = await reload(db_session, run_id)
        assert by_name["P1"].status == "completed"

    async def test_completed_and_archived_run_rejects_complete(self, service, started, member, db_session):
        run_id, ids = started
        await service.complete(ids["P1"], member)
        await service.complete(ids["P2"], member)
        await service.archive(run_id, "fertig", member)

        run, _ = await reload(db_session, run_id)
        assert run.status == "completed"
        assert run.is_archived is True

        for process_run_id in (ids["P1"], ids["P2"]):
            with pytest.raises(PreconditionFailedError) as exc:
                await service.complete(process_run_id, member)
            assert exc.value.message == "Workflow Ausführung ist abgeschlossen oder archiviert"

    async def test_archive_twice(self, service, started, member):
        run_id, _ = started
        await service.archive(run_id, None, member)
        with pytest.raises(PreconditionFailedError):
            await service.archive(run_id, None, member)

    async def test_reactivate(self, service, started, member, db_session):
        run_id, ids = started
        await service.archive(run_id, None, member)
        await service.reactivate(run_id, member)

        run, _ = await reload(db_session, run_id)
        assert run.is_archived is False
        await service.save(ids["P1"], {"x": 1}, member)

    async def test_reactivate_requires_archived(self, service, started, member):
        run_id, _ = started
        with pytest.raises(PreconditionFailedError):
            await service.reactivate(run_id, member)

    async def test_delete(self, service, started, member, db_session):
        run_id, ids = started
        await service.delete(run_id, member)

        db_session.expunge_all()
        assert await db_session.get(WorkflowRun, run_id) is None
        assert await db_session.get(ProcessRun, ids["P1"]) is None

    async def test_outsider_cannot_delete(self, service, started, outsider):
        run_id, _ = started
        with pytest.raises(PermissionDeniedError):
            await service.delete(run_id, outsider)


@pytest.mark.integration
class TestWebhookTriggers:
    @pytest_asyncio.fixture
    async def bindings(self, db_session, workflow, processes):
        _, p2 = processes
        n8n = {
            name: N8nWorkflow(workflow_id=f"n8n-{name}", name=name)
            for name in ("init", "last", "done", "p2done", "archive")
        }
        db_session.add_all(n8n.values())
        await db_session.flush()
        db_session.add_all([
            WorkflowN8nBinding(workflow_id=workflow.id, n8n_workflow_id=n8n["init"].id, event="initialize"),
            WorkflowN8nBinding(workflow_id=workflow.id, n8n_workflow_id=n8n["last"].id, event="last"),
            WorkflowN8nBinding(workflow_id=workflow.id, n8n_workflow_id=n8n["done"].id, event="complete"),
            WorkflowN8nBinding(workflow_id=workflow.id, n8n_workflow_id=n8n["archive"].id, event="archive"),
            ProcessN8nBinding(process_id=p2.id, n8n_workflow_id=n8n["p2done"].id, event="complete"),
        ])
        await db_session.commit()
        db_session.expunge_all()

    async def test_initialize_triggers(self, service, workflow, member, dispatcher, bindings):
        run = await service.initialize(workflow.id, member)

        [(ids, context)] = dispatched(dispatcher)
        assert ids == ["n8n-init"]
        assert context["event"] == WorkflowEvent.INITIALIZE.value
        assert context["workflowRunId"] == run.id
        assert context["user"]["email"] == member.email
        assert set(context["processData"]) == {"P1", "P2"}

    async def test_last_and_complete_triggers(self, service, workflow, member, dispatcher, bindings):
        run = await service.initialize(workflow.id, member)
        ids = {pr.process.name: pr.id for pr in run.process_runs}
        dispatcher.dispatch.reset_mock()

        await service.save(ids["P1"], {"name": "Anna"}, member)
        assert dispatched(dispatcher) == []

        await service.complete(ids["P1"], member)
        [(targets, context)] = dispatched(dispatcher)
        assert targets == ["n8n-last"]
        assert context["data"] == {"name": "Anna"}
        assert context["processData"]["P1"]["status"] == "completed"
        dispatcher.dispatch.reset_mock()

        await service.complete(ids["P2"], member)
        [(targets, context)] = dispatched(dispatcher)
        assert targets == ["n8n-p2done", "n8n-done"]
        assert context["process"]["name"] == "P2"

    async def test_archive_and_reactivate_share_bucket(self, service, workflow, member, dispatcher, bindings):
        run = await service.initialize(workflow.id, member)
        dispatcher.dispatch.reset_mock()

        await service.archive(run.id, "fertig", member)
        await service.reactivate(run.id, member)

        calls = dispatched(dispatcher)
        assert [ids for ids, _ in calls] == [["n8n-archive"], ["n8n-archive"]]
        assert [context["event"] for _, context in calls] == ["archive", "reactivate"]
        assert calls[0][1]["message"] == "fertig"


@pytest.mark.integration
class TestReadSide:
    async def test_list_runs_visibility(self, service, started, member, outsider, admin):
        run_id, _ = started
        assert [run.id for run in await service.list_runs(member)] == [run_id]
        assert await service.list_runs(outsider) == []
        assert [run.id for run in await service.list_runs(admin)] == [run_id]

    async def test_list_runs_archived_filter(self, service, started, member):
        run_id, _ = started
        await service.archive(run_id, None, member)
        assert await service.list_runs(member) == []
        assert [run.id for run in await service.list_runs(member, archived=True)] == [run_id]

    async def test_get_run_denied_for_outsider(self, service, started, outsider):
        run_id, _ = started
        with pytest.raises(PermissionDeniedError):
            await service.get_run(run_id, outsider)

    async def test_search_uses_information_fields(self, service, started, member, db_session):
        run_id, ids = started
        await service.save(ids["P1"], {"name": "Anna Schmidt", "other": "xyz"}, member)

        run, _ = await reload(db_session, run_id)
        assert matches_search(run, "schmidt")
        assert not matches_search(run, "xyz")
        assert [r.id for r in await service.list_runs(member, search="anna")] == [run_id]

    async def test_run_tree(self, service, started, member, db_session):
        run_id, _ = started
        run, _ = await reload(db_session, run_id)

        tree = await service.run_tree(run)

        assert [node["name"] for node in tree] == ["P1", "P2"]
        assert tree[0]["processRun"]["status"] == "open"
        assert tree[0]["children"] == []
