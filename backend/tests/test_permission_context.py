"""Tests for rule context assembly and run data merging."""

from types import SimpleNamespace

import pytest

from core.constants import UserRole
from core.permission_context import (
    Principal,
    build_context,
    entity_scope,
    merge_run_data,
    process_data_map,
)


def _team(name):
    return SimpleNamespace(name=name)


@pytest.mark.unit
class TestPrincipal:
    def test_from_user_collects_team_names(self):
        user = SimpleNamespace(
            id="u1", email="a@example.com", name="Anna", role="moderator",
            teams=[_team("Personal"), _team("IT")],
        )
        principal = Principal.from_user(user)
        assert principal.role == UserRole.MODERATOR
        assert principal.teams == ("Personal", "IT")
        assert not principal.is_admin

    def test_as_context_shape(self):
        principal = Principal(id="u1", email="a@example.com", name="Anna", role=UserRole.ADMIN, teams=("IT",))
        assert principal.as_context() == {
            "id": "u1",
            "email": "a@example.com",
            "name": "Anna",
            "role": "admin",
            "teams": ["IT"],
        }
        assert principal.is_admin


@pytest.mark.unit
class TestScopes:
    def test_entity_scope(self):
        entity = SimpleNamespace(responsible_team=_team("HR"), teams=[_team("Personal")])
        assert entity_scope(entity) == {"responsibleTeam": "HR", "teams": ["Personal"]}

    def test_entity_scope_without_team(self):
        entity = SimpleNamespace(responsible_team=None, teams=[])
        assert entity_scope(entity) == {"responsibleTeam": None, "teams": []}

    def test_build_context(self):
        principal = Principal(id="u1", email="a@example.com", name="Anna", teams=("IT",))
        context = build_context(
            principal,
            {"workflow": {"responsibleTeam": "HR", "teams": ["IT"]}},
            {"amount": 3},
        )
        assert context["user"]["teams"] == ["IT"]
        assert context["workflow"] == {"responsibleTeam": "HR", "teams": ["IT"]}
        assert context["data"] == {"amount": 3}
        assert "process" not in context

    def test_build_context_defaults(self):
        principal = Principal(id="u1", email="a@example.com", name="Anna")
        assert build_context(principal) == {"user": principal.as_context(), "data": {}}


@pytest.mark.unit
class TestMergeRunData:
    def test_later_entries_win(self):
        assert merge_run_data([{"a": 1, "b": 1}, {"b": 2}, {"c": 3}]) == {"a": 1, "b": 2, "c": 3}

    def test_accepts_process_runs_and_skips_empty(self):
        runs = [SimpleNamespace(data={"a": 1}), SimpleNamespace(data=None), {"a": 2}]
        assert merge_run_data(runs) == {"a": 2}

    def test_shallow(self):
        merged = merge_run_data([{"addr": {"city": "Köln", "zip": "50667"}}, {"addr": {"city": "Bonn"}}])
        assert merged == {"addr": {"city": "Bonn"}}

    def test_process_data_map(self):
        process = SimpleNamespace(name="P1", description="Erster Schritt")
        runs = [SimpleNamespace(id="r1", status="completed", data={"x": 1}, process=process)]
        assert process_data_map(runs) == {
            "P1": {
                "id": "r1",
                "status": "completed",
                "data": {"x": 1},
                "processName": "P1",
                "processDescription": "Erster Schritt",
            }
        }
