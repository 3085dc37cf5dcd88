"""Tests for the access gate: admin bypass, role hierarchy and rule decisions."""

import pytest

from core.access import AccessGate, Operation
from core.constants import UserRole
from core.exceptions import PermissionDeniedError
from core.permission_context import AccessTarget, Principal

gate = AccessGate()

ADMIN = Principal(id="a", email="admin@example.com", name="Admin", role=UserRole.ADMIN)
MODERATOR = Principal(id="m", email="mod@example.com", name="Mod", role=UserRole.MODERATOR, teams=("IT",))
USER = Principal(id="u", email="user@example.com", name="User", role=UserRole.USER, teams=("Personal",))

PERSONAL_ONLY = '{"in": ["Personal", {"var": "user.teams"}]}'


@pytest.mark.unit
class TestAdminBypass:
    @pytest.mark.parametrize("operation", list(Operation))
    def test_admin_allowed_everywhere(self, operation):
        assert gate.authorize(ADMIN, operation, AccessTarget("{}")) is True

    def test_admin_allowed_with_malformed_rule(self):
        assert gate.authorize(ADMIN, Operation.EXECUTE_PROCESS, AccessTarget('{"nope": 1}')) is True


@pytest.mark.unit
class TestRoleGate:
    def test_user_cannot_create_workflow(self):
        assert gate.authorize(USER, Operation.CREATE_WORKFLOW) is False

    def test_moderator_can_create_workflow(self):
        assert gate.authorize(MODERATOR, Operation.CREATE_WORKFLOW) is True

    def test_role_checked_before_rule(self):
        # The rule would allow the user, the role does not
        assert gate.authorize(USER, Operation.EDIT_WORKFLOW, AccessTarget("true")) is False

    def test_administrate_needs_admin(self):
        assert gate.authorize(MODERATOR, Operation.ADMINISTRATE) is False

    def test_require_raises_operation_message(self):
        with pytest.raises(PermissionDeniedError) as exc:
            gate.require(USER, Operation.CREATE_WORKFLOW)
        assert exc.value.message == "Keine Berechtigung zum Erstellen von Workflows"
        assert exc.value.status_code == 403

    def test_manage_workflows_message(self):
        with pytest.raises(PermissionDeniedError) as exc:
            gate.require(USER, Operation.MANAGE_WORKFLOWS)
        assert exc.value.message == "Keine Berechtigung zum Bearbeiten von Workflows"


@pytest.mark.unit
class TestRuleGate:
    def test_deny_by_default(self):
        assert gate.authorize(USER, Operation.EXECUTE_PROCESS, AccessTarget("{}")) is False
        assert gate.authorize(MODERATOR, Operation.EDIT_WORKFLOW, AccessTarget(None)) is False

    def test_true_allows(self):
        assert gate.authorize(USER, Operation.EXECUTE_PROCESS, AccessTarget("true")) is True

    def test_team_rule(self):
        target = AccessTarget(PERSONAL_ONLY)
        assert gate.authorize(USER, Operation.EXECUTE_PROCESS, target) is True
        assert gate.authorize(MODERATOR, Operation.EXECUTE_PROCESS, target) is False

    def test_rule_sees_scopes_and_data(self):
        rule = '{"and": [{"in": [{"var": "process.responsibleTeam"}, {"var": "user.teams"}]}, {"<": [{"var": "data.amount"}, 100]}]}'
        scopes = {"process": {"responsibleTeam": "Personal", "teams": []}}
        assert gate.authorize(USER, Operation.EXECUTE_PROCESS, AccessTarget(rule, scopes, {"amount": 50})) is True
        assert gate.authorize(USER, Operation.EXECUTE_PROCESS, AccessTarget(rule, scopes, {"amount": 500})) is False

    def test_malformed_rule_denies(self):
        assert gate.authorize(USER, Operation.EXECUTE_PROCESS, AccessTarget('{"==": [1, 1], "x": 2}')) is False
        assert gate.authorize(USER, Operation.EXECUTE_PROCESS, AccessTarget("not json")) is False

    def test_oversized_numbers_in_data_do_not_crash(self):
        over_limit = AccessTarget('{">": [{"var": "data.amount"}, 1000]}', {}, {"amount": 10**400})
        assert gate.authorize(USER, Operation.EXECUTE_PROCESS, over_limit) is True
        even = AccessTarget('{"==": [{"%": [{"var": "data.n"}, 2]}, 0]}', {}, {"n": "inf"})
        assert gate.authorize(USER, Operation.EXECUTE_PROCESS, even) is False

    def test_evaluation_error_denies(self, monkeypatch):
        def broken(rule, context):
            raise ArithmeticError("boom")

        monkeypatch.setattr("core.access.rules.evaluate", broken)
        assert gate.authorize(USER, Operation.VIEW_PROCESS, AccessTarget("{\"==\": [1, 1]}")) is False
        assert gate.authorize(ADMIN, Operation.VIEW_PROCESS, AccessTarget("{\"==\": [1, 1]}")) is True

    def test_require_rule_message(self):
        with pytest.raises(PermissionDeniedError) as exc:
            gate.require(USER, Operation.FILL_OUT_FORM, AccessTarget("{}"))
        assert exc.value.message == "Keine Berechtigung zum Ausfüllen dieses Formulars"

    def test_filter_visible(self):
        items = ["true", "{}", PERSONAL_ONLY]
        visible = gate.filter_visible(USER, Operation.VIEW_PROCESS, items, lambda rule: AccessTarget(rule))
        assert visible == ["true", PERSONAL_ONLY]


@pytest.mark.unit
class TestUserRole:
    def test_hierarchy(self):
        assert UserRole.ADMIN.meets(UserRole.MODERATOR)
        assert UserRole.MODERATOR.meets(UserRole.USER)
        assert not UserRole.USER.meets(UserRole.MODERATOR)
        assert UserRole.USER.meets("user")
