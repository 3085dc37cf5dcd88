"""Per-operation authorization checkpoint.

Combines the role hierarchy with per-entity permission rules:

    1. admins are always allowed, rules are never evaluated for them
    2. a role below the operation's minimum is denied
    3. purely role-gated operations (no rule) are then allowed
    4. otherwise the entity's stored rule decides; a malformed rule denies

Usage:
    gate = AccessGate()
    gate.require(principal, Operation.EDIT_WORKFLOW,
                 AccessTarget(workflow.edit_workflow_permissions,
                              {"workflow": entity_scope(workflow)}))
"""

from enum import Enum
from typing import Callable, Iterable, Optional, TypeVar

import structlog

from core.constants import UserRole
from core.exceptions import PermissionDeniedError, RuleSyntaxError
from core.permission_context import AccessTarget, Principal, build_context
from core import rules

logger = structlog.get_logger(__name__)

T = TypeVar("T")


class Operation(str, Enum):
    """Gated operations with their minimum role and German denial message."""

    CREATE_WORKFLOW = ("create_workflow", UserRole.MODERATOR, "Keine Berechtigung zum Erstellen von Workflows")
    MANAGE_WORKFLOWS = ("manage_workflows", UserRole.MODERATOR, "Keine Berechtigung zum Bearbeiten von Workflows")
    EDIT_WORKFLOW = ("edit_workflow", UserRole.MODERATOR, "Keine Berechtigung zum Bearbeiten dieses Workflows")
    DELETE_WORKFLOW = ("delete_workflow", UserRole.MODERATOR, "Keine Berechtigung zum Löschen dieses Workflows")
    EDIT_PROCESS = ("edit_process", UserRole.MODERATOR, "Keine Berechtigung zum Bearbeiten dieses Prozesses")
    EDIT_PROCESS_CONTENT = ("edit_process_content", UserRole.USER, "Keine Berechtigung zum Bearbeiten dieses Prozesses")
    DELETE_PROCESS = ("delete_process", UserRole.MODERATOR, "Keine Berechtigung zum Löschen dieses Prozesses")
    EXECUTE_WORKFLOW = ("execute_workflow", UserRole.USER, "Keine Berechtigung zum Ausführen dieses Workflows")
    EXECUTE_PROCESS = ("execute_process", UserRole.USER, "Keine Berechtigung zum Ausführen dieses Prozesses")
    VIEW_PROCESS = ("view_process", UserRole.USER, "Keine Berechtigung zum Anzeigen dieses Prozesses")
    RESET_PROCESS = ("reset_process", UserRole.USER, "Keine Berechtigung zum Zurücksetzen dieses Prozesses")
    ARCHIVE_RUN = ("archive_run", UserRole.USER, "Keine Berechtigung zum Archivieren dieses Workflows")
    REACTIVATE_RUN = ("reactivate_run", UserRole.USER, "Keine Berechtigung zum Reaktivieren dieses Workflows")
    DELETE_RUN = ("delete_run", UserRole.USER, "Keine Berechtigung zum Löschen dieses Workflows")
    CREATE_FORM = ("create_form", UserRole.MODERATOR, "Keine Berechtigung zum Erstellen von Formularen")
    EDIT_FORM = ("edit_form", UserRole.MODERATOR, "Keine Berechtigung zum Bearbeiten dieses Formulars")
    DELETE_FORM = ("delete_form", UserRole.MODERATOR, "Keine Berechtigung zum Löschen dieses Formulars")
    FILL_OUT_FORM = ("fill_out_form", UserRole.USER, "Keine Berechtigung zum Ausfüllen dieses Formulars")
    REVIEW_SUBMISSION = ("review_submission", UserRole.USER, "Keine Berechtigung zum Bearbeiten dieses Formulars")
    ADMINISTRATE = ("administrate", UserRole.ADMIN, "Keine Berechtigung")

    def __new__(cls, value: str, required_role: UserRole, message: str):
        member = str.__new__(cls, value)
        member._value_ = value
        member.required_role = required_role
        member.message = message
        return member


class AccessGate:
    """Stateless authorization checks; safe to share between requests."""

    def authorize(
        self,
        principal: Principal,
        operation: Operation,
        target: Optional[AccessTarget] = None,
    ) -> bool:
        """Decide whether ``principal`` may perform ``operation``.

        Args:
            principal: Requesting user
            operation: The gated operation
            target: Rule and context inputs; None for purely role-gated operations

        Returns:
            True to allow, False to deny
        """
        if principal.is_admin:
            return True

        if not principal.role.meets(operation.required_role):
            logger.info(
                "access denied by role",
                user=principal.email,
                operation=operation.value,
                role=principal.role.value,
            )
            return False

        if target is None:
            return True

        context = build_context(principal, target.scopes, target.data)
        try:
            allowed = rules.evaluate(target.rule, context)
        except RuleSyntaxError as e:
            logger.warning(
                "malformed permission rule",
                user=principal.email,
                operation=operation.value,
                error=str(e),
            )
            return False
        except Exception as e:
            logger.warning(
                "permission rule evaluation failed",
                user=principal.email,
                operation=operation.value,
                error=repr(e),
            )
            return False

        if not allowed:
            logger.info("access denied by rule", user=principal.email, operation=operation.value)
        return allowed

    def require(
        self,
        principal: Principal,
        operation: Operation,
        target: Optional[AccessTarget] = None,
    ) -> None:
        """Like ``authorize`` but raise ``PermissionDeniedError`` on deny."""
        if not self.authorize(principal, operation, target):
            raise PermissionDeniedError(operation.message)

    def filter_visible(
        self,
        principal: Principal,
        operation: Operation,
        items: Iterable[T],
        target_for: Callable[[T], Optional[AccessTarget]],
    ) -> list[T]:
        """Keep the items for which ``operation`` is allowed."""
        return [item for item in items if self.authorize(principal, operation, target_for(item))]


access_gate = AccessGate()
