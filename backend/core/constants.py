"""Constants and enums for the process portal."""

from enum import Enum


class UserRole(str, Enum):
    """Coarse privilege tier of a user.

    Ordered: user < moderator < admin. Compare with ``meets`` instead of
    string equality so the hierarchy lives in one place.
    """

    USER = "user"
    MODERATOR = "moderator"
    ADMIN = "admin"

    @property
    def rank(self) -> int:
        return _ROLE_RANK[self]

    def meets(self, required: "UserRole") -> bool:
        """Return True if this role is at least ``required``."""
        return self.rank >= UserRole(required).rank


_ROLE_RANK = {
    UserRole.USER: 0,
    UserRole.MODERATOR: 1,
    UserRole.ADMIN: 2,
}


class WorkflowRunStatus(str, Enum):
    """Workflow run status. Archiving is a separate flag on the run."""

    OPEN = "open"
    ONGOING = "ongoing"
    COMPLETED = "completed"
    ARCHIVED = "archived"


class ProcessRunStatus(str, Enum):
    """Process run status."""

    OPEN = "open"
    ONGOING = "ongoing"
    COMPLETED = "completed"


class SubmissionStatus(str, Enum):
    """Form submission status."""

    ONGOING = "ongoing"
    SUBMITTED = "submitted"
    REVIEWING = "reviewing"
    REJECTED = "rejected"
    COMPLETED = "completed"


class WorkflowEvent(str, Enum):
    """Workflow lifecycle events that can trigger n8n workflows."""

    INITIALIZE = "initialize"
    SAVE = "save"
    COMPLETE = "complete"
    ARCHIVE = "archive"
    REACTIVATE = "reactivate"
    LAST = "last"


class ProcessEvent(str, Enum):
    """Process lifecycle events that can trigger n8n workflows."""

    SAVE = "save"
    COMPLETE = "complete"
    REACTIVATE = "reactivate"


class FormEvent(str, Enum):
    """Form submission events that can trigger n8n workflows."""

    FILL_OUT = "fillOut"
    SAVE = "save"
    REVOKE = "revoke"
    SUBMIT = "submit"
    REVIEW = "review"
    RE_UPDATE = "reUpdate"
    REJECT = "reject"
    COMPLETE = "complete"
    ARCHIVE = "archive"


class MoveDirection(str, Enum):
    """Direction for reordering a process among its siblings."""

    UP = "up"
    DOWN = "down"


# Stored rule value meaning "no restriction configured"
RULE_ALLOW_ALL = "true"
# Stored rule value meaning "nobody but admins"
RULE_DENY_ALL = "{}"

WORKFLOW_RUN_STATUS_LABELS = {
    WorkflowRunStatus.OPEN: "offen",
    WorkflowRunStatus.ONGOING: "in Bearbeitung",
    WorkflowRunStatus.COMPLETED: "abgeschlossen",
    WorkflowRunStatus.ARCHIVED: "archiviert",
}

SUBMISSION_STATUS_LABELS = {
    SubmissionStatus.ONGOING: "in Bearbeitung",
    SubmissionStatus.SUBMITTED: "Eingereicht",
    SubmissionStatus.REVIEWING: "In Prüfung",
    SubmissionStatus.REJECTED: "Abgelehnt",
    SubmissionStatus.COMPLETED: "Abgeschlossen",
}
