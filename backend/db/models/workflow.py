"""Workflow model for the process portal."""

from typing import Optional

from sqlalchemy import JSON, ForeignKey, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from core.constants import RULE_DENY_ALL
from db.base import BaseModel, SoftDeleteMixin


class Workflow(SoftDeleteMixin, BaseModel):
    """A multi-step business process made of a tree of processes.

    Attributes:
        id: Unique identifier (UUID string)
        name: Workflow name
        description: Free text description
        is_active: Whether new runs may be started
        is_public: Whether every user sees the workflow, not only assigned teams
        responsible_team_id: Team owning the workflow
        edit_workflow_permissions: Rule gating structural edits
        submit_process_permissions: Rule gating run initialization, archiving and deletion
        information: Ordered ``[{label, fieldKey}]`` shown in run summaries
        initialize_process_id: Process whose data seeds a new run
        teams: Assigned teams
        n8n_bindings: n8n workflows per lifecycle event
    """

    __tablename__ = "workflows"

    name: Mapped[str] = mapped_column(nullable=False, index=True)
    description: Mapped[str] = mapped_column(nullable=False, default="")
    is_active: Mapped[bool] = mapped_column(default=True, index=True)
    is_public: Mapped[bool] = mapped_column(default=False)
    responsible_team_id: Mapped[Optional[str]] = mapped_column(
        ForeignKey("teams.id", ondelete="SET NULL"),
        nullable=True,
    )
    edit_workflow_permissions: Mapped[str] = mapped_column(Text, default=RULE_DENY_ALL)
    submit_process_permissions: Mapped[str] = mapped_column(Text, default=RULE_DENY_ALL)
    information: Mapped[list] = mapped_column(JSON, default=list)
    # Plain column: processes reference workflows, a FK back would be circular
    initialize_process_id: Mapped[Optional[str]] = mapped_column(nullable=True)

    # Relationships
    responsible_team: Mapped[Optional["Team"]] = relationship("Team", lazy="selectin")
    teams: Mapped[list["Team"]] = relationship(
        "Team",
        secondary="workflow_teams",
        lazy="selectin",
    )
    n8n_bindings: Mapped[list["WorkflowN8nBinding"]] = relationship(
        "WorkflowN8nBinding",
        cascade="all, delete-orphan",
        lazy="selectin",
    )
