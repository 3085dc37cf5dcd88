"""Process model: a step (or category) in a workflow's process tree."""

from typing import Optional

from sqlalchemy import JSON, ForeignKey, Table, Column, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from core.constants import RULE_DENY_ALL
from db.base import Base, BaseModel, SoftDeleteMixin

# Processes that must be completed before a process may be completed
process_dependencies = Table(
    "process_dependencies",
    Base.metadata,
    Column("process_id", ForeignKey("processes.id", ondelete="CASCADE"), primary_key=True),
    Column("dependency_id", ForeignKey("processes.id", ondelete="CASCADE"), primary_key=True),
)


class Process(SoftDeleteMixin, BaseModel):
    """A node of the process tree.

    The tree is stored flat: ``parent_id`` points at a category process of
    the same workflow and ``order`` sorts siblings. Display trees are
    built at read time by grouping on ``parent_id``.

    Attributes:
        id: Unique identifier (UUID string)
        workflow_id: Owning workflow
        parent_id: Parent category, None for top level
        order: Position among siblings
        name: Process name (also the key in webhook process data)
        description: Free text description
        is_category: Pure grouping node without a form
        schema: SurveyJS form definition (opaque)
        theme: SurveyJS theme (opaque)
        edit_process_permissions: Rule gating form/permission edits
        submit_process_permissions: Rule gating save/complete of runs
        view_process_permissions: Rule gating visibility of runs
        reset_process_permissions: Rule gating reset of completed runs
        dependencies: Processes that must be completed first
        n8n_bindings: n8n workflows per process event
    """

    __tablename__ = "processes"

    workflow_id: Mapped[str] = mapped_column(
        ForeignKey("workflows.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    parent_id: Mapped[Optional[str]] = mapped_column(
        ForeignKey("processes.id", ondelete="CASCADE"),
        nullable=True,
        index=True,
    )
    order: Mapped[int] = mapped_column("sort_order", default=0)
    name: Mapped[str] = mapped_column(nullable=False)
    description: Mapped[str] = mapped_column(nullable=False, default="")
    is_category: Mapped[bool] = mapped_column(default=False)
    schema: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    theme: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    responsible_team_id: Mapped[Optional[str]] = mapped_column(
        ForeignKey("teams.id", ondelete="SET NULL"),
        nullable=True,
    )
    edit_process_permissions: Mapped[str] = mapped_column(Text, default=RULE_DENY_ALL)
    submit_process_permissions: Mapped[str] = mapped_column(Text, default=RULE_DENY_ALL)
    view_process_permissions: Mapped[str] = mapped_column(Text, default=RULE_DENY_ALL)
    reset_process_permissions: Mapped[str] = mapped_column(Text, default=RULE_DENY_ALL)

    # Relationships
    responsible_team: Mapped[Optional["Team"]] = relationship("Team", lazy="selectin")
    teams: Mapped[list["Team"]] = relationship(
        "Team",
        secondary="process_teams",
        lazy="selectin",
    )
    dependencies: Mapped[list["Process"]] = relationship(
        "Process",
        secondary=process_dependencies,
        primaryjoin=lambda: Process.id == process_dependencies.c.process_id,
        secondaryjoin=lambda: Process.id == process_dependencies.c.dependency_id,
        lazy="selectin",
    )
    n8n_bindings: Mapped[list["ProcessN8nBinding"]] = relationship(
        "ProcessN8nBinding",
        cascade="all, delete-orphan",
        lazy="selectin",
    )
