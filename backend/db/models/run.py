"""Workflow runs and their process runs."""

from datetime import datetime
from typing import Optional

from sqlalchemy import JSON, DateTime, ForeignKey, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from core.constants import ProcessRunStatus, WorkflowRunStatus
from db.base import BaseModel, utcnow


class WorkflowRun(BaseModel):
    """One execution of a workflow.

    Attributes:
        id: Unique identifier (UUID string)
        workflow_id: Executed workflow
        status: open, ongoing, completed (archived is kept for legacy rows)
        started_at: When the run was initialized
        completed_at: When the last process run completed
        started_by_id: User who initialized the run
        is_archived: Archive flag, orthogonal to status
        archived_at: When the run was archived
        archived_notes: Message given when archiving
        process_runs: One run per process of the workflow
    """

    __tablename__ = "workflow_runs"

    workflow_id: Mapped[str] = mapped_column(
        ForeignKey("workflows.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    status: Mapped[str] = mapped_column(default=WorkflowRunStatus.OPEN.value, index=True)
    started_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    started_by_id: Mapped[Optional[str]] = mapped_column(
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
    )
    is_archived: Mapped[bool] = mapped_column(default=False, index=True)
    archived_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    archived_notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Relationships
    workflow: Mapped["Workflow"] = relationship("Workflow", lazy="selectin")
    process_runs: Mapped[list["ProcessRun"]] = relationship(
        "ProcessRun",
        back_populates="workflow_run",
        order_by="ProcessRun.position",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    @property
    def is_locked(self) -> bool:
        """Completed or archived runs reject save/complete."""
        return self.is_archived or self.status in (
            WorkflowRunStatus.COMPLETED.value,
            WorkflowRunStatus.ARCHIVED.value,
        )


class ProcessRun(BaseModel):
    """State and answers of one process within a workflow run.

    Attributes:
        id: Unique identifier (UUID string)
        workflow_run_id: Owning workflow run
        process_id: Process this run belongs to
        position: Tree order of the process when the run was initialized
        status: open, ongoing, completed
        data: Form answers (opaque JSON)
        reset_process_text: Note stored when reset from completed
        started_at: Creation timestamp of the run
        completed_at: When the run was completed
        submitted_by_id: Last user who saved or completed the run
    """

    __tablename__ = "process_runs"

    workflow_run_id: Mapped[str] = mapped_column(
        ForeignKey("workflow_runs.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    process_id: Mapped[str] = mapped_column(
        ForeignKey("processes.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    position: Mapped[int] = mapped_column(default=0)
    status: Mapped[str] = mapped_column(default=ProcessRunStatus.OPEN.value, index=True)
    data: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    reset_process_text: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    started_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    submitted_by_id: Mapped[Optional[str]] = mapped_column(
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
    )

    # Relationships
    workflow_run: Mapped["WorkflowRun"] = relationship(
        "WorkflowRun", back_populates="process_runs", lazy="selectin"
    )
    process: Mapped["Process"] = relationship("Process", lazy="selectin")
