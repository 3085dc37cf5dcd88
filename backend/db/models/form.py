"""Standalone forms and their submissions."""

from datetime import datetime
from typing import Optional

from sqlalchemy import JSON, DateTime, ForeignKey, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from core.constants import RULE_DENY_ALL, SubmissionStatus
from db.base import BaseModel, SoftDeleteMixin


class Form(SoftDeleteMixin, BaseModel):
    """A single-step survey that users fill out and reviewers decide.

    Attributes:
        id: Unique identifier (UUID string)
        title: Form title
        description: Free text description
        schema: SurveyJS form definition (opaque)
        theme: SurveyJS theme (opaque)
        is_public: Fillable by every user, not only assigned teams
        is_active: Whether new submissions may be started
        responsible_team_id: Team owning the form
        edit_form_permissions: Rule gating edits of the form
        review_form_permissions: Rule gating review of submissions
        teams: Assigned teams
        n8n_bindings: n8n workflows per submission event
    """

    __tablename__ = "forms"

    title: Mapped[str] = mapped_column(nullable=False, index=True)
    description: Mapped[str] = mapped_column(nullable=False, default="")
    schema: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    theme: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    is_public: Mapped[bool] = mapped_column(default=False)
    is_active: Mapped[bool] = mapped_column(default=True)
    responsible_team_id: Mapped[Optional[str]] = mapped_column(
        ForeignKey("teams.id", ondelete="SET NULL"),
        nullable=True,
    )
    edit_form_permissions: Mapped[str] = mapped_column(Text, default=RULE_DENY_ALL)
    review_form_permissions: Mapped[str] = mapped_column(Text, default=RULE_DENY_ALL)

    # Relationships
    responsible_team: Mapped[Optional["Team"]] = relationship("Team", lazy="selectin")
    teams: Mapped[list["Team"]] = relationship(
        "Team",
        secondary="form_teams",
        lazy="selectin",
    )
    n8n_bindings: Mapped[list["FormN8nBinding"]] = relationship(
        "FormN8nBinding",
        cascade="all, delete-orphan",
        lazy="selectin",
    )


class FormSubmission(BaseModel):
    """One user's answers to a form and their review state.

    Attributes:
        id: Unique identifier (UUID string)
        form_id: Submitted form
        submitted_by_id: User filling out the form
        status: ongoing, submitted, reviewing, rejected, completed
        data: Form answers (opaque JSON)
        review_notes: Reviewer notes when sent back for changes
        rejected_notes: Reviewer notes on rejection
        completed_notes: Reviewer notes on completion
        is_archived: Archive flag, orthogonal to status
        archived_at: When the submission was archived
        submitted_at: When the submission was last submitted
        completed_at: When the submission was completed
    """

    __tablename__ = "form_submissions"

    form_id: Mapped[str] = mapped_column(
        ForeignKey("forms.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    submitted_by_id: Mapped[Optional[str]] = mapped_column(
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    status: Mapped[str] = mapped_column(default=SubmissionStatus.ONGOING.value, index=True)
    data: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    review_notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    rejected_notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    completed_notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    is_archived: Mapped[bool] = mapped_column(default=False, index=True)
    archived_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    submitted_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    # Relationships
    form: Mapped["Form"] = relationship("Form", lazy="selectin")
