"""Team model and the team association tables."""

from typing import Optional

from sqlalchemy import ForeignKey, Table, Column
from sqlalchemy.orm import Mapped, mapped_column, relationship

from db.base import Base, BaseModel

# Team membership of users
user_teams = Table(
    "user_teams",
    Base.metadata,
    Column("user_id", ForeignKey("users.id", ondelete="CASCADE"), primary_key=True),
    Column("team_id", ForeignKey("teams.id", ondelete="CASCADE"), primary_key=True),
)

# Teams a workflow is assigned to
workflow_teams = Table(
    "workflow_teams",
    Base.metadata,
    Column("workflow_id", ForeignKey("workflows.id", ondelete="CASCADE"), primary_key=True),
    Column("team_id", ForeignKey("teams.id", ondelete="CASCADE"), primary_key=True),
)

# Teams a process is assigned to
process_teams = Table(
    "process_teams",
    Base.metadata,
    Column("process_id", ForeignKey("processes.id", ondelete="CASCADE"), primary_key=True),
    Column("team_id", ForeignKey("teams.id", ondelete="CASCADE"), primary_key=True),
)

# Teams a form is assigned to
form_teams = Table(
    "form_teams",
    Base.metadata,
    Column("form_id", ForeignKey("forms.id", ondelete="CASCADE"), primary_key=True),
    Column("team_id", ForeignKey("teams.id", ondelete="CASCADE"), primary_key=True),
)


class Team(BaseModel):
    """Organizational team. Rules refer to teams by name.

    Attributes:
        id: Unique identifier (UUID string)
        name: Team name (unique, used in permission rules)
        contact_email: Optional contact address
        members: Users belonging to the team
    """

    __tablename__ = "teams"

    name: Mapped[str] = mapped_column(nullable=False, unique=True, index=True)
    contact_email: Mapped[Optional[str]] = mapped_column(nullable=True)

    # Relationships
    members: Mapped[list["User"]] = relationship(
        "User",
        secondary=user_teams,
        back_populates="teams",
        lazy="selectin",
    )
