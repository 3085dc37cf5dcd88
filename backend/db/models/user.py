"""User model for the process portal."""

from typing import Optional

from sqlalchemy.orm import Mapped, mapped_column, relationship

from core.constants import UserRole
from db.base import BaseModel


class User(BaseModel):
    """A portal user, provisioned by the identity provider.

    Attributes:
        id: Unique identifier (UUID string)
        name: Display name
        email: Email address (unique)
        role: Privilege tier (user, moderator, admin)
        image: Optional avatar URL
        teams: Teams the user is a member of
    """

    __tablename__ = "users"

    name: Mapped[str] = mapped_column(nullable=False, default="")
    email: Mapped[str] = mapped_column(nullable=False, unique=True, index=True)
    role: Mapped[str] = mapped_column(nullable=False, default=UserRole.USER.value)
    image: Mapped[Optional[str]] = mapped_column(nullable=True)

    # Relationships
    teams: Mapped[list["Team"]] = relationship(
        "Team",
        secondary="user_teams",
        back_populates="members",
        lazy="selectin",
    )
