"""Team, n8n registry and user schemas."""

from pydantic import BaseModel, Field
from typing import List, Optional

from core.constants import UserRole


class TeamCreate(BaseModel):
    name: str = Field(min_length=1, description="Team name, referenced by permission rules")
    contact_email: Optional[str] = Field(default=None, description="Contact address")


class TeamUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1)
    contact_email: Optional[str] = None


class TeamMembers(BaseModel):
    user_ids: List[str] = Field(default=[], description="Complete member list")


class TeamResponse(BaseModel):
    id: str
    name: str
    contact_email: Optional[str] = None
    member_ids: List[str] = []


class N8nWorkflowCreate(BaseModel):
    workflow_id: str = Field(min_length=1, description="n8n's own workflow ID")
    name: str = Field(default="", description="Display name")


class N8nWorkflowUpdate(BaseModel):
    name: Optional[str] = None


class N8nWorkflowResponse(BaseModel):
    id: str
    workflow_id: str
    name: str

    class Config:
        from_attributes = True


class RoleUpdate(BaseModel):
    role: UserRole = Field(description="user, moderator or admin")


class UserResponse(BaseModel):
    id: str
    name: str
    email: str
    role: str
    image: Optional[str] = None
    teams: List[str] = Field(default=[], description="Team names")
