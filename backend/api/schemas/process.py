"""Process designer schemas."""

from pydantic import BaseModel, Field
from typing import Any, Dict, List, Optional

from core.constants import MoveDirection


class ProcessCreate(BaseModel):
    """Request to create a process or category."""

    workflow_id: str = Field(description="Owning workflow")
    name: str = Field(min_length=1, description="Process name")
    description: Optional[str] = Field(default="", description="Process description")
    is_category: bool = Field(default=False, description="Structural node without a form")
    parent_id: Optional[str] = Field(default=None, description="Parent category")


class ProcessUpdate(BaseModel):
    """Request to update process metadata."""

    name: Optional[str] = Field(default=None, min_length=1, description="Process name")
    description: Optional[str] = Field(default=None, description="Process description")
    responsible_team_id: Optional[str] = Field(default=None, description="Owning team, empty string clears")
    team_ids: Optional[List[str]] = Field(default=None, description="Assigned teams")


class ProcessFormUpdate(BaseModel):
    """SurveyJS schema and theme, stored as given."""

    schema_: Optional[Dict[str, Any]] = Field(default=None, alias="schema", description="Form schema")
    theme: Optional[Dict[str, Any]] = Field(default=None, description="Form theme")


class ProcessPermissionsUpdate(BaseModel):
    """JsonLogic rules; omitted rules are left unchanged."""

    edit_process_permissions: Optional[str] = Field(default=None)
    submit_process_permissions: Optional[str] = Field(default=None)
    view_process_permissions: Optional[str] = Field(default=None)
    reset_process_permissions: Optional[str] = Field(default=None)


class ProcessMove(BaseModel):
    """Move among siblings."""

    direction: MoveDirection = Field(description="up or down")


class DependencyUpdate(BaseModel):
    """Full dependency set of a process."""

    dependency_ids: List[str] = Field(default=[], description="Processes that must complete first")


class ProcessResponse(BaseModel):
    """Process details."""

    id: str
    workflow_id: str
    parent_id: Optional[str] = None
    name: str
    description: str
    is_category: bool
    order: int
    schema_: Optional[Dict[str, Any]] = Field(default=None, serialization_alias="schema")
    theme: Optional[Dict[str, Any]] = None
    edit_process_permissions: str
    submit_process_permissions: str
    view_process_permissions: str
    reset_process_permissions: str
    dependency_ids: List[str] = []
    team_ids: List[str] = []
    responsible_team_id: Optional[str] = None
