"""Workflow schemas."""

from pydantic import BaseModel, Field
from datetime import datetime
from typing import List, Optional

from api.schemas.common import N8nBindingResponse, TeamRef


class InformationField(BaseModel):
    """Run summary column: label and the data key it shows."""

    label: str = Field(min_length=1, description="Column label")
    fieldKey: str = Field(min_length=1, description="Key in the merged run data")


class WorkflowCreate(BaseModel):
    """Request to create a workflow."""

    name: str = Field(min_length=1, description="Workflow name")
    description: Optional[str] = Field(default="", description="Workflow description")
    is_public: bool = Field(default=False, description="Visible to every user")
    is_active: bool = Field(default=True, description="Whether new runs may be started")
    responsible_team_id: Optional[str] = Field(default=None, description="Owning team")
    team_ids: List[str] = Field(default=[], description="Assigned teams")


class WorkflowUpdate(BaseModel):
    """Request to update a workflow."""

    name: Optional[str] = Field(default=None, min_length=1, description="Workflow name")
    description: Optional[str] = Field(default=None, description="Workflow description")
    is_public: Optional[bool] = Field(default=None, description="Visible to every user")
    is_active: Optional[bool] = Field(default=None, description="Whether new runs may be started")
    responsible_team_id: Optional[str] = Field(default=None, description="Owning team, empty string clears")
    initialize_process_id: Optional[str] = Field(default=None, description="Seed process, empty string clears")
    edit_workflow_permissions: Optional[str] = Field(default=None, description="JsonLogic rule gating edits")
    submit_process_permissions: Optional[str] = Field(default=None, description="JsonLogic rule gating runs")


class TeamAssignment(BaseModel):
    """Teams to assign."""

    team_ids: List[str] = Field(min_length=1, description="Team IDs")


class InformationUpdate(BaseModel):
    """Ordered summary fields."""

    fields: List[InformationField] = Field(default=[], description="Summary fields in display order")


class WorkflowResponse(BaseModel):
    """Workflow information response."""

    id: str = Field(description="Workflow ID")
    name: str = Field(description="Workflow name")
    description: str = Field(description="Workflow description")
    is_public: bool = Field(description="Visible to every user")
    is_active: bool = Field(description="Whether new runs may be started")
    responsible_team: Optional[TeamRef] = Field(default=None, description="Owning team")
    teams: List[TeamRef] = Field(default=[], description="Assigned teams")
    edit_workflow_permissions: str = Field(description="JsonLogic rule gating edits")
    submit_process_permissions: str = Field(description="JsonLogic rule gating runs")
    initialize_process_id: Optional[str] = Field(default=None, description="Seed process")
    information: List[InformationField] = Field(default=[], description="Run summary fields")
    n8n_bindings: List[N8nBindingResponse] = Field(default=[], description="Bound n8n workflows")
    created_at: datetime = Field(description="Creation timestamp")
    updated_at: datetime = Field(description="Last update timestamp")
