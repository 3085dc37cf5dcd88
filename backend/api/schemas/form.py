"""Form and submission schemas."""

from pydantic import BaseModel, Field
from datetime import datetime
from typing import Any, Dict, List, Optional

from api.schemas.common import N8nBindingResponse, TeamRef
from core.constants import SubmissionStatus


class FormCreate(BaseModel):
    """Request to create a form."""

    title: str = Field(min_length=1, description="Form title")
    description: Optional[str] = Field(default="", description="Form description")
    is_public: bool = Field(default=False, description="Fillable by every user")
    is_active: bool = Field(default=True, description="Whether new submissions may be started")
    responsible_team_id: Optional[str] = Field(default=None, description="Owning team")


class FormUpdate(BaseModel):
    """Request to update a form."""

    title: Optional[str] = Field(default=None, min_length=1)
    description: Optional[str] = None
    is_public: Optional[bool] = None
    is_active: Optional[bool] = None
    responsible_team_id: Optional[str] = Field(default=None, description="Owning team, empty string clears")
    schema_: Optional[Dict[str, Any]] = Field(default=None, alias="schema", description="SurveyJS schema")
    theme: Optional[Dict[str, Any]] = Field(default=None, description="SurveyJS theme")
    edit_form_permissions: Optional[str] = Field(default=None, description="JsonLogic rule gating edits")
    review_form_permissions: Optional[str] = Field(default=None, description="JsonLogic rule gating review")
    team_ids: Optional[List[str]] = Field(default=None, description="Assigned teams")


class FormResponse(BaseModel):
    """Form details."""

    id: str
    title: str
    description: str
    is_public: bool
    is_active: bool
    schema_: Optional[Dict[str, Any]] = Field(default=None, serialization_alias="schema")
    theme: Optional[Dict[str, Any]] = None
    responsible_team: Optional[TeamRef] = None
    teams: List[TeamRef] = []
    edit_form_permissions: str
    review_form_permissions: str
    n8n_bindings: List[N8nBindingResponse] = []


class SubmissionData(BaseModel):
    """Answers of a submission."""

    data: Optional[Dict[str, Any]] = Field(default=None, description="Form answers (opaque JSON)")


class SubmissionDecision(BaseModel):
    """Reviewer decision on a submission under review."""

    status: SubmissionStatus = Field(description="ongoing (send back), rejected or completed")
    message: Optional[str] = Field(default=None, description="Reviewer notes")


class SubmissionResponse(BaseModel):
    """One submission."""

    id: str
    form_id: str
    form_title: str
    submitted_by_id: Optional[str] = None
    status: str
    status_label: str
    data: Dict[str, Any] = {}
    review_notes: Optional[str] = None
    rejected_notes: Optional[str] = None
    completed_notes: Optional[str] = None
    is_archived: bool
    submitted_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
