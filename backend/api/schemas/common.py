"""Common schemas used across the API."""

from pydantic import BaseModel, Field
from typing import Optional


class MessageResponse(BaseModel):
    """Simple message response."""

    message: str = Field(description="Human-readable (German) confirmation")
    id: Optional[str] = Field(default=None, description="ID of the affected record, if any")


class ErrorResponse(BaseModel):
    """Standard error response."""

    detail: str = Field(description="Human-readable error message")
    request_id: Optional[str] = Field(default=None, description="Request ID for log correlation")


class TeamRef(BaseModel):
    """Compact team reference."""

    id: str = Field(description="Team ID")
    name: str = Field(description="Team name")

    class Config:
        from_attributes = True


class N8nBindingResponse(BaseModel):
    """An n8n workflow bound to one lifecycle event."""

    n8n_workflow_id: str = Field(description="Registry row ID")
    workflow_id: str = Field(description="n8n's own workflow ID")
    name: str = Field(description="n8n workflow name")
    event: str = Field(description="Event bucket")


class N8nBindingRequest(BaseModel):
    """Connect or disconnect an n8n workflow for one event."""

    n8n_workflow_id: str = Field(description="Registry row ID")
    event: str = Field(description="Event bucket")


def team_ref(team) -> Optional[TeamRef]:
    return TeamRef(id=team.id, name=team.name) if team is not None else None


def binding_responses(bindings) -> list[N8nBindingResponse]:
    return [
        N8nBindingResponse(
            n8n_workflow_id=b.n8n_workflow_id,
            workflow_id=b.n8n_workflow.workflow_id,
            name=b.n8n_workflow.name,
            event=b.event,
        )
        for b in bindings
    ]
