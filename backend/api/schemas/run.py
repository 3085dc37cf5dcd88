"""Workflow run schemas."""

from pydantic import BaseModel, Field
from datetime import datetime
from typing import Any, Dict, List, Optional


class RunInitialize(BaseModel):
    """Request to start a workflow run."""

    workflow_id: str = Field(description="Workflow to run")
    data: Optional[Dict[str, Any]] = Field(default=None, description="Answers for the initialize process")


class ProcessRunData(BaseModel):
    """Answers of one process run."""

    data: Optional[Dict[str, Any]] = Field(default=None, description="Form answers (opaque JSON)")


class ProcessRunReset(BaseModel):
    """Reason for reopening a completed process run."""

    reset_text: Optional[str] = Field(default=None, description="Shown to the next editor")


class RunArchive(BaseModel):
    """Archive note."""

    message: Optional[str] = Field(default=None, description="Archive note")


class ProcessRunResponse(BaseModel):
    """One process run."""

    id: str = Field(description="Process run ID")
    process_id: str = Field(description="Process ID")
    process_name: str = Field(description="Process name")
    position: int = Field(description="Depth-first position in the process tree")
    status: str = Field(description="open, ongoing or completed")
    data: Dict[str, Any] = Field(default={}, description="Form answers")
    reset_process_text: Optional[str] = Field(default=None, description="Reason of the last reset")
    completed_at: Optional[datetime] = None


class RunResponse(BaseModel):
    """Workflow run with its process runs."""

    id: str = Field(description="Workflow run ID")
    workflow_id: str = Field(description="Workflow ID")
    workflow_name: str = Field(description="Workflow name")
    status: str = Field(description="open, ongoing, completed or archived")
    status_label: str = Field(description="German status label")
    is_archived: bool = Field(description="Archive flag")
    archived_notes: Optional[str] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    information: Dict[str, Any] = Field(default={}, description="Summary values by label")
    process_runs: List[ProcessRunResponse] = Field(default=[], description="Process runs in tree order")
    tree: Optional[List[Dict[str, Any]]] = Field(default=None, description="Process tree with runs attached")
