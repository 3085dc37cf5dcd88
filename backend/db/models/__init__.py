"""Database models for the process portal.

This module imports all models to ensure they are registered
with SQLAlchemy's declarative base.
"""

from db.models.user import User
from db.models.team import Team, user_teams, workflow_teams, process_teams, form_teams
from db.models.n8n_workflow import (
    N8nWorkflow,
    WorkflowN8nBinding,
    ProcessN8nBinding,
    FormN8nBinding,
)
from db.models.workflow import Workflow
from db.models.process import Process, process_dependencies
from db.models.run import WorkflowRun, ProcessRun
from db.models.form import Form, FormSubmission

__all__ = [
    "User",
    "Team",
    "user_teams",
    "workflow_teams",
    "process_teams",
    "form_teams",
    "N8nWorkflow",
    "WorkflowN8nBinding",
    "ProcessN8nBinding",
    "FormN8nBinding",
    "Workflow",
    "Process",
    "process_dependencies",
    "WorkflowRun",
    "ProcessRun",
    "Form",
    "FormSubmission",
]
