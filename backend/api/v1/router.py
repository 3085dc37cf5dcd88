"""API v1 aggregated router.

All v1 endpoints are registered here and mounted under /api/v1 in main.py.
This makes it trivial to add /api/v2 later without touching existing routes.
"""

from fastapi import APIRouter

from api.routes import (
    health,
    forms,
    n8n_workflows,
    processes,
    runs,
    teams,
    users,
    workflows,
)

api_v1_router = APIRouter()

# Health (no auth required)
api_v1_router.include_router(
    health.router,
    tags=["Health"],
)

# Workflow definitions
api_v1_router.include_router(
    workflows.router,
    prefix="/workflows",
    tags=["Workflows"],
)

# Process designer
api_v1_router.include_router(
    processes.router,
    prefix="/processes",
    tags=["Processes"],
)

# Workflow runs
api_v1_router.include_router(
    runs.router,
    prefix="/runs",
    tags=["Runs"],
)

# Forms and submissions
api_v1_router.include_router(
    forms.router,
    prefix="/forms",
    tags=["Forms"],
)
api_v1_router.include_router(
    forms.submissions_router,
    prefix="/submissions",
    tags=["Submissions"],
)

# Administration
api_v1_router.include_router(
    teams.router,
    prefix="/teams",
    tags=["Teams"],
)
api_v1_router.include_router(
    n8n_workflows.router,
    prefix="/n8n-workflows",
    tags=["N8n"],
)
api_v1_router.include_router(
    users.router,
    prefix="/users",
    tags=["Users"],
)
