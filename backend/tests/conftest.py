"""Shared pytest fixtures for the process portal test suite.

Provides:
- In-memory async SQLite database, fresh schema per test
- AsyncSession bound to it
- FastAPI test client (httpx.AsyncClient) wired to the same database
- A recording webhook dispatcher double
- Users, teams and a small workflow (auth helpers with JWT tokens)

Data fixtures commit and then expunge, so services under test load
everything fresh through their own queries.
"""

import os
from typing import AsyncGenerator
from unittest.mock import AsyncMock
from uuid import uuid4

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession

# Override settings BEFORE any app imports
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("SECRET_KEY", "test-secret-key-not-for-production")
os.environ.setdefault("ENVIRONMENT", "testing")
os.environ.setdefault("LOG_FORMAT", "text")
os.environ.setdefault("N8N_URL", "http://n8n.test")
os.environ.setdefault("N8N_WEBHOOK_API_KEY", "test-api-key")

from core.constants import UserRole  # noqa: E402
from core.permission_context import Principal  # noqa: E402
from core.security import create_access_token  # noqa: E402
from core.webhooks import WebhookDispatcher, get_webhook_dispatcher  # noqa: E402
from db.base import Base  # noqa: E402
from db.database import create_db_engine, create_session_factory  # noqa: E402


# ---------------------------------------------------------------------------
# Database fixtures
# ---------------------------------------------------------------------------

@pytest_asyncio.fixture
async def db_engine():
    """Fresh in-memory database per test."""
    engine = create_db_engine("sqlite+aiosqlite:///:memory:")
    import db.models  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest_asyncio.fixture
async def db_session(db_engine) -> AsyncGenerator[AsyncSession, None]:
    """Provide a DB session; services commit through it."""
    async with create_session_factory(db_engine)() as session:
        yield session


@pytest.fixture
def dispatcher() -> AsyncMock:
    """Webhook dispatcher double recording every dispatch call."""
    mock = AsyncMock(spec=WebhookDispatcher)
    mock.dispatch.return_value = []
    return mock


def dispatched(dispatcher) -> list[tuple[list[str], dict]]:
    """Dispatch calls that actually had targets, as (ids, context)."""
    calls = []
    for call in dispatcher.dispatch.await_args_list:
        ids, context = call.args
        ids = list(ids)
        if ids:
            calls.append((ids, context))
    return calls


# ---------------------------------------------------------------------------
# App / HTTP client fixtures
# ---------------------------------------------------------------------------

@pytest_asyncio.fixture
async def app(db_engine, dispatcher):
    """Create a FastAPI app instance wired to the test database."""
    import db.database as db_mod
    original_engine = db_mod.engine
    original_session = db_mod.AsyncSessionLocal

    db_mod.engine = db_engine
    db_mod.AsyncSessionLocal = create_session_factory(db_engine)

    from app.main import create_app
    test_app = create_app()
    test_app.dependency_overrides[get_webhook_dispatcher] = lambda: dispatcher

    yield test_app

    # Restore originals
    db_mod.engine = original_engine
    db_mod.AsyncSessionLocal = original_session


@pytest_asyncio.fixture
async def client(app) -> AsyncGenerator[AsyncClient, None]:
    """Async HTTP test client."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test", follow_redirects=True) as ac:
        yield ac


# ---------------------------------------------------------------------------
# Test data fixtures
# ---------------------------------------------------------------------------

async def make_user(session: AsyncSession, role: UserRole = UserRole.USER, teams=(), name: str = "Test User"):
    """Create and commit a user."""
    from db.models.user import User

    user = User(
        name=name,
        email=f"{role.value}-{uuid4().hex[:8]}@example.com",
        role=role.value,
        teams=list(teams),
    )
    session.add(user)
    await session.commit()
    session.expunge_all()
    return user


@pytest_asyncio.fixture
async def team(db_session):
    """The 'Personal' team."""
    from db.models.team import Team

    team = Team(name="Personal", contact_email="personal@example.com", members=[])
    db_session.add(team)
    await db_session.commit()
    db_session.expunge_all()
    return team


@pytest_asyncio.fixture
async def admin_user(db_session):
    return await make_user(db_session, UserRole.ADMIN, name="Admin")


@pytest_asyncio.fixture
async def moderator_user(db_session):
    return await make_user(db_session, UserRole.MODERATOR, name="Moderator")


@pytest_asyncio.fixture
async def member_user(db_session, team):
    """Plain user in the 'Personal' team."""
    return await make_user(db_session, UserRole.USER, teams=[team], name="Member")


@pytest_asyncio.fixture
async def outsider_user(db_session):
    """Plain user without teams."""
    return await make_user(db_session, UserRole.USER, name="Outsider")


@pytest.fixture
def admin(admin_user) -> Principal:
    return Principal.from_user(admin_user)


@pytest.fixture
def moderator(moderator_user) -> Principal:
    return Principal.from_user(moderator_user)


@pytest.fixture
def member(member_user) -> Principal:
    return Principal.from_user(member_user)


@pytest.fixture
def outsider(outsider_user) -> Principal:
    return Principal.from_user(outsider_user)


def auth_headers_for(user) -> dict:
    """Generate Authorization headers with a valid JWT token."""
    token = create_access_token(user_id=user.id, email=user.email)
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def admin_headers(admin_user) -> dict:
    return auth_headers_for(admin_user)


@pytest.fixture
def member_headers(member_user) -> dict:
    return auth_headers_for(member_user)


@pytest.fixture
def outsider_headers(outsider_user) -> dict:
    return auth_headers_for(outsider_user)


MEMBER_RULE = '{"in": ["Personal", {"var": "user.teams"}]}'


@pytest_asyncio.fixture
async def workflow(db_session, team):
    """Active workflow with two processes where P2 depends on P1.

    Submit rules allow members of 'Personal'; viewing is allowed to the
    same team.
    """
    from db.models.process import Process
    from db.models.workflow import Workflow

    wf = Workflow(
        name="Onboarding",
        description="",
        is_active=True,
        is_public=False,
        teams=[team],
        edit_workflow_permissions="true",
        submit_process_permissions=MEMBER_RULE,
        information=[{"label": "Name", "fieldKey": "name"}],
        n8n_bindings=[],
    )
    db_session.add(wf)
    await db_session.flush()

    p1 = Process(
        workflow_id=wf.id, name="P1", description="", order=0, is_category=False,
        submit_process_permissions=MEMBER_RULE, view_process_permissions=MEMBER_RULE,
        reset_process_permissions=MEMBER_RULE, edit_process_permissions="{}",
        teams=[], dependencies=[], n8n_bindings=[],
    )
    p2 = Process(
        workflow_id=wf.id, name="P2", description="", order=1, is_category=False,
        submit_process_permissions=MEMBER_RULE, view_process_permissions=MEMBER_RULE,
        reset_process_permissions=MEMBER_RULE, edit_process_permissions="{}",
        teams=[], dependencies=[p1], n8n_bindings=[],
    )
    db_session.add_all([p1, p2])
    await db_session.commit()
    db_session.expunge_all()
    return wf


@pytest_asyncio.fixture
async def processes(db_session, workflow):
    """(P1, P2) of the workflow fixture."""
    from sqlalchemy import select
    from db.models.process import Process

    result = await db_session.execute(
        select(Process).where(Process.workflow_id == workflow.id).order_by(Process.order)
    )
    p1, p2 = result.scalars().all()
    return p1, p2
