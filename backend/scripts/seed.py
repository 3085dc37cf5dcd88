"""Database seed script: creates a team, an admin user and a demo workflow.

Prints a bearer token for the admin so the API can be used without an
identity provider during development.

Run: python -m scripts.seed
"""

import asyncio
import sys
import os

# Ensure project root is in path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))


async def seed():
    """Seed the database with default data."""
    from db.database import init_db
    from db.database import AsyncSessionLocal
    from db.models.process import Process
    from db.models.team import Team
    from db.models.user import User
    from db.models.workflow import Workflow
    from core.constants import RULE_ALLOW_ALL, UserRole
    from core.security import create_access_token
    from sqlalchemy import select

    # Initialize DB tables
    await init_db()

    async with AsyncSessionLocal() as db:
        # 1. Default team
        team_name = os.environ.get("SEED_TEAM", "Personal")
        result = await db.execute(select(Team).where(Team.name == team_name))
        team = result.scalar_one_or_none()

        if not team:
            team = Team(name=team_name, contact_email=None)
            db.add(team)
            await db.flush()
            print(f"[seed] Created team: {team.name} ({team.id})")
        else:
            print(f"[seed] Team exists: {team.name}")

        # 2. Admin user
        admin_email = os.environ.get("ADMIN_EMAIL", "admin@prozessportal.local")

        result = await db.execute(
            select(User).where(User.email == admin_email)
        )
        admin_user = result.scalar_one_or_none()

        if not admin_user:
            admin_user = User(
                email=admin_email,
                name="Admin",
                role=UserRole.ADMIN.value,
                teams=[team],
            )
            db.add(admin_user)
            await db.flush()
            print(f"[seed] Created admin user: {admin_email}")
        else:
            print(f"[seed] Admin user exists: {admin_email}")

        # 3. Demo workflow: two steps, the second depends on the first
        result = await db.execute(select(Workflow).where(Workflow.name == "Onboarding"))
        workflow = result.scalar_one_or_none()

        if not workflow:
            member_rule = '{"in": ["%s", {"var": "user.teams"}]}' % team.name
            workflow = Workflow(
                name="Onboarding",
                description="Neue Mitarbeitende einarbeiten",
                is_active=True,
                is_public=False,
                teams=[team],
                edit_workflow_permissions=RULE_ALLOW_ALL,
                submit_process_permissions=member_rule,
                information=[{"label": "Name", "fieldKey": "name"}],
            )
            db.add(workflow)
            await db.flush()

            rules = dict(
                submit_process_permissions=member_rule,
                view_process_permissions=member_rule,
                reset_process_permissions=member_rule,
                edit_process_permissions=RULE_ALLOW_ALL,
            )
            stammdaten = Process(workflow_id=workflow.id, name="Stammdaten", order=0, **rules)
            db.add(stammdaten)
            await db.flush()
            db.add(Process(
                workflow_id=workflow.id,
                name="Zugänge einrichten",
                order=1,
                dependencies=[stammdaten],
                **rules,
            ))
            workflow.initialize_process_id = stammdaten.id
            print(f"[seed] Created workflow: {workflow.name} ({workflow.id})")
        else:
            print(f"[seed] Workflow exists: {workflow.name}")

        await db.commit()

        token = create_access_token(user_id=admin_user.id, email=admin_user.email)
        print("[seed] Database seeded successfully!")
        print(f"[seed] Admin token: {token}")


if __name__ == "__main__":
    asyncio.run(seed())
