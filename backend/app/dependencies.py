"""FastAPI dependency injection functions."""

import logging

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from core.permission_context import Principal
from core.security import TokenPayload, get_current_user
from db import database

logger = logging.getLogger(__name__)


async def get_db() -> AsyncSession:
    """
    Provide a database session for API endpoints.

    Yields an async SQLAlchemy session that is automatically
    committed on success or rolled back on error.
    """
    async with database.AsyncSessionLocal() as session:
        try:
            yield session
            await session.commit()
        except Exception as e:
            logger.error("Database session rolled back: %s", e)
            await session.rollback()
            raise


async def get_current_principal(
    current_user: TokenPayload = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> Principal:
    """
    Resolve the token subject to the requesting principal.

    Raises:
        UnauthorizedError: If the user no longer exists
    """
    from services.user_service import UserService

    return await UserService(db).load_principal(current_user.sub)
