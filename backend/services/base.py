"""Base CRUD service with soft-delete aware queries.

All service classes inherit from this. Provides standard
create/read/update/delete; soft-deleted rows are hidden for models
that carry ``SoftDeleteMixin``.
"""

from typing import Any, Generic, Optional, Sequence, Type, TypeVar

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from core.exceptions import NotFoundError, ValidationError
from db.base import BaseModel

ModelType = TypeVar("ModelType", bound=BaseModel)


class BaseService(Generic[ModelType]):
    """Generic CRUD service for any SQLAlchemy model.

    Usage:
        class TeamService(BaseService[Team]):
            not_found_message = "Bereich nicht gefunden"

            def __init__(self, db: AsyncSession):
                super().__init__(Team, db)
    """

    not_found_message = "Nicht gefunden"

    def __init__(self, model: Type[ModelType], db: AsyncSession):
        self.model = model
        self.db = db

    @property
    def _soft_deletes(self) -> bool:
        return hasattr(self.model, "is_deleted")

    def _live(self, query):
        if self._soft_deletes:
            query = query.where(self.model.is_deleted == False)  # noqa: E712
        return query

    # ─── Read ──────────────────────────────────────────────

    async def get_by_id(
        self,
        id: str,
        include_deleted: bool = False,
    ) -> Optional[ModelType]:
        """Get a single record by ID."""
        query = select(self.model).where(self.model.id == id)
        if not include_deleted:
            query = self._live(query)
        result = await self.db.execute(query)
        return result.scalar_one_or_none()

    async def get_or_404(self, id: str) -> ModelType:
        """Get a live record or raise ``NotFoundError`` with the service's message."""
        instance = await self.get_by_id(id)
        if instance is None:
            raise NotFoundError(self.not_found_message)
        return instance

    async def list(
        self,
        offset: int = 0,
        limit: int = 50,
        order_by: str = "created_at",
        order_desc: bool = True,
        include_deleted: bool = False,
        filters: dict[str, Any] = None,
    ) -> tuple[Sequence[ModelType], int]:
        """List records with pagination, filtering, and sorting.

        Returns:
            Tuple of (items, total_count)
        """
        query = select(self.model)
        count_query = select(func.count()).select_from(self.model)

        if not include_deleted:
            query = self._live(query)
            count_query = self._live(count_query)

        if filters:
            for field, value in filters.items():
                if hasattr(self.model, field):
                    col = getattr(self.model, field)
                    if isinstance(value, list):
                        query = query.where(col.in_(value))
                        count_query = count_query.where(col.in_(value))
                    else:
                        query = query.where(col == value)
                        count_query = count_query.where(col == value)

        if hasattr(self.model, order_by):
            col = getattr(self.model, order_by)
            query = query.order_by(col.desc() if order_desc else col.asc())

        query = query.offset(offset).limit(limit)

        result = await self.db.execute(query)
        items = result.scalars().all()

        count_result = await self.db.execute(count_query)
        total = count_result.scalar() or 0

        return items, total

    # ─── Create ────────────────────────────────────────────

    async def create(self, data: dict[str, Any]) -> ModelType:
        """Create a new record.

        Args:
            data: Dict of field values

        Returns:
            Created model instance
        """
        instance = self.model(**data)
        self.db.add(instance)
        await self.db.flush()
        await self.db.refresh(instance)
        return instance

    # ─── Update ────────────────────────────────────────────

    async def update(self, id: str, data: dict[str, Any]) -> ModelType:
        """Update a record by ID.

        Args:
            id: Record UUID
            data: Dict of fields to update (None values are skipped)

        Returns:
            Updated model instance

        Raises:
            NotFoundError: If the record does not exist
        """
        instance = await self.get_or_404(id)
        for key, value in data.items():
            if value is not None and hasattr(instance, key):
                setattr(instance, key, value)
        await self.db.flush()
        return instance

    # ─── Delete ────────────────────────────────────────────

    async def soft_delete(self, id: str) -> ModelType:
        """Soft-delete a record (set is_deleted=True)."""
        instance = await self.get_or_404(id)
        instance.soft_delete()
        await self.db.flush()
        return instance

    async def hard_delete(self, id: str) -> None:
        """Permanently delete a record."""
        instance = await self.get_or_404(id)
        await self.db.delete(instance)
        await self.db.flush()


def parse_event(event_enum, value) -> str:
    """Coerce an event name into ``event_enum``'s value or raise ``ValidationError``."""
    try:
        return event_enum(value).value
    except ValueError:
        raise ValidationError("Ungültiges Ereignis")
