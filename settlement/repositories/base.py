"""
Base repository.

Generic CRUD operations for all repositories.
"""

from collections.abc import Iterable
from typing import Any, Generic, TypeVar

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from settlement.models.base import Base

# Generic type for model
ModelType = TypeVar("ModelType", bound=Base)


class BaseRepository(Generic[ModelType]):
    """
    Base repository with generic CRUD operations.

    Provides async database operations for any SQLAlchemy model.

    Type Parameters:
        ModelType: SQLAlchemy model class

    Example:
        class DepositRepository(BaseRepository[Deposit]):
            def __init__(self, session: AsyncSession):
                super().__init__(Deposit, session)
    """

    def __init__(
        self, model: type[ModelType], session: AsyncSession
    ) -> None:
        """
        Initialize repository.

        Args:
            model: SQLAlchemy model class
            session: Async database session
        """
        self.model = model
        self.session = session

    async def get_by_id(self, id: int) -> ModelType | None:
        """
        Get entity by ID.

        Args:
            id: Entity ID

        Returns:
            Entity or None if not found
        """
        return await self.session.get(self.model, id)

    async def get_for_update(self, id: int) -> ModelType | None:
        """
        Get entity by ID with a row lock (SELECT ... FOR UPDATE).

        The identity map copy is refreshed so callers see committed state.
        """
        stmt = (
            select(self.model)
            .where(self.model.id == id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def reload(self, id: int) -> ModelType | None:
        """Re-read an entity, overwriting any stale identity map copy."""
        return await self.session.get(self.model, id, populate_existing=True)

    async def get_by(
        self, **filters: Any
    ) -> ModelType | None:
        """
        Get single entity by filters.

        Args:
            **filters: Column filters

        Returns:
            First matching entity or None
        """
        stmt = select(self.model).filter_by(**filters)
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def find_all(
        self,
        limit: int | None = None,
        offset: int | None = None,
        **filters: Any,
    ) -> list[ModelType]:
        """
        Find all entities matching filters.

        Args:
            limit: Max number of results
            offset: Number of results to skip
            **filters: Column filters

        Returns:
            List of matching entities
        """
        stmt = select(self.model).filter_by(**filters).order_by(self.model.id)

        if offset:
            stmt = stmt.offset(offset)
        if limit:
            stmt = stmt.limit(limit)

        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def create(self, **data: Any) -> ModelType:
        """
        Create new entity.

        Args:
            **data: Entity data

        Returns:
            Created entity
        """
        entity = self.model(**data)
        self.session.add(entity)
        await self.session.flush()
        await self.session.refresh(entity)
        return entity

    async def update(
        self, id: int, for_update: bool = False, **data: Any
    ) -> ModelType | None:
        """
        Update entity by ID.

        Args:
            id: Entity ID
            for_update: Use SELECT FOR UPDATE to lock row (prevents race conditions)
            **data: Updated data

        Returns:
            Updated entity or None if not found
        """
        if for_update:
            entity = await self.get_for_update(id)
        else:
            entity = await self.get_by_id(id)

        if not entity:
            return None

        for key, value in data.items():
            setattr(entity, key, value)

        await self.session.flush()
        await self.session.refresh(entity)
        return entity

    async def compare_and_set_status(
        self,
        id: int,
        expected: Iterable[str],
        target: str,
        **values: Any,
    ) -> bool:
        """
        Atomically move an entity to ``target`` if it is in ``expected``.

        Issues ``UPDATE ... WHERE id = :id AND status IN (:expected)`` so
        exactly one of several concurrent callers wins.

        Args:
            id: Entity ID
            expected: Statuses the row must currently have
            target: New status
            **values: Extra columns written in the same statement

        Returns:
            True if this call performed the transition
        """
        stmt = (
            update(self.model)
            .where(
                self.model.id == id,
                self.model.status.in_([str(s) for s in expected]),
            )
            .values(status=str(target), **values)
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        changed = result.rowcount == 1
        if changed:
            await self.reload(id)
        return changed

    async def count(self, **filters: Any) -> int:
        """
        Count entities matching filters.

        Args:
            **filters: Column filters

        Returns:
            Count of matching entities
        """
        stmt = select(func.count()).select_from(self.model)

        if filters:
            stmt = stmt.filter_by(**filters)

        result = await self.session.execute(stmt)
        return result.scalar() or 0

    def _dialect_insert(self):
        """
        Dialect-specific ``insert`` supporting ON CONFLICT.

        Returns:
            ``insert`` construct factory for the bound dialect
        """
        dialect = self.session.get_bind().dialect.name
        if dialect == "postgresql":
            from sqlalchemy.dialects.postgresql import insert
        elif dialect == "sqlite":
            from sqlalchemy.dialects.sqlite import insert
        else:
            raise NotImplementedError(f"ON CONFLICT not supported for {dialect}")
        return insert

    async def insert_ignore(
        self, conflict_columns: list[str], **data: Any
    ) -> int | None:
        """
        Insert a row unless it violates the given unique columns.

        Args:
            conflict_columns: Columns of the unique constraint
            **data: Row data

        Returns:
            New row ID, or None if the row already existed
        """
        insert = self._dialect_insert()
        stmt = (
            insert(self.model)
            .values(**data)
            .on_conflict_do_nothing(index_elements=conflict_columns)
            .returning(self.model.id)
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()
