"""
Typed data access shared by the engine's repositories.

Repositories never commit; the command that opened the session owns the
transaction. Aggregates (xp, currency, counters) are changed with
`update_where` and a column expression so concurrent commands never
read-modify-write them, and a guarded UPDATE that matches no row reports 0.

    class ProgressionRepository(BaseRepository[ProgressionRecord]):
        async def for_participant(self, session, participant_id):
            return await self.find_many_where(
                session, ProgressionRecord.participant_id == participant_id
            )
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Generic, List, Optional, Sequence, Type, TypeVar

from sqlalchemy import delete, func, select, update

if TYPE_CHECKING:
    from logging import Logger

    from sqlalchemy import ColumnElement, Select
    from sqlalchemy.ext.asyncio import AsyncSession

T = TypeVar("T")


class BaseRepository(Generic[T]):
    def __init__(self, model_class: Type[T], logger: Logger) -> None:
        self.model_class = model_class
        self.log = logger

    def _trace(self, action: str, **fields: Any) -> None:
        name = self.model_class.__name__
        self.log.debug(f"{name}.{action}", extra={"model": name, **fields})

    def _select(
        self,
        conditions: Sequence[ColumnElement[bool]],
        *,
        order_by: Optional[Sequence[Any]] = None,
        for_update: bool = False,
        limit: Optional[int] = None,
    ) -> Select[Any]:
        stmt = select(self.model_class).where(*conditions)
        if order_by:
            stmt = stmt.order_by(*order_by)
        if for_update:
            stmt = stmt.with_for_update()
        if limit is not None:
            stmt = stmt.limit(limit)
        return stmt

    async def get(self, session: AsyncSession, id_value: Any, *, for_update: bool = False) -> Optional[T]:
        stmt = self._select([self.model_class.id == id_value], for_update=for_update)  # type: ignore[attr-defined]
        instance = (await session.execute(stmt)).scalar_one_or_none()
        self._trace("get", id=id_value, found=instance is not None, locked=for_update)
        return instance

    async def get_for_update(self, session: AsyncSession, id_value: Any) -> Optional[T]:
        """Primary-key lookup holding a row lock until the transaction ends."""
        return await self.get(session, id_value, for_update=True)

    async def find_one_where(
        self,
        session: AsyncSession,
        *conditions: ColumnElement[bool],
        for_update: bool = False,
    ) -> Optional[T]:
        stmt = self._select(conditions, for_update=for_update)
        return (await session.execute(stmt)).scalar_one_or_none()

    async def find_many_where(
        self,
        session: AsyncSession,
        *conditions: ColumnElement[bool],
        order_by: Optional[Sequence[Any]] = None,
        for_update: bool = False,
        limit: Optional[int] = None,
    ) -> List[T]:
        stmt = self._select(conditions, order_by=order_by, for_update=for_update, limit=limit)
        rows = list((await session.execute(stmt)).scalars().all())
        self._trace("find_many_where", found_count=len(rows), limit=limit)
        return rows

    async def count(self, session: AsyncSession, *conditions: ColumnElement[bool]) -> int:
        stmt = select(func.count()).select_from(self.model_class).where(*conditions)
        return int((await session.execute(stmt)).scalar_one())

    async def exists(self, session: AsyncSession, *conditions: ColumnElement[bool]) -> bool:
        return await self.count(session, *conditions) > 0

    async def update_where(
        self,
        session: AsyncSession,
        *conditions: ColumnElement[bool],
        values: dict[str, Any],
    ) -> int:
        """Set-based UPDATE; values may be expressions such as `Participant.xp + 10`."""
        stmt = (
            update(self.model_class)
            .where(*conditions)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        affected = int((await session.execute(stmt)).rowcount or 0)
        self._trace("update_where", columns=sorted(values), affected=affected)
        return affected

    async def delete_where(self, session: AsyncSession, *conditions: ColumnElement[bool]) -> int:
        stmt = delete(self.model_class).where(*conditions).execution_options(synchronize_session=False)
        removed = int((await session.execute(stmt)).rowcount or 0)
        self._trace("delete_where", removed=removed)
        return removed

    def add(self, session: AsyncSession, instance: T) -> T:
        session.add(instance)
        return instance

    def add_many(self, session: AsyncSession, instances: Sequence[T]) -> List[T]:
        session.add_all(instances)
        self._trace("add_many", count=len(instances))
        return list(instances)

    async def flush(self, session: AsyncSession) -> None:
        await session.flush()
