"""
SQL storage adapter built on SQLModel async sessions.

All logical tables share one physical table, ``kvtx_item``, keyed by
(table name, canonical JSON of the item key). Item attributes are stored as a
JSON document, so values must be JSON compatible (no sets).

Every write is a compare-and-swap on the row's ``revision`` column::

    UPDATE kvtx_item SET attributes = ?, revision = revision + 1
    WHERE table_name = ? AND item_key = ? AND revision = ?

If another writer got there first the UPDATE affects 0 rows (or the INSERT
hits the primary key) and the write fails with ``ConditionCheckFailedError``,
exactly as if the caller's condition had not held.

Usage::

    engine = create_async_engine("sqlite+aiosqlite:///kv.db")
    adapter = SQLModelStorageAdapter(engine)
    await adapter.create_tables()
    adapter.define_table("Orders", ["id"])
"""
import copy
import logging
from typing import Any

from sqlalchemy import JSON, delete as sql_delete, update as sql_update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncEngine
from sqlmodel import Field, select
from sqlmodel.ext.asyncio.session import AsyncSession

from kvtx._exceptions import ConditionCheckFailedError
from kvtx._utils import canonical_key
from kvtx.base import SQLModelBase
from kvtx.storage.base import BaseStorageAdapter, Mutation

logger = logging.getLogger(__name__)


class StoredItem(SQLModelBase, table=True, table_name='kvtx_item'):
    """One item of one logical table."""

    table_name: str = Field(primary_key=True, max_length=255)
    """Logical table name."""

    item_key: str = Field(primary_key=True)
    """Canonical JSON encoding of the item's primary key."""

    attributes: dict[str, Any] = Field(default_factory=dict, sa_type=JSON)
    """Full item, key attributes included."""

    revision: int = 0
    """Row revision, incremented by every write; used for compare-and-swap."""


class SQLModelStorageAdapter(BaseStorageAdapter):
    """
    Storage adapter persisting items through SQLAlchemy.

    :param engine: Async engine (e.g. ``sqlite+aiosqlite`` or ``postgresql+asyncpg``)
    """

    def __init__(self, engine: AsyncEngine) -> None:
        super().__init__()
        self._engine = engine

    async def create_tables(self) -> None:
        """Create the ``kvtx_item`` table if it does not exist."""
        async with self._engine.begin() as connection:
            await connection.run_sync(
                lambda sync_connection: StoredItem.__table__.create(sync_connection, checkfirst=True)
            )

    def _session(self) -> AsyncSession:
        return AsyncSession(self._engine, expire_on_commit=False)

    @staticmethod
    def _where(table_name: str, item_key: str) -> tuple:
        return StoredItem.table_name == table_name, StoredItem.item_key == item_key

    async def _read(self, table_name: str, key: dict[str, Any]) -> dict[str, Any] | None:
        async with self._session() as session:
            row = (await session.exec(select(StoredItem).where(*self._where(table_name, canonical_key(key))))).first()
            return copy.deepcopy(row.attributes) if row is not None else None

    async def _swap(
            self,
            table_name: str,
            key: dict[str, Any],
            mutate: Mutation,
    ) -> tuple[dict[str, Any] | None, dict[str, Any] | None]:
        item_key = canonical_key(key)

        async with self._session() as session:
            row = (await session.exec(select(StoredItem).where(*self._where(table_name, item_key)))).first()
            previous = copy.deepcopy(row.attributes) if row is not None else None
            revision = row.revision if row is not None else None

            current = mutate(copy.deepcopy(previous) if previous is not None else None)

            if row is None:
                if current is None:
                    return previous, current
                session.add(StoredItem(table_name=table_name, item_key=item_key, attributes=current, revision=0))
                try:
                    await session.commit()
                except IntegrityError as e:
                    await session.rollback()
                    logger.debug(f"Concurrent create detected on {table_name} {key}")
                    raise ConditionCheckFailedError(
                        message="The conditional request failed: item was created concurrently",
                        table_name=table_name,
                        key=key,
                    ) from e
                return previous, current

            if current is None:
                statement = sql_delete(StoredItem).where(
                    *self._where(table_name, item_key),
                    StoredItem.revision == revision,
                )
            else:
                statement = sql_update(StoredItem).where(
                    *self._where(table_name, item_key),
                    StoredItem.revision == revision,
                ).values(attributes=current, revision=revision + 1)

            result = await session.execute(statement.execution_options(synchronize_session=False))
            if result.rowcount != 1:
                await session.rollback()
                logger.debug(f"Concurrent modification detected on {table_name} {key} at revision {revision}")
                raise ConditionCheckFailedError(
                    message="The conditional request failed: item was modified concurrently",
                    table_name=table_name,
                    key=key,
                )
            await session.commit()
            return previous, current
