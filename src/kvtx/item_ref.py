"""Item reference: a (table, key) pair bound to a storage adapter."""
from typing import Any

from kvtx.storage.protocol import ReturnValues, StorageAdapter


class ItemRef:
    """
    Address of one item.

    ``table_name`` and ``key`` are read-only. ``put`` always writes the key
    attributes over the supplied item, so an item cannot be moved to another
    key through its reference.
    """

    def __init__(self, storage: StorageAdapter, table_name: str, key: dict[str, Any]):
        self._storage = storage
        self._table_name = table_name
        self._key = dict(key)

    @property
    def storage(self) -> StorageAdapter:
        return self._storage

    @property
    def table_name(self) -> str:
        return self._table_name

    @property
    def key(self) -> dict[str, Any]:
        return dict(self._key)

    def __repr__(self) -> str:
        return f"ItemRef(table_name={self._table_name!r}, key={self._key!r})"

    async def get(self, *, consistent_read: bool = False) -> dict[str, Any] | None:
        return await self._storage.get(self._table_name, self.key, consistent_read=consistent_read)

    async def put(
            self,
            item: dict[str, Any] | None = None,
            *,
            condition_expression: str | None = None,
            attribute_names: dict[str, str] | None = None,
            attribute_values: dict[str, Any] | None = None,
            return_values: ReturnValues = 'NONE',
    ) -> dict[str, Any] | None:
        return await self._storage.put(
            self._table_name,
            {**(item or {}), **self._key},
            condition_expression=condition_expression,
            attribute_names=attribute_names,
            attribute_values=attribute_values,
            return_values=return_values,
        )

    async def update(
            self,
            update_expression: str,
            *,
            condition_expression: str | None = None,
            attribute_names: dict[str, str] | None = None,
            attribute_values: dict[str, Any] | None = None,
            return_values: ReturnValues = 'NONE',
    ) -> dict[str, Any] | None:
        return await self._storage.update(
            self._table_name,
            self.key,
            update_expression=update_expression,
            condition_expression=condition_expression,
            attribute_names=attribute_names,
            attribute_values=attribute_values,
            return_values=return_values,
        )

    async def delete(
            self,
            *,
            condition_expression: str | None = None,
            attribute_names: dict[str, str] | None = None,
            attribute_values: dict[str, Any] | None = None,
            return_values: ReturnValues = 'NONE',
    ) -> dict[str, Any] | None:
        return await self._storage.delete(
            self._table_name,
            self.key,
            condition_expression=condition_expression,
            attribute_names=attribute_names,
            attribute_values=attribute_values,
            return_values=return_values,
        )
