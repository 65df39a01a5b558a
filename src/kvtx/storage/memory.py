"""
In-memory storage adapter.

Items live in process memory, one dict per table. Reads and writes are
atomic within an asyncio event loop because a conditional write evaluates and
stores the new item without awaiting in between.

Usage::

    adapter = InMemoryStorageAdapter()
    adapter.define_table("Orders", ["id"])
    await adapter.put("Orders", {"id": "o-1", "status": "pending"})
"""
import copy
from typing import Any

from kvtx._utils import canonical_key
from kvtx.storage.base import BaseStorageAdapter, Mutation


class InMemoryStorageAdapter(BaseStorageAdapter):
    """Dict-backed storage adapter, for tests and single-process use."""

    def __init__(self) -> None:
        super().__init__()
        self._tables: dict[str, dict[str, dict[str, Any]]] = {}

    def _rows(self, table_name: str) -> dict[str, dict[str, Any]]:
        self.key_attributes(table_name)
        return self._tables.setdefault(table_name, {})

    def items(self, table_name: str) -> list[dict[str, Any]]:
        """Snapshot of every item stored in a table."""
        return [copy.deepcopy(item) for item in self._rows(table_name).values()]

    async def _read(self, table_name: str, key: dict[str, Any]) -> dict[str, Any] | None:
        item = self._rows(table_name).get(canonical_key(key))
        return copy.deepcopy(item) if item is not None else None

    async def _swap(
            self,
            table_name: str,
            key: dict[str, Any],
            mutate: Mutation,
    ) -> tuple[dict[str, Any] | None, dict[str, Any] | None]:
        rows = self._rows(table_name)
        slot = canonical_key(key)
        previous = rows.get(slot)
        current = mutate(copy.deepcopy(previous) if previous is not None else None)

        if current is None:
            rows.pop(slot, None)
        else:
            rows[slot] = copy.deepcopy(current)
        return previous, current
