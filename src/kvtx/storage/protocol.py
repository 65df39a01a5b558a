"""
Storage adapter protocol.

The transaction core talks to the store only through this interface. Any
client that speaks to a document store with single-item conditional writes
can implement it; :mod:`kvtx.storage.memory` and :mod:`kvtx.storage.sql`
are the bundled implementations.
"""
from typing import Any, Literal, Protocol, runtime_checkable

ReturnValues = Literal['NONE', 'ALL_OLD', 'UPDATED_OLD', 'ALL_NEW', 'UPDATED_NEW']
"""Which item image a write returns."""


@runtime_checkable
class StorageAdapter(Protocol):
    """
    Table/key addressed item store with atomic conditional writes.

    Every write is all-or-nothing. When ``condition_expression`` does not hold
    against the stored item the write is rejected with
    :class:`~kvtx.ConditionCheckFailedError` and nothing changes.
    """

    async def get(
            self,
            table_name: str,
            key: dict[str, Any],
            *,
            consistent_read: bool = False,
    ) -> dict[str, Any] | None:
        """
        Read an item.

        :param table_name: Table to read from
        :param key: Primary key attributes
        :param consistent_read: Request a strongly consistent read
        :returns: The item, or None when absent
        """
        ...

    async def put(
            self,
            table_name: str,
            item: dict[str, Any],
            *,
            condition_expression: str | None = None,
            attribute_names: dict[str, str] | None = None,
            attribute_values: dict[str, Any] | None = None,
            return_values: ReturnValues = 'NONE',
    ) -> dict[str, Any] | None:
        """
        Create or fully replace an item.

        :returns: The previous item for ``ALL_OLD``, otherwise None
        """
        ...

    async def update(
            self,
            table_name: str,
            key: dict[str, Any],
            *,
            update_expression: str,
            condition_expression: str | None = None,
            attribute_names: dict[str, str] | None = None,
            attribute_values: dict[str, Any] | None = None,
            return_values: ReturnValues = 'NONE',
    ) -> dict[str, Any] | None:
        """
        Modify an item in place, creating it when absent.

        :returns: Attributes selected by ``return_values``
        """
        ...

    async def delete(
            self,
            table_name: str,
            key: dict[str, Any],
            *,
            condition_expression: str | None = None,
            attribute_names: dict[str, str] | None = None,
            attribute_values: dict[str, Any] | None = None,
            return_values: ReturnValues = 'NONE',
    ) -> dict[str, Any] | None:
        """
        Delete an item.

        :returns: The deleted item for ``ALL_OLD``, otherwise None
        """
        ...
