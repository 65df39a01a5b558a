"""
Optimistic Lock

Turns plain item reads and writes into version-checked conditional writes.

Principle:
1. Each item carries a ``_version`` attribute; absent means 0
2. ``get()`` caches the version this lock instance has observed
3. Every write is sent with the condition
   ``(#_version = :_previous_version OR attribute_not_exists(#_version))``
   and sets ``_version`` to the cached version + 1
4. If another writer changed the item since it was read, the store rejects
   the write with ``ConditionCheckFailedError``

The cache belongs to one lock instance. Two actors working on the same item
must each hold their own ``OptimisticLock`` so each detects the other's writes.
Nothing is retried: after a conflict, call ``get()`` again and resubmit.

Usage::

    lock = OptimisticLock(ItemRef(storage, "Orders", {"id": "o-1"}))
    await lock.get()
    try:
        await lock.update("SET #status = :paid", attribute_names={"#status": "status"},
                          attribute_values={":paid": "paid"})
    except ConditionCheckFailedError:
        logger.warning("Order changed concurrently")
"""
import logging
from typing import Any

from kvtx._exceptions import ConditionCheckFailedError, ReservedAttributeError
from kvtx.config import (
    NEXT_VERSION_PLACEHOLDER,
    PREVIOUS_VERSION_PLACEHOLDER,
    RESERVED_PLACEHOLDERS,
    VERSION_ATTRIBUTE,
    VERSION_NAME_PLACEHOLDER,
)
from kvtx.expression import compose_update_expressions
from kvtx.item_ref import ItemRef
from kvtx.storage.protocol import ReturnValues

logger = logging.getLogger(__name__)

VERSION_CONDITION = (
    f"({VERSION_NAME_PLACEHOLDER} = {PREVIOUS_VERSION_PLACEHOLDER} "
    f"OR attribute_not_exists({VERSION_NAME_PLACEHOLDER}))"
)
VERSION_UPDATE = f"SET {VERSION_NAME_PLACEHOLDER} = {NEXT_VERSION_PLACEHOLDER}"


def _read_version(item: dict[str, Any] | None) -> int:
    if not item or item.get(VERSION_ATTRIBUTE) is None:
        return 0
    return int(item[VERSION_ATTRIBUTE])


class OptimisticLock:
    """
    Version-conditioned access to one item.

    Attributes:
        item_ref: The locked item's reference
        version: Last observed version, None until first read or after delete
    """

    def __init__(self, item_ref: ItemRef):
        self._item_ref = item_ref
        self._version: int | None = None

    @property
    def item_ref(self) -> ItemRef:
        return self._item_ref

    @property
    def version(self) -> int | None:
        return self._version

    def __repr__(self) -> str:
        return f"OptimisticLock({self._item_ref!r}, version={self._version!r})"

    async def get(self) -> dict[str, Any] | None:
        """
        Strongly consistent read that refreshes the cached version.

        An absent item, or one written without versioning, caches version 0.

        :returns: The item as read, or None when absent
        """
        item = await self._item_ref.get(consistent_read=True)
        self._version = _read_version(item)
        return item

    async def put(
            self,
            item: dict[str, Any] | None = None,
            *,
            condition_expression: str | None = None,
            attribute_names: dict[str, str] | None = None,
            attribute_values: dict[str, Any] | None = None,
            return_values: ReturnValues = 'NONE',
    ) -> dict[str, Any] | None:
        """
        Create or replace the item if its version is unchanged.

        :param item: New attributes (``_version`` is set by the lock)
        :param condition_expression: Extra condition ANDed with the version check
        :param attribute_names: Placeholders used by ``condition_expression``
        :param attribute_values: Placeholders used by ``condition_expression``
        :param return_values: ``NONE`` or ``ALL_OLD``
        :raises ConditionCheckFailedError: Version or caller condition did not hold
        :raises ReservedAttributeError: ``item`` sets ``_version`` or a reserved placeholder is used
        """
        item = item or {}
        if VERSION_ATTRIBUTE in item:
            raise ReservedAttributeError([VERSION_ATTRIBUTE])

        await self._ensure_version()
        expression, names, values = self._condition(condition_expression, attribute_names, attribute_values)

        try:
            result = await self._item_ref.put(
                {**item, VERSION_ATTRIBUTE: self._version + 1},
                condition_expression=expression,
                attribute_names=names,
                attribute_values=values,
                return_values=return_values,
            )
        except ConditionCheckFailedError:
            logger.debug(f"Stale version {self._version} on put of {self._item_ref!r}")
            raise
        self._version += 1
        return result

    async def restore(
            self,
            snapshot: dict[str, Any],
            *,
            return_values: ReturnValues = 'NONE',
    ) -> dict[str, Any] | None:
        """
        Overwrite the item with a snapshot taken earlier, version included.

        The write is conditioned on the cached version like any other write,
        but stores the snapshot's own ``_version`` instead of incrementing it,
        so readers that observed the snapshot remain current.

        :param snapshot: Complete item as previously read
        :raises ConditionCheckFailedError: Item changed since last observed
        """
        await self._ensure_version()
        expression, names, values = self._condition(None, None, None)

        try:
            result = await self._item_ref.put(
                snapshot,
                condition_expression=expression,
                attribute_names=names,
                attribute_values=values,
                return_values=return_values,
            )
        except ConditionCheckFailedError:
            logger.debug(f"Stale version {self._version} on restore of {self._item_ref!r}")
            raise
        self._version = _read_version(snapshot)
        return result

    async def update(
            self,
            update_expression: str = '',
            *,
            condition_expression: str | None = None,
            attribute_names: dict[str, str] | None = None,
            attribute_values: dict[str, Any] | None = None,
            return_values: ReturnValues = 'NONE',
    ) -> dict[str, Any] | None:
        """
        Modify the item in place if its version is unchanged.

        ``SET #_version = :_next_version`` is composed into the caller's
        expression so the bump and the mutation apply atomically.

        :param update_expression: Caller's update expression (may be empty)
        :raises ConditionCheckFailedError: Version or caller condition did not hold
        """
        await self._ensure_version()
        expression, names, values = self._condition(condition_expression, attribute_names, attribute_values)
        values[NEXT_VERSION_PLACEHOLDER] = self._version + 1

        try:
            result = await self._item_ref.update(
                compose_update_expressions(update_expression, VERSION_UPDATE),
                condition_expression=expression,
                attribute_names=names,
                attribute_values=values,
                return_values=return_values,
            )
        except ConditionCheckFailedError:
            logger.debug(f"Stale version {self._version} on update of {self._item_ref!r}")
            raise
        self._version += 1
        return result

    async def delete(
            self,
            *,
            condition_expression: str | None = None,
            attribute_names: dict[str, str] | None = None,
            attribute_values: dict[str, Any] | None = None,
            return_values: ReturnValues = 'NONE',
    ) -> dict[str, Any] | None:
        """
        Delete the item if its version is unchanged.

        The cached version is cleared; the next write through this lock
        re-reads the item first.

        :raises ConditionCheckFailedError: Version or caller condition did not hold
        """
        await self._ensure_version()
        expression, names, values = self._condition(condition_expression, attribute_names, attribute_values)

        try:
            result = await self._item_ref.delete(
                condition_expression=expression,
                attribute_names=names,
                attribute_values=values,
                return_values=return_values,
            )
        except ConditionCheckFailedError:
            logger.debug(f"Stale version {self._version} on delete of {self._item_ref!r}")
            raise
        self._version = None
        return result

    async def _ensure_version(self) -> None:
        if self._version is None:
            await self.get()

    def _condition(
            self,
            condition_expression: str | None,
            attribute_names: dict[str, str] | None,
            attribute_values: dict[str, Any] | None,
    ) -> tuple[str, dict[str, str], dict[str, Any]]:
        """Build the version condition ANDed with the caller's condition."""
        attribute_names = attribute_names or {}
        attribute_values = attribute_values or {}
        clashes = RESERVED_PLACEHOLDERS & (attribute_names.keys() | attribute_values.keys())
        if clashes:
            raise ReservedAttributeError(clashes)

        expression = VERSION_CONDITION
        if condition_expression:
            expression += f" AND ({condition_expression})"
        names = {**attribute_names, VERSION_NAME_PLACEHOLDER: VERSION_ATTRIBUTE}
        values = {**attribute_values, PREVIOUS_VERSION_PLACEHOLDER: self._version}
        return expression, names, values
