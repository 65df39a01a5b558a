"""
Shared behaviour of the bundled storage adapters.

``BaseStorageAdapter`` implements the full :class:`~kvtx.storage.StorageAdapter`
contract on top of two primitives a backend provides:

- ``_read(table_name, key)`` returns the stored item or None
- ``_swap(table_name, key, mutate)`` atomically replaces the stored item with
  ``mutate(current)``; returning None from ``mutate`` deletes the item

Condition checks and update expressions run inside ``mutate``, so they are
evaluated against exactly the state being replaced.
"""
import abc
import copy
import logging
from typing import Any, Callable, Iterable

from kvtx._exceptions import ConditionCheckFailedError, ExpressionError, TableNotFoundError
from kvtx.storage._evaluator import apply_update, evaluate_condition
from kvtx.storage.protocol import ReturnValues

logger = logging.getLogger(__name__)

Mutation = Callable[[dict[str, Any] | None], dict[str, Any] | None]

_MISSING = object()


class BaseStorageAdapter(abc.ABC):
    """
    Abstract adapter with key-schema registry and expression semantics.

    Tables must be declared with :meth:`define_table` before use.
    """

    def __init__(self) -> None:
        self._key_schemas: dict[str, tuple[str, ...]] = {}

    def define_table(self, table_name: str, key_attributes: Iterable[str]) -> None:
        """
        Declare a table and its primary key attributes.

        :param table_name: Table name
        :param key_attributes: Names of the attributes forming the primary key
        :raises ValueError: No key attributes given
        """
        key_attributes = tuple(key_attributes)
        if not key_attributes:
            raise ValueError(f"Table '{table_name}' needs at least one key attribute")
        self._key_schemas[table_name] = key_attributes

    def key_attributes(self, table_name: str) -> tuple[str, ...]:
        """Key attributes of a defined table."""
        try:
            return self._key_schemas[table_name]
        except KeyError:
            raise TableNotFoundError(table_name) from None

    @abc.abstractmethod
    async def _read(self, table_name: str, key: dict[str, Any]) -> dict[str, Any] | None:
        """Return a copy of the stored item, or None."""

    @abc.abstractmethod
    async def _swap(
            self,
            table_name: str,
            key: dict[str, Any],
            mutate: Mutation,
    ) -> tuple[dict[str, Any] | None, dict[str, Any] | None]:
        """
        Atomically replace the stored item with ``mutate(current)``.

        :returns: (previous item, new item)
        :raises ConditionCheckFailedError: ``mutate`` rejected the current state,
            or the item changed concurrently
        """

    async def get(
            self,
            table_name: str,
            key: dict[str, Any],
            *,
            consistent_read: bool = False,
    ) -> dict[str, Any] | None:
        key = self._validate_key(table_name, key)
        return await self._read(table_name, key)

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
        self._check_return_values('put', return_values, ('NONE', 'ALL_OLD'))
        key = self._extract_key(table_name, item)
        new_item = copy.deepcopy(item)

        def mutate(current: dict[str, Any] | None) -> dict[str, Any]:
            self._check_condition(table_name, key, current, condition_expression, attribute_names, attribute_values)
            return new_item

        previous, _ = await self._swap(table_name, key, mutate)
        return _project(return_values, previous, new_item)

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
        self._check_return_values(
            'update', return_values, ('NONE', 'ALL_OLD', 'UPDATED_OLD', 'ALL_NEW', 'UPDATED_NEW'),
        )
        key = self._validate_key(table_name, key)

        def mutate(current: dict[str, Any] | None) -> dict[str, Any]:
            self._check_condition(table_name, key, current, condition_expression, attribute_names, attribute_values)
            base = current if current is not None else dict(key)
            updated = apply_update(update_expression, base, attribute_names, attribute_values)
            for name, value in key.items():
                if updated.get(name, _MISSING) != value:
                    raise ExpressionError(f"Cannot update key attribute '{name}'")
            return updated

        previous, updated = await self._swap(table_name, key, mutate)
        return _project(return_values, previous, updated)

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
        self._check_return_values('delete', return_values, ('NONE', 'ALL_OLD'))
        key = self._validate_key(table_name, key)

        def mutate(current: dict[str, Any] | None) -> None:
            self._check_condition(table_name, key, current, condition_expression, attribute_names, attribute_values)
            return None

        previous, _ = await self._swap(table_name, key, mutate)
        return _project(return_values, previous, None)

    def _validate_key(self, table_name: str, key: dict[str, Any]) -> dict[str, Any]:
        key_attributes = self.key_attributes(table_name)
        if set(key) != set(key_attributes):
            raise ExpressionError(
                f"Key {sorted(key)} does not match the key schema {list(key_attributes)} of table '{table_name}'"
            )
        return {name: key[name] for name in key_attributes}

    def _extract_key(self, table_name: str, item: dict[str, Any]) -> dict[str, Any]:
        key_attributes = self.key_attributes(table_name)
        missing = [name for name in key_attributes if name not in item]
        if missing:
            raise ExpressionError(f"Item is missing key attribute(s) {missing} of table '{table_name}'")
        return {name: item[name] for name in key_attributes}

    @staticmethod
    def _check_condition(
            table_name: str,
            key: dict[str, Any],
            current: dict[str, Any] | None,
            condition_expression: str | None,
            attribute_names: dict[str, str] | None,
            attribute_values: dict[str, Any] | None,
    ) -> None:
        if not condition_expression:
            return
        if not evaluate_condition(condition_expression, current, attribute_names, attribute_values):
            logger.debug(f"Conditional write rejected on {table_name} {key}: {condition_expression}")
            raise ConditionCheckFailedError(
                table_name=table_name,
                key=key,
                condition_expression=condition_expression,
            )

    @staticmethod
    def _check_return_values(operation: str, return_values: str, allowed: tuple[str, ...]) -> None:
        if return_values not in allowed:
            raise ExpressionError(f"return_values={return_values!r} is not valid for {operation}; use one of {allowed}")


def _project(
        return_values: str,
        previous: dict[str, Any] | None,
        current: dict[str, Any] | None,
) -> dict[str, Any] | None:
    """Select the attributes a write returns."""
    if return_values == 'NONE':
        return None
    if return_values == 'ALL_OLD':
        return copy.deepcopy(previous)
    if return_values == 'ALL_NEW':
        return copy.deepcopy(current)

    previous = previous or {}
    current = current or {}
    changed = {
        name for name in previous.keys() | current.keys()
        if previous.get(name, _MISSING) != current.get(name, _MISSING)
    }
    source = previous if return_values == 'UPDATED_OLD' else current
    projected = {name: copy.deepcopy(source[name]) for name in changed if name in source}
    return projected or None
