"""Exceptions for kvtx."""
from typing import Any


class StorageError(Exception):
    """Base exception raised by storage adapters."""
    pass


class TableNotFoundError(StorageError):
    """Raised when a table has not been defined on the storage adapter."""

    def __init__(self, table_name: str):
        self.table_name = table_name
        super().__init__(f"Table '{table_name}' is not defined")


class ExpressionError(StorageError, ValueError):
    """
    Malformed or unresolvable expression.

    Raised for syntax errors, unknown placeholders, type mismatches in
    update arithmetic, and attempts to modify key attributes.
    """
    pass


class ConditionCheckFailedError(StorageError):
    """
    A conditional write was rejected.

    The stored item no longer matches the stated precondition. Never retried
    by kvtx: re-read and resubmit if appropriate.

    Attributes:
        table_name: Table the write was addressed to
        key: Primary key of the item
        condition_expression: The condition that did not hold (if any)
    """

    def __init__(
            self,
            message: str = "The conditional request failed",
            table_name: str | None = None,
            key: dict[str, Any] | None = None,
            condition_expression: str | None = None,
    ):
        super().__init__(message)
        self.table_name = table_name
        self.key = key
        self.condition_expression = condition_expression


class ReservedAttributeError(ValueError):
    """
    Caller input touches an attribute or placeholder reserved by kvtx.

    Reserved names are ``_version``, the ``_tx_*`` family, and the
    placeholders ``#_version``, ``:_previous_version`` and ``:_next_version``.
    """

    def __init__(self, names: set[str] | list[str]):
        self.names = sorted(names)
        super().__init__(f"Reserved attribute(s) cannot be set by the caller: {', '.join(self.names)}")


class TransactionError(Exception):
    """
    Base exception for transaction participant failures.

    Attributes:
        tx_id: Transaction identifier
        table_name: Table of the participating item
        key: Primary key of the participating item
    """

    def __init__(
            self,
            message: str,
            tx_id: str | None = None,
            table_name: str | None = None,
            key: dict[str, Any] | None = None,
    ):
        super().__init__(message)
        self.tx_id = tx_id
        self.table_name = table_name
        self.key = key


class LockContentionError(TransactionError):
    """
    The item is already locked by a different transaction.

    Attributes:
        owner_tx_id: Transaction currently owning the item
    """

    def __init__(self, message: str, owner_tx_id: str | None = None, **kwargs: Any):
        super().__init__(message, **kwargs)
        self.owner_tx_id = owner_tx_id


class UnsupportedOperationError(TransactionError):
    """The requested operation kind cannot be applied."""
    pass


class InternalConsistencyError(TransactionError):
    """
    Persisted transaction state contradicts what the protocol expects.

    Raised when rollback cannot find the saved image, or when a transaction
    tries to lock an item it already owns.
    """
    pass


class TransactionStateError(TransactionError):
    """An operation was called from a participant state that does not allow it."""
    pass
