"""
kvtx -- Multi-item transactions over single-item conditional writes.

Optimistic locking, a lock/apply/unlock/rollback transaction participant,
an update-expression algebra, and storage adapters (in-memory and SQLModel).

Quick start::

    from kvtx import (
        InMemoryStorageAdapter, ItemRef, Transaction, TransactionConfig,
        TransactionParticipant, TxOperation, WriteParams,
    )

    storage = InMemoryStorageAdapter()
    config = TransactionConfig()
    storage.define_table("Accounts", ["id"])
    storage.define_table(config.image_table_name, config.image_key_attributes)

    tx = Transaction(id="tx-1")
    participant = TransactionParticipant(
        storage, tx, ItemRef(storage, "Accounts", {"id": "a-1"}),
        TxOperation.PUT, WriteParams(item={"balance": 100}),
    )
    await participant.lock()
    await participant.apply()
    await participant.unlock()
"""
__version__ = "0.1.0"

# Exceptions
from kvtx._exceptions import (
    StorageError,
    TableNotFoundError,
    ExpressionError,
    ConditionCheckFailedError,
    ReservedAttributeError,
    TransactionError,
    LockContentionError,
    UnsupportedOperationError,
    InternalConsistencyError,
    TransactionStateError,
)

# Base & configuration
from kvtx.base import SQLModelBase
from kvtx.config import (
    Transaction,
    TransactionConfig,
    VERSION_ATTRIBUTE,
    TX_ATTRIBUTES,
)

# Update-expression algebra
from kvtx.expression import (
    ExpressionAttributes,
    parse_update_expression,
    stringify_update_expression,
    compose_update_expressions,
    define_expression_attributes,
    merge_expression_attributes,
)

# Core
from kvtx.item_ref import ItemRef
from kvtx.optimistic_lock import OptimisticLock
from kvtx.participant import (
    TransactionParticipant,
    TxOperation,
    TxItemState,
    WriteParams,
    image_id_for,
)

# Storage
from kvtx.storage import (
    StorageAdapter,
    BaseStorageAdapter,
    InMemoryStorageAdapter,
    SQLModelStorageAdapter,
)
