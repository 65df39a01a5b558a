"""
kvtx.storage -- Storage adapter protocol and bundled adapters.

Re-exports the protocol, the in-memory adapter, the SQL adapter and the
expression evaluator they share.
"""
from .protocol import StorageAdapter, ReturnValues
from .base import BaseStorageAdapter
from .memory import InMemoryStorageAdapter
from .sql import SQLModelStorageAdapter, StoredItem
from ._evaluator import evaluate_condition, apply_update
