"""
Pytest configuration and shared fixtures for kvtx tests.

The ``storage`` fixture is parametrized so that every test using it runs
against both the in-memory adapter and the SQLModel adapter (aiosqlite).
"""
from __future__ import annotations

import uuid
from collections.abc import AsyncGenerator

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.pool import StaticPool

from kvtx import (
    BaseStorageAdapter,
    InMemoryStorageAdapter,
    ItemRef,
    SQLModelStorageAdapter,
    Transaction,
    TransactionConfig,
)

TABLE_NAME = "Test"


@pytest.fixture
def config() -> TransactionConfig:
    """Default transaction configuration."""
    return TransactionConfig()


@pytest_asyncio.fixture(params=["memory", "sql"])
async def storage(request, config: TransactionConfig) -> AsyncGenerator[BaseStorageAdapter, None]:
    """Storage adapter with the test table and the image table defined.

    Yields:
        An in-memory or SQLite-backed adapter.
    """
    engine = None
    if request.param == "memory":
        adapter: BaseStorageAdapter = InMemoryStorageAdapter()
    else:
        engine = create_async_engine("sqlite+aiosqlite:///:memory:", poolclass=StaticPool)
        adapter = SQLModelStorageAdapter(engine)
        await adapter.create_tables()

    adapter.define_table(TABLE_NAME, ["id"])
    adapter.define_table(config.image_table_name, config.image_key_attributes)

    yield adapter

    if engine is not None:
        await engine.dispose()


@pytest.fixture
def test_item() -> dict:
    """A fresh item with a unique id."""
    return {"id": str(uuid.uuid4()), "foo": "bar"}


@pytest.fixture
def make_item_ref(storage: BaseStorageAdapter):
    """Factory for references to items of the test table.

    Returns:
        Callable taking an optional item id (random when omitted).
    """
    def _make(item_id: str | None = None) -> ItemRef:
        return ItemRef(storage, TABLE_NAME, {"id": item_id or str(uuid.uuid4())})

    return _make


@pytest.fixture
def make_tx():
    """Factory for transactions with unique ids."""
    def _make() -> Transaction:
        return Transaction(id=str(uuid.uuid4()))

    return _make
