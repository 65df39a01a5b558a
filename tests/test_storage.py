"""Tests for the bundled storage adapters (run against both backends)."""

from decimal import Decimal

import pytest

from kvtx import (
    ConditionCheckFailedError,
    ExpressionError,
    InMemoryStorageAdapter,
    StorageAdapter,
    TableNotFoundError,
)
from kvtx.storage import StoredItem
from conftest import TABLE_NAME


class TestAdapterContract:
    """get/put/update/delete behaviour shared by every adapter."""

    @pytest.mark.asyncio
    async def test_satisfies_protocol(self, storage):
        assert isinstance(storage, StorageAdapter)

    @pytest.mark.asyncio
    async def test_put_then_get(self, storage, test_item):
        await storage.put(TABLE_NAME, test_item)

        assert await storage.get(TABLE_NAME, {"id": test_item["id"]}, consistent_read=True) == test_item

    @pytest.mark.asyncio
    async def test_get_absent_item(self, storage):
        assert await storage.get(TABLE_NAME, {"id": "absent"}) is None

    @pytest.mark.asyncio
    async def test_put_returns_old_item(self, storage, test_item):
        await storage.put(TABLE_NAME, test_item)

        old = await storage.put(TABLE_NAME, {**test_item, "foo": "baz"}, return_values="ALL_OLD")

        assert old == test_item

    @pytest.mark.asyncio
    async def test_put_condition_failure_leaves_item(self, storage, test_item):
        await storage.put(TABLE_NAME, test_item)

        with pytest.raises(ConditionCheckFailedError) as exc_info:
            await storage.put(
                TABLE_NAME,
                {**test_item, "foo": "baz"},
                condition_expression="attribute_not_exists(id)",
            )

        assert exc_info.value.table_name == TABLE_NAME
        assert exc_info.value.key == {"id": test_item["id"]}
        assert await storage.get(TABLE_NAME, {"id": test_item["id"]}) == test_item

    @pytest.mark.asyncio
    async def test_update_creates_absent_item(self, storage):
        new = await storage.update(
            TABLE_NAME,
            {"id": "fresh"},
            update_expression="SET foo = :foo",
            attribute_values={":foo": "bar"},
            return_values="ALL_NEW",
        )

        assert new == {"id": "fresh", "foo": "bar"}

    @pytest.mark.asyncio
    async def test_update_return_values(self, storage, test_item):
        await storage.put(TABLE_NAME, {**test_item, "n": 1})
        key = {"id": test_item["id"]}

        updated_old = await storage.update(
            TABLE_NAME, key,
            update_expression="SET n = n + :one",
            attribute_values={":one": 1},
            return_values="UPDATED_OLD",
        )
        updated_new = await storage.update(
            TABLE_NAME, key,
            update_expression="SET n = n + :one",
            attribute_values={":one": 1},
            return_values="UPDATED_NEW",
        )

        assert updated_old == {"n": 1}
        assert updated_new == {"n": 3}

    @pytest.mark.asyncio
    async def test_update_cannot_change_key(self, storage, test_item):
        await storage.put(TABLE_NAME, test_item)

        with pytest.raises(ExpressionError, match="key attribute"):
            await storage.update(
                TABLE_NAME,
                {"id": test_item["id"]},
                update_expression="SET id = :other",
                attribute_values={":other": "other"},
            )

    @pytest.mark.asyncio
    async def test_delete_returns_old_item(self, storage, test_item):
        await storage.put(TABLE_NAME, test_item)

        old = await storage.delete(TABLE_NAME, {"id": test_item["id"]}, return_values="ALL_OLD")

        assert old == test_item
        assert await storage.get(TABLE_NAME, {"id": test_item["id"]}) is None

    @pytest.mark.asyncio
    async def test_delete_condition_failure(self, storage, test_item):
        await storage.put(TABLE_NAME, test_item)

        with pytest.raises(ConditionCheckFailedError):
            await storage.delete(
                TABLE_NAME,
                {"id": test_item["id"]},
                condition_expression="foo = :foo",
                attribute_values={":foo": "other"},
            )

        assert await storage.get(TABLE_NAME, {"id": test_item["id"]}) == test_item

    @pytest.mark.asyncio
    async def test_invalid_return_values(self, storage, test_item):
        with pytest.raises(ExpressionError, match="return_values"):
            await storage.put(TABLE_NAME, test_item, return_values="ALL_NEW")

    @pytest.mark.asyncio
    async def test_unknown_table(self, storage):
        with pytest.raises(TableNotFoundError):
            await storage.get("Unknown", {"id": "x"})

    @pytest.mark.asyncio
    async def test_item_without_key(self, storage):
        with pytest.raises(ExpressionError, match="missing key"):
            await storage.put(TABLE_NAME, {"foo": "bar"})

    @pytest.mark.asyncio
    async def test_key_not_matching_schema(self, storage):
        with pytest.raises(ExpressionError, match="key schema"):
            await storage.get(TABLE_NAME, {"id": "x", "extra": 1})

    @pytest.mark.asyncio
    async def test_returned_items_are_copies(self, storage, test_item):
        await storage.put(TABLE_NAME, test_item)
        item = await storage.get(TABLE_NAME, {"id": test_item["id"]})

        item["foo"] = "mutated"

        assert (await storage.get(TABLE_NAME, {"id": test_item["id"]}))["foo"] == "bar"


class TestInMemoryStorageAdapter:
    """In-memory specific behaviour."""

    def test_define_table_requires_key(self):
        adapter = InMemoryStorageAdapter()

        with pytest.raises(ValueError):
            adapter.define_table("Empty", [])

    @pytest.mark.asyncio
    async def test_composite_key_order_does_not_matter(self):
        adapter = InMemoryStorageAdapter()
        adapter.define_table("Pairs", ["a", "b"])

        await adapter.put("Pairs", {"b": 2, "a": 1, "v": "x"})

        assert await adapter.get("Pairs", {"a": 1, "b": 2}) == {"a": 1, "b": 2, "v": "x"}
        assert adapter.items("Pairs") == [{"b": 2, "a": 1, "v": "x"}]

    @pytest.mark.asyncio
    async def test_numeric_and_binary_keys(self):
        adapter = InMemoryStorageAdapter()
        adapter.define_table("Orders", ["id"])

        await adapter.put("Orders", {"id": Decimal("7"), "v": "decimal"})
        await adapter.put("Orders", {"id": b"\x07", "v": "binary"})
        await adapter.put("Orders", {"id": "7", "v": "string"})

        assert (await adapter.get("Orders", {"id": Decimal("7.0")}))["v"] == "decimal"
        assert (await adapter.get("Orders", {"id": b"\x07"}))["v"] == "binary"
        assert (await adapter.get("Orders", {"id": "7"}))["v"] == "string"
        assert len(adapter.items("Orders")) == 3


class TestStoredItem:
    """Table declared through the ``table_name`` class keyword."""

    def test_table_name(self):
        assert StoredItem.__tablename__ == "kvtx_item"
        assert set(StoredItem.__table__.primary_key.columns.keys()) == {"table_name", "item_key"}
