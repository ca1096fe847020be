"""
Unit tests for the in-memory stores.
"""

import pytest

from service_dedup.app.persistence.memory import InMemoryRecordStore
from service_dedup.app.persistence.postgres import nest_filters


class TestInMemoryRecordStore:
    """Test cases for InMemoryRecordStore."""

    @pytest.fixture
    def store(self):
        store = InMemoryRecordStore()
        store.add_record("tenant-1", "accounts", {"id": "acc-1", "address": {"city": "Austin"}})
        store.add_record("tenant-1", "accounts", {"id": "acc-2", "address.city": "Austin"})
        store.add_record("tenant-2", "accounts", {"id": "acc-3", "address": {"city": "Austin"}})
        return store

    @pytest.mark.asyncio
    async def test_query_equal_follows_nested_paths_only(self, store):
        records = await store.query_equal("tenant-1", "accounts", {"address.city": "Austin"})

        assert [r["id"] for r in records] == ["acc-1"]

    @pytest.mark.asyncio
    async def test_query_equal_agrees_with_jsonb_containment(self, store):
        filters = {"address.city": "Austin"}
        containment = nest_filters(filters)

        records = await store.query_equal("tenant-1", "accounts", filters)

        # Every returned record contains the nested document PostgreSQL would match on
        assert all(r["address"] == containment["address"] for r in records)

    def test_records_need_an_id(self, store):
        with pytest.raises(ValueError):
            store.add_record("tenant-1", "accounts", {"name": "Acme"})
