"""
Unit tests for the PostgreSQL persistence layer (asyncpg mocked).
"""

import asyncio
import pytest
from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock, patch

import asyncpg

from shared.errors import AuditWriteError, StoreUnavailableError
from service_dedup.app.persistence.postgres import PostgreSQLPersistence, nest_filters
from service_dedup.app.rules.models import MatchRule, MatchLog, MatchLogic, UserAction


def make_pool(conn):
    pool = MagicMock()
    pool.acquire.return_value.__aenter__.return_value = conn
    pool.acquire.return_value.__aexit__.return_value = False
    pool.close = AsyncMock()
    return pool


def rule_row(**overrides):
    row = {
        "rule_id": "rule-1",
        "tenant_id": "tenant-1",
        "entity_type": "leads",
        "name": "Email Match",
        "description": None,
        "field_groups": [["email"]],
        "match_logic": "OR",
        "is_active": True,
        "priority": 10,
        "created_at": datetime(2024, 1, 15, tzinfo=timezone.utc),
        "updated_at": datetime(2024, 1, 15, tzinfo=timezone.utc),
    }
    row.update(overrides)
    return row


class TestNestFilters:
    """Test cases for nest_filters."""

    def test_flat_and_nested_paths(self):
        assert nest_filters({"company": "Acme", "address.city": "Austin", "address.zip": "78701"}) == {
            "company": "Acme",
            "address": {"city": "Austin", "zip": "78701"},
        }


class TestPostgreSQLPersistence:
    """Test cases for PostgreSQLPersistence."""

    @pytest.fixture
    def conn(self):
        conn = AsyncMock()
        conn.fetch = AsyncMock(return_value=[])
        conn.fetchrow = AsyncMock(return_value=None)
        conn.execute = AsyncMock(return_value="INSERT 0 1")
        return conn

    @pytest.fixture
    def persistence(self, conn):
        persistence = PostgreSQLPersistence("postgres://localhost:5432/records")
        persistence.pool = make_pool(conn)
        return persistence

    @pytest.mark.asyncio
    async def test_start_failure_raises_store_unavailable(self):
        persistence = PostgreSQLPersistence("postgres://nowhere:5432/records")

        with patch("asyncpg.create_pool", AsyncMock(side_effect=OSError("connection refused"))):
            with pytest.raises(StoreUnavailableError):
                await persistence.start()

    @pytest.mark.asyncio
    async def test_start_creates_tables(self, conn):
        persistence = PostgreSQLPersistence("postgres://localhost:5432/records")

        with patch("asyncpg.create_pool", AsyncMock(return_value=make_pool(conn))):
            await persistence.start()

        statements = " ".join(call.args[0] for call in conn.execute.await_args_list)
        assert "CREATE TABLE IF NOT EXISTS duplicate_rules" in statements
        assert "CREATE TABLE IF NOT EXISTS match_logs" in statements
        assert "CREATE TABLE IF NOT EXISTS leads" in statements

    @pytest.mark.asyncio
    async def test_not_started_is_unavailable(self):
        persistence = PostgreSQLPersistence("postgres://localhost:5432/records")

        with pytest.raises(StoreUnavailableError):
            await persistence.list_active_rules_by_priority("tenant-1", "leads")

    @pytest.mark.asyncio
    async def test_list_active_rules_orders_in_sql(self, persistence, conn):
        conn.fetch.return_value = [rule_row(), rule_row(rule_id="rule-2", priority=5, match_logic="AND")]

        rules = await persistence.list_active_rules_by_priority("tenant-1", "leads")

        sql, tenant_id, entity_type = conn.fetch.await_args.args
        assert "is_active = TRUE" in sql
        assert "ORDER BY priority DESC, created_at ASC, rule_id ASC" in sql
        assert (tenant_id, entity_type) == ("tenant-1", "leads")
        assert [r.rule_id for r in rules] == ["rule-1", "rule-2"]
        assert rules[0].match_logic == MatchLogic.ANY
        assert rules[1].match_logic == MatchLogic.ALL

    @pytest.mark.asyncio
    async def test_connection_errors_become_store_unavailable(self, persistence, conn):
        conn.fetch.side_effect = asyncpg.PostgresConnectionError("gone")

        with pytest.raises(StoreUnavailableError):
            await persistence.list_active_rules_by_priority("tenant-1", "leads")

    @pytest.mark.asyncio
    async def test_save_rule(self, persistence, conn):
        rule = MatchRule("rule-1", "tenant-1", "leads", "Email Match", [["email"]], priority=10)

        saved = await persistence.save_rule(rule)

        assert saved is rule
        args = conn.execute.await_args.args
        assert "ON CONFLICT (rule_id) DO UPDATE" in args[0]
        assert args[6] == [["email"]]
        assert args[7] == "ANY"

    @pytest.mark.asyncio
    async def test_get_rule_missing(self, persistence):
        assert await persistence.get_rule("missing") is None

    @pytest.mark.asyncio
    async def test_delete_rule(self, persistence, conn):
        conn.execute.return_value = "DELETE 1"
        assert await persistence.delete_rule("rule-1") is True

        conn.execute.return_value = "DELETE 0"
        assert await persistence.delete_rule("rule-1") is False

    @pytest.mark.asyncio
    async def test_query_equal_uses_jsonb_containment(self, persistence, conn):
        conn.fetch.return_value = [{"id": "acc-1", "data": {"company": "Acme", "address": {"city": "Austin"}}}]

        records = await persistence.query_equal("tenant-1", "accounts", {"company": "Acme", "address.city": "Austin"})

        sql, tenant_id, containment = conn.fetch.await_args.args
        assert "FROM accounts" in sql
        assert "data @> $2::jsonb" in sql
        assert tenant_id == "tenant-1"
        assert containment == {"company": "Acme", "address": {"city": "Austin"}}
        assert records == [{"id": "acc-1", "company": "Acme", "address": {"city": "Austin"}}]

    @pytest.mark.asyncio
    async def test_list_all_is_tenant_scoped(self, persistence, conn):
        conn.fetch.return_value = [{"id": "lead-1", "data": {"email": "a@b.com"}}]

        records = await persistence.list_all("tenant-1", "leads")

        sql, tenant_id = conn.fetch.await_args.args
        assert "FROM leads" in sql and "WHERE tenant_id = $1" in sql
        assert tenant_id == "tenant-1"
        assert records == [{"id": "lead-1", "email": "a@b.com"}]

    @pytest.mark.asyncio
    async def test_unknown_entity_type_returns_nothing(self, persistence, conn):
        assert await persistence.list_all("tenant-1", "widgets") == []
        assert await persistence.query_equal("tenant-1", "widgets", {"a": 1}) == []
        conn.fetch.assert_not_called()

    @pytest.mark.asyncio
    async def test_append_match_log(self, persistence, conn):
        entry = MatchLog(
            log_id="log-1", tenant_id="tenant-1", entity_type="leads",
            candidate_record_id="new-1", matched_record_id="lead-1",
            matched_fields={"email": "a@b.com"}, user_action=UserAction.VIEWED,
            actioned_at=datetime.now(timezone.utc)
        )

        await persistence.append(entry)

        args = conn.execute.await_args.args
        assert "INSERT INTO match_logs" in args[0]
        assert args[1] == "log-1"
        assert args[10] == "viewed"

    @pytest.mark.asyncio
    async def test_append_failure_is_audit_write_error(self, persistence, conn):
        conn.execute.side_effect = OSError("broken pipe")
        entry = MatchLog("log-1", "tenant-1", "leads", "new-1", "lead-1")

        with pytest.raises(AuditWriteError):
            await persistence.append(entry)

    @pytest.mark.asyncio
    async def test_command_timeout_is_audit_write_error(self, persistence, conn):
        conn.execute.side_effect = asyncio.TimeoutError()
        entry = MatchLog("log-1", "tenant-1", "leads", "new-1", "lead-1")

        with pytest.raises(AuditWriteError):
            await persistence.append(entry)

    @pytest.mark.asyncio
    async def test_command_timeout_is_store_unavailable(self, persistence, conn):
        conn.fetch.side_effect = asyncio.TimeoutError()

        with pytest.raises(StoreUnavailableError):
            await persistence.query_equal("tenant-1", "leads", {"email": "a@b.com"})

    @pytest.mark.asyncio
    async def test_health_check(self, persistence, conn):
        conn.fetchval = AsyncMock(return_value=1)
        assert await persistence.health_check() is True

        conn.fetchval.side_effect = OSError("down")
        assert await persistence.health_check() is False
