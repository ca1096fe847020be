"""
PostgreSQL persistence layer for the Duplicate Detection Service.

One pool backs three roles: the rule store, the tenant record store and
the append-only match log. Connection-level failures surface as
StoreUnavailableError so callers can apply their fail-open policy.
"""

import asyncio
import json
from typing import Dict, Any, Optional, List

import asyncpg
from shared.logging import get_logger
from shared.errors import DedupException, StoreUnavailableError, AuditWriteError
from ..rules.entities import ENTITY_REGISTRY, get_table_name
from ..rules.models import MatchRule, MatchLog, MatchLogic


STORE_ERRORS = (asyncpg.PostgresError, asyncpg.InterfaceError, OSError, asyncio.TimeoutError)


def nest_filters(filters: Dict[str, Any]) -> Dict[str, Any]:
    """Turn {"address.city": "X"} into {"address": {"city": "X"}} for JSONB containment."""
    nested: Dict[str, Any] = {}
    for path, value in filters.items():
        parts = path.split(".")
        node = nested
        for part in parts[:-1]:
            node = node.setdefault(part, {})
        node[parts[-1]] = value
    return nested


class PostgreSQLPersistence:
    """PostgreSQL persistence layer for rules, records and match logs."""

    def __init__(self, dsn: str, command_timeout: float = 30):
        self.dsn = dsn
        self.command_timeout = command_timeout
        self.logger = get_logger("dedup.persistence.postgres")
        self.pool: Optional[asyncpg.Pool] = None

    async def start(self):
        """Start the persistence layer."""
        try:
            self.pool = await asyncpg.create_pool(
                self.dsn,
                min_size=2,
                max_size=10,
                command_timeout=self.command_timeout,
                init=self._init_connection
            )

            await self._create_tables()

            self.logger.info("PostgreSQL persistence started")

        except STORE_ERRORS as e:
            self.logger.error("Failed to start PostgreSQL persistence", error=str(e))
            raise StoreUnavailableError("postgres", str(e))

    async def stop(self):
        """Stop the persistence layer."""
        if self.pool:
            await self.pool.close()
            self.logger.info("PostgreSQL persistence stopped")

    async def _init_connection(self, conn):
        await conn.set_type_codec(
            "jsonb",
            encoder=json.dumps,
            decoder=json.loads,
            schema="pg_catalog"
        )

    def _require_pool(self) -> asyncpg.Pool:
        if self.pool is None:
            raise StoreUnavailableError("postgres", "Persistence not started")
        return self.pool

    async def _create_tables(self):
        """Create database tables."""
        async with self.pool.acquire() as conn:
            await conn.execute("""
                CREATE TABLE IF NOT EXISTS duplicate_rules (
                    rule_id VARCHAR(255) PRIMARY KEY,
                    tenant_id VARCHAR(255) NOT NULL,
                    entity_type VARCHAR(100) NOT NULL,
                    name VARCHAR(255) NOT NULL,
                    description TEXT,
                    field_groups JSONB NOT NULL DEFAULT '[]',
                    match_logic VARCHAR(10) NOT NULL DEFAULT 'ANY',
                    is_active BOOLEAN NOT NULL DEFAULT TRUE,
                    priority INTEGER NOT NULL DEFAULT 0,
                    created_at TIMESTAMP WITH TIME ZONE NOT NULL DEFAULT NOW(),
                    updated_at TIMESTAMP WITH TIME ZONE NOT NULL DEFAULT NOW()
                );
            """)
            await conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_duplicate_rules_lookup
                ON duplicate_rules(tenant_id, entity_type, is_active, priority DESC);
            """)

            await conn.execute("""
                CREATE TABLE IF NOT EXISTS match_logs (
                    log_id VARCHAR(255) PRIMARY KEY,
                    tenant_id VARCHAR(255) NOT NULL,
                    entity_type VARCHAR(100) NOT NULL,
                    candidate_record_id VARCHAR(255) NOT NULL,
                    matched_record_id VARCHAR(255) NOT NULL,
                    matched_fields JSONB NOT NULL DEFAULT '{}',
                    rule_id VARCHAR(255),
                    confidence_score DOUBLE PRECISION NOT NULL DEFAULT 1.0,
                    user_id VARCHAR(255),
                    user_action VARCHAR(32),
                    actioned_at TIMESTAMP WITH TIME ZONE,
                    created_at TIMESTAMP WITH TIME ZONE NOT NULL DEFAULT NOW()
                );
            """)
            await conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_match_logs_tenant ON match_logs(tenant_id, entity_type);
            """)

            for config in ENTITY_REGISTRY.values():
                await conn.execute(f"""
                    CREATE TABLE IF NOT EXISTS {config.table_name} (
                        id VARCHAR(255) PRIMARY KEY,
                        tenant_id VARCHAR(255) NOT NULL,
                        data JSONB NOT NULL DEFAULT '{{}}',
                        created_at TIMESTAMP WITH TIME ZONE NOT NULL DEFAULT NOW()
                    );
                """)
                await conn.execute(f"""
                    CREATE INDEX IF NOT EXISTS idx_{config.table_name}_data
                    ON {config.table_name} USING GIN (data jsonb_path_ops);
                """)

    # Rule store

    async def save_rule(self, rule: MatchRule) -> MatchRule:
        """Insert or update a rule."""
        try:
            async with self._require_pool().acquire() as conn:
                await conn.execute("""
                    INSERT INTO duplicate_rules (
                        rule_id, tenant_id, entity_type, name, description, field_groups,
                        match_logic, is_active, priority, created_at, updated_at
                    ) VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11)
                    ON CONFLICT (rule_id) DO UPDATE SET
                        name = EXCLUDED.name,
                        description = EXCLUDED.description,
                        field_groups = EXCLUDED.field_groups,
                        match_logic = EXCLUDED.match_logic,
                        is_active = EXCLUDED.is_active,
                        priority = EXCLUDED.priority,
                        updated_at = EXCLUDED.updated_at
                """,
                    rule.rule_id, rule.tenant_id, rule.entity_type, rule.name, rule.description,
                    rule.field_groups, rule.match_logic.value, rule.is_active, rule.priority,
                    rule.created_at, rule.updated_at
                )

                self.logger.info("Rule saved", rule_id=rule.rule_id, name=rule.name)
                return rule

        except STORE_ERRORS as e:
            self.logger.error("Error saving rule", rule_id=rule.rule_id, error=str(e))
            raise StoreUnavailableError("postgres", str(e))

    async def get_rule(self, rule_id: str) -> Optional[MatchRule]:
        """Load a rule by id."""
        try:
            async with self._require_pool().acquire() as conn:
                row = await conn.fetchrow("""
                    SELECT * FROM duplicate_rules WHERE rule_id = $1
                """, rule_id)

                return self._row_to_rule(row) if row else None

        except STORE_ERRORS as e:
            self.logger.error("Error loading rule", rule_id=rule_id, error=str(e))
            raise StoreUnavailableError("postgres", str(e))

    async def list_rules(self, tenant_id: str, entity_type: Optional[str] = None) -> List[MatchRule]:
        """Load every rule of a tenant, optionally for one entity type."""
        try:
            async with self._require_pool().acquire() as conn:
                rows = await conn.fetch("""
                    SELECT * FROM duplicate_rules
                    WHERE tenant_id = $1 AND ($2::text IS NULL OR entity_type = $2)
                    ORDER BY priority DESC, created_at ASC, rule_id ASC
                """, tenant_id, entity_type)

                return [self._row_to_rule(row) for row in rows]

        except STORE_ERRORS as e:
            self.logger.error("Error loading rules for tenant", tenant_id=tenant_id, error=str(e))
            raise StoreUnavailableError("postgres", str(e))

    async def list_active_rules_by_priority(self, tenant_id: str, entity_type: str) -> List[MatchRule]:
        """Load active rules for a tenant and entity type, highest priority first."""
        try:
            async with self._require_pool().acquire() as conn:
                rows = await conn.fetch("""
                    SELECT * FROM duplicate_rules
                    WHERE tenant_id = $1 AND entity_type = $2 AND is_active = TRUE
                    ORDER BY priority DESC, created_at ASC, rule_id ASC
                """, tenant_id, entity_type)

                return [self._row_to_rule(row) for row in rows]

        except STORE_ERRORS as e:
            self.logger.error(
                "Error loading active rules",
                tenant_id=tenant_id,
                entity_type=entity_type,
                error=str(e)
            )
            raise StoreUnavailableError("postgres", str(e))

    async def delete_rule(self, rule_id: str) -> bool:
        """Delete a rule."""
        try:
            async with self._require_pool().acquire() as conn:
                result = await conn.execute("""
                    DELETE FROM duplicate_rules WHERE rule_id = $1
                """, rule_id)

                if result == "DELETE 1":
                    self.logger.info("Rule deleted", rule_id=rule_id)
                    return True

                self.logger.warning("Rule not found for deletion", rule_id=rule_id)
                return False

        except STORE_ERRORS as e:
            self.logger.error("Error deleting rule", rule_id=rule_id, error=str(e))
            raise StoreUnavailableError("postgres", str(e))

    def _row_to_rule(self, row) -> MatchRule:
        """Convert database row to MatchRule."""
        return MatchRule(
            rule_id=row['rule_id'],
            tenant_id=row['tenant_id'],
            entity_type=row['entity_type'],
            name=row['name'],
            description=row['description'],
            field_groups=[list(group) for group in (row['field_groups'] or [])],
            match_logic=MatchLogic(row['match_logic']),
            is_active=row['is_active'],
            priority=row['priority'],
            created_at=row['created_at'],
            updated_at=row['updated_at']
        )

    # Record store

    async def list_all(self, tenant_id: str, entity_type: str) -> List[Dict[str, Any]]:
        """Every record of a tenant in one entity collection."""
        table = get_table_name(entity_type)
        if table is None:
            return []

        try:
            async with self._require_pool().acquire() as conn:
                rows = await conn.fetch(f"""
                    SELECT id, data FROM {table}
                    WHERE tenant_id = $1
                    ORDER BY created_at ASC, id ASC
                """, tenant_id)

                return [self._row_to_record(row) for row in rows]

        except STORE_ERRORS as e:
            self.logger.error("Error listing records", entity_type=entity_type, error=str(e))
            raise StoreUnavailableError("postgres", str(e))

    async def query_equal(
        self,
        tenant_id: str,
        entity_type: str,
        filters: Dict[str, Any]
    ) -> List[Dict[str, Any]]:
        """Records equal to every filter value, via JSONB containment on the GIN index."""
        table = get_table_name(entity_type)
        if table is None:
            return []

        try:
            async with self._require_pool().acquire() as conn:
                rows = await conn.fetch(f"""
                    SELECT id, data FROM {table}
                    WHERE tenant_id = $1 AND data @> $2::jsonb
                    ORDER BY created_at ASC, id ASC
                """, tenant_id, nest_filters(filters))

                return [self._row_to_record(row) for row in rows]

        except STORE_ERRORS as e:
            self.logger.error("Error querying records", entity_type=entity_type, error=str(e))
            raise StoreUnavailableError("postgres", str(e))

    def _row_to_record(self, row) -> Dict[str, Any]:
        record = dict(row['data'] or {})
        record['id'] = row['id']
        return record

    # Audit sink

    async def append(self, entry: MatchLog) -> None:
        """Append a match log entry."""
        try:
            async with self._require_pool().acquire() as conn:
                await conn.execute("""
                    INSERT INTO match_logs (
                        log_id, tenant_id, entity_type, candidate_record_id, matched_record_id,
                        matched_fields, rule_id, confidence_score, user_id, user_action,
                        actioned_at, created_at
                    ) VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11, $12)
                """,
                    entry.log_id, entry.tenant_id, entry.entity_type, entry.candidate_record_id,
                    entry.matched_record_id, entry.matched_fields, entry.rule_id,
                    entry.confidence_score, entry.user_id,
                    entry.user_action.value if entry.user_action else None,
                    entry.actioned_at, entry.created_at
                )

        except (DedupException, *STORE_ERRORS) as e:
            raise AuditWriteError(str(e), {"log_id": entry.log_id})

    async def health_check(self) -> bool:
        """Check database health."""
        try:
            async with self._require_pool().acquire() as conn:
                await conn.fetchval("SELECT 1")
                return True
        except (DedupException, *STORE_ERRORS):
            return False
