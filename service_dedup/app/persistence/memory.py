"""
In-memory stores for local development and tests.

They expose the same coroutine methods as the PostgreSQL persistence
layer, so the engine and the service can run against either.
"""

import copy
from typing import Dict, Any, Optional, List, Tuple

from shared.errors import AuditWriteError
from ..rules.models import MatchRule, MatchLog
from ..rules.normalizer import get_field_value


class InMemoryRecordStore:
    """Tenant-scoped record collections held in process memory."""

    def __init__(self):
        self._records: Dict[Tuple[str, str], List[Dict[str, Any]]] = {}

    def add_record(self, tenant_id: str, entity_type: str, record: Dict[str, Any]) -> Dict[str, Any]:
        if "id" not in record:
            raise ValueError("Records must carry an id")
        self._records.setdefault((tenant_id, entity_type), []).append(copy.deepcopy(record))
        return record

    def clear(self):
        self._records.clear()

    async def list_all(self, tenant_id: str, entity_type: str) -> List[Dict[str, Any]]:
        return [copy.deepcopy(r) for r in self._records.get((tenant_id, entity_type), [])]

    async def query_equal(
        self,
        tenant_id: str,
        entity_type: str,
        filters: Dict[str, Any]
    ) -> List[Dict[str, Any]]:
        return [
            copy.deepcopy(record)
            for record in self._records.get((tenant_id, entity_type), [])
            if all(get_field_value(record, path) == value for path, value in filters.items())
        ]

    async def health_check(self) -> bool:
        return True


class InMemoryRuleStore:
    """Rule definitions held in insertion order."""

    def __init__(self):
        self._rules: Dict[str, MatchRule] = {}

    async def save_rule(self, rule: MatchRule) -> MatchRule:
        self._rules[rule.rule_id] = copy.deepcopy(rule)
        return rule

    async def get_rule(self, rule_id: str) -> Optional[MatchRule]:
        rule = self._rules.get(rule_id)
        return copy.deepcopy(rule) if rule else None

    async def delete_rule(self, rule_id: str) -> bool:
        return self._rules.pop(rule_id, None) is not None

    async def list_rules(self, tenant_id: str, entity_type: Optional[str] = None) -> List[MatchRule]:
        rules = [
            copy.deepcopy(rule) for rule in self._rules.values()
            if rule.tenant_id == tenant_id and (entity_type is None or rule.entity_type == entity_type)
        ]
        rules.sort(key=lambda r: r.priority, reverse=True)
        return rules

    async def list_active_rules_by_priority(self, tenant_id: str, entity_type: str) -> List[MatchRule]:
        rules = await self.list_rules(tenant_id, entity_type)
        return [rule for rule in rules if rule.is_active]

    async def health_check(self) -> bool:
        return True


class InMemoryAuditSink:
    """Append-only list of match log entries."""

    def __init__(self, fail_writes: bool = False):
        self.entries: List[MatchLog] = []
        self.fail_writes = fail_writes

    async def append(self, entry: MatchLog) -> None:
        if self.fail_writes:
            raise AuditWriteError("Audit sink is rejecting writes", {"log_id": entry.log_id})
        self.entries.append(copy.deepcopy(entry))

    async def list_entries(self, tenant_id: str, entity_type: Optional[str] = None) -> List[MatchLog]:
        return [
            entry for entry in self.entries
            if entry.tenant_id == tenant_id and (entity_type is None or entry.entity_type == entity_type)
        ]

    async def health_check(self) -> bool:
        return not self.fail_writes
