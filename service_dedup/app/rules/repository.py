"""
Rule repository: read access for the engine, thin CRUD for administrators.
"""

import asyncio
import uuid
from typing import Any, Awaitable, List, Optional

from shared.logging import get_logger
from shared.errors import StoreUnavailableError, ValidationError
from .entities import is_supported_entity, unknown_fields
from .models import MatchRule, MatchLogic, utcnow


async def with_deadline(call: Awaitable[Any], timeout_seconds: Optional[float], store: str) -> Any:
    """Await a store call, converting a missed deadline into StoreUnavailableError."""
    if timeout_seconds is None:
        return await call
    try:
        return await asyncio.wait_for(call, timeout=timeout_seconds)
    except asyncio.TimeoutError:
        raise StoreUnavailableError(store, f"timed out after {timeout_seconds}s")


def validate_rule_definition(entity_type: str, field_groups: List[List[str]]) -> None:
    """Reject rule definitions an administrator should never be able to save."""
    if not is_supported_entity(entity_type):
        raise ValidationError("Unknown entity type", {"entity_type": entity_type})

    if not field_groups or any(len(group) == 0 for group in field_groups):
        raise ValidationError("Every rule needs at least one non-empty field group")

    unknown = unknown_fields(entity_type, field_groups)
    if unknown:
        raise ValidationError(
            "Field paths are not matchable for this entity type",
            {"entity_type": entity_type, "fields": unknown}
        )


class RuleRepository:
    """Access to a tenant's duplicate rules, optionally fronted by a cache."""

    def __init__(self, store, cache=None, timeout_seconds: Optional[float] = None):
        self.store = store
        self.cache = cache
        self.timeout_seconds = timeout_seconds
        self.logger = get_logger("dedup.rules.repository")

    async def list_active_rules(self, tenant_id: str, entity_type: str) -> List[MatchRule]:
        """Active rules for a tenant and entity type, highest priority first.

        Ties keep the store's order. An empty list is a normal answer for
        tenants that have not been seeded yet. Store failures propagate.
        """
        cached = await self._read_cache(tenant_id, entity_type)
        if cached is not None:
            return cached

        rules = await with_deadline(
            self.store.list_active_rules_by_priority(tenant_id, entity_type),
            self.timeout_seconds,
            "rule_store"
        )

        active = [rule for rule in rules if rule.is_active]
        active.sort(key=lambda r: r.priority, reverse=True)

        await self._write_cache(tenant_id, entity_type, active)

        return active

    async def _read_cache(self, tenant_id: str, entity_type: str) -> Optional[List[MatchRule]]:
        if self.cache is None:
            return None
        try:
            return await with_deadline(
                self.cache.get_rules(tenant_id, entity_type),
                self.timeout_seconds,
                "rule_cache"
            )
        except StoreUnavailableError as e:
            self.logger.warning("Rule cache read timed out", tenant_id=tenant_id, error=e.message)
            return None

    async def _write_cache(self, tenant_id: str, entity_type: str, rules: List[MatchRule]):
        if self.cache is None:
            return
        try:
            await with_deadline(
                self.cache.set_rules(tenant_id, entity_type, rules),
                self.timeout_seconds,
                "rule_cache"
            )
        except StoreUnavailableError as e:
            self.logger.warning("Rule cache write timed out", tenant_id=tenant_id, error=e.message)

    async def _invalidate(self, rule: MatchRule):
        if self.cache is not None:
            await self.cache.invalidate(rule.tenant_id, rule.entity_type)

    async def create_rule(
        self,
        tenant_id: str,
        entity_type: str,
        name: str,
        field_groups: List[List[str]],
        match_logic: MatchLogic = MatchLogic.ANY,
        priority: int = 0,
        description: Optional[str] = None,
        is_active: bool = True,
        rule_id: Optional[str] = None
    ) -> MatchRule:
        """Validate and persist a new rule."""
        validate_rule_definition(entity_type, field_groups)

        rule = MatchRule(
            rule_id=rule_id or str(uuid.uuid4()),
            tenant_id=tenant_id,
            entity_type=entity_type,
            name=name,
            description=description,
            field_groups=[list(group) for group in field_groups],
            match_logic=MatchLogic(match_logic),
            priority=priority,
            is_active=is_active
        )

        await self.store.save_rule(rule)
        await self._invalidate(rule)

        self.logger.info(
            "Rule created",
            rule_id=rule.rule_id,
            tenant_id=tenant_id,
            entity_type=entity_type,
            name=name
        )
        return rule

    async def get_rule(self, rule_id: str) -> Optional[MatchRule]:
        return await self.store.get_rule(rule_id)

    async def list_rules(self, tenant_id: str, entity_type: Optional[str] = None) -> List[MatchRule]:
        return await self.store.list_rules(tenant_id, entity_type)

    async def update_rule(self, rule_id: str, **changes) -> Optional[MatchRule]:
        """Apply non-None changes to a rule. Returns None if it does not exist."""
        rule = await self.store.get_rule(rule_id)
        if rule is None:
            return None

        for name in ("name", "description", "field_groups", "match_logic", "priority", "is_active"):
            value = changes.get(name)
            if value is not None:
                setattr(rule, name, value)

        if changes.get("field_groups") is not None:
            validate_rule_definition(rule.entity_type, rule.field_groups)
        rule.match_logic = MatchLogic(rule.match_logic)
        rule.updated_at = utcnow()

        await self.store.save_rule(rule)
        await self._invalidate(rule)

        self.logger.info("Rule updated", rule_id=rule_id, name=rule.name)
        return rule

    async def delete_rule(self, rule_id: str) -> bool:
        rule = await self.store.get_rule(rule_id)
        if rule is None:
            return False

        deleted = await self.store.delete_rule(rule_id)
        if deleted:
            await self._invalidate(rule)
            self.logger.info("Rule deleted", rule_id=rule_id, name=rule.name)
        return deleted
