"""
Field-group evaluation of one rule against one candidate record.
"""

from typing import Any, Dict, List, Mapping, Optional

from shared.logging import get_logger
from shared.errors import MalformedRuleError
from .models import MatchRule, MatchLogic, DuplicateMatch
from .normalizer import normalize, get_field_value, is_populated
from .reporter import find_matched_fields
from .repository import with_deadline


def build_any_conditions(rule: MatchRule, candidate: Mapping[str, Any]) -> List[Dict[str, Any]]:
    """One equality condition per field group the candidate fully populates.

    Values are normalized. A group with any missing or blank field is
    dropped even if its other fields are present.
    """
    conditions: List[Dict[str, Any]] = []
    for group in rule.field_groups:
        values = {path: get_field_value(candidate, path) for path in group}
        if all(is_populated(value) for value in values.values()):
            conditions.append({path: normalize(value) for path, value in values.items()})
    return conditions


def build_all_filter(rule: MatchRule, candidate: Mapping[str, Any]) -> Dict[str, Any]:
    """A single conjunctive filter over every populated field of every group (raw values)."""
    filters: Dict[str, Any] = {}
    for group in rule.field_groups:
        for path in group:
            value = get_field_value(candidate, path)
            if is_populated(value):
                filters[path] = value
    return filters


def satisfies(record: Mapping[str, Any], condition: Dict[str, Any]) -> bool:
    return all(
        normalize(get_field_value(record, path)) == value
        for path, value in condition.items()
    )


class FieldGroupEvaluator:
    """Runs a rule's field groups against the record store."""

    def __init__(self, record_store, timeout_seconds: Optional[float] = None):
        self.record_store = record_store
        self.timeout_seconds = timeout_seconds
        self.logger = get_logger("dedup.rules.evaluator")

    async def evaluate(
        self,
        rule: MatchRule,
        candidate: Mapping[str, Any],
        candidate_record_id: Optional[str] = None
    ) -> List[DuplicateMatch]:
        """Existing records the rule flags as duplicates of the candidate."""
        if not rule.is_well_formed():
            raise MalformedRuleError(rule.rule_id)

        if rule.match_logic == MatchLogic.ANY:
            records = await self._evaluate_any(rule, candidate)
        else:
            records = await self._evaluate_all(rule, candidate)

        matches = []
        for record in records:
            record_id = record.get("id")
            if candidate_record_id is not None and record_id == candidate_record_id:
                continue
            matches.append(DuplicateMatch(
                matched_record_id=record_id,
                matched_record_snapshot=record,
                matched_fields=find_matched_fields(record, candidate, rule.field_groups),
                candidate_record_id=candidate_record_id,
                confidence_score=1.0
            ))

        self.logger.debug(
            "Rule evaluated",
            rule_id=rule.rule_id,
            match_logic=rule.match_logic.value,
            matches=len(matches)
        )
        return matches

    async def _evaluate_any(self, rule: MatchRule, candidate: Mapping[str, Any]) -> List[Dict[str, Any]]:
        conditions = build_any_conditions(rule, candidate)
        if not conditions:
            return []

        # Heterogeneous OR across groups: scan the collection and filter here
        records = await with_deadline(
            self.record_store.list_all(rule.tenant_id, rule.entity_type),
            self.timeout_seconds,
            "record_store"
        )
        return [
            record for record in records
            if any(satisfies(record, condition) for condition in conditions)
        ]

    async def _evaluate_all(self, rule: MatchRule, candidate: Mapping[str, Any]) -> List[Dict[str, Any]]:
        filters = build_all_filter(rule, candidate)
        if not filters:
            return []

        return await with_deadline(
            self.record_store.query_equal(rule.tenant_id, rule.entity_type, filters),
            self.timeout_seconds,
            "record_store"
        )
