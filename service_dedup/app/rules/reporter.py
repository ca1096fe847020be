"""
Match transparency: which fields overlap, and how to present a matched record.
"""

from typing import Any, Dict, List, Mapping, Tuple

from .entities import COMMON_SUMMARY_FIELDS, get_entity_config
from .normalizer import get_field_value, normalize


def find_matched_fields(
    existing_record: Mapping[str, Any],
    candidate: Mapping[str, Any],
    field_groups: List[List[str]]
) -> Dict[str, Any]:
    """Every field of every group on which the two records agree.

    Independent of which group (or logic) decided the match, so the
    reviewer sees all overlap. Values are the candidate's raw values, and
    a field is only reported when the candidate's value is truthy.
    """
    matched: Dict[str, Any] = {}

    for group in field_groups:
        for path in group:
            existing_value = get_field_value(existing_record, path)
            candidate_value = get_field_value(candidate, path)

            if candidate_value and normalize(existing_value) == normalize(candidate_value):
                matched[path] = candidate_value

    return matched


def display_name(record: Mapping[str, Any], entity_type: str) -> str:
    """Human-readable name for a record of the given entity type."""
    if entity_type in ("leads", "contacts"):
        full_name = f"{record.get('first_name') or ''} {record.get('last_name') or ''}".strip()
        if full_name:
            return full_name
        if record.get("email"):
            return record["email"]
        if entity_type == "leads" and record.get("phone"):
            return record["phone"]
        return "Unnamed Lead" if entity_type == "leads" else "Unnamed Contact"

    if entity_type == "accounts":
        return record.get("name") or record.get("website") or "Unnamed Account"

    return record.get("name") or record.get("title") or "Unnamed Record"


def summarize(record: Mapping[str, Any], entity_type: str) -> Dict[str, Any]:
    """Populated context fields shown beside a matched record."""
    config = get_entity_config(entity_type)
    fields: Tuple[str, ...] = (config.summary_fields if config else ()) + COMMON_SUMMARY_FIELDS
    return {name: record[name] for name in fields if record.get(name)}


def describe_record(record: Mapping[str, Any], entity_type: str) -> Tuple[str, Dict[str, Any]]:
    return display_name(record, entity_type), summarize(record, entity_type)
