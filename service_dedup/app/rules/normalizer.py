"""
Value canonicalization and field access for duplicate matching.
"""

from typing import Any, Mapping


def normalize(value: Any) -> Any:
    """Lower-case and trim strings; return everything else unchanged."""
    if isinstance(value, str):
        return value.lower().strip()
    return value


def get_field_value(record: Mapping[str, Any], path: str) -> Any:
    """Resolve a field path on a record, following dots into nested maps.

    A dot always separates nesting levels; a key that itself contains a dot
    is never matched. The PostgreSQL store resolves paths the same way.
    """
    if record is None:
        return None

    value: Any = record
    for part in path.split("."):
        if isinstance(value, Mapping) and part in value:
            value = value[part]
        else:
            return None
    return value


def is_populated(value: Any) -> bool:
    """A value can take part in a match only if it is non-null and non-empty after normalization."""
    normalized = normalize(value)
    return normalized is not None and normalized != ""
