"""
Entity collections the duplicate engine can scope a query to.

Records are opaque field maps; what the engine knows about each
collection is declared here rather than inferred from stored data.
"""

from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple


@dataclass(frozen=True)
class EntityConfig:
    """Static description of one entity collection."""
    entity_type: str
    table_name: str
    label: str
    # Root field names a rule may reference; empty means unrestricted
    matchable_fields: Tuple[str, ...] = ()
    summary_fields: Tuple[str, ...] = ()

    def allows_field(self, path: str) -> bool:
        if not self.matchable_fields:
            return True
        return path.split(".")[0] in self.matchable_fields


ENTITY_REGISTRY: Dict[str, EntityConfig] = {
    config.entity_type: config
    for config in [
        EntityConfig(
            entity_type="leads",
            table_name="leads",
            label="Lead",
            matchable_fields=(
                "email", "phone", "mobile", "first_name", "last_name",
                "company", "website", "address",
            ),
            summary_fields=("company", "status"),
        ),
        EntityConfig(
            entity_type="contacts",
            table_name="contacts",
            label="Contact",
            matchable_fields=(
                "email", "phone", "mobile", "first_name", "last_name",
                "account_name", "title", "address",
            ),
            summary_fields=("account_name", "title"),
        ),
        EntityConfig(
            entity_type="accounts",
            table_name="accounts",
            label="Account",
            matchable_fields=(
                "name", "website", "phone", "email", "industry", "city",
                "company", "tax_id", "address",
            ),
            summary_fields=("industry", "city"),
        ),
        EntityConfig(entity_type="deals", table_name="deals", label="Deal"),
        EntityConfig(entity_type="tasks", table_name="tasks", label="Task"),
        EntityConfig(entity_type="tickets", table_name="tickets", label="Ticket"),
        EntityConfig(entity_type="invoices", table_name="invoices", label="Invoice"),
        EntityConfig(entity_type="quotes", table_name="quotes", label="Quote"),
        EntityConfig(entity_type="products", table_name="products", label="Product"),
        EntityConfig(entity_type="services", table_name="services", label="Service"),
    ]
}

# Shown for every entity type when present
COMMON_SUMMARY_FIELDS = ("created_at",)


def get_entity_config(entity_type: str) -> Optional[EntityConfig]:
    return ENTITY_REGISTRY.get(entity_type)


def is_supported_entity(entity_type: str) -> bool:
    return entity_type in ENTITY_REGISTRY


def get_table_name(entity_type: str) -> Optional[str]:
    config = ENTITY_REGISTRY.get(entity_type)
    return config.table_name if config else None


def unknown_fields(entity_type: str, field_groups: List[List[str]]) -> List[str]:
    """Field paths in the groups that the entity does not whitelist."""
    config = ENTITY_REGISTRY.get(entity_type)
    if config is None:
        return [path for group in field_groups for path in group]
    return [path for group in field_groups for path in group if not config.allows_field(path)]
