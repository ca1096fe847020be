"""
Default duplicate rules for newly provisioned tenants.
"""

from typing import Any, Dict, List

from shared.logging import get_logger
from .models import MatchLogic, MatchRule
from .repository import RuleRepository


def _person_rules(label: str) -> List[Dict[str, Any]]:
    return [
        {
            "name": "Email Match",
            "description": f"Detect duplicate {label} with the same email address",
            "field_groups": [["email"]],
            "priority": 10,
        },
        {
            "name": "Phone Match",
            "description": f"Detect duplicate {label} with the same phone number",
            "field_groups": [["phone"]],
            "priority": 9,
        },
        {
            "name": "Full Name Match",
            "description": f"Detect duplicate {label} with the same first and last name",
            "field_groups": [["first_name", "last_name"]],
            "priority": 5,
        },
    ]


DEFAULT_RULES: Dict[str, List[Dict[str, Any]]] = {
    "leads": _person_rules("leads"),
    "contacts": _person_rules("contacts"),
    "accounts": [
        {
            "name": "Company Name Match",
            "description": "Detect duplicate accounts with the same company name",
            "field_groups": [["name"]],
            "priority": 10,
        },
        {
            "name": "Website Match",
            "description": "Detect duplicate accounts with the same website/domain",
            "field_groups": [["website"]],
            "priority": 9,
        },
    ],
}


class DefaultRuleSeeder:
    """Creates the starter rule set for a tenant."""

    def __init__(self, repository: RuleRepository):
        self.repository = repository
        self.logger = get_logger("dedup.rules.seeder")

    async def seed_default_rules(self, tenant_id: str) -> List[MatchRule]:
        """Create any default rule the tenant does not already have by name.

        Meant to run once at provisioning; running it again creates nothing
        new. Returns the rules created by this call.
        """
        created: List[MatchRule] = []

        for entity_type, definitions in DEFAULT_RULES.items():
            existing = {rule.name for rule in await self.repository.list_rules(tenant_id, entity_type)}

            for definition in definitions:
                if definition["name"] in existing:
                    continue
                rule = await self.repository.create_rule(
                    tenant_id=tenant_id,
                    entity_type=entity_type,
                    match_logic=MatchLogic.ANY,
                    is_active=True,
                    **definition
                )
                created.append(rule)

        self.logger.info("Default rules seeded", tenant_id=tenant_id, created=len(created))
        return created
