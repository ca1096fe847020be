"""
Duplicate detection engine: priority-ordered, short-circuiting rule evaluation.
"""

import time
from typing import Any, Mapping, Optional

from shared.logging import get_logger
from shared.errors import (
    DedupException, MalformedRuleError, MissingTenantContextError
)
from .entities import is_supported_entity
from .evaluator import FieldGroupEvaluator
from .models import CheckOutcome, EvaluationResult
from .repository import RuleRepository


class DuplicateEngine:
    """Decides whether a candidate record duplicates an existing one.

    Stateless: every call takes the tenant explicitly, and all state
    lives in the rule and record stores.
    """

    def __init__(self, repository: RuleRepository, evaluator: FieldGroupEvaluator):
        self.repository = repository
        self.evaluator = evaluator
        self.logger = get_logger("dedup.rules.engine")

    async def check_for_duplicates(
        self,
        tenant_id: Optional[str],
        entity_type: str,
        candidate: Mapping[str, Any],
        candidate_record_id: Optional[str] = None
    ) -> CheckOutcome:
        """Evaluate active rules in descending priority, stopping at the first with matches.

        Only the deciding rule's matches are returned; later rules are not
        evaluated. Store failures come back as ``CheckOutcome.error`` for
        the caller to handle.
        """
        start_time = time.time()

        def elapsed_ms() -> float:
            return (time.time() - start_time) * 1000

        if not tenant_id:
            self.logger.warning("Duplicate check without tenant", entity_type=entity_type)
            return CheckOutcome(error=MissingTenantContextError())

        if not is_supported_entity(entity_type):
            self.logger.debug("Unsupported entity type", entity_type=entity_type)
            return CheckOutcome(result=EvaluationResult.no_duplicates(evaluation_time_ms=elapsed_ms()))

        try:
            rules = await self.repository.list_active_rules(tenant_id, entity_type)
            if not rules:
                return CheckOutcome(result=EvaluationResult.no_duplicates(evaluation_time_ms=elapsed_ms()))

            evaluated = 0
            for rule in rules:
                try:
                    matches = await self.evaluator.evaluate(rule, candidate, candidate_record_id)
                except MalformedRuleError:
                    self.logger.debug("Skipping malformed rule", rule_id=rule.rule_id)
                    continue

                evaluated += 1
                if matches:
                    result = EvaluationResult(
                        has_duplicates=True,
                        matches=matches,
                        deciding_rule_id=rule.rule_id,
                        rules_evaluated=evaluated,
                        evaluation_time_ms=elapsed_ms()
                    )

                    self.logger.info(
                        "Duplicates found",
                        tenant_id=tenant_id,
                        entity_type=entity_type,
                        rule_id=rule.rule_id,
                        matches=len(matches)
                    )
                    return CheckOutcome(result=result)

            return CheckOutcome(result=EvaluationResult.no_duplicates(
                rules_evaluated=evaluated,
                evaluation_time_ms=elapsed_ms()
            ))

        except DedupException as e:
            self.logger.error(
                "Duplicate check failed",
                tenant_id=tenant_id,
                entity_type=entity_type,
                code=e.code,
                error=e.message
            )
            return CheckOutcome(error=e)

        except Exception as e:
            self.logger.error(
                "Duplicate check error",
                tenant_id=tenant_id,
                entity_type=entity_type,
                error=str(e),
                exc_info=True
            )
            return CheckOutcome(error=DedupException("EVALUATION_FAILED", str(e)))
