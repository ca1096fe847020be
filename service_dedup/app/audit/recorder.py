"""
Audit recorder for human decisions on reported duplicates.
"""

import asyncio
import uuid
from typing import Any, Dict, Optional, Set, Union

from shared.logging import get_logger
from ..rules.models import MatchLog, UserAction, utcnow


class AuditRecorder:
    """Writes match decisions to an append-only audit sink.

    A failed write is logged and counted but never raised: the user's
    create/view/cancel action has already been decided and must proceed.
    """

    def __init__(self, sink, metrics=None):
        self.sink = sink
        self.metrics = metrics
        self.logger = get_logger("dedup.audit.recorder")
        self._pending: Set[asyncio.Task] = set()

    async def log_decision(
        self,
        tenant_id: str,
        entity_type: str,
        candidate_record_id: str,
        matched_record_id: str,
        matched_fields: Dict[str, Any],
        rule_id: Optional[str] = None,
        user_action: Optional[Union[UserAction, str]] = None,
        user_id: Optional[str] = None
    ) -> bool:
        """Persist one decision. Returns False if the entry could not be written."""
        try:
            action = UserAction(user_action) if user_action is not None else None
            entry = MatchLog(
                log_id=str(uuid.uuid4()),
                tenant_id=tenant_id,
                entity_type=entity_type,
                candidate_record_id=candidate_record_id,
                matched_record_id=matched_record_id,
                matched_fields=dict(matched_fields or {}),
                rule_id=rule_id,
                confidence_score=1.0,
                user_id=user_id,
                user_action=action,
                actioned_at=utcnow() if action else None
            )

            await self.sink.append(entry)

            self.logger.info(
                "Match decision recorded",
                tenant_id=tenant_id,
                entity_type=entity_type,
                matched_record_id=matched_record_id,
                rule_id=rule_id,
                user_action=action.value if action else None
            )
            if self.metrics:
                self.metrics.increment_counter(
                    "match_decisions_total",
                    user_action=action.value if action else "pending"
                )
            return True

        except Exception as e:
            self.logger.error(
                "Failed to record match decision",
                tenant_id=tenant_id,
                entity_type=entity_type,
                matched_record_id=matched_record_id,
                error=str(e)
            )
            if self.metrics:
                self.metrics.increment_counter("audit_write_failures_total", entity_type=entity_type)
            return False

    def schedule_decision(self, **decision) -> asyncio.Task:
        """Record a decision in the background without blocking the caller."""
        task = asyncio.create_task(self.log_decision(**decision))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    @property
    def pending_writes(self) -> int:
        return len(self._pending)

    async def drain(self):
        """Wait for background writes to finish."""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)
