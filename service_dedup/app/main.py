"""
Duplicate detection service for the records platform.
"""

from typing import Optional

from fastapi import HTTPException, Query

from shared.base_service import BaseService
from shared.errors import DedupException, StoreUnavailableError
from shared.logging import set_user_context

from .audit.recorder import AuditRecorder
from .cache.redis_cache import RuleCache
from .persistence.memory import InMemoryAuditSink, InMemoryRecordStore, InMemoryRuleStore
from .persistence.postgres import PostgreSQLPersistence
from .rules.engine import DuplicateEngine
from .rules.evaluator import FieldGroupEvaluator
from .rules.models import (
    CheckOutcome, EvaluationResult,
    DuplicateCheckRequest, DuplicateCheckResponse, DuplicateMatchResponse,
    DecisionRequest, RuleCreateRequest, RuleUpdateRequest, RuleResponse,
    RuleListResponse, SeedRequest
)
from .rules.reporter import describe_record
from .rules.repository import RuleRepository
from .rules.seeder import DefaultRuleSeeder


class DedupService(BaseService):
    """Duplicate detection service implementation."""

    def __init__(
        self,
        record_store=None,
        rule_store=None,
        audit_sink=None,
        rule_cache=None,
        **config_overrides
    ):
        super().__init__("dedup", 8013, **config_overrides)

        self.persistence: Optional[PostgreSQLPersistence] = None
        if not self.config.use_memory_stores and None in (record_store, rule_store, audit_sink):
            self.persistence = PostgreSQLPersistence(self.config.postgres_dsn)

        self.record_store = record_store or self.persistence or InMemoryRecordStore()
        self.rule_store = rule_store or self.persistence or InMemoryRuleStore()
        self.audit_sink = audit_sink or self.persistence or InMemoryAuditSink()

        if rule_cache is None and self.config.rule_cache_enabled and not self.config.use_memory_stores:
            rule_cache = RuleCache(self.config.redis_url, self.config.rule_cache_ttl_seconds)
        self.rule_cache = rule_cache

        timeout = self.config.store_timeout_seconds
        self.repository = RuleRepository(self.rule_store, self.rule_cache, timeout_seconds=timeout)
        self.evaluator = FieldGroupEvaluator(self.record_store, timeout_seconds=timeout)
        self.engine = DuplicateEngine(self.repository, self.evaluator)
        self.seeder = DefaultRuleSeeder(self.repository)
        self.audit = AuditRecorder(self.audit_sink, metrics=self.metrics)

        self._setup_dedup_routes()

    def resolve_outcome(self, outcome: CheckOutcome, tenant_id: str, entity_type: str) -> EvaluationResult:
        """Apply the fail-open policy: an engine error never blocks record creation."""
        if outcome.ok:
            result = outcome.result_or_fail_open()
            self.metrics.increment_counter(
                "duplicate_checks_total",
                outcome="match" if result.has_duplicates else "no_match"
            )
            return result

        self.logger.warning(
            "Duplicate check failed open",
            tenant_id=tenant_id,
            entity_type=entity_type,
            code=outcome.error.code,
            error=outcome.error.message
        )
        self.metrics.increment_counter("duplicate_checks_total", outcome="failed_open")
        self.metrics.record_error(outcome.error.code)
        return outcome.result_or_fail_open()

    def _setup_dedup_routes(self):
        """Set up duplicate-detection routes."""

        @self.app.get("/")
        async def root():
            """Root endpoint."""
            return {
                "service": "dedup",
                "message": "Records Platform - Duplicate Detection Service",
                "version": "1.0.0",
                "capabilities": ["rule_engine", "audit", "rule_cache", "persistence"]
            }

        @self.app.post("/duplicates/check", response_model=DuplicateCheckResponse)
        async def check_duplicates(request: DuplicateCheckRequest):
            """Check a candidate record against the tenant's duplicate rules."""
            with self.metrics.time_operation(
                "duplicate_check_duration_seconds", entity_type=request.entity_type
            ):
                outcome = await self.engine.check_for_duplicates(
                    request.tenant_id,
                    request.entity_type,
                    request.candidate,
                    request.candidate_record_id
                )

            result = self.resolve_outcome(outcome, request.tenant_id, request.entity_type)

            matches = []
            for match in result.matches:
                name, summary = describe_record(match.matched_record_snapshot, request.entity_type)
                matches.append(DuplicateMatchResponse(
                    matched_record_id=match.matched_record_id,
                    display_name=name,
                    summary=summary,
                    matched_fields=match.matched_fields,
                    record=match.matched_record_snapshot,
                    confidence_score=match.confidence_score
                ))

            return DuplicateCheckResponse(
                has_duplicates=result.has_duplicates,
                matches=matches,
                deciding_rule_id=result.deciding_rule_id,
                failed_open=result.failed_open
            )

        @self.app.post("/duplicates/decisions", status_code=202)
        async def record_decision(request: DecisionRequest):
            """Record what the user chose; the write finishes after the response."""
            set_user_context(request.user_id)
            self.audit.schedule_decision(
                tenant_id=request.tenant_id,
                entity_type=request.entity_type,
                candidate_record_id=request.candidate_record_id,
                matched_record_id=request.matched_record_id,
                matched_fields=request.matched_fields,
                rule_id=request.rule_id,
                user_action=request.user_action,
                user_id=request.user_id
            )
            return {"accepted": True}

        @self.app.get("/duplicates/rules", response_model=RuleListResponse)
        async def get_rules(
            tenant_id: str = Query(..., description="Tenant ID"),
            entity_type: Optional[str] = Query(None, description="Filter by entity type"),
            page: int = Query(1, ge=1, description="Page number"),
            limit: int = Query(50, ge=1, le=100, description="Items per page")
        ):
            """List a tenant's rules."""
            try:
                rules = await self.repository.list_rules(tenant_id, entity_type)
            except StoreUnavailableError as e:
                raise HTTPException(status_code=503, detail=e.message)

            start_idx = (page - 1) * limit
            return RuleListResponse(
                rules=[RuleResponse.from_rule(rule) for rule in rules[start_idx:start_idx + limit]],
                total=len(rules),
                page=page,
                limit=limit
            )

        @self.app.post("/duplicates/rules", response_model=RuleResponse, status_code=201)
        async def create_rule(request: RuleCreateRequest):
            """Create a rule."""
            try:
                rule = await self.repository.create_rule(
                    tenant_id=request.tenant_id,
                    entity_type=request.entity_type,
                    name=request.name,
                    description=request.description,
                    field_groups=request.field_groups,
                    match_logic=request.match_logic,
                    priority=request.priority,
                    is_active=request.is_active
                )
            except StoreUnavailableError as e:
                raise HTTPException(status_code=503, detail=e.message)
            return RuleResponse.from_rule(rule)

        @self.app.get("/duplicates/rules/{rule_id}", response_model=RuleResponse)
        async def get_rule(rule_id: str):
            """Get one rule."""
            try:
                rule = await self.repository.get_rule(rule_id)
            except StoreUnavailableError as e:
                raise HTTPException(status_code=503, detail=e.message)
            if rule is None:
                raise HTTPException(status_code=404, detail="Rule not found")
            return RuleResponse.from_rule(rule)

        @self.app.put("/duplicates/rules/{rule_id}", response_model=RuleResponse)
        async def update_rule(rule_id: str, request: RuleUpdateRequest):
            """Update a rule."""
            try:
                rule = await self.repository.update_rule(rule_id, **request.model_dump())
            except StoreUnavailableError as e:
                raise HTTPException(status_code=503, detail=e.message)
            if rule is None:
                raise HTTPException(status_code=404, detail="Rule not found")
            return RuleResponse.from_rule(rule)

        @self.app.delete("/duplicates/rules/{rule_id}")
        async def delete_rule(rule_id: str):
            """Delete a rule."""
            try:
                deleted = await self.repository.delete_rule(rule_id)
            except StoreUnavailableError as e:
                raise HTTPException(status_code=503, detail=e.message)
            if not deleted:
                raise HTTPException(status_code=404, detail="Rule not found")
            return {"success": True, "message": "Rule deleted successfully"}

        @self.app.post("/duplicates/rules/seed", status_code=201)
        async def seed_rules(request: SeedRequest):
            """Create the default rule set for a tenant."""
            try:
                created = await self.seeder.seed_default_rules(request.tenant_id)
            except StoreUnavailableError as e:
                raise HTTPException(status_code=503, detail=e.message)
            if created:
                self.metrics.record_business_event("rules_seeded")
            return {
                "tenant_id": request.tenant_id,
                "created": [RuleResponse.from_rule(rule) for rule in created]
            }

    async def _check_dependencies(self):
        """Check duplicate-detection dependencies."""
        dependencies = {}

        checks = {
            "rule_store": self.rule_store,
            "record_store": self.record_store,
            "audit_sink": self.audit_sink,
        }
        if self.rule_cache is not None:
            checks["rule_cache"] = self.rule_cache

        for name, component in checks.items():
            try:
                dependencies[name] = "ok" if await component.health_check() else "error"
            except DedupException:
                dependencies[name] = "error"

        return dependencies

    async def start(self):
        """Start duplicate-detection components."""
        if self.persistence is not None:
            try:
                await self.persistence.start()
            except StoreUnavailableError as e:
                # Checks fail open until the database is reachable
                self.logger.error("Persistence unavailable at startup", error=e.message)

        if isinstance(self.rule_cache, RuleCache):
            try:
                await self.rule_cache.start()
            except StoreUnavailableError as e:
                self.logger.warning("Rule cache disabled", error=e.message)
                self.repository.cache = None

        self.logger.info("Duplicate detection service started")

    async def stop(self):
        """Stop duplicate-detection components."""
        await self.audit.drain()
        if isinstance(self.rule_cache, RuleCache):
            await self.rule_cache.stop()
        if self.persistence is not None:
            await self.persistence.stop()

        self.logger.info("Duplicate detection service stopped")


def create_app(**kwargs):
    """Create duplicate detection service application."""
    service = DedupService(**kwargs)
    return service.app


if __name__ == "__main__":
    service = DedupService()
    service.run()
