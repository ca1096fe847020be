"""
Unit tests for the audit recorder.
"""

import asyncio
import pytest
from unittest.mock import AsyncMock, MagicMock

from shared.errors import AuditWriteError
from service_dedup.app.audit.recorder import AuditRecorder
from service_dedup.app.persistence.memory import InMemoryAuditSink
from service_dedup.app.rules.models import UserAction


class DummyMetrics:
    """Minimal metrics collector stub."""

    def __init__(self):
        self.counters = []

    def increment_counter(self, metric_name: str, **labels):
        self.counters.append((metric_name, labels))


class TestAuditRecorder:
    """Test cases for AuditRecorder."""

    @pytest.fixture
    def sink(self):
        return InMemoryAuditSink()

    @pytest.fixture
    def metrics(self):
        return DummyMetrics()

    @pytest.fixture
    def recorder(self, sink, metrics):
        return AuditRecorder(sink, metrics=metrics)

    @pytest.fixture
    def decision(self):
        return {
            "tenant_id": "tenant-1",
            "entity_type": "leads",
            "candidate_record_id": "new-1",
            "matched_record_id": "lead-1",
            "matched_fields": {"email": "jane@example.com"},
            "rule_id": "rule-1",
        }

    @pytest.mark.asyncio
    @pytest.mark.parametrize("action", ["created_anyway", "viewed", "cancelled"])
    async def test_log_decision_with_action(self, recorder, sink, metrics, decision, action):
        ok = await recorder.log_decision(user_action=action, user_id="user-1", **decision)

        assert ok is True
        assert len(sink.entries) == 1
        entry = sink.entries[0]
        assert entry.user_action == UserAction(action)
        assert entry.actioned_at is not None
        assert entry.confidence_score == 1.0
        assert entry.user_id == "user-1"
        assert entry.matched_fields == {"email": "jane@example.com"}
        assert entry.rule_id == "rule-1"
        assert ("match_decisions_total", {"user_action": action}) in metrics.counters

    @pytest.mark.asyncio
    async def test_pending_decision_has_no_action_time(self, recorder, sink, decision):
        await recorder.log_decision(**decision)

        assert sink.entries[0].user_action is None
        assert sink.entries[0].actioned_at is None

    @pytest.mark.asyncio
    async def test_write_failure_is_not_raised(self, metrics, decision):
        recorder = AuditRecorder(InMemoryAuditSink(fail_writes=True), metrics=metrics)

        ok = await recorder.log_decision(user_action=UserAction.CREATED_ANYWAY, **decision)

        assert ok is False
        assert ("audit_write_failures_total", {"entity_type": "leads"}) in metrics.counters

    @pytest.mark.asyncio
    @pytest.mark.parametrize("error", [
        ConnectionError("reset by peer"),
        RuntimeError("pool closed"),
        TypeError("unexpected argument"),
        asyncio.TimeoutError(),
    ])
    async def test_any_sink_error_is_not_raised(self, metrics, decision, error):
        sink = MagicMock()
        sink.append = AsyncMock(side_effect=error)

        assert await AuditRecorder(sink, metrics=metrics).log_decision(**decision) is False
        assert ("audit_write_failures_total", {"entity_type": "leads"}) in metrics.counters

    @pytest.mark.asyncio
    async def test_unknown_action_is_rejected_quietly(self, recorder, sink, decision):
        ok = await recorder.log_decision(user_action="merged", **decision)

        assert ok is False
        assert sink.entries == []

    @pytest.mark.asyncio
    async def test_entries_are_append_only(self, recorder, sink, decision):
        await recorder.log_decision(user_action="viewed", **decision)
        await recorder.log_decision(user_action="cancelled", **decision)

        entries = await sink.list_entries("tenant-1", "leads")
        assert [e.user_action for e in entries] == [UserAction.VIEWED, UserAction.CANCELLED]
        assert entries[0].log_id != entries[1].log_id

    @pytest.mark.asyncio
    async def test_schedule_decision_runs_in_background(self, recorder, sink, decision):
        task = recorder.schedule_decision(user_action="created_anyway", **decision)

        assert recorder.pending_writes == 1
        await recorder.drain()

        assert task.done()
        assert task.result() is True
        assert len(sink.entries) == 1
        assert recorder.pending_writes == 0

    @pytest.mark.asyncio
    async def test_scheduled_failure_does_not_escape(self, decision):
        sink = MagicMock()
        sink.append = AsyncMock(side_effect=AuditWriteError("disk full"))
        recorder = AuditRecorder(sink)

        task = recorder.schedule_decision(**decision)
        await recorder.drain()

        assert task.result() is False
