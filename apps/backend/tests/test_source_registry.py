"""
Tests for source health bookkeeping and due-source selection.
"""

from datetime import datetime, timedelta, timezone

import pytest

from app.config import PipelineSettings
from app.models import SourceStats, SourceStatus
from app.source_registry import SourceRegistry, apply_outcome
from fakes import FakeStore, make_source

NOW = datetime(2025, 1, 15, 12, 0, tzinfo=timezone.utc)


class TestApplyOutcome:
    """Pure outcome rules."""

    def test_success_resets_failures_and_schedules_next_poll(self):
        source = make_source(consecutive_failures=3, poll_interval_minutes=45, reliability_score=0.5)
        stats = SourceStats(jobs_fetched=12, jobs_new=4)
        updated = apply_outcome(source, True, stats, None, NOW, failure_threshold=5, alpha=0.2)

        assert updated.consecutive_failures == 0
        assert updated.last_success_at == NOW
        assert updated.last_poll_at == NOW
        assert updated.next_poll_at == NOW + timedelta(minutes=45)
        assert updated.reliability_score == pytest.approx(0.6)
        assert updated.total_jobs_ingested == 4
        assert updated.active_job_count == 12

    def test_does_not_mutate_input(self):
        source = make_source()
        apply_outcome(source, False, None, "boom", NOW, failure_threshold=5, alpha=0.2)
        assert source.consecutive_failures == 0
        assert source.last_poll_at is None

    def test_failure_threshold_marks_failing(self):
        source = make_source(consecutive_failures=4)
        updated = apply_outcome(source, False, None, "HTTP 500", NOW, failure_threshold=5, alpha=0.2)
        assert updated.status == SourceStatus.FAILING
        assert updated.consecutive_failures == 5
        assert updated.last_error_message == "HTTP 500"
        assert updated.last_failure_at == NOW

    def test_below_threshold_stays_active(self):
        updated = apply_outcome(make_source(consecutive_failures=1), False, None, "x", NOW, failure_threshold=5, alpha=0.2)
        assert updated.status == SourceStatus.ACTIVE

    def test_success_recovers_failing_source(self):
        source = make_source(status=SourceStatus.FAILING, consecutive_failures=7)
        updated = apply_outcome(source, True, SourceStats(), None, NOW, failure_threshold=5, alpha=0.2)
        assert updated.status == SourceStatus.ACTIVE

    @pytest.mark.parametrize("status", [SourceStatus.PAUSED, SourceStatus.DISABLED])
    def test_operator_statuses_are_kept(self, status):
        source = make_source(status=status, consecutive_failures=10)
        assert apply_outcome(source, False, None, "x", NOW, failure_threshold=5, alpha=0.2).status == status
        assert apply_outcome(source, True, SourceStats(), None, NOW, failure_threshold=5, alpha=0.2).status == status

    def test_reliability_stays_in_range(self):
        source = make_source(reliability_score=0.0)
        for _ in range(20):
            source = apply_outcome(source, False, None, "x", NOW, failure_threshold=5, alpha=0.5)
        assert 0.0 <= source.reliability_score <= 1.0

    def test_error_message_truncated(self):
        updated = apply_outcome(make_source(), False, None, "x" * 2000, NOW, failure_threshold=5, alpha=0.2)
        assert len(updated.last_error_message) == 500

    def test_unset_interval_uses_default(self):
        source = make_source()
        updated = apply_outcome(source, True, None, None, NOW, failure_threshold=5, alpha=0.2, default_interval_minutes=45)
        assert source.poll_interval_minutes is None
        assert updated.next_poll_at == NOW + timedelta(minutes=45)


class TestSourceRegistry:
    def _registry(self, *sources):
        store = FakeStore(list(sources))
        return store, SourceRegistry(store, PipelineSettings(source_failure_threshold=2))

    def test_due_sources_ordered_priority_first(self):
        older = make_source(id="a", last_poll_at=NOW - timedelta(hours=5))
        newer = make_source(id="b", last_poll_at=NOW - timedelta(hours=1))
        priority = make_source(id="c", is_priority_source=True, last_poll_at=NOW - timedelta(minutes=1))
        not_due = make_source(id="d", next_poll_at=NOW + timedelta(minutes=10))
        paused = make_source(id="e", status=SourceStatus.PAUSED)
        _, registry = self._registry(older, newer, priority, not_due, paused)

        due = registry.list_due_sources(now=NOW)
        assert [s.id for s in due] == ["c", "a", "b"]

    def test_select_named_source_ignores_schedule(self):
        paused = make_source(id="p", status=SourceStatus.PAUSED, next_poll_at=NOW + timedelta(days=1))
        _, registry = self._registry(paused)
        assert [s.id for s in registry.select_sources(source_id="p", now=NOW)] == ["p"]

    def test_select_disabled_source_returns_nothing(self):
        _, registry = self._registry(make_source(id="d", status=SourceStatus.DISABLED))
        assert registry.select_sources(source_id="d") == []

    def test_select_unknown_source(self):
        _, registry = self._registry()
        assert registry.select_sources(source_id="missing") == []

    def test_record_outcome_persists(self):
        source = make_source(consecutive_failures=1)
        store, registry = self._registry(source)
        updated = registry.record_outcome(source, False, error="timeout", now=NOW)

        assert updated.status == SourceStatus.FAILING
        assert store.saved_sources[-1] is updated
        assert store.get_source(source.id).consecutive_failures == 2

    def test_record_outcome_uses_configured_default_interval(self):
        source = make_source()
        store = FakeStore([source])
        registry = SourceRegistry(store, PipelineSettings(default_poll_interval_minutes=15))

        updated = registry.record_outcome(source, True, now=NOW)

        assert updated.next_poll_at == NOW + timedelta(minutes=15)

    def test_set_status(self):
        store, registry = self._registry(make_source(id="x"))
        assert registry.set_status("x", SourceStatus.PAUSED) is True
        assert store.get_source("x").status == SourceStatus.PAUSED
        assert registry.set_status("missing", SourceStatus.PAUSED) is False
