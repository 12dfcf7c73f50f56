"""
Tests for the freshness / SLA report.
"""

from datetime import datetime, timedelta, timezone

import pytest

from app.config import PipelineSettings
from app.models import SourceStatus, VerificationStatus
from fakes import FakeStore, make_source
from pipeline.freshness import FreshnessMonitor, percentile

NOW = datetime(2025, 3, 1, 12, 0, tzinfo=timezone.utc)


class TestPercentile:
    def test_empty(self):
        assert percentile([], 0.5) is None

    def test_nearest_rank(self):
        values = [10, 1, 7, 3, 5, 9, 2, 8, 4, 6]
        assert percentile(values, 0.5) == 5
        assert percentile(values, 0.9) == 9
        assert percentile(values, 0.0) == 1
        assert percentile(values, 1.0) == 10

    def test_single_value(self):
        assert percentile([4.2], 0.9) == 4.2

    def test_median_of_two_is_lower_value(self):
        assert percentile([2, 1], 0.5) == 1


class TestFreshnessMonitor:
    def _monitor(self, store, healthy_pct=80):
        return FreshnessMonitor(store, PipelineSettings(freshness_window_hours=2, freshness_healthy_pct=healthy_pct))

    def test_refreshed_percentage_and_health(self):
        store = FakeStore([
            make_source(id="a", last_success_at=NOW - timedelta(minutes=30)),
            make_source(id="b", last_success_at=NOW - timedelta(minutes=90)),
            make_source(id="c", last_success_at=NOW - timedelta(hours=5)),
            make_source(id="d"),
            make_source(id="p", status=SourceStatus.PAUSED, last_success_at=NOW),
        ])

        report = self._monitor(store).compute(now=NOW)

        assert report['total_sources'] == 4
        assert report['sources_refreshed'] == 2
        assert report['sources_refreshed_pct'] == 50.0
        assert report['healthy'] is False
        rows = {row['id']: row for row in report['sources']}
        assert rows['a']['refreshed'] is True
        assert rows['a']['minutes_since_success'] == 30
        assert rows['d']['last_success_at'] is None

    def test_healthy_when_above_threshold(self):
        store = FakeStore([make_source(id="a", last_success_at=NOW - timedelta(minutes=5))])
        report = self._monitor(store).compute(now=NOW)
        assert report['sources_refreshed_pct'] == 100.0
        assert report['healthy'] is True

    def test_no_sources_is_not_healthy(self):
        report = self._monitor(FakeStore()).compute(now=NOW)
        assert report['total_sources'] == 0
        assert report['sources_refreshed_pct'] == 0.0
        assert report['healthy'] is False

    def test_age_percentiles_prefer_posted_at(self):
        store = FakeStore()
        for hours in range(1, 11):
            store.add_job(
                posted_at=NOW - timedelta(hours=hours),
                first_seen_at=NOW,
                verification_status=VerificationStatus.VERIFIED_ACTIVE.value,
            )
        store.add_job(posted_at=None, first_seen_at=NOW - timedelta(hours=100),
                      verification_status=VerificationStatus.EXPIRED.value)

        report = self._monitor(store).compute(now=NOW)

        assert report['p50_age_hours'] == pytest.approx(5.0)
        assert report['p90_age_hours'] == pytest.approx(9.0)

    def test_first_seen_used_without_posted_at(self):
        store = FakeStore()
        store.add_job(posted_at=None, first_seen_at=NOW - timedelta(hours=3))
        report = self._monitor(store).compute(now=NOW)
        assert report['p50_age_hours'] == pytest.approx(3.0)

    def test_status_counts(self):
        store = FakeStore()
        store.add_job(verification_status=VerificationStatus.VERIFIED_ACTIVE.value)
        store.add_job(verification_status=VerificationStatus.VERIFIED_ACTIVE.value)
        store.add_job(verification_status=VerificationStatus.STALE.value)
        store.add_job(verification_status=VerificationStatus.EXPIRED.value)
        store.add_job()

        report = self._monitor(store).compute(now=NOW)

        assert report['active_jobs'] == 2
        assert report['stale_jobs'] == 1
        assert report['expired_jobs'] == 1
        assert report['unverified_jobs'] == 1

    def test_empty_corpus_has_no_percentiles(self):
        report = self._monitor(FakeStore()).compute(now=NOW)
        assert report['p50_age_hours'] is None
        assert report['p90_age_hours'] is None
