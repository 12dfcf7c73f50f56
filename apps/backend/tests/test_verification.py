"""
Tests for apply-URL verification: the liveness check, the status decision
and the batch engine.
"""

from datetime import datetime, timedelta, timezone
from unittest.mock import Mock

import httpx
import pytest

from app.errors import StorageError
from app.models import LinkCheckResult, VerificationStatus
from core.link_validator import LinkValidator, has_apply_button, has_closed_signal
from fakes import FakeHTTPClient, FakeLinkValidator, FakeStore
from pipeline.verification import VerificationEngine, VerificationFilter, decide_status

OK = LinkCheckResult(is_accessible=True, http_status=200, apply_button_found=True)
DOWN = LinkCheckResult(is_accessible=False, http_status=503, error="HTTP 503")
CLOSED = LinkCheckResult(is_accessible=True, http_status=200, closed_signal=True)
GONE = LinkCheckResult(is_accessible=False, http_status=410, closed_signal=True)


class TestDecideStatus:
    def test_accessible_resets_failures(self):
        assert decide_status(2, OK, expire_after=3) == (VerificationStatus.VERIFIED_ACTIVE, 0)

    def test_single_failure_is_stale(self):
        assert decide_status(0, DOWN, expire_after=3) == (VerificationStatus.STALE, 1)

    def test_repeated_failures_expire(self):
        assert decide_status(1, DOWN, expire_after=3) == (VerificationStatus.STALE, 2)
        assert decide_status(2, DOWN, expire_after=3) == (VerificationStatus.EXPIRED, 3)

    def test_closed_signal_expires_immediately(self):
        assert decide_status(0, CLOSED, expire_after=3) == (VerificationStatus.EXPIRED, 0)
        assert decide_status(1, GONE, expire_after=3) == (VerificationStatus.EXPIRED, 1)


class TestPageSignals:
    def test_closed_phrases(self):
        assert has_closed_signal("Sorry, this position has been filled.")
        assert has_closed_signal("We are no longer accepting applications")
        assert not has_closed_signal("Apply now to join our team")

    def test_apply_controls(self):
        assert has_apply_button('<button class="btn apply-button">Go</button>')
        assert has_apply_button("Submit your application")
        assert not has_apply_button("<p>About us</p>")


class TestLinkValidator:
    """Check results from canned HTTP responses."""

    @pytest.mark.asyncio
    async def test_live_page(self):
        url = "https://jobs.acme.com/1"
        http = FakeHTTPClient(pages={url: (200, {}, b"<html><title> Engineer </title><a>Apply now</a></html>", url)})
        result = await LinkValidator(http).check(url)

        assert result.is_accessible is True
        assert result.closed_signal is False
        assert result.apply_button_found is True
        assert result.page_title == "Engineer"
        assert result.redirect_url is None

    @pytest.mark.asyncio
    async def test_closed_page_reports_signal(self):
        url = "https://jobs.acme.com/2"
        http = FakeHTTPClient(pages={url: (200, {}, b"<p>This job is no longer available</p>", url)})
        result = await LinkValidator(http).check(url)
        assert result.is_accessible is True
        assert result.closed_signal is True

    @pytest.mark.asyncio
    async def test_gone_status(self):
        url = "https://jobs.acme.com/3"
        http = FakeHTTPClient(pages={url: (410, {}, b"", url)})
        result = await LinkValidator(http).check(url)
        assert result.is_accessible is False
        assert result.closed_signal is True

    @pytest.mark.asyncio
    async def test_error_status(self):
        url = "https://jobs.acme.com/4"
        http = FakeHTTPClient(pages={url: (404, {}, b"not found", "https://jobs.acme.com/missing")})
        result = await LinkValidator(http).check(url)
        assert result.is_accessible is False
        assert result.closed_signal is False
        assert result.error == "HTTP 404"
        assert result.redirect_url == "https://jobs.acme.com/missing"

    @pytest.mark.asyncio
    async def test_transport_error_never_raises(self):
        url = "https://jobs.acme.com/5"
        http = FakeHTTPClient(pages={url: httpx.ConnectTimeout("timed out")})
        result = await LinkValidator(http).check(url)
        assert result.is_accessible is False
        assert "timed out" in result.error

    @pytest.mark.asyncio
    async def test_empty_url(self):
        result = await LinkValidator(FakeHTTPClient()).check("  ")
        assert result.is_accessible is False
        assert result.error == "Empty URL"


class TestVerificationEngine:
    def _engine(self, store, validator, settings):
        return VerificationEngine(store, validator, settings)

    @pytest.mark.asyncio
    async def test_one_blip_then_recovery(self, settings):
        store = FakeStore()
        job = store.add_job(verification_status=VerificationStatus.VERIFIED_ACTIVE.value)
        validator = FakeLinkValidator(default=DOWN)
        engine = self._engine(store, validator, settings)

        await engine.verify_job(store.get_job(job['id']))
        assert store.jobs[job['id']]['verification_status'] == VerificationStatus.STALE.value
        assert store.jobs[job['id']]['failed_verifications'] == 1

        validator.default = OK
        await engine.verify_job(store.get_job(job['id']))
        assert store.jobs[job['id']]['verification_status'] == VerificationStatus.VERIFIED_ACTIVE.value
        assert store.jobs[job['id']]['failed_verifications'] == 0

    @pytest.mark.asyncio
    async def test_stale_precedes_expired(self, settings):
        store = FakeStore()
        job = store.add_job(verification_status=VerificationStatus.VERIFIED_ACTIVE.value)
        engine = self._engine(store, FakeLinkValidator(default=DOWN), settings)

        seen = []
        for _ in range(settings.verify_expire_after_failures):
            seen.append(await engine.verify_job(store.get_job(job['id'])))

        assert seen[0] == VerificationStatus.STALE
        assert seen[-1] == VerificationStatus.EXPIRED
        assert VerificationStatus.EXPIRED not in seen[:-1]

    @pytest.mark.asyncio
    async def test_records_every_check(self, settings):
        store = FakeStore()
        job = store.add_job()
        engine = self._engine(store, FakeLinkValidator(default=CLOSED), settings)
        status = await engine.verify_job(store.get_job(job['id']))

        assert status == VerificationStatus.EXPIRED
        record = store.verification_records[0]
        assert record['job_id'] == job['id']
        assert record['check'] is CLOSED
        assert record['status'] == VerificationStatus.EXPIRED
        assert store.jobs[job['id']]['last_verified_at'] is not None

    @pytest.mark.asyncio
    async def test_run_counts_outcomes_and_isolates_errors(self, settings):
        store = FakeStore()
        old = datetime.now(timezone.utc) - timedelta(days=2)
        a = store.add_job(apply_url="https://a.com/1", last_seen_at=old)
        b = store.add_job(apply_url="https://b.com/1", last_seen_at=old)
        c = store.add_job(apply_url="https://c.com/1", last_seen_at=old)
        d = store.add_job(apply_url="https://d.com/1", last_seen_at=old)
        validator = FakeLinkValidator(results={
            "https://a.com/1": OK,
            "https://b.com/1": DOWN,
            "https://c.com/1": CLOSED,
            "https://d.com/1": RuntimeError("check crashed"),
        })

        result = await self._engine(store, validator, settings).run()

        assert result['success'] is True
        assert result['verified'] == 3
        assert result['active'] == 1
        assert result['stale'] == 1
        assert result['expired'] == 1
        assert len(result['errors']) == 1
        assert result['errors'][0].startswith(d['id'])
        assert store.jobs[d['id']]['last_verified_at'] is None
        assert store.jobs[a['id']]['verification_status'] == VerificationStatus.VERIFIED_ACTIVE.value
        assert store.jobs[b['id']]['verification_status'] == VerificationStatus.STALE.value
        assert store.jobs[c['id']]['verification_status'] == VerificationStatus.EXPIRED.value

    @pytest.mark.asyncio
    async def test_recently_checked_or_expired_jobs_are_skipped(self, settings):
        store = FakeStore()
        now = datetime.now(timezone.utc)
        store.add_job(last_verified_at=now - timedelta(minutes=5))
        store.add_job(verification_status=VerificationStatus.EXPIRED.value)
        store.add_job(last_seen_at=now - timedelta(minutes=5))
        due = store.add_job(last_verified_at=now - timedelta(days=1))
        validator = FakeLinkValidator()

        result = await self._engine(store, validator, settings).run()

        assert result['verified'] == 1
        assert validator.calls == [due['apply_url']]

    @pytest.mark.asyncio
    async def test_single_job_filter(self, settings):
        store = FakeStore()
        job = store.add_job(last_verified_at=datetime.now(timezone.utc))
        validator = FakeLinkValidator()
        result = await self._engine(store, validator, settings).run(VerificationFilter(job_id=job['id']))
        assert result['verified'] == 1

    @pytest.mark.asyncio
    async def test_unknown_job_id(self, settings):
        result = await self._engine(FakeStore(), FakeLinkValidator(), settings).run(VerificationFilter(job_id="nope"))
        assert result['verified'] == 0

    @pytest.mark.asyncio
    async def test_storage_error_propagates(self, settings):
        store = FakeStore()
        store.add_job()
        store.update_verification = Mock(side_effect=StorageError("db down"))
        with pytest.raises(StorageError):
            await self._engine(store, FakeLinkValidator(), settings).run()
