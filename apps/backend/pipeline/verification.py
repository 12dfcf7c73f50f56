"""
Verification engine: re-checks apply URLs of ingested jobs.

One failed check makes a job stale, never expired. A job expires only on
an explicit closed signal or after repeated consecutive failures, so a
single network blip cannot hide a posting that is still open.
"""
import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Tuple

import metrics
from app.config import PipelineSettings, settings as default_settings
from app.errors import StorageError
from app.models import LinkCheckResult, VerificationStatus
from core.link_validator import LinkValidator
from core.store import JobStore

logger = logging.getLogger(__name__)

MAX_ERRORS_REPORTED = 5


def decide_status(current_failures: int, check: LinkCheckResult, expire_after: int) -> Tuple[VerificationStatus, int]:
    """Map one check result onto (new status, new failure count)."""
    if check.closed_signal:
        return VerificationStatus.EXPIRED, current_failures
    if check.is_accessible:
        return VerificationStatus.VERIFIED_ACTIVE, 0

    failures = current_failures + 1
    if failures >= expire_after:
        return VerificationStatus.EXPIRED, failures
    return VerificationStatus.STALE, failures


@dataclass
class VerificationFilter:
    job_id: Optional[str] = None
    limit: Optional[int] = None


class VerificationEngine:
    """Selects due jobs, checks them, and persists the outcome."""

    def __init__(
        self,
        store: JobStore,
        validator: Optional[LinkValidator] = None,
        settings: Optional[PipelineSettings] = None,
    ):
        self.store = store
        self.validator = validator or LinkValidator()
        self.settings = settings or default_settings

    def _select_jobs(self, job_filter: VerificationFilter, now: datetime) -> List[Dict[str, Any]]:
        if job_filter.job_id:
            job = self.store.get_job(job_filter.job_id)
            return [job] if job else []
        stale_before = now - timedelta(hours=self.settings.verify_stale_window_hours)
        limit = job_filter.limit or self.settings.verify_default_limit
        return self.store.list_jobs_for_verification(stale_before, limit)

    async def verify_job(self, job: Dict[str, Any], now: Optional[datetime] = None) -> VerificationStatus:
        now = now or datetime.now(timezone.utc)
        job_id = str(job['id'])
        check = await self.validator.check(job.get('apply_url') or '')
        status, failures = decide_status(
            job.get('failed_verifications') or 0,
            check,
            self.settings.verify_expire_after_failures,
        )
        self.store.update_verification(job_id, status, failures, now)
        self.store.insert_verification_record(job_id, check, status, now)

        previous = job.get('verification_status')
        if previous != status.value:
            logger.info(f"[verification] Job {job_id} {previous} -> {status.value} (failures={failures})")
        metrics.record_verification(status.value)
        return status

    async def run(self, job_filter: Optional[VerificationFilter] = None) -> Dict[str, Any]:
        job_filter = job_filter or VerificationFilter()
        now = datetime.now(timezone.utc)
        jobs = self._select_jobs(job_filter, now)
        logger.info(f"[verification] Verifying {len(jobs)} jobs")

        counts = {status: 0 for status in VerificationStatus}
        errors: List[str] = []
        verified = 0

        for index, job in enumerate(jobs):
            if index > 0 and self.settings.verify_delay_seconds:
                await asyncio.sleep(self.settings.verify_delay_seconds)
            try:
                status = await self.verify_job(job, now=datetime.now(timezone.utc))
                counts[status] += 1
                verified += 1
            except StorageError:
                raise
            except Exception as e:
                logger.error(f"[verification] Failed to verify job {job.get('id')}: {e}", exc_info=True)
                errors.append(f"{job.get('id')}: {e}")

        logger.info(
            f"[verification] Done: verified={verified} active={counts[VerificationStatus.VERIFIED_ACTIVE]} "
            f"stale={counts[VerificationStatus.STALE]} expired={counts[VerificationStatus.EXPIRED]} "
            f"errors={len(errors)}"
        )
        return {
            'success': True,
            'verified': verified,
            'active': counts[VerificationStatus.VERIFIED_ACTIVE],
            'stale': counts[VerificationStatus.STALE],
            'expired': counts[VerificationStatus.EXPIRED],
            'errors': errors[:MAX_ERRORS_REPORTED],
        }
