"""
Source registry: which sources are due, and how each poll outcome moves
a source's health.

Outcome rules:
- every poll sets last_poll_at and schedules next_poll_at one interval later
- success resets the failure counter and returns a failing source to active
- failures accumulate; an active source becomes failing at the threshold
- reliability_score is an exponentially weighted success rate in [0, 1]
- paused and disabled are operator decisions and are never changed here
"""
import logging
from dataclasses import replace
from datetime import datetime, timedelta, timezone
from typing import List, Optional

from app.config import PipelineSettings, settings as default_settings
from app.models import JobSource, SourceStats, SourceStatus, SourceType
from core.store import JobStore

logger = logging.getLogger(__name__)

MAX_ERROR_MESSAGE_CHARS = 500

OPERATOR_STATUSES = (SourceStatus.PAUSED, SourceStatus.DISABLED)


def apply_outcome(
    source: JobSource,
    success: bool,
    stats: Optional[SourceStats],
    error: Optional[str],
    now: datetime,
    failure_threshold: int,
    alpha: float,
    default_interval_minutes: int = 30,
) -> JobSource:
    """Return a copy of source with one poll outcome applied."""
    updated = replace(source, tags=list(source.tags), config=dict(source.config))
    interval = max(1, source.poll_interval_minutes or default_interval_minutes)

    updated.last_poll_at = now
    updated.next_poll_at = now + timedelta(minutes=interval)

    outcome = 1.0 if success else 0.0
    score = alpha * outcome + (1 - alpha) * (source.reliability_score if source.reliability_score is not None else 1.0)
    updated.reliability_score = round(min(1.0, max(0.0, score)), 4)

    if success:
        updated.consecutive_failures = 0
        updated.last_success_at = now
        if stats:
            updated.total_jobs_ingested = source.total_jobs_ingested + stats.jobs_new
            updated.active_job_count = stats.jobs_fetched
        if source.status == SourceStatus.FAILING:
            updated.status = SourceStatus.ACTIVE
    else:
        updated.consecutive_failures = source.consecutive_failures + 1
        updated.last_failure_at = now
        updated.last_error_message = (error or "Unknown error")[:MAX_ERROR_MESSAGE_CHARS]
        if source.status == SourceStatus.ACTIVE and updated.consecutive_failures >= failure_threshold:
            updated.status = SourceStatus.FAILING

    if source.status in OPERATOR_STATUSES:
        updated.status = source.status

    return updated


class SourceRegistry:
    """Reads and updates job sources through the store."""

    def __init__(self, store: JobStore, settings: Optional[PipelineSettings] = None):
        self.store = store
        self.settings = settings or default_settings

    def list_due_sources(self, now: Optional[datetime] = None, limit: Optional[int] = None, source_type: Optional[SourceType] = None) -> List[JobSource]:
        now = now or datetime.now(timezone.utc)
        return self.store.list_due_sources(now, limit=limit, source_type=source_type)

    def select_sources(
        self,
        source_id: Optional[str] = None,
        source_type: Optional[SourceType] = None,
        limit: Optional[int] = None,
        now: Optional[datetime] = None,
    ) -> List[JobSource]:
        """
        Pick sources for an ingestion run.

        A named source is returned whatever its health so operators can retry
        a failing or paused source by hand; disabled sources are never polled.
        """
        if source_id:
            source = self.store.get_source(source_id)
            if not source:
                return []
            if source.status == SourceStatus.DISABLED:
                logger.info(f"[source_registry] Source {source.name} is disabled, not polling")
                return []
            return [source]

        return self.list_due_sources(
            now=now,
            limit=limit or self.settings.ingest_default_limit,
            source_type=source_type,
        )

    def record_outcome(
        self,
        source: JobSource,
        success: bool,
        stats: Optional[SourceStats] = None,
        error: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> JobSource:
        now = now or datetime.now(timezone.utc)
        updated = apply_outcome(
            source,
            success,
            stats,
            error,
            now,
            failure_threshold=self.settings.source_failure_threshold,
            alpha=self.settings.source_reliability_alpha,
            default_interval_minutes=self.settings.default_poll_interval_minutes,
        )
        self.store.save_source_health(updated)

        if updated.status != source.status:
            logger.warning(
                f"[source_registry] Source {source.name} status {source.status.value} -> {updated.status.value} "
                f"(failures={updated.consecutive_failures})"
            )
        else:
            logger.info(
                f"[source_registry] Updated source {source.name}: success={success}, "
                f"failures={updated.consecutive_failures}, reliability={updated.reliability_score:.2f}, "
                f"next_poll={updated.next_poll_at.isoformat()}"
            )
        return updated

    def set_status(self, source_id: str, status: SourceStatus) -> bool:
        changed = self.store.update_source_status(source_id, status)
        if changed:
            logger.info(f"[source_registry] Source {source_id} set to {status.value}")
        return changed
