"""
Freshness / SLA monitor.

Read-only aggregation for the operations dashboard: how many active
sources succeeded recently, how old the live corpus is, and how jobs are
spread across verification statuses.
"""
import logging
import math
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Sequence

from app.config import PipelineSettings, settings as default_settings
from app.models import SourceStatus, VerificationStatus
from core.store import JobStore

logger = logging.getLogger(__name__)


def percentile(values: Sequence[float], p: float) -> Optional[float]:
    """Nearest-rank percentile; p in [0, 1]. None for an empty sample."""
    if not values:
        return None
    ordered = sorted(values)
    index = min(len(ordered) - 1, max(0, math.ceil(len(ordered) * p) - 1))
    return ordered[index]


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class FreshnessMonitor:
    def __init__(self, store: JobStore, settings: Optional[PipelineSettings] = None):
        self.store = store
        self.settings = settings or default_settings

    def compute(self, now: Optional[datetime] = None) -> Dict[str, Any]:
        now = now or datetime.now(timezone.utc)
        window_start = now - timedelta(hours=self.settings.freshness_window_hours)

        sources = self.store.list_sources(status=SourceStatus.ACTIVE)
        source_rows: List[Dict[str, Any]] = []
        refreshed = 0
        for source in sources:
            last_success = _as_utc(source.last_success_at)
            is_fresh = last_success is not None and last_success >= window_start
            if is_fresh:
                refreshed += 1
            source_rows.append({
                'id': source.id,
                'name': source.name,
                'source_type': source.source_type.value,
                'status': source.status.value,
                'last_success_at': last_success.isoformat() if last_success else None,
                'minutes_since_success': int((now - last_success).total_seconds() // 60) if last_success else None,
                'refreshed': is_fresh,
                'reliability_score': source.reliability_score,
                'consecutive_failures': source.consecutive_failures,
                'active_job_count': source.active_job_count,
            })

        refreshed_pct = round(100.0 * refreshed / len(sources), 1) if sources else 0.0

        p50, p90 = self.store.active_job_age_percentiles(now, (0.5, 0.9))

        counts = self.store.count_jobs_by_status()
        report = {
            'generated_at': now.isoformat(),
            'window_hours': self.settings.freshness_window_hours,
            'total_sources': len(sources),
            'sources_refreshed': refreshed,
            'sources_refreshed_pct': refreshed_pct,
            'healthy': bool(sources) and refreshed_pct >= self.settings.freshness_healthy_pct,
            'p50_age_hours': round(p50, 1) if p50 is not None else None,
            'p90_age_hours': round(p90, 1) if p90 is not None else None,
            'active_jobs': counts.get(VerificationStatus.VERIFIED_ACTIVE.value, 0),
            'unverified_jobs': counts.get(VerificationStatus.UNVERIFIED.value, 0),
            'stale_jobs': counts.get(VerificationStatus.STALE.value, 0),
            'expired_jobs': counts.get(VerificationStatus.EXPIRED.value, 0),
            'sources': source_rows,
        }
        logger.info(
            f"[freshness] refreshed={refreshed}/{len(sources)} ({refreshed_pct}%) "
            f"p50={report['p50_age_hours']}h p90={report['p90_age_hours']}h"
        )
        return report
