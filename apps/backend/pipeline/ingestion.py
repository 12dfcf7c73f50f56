"""
Ingestion engine.

For each selected source: fetch postings through its connector, key each
posting with its dedup key, upsert it, resolve a logo for brand-new rows,
then write an ingestion log and update the source's health. A batch of
sources always runs to the end; a failing source is recorded and skipped.

ATS listings are complete snapshots of a company's open roles, so after a
successful ATS fetch, jobs the source has stopped listing are aged out:
stale after INGEST_UNSEEN_STALE_HOURS, expired after
INGEST_UNSEEN_EXPIRE_HOURS (and only from stale). A single missed fetch
never demotes anything.
"""
import asyncio
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

import metrics
from app.config import PipelineSettings, settings as default_settings
from app.errors import ConfigurationError, StorageError
from app.models import (
    IngestionLog,
    IngestionRun,
    JobSource,
    NormalizedPosting,
    RunStatus,
    RunType,
    SourceKind,
    SourceStats,
    SourceType,
    UpsertAction,
    VerificationStatus,
)
from app.source_registry import SourceRegistry
from connectors.registry import ConnectorRegistry
from core.dedup import content_fingerprint, dedup_key_for
from core.store import JobStore
from pipeline.logo_resolver import LogoResolver

logger = logging.getLogger(__name__)

MAX_ERROR_MESSAGE_CHARS = 500


@dataclass
class IngestionFilter:
    source_id: Optional[str] = None
    source_type: Optional[SourceType] = None
    limit: Optional[int] = None
    run_type: RunType = RunType.MANUAL


@dataclass
class SourceResult:
    """Outcome of one source attempt, as reported back to the caller."""
    source: JobSource
    log: IngestionLog
    new_job_ids: List[str] = field(default_factory=list)
    updated_job_ids: List[str] = field(default_factory=list)
    skipped: bool = False

    def to_dict(self) -> Dict[str, Any]:
        stats = self.log.stats
        return {
            'source_id': self.source.id,
            'source_name': self.source.name,
            'source_type': self.source.source_type.value,
            'success': self.log.success,
            'skipped': self.skipped,
            'jobs_fetched': stats.jobs_fetched,
            'jobs_new': stats.jobs_new,
            'jobs_updated': stats.jobs_updated,
            'jobs_deduplicated': stats.jobs_deduplicated,
            'jobs_stale': stats.jobs_stale,
            'jobs_expired': stats.jobs_expired,
            'error_count': stats.error_count,
            'error': self.log.error_message,
            'duration_ms': self.log.duration_ms,
        }


def _statuses_for(source: JobSource):
    """(status for a new row, status forced on re-seen rows) for a source."""
    if source.source_type.kind in (SourceKind.ATS, SourceKind.API):
        # Present in the company's own listing: live by definition
        return VerificationStatus.VERIFIED_ACTIVE, VerificationStatus.VERIFIED_ACTIVE
    return VerificationStatus.UNVERIFIED, None


class IngestionEngine:
    def __init__(
        self,
        store: JobStore,
        registry: SourceRegistry,
        connectors: ConnectorRegistry,
        logo_resolver: Optional[LogoResolver] = None,
        settings: Optional[PipelineSettings] = None,
    ):
        self.store = store
        self.registry = registry
        self.connectors = connectors
        self.logo_resolver = logo_resolver
        self.settings = settings or default_settings

    async def _resolve_logo(self, job_id: str, posting: NormalizedPosting) -> None:
        if self.logo_resolver is None:
            return
        try:
            await self.logo_resolver.resolve_for_job(
                job_id,
                posting.company,
                posting.apply_url,
                posting.ats_logo_url,
            )
        except Exception as e:
            logger.warning(f"[ingestion] Logo resolution failed for job {job_id} ({posting.company}): {e}")

    async def ingest_source(self, source: JobSource) -> SourceResult:
        """Fetch one source and upsert its postings. Only StorageError escapes."""
        started_at = datetime.now(timezone.utc)
        start_time = time.time()
        stats = SourceStats()
        log = IngestionLog(source_id=source.id, started_at=started_at, stats=stats)
        result = SourceResult(source=source, log=log)
        sample_limit = self.settings.ingest_samples_per_source

        connector = self.connectors.get(source.source_type)
        try:
            if connector is None:
                raise ValueError(f"No connector registered for source type {source.source_type.value}")
            postings = await connector.fetch(source)
        except StorageError:
            raise
        except ConfigurationError as e:
            # Not the source's fault: leave its health and poll schedule untouched
            logger.error(f"[ingestion] Skipping source {source.name}: {e}")
            log.error_message = str(e)[:MAX_ERROR_MESSAGE_CHARS]
            result.skipped = True
            return result
        except Exception as e:
            logger.error(f"[ingestion] Fetch failed for source {source.name}: {e}")
            log.error_message = str(e)[:MAX_ERROR_MESSAGE_CHARS]
            metrics.record_source_fetch(source.source_type.value, 'failure')
            return self._finish(result, start_time)

        metrics.record_source_fetch(source.source_type.value, 'success')
        stats.jobs_fetched = len(postings)
        initial_status, seen_status = _statuses_for(source)
        seen_keys = set()

        for posting in postings:
            try:
                dedup_key = dedup_key_for(source.id, source.source_type, posting)
                if dedup_key in seen_keys:
                    # Same posting listed twice in one payload
                    stats.jobs_deduplicated += 1
                    metrics.record_posting(UpsertAction.UNCHANGED.value)
                    continue
                seen_keys.add(dedup_key)

                upsert = self.store.upsert_job(
                    source,
                    posting,
                    dedup_key,
                    content_fingerprint(posting),
                    started_at,
                    initial_status=initial_status,
                    seen_status=seen_status,
                )
            except StorageError:
                raise
            except Exception as e:
                stats.error_count += 1
                logger.error(f"[ingestion] Failed to process posting '{posting.title}' from {source.name}: {e}")
                continue

            metrics.record_posting(upsert.action.value)
            if upsert.action == UpsertAction.INSERTED:
                stats.jobs_new += 1
                result.new_job_ids.append(upsert.job_id)
                await self._resolve_logo(upsert.job_id, posting)
            elif upsert.action == UpsertAction.UPDATED:
                stats.jobs_updated += 1
                result.updated_job_ids.append(upsert.job_id)
            else:
                stats.jobs_deduplicated += 1

        if source.source_type.kind in (SourceKind.ATS, SourceKind.API):
            stale_ids, expired_ids = self.store.mark_unseen_jobs(
                source.id,
                seen_before=started_at,
                stale_before=started_at - timedelta(hours=self.settings.ingest_unseen_stale_hours),
                expire_before=started_at - timedelta(hours=self.settings.ingest_unseen_expire_hours),
            )
            stats.jobs_stale = len(stale_ids)
            stats.jobs_expired = len(expired_ids)
            log.sample_expired_job_ids = expired_ids[:sample_limit]

        log.success = True
        log.sample_new_job_ids = result.new_job_ids[:sample_limit]
        log.sample_updated_job_ids = result.updated_job_ids[:sample_limit]
        logger.info(
            f"[ingestion] {source.name}: fetched={stats.jobs_fetched} new={stats.jobs_new} "
            f"updated={stats.jobs_updated} deduplicated={stats.jobs_deduplicated} "
            f"stale={stats.jobs_stale} expired={stats.jobs_expired} errors={stats.error_count}"
        )
        return self._finish(result, start_time)

    def _finish(self, result: SourceResult, start_time: float) -> SourceResult:
        result.log.completed_at = datetime.now(timezone.utc)
        result.log.duration_ms = int((time.time() - start_time) * 1000)
        self.store.insert_ingestion_log(result.log)
        self.registry.record_outcome(
            result.source,
            result.log.success,
            result.log.stats,
            result.log.error_message,
            now=result.log.completed_at,
        )
        return result

    async def run(self, ingestion_filter: Optional[IngestionFilter] = None) -> Dict[str, Any]:
        ingestion_filter = ingestion_filter or IngestionFilter()
        run = IngestionRun(run_type=ingestion_filter.run_type, started_at=datetime.now(timezone.utc))

        sources = self.registry.select_sources(
            source_id=ingestion_filter.source_id,
            source_type=ingestion_filter.source_type,
            limit=ingestion_filter.limit,
        )
        logger.info(f"[ingestion] Starting {run.run_type.value} run over {len(sources)} sources")

        results: List[SourceResult] = []
        for index, source in enumerate(sources):
            if index > 0 and self.settings.ingest_source_delay_seconds:
                await asyncio.sleep(self.settings.ingest_source_delay_seconds)
            source_result = await self.ingest_source(source)
            results.append(source_result)
            self._accumulate(run, source_result)

        run.completed_at = datetime.now(timezone.utc)
        if run.sources_processed and run.sources_failed == run.sources_processed:
            run.status = RunStatus.FAILED
        elif run.sources_failed:
            run.status = RunStatus.PARTIAL
        else:
            run.status = RunStatus.SUCCESS
        run_id = self.store.insert_ingestion_run(run)

        logger.info(
            f"[ingestion] Run {run_id} {run.status.value}: sources={run.sources_processed} "
            f"failed={run.sources_failed} new={run.jobs_new} updated={run.jobs_updated} "
            f"deduplicated={run.jobs_deduplicated}"
        )
        return {
            'success': True,
            'run_id': run_id,
            'status': run.status.value,
            'sources_processed': run.sources_processed,
            'total_new': run.jobs_new,
            'total_updated': run.jobs_updated,
            'total_deduplicated': run.jobs_deduplicated,
            'total_seen': run.jobs_seen,
            'total_stale': run.jobs_stale,
            'total_expired': run.jobs_expired,
            'errors': run.errors,
            'results': [r.to_dict() for r in results],
        }

    def _accumulate(self, run: IngestionRun, result: SourceResult) -> None:
        stats = result.log.stats
        sample_limit = self.settings.ingest_samples_per_run
        run.sources_processed += 1
        if not result.log.success:
            run.sources_failed += 1
            run.errors.append(f"{result.source.name}: {result.log.error_message}")
        run.jobs_seen += stats.jobs_fetched
        run.jobs_new += stats.jobs_new
        run.jobs_updated += stats.jobs_updated
        run.jobs_deduplicated += stats.jobs_deduplicated
        run.jobs_stale += stats.jobs_stale
        run.jobs_expired += stats.jobs_expired
        run.error_count += stats.error_count + (0 if result.log.success else 1)
        run.sample_new_job_ids = (run.sample_new_job_ids + result.new_job_ids)[:sample_limit]
        run.sample_updated_job_ids = (run.sample_updated_job_ids + result.updated_job_ids)[:sample_limit]
