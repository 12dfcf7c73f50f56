"""
Storage interface for the pipeline and its PostgreSQL implementation.

Engines only talk to JobStore. PostgresStore maps each operation to one or
two SQL statements over psycopg2; the jobs.dedup_key unique constraint is
what serializes concurrent ingestion of the same posting.
"""
import logging
from abc import ABC, abstractmethod
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence, Tuple

import psycopg2
from psycopg2.extras import RealDictCursor, Json

from app.errors import StorageError
from app.models import (
    IngestionLog,
    IngestionRun,
    JobSource,
    LogoResult,
    NormalizedPosting,
    LinkCheckResult,
    SourceStatus,
    SourceType,
    UpsertAction,
    UpsertResult,
    VerificationStatus,
)

logger = logging.getLogger(__name__)

# Timestamp columns that mark an AI task as done for a job
AI_STAMP_COLUMNS = ("ai_enriched_at", "ai_classified_at")

# Columns an AI task may write
AI_WRITABLE_COLUMNS = {
    "ai_summary", "ai_responsibilities", "ai_qualifications", "ai_tech_stack",
    "ai_benefits", "ai_visa_info",
    "role_type", "tech_stack", "experience_level", "education_requirements",
    "visa_sponsorship", "hiring_urgency_score", "student_relevance_score",
    "competition_score",
}

JOB_COLUMNS = """
    id, dedup_key, source_id, external_id, title, company, location, description,
    requirements, work_type, is_remote, apply_url, posted_at, salary_min, salary_max,
    salary_currency, ats_logo_url, company_logo_url, company_domain, logo_source,
    logo_last_verified_at, tech_stack, role_type, verification_status,
    last_verified_at, failed_verifications, first_seen_at, last_seen_at, updated_at,
    ai_summary, ai_enriched_at, ai_classified_at
"""


class JobStore(ABC):
    """Narrow storage interface used by every engine."""

    # Sources

    @abstractmethod
    def list_sources(self, status: Optional[SourceStatus] = None, source_type: Optional[SourceType] = None) -> List[JobSource]:
        pass

    @abstractmethod
    def get_source(self, source_id: str) -> Optional[JobSource]:
        pass

    @abstractmethod
    def list_due_sources(self, now: datetime, limit: Optional[int] = None, source_type: Optional[SourceType] = None) -> List[JobSource]:
        """Active sources whose next_poll_at is unset or <= now, priority first then least recently polled."""

    @abstractmethod
    def save_source_health(self, source: JobSource) -> None:
        """Persist poll timestamps, failure counters, reliability, status and lifetime counts."""

    @abstractmethod
    def update_source_status(self, source_id: str, status: SourceStatus) -> bool:
        pass

    # Jobs

    @abstractmethod
    def upsert_job(
        self,
        source: JobSource,
        posting: NormalizedPosting,
        dedup_key: str,
        content_hash: str,
        now: datetime,
        initial_status: VerificationStatus = VerificationStatus.UNVERIFIED,
        seen_status: Optional[VerificationStatus] = None,
    ) -> UpsertResult:
        """
        Insert or update by dedup_key in one atomic step.

        Re-seen rows always get last_seen_at = now. When seen_status is given
        they also take that status with failed_verifications reset. Content
        changes clear the AI timestamps so enrichment runs again.
        """

    @abstractmethod
    def mark_unseen_jobs(self, source_id: str, seen_before: datetime, stale_before: datetime, expire_before: datetime) -> Tuple[List[str], List[str]]:
        """Demote a source's jobs missing from its listing. Returns (stale_ids, expired_ids)."""

    @abstractmethod
    def get_job(self, job_id: str) -> Optional[Dict[str, Any]]:
        pass

    @abstractmethod
    def list_jobs_for_verification(self, stale_before: datetime, limit: int) -> List[Dict[str, Any]]:
        pass

    @abstractmethod
    def update_verification(self, job_id: str, status: VerificationStatus, failed_verifications: int, verified_at: datetime) -> None:
        pass

    @abstractmethod
    def insert_verification_record(self, job_id: str, check: LinkCheckResult, status: VerificationStatus, checked_at: datetime) -> None:
        pass

    @abstractmethod
    def list_jobs_pending_ai(self, stamp_column: str, limit: int) -> List[Dict[str, Any]]:
        """Jobs with a description whose stamp_column is still NULL."""

    @abstractmethod
    def save_ai_fields(self, job_id: str, fields: Dict[str, Any], stamp_column: str, now: datetime) -> None:
        pass

    @abstractmethod
    def update_job_logo(self, job_id: str, logo: LogoResult, verified_at: datetime) -> None:
        pass

    @abstractmethod
    def list_jobs_for_logo_backfill(self, limit: int, check_broken: bool = False) -> List[Dict[str, Any]]:
        pass

    # Logo cache

    @abstractmethod
    def get_logo_cache(self, domain: str) -> Optional[Dict[str, Any]]:
        pass

    @abstractmethod
    def upsert_logo_cache(self, domain: str, logo_url: Optional[str], source: Optional[str], company_name: Optional[str] = None) -> None:
        pass

    @abstractmethod
    def delete_logo_cache(self, domain: str) -> None:
        pass

    # Run history

    @abstractmethod
    def insert_ingestion_log(self, log: IngestionLog) -> None:
        pass

    @abstractmethod
    def insert_ingestion_run(self, run: IngestionRun) -> Optional[str]:
        pass

    @abstractmethod
    def list_ingestion_logs(self, source_id: Optional[str] = None, limit: int = 50) -> List[Dict[str, Any]]:
        pass

    @abstractmethod
    def list_ingestion_runs(self, limit: int = 20) -> List[Dict[str, Any]]:
        pass

    # Freshness reads

    @abstractmethod
    def count_jobs_by_status(self) -> Dict[str, int]:
        pass

    @abstractmethod
    def active_job_age_percentiles(self, now: datetime, fractions: Sequence[float]) -> List[Optional[float]]:
        """
        Nearest-rank age percentiles in hours over every non-expired job,
        aged from posted_at, else first_seen_at. One value per fraction;
        None when there are no such jobs.
        """


class PostgresStore(JobStore):
    """JobStore over psycopg2 with one short-lived connection per operation."""

    def __init__(self, db_url: str):
        self.db_url = db_url

    def _get_db_conn(self):
        """Get database connection"""
        try:
            return psycopg2.connect(self.db_url, connect_timeout=10)
        except psycopg2.Error as e:
            logger.error(f"[store] Database connection failed: {e}")
            raise StorageError("Database unavailable") from e

    @contextmanager
    def _cursor(self):
        conn = self._get_db_conn()
        try:
            with conn.cursor(cursor_factory=RealDictCursor) as cur:
                yield cur
            conn.commit()
        except psycopg2.Error as e:
            conn.rollback()
            logger.error(f"[store] Query failed: {e}")
            raise StorageError("Database query failed") from e
        finally:
            conn.close()

    # Sources

    def list_sources(self, status: Optional[SourceStatus] = None, source_type: Optional[SourceType] = None) -> List[JobSource]:
        query = "SELECT * FROM job_sources WHERE 1=1"
        params: List[Any] = []
        if status:
            query += " AND status = %s"
            params.append(status.value)
        if source_type:
            query += " AND source_type = %s"
            params.append(source_type.value)
        query += " ORDER BY is_priority_source DESC, name ASC"
        with self._cursor() as cur:
            cur.execute(query, params)
            return [JobSource.from_row(row) for row in cur.fetchall()]

    def get_source(self, source_id: str) -> Optional[JobSource]:
        with self._cursor() as cur:
            cur.execute("SELECT * FROM job_sources WHERE id::text = %s", (source_id,))
            row = cur.fetchone()
            return JobSource.from_row(row) if row else None

    def list_due_sources(self, now: datetime, limit: Optional[int] = None, source_type: Optional[SourceType] = None) -> List[JobSource]:
        query = """
            SELECT * FROM job_sources
            WHERE status = 'active'
            AND (next_poll_at IS NULL OR next_poll_at <= %s)
        """
        params: List[Any] = [now]
        if source_type:
            query += " AND source_type = %s"
            params.append(source_type.value)
        query += " ORDER BY is_priority_source DESC, last_poll_at ASC NULLS FIRST"
        if limit:
            query += " LIMIT %s"
            params.append(limit)
        with self._cursor() as cur:
            cur.execute(query, params)
            return [JobSource.from_row(row) for row in cur.fetchall()]

    def save_source_health(self, source: JobSource) -> None:
        with self._cursor() as cur:
            cur.execute("""
                UPDATE job_sources SET
                    last_poll_at = %s,
                    next_poll_at = %s,
                    status = %s,
                    consecutive_failures = %s,
                    last_success_at = %s,
                    last_failure_at = %s,
                    last_error_message = %s,
                    total_jobs_ingested = %s,
                    active_job_count = %s,
                    reliability_score = %s,
                    updated_at = NOW()
                WHERE id::text = %s
            """, (
                source.last_poll_at,
                source.next_poll_at,
                source.status.value,
                source.consecutive_failures,
                source.last_success_at,
                source.last_failure_at,
                source.last_error_message,
                source.total_jobs_ingested,
                source.active_job_count,
                source.reliability_score,
                source.id,
            ))

    def update_source_status(self, source_id: str, status: SourceStatus) -> bool:
        with self._cursor() as cur:
            cur.execute("""
                UPDATE job_sources SET status = %s, updated_at = NOW()
                WHERE id::text = %s
                RETURNING id
            """, (status.value, source_id))
            return cur.fetchone() is not None

    # Jobs

    def upsert_job(
        self,
        source: JobSource,
        posting: NormalizedPosting,
        dedup_key: str,
        content_hash: str,
        now: datetime,
        initial_status: VerificationStatus = VerificationStatus.UNVERIFIED,
        seen_status: Optional[VerificationStatus] = None,
    ) -> UpsertResult:
        params = {
            'dedup_key': dedup_key,
            'content_hash': content_hash,
            'source_id': source.id,
            'source': source.source_type.value,
            'external_id': posting.external_id,
            'title': posting.title,
            'company': posting.company,
            'location': posting.location,
            'description': posting.description,
            'requirements': posting.requirements or [],
            'work_type': posting.work_type,
            'is_remote': posting.is_remote,
            'apply_url': posting.apply_url,
            'posted_at': posting.posted_at,
            'salary_min': posting.salary_min,
            'salary_max': posting.salary_max,
            'salary_currency': posting.salary_currency,
            'ats_logo_url': posting.ats_logo_url,
            'tech_stack': posting.tech_stack or [],
            'role_type': posting.role_type,
            'initial_status': initial_status.value,
            'seen_status': seen_status.value if seen_status else None,
            'now': now,
        }
        with self._cursor() as cur:
            cur.execute("""
                INSERT INTO jobs (
                    dedup_key, content_hash, source_id, source, external_id, title, company,
                    location, description, requirements, work_type, is_remote, apply_url,
                    posted_at, salary_min, salary_max, salary_currency, ats_logo_url,
                    tech_stack, role_type, verification_status, failed_verifications,
                    first_seen_at, last_seen_at, updated_at
                ) VALUES (
                    %(dedup_key)s, %(content_hash)s, %(source_id)s, %(source)s, %(external_id)s,
                    %(title)s, %(company)s, %(location)s, %(description)s, %(requirements)s,
                    %(work_type)s, %(is_remote)s, %(apply_url)s, %(posted_at)s, %(salary_min)s,
                    %(salary_max)s, %(salary_currency)s, %(ats_logo_url)s, %(tech_stack)s,
                    %(role_type)s, %(initial_status)s, 0, %(now)s, %(now)s, %(now)s
                )
                ON CONFLICT (dedup_key) DO UPDATE SET
                    content_hash = EXCLUDED.content_hash,
                    external_id = EXCLUDED.external_id,
                    title = EXCLUDED.title,
                    location = EXCLUDED.location,
                    description = EXCLUDED.description,
                    requirements = EXCLUDED.requirements,
                    work_type = EXCLUDED.work_type,
                    is_remote = EXCLUDED.is_remote,
                    apply_url = EXCLUDED.apply_url,
                    posted_at = COALESCE(EXCLUDED.posted_at, jobs.posted_at),
                    salary_min = EXCLUDED.salary_min,
                    salary_max = EXCLUDED.salary_max,
                    salary_currency = EXCLUDED.salary_currency,
                    ats_logo_url = EXCLUDED.ats_logo_url,
                    tech_stack = EXCLUDED.tech_stack,
                    role_type = EXCLUDED.role_type,
                    last_seen_at = EXCLUDED.last_seen_at,
                    updated_at = EXCLUDED.updated_at,
                    verification_status = COALESCE(%(seen_status)s, jobs.verification_status),
                    failed_verifications = CASE WHEN %(seen_status)s IS NULL
                        THEN jobs.failed_verifications ELSE 0 END,
                    ai_enriched_at = NULL,
                    ai_classified_at = NULL
                WHERE jobs.content_hash IS DISTINCT FROM EXCLUDED.content_hash
                RETURNING id, (xmax = 0) AS inserted
            """, params)
            row = cur.fetchone()
            if row:
                action = UpsertAction.INSERTED if row['inserted'] else UpsertAction.UPDATED
                return UpsertResult(job_id=str(row['id']), action=action)

            # Same key, same content: only record that the source still lists it
            cur.execute("""
                UPDATE jobs SET
                    last_seen_at = %(now)s,
                    verification_status = COALESCE(%(seen_status)s, verification_status),
                    failed_verifications = CASE WHEN %(seen_status)s IS NULL
                        THEN failed_verifications ELSE 0 END
                WHERE dedup_key = %(dedup_key)s
                RETURNING id
            """, params)
            row = cur.fetchone()
            if not row:
                raise StorageError(f"Upsert for {dedup_key} returned no row")
            return UpsertResult(job_id=str(row['id']), action=UpsertAction.UNCHANGED)

    def mark_unseen_jobs(self, source_id: str, seen_before: datetime, stale_before: datetime, expire_before: datetime) -> Tuple[List[str], List[str]]:
        with self._cursor() as cur:
            cur.execute("""
                UPDATE jobs SET verification_status = 'expired', updated_at = NOW()
                WHERE source_id::text = %s
                AND last_seen_at < %s
                AND last_seen_at < %s
                AND verification_status = 'stale'
                RETURNING id
            """, (source_id, seen_before, expire_before))
            expired_ids = [str(r['id']) for r in cur.fetchall()]

            cur.execute("""
                UPDATE jobs SET verification_status = 'stale', updated_at = NOW()
                WHERE source_id::text = %s
                AND last_seen_at < %s
                AND last_seen_at < %s
                AND verification_status IN ('unverified', 'verified_active')
                RETURNING id
            """, (source_id, seen_before, stale_before))
            stale_ids = [str(r['id']) for r in cur.fetchall()]
        return stale_ids, expired_ids

    def get_job(self, job_id: str) -> Optional[Dict[str, Any]]:
        with self._cursor() as cur:
            cur.execute(f"SELECT {JOB_COLUMNS} FROM jobs WHERE id::text = %s", (job_id,))
            row = cur.fetchone()
            return dict(row) if row else None

    def list_jobs_for_verification(self, stale_before: datetime, limit: int) -> List[Dict[str, Any]]:
        with self._cursor() as cur:
            cur.execute(f"""
                SELECT {JOB_COLUMNS} FROM jobs
                WHERE apply_url IS NOT NULL AND apply_url <> ''
                AND verification_status <> 'expired'
                AND (last_verified_at IS NULL OR last_verified_at < %s)
                AND (last_seen_at IS NULL OR last_seen_at < %s)
                ORDER BY last_verified_at ASC NULLS FIRST
                LIMIT %s
            """, (stale_before, stale_before, limit))
            return [dict(r) for r in cur.fetchall()]

    def update_verification(self, job_id: str, status: VerificationStatus, failed_verifications: int, verified_at: datetime) -> None:
        with self._cursor() as cur:
            cur.execute("""
                UPDATE jobs SET
                    verification_status = %s,
                    failed_verifications = %s,
                    last_verified_at = %s
                WHERE id::text = %s
            """, (status.value, failed_verifications, verified_at, job_id))

    def insert_verification_record(self, job_id: str, check: LinkCheckResult, status: VerificationStatus, checked_at: datetime) -> None:
        with self._cursor() as cur:
            cur.execute("""
                INSERT INTO job_verifications (
                    job_id, checked_at, http_status, is_accessible, job_closed_signal,
                    apply_button_found, redirect_url, page_title, error_message, resulting_status
                ) VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
            """, (
                job_id, checked_at, check.http_status, check.is_accessible, check.closed_signal,
                check.apply_button_found, check.redirect_url, check.page_title, check.error,
                status.value,
            ))

    def list_jobs_pending_ai(self, stamp_column: str, limit: int) -> List[Dict[str, Any]]:
        if stamp_column not in AI_STAMP_COLUMNS:
            raise ValueError(f"Unknown AI stamp column: {stamp_column}")
        with self._cursor() as cur:
            cur.execute(f"""
                SELECT id, title, company, location, description, requirements, work_type
                FROM jobs
                WHERE {stamp_column} IS NULL
                AND description IS NOT NULL AND description <> ''
                AND verification_status <> 'expired'
                ORDER BY first_seen_at DESC
                LIMIT %s
            """, (limit,))
            return [dict(r) for r in cur.fetchall()]

    def save_ai_fields(self, job_id: str, fields: Dict[str, Any], stamp_column: str, now: datetime) -> None:
        if stamp_column not in AI_STAMP_COLUMNS:
            raise ValueError(f"Unknown AI stamp column: {stamp_column}")
        unknown = set(fields) - AI_WRITABLE_COLUMNS
        if unknown:
            raise ValueError(f"Refusing to write non-AI columns: {sorted(unknown)}")

        columns = sorted(fields)
        assignments = ", ".join(f"{col} = %s" for col in columns)
        values = [fields[col] for col in columns]
        with self._cursor() as cur:
            cur.execute(
                f"UPDATE jobs SET {assignments}, {stamp_column} = %s WHERE id::text = %s",
                (*values, now, job_id),
            )

    def update_job_logo(self, job_id: str, logo: LogoResult, verified_at: datetime) -> None:
        with self._cursor() as cur:
            cur.execute("""
                UPDATE jobs SET
                    company_logo_url = %s,
                    company_domain = %s,
                    logo_source = %s,
                    logo_last_verified_at = %s
                WHERE id::text = %s
            """, (logo.logo_url, logo.domain, logo.source.value, verified_at, job_id))

    def list_jobs_for_logo_backfill(self, limit: int, check_broken: bool = False) -> List[Dict[str, Any]]:
        where = "TRUE" if check_broken else "company_logo_url IS NULL"
        with self._cursor() as cur:
            cur.execute(f"""
                SELECT id, company, apply_url, ats_logo_url, company_logo_url, company_domain, logo_source
                FROM jobs
                WHERE {where}
                AND verification_status <> 'expired'
                ORDER BY logo_last_verified_at ASC NULLS FIRST
                LIMIT %s
            """, (limit,))
            return [dict(r) for r in cur.fetchall()]

    # Logo cache

    def get_logo_cache(self, domain: str) -> Optional[Dict[str, Any]]:
        with self._cursor() as cur:
            cur.execute("""
                SELECT domain, company_name, logo_url, source, verified_at
                FROM company_logo_cache WHERE domain = %s
            """, (domain,))
            row = cur.fetchone()
            return dict(row) if row else None

    def upsert_logo_cache(self, domain: str, logo_url: Optional[str], source: Optional[str], company_name: Optional[str] = None) -> None:
        with self._cursor() as cur:
            cur.execute("""
                INSERT INTO company_logo_cache (domain, company_name, logo_url, source, verified_at)
                VALUES (%s, %s, %s, %s, NOW())
                ON CONFLICT (domain) DO UPDATE SET
                    company_name = COALESCE(EXCLUDED.company_name, company_logo_cache.company_name),
                    logo_url = EXCLUDED.logo_url,
                    source = EXCLUDED.source,
                    verified_at = EXCLUDED.verified_at
            """, (domain, company_name, logo_url, source))

    def delete_logo_cache(self, domain: str) -> None:
        with self._cursor() as cur:
            cur.execute("DELETE FROM company_logo_cache WHERE domain = %s", (domain,))

    # Run history

    def insert_ingestion_log(self, log: IngestionLog) -> None:
        stats = log.stats
        with self._cursor() as cur:
            cur.execute("""
                INSERT INTO ingestion_logs (
                    source_id, started_at, completed_at, duration_ms, success,
                    jobs_fetched, jobs_new, jobs_updated, jobs_deduplicated, jobs_stale,
                    jobs_expired, error_count, error_message,
                    sample_new_job_ids, sample_updated_job_ids, sample_expired_job_ids
                ) VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
            """, (
                log.source_id, log.started_at, log.completed_at, log.duration_ms, log.success,
                stats.jobs_fetched, stats.jobs_new, stats.jobs_updated, stats.jobs_deduplicated,
                stats.jobs_stale, stats.jobs_expired, stats.error_count, log.error_message,
                log.sample_new_job_ids, log.sample_updated_job_ids, log.sample_expired_job_ids,
            ))

    def insert_ingestion_run(self, run: IngestionRun) -> Optional[str]:
        with self._cursor() as cur:
            cur.execute("""
                INSERT INTO ingestion_runs (
                    run_type, status, started_at, completed_at, sources_processed,
                    sources_failed, jobs_seen, jobs_new, jobs_updated, jobs_deduplicated,
                    jobs_stale, jobs_expired, error_count, errors,
                    sample_new_job_ids, sample_updated_job_ids
                ) VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
                RETURNING id
            """, (
                run.run_type.value, run.status.value, run.started_at, run.completed_at,
                run.sources_processed, run.sources_failed, run.jobs_seen, run.jobs_new,
                run.jobs_updated, run.jobs_deduplicated, run.jobs_stale, run.jobs_expired,
                run.error_count, Json(run.errors), run.sample_new_job_ids,
                run.sample_updated_job_ids,
            ))
            row = cur.fetchone()
            return str(row['id']) if row else None

    def list_ingestion_logs(self, source_id: Optional[str] = None, limit: int = 50) -> List[Dict[str, Any]]:
        query = "SELECT * FROM ingestion_logs"
        params: List[Any] = []
        if source_id:
            query += " WHERE source_id::text = %s"
            params.append(source_id)
        query += " ORDER BY started_at DESC LIMIT %s"
        params.append(limit)
        with self._cursor() as cur:
            cur.execute(query, params)
            return [dict(r) for r in cur.fetchall()]

    def list_ingestion_runs(self, limit: int = 20) -> List[Dict[str, Any]]:
        with self._cursor() as cur:
            cur.execute("SELECT * FROM ingestion_runs ORDER BY started_at DESC LIMIT %s", (limit,))
            return [dict(r) for r in cur.fetchall()]

    # Freshness reads

    def count_jobs_by_status(self) -> Dict[str, int]:
        with self._cursor() as cur:
            cur.execute("""
                SELECT verification_status, COUNT(*) AS count
                FROM jobs GROUP BY verification_status
            """)
            return {row['verification_status']: int(row['count']) for row in cur.fetchall()}

    def active_job_age_percentiles(self, now: datetime, fractions: Sequence[float]) -> List[Optional[float]]:
        with self._cursor() as cur:
            cur.execute("""
                SELECT percentile_disc(%s::float8[]) WITHIN GROUP (
                    ORDER BY EXTRACT(EPOCH FROM (%s - COALESCE(posted_at, first_seen_at)))
                ) AS ages
                FROM jobs
                WHERE verification_status <> 'expired'
                AND COALESCE(posted_at, first_seen_at) IS NOT NULL
            """, (list(fractions), now))
            row = cur.fetchone()
            ages = row['ages'] if row else None
            if not ages:
                return [None] * len(fractions)
            return [max(0.0, float(seconds) / 3600) if seconds is not None else None for seconds in ages]
