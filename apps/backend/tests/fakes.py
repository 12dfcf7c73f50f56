"""
In-memory collaborators for engine tests.

FakeStore mirrors PostgresStore semantics closely enough for the engines:
upsert is keyed by dedup_key, content changes clear AI stamps, and the
freshness reads see the same rows.
"""
from dataclasses import asdict
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from app.errors import UpstreamError
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
from connectors.base import SourceConnector
from core.store import AI_STAMP_COLUMNS, AI_WRITABLE_COLUMNS, JobStore
from pipeline.freshness import percentile


def make_source(**overrides) -> JobSource:
    fields = dict(
        id="src-1",
        name="Acme Greenhouse",
        source_type=SourceType.GREENHOUSE,
        api_endpoint="https://boards-api.greenhouse.io/v1/boards/acme/jobs?content=true",
        company_name="Acme",
    )
    fields.update(overrides)
    return JobSource(**fields)


def make_posting(index: int = 1, **overrides) -> NormalizedPosting:
    fields = dict(
        title=f"Software Engineer {index}",
        company="Acme",
        apply_url=f"https://boards.greenhouse.io/acme/jobs/{index}",
        external_id=str(index),
        location="New York, NY",
        description=f"Build things with Python. Posting {index}.",
    )
    fields.update(overrides)
    return NormalizedPosting(**fields)


class FakeStore(JobStore):
    def __init__(self, sources: Optional[List[JobSource]] = None):
        self.sources: Dict[str, JobSource] = {s.id: s for s in sources or []}
        self.jobs: Dict[str, Dict[str, Any]] = {}
        self.job_ids_by_key: Dict[str, str] = {}
        self.verification_records: List[Dict[str, Any]] = []
        self.logo_cache: Dict[str, Dict[str, Any]] = {}
        self.logo_updates: List[Tuple[str, LogoResult]] = []
        self.ingestion_logs: List[IngestionLog] = []
        self.ingestion_runs: List[IngestionRun] = []
        self.saved_sources: List[JobSource] = []
        self._next_id = 1

    # Sources

    def list_sources(self, status=None, source_type=None) -> List[JobSource]:
        return [
            s for s in self.sources.values()
            if (status is None or s.status == status) and (source_type is None or s.source_type == source_type)
        ]

    def get_source(self, source_id: str) -> Optional[JobSource]:
        return self.sources.get(source_id)

    def list_due_sources(self, now, limit=None, source_type=None) -> List[JobSource]:
        due = [
            s for s in self.sources.values()
            if s.status == SourceStatus.ACTIVE
            and (s.next_poll_at is None or s.next_poll_at <= now)
            and (source_type is None or s.source_type == source_type)
        ]
        epoch = datetime.min.replace(tzinfo=timezone.utc)
        due.sort(key=lambda s: (not s.is_priority_source, s.last_poll_at or epoch))
        return due[:limit] if limit else due

    def save_source_health(self, source: JobSource) -> None:
        self.sources[source.id] = source
        self.saved_sources.append(source)

    def update_source_status(self, source_id: str, status: SourceStatus) -> bool:
        source = self.sources.get(source_id)
        if not source:
            return False
        source.status = status
        return True

    # Jobs

    def add_job(self, **fields) -> Dict[str, Any]:
        job_id = fields.pop('id', None) or f"job-{self._next_id}"
        self._next_id += 1
        row = {
            'id': job_id,
            'dedup_key': f"manual:{job_id}",
            'content_hash': '',
            'source_id': None,
            'title': 'Engineer',
            'company': 'Acme',
            'location': None,
            'description': 'Python role',
            'apply_url': f"https://boards.greenhouse.io/acme/jobs/{job_id}",
            'ats_logo_url': None,
            'company_logo_url': None,
            'company_domain': None,
            'logo_source': None,
            'posted_at': None,
            'verification_status': VerificationStatus.UNVERIFIED.value,
            'failed_verifications': 0,
            'last_verified_at': None,
            'first_seen_at': datetime.now(timezone.utc),
            'last_seen_at': None,
            'ai_enriched_at': None,
            'ai_classified_at': None,
        }
        row.update(fields)
        self.jobs[job_id] = row
        self.job_ids_by_key[row['dedup_key']] = job_id
        return row

    def _apply_seen_status(self, row: Dict[str, Any], seen_status: Optional[VerificationStatus]) -> None:
        if seen_status is not None:
            row['verification_status'] = seen_status.value
            row['failed_verifications'] = 0

    def upsert_job(self, source, posting, dedup_key, content_hash, now,
                   initial_status=VerificationStatus.UNVERIFIED, seen_status=None) -> UpsertResult:
        fields = asdict(posting)
        job_id = self.job_ids_by_key.get(dedup_key)
        if job_id is None:
            row = self.add_job(
                dedup_key=dedup_key,
                content_hash=content_hash,
                source_id=source.id,
                verification_status=initial_status.value,
                first_seen_at=now,
                last_seen_at=now,
                **fields,
            )
            return UpsertResult(job_id=row['id'], action=UpsertAction.INSERTED)

        row = self.jobs[job_id]
        row['last_seen_at'] = now
        self._apply_seen_status(row, seen_status)
        if row['content_hash'] == content_hash:
            return UpsertResult(job_id=job_id, action=UpsertAction.UNCHANGED)

        row.update(fields)
        row['content_hash'] = content_hash
        row['updated_at'] = now
        for stamp in AI_STAMP_COLUMNS:
            row[stamp] = None
        return UpsertResult(job_id=job_id, action=UpsertAction.UPDATED)

    def mark_unseen_jobs(self, source_id, seen_before, stale_before, expire_before):
        stale_ids, expired_ids = [], []
        for row in self.jobs.values():
            last_seen = row.get('last_seen_at')
            if row.get('source_id') != source_id or last_seen is None or last_seen >= seen_before:
                continue
            status = row['verification_status']
            if status == VerificationStatus.STALE.value and last_seen < expire_before:
                row['verification_status'] = VerificationStatus.EXPIRED.value
                expired_ids.append(row['id'])
            elif status in (VerificationStatus.UNVERIFIED.value, VerificationStatus.VERIFIED_ACTIVE.value) \
                    and last_seen < stale_before:
                row['verification_status'] = VerificationStatus.STALE.value
                stale_ids.append(row['id'])
        return stale_ids, expired_ids

    def get_job(self, job_id: str) -> Optional[Dict[str, Any]]:
        row = self.jobs.get(job_id)
        return dict(row) if row else None

    def list_jobs_for_verification(self, stale_before, limit):
        epoch = datetime.min.replace(tzinfo=timezone.utc)
        rows = [
            dict(r) for r in self.jobs.values()
            if r.get('apply_url')
            and r['verification_status'] != VerificationStatus.EXPIRED.value
            and (r.get('last_verified_at') is None or r['last_verified_at'] < stale_before)
            and (r.get('last_seen_at') is None or r['last_seen_at'] < stale_before)
        ]
        rows.sort(key=lambda r: r.get('last_verified_at') or epoch)
        return rows[:limit]

    def update_verification(self, job_id, status, failed_verifications, verified_at):
        row = self.jobs[job_id]
        row['verification_status'] = status.value
        row['failed_verifications'] = failed_verifications
        row['last_verified_at'] = verified_at

    def insert_verification_record(self, job_id, check, status, checked_at):
        self.verification_records.append({
            'job_id': job_id, 'check': check, 'status': status, 'checked_at': checked_at,
        })

    def list_jobs_pending_ai(self, stamp_column, limit):
        rows = [
            dict(r) for r in self.jobs.values()
            if r.get(stamp_column) is None
            and r.get('description')
            and r['verification_status'] != VerificationStatus.EXPIRED.value
        ]
        return rows[:limit]

    def save_ai_fields(self, job_id, fields, stamp_column, now):
        assert stamp_column in AI_STAMP_COLUMNS
        assert set(fields) <= AI_WRITABLE_COLUMNS
        row = self.jobs[job_id]
        row.update(fields)
        row[stamp_column] = now

    def update_job_logo(self, job_id, logo, verified_at):
        self.logo_updates.append((job_id, logo))
        row = self.jobs.get(job_id)
        if row is not None:
            row['company_logo_url'] = logo.logo_url
            row['company_domain'] = logo.domain
            row['logo_source'] = logo.source.value
            row['logo_last_verified_at'] = verified_at

    def list_jobs_for_logo_backfill(self, limit, check_broken=False):
        rows = [
            dict(r) for r in self.jobs.values()
            if (check_broken or not r.get('company_logo_url'))
            and r['verification_status'] != VerificationStatus.EXPIRED.value
        ]
        return rows[:limit]

    # Logo cache

    def get_logo_cache(self, domain):
        entry = self.logo_cache.get(domain)
        return dict(entry) if entry else None

    def upsert_logo_cache(self, domain, logo_url, source, company_name=None):
        self.logo_cache[domain] = {
            'domain': domain, 'logo_url': logo_url, 'source': source, 'company_name': company_name,
        }

    def delete_logo_cache(self, domain):
        self.logo_cache.pop(domain, None)

    # Run history

    def insert_ingestion_log(self, log: IngestionLog) -> None:
        self.ingestion_logs.append(log)

    def insert_ingestion_run(self, run: IngestionRun) -> Optional[str]:
        self.ingestion_runs.append(run)
        return f"run-{len(self.ingestion_runs)}"

    def list_ingestion_logs(self, source_id=None, limit=50):
        logs = [asdict(log) for log in self.ingestion_logs if source_id is None or log.source_id == source_id]
        return logs[:limit]

    def list_ingestion_runs(self, limit=20):
        return [asdict(run) for run in self.ingestion_runs][:limit]

    # Freshness reads

    def count_jobs_by_status(self) -> Dict[str, int]:
        counts: Dict[str, int] = {}
        for row in self.jobs.values():
            counts[row['verification_status']] = counts.get(row['verification_status'], 0) + 1
        return counts

    def active_job_age_percentiles(self, now, fractions):
        ages = []
        for row in self.jobs.values():
            if row['verification_status'] == VerificationStatus.EXPIRED.value:
                continue
            effective = row.get('posted_at') or row.get('first_seen_at')
            if effective is not None:
                ages.append(max(0.0, (now - effective).total_seconds() / 3600))
        return [percentile(ages, p) for p in fractions]


class FakeConnector(SourceConnector):
    """Returns canned postings, or raises the configured error."""

    def __init__(self, source_type: SourceType = SourceType.GREENHOUSE, postings=None, error: Optional[Exception] = None):
        self.source_type = source_type
        super().__init__()
        self.postings = list(postings or [])
        self.error = error
        self.calls: List[str] = []

    async def fetch(self, source: JobSource) -> List[NormalizedPosting]:
        self.calls.append(source.id)
        if self.error:
            raise self.error
        return list(self.postings)


class FakeLogoChecker:
    """Answers HEAD checks from a url -> bool map; unknown URLs fail."""

    def __init__(self, answers: Optional[Dict[str, bool]] = None, error: Optional[Exception] = None):
        self.answers = answers or {}
        self.error = error
        self.calls: List[Tuple[str, bool]] = []

    async def check(self, url: str, require_image: bool = False) -> bool:
        self.calls.append((url, require_image))
        if self.error:
            raise self.error
        return self.answers.get(url, False)


class FakeLinkValidator:
    """Returns queued check results per URL, or one default result."""

    def __init__(self, results: Optional[Dict[str, Any]] = None, default: Optional[LinkCheckResult] = None):
        self.results = results or {}
        self.default = default or LinkCheckResult(is_accessible=True, http_status=200)
        self.calls: List[str] = []

    async def check(self, url: str) -> LinkCheckResult:
        self.calls.append(url)
        result = self.results.get(url, self.default)
        if isinstance(result, Exception):
            raise result
        return result


class FakeAIService:
    """Returns canned JSON objects in order; Exception entries are raised."""

    def __init__(self, responses: Optional[List[Any]] = None, enabled: bool = True):
        self.responses = list(responses or [])
        self.enabled = enabled
        self.prompts: List[Tuple[str, str]] = []

    async def complete_json(self, system_prompt: str, user_prompt: str, **kwargs) -> Dict[str, Any]:
        self.prompts.append((system_prompt, user_prompt))
        if not self.responses:
            raise UpstreamError("No canned response left")
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


class FakeHTTPClient:
    """Stands in for core.net.HTTPClient; returns canned JSON by URL."""

    def __init__(self, json_by_url: Optional[Dict[str, Any]] = None, pages: Optional[Dict[str, Tuple]] = None):
        self.json_by_url = json_by_url or {}
        self.pages = pages or {}
        self.requests: List[Dict[str, Any]] = []

    async def fetch_json(self, url: str, method: str = "GET", **kwargs) -> Any:
        self.requests.append({'url': url, 'method': method, **kwargs})
        response = self.json_by_url[url]
        if isinstance(response, Exception):
            raise response
        return response

    async def fetch(self, url: str, **kwargs):
        self.requests.append({'url': url, **kwargs})
        page = self.pages[url]
        if isinstance(page, Exception):
            raise page
        return page

    async def head(self, url: str, timeout=None):
        self.requests.append({'url': url, 'method': 'HEAD'})
        page = self.pages[url]
        if isinstance(page, Exception):
            raise page
        return page
