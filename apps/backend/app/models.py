"""
Domain types shared by the pipeline engines.

Closed enumerations are str-valued so they round-trip through the database
and JSON payloads as their plain values.
"""
from dataclasses import dataclass, field, asdict
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional


class SourceStatus(str, Enum):
    ACTIVE = "active"
    PAUSED = "paused"
    FAILING = "failing"
    DISABLED = "disabled"


class SourceKind(str, Enum):
    """How a source delivers postings; drives the dedup key strategy."""
    ATS = "ats"
    API = "api"
    SEARCH_SCRAPE = "search_scrape"


class SourceType(str, Enum):
    GREENHOUSE = "greenhouse"
    LEVER = "lever"
    ASHBY = "ashby"
    SEARCH = "search"

    @property
    def kind(self) -> SourceKind:
        if self is SourceType.SEARCH:
            return SourceKind.SEARCH_SCRAPE
        return SourceKind.ATS


class VerificationStatus(str, Enum):
    UNVERIFIED = "unverified"
    VERIFIED_ACTIVE = "verified_active"
    STALE = "stale"
    EXPIRED = "expired"


class LogoSource(str, Enum):
    ATS = "ats"
    CLEARBIT = "clearbit"
    FAVICON = "favicon"
    FALLBACK = "fallback"
    UNRESOLVED = "unresolved"


class RunType(str, Enum):
    SCHEDULED = "scheduled"
    MANUAL = "manual"


class RunStatus(str, Enum):
    SUCCESS = "success"
    PARTIAL = "partial"
    FAILED = "failed"


class UpsertAction(str, Enum):
    INSERTED = "inserted"
    UPDATED = "updated"
    UNCHANGED = "unchanged"


@dataclass
class JobSource:
    id: str
    name: str
    source_type: SourceType
    base_url: Optional[str] = None
    api_endpoint: Optional[str] = None
    company_name: Optional[str] = None
    logo_url: Optional[str] = None
    poll_interval_minutes: Optional[int] = None
    last_poll_at: Optional[datetime] = None
    next_poll_at: Optional[datetime] = None
    status: SourceStatus = SourceStatus.ACTIVE
    consecutive_failures: int = 0
    last_success_at: Optional[datetime] = None
    last_failure_at: Optional[datetime] = None
    last_error_message: Optional[str] = None
    total_jobs_ingested: int = 0
    active_job_count: int = 0
    reliability_score: float = 1.0
    is_priority_source: bool = False
    tags: List[str] = field(default_factory=list)
    config: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "JobSource":
        """Build from a database row (RealDictCursor dict)."""
        return cls(
            id=str(row["id"]),
            name=row["name"],
            source_type=SourceType(row["source_type"]),
            base_url=row.get("base_url"),
            api_endpoint=row.get("api_endpoint"),
            company_name=row.get("company_name"),
            logo_url=row.get("logo_url"),
            poll_interval_minutes=row.get("poll_interval_minutes"),
            last_poll_at=row.get("last_poll_at"),
            next_poll_at=row.get("next_poll_at"),
            status=SourceStatus(row.get("status") or SourceStatus.ACTIVE.value),
            consecutive_failures=row.get("consecutive_failures") or 0,
            last_success_at=row.get("last_success_at"),
            last_failure_at=row.get("last_failure_at"),
            last_error_message=row.get("last_error_message"),
            total_jobs_ingested=row.get("total_jobs_ingested") or 0,
            active_job_count=row.get("active_job_count") or 0,
            reliability_score=float(row["reliability_score"]) if row.get("reliability_score") is not None else 1.0,
            is_priority_source=bool(row.get("is_priority_source")),
            tags=list(row.get("tags") or []),
            config=dict(row.get("config") or {}),
        )

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["source_type"] = self.source_type.value
        data["status"] = self.status.value
        return data


@dataclass
class NormalizedPosting:
    """A posting as produced by a connector, before dedup."""
    title: str
    company: str
    apply_url: Optional[str] = None
    external_id: Optional[str] = None
    location: Optional[str] = None
    description: Optional[str] = None
    requirements: List[str] = field(default_factory=list)
    work_type: Optional[str] = None
    is_remote: bool = False
    posted_at: Optional[datetime] = None
    salary_min: Optional[int] = None
    salary_max: Optional[int] = None
    salary_currency: Optional[str] = None
    ats_logo_url: Optional[str] = None
    tech_stack: List[str] = field(default_factory=list)
    role_type: Optional[str] = None


@dataclass
class UpsertResult:
    job_id: str
    action: UpsertAction


@dataclass
class SourceStats:
    """Counts from one ingestion attempt against one source."""
    jobs_fetched: int = 0
    jobs_new: int = 0
    jobs_updated: int = 0
    jobs_deduplicated: int = 0
    jobs_stale: int = 0
    jobs_expired: int = 0
    error_count: int = 0


@dataclass
class IngestionLog:
    """One record per ingestion attempt against one source."""
    source_id: str
    started_at: datetime
    completed_at: Optional[datetime] = None
    success: bool = False
    stats: SourceStats = field(default_factory=SourceStats)
    error_message: Optional[str] = None
    duration_ms: int = 0
    sample_new_job_ids: List[str] = field(default_factory=list)
    sample_updated_job_ids: List[str] = field(default_factory=list)
    sample_expired_job_ids: List[str] = field(default_factory=list)


@dataclass
class IngestionRun:
    run_type: RunType
    started_at: datetime
    completed_at: Optional[datetime] = None
    status: RunStatus = RunStatus.SUCCESS
    sources_processed: int = 0
    sources_failed: int = 0
    jobs_seen: int = 0
    jobs_new: int = 0
    jobs_updated: int = 0
    jobs_deduplicated: int = 0
    jobs_stale: int = 0
    jobs_expired: int = 0
    error_count: int = 0
    errors: List[str] = field(default_factory=list)
    sample_new_job_ids: List[str] = field(default_factory=list)
    sample_updated_job_ids: List[str] = field(default_factory=list)


@dataclass
class LogoResult:
    logo_url: Optional[str]
    source: LogoSource
    domain: Optional[str]

    def to_dict(self) -> Dict[str, Any]:
        return {"logo_url": self.logo_url, "source": self.source.value, "domain": self.domain}


@dataclass
class LinkCheckResult:
    """Outcome of one liveness check against an apply URL."""
    is_accessible: bool
    http_status: Optional[int] = None
    closed_signal: bool = False
    apply_button_found: bool = False
    redirect_url: Optional[str] = None
    page_title: Optional[str] = None
    error: Optional[str] = None
