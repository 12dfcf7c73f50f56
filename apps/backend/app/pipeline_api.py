"""
Pipeline function endpoints.

Automated (cron secret): job-ingestion, job-verify, job-classify,
enrich-job, logo-resolver.
User-triggered (session JWT, rate limited): scrape-job, fetch-jobs.
"""
import logging
from datetime import datetime, timezone
from typing import Optional
from urllib.parse import urlparse

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from app.enrichment import AIFilter, ClassificationEngine
from app.errors import UpstreamError
from app.models import RunType, SourceType
from app.rate_limit import RATE_LIMIT_FETCH, RATE_LIMIT_SCRAPE, limiter
from app.services import (
    get_classification_engine,
    get_enrichment_engine,
    get_firecrawl_client,
    get_ingestion_engine,
    get_logo_resolver,
    get_scrape_cache,
    get_verification_engine,
)
from connectors.firecrawl import FirecrawlClient, SearchConnector, build_search_query, results_to_postings
from core.cache import Cache
from pipeline.ingestion import IngestionEngine, IngestionFilter
from pipeline.logo_resolver import LogoResolver
from pipeline.verification import VerificationEngine, VerificationFilter
from security.auth import cron_secret_required, user_session_required

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/functions")

DEFAULT_SEARCH_QUERY = "software engineer"
MAX_FETCHED_REQUIREMENTS = 6


class IngestionRequest(BaseModel):
    source_id: Optional[str] = None
    source_type: Optional[SourceType] = None
    limit: Optional[int] = Field(default=None, ge=1, le=500)
    scheduled: bool = False


class JobBatchRequest(BaseModel):
    job_id: Optional[str] = None
    limit: Optional[int] = Field(default=None, ge=1, le=500)


class LogoRequest(BaseModel):
    job_id: Optional[str] = None
    company: Optional[str] = None
    apply_url: Optional[str] = None
    logo_url: Optional[str] = None
    batch_size: Optional[int] = Field(default=None, ge=1, le=1000)
    check_broken: bool = False


class ScrapeRequest(BaseModel):
    url: Optional[str] = None


class FetchJobsRequest(BaseModel):
    query: Optional[str] = None
    location: Optional[str] = None


def _bad_request(message: str) -> JSONResponse:
    return JSONResponse(status_code=400, content={"success": False, "error": message})


def _upstream_failure(error: UpstreamError) -> JSONResponse:
    return JSONResponse(status_code=502, content={"success": False, "error": error.user_message()})


@router.post("/job-ingestion", dependencies=[Depends(cron_secret_required)])
async def job_ingestion(
    payload: Optional[IngestionRequest] = None,
    engine: IngestionEngine = Depends(get_ingestion_engine),
):
    payload = payload or IngestionRequest()
    return await engine.run(IngestionFilter(
        source_id=payload.source_id,
        source_type=payload.source_type,
        limit=payload.limit,
        run_type=RunType.SCHEDULED if payload.scheduled else RunType.MANUAL,
    ))


@router.post("/job-verify", dependencies=[Depends(cron_secret_required)])
async def job_verify(
    payload: Optional[JobBatchRequest] = None,
    engine: VerificationEngine = Depends(get_verification_engine),
):
    payload = payload or JobBatchRequest()
    return await engine.run(VerificationFilter(job_id=payload.job_id, limit=payload.limit))


@router.post("/job-classify", dependencies=[Depends(cron_secret_required)])
async def job_classify(
    payload: Optional[JobBatchRequest] = None,
    engine: ClassificationEngine = Depends(get_classification_engine),
):
    payload = payload or JobBatchRequest()
    result = await engine.run(AIFilter(job_id=payload.job_id, limit=payload.limit))
    result['classified'] = result['successCount']
    return result


@router.post("/enrich-job", dependencies=[Depends(cron_secret_required)])
async def enrich_job(
    payload: Optional[JobBatchRequest] = None,
    engine: ClassificationEngine = Depends(get_enrichment_engine),
):
    payload = payload or JobBatchRequest()
    return await engine.run(AIFilter(job_id=payload.job_id, limit=payload.limit))


@router.post("/logo-resolver", dependencies=[Depends(cron_secret_required)])
async def logo_resolver(
    payload: Optional[LogoRequest] = None,
    resolver: LogoResolver = Depends(get_logo_resolver),
):
    payload = payload or LogoRequest()

    if payload.company:
        if payload.job_id:
            result = await resolver.resolve_for_job(
                payload.job_id, payload.company, payload.apply_url, payload.logo_url
            )
        else:
            result = await resolver.resolve(payload.company, payload.apply_url, payload.logo_url)
        return {"success": True, "result": result.to_dict()}

    return await resolver.backfill(batch_size=payload.batch_size, check_broken=payload.check_broken)


@router.post("/scrape-job")
@limiter.limit(RATE_LIMIT_SCRAPE)
async def scrape_job(
    request: Request,
    payload: Optional[ScrapeRequest] = None,
    claims: dict = Depends(user_session_required),
    cache: Cache = Depends(get_scrape_cache),
    client: FirecrawlClient = Depends(get_firecrawl_client),
):
    url = (payload.url if payload else None) or ""
    if not url.strip():
        return _bad_request("URL is required")
    parsed = urlparse(url)
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        return _bad_request("Invalid URL format")

    user_id = claims.get("sub")
    cached = cache.get(url)
    if cached:
        logger.info(f"[scrape_job] Cache hit for {url} (user {user_id})")
        return {"success": True, **cached, "cached": True}

    try:
        page = await client.scrape(url)
    except UpstreamError as e:
        logger.error(f"[scrape_job] Scrape failed for {url}: {e}")
        return _upstream_failure(e)

    result = {
        "content": page["markdown"],
        "title": page.get("title"),
        "scrapedAt": datetime.now(timezone.utc).isoformat(),
    }
    cache.set(url, result)
    logger.info(f"[scrape_job] Scraped {len(result['content'])} chars for user {user_id}")
    return {"success": True, **result, "cached": False}


@router.post("/fetch-jobs")
@limiter.limit(RATE_LIMIT_FETCH)
async def fetch_jobs(
    request: Request,
    payload: Optional[FetchJobsRequest] = None,
    claims: dict = Depends(user_session_required),
    client: FirecrawlClient = Depends(get_firecrawl_client),
):
    payload = payload or FetchJobsRequest()
    query = build_search_query(payload.query or DEFAULT_SEARCH_QUERY, payload.location)
    try:
        results = await client.search(query)
    except UpstreamError as e:
        logger.error(f"[fetch_jobs] Search failed: {e}")
        return _upstream_failure(e)

    postings = results_to_postings(results, SearchConnector(client=client))
    now = datetime.now(timezone.utc).isoformat()
    jobs = [
        {
            "title": p.title,
            "company": p.company,
            "location": p.location or "United States",
            "description": p.description,
            "apply_url": p.apply_url,
            "work_type": p.work_type,
            "role_type": p.role_type,
            "is_remote": p.is_remote,
            "requirements": p.tech_stack[:MAX_FETCHED_REQUIREMENTS],
            "posted_date": now,
            "logo_url": None,
        }
        for p in postings
    ]
    logger.info(f"[fetch_jobs] Returning {len(jobs)} jobs for user {claims.get('sub')}")
    return {"success": True, "jobs": jobs}
