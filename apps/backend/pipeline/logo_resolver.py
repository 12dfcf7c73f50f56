"""
Company logo resolution.

Chain, first hit wins:
  cache (by domain) -> ATS-provided logo -> Clearbit -> Google favicon
  -> DuckDuckGo favicon URL (terminal, never fails)

resolve() never raises: every strategy and cache failure is logged and
treated as "try the next step".
"""
import asyncio
import logging
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple
from urllib.parse import urlparse

import metrics
from app.config import PipelineSettings, settings as default_settings
from app.errors import StorageError
from app.models import LogoResult, LogoSource
from core.cache import Cache
from core.net import HTTPClient
from core.store import JobStore

logger = logging.getLogger(__name__)

CHECK_TIMEOUT_SECONDS = 5.0

# Hosts that belong to job boards/ATS vendors, never to the hiring company
JOB_BOARD_DOMAINS = (
    "greenhouse.io", "lever.co", "workday.com", "myworkdayjobs.com",
    "jobvite.com", "ashbyhq.com", "smartrecruiters.com",
    "linkedin.com", "indeed.com", "glassdoor.com",
)

HOST_PREFIXES = ("www.", "careers.", "jobs.")

KNOWN_DOMAINS: Dict[str, str] = {
    "stripe": "stripe.com", "coinbase": "coinbase.com", "airbnb": "airbnb.com",
    "anthropic": "anthropic.com", "vercel": "vercel.com", "figma": "figma.com",
    "linear": "linear.app", "notion": "notion.so", "openai": "openai.com",
    "google": "google.com", "meta": "meta.com", "facebook": "meta.com",
    "apple": "apple.com", "amazon": "amazon.com", "microsoft": "microsoft.com",
    "netflix": "netflix.com", "spotify": "spotify.com", "uber": "uber.com",
    "lyft": "lyft.com", "doordash": "doordash.com", "instacart": "instacart.com",
    "slack": "slack.com", "discord": "discord.com", "github": "github.com",
    "gitlab": "gitlab.com", "atlassian": "atlassian.com", "dropbox": "dropbox.com",
    "salesforce": "salesforce.com", "adobe": "adobe.com", "nvidia": "nvidia.com",
    "amd": "amd.com", "intel": "intel.com", "qualcomm": "qualcomm.com",
    "snap": "snap.com", "snapchat": "snap.com", "pinterest": "pinterest.com",
    "reddit": "reddit.com", "twitter": "x.com", "x": "x.com",
    "tiktok": "tiktok.com", "bytedance": "bytedance.com", "shopify": "shopify.com",
    "square": "squareup.com", "block": "block.xyz", "robinhood": "robinhood.com",
    "plaid": "plaid.com", "brex": "brex.com", "ramp": "ramp.com",
    "datadog": "datadoghq.com", "snowflake": "snowflake.com", "databricks": "databricks.com",
    "mongodb": "mongodb.com", "elastic": "elastic.co", "twilio": "twilio.com",
    "cloudflare": "cloudflare.com", "airtable": "airtable.com", "asana": "asana.com",
    "monday": "monday.com", "zoom": "zoom.us", "webex": "webex.com",
    "cisco": "cisco.com", "ibm": "ibm.com", "oracle": "oracle.com",
    "sap": "sap.com", "workday": "workday.com", "servicenow": "servicenow.com",
    "palantir": "palantir.com", "crowdstrike": "crowdstrike.com",
    "palo alto networks": "paloaltonetworks.com", "okta": "okta.com",
    "docusign": "docusign.com", "zendesk": "zendesk.com", "hubspot": "hubspot.com",
    "mailchimp": "mailchimp.com", "intercom": "intercom.com", "amplitude": "amplitude.com",
    "mixpanel": "mixpanel.com", "segment": "segment.com", "contentful": "contentful.com",
    "sanity": "sanity.io", "supabase": "supabase.com", "netlify": "netlify.com",
    "heroku": "heroku.com", "render": "render.com", "deno": "deno.com", "bun": "bun.sh",
}

COMPANY_SUFFIX_RE = re.compile(
    r'\s+(inc|llc|corp|corporation|ltd|limited|co|company|technologies|labs|studios|group|holdings)$'
)


def _strip_host(hostname: str) -> str:
    host = hostname.lower()
    changed = True
    while changed:
        changed = False
        for prefix in HOST_PREFIXES:
            if host.startswith(prefix) and host.count('.') > 1:
                host = host[len(prefix):]
                changed = True
    return host


def _is_job_board(hostname: str) -> bool:
    host = hostname.lower()
    return any(host == board or host.endswith("." + board) for board in JOB_BOARD_DOMAINS)


def _known_domain(company: str) -> Optional[str]:
    name = company.lower().strip()
    if name in KNOWN_DOMAINS:
        return KNOWN_DOMAINS[name]
    # Whole-word match so "Block" does not catch "Blockstream Labs"
    words = re.sub(r'[^a-z0-9\s]', ' ', name).split()
    padded = f" {' '.join(words)} "
    for key, domain in KNOWN_DOMAINS.items():
        if len(key) > 2 and f" {key} " in padded:
            return domain
    return None


def slugify_company(company: str) -> Optional[str]:
    cleaned = re.sub(r'[^a-z0-9\s]', '', company.lower()).strip()
    cleaned = COMPANY_SUFFIX_RE.sub('', cleaned).strip()
    slug = re.sub(r'\s+', '', cleaned)
    return slug or None


def derive_domain(company: Optional[str], apply_url: Optional[str] = None) -> Optional[str]:
    """Best-guess company domain; pure and deterministic."""
    if apply_url:
        try:
            hostname = urlparse(apply_url).hostname
        except ValueError:
            hostname = None
        if hostname and not _is_job_board(hostname):
            return _strip_host(hostname)

    if not company or not company.strip():
        return None

    known = _known_domain(company)
    if known:
        return known

    slug = slugify_company(company)
    return f"{slug}.com" if slug else None


def clearbit_url(domain: str) -> str:
    return f"https://logo.clearbit.com/{domain}"


def google_favicon_url(domain: str) -> str:
    return f"https://www.google.com/s2/favicons?domain={domain}&sz=128"


def duckduckgo_favicon_url(domain: str) -> str:
    return f"https://icons.duckduckgo.com/ip3/{domain}.ico"


class LogoChecker:
    """HEAD-checks candidate logo URLs."""

    def __init__(self, http_client: Optional[HTTPClient] = None, timeout: float = CHECK_TIMEOUT_SECONDS):
        self.http = http_client or HTTPClient()
        self.timeout = timeout

    async def check(self, url: str, require_image: bool = False) -> bool:
        status, headers = await self.http.head(url, timeout=self.timeout)
        if status >= 400:
            return False
        if require_image:
            content_type = {k.lower(): v for k, v in headers.items()}.get('content-type', '')
            return 'image' in content_type.lower()
        return True


@dataclass
class LogoContext:
    company: Optional[str]
    apply_url: Optional[str]
    ats_logo_url: Optional[str]
    domain: Optional[str]


Strategy = Tuple[LogoSource, Callable[[LogoContext], Awaitable[Optional[str]]]]


class LogoResolver:
    """Resolves a logo URL for a company through an ordered strategy chain."""

    def __init__(
        self,
        cache: Cache,
        checker: Optional[LogoChecker] = None,
        store: Optional[JobStore] = None,
        settings: Optional[PipelineSettings] = None,
        strategies: Optional[List[Strategy]] = None,
    ):
        self.cache = cache
        self.checker = checker or LogoChecker()
        self.store = store
        self.settings = settings or default_settings
        self.strategies: List[Strategy] = strategies if strategies is not None else [
            (LogoSource.ATS, self._try_ats),
            (LogoSource.CLEARBIT, self._try_clearbit),
            (LogoSource.FAVICON, self._try_google_favicon),
        ]

    async def _try_ats(self, ctx: LogoContext) -> Optional[str]:
        if not ctx.ats_logo_url:
            return None
        if await self.checker.check(ctx.ats_logo_url, require_image=True):
            return ctx.ats_logo_url
        return None

    async def _try_clearbit(self, ctx: LogoContext) -> Optional[str]:
        if not ctx.domain:
            return None
        url = clearbit_url(ctx.domain)
        return url if await self.checker.check(url) else None

    async def _try_google_favicon(self, ctx: LogoContext) -> Optional[str]:
        if not ctx.domain:
            return None
        url = google_favicon_url(ctx.domain)
        return url if await self.checker.check(url) else None

    def _cache_get(self, domain: str) -> Optional[LogoResult]:
        try:
            cached = self.cache.get(domain)
        except Exception as e:
            logger.warning(f"[logo_resolver] Cache read failed for {domain}: {e}")
            return None
        if not cached or not cached.get('logo_url'):
            return None
        try:
            source = LogoSource(cached.get('source'))
        except ValueError:
            source = LogoSource.FALLBACK
        return LogoResult(logo_url=cached['logo_url'], source=source, domain=domain)

    def _cache_set(self, domain: str, result: LogoResult, company: Optional[str]) -> None:
        try:
            self.cache.set(domain, {
                'logo_url': result.logo_url,
                'source': result.source.value,
                'company_name': company,
            })
        except Exception as e:
            logger.warning(f"[logo_resolver] Cache write failed for {domain}: {e}")

    async def resolve(
        self,
        company: Optional[str],
        apply_url: Optional[str] = None,
        ats_logo_url: Optional[str] = None,
    ) -> LogoResult:
        domain = derive_domain(company, apply_url)

        if domain:
            cached = self._cache_get(domain)
            if cached:
                logger.debug(f"[logo_resolver] Cache hit for {domain}")
                return cached

        ctx = LogoContext(company=company, apply_url=apply_url, ats_logo_url=ats_logo_url, domain=domain)
        for source, strategy in self.strategies:
            try:
                url = await strategy(ctx)
            except Exception as e:
                logger.debug(f"[logo_resolver] {source.value} failed for {company} ({domain}): {e}")
                continue
            if url:
                result = LogoResult(logo_url=url, source=source, domain=domain)
                if domain:
                    self._cache_set(domain, result, company)
                logger.info(f"[logo_resolver] Resolved {company} via {source.value}: {url}")
                metrics.record_logo_resolution(source.value)
                return result

        if domain:
            result = LogoResult(logo_url=duckduckgo_favicon_url(domain), source=LogoSource.FALLBACK, domain=domain)
        else:
            result = LogoResult(logo_url=None, source=LogoSource.UNRESOLVED, domain=None)
        metrics.record_logo_resolution(result.source.value)
        return result

    async def resolve_for_job(
        self,
        job_id: str,
        company: Optional[str],
        apply_url: Optional[str] = None,
        ats_logo_url: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> LogoResult:
        """Resolve and write the logo fields onto the job row."""
        if self.store is None:
            raise RuntimeError("LogoResolver has no store; cannot update jobs")
        result = await self.resolve(company, apply_url, ats_logo_url)
        self.store.update_job_logo(job_id, result, now or datetime.now(timezone.utc))
        return result

    async def _logo_still_valid(self, url: str) -> bool:
        try:
            return await self.checker.check(url)
        except Exception as e:
            logger.debug(f"[logo_resolver] Existing logo check failed for {url}: {e}")
            return False

    async def backfill(self, batch_size: Optional[int] = None, check_broken: bool = False) -> Dict[str, Any]:
        """
        Resolve logos for jobs missing one. With check_broken, existing logos
        are re-checked and replaced when they no longer load.
        """
        if self.store is None:
            raise RuntimeError("LogoResolver has no store; cannot backfill")

        batch_size = batch_size or self.settings.logo_default_batch_size
        jobs = self.store.list_jobs_for_logo_backfill(batch_size, check_broken=check_broken)
        logger.info(f"[logo_resolver] Backfilling {len(jobs)} jobs (check_broken={check_broken})")

        processed = success_count = error_count = skipped_count = 0
        for index, job in enumerate(jobs):
            if index > 0 and self.settings.logo_delay_seconds:
                await asyncio.sleep(self.settings.logo_delay_seconds)
            processed += 1
            job_id = str(job['id'])
            try:
                existing = job.get('company_logo_url')
                if check_broken and existing:
                    if await self._logo_still_valid(existing):
                        skipped_count += 1
                        continue
                    if job.get('company_domain'):
                        self.cache.evict(job['company_domain'])

                result = await self.resolve_for_job(
                    job_id,
                    job.get('company'),
                    job.get('apply_url'),
                    job.get('ats_logo_url'),
                )
                if result.logo_url:
                    success_count += 1
                else:
                    error_count += 1
            except StorageError:
                raise
            except Exception as e:
                error_count += 1
                logger.error(f"[logo_resolver] Backfill failed for job {job_id}: {e}")

        return {
            'success': True,
            'processed': processed,
            'successCount': success_count,
            'errorCount': error_count,
            'skippedCount': skipped_count,
        }
