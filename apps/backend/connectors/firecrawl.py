"""
Firecrawl web search / scrape client and the search-backed source connector.

Search results carry no stable posting id, so postings from this connector
are deduplicated on normalized title + company + location.
"""
import os
import re
import logging
from typing import Any, Dict, List, Optional, Tuple

from app.errors import ConfigurationError, UpstreamError
from app.models import JobSource, NormalizedPosting, SourceType
from core.net import HTTPClient
from .base import SourceConnector

logger = logging.getLogger(__name__)

FIRECRAWL_BASE_URL = os.getenv("FIRECRAWL_BASE_URL", "https://api.firecrawl.dev/v1")
SEARCH_LIMIT = 20
SEARCH_SITES = "site:linkedin.com OR site:indeed.com OR site:glassdoor.com"

_AT_RE = re.compile(r'\s+(?:at|@)\s+', re.IGNORECASE)
_SPLIT_RE = re.compile(r'\s+[-|–]\s+')
_LOCATION_RE = re.compile(r'(?:Location|Based in|Office):\s*([^,\n]+)', re.IGNORECASE)
_CITY_RE = re.compile(r'\b(San Francisco|New York|Seattle|Austin|Boston|Chicago|Los Angeles|Remote|Hybrid)\b', re.IGNORECASE)


def split_title_company(raw_title: str) -> Tuple[str, Optional[str]]:
    """
    Split a search-result title into (job title, company).

    Handles "Title at Company" and "Title - Company" / "Company | Title";
    for dash/pipe forms the shorter side is taken as the company.
    """
    raw_title = (raw_title or "").strip()
    if _AT_RE.search(raw_title):
        title, company = _AT_RE.split(raw_title, maxsplit=1)
        company = _SPLIT_RE.split(company)[0]
        return title.strip(), company.strip() or None

    parts = _SPLIT_RE.split(raw_title)
    if len(parts) >= 2:
        first, second = parts[0].strip(), parts[1].strip()
        if len(first) < len(second):
            return second, first
        return first, second
    return raw_title, None


def guess_location(text: str) -> Optional[str]:
    match = _LOCATION_RE.search(text or "")
    if match:
        return match.group(1).strip()
    match = _CITY_RE.search(text or "")
    return match.group(1) if match else None


class FirecrawlClient:
    """Minimal Firecrawl v1 API client (search and scrape)."""

    def __init__(self, api_key: Optional[str] = None, http_client: Optional[HTTPClient] = None, base_url: str = FIRECRAWL_BASE_URL):
        self.api_key = api_key or os.getenv("FIRECRAWL_API_KEY")
        self.http = http_client or HTTPClient()
        self.base_url = base_url.rstrip('/')

    def _auth(self) -> str:
        if not self.api_key:
            raise ConfigurationError("Firecrawl connector not configured")
        return f"Bearer {self.api_key}"

    async def search(self, query: str, limit: int = SEARCH_LIMIT) -> List[Dict[str, Any]]:
        data = await self.http.fetch_json(
            f"{self.base_url}/search",
            method="POST",
            auth_header=self._auth(),
            json_data={
                "query": query,
                "limit": limit,
                "scrapeOptions": {"formats": ["markdown"]},
            },
        )
        return (data or {}).get("data") or []

    async def scrape(self, url: str) -> Dict[str, Any]:
        """Returns {'markdown': str, 'title': Optional[str]}."""
        data = await self.http.fetch_json(
            f"{self.base_url}/scrape",
            method="POST",
            auth_header=self._auth(),
            json_data={
                "url": url,
                "formats": ["markdown"],
                "onlyMainContent": True,
                "waitFor": 2000,
            },
        )
        payload = (data or {}).get("data") or data or {}
        if not isinstance(payload, dict):
            raise UpstreamError("Unexpected scrape payload")
        metadata = payload.get("metadata") or {}
        return {"markdown": payload.get("markdown") or "", "title": metadata.get("title")}


def build_search_query(query: str, location: Optional[str] = None) -> str:
    if location:
        return f"{query} jobs {location} {SEARCH_SITES}"
    return f"{query} jobs {SEARCH_SITES}"


class SearchConnector(SourceConnector):
    """Turns a stored search query (source.config['query']) into postings."""

    source_type = SourceType.SEARCH

    def __init__(self, http_client: Optional[HTTPClient] = None, client: Optional[FirecrawlClient] = None):
        super().__init__(http_client)
        self.client = client or FirecrawlClient(http_client=self.http)

    async def fetch(self, source: JobSource) -> List[NormalizedPosting]:
        query = source.config.get('query') or source.name
        location = source.config.get('location')
        results = await self.client.search(build_search_query(query, location))
        postings = results_to_postings(results, self)
        self.logger.info(f"[search] {len(postings)} postings for query '{query}'")
        return postings


def results_to_postings(results: List[Dict[str, Any]], connector: SourceConnector) -> List[NormalizedPosting]:
    postings: List[NormalizedPosting] = []
    for result in results:
        url = result.get('url')
        if not url:
            continue
        title, company = split_title_company(result.get('title') or 'Job Position')
        description = result.get('description') or (result.get('markdown') or '')[:800]
        postings.append(connector.build_posting(
            title=title[:100],
            company=(company or 'Unknown')[:50],
            description=description,
            location=guess_location(description),
            apply_url=url,
        ))
    return postings
