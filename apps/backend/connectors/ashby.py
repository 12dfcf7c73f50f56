"""
Ashby job board connector.

Endpoint: https://api.ashbyhq.com/posting-api/job-board/{org}?includeCompensation=true
"""
from typing import Any, Dict, List, Optional, Tuple

from app.models import JobSource, NormalizedPosting, SourceType
from core.normalize import parse_datetime, sanitize_html, to_int
from .base import SourceConnector


class AshbyConnector(SourceConnector):
    source_type = SourceType.ASHBY

    async def fetch(self, source: JobSource) -> List[NormalizedPosting]:
        url = self.endpoint_for(source)
        company = self.company_for(source)
        self.logger.info(f"[ashby] Fetching jobs for {company} from {url}")

        data = await self.http.fetch_json(url)
        postings: List[NormalizedPosting] = []

        for job in (data or {}).get('jobs', []) or []:
            if job.get('isListed') is False:
                continue
            try:
                salary_min, salary_max, currency = self._salary(job.get('compensation'))
                postings.append(self.build_posting(
                    title=job.get('title'),
                    company=company,
                    description=job.get('descriptionPlain') or sanitize_html(job.get('descriptionHtml')),
                    location=job.get('location'),
                    apply_url=job.get('applyUrl') or job.get('jobUrl'),
                    external_id=str(job['id']),
                    posted_at=parse_datetime(job.get('publishedAt')),
                    salary_min=salary_min,
                    salary_max=salary_max,
                    salary_currency=currency,
                    ats_logo_url=source.logo_url,
                    is_remote=True if job.get('isRemote') else None,
                ))
            except (KeyError, TypeError, ValueError) as e:
                self._skip(job, e)

        self.logger.info(f"[ashby] Fetched {len(postings)} jobs for {company}")
        return postings

    def _salary(self, compensation: Optional[Dict[str, Any]]) -> Tuple[Optional[int], Optional[int], Optional[str]]:
        """First salary component of the compensation summary, if any."""
        for component in (compensation or {}).get('summaryComponents') or []:
            if (component.get('compensationType') or '').lower() == 'salary':
                return (
                    to_int(component.get('minValue')),
                    to_int(component.get('maxValue')),
                    component.get('currencyCode'),
                )
        return None, None, None
