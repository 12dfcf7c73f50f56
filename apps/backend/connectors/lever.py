"""
Lever postings connector.

Endpoint: https://api.lever.co/v0/postings/{company}?mode=json
"""
from typing import Any, Dict, List, Optional

from app.models import JobSource, NormalizedPosting, SourceType
from core.normalize import html_to_lines, parse_datetime, sanitize_html, to_int
from .base import SourceConnector

REQUIREMENT_LIST_MARKERS = ('requirement', 'qualification', 'what you bring', 'you have')


class LeverConnector(SourceConnector):
    source_type = SourceType.LEVER

    async def fetch(self, source: JobSource) -> List[NormalizedPosting]:
        url = self.endpoint_for(source)
        company = self.company_for(source)
        self.logger.info(f"[lever] Fetching jobs for {company} from {url}")

        data = await self.http.fetch_json(url)
        postings: List[NormalizedPosting] = []

        for job in data or []:
            try:
                categories = job.get('categories') or {}
                description = job.get('descriptionPlain') or sanitize_html(job.get('description'))
                salary = job.get('salaryRange') or {}
                postings.append(self.build_posting(
                    title=job.get('text'),
                    company=company,
                    description=description,
                    location=categories.get('location'),
                    requirements=self._requirements(job.get('lists')),
                    apply_url=job.get('hostedUrl') or job.get('applyUrl'),
                    external_id=str(job['id']),
                    posted_at=parse_datetime(job.get('createdAt')),
                    salary_min=to_int(salary.get('min')),
                    salary_max=to_int(salary.get('max')),
                    salary_currency=salary.get('currency'),
                    ats_logo_url=source.logo_url,
                    is_remote=True if job.get('workplaceType') == 'remote' else None,
                ))
            except (KeyError, TypeError, ValueError) as e:
                self._skip(job, e)

        self.logger.info(f"[lever] Fetched {len(postings)} jobs for {company}")
        return postings

    def _requirements(self, lists: Optional[List[Dict[str, Any]]]) -> List[str]:
        requirements: List[str] = []
        for section in lists or []:
            heading = (section.get('text') or '').lower()
            if any(marker in heading for marker in REQUIREMENT_LIST_MARKERS):
                requirements.extend(html_to_lines(section.get('content')))
        return requirements
