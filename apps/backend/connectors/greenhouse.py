"""
Greenhouse job board connector.

Endpoint: https://boards-api.greenhouse.io/v1/boards/{board}/jobs?content=true
"""
from typing import List

from app.models import JobSource, NormalizedPosting, SourceType
from core.normalize import parse_datetime, sanitize_html
from .base import SourceConnector


class GreenhouseConnector(SourceConnector):
    source_type = SourceType.GREENHOUSE

    async def fetch(self, source: JobSource) -> List[NormalizedPosting]:
        url = self.endpoint_for(source)
        company = self.company_for(source)
        self.logger.info(f"[greenhouse] Fetching jobs for {company} from {url}")

        data = await self.http.fetch_json(url)
        postings: List[NormalizedPosting] = []

        for job in (data or {}).get('jobs', []) or []:
            try:
                location = (job.get('location') or {}).get('name') or None
                postings.append(self.build_posting(
                    title=job.get('title'),
                    company=company,
                    description=sanitize_html(job.get('content')),
                    location=location,
                    apply_url=job.get('absolute_url'),
                    external_id=str(job['id']),
                    posted_at=parse_datetime(job.get('first_published_at') or job.get('updated_at')),
                    ats_logo_url=source.logo_url,
                ))
            except (KeyError, TypeError, ValueError) as e:
                self._skip(job, e)

        self.logger.info(f"[greenhouse] Fetched {len(postings)} jobs for {company}")
        return postings
