"""
Base connector interface for pulling postings from a job source.
"""
import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

from app.models import JobSource, NormalizedPosting, SourceType
from core.net import HTTPClient
from core.normalize import (
    MAX_DESCRIPTION_CHARS,
    MAX_REQUIREMENTS,
    classify_role_type,
    classify_work_type,
    extract_tech_stack,
)

logger = logging.getLogger(__name__)


class SourceConnector(ABC):
    """
    Base class for source connectors.

    A connector knows one upstream API shape. It fetches the current listing
    for a source and returns it as NormalizedPosting objects; rule-based
    tagging (work type, role type, tech stack) is applied by build_posting
    so every connector tags postings the same way.
    """

    source_type: SourceType

    def __init__(self, http_client: Optional[HTTPClient] = None):
        self.http = http_client or HTTPClient()
        self.logger = logging.getLogger(f"{__name__}.{self.source_type.value}")

    @abstractmethod
    async def fetch(self, source: JobSource) -> List[NormalizedPosting]:
        """
        Fetch and normalize the source's current postings.

        Raises UpstreamError (or a network error) when the listing cannot be
        retrieved; individual malformed entries are skipped and logged.
        """
        pass

    def endpoint_for(self, source: JobSource) -> str:
        if not source.api_endpoint:
            raise ValueError(f"No API endpoint configured for source {source.name}")
        return source.api_endpoint

    def company_for(self, source: JobSource) -> str:
        return source.company_name or source.name

    def build_posting(
        self,
        title: str,
        company: str,
        description: str,
        location: Optional[str] = None,
        **fields: Any,
    ) -> NormalizedPosting:
        """Apply shared tagging and limits, then build the posting."""
        title = (title or "Untitled").strip()
        description = description or ""
        work = classify_work_type(location, title, description)
        requirements = list(fields.pop('requirements', None) or [])[:MAX_REQUIREMENTS]
        is_remote = fields.pop('is_remote', None)

        return NormalizedPosting(
            title=title,
            company=company,
            location=location,
            description=description[:MAX_DESCRIPTION_CHARS],
            requirements=requirements,
            work_type=work['work_type'],
            is_remote=work['is_remote'] if is_remote is None else bool(is_remote),
            tech_stack=extract_tech_stack(description),
            role_type=classify_role_type(title, description),
            **fields,
        )

    def _skip(self, raw: Dict[str, Any], error: Exception) -> None:
        self.logger.warning(f"[connector] Skipping malformed {self.source_type.value} entry {raw.get('id')}: {error}")

    def __repr__(self):
        return f"<{self.__class__.__name__}(source_type={self.source_type.value})>"
