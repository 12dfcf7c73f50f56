"""
Apply-URL liveness check.

Fetches a job's apply page and reports whether it loads, whether the page
says the posting is closed, and whether an apply control is present.
The verification engine turns these signals into a status decision.
"""

import logging
import re
from typing import Optional

import httpx
from bs4 import BeautifulSoup

from app.models import LinkCheckResult
from core.net import HTTPClient

logger = logging.getLogger(__name__)

CHECK_TIMEOUT_SECONDS = 10.0
MAX_PAGE_KB = 1024

# Statuses that mean the posting was removed on purpose
GONE_STATUS_CODES = {410}

CLOSED_PATTERNS = [
    re.compile(r'position\s+(has\s+been\s+)?filled', re.IGNORECASE),
    re.compile(r'no\s+longer\s+(accepting|available)', re.IGNORECASE),
    re.compile(r'job\s+(has\s+been\s+)?closed', re.IGNORECASE),
    re.compile(r'position\s+(is\s+)?closed', re.IGNORECASE),
    re.compile(r'this\s+job\s+is\s+no\s+longer', re.IGNORECASE),
    re.compile(r'role\s+(has\s+been\s+)?filled', re.IGNORECASE),
    re.compile(r'application\s+deadline\s+(has\s+)?passed', re.IGNORECASE),
]

APPLY_PATTERNS = [
    re.compile(r'apply\s+now', re.IGNORECASE),
    re.compile(r'apply\s+for\s+this\s+(job|position|role)', re.IGNORECASE),
    re.compile(r'submit\s+(your\s+)?application', re.IGNORECASE),
    re.compile(r'class=["\'][^"\']*apply[^"\']*["\']', re.IGNORECASE),
    re.compile(r'id=["\'][^"\']*apply[^"\']*["\']', re.IGNORECASE),
]


def has_closed_signal(text: str) -> bool:
    return any(p.search(text) for p in CLOSED_PATTERNS)


def has_apply_button(html: str) -> bool:
    return any(p.search(html) for p in APPLY_PATTERNS)


def extract_title(html: str) -> Optional[str]:
    soup = BeautifulSoup(html, 'lxml')
    if soup.title and soup.title.string:
        return soup.title.string.strip()
    return None


class LinkValidator:
    """Checks apply URLs with a single GET."""

    def __init__(self, http_client: Optional[HTTPClient] = None, timeout: float = CHECK_TIMEOUT_SECONDS):
        self.http_client = http_client or HTTPClient()
        self.timeout = timeout

    async def check(self, url: str) -> LinkCheckResult:
        """
        Check one URL. Never raises: transport failures are reported as
        an inaccessible result carrying the error text.
        """
        if not url or not url.strip():
            return LinkCheckResult(is_accessible=False, error="Empty URL")

        try:
            status, _, body, final_url = await self.http_client.fetch(
                url,
                max_size_kb=MAX_PAGE_KB,
                headers={"Accept": "text/html,application/xhtml+xml"},
                timeout=self.timeout,
            )
        except (httpx.HTTPError, ValueError) as e:
            logger.info(f"[link_validator] Check failed for {url}: {e}")
            return LinkCheckResult(is_accessible=False, error=str(e)[:500])

        redirect_url = final_url if final_url and final_url != url else None

        if status in GONE_STATUS_CODES:
            return LinkCheckResult(
                is_accessible=False,
                http_status=status,
                closed_signal=True,
                redirect_url=redirect_url,
            )

        if status >= 400:
            return LinkCheckResult(
                is_accessible=False,
                http_status=status,
                redirect_url=redirect_url,
                error=f"HTTP {status}",
            )

        html = body.decode('utf-8', errors='ignore')
        closed = has_closed_signal(html)
        result = LinkCheckResult(
            is_accessible=True,
            http_status=status,
            closed_signal=closed,
            apply_button_found=has_apply_button(html),
            redirect_url=redirect_url,
            page_title=extract_title(html),
        )
        logger.debug(
            f"[link_validator] {url}: status={status} closed={closed} "
            f"apply_button={result.apply_button_found}"
        )
        return result
