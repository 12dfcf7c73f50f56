"""
HTTP client with retries, timeouts and a polite User-Agent.
Shared by the source connectors, the liveness check and the logo resolver.
"""
import os
import json
import time
import logging
from typing import Optional, Dict, Tuple, Any
import httpx
from tenacity import retry, stop_after_attempt, wait_exponential, retry_if_exception_type

from app.errors import UpstreamError

logger = logging.getLogger(__name__)

DEFAULT_UA = "JinderBot/1.0 (+https://jinder.app/bot)"
DEFAULT_TIMEOUT = 30.0
MAX_RETRIES = 2


class HTTPClient:
    """
    Thin async wrapper over httpx.

    Connection errors and timeouts are retried with exponential backoff.
    HTTP error statuses are never retried here: a 429 or 5xx from an
    upstream is surfaced to the caller and left for the next scheduled run.
    """

    def __init__(self, user_agent: Optional[str] = None, timeout: float = DEFAULT_TIMEOUT):
        self.user_agent = user_agent or os.getenv("PIPELINE_CRAWLER_UA", DEFAULT_UA)
        self.timeout = httpx.Timeout(timeout)

    def _get_headers(self, custom_headers: Optional[Dict[str, str]] = None, auth_header: Optional[str] = None) -> Dict[str, str]:
        headers = {
            "User-Agent": self.user_agent,
            "Accept": "application/json,text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
            "Accept-Language": "en-US,en;q=0.5",
        }
        if custom_headers:
            headers.update(custom_headers)
        if auth_header:
            headers["Authorization"] = auth_header
        return headers

    @retry(
        stop=stop_after_attempt(MAX_RETRIES + 1),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        retry=retry_if_exception_type((httpx.TimeoutException, httpx.ConnectError)),
        reraise=True
    )
    async def fetch(
        self,
        url: str,
        method: str = "GET",
        max_size_kb: int = 2048,
        headers: Optional[Dict[str, str]] = None,
        params: Optional[Dict[str, Any]] = None,
        json_data: Optional[Dict[str, Any]] = None,
        auth_header: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> Tuple[int, Dict[str, str], bytes, str]:
        """
        Fetch URL, following redirects.

        Returns:
            (status_code, headers, body, final_url)
        """
        request_headers = self._get_headers(custom_headers=headers, auth_header=auth_header)
        client_timeout = httpx.Timeout(timeout) if timeout else self.timeout

        async with httpx.AsyncClient(timeout=client_timeout, follow_redirects=True) as client:
            start_time = time.time()
            try:
                if method.upper() == "GET":
                    response = await client.get(url, headers=request_headers, params=params)
                elif method.upper() == "POST":
                    response = await client.post(url, headers=request_headers, params=params, json=json_data)
                else:
                    raise ValueError(f"Unsupported HTTP method: {method}")
            except httpx.TimeoutException as e:
                logger.error(f"[net] Timeout fetching {url}: {e}")
                raise
            except httpx.ConnectError as e:
                logger.error(f"[net] Connection error fetching {url}: {e}")
                raise

            elapsed_ms = int((time.time() - start_time) * 1000)
            content_length = len(response.content)
            if content_length > max_size_kb * 1024:
                logger.warning(f"[net] Content too large: {content_length} bytes (limit: {max_size_kb}KB) - {url}")
                body = response.content[:max_size_kb * 1024]
            else:
                body = response.content

            logger.info(f"[net] {method} {response.status_code} {url} ({content_length} bytes, {elapsed_ms}ms)")
            return (response.status_code, dict(response.headers), body, str(response.url))

    async def fetch_json(self, url: str, method: str = "GET", **kwargs) -> Any:
        """Fetch and decode a JSON body; HTTP errors raise UpstreamError."""
        headers = {"Accept": "application/json"}
        headers.update(kwargs.pop("headers", None) or {})
        try:
            status, _, body, _ = await self.fetch(url, method=method, headers=headers, **kwargs)
        except httpx.HTTPError as e:
            raise UpstreamError(f"Request to {url} failed: {e}") from e

        if status >= 400:
            raise UpstreamError(f"HTTP {status} from {url}", status_code=status)
        try:
            return json.loads(body)
        except ValueError as e:
            raise UpstreamError(f"Invalid JSON from {url}: {e}", status_code=status) from e

    async def head(self, url: str, timeout: Optional[float] = None) -> Tuple[int, Dict[str, str]]:
        """Send HEAD request to check resource metadata"""
        headers = self._get_headers()
        client_timeout = httpx.Timeout(timeout) if timeout else self.timeout

        async with httpx.AsyncClient(timeout=client_timeout, follow_redirects=True) as client:
            try:
                response = await client.head(url, headers=headers)
                logger.debug(f"[net] HEAD {response.status_code} {url}")
                return (response.status_code, dict(response.headers))
            except httpx.HTTPError as e:
                logger.warning(f"[net] HEAD request failed for {url}: {e}")
                raise
