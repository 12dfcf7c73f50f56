"""
AI text-completion client (OpenRouter-compatible chat completions).

One attempt per call: a failed call is reported to the caller, which counts
it as a per-item error and leaves the job for the next scheduled run.
A circuit breaker stops calling the service while its recent error rate
is too high.
"""
import json
import logging
import os
import time
from collections import deque
from typing import Any, Dict, List, Optional

import httpx

from app.errors import AIRateLimitError, ConfigurationError, UpstreamError

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "google/gemini-2.0-flash-001"
DEFAULT_BASE_URL = "https://openrouter.ai/api/v1"
REQUEST_TIMEOUT_SECONDS = 60.0

# Circuit breaker configuration
CIRCUIT_BREAKER_ERROR_THRESHOLD = 0.5
CIRCUIT_BREAKER_WINDOW_SECONDS = 300
CIRCUIT_BREAKER_RESET_SECONDS = 60
CIRCUIT_BREAKER_MIN_CALLS = 10

# Rate limited, or out of credits
RATE_LIMIT_STATUS_CODES = {429, 402}

_ai_service: Optional['AIService'] = None


class CircuitBreaker:
    """Opens when the error rate over a sliding window crosses a threshold."""

    def __init__(
        self,
        error_threshold: float = CIRCUIT_BREAKER_ERROR_THRESHOLD,
        window_seconds: int = CIRCUIT_BREAKER_WINDOW_SECONDS,
        reset_seconds: int = CIRCUIT_BREAKER_RESET_SECONDS,
        min_calls: int = CIRCUIT_BREAKER_MIN_CALLS,
        clock=time.time,
    ):
        self.error_threshold = error_threshold
        self.window_seconds = window_seconds
        self.reset_seconds = reset_seconds
        self.min_calls = min_calls
        self.clock = clock
        self.history = deque()  # (timestamp, is_error)
        self.open_since: Optional[float] = None

    @property
    def is_open(self) -> bool:
        return self.open_since is not None

    def record_call(self, is_error: bool) -> None:
        now = self.clock()
        self.history.append((now, is_error))
        cutoff = now - self.window_seconds
        while self.history and self.history[0][0] < cutoff:
            self.history.popleft()

        if not is_error:
            if self.is_open:
                logger.info("[ai_service] Circuit breaker CLOSED after successful call")
            self.open_since = None
            return

        if len(self.history) >= self.min_calls and not self.is_open:
            errors = sum(1 for _, err in self.history if err)
            error_rate = errors / len(self.history)
            if error_rate >= self.error_threshold:
                self.open_since = now
                logger.warning(
                    f"[ai_service] Circuit breaker OPENED: error rate {error_rate:.1%} >= {self.error_threshold:.1%}"
                )

    def can_make_call(self) -> bool:
        if not self.is_open:
            return True
        # Half-open: let one call through after the reset period
        return self.clock() - self.open_since >= self.reset_seconds


class AIService:
    """Chat-completions client returning parsed JSON objects."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: Optional[str] = None,
        base_url: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        circuit_breaker: Optional[CircuitBreaker] = None,
    ):
        self.api_key = api_key if api_key is not None else os.getenv("OPENROUTER_API_KEY")
        self.model = model or os.getenv("OPENROUTER_MODEL", DEFAULT_MODEL)
        self.base_url = (base_url or os.getenv("OPENROUTER_BASE_URL", DEFAULT_BASE_URL)).rstrip('/')
        self.transport = transport
        self.circuit_breaker = circuit_breaker or CircuitBreaker()

    @property
    def enabled(self) -> bool:
        return bool(self.api_key)

    def _headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
            "HTTP-Referer": "https://jinder.app",
            "X-Title": "Jinder Job Pipeline",
        }

    async def complete_json(
        self,
        system_prompt: str,
        user_prompt: str,
        temperature: float = 0.2,
        max_tokens: Optional[int] = None,
    ) -> Dict[str, Any]:
        """
        Run one completion and parse its content as a JSON object.

        Raises:
            ConfigurationError: no API key
            AIRateLimitError: HTTP 429/402 from the service
            UpstreamError: any other failure (transport, HTTP error, bad JSON,
                open circuit)
        """
        if not self.enabled:
            raise ConfigurationError("AI service not configured")
        if not self.circuit_breaker.can_make_call():
            raise UpstreamError("AI service circuit breaker is open", status_code=503)

        messages: List[Dict[str, str]] = [
            {"role": "system", "content": system_prompt},
            {"role": "user", "content": user_prompt},
        ]
        payload: Dict[str, Any] = {
            "model": self.model,
            "messages": messages,
            "temperature": temperature,
            "response_format": {"type": "json_object"},
        }
        if max_tokens:
            payload["max_tokens"] = max_tokens

        try:
            async with httpx.AsyncClient(timeout=REQUEST_TIMEOUT_SECONDS, transport=self.transport) as client:
                response = await client.post(
                    f"{self.base_url}/chat/completions",
                    headers=self._headers(),
                    json=payload,
                )
        except httpx.HTTPError as e:
            self.circuit_breaker.record_call(True)
            logger.warning(f"[ai_service] Request failed: {e}")
            raise UpstreamError(f"AI request failed: {e}") from e

        if response.status_code in RATE_LIMIT_STATUS_CODES:
            logger.warning(f"[ai_service] Rate limited or out of credits (HTTP {response.status_code})")
            raise AIRateLimitError(f"AI service returned HTTP {response.status_code}", status_code=response.status_code)

        if response.status_code >= 400:
            self.circuit_breaker.record_call(True)
            logger.error(f"[ai_service] HTTP {response.status_code}: {response.text[:200]}")
            raise UpstreamError(f"AI service returned HTTP {response.status_code}", status_code=response.status_code)

        try:
            data = response.json()
            content = data["choices"][0]["message"]["content"]
            parsed = json.loads(content) if isinstance(content, str) else content
        except (ValueError, KeyError, IndexError, TypeError) as e:
            self.circuit_breaker.record_call(True)
            logger.error(f"[ai_service] Unparseable AI response: {e}")
            raise UpstreamError(f"Invalid AI response: {e}") from e

        if not isinstance(parsed, dict):
            self.circuit_breaker.record_call(True)
            raise UpstreamError("AI response is not a JSON object")

        self.circuit_breaker.record_call(False)
        return parsed


def get_ai_service() -> AIService:
    """Get global AI service instance (lazy initialization)"""
    global _ai_service
    if _ai_service is None:
        _ai_service = AIService()
    return _ai_service
