"""
Shared HTTP client for news provider APIs.

Wraps an aiohttp session with certifi-backed SSL, per-provider request spacing,
exponential backoff on transient failures and readable error messages for the
usual API status codes.
"""

import asyncio
import logging
import ssl
import time
from typing import Any, Dict, Optional

import aiohttp
import certifi


USER_AGENT = "News Aggregator App/1.0"


class ProviderRequestError(Exception):
    """Raised when a provider request fails or returns an unusable payload."""

    def __init__(self, message: str, code: str = "ERROR", status: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.code = code
        self.status = status

    @property
    def retryable(self) -> bool:
        return self.status is None or self.status >= 500 or self.status == 429


def enhance_error_message(status: int, message: str) -> str:
    if status == 401:
        return "Authentication failed: invalid or missing API key"
    if status == 403:
        return "Access forbidden: the API key may lack permission or the plan does not cover this endpoint"
    if status == 404:
        return "Endpoint not found: check the API URL"
    if status == 429:
        return "Rate limit exceeded: too many requests to the provider"
    return f"HTTP {status}: {message}"


class HttpClient:
    """Rate-limited JSON client bound to one provider base URL."""

    def __init__(
        self,
        base_url: str,
        api_key: Optional[str] = None,
        auth_style: str = "query",
        key_name: str = "apiKey",
        requests_per_second: float = 1.0,
        timeout_seconds: float = 10.0,
        max_retries: int = 3,
        base_delay: float = 0.3,
    ):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.auth_style = auth_style
        self.key_name = key_name
        self.min_interval = 1.0 / requests_per_second if requests_per_second > 0 else 0.0
        self.timeout = aiohttp.ClientTimeout(total=timeout_seconds)
        self.max_retries = max_retries
        self.base_delay = base_delay

        self.headers = {"User-Agent": USER_AGENT, "Accept": "application/json"}
        if self.api_key and self.auth_style == "header":
            self.headers[self.key_name] = self.api_key

        self.session: Optional[aiohttp.ClientSession] = None
        self._throttle_lock = asyncio.Lock()
        self._last_request = 0.0

        self.logger = logging.getLogger(__name__)

    @classmethod
    def from_settings(cls, settings) -> "HttpClient":
        return cls(
            base_url=settings.base_url,
            api_key=settings.api_key,
            auth_style=settings.auth_style,
            key_name=settings.key_name,
            requests_per_second=settings.requests_per_second,
            timeout_seconds=settings.timeout_seconds,
            max_retries=settings.max_retries,
        )

    async def _get_session(self) -> aiohttp.ClientSession:
        """Get or create aiohttp ClientSession with proper SSL configuration."""
        if self.session is None or self.session.closed:
            ssl_context = ssl.create_default_context(cafile=certifi.where())
            connector = aiohttp.TCPConnector(ssl=ssl_context)
            self.session = aiohttp.ClientSession(
                headers=self.headers,
                timeout=self.timeout,
                connector=connector,
            )
        return self.session

    async def close_session(self):
        if self.session and not self.session.closed:
            await self.session.close()
            self.session = None

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close_session()
        return False

    async def _throttle(self) -> None:
        async with self._throttle_lock:
            wait = self.min_interval - (time.monotonic() - self._last_request)
            if wait > 0:
                await asyncio.sleep(wait)
            self._last_request = time.monotonic()

    async def get_json(self, path: str, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """
        GET ``path`` relative to the base URL and return the decoded JSON body.

        4xx responses fail immediately; 5xx responses and transport errors are
        retried with exponential backoff before raising ProviderRequestError.
        """
        query = {k: v for k, v in (params or {}).items() if v is not None}
        if self.api_key and self.auth_style == "query":
            query[self.key_name] = self.api_key

        url = f"{self.base_url}/{path.lstrip('/')}"
        last_error: Optional[ProviderRequestError] = None

        for attempt in range(self.max_retries + 1):
            if attempt > 0:
                delay = self.base_delay * (2 ** (attempt - 1))
                self.logger.debug(f"Retrying {url} in {delay:.2f}s (attempt {attempt + 1}/{self.max_retries + 1})")
                await asyncio.sleep(delay)

            await self._throttle()
            session = await self._get_session()
            try:
                async with session.get(url, params=query) as response:
                    if response.status >= 400:
                        body = await response.text()
                        error = ProviderRequestError(
                            enhance_error_message(response.status, body[:200]),
                            code=f"HTTP_{response.status}",
                            status=response.status,
                        )
                        if response.status < 500:
                            raise error
                        last_error = error
                        continue

                    try:
                        return await response.json(content_type=None)
                    except ValueError as e:
                        raise ProviderRequestError(f"Invalid JSON from {url}: {e}", code="INVALID_RESPONSE") from e

            except asyncio.TimeoutError:
                last_error = ProviderRequestError(f"Request to {url} timed out", code="TIMEOUT")
            except aiohttp.ClientError as e:
                last_error = ProviderRequestError(
                    f"No response received from {url}. Check your network connection: {e}",
                    code="NO_RESPONSE",
                )

            self.logger.warning(f"⚠️ Request to {url} failed: {last_error}")

        raise last_error or ProviderRequestError(f"Request to {url} failed", code="NO_RESPONSE")
