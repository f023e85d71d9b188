"""
HTTP infrastructure layer with bounded retry.

Provides:
- RetryConfig: Retry bound, backoff and what counts as transient
- HTTPClient: Async HTTP client with automatic retry

This layer separates HTTP concerns (retries, backoff) from domain logic
(bucket listing, publishing, link expansion) in the callers.
"""

import asyncio
import random
from dataclasses import dataclass, field
from typing import Any

import httpx
import structlog

logger = structlog.get_logger(__name__)

# Timeouts and connections dropped mid-response (EOF)
TRANSIENT_EXCEPTIONS: tuple[type[Exception], ...] = (
    httpx.TimeoutException,
    httpx.ReadError,
    httpx.RemoteProtocolError,
)


@dataclass
class RetryConfig:
    """
    Exponential backoff configuration for HTTP retries.

    Formula: min(max_backoff, base_delay * 2^attempt) * (1 + random(0, jitter_factor))

    ``max_retries`` counts retries, so a request is attempted at most
    ``max_retries + 1`` times.
    """

    max_retries: int = 3
    max_backoff_seconds: float = 30.0
    base_delay: float = 0.5
    jitter_factor: float = 0.1
    retryable_statuses: frozenset[int] = field(
        default_factory=lambda: frozenset({429, 500, 502, 503, 504})
    )
    retryable_exceptions: tuple[type[Exception], ...] = TRANSIENT_EXCEPTIONS

    @classmethod
    def transient_only(cls, max_retries: int = 3, **kwargs: Any) -> "RetryConfig":
        """Retry on timeout/EOF-class failures only, never on a status code."""
        return cls(max_retries=max_retries, retryable_statuses=frozenset(), **kwargs)

    def calculate_backoff(self, attempt: int) -> float:
        """
        Calculate backoff duration for a given retry attempt.

        Args:
            attempt: The retry attempt number (0-indexed)

        Returns:
            Backoff duration in seconds with jitter applied
        """
        delay = min(self.base_delay * (2**attempt), self.max_backoff_seconds)
        jitter = delay * self.jitter_factor * random.random()
        return delay + jitter

    def is_retryable_status(self, status_code: int) -> bool:
        return status_code in self.retryable_statuses

    def is_retryable_exception(self, exc: Exception) -> bool:
        return isinstance(exc, self.retryable_exceptions)


class HTTPClientError(Exception):
    """Base exception for HTTP client errors."""

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        response_body: str | None = None,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.response_body = response_body


class HTTPClient:
    """
    Async HTTP client with retry logic.

    Features:
    - Exponential backoff with jitter on retryable errors
    - Retry on configured status codes (none for transient_only configs)
    - Retry on timeout and EOF-class errors
    - Context manager for proper resource cleanup

    Example:
        config = RetryConfig.transient_only(max_retries=3)
        async with HTTPClient(config, timeout=10.0) as client:
            response = await client.head("http://bit.ly/abc", follow_redirects=True)
    """

    def __init__(
        self,
        retry_config: RetryConfig | None = None,
        timeout: float = 30.0,
        auth: tuple[str, str] | None = None,
        headers: dict[str, str] | None = None,
    ):
        """
        Initialize HTTP client.

        Args:
            retry_config: Configuration for retry behavior. Uses defaults if None.
            timeout: Request timeout in seconds.
            auth: Optional (username, password) for HTTP basic auth.
            headers: Default headers sent with every request.
        """
        self.retry_config = retry_config or RetryConfig()
        self.timeout = timeout
        self.auth = auth
        self.headers = headers or {}
        self._client: httpx.AsyncClient | None = None

    async def __aenter__(self) -> "HTTPClient":
        self._client = httpx.AsyncClient(
            timeout=self.timeout,
            auth=self.auth,
            headers=self.headers,
        )
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None

    async def get(
        self,
        url: str,
        params: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
        follow_redirects: bool = False,
    ) -> httpx.Response:
        """
        Perform GET request with retry logic.

        Raises:
            HTTPClientError: On non-retryable errors or after retries exhausted
        """
        return await self._request_with_retry(
            "GET", url, params=params, headers=headers, follow_redirects=follow_redirects
        )

    async def head(
        self,
        url: str,
        headers: dict[str, str] | None = None,
        follow_redirects: bool = False,
    ) -> httpx.Response:
        """Perform HEAD request with retry logic."""
        return await self._request_with_retry(
            "HEAD", url, headers=headers, follow_redirects=follow_redirects
        )

    async def post(
        self,
        url: str,
        params: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
        json_body: Any = None,
    ) -> httpx.Response:
        """
        Perform POST request with retry logic.

        Raises:
            HTTPClientError: On non-retryable errors or after retries exhausted
        """
        return await self._request_with_retry(
            "POST", url, params=params, headers=headers, json_body=json_body
        )

    async def _request_with_retry(
        self,
        method: str,
        url: str,
        params: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
        json_body: Any = None,
        follow_redirects: bool = False,
    ) -> httpx.Response:
        """
        Execute HTTP request with retry logic.

        Implements exponential backoff with jitter on retryable errors.
        """
        if not self._client:
            raise RuntimeError("HTTPClient must be used as async context manager")

        attempts = self.retry_config.max_retries + 1
        last_status_code: int | None = None
        last_response_body: str | None = None

        for attempt in range(attempts):
            try:
                response = await self._client.request(
                    method,
                    url,
                    params=params or None,
                    headers=headers or None,
                    json=json_body,
                    follow_redirects=follow_redirects,
                )
            except Exception as e:
                if not self.retry_config.is_retryable_exception(e):
                    if isinstance(e, httpx.HTTPError):
                        raise HTTPClientError(f"Request to {url} failed: {e}") from e
                    raise

                if attempt < self.retry_config.max_retries:
                    backoff = self.retry_config.calculate_backoff(attempt)
                    logger.debug(
                        "Retryable error",
                        url=url,
                        error=type(e).__name__,
                        attempt=attempt + 1,
                        attempts=attempts,
                        backoff=round(backoff, 2),
                    )
                    await asyncio.sleep(backoff)
                    continue

                raise HTTPClientError(
                    f"Request failed after {attempt + 1} attempts: {e}",
                    status_code=last_status_code,
                ) from e

            if self.retry_config.is_retryable_status(response.status_code):
                last_status_code = response.status_code
                last_response_body = response.text

                if attempt < self.retry_config.max_retries:
                    backoff = self.retry_config.calculate_backoff(attempt)
                    logger.debug(
                        "Retryable status",
                        url=url,
                        status=response.status_code,
                        attempt=attempt + 1,
                        attempts=attempts,
                        backoff=round(backoff, 2),
                    )
                    await asyncio.sleep(backoff)
                    continue

                raise HTTPClientError(
                    f"Request failed with status {response.status_code} after {attempt + 1} attempts",
                    status_code=response.status_code,
                    response_body=last_response_body,
                )

            if response.status_code >= 400:
                raise HTTPClientError(
                    f"Request failed with status {response.status_code}",
                    status_code=response.status_code,
                    response_body=response.text,
                )

            return response

        # Should not reach here, but just in case
        raise HTTPClientError(
            f"Request failed after {attempts} attempts",
            status_code=last_status_code,
            response_body=last_response_body,
        )
