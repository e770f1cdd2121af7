"""Shared HTTP plumbing for upstream market-data connectors.

A connector is an async context manager owning one httpx.AsyncClient. Page
requests go through a semaphore and a tenacity retry loop (exponential
backoff with jitter). ``_get_json`` can also require a payload-level
``status`` value and retries the page when it differs.

All failures derive from ConnectorError so callers can map them in one place.
"""

import abc
import asyncio
from typing import Any

import httpx
import structlog
from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential_jitter,
)


# ---------------------------------------------------------------------------
# Exception hierarchy
# ---------------------------------------------------------------------------
class ConnectorError(Exception):
    """Base class for upstream connector failures."""


class RateLimitError(ConnectorError):
    """HTTP 429 persisted through every attempt."""


class DataParsingError(ConnectorError):
    """Body is not the JSON object the connector expects."""


class FetchError(ConnectorError):
    """Transport or HTTP status failure after the last attempt."""


class UpstreamStatusError(ConnectorError):
    """Raised when a page keeps reporting a non-OK status after all retries."""


class ConfigurationError(ConnectorError):
    """Raised when required connector settings (e.g. an API key) are missing."""


# Errors that trigger another attempt of the same request
RETRYABLE_ERRORS = (
    httpx.HTTPStatusError,
    httpx.ConnectError,
    httpx.TimeoutException,
    RateLimitError,
    UpstreamStatusError,
)


# ---------------------------------------------------------------------------
# BaseConnector ABC
# ---------------------------------------------------------------------------
class BaseConnector(abc.ABC):
    """Abstract base class for upstream data source connectors.

    Subclasses MUST override:
        SOURCE_NAME: str - identifier (e.g., "POLYGON_OPTIONS")
        BASE_URL: str - base API URL

    Subclasses MAY override:
        RATE_LIMIT_PER_SECOND: float - max concurrent requests (default 5.0)
        MAX_RETRIES: int - attempts per request (default 3)
        TIMEOUT_SECONDS: float - HTTP timeout per request (default 30.0)
        RETRY_INITIAL_WAIT / RETRY_MAX_WAIT / RETRY_JITTER: backoff shape

    Usage::

        async with MyConnector() as conn:
            records = await conn.fetch(...)
    """

    # Subclasses MUST override
    SOURCE_NAME: str = ""
    BASE_URL: str = ""

    # Subclasses MAY override
    RATE_LIMIT_PER_SECOND: float = 5.0
    MAX_RETRIES: int = 3
    TIMEOUT_SECONDS: float = 30.0
    RETRY_INITIAL_WAIT: float = 1.0
    RETRY_MAX_WAIT: float = 30.0
    RETRY_JITTER: float = 5.0

    def __init__(self, base_url: str | None = None) -> None:
        self.base_url = base_url or self.BASE_URL
        self._client: httpx.AsyncClient | None = None
        self._semaphore = asyncio.Semaphore(int(self.RATE_LIMIT_PER_SECOND))
        self.log = structlog.get_logger().bind(connector=self.SOURCE_NAME)

    async def __aenter__(self) -> "BaseConnector":
        """Create and configure the httpx async client."""
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=httpx.Timeout(self.TIMEOUT_SECONDS),
            limits=httpx.Limits(
                max_connections=10,
                max_keepalive_connections=5,
            ),
        )
        return self

    async def __aexit__(self, *exc: Any) -> None:
        """Close the httpx async client if open."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    @property
    def client(self) -> httpx.AsyncClient:
        """Return the active httpx client.

        Raises:
            ConnectorError: If the client has not been initialized via __aenter__.
        """
        if self._client is None:
            raise ConnectorError(
                f"{self.SOURCE_NAME}: HTTP client not initialized. "
                "Use 'async with connector:' context manager."
            )
        return self._client

    def _retrying(self) -> AsyncRetrying:
        """Build the retry controller.

        Built per call so that instance/class attributes (MAX_RETRIES, wait
        shape) are read at runtime rather than decoration time.
        """
        return AsyncRetrying(
            retry=retry_if_exception_type(RETRYABLE_ERRORS),
            stop=stop_after_attempt(self.MAX_RETRIES),
            wait=wait_exponential_jitter(
                initial=self.RETRY_INITIAL_WAIT,
                max=self.RETRY_MAX_WAIT,
                jitter=self.RETRY_JITTER,
            ),
            reraise=True,
        )

    async def _send(self, method: str, url: str, attempt: int, **kwargs: Any) -> httpx.Response:
        """Issue one HTTP request, raising on 429 and other error statuses."""
        self.log.debug("http_request", method=method, url=url, attempt=attempt)
        response = await self.client.request(method, url, **kwargs)
        if response.status_code == 429:
            raise RateLimitError(f"{self.SOURCE_NAME}: Rate limit exceeded (HTTP 429)")
        response.raise_for_status()
        return response

    async def _get_json(
        self,
        url: str,
        expected_status: str | None = None,
        **kwargs: Any,
    ) -> dict[str, Any]:
        """GET a JSON object, retrying the whole page on a bad status.

        Parsing happens inside the retry loop so that a payload whose
        ``status`` differs from ``expected_status`` is retried like an HTTP
        failure. Malformed JSON is not retried.

        Raises:
            DataParsingError: If the body is not a JSON object.
            UpstreamStatusError: If the status check still fails on the last attempt.
            FetchError: If HTTP attempts are exhausted.
        """
        async with self._semaphore:
            try:
                async for attempt in self._retrying():
                    with attempt:
                        response = await self._send(
                            "GET", url, attempt.retry_state.attempt_number, **kwargs
                        )
                        payload = self._parse_json(response)
                        status = payload.get("status")
                        if expected_status is not None and status != expected_status:
                            self.log.warning(
                                "unexpected_page_status",
                                url=url,
                                status=status,
                                attempt=attempt.retry_state.attempt_number,
                            )
                            raise UpstreamStatusError(
                                f"{self.SOURCE_NAME}: page status {status!r}, "
                                f"expected {expected_status!r}"
                            )
                        return payload
            except httpx.HTTPError as exc:
                raise FetchError(
                    f"{self.SOURCE_NAME}: GET {url} failed after "
                    f"{self.MAX_RETRIES} attempts: {exc}"
                ) from exc

        raise FetchError(f"{self.SOURCE_NAME}: Request failed after retries")  # pragma: no cover

    def _parse_json(self, response: httpx.Response) -> dict[str, Any]:
        try:
            payload = response.json()
        except ValueError as exc:
            raise DataParsingError(
                f"{self.SOURCE_NAME}: malformed JSON from {response.url}: {exc}"
            ) from exc
        if not isinstance(payload, dict):
            raise DataParsingError(
                f"{self.SOURCE_NAME}: expected a JSON object, got {type(payload).__name__}"
            )
        return payload

    # ---------------------------------------------------------------------------
    # Abstract interface
    # ---------------------------------------------------------------------------
    @abc.abstractmethod
    async def fetch(self, **kwargs: Any) -> list[dict[str, Any]]:
        """Fetch raw records from the external source.

        Returns:
            List of record dicts as delivered upstream.
        """
        ...
