"""Bitbucket HTTP client.

Async HTTP client for the Bitbucket 2.0 API with authentication, retry logic
for transient failures, and decoding of the paginated response envelope.
"""

import asyncio
import logging
from typing import Any, TypeVar

import httpx
from pydantic import ValidationError

from bitbucket_exporter import __version__
from bitbucket_exporter.bitbucket.auth import BitbucketAuth
from bitbucket_exporter.bitbucket.exceptions import DecodeError, TransportError
from bitbucket_exporter.bitbucket.models import Page

logger = logging.getLogger(__name__)

T = TypeVar("T")

QueryParams = dict[str, str | int]


class BitbucketClient:
    """Async HTTP client for the Bitbucket API.

    Features:
    - Basic auth header on every request
    - Retry with exponential backoff on timeouts, network and 5xx errors
    - Retry-After handling for 429 responses
    - Typed decoding of the paginated envelope
    """

    BASE_URL = "https://api.bitbucket.org/2.0"
    DEFAULT_TIMEOUT = 30.0
    DEFAULT_MAX_RETRIES = 3
    INITIAL_BACKOFF = 1.0
    BACKOFF_MULTIPLIER = 2.0

    def __init__(
        self,
        auth: BitbucketAuth | None = None,
        timeout: float = DEFAULT_TIMEOUT,
        max_retries: int = DEFAULT_MAX_RETRIES,
        base_url: str = BASE_URL,
    ) -> None:
        """Initialize Bitbucket HTTP client.

        Args:
            auth: BitbucketAuth instance. If None, creates one from defaults.
            timeout: Request timeout in seconds.
            max_retries: Maximum number of retries for failed requests.
            base_url: Base URL endpoints are resolved against.
        """
        self._auth = auth or BitbucketAuth()
        self._timeout = timeout
        self._max_retries = max_retries
        self._base_url = base_url.rstrip("/")

        self._client: httpx.AsyncClient | None = None
        self.requests_made = 0

    def _get_headers(self) -> dict[str, str]:
        """Get headers for API requests.

        Returns:
            Dictionary of HTTP headers.
        """
        headers = {
            "Accept": "application/json",
            "User-Agent": f"bitbucket-exporter/{__version__}",
        }
        headers.update(self._auth.get_authorization_header())
        return headers

    async def _ensure_client(self) -> httpx.AsyncClient:
        """Ensure async client is initialized.

        Returns:
            Active httpx.AsyncClient instance.
        """
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self._base_url,
                timeout=self._timeout,
                headers=self._get_headers(),
                follow_redirects=True,
            )
        return self._client

    async def _retry_request(
        self,
        endpoint: str,
        params: QueryParams,
        retry_count: int,
        wait_seconds: float | None = None,
    ) -> httpx.Response:
        """Retry a request with exponential backoff.

        Args:
            endpoint: API endpoint.
            params: Query parameters.
            retry_count: Current retry attempt.
            wait_seconds: Explicit delay (from Retry-After), overrides backoff.

        Returns:
            HTTP response.
        """
        if wait_seconds is None:
            wait_seconds = self.INITIAL_BACKOFF * (self.BACKOFF_MULTIPLIER**retry_count)
        logger.debug(
            "Retry %d/%d for GET %s after %.1fs",
            retry_count + 1,
            self._max_retries,
            endpoint,
            wait_seconds,
        )
        await asyncio.sleep(wait_seconds)

        return await self._do_request(endpoint, params, retry_count + 1)

    async def _do_request(
        self,
        endpoint: str,
        params: QueryParams,
        retry_count: int = 0,
    ) -> httpx.Response:
        """Execute a GET request with retry logic.

        Args:
            endpoint: API endpoint relative to the base URL.
            params: Query parameters.
            retry_count: Current retry attempt number.

        Returns:
            Successful HTTP response.

        Raises:
            TransportError: On request failure after retries or non-2xx status.
        """
        client = await self._ensure_client()
        can_retry = retry_count < self._max_retries

        logger.debug("GET %s %s (attempt %d)", endpoint, params, retry_count + 1)

        try:
            response = await client.get(endpoint, params=params)
        except httpx.TimeoutException as e:
            logger.warning("Timeout for GET %s", endpoint)
            if can_retry:
                return await self._retry_request(endpoint, params, retry_count)
            raise TransportError(f"Request timeout for {endpoint}: {e}") from e
        except httpx.NetworkError as e:
            logger.warning("Network error for GET %s: %s", endpoint, e)
            if can_retry:
                return await self._retry_request(endpoint, params, retry_count)
            raise TransportError(f"Network error for {endpoint}: {e}") from e
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            raise TransportError(f"Request failed for {endpoint}: {e}") from e

        self.requests_made += 1
        status = response.status_code

        if status == 429:
            retry_after = response.headers.get("retry-after")
            logger.warning("Rate limited on GET %s (retry-after=%s)", endpoint, retry_after)
            if can_retry:
                wait = float(retry_after) if retry_after and retry_after.isdigit() else None
                return await self._retry_request(endpoint, params, retry_count, wait)
            raise TransportError(f"Rate limit exceeded for {endpoint}", status_code=status)

        if 500 <= status < 600:
            logger.warning("Server error %d for GET %s", status, endpoint)
            if can_retry:
                return await self._retry_request(endpoint, params, retry_count)
            raise TransportError(f"Server error {status} for {endpoint}", status_code=status)

        if not response.is_success:
            logger.error("Client error %d for GET %s: %s", status, endpoint, response.text)
            raise TransportError(f"HTTP {status} for {endpoint}", status_code=status)

        return response

    async def get(self, endpoint: str, params: QueryParams | None = None) -> Any:
        """Make a GET request and decode the JSON body.

        Args:
            endpoint: API endpoint relative to the base URL
                (e.g., "repositories/acme").
            params: Query parameters.

        Returns:
            Decoded JSON body.

        Raises:
            TransportError: On request failure.
            DecodeError: If the body is not valid JSON.
        """
        response = await self._do_request(endpoint, dict(params or {}))
        try:
            return response.json()
        except ValueError as e:
            raise DecodeError(f"Invalid JSON body from {endpoint}: {e}") from e

    async def get_page(
        self,
        endpoint: str,
        item_type: type[T],
        params: QueryParams | None = None,
    ) -> Page[T]:
        """GET one page of a paginated endpoint.

        Args:
            endpoint: API endpoint relative to the base URL.
            item_type: Model each entry of ``values`` is decoded into.
            params: Query parameters.

        Returns:
            Decoded page envelope.

        Raises:
            TransportError: On request failure.
            DecodeError: If the body does not match the envelope shape.
        """
        data = await self.get(endpoint, params)
        try:
            return Page[item_type].model_validate(data)  # type: ignore[valid-type]
        except ValidationError as e:
            raise DecodeError(f"Unexpected response shape from {endpoint}: {e}") from e

    async def close(self) -> None:
        """Close the HTTP client and cleanup resources."""
        if self._client:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> "BitbucketClient":
        """Async context manager entry."""
        await self._ensure_client()
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        """Async context manager exit."""
        await self.close()
