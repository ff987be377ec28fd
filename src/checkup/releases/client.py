"""
Async HTTP Client for Checkup

This module provides the asynchronous HTTP layer shared by all release
providers, using aiohttp with session management, connection pooling,
bounded timeouts and per-host rate-limit bookkeeping.

Upstream failures are translated into the provider exception taxonomy:
- UpstreamNotFoundError: 404/410 responses
- RateLimitedError: 429, or 403 with an exhausted rate-limit budget
- UpstreamUnavailableError: network errors, timeouts and other failures
"""

import asyncio
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, AsyncIterator, Dict, List, Mapping, Optional, Tuple
from urllib.parse import urlsplit

import aiohttp
from aiohttp import ClientResponse, ClientSession, ClientTimeout, TCPConnector

from checkup.constants import (
    DEFAULT_CONNECTOR_LIMIT,
    DEFAULT_LIMIT_PER_HOST,
    DEFAULT_REQUEST_TIMEOUT,
    HTTP_STATUS_RETRY_THRESHOLD,
    MAX_RELEASE_PAGES,
    RATE_LIMIT_REMAINING_DEFAULT,
)
from checkup.exceptions import (
    RateLimitedError,
    UpstreamNotFoundError,
    UpstreamUnavailableError,
)
from checkup.log_utils import logger
from checkup.utils import get_user_agent

# GitHub and Forgejo use the X- prefixed names, GitLab the bare ones
_REMAINING_HEADERS = ("X-RateLimit-Remaining", "RateLimit-Remaining")
_RESET_HEADERS = ("X-RateLimit-Reset", "RateLimit-Reset")


class AsyncUpstreamClient:
    """
    Asynchronous client for upstream release listings.

    Example:
        async with AsyncUpstreamClient(timeout=10) as client:
            data = await client.get_paginated(
                "https://api.github.com/repos/owner/repo/releases",
                params={"per_page": 100},
            )
    """

    def __init__(
        self,
        timeout: float = DEFAULT_REQUEST_TIMEOUT,
        connector_limit: int = DEFAULT_CONNECTOR_LIMIT,
        limit_per_host: int = DEFAULT_LIMIT_PER_HOST,
    ) -> None:
        """
        Initialize the client without opening a session.

        Parameters:
            timeout (float): Total per-request timeout in seconds.
            connector_limit (int): Maximum total connections in the pool.
            limit_per_host (int): Maximum simultaneous connections to one host.
        """
        self.timeout = ClientTimeout(total=timeout)
        self.connector_limit = max(1, int(connector_limit))
        self.limit_per_host = max(1, int(limit_per_host))
        self._session: Optional[ClientSession] = None
        self._closed: bool = False

        # Rate limit tracking, keyed by upstream host
        self._rate_limit_remaining: Dict[str, int] = {}
        self._rate_limit_reset: Dict[str, datetime] = {}

    async def __aenter__(self) -> "AsyncUpstreamClient":
        await self._ensure_session()
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()

    async def _ensure_session(self) -> ClientSession:
        """
        Ensure a session exists, creating one if needed.

        Returns:
            ClientSession: The active aiohttp session.
        """
        if self._session is None or self._session.closed:
            connector = TCPConnector(
                limit=self.connector_limit,
                limit_per_host=self.limit_per_host,
                enable_cleanup_closed=True,
            )
            self._session = ClientSession(
                connector=connector,
                timeout=self.timeout,
                headers={"User-Agent": get_user_agent()},
            )
            self._closed = False
        return self._session

    async def close(self) -> None:
        """Close the client session and release resources."""
        if self._session and not self._session.closed:
            await self._session.close()
        self._session = None
        self._closed = True
        self._cleanup_expired_rate_limits()

    def _cleanup_expired_rate_limits(self) -> None:
        """Drop rate-limit entries whose reset time has passed."""
        now = datetime.now(timezone.utc)
        expired_hosts = [
            host for host, reset_time in self._rate_limit_reset.items() if reset_time < now
        ]
        for host in expired_hosts:
            self._rate_limit_remaining.pop(host, None)
            self._rate_limit_reset.pop(host, None)

        if expired_hosts:
            logger.debug(f"Cleaned up {len(expired_hosts)} expired rate limit entries")

    @asynccontextmanager
    async def _rate_limit_guard(self, url: str) -> AsyncIterator[None]:
        """
        Refuse to call a host whose known rate-limit budget is exhausted.

        Raises:
            RateLimitedError: If the remaining budget is zero and the reset time is in the future.
        """
        self._cleanup_expired_rate_limits()
        host = _host_of(url)

        remaining = self._rate_limit_remaining.get(host, RATE_LIMIT_REMAINING_DEFAULT)
        reset_time = self._rate_limit_reset.get(host)

        if remaining == 0 and reset_time and reset_time > datetime.now(timezone.utc):
            raise RateLimitedError(
                f"{host} API rate limit exceeded. Resets at {reset_time}",
                reset_time=reset_time,
                remaining=0,
                url=url,
            )
        yield

    def _update_rate_limits(self, url: str, response: ClientResponse) -> None:
        """Record rate-limit headers from a response for the request's host."""
        host = _host_of(url)
        remaining = _first_header(response.headers, _REMAINING_HEADERS)
        reset = _first_header(response.headers, _RESET_HEADERS)

        if remaining:
            try:
                self._rate_limit_remaining[host] = int(remaining)
            except (ValueError, TypeError):
                pass

        if reset:
            try:
                self._rate_limit_reset[host] = datetime.fromtimestamp(
                    int(reset), tz=timezone.utc
                )
            except (ValueError, TypeError, OSError, OverflowError):
                pass

    def _raise_for_status(self, url: str, response: ClientResponse) -> None:
        """
        Translate a non-success response into the provider exception taxonomy.

        Raises:
            UpstreamNotFoundError: For 404 and 410 responses.
            RateLimitedError: For 429, or 403 with no remaining rate-limit budget.
            UpstreamUnavailableError: For any other non-2xx response.
        """
        status = response.status
        if 200 <= status < 300:
            return

        host = _host_of(url) or url
        if status in (404, 410):
            raise UpstreamNotFoundError(
                f"Repository not found on {host}", url=url, status_code=status
            )

        remaining = _first_header(response.headers, _REMAINING_HEADERS)
        if status == 429 or (status == 403 and remaining == "0"):
            raise RateLimitedError(
                f"{host} API rate limit exceeded",
                reset_time=self._rate_limit_reset.get(_host_of(url)),
                remaining=0,
                url=url,
                status_code=status,
            )

        raise UpstreamUnavailableError(
            f"{host} returned HTTP {status}",
            url=url,
            status_code=status,
            is_retryable=status >= HTTP_STATUS_RETRY_THRESHOLD,
        )

    async def _request(
        self,
        url: str,
        params: Optional[Mapping[str, Any]] = None,
        headers: Optional[Mapping[str, str]] = None,
        as_json: bool = True,
    ) -> Tuple[Any, Optional[str]]:
        """
        Perform one GET request.

        Returns:
            tuple: (decoded body, URL of the next page from the Link header or None)
        """
        session = await self._ensure_session()
        try:
            async with self._rate_limit_guard(url):
                async with session.get(
                    url, params=dict(params) if params else None, headers=headers
                ) as response:
                    self._update_rate_limits(url, response)
                    self._raise_for_status(url, response)
                    if as_json:
                        body = await response.json(content_type=None)
                    else:
                        body = await response.text()
                    return body, _next_link(response)
        except asyncio.TimeoutError as e:
            logger.error(f"Timed out fetching {url}")
            raise UpstreamUnavailableError(
                "Upstream request timed out", url=url, is_retryable=True
            ) from e
        except aiohttp.ClientError as e:
            logger.error(f"Network error fetching {url}: {e}")
            raise UpstreamUnavailableError(
                f"Network error: {e}", url=url, is_retryable=True
            ) from e
        except ValueError as e:
            logger.error(f"Invalid JSON payload from {url}: {e}")
            raise UpstreamUnavailableError(
                "Upstream returned an invalid JSON payload", url=url
            ) from e

    async def get_json(
        self,
        url: str,
        params: Optional[Mapping[str, Any]] = None,
        headers: Optional[Mapping[str, str]] = None,
    ) -> Any:
        """Fetch and decode one JSON document."""
        data, _ = await self._request(url, params=params, headers=headers)
        return data

    async def get_text(
        self, url: str, headers: Optional[Mapping[str, str]] = None
    ) -> str:
        """Fetch one document as text (used for scraped HTML pages)."""
        text, _ = await self._request(url, headers=headers, as_json=False)
        return text

    async def get_paginated(
        self,
        url: str,
        params: Optional[Mapping[str, Any]] = None,
        headers: Optional[Mapping[str, str]] = None,
        max_pages: int = MAX_RELEASE_PAGES,
    ) -> List[Any]:
        """
        Fetch a JSON list endpoint, following `Link: rel="next"` headers.

        The initial query parameters are only sent with the first request;
        next-page URLs already carry their own query string. Pagination stops
        when no next link is present or after `max_pages` pages.

        Raises:
            UpstreamUnavailableError: If any page is not a JSON list.
        """
        items: List[Any] = []
        next_url: Optional[str] = url
        page_params: Optional[Mapping[str, Any]] = params
        pages = 0

        while next_url and pages < max_pages:
            data, following = await self._request(
                next_url, params=page_params, headers=headers
            )
            if not isinstance(data, list):
                raise UpstreamUnavailableError(
                    f"Unexpected payload type from {next_url}: expected list, got {type(data).__name__}",
                    url=next_url,
                )
            items.extend(data)
            pages += 1
            logger.debug(f"Fetched page {pages} ({len(data)} items) from {next_url}")
            next_url = following
            page_params = None

        if next_url:
            logger.warning(
                f"Stopped following pagination for {url} after {max_pages} pages"
            )
        return items


def _first_header(headers: Mapping[str, str], names: Tuple[str, ...]) -> Optional[str]:
    for name in names:
        value = headers.get(name)
        if value is not None:
            return value
    return None


def _next_link(response: ClientResponse) -> Optional[str]:
    links = getattr(response, "links", None) or {}
    next_link = links.get("next")
    if not next_link:
        return None
    target = next_link.get("url")
    return str(target) if target else None


def _host_of(url: str) -> str:
    return urlsplit(url).hostname or ""
