"""HTTP request manager for the static and XPath backends.

AsyncRequestManager owns one httpx.AsyncClient for the length of a crawl and
maps HTTP outcomes onto the exception taxonomy:

- timeouts become RequestTimeoutException (retryable)
- connection failures become TransientException (retryable)
- 408, 429, 500, 502, 503 and 504 become HTMLResponseAssumptionException
  (retryable)
- any other status of 400 or above, and malformed URLs, become
  FetchRejectedException (not retryable)
"""

from __future__ import annotations

import logging
import ssl
from typing import Any

import httpx

from pagescrape.common.exceptions import (
    RETRYABLE_STATUS_CODES,
    FetchRejectedException,
    HTMLResponseAssumptionException,
    RequestTimeoutException,
    TransientException,
)
from pagescrape.common.page_element import PageDocument

logger = logging.getLogger(__name__)

DEFAULT_HEADERS = {
    "Accept": (
        "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8"
    ),
    "Accept-Language": "en-US,en;q=0.9",
}


class AsyncRequestManager:
    """Manages HTTP requests for the HTTP-based backends.

    Example::

        async with AsyncRequestManager(timeout=30.0) as manager:
            document = await manager.fetch("https://example.com/list")
    """

    def __init__(
        self,
        timeout: float | None = 30.0,
        user_agent: str | None = None,
        ssl_context: ssl.SSLContext | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize the request manager.

        Args:
            timeout: Request timeout in seconds. None means no timeout.
            user_agent: User-Agent header sent with every request.
            ssl_context: Optional SSL context for HTTPS connections.
            transport: Optional httpx transport, e.g. httpx.MockTransport.
        """
        self.timeout = timeout
        headers = dict(DEFAULT_HEADERS)
        if user_agent:
            headers["User-Agent"] = user_agent

        client_kwargs: dict[str, Any] = {
            "timeout": timeout,
            "headers": headers,
            "follow_redirects": True,
        }
        if ssl_context:
            client_kwargs["verify"] = ssl_context
        if transport is not None:
            client_kwargs["transport"] = transport
        self._client = httpx.AsyncClient(**client_kwargs)

    async def close(self) -> None:
        """Close the HTTP client and release resources."""
        await self._client.aclose()

    async def __aenter__(self) -> AsyncRequestManager:
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.close()

    async def fetch(self, url: str) -> PageDocument:
        """Fetch ``url`` and return the parsed page.

        Args:
            url: Absolute URL to GET.

        Returns:
            PageDocument with the response body.

        Raises:
            FetchRejectedException: For malformed URLs and non-retryable
                error statuses.
            HTMLResponseAssumptionException: For retryable error statuses.
            RequestTimeoutException: If the request times out.
            TransientException: If the connection fails.
        """
        logger.debug(f"GET {url}")
        try:
            response = await self._client.get(url)
        except (httpx.InvalidURL, httpx.UnsupportedProtocol) as e:
            raise FetchRejectedException(url, str(e)) from e
        except httpx.TimeoutException as e:
            raise RequestTimeoutException(
                url=url, timeout_seconds=self.timeout or 0
            ) from e
        except httpx.TransportError as e:
            raise TransientException(
                f"Network error fetching {url}: {e!r}"
            ) from e

        status = response.status_code
        if status in RETRYABLE_STATUS_CODES:
            raise HTMLResponseAssumptionException(
                status_code=status, expected_codes=[200], url=url
            )
        if status >= 400:
            raise FetchRejectedException(url, f"HTTP {status}", status)

        return PageDocument(url=url, text=response.text, status_code=status)
