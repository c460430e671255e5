"""XPath backend: plain HTTP, XPath queries and field rules."""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

from pagescrape.backend.http_session import HttpSession, http_session_factory
from pagescrape.config import ParsingSettings, get_settings

if TYPE_CHECKING:
    import httpx

    from pagescrape.common.retry import OnRetry, RetryPolicy
    from pagescrape.data_types import ParseRequest


class XPathBackend:
    """Fetches with httpx and evaluates XPath expressions.

    CSS item selectors are converted to XPath with cssselect. The request's
    field rules are evaluated relative to every matched element, and
    ``next_page_xpath`` takes precedence for the next-page check.
    """

    name = "xpath"
    display_name = "XPath"
    features = (
        "XPath item selectors",
        "Named field rules with fallbacks",
        "CSS to XPath conversion",
        "No JavaScript execution",
    )
    base_time_per_page_ms = 3000

    def __init__(
        self,
        settings: ParsingSettings | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._open = http_session_factory(
            settings or get_settings().parsing, True, transport
        )

    @asynccontextmanager
    async def open(
        self,
        request: ParseRequest,
        retry_policy: RetryPolicy,
        on_retry: OnRetry | None = None,
    ) -> AsyncIterator[HttpSession]:
        async with self._open(request, retry_policy, on_retry) as session:
            yield session
