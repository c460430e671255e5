"""Static backend: plain HTTP, CSS queries, no script execution."""

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


class StaticBackend:
    """Fetches with httpx and queries the parsed HTML with CSS selectors.

    Fastest backend; sees only server-rendered markup. Field rules are not
    evaluated.
    """

    name = "static"
    display_name = "Static HTML"
    features = (
        "Fast HTTP fetching",
        "CSS selectors",
        "Low resource usage",
        "No JavaScript execution",
    )
    base_time_per_page_ms = 2000

    def __init__(
        self,
        settings: ParsingSettings | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize the backend.

        Args:
            settings: HTTP timeout and user agent. Defaults to the
                process settings.
            transport: Optional httpx transport, for tests.
        """
        self._open = http_session_factory(
            settings or get_settings().parsing, False, transport
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
