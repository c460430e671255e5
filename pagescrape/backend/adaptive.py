"""Adaptive rendered backend.

Same browser session as the rendered backend, with three additions:

- structure analysis of the first page, which may replace the item selector
  with a suggested one (products, then articles, then posts)
- SPA waiting: outstanding XHR/fetch calls are counted by an init script and
  awaited, then the custom wait selector or a common content landmark
- an initial infinite-scroll loop that stops after 3 unchanged scroll
  heights or the scroll cap

Analyzer failures are logged and never fail the crawl.
"""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from functools import partial
from typing import TYPE_CHECKING

from pagescrape.analysis.structure import PageStructureAnalyzer
from pagescrape.backend.rendered import (
    BrowserFactoryType,
    BrowserSession,
    launch_browser,
)
from pagescrape.config import BrowserSettings, get_settings

if TYPE_CHECKING:
    from pagescrape.common.protocols import StructureAnalyzer
    from pagescrape.common.retry import OnRetry, RetryPolicy
    from pagescrape.data_types import ParseRequest


class AdaptiveBackend:
    """Rendered extraction that adapts to the page it finds."""

    name = "adaptive"
    display_name = "Adaptive rendered"
    features = (
        "JavaScript execution",
        "Page structure analysis",
        "Automatic item selector suggestions",
        "SPA request tracking",
        "Bounded infinite scrolling",
        "Named field rules",
    )
    base_time_per_page_ms = 8000

    def __init__(
        self,
        settings: BrowserSettings | None = None,
        browser_factory: BrowserFactoryType | None = None,
        analyzer: StructureAnalyzer | None = None,
        navigation_timeout: float | None = None,
    ) -> None:
        """Initialize the backend.

        Args:
            settings: Browser settings. Defaults to the process settings.
            browser_factory: Zero-argument callable returning an async
                context manager that yields a browser.
            analyzer: Structure analyzer for the first page.
            navigation_timeout: Navigation timeout in seconds.
        """
        process_settings = get_settings()
        self.settings = settings or process_settings.browser
        self.browser_factory = browser_factory or partial(
            launch_browser, self.settings
        )
        self.analyzer = analyzer or PageStructureAnalyzer()
        self.navigation_timeout = (
            navigation_timeout or process_settings.parsing.timeout_seconds
        )

    @asynccontextmanager
    async def open(
        self,
        request: ParseRequest,
        retry_policy: RetryPolicy,
        on_retry: OnRetry | None = None,
    ) -> AsyncIterator[BrowserSession]:
        session = BrowserSession(
            request,
            retry_policy,
            self.settings,
            self.browser_factory,
            on_retry=on_retry,
            navigation_timeout=self.navigation_timeout,
            adaptive=True,
            analyzer=self.analyzer,
            evaluate_field_rules=True,
        )
        try:
            yield session
        finally:
            await session.close()
