"""Browser-rendered backends.

BrowserSession drives one Playwright page for the whole crawl:

1. The browser is launched lazily on the first fetch and closed exactly once
   when the session's ``open()`` block exits, whatever the exit path.
2. Every page is navigated with the request's wait strategy, auto-scrolled
   once, and snapshotted to HTML that is parsed with lxml.
3. Button pagination clicks the next control instead of navigating; infinite
   pagination keeps the page and only extracts elements that are new.

RenderedBackend uses the session as is. AdaptiveBackend (see adaptive.py)
turns on structure analysis, SPA waiting and the initial scroll loop.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator, Callable
from contextlib import (
    AbstractAsyncContextManager,
    AsyncExitStack,
    asynccontextmanager,
)
from functools import partial
from typing import TYPE_CHECKING, Any

from playwright.async_api import TimeoutError as PlaywrightTimeoutError
from playwright.async_api import async_playwright

from pagescrape.common.exceptions import (
    RETRYABLE_STATUS_CODES,
    FetchRejectedException,
    HTMLResponseAssumptionException,
    RequestTimeoutException,
)
from pagescrape.common.extraction import extract_items
from pagescrape.common.page_element import PageDocument
from pagescrape.common.pagination import next_page_selector
from pagescrape.common.selector_utils import is_xpath, playwright_selector
from pagescrape.config import BrowserSettings, get_settings
from pagescrape.data_types import PaginationType, WaitStrategy

if TYPE_CHECKING:
    from pagescrape.backend.base import OnWarning
    from pagescrape.common.protocols import (
        Browser,
        BrowserPage,
        StructureAnalyzer,
    )
    from pagescrape.common.retry import OnRetry, RetryPolicy
    from pagescrape.data_types import PaginationConfig, ParseRequest, Record

logger = logging.getLogger(__name__)

BrowserFactoryType = Callable[[], AbstractAsyncContextManager["Browser"]]

AUTO_SCROLL_JS = """
async () => {
    await new Promise((resolve) => {
        let scrolled = 0;
        const distance = 100;
        const timer = setInterval(() => {
            const height = document.body.scrollHeight;
            window.scrollBy(0, distance);
            scrolled += distance;
            if (scrolled >= height) {
                clearInterval(timer);
                resolve();
            }
        }, 100);
    });
}
"""

SCROLL_HEIGHT_JS = "() => document.body.scrollHeight"

SCROLL_TO_BOTTOM_JS = "() => window.scrollTo(0, document.body.scrollHeight)"

HEIGHT_GREW_JS = "(height) => document.body.scrollHeight > height"

NEXT_CONTROL_USABLE_JS = """
(selector) => Array.from(document.querySelectorAll(selector)).some(
    (el) => !el.disabled
        && !el.classList.contains('disabled')
        && el.offsetParent !== null
)
"""

REQUEST_TRACKER_JS = """
(() => {
    window.__pendingRequests = 0;
    const OriginalXHR = window.XMLHttpRequest;
    window.XMLHttpRequest = function () {
        const xhr = new OriginalXHR();
        window.__pendingRequests++;
        xhr.addEventListener('loadend', () => { window.__pendingRequests--; });
        return xhr;
    };
    const originalFetch = window.fetch;
    window.fetch = function (...args) {
        window.__pendingRequests++;
        return originalFetch.apply(this, args).finally(() => {
            window.__pendingRequests--;
        });
    };
})();
"""

REQUESTS_SETTLED_JS = "() => (window.__pendingRequests || 0) === 0"

CONTENT_LANDMARK_JS = """
() => ['main', '[role="main"]', '.content', '.container', 'article']
    .some((selector) => document.querySelector(selector))
"""

# wait_for_load_state() has no "commit" state.
LOAD_STATES = {
    WaitStrategy.LOAD: "load",
    WaitStrategy.DOMCONTENTLOADED: "domcontentloaded",
    WaitStrategy.NETWORKIDLE: "networkidle",
    WaitStrategy.COMMIT: "load",
}


@asynccontextmanager
async def launch_browser(settings: BrowserSettings) -> AsyncIterator[Any]:
    """Start Playwright and launch the configured browser.

    Args:
        settings: Browser type and headless flag.

    Yields:
        The launched playwright.async_api.Browser.
    """
    playwright = await async_playwright().start()
    try:
        browser_launcher = getattr(playwright, settings.browser_type)
        browser = await browser_launcher.launch(headless=settings.headless)
        try:
            yield browser
        finally:
            await browser.close()
    finally:
        await playwright.stop()


class BrowserSession:
    """One browser page driven across every page of a crawl.

    Attributes:
        request: The request being crawled.
        adaptive: Enable structure analysis, SPA waiting and the initial
            infinite-scroll loop.
        evaluate_field_rules: Add the request's field rules to records.
    """

    def __init__(
        self,
        request: ParseRequest,
        retry_policy: RetryPolicy,
        settings: BrowserSettings,
        browser_factory: BrowserFactoryType,
        on_retry: OnRetry | None = None,
        navigation_timeout: float = 30.0,
        adaptive: bool = False,
        analyzer: StructureAnalyzer | None = None,
        evaluate_field_rules: bool = False,
    ) -> None:
        self.request = request
        self.adaptive = adaptive
        self.evaluate_field_rules = evaluate_field_rules
        self._retry_policy = retry_policy
        self._settings = settings
        self._browser_factory = browser_factory
        self._on_retry = on_retry
        self._navigation_timeout = navigation_timeout
        self._analyzer = analyzer

        self._stack = AsyncExitStack()
        self._page: BrowserPage | None = None
        self._closed = False
        self._loaded = False
        self._scrolled_initially = False
        self._analyzed = False
        self._selector_override: str | None = None
        self._seen_elements = 0

    @property
    def is_open(self) -> bool:
        return self._page is not None and not self._closed

    @property
    def item_selector_override(self) -> str | None:
        """Item selector chosen by structure analysis, if any."""
        return self._selector_override

    @property
    def _advances_in_place(self) -> bool:
        return self.request.pagination_type in (
            PaginationType.BUTTON,
            PaginationType.INFINITE,
        )

    async def close(self) -> None:
        """Close the page, browser and Playwright. Safe to call repeatedly."""
        if self._closed:
            return
        self._closed = True
        logger.debug("Closing browser session")
        await self._stack.aclose()

    async def _ensure_page(self) -> BrowserPage:
        if self._closed:
            raise RuntimeError("Browser session is closed")
        if self._page is None:
            logger.info(
                f"Launching {self._settings.browser_type} "
                f"(headless={self._settings.headless})"
            )
            browser = await self._stack.enter_async_context(
                self._browser_factory()
            )
            page_kwargs: dict[str, Any] = {
                "viewport": {
                    "width": self._settings.viewport_width,
                    "height": self._settings.viewport_height,
                },
                "locale": self._settings.locale,
            }
            if self._settings.user_agent:
                page_kwargs["user_agent"] = self._settings.user_agent
            page = await browser.new_page(**page_kwargs)
            self._stack.push_async_callback(page.close)
            if self.adaptive and self.request.spa:
                await page.add_init_script(REQUEST_TRACKER_JS)
            self._page = page
        return self._page

    # -------------------------------------------------------------------------
    # fetch
    # -------------------------------------------------------------------------

    async def fetch(self, page_url: str) -> PageDocument:
        if self._loaded and self._advances_in_place:
            return await self._advance()
        document = await self._retry_policy.run(
            self._load, page_url, on_retry=self._on_retry
        )
        self._loaded = True
        return document

    async def _load(self, page_url: str) -> PageDocument:
        page = await self._ensure_page()
        logger.debug(
            f"Navigating to {page_url} "
            f"(wait_until={self.request.wait_strategy.value})"
        )
        try:
            response = await page.goto(
                page_url,
                wait_until=self.request.wait_strategy.value,
                timeout=self._navigation_timeout * 1000,
            )
        except PlaywrightTimeoutError as e:
            raise RequestTimeoutException(
                url=page_url, timeout_seconds=self._navigation_timeout
            ) from e

        status = getattr(response, "status", None)
        if isinstance(status, int):
            if status in RETRYABLE_STATUS_CODES:
                raise HTMLResponseAssumptionException(
                    status_code=status, expected_codes=[200], url=page_url
                )
            if status >= 400:
                raise FetchRejectedException(
                    page_url, f"HTTP {status}", status
                )

        await self._sleep_ms(self._settings.post_navigation_wait_ms)
        await self._wait_for_content(page)
        if (
            self.adaptive
            and self.request.infinite_scrolling
            and not self._scrolled_initially
        ):
            self._scrolled_initially = True
            await self._initial_scroll(page)
        return await self._snapshot(page, status)

    async def _advance(self) -> PageDocument:
        """Produce the next page without navigating."""
        page = await self._ensure_page()
        if self.request.pagination_type is PaginationType.BUTTON:
            config = self.request.pagination_config
            selector = next_page_selector(PaginationType.BUTTON, config)
            handle = None
            target = playwright_selector(selector) if selector else None
            if target:
                handle = await page.query_selector(target)
            if handle is None:
                raise FetchRejectedException(
                    page.url, f"next control '{selector}' not found"
                )
            logger.debug(f"Clicking next control '{selector}'")
            await handle.click()
            state = LOAD_STATES[self.request.wait_strategy]
            try:
                await page.wait_for_load_state(
                    state, timeout=self._navigation_timeout * 1000
                )
            except PlaywrightTimeoutError as e:
                raise RequestTimeoutException(
                    url=page.url, timeout_seconds=self._navigation_timeout
                ) from e
            await self._sleep_ms(self._settings.post_navigation_wait_ms)
        return await self._snapshot(page, None)

    async def _snapshot(
        self, page: BrowserPage, status: int | None
    ) -> PageDocument:
        await page.evaluate(AUTO_SCROLL_JS)
        content = await page.content()
        return PageDocument(
            url=page.url, text=content, status_code=status, live_page=page
        )

    async def _sleep_ms(self, milliseconds: int) -> None:
        if milliseconds > 0:
            await asyncio.sleep(milliseconds / 1000)

    # -------------------------------------------------------------------------
    # waiting
    # -------------------------------------------------------------------------

    async def _wait_for_content(self, page: BrowserPage) -> None:
        if self.adaptive and self.request.spa:
            await self._wait_for_spa(page)
        elif self.request.custom_wait_selector:
            await self._wait_for_custom_selector(page)

    async def _wait_for_spa(self, page: BrowserPage) -> None:
        """Wait for outstanding XHR/fetch calls, then for visible content."""
        try:
            await page.wait_for_function(
                REQUESTS_SETTLED_JS,
                timeout=self._settings.spa_network_timeout_ms,
            )
        except PlaywrightTimeoutError:
            logger.warning("Timed out waiting for SPA requests to settle")

        await self._sleep_ms(self._settings.post_navigation_wait_ms)

        if self.request.custom_wait_selector:
            await self._wait_for_custom_selector(page)
            return
        try:
            await page.wait_for_function(
                CONTENT_LANDMARK_JS,
                timeout=self._settings.custom_wait_timeout_ms,
            )
        except PlaywrightTimeoutError:
            logger.debug("No common content landmark appeared")

    async def _wait_for_custom_selector(self, page: BrowserPage) -> None:
        selector = self.request.custom_wait_selector
        target = playwright_selector(selector) if selector else None
        if target is None:
            logger.warning(f"Cannot wait for selector '{selector}'")
            return
        try:
            await page.wait_for_selector(
                target, timeout=self._settings.custom_wait_timeout_ms
            )
        except PlaywrightTimeoutError:
            logger.warning(f"Timed out waiting for '{selector}'")

    async def _initial_scroll(self, page: BrowserPage) -> int:
        """Scroll until the height stops changing or the scroll cap is hit.

        Returns:
            Number of scrolls performed.
        """
        last_height = 0
        unchanged = 0
        scrolls = 0
        for _ in range(self._settings.max_scrolls):
            await page.evaluate(SCROLL_TO_BOTTOM_JS)
            scrolls += 1
            await self._sleep_ms(self._settings.scroll_wait_ms)
            height = await page.evaluate(SCROLL_HEIGHT_JS)
            if height == last_height:
                unchanged += 1
                if unchanged >= self._settings.unchanged_scroll_limit:
                    logger.debug(
                        f"Height unchanged {unchanged} times, stopping scroll"
                    )
                    break
            else:
                unchanged = 0
            last_height = height
        return scrolls

    # -------------------------------------------------------------------------
    # extraction
    # -------------------------------------------------------------------------

    def _analyze(self, document: PageDocument) -> None:
        self._analyzed = True
        if self._analyzer is None:
            return
        try:
            analysis = self._analyzer.analyze(document.text, document.url)
        except Exception as e:
            logger.warning(f"Structure analysis failed: {e}")
            return

        logger.info(
            f"Page analyzed as '{analysis.page_type}' "
            f"(confidence {analysis.confidence:.2f})"
        )
        for recommendation in analysis.recommendations:
            logger.info(f"Analyzer recommendation: {recommendation.message}")

        suggested = analysis.preferred_item_selector()
        if suggested:
            logger.info(
                f"Using analyzed item selector '{suggested}' instead of "
                f"'{self.request.item_selector}'"
            )
            self._selector_override = suggested

    async def extract_items(
        self,
        document: PageDocument,
        item_selector: str,
        on_warning: OnWarning | None = None,
    ) -> list[Record]:
        if (
            self.adaptive
            and self.request.enable_smart_analysis
            and not self._analyzed
        ):
            self._analyze(document)
        selector = self._selector_override or item_selector

        skip = 0
        if self.request.pagination_type is PaginationType.INFINITE:
            skip = self._seen_elements
            self._seen_elements = len(document.select(selector))

        field_rules = (
            self.request.field_rules if self.evaluate_field_rules else ()
        )
        return extract_items(document, selector, field_rules, on_warning, skip)

    # -------------------------------------------------------------------------
    # pagination
    # -------------------------------------------------------------------------

    async def has_next_page(
        self,
        document: PageDocument,
        pagination_type: PaginationType,
        config: PaginationConfig,
    ) -> bool:
        selector = next_page_selector(pagination_type, config)
        match pagination_type:
            case PaginationType.NONE:
                return False
            case PaginationType.QUERY | PaginationType.PATH:
                return bool(selector) and document.exists(selector)
            case PaginationType.BUTTON:
                if not selector:
                    return False
                return await self._next_control_usable(document, selector)
            case PaginationType.INFINITE:
                return await self._load_more(config)
        return False

    async def _next_control_usable(
        self, document: PageDocument, selector: str
    ) -> bool:
        if is_xpath(selector) or self._page is None:
            return any(
                el.is_usable_control() for el in document.select(selector)
            )
        usable = await self._page.evaluate(NEXT_CONTROL_USABLE_JS, selector)
        return bool(usable)

    async def _load_more(self, config: PaginationConfig) -> bool:
        """Scroll and click "load more"; True if new content may follow."""
        page = await self._ensure_page()
        height = await page.evaluate(SCROLL_HEIGHT_JS)
        await page.evaluate(SCROLL_TO_BOTTOM_JS)
        try:
            await page.wait_for_function(
                HEIGHT_GREW_JS,
                arg=height,
                timeout=self._settings.content_growth_timeout_ms,
            )
            grew = True
        except PlaywrightTimeoutError:
            grew = False

        clicked = False
        selector = config.load_more_selector or config.next_page_selector
        target = playwright_selector(selector) if selector else None
        if target:
            handle = await page.query_selector(target)
            if handle is not None:
                logger.debug(f"Clicking load-more control '{selector}'")
                await handle.click()
                await self._sleep_ms(self._settings.scroll_wait_ms)
                clicked = True

        logger.debug(f"Infinite scroll: grew={grew} clicked={clicked}")
        return grew or clicked


class RenderedBackend:
    """Renders pages in a headless browser before extracting.

    Sees script-generated content. One browser page is reused for the whole
    crawl. Field rules are not evaluated.
    """

    name = "rendered"
    display_name = "Rendered browser"
    features = (
        "JavaScript execution",
        "Lazy-content auto-scroll",
        "Button and infinite pagination",
        "CSS selectors",
    )
    base_time_per_page_ms = 5000

    def __init__(
        self,
        settings: BrowserSettings | None = None,
        browser_factory: BrowserFactoryType | None = None,
        navigation_timeout: float | None = None,
    ) -> None:
        """Initialize the backend.

        Args:
            settings: Browser settings. Defaults to the process settings.
            browser_factory: Zero-argument callable returning an async
                context manager that yields a browser. Defaults to launching
                Playwright.
            navigation_timeout: Navigation timeout in seconds.
        """
        process_settings = get_settings()
        self.settings = settings or process_settings.browser
        self.browser_factory = browser_factory or partial(
            launch_browser, self.settings
        )
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
        )
        try:
            yield session
        finally:
            await session.close()
