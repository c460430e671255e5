"""Session shared by the HTTP backends (static and XPath)."""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

from pagescrape.common.extraction import extract_items
from pagescrape.common.pagination import next_page_selector
from pagescrape.common.request_manager import AsyncRequestManager
from pagescrape.common.selector_utils import css_to_xpath, is_xpath
from pagescrape.data_types import PaginationType

if TYPE_CHECKING:
    from collections.abc import Callable
    from contextlib import AbstractAsyncContextManager

    import httpx

    from pagescrape.backend.base import OnWarning
    from pagescrape.common.page_element import PageDocument
    from pagescrape.common.retry import OnRetry, RetryPolicy
    from pagescrape.config import ParsingSettings
    from pagescrape.data_types import PaginationConfig, ParseRequest, Record

logger = logging.getLogger(__name__)


class HttpSession:
    """Fetches pages over HTTP and queries them with lxml.

    Attributes:
        request: The request being crawled.
        xpath_mode: Query with XPath, converting CSS selectors first, and
            evaluate the request's field rules.
    """

    def __init__(
        self,
        request: ParseRequest,
        manager: AsyncRequestManager,
        retry_policy: RetryPolicy,
        on_retry: OnRetry | None = None,
        xpath_mode: bool = False,
    ) -> None:
        self.request = request
        self.xpath_mode = xpath_mode
        self._manager = manager
        self._retry_policy = retry_policy
        self._on_retry = on_retry

    async def fetch(self, page_url: str) -> PageDocument:
        return await self._retry_policy.run(
            self._manager.fetch, page_url, on_retry=self._on_retry
        )

    def _query(self, selector: str) -> str:
        if self.xpath_mode and not is_xpath(selector):
            converted = css_to_xpath(selector)
            logger.debug(f"Converted CSS '{selector}' to XPath '{converted}'")
            return converted
        return selector

    async def extract_items(
        self,
        document: PageDocument,
        item_selector: str,
        on_warning: OnWarning | None = None,
    ) -> list[Record]:
        field_rules = self.request.field_rules if self.xpath_mode else ()
        return extract_items(
            document, self._query(item_selector), field_rules, on_warning
        )

    async def has_next_page(
        self,
        document: PageDocument,
        pagination_type: PaginationType,
        config: PaginationConfig,
    ) -> bool:
        """Report whether a later page URL holds more items.

        Button and infinite pagination advance inside a live page, which an
        HTTP session does not have: the next fetch would return the same
        page, so the crawl ends after it.
        """
        if pagination_type is PaginationType.NONE:
            return False
        if pagination_type in (PaginationType.BUTTON, PaginationType.INFINITE):
            logger.debug(
                f"{pagination_type.value} pagination cannot advance over "
                f"plain HTTP; stopping after {document.url}"
            )
            return False

        selector = next_page_selector(pagination_type, config)
        if self.xpath_mode and config.next_page_xpath:
            selector = config.next_page_xpath
        if not selector:
            return False
        return document.exists(self._query(selector))


def http_session_factory(
    settings: ParsingSettings,
    xpath_mode: bool,
    transport: httpx.AsyncBaseTransport | None = None,
) -> Callable[..., AbstractAsyncContextManager[HttpSession]]:
    """Build the ``open()`` implementation for an HTTP backend."""

    @asynccontextmanager
    async def open_session(
        request: ParseRequest,
        retry_policy: RetryPolicy,
        on_retry: OnRetry | None = None,
    ) -> AsyncIterator[HttpSession]:
        async with AsyncRequestManager(
            timeout=settings.timeout_seconds,
            user_agent=settings.user_agent,
            transport=transport,
        ) as manager:
            yield HttpSession(
                request, manager, retry_policy, on_retry, xpath_mode
            )

    return open_session
