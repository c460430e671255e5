"""The extraction backend contract.

A backend is a stateless capability object: a name, a description, a speed
estimate, and ``open()``, which yields a BackendSession owning the
resources of one crawl (an HTTP client or a browser page). Sessions provide
the three operations the crawl loop drives:

- ``fetch(page_url)``: load a page, retrying transient failures
- ``extract_items(document, item_selector)``: records for matched elements
- ``has_next_page(document, pagination_type, config)``: whether to go on

Backends do not inherit from each other. The HTTP backends share HttpSession
and the browser backends share BrowserSession, configured per variant.
"""

from __future__ import annotations

from collections.abc import Callable
from contextlib import AbstractAsyncContextManager
from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from pagescrape.common.page_element import PageDocument
    from pagescrape.common.retry import OnRetry, RetryPolicy
    from pagescrape.data_types import (
        PaginationConfig,
        PaginationType,
        ParseRequest,
        Record,
    )

OnWarning = Callable[[str], None]


class BackendSession(Protocol):
    """Per-crawl operations of a backend."""

    async def fetch(self, page_url: str) -> PageDocument:
        """Load ``page_url``.

        Raises:
            FetchRejectedException: If retrying cannot help.
            TransientException: If retries were exhausted.
        """
        ...

    async def extract_items(
        self,
        document: PageDocument,
        item_selector: str,
        on_warning: OnWarning | None = None,
    ) -> list[Record]: ...

    async def has_next_page(
        self,
        document: PageDocument,
        pagination_type: PaginationType,
        config: PaginationConfig,
    ) -> bool: ...


@runtime_checkable
class ExtractionBackend(Protocol):
    """A registrable extraction strategy.

    Attributes:
        name: Registry key, e.g. "static".
        display_name: Human-readable name.
        features: Short capability descriptions.
        base_time_per_page_ms: Typical time to process one page.
    """

    name: str
    display_name: str
    features: tuple[str, ...]
    base_time_per_page_ms: int

    def open(
        self,
        request: ParseRequest,
        retry_policy: RetryPolicy,
        on_retry: OnRetry | None = None,
    ) -> AbstractAsyncContextManager[BackendSession]: ...
