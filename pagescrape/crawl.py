"""The pagination-driven crawl loop."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING, Any

from pagescrape.common.exceptions import ConfigurationError
from pagescrape.common.pagination import build_page_url

if TYPE_CHECKING:
    from pagescrape.backend.base import BackendSession, ExtractionBackend
    from pagescrape.common.page_element import PageDocument
    from pagescrape.common.retry import RetryPolicy
    from pagescrape.data_types import ParseRequest, ParseResult

logger = logging.getLogger(__name__)


class CrawlLoop:
    """Drives one backend across the pages of a request.

    The loop starts at page 1 and moves on by exactly one page after every
    attempted page, successful or not. It stops when the page number
    exceeds ``max_pages``, when the backend reports no next page, or after
    an error that retrying could not help. Failed pages are recorded on the
    result; partial results are always kept. The inter-page delay is only
    slept when another page will be attempted.

    Example::

        loop = CrawlLoop(StaticBackend(), RetryPolicy())
        await loop.run(request, result)
    """

    def __init__(
        self,
        backend: ExtractionBackend,
        retry_policy: RetryPolicy,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self.backend = backend
        self.retry_policy = retry_policy
        self._sleep = sleep

    async def run(
        self, request: ParseRequest, result: ParseResult
    ) -> ParseResult:
        """Crawl ``request`` into ``result``.

        Raises:
            ConfigurationError: Propagated unchanged; everything else that
                goes wrong on a page is recorded on ``result``.
        """
        name = self.backend.name

        def on_retry(attempt: int, error: BaseException, delay: float) -> None:
            result.record_retry()

        logger.info(
            f"[{name}] Crawling {request.url} "
            f"(max_pages={request.max_pages}, "
            f"pagination={request.pagination_type.value})"
        )
        async with self.backend.open(
            request, self.retry_policy, on_retry
        ) as session:
            page = 1
            while page <= request.max_pages:
                page_url = build_page_url(
                    request.url,
                    page,
                    request.pagination_type,
                    request.pagination_config,
                )
                logger.info(
                    f"[{name}] Page {page}/{request.max_pages}: {page_url}"
                )
                try:
                    document = await session.fetch(page_url)
                    items = await session.extract_items(
                        document, request.item_selector, result.add_warning
                    )
                except ConfigurationError:
                    raise
                except Exception as e:
                    logger.error(
                        f"[{name}] Page {page} ({page_url}) failed: {e}"
                    )
                    result.add_error(e)
                    result.record_failure()
                    if not self.retry_policy.is_retryable(e):
                        logger.warning(
                            f"[{name}] Non-retryable error, stopping crawl"
                        )
                        break
                    has_next = True
                else:
                    result.add_items(items)
                    result.increment_pages()
                    result.record_success(document.size)
                    logger.info(
                        f"[{name}] Page {page}: {len(items)} items "
                        f"({result.total_items} total)"
                    )
                    has_next = await self._has_next_page(
                        session, document, request, result
                    )

                page += 1
                if not has_next:
                    logger.debug(f"[{name}] No next page after {page_url}")
                    break
                if page <= request.max_pages and request.delay > 0:
                    logger.debug(f"[{name}] Sleeping {request.delay}ms")
                    await self._sleep(request.delay / 1000)

        logger.info(
            f"[{name}] Finished: {result.total_items} items from "
            f"{result.metadata.pages_processed} pages, "
            f"{len(result.metadata.errors)} errors"
        )
        return result

    async def _has_next_page(
        self,
        session: BackendSession,
        document: PageDocument,
        request: ParseRequest,
        result: ParseResult,
    ) -> bool:
        """Ask the session for a next page; a failing check ends the crawl.

        The page itself was already fetched and counted, so a failure here is
        recorded as an error without counting a failed request.
        """
        try:
            return await session.has_next_page(
                document, request.pagination_type, request.pagination_config
            )
        except ConfigurationError:
            raise
        except Exception as e:
            logger.error(
                f"[{self.backend.name}] Next page check failed after "
                f"{document.url}: {e}"
            )
            result.add_error(e)
            return False
