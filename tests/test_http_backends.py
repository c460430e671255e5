"""Tests for the static and XPath backends against the mock site."""

import pytest

from pagescrape.backend.static import StaticBackend
from pagescrape.backend.xpath import XPathBackend
from pagescrape.crawl import CrawlLoop
from pagescrape.data_types import ParseRequest, ParseResult
from tests.mock_site import CATALOG_PAGE_SIZE, CATALOG_PAGES, PRODUCTS


async def crawl(backend, raw, settings, retry_policy, fake_sleep):
    request = ParseRequest.from_input({"delay": 0, **raw}, settings)
    loop = CrawlLoop(backend, retry_policy, sleep=fake_sleep)
    return await loop.run(request, ParseResult())


class TestStaticBackend:
    """Tests for StaticBackend."""

    @pytest.mark.asyncio
    async def test_single_page(
        self, server_url, hits, settings, retry_policy, fake_sleep
    ):
        """Every matched element on the page shall become an item."""
        result = await crawl(
            StaticBackend(settings.parsing),
            {"url": f"{server_url}/items", "itemSelector": ".item"},
            settings,
            retry_policy,
            fake_sleep,
        )

        assert result.total_items == 25
        assert result.items[0]["text"] == "Item 1"
        assert result.statistics.successful_requests == 1
        assert result.statistics.bytes_processed > 0
        assert hits["/items"] == 1

    @pytest.mark.asyncio
    async def test_query_pagination_follows_next_link(
        self, server_url, hits, settings, retry_policy, fake_sleep
    ):
        """The crawl shall stop at the page without a next link."""
        result = await crawl(
            StaticBackend(settings.parsing),
            {
                "url": f"{server_url}/catalog",
                "itemSelector": "li.entry",
                "paginationType": "query",
                "paginationConfig": {"nextPageSelector": "a.next"},
                "maxPages": 10,
            },
            settings,
            retry_policy,
            fake_sleep,
        )

        assert result.total_items == CATALOG_PAGES * CATALOG_PAGE_SIZE
        assert result.metadata.pages_processed == CATALOG_PAGES
        assert hits["/catalog"] == CATALOG_PAGES
        assert result.metadata.errors == []

    @pytest.mark.asyncio
    async def test_path_pagination(
        self, server_url, hits, settings, retry_policy, fake_sleep
    ):
        result = await crawl(
            StaticBackend(settings.parsing),
            {
                "url": f"{server_url}/catalog/",
                "itemSelector": "li.entry",
                "paginationType": "path",
                "paginationConfig": {"nextPageSelector": "a.next"},
                "maxPages": 2,
            },
            settings,
            retry_policy,
            fake_sleep,
        )

        assert result.total_items == 2 * CATALOG_PAGE_SIZE
        assert hits["/catalog/page/1"] == 1
        assert hits["/catalog/page/2"] == 1
        assert result.items[-1]["attributes"]["data-id"] == "20"

    @pytest.mark.asyncio
    async def test_rejected_page_not_retried(
        self, server_url, hits, settings, retry_policy, fake_sleep
    ):
        """A 404 shall be recorded once and end the crawl."""
        result = await crawl(
            StaticBackend(settings.parsing),
            {"url": f"{server_url}/missing", "maxPages": 3},
            settings,
            retry_policy,
            fake_sleep,
        )

        assert hits["/missing"] == 1
        assert result.total_items == 0
        assert result.metadata.errors[0].type == "FetchRejectedException"
        assert result.statistics.retry_attempts == 0

    @pytest.mark.asyncio
    async def test_retryable_status_retried(
        self, server_url, hits, settings, retry_policy, fake_sleep
    ):
        """A 503 shall be retried up to the attempt limit."""
        result = await crawl(
            StaticBackend(settings.parsing),
            {"url": f"{server_url}/flaky"},
            settings,
            retry_policy,
            fake_sleep,
        )

        assert hits["/flaky"] == 3
        assert result.statistics.retry_attempts == 2
        assert result.statistics.failed_requests == 1
        assert "503" in result.metadata.errors[0].message
        assert fake_sleep.delays == [1.0, 2.0]

    @pytest.mark.asyncio
    async def test_field_rules_ignored(
        self, server_url, settings, retry_policy, fake_sleep
    ):
        result = await crawl(
            StaticBackend(settings.parsing),
            {
                "url": f"{server_url}/products",
                "itemSelector": "div.product",
                "fieldRules": [{"xpath": ".//h2", "name": "name"}],
            },
            settings,
            retry_policy,
            fake_sleep,
        )

        assert result.total_items == len(PRODUCTS)
        assert all("name" not in item for item in result.items)


class TestXPathBackend:
    """Tests for XPathBackend."""

    @pytest.mark.asyncio
    async def test_field_rules_evaluated(
        self, server_url, settings, retry_policy, fake_sleep
    ):
        """Field rules shall add named values to every record."""
        result = await crawl(
            XPathBackend(settings.parsing),
            {
                "url": f"{server_url}/products",
                "itemSelector": "//div[@class='product']",
                "fieldRules": [
                    {"xpath": ".//h2", "name": "name"},
                    {"xpath": ".//span[@class='price']", "name": "price"},
                    {
                        "xpath": ".//a",
                        "name": "link",
                        "type": "attribute",
                        "attribute": "href",
                    },
                ],
            },
            settings,
            retry_policy,
            fake_sleep,
        )

        assert [
            (item["name"], item["price"], item["link"])
            for item in result.items
        ] == PRODUCTS

    @pytest.mark.asyncio
    async def test_css_item_selector_converted(
        self, server_url, settings, retry_policy, fake_sleep
    ):
        result = await crawl(
            XPathBackend(settings.parsing),
            {
                "url": f"{server_url}/products",
                "itemSelector": "div.product",
                "fieldRules": ["//h2"],
            },
            settings,
            retry_policy,
            fake_sleep,
        )

        assert [item["xpath_field_1"] for item in result.items] == [
            name for name, _, _ in PRODUCTS
        ]

    @pytest.mark.asyncio
    async def test_next_page_xpath(
        self, server_url, hits, settings, retry_policy, fake_sleep
    ):
        """next_page_xpath shall drive the next-page check."""
        result = await crawl(
            XPathBackend(settings.parsing),
            {
                "url": f"{server_url}/catalog",
                "itemSelector": "//li[@class='entry']",
                "paginationType": "query",
                "paginationConfig": {"nextPageXpath": "//a[@class='next']"},
                "maxPages": 10,
            },
            settings,
            retry_policy,
            fake_sleep,
        )

        assert result.total_items == CATALOG_PAGES * CATALOG_PAGE_SIZE
        assert hits["/catalog"] == CATALOG_PAGES


class TestInPagePagination:
    """Button and infinite pagination over plain HTTP."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("backend_class", [StaticBackend, XPathBackend])
    @pytest.mark.parametrize(
        ("pagination_type", "config"),
        [
            ("button", {"nextButtonSelector": "button.next"}),
            ("infinite", {"loadMoreSelector": "button.load-more"}),
        ],
    )
    async def test_same_page_not_refetched(
        self,
        server_url,
        hits,
        settings,
        retry_policy,
        fake_sleep,
        backend_class,
        pagination_type,
        config,
    ):
        """A page that only a browser could advance shall be read once."""
        result = await crawl(
            backend_class(settings.parsing),
            {
                "url": f"{server_url}/feed",
                "itemSelector": ".item",
                "paginationType": pagination_type,
                "paginationConfig": config,
                "maxPages": 5,
            },
            settings,
            retry_policy,
            fake_sleep,
        )

        assert hits["/feed"] == 1
        assert [item["text"] for item in result.items] == [
            "Post 1",
            "Post 2",
            "Post 3",
        ]
        assert result.metadata.pages_processed == 1
