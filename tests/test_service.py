"""End-to-end tests for ParsingService against the mock site."""

import pytest

from pagescrape.backend.registry import BackendRegistry
from pagescrape.common.exceptions import ConfigurationError
from pagescrape.data_types import ParseResult
from pagescrape.service import ParsingService
from tests.fakes import StubBackend


@pytest.fixture
def service(settings, fake_sleep) -> ParsingService:
    return ParsingService(settings, sleep=fake_sleep)


class BrokenValidator:
    def validate(self, items, schema=None):
        raise RuntimeError("validator crashed")


class TestParse:
    """Tests for ParsingService.parse."""

    @pytest.mark.asyncio
    async def test_static_single_page(self, service, server_url, hits):
        """A plain request shall be served by the static backend."""
        result = await service.parse(
            {"url": f"{server_url}/items", "itemSelector": ".item"}
        )

        assert result.total_items == 25
        assert result.statistics.successful_requests == 1
        assert result.metadata.strategy == "static"
        assert result.metadata.fallback_used is None
        assert result.metadata.is_valid is True
        assert result.metadata.validation["valid_items"] == 25
        assert result.finalized
        assert hits["/items"] == 1

    @pytest.mark.asyncio
    async def test_empty_page_tries_one_fallback(
        self, service, server_url, hits
    ):
        """An empty page shall yield an empty, valid, error-free result."""
        result = await service.parse(
            {"url": f"{server_url}/empty", "itemSelector": ".item"}
        )

        assert result.total_items == 0
        assert result.metadata.errors == []
        assert result.metadata.is_valid is True
        assert result.metadata.validation is None
        assert hits["/empty"] == 2

    @pytest.mark.asyncio
    async def test_failing_site_records_error(
        self, service, server_url, hits
    ):
        result = await service.parse(
            {"url": f"{server_url}/flaky", "itemSelector": ".item"}
        )

        assert result.total_items == 0
        assert len(result.metadata.errors) == 1
        assert result.statistics.failed_requests == 1
        assert hits["/flaky"] == 6

    @pytest.mark.asyncio
    async def test_paginated_xpath_crawl(self, service, server_url):
        result = await service.parse(
            {
                "url": f"{server_url}/catalog",
                "itemSelector": "//li[@class='entry']",
                "paginationType": "query",
                "paginationConfig": {"nextPageSelector": "a.next"},
                "maxPages": 5,
                "delay": 250,
                "fieldRules": [{"xpath": "./@data-id", "name": "id"}],
            }
        )

        assert result.metadata.strategy == "xpath"
        assert result.total_items == 30
        assert result.items[-1]["id"] == "30"

    @pytest.mark.asyncio
    async def test_invalid_request_raises_before_fetching(
        self, service, hits
    ):
        """Validation errors shall surface before any crawl starts."""
        result = ParseResult()

        with pytest.raises(ConfigurationError) as exc_info:
            await service.parse({"url": "ftp://x", "maxPages": 0}, result)

        assert len(exc_info.value.problems) == 2
        assert not result.finalized
        assert sum(hits.values()) == 0

    @pytest.mark.asyncio
    async def test_failed_validation_marks_result(self, service, server_url):
        result = await service.parse(
            {
                "url": f"{server_url}/items",
                "itemSelector": ".item",
                "validationSchema": {
                    "text": {"type": "email", "required": True}
                },
            }
        )

        assert result.metadata.is_valid is False
        assert result.total_items == 25
        assert result.metadata.errors[0].message == (
            "Validation: Too many invalid records: 100%"
        )

    @pytest.mark.asyncio
    async def test_validation_can_be_disabled(self, service, server_url):
        result = await service.parse(
            {
                "url": f"{server_url}/items",
                "itemSelector": ".item",
                "enableDataValidation": False,
            }
        )

        assert result.total_items == 25
        assert result.metadata.validation is None

    @pytest.mark.asyncio
    async def test_compatibility_warnings_recorded(
        self, settings, fake_sleep
    ):
        service = ParsingService(
            settings,
            registry=BackendRegistry([StubBackend("static", 2)]),
            sleep=fake_sleep,
        )

        result = await service.parse(
            {"url": "https://example.com", "paginationType": "button"}
        )

        assert any(
            "button pagination" in w.message
            for w in result.metadata.warnings
        )

    @pytest.mark.asyncio
    async def test_late_exception_recorded_and_reraised(
        self, settings, fake_sleep
    ):
        """An escaping error shall be recorded on a finalized result."""
        service = ParsingService(
            settings,
            registry=BackendRegistry([StubBackend("static", 2)]),
            validator=BrokenValidator(),
            sleep=fake_sleep,
        )
        result = ParseResult()

        with pytest.raises(RuntimeError):
            await service.parse({"url": "https://example.com"}, result)

        assert result.finalized
        assert result.total_items == 2
        assert result.metadata.errors[-1].message == "validator crashed"


class TestParseWithStrategy:
    """Tests for ParsingService.parse_with_strategy."""

    @pytest.mark.asyncio
    async def test_forced_strategy(self, service, server_url):
        result = await service.parse_with_strategy(
            {"url": f"{server_url}/items", "itemSelector": ".item"}, "xpath"
        )

        assert result.metadata.strategy == "xpath"
        assert result.total_items == 25

    @pytest.mark.asyncio
    async def test_unknown_strategy(self, service):
        result = ParseResult()

        with pytest.raises(ConfigurationError, match="unknown strategy"):
            await service.parse_with_strategy(
                {"url": "https://example.com"}, "quantum", result
            )

        assert not result.finalized


class TestIntrospection:
    """Tests for estimate_time, list_strategies and register_backend."""

    def test_estimate_time(self, service):
        estimate = service.estimate_time(
            {"url": "https://example.com", "maxPages": 3, "delay": 500}
        )

        assert estimate["estimated_ms"] == 2000 * 3 + 500 * 2
        assert estimate["strategy_used"] == "static"
        assert estimate["pages"] == 3
        assert "Fast HTTP fetching" in estimate["features"]

    def test_estimate_for_rendered(self, service):
        estimate = service.estimate_time(
            {"url": "https://example.com", "render": True, "delay": 0}
        )

        assert estimate["strategy_used"] == "rendered"
        assert estimate["estimated_ms"] == 5000

    def test_estimate_rejects_invalid_request(self, service):
        with pytest.raises(ConfigurationError):
            service.estimate_time({"url": "nope"})

    def test_list_strategies(self, service):
        names = [s["name"] for s in service.list_strategies()]
        assert names == ["static", "xpath", "rendered", "adaptive"]

    def test_register_backend(self, service):
        service.register_backend(StubBackend("custom"))

        strategies = {s["name"]: s for s in service.list_strategies()}
        assert strategies["custom"]["display_name"] == "Stub"

    def test_register_rejects_non_backend(self, service):
        with pytest.raises(ConfigurationError):
            service.register_backend(object())


class TestUrlTools:
    """Tests for check_url and analyze_structure."""

    @pytest.mark.asyncio
    async def test_check_url_accessible(self, service, server_url):
        status = await service.check_url(f"{server_url}/items")
        assert status == {"valid": True, "accessible": True, "error": None}

    @pytest.mark.asyncio
    async def test_check_url_not_found(self, service, server_url):
        status = await service.check_url(f"{server_url}/missing")

        assert status["valid"] is True
        assert status["accessible"] is False
        assert "404" in status["error"]

    @pytest.mark.asyncio
    async def test_check_url_malformed(self, service):
        status = await service.check_url("not a url")

        assert status["valid"] is False
        assert status["accessible"] is False
        assert "not an absolute http(s) URL" in status["error"]

    @pytest.mark.asyncio
    async def test_analyze_structure(self, service, server_url):
        analysis = await service.analyze_structure(f"{server_url}/shop")

        assert analysis.page_type == "ecommerce"
        assert analysis.suggested_selectors["prices"].count == 6
        assert analysis.preferred_item_selector() is not None
