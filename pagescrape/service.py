"""Parsing service facade.

ParsingService is the single entry point for callers:

    raw input -> ParseRequest -> FallbackOrchestrator -> DataValidator
              -> finalize() -> ParseResult

An invalid request raises ConfigurationError before anything is fetched.
Anything that goes wrong later is recorded on the result, the result is
finalized, and the exception is re-raised so the caller still has the
result for telemetry.

Example::

    service = ParsingService()
    result = await service.parse(
        {"url": "https://example.com/list", "itemSelector": ".item"}
    )
    print(result.total_items)
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Mapping
from typing import TYPE_CHECKING, Any

from pagescrape.analysis.structure import PageStructureAnalyzer
from pagescrape.backend.registry import BackendRegistry
from pagescrape.common.exceptions import ConfigurationError
from pagescrape.common.request_manager import AsyncRequestManager
from pagescrape.common.retry import RetryPolicy
from pagescrape.config import ScrapeSettings, get_settings
from pagescrape.data_types import ParseRequest, ParseResult
from pagescrape.orchestrator import FallbackOrchestrator
from pagescrape.quality import QualityAssessor
from pagescrape.selector import StrategySelector
from pagescrape.validation.validator import DataValidator

if TYPE_CHECKING:
    from pagescrape.analysis.structure import PageAnalysis
    from pagescrape.backend.base import ExtractionBackend
    from pagescrape.common import protocols

logger = logging.getLogger(__name__)


class ParsingService:
    """Validates requests, runs crawls and post-processes their results.

    Attributes:
        settings: Settings used for request limits and the default policy.
        registry: Registered backends.
        validator: Record validator run after the crawl.
        analyzer: Structure analyzer for analyze_structure().
        retry_policy: Retry policy for every page fetch.
        assessor: Scores crawl results.
    """

    def __init__(
        self,
        settings: ScrapeSettings | None = None,
        registry: BackendRegistry | None = None,
        validator: protocols.DataValidator | None = None,
        analyzer: protocols.StructureAnalyzer | None = None,
        fallback_chains: Mapping[str, tuple[str, ...]] | None = None,
        retry_policy: RetryPolicy | None = None,
        assessor: QualityAssessor | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        """Initialize the service.

        Args:
            settings: Defaults to the process settings.
            registry: Defaults to the four built-in backends.
            validator: Defaults to DataValidator().
            analyzer: Defaults to PageStructureAnalyzer().
            fallback_chains: Overrides for the default fallback chains.
            retry_policy: Defaults to a policy built from settings.
            assessor: Defaults to the standard quality weights.
            sleep: Coroutine used for inter-page delays and backoff.
        """
        self.settings = settings or get_settings()
        self.analyzer = analyzer or PageStructureAnalyzer()
        self.registry = registry or BackendRegistry.default(
            self.settings, analyzer=self.analyzer
        )
        self.validator = validator or DataValidator()
        parsing = self.settings.parsing
        self.retry_policy = retry_policy or RetryPolicy(
            max_attempts=parsing.retry_attempts,
            base_delay=parsing.retry_delay_seconds,
            max_delay=parsing.max_retry_delay_seconds,
            backoff_factor=parsing.backoff_factor,
            sleep=sleep,
        )
        self.assessor = assessor or QualityAssessor()
        self._fallback_chains = fallback_chains
        self._sleep = sleep

    def _orchestrator(self) -> FallbackOrchestrator:
        return FallbackOrchestrator(
            self.registry,
            selector=StrategySelector(self.registry),
            assessor=self.assessor,
            retry_policy=self.retry_policy,
            fallback_chains=self._fallback_chains,
            sleep=self._sleep,
        )

    def build_request(
        self, raw: Mapping[str, Any] | ParseRequest
    ) -> ParseRequest:
        """Validate raw input into a ParseRequest.

        Raises:
            ConfigurationError: Listing every violated rule.
        """
        if isinstance(raw, ParseRequest):
            return raw
        return ParseRequest.from_input(raw, settings=self.settings)

    async def parse(
        self,
        raw: Mapping[str, Any] | ParseRequest,
        result: ParseResult | None = None,
    ) -> ParseResult:
        """Run a complete parsing job.

        Args:
            raw: Request input (camelCase or snake_case keys) or a request.
            result: Result to fill. Pass one to keep it when an exception
                escapes.

        Returns:
            The finalized result.

        Raises:
            ConfigurationError: If the request is invalid or names no
                usable backend.
        """
        return await self._run(raw, result, strategy=None)

    async def parse_with_strategy(
        self,
        raw: Mapping[str, Any] | ParseRequest,
        strategy_name: str,
        result: ParseResult | None = None,
    ) -> ParseResult:
        """Like parse(), with the primary backend forced.

        Fallback still applies when the forced backend scores poorly.

        Raises:
            ConfigurationError: If the request is invalid or
                ``strategy_name`` is not registered.
        """
        return await self._run(raw, result, strategy=strategy_name)

    async def _run(
        self,
        raw: Mapping[str, Any] | ParseRequest,
        result: ParseResult | None,
        strategy: str | None,
    ) -> ParseResult:
        request = self.build_request(raw)
        if strategy is not None:
            self.registry.require(strategy)
        result = result if result is not None else ParseResult()

        logger.info(f"Starting parse of {request.url}")
        try:
            for warning in request.compatibility_warnings():
                logger.warning(warning)
                result.add_warning(warning)

            await self._orchestrator().run(request, result, strategy=strategy)

            if request.enable_data_validation:
                self._validate(request, result)
        except Exception as e:
            logger.error(f"Parse of {request.url} failed: {e}")
            result.add_error(e)
            raise
        finally:
            result.finalize()

        logger.info(
            f"Parse of {request.url} finished: {result.total_items} items, "
            f"{result.metadata.pages_processed} pages, "
            f"{result.metadata.duration:.2f}s"
        )
        return result

    def _validate(self, request: ParseRequest, result: ParseResult) -> None:
        if result.total_items == 0:
            logger.debug("No items to validate")
            return

        report = self.validator.validate(
            result.items, request.validation_schema
        )
        if report.is_valid:
            result.replace_items(report.cleaned_data)
            for warning in report.warnings:
                result.add_warning(f"Validation: {warning.message}")
            dropped = report.statistics.invalid_items
            if dropped:
                result.add_warning(
                    f"Validation: dropped {dropped} invalid items"
                )
        else:
            for error in report.errors:
                result.add_error(f"Validation: {error.message}")
            if report.statistics.valid_items > 0:
                result.replace_items(report.cleaned_data)
            result.set_metadata(is_valid=False)
        result.set_metadata(validation=report.summary())

    def estimate_time(
        self, raw: Mapping[str, Any] | ParseRequest
    ) -> dict[str, Any]:
        """Estimate the crawl duration without fetching anything.

        Returns:
            ``estimated_ms``, ``strategy_used``, ``pages`` and ``features``
            of the backend the selector would pick.
        """
        request = self.build_request(raw)
        name, backend = StrategySelector(self.registry).select(request)
        pages = request.max_pages
        estimated = (
            backend.base_time_per_page_ms * pages + request.delay * (pages - 1)
        )
        return {
            "estimated_ms": estimated,
            "strategy_used": name,
            "pages": pages,
            "features": list(backend.features),
        }

    def list_strategies(self) -> list[dict[str, Any]]:
        return [
            {
                "name": backend.name,
                "display_name": backend.display_name,
                "features": list(backend.features),
            }
            for backend in self.registry
        ]

    def register_backend(self, backend: ExtractionBackend) -> None:
        """Add or replace a backend, keyed by its name.

        Raises:
            ConfigurationError: If ``backend`` lacks the backend interface.
        """
        self.registry.register(backend)
        logger.info(f"Registered backend '{backend.name}'")

    def _request_manager(self) -> AsyncRequestManager:
        return AsyncRequestManager(
            timeout=self.settings.parsing.timeout_seconds,
            user_agent=self.settings.parsing.user_agent,
        )

    def _checked_url(self, url: str) -> str:
        request = self.build_request({"url": url})
        return request.url

    async def analyze_structure(self, url: str) -> PageAnalysis:
        """Fetch ``url`` over HTTP and run the structure analyzer on it.

        Raises:
            ConfigurationError: If ``url`` is not a valid http(s) URL.
        """
        url = self._checked_url(url)
        logger.info(f"Analyzing page structure of {url}")
        async with self._request_manager() as manager:
            document = await self.retry_policy.run(manager.fetch, url)
        return self.analyzer.analyze(document.text, url)

    async def check_url(self, url: str) -> dict[str, Any]:
        """Report whether ``url`` is well formed and answers over HTTP."""
        try:
            url = self._checked_url(url)
        except ConfigurationError as e:
            return {"valid": False, "accessible": False, "error": e.message}
        try:
            async with self._request_manager() as manager:
                await manager.fetch(url)
        except Exception as e:
            logger.warning(f"URL {url} is not accessible: {e}")
            return {"valid": True, "accessible": False, "error": str(e)}
        return {"valid": True, "accessible": True, "error": None}
