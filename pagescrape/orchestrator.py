"""Quality-scored fallback escalation.

FallbackOrchestrator runs the primary backend, scores the result, and when
the score is too low walks the primary's fallback chain:

    RUNNING_PRIMARY -> ASSESSING -> DONE
                                 -> RUNNING_FALLBACK[i] -> MERGING -> DONE

Each fallback crawls into a fresh result. The first fallback that yields
strictly more items than the live result is merged into it and the chain
stops; the final item count therefore never drops below the primary's.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Mapping
from enum import Enum
from typing import TYPE_CHECKING, Any

from pagescrape.backend.registry import DEFAULT_FALLBACK_CHAINS
from pagescrape.common.exceptions import ConfigurationError
from pagescrape.common.retry import RetryPolicy
from pagescrape.crawl import CrawlLoop
from pagescrape.data_types import ParseResult
from pagescrape.quality import QualityAssessor
from pagescrape.selector import StrategySelector

if TYPE_CHECKING:
    from pagescrape.backend.base import ExtractionBackend
    from pagescrape.backend.registry import BackendRegistry
    from pagescrape.data_types import ParseRequest

logger = logging.getLogger(__name__)


class OrchestratorState(str, Enum):
    RUNNING_PRIMARY = "running_primary"
    ASSESSING = "assessing"
    RUNNING_FALLBACK = "running_fallback"
    MERGING = "merging"
    DONE = "done"


class FallbackOrchestrator:
    """Runs a primary crawl and escalates through fallbacks when needed.

    Attributes:
        registry: Backends by name.
        selector: Chooses the primary backend.
        assessor: Scores results.
        retry_policy: Shared by every crawl.
        fallback_chains: Fallback names per primary name.
    """

    def __init__(
        self,
        registry: BackendRegistry,
        selector: StrategySelector | None = None,
        assessor: QualityAssessor | None = None,
        retry_policy: RetryPolicy | None = None,
        fallback_chains: Mapping[str, tuple[str, ...]] | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        """Initialize the orchestrator.

        Args:
            registry: Backends by name.
            selector: Primary backend chooser. Defaults to a
                StrategySelector over ``registry``.
            assessor: Result scorer with the default weights if omitted.
            retry_policy: Retry policy for page fetches.
            fallback_chains: Overrides for the default chains, merged over
                DEFAULT_FALLBACK_CHAINS by primary name.
            sleep: Coroutine used for the inter-page delay.
        """
        self.registry = registry
        self.selector = selector or StrategySelector(registry)
        self.assessor = assessor or QualityAssessor()
        self.retry_policy = retry_policy or RetryPolicy()
        self.fallback_chains = {
            **DEFAULT_FALLBACK_CHAINS,
            **(fallback_chains or {}),
        }
        self._sleep = sleep
        self.state = OrchestratorState.DONE

    def _transition(self, state: OrchestratorState, detail: str = "") -> None:
        self.state = state
        logger.debug(f"Orchestrator -> {state.value} {detail}".rstrip())

    def fallback_chain(self, name: str) -> tuple[str, ...]:
        return tuple(self.fallback_chains.get(name, ()))

    def resolve(
        self, request: ParseRequest, strategy: str | None = None
    ) -> tuple[str, ExtractionBackend]:
        """Pick the primary backend.

        Raises:
            ConfigurationError: If ``strategy`` or the selected backend is
                not registered.
        """
        if strategy is not None:
            return strategy, self.registry.require(strategy)
        return self.selector.select(request)

    async def _crawl(
        self,
        backend: ExtractionBackend,
        request: ParseRequest,
        result: ParseResult,
    ) -> None:
        loop = CrawlLoop(backend, self.retry_policy, sleep=self._sleep)
        await loop.run(request, result)

    async def run(
        self,
        request: ParseRequest,
        result: ParseResult | None = None,
        strategy: str | None = None,
    ) -> ParseResult:
        """Crawl ``request`` with fallback escalation.

        Args:
            request: The validated request.
            result: Live result to fill. A new one is created if omitted.
            strategy: Force this primary backend instead of selecting one.

        Returns:
            The live result, not finalized.

        Raises:
            ConfigurationError: If no primary backend can be resolved.
        """
        result = result if result is not None else ParseResult()
        name, backend = self.resolve(request, strategy)
        result.set_metadata(strategy=name)

        self._transition(OrchestratorState.RUNNING_PRIMARY, name)
        primary_failed = False
        try:
            await self._crawl(backend, request, result)
        except ConfigurationError:
            raise
        except Exception as e:
            logger.error(f"Primary strategy '{name}' failed: {e}")
            result.add_error(e)
            primary_failed = True

        self._transition(OrchestratorState.ASSESSING)
        score = 0.0 if primary_failed else self.assessor.score_result(result)
        result.set_metadata(quality_score=score)
        logger.info(
            f"Strategy '{name}' scored {score:.2f} with "
            f"{result.total_items} items"
        )
        if self.assessor.is_acceptable(result, score):
            self._transition(OrchestratorState.DONE, "accepted")
            return result

        for fallback_name in self.fallback_chain(name):
            fallback = self.registry.get(fallback_name)
            if fallback is None:
                logger.warning(
                    f"Fallback strategy '{fallback_name}' is not registered"
                )
                continue

            self._transition(OrchestratorState.RUNNING_FALLBACK, fallback_name)
            attempt = ParseResult()
            try:
                await self._crawl(fallback, request, attempt)
            except ConfigurationError:
                raise
            except Exception as e:
                message = f"Fallback strategy '{fallback_name}' failed: {e}"
                logger.warning(message)
                result.add_warning(message)
                continue

            if attempt.total_items <= result.total_items:
                logger.info(
                    f"Fallback '{fallback_name}' found "
                    f"{attempt.total_items} items, no improvement"
                )
                continue

            self._transition(OrchestratorState.MERGING, fallback_name)
            self._merge(result, attempt)
            result.set_metadata(
                fallback_used=fallback_name,
                quality_score=self.assessor.score_result(result),
            )
            logger.info(
                f"Fallback '{fallback_name}' improved the result to "
                f"{result.total_items} items"
            )
            break

        self._transition(OrchestratorState.DONE)
        return result

    def _merge(self, result: ParseResult, attempt: ParseResult) -> None:
        result.add_items(attempt.items)
        result.increment_pages(attempt.metadata.pages_processed)
        result.record_success(
            attempt.statistics.bytes_processed,
            count=attempt.statistics.successful_requests,
        )
