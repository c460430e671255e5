"""Choosing the primary backend for a request."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from pagescrape.backend.registry import ADAPTIVE, RENDERED, STATIC, XPATH

if TYPE_CHECKING:
    from pagescrape.backend.base import ExtractionBackend
    from pagescrape.backend.registry import BackendRegistry
    from pagescrape.data_types import ParseRequest

logger = logging.getLogger(__name__)


class StrategySelector:
    """Maps request attributes to a backend, first matching rule wins.

    1. ``request.strategy`` naming a registered backend
    2. rendering requested plus SPA, infinite scrolling or smart analysis:
       adaptive
    3. rendering requested: rendered
    4. field rules present: xpath
    5. SPA, infinite scrolling or smart analysis: adaptive
    6. static

    An explicit strategy that is not registered is logged and ignored.
    """

    def __init__(self, registry: BackendRegistry) -> None:
        self.registry = registry

    def choose_name(self, request: ParseRequest) -> str:
        """Return the backend name the precedence rules pick."""
        if request.strategy:
            if request.strategy in self.registry:
                return request.strategy
            logger.warning(
                f"Requested strategy '{request.strategy}' is not registered; "
                "selecting automatically"
            )
        if request.render:
            return ADAPTIVE if request.wants_adaptive else RENDERED
        if request.field_rules:
            return XPATH
        if request.wants_adaptive:
            return ADAPTIVE
        return STATIC

    def select(self, request: ParseRequest) -> tuple[str, ExtractionBackend]:
        """Return the chosen backend together with its name.

        Raises:
            ConfigurationError: If the chosen backend is not registered.
        """
        name = self.choose_name(request)
        backend = self.registry.require(name)
        logger.debug(f"Selected strategy '{name}' for {request.url}")
        return name, backend
