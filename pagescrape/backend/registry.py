"""Backend registry and default fallback chains."""

from __future__ import annotations

import logging
from collections.abc import Iterator, Mapping
from typing import TYPE_CHECKING

from pagescrape.backend.adaptive import AdaptiveBackend
from pagescrape.backend.base import ExtractionBackend
from pagescrape.backend.rendered import RenderedBackend
from pagescrape.backend.static import StaticBackend
from pagescrape.backend.xpath import XPathBackend
from pagescrape.common.exceptions import ConfigurationError
from pagescrape.config import ScrapeSettings, get_settings

if TYPE_CHECKING:
    from pagescrape.common.protocols import StructureAnalyzer

logger = logging.getLogger(__name__)

STATIC = "static"
RENDERED = "rendered"
XPATH = "xpath"
ADAPTIVE = "adaptive"

DEFAULT_FALLBACK_CHAINS: Mapping[str, tuple[str, ...]] = {
    STATIC: (XPATH,),
    XPATH: (STATIC,),
    RENDERED: (STATIC, XPATH),
    ADAPTIVE: (RENDERED, STATIC),
}


class BackendRegistry:
    """Name -> backend mapping, read-only once crawls start.

    Example::

        registry = BackendRegistry.default()
        backend = registry.get("static")
    """

    def __init__(self, backends: list[ExtractionBackend] | None = None):
        self._backends: dict[str, ExtractionBackend] = {}
        for backend in backends or []:
            self.register(backend)

    @classmethod
    def default(
        cls,
        settings: ScrapeSettings | None = None,
        analyzer: StructureAnalyzer | None = None,
    ) -> BackendRegistry:
        """Registry holding the four built-in backends.

        Args:
            settings: Settings for every backend. Defaults to the process
                settings.
            analyzer: Structure analyzer for the adaptive backend.
        """
        settings = settings or get_settings()
        timeout = settings.parsing.timeout_seconds
        return cls(
            [
                StaticBackend(settings.parsing),
                XPathBackend(settings.parsing),
                RenderedBackend(settings.browser, navigation_timeout=timeout),
                AdaptiveBackend(
                    settings.browser,
                    analyzer=analyzer,
                    navigation_timeout=timeout,
                ),
            ]
        )

    def register(self, backend: ExtractionBackend) -> None:
        if not isinstance(backend, ExtractionBackend):
            raise ConfigurationError(
                f"{type(backend).__name__} is not an extraction backend"
            )
        if backend.name in self._backends:
            logger.info(f"Replacing registered backend '{backend.name}'")
        self._backends[backend.name] = backend

    def get(self, name: str) -> ExtractionBackend | None:
        return self._backends.get(name)

    def require(self, name: str) -> ExtractionBackend:
        """Return the backend registered as ``name``.

        Raises:
            ConfigurationError: If nothing is registered under ``name``.
        """
        backend = self._backends.get(name)
        if backend is None:
            known = ", ".join(sorted(self._backends)) or "none"
            raise ConfigurationError(
                f"unknown strategy '{name}' (registered: {known})"
            )
        return backend

    def __contains__(self, name: object) -> bool:
        return name in self._backends

    def __iter__(self) -> Iterator[ExtractionBackend]:
        return iter(self._backends.values())

    def __len__(self) -> int:
        return len(self._backends)

    def names(self) -> list[str]:
        return list(self._backends)
