"""Protocols for the collaborators the core consumes.

The defaults live in pagescrape.analysis, pagescrape.validation and
pagescrape.backend.rendered; anything matching these shapes can replace
them.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from contextlib import AbstractAsyncContextManager
from typing import TYPE_CHECKING, Any, Protocol

if TYPE_CHECKING:
    from pagescrape.analysis.structure import PageAnalysis
    from pagescrape.data_types import FieldSchema, Record
    from pagescrape.validation.validator import ValidationReport


class StructureAnalyzer(Protocol):
    """Suggests page type and item selectors from raw HTML."""

    def analyze(self, html: str, url: str) -> PageAnalysis: ...


class DataValidator(Protocol):
    """Validates and cleans extracted records."""

    def validate(
        self,
        items: Sequence[Record],
        schema: Mapping[str, FieldSchema] | None = None,
    ) -> ValidationReport: ...


class BrowserPage(Protocol):
    """The subset of playwright.async_api.Page the rendered backends use."""

    url: str

    async def goto(self, url: str, **kwargs: Any) -> Any: ...

    async def content(self) -> str: ...

    async def evaluate(self, expression: str, arg: Any = None) -> Any: ...

    async def wait_for_function(
        self, expression: str, **kwargs: Any
    ) -> Any: ...

    async def wait_for_selector(self, selector: str, **kwargs: Any) -> Any: ...

    async def wait_for_load_state(
        self, state: str = "load", **kwargs: Any
    ) -> None: ...

    async def query_selector(self, selector: str) -> Any: ...

    async def add_init_script(self, script: str) -> None: ...

    async def close(self) -> None: ...


class Browser(Protocol):
    async def new_page(self, **kwargs: Any) -> BrowserPage: ...


class BrowserFactory(Protocol):
    """Callable returning an async context manager that yields a browser."""

    def __call__(self) -> AbstractAsyncContextManager[Browser]: ...
