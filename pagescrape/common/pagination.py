"""Pagination URL building and next-page decisions.

build_page_url() is pure: the same arguments always produce the same URL.
Button and infinite pagination advance through interaction with a live page,
so their URL never changes.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from typing_extensions import assert_never

from pagescrape.data_types import PaginationType

if TYPE_CHECKING:
    from pagescrape.data_types import PaginationConfig


def build_page_url(
    base_url: str,
    page: int,
    pagination_type: PaginationType,
    config: PaginationConfig,
) -> str:
    """Build the URL for ``page`` of a paginated listing.

    Args:
        base_url: The request URL.
        page: 1-based page number.
        pagination_type: How the listing paginates.
        config: Pagination settings (query parameter, path prefix).

    Returns:
        For query pagination, ``base_url`` with ``?{param}={page}`` appended
        (``&`` when a query string already exists). For path pagination,
        ``base_url`` without one trailing slash plus ``/{prefix}{page}``.
        Otherwise ``base_url`` unchanged.

    Examples:
        >>> build_page_url(
        ...     "http://x.com/a", 3, PaginationType.QUERY, PaginationConfig()
        ... )
        'http://x.com/a?page=3'
    """
    match pagination_type:
        case PaginationType.QUERY:
            separator = "&" if "?" in base_url else "?"
            return f"{base_url}{separator}{config.query_param}={page}"
        case PaginationType.PATH:
            root = base_url[:-1] if base_url.endswith("/") else base_url
            return f"{root}/{config.path_prefix}{page}"
        case (
            PaginationType.NONE
            | PaginationType.BUTTON
            | PaginationType.INFINITE
        ):
            return base_url
        case _:
            assert_never(pagination_type)


def next_page_selector(
    pagination_type: PaginationType, config: PaginationConfig
) -> str | None:
    """Pick the selector whose presence means another page exists.

    Returns:
        The configured selector for the pagination type, or None when
        the type has no next page or nothing was configured.
    """
    match pagination_type:
        case PaginationType.QUERY | PaginationType.PATH:
            return config.next_page_selector
        case PaginationType.BUTTON:
            return config.next_button_selector or config.next_page_selector
        case PaginationType.INFINITE:
            return config.load_more_selector or config.next_page_selector
        case PaginationType.NONE:
            return None
        case _:
            assert_never(pagination_type)
