"""Selector utility functions shared by the backends.

Item selectors may be CSS or XPath. These helpers tell them apart, convert
CSS to XPath with cssselect, run either kind against an lxml tree, and check
whether Playwright can wait for a selector.
"""

from __future__ import annotations

from functools import lru_cache

from cssselect import HTMLTranslator, SelectorError
from lxml import etree

_translator = HTMLTranslator()

EXSLT_PREFIXES = (
    "re:",
    "str:",
    "math:",
    "set:",
    "dyn:",
    "exsl:",
    "func:",
    "date:",
)


class InvalidSelectorError(ValueError):
    """Raised when a selector is neither valid CSS nor valid XPath."""

    def __init__(self, selector: str, reason: str) -> None:
        self.selector = selector
        super().__init__(f"Invalid selector '{selector}': {reason}")


def is_xpath(selector: str) -> bool:
    """Return True when ``selector`` should be evaluated as XPath.

    Examples:
        >>> is_xpath("//div[@class='item']")
        True
        >>> is_xpath("(//li)[1]")
        True
        >>> is_xpath("div.item > a")
        False
    """
    selector = selector.strip()
    return selector.startswith(("/", "./", "(/", "(./"))


@lru_cache(maxsize=256)
def css_to_xpath(css: str) -> str:
    """Convert a CSS selector to an equivalent XPath expression.

    Args:
        css: CSS selector (CSS3 subset supported by cssselect).

    Returns:
        XPath matching the same elements anywhere in the document.

    Raises:
        InvalidSelectorError: If ``css`` cannot be parsed.
    """
    try:
        return _translator.css_to_xpath(css)
    except SelectorError as e:
        raise InvalidSelectorError(css, str(e)) from e


@lru_cache(maxsize=256)
def compile_selector(selector: str) -> etree.XPath:
    """Compile a CSS or XPath selector to a reusable lxml XPath.

    Raises:
        InvalidSelectorError: If the selector does not compile.
    """
    expression = selector if is_xpath(selector) else css_to_xpath(selector)
    try:
        return etree.XPath(expression)
    except etree.XPathSyntaxError as e:
        raise InvalidSelectorError(selector, str(e)) from e


def select_elements(root: etree._Element, selector: str) -> list:
    """Return the elements matched by a CSS or XPath selector.

    Non-element results (text nodes, attribute values, numbers) are dropped,
    so the result is always a list of elements in document order.
    """
    matches = compile_selector(selector)(root)
    if not isinstance(matches, list):
        return []
    return [match for match in matches if isinstance(match, etree._Element)]


def can_playwright_wait(selector: str, selector_type: str) -> bool:
    """Determine if a selector works with Playwright's wait_for_selector().

    Playwright's wait_for_selector() only works with selectors that target
    elements. It does not support XPath expressions that return text nodes,
    attributes, or use EXSLT functions.

    Args:
        selector: The selector string.
        selector_type: Type of selector ("xpath" or "css").

    Returns:
        True if Playwright can wait for this selector, False otherwise.

    Examples:
        >>> can_playwright_wait("//div[@class='content']", "xpath")
        True
        >>> can_playwright_wait("//div/@href", "xpath")
        False
    """
    if selector_type == "css":
        return True

    selector = selector.strip()

    if selector.endswith("/text()"):
        return False

    parts = selector.split("/")
    if parts and parts[-1].startswith("@"):
        return False

    return all(prefix not in selector for prefix in EXSLT_PREFIXES)


def playwright_selector(selector: str) -> str | None:
    """Return ``selector`` in Playwright's syntax, or None if it can't wait.

    XPath selectors get the ``xpath=`` engine prefix.
    """
    if is_xpath(selector):
        if not can_playwright_wait(selector, "xpath"):
            return None
        return f"xpath={selector}"
    return selector
