"""Parsed pages and element accessors.

Every backend ends up with HTML text: static backends from an HTTP response,
rendered backends by serializing the live DOM. PageDocument parses that text
once with lxml, and PageElement exposes the handful of element reads the
extraction code needs.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from lxml import etree, html

from pagescrape.common.selector_utils import select_elements


@dataclass
class PageDocument:
    """A fetched page and its parsed tree.

    Attributes:
        url: URL the page was fetched from.
        text: Raw HTML.
        status_code: HTTP status, or None for rendered snapshots.
        live_page: The browser page the snapshot came from, if any.
    """

    url: str
    text: str
    status_code: int | None = None
    live_page: Any = field(default=None, repr=False, compare=False)
    _root: etree._Element | None = field(
        default=None, init=False, repr=False, compare=False
    )

    @property
    def root(self) -> etree._Element:
        if self._root is None:
            if self.text.strip():
                try:
                    self._root = html.document_fromstring(self.text)
                except ValueError:
                    # str input may not carry an XML encoding declaration
                    self._root = html.document_fromstring(
                        self.text.encode("utf-8")
                    )
            else:
                self._root = html.document_fromstring("<html></html>")
        return self._root

    @property
    def size(self) -> int:
        """Size of the HTML in UTF-8 bytes."""
        return len(self.text.encode("utf-8"))

    def select(self, selector: str) -> list[PageElement]:
        """Return wrapped elements matching a CSS or XPath selector."""
        return [PageElement(el) for el in select_elements(self.root, selector)]

    def exists(self, selector: str) -> bool:
        return bool(select_elements(self.root, selector))


class PageElement:
    """Read-only view of one lxml element.

    Attributes:
        element: The underlying lxml element.
    """

    def __init__(self, element: etree._Element) -> None:
        self.element = element

    @property
    def tag_name(self) -> str:
        tag = self.element.tag
        if not isinstance(tag, str):
            return "unknown"
        return etree.QName(tag).localname.lower()

    def attributes(self) -> dict[str, str]:
        return {str(k): str(v) for k, v in self.element.attrib.items()}

    def get_attribute(self, name: str) -> str | None:
        return self.element.get(name)

    def classes(self) -> list[str]:
        return (self.element.get("class") or "").split()

    def own_text(self) -> str:
        """Text directly inside the element, excluding descendants' text.

        Tails of child elements belong to this element, so they are kept.
        """
        parts = [self.element.text or ""]
        parts.extend(child.tail or "" for child in self.element)
        return "".join(parts).strip()

    def text_content(self) -> str:
        return "".join(self.element.itertext()).strip()

    def inner_html(self) -> str:
        parts = [self.element.text or ""]
        parts.extend(
            html.tostring(child, encoding="unicode", with_tail=True)
            for child in self.element
        )
        return "".join(parts).strip()

    def children(self) -> list[PageElement]:
        return [
            PageElement(child)
            for child in self.element
            if isinstance(child.tag, str)
        ]

    def child_key(self) -> str:
        """Key for this element inside its parent's ``children`` mapping.

        Format is ``tag[.firstClass][#id]``.
        """
        key = self.tag_name
        classes = self.classes()
        if classes:
            key += f".{classes[0]}"
        element_id = self.get_attribute("id")
        if element_id:
            key += f"#{element_id}"
        return key

    def xpath(self, expression: str) -> list[Any]:
        result = self.element.xpath(expression)
        if isinstance(result, list):
            return result
        if result is None or result == "" or result is False:
            return []
        return [result]

    def is_usable_control(self) -> bool:
        """True unless the element is marked disabled or hidden."""
        if "disabled" in self.classes():
            return False
        if self.get_attribute("disabled") is not None:
            return False
        if self.get_attribute("hidden") is not None:
            return False
        if (self.get_attribute("aria-disabled") or "").lower() == "true":
            return False
        style = (self.get_attribute("style") or "").replace(" ", "").lower()
        return "display:none" not in style and "visibility:hidden" not in style
