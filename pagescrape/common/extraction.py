"""Turning matched elements into extraction records.

A record mirrors the DOM subtree of one matched element:

- ``attributes``: the element's own attributes
- ``text``: text directly inside the element, not its descendants
- ``html``: inner HTML
- ``children``: one record per child element, keyed by
  ``tag[.firstClass][#id]`` (``_{index}`` appended on collision)

plus one key per field rule. Keys with empty values are left out.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Sequence

from lxml import etree, html

from pagescrape.common.exceptions import ElementExtractionException
from pagescrape.common.page_element import PageDocument, PageElement
from pagescrape.data_types import FieldRule, FieldType, Record

logger = logging.getLogger(__name__)

OnWarning = Callable[[str], None]


def element_record(element: PageElement) -> Record:
    """Build the structural record for ``element`` and its descendants."""
    record: Record = {}

    attributes = element.attributes()
    if attributes:
        record["attributes"] = attributes

    text = element.own_text()
    if text:
        record["text"] = text

    inner = element.inner_html()
    if inner:
        record["html"] = inner

    children = element.children()
    if children:
        child_records: Record = {}
        for index, child in enumerate(children):
            key = child.child_key()
            if key in child_records:
                key = f"{key}_{index}"
            child_records[key] = element_record(child)
        record["children"] = child_records

    return record


def _contextual(expression: str) -> str:
    """Anchor an absolute XPath to the context element."""
    expression = expression.strip()
    if expression.startswith("/"):
        return f".{expression}"
    return expression


def _node_value(node: object, rule: FieldRule) -> str | None:
    if isinstance(node, etree._Element):
        match rule.type:
            case FieldType.ATTRIBUTE:
                return node.get(rule.attribute) if rule.attribute else None
            case FieldType.HTML:
                return PageElement(node).inner_html() or html.tostring(
                    node, encoding="unicode"
                )
            case FieldType.TEXT:
                return "".join(node.itertext()).strip()
    if isinstance(node, (str, bytes)):
        value = node.decode() if isinstance(node, bytes) else str(node)
        return value.strip()
    if isinstance(node, (int, float)) and not isinstance(node, bool):
        return str(node)
    return None


def evaluate_field_rule(
    element: PageElement, rule: FieldRule
) -> str | list[str] | None:
    """Evaluate one field rule relative to ``element``.

    The fallback expression is tried only when the primary matches nothing.

    Returns:
        Every non-empty value when ``rule.multiple`` is set, otherwise the
        first one. None when nothing non-empty matched.
    """
    nodes = element.xpath(_contextual(rule.xpath))
    if not nodes and rule.fallback:
        nodes = element.xpath(_contextual(rule.fallback))

    values = [
        value
        for value in (_node_value(node, rule) for node in nodes)
        if value
    ]
    if not values:
        return None
    return values if rule.multiple else values[0]


def extract_record(
    element: PageElement, field_rules: Sequence[FieldRule] = ()
) -> Record:
    record = element_record(element)
    for rule in field_rules:
        try:
            value = evaluate_field_rule(element, rule)
        except etree.XPathError as e:
            logger.warning(f"Field rule '{rule.name}' failed: {e}")
            continue
        if value:
            record[rule.name] = value
    return record


def extract_items(
    document: PageDocument,
    item_selector: str,
    field_rules: Sequence[FieldRule] = (),
    on_warning: OnWarning | None = None,
    skip: int = 0,
) -> list[Record]:
    """Extract one record per element matched by ``item_selector``.

    Args:
        document: The parsed page.
        item_selector: CSS or XPath selector for the items.
        field_rules: Named XPath fields added to every record.
        on_warning: Receives a message for each element that failed.
        skip: Number of leading matches to ignore, e.g. items already
            extracted before an infinite-scroll load.

    Returns:
        Records in document order. Elements yielding no keys are dropped.
    """
    elements = document.select(item_selector)
    logger.debug(
        f"Selector '{item_selector}' matched {len(elements)} elements "
        f"on {document.url}"
    )

    items: list[Record] = []
    for index, element in enumerate(elements[skip:], start=skip):
        try:
            record = extract_record(element, field_rules)
        except Exception as e:
            error = ElementExtractionException(
                item_selector, index, str(e), document.url
            )
            logger.warning(error.message)
            if on_warning is not None:
                on_warning(error.message)
            continue
        if record:
            items.append(record)
    return items
