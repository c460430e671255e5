"""pagescrape CLI: parse pages, estimate crawls and inspect backends.

Usage:
    pagescrape parse URL -s ".item"                  # Static crawl
    pagescrape parse URL -s ".item" --render         # Headless browser
    pagescrape parse URL --field-rule "title=//h2"   # XPath field rules
    pagescrape parse URL --format csv -o items.csv   # Export as CSV
    pagescrape strategies                            # List backends
    pagescrape estimate URL --max-pages 5            # Estimated duration
    pagescrape analyze URL                           # Structure analysis
"""

from __future__ import annotations

import asyncio
import json
import logging
import re
from dataclasses import asdict
from pathlib import Path
from typing import Any

import click

from pagescrape.common.exceptions import ConfigurationError
from pagescrape.data_types import (
    ExportFormat,
    PaginationType,
    WaitStrategy,
)
from pagescrape.export import export_result
from pagescrape.service import ParsingService

_NAMED_RULE = re.compile(r"^(\w+)=(.+)$", re.S)


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def parse_field_rule(value: str) -> dict[str, str] | str:
    """Turn ``name=xpath`` into a rule mapping; bare XPaths pass through."""
    match = _NAMED_RULE.match(value)
    if match is None:
        return value
    return {"name": match.group(1), "xpath": match.group(2)}


_PAGINATION_OPTIONS = (
    "query_param",
    "path_prefix",
    "next_page_selector",
    "next_button_selector",
    "load_more_selector",
)


def build_raw_request(url: str, **options: Any) -> dict[str, Any]:
    """Build request input from CLI options, dropping unset ones.

    Unset options are left out so the settings defaults apply.
    """
    raw: dict[str, Any] = {"url": url}
    pagination_config = {}
    for key in _PAGINATION_OPTIONS:
        value = options.pop(key, None)
        if value is not None:
            pagination_config[key] = value
    if pagination_config:
        raw["pagination_config"] = pagination_config

    field_rules = options.pop("field_rules", ())
    if field_rules:
        raw["field_rules"] = [parse_field_rule(rule) for rule in field_rules]

    for key, value in options.items():
        if value is None or value is False:
            continue
        raw[key] = value
    return raw


def _run(coro: Any) -> Any:
    try:
        return asyncio.run(coro)
    except ConfigurationError as e:
        raise click.ClickException(e.message) from e


@click.group()
@click.version_option(package_name="pagescrape")
def cli() -> None:
    """pagescrape: extract repeated items from web pages."""


_request_options = [
    click.option(
        "-s", "--item-selector", help="CSS or XPath selector for items."
    ),
    click.option(
        "--pagination",
        "pagination_type",
        type=click.Choice([p.value for p in PaginationType]),
        help="How to reach the next page.",
    ),
    click.option("--max-pages", type=int, help="Maximum pages to crawl."),
    click.option("--delay", type=int, help="Delay between pages in ms."),
    click.option("--strategy", help="Force a backend by name."),
    click.option(
        "--field-rule",
        "field_rules",
        multiple=True,
        help="XPath field rule, optionally named: name=//xpath.",
    ),
    click.option("--query-param", help="Query parameter for page numbers."),
    click.option("--path-prefix", help="Path segment before page numbers."),
    click.option("--next-page-selector", help="Next page link selector."),
    click.option("--next-button-selector", help="Next button selector."),
    click.option("--load-more-selector", help="Load more button selector."),
    click.option("--render", is_flag=True, help="Use a headless browser."),
    click.option("--spa", is_flag=True, help="Wait for SPA requests."),
    click.option(
        "--infinite-scrolling", is_flag=True, help="Scroll to load items."
    ),
    click.option(
        "--smart-analysis",
        "enable_smart_analysis",
        is_flag=True,
        help="Let structure analysis pick the item selector.",
    ),
    click.option(
        "--wait-strategy",
        type=click.Choice([w.value for w in WaitStrategy]),
        help="Browser navigation wait condition.",
    ),
    click.option(
        "--wait-selector",
        "custom_wait_selector",
        help="Selector to wait for after navigation.",
    ),
]


def request_options(func: Any) -> Any:
    for option in reversed(_request_options):
        func = option(func)
    return func


@cli.command()
@click.argument("url")
@request_options
@click.option(
    "--no-validation",
    is_flag=True,
    help="Skip record validation and cleanup.",
)
@click.option(
    "--format",
    "fmt",
    type=click.Choice([f.value for f in ExportFormat]),
    default=ExportFormat.JSON.value,
    show_default=True,
)
@click.option(
    "-o", "--output", type=click.Path(), help="Write output to a file."
)
@click.option(
    "--metadata", is_flag=True, help="Include metadata in JSON output."
)
@click.option("-v", "--verbose", is_flag=True, help="Verbose logging.")
def parse(
    url: str,
    no_validation: bool,
    fmt: str,
    output: str | None,
    metadata: bool,
    verbose: bool,
    **options: Any,
) -> None:
    """Extract items from URL.

    \b
    Examples:
        pagescrape parse https://example.com/list -s ".item"
        pagescrape parse https://example.com/list -s ".item" \\
            --pagination query --max-pages 3
    """
    _configure_logging(verbose)
    raw = build_raw_request(url, **options)
    if no_validation:
        raw["enable_data_validation"] = False
    raw["file_extension"] = fmt

    service = ParsingService()
    result = _run(service.parse(raw))
    text = export_result(result, fmt, include_metadata=metadata)

    if output:
        Path(output).write_text(text, encoding="utf-8")
        click.echo(
            f"Wrote {result.total_items} items to {output}", err=True
        )
    else:
        click.echo(text)
    for error in result.metadata.errors:
        click.echo(f"error: {error.message}", err=True)


@cli.command()
def strategies() -> None:
    """List registered extraction backends."""
    service = ParsingService()
    for strategy in service.list_strategies():
        click.echo(f"{strategy['name']}: {strategy['display_name']}")
        for feature in strategy["features"]:
            click.echo(f"  - {feature}")


@cli.command()
@click.argument("url")
@request_options
def estimate(url: str, **options: Any) -> None:
    """Estimate how long crawling URL would take."""
    service = ParsingService()
    try:
        summary = service.estimate_time(build_raw_request(url, **options))
    except ConfigurationError as e:
        raise click.ClickException(e.message) from e
    click.echo(json.dumps(summary, indent=2))


@cli.command()
@click.argument("url")
@click.option("-v", "--verbose", is_flag=True, help="Verbose logging.")
def analyze(url: str, verbose: bool) -> None:
    """Analyze the page structure of URL and suggest selectors."""
    _configure_logging(verbose)
    service = ParsingService()
    analysis = _run(service.analyze_structure(url))
    click.echo(json.dumps(asdict(analysis), indent=2, ensure_ascii=False))


def main() -> None:
    """Entry point for the ``pagescrape`` console script."""
    cli()
