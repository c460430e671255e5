"""Data types for requests and results.

This module defines the two objects that flow through a crawl:

1. ParseRequest - an immutable job description, validated once. Every
   violated rule is reported together in a single ConfigurationError.
2. ParseResult - a mutable accumulator owned by whoever runs the crawl.
   ``metadata.total_items`` always equals ``len(items)``; after finalize()
   the result is read-only.

Requests accept camelCase keys (``itemSelector``, ``maxPages``) as well as
the snake_case field names.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import TYPE_CHECKING, Any
from urllib.parse import urlparse

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    ValidationError,
    ValidationInfo,
    model_validator,
)
from pydantic.alias_generators import to_camel

from pagescrape.common.exceptions import ConfigurationError

if TYPE_CHECKING:
    from pagescrape.config import ScrapeSettings

# Values are strings, lists of strings, or nested records.
Record = dict[str, Any]


class PaginationType(str, Enum):
    NONE = "none"
    QUERY = "query"
    PATH = "path"
    BUTTON = "button"
    INFINITE = "infinite"


class WaitStrategy(str, Enum):
    """Navigation completion event passed to ``page.goto(wait_until=...)``."""

    LOAD = "load"
    DOMCONTENTLOADED = "domcontentloaded"
    NETWORKIDLE = "networkidle"
    COMMIT = "commit"


# Puppeteer-style names map onto the closest Playwright event.
WAIT_STRATEGY_ALIASES = {
    "networkidle0": WaitStrategy.NETWORKIDLE,
    "networkidle2": WaitStrategy.NETWORKIDLE,
}


class FieldType(str, Enum):
    TEXT = "text"
    HTML = "html"
    ATTRIBUTE = "attribute"


class ExportFormat(str, Enum):
    JSON = "json"
    CSV = "csv"


class _RequestModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
        extra="ignore",
    )


class PaginationConfig(_RequestModel):
    """Type-specific pagination settings.

    Attributes:
        query_param: Query parameter carrying the page number.
        path_prefix: Path segment placed before the page number.
        next_page_selector: Presence means another page exists.
        next_button_selector: Control clicked for button pagination.
        load_more_selector: Indicator/control for infinite pagination.
        next_page_xpath: XPath used by the XPath backend instead of
            ``next_page_selector``.
    """

    query_param: str = "page"
    path_prefix: str = "page/"
    next_page_selector: str | None = None
    next_button_selector: str | None = None
    load_more_selector: str | None = None
    next_page_xpath: str | None = None


class FieldRule(_RequestModel):
    """A named XPath evaluated relative to each matched element.

    Attributes:
        xpath: Expression evaluated against the element.
        name: Key of the value in the extraction record.
        type: What to read from matched nodes.
        attribute: Attribute name, required when ``type`` is attribute.
        multiple: Keep every match instead of the first.
        fallback: Expression tried when ``xpath`` matches nothing.
    """

    xpath: str
    name: str
    type: FieldType = FieldType.TEXT
    attribute: str | None = None
    multiple: bool = False
    fallback: str | None = None


class FieldSchema(_RequestModel):
    """Validation rules for one record field.

    Attributes:
        type: Format name checked by the validator (text, email, price...).
        required: Missing or empty values make the record invalid.
        min_length: Minimum string length after cleaning.
        max_length: Maximum string length after cleaning.
        clean: Cleaning rule names to apply. None applies the rules for
            ``type``; an empty list disables cleaning.
    """

    type: str = "text"
    required: bool = False
    min_length: int | None = None
    max_length: int | None = None
    clean: list[str] | None = None


def _lookup(data: Mapping[str, Any], name: str) -> Any:
    """Read a raw input value by field name or its camelCase alias."""
    if name in data:
        return data[name]
    return data.get(to_camel(name))


def _enum_problem(value: Any, enum: type[Enum], label: str) -> str | None:
    allowed = [member.value for member in enum]
    if value is None or value in allowed:
        return None
    return f"unsupported {label} '{value}' (allowed: {', '.join(allowed)})"


def _field_rule_problems(rules: Any, max_count: int) -> list[str]:
    if not isinstance(rules, (list, tuple)):
        return ["field_rules must be a list"]
    problems = []
    if len(rules) > max_count:
        problems.append(f"at most {max_count} field rules are allowed")
    for number, rule in enumerate(rules, start=1):
        if isinstance(rule, str):
            if not rule.strip():
                problems.append(f"field rule {number} must not be empty")
        elif isinstance(rule, Mapping):
            if not str(rule.get("xpath") or "").strip():
                problems.append(f"field rule {number} needs an 'xpath'")
            if not str(rule.get("name") or "").strip():
                problems.append(f"field rule {number} needs a 'name'")
            problem = _enum_problem(
                rule.get("type"), FieldType, f"field rule {number} type"
            )
            if problem:
                problems.append(problem)
            if rule.get("type") == FieldType.ATTRIBUTE.value and not rule.get(
                "attribute"
            ):
                problems.append(
                    f"field rule {number} of type attribute needs an "
                    "'attribute'"
                )
        elif not isinstance(rule, FieldRule):
            problems.append(f"field rule {number} has an invalid format")
    return problems


def _normalize_field_rules(rules: Iterable[Any]) -> list[Any]:
    normalized = []
    for number, rule in enumerate(rules, start=1):
        if isinstance(rule, str):
            rule = {"xpath": rule, "name": f"xpath_field_{number}"}
        normalized.append(rule)
    return normalized


class ParseRequest(_RequestModel):
    """Immutable description of one extraction job.

    Build it with ``ParseRequest.from_input(raw)`` to get defaults and limits
    from settings and a ConfigurationError listing every violated rule.

    Attributes:
        url: Absolute http(s) URL of the first page.
        item_selector: CSS selector or XPath matching one element per record.
        pagination_type: How later pages are reached.
        pagination_config: Settings for ``pagination_type``.
        max_pages: Upper bound on pages crawled.
        delay: Milliseconds slept between pages.
        strategy: Name of a backend to use instead of automatic selection.
        field_rules: Named XPath fields added to every record.
        render: Render pages in a browser.
        spa: The site renders its content client-side.
        infinite_scrolling: Content loads as the page is scrolled.
        enable_smart_analysis: Analyze the first page to improve selectors.
        wait_strategy: Navigation event awaited by rendered backends.
        custom_wait_selector: Element awaited before extracting.
        enable_data_validation: Validate and clean records after the crawl.
        validation_schema: Field schemas; inferred when omitted.
        file_extension: Export format.
        include_metadata: Export metadata alongside items.
    """

    url: str
    item_selector: str = "body"
    pagination_type: PaginationType = PaginationType.NONE
    pagination_config: PaginationConfig = Field(
        default_factory=PaginationConfig
    )
    max_pages: int = 1
    delay: int = 1000
    strategy: str | None = None
    field_rules: tuple[FieldRule, ...] = ()
    render: bool = False
    spa: bool = False
    infinite_scrolling: bool = False
    enable_smart_analysis: bool = False
    wait_strategy: WaitStrategy = WaitStrategy.NETWORKIDLE
    custom_wait_selector: str | None = None
    enable_data_validation: bool = True
    validation_schema: dict[str, FieldSchema] | None = None
    file_extension: ExportFormat = ExportFormat.JSON
    include_metadata: bool = False

    @model_validator(mode="before")
    @classmethod
    def check_rules(cls, data: Any, info: ValidationInfo) -> Any:
        """Check every rule on the raw input and report them together."""
        if isinstance(data, BaseModel):
            return data
        if not isinstance(data, Mapping):
            raise ValueError("request must be a mapping")

        settings = (info.context or {}).get("settings")
        if settings is None:
            from pagescrape.config import get_settings

            settings = get_settings()
        limits = settings.limits
        data = dict(data)
        problems: list[str] = []
        invalid: set[str] = set()

        def fail(name: str, message: str) -> None:
            problems.append(message)
            invalid.add(name)

        url = _lookup(data, "url")
        if not url:
            fail("url", "url is required")
        elif not isinstance(url, str):
            fail("url", "url must be a string")
        elif len(url) > limits.max_url_length:
            fail(
                "url",
                f"url must not exceed {limits.max_url_length} characters",
            )
        else:
            parsed = urlparse(url)
            if parsed.scheme not in ("http", "https") or not parsed.netloc:
                fail("url", f"url '{url}' is not an absolute http(s) URL")

        item_selector = _lookup(data, "item_selector")
        if item_selector is not None and (
            not isinstance(item_selector, str) or not item_selector.strip()
        ):
            fail("item_selector", "item_selector must be a non-empty string")

        for name, enum, label in (
            ("pagination_type", PaginationType, "pagination type"),
            ("file_extension", ExportFormat, "file format"),
        ):
            problem = _enum_problem(_lookup(data, name), enum, label)
            if problem:
                fail(name, problem)

        wait_strategy = _lookup(data, "wait_strategy")
        if wait_strategy in WAIT_STRATEGY_ALIASES:
            data["wait_strategy"] = WAIT_STRATEGY_ALIASES[wait_strategy]
            data.pop("waitStrategy", None)
        else:
            problem = _enum_problem(
                wait_strategy, WaitStrategy, "wait strategy"
            )
            if problem:
                fail("wait_strategy", problem)

        max_pages = _lookup(data, "max_pages")
        if max_pages is None:
            data["max_pages"] = settings.parsing.default_max_pages
        elif (
            isinstance(max_pages, bool)
            or not isinstance(max_pages, int)
            or not 1 <= max_pages <= limits.max_pages_limit
        ):
            fail(
                "max_pages",
                f"max_pages must be an integer between 1 and "
                f"{limits.max_pages_limit}",
            )

        delay = _lookup(data, "delay")
        if delay is None:
            data["delay"] = settings.parsing.default_delay_ms
        elif (
            isinstance(delay, bool)
            or not isinstance(delay, int)
            or delay < 0
        ):
            fail("delay", "delay must be a non-negative integer (ms)")

        strategy = _lookup(data, "strategy")
        if strategy is not None and (
            not isinstance(strategy, str) or not strategy.strip()
        ):
            fail("strategy", "strategy must be a non-empty string")

        field_rules = _lookup(data, "field_rules")
        if field_rules is not None:
            rule_problems = _field_rule_problems(
                field_rules, limits.max_selectors_count
            )
            if rule_problems:
                problems.extend(rule_problems)
                invalid.add("field_rules")
            else:
                data["field_rules"] = _normalize_field_rules(field_rules)
                data.pop("fieldRules", None)

        schema = _lookup(data, "validation_schema")
        if schema is not None and not isinstance(schema, Mapping):
            fail("validation_schema", "validation_schema must be a mapping")

        pagination_config = _lookup(data, "pagination_config")
        if pagination_config is not None and not isinstance(
            pagination_config, (Mapping, PaginationConfig)
        ):
            fail("pagination_config", "pagination_config must be a mapping")

        if not problems:
            return data

        # from_input passes a list to collect into; other callers fail here
        collected = (info.context or {}).get("problems")
        if collected is None:
            raise ConfigurationError(problems)
        collected.extend(problems)

        # Field types are still checked for everything that passed above.
        for name in invalid:
            data.pop(name, None)
            data.pop(to_camel(name), None)
        if "url" in invalid:
            data["url"] = ""
        return data

    @classmethod
    def from_input(
        cls,
        raw: ParseRequest | Mapping[str, Any],
        settings: ScrapeSettings | None = None,
    ) -> ParseRequest:
        """Validate raw input into a request.

        Rule violations found on the raw input and field type errors are
        reported together.

        Args:
            raw: A mapping of request fields, or an existing request.
            settings: Settings supplying defaults and limits.

        Returns:
            The validated request.

        Raises:
            ConfigurationError: Listing every violated rule.
        """
        if isinstance(raw, ParseRequest):
            return raw
        problems: list[str] = []
        context = {"settings": settings, "problems": problems}
        try:
            request = cls.model_validate(raw, context=context)
        except ValidationError as e:
            raise ConfigurationError(
                problems + _validation_problems(e)
            ) from e
        if problems:
            raise ConfigurationError(problems)
        return request

    @property
    def wants_adaptive(self) -> bool:
        """True when any signal asks for adaptive rendering."""
        return (
            self.spa or self.infinite_scrolling or self.enable_smart_analysis
        )

    def compatibility_warnings(self) -> list[str]:
        """Return advice about option combinations that work poorly."""
        warnings = []
        if self.enable_smart_analysis and self.strategy in ("static", "xpath"):
            warnings.append(
                "smart analysis only runs with the adaptive strategy"
            )
        if self.spa and self.delay < 2000:
            warnings.append("SPA sites usually need a delay of 2000ms or more")
        if self.max_pages > 10 and self.strategy == "adaptive":
            warnings.append(
                "the adaptive strategy is slow for more than 10 pages"
            )
        if (
            self.infinite_scrolling
            and self.pagination_type is not PaginationType.INFINITE
        ):
            warnings.append(
                "infinite scrolling works best with pagination_type "
                "'infinite'"
            )
        if self.field_rules and self.strategy in ("static", "rendered"):
            warnings.append(
                f"field rules are ignored by the '{self.strategy}' strategy"
            )
        if (
            self.pagination_type
            in (PaginationType.BUTTON, PaginationType.INFINITE)
            and not self.render
            and self.strategy not in ("rendered", "adaptive")
        ):
            warnings.append(
                f"{self.pagination_type.value} pagination needs a rendered "
                "strategy to advance past the first page"
            )
        return warnings


def _validation_problems(error: ValidationError) -> list[str]:
    problems = []
    for err in error.errors():
        message = err["msg"].removeprefix("Value error, ")
        location = ".".join(str(part) for part in err["loc"])
        problems.append(f"{location}: {message}" if location else message)
    return problems


# =============================================================================
# Results
# =============================================================================


def _now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class ErrorEntry:
    message: str
    type: str = "Exception"
    timestamp: datetime = field(default_factory=_now)


@dataclass
class WarningEntry:
    message: str
    timestamp: datetime = field(default_factory=_now)


@dataclass
class ResultMetadata:
    total_items: int = 0
    pages_processed: int = 0
    start_time: datetime = field(default_factory=_now)
    end_time: datetime | None = None
    duration: float | None = None
    errors: list[ErrorEntry] = field(default_factory=list)
    warnings: list[WarningEntry] = field(default_factory=list)
    strategy: str | None = None
    fallback_used: str | None = None
    quality_score: float | None = None
    is_valid: bool = True
    validation: dict[str, Any] | None = None


@dataclass
class ResultStatistics:
    successful_requests: int = 0
    failed_requests: int = 0
    retry_attempts: int = 0
    bytes_processed: int = 0

    @property
    def success_rate(self) -> float:
        """Fraction of page requests that succeeded, 0.0 when none ran."""
        total = self.successful_requests + self.failed_requests
        return self.successful_requests / total if total else 0.0


@dataclass
class ParseResult:
    """Accumulator for one crawl attempt.

    Mutate it only through its methods so that ``metadata.total_items``
    stays equal to ``len(items)``. finalize() stamps the end time and
    duration; any later mutation raises RuntimeError.
    """

    items: list[Record] = field(default_factory=list)
    metadata: ResultMetadata = field(default_factory=ResultMetadata)
    statistics: ResultStatistics = field(default_factory=ResultStatistics)
    _finalized: bool = field(default=False, repr=False)

    @property
    def finalized(self) -> bool:
        return self._finalized

    @property
    def total_items(self) -> int:
        return self.metadata.total_items

    def _check_open(self) -> None:
        if self._finalized:
            raise RuntimeError("ParseResult is finalized and read-only")

    def add_item(self, item: Record) -> None:
        self._check_open()
        self.items.append(item)
        self.metadata.total_items = len(self.items)

    def add_items(self, items: Iterable[Record]) -> None:
        self._check_open()
        self.items.extend(items)
        self.metadata.total_items = len(self.items)

    def replace_items(self, items: Iterable[Record]) -> None:
        """Swap in a new item list, e.g. validator-cleaned records."""
        self._check_open()
        self.items = list(items)
        self.metadata.total_items = len(self.items)

    def add_error(self, error: BaseException | str) -> None:
        self._check_open()
        if isinstance(error, BaseException):
            entry = ErrorEntry(
                message=str(error) or type(error).__name__,
                type=type(error).__name__,
            )
        else:
            entry = ErrorEntry(message=error)
        self.metadata.errors.append(entry)

    def add_warning(self, message: str) -> None:
        self._check_open()
        self.metadata.warnings.append(WarningEntry(message=message))

    def increment_pages(self, count: int = 1) -> None:
        self._check_open()
        self.metadata.pages_processed += count

    def record_success(self, bytes_processed: int = 0, count: int = 1) -> None:
        self._check_open()
        self.statistics.successful_requests += count
        self.statistics.bytes_processed += bytes_processed

    def record_failure(self) -> None:
        self._check_open()
        self.statistics.failed_requests += 1

    def record_retry(self) -> None:
        self._check_open()
        self.statistics.retry_attempts += 1

    def set_metadata(self, **values: Any) -> None:
        self._check_open()
        for key, value in values.items():
            if not hasattr(self.metadata, key) or key == "total_items":
                raise AttributeError(f"Unknown metadata field: {key}")
            setattr(self.metadata, key, value)

    def finalize(self) -> ParseResult:
        """Stamp end time and duration; the result is read-only afterwards."""
        if self._finalized:
            return self
        end = _now()
        self.metadata.end_time = end
        elapsed = end - self.metadata.start_time
        self.metadata.duration = elapsed.total_seconds()
        self._finalized = True
        return self

    def to_dict(self) -> dict[str, Any]:
        """Return a JSON-ready representation."""
        metadata = asdict(self.metadata)
        for key in ("start_time", "end_time"):
            if metadata[key] is not None:
                metadata[key] = metadata[key].isoformat()
        for entry in metadata["errors"] + metadata["warnings"]:
            entry["timestamp"] = entry["timestamp"].isoformat()
        statistics = asdict(self.statistics)
        statistics["success_rate"] = self.statistics.success_rate
        return {
            "items": self.items,
            "metadata": metadata,
            "statistics": statistics,
        }
