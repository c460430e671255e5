"""Record validation and cleanup.

DataValidator checks extracted records against a per-field schema, cleans
field values in place of the originals, and reports which records failed.
When no schema is given one is inferred from the first record.

Duplicate detection for ``unique_fields`` is scoped to a ValidationArena
that lives for a single validate() call, so calls never influence each
other.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Mapping, Sequence
from dataclasses import asdict, dataclass, field
from typing import Any

from pagescrape.common.exceptions import DataFormatAssumptionException
from pagescrape.data_types import FieldSchema, Record

logger = logging.getLogger(__name__)

PATTERNS: dict[str, re.Pattern[str]] = {
    "email": re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$"),
    "phone": re.compile(r"^\+?[\d\s\-()]{7,15}$"),
    "url": re.compile(
        r"^https?://(www\.)?[-a-zA-Z0-9@:%._+~#=]{1,256}"
        r"\.[a-zA-Z0-9()]{1,6}\b([-a-zA-Z0-9()@:%_+.~#?&/=]*)$"
    ),
    "price": re.compile(r"^[$€£¥₽]?\s*\d+([.,]\d+)*$"),
    "date": re.compile(
        r"^\d{1,2}[/\-.]\d{1,2}[/\-.]\d{2,4}$"
        r"|^\d{4}[/\-.]\d{1,2}[/\-.]\d{1,2}$"
    ),
    "number": re.compile(r"^\d+([.,]\d+)?$"),
    "text": re.compile(r"\S"),
    "coordinate": re.compile(r"^-?\d+\.\d+$"),
}

HTML_MARKUP = re.compile(r"<[^>]*>")

# Types without a string format; values are accepted as they are.
UNCHECKED_TYPES = frozenset({"object", "array", "boolean", "html"})

CLEANING_RULES: dict[str, list[tuple[re.Pattern[str], str]]] = {
    "text": [(re.compile(r"\s+"), " ")],
    "html": [
        (re.compile(r"<script\b.*?</script>", re.I | re.S), ""),
        (re.compile(r"<style\b.*?</style>", re.I | re.S), ""),
        (re.compile(r"<[^>]*>"), ""),
        (re.compile(r"&nbsp;"), " "),
        (re.compile(r"&amp;"), "&"),
        (re.compile(r"&lt;"), "<"),
        (re.compile(r"&gt;"), ">"),
        (re.compile(r"&quot;"), '"'),
    ],
    "price": [
        (re.compile(r"[^\d.,$€£¥₽]"), ""),
        (re.compile(r","), "."),
    ],
    "phone": [
        (re.compile(r"[^\d+\-()\s]"), ""),
        (re.compile(r"\s+"), " "),
    ],
    "email": [(re.compile(r"\s"), "")],
}

DEFAULT_MIN_LENGTH = 1
MIN_VALID_RATIO = 0.5


@dataclass(frozen=True)
class Relationship:
    """A constraint between fields of one record.

    Attributes:
        type: ``required_together`` (all or none filled) or
            ``mutually_exclusive`` (at most one filled).
        fields: Field names the constraint covers.
    """

    type: str
    fields: tuple[str, ...]


@dataclass
class ValidationIssue:
    type: str
    message: str
    field: str | None = None


@dataclass
class ValidationStatistics:
    total_items: int = 0
    valid_items: int = 0
    invalid_items: int = 0
    cleaned_items: int = 0


@dataclass
class ValidationReport:
    """Outcome of validating a batch of records.

    Attributes:
        is_valid: False when fewer than half of the records are valid.
        cleaned_data: Cleaned valid records, plus invalid ones when the
            validator includes them.
        errors: Every error found, critical summary first.
        warnings: Cleanup notes, unknown types and duplicates.
        statistics: Counts by outcome.
        failures: One exception per invalid record.
    """

    is_valid: bool = True
    cleaned_data: list[Record] = field(default_factory=list)
    errors: list[ValidationIssue] = field(default_factory=list)
    warnings: list[ValidationIssue] = field(default_factory=list)
    statistics: ValidationStatistics = field(
        default_factory=ValidationStatistics
    )
    failures: list[DataFormatAssumptionException] = field(
        default_factory=list
    )

    def summary(self) -> dict[str, Any]:
        return {
            "is_valid": self.is_valid,
            "error_count": len(self.errors),
            "warning_count": len(self.warnings),
            **asdict(self.statistics),
        }


class ValidationArena:
    """Values already seen for unique fields during one validation call."""

    def __init__(self) -> None:
        self._seen: dict[str, set[str]] = {}

    def is_duplicate(self, field_name: str, value: Any) -> bool:
        """Record ``value`` and report whether it was seen before."""
        seen = self._seen.setdefault(field_name, set())
        marker = value if isinstance(value, str) else repr(value)
        if marker in seen:
            return True
        seen.add(marker)
        return False


@dataclass
class _FieldOutcome:
    value: Any
    errors: list[ValidationIssue] = field(default_factory=list)
    warnings: list[ValidationIssue] = field(default_factory=list)
    cleaned: bool = False


class DataValidator:
    """Validates and cleans extracted records.

    Attributes:
        relationships: Cross-field constraints checked on every record.
        unique_fields: Fields whose values should not repeat.
        include_invalid: Keep invalid records in ``cleaned_data``.
        request_url: URL recorded on per-record failures.
    """

    def __init__(
        self,
        relationships: Sequence[Relationship] = (),
        unique_fields: Sequence[str] = (),
        include_invalid: bool = False,
        request_url: str = "",
    ) -> None:
        self.relationships = tuple(relationships)
        self.unique_fields = tuple(unique_fields)
        self.include_invalid = include_invalid
        self.request_url = request_url

    def validate(
        self,
        items: Sequence[Record],
        schema: Mapping[str, FieldSchema] | None = None,
        arena: ValidationArena | None = None,
    ) -> ValidationReport:
        """Validate and clean ``items``.

        Args:
            items: Records to check.
            schema: Field schemas. Inferred from the first record if None.
            arena: Duplicate tracker for this call. A fresh one is used if
                omitted.

        Returns:
            The validation report. Input records are not modified.
        """
        if schema is None:
            schema = self.infer_schema(items)
        arena = arena or ValidationArena()
        report = ValidationReport()
        report.statistics.total_items = len(items)
        logger.debug(
            f"Validating {len(items)} items against fields {list(schema)}"
        )

        for index, item in enumerate(items):
            cleaned, errors, warnings, was_cleaned = self._validate_item(
                item, schema, index, arena
            )
            report.warnings.extend(warnings)
            if not errors:
                report.cleaned_data.append(cleaned)
                report.statistics.valid_items += 1
                if was_cleaned:
                    report.statistics.cleaned_items += 1
                continue

            report.statistics.invalid_items += 1
            report.errors.extend(errors)
            report.failures.append(self._failure(item, index, errors))
            if self.include_invalid:
                report.cleaned_data.append(cleaned)

        stats = report.statistics
        if stats.total_items:
            valid_ratio = stats.valid_items / stats.total_items
            if valid_ratio < MIN_VALID_RATIO:
                report.is_valid = False
                report.errors.insert(
                    0,
                    ValidationIssue(
                        type="critical",
                        message=(
                            "Too many invalid records: "
                            f"{round((1 - valid_ratio) * 100)}%"
                        ),
                    ),
                )

        logger.info(
            f"Validation finished: {stats.valid_items} valid, "
            f"{stats.invalid_items} invalid, {stats.cleaned_items} cleaned"
        )
        if not report.is_valid:
            logger.warning(
                f"Validation failed with {len(report.errors)} errors, "
                f"first: {report.errors[0].message}"
            )
        return report

    def _failure(
        self, item: Any, index: int, errors: list[ValidationIssue]
    ) -> DataFormatAssumptionException:
        failed_doc = dict(item) if isinstance(item, Mapping) else {}
        return DataFormatAssumptionException(
            errors=[
                {"loc": (issue.field or f"[{index}]",), "msg": issue.message}
                for issue in errors
            ],
            failed_doc=failed_doc,
            model_name="schema",
            request_url=self.request_url,
        )

    def _validate_item(
        self,
        item: Any,
        schema: Mapping[str, FieldSchema],
        index: int,
        arena: ValidationArena,
    ) -> tuple[Record, list[ValidationIssue], list[ValidationIssue], bool]:
        prefix = f"[{index}]"
        if not isinstance(item, Mapping):
            issue = ValidationIssue(
                "structure", f"{prefix} Record must be a mapping", prefix
            )
            return {}, [issue], [], False

        cleaned: Record = {}
        errors: list[ValidationIssue] = []
        warnings: list[ValidationIssue] = []
        was_cleaned = False

        for key, value in item.items():
            path = f"{prefix}.{key}"
            outcome = self.validate_field(value, schema.get(key), path)
            cleaned[key] = outcome.value
            errors.extend(outcome.errors)
            warnings.extend(outcome.warnings)
            was_cleaned = was_cleaned or outcome.cleaned

        for key, field_schema in schema.items():
            if field_schema.required and key not in item:
                path = f"{prefix}.{key}"
                errors.append(
                    ValidationIssue(
                        "missing", f"{path} Required field is missing", path
                    )
                )

        for relationship in self.relationships:
            issue = self._check_relationship(cleaned, relationship, prefix)
            if issue is not None:
                errors.append(issue)

        for name in self.unique_fields:
            value = cleaned.get(name)
            if value and arena.is_duplicate(name, value):
                path = f"{prefix}.{name}"
                warnings.append(
                    ValidationIssue(
                        "duplicate", f"{path} Possibly duplicate value", path
                    )
                )

        return cleaned, errors, warnings, was_cleaned

    def validate_field(
        self, value: Any, schema: FieldSchema | None, path: str = ""
    ) -> _FieldOutcome:
        """Clean and check one field value."""
        schema = schema or FieldSchema()
        outcome = _FieldOutcome(value=value)

        if value is None or value == "":
            if schema.required:
                outcome.errors.append(
                    ValidationIssue(
                        "required", f"{path} Field is required", path
                    )
                )
            return outcome

        rule_names = (
            schema.clean if schema.clean is not None else [schema.type]
        )
        cleaned = self.clean_value(value, rule_names)
        if cleaned != value:
            outcome.value = cleaned
            outcome.cleaned = True
            outcome.warnings.append(
                ValidationIssue("cleaned", f"{path} Value was cleaned", path)
            )

        value = outcome.value
        if schema.type not in UNCHECKED_TYPES:
            pattern = PATTERNS.get(schema.type)
            if pattern is None:
                outcome.warnings.append(
                    ValidationIssue(
                        "unknown_type",
                        f"{path} Unknown validation type: {schema.type}",
                        path,
                    )
                )
            elif isinstance(value, str) and not pattern.search(value):
                outcome.errors.append(
                    ValidationIssue(
                        "format",
                        f"{path} Invalid format for type {schema.type}",
                        path,
                    )
                )

        if isinstance(value, str):
            min_length = schema.min_length or DEFAULT_MIN_LENGTH
            if len(value) < min_length:
                outcome.errors.append(
                    ValidationIssue(
                        "min_length",
                        f"{path} Value too short "
                        f"({len(value)} < {min_length})",
                        path,
                    )
                )
            if schema.max_length is not None and (
                len(value) > schema.max_length
            ):
                outcome.errors.append(
                    ValidationIssue(
                        "max_length",
                        f"{path} Value too long "
                        f"({len(value)} > {schema.max_length})",
                        path,
                    )
                )

        return outcome

    @staticmethod
    def clean_value(value: Any, rule_names: Sequence[str]) -> Any:
        """Apply the named cleaning rules to a string value."""
        if not isinstance(value, str):
            return value
        cleaned = value
        for name in rule_names:
            for pattern, replacement in CLEANING_RULES.get(name, ()):
                cleaned = pattern.sub(replacement, cleaned)
        return cleaned.strip()

    @staticmethod
    def _check_relationship(
        item: Record, relationship: Relationship, prefix: str
    ) -> ValidationIssue | None:
        filled = [name for name in relationship.fields if item.get(name)]
        names = ", ".join(relationship.fields)
        match relationship.type:
            case "required_together":
                if filled and len(filled) != len(relationship.fields):
                    return ValidationIssue(
                        "required_together",
                        f"{prefix} Fields [{names}] must be filled together",
                        prefix,
                    )
            case "mutually_exclusive":
                if len(filled) > 1:
                    return ValidationIssue(
                        "mutually_exclusive",
                        f"{prefix} Fields [{names}] are mutually exclusive",
                        prefix,
                    )
            case _:
                logger.warning(
                    f"Unknown relationship type '{relationship.type}'"
                )
        return None

    def infer_schema(
        self, items: Sequence[Record] | Record
    ) -> dict[str, FieldSchema]:
        """Guess field schemas from the first record.

        Markup is kept as is: inferred html fields are neither cleaned nor
        format-checked.
        """
        if isinstance(items, Mapping):
            sample = items
        elif items and isinstance(items[0], Mapping):
            sample = items[0]
        else:
            return {}
        schema = {
            key: self.infer_field(value, key) for key, value in sample.items()
        }
        logger.debug(f"Inferred schema for fields {list(schema)}")
        return schema

    @staticmethod
    def infer_field(value: Any, name: str) -> FieldSchema:
        if isinstance(value, bool):
            return FieldSchema(type="boolean")
        if isinstance(value, (int, float)):
            return FieldSchema(type="number", clean=[])
        if isinstance(value, (list, tuple)):
            return FieldSchema(type="array")
        if isinstance(value, Mapping):
            return FieldSchema(type="object")
        if not isinstance(value, str):
            return FieldSchema(type="text")

        lowered = name.lower()
        if PATTERNS["email"].search(value) or "email" in lowered:
            return FieldSchema(type="email", min_length=5, max_length=254)
        if PATTERNS["phone"].search(value) or "phone" in lowered:
            return FieldSchema(type="phone", min_length=7, max_length=20)
        if PATTERNS["url"].search(value) or "url" in lowered:
            return FieldSchema(type="url", min_length=10, max_length=2048)
        if PATTERNS["price"].search(value) or "price" in lowered:
            return FieldSchema(type="price", max_length=20)
        if PATTERNS["date"].search(value) or "date" in lowered:
            return FieldSchema(type="date", min_length=8, max_length=20)
        if PATTERNS["number"].search(value):
            return FieldSchema(type="number", max_length=50)
        if HTML_MARKUP.search(value):
            return FieldSchema(type="html", clean=[])
        return FieldSchema(type="text")
