"""Serialize parse results as JSON or CSV."""

from __future__ import annotations

import csv
import io
import json
from collections.abc import Mapping
from typing import Any

from typing_extensions import assert_never

from pagescrape.common.exceptions import ConfigurationError
from pagescrape.data_types import ExportFormat, ParseResult, Record

LIST_SEPARATOR = "; "


def to_json(result: ParseResult, include_metadata: bool = False) -> str:
    """Render items, or the whole result with metadata, as JSON."""
    payload: Any = result.to_dict() if include_metadata else result.items
    return json.dumps(payload, ensure_ascii=False, indent=2, default=str)


def flatten_record(record: Mapping[str, Any], prefix: str = "") -> Record:
    """Flatten nested mappings into dotted keys.

    Example::

        flatten_record({"a": {"b": "x"}, "c": ["1", "2"]})
        # {"a.b": "x", "c": "1; 2"}
    """
    flat: Record = {}
    for key, value in record.items():
        name = f"{prefix}{key}"
        if isinstance(value, Mapping):
            flat.update(flatten_record(value, f"{name}."))
        elif isinstance(value, (list, tuple)):
            flat[name] = LIST_SEPARATOR.join(str(v) for v in value)
        elif value is None:
            flat[name] = ""
        else:
            flat[name] = value
    return flat


def to_csv(result: ParseResult) -> str:
    """Render items as CSV; the header is the union of flattened keys."""
    rows = [flatten_record(item) for item in result.items]
    columns: list[str] = []
    for row in rows:
        columns.extend(key for key in row if key not in columns)

    buffer = io.StringIO()
    writer = csv.DictWriter(buffer, fieldnames=columns, restval="")
    if columns:
        writer.writeheader()
    writer.writerows(rows)
    return buffer.getvalue()


def export_result(
    result: ParseResult,
    fmt: ExportFormat | str,
    include_metadata: bool = False,
) -> str:
    """Serialize ``result`` in the requested format.

    Raises:
        ConfigurationError: If ``fmt`` is not a known export format.
    """
    try:
        fmt = ExportFormat(fmt)
    except ValueError:
        allowed = ", ".join(f.value for f in ExportFormat)
        raise ConfigurationError(
            f"unsupported export format '{fmt}' (allowed: {allowed})"
        ) from None

    match fmt:
        case ExportFormat.JSON:
            return to_json(result, include_metadata)
        case ExportFormat.CSV:
            return to_csv(result)
        case _:
            assert_never(fmt)
