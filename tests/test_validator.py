"""Tests for record validation and cleanup."""

import pytest

from pagescrape.common.exceptions import DataFormatAssumptionException
from pagescrape.data_types import FieldSchema
from pagescrape.validation.validator import (
    DataValidator,
    Relationship,
    ValidationArena,
)

CONTACT_SCHEMA = {
    "email": FieldSchema(type="email", required=True),
    "name": FieldSchema(),
}


@pytest.fixture
def validator() -> DataValidator:
    return DataValidator(request_url="https://example.com/people")


class TestInferField:
    """Tests for schema inference."""

    @pytest.mark.parametrize(
        ("value", "name", "expected_type"),
        [
            ("ann@example.com", "contact", "email"),
            ("+1 555 123 4567", "contact", "phone"),
            ("https://example.com/a", "link", "url"),
            ("$19.99", "cost", "price"),
            ("15/01/2024", "when", "date"),
            ("<b>bold</b>", "body", "html"),
            ("Just words", "title", "text"),
            ("n/a", "email", "email"),
            (True, "flag", "boolean"),
            (42, "count", "number"),
            (["a"], "tags", "array"),
            ({"class": "x"}, "attributes", "object"),
        ],
    )
    def test_inferred_types(self, value, name, expected_type):
        assert DataValidator.infer_field(value, name).type == expected_type

    def test_inferred_markup_not_cleaned(self):
        """Inferred html fields shall keep their markup."""
        schema = DataValidator.infer_field("<b>bold</b>", "body")
        assert schema.clean == []

    def test_schema_inferred_from_first_record(self, validator):
        schema = validator.infer_schema(
            [{"email": "ann@example.com", "name": "Ann"}, {"other": "x"}]
        )
        assert set(schema) == {"email", "name"}
        assert schema["name"].type == "text"

    def test_nothing_to_infer_from(self, validator):
        assert validator.infer_schema([]) == {}


class TestValidate:
    """Tests for DataValidator.validate."""

    def test_mostly_invalid_batch(self, validator):
        """Under half valid shall make the report invalid."""
        items = [
            {"email": "ann@example.com", "name": "  Ann   Lee "},
            {"email": "not-an-email", "name": "Bob"},
            {"name": "Cy"},
        ]

        report = validator.validate(items, CONTACT_SCHEMA)

        assert report.is_valid is False
        assert report.errors[0].type == "critical"
        assert report.errors[0].message == "Too many invalid records: 67%"
        assert {issue.type for issue in report.errors[1:]} == {
            "format",
            "missing",
        }
        assert report.cleaned_data == [
            {"email": "ann@example.com", "name": "Ann Lee"}
        ]
        assert report.statistics.valid_items == 1
        assert report.statistics.invalid_items == 2
        assert report.statistics.cleaned_items == 1

    def test_failures_carry_the_record(self, validator):
        report = validator.validate(
            [{"email": "not-an-email"}], CONTACT_SCHEMA
        )

        failure = report.failures[0]
        assert isinstance(failure, DataFormatAssumptionException)
        assert failure.failed_doc == {"email": "not-an-email"}
        assert failure.model_name == "schema"
        assert failure.request_url == "https://example.com/people"
        assert failure.errors[0]["loc"] == ("[0].email",)

    def test_half_valid_is_still_valid(self, validator):
        items = [{"email": "ann@example.com"}, {"email": "nope"}]
        report = validator.validate(items, CONTACT_SCHEMA)

        assert report.is_valid is True
        assert len(report.errors) == 1

    def test_include_invalid_keeps_every_record(self):
        validator = DataValidator(include_invalid=True)
        items = [{"email": "ann@example.com"}, {"name": "Cy"}]

        report = validator.validate(items, CONTACT_SCHEMA)

        assert len(report.cleaned_data) == 2

    def test_input_not_modified(self, validator):
        item = {"email": "ann@example.com", "name": " Ann  Lee "}
        validator.validate([item], CONTACT_SCHEMA)
        assert item["name"] == " Ann  Lee "

    def test_non_mapping_record(self, validator):
        report = validator.validate(["just a string"], CONTACT_SCHEMA)

        assert report.statistics.invalid_items == 1
        assert report.errors[-1].type == "structure"

    def test_schema_inferred_when_omitted(self, validator):
        items = [
            {"text": "Item 1", "attributes": {"class": "item"}},
            {"text": "Item 2", "attributes": {"class": "item"}},
        ]

        report = validator.validate(items)

        assert report.is_valid is True
        assert report.cleaned_data == items

    def test_empty_batch(self, validator):
        report = validator.validate([], CONTACT_SCHEMA)
        assert report.is_valid is True
        assert report.statistics.total_items == 0

    def test_summary(self, validator):
        report = validator.validate(
            [{"email": "ann@example.com"}], CONTACT_SCHEMA
        )
        assert report.summary() == {
            "is_valid": True,
            "error_count": 0,
            "warning_count": 0,
            "total_items": 1,
            "valid_items": 1,
            "invalid_items": 0,
            "cleaned_items": 0,
        }


class TestValidateField:
    """Tests for per-field checks and cleaning."""

    def test_required_empty_value(self, validator):
        outcome = validator.validate_field(
            "", FieldSchema(required=True), "[0].name"
        )
        assert [issue.type for issue in outcome.errors] == ["required"]

    def test_optional_empty_value(self, validator):
        outcome = validator.validate_field(None, FieldSchema(), "[0].name")
        assert outcome.errors == []

    def test_length_bounds(self, validator):
        schema = FieldSchema(min_length=3, max_length=5)

        short = validator.validate_field("ab", schema, "x")
        long = validator.validate_field("abcdef", schema, "x")
        fine = validator.validate_field("abcd", schema, "x")

        assert [i.type for i in short.errors] == ["min_length"]
        assert [i.type for i in long.errors] == ["max_length"]
        assert fine.errors == []

    def test_unknown_type_warns(self, validator):
        outcome = validator.validate_field(
            "value", FieldSchema(type="colour"), "x"
        )
        assert outcome.errors == []
        assert outcome.warnings[0].type == "unknown_type"

    def test_html_cleaning(self, validator):
        """Explicit html fields shall lose tags, scripts and entities."""
        outcome = validator.validate_field(
            "<p>Fish&amp;chips</p><script>alert(1)</script>",
            FieldSchema(type="html"),
            "x",
        )
        assert outcome.value == "Fish&chips"
        assert outcome.cleaned is True
        assert outcome.errors == []

    def test_price_cleaning(self, validator):
        outcome = validator.validate_field(
            "Price: $1,299", FieldSchema(type="price"), "x"
        )
        assert outcome.value == "$1.299"
        assert outcome.errors == []

    def test_empty_clean_list_disables_cleaning(self, validator):
        outcome = validator.validate_field(
            "  spaced   out ", FieldSchema(clean=[]), "x"
        )
        assert outcome.value == "spaced   out"

    def test_format_check(self, validator):
        bad = validator.validate_field("yesterday", FieldSchema(type="date"))
        good = validator.validate_field("2024-01-15", FieldSchema(type="date"))
        assert [i.type for i in bad.errors] == ["format"]
        assert good.errors == []


class TestRelationships:
    """Tests for cross-field constraints."""

    def test_required_together(self):
        validator = DataValidator(
            relationships=[
                Relationship("required_together", ("price", "currency"))
            ]
        )
        schema = {"price": FieldSchema(), "currency": FieldSchema()}

        report = validator.validate(
            [{"price": "5", "currency": "EUR"}, {"price": "5"}, {}], schema
        )

        assert report.statistics.invalid_items == 1
        assert report.errors[-1].type == "required_together"

    def test_mutually_exclusive(self):
        validator = DataValidator(
            relationships=[
                Relationship("mutually_exclusive", ("sale", "sold_out"))
            ]
        )
        schema = {"sale": FieldSchema(), "sold_out": FieldSchema()}

        report = validator.validate(
            [{"sale": "yes"}, {"sale": "yes", "sold_out": "yes"}], schema
        )

        assert report.statistics.invalid_items == 1
        assert report.errors[-1].type == "mutually_exclusive"


class TestDuplicates:
    """Tests for unique-field duplicate warnings."""

    def test_duplicates_warn_without_invalidating(self):
        validator = DataValidator(unique_fields=["sku"])
        items = [{"sku": "A"}, {"sku": "A"}, {"sku": "B"}]

        report = validator.validate(items, {"sku": FieldSchema()})

        duplicates = [w for w in report.warnings if w.type == "duplicate"]
        assert len(duplicates) == 1
        assert duplicates[0].field == "[1].sku"
        assert report.statistics.valid_items == 3

    def test_calls_do_not_share_seen_values(self):
        """Each validate() call shall start with an empty arena."""
        validator = DataValidator(unique_fields=["sku"])
        schema = {"sku": FieldSchema()}

        first = validator.validate([{"sku": "A"}], schema)
        second = validator.validate([{"sku": "A"}], schema)

        assert first.warnings == []
        assert second.warnings == []

    def test_shared_arena(self):
        validator = DataValidator(unique_fields=["sku"])
        schema = {"sku": FieldSchema()}
        arena = ValidationArena()

        validator.validate([{"sku": "A"}], schema, arena)
        report = validator.validate([{"sku": "A"}], schema, arena)

        assert [w.type for w in report.warnings] == ["duplicate"]
