"""Unit tests for result bounding, masking and columnar conversion."""

from __future__ import annotations

from datetime import date, datetime

import pytest

from sqlpilot.results.processing import (
    UNSERIALIZABLE,
    apply_business_names,
    columnar_to_rows,
    limit_rows_and_size,
    mask_pii,
    mask_string,
    parse_columnar_table,
    rows_to_columnar,
    serialized_size,
)


class TestLimitRowsAndSize:
    """Tests for the row and byte budget."""

    def test_row_and_byte_budget(self):
        """500 rows of 1 KiB end up within 100 rows and 200 KiB."""
        rows = [{"id": i, "payload": "x" * 1024} for i in range(500)]
        limited = limit_rows_and_size(rows, max_rows=100, max_bytes=200 * 1024)
        assert len(limited) <= 100
        assert serialized_size(limited) <= 200 * 1024

    def test_shrinks_until_under_budget(self):
        """Oversized results shrink by 20% steps."""
        rows = [{"id": i, "payload": "x" * 5000} for i in range(100)]
        limited = limit_rows_and_size(rows, max_rows=100, max_bytes=200 * 1024)
        assert 1 <= len(limited) < 100
        assert serialized_size(limited) <= 200 * 1024
        assert limited == rows[:len(limited)]

    def test_stops_at_one_row(self):
        """A single row over budget is still returned."""
        rows = [{"blob": "x" * 10_000}, {"blob": "y" * 10_000}]
        assert limit_rows_and_size(rows, max_rows=10, max_bytes=100) == rows[:1]

    def test_small_result_is_untouched(self):
        rows = [{"id": 1}, {"id": 2}]
        assert limit_rows_and_size(rows) == rows

    def test_serialized_size_handles_dates(self):
        """Driver types never break size accounting."""
        assert serialized_size([{"day": date(2024, 1, 2)}]) == len('[{"day":"2024-01-02"}]')


class TestMaskPii:
    """Tests for PII masking by column name."""

    def test_email_scenario(self):
        assert mask_pii([{"customer_email": "john.doe@example.com"}]) == [{"customer_email": "jo***om"}]

    def test_short_values_are_fully_masked(self):
        assert mask_string("abcd") == "****"
        assert mask_string("ab") == "**"

    def test_column_match_is_case_insensitive(self):
        rows = [{"Mobile_Number": "+15550001111", "TAX_ID": "1234567890"}]
        assert mask_pii(rows) == [{"Mobile_Number": "+1***11", "TAX_ID": "12***90"}]

    def test_non_string_values(self):
        """Truthy non-strings become the mask token; falsy values stay."""
        rows = [{"phone": 5551234}, {"phone": None}, {"phone": 0}]
        assert mask_pii(rows) == [{"phone": "***"}, {"phone": None}, {"phone": 0}]

    def test_other_columns_are_untouched(self):
        rows = [{"name": "John Doe", "ssn_hash": "abcdefgh"}]
        assert mask_pii(rows) == [{"name": "John Doe", "ssn_hash": "ab***gh"}]

    def test_masking_is_stable(self):
        """Masking a masked value again yields the same value."""
        once = mask_pii([{"email": "ab12345678"}])
        assert mask_pii(once) == once == [{"email": "ab***78"}]

    def test_input_rows_are_not_modified(self):
        rows = [{"email": "john.doe@example.com"}]
        mask_pii(rows)
        assert rows == [{"email": "john.doe@example.com"}]


class TestBusinessNames:
    """Tests for business-name substitution."""

    def test_renames_mapped_columns(self):
        rows = [{"total": 1, "id": 2}]
        assert apply_business_names(rows, {"total": "Order Total"}) == [{"Order Total": 1, "id": 2}]

    def test_rename_never_overwrites_existing_column(self):
        rows = [{"total": 1, "Order Total": 2}]
        assert apply_business_names(rows, {"total": "Order Total"}) == rows

    def test_empty_map_is_identity(self):
        rows = [{"total": 1}]
        assert apply_business_names(rows, {}) is rows


class TestColumnar:
    """Tests for row <-> columnar conversion."""

    def test_rows_to_columnar(self):
        rows = [
            {"id": 1, "day": date(2024, 3, 1), "meta": {"a": 1}, "ok": True},
            {"id": 2, "day": datetime(2024, 3, 2, 10, 30), "meta": [1, 2], "ok": None},
        ]
        assert rows_to_columnar(rows) == {
            "id": [1, 2],
            "day": ["2024-03-01", "2024-03-02T10:30:00"],
            "meta": ['{"a": 1}', "[1, 2]"],
            "ok": [True, None],
        }

    def test_missing_keys_become_none(self):
        """Every column has one entry per row."""
        table = rows_to_columnar([{"a": 1}, {"b": 2}])
        assert table == {"a": [1, None], "b": [None, 2]}

    def test_unserializable_value_uses_marker(self):
        assert rows_to_columnar([{"x": object()}]) == {"x": [UNSERIALIZABLE]}

    def test_round_trip(self):
        """Columnar then rows reproduces primitive values."""
        rows = [{"id": 1, "name": "a", "score": 1.5}, {"id": 2, "name": "b", "score": None}]
        assert columnar_to_rows(rows_to_columnar(rows)) == rows

    def test_empty_result(self):
        assert rows_to_columnar([]) == {}
        assert columnar_to_rows({}) == []

    @pytest.mark.parametrize("value", [
        None,
        [1, 2],
        "text",
        {"a": "not a list"},
        {"a": [1, 2], "b": [1]},
    ])
    def test_parse_rejects_invalid_tables(self, value):
        assert parse_columnar_table(value) is None

    def test_parse_coerces_non_primitives(self):
        assert parse_columnar_table({"a": [1, {"k": "v"}]}) == {"a": [1, '{"k": "v"}']}
