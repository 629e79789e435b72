from datetime import datetime

import pytest

from lending.errors import InvalidField
from lending.validation import (
    optional_text,
    require_id,
    require_non_negative,
    require_ordered,
    require_positive,
    require_text,
)


def test_require_text_trims():
    assert require_text("  Dune  ", 10, "title") == "Dune"


@pytest.mark.parametrize("value", [None, "", "   "])
def test_require_text_rejects_blank(value):
    with pytest.raises(InvalidField, match="title is required") as exc:
        require_text(value, 10, "title")
    assert exc.value.field_name == "title"


def test_require_text_rejects_too_long():
    with pytest.raises(InvalidField, match="cannot exceed 5 characters"):
        require_text("abcdef", 5, "author")


def test_require_text_length_checked_after_trim():
    assert require_text("  abcde  ", 5, "author") == "abcde"


def test_optional_text_blank_is_none():
    assert optional_text("   ", 5, "isbn") is None
    assert optional_text(None, 5, "isbn") is None


def test_optional_text_checks_length():
    assert optional_text(" 123 ", 5, "isbn") == "123"
    with pytest.raises(InvalidField) as exc:
        optional_text("123456", 5, "isbn")
    assert exc.value.field_name == "isbn"


def test_require_positive():
    assert require_positive(1, "total_copies") == 1
    for bad in (0, -1):
        with pytest.raises(InvalidField, match="greater than zero"):
            require_positive(bad, "total_copies")


def test_require_non_negative():
    assert require_non_negative(0, "amount") == 0
    with pytest.raises(InvalidField, match="cannot be negative"):
        require_non_negative(-0.01, "amount")


def test_require_ordered():
    start = datetime(2024, 1, 1)
    require_ordered(start, datetime(2024, 1, 2), "start", "end")
    with pytest.raises(InvalidField) as exc:
        require_ordered(start, start, "start", "end")
    assert exc.value.field_name == "end"
    with pytest.raises(InvalidField):
        require_ordered(start, datetime(2023, 12, 31), "start", "end")


def test_require_id():
    assert require_id(" b1 ", "book_id") == "b1"
    with pytest.raises(InvalidField, match="book_id is required"):
        require_id("", "book_id")


def test_invalid_field_is_value_error():
    with pytest.raises(ValueError):
        require_text("", 5, "title")
