from datetime import date

import pytest

from lending.book import Book, BookStatus
from lending.errors import InvalidField, InvalidOperation


def make_book(copies=2, **kwargs):
    return Book.create("The Left Hand of Darkness", "Ursula K. Le Guin", copies, **kwargs)


def test_create_starts_available_with_all_copies():
    book = make_book(3, isbn=" 9780441478125 ", location=" A-12 ", publication_date=date(1969, 3, 1))
    assert book.available_copies == book.total_copies == 3
    assert book.status == BookStatus.AVAILABLE
    assert book.isbn == "9780441478125"
    assert book.location == "A-12"
    assert book.publication_date == date(1969, 3, 1)
    assert book.id


@pytest.mark.parametrize(
    "kwargs, field",
    [
        ({"title": " "}, "title"),
        ({"title": "x" * 251}, "title"),
        ({"author": ""}, "author"),
        ({"author": "x" * 201}, "author"),
        ({"total_copies": 0}, "total_copies"),
        ({"isbn": "1" * 41}, "isbn"),
        ({"location": "x" * 101}, "location"),
    ],
)
def test_create_validates_fields(kwargs, field):
    args = {"title": "Title", "author": "Author", "total_copies": 1}
    args.update(kwargs)
    with pytest.raises(InvalidField) as exc:
        Book.create(**args)
    assert exc.value.field_name == field


def test_blank_optional_fields_are_dropped():
    book = make_book(isbn="  ", location="")
    assert book.isbn is None
    assert book.location is None


def test_single_copy_checkout_and_return():
    book = make_book(1)
    book.checkout()
    assert book.available_copies == 0
    assert book.status == BookStatus.LOANED

    with pytest.raises(InvalidOperation):
        book.checkout()
    assert book.available_copies == 0

    book.return_copy()
    assert book.available_copies == 1
    assert book.status == BookStatus.AVAILABLE


def test_checkout_with_copies_left_stays_available():
    book = make_book(3)
    book.checkout()
    assert book.available_copies == 2
    assert book.status == BookStatus.AVAILABLE


def test_return_from_zero_leaves_loaned_state():
    book = make_book(2)
    book.checkout()
    book.checkout()
    assert book.status == BookStatus.LOANED
    book.return_copy()
    assert book.available_copies == 1
    assert book.status == BookStatus.AVAILABLE


def test_return_with_nothing_out_fails():
    book = make_book(2)
    with pytest.raises(InvalidOperation, match="No copies"):
        book.return_copy()
    assert book.available_copies == 2


@pytest.mark.parametrize("flag", ["reserve", "mark_damaged", "mark_inactive"])
def test_checkout_refused_on_sticky_flags(flag):
    book = make_book(2)
    getattr(book, flag)()
    with pytest.raises(InvalidOperation):
        book.checkout()
    assert book.available_copies == 2


def test_reserve_and_release():
    book = make_book(2)
    book.reserve()
    assert book.status == BookStatus.RESERVED
    book.reserve()  # already reserved: no-op
    assert book.status == BookStatus.RESERVED
    book.release_reservation()
    assert book.status == BookStatus.AVAILABLE


def test_reserve_requires_free_copy():
    book = make_book(1)
    book.checkout()
    with pytest.raises(InvalidOperation):
        book.reserve()
    assert book.status == BookStatus.LOANED


def test_release_requires_reservation():
    with pytest.raises(InvalidOperation, match="not reserved"):
        make_book().release_reservation()


def test_reserved_flag_survives_returns():
    book = make_book(2)
    book.checkout()
    book.reserve()
    book.return_copy()
    assert book.status == BookStatus.RESERVED
    assert book.available_copies == 2


@pytest.mark.parametrize("action", ["mark_damaged", "mark_inactive"])
def test_damage_and_deactivate_need_all_copies_in(action):
    book = make_book(2)
    book.checkout()
    with pytest.raises(InvalidOperation, match="on loan"):
        getattr(book, action)()
    assert book.status == BookStatus.AVAILABLE


def test_restore_clears_sticky_flags():
    book = make_book(2)
    book.mark_damaged()
    assert book.status == BookStatus.DAMAGED
    book.restore_availability()
    assert book.status == BookStatus.AVAILABLE

    book.mark_inactive()
    book.restore_availability()
    assert book.status == BookStatus.AVAILABLE


def test_restore_needs_a_copy_on_the_shelf():
    book = make_book(1)
    book.checkout()
    with pytest.raises(InvalidOperation):
        book.restore_availability()
    assert book.status == BookStatus.LOANED


def test_copy_count_invariant_over_mixed_operations():
    book = make_book(3)
    operations = ["checkout", "checkout", "return_copy", "checkout", "checkout", "checkout",
                  "return_copy", "return_copy", "return_copy", "return_copy"]
    for name in operations:
        try:
            getattr(book, name)()
        except InvalidOperation:
            pass
        assert 0 <= book.available_copies <= book.total_copies
        if book.status in (BookStatus.AVAILABLE, BookStatus.LOANED):
            assert (book.status == BookStatus.LOANED) == (book.available_copies == 0)


def test_update_metadata_keeps_blank_fields():
    book = make_book(isbn="111")
    book.update_metadata(title="New Title", author="  ")
    assert book.title == "New Title"
    assert book.author == "Ursula K. Le Guin"
    assert book.isbn == "111"


def test_update_metadata_rejects_before_writing():
    book = make_book()
    with pytest.raises(InvalidField):
        book.update_metadata(title="Fine", author="x" * 201)
    assert book.title == "The Left Hand of Darkness"


def test_update_location():
    book = make_book(location="A-1")
    book.update_location("  B-2 ")
    assert book.location == "B-2"
    book.update_location("")
    assert book.location is None
    with pytest.raises(InvalidField):
        book.update_location("x" * 101)


def test_dict_round_trip_preserves_state():
    book = make_book(2, publication_date=date(1969, 3, 1))
    book.checkout()
    restored = Book.from_dict(book.to_dict())
    assert restored.to_dict() == book.to_dict()
